import numpy as np
from numpy.polynomial.hermite_e import hermegauss
from scipy.special import expit, logsumexp, roots_genlaguerre
import torch
from torch.autograd import grad

# enough nodes for smooth integrands against moderately broad Gaussians
N_HERMITE = 96
_HERMITE = {}


def hessian_factory(func):
    """
    Wrap a scalar function of a 1d tensor so that it returns the Hessian.
    Row by row, via the gradient graph.
    """
    def hessian_func(input_tensor, *func_args, **func_kwargs):
        input_tensor = input_tensor.detach().clone().requires_grad_(True)
        output = func(input_tensor, *func_args, **func_kwargs)
        g = grad(output, input_tensor, create_graph=True)[0]

        hessian = torch.zeros(input_tensor.numel(), input_tensor.numel(), dtype=input_tensor.dtype)
        for i in range(g.numel()):
            grad_input = grad(g.view(-1)[i], input_tensor, retain_graph=True)[0]
            hessian[i, :] = grad_input.view(-1)

        return hessian

    return hessian_func


def atol_rtol(dtype, m, n=None, atol=0.0, rtol=None):
    if rtol is not None:
        return atol, rtol
    elif rtol is None and atol > 0.0:
        return atol, 0.0
    else:
        if n is None:
            n = m
        # choose bigger of m, n
        mn = max(m, n)
        # choose based on eps for float type
        eps = torch.finfo(dtype).eps
        return 0.0, eps * mn


def hermite_rule(n=N_HERMITE):
    """
    Nodes and weights for E[f(z)], z ~ N(0, 1).
    """
    if n not in _HERMITE:
        x, w = hermegauss(n)
        _HERMITE[n] = (x, w / np.sqrt(2 * np.pi))
    return _HERMITE[n]


def gaussian_expectation(f, mean, var, n=N_HERMITE):
    """
    E[f(x)] for x ~ N(mean, var) by Gauss-Hermite quadrature.
    `f` must be vectorised over numpy arrays.
    """
    if var <= 0:
        return float(f(np.asarray([mean]))[0])
    x, w = hermite_rule(n)
    return float(np.dot(w, f(mean + np.sqrt(var) * x)))


def logistic_gaussian(mean, var, n=N_HERMITE):
    """
    E[sigmoid(x)] for x ~ N(mean, var).
    """
    return gaussian_expectation(expit, mean, var, n)


def logistic_gaussian_moments(mean, var, n=N_HERMITE):
    """
    First and second moment of sigmoid(x) for x ~ N(mean, var).
    """
    if var <= 0:
        s = expit(mean)
        return float(s), float(s * s)
    x, w = hermite_rule(n)
    s = expit(mean + np.sqrt(var) * x)
    return float(np.dot(w, s)), float(np.dot(w, s * s))


def laguerre_rule(n, alpha):
    """
    Nodes and weights for the integral of f(x) x**alpha exp(-x) over x > 0.
    """
    return roots_genlaguerre(n, alpha)


def tilted_moments(log_f, mean, var, n=N_HERMITE):
    """
    log normaliser, mean and variance of N(x; mean, var) * exp(log_f(x)),
    by Gauss-Hermite quadrature in log space.
    `log_f` must be vectorised over numpy arrays.
    """
    x, w = hermite_rule(n)
    xs = mean + np.sqrt(var) * x
    lw = np.log(w) + log_f(xs)
    log_z = logsumexp(lw)
    p = np.exp(lw - log_z)
    m = float(np.dot(p, xs))
    v = float(np.dot(p, (xs - m) ** 2))
    return float(log_z), m, v
