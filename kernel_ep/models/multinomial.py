"""
Multinomial (softmax) regression on synthetic data.

counts_n ~ Multinomial(T_n, softmax(B x_n + m)),
B_c ~ N(0, I), m_c ~ N(0, 1), with the last class pinned to zero
so the model is identifiable.
The posterior is a Laplace approximation: Newton's method on the log
posterior of the free classes, the Hessian coming from autograd.
"""
import math

import torch
import torch.nn.functional as F
from torch.autograd import grad

from ..dists import Gaussian, VectorGaussian
from ..math_helpers import atol_rtol, hessian_factory
from ..utils import make_generator

SAMPLE_SIZES = (10, 20, 30, 40, 50, 60, 70, 80, 90, 100, 200, 300, 400, 500, 1000, 1500, 2000)


def gen_data(num_samples, num_features, num_classes, count_per_sample, seed=1):
    """
    (features N x K, counts N x C, coefficients C x K, class means C)
    """
    g = make_generator(seed)
    coefficients = torch.zeros(num_classes, num_features, dtype=torch.float64)
    mean = torch.zeros(num_classes, dtype=torch.float64)
    coefficients[:-1] = torch.randn(num_classes - 1, num_features, generator=g, dtype=torch.float64)
    mean[:-1] = torch.randn(num_classes - 1, generator=g, dtype=torch.float64)
    X = torch.randn(num_samples, num_features, generator=g, dtype=torch.float64)
    p = torch.softmax(X @ coefficients.T + mean, dim=1)
    draws = torch.multinomial(p, count_per_sample, replacement=True, generator=g)
    counts = F.one_hot(draws, num_classes).sum(dim=1).to(torch.float64)
    return X, counts, coefficients, mean


def _unpack(theta, num_features, num_classes):
    free = num_classes - 1
    B = theta[:free * num_features].reshape(free, num_features)
    m = theta[free * num_features:]
    return B, m


def neg_log_posterior(theta, X, counts):
    """
    Up to a constant; theta stacks the free coefficient rows, then the free means.
    """
    num_classes = counts.shape[1]
    B, m = _unpack(theta, X.shape[1], num_classes)
    logits = F.pad(X @ B.T + m, (0, 1))
    loglik = (counts * torch.log_softmax(logits, dim=1)).sum()
    return -loglik + 0.5 * (B ** 2).sum() + 0.5 * (m ** 2).sum()


def infer(X, counts, max_iter=50, tol=1e-8, verbose=False):
    """
    Laplace approximation.
    Returns ([VectorGaussian per class coefficients], [Gaussian per class mean]);
    the pinned last class gets point masses at zero.
    """
    X = torch.as_tensor(X, dtype=torch.float64)
    counts = torch.as_tensor(counts, dtype=torch.float64)
    num_features = X.shape[1]
    num_classes = counts.shape[1]
    D = (num_classes - 1) * (num_features + 1)
    hess = hessian_factory(neg_log_posterior)
    atol, rtol = atol_rtol(torch.float64, D, atol=tol)
    theta = torch.zeros(D, dtype=torch.float64)
    for it in range(max_iter):
        t = theta.detach().clone().requires_grad_(True)
        g = grad(neg_log_posterior(t, X, counts), t)[0]
        H = hess(theta, X, counts)
        step = torch.linalg.solve(H, g)
        new_theta = theta - step
        converged = torch.allclose(new_theta, theta, atol=atol, rtol=rtol)
        theta = new_theta.detach()
        if verbose:
            print(f"Newton iter {it + 1}: |step| = {step.norm().item():.3g}")
        if converged:
            break
    cov = torch.linalg.inv(hess(theta, X, counts))
    cov = 0.5 * (cov + cov.T)

    free = num_classes - 1
    b_post, mean_post = [], []
    for c in range(free):
        sl = slice(c * num_features, (c + 1) * num_features)
        b_post.append(VectorGaussian(theta[sl], cov[sl, sl]))
        j = free * num_features + c
        mean_post.append(Gaussian.from_mean_and_variance(theta[j].item(), cov[j, j].item()))
    b_post.append(VectorGaussian(
        torch.zeros(num_features, dtype=torch.float64),
        torch.zeros(num_features, num_features, dtype=torch.float64)))
    mean_post.append(Gaussian.point_mass(0.0))
    return b_post, mean_post


def multinomial_regression_synthetic(
        num_samples, num_features, num_classes, count_per_sample, seed=1, verbose=True):
    """
    Fit to synthetic data and return the RMSE of the coefficient means.
    """
    X, counts, coefficients, mean = gen_data(num_samples, num_features, num_classes, count_per_sample, seed=seed)
    b_post, mean_post = infer(X, counts)
    error = 0.0
    if verbose:
        print("Coefficients -------------- ")
    for c in range(num_classes):
        error += ((b_post[c].mean_vector() - coefficients[c]) ** 2).sum().item()
        if verbose:
            print(f"True {coefficients[c].numpy()}")
            print(f"Inferred {b_post[c].mean_vector().numpy()}")
    if verbose:
        print("Mean -------------- ")
        print(f"True {mean.numpy()}")
        print(f"Inferred {[p.mean() for p in mean_post]}")
    error = math.sqrt(error / (num_classes * num_features))
    if verbose:
        print(f"{num_samples} {error}")
    return error


def sample_size_sweep(num_features, num_classes, total_count, sample_sizes=SAMPLE_SIZES, seed=1, verbose=False):
    results = [
        multinomial_regression_synthetic(n, num_features, num_classes, total_count, seed=seed, verbose=verbose)
        for n in sample_sizes]
    for n, r in zip(sample_sizes, results):
        print(f"{n} {r}")
    return results
