"""
Binary logistic regression by EP, with a pluggable logistic factor operator.

y_i ~ Bernoulli(sigmoid(z_i)), z_i = w . x_i (+ b),
w ~ N(0, I), b ~ N(0, 1).

Each datum has one Gaussian site on z_i.
Sites are refreshed one at a time and folded into the posterior on
(w, b) with a rank-one update, so one sweep costs O(n D^2).
"""
import warnings
from typing import Optional

import torch

from ..dists import Beta, Gaussian, VectorGaussian
from ..ops.logistic import LogisticOp
from ..utils import as_vec, make_generator


def gen_data(n: int, w, b: float = 0.0, seed: Optional[int] = None, generator: Optional[torch.Generator] = None):
    """
    X ~ N(0, I) of shape (n, d), y ~ Bernoulli(sigmoid(X w + b)) as 0/1 floats.
    Pass `generator` to carry on an existing random stream instead of seeding a new one.
    """
    if w is None:
        raise ValueError("coefficients w cannot be None")
    w = as_vec(w)
    g = generator if generator is not None else make_generator(seed)
    X = torch.randn(n, w.numel(), generator=g, dtype=torch.float64)
    p = torch.sigmoid(X @ w + b)
    Y = torch.bernoulli(p, generator=g)
    return X, Y


def label_message(y) -> Beta:
    """
    The observed label as a message on p = sigmoid(z):
    p for a 1, (1-p) for a 0.
    """
    return Beta(2.0, 1.0) if float(y) > 0.5 else Beta(1.0, 2.0)


def ep_logistic(A, Y, ep_iter: int, op, prior_var=None, callback=None, verbose=False):
    """
    EP on the coefficient vector theta with design matrix A (n x D).
    Returns the posterior VectorGaussian on theta.

    Calls go through the operator with `key=i`, so operators that
    keep per-site buffers see a stable identity for each datum.
    A site update that would leave a non-positive cavity or a
    non-positive-definite posterior is skipped with a warning.
    """
    A = torch.as_tensor(A, dtype=torch.float64)
    n, D = A.shape
    Y = as_vec(Y)
    if Y.numel() != n:
        raise ValueError(f"{n} rows in X but {Y.numel()} labels")
    prior_var = torch.ones(D, dtype=torch.float64) if prior_var is None else as_vec(prior_var)

    # site natural parameters on z_i
    site_mtp = torch.zeros(n, dtype=torch.float64)
    site_prec = torch.zeros(n, dtype=torch.float64)
    cov = torch.diag(prior_var)
    shift = torch.zeros(D, dtype=torch.float64)
    mean = cov @ shift
    labels = [label_message(y) for y in Y.tolist()]

    for it in range(ep_iter):
        n_skipped = 0
        for i in range(n):
            a = A[i]
            s_a = cov @ a
            vz = torch.dot(a, s_a).item()
            mz = torch.dot(a, mean).item()
            cav_prec = 1.0 / vz - site_prec[i].item()
            cav_mtp = mz / vz - site_mtp[i].item()
            if cav_prec <= 0:
                warnings.warn(f"EP iter {it}, datum {i}: cavity precision {cav_prec:.3g} <= 0; skipping")
                n_skipped += 1
                continue
            cavity = Gaussian(cav_mtp, cav_prec)
            # message to the observed logistic is computed for the operator's benefit only
            op.logistic_average_conditional(labels[i], cavity, key=i)
            new_site = op.x_average_conditional(labels[i], cavity, key=i)
            if new_site.is_point_mass():
                warnings.warn(f"EP iter {it}, datum {i}: point mass site {new_site}; skipping")
                n_skipped += 1
                continue
            d_prec = new_site.precision - site_prec[i].item()
            d_mtp = new_site.mean_times_precision - site_mtp[i].item()
            denom = 1.0 + d_prec * vz
            if denom <= 0 or cav_prec + new_site.precision <= 0:
                warnings.warn(f"EP iter {it}, datum {i}: update would lose positive definiteness; skipping")
                n_skipped += 1
                continue
            cov = cov - torch.outer(s_a, s_a) * (d_prec / denom)
            cov = 0.5 * (cov + cov.T)
            shift = shift + d_mtp * a
            mean = cov @ shift
            site_prec[i] = new_site.precision
            site_mtp[i] = new_site.mean_times_precision
        if verbose:
            print(f"EP iter {it + 1}: skipped {n_skipped}, mean {mean.numpy()}")
        if callback is not None:
            callback(it, VectorGaussian(mean, cov))

    return VectorGaussian(mean, cov)


def infer_coefficients_no_bias(X, Y, ep_iter: int, op, **kwargs) -> VectorGaussian:
    return ep_logistic(X, Y, ep_iter, op, **kwargs)


def infer_coefficients(X, Y, ep_iter: int, op, **kwargs):
    """
    (posterior on w, posterior on the bias).
    """
    X = torch.as_tensor(X, dtype=torch.float64)
    A = torch.cat([X, torch.ones(X.shape[0], 1, dtype=torch.float64)], dim=1)
    post = ep_logistic(A, Y, ep_iter, op, **kwargs)
    d = X.shape[1]
    post_w = VectorGaussian(post.mean[:d], post.cov[:d, :d])
    return post_w, post.marginal(d)


def run_logistic_regression(seed=39, d=10, n=100, ep_iter=10, op=None, with_bias=True, verbose=True):
    """
    One synthetic problem end to end: w ~ N(0, I), b ~ N(0, 1) (or 0 without a bias).
    Returns (true w, true b, posterior on w, posterior on b or None).
    """
    if op is None:
        op = LogisticOp()
    g = make_generator(seed)
    w = torch.randn(d, generator=g, dtype=torch.float64)
    b = torch.randn(1, generator=g, dtype=torch.float64).item() if with_bias else 0.0
    X, Y = gen_data(n, w, b, generator=g)
    if verbose:
        print(f"Y: {Y.numpy().astype(int)}")
    if with_bias:
        post_w, post_b = infer_coefficients(X, Y, ep_iter, op)
    else:
        post_w, post_b = infer_coefficients_no_bias(X, Y, ep_iter, op), None
    if verbose:
        print(f"n: {n}")
        print(f"d: {d}")
        print(f"number of true: {int(Y.sum().item())}")
        print(f"True bias: {b}")
        print(f"Inferred bias: {post_b}")
        print(f"True w: {w.numpy()}")
        print(f"Inferred w: {post_w}")
    return w, b, post_w, post_b
