"""
Kernels on distributions.

Distributions enter only through `mean_vector()` and `cov_matrix()`,
so anything Gaussian-like (including Beta/Gamma messages, via their
first two moments) can be compared.
"""
import math
from typing import Sequence

import numpy as np
import torch


class Kernel:
    MATLAB_CLASS = None

    def eval(self, p, q) -> float:
        raise NotImplementedError

    def eval_gram(self, xs: Sequence, ys: Sequence) -> torch.Tensor:
        K = torch.zeros(len(xs), len(ys), dtype=torch.float64)
        for i, x in enumerate(xs):
            for j, y in enumerate(ys):
                K[i, j] = self.eval(x, y)
        return K

    def pair_eval(self, xs: Sequence, ys: Sequence) -> torch.Tensor:
        if len(xs) != len(ys):
            raise ValueError(f"pair_eval needs equal lengths, got {len(xs)} and {len(ys)}")
        return torch.tensor([self.eval(x, y) for x, y in zip(xs, ys)], dtype=torch.float64)

    def eval_against(self, x, ys: Sequence) -> torch.Tensor:
        return torch.tensor([self.eval(x, y) for y in ys], dtype=torch.float64)


def _check_widths(widths, what):
    widths = torch.as_tensor(widths, dtype=torch.float64).reshape(-1)
    if widths.numel() == 0 or not bool(torch.all(widths > 0)):
        raise ValueError(f"all {what} must be positive, got {widths.tolist()}")
    return widths


class KEGaussian(Kernel):
    """
    Expected product kernel: the inner product of the Gaussian-kernel
    mean embeddings of two distributions, in closed form for Gaussians.
    """
    MATLAB_CLASS = "KEGaussian"

    def __init__(self, gwidth2s):
        self.gwidth2s = torch.as_tensor(gwidth2s, dtype=torch.float64).reshape(-1)
        self.sigma = torch.diag(self.gwidth2s)
        self.det_sigma = torch.prod(self.gwidth2s).item()
        if self.det_sigma <= 1e-12:
            raise ValueError(f"determinant of Sigma is not proper. Found: {self.det_sigma}.")

    def eval(self, p, q) -> float:
        mp, mq = p.mean_vector(), q.mean_vector()
        covp, covq = p.cov_matrix(), q.cov_matrix()
        if mp.numel() != mq.numel():
            raise ValueError(f"dimension mismatch: {mp.numel()} vs {mq.numel()}")
        if mp.numel() != self.gwidth2s.numel():
            raise ValueError(
                f"expected {self.gwidth2s.numel()} dimensions, got {mp.numel()}")
        if mp.numel() == 1:
            w = self.gwidth2s[0].item()
            dpq = 1.0 / (covp[0, 0].item() + covq[0, 0].item() + w)
            diff = mp[0].item() - mq[0].item()
            return math.sqrt(dpq * w) * math.exp(-0.5 * diff * dpq * diff)
        dpq = torch.linalg.inv(covp + covq + self.sigma)
        diff = mp - mq
        dist2 = (diff @ dpq @ diff).item()
        z = math.sqrt(torch.linalg.det(dpq).item() * self.det_sigma)
        return z * math.exp(-0.5 * dist2)

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        return cls(_check_widths(s.get_1d_double_array("gwidth2s"), "width^2's"))

    def __repr__(self):
        return f"KEGaussian({self.gwidth2s.tolist()})"


class KGGaussian(Kernel):
    """
    Gaussian kernel on the mean embeddings,
    as in "Universal kernels on non-standard input spaces"
    by Christmann and Steinwart.
    """
    MATLAB_CLASS = "KGGaussian"

    def __init__(self, embed_width2s, width2):
        self.ke = KEGaussian(embed_width2s)
        self.width2 = float(width2)
        if self.width2 <= 0:
            raise ValueError("width2 must be > 0")

    def eval(self, p, q) -> float:
        dist2 = self.ke.eval(p, p) - 2 * self.ke.eval(p, q) + self.ke.eval(q, q)
        return math.exp(-0.5 * dist2 / self.width2)

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        embed = _check_widths(s.get_1d_double_array("embed_width2s"), "embedding width^2's")
        return cls(embed, s.get_double("width2"))

    def __repr__(self):
        return f"KGGaussian({self.ke.gwidth2s.tolist()}, {self.width2})"


class KDistProduct2(Kernel):
    """
    Product of two kernels on pairs (p1, p2), (q1, q2).
    """
    MATLAB_CLASS = "KProduct"

    def __init__(self, k1, k2):
        self.k1 = k1
        self.k2 = k2

    def eval(self, p, q) -> float:
        return self.k1.eval(p[0], q[0]) * self.k2.eval(p[1], q[1])

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        kers = s.get_struct_cells("kernels").reshape(-1)
        if len(kers) != 2:
            raise ValueError(f"KDistProduct2 needs 2 kernels, got {len(kers)}")
        return cls(kernel_from_matlab_struct(kers[0]), kernel_from_matlab_struct(kers[1]))


def median_pairwise(dists: Sequence, embed_width2s, positive_only=False) -> float:
    """
    Median of the squared distance between mean embeddings,
    over all pairs i <= j (the diagonal zeros included).
    With `positive_only`, zero distances are left out; nan if nothing is left.
    """
    ke = KEGaussian(embed_width2s)
    self_kers = [ke.eval(d, d) for d in dists]
    pair_dists = []
    for i, p in enumerate(dists):
        for j in range(i, len(dists)):
            pair_dists.append(self_kers[i] - 2 * ke.eval(p, dists[j]) + self_kers[j])
    if positive_only:
        pair_dists = [d for d in pair_dists if d > 0]
        if not pair_dists:
            return math.nan
    return float(np.median(pair_dists))


def _check_class(s, cls):
    class_name = s.get_string("className")
    if class_name != cls.MATLAB_CLASS:
        raise ValueError(f"The input does not represent a {cls.__name__}: {class_name}")


KERNELS = {k.MATLAB_CLASS: k for k in (KEGaussian, KGGaussian, KDistProduct2)}


def kernel_from_matlab_struct(s):
    class_name = s.get_string("className")
    if class_name not in KERNELS:
        raise ValueError(f"Unknown kernel class: {class_name}")
    return KERNELS[class_name].from_matlab_struct(s)
