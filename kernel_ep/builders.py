"""
Builders translate between a distribution and a 2-vector of statistics,
which is what the regression mappers learn to predict.
"""
import math

import torch

from ._base import ImproperMessageError, _check_len
from .dists import Beta, Gamma, Gaussian


class DistBuilder:
    MATLAB_CLASS = None

    def from_stat(self, stat):
        raise NotImplementedError

    def get_stat(self, dist) -> torch.Tensor:
        raise NotImplementedError

    @classmethod
    def from_matlab_struct(cls, s):
        class_name = s.get_string("className")
        if class_name != cls.MATLAB_CLASS:
            raise ValueError(f"The input does not represent a {cls.__name__}: {class_name}")
        return cls()

    def _stat(self, stat, what):
        stat = torch.as_tensor(stat, dtype=torch.float64).reshape(-1)
        _check_len(stat, 2, what)
        return stat[0].item(), stat[1].item()

    def __repr__(self):
        return f"{type(self).__name__}()"


class DNormalBuilder(DistBuilder):
    """[mean, E[x^2]]"""
    MATLAB_CLASS = "DistNormalBuilder"

    def from_stat(self, stat) -> Gaussian:
        mean, m2 = self._stat(stat, "[mean, second moment]")
        variance = m2 - mean * mean
        if variance < 0:
            raise ImproperMessageError(f"second moment {m2} is below mean^2 = {mean * mean}")
        return Gaussian.from_mean_and_variance(mean, variance)

    def get_stat(self, dist) -> torch.Tensor:
        mean = dist.mean()
        return torch.tensor([mean, dist.variance() + mean * mean], dtype=torch.float64)


class DNormalLogVarBuilder(DistBuilder):
    """[mean, log variance]"""
    MATLAB_CLASS = "DNormalLogVarBuilder"

    def from_stat(self, stat) -> Gaussian:
        mean, log_var = self._stat(stat, "[mean, log variance]")
        return Gaussian.from_mean_and_variance(mean, math.exp(log_var))

    def get_stat(self, dist) -> torch.Tensor:
        return torch.tensor([dist.mean(), math.log(dist.variance())], dtype=torch.float64)


class DBetaBuilder(DistBuilder):
    """
    [mean, E[x^2]].
    Predicted statistics are often infeasible, so the mean is clamped
    away from 0 and 1 and an impossible variance is replaced by 90% of
    the largest one the mean allows.
    """
    MATLAB_CLASS = "DistBetaBuilder"
    EPS = 1e-3

    def from_stat(self, stat) -> Beta:
        mean, m2 = self._stat(stat, "[mean, second moment]")
        mean = min(max(mean, self.EPS), 1 - self.EPS)
        variance = m2 - mean * mean
        if variance < 0 or variance >= mean * (1 - mean):
            variance = 0.9 * mean * (1 - mean)
        return Beta.from_mean_and_variance(mean, variance)

    def get_stat(self, dist) -> torch.Tensor:
        mean = dist.mean()
        return torch.tensor([mean, dist.variance() + mean * mean], dtype=torch.float64)


class DBetaLogBuilder(DistBuilder):
    """[log alpha, log beta]"""
    MATLAB_CLASS = "DBetaLogBuilder"

    def from_stat(self, stat) -> Beta:
        la, lb = self._stat(stat, "[log alpha, log beta]")
        return Beta(math.exp(la), math.exp(lb))

    def get_stat(self, dist) -> torch.Tensor:
        return torch.tensor([math.log(dist.true_count), math.log(dist.false_count)], dtype=torch.float64)


class DGammaLogBuilder(DistBuilder):
    """[log shape, log rate]"""
    MATLAB_CLASS = "DGammaLogBuilder"

    def from_stat(self, stat) -> Gamma:
        ls, lr = self._stat(stat, "[log shape, log rate]")
        return Gamma(math.exp(ls), math.exp(lr))

    def get_stat(self, dist) -> torch.Tensor:
        return torch.tensor([math.log(dist.shape), math.log(dist.rate)], dtype=torch.float64)


BUILDERS = {
    b.MATLAB_CLASS: b for b in (
        DNormalBuilder, DNormalLogVarBuilder, DBetaBuilder,
        DBetaLogBuilder, DGammaLogBuilder)
}


def builder_from_matlab_struct(s):
    class_name = s.get_string("className")
    if class_name not in BUILDERS:
        raise ValueError(f"Unknown distribution builder: {class_name}")
    return BUILDERS[class_name].from_matlab_struct(s)
