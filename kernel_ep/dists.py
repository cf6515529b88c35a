"""
Message distributions.

Univariate messages keep their natural parameters so that products,
ratios and powers are just arithmetic on them.
Every distribution also has a `mean_vector`/`cov_matrix` view,
which is what the kernels and random features consume.
"""
import math
from typing import Optional, Sequence

import numpy as np
import torch
from scipy.special import betaln, gammaln

from ._base import ImproperMessageError

LOG_2PI = math.log(2 * math.pi)


class Gaussian:
    """
    Univariate Gaussian in natural parameters
    (mean times precision, precision).
    A point mass has infinite precision and remembers its location.
    """
    def __init__(self, mean_times_precision: float = 0.0, precision: float = 0.0, point: Optional[float] = None):
        self.mean_times_precision = float(mean_times_precision)
        self.precision = float(precision)
        self.point = None if point is None else float(point)

    @classmethod
    def from_mean_and_variance(cls, mean, variance) -> "Gaussian":
        mean = float(mean)
        variance = float(variance)
        if variance == 0.0:
            return cls.point_mass(mean)
        if math.isinf(variance):
            return cls.uniform()
        return cls(mean / variance, 1.0 / variance)

    @classmethod
    def from_mean_and_precision(cls, mean, precision) -> "Gaussian":
        return cls(float(mean) * float(precision), precision)

    @classmethod
    def from_natural(cls, mean_times_precision, precision) -> "Gaussian":
        return cls(mean_times_precision, precision)

    @classmethod
    def uniform(cls) -> "Gaussian":
        return cls(0.0, 0.0)

    @classmethod
    def point_mass(cls, x) -> "Gaussian":
        return cls(0.0, math.inf, point=x)

    def is_point_mass(self) -> bool:
        return self.point is not None

    def is_uniform(self) -> bool:
        return self.point is None and self.precision == 0.0 and self.mean_times_precision == 0.0

    def is_proper(self) -> bool:
        return self.is_point_mass() or self.precision > 0.0

    def mean(self) -> float:
        if self.is_point_mass():
            return self.point
        if self.precision == 0.0:
            return 0.0
        return self.mean_times_precision / self.precision

    def variance(self) -> float:
        if self.is_point_mass():
            return 0.0
        if self.precision == 0.0:
            return math.inf
        return 1.0 / self.precision

    def mean_and_variance(self):
        return self.mean(), self.variance()

    def get_log_normalizer(self) -> float:
        """
        log of the integral of exp(x*mtp - x^2*prec/2); zero for uniform.
        """
        if self.is_uniform():
            return 0.0
        if not self.precision > 0:
            raise ImproperMessageError(f"{self} has no normalizer")
        return 0.5 * (LOG_2PI - math.log(self.precision)) + 0.5 * self.mean_times_precision ** 2 / self.precision

    def log_prob(self, x) -> float:
        if self.is_point_mass():
            return 0.0 if x == self.point else -math.inf
        if self.is_uniform():
            return 0.0
        if not self.is_proper():
            raise ImproperMessageError(f"cannot evaluate density of {self}")
        m, v = self.mean_and_variance()
        return -0.5 * (LOG_2PI + math.log(v) + (x - m) ** 2 / v)

    def sample(self, generator: Optional[torch.Generator] = None) -> float:
        if self.is_point_mass():
            return self.point
        if not self.is_proper():
            raise ImproperMessageError(f"cannot sample from {self}")
        z = torch.randn(1, generator=generator, dtype=torch.float64).item()
        return self.mean() + math.sqrt(self.variance()) * z

    def __mul__(self, other: "Gaussian") -> "Gaussian":
        if self.is_point_mass():
            return self
        if other.is_point_mass():
            return other
        return Gaussian(
            self.mean_times_precision + other.mean_times_precision,
            self.precision + other.precision)

    def __truediv__(self, other: "Gaussian") -> "Gaussian":
        return self.ratio(other)

    def __pow__(self, power: float) -> "Gaussian":
        if self.is_point_mass():
            if power == 0:
                return Gaussian.uniform()
            return self
        return Gaussian(power * self.mean_times_precision, power * self.precision)

    def ratio(self, denominator: "Gaussian", force_proper: bool = False) -> "Gaussian":
        """
        self / denominator.
        With `force_proper`, a non-positive precision is replaced by zero
        and the location chosen so that `result * denominator` keeps
        the mean of `self`.
        """
        if self.is_point_mass():
            return self
        if denominator.is_point_mass():
            raise ImproperMessageError("cannot divide by a point mass")
        prec = self.precision - denominator.precision
        mtp = self.mean_times_precision - denominator.mean_times_precision
        if force_proper and prec <= 0.0:
            prec = 0.0
            mtp = denominator.precision * self.mean() - denominator.mean_times_precision
        return Gaussian(mtp, prec)

    def log_average_of_power(self, other: "Gaussian", power: float) -> float:
        """
        log of the integral of self(x) * other(x)**power,
        both normalised; uniform densities count as 1.
        """
        if self.is_point_mass():
            return power * other.log_prob(self.point)
        if other.is_point_mass():
            if power == 0:
                return 0.0
            return self.log_prob(other.point)
        combined = self * other ** power
        if not (combined.is_uniform() or combined.precision > 0):
            return math.inf
        return (
            combined.get_log_normalizer()
            - self.get_log_normalizer()
            - power * other.get_log_normalizer())

    def max_diff(self, other: "Gaussian") -> float:
        return max(
            abs(self.mean_times_precision - other.mean_times_precision),
            abs(self.precision - other.precision))

    def mean_vector(self) -> torch.Tensor:
        return torch.tensor([self.mean()], dtype=torch.float64)

    def cov_matrix(self) -> torch.Tensor:
        return torch.tensor([[self.variance()]], dtype=torch.float64)

    def dim(self) -> int:
        return 1

    def __repr__(self):
        if self.is_point_mass():
            return f"Gaussian.point_mass({self.point:.6g})"
        return f"Gaussian({self.mean():.6g}, {self.variance():.6g})"


class Beta:
    """
    Beta(true_count, false_count); a point mass remembers its location.
    """
    def __init__(self, true_count: float = 1.0, false_count: float = 1.0, point: Optional[float] = None):
        self.true_count = float(true_count)
        self.false_count = float(false_count)
        self.point = None if point is None else float(point)

    @classmethod
    def uniform(cls) -> "Beta":
        return cls(1.0, 1.0)

    @classmethod
    def point_mass(cls, p) -> "Beta":
        return cls(math.inf, math.inf, point=p)

    @classmethod
    def from_mean_and_variance(cls, mean, variance) -> "Beta":
        mean = float(mean)
        variance = float(variance)
        if not 0.0 <= mean <= 1.0:
            raise ValueError(f"Beta mean must lie in [0, 1], got {mean}")
        if variance == 0.0:
            return cls.point_mass(mean)
        if variance < 0.0 or variance > mean * (1 - mean):
            raise ValueError(f"variance {variance} impossible for a Beta with mean {mean}")
        total = mean * (1 - mean) / variance - 1
        return cls(mean * total, (1 - mean) * total)

    def is_point_mass(self) -> bool:
        return self.point is not None

    def is_uniform(self) -> bool:
        return self.point is None and self.true_count == 1.0 and self.false_count == 1.0

    def is_proper(self) -> bool:
        return self.is_point_mass() or (self.true_count > 0 and self.false_count > 0)

    def mean(self) -> float:
        if self.is_point_mass():
            return self.point
        return self.true_count / (self.true_count + self.false_count)

    def variance(self) -> float:
        if self.is_point_mass():
            return 0.0
        a, b = self.true_count, self.false_count
        s = a + b
        return a * b / (s * s * (s + 1))

    def mean_and_variance(self):
        return self.mean(), self.variance()

    def get_log_normalizer(self) -> float:
        if not self.is_proper() or self.is_point_mass():
            raise ImproperMessageError(f"{self} has no normalizer")
        return float(betaln(self.true_count, self.false_count))

    def log_prob(self, x) -> float:
        if self.is_point_mass():
            return 0.0 if x == self.point else -math.inf
        a, b = self.true_count, self.false_count
        return (a - 1) * math.log(x) + (b - 1) * math.log1p(-x) - self.get_log_normalizer()

    def __mul__(self, other: "Beta") -> "Beta":
        if self.is_point_mass():
            return self
        if other.is_point_mass():
            return other
        return Beta(
            self.true_count + other.true_count - 1,
            self.false_count + other.false_count - 1)

    def __truediv__(self, other: "Beta") -> "Beta":
        return self.ratio(other)

    def ratio(self, denominator: "Beta", force_proper: bool = False) -> "Beta":
        if self.is_point_mass():
            return self
        if denominator.is_point_mass():
            raise ImproperMessageError("cannot divide by a point mass")
        a = self.true_count - denominator.true_count + 1
        b = self.false_count - denominator.false_count + 1
        if force_proper:
            a = max(a, 1.0)
            b = max(b, 1.0)
        return Beta(a, b)

    def max_diff(self, other: "Beta") -> float:
        return max(
            abs(self.true_count - other.true_count),
            abs(self.false_count - other.false_count))

    def mean_vector(self) -> torch.Tensor:
        return torch.tensor([self.mean()], dtype=torch.float64)

    def cov_matrix(self) -> torch.Tensor:
        return torch.tensor([[self.variance()]], dtype=torch.float64)

    def dim(self) -> int:
        return 1

    def __repr__(self):
        if self.is_point_mass():
            return f"Beta.point_mass({self.point:.6g})"
        return f"Beta({self.true_count:.6g}, {self.false_count:.6g})"


class Gamma:
    """
    Gamma(shape, rate), so the mean is shape/rate.
    """
    def __init__(self, shape: float = 1.0, rate: float = 0.0):
        self.shape = float(shape)
        self.rate = float(rate)

    @classmethod
    def from_shape_and_rate(cls, shape, rate) -> "Gamma":
        return cls(shape, rate)

    @classmethod
    def from_mean_and_variance(cls, mean, variance) -> "Gamma":
        mean = float(mean)
        variance = float(variance)
        if mean <= 0 or variance <= 0:
            raise ValueError(f"Gamma needs positive mean and variance, got {mean}, {variance}")
        return cls(mean * mean / variance, mean / variance)

    @classmethod
    def uniform(cls) -> "Gamma":
        return cls(1.0, 0.0)

    def is_uniform(self) -> bool:
        return self.shape == 1.0 and self.rate == 0.0

    def is_proper(self) -> bool:
        return self.shape > 0 and self.rate > 0

    def mean(self) -> float:
        if self.rate == 0.0:
            return math.inf
        return self.shape / self.rate

    def variance(self) -> float:
        if self.rate == 0.0:
            return math.inf
        return self.shape / self.rate ** 2

    def get_log_normalizer(self) -> float:
        if not self.is_proper():
            raise ImproperMessageError(f"{self} has no normalizer")
        return float(gammaln(self.shape)) - self.shape * math.log(self.rate)

    def log_prob(self, x) -> float:
        return (self.shape - 1) * math.log(x) - self.rate * x - self.get_log_normalizer()

    def __mul__(self, other: "Gamma") -> "Gamma":
        return Gamma(self.shape + other.shape - 1, self.rate + other.rate)

    def __truediv__(self, other: "Gamma") -> "Gamma":
        return self.ratio(other)

    def ratio(self, denominator: "Gamma", force_proper: bool = False) -> "Gamma":
        shape = self.shape - denominator.shape + 1
        rate = self.rate - denominator.rate
        if force_proper and (shape <= 0 or rate <= 0):
            shape = max(shape, 1.0)
            rate = max(rate, 0.0)
            if rate == 0.0:
                shape = 1.0
        return Gamma(shape, rate)

    def max_diff(self, other: "Gamma") -> float:
        return max(abs(self.shape - other.shape), abs(self.rate - other.rate))

    def mean_vector(self) -> torch.Tensor:
        return torch.tensor([self.mean()], dtype=torch.float64)

    def cov_matrix(self) -> torch.Tensor:
        return torch.tensor([[self.variance()]], dtype=torch.float64)

    def dim(self) -> int:
        return 1

    def __repr__(self):
        return f"Gamma(shape={self.shape:.6g}, rate={self.rate:.6g})"


class VectorGaussian:
    """
    Multivariate Gaussian in moment form.
    """
    def __init__(self, mean, cov):
        self.mean = torch.as_tensor(mean, dtype=torch.float64).reshape(-1)
        self.cov = torch.as_tensor(cov, dtype=torch.float64).reshape(self.mean.numel(), self.mean.numel())

    @classmethod
    def from_blocks(cls, dists: Sequence) -> "VectorGaussian":
        """
        Joint Gaussian of independent pieces, block-diagonal covariance.
        """
        if len(dists) == 0:
            raise ValueError("need at least one distribution to stack")
        means = [d.mean_vector() for d in dists]
        covs = [d.cov_matrix() for d in dists]
        return cls(torch.cat(means), torch.block_diag(*covs))

    def dim(self) -> int:
        return self.mean.numel()

    def mean_vector(self) -> torch.Tensor:
        return self.mean

    def cov_matrix(self) -> torch.Tensor:
        return self.cov

    def variance_diag(self) -> torch.Tensor:
        return torch.diagonal(self.cov)

    def marginal(self, i) -> Gaussian:
        return Gaussian.from_mean_and_variance(self.mean[i].item(), self.cov[i, i].item())

    def __repr__(self):
        return f"VectorGaussian(mean={np.array2string(self.mean.numpy(), precision=4)})"
