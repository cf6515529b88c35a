"""
Shared plumbing for message operators.
"""
import warnings

from .._base import BROAD_GAUSSIAN_VAR
from ..dists import Beta, Gaussian
from ..utils import Stopwatch


class OpControl:
    """
    Named operator instances, so that an EP loop can look up the
    operator it should call by name.
    """
    def __init__(self):
        self._ops = {}

    def add(self, name, op):
        if op is None:
            raise ValueError(f"operator instance for {name!r} cannot be None")
        if name in self._ops:
            raise ValueError(f"operator {name!r} is already registered; use set()")
        self._ops[name] = op

    def set(self, name, op):
        if op is None:
            raise ValueError(f"operator instance for {name!r} cannot be None")
        self._ops[name] = op

    def get(self, name):
        if name not in self._ops:
            raise ValueError(f"no operator registered under {name!r}")
        return self._ops[name]

    def remove(self, name):
        self._ops.pop(name, None)

    def __contains__(self, name):
        return name in self._ops

    def names(self):
        return list(self._ops)


# process-wide default registry
op_control = OpControl()


class LogisticOpInstance:
    """
    Interface of every operator on the logistic factor p = sigmoid(x).
    Subclasses implement the two message directions.
    `key` identifies the factor instance for operators that keep per-site state.
    """
    def __init__(self, stopwatch=None, verbose=False):
        self.stopwatch = stopwatch if stopwatch is not None else Stopwatch()
        self.verbose = verbose

    def x_average_conditional(self, logistic: Beta, x: Gaussian, key=None) -> Gaussian:
        raise NotImplementedError

    def logistic_average_conditional(self, logistic: Beta, x: Gaussian, key=None) -> Beta:
        raise NotImplementedError

    @staticmethod
    def initial_to_x():
        return Gaussian.from_mean_and_variance(0.0, BROAD_GAUSSIAN_VAR)

    @staticmethod
    def initial_to_logistic():
        return Beta.uniform()

    def get_stopwatch(self):
        return self.stopwatch

    def __repr__(self):
        return f"{type(self).__name__}()"


def improper_fallback(out, fallback, what):
    """
    `out` if it is proper, otherwise warn and hand back `fallback`.
    """
    if out.is_proper():
        return out
    warnings.warn(f"oracle returned improper message {out} to {what}; using {fallback}")
    return fallback


def near_point_mass(dist):
    """
    A proper stand-in for a point-mass message.
    """
    if isinstance(dist, Beta):
        m = min(max(dist.mean(), 1e-5), 1 - 1e-5)
        v = m * (1 - m)
        return Beta.from_mean_and_variance(m, max(v - 1e-5, 0.5 * v))
    return Gaussian.from_mean_and_variance(dist.mean(), 1e-3)
