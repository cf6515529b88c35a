import time

import numpy as np
import torch


def as_vec(v):
    """
    float64 1d tensor from whatever we were handed
    """
    return torch.as_tensor(np.asarray(v, dtype=np.float64)).reshape(-1)


def make_generator(seed=None):
    g = torch.Generator()
    if seed is None:
        g.seed()
    else:
        g.manual_seed(int(seed))
    return g


class Stopwatch:
    """
    Accumulating timer; only counts time between `start` and `stop`.
    """
    def __init__(self):
        self.elapsed = 0.0
        self._t0 = None

    def start(self):
        self._t0 = time.perf_counter()

    def stop(self):
        if self._t0 is not None:
            self.elapsed += time.perf_counter() - self._t0
            self._t0 = None
        return self.elapsed

    def reset(self):
        self.elapsed = 0.0
        self._t0 = None

    @property
    def running(self):
        return self._t0 is not None
