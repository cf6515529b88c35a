"""
Kernel EP: expectation propagation where some factor messages come from a
learned map instead of an integral.

There are several pieces of note:

1. `dists` are the messages: univariate Gaussian, Beta and Gamma, and a
   multivariate Gaussian in moment form.
2. `kernels` and `features` embed incoming messages, exactly or with
   random Fourier features.
3. `mappers` are operators trained offline; `online` learns them as EP runs,
   asking an expensive oracle only when its predictive variance is too high.
4. `ops` holds the factor operators themselves, `models` the toy problems
   with hand-written EP schedules, and `tasks` the experiments that run them
   over many seeds and write .mat records.
"""
from ._base import ImproperMessageError, NotReadyError
from .dists import Beta, Gamma, Gaussian, VectorGaussian
