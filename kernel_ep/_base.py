class ImproperMessageError(ValueError):
    """
    An operation that needs a proper distribution got an improper one.
    """
    pass


class NotReadyError(RuntimeError):
    """
    An online mapper was asked to predict before its minibatch was fitted.
    """
    pass


# Broad Gaussian returned in place of an improper message to x
BROAD_GAUSSIAN_VAR = 1e5
# default uncertainty threshold on the log predictive variance
DEFAULT_THRESHOLD = -8.5
DEFAULT_BATCH_TRIGGER = 20


def _check_len(v, n, what):
    if len(v) != n:
        raise ValueError(f"{what}: expected length {n}, got {len(v)}")
