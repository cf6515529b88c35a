"""
Compound gamma factor:
precision ~ Gamma(shape2, r2), r2 ~ Gamma(shape1, rate1), with r2 integrated out.
"""
import warnings
from dataclasses import dataclass

import numpy as np
from scipy.special import logsumexp

from .._base import DEFAULT_BATCH_TRIGGER, ImproperMessageError
from ..builders import DGammaLogBuilder
from ..dists import Gamma
from ..math_helpers import laguerre_rule
from ..online import OnlineDistMapper
from ..records import CGOpRecords
from ..utils import Stopwatch, make_generator

N_LAGUERRE = 100


@dataclass
class CGParams:
    shape1: float = 1.0
    rate1: float = 1.0
    shape2: float = 1.0


def compound_gamma_message(precision: Gamma, shape1, rate1, shape2, n=N_LAGUERRE) -> Gamma:
    """
    EP message to `precision` given its incoming message.

    Integrating precision out of the tilted distribution leaves a weight on r2
    proportional to r2^(shape1+shape2-1) exp(-rate1 r2) (b + r2)^-(a+shape2-1)
    for an incoming Gamma(a, b), and given r2 the precision is
    Gamma(a+shape2-1, b+r2). Generalised Gauss-Laguerre in u = rate1*r2
    handles the outer integral.
    """
    a, b = precision.shape, precision.rate
    c = a + shape2 - 1
    if not b > 0 or not c > 0:
        raise ImproperMessageError(f"compound gamma message needs a proper incoming message, got {precision}")
    u, w = laguerre_rule(n, shape1 + shape2 - 1)
    keep = w > 0
    u, w = u[keep], w[keep]
    r2 = u / rate1
    log_w = np.log(w) - c * np.log(b + r2)
    p = np.exp(log_w - logsumexp(log_w))
    rate = b + r2
    m1 = float(np.dot(p, c / rate))
    m2 = float(np.dot(p, c * (c + 1) / rate ** 2))
    post = Gamma.from_mean_and_variance(m1, m2 - m1 * m1)
    return post.ratio(precision, force_proper=True)


class CGFacOp:
    """
    Exact (quadrature) operator with fixed parameters.
    """
    def __init__(self, params=None, verbose=False):
        self.params = params if params is not None else CGParams()
        self.verbose = verbose

    def precision_average_conditional(self, precision: Gamma) -> Gamma:
        p = self.params
        out = compound_gamma_message(precision, p.shape1, p.rate1, p.shape2)
        if self.verbose:
            print(f"CGFacOp: precision {precision} -> {out}")
        return out


class CGFac4Op:
    """
    The same message with the parameters passed per call.
    """
    @staticmethod
    def precision_average_conditional(precision: Gamma, s1, r1, s2) -> Gamma:
        return compound_gamma_message(precision, s1, r1, s2)


class KEPCGFacOp:
    """
    Just-in-time operator for the compound gamma factor.
    Learns the outgoing message itself ([log shape, log rate]) and asks
    `oracle` whenever either output is uncertain.
    The stopwatch only runs inside this operator and its oracle.
    """
    def __init__(
            self,
            online_batch_size_trigger=DEFAULT_BATCH_TRIGGER,
            record=None,
            stopwatch=None,
            threshold=None,
            oracle=None,
            record_messages=True,
            print_true_when_certain=False,
            seed=None,
            verbose=False,
            **learner_kwargs):
        self.to_precision_map = OnlineDistMapper.with_learners(
            DGammaLogBuilder(), generator=make_generator(seed),
            online_batch_size_trigger=online_batch_size_trigger, **learner_kwargs)
        if threshold is not None:
            self.to_precision_map.set_threshold(threshold)
        self.record = record if record is not None else CGOpRecords()
        self.stopwatch = stopwatch if stopwatch is not None else Stopwatch()
        self.oracle = oracle if oracle is not None else CGFacOp()
        self.record_messages = record_messages
        self.print_true_when_certain = print_true_when_certain
        self.verbose = verbose

    def precision_average_conditional(self, precision: Gamma) -> Gamma:
        mapper = self.to_precision_map
        msgs = (precision,)
        self.stopwatch.start()
        online_ready = mapper.is_online_ready()
        features, uncertainty, uncertain = None, None, True
        if online_ready:
            features = mapper.gen_all_random_features(*msgs)
            uncertainty = mapper.estimate_uncertainty(features=features)
            uncertain = mapper.is_uncertain(features=features)

        if uncertain:
            predicted = None
            if self.record_messages and online_ready:
                predicted = mapper.map_to_dist(features=features)
            oracle_out = self.oracle.precision_average_conditional(precision)
            if oracle_out.is_proper():
                mapper.update_operator(oracle_out, msgs, features=features)
            else:
                warnings.warn(f"oracle message {oracle_out} is improper; not learning from it")
            self.stopwatch.stop()
            if self.record_messages:
                self.record.record(precision, predicted, True, uncertainty, oracle_out)
            return oracle_out

        predicted = mapper.map_to_dist(features=features)
        self.stopwatch.stop()
        if self.verbose:
            print(f"KEPCGFacOp certain with log predictive variance {uncertainty}")
            print(f"  predicted outgoing: {predicted}")
        oracle_out = None
        if self.print_true_when_certain or self.record_messages:
            oracle_out = self.oracle.precision_average_conditional(precision)
            if self.print_true_when_certain:
                print(f"  oracle outgoing: {oracle_out}")
        if self.record_messages:
            self.record.record(precision, predicted, False, uncertainty, oracle_out)
        return predicted

    def consult_rate(self):
        return self.record.consult_rate()

