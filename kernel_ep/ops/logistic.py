"""
Message operators for the logistic factor p = sigmoid(x),
with a Beta message on p and a Gaussian message on x.

`LogisticOp` is the deterministic operator (Minka's stabilised EP update,
with a `falseMsg` buffer per factor instance approximating sigmoid(-x)).
The importance samplers are the oracles the online operator learns from;
they compute *proj* messages, and the outgoing message is proj/cavity.
"""
import math
import os
import warnings

import numpy as np
import torch
import torch.nn.functional as F
from scipy.special import digamma, expit, gammaln, log_expit, logit

from .. import config
from .._base import BROAD_GAUSSIAN_VAR, ImproperMessageError
from ..builders import DBetaLogBuilder, DNormalLogVarBuilder
from ..dists import LOG_2PI, Beta, Gaussian
from ..mappers import LogisticOpParams
from ..math_helpers import logistic_gaussian, logistic_gaussian_moments, tilted_moments
from ..online import OnlineDistMapper
from ..utils import make_generator
from ._base import LogisticOpInstance, improper_fallback, near_point_mass


def _is_observed_label(logistic):
    return (
        (logistic.true_count == 2 and logistic.false_count == 1)
        or (logistic.true_count == 1 and logistic.false_count == 2))


def false_log_odds_message(prior: Gaussian) -> Gaussian:
    """
    proj[prior(x) sigmoid(-x)] / prior(x),
    the EP message from an observed `False` Bernoulli on log odds x.
    """
    if not prior.precision > 0:
        raise ImproperMessageError(f"need a proper prior, got {prior}")
    m, v = prior.mean_and_variance()
    _, mp, vp = tilted_moments(lambda t: log_expit(-t), m, v)
    return Gaussian.from_mean_and_variance(mp, vp) / prior


def beta_from_mean_and_integral(mean, log_z, a, b, max_iter=20, tol=1e-8):
    """
    Beta(af, bf) with
    int Beta(p; af, bf) p^a (1-p)^b dp = exp(log_z)
    and weighted mean `mean`.
    The mean fixes bf given af; af solves the integral equation by a
    generalised Newton method that fits s*log((af-af0)/(af+x)) + c.
    """
    if math.isnan(mean):
        raise ValueError("mean is NaN")
    if mean <= 0:
        raise ValueError(f"mean <= 0: {mean}")
    if mean >= 1:
        raise ValueError(f"mean >= 1: {mean}")
    bx = -(mean * (a + b) - a) / (1 - mean)
    # smallest af keeping af and bf non-negative
    af0 = max(0.0, -bx)
    x = max(0.0, bx)
    af = af0 + 1
    inv_mean = 1 / mean
    bf = (af + a) * inv_mean - (af + a + b)
    for _ in range(max_iter):
        old_af = af
        f = (
            gammaln(af + bf) - gammaln(af + bf + a + b)
            + gammaln(af + a) - gammaln(af)
            + gammaln(bf + b) - gammaln(bf))
        g = (
            (digamma(af + bf) - digamma(af + bf + a + b)) * inv_mean
            + digamma(af + a) - digamma(af)
            + (digamma(bf + b) - digamma(bf)) * (inv_mean - 1))
        s = g / (1 / (af - af0) - 1 / (af + x))
        c = f - s * math.log((af - af0) / (af + x))
        increasing = x > -af0
        if (not increasing and c >= log_z) or (increasing and c <= log_z):
            # the log fit is no good here; plain Newton
            af += (log_z - f) / g
        else:
            af = af0 + (x + af0) / math.expm1((c - log_z) / s)
            if af == af0:
                raise ValueError(f"log_z is out of range: {log_z}")
        if math.isnan(af):
            raise ValueError("af is NaN")
        bf = (af + a) / mean - (af + a + b)
        if abs(af - old_af) < tol:
            break
    return Beta(float(af), float(bf))


class LogisticOp(LogisticOpInstance):
    """
    Deterministic EP operator.

    The factor is sigma(x)^(a-1) sigma(-x)^(b-1) = e^((a-1)x) sigma(-x)^(a+b-2),
    so only sigma(-x) needs approximating; that approximation is the
    `falseMsg` buffer, refreshed by power EP on every message to x.
    With `collect_x`/`collect_logistic` the operator keeps
    (message, x, logistic) triples for training offline mappers;
    with `collect_proj` the stored message is the importance-sampled proj
    instead of the outgoing one.
    """
    def __init__(
            self,
            collect_x=False,
            collect_logistic=False,
            collect_proj=True,
            is_op=None,
            stopwatch=None,
            verbose=False):
        super().__init__(stopwatch=stopwatch, verbose=verbose)
        self.collect_x = collect_x
        self.collect_logistic = collect_logistic
        self.collect_proj = collect_proj
        self._is_op = is_op
        self.false_msgs = {}
        self.reset_message_collection()

    @property
    def is_op(self):
        if self._is_op is None:
            self._is_op = ISGaussianLogisticOp()
        return self._is_op

    def reset_message_collection(self):
        self.to_x_messages = []
        self.to_logistic_messages = []

    def reset_buffers(self):
        self.false_msgs = {}

    def get_false_msg(self, key=None) -> Gaussian:
        return self.false_msgs.get(key, Gaussian.uniform())

    def update_false_msg(self, logistic: Beta, x: Gaussian, key=None) -> Gaussian:
        false_msg = self.get_false_msg(key)
        if logistic.is_uniform():
            return false_msg
        if not x.is_proper() or x.is_point_mass():
            raise ImproperMessageError(f"x must be a proper Gaussian, got {x}")
        new_msg = self.false_msg(logistic, x, false_msg)
        self.false_msgs[key] = new_msg
        return new_msg

    @staticmethod
    def false_msg(logistic: Beta, x: Gaussian, false_msg: Gaussian) -> Gaussian:
        """
        One power EP update of the sigmoid(-x) approximation.
        """
        tc1 = logistic.true_count - 1
        fc1 = logistic.false_count - 1
        m, v = x.mean_and_variance()
        if tc1 + fc1 == 0:
            return Gaussian.uniform()
        if tc1 + fc1 < 0:
            # 1/sigma(-x) as the factor; moments are exact
            prior = Gaussian.from_mean_and_variance(m + tc1 * v, v) * false_msg ** (tc1 + fc1 + 1)
            mp, vp = prior.mean_and_variance()
            w = float(expit(mp + 0.5 * vp))
            post = Gaussian.from_mean_and_variance(mp + w * vp, vp * (1 + w * (1 - w) * vp))
            return prior / post
        prior = Gaussian.from_mean_and_variance(m + tc1 * v, v) * false_msg ** (tc1 + fc1 - 1)
        new_msg = false_log_odds_message(prior)
        # adaptive damping: never let the update flip the sign of the prior mean.
        # With tc1+fc1 == 1 the prior does not depend on falseMsg, so there is nothing to damp.
        ratio = new_msg / false_msg
        if tc1 + fc1 != 1 and ratio.mean_times_precision * prior.mean_times_precision < 0:
            step = -prior.mean_times_precision / (ratio.mean_times_precision * (tc1 + fc1 - 1))
            if 0 < step < 1:
                new_msg = false_msg * ratio ** step
        return new_msg

    def x_average_conditional(self, logistic: Beta, x: Gaussian, key=None) -> Gaussian:
        self.stopwatch.start()
        try:
            if logistic.is_point_mass():
                return Gaussian.point_mass(float(logit(logistic.point)))
            false_msg = self.update_false_msg(logistic, x, key)
            if false_msg.is_point_mass():
                raise ImproperMessageError("falseMsg is a point mass")
            tc1 = logistic.true_count - 1
            fc1 = logistic.false_count - 1
            to_x = Gaussian.from_natural(
                (tc1 + fc1) * false_msg.mean_times_precision + tc1,
                (tc1 + fc1) * false_msg.precision)
        finally:
            self.stopwatch.stop()
        if self.verbose:
            print(f"LogisticOp to x: logistic={logistic}, x={x} -> {to_x}")
        if self.collect_x:
            msg = self.is_op.proj_to_x(logistic, x) if self.collect_proj else to_x
            self.to_x_messages.append((msg, x, logistic))
        return to_x

    def logistic_average_conditional(self, logistic: Beta, x: Gaussian, key=None) -> Beta:
        self.stopwatch.start()
        try:
            to_logistic = self._to_logistic(logistic, x, key)
        finally:
            self.stopwatch.stop()
        if self.verbose:
            print(f"LogisticOp to logistic: logistic={logistic}, x={x} -> {to_logistic}")
        if self.collect_logistic:
            msg = self.is_op.proj_to_logistic(logistic, x) if self.collect_proj else to_logistic
            self.to_logistic_messages.append((msg, x, logistic))
        return to_logistic

    def _to_logistic(self, logistic, x, key):
        if x.is_point_mass():
            return Beta.point_mass(float(expit(x.point)))
        if logistic.is_point_mass() or x.is_uniform():
            return Beta.uniform()
        m, v = x.mean_and_variance()
        if _is_observed_label(logistic) or logistic.is_uniform():
            # match E[p] and E[p(1-p)] against the Gaussian
            mean, second = logistic_gaussian_moments(m, v)
            variance = min(max(second - mean * mean, 0.0), mean * (1 - mean))
            return Beta.from_mean_and_variance(mean, variance)

        false_msg = self.get_false_msg(key)
        log_z = self.log_average_factor(logistic, x, false_msg) + logistic.get_log_normalizer()
        tc1 = logistic.true_count - 1
        fc1 = logistic.false_count - 1
        if tc1 + fc1 == 0:
            shifted = Beta(logistic.true_count + 1, logistic.false_count)
            log_zp = self.log_average_factor(shifted, x, false_msg) + shifted.get_log_normalizer()
            ep = math.exp(log_zp - log_z)
        else:
            to_x = Gaussian.from_natural(
                (tc1 + fc1) * false_msg.mean_times_precision + tc1,
                (tc1 + fc1) * false_msg.precision)
            mp = (to_x * x).mean()
            ep = (tc1 - (mp - m) / v) / (tc1 + fc1)
        return beta_from_mean_and_integral(ep, log_z, tc1, fc1)

    @staticmethod
    def log_average_factor(logistic: Beta, x: Gaussian, false_msg: Gaussian) -> float:
        """
        log of the integral of Beta(sigmoid(x)) N(x; m, v),
        approximated through `false_msg` where there is no shortcut.
        """
        m, v = x.mean_and_variance()
        if logistic.true_count == 2 and logistic.false_count == 1:
            return math.log(2 * logistic_gaussian(m, v))
        if logistic.true_count == 1 and logistic.false_count == 2:
            return math.log(2 * logistic_gaussian(-m, v))
        tc1 = logistic.true_count - 1
        fc1 = logistic.false_count - 1
        prior = Gaussian.from_mean_and_variance(m + tc1 * v, v)
        shift = tc1 * m + tc1 * tc1 * v * 0.5
        denominator = prior.log_average_of_power(false_msg, tc1 + fc1)
        if tc1 + fc1 < 0:
            numerator2 = prior.log_average_of_power(false_msg, tc1 + fc1 + 1)
            mp, vp = (prior * false_msg ** (tc1 + fc1 + 1)).mean_and_variance()
            numerator = float(np.logaddexp(0.0, mp + 0.5 * vp))
            return (
                -(tc1 + fc1) * (numerator + numerator2 - denominator)
                + denominator + shift - logistic.get_log_normalizer())
        numerator2 = prior.log_average_of_power(false_msg, tc1 + fc1 - 1)
        mp, vp = (prior * false_msg ** (tc1 + fc1 - 1)).mean_and_variance()
        numerator, _, _ = tilted_moments(lambda t: log_expit(-t), mp, vp)
        return (
            (tc1 + fc1) * (numerator + numerator2 - denominator)
            + denominator + shift - logistic.get_log_normalizer())


def _beta_log_prob_of_sigmoid(logistic: Beta, xs):
    a, b = logistic.true_count, logistic.false_count
    return (a - 1) * F.logsigmoid(xs) + (b - 1) * F.logsigmoid(-xs) - logistic.get_log_normalizer()


def _gaussian_log_prob(g: Gaussian, xs):
    if g.is_uniform():
        return torch.zeros_like(xs)
    if not g.precision > 0:
        raise ImproperMessageError(f"cannot evaluate density of {g}")
    m, v = g.mean_and_variance()
    return -0.5 * (LOG_2PI + math.log(v) + (xs - m) ** 2 / v)


def _weighted_moments(log_w, values):
    p = torch.softmax(log_w, dim=0)
    m = torch.dot(p, values)
    v = torch.dot(p, (values - m) ** 2)
    return m.item(), v.item()


def _proj_beta(mean, var):
    # rounding can push the sample variance just outside what a Beta allows
    var = min(max(var, 0.0), mean * (1 - mean))
    return Beta.from_mean_and_variance(min(max(mean, 0.0), 1.0), var)


class _ImportanceSamplingLogisticOp(LogisticOpInstance):
    """
    Shared message logic of the importance samplers; subclasses supply
    `_locations()` and `_log_proposal(xs)`.
    """
    def __init__(self, recorder=None, stopwatch=None, verbose=False):
        super().__init__(stopwatch=stopwatch, verbose=verbose)
        self.recorder = recorder

    def set_recorder(self, recorder):
        self.recorder = recorder

    def _log_weights(self, logistic, x, xs):
        if logistic.is_point_mass():
            raise ImproperMessageError(f"cannot importance sample against {logistic}")
        return _beta_log_prob_of_sigmoid(logistic, xs) + _gaussian_log_prob(x, xs) - self._log_proposal(xs)

    def proj_to_x(self, logistic: Beta, x: Gaussian) -> Gaussian:
        xs = self._locations()
        m, v = _weighted_moments(self._log_weights(logistic, x, xs), xs)
        return Gaussian.from_mean_and_variance(m, v)

    def proj_to_logistic(self, logistic: Beta, x: Gaussian) -> Beta:
        xs = self._locations()
        m, v = _weighted_moments(self._log_weights(logistic, x, xs), torch.sigmoid(xs))
        return self._clamp_proj(m, v)

    def _clamp_proj(self, m, v):
        return _proj_beta(m, v)

    def x_average_conditional_silent(self, logistic: Beta, x: Gaussian):
        """
        (outgoing message, proj) without printing or recording.
        """
        proj = self.proj_to_x(logistic, x)
        return proj.ratio(x, force_proper=True), proj

    def logistic_average_conditional_silent(self, logistic: Beta, x: Gaussian):
        proj = self.proj_to_logistic(logistic, x)
        return proj.ratio(logistic, force_proper=True), proj

    def x_average_conditional(self, logistic: Beta, x: Gaussian, key=None) -> Gaussian:
        self.stopwatch.start()
        try:
            to_x, proj = self.x_average_conditional_silent(logistic, x)
        finally:
            self.stopwatch.stop()
        if self.verbose:
            print(f"{type(self).__name__} to x: logistic={logistic}, x={x}")
            print(f"  proj={proj}, out={to_x}")
        if self.recorder is not None:
            self.recorder.record_to_x(logistic, x, to_x, True, None, to_x)
        return to_x

    def logistic_average_conditional(self, logistic: Beta, x: Gaussian, key=None) -> Beta:
        self.stopwatch.start()
        try:
            to_logistic, proj = self.logistic_average_conditional_silent(logistic, x)
        finally:
            self.stopwatch.stop()
        if self.verbose:
            print(f"{type(self).__name__} to logistic: logistic={logistic}, x={x}")
            print(f"  proj={proj}, out={to_logistic}")
        if self.recorder is not None:
            self.recorder.record_to_logistic(logistic, x, to_logistic, True, None, to_logistic)
        return to_logistic


class ISGaussianLogisticOp(_ImportanceSamplingLogisticOp):
    """
    Importance sampler with a broad Gaussian proposal.
    Fresh proposal samples for every message.
    """
    def __init__(
            self,
            sample_size=20000,
            proposal_mean=0.0,
            proposal_var=200.0,
            seed=None,
            recorder=None,
            stopwatch=None,
            verbose=False):
        super().__init__(recorder=recorder, stopwatch=stopwatch, verbose=verbose)
        self.set_importance_sampling_size(sample_size)
        self.proposal = Gaussian.from_mean_and_variance(proposal_mean, proposal_var)
        self.generator = make_generator(seed)

    def set_importance_sampling_size(self, n):
        if n <= 0:
            raise ValueError(f"importance sampling size must be positive, got {n}")
        self.sample_size = int(n)

    def _locations(self):
        m, v = self.proposal.mean_and_variance()
        z = torch.randn(self.sample_size, generator=self.generator, dtype=torch.float64)
        return m + math.sqrt(v) * z

    def _log_proposal(self, xs):
        return _gaussian_log_prob(self.proposal, xs)

    def _clamp_proj(self, m, v):
        if (abs(1 - m) < 1e-6 or abs(m) < 1e-6) and abs(v) < 1e-6:
            # a near point mass is a poor regression target; overstate the variance instead
            if self.verbose:
                print(f"degenerate Beta proj: m={m}, v={v}")
            m = abs(m)
            v = m * (1 - m)
        return _proj_beta(m, v)


class ISUniformLogisticOp(_ImportanceSamplingLogisticOp):
    """
    Deterministic grid over [low, high], i.e. importance sampling with a
    uniform proposal.
    """
    def __init__(self, sample_size=10000, low=-20.0, high=20.0, recorder=None, stopwatch=None, verbose=False):
        super().__init__(recorder=recorder, stopwatch=stopwatch, verbose=verbose)
        if not high > low:
            raise ValueError(f"need low < high, got [{low}, {high}]")
        self.set_importance_sampling_size(sample_size)
        self.low = float(low)
        self.high = float(high)

    def set_importance_sampling_size(self, n):
        if n < 2:
            raise ValueError(f"grid needs at least 2 points, got {n}")
        self.sample_size = int(n)

    def _locations(self):
        return torch.linspace(self.low, self.high, self.sample_size, dtype=torch.float64)

    def _log_proposal(self, xs):
        return torch.full_like(xs, -math.log(self.high - self.low))


class KEPLogisticOp(LogisticOpInstance):
    """
    Kernel EP operator with mappers trained offline:
    proj = mapper(logistic, x), outgoing = proj / cavity.
    """
    def __init__(self, op_params, print_true_messages=False, stopwatch=None, verbose=False):
        super().__init__(stopwatch=stopwatch, verbose=verbose)
        self.op_params = op_params
        self.print_true_messages = print_true_messages
        self.true_op = LogisticOp()

    @classmethod
    def load(cls, path, **kwargs):
        """
        `path` is a .mat file, or the name of one in the factor operator folder.
        """
        if not os.path.exists(path):
            path = config.path_to_factor_operator(path)
        return cls(LogisticOpParams.load(path), **kwargs)

    def x_average_conditional(self, logistic: Beta, x: Gaussian, key=None) -> Gaussian:
        self.stopwatch.start()
        try:
            proj = self.op_params.to_x.map_to_dist(logistic, x)
            to_x = proj.ratio(x, force_proper=True)
        finally:
            self.stopwatch.stop()
        if self.verbose:
            print(f"KEPLogisticOp to x: logistic={logistic}, x={x} -> {to_x}")
        if self.print_true_messages:
            print(f"  deterministic to x: {self.true_op.x_average_conditional(logistic, x, key)}")
        return to_x

    def logistic_average_conditional(self, logistic: Beta, x: Gaussian, key=None) -> Beta:
        self.stopwatch.start()
        try:
            proj = self.op_params.to_logistic.map_to_dist(logistic, x)
            to_logistic = proj.ratio(logistic, force_proper=True)
        finally:
            self.stopwatch.stop()
        if self.verbose:
            print(f"KEPLogisticOp to logistic: logistic={logistic}, x={x} -> {to_logistic}")
        if self.print_true_messages:
            print(f"  deterministic to logistic: {self.true_op.logistic_average_conditional(logistic, x, key)}")
        return to_logistic


def _learnable(dist):
    return dist.is_proper() and not dist.is_point_mass()


class KEPOnlineISLogisticOp(LogisticOpInstance):
    """
    Just-in-time kernel EP: one online mapper per direction learns the proj
    message from the importance sampler, which is only asked when a mapper
    is uncertain.
    """
    def __init__(
            self,
            to_logistic_map=None,
            to_x_map=None,
            is_op=None,
            recorder=None,
            print_true_when_certain=True,
            seed=None,
            stopwatch=None,
            verbose=False,
            **learner_kwargs):
        super().__init__(stopwatch=stopwatch, verbose=verbose)
        g = make_generator(seed)
        self.to_logistic_map = to_logistic_map if to_logistic_map is not None else OnlineDistMapper.with_learners(
            DBetaLogBuilder(), generator=g, **learner_kwargs)
        self.to_x_map = to_x_map if to_x_map is not None else OnlineDistMapper.with_learners(
            DNormalLogVarBuilder(), generator=g, **learner_kwargs)
        self.is_op = is_op if is_op is not None else ISGaussianLogisticOp(seed=seed)
        self.recorder = recorder
        self.print_true_when_certain = print_true_when_certain

    def set_recorder(self, recorder):
        self.recorder = recorder

    def set_importance_sampling_size(self, n):
        self.is_op.set_importance_sampling_size(n)

    def set_online_batch_size_trigger(self, size):
        self.to_logistic_map.set_online_batch_size_trigger(size)
        self.to_x_map.set_online_batch_size_trigger(size)

    def set_threshold(self, *thresh):
        self.to_logistic_map.set_threshold(*thresh)
        self.to_x_map.set_threshold(*thresh)

    def _message(self, mapper, oracle, fallback, cavity, logistic, x, direction):
        msgs = (logistic, x)
        if mapper.is_online_ready():
            features = mapper.gen_all_random_features(*msgs)
            uncertainty = mapper.estimate_uncertainty(features=features)
            uncertain = mapper.is_uncertain(features=features)
        else:
            features, uncertainty, uncertain = None, None, True

        if uncertain:
            out, proj = oracle(logistic, x)
            if not out.is_proper():
                out = improper_fallback(out, fallback, direction)
            elif out.is_point_mass():
                if self.verbose:
                    print(f"{type(self).__name__}: point mass to {direction}: {out}")
                out = near_point_mass(out)
            elif _learnable(proj):
                mapper.update_operator(proj, msgs, features=features)
            else:
                warnings.warn(f"proj {proj} to {direction} cannot be learned; skipping update")
            return out, None, True, uncertainty, out

        predicted_proj = mapper.map_to_dist(features=features)
        out = predicted_proj.ratio(cavity, force_proper=True)
        # comparison calls stay off the stopwatch
        self.stopwatch.stop()
        oracle_out = None
        if self.print_true_when_certain or self.recorder is not None:
            oracle_out, oracle_proj = oracle(logistic, x)
        if self.verbose:
            print(f"{type(self).__name__} to {direction}: logistic={logistic}, x={x}")
            print(f"  certain with log predictive variance {uncertainty}")
            print(f"  predicted proj={predicted_proj}, out={out}")
            if self.print_true_when_certain:
                print(f"  importance sampler proj={oracle_proj}, out={oracle_out}")
        return out, out, False, uncertainty, oracle_out

    def logistic_average_conditional(self, logistic: Beta, x: Gaussian, key=None) -> Beta:
        self.stopwatch.start()
        try:
            out, predicted, consult, uncertainty, oracle_out = self._message(
                self.to_logistic_map, self.is_op.logistic_average_conditional_silent,
                Beta.uniform(), logistic, logistic, x, "logistic")
        finally:
            self.stopwatch.stop()
        if self.recorder is not None:
            self.recorder.record_to_logistic(logistic, x, predicted, consult, uncertainty, oracle_out)
        return out

    def x_average_conditional(self, logistic: Beta, x: Gaussian, key=None) -> Gaussian:
        self.stopwatch.start()
        try:
            out, predicted, consult, uncertainty, oracle_out = self._message(
                self.to_x_map, self.is_op.x_average_conditional_silent,
                Gaussian.from_mean_and_variance(0.0, BROAD_GAUSSIAN_VAR), x, logistic, x, "x")
        finally:
            self.stopwatch.stop()
        if self.recorder is not None:
            self.recorder.record_to_x(logistic, x, predicted, consult, uncertainty, oracle_out)
        return out
