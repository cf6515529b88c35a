import math

import pytest
import torch
from torch.distributions import MultivariateNormal

from kernel_ep import NotReadyError
from kernel_ep.builders import DGammaLogBuilder
from kernel_ep.dists import Gamma
from kernel_ep.online import BayesLinRegFM, OnlineDistMapper, OnlineStackBayesLinReg, log_marginal_likelihood
from kernel_ep.utils import make_generator

SMALL = dict(online_batch_size_trigger=5, features=(10, 20), minibatch_features=(5, 10))


def _gammas(n):
    return [Gamma(1.0 + 0.7 * i, 0.5 + 0.3 * i) for i in range(n)]


def test_log_marginal_likelihood(generator):
    Phi = torch.randn(6, 3, generator=generator, dtype=torch.float64)
    y = torch.randn(6, generator=generator, dtype=torch.float64)
    K = Phi @ Phi.T + 0.1 * torch.eye(6, dtype=torch.float64)
    expected = MultivariateNormal(torch.zeros(6, dtype=torch.float64), covariance_matrix=K).log_prob(y).item()
    assert log_marginal_likelihood(Phi, y, 0.1) == pytest.approx(expected)


def test_learner_not_ready():
    b = BayesLinRegFM(generator=make_generator(0), **SMALL)
    assert not b.is_online_ready()
    assert b.gen_random_features(Gamma(2.0, 1.0)) is None
    assert b.estimate_uncertainty(None) == math.inf
    with pytest.raises(NotReadyError):
        b.predict(None)
    with pytest.raises(ValueError):
        b.set_online_batch_size_trigger(0)


def test_learner_minibatch_then_online():
    b = BayesLinRegFM(generator=make_generator(0), **SMALL)
    gammas = _gammas(6)
    for g in gammas[:4]:
        b.update(math.log(g.mean()), (g,))
    assert not b.is_online_ready()
    b.update(math.log(gammas[4].mean()), (gammas[4],))
    assert b.is_online_ready()
    assert b.feature_map.num_features() == [10, 20]
    assert b.n_updates == 5

    phi = b.gen_random_features(gammas[5])
    assert phi.shape == (20,)
    before = b.predictive_variance(phi)
    b.update(math.log(gammas[5].mean()), (gammas[5],), phi=phi)
    assert b.predictive_variance(phi) < before
    assert b.n_updates == 6
    assert math.isfinite(b.map_to_double(gammas[0]))


def test_stack_thresholds():
    stack = OnlineStackBayesLinReg(BayesLinRegFM(), BayesLinRegFM())
    stack.set_threshold(-3.0)
    assert stack.get_threshold() == [-3.0, -3.0]
    stack.set_threshold(-1.0, -2.0)
    assert stack.get_threshold() == [-1.0, -2.0]
    with pytest.raises(ValueError):
        stack.set_threshold(1.0, 2.0, 3.0)
    with pytest.raises(ValueError):
        stack.update([1.0, 2.0, 3.0], (Gamma(2.0, 1.0),))
    with pytest.raises(ValueError):
        OnlineStackBayesLinReg()


def test_dist_mapper_before_ready():
    m = OnlineDistMapper.with_learners(DGammaLogBuilder(), generator=make_generator(0), **SMALL)
    out, unc, uncertain = m.map_and_estimate(Gamma(2.0, 1.0))
    assert out is None
    assert uncertain
    assert all(math.isnan(u) for u in unc) and len(unc) == 2
    assert m.is_uncertain(Gamma(2.0, 1.0))


def test_dist_mapper_learns_and_thresholds():
    m = OnlineDistMapper.with_learners(DGammaLogBuilder(), generator=make_generator(1), **SMALL)
    for g in _gammas(5):
        m.update_operator(g, (g,))
    assert m.is_online_ready()

    m.set_threshold(math.inf)
    out, unc, uncertain = m.map_and_estimate(Gamma(2.0, 1.0))
    assert isinstance(out, Gamma)
    assert not uncertain
    assert all(math.isfinite(u) for u in unc)

    m.set_threshold(-math.inf)
    assert m.map_and_estimate(Gamma(2.0, 1.0))[2]
