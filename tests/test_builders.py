import math

import pytest
import torch

from kernel_ep import ImproperMessageError
from kernel_ep.builders import (
    DBetaBuilder, DBetaLogBuilder, DGammaLogBuilder, DNormalBuilder, DNormalLogVarBuilder,
    builder_from_matlab_struct)
from kernel_ep.dists import Beta, Gamma, Gaussian
from kernel_ep.matlab import MatlabStruct


@pytest.mark.parametrize("builder,dist", [
    (DNormalBuilder(), Gaussian.from_mean_and_variance(-0.5, 2.0)),
    (DNormalLogVarBuilder(), Gaussian.from_mean_and_variance(1.0, 0.3)),
    (DBetaBuilder(), Beta(2.0, 5.0)),
    (DBetaLogBuilder(), Beta(0.7, 12.0)),
    (DGammaLogBuilder(), Gamma(3.0, 0.5)),
])
def test_stat_round_trip(builder, dist):
    back = builder.from_stat(builder.get_stat(dist))
    assert back.mean() == pytest.approx(dist.mean())
    assert back.variance() == pytest.approx(dist.variance())


def test_normal_log_var_stat_is_log_variance():
    stat = DNormalLogVarBuilder().get_stat(Gaussian.from_mean_and_variance(2.0, math.e))
    assert torch.allclose(stat, torch.tensor([2.0, 1.0], dtype=torch.float64))


def test_beta_builder_repairs_infeasible_stats():
    b = DBetaBuilder().from_stat([1.2, 0.1])
    assert b.mean() == pytest.approx(1 - DBetaBuilder.EPS)
    b = DBetaBuilder().from_stat([0.5, 0.1])
    # E[x^2] below mean^2: variance replaced by 90% of the maximum
    assert b.variance() == pytest.approx(0.9 * 0.25)


def test_normal_builder_rejects_negative_variance():
    with pytest.raises(ImproperMessageError):
        DNormalBuilder().from_stat([2.0, 3.0])
    assert DNormalBuilder().from_stat([2.0, 4.0]).is_point_mass()


def test_wrong_stat_length():
    with pytest.raises(ValueError):
        DGammaLogBuilder().from_stat([1.0, 2.0, 3.0])


def test_builder_from_struct():
    assert isinstance(
        builder_from_matlab_struct(MatlabStruct({"className": "DBetaLogBuilder"})), DBetaLogBuilder)
    with pytest.raises(ValueError):
        builder_from_matlab_struct(MatlabStruct({"className": "NoSuchBuilder"}))
    with pytest.raises(ValueError):
        DNormalBuilder.from_matlab_struct(MatlabStruct({"className": "DistBetaBuilder"}))
