import math

import pytest
import torch

from kernel_ep import ImproperMessageError
from kernel_ep.dists import Beta, Gamma, Gaussian, VectorGaussian


def test_gaussian_moments_round_trip():
    g = Gaussian.from_mean_and_variance(1.5, 4.0)
    assert g.mean() == pytest.approx(1.5)
    assert g.variance() == pytest.approx(4.0)
    assert g.precision == pytest.approx(0.25)
    assert g.mean_times_precision == pytest.approx(0.375)


def test_gaussian_special_cases():
    assert Gaussian.from_mean_and_variance(3.0, 0.0).is_point_mass()
    assert Gaussian.from_mean_and_variance(3.0, math.inf).is_uniform()
    u = Gaussian.uniform()
    assert u.is_uniform()
    assert not u.is_proper()
    assert u.variance() == math.inf
    p = Gaussian.point_mass(2.0)
    assert p.is_proper()
    assert p.mean() == 2.0
    assert p.variance() == 0.0


def test_gaussian_product_and_ratio_invert():
    a = Gaussian.from_mean_and_variance(1.0, 2.0)
    b = Gaussian.from_mean_and_variance(-1.0, 3.0)
    back = (a * b) / b
    assert back.mean() == pytest.approx(a.mean())
    assert back.variance() == pytest.approx(a.variance())


def test_gaussian_forced_proper_ratio_keeps_the_mean():
    num = Gaussian.from_mean_and_variance(0.7, 5.0)
    den = Gaussian.from_mean_and_variance(0.0, 1.0)
    out = num.ratio(den, force_proper=True)
    assert out.precision == 0.0
    assert (out * den).mean() == pytest.approx(num.mean())


def test_gaussian_ratio_by_point_mass_fails():
    with pytest.raises(ImproperMessageError):
        Gaussian.from_mean_and_variance(0.0, 1.0).ratio(Gaussian.point_mass(1.0))


def test_gaussian_power():
    g = Gaussian.from_mean_and_variance(2.0, 0.5)
    sq = g ** 2
    assert sq.precision == pytest.approx(2 * g.precision)
    assert (g ** 0).is_uniform()


def test_log_average_of_power_matches_closed_form():
    a = Gaussian.from_mean_and_variance(0.3, 1.2)
    b = Gaussian.from_mean_and_variance(-0.4, 0.8)
    # integral of two normal densities is N(ma; mb, va + vb)
    expected = -0.5 * (math.log(2 * math.pi * 2.0) + 0.7 ** 2 / 2.0)
    assert a.log_average_of_power(b, 1.0) == pytest.approx(expected)
    assert a.log_average_of_power(b, 0.0) == pytest.approx(0.0)


def test_gaussian_improper_density_raises():
    with pytest.raises(ImproperMessageError):
        Gaussian(1.0, -1.0).log_prob(0.0)
    with pytest.raises(ImproperMessageError):
        Gaussian(1.0, -1.0).sample()


def test_beta_from_mean_and_variance():
    b = Beta.from_mean_and_variance(0.25, 0.0125)
    assert b.mean() == pytest.approx(0.25)
    assert b.variance() == pytest.approx(0.0125)
    assert Beta.from_mean_and_variance(0.4, 0.0).is_point_mass()


@pytest.mark.parametrize("mean,var", [(1.5, 0.01), (-0.1, 0.01), (0.5, 0.3), (0.5, -0.1)])
def test_beta_from_impossible_moments(mean, var):
    with pytest.raises(ValueError):
        Beta.from_mean_and_variance(mean, var)


def test_beta_product_ratio_and_uniform():
    a = Beta(3.0, 2.0)
    b = Beta(2.0, 5.0)
    prod = a * b
    assert (prod.true_count, prod.false_count) == (4.0, 6.0)
    back = prod / b
    assert (back.true_count, back.false_count) == (3.0, 2.0)
    assert Beta.uniform().is_uniform()
    forced = Beta(1.5, 1.5).ratio(Beta(3.0, 1.0), force_proper=True)
    assert forced.true_count == 1.0
    assert forced.false_count == 1.5


def test_gamma_moments_and_ratio():
    g = Gamma.from_mean_and_variance(2.0, 0.5)
    assert g.shape == pytest.approx(8.0)
    assert g.rate == pytest.approx(4.0)
    h = Gamma(3.0, 1.0)
    back = (g * h) / h
    assert back.shape == pytest.approx(g.shape)
    assert back.rate == pytest.approx(g.rate)
    assert not Gamma.uniform().is_proper()
    with pytest.raises(ValueError):
        Gamma.from_mean_and_variance(-1.0, 1.0)


def test_gamma_forced_proper_ratio():
    out = Gamma(2.0, 1.0).ratio(Gamma(5.0, 3.0), force_proper=True)
    assert out.shape >= 1.0
    assert out.rate >= 0.0


def test_vector_gaussian_from_blocks():
    vg = VectorGaussian.from_blocks([Gaussian.from_mean_and_variance(1.0, 2.0), Beta(2.0, 2.0)])
    assert vg.dim() == 2
    assert torch.allclose(vg.mean_vector(), torch.tensor([1.0, 0.5], dtype=torch.float64))
    assert vg.cov_matrix()[0, 1].item() == 0.0
    assert vg.cov_matrix()[1, 1].item() == pytest.approx(Beta(2.0, 2.0).variance())
    m = vg.marginal(0)
    assert m.mean() == pytest.approx(1.0)
    assert m.variance() == pytest.approx(2.0)
    with pytest.raises(ValueError):
        VectorGaussian.from_blocks([])
