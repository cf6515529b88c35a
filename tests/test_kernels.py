import math

import numpy as np
import pytest

from kernel_ep.dists import Beta, Gaussian, VectorGaussian
from kernel_ep.kernels import (
    KDistProduct2, KEGaussian, KGGaussian, kernel_from_matlab_struct, median_pairwise)
from kernel_ep.matlab import MatlabStruct


def test_ke_gaussian_closed_form_1d():
    p = Gaussian.from_mean_and_variance(0.0, 1.0)
    q = Gaussian.from_mean_and_variance(1.0, 2.0)
    w = 0.5
    expected = math.sqrt(w / (1.0 + 2.0 + w)) * math.exp(-0.5 * 1.0 / (1.0 + 2.0 + w))
    assert KEGaussian([w]).eval(p, q) == pytest.approx(expected)
    assert KEGaussian([w]).eval(q, p) == pytest.approx(expected)


def test_ke_gaussian_factorises_over_independent_blocks():
    g1, g2 = Gaussian.from_mean_and_variance(0.2, 0.5), Gaussian.from_mean_and_variance(-1.0, 1.5)
    b1, b2 = Beta(2.0, 3.0), Beta(5.0, 1.0)
    joint = KEGaussian([0.7, 0.1]).eval(VectorGaussian.from_blocks([g1, b1]), VectorGaussian.from_blocks([g2, b2]))
    assert joint == pytest.approx(KEGaussian([0.7]).eval(g1, g2) * KEGaussian([0.1]).eval(b1, b2))


def test_ke_gaussian_rejects_bad_widths_and_dimensions():
    with pytest.raises(ValueError):
        KEGaussian([0.0])
    with pytest.raises(ValueError):
        KEGaussian([1.0, 1.0]).eval(Gaussian.from_mean_and_variance(0, 1), Gaussian.from_mean_and_variance(0, 1))


def test_kg_gaussian():
    p = Gaussian.from_mean_and_variance(0.0, 1.0)
    q = Gaussian.from_mean_and_variance(3.0, 1.0)
    k = KGGaussian([1.0], 0.5)
    assert k.eval(p, p) == pytest.approx(1.0)
    assert 0.0 < k.eval(p, q) < 1.0
    with pytest.raises(ValueError):
        KGGaussian([1.0], 0.0)


def test_product_kernel_and_gram():
    k = KDistProduct2(KEGaussian([1.0]), KEGaussian([0.2]))
    xs = [(Gaussian.from_mean_and_variance(i, 1.0), Beta(1.0 + i, 2.0)) for i in range(3)]
    K = k.eval_gram(xs, xs)
    assert K.shape == (3, 3)
    assert K[0, 1].item() == pytest.approx(K[1, 0].item())
    assert k.pair_eval(xs, xs).shape == (3,)
    with pytest.raises(ValueError):
        k.pair_eval(xs, xs[:2])


def test_median_pairwise():
    same = [Gaussian.from_mean_and_variance(0.0, 1.0)] * 4
    assert median_pairwise(same, [1.0]) == 0.0
    assert math.isnan(median_pairwise(same, [1.0], positive_only=True))
    spread = [Gaussian.from_mean_and_variance(m, 1.0) for m in (0.0, 1.0, 2.0, 5.0)]
    assert median_pairwise(spread, [1.0]) > 0.0


def test_kernel_from_struct():
    k = kernel_from_matlab_struct(MatlabStruct({
        "className": "KGGaussian",
        "embed_width2s": np.array([[0.5, 2.0]]),
        "width2": np.array([[3.0]]),
    }))
    assert isinstance(k, KGGaussian)
    assert k.width2 == 3.0
    with pytest.raises(ValueError):
        kernel_from_matlab_struct(MatlabStruct({"className": "KLinear"}))
