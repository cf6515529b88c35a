import numpy as np
import pytest
import torch
from torch.autograd import grad

from kernel_ep.dists import Beta, Gamma, Gaussian
from kernel_ep.models import multinomial
from kernel_ep.models.clutter import ClutterProblem
from kernel_ep.models.compound_gamma import CompoundGamma, test_inference as run_cg_inference
from kernel_ep.models.logistic_regression import (
    ep_logistic, gen_data, infer_coefficients, infer_coefficients_no_bias, label_message,
    run_logistic_regression)
from kernel_ep.ops import ISUniformLogisticOp, LogisticOp


def test_gen_data(generator):
    with pytest.raises(ValueError):
        gen_data(10, None)
    X, Y = gen_data(50, [1.0, -2.0], 0.5, generator=generator)
    assert tuple(X.shape) == (50, 2)
    assert set(Y.tolist()) <= {0.0, 1.0}
    X2, Y2 = gen_data(50, [1.0, -2.0], 0.5, seed=4)
    X3, Y3 = gen_data(50, [1.0, -2.0], 0.5, seed=4)
    assert torch.equal(X2, X3) and torch.equal(Y2, Y3)


def test_label_message():
    assert label_message(1.0).true_count == 2.0
    assert label_message(0.0).false_count == 2.0


def test_ep_recovers_coefficients():
    w, b, post_w, post_b = run_logistic_regression(seed=1, d=3, n=500, ep_iter=5, verbose=False)
    assert torch.norm(post_w.mean_vector() - w).item() < 1.0
    assert abs(post_b.mean() - b) < 1.0
    assert bool(torch.all(post_w.variance_diag() > 0))


def test_importance_sampling_grid_matches_deterministic_operator(generator):
    X, Y = gen_data(40, [0.8, -0.5], generator=generator)
    exact = infer_coefficients_no_bias(X, Y, 3, LogisticOp())
    grid = infer_coefficients_no_bias(X, Y, 3, ISUniformLogisticOp(sample_size=20000))
    assert torch.allclose(exact.mean_vector(), grid.mean_vector(), atol=1e-3)
    assert torch.allclose(exact.cov_matrix(), grid.cov_matrix(), atol=1e-3)


def test_infer_coefficients_with_bias_shapes(generator):
    X, Y = gen_data(30, [0.3, 0.2, -0.1], 1.0, generator=generator)
    post_w, post_b = infer_coefficients(X, Y, 2, LogisticOp())
    assert post_w.dim() == 3
    assert post_b.is_proper()
    with pytest.raises(ValueError):
        infer_coefficients_no_bias(X, Y[:-1], 1, LogisticOp())


def test_compound_gamma_likelihood_message():
    lik = CompoundGamma().likelihood_message([1.0, -1.0, 2.0])
    assert (lik.shape, lik.rate) == (2.5, 3.0)


def test_compound_gamma_posterior_near_truth():
    cg = CompoundGamma()
    obs, true_r2, true_prec = cg.gen_data(500, seed=7)
    post = cg.infer_precision(obs, 3)
    assert isinstance(post, Gamma)
    assert 0.5 * true_prec < post.mean() < 2.0 * true_prec
    results = run_cg_inference(seeds=[1, 2], n=50, ep_iter=2, verbose=False)
    assert [r["seed"] for r in results] == [1, 2]
    assert all(r["post"].is_proper() for r in results)


def test_clutter_without_clutter_is_conjugate():
    problem = ClutterProblem(w=1.0, n_data=20, seed=3)
    post, resp = problem.infer(ep_iter=3)
    y = problem.data
    prec = 1 / 100.0 + len(y)
    assert post.precision == pytest.approx(prec)
    assert post.mean() == pytest.approx(y.sum() / prec)
    assert np.allclose(resp, 1.0)


def test_clutter_default():
    post, resp = ClutterProblem().infer(ep_iter=5)
    assert post.is_proper()
    assert np.all((resp >= 0) & (resp <= 1))
    with pytest.raises(ValueError):
        ClutterProblem(w=0.0)


def test_clutter_outlier_far_from_cavity():
    problem = ClutterProblem(n_data=10, seed=1)
    problem.gen_data()
    problem.data[0] = 1e3
    post, resp = problem.infer(ep_iter=5)
    assert np.isfinite(post.mean())
    assert np.all((resp >= 0) & (resp <= 1))
    # a datum hundreds of sd from the cavity is all clutter and leaves it unchanged
    cavity = Gaussian.from_mean_and_variance(990.099, 0.990099)
    tilted, r = problem.tilted(-0.87, cavity)
    assert r == 0.0
    assert tilted.mean_and_variance() == pytest.approx(cavity.mean_and_variance())


class _FixedSiteOp:
    def __init__(self, site):
        self.site = site

    def logistic_average_conditional(self, logistic, x, key=None):
        return Beta.uniform()

    def x_average_conditional(self, logistic, x, key=None):
        return self.site


@pytest.mark.parametrize("site,match", [
    (Gaussian.point_mass(0.0), "point mass site"),
    (Gaussian(0.0, -10.0), "positive definiteness"),
])
def test_ep_skips_bad_site_updates(site, match):
    A = torch.tensor([[1.0, 1.0], [1.0, -1.0]], dtype=torch.float64)
    with pytest.warns(UserWarning, match=match):
        post = ep_logistic(A, [1.0, 0.0], 1, _FixedSiteOp(site))
    # every update was skipped, so the prior is untouched
    assert torch.allclose(post.mean_vector(), torch.zeros(2, dtype=torch.float64))
    assert torch.allclose(post.cov_matrix(), torch.eye(2, dtype=torch.float64))


def test_multinomial_data():
    X, counts, coefficients, mean = multinomial.gen_data(25, 3, 4, 10, seed=2)
    assert tuple(X.shape) == (25, 3)
    assert tuple(counts.shape) == (25, 4)
    assert torch.all(counts.sum(dim=1) == 10)
    assert torch.all(coefficients[-1] == 0) and mean[-1] == 0


def test_multinomial_laplace_mode():
    X, counts, _, _ = multinomial.gen_data(200, 3, 3, 10, seed=5)
    b_post, mean_post = multinomial.infer(X, counts)
    assert len(b_post) == 3 and len(mean_post) == 3
    assert mean_post[-1].is_point_mass()
    theta = torch.cat([b.mean_vector() for b in b_post[:-1]] + [
        torch.tensor([m.mean() for m in mean_post[:-1]], dtype=torch.float64)])
    theta.requires_grad_(True)
    g = grad(multinomial.neg_log_posterior(theta, X, counts), theta)[0]
    assert g.norm().item() < 1e-5


def test_multinomial_error_shrinks_with_data():
    errors = multinomial.sample_size_sweep(3, 3, 20, sample_sizes=(20, 2000), seed=3)
    assert len(errors) == 2
    assert errors[1] < 0.3
    assert errors[1] < errors[0]
