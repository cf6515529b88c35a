import pytest
import torch
from matplotlib import pyplot as plt

from kernel_ep import plots
from kernel_ep.dists import Beta, Gamma, Gaussian, VectorGaussian
from kernel_ep.records import CGOpRecords, LogisticOpRecords


def test_uncertainty_plot_cg():
    rec = CGOpRecords()
    rec.record(Gamma(6.0, 5.0), None, True, None, Gamma(0.6, 0.5))
    rec.record(Gamma(8.0, 7.0), Gamma(0.55, 0.45), False, [-9.0, -9.5], Gamma(0.6, 0.5))
    fig = plots.uncertainty_plot(rec, threshold=-8.5)
    ax = fig.axes[0]
    assert ax.get_ylabel() == "log predictive variance"
    plt.close(fig)


def test_uncertainty_plot_logistic():
    rec = LogisticOpRecords()
    x = Gaussian.from_mean_and_variance(0.0, 1.0)
    rec.record_to_logistic(Beta(2.0, 1.0), x, Beta(2.0, 2.0), False, [-10.0, -9.0], Beta(2.0, 2.1))
    fig, ax = plt.subplots()
    assert plots.uncertainty_plot(rec, direction="to_logistic", ax=ax) is fig
    with pytest.raises(ValueError):
        plots.uncertainty_plot(rec, direction="sideways")
    plt.close("all")


def test_inference_time_plot():
    fig = plots.inference_time_plot([[0.1, 0.2], torch.tensor([0.05, 0.04])], labels=["kep", "is"])
    assert len(fig.axes[0].lines) == 2
    with pytest.raises(ValueError):
        plots.inference_time_plot([[0.1]], labels=["a", "b"])
    plt.close("all")


def test_coefficient_plot():
    post = VectorGaussian(torch.tensor([0.5, -1.0]), torch.diag(torch.tensor([0.1, 0.2])))
    fig = plots.coefficient_plot(torch.tensor([0.4, -1.2]), post)
    assert fig.axes[0].get_xlabel() == "coefficient"
    plt.close(fig)
