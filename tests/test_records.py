import math

import pytest
import torch

from kernel_ep.dists import Beta, Gamma, Gaussian, VectorGaussian
from kernel_ep.matlab import read_mat
from kernel_ep.records import CGOpRecords, LogisticOpRecords


def _logistic_records():
    rec = LogisticOpRecords()
    x = Gaussian.from_mean_and_variance(0.5, 2.0)
    label = Beta(2.0, 1.0)
    rec.record_to_x(label, x, None, True, None, Gaussian.from_mean_and_variance(1.0, 3.0))
    rec.record_to_x(label, x, Gaussian.from_mean_and_variance(0.9, 3.1), False, [-9.0, -10.0],
                    Gaussian.from_mean_and_variance(1.0, 3.0))
    rec.record_to_logistic(label, x, Beta(3.0, 4.0), False, [-9.5, -9.1], Beta(3.1, 4.2))
    post = VectorGaussian(torch.tensor([0.1, 0.2]), torch.eye(2))
    rec.record_inference(0.25, post, post)
    return rec


def test_logistic_records_to_dict():
    d = _logistic_records().to_dict(extra={"n": 10.0})
    assert d["inNormalMeans"] == pytest.approx([0.5, 0.5])
    assert math.isnan(d["outNormalMeans"][0])
    assert d["outNormalMeans"][1] == pytest.approx(0.9)
    assert d["consultOracle"] == [1.0, 0.0]
    assert d["uncertainty"].shape == (2, 2)
    assert math.isnan(d["uncertainty"][0, 0])
    assert d["uncertainty"][1, 1] == -10.0
    assert d["toLogistic_outBetaA"] == [3.0]
    assert d["toLogistic_oraOutBetaB"] == [4.2]
    assert d["inferenceTimes"] == [0.25]
    assert tuple(d["postMeans"].shape) == (2, 1)
    assert d["dotNetPostCovs"].shape == (2, 2, 1)
    assert d["n"] == 10.0


def test_logistic_records_merge_and_write(tmp_path):
    merged = LogisticOpRecords.merge([_logistic_records(), _logistic_records()])
    assert len(merged.to_x) == 4
    assert merged.inference_times == [0.25, 0.25]
    s = read_mat(merged.write_records(str(tmp_path / "rec.mat")))
    assert tuple(s.get_matrix("uncertainty").shape) == (2, 4)
    assert s.get_1d_double_array("toLogistic_inBetaA").tolist() == [2.0, 2.0]
    assert tuple(s.get_matrix("postMeans").shape) == (2, 2)
    assert s.d["postCovs"].shape == (2, 2, 2)


def test_cg_records(tmp_path):
    rec = CGOpRecords()
    assert math.isnan(rec.consult_rate())
    rec.record(Gamma(6.0, 5.0), None, True, None, Gamma(0.6, 0.5))
    rec.record(Gamma(8.0, 7.0), Gamma(0.55, 0.45), False, [-9.0, -9.5], Gamma(0.6, 0.5))
    assert len(rec) == 2
    assert rec.consult_rate() == 0.5
    d = rec.to_dict()
    assert math.isnan(d["outShape"][0])
    assert d["outRate"][1] == 0.45
    assert d["inShape"] == [6.0, 8.0]
    s = read_mat(rec.write_records(str(tmp_path / "cg.mat"), {"Ns": [10.0, 20.0]}))
    assert s.get_1d_double_array("consultOracle").tolist() == [1.0, 0.0]
    assert s.get_1d_double_array("Ns").tolist() == [10.0, 20.0]
