import math
import os

import numpy as np
import pytest
import torch

from kernel_ep.dists import Beta, Gaussian
from kernel_ep.matlab import MatlabStruct, write_mat
from kernel_ep.mappers import (
    GenericMapper, LogisticOpParams, StackVectorMapper, TensorInstances, dist_from_matlab_struct,
    vector_mapper_from_matlab_struct)
from kernel_ep.ops import KEPLogisticOp

W = np.array([
    [0.3, -0.2, 0.1],
    [0.5, 0.4, -0.6],
    [-0.1, 0.2, 0.3],
    [0.05, -0.3, 0.2],
])
B = np.array([[0.1, 0.7, 1.3]])


def _generic_mapper(builder, map_matrix):
    return {
        "className": "GenericMapper",
        "nv": np.array([[2.0]]),
        "operator": {
            "className": "CondFMFiniteOut",
            "mapMatrix": map_matrix,
            "featureMap": {
                "className": "RandFourierGaussMVMap",
                "mwidth2s": np.array([[1.0, 1.0]]),
                "vwidth2s": np.array([[1.0, 1.0]]),
                "rfgMap": {
                    "className": "RandFourierGaussMap",
                    "gwidth2": np.array([[1.0]]),
                    "numFeatures": np.array([[3.0]]),
                    "W": W,
                    "B": B,
                },
            },
        },
        "distBuilder": {"className": builder},
    }


def _expected_stat(map_matrix, logistic, x):
    s = torch.tensor([logistic.mean(), x.mean(), logistic.variance(), x.variance()], dtype=torch.float64)
    phi = torch.cos(torch.as_tensor(W).T @ s + torch.as_tensor(B).reshape(-1)) * math.sqrt(2.0 / 3)
    return torch.as_tensor(map_matrix) @ phi


@pytest.fixture
def op_file(tmp_path):
    to_logistic = np.array([[0.2, 0.1, -0.3], [0.4, 0.0, 0.2]])
    to_x = np.array([[0.5, -0.5, 0.1], [-1.0, 0.3, 0.2]])
    path = write_mat(str(tmp_path / "op.mat"), {"serialFactorOp": {
        "className": "DefaultFactorOperator",
        "distMappers": [
            _generic_mapper("DBetaLogBuilder", to_logistic),
            _generic_mapper("DNormalLogVarBuilder", to_x),
        ],
    }})
    return path, to_logistic, to_x


def test_load_logistic_op_params(op_file):
    path, to_logistic, to_x = op_file
    params = LogisticOpParams.load(path)
    logistic, x = Beta(2.0, 3.0), Gaussian.from_mean_and_variance(0.5, 2.0)

    stat = _expected_stat(to_logistic, logistic, x)
    out = params.to_logistic.map_to_dist(logistic, x)
    assert isinstance(out, Beta)
    assert out.true_count == pytest.approx(math.exp(stat[0].item()))
    assert out.false_count == pytest.approx(math.exp(stat[1].item()))

    stat = _expected_stat(to_x, logistic, x)
    out = params.to_x(logistic, x)
    assert out.mean() == pytest.approx(stat[0].item())
    assert out.variance() == pytest.approx(math.exp(stat[1].item()))


def test_kep_logistic_op_divides_out_the_cavity(op_file):
    path, _, _ = op_file
    op = KEPLogisticOp.load(path)
    logistic, x = Beta(2.0, 3.0), Gaussian.from_mean_and_variance(0.5, 2.0)
    proj = op.op_params.to_x(logistic, x)
    assert op.x_average_conditional(logistic, x).max_diff(proj.ratio(x, force_proper=True)) < 1e-10
    assert op.logistic_average_conditional(logistic, x).is_proper()


def test_wrong_struct_class():
    with pytest.raises(ValueError):
        LogisticOpParams.from_matlab_struct(MatlabStruct({"className": "GenericMapper"}))
    with pytest.raises(ValueError):
        GenericMapper.from_matlab_struct(MatlabStruct({"className": "DefaultFactorOperator"}))


def test_dist_from_struct():
    g = dist_from_matlab_struct(MatlabStruct({
        "className": "DistNormal", "mean": np.array([[1.0]]), "variance": np.array([[3.0]])}))
    assert g.mean() == 1.0 and g.variance() == pytest.approx(3.0)
    b = dist_from_matlab_struct(MatlabStruct({
        "className": "DistBeta", "alpha": np.array([[2.0]]), "beta": np.array([[5.0]])}))
    assert (b.true_count, b.false_count) == (2.0, 5.0)
    with pytest.raises(ValueError):
        dist_from_matlab_struct(MatlabStruct({"className": "DistGamma"}))


def test_tensor_instances_lengths():
    with pytest.raises(ValueError):
        TensorInstances([Beta(1, 1)], [])


def test_load_by_name_from_factor_op_folder(op_file, monkeypatch):
    path, _, _ = op_file
    monkeypatch.setenv("FACTOR_OP_DIR", os.path.dirname(path))
    op = KEPLogisticOp.load(os.path.basename(path))
    assert isinstance(op.op_params.to_logistic, GenericMapper)


def test_stack_mapper_concatenates():
    fm = {
        "className": "CondFMFiniteOut",
        "mapMatrix": np.array([[1.0, 0.0, 0.0]]),
        "featureMap": _generic_mapper("DBetaLogBuilder", np.eye(3))["operator"]["featureMap"],
    }
    s = MatlabStruct({"className": "StackInstancesMapper", "instancesMappers": np.array([[fm, fm]], dtype=object)})
    m = vector_mapper_from_matlab_struct(s)
    assert isinstance(m, StackVectorMapper)
    assert m.output_dim() == 2
    v = m(Beta(2.0, 3.0), Gaussian.from_mean_and_variance(0.0, 1.0))
    assert v[0].item() == v[1].item()
