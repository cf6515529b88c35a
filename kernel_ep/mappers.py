"""
Offline message mappers, trained elsewhere and loaded from .mat structs.
"""
import torch

from .builders import builder_from_matlab_struct
from .dists import Beta, Gaussian
from .features import VectorMapper, feature_map_from_matlab_struct
from .kernels import kernel_from_matlab_struct, _check_class
from .matlab import read_mat


def dist_from_matlab_struct(s):
    class_name = s.get_string("className")
    if class_name == "DistNormal":
        mean = s.get_1d_double_array("mean")
        if mean.numel() != 1:
            raise ValueError("mean vector is not 1 dimension.")
        return Gaussian.from_mean_and_variance(mean[0].item(), s.get_double("variance"))
    elif class_name == "DistBeta":
        return Beta(s.get_double("alpha"), s.get_double("beta"))
    raise ValueError(f"Unknown distribution class: {class_name}")


class DistArray(list):
    MATLAB_CLASS = "DistArray"

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        cells = s.get_struct_cells("distArray").reshape(-1)
        return cls(dist_from_matlab_struct(c) for c in cells)


class TensorInstances:
    """
    Paired training inputs (d1[i], d2[i]).
    """
    MATLAB_CLASS = "TensorInstances"

    def __init__(self, d1, d2):
        if len(d1) != len(d2):
            raise ValueError("d1 and d2 do not have the same length.")
        self.d1 = list(d1)
        self.d2 = list(d2)

    def get_all(self):
        return list(zip(self.d1, self.d2))

    def __len__(self):
        return len(self.d1)

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        if s.get_int("instancesCount") != 2:
            raise ValueError("expect instancesCount to be 2.")
        cells = s.get_struct_cells("instancesCell").reshape(-1)
        if len(cells) != 2:
            raise ValueError("instancesCell does not have length 2.")
        return cls(
            DistArray.from_matlab_struct(cells[0]),
            DistArray.from_matlab_struct(cells[1]))


class CondCholFiniteOut(VectorMapper):
    """
    Incomplete-Cholesky conditional mean operator:
    ZOutR3 @ k(training inputs, incoming).
    """
    MATLAB_CLASS = "CondCholFiniteOut"

    def __init__(self, z_out_r3, instances: TensorInstances, kernel):
        self.z_out_r3 = torch.as_tensor(z_out_r3, dtype=torch.float64)
        self.instances = instances
        self.kernel = kernel

    def map_to_vector(self, msg1, msg2):
        k = self.kernel.eval_against((msg1, msg2), self.instances.get_all())
        return self.z_out_r3 @ k

    def output_dim(self):
        return self.z_out_r3.shape[0]

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        instances = TensorInstances.from_matlab_struct(s.get_struct("instances"))
        kernel = kernel_from_matlab_struct(s.get_struct("kfunc"))
        return cls(s.get_matrix("ZOutR3"), instances, kernel)


class CondFMFiniteOut(VectorMapper):
    """
    mapMatrix @ features(msgs); mapMatrix is dz x num_features.
    """
    MATLAB_CLASS = "CondFMFiniteOut"

    def __init__(self, feature_map, map_matrix):
        map_matrix = torch.as_tensor(map_matrix, dtype=torch.float64)
        if feature_map.output_dim() != map_matrix.shape[1]:
            raise ValueError("featureMap output dimension does not match with mapMatrix.")
        self.feature_map = feature_map
        self.map_matrix = map_matrix

    def map_to_vector(self, *msgs):
        return self.map_matrix @ self.feature_map.map_to_vector(*msgs)

    def output_dim(self):
        return self.map_matrix.shape[0]

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        feature_map = feature_map_from_matlab_struct(s.get_struct("featureMap"))
        return cls(feature_map, s.get_matrix("mapMatrix"))


class StackVectorMapper(VectorMapper):
    MATLAB_CLASS = "StackInstancesMapper"

    def __init__(self, mapper1, mapper2):
        self.mapper1 = mapper1
        self.mapper2 = mapper2

    def map_to_vector(self, *msgs):
        return torch.cat([self.mapper1.map_to_vector(*msgs), self.mapper2.map_to_vector(*msgs)])

    def output_dim(self):
        return self.mapper1.output_dim() + self.mapper2.output_dim()

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        cells = s.get_struct_cells("instancesMappers").reshape(-1)
        if len(cells) != 2:
            raise ValueError("instancesMappers should have length 2.")
        return cls(vector_mapper_from_matlab_struct(cells[0]), vector_mapper_from_matlab_struct(cells[1]))


VECTOR_MAPPERS = {m.MATLAB_CLASS: m for m in (CondCholFiniteOut, CondFMFiniteOut, StackVectorMapper)}


def vector_mapper_from_matlab_struct(s):
    class_name = s.get_string("className")
    if class_name not in VECTOR_MAPPERS:
        raise ValueError(f"Unknown className: {class_name}")
    return VECTOR_MAPPERS[class_name].from_matlab_struct(s)


class GenericMapper:
    """
    Incoming messages -> statistic vector -> outgoing distribution.
    """
    MATLAB_CLASS = "GenericMapper"

    def __init__(self, suff_mapper, builder):
        self.suff_mapper = suff_mapper
        self.builder = builder

    def map_to_dist(self, *msgs):
        return self.builder.from_stat(self.suff_mapper.map_to_vector(*msgs))

    def __call__(self, *msgs):
        return self.map_to_dist(*msgs)

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        if s.get_int("nv") != 2:
            raise ValueError("Loaded mapper does not expect 2 incoming variables.")
        return cls(
            vector_mapper_from_matlab_struct(s.get_struct("operator")),
            builder_from_matlab_struct(s.get_struct("distBuilder")))


class LogisticOpParams:
    """
    The two mappers of a logistic factor operator:
    the first sends to the Beta variable, the second to the Gaussian one.
    """
    def __init__(self, to_logistic: GenericMapper, to_x: GenericMapper):
        self.to_logistic = to_logistic
        self.to_x = to_x

    @classmethod
    def from_matlab_struct(cls, s):
        if s.get_string("className") != "DefaultFactorOperator":
            raise ValueError("The input does not represent a FactorOperator.")
        cells = s.get_struct_cells("distMappers").reshape(-1)
        if len(cells) != 2:
            raise ValueError("Loaded FactorOperator does not have 2 DistMapper's.")
        return cls(GenericMapper.from_matlab_struct(cells[0]), GenericMapper.from_matlab_struct(cells[1]))

    @classmethod
    def load(cls, path):
        return cls.from_matlab_struct(read_mat(path).get_struct("serialFactorOp"))
