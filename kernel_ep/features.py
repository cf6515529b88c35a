"""
Random Fourier features on distributions.

`RFGEProdMap` approximates the expected product kernel `KEGaussian`;
`RFGJointKGG` stacks the incoming messages into one joint Gaussian and
approximates a Gaussian kernel on its mean embedding (`KGGaussian`),
with a second layer of random features on top of the first.
Random weights are drawn lazily, the first time a message arrives,
because only then do we know the input dimension.
"""
import math
from typing import List, Optional, Sequence

import torch

from .dists import VectorGaussian
from .kernels import median_pairwise, _check_class
from .utils import make_generator


class VectorMapper:
    """
    Maps one or more messages to a vector.
    """
    MATLAB_CLASS = None

    def map_to_vector(self, *msgs) -> torch.Tensor:
        raise NotImplementedError

    def output_dim(self) -> int:
        raise NotImplementedError

    def __call__(self, *msgs):
        return self.map_to_vector(*msgs)


class RandomFeatureMap(VectorMapper):
    def num_features(self) -> List[int]:
        """
        Feature counts, most outer last.
        """
        raise NotImplementedError

    def regenerate(self, num_features: Sequence[int]) -> "RandomFeatureMap":
        raise NotImplementedError

    def gen_candidates(self, msgs_list, num_features, median_factors, rng=None) -> List["RandomFeatureMap"]:
        raise NotImplementedError


def _random_subset(items, k, rng):
    idx = torch.randperm(len(items), generator=rng)[:k]
    return [items[i] for i in idx.tolist()]


def average_covariance(dists, subsamples, rng=None):
    if subsamples <= 0:
        raise ValueError("Require subsamples > 0")
    if len(dists) == 0:
        raise ValueError("List of distributions cannot be empty")
    subset = _random_subset(dists, min(len(dists), subsamples), rng)
    return sum(d.cov_matrix() for d in subset) / len(subset)


def average_diag_covariance(dists, subsamples, rng=None):
    if subsamples <= 0:
        raise ValueError("Require subsamples > 0")
    if len(dists) == 0:
        raise ValueError("List of distributions cannot be empty")
    subset = _random_subset(dists, min(len(dists), subsamples), rng)
    return sum(torch.diagonal(d.cov_matrix()) for d in subset) / len(subset)


class RFGEProdMap(RandomFeatureMap):
    """
    Random features for the expected product kernel with a Gaussian
    embedding kernel of widths^2 `gwidth2`.
    """
    MATLAB_CLASS = "RFGEProdMap"

    def __init__(self, gwidth2, num_features: int, generator: Optional[torch.Generator] = None):
        self.gwidth2 = torch.as_tensor(gwidth2, dtype=torch.float64).reshape(-1)
        self._num_features = int(num_features)
        if self._num_features <= 0:
            raise ValueError(f"num_features must be positive, got {num_features}")
        self.generator = generator if generator is not None else make_generator()
        # dim x num_features
        self.W = None
        self.B = None

    def init_map(self, dist):
        if self.W is not None:
            return
        dim = dist.mean_vector().numel()
        std = torch.sqrt(1.0 / self.gwidth2).expand(dim) if self.gwidth2.numel() == 1 \
            else torch.sqrt(1.0 / self.gwidth2)
        if std.numel() != dim:
            raise ValueError(f"expected {std.numel()} dimensions, got {dim}")
        self.W = torch.randn(dim, self._num_features, generator=self.generator, dtype=torch.float64) * std[:, None]
        self.B = torch.rand(self._num_features, generator=self.generator, dtype=torch.float64) * 2 * math.pi

    def map_to_vector(self, *msgs) -> torch.Tensor:
        if len(msgs) != 1:
            raise ValueError(f"{self.MATLAB_CLASS} only works on one distribution")
        dist = msgs[0]
        self.init_map(dist)
        mean = dist.mean_vector()
        cov = dist.cov_matrix()
        wtm = mean @ self.W
        wvw = torch.sum((cov @ self.W) * self.W, dim=0)
        return math.sqrt(2.0 / self._num_features) * torch.cos(wtm + self.B) * torch.exp(-0.5 * wvw)

    def output_dim(self):
        return self._num_features

    def num_features(self):
        return [self._num_features]

    def regenerate(self, num_features):
        return RFGEProdMap(self.gwidth2, num_features[-1], self.generator)

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        num_features = s.get_int("numFeatures")
        W = s.get_matrix("W")
        if W.shape[1] != num_features:
            raise ValueError("numFeatures should be = #cols of W")
        B = s.get_1d_double_array("B")
        # widths are baked into W already
        m = cls(torch.ones(W.shape[0], dtype=torch.float64), num_features)
        m.W = W
        m.B = B
        return m


class RFGJointKGG(RandomFeatureMap):
    """
    Random features for a Gaussian kernel on mean embeddings of the
    joint (block-diagonal) Gaussian of all incoming messages.
    """
    MATLAB_CLASS = "RFGJointKGG"

    def __init__(self, embed_width2s, outer_width2, inner_num_features, outer_num_features,
                 generator: Optional[torch.Generator] = None):
        embed_width2s = torch.as_tensor(embed_width2s, dtype=torch.float64).reshape(-1)
        if embed_width2s.numel() == 0:
            raise ValueError("embed width2s parameters cannot be empty.")
        if outer_width2 <= 0:
            raise ValueError("require outer_width2 > 0")
        self.embed_width2s = embed_width2s
        self.outer_width2 = float(outer_width2)
        self.inner_num_features = int(inner_num_features)
        self.outer_num_features = int(outer_num_features)
        self.generator = generator if generator is not None else make_generator()
        self.eprod_map = None
        # inner x outer
        self.Wout = None
        self.Bout = None

    @classmethod
    def empty_map(cls, generator=None):
        """
        Placeholder only good for calling `gen_candidates`.
        """
        m = cls.__new__(cls)
        m.embed_width2s = None
        m.outer_width2 = None
        m.inner_num_features = 0
        m.outer_num_features = 0
        m.generator = generator if generator is not None else make_generator()
        m.eprod_map = None
        m.Wout = None
        m.Bout = None
        return m

    @staticmethod
    def to_joint_gaussian(*msgs) -> VectorGaussian:
        return VectorGaussian.from_blocks(msgs)

    def init_map(self, joint):
        if self.Wout is not None:
            return
        if self.embed_width2s is None:
            raise ValueError("empty map cannot generate features")
        if joint.dim() != self.embed_width2s.numel():
            raise ValueError("Expect total dim. of the joint to be = length of params.")
        self.eprod_map = RFGEProdMap(self.embed_width2s, self.inner_num_features, self.generator)
        self.Wout = torch.randn(
            self.inner_num_features, self.outer_num_features,
            generator=self.generator, dtype=torch.float64) / math.sqrt(self.outer_width2)
        self.Bout = torch.rand(self.outer_num_features, generator=self.generator, dtype=torch.float64) * 2 * math.pi

    def map_to_vector(self, *msgs) -> torch.Tensor:
        joint = self.to_joint_gaussian(*msgs)
        self.init_map(joint)
        inner = self.eprod_map.map_to_vector(joint)
        return torch.cos(inner @ self.Wout + self.Bout) * math.sqrt(2.0 / self.outer_num_features)

    def output_dim(self):
        return self.outer_num_features

    def num_features(self):
        return [self.inner_num_features, self.outer_num_features]

    def regenerate(self, num_features):
        if len(num_features) != 2:
            raise ValueError("num_features must have length = 2")
        return RFGJointKGG(
            self.embed_width2s, self.outer_width2,
            num_features[0], num_features[1], self.generator)

    def gen_candidates(self, msgs_list, num_features, median_factors, rng=None):
        """
        One candidate per median factor. Embedding widths^2 are set to
        the average diagonal covariance of the joints; the outer width^2
        is the median pairwise embedding distance times the factor.
        """
        if len(num_features) != 2:
            raise ValueError("num_features must have length = 2")
        if rng is None:
            rng = self.generator
        joints = [self.to_joint_gaussian(*msgs) for msgs in msgs_list]
        subsamples = min(1500, len(joints))
        embed_width2s = average_diag_covariance(joints, subsamples, rng)
        med = median_pairwise(joints, embed_width2s)
        if not med > 0:
            # repeated messages dominate the minibatch; use the distinct pairs
            med = median_pairwise(joints, embed_width2s, positive_only=True)
            if not med > 0:
                med = 1.0
        candidates = []
        for i, medf in enumerate(median_factors):
            if medf <= 0:
                raise ValueError(
                    f"medf must be strictly positive. Found i={i}, medf[i]={medf}")
            candidates.append(RFGJointKGG(
                embed_width2s, med * medf, num_features[0], num_features[1], self.generator))
        return candidates

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        outer_width2 = s.get_double("outer_width2")
        num_features = s.get_int("numFeatures")
        inner_num_features = s.get_int("innerNumFeatures")
        eprod_map = RFGEProdMap.from_matlab_struct(s.get_struct("eprodMap"))
        Wout = s.get_matrix("Wout")
        if inner_num_features != Wout.shape[0]:
            raise ValueError("inner #features must be = #rows of Wout")
        if num_features != Wout.shape[1]:
            raise ValueError("numFeatures must be = #cols of Wout")
        Bout = s.get_1d_double_array("Bout")
        if Bout.numel() != num_features:
            raise ValueError("Bout must have length = numFeatures")
        m = cls(torch.ones(eprod_map.W.shape[0], dtype=torch.float64), outer_width2,
                inner_num_features, num_features)
        m.eprod_map = eprod_map
        m.Wout = Wout
        m.Bout = Bout
        return m

    def __repr__(self):
        return (f"RFGJointKGG(outer_width2={self.outer_width2}, "
                f"num_features={self.num_features()})")


class RFGMap:
    """
    Rahimi & Recht random Fourier features for a Gaussian kernel
    on plain vectors. Only ever loaded, never drawn here.
    """
    MATLAB_CLASS = "RandFourierGaussMap"

    def __init__(self, gwidth2, W, B):
        self.gwidth2 = float(gwidth2)
        # dim x num_features
        self.W = torch.as_tensor(W, dtype=torch.float64)
        self.B = torch.as_tensor(B, dtype=torch.float64).reshape(-1)
        if self.W.shape[0] <= 0 or self.W.shape[1] <= 0:
            raise ValueError("weight matrix has collapsed dimensions")

    def num_features(self):
        return self.W.shape[1]

    def input_dim(self):
        return self.W.shape[0]

    def gen_features(self, x) -> torch.Tensor:
        x = torch.as_tensor(x, dtype=torch.float64).reshape(-1)
        if x.numel() != self.input_dim():
            raise ValueError("Input vector does not have a compatible dimension.")
        s = x / math.sqrt(self.gwidth2)
        return torch.cos(self.W.T @ s + self.B) * math.sqrt(2.0 / self.num_features())

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        gwidth2 = s.get_double("gwidth2")
        num_features = s.get_int("numFeatures")
        W = s.get_matrix("W")
        if num_features != W.shape[1]:
            raise ValueError("Loaded weight matrix's #cols does not match numFeatures.")
        return cls(gwidth2, W, s.get_1d_double_array("B"))


class RFGMVMap(VectorMapper):
    """
    Stack scaled means and (column-major) scaled covariances of all
    messages, then apply an `RFGMap`.
    """
    MATLAB_CLASS = "RandFourierGaussMVMap"

    def __init__(self, mwidth2s, vwidth2s, rfg_map: RFGMap):
        self.mwidth2s = torch.as_tensor(mwidth2s, dtype=torch.float64).reshape(-1)
        self.vwidth2s = torch.as_tensor(vwidth2s, dtype=torch.float64).reshape(-1)
        if self.mwidth2s.numel() != self.vwidth2s.numel():
            raise ValueError("Params. for means and variances must have the same length.")
        if not bool(torch.all(self.mwidth2s > 0)) or not bool(torch.all(self.vwidth2s > 0)):
            raise ValueError("mwidth2s and vwidth2s must be positive.")
        self.rfg_map = rfg_map

    def to_mv_stack(self, msgs):
        means, covs = [], []
        for i, d in enumerate(msgs):
            means.append(d.mean_vector() / math.sqrt(self.mwidth2s[i].item()))
            # column-major flattening
            covs.append((d.cov_matrix() / math.sqrt(self.vwidth2s[i].item())).T.reshape(-1))
        return torch.cat(means + covs)

    def map_to_vector(self, *msgs):
        mv = self.to_mv_stack(msgs)
        if mv.numel() != self.rfg_map.input_dim():
            raise ValueError("Total MV dimension does not match underlying RFGMap")
        return self.rfg_map.gen_features(mv)

    def output_dim(self):
        return self.rfg_map.num_features()

    @classmethod
    def from_matlab_struct(cls, s):
        _check_class(s, cls)
        return cls(
            s.get_1d_double_array("mwidth2s"),
            s.get_1d_double_array("vwidth2s"),
            RFGMap.from_matlab_struct(s.get_struct("rfgMap")))


FEATURE_MAPS = {m.MATLAB_CLASS: m for m in (RFGEProdMap, RFGJointKGG, RFGMVMap)}


def feature_map_from_matlab_struct(s):
    class_name = s.get_string("className")
    if class_name not in FEATURE_MAPS:
        raise ValueError(f"Unknown className: {class_name}")
    return FEATURE_MAPS[class_name].from_matlab_struct(s)
