"""
Per-call records of what an online operator saw, predicted and was told,
written to .mat for analysis elsewhere.
"""
import math

import numpy as np
import torch

from .matlab import write_mat


def _nan_pair(uncertainty):
    if uncertainty is None:
        return [math.nan, math.nan]
    return [float(u) for u in uncertainty]


class LogisticOpRecords:
    """
    Calls to a logistic factor operator, one list per direction,
    plus the posteriors and timings of the inference runs that made them.
    """
    def __init__(self):
        self.to_x = []
        self.to_logistic = []
        self.inference_times = []
        self.post_w = []
        self.dot_net_post_w = []

    def _entry(self, logistic, x, predicted, consult, uncertainty, oracle):
        return dict(
            logistic=logistic, x=x, predicted=predicted, consult=bool(consult),
            uncertainty=_nan_pair(uncertainty), oracle=oracle)

    def record_to_x(self, logistic, x, predicted, consult, uncertainty, oracle):
        self.to_x.append(self._entry(logistic, x, predicted, consult, uncertainty, oracle))

    def record_to_logistic(self, logistic, x, predicted, consult, uncertainty, oracle):
        self.to_logistic.append(self._entry(logistic, x, predicted, consult, uncertainty, oracle))

    def record_inference(self, inference_time, post_w=None, dot_net_post_w=None):
        self.inference_times.append(float(inference_time))
        if post_w is not None:
            self.post_w.append(post_w)
        if dot_net_post_w is not None:
            self.dot_net_post_w.append(dot_net_post_w)

    @classmethod
    def merge(cls, records):
        merged = cls()
        for r in records:
            merged.to_x.extend(r.to_x)
            merged.to_logistic.extend(r.to_logistic)
            merged.inference_times.extend(r.inference_times)
            merged.post_w.extend(r.post_w)
            merged.dot_net_post_w.extend(r.dot_net_post_w)
        return merged

    @staticmethod
    def _incoming(entries, prefix):
        return {
            prefix + "inNormalMeans": [e["x"].mean() for e in entries],
            prefix + "inNormalVariances": [e["x"].variance() for e in entries],
            prefix + "inBetaA": [e["logistic"].true_count for e in entries],
            prefix + "inBetaB": [e["logistic"].false_count for e in entries],
            prefix + "consultOracle": [float(e["consult"]) for e in entries],
            prefix + "uncertainty": np.array([e["uncertainty"] for e in entries], dtype=np.float64).reshape(-1, 2).T,
        }

    def to_dict(self, extra=None):
        d = self._incoming(self.to_x, "")
        d["outNormalMeans"] = [_attr(e["predicted"], "mean") for e in self.to_x]
        d["outNormalVariances"] = [_attr(e["predicted"], "variance") for e in self.to_x]
        d["oraOutNormalMeans"] = [_attr(e["oracle"], "mean") for e in self.to_x]
        d["oraOutNormalVariances"] = [_attr(e["oracle"], "variance") for e in self.to_x]

        p = "toLogistic_"
        d.update(self._incoming(self.to_logistic, p))
        d[p + "outBetaA"] = [_field(e["predicted"], "true_count") for e in self.to_logistic]
        d[p + "outBetaB"] = [_field(e["predicted"], "false_count") for e in self.to_logistic]
        d[p + "oraOutBetaA"] = [_field(e["oracle"], "true_count") for e in self.to_logistic]
        d[p + "oraOutBetaB"] = [_field(e["oracle"], "false_count") for e in self.to_logistic]

        d["inferenceTimes"] = list(self.inference_times)
        d.update(_posteriors(self.post_w, "post"))
        d.update(_posteriors(self.dot_net_post_w, "dotNetPost"))
        if extra:
            d.update(extra)
        return d

    def write_records(self, path, extra=None):
        return write_mat(path, self.to_dict(extra))


def _attr(dist, name):
    if dist is None:
        return math.nan
    return getattr(dist, name)()


def _field(dist, name):
    if dist is None:
        return math.nan
    return getattr(dist, name)


def _posteriors(posts, prefix):
    if not posts:
        return {}
    return {
        prefix + "Means": torch.stack([p.mean_vector() for p in posts], dim=1),
        prefix + "Covs": np.stack([p.cov_matrix().numpy() for p in posts], axis=2),
    }


class CGOpRecords:
    """
    Calls to a compound gamma operator.
    """
    def __init__(self):
        self.entries = []

    def __len__(self):
        return len(self.entries)

    def record(self, in_msg, out_msg, consult, uncertainty, oracle_out):
        self.entries.append(dict(
            incoming=in_msg, predicted=out_msg, consult=bool(consult),
            uncertainty=_nan_pair(uncertainty), oracle=oracle_out))

    def consult_rate(self):
        if not self.entries:
            return math.nan
        return sum(e["consult"] for e in self.entries) / len(self.entries)

    def to_dict(self, extra=None):
        e = self.entries
        d = {
            "inShape": [x["incoming"].shape for x in e],
            "inRate": [x["incoming"].rate for x in e],
            "outShape": [_field(x["predicted"], "shape") for x in e],
            "outRate": [_field(x["predicted"], "rate") for x in e],
            "consultOracle": [float(x["consult"]) for x in e],
            "uncertainty": np.array([x["uncertainty"] for x in e], dtype=np.float64).reshape(-1, 2).T,
            "oraOutShape": [x["oracle"].shape for x in e],
            "oraOutRate": [x["oracle"].rate for x in e],
        }
        if extra:
            d.update(extra)
        return d

    def write_records(self, path, extra=None):
        return write_mat(path, self.to_dict(extra))
