"""
.mat files in and out.
`MatlabStruct` is a typed view over a loaded struct that complains
loudly when a field is missing or has the wrong shape.
"""
import os

import numpy as np
import torch
from scipy.io import loadmat, savemat


def _convert_loaded(v):
    if isinstance(v, np.ndarray):
        if v.dtype.names is not None:
            if v.size == 1:
                rec = v.reshape(-1)[0]
                return {n: _convert_loaded(rec[n]) for n in v.dtype.names}
            out = np.empty(v.shape, dtype=object)
            for idx in np.ndindex(v.shape):
                rec = v[idx]
                out[idx] = {n: _convert_loaded(rec[n]) for n in v.dtype.names}
            return out
        if v.dtype == object:
            out = np.empty(v.shape, dtype=object)
            for idx in np.ndindex(v.shape):
                out[idx] = _convert_loaded(v[idx])
            return out
        if v.dtype.kind == "U":
            return "".join(v.reshape(-1).tolist())
    return v


class MatlabStruct:
    def __init__(self, d):
        if not isinstance(d, dict):
            raise ValueError(f"expected a dict for a struct, got {type(d).__name__}")
        self.d = d

    def _get(self, key):
        if key not in self.d:
            raise ValueError(f"key '{key}' not found in struct with fields {sorted(self.d)}")
        return self.d[key]

    def contains_key(self, key):
        return key in self.d

    def keys(self):
        return self.d.keys()

    def get_struct(self, key):
        v = self._get(key)
        if isinstance(v, MatlabStruct):
            return v
        if not isinstance(v, dict):
            raise ValueError(f"'{key}' is not a struct")
        return MatlabStruct(v)

    def get_matrix(self, key):
        v = self._get(key)
        if not isinstance(v, np.ndarray) or v.dtype.kind not in "fiub":
            raise ValueError(f"'{key}' is not a numeric matrix")
        if v.ndim != 2:
            raise ValueError(f"'{key}' has {v.ndim} dimensions, expected 2")
        return torch.as_tensor(v.astype(np.float64))

    def get_double(self, key):
        m = self.get_matrix(key)
        if tuple(m.shape) != (1, 1):
            raise ValueError(f"'{key}' is not a scalar, shape {tuple(m.shape)}")
        return m[0, 0].item()

    def get_int(self, key):
        d = self.get_double(key)
        i = int(round(d))
        if abs(d - i) > 1e-8:
            raise ValueError(f"'{key}' = {d} is not an integer")
        return i

    def get_1d_double_array(self, key):
        m = self.get_matrix(key)
        if m.shape[0] != 1 and m.shape[1] != 1:
            raise ValueError(f"'{key}' is not a vector, shape {tuple(m.shape)}")
        return m.reshape(-1)

    def get_string(self, key):
        v = self._get(key)
        if not isinstance(v, str):
            raise ValueError(f"'{key}' is not a string")
        return v

    def get_cells(self, key):
        v = self._get(key)
        if not isinstance(v, np.ndarray) or v.dtype != object:
            raise ValueError(f"'{key}' is not a cell array")
        return v.reshape(v.shape[0], -1) if v.ndim == 1 else v

    def get_struct_cells(self, key):
        cells = self.get_cells(key)
        out = np.empty(cells.shape, dtype=object)
        for idx in np.ndindex(cells.shape):
            c = cells[idx]
            if not isinstance(c, dict):
                raise ValueError(f"cell {idx} of '{key}' is not a struct")
            out[idx] = MatlabStruct(c)
        return out

    def __repr__(self):
        return f"MatlabStruct({sorted(self.d)})"


def read_mat(path):
    """
    Load a .mat file into a MatlabStruct of its variables.
    """
    raw = loadmat(path, squeeze_me=False)
    return MatlabStruct({k: _convert_loaded(v) for k, v in raw.items() if not k.startswith("__")})


def _to_savable(v):
    if isinstance(v, MatlabStruct):
        v = v.d
    if isinstance(v, dict):
        return {k: _to_savable(x) for k, x in v.items()}
    if isinstance(v, torch.Tensor):
        return v.detach().cpu().numpy().astype(np.float64)
    if isinstance(v, (bool, np.bool_, int, np.integer)):
        return float(v)
    if v is None:
        return np.nan
    if isinstance(v, (list, tuple)):
        if len(v) == 0:
            return np.zeros((0, 0))
        items = [_to_savable(x) for x in v]
        if all(isinstance(x, np.ndarray) and x.ndim == 1 for x in items):
            # vectors as columns
            return np.stack(items, axis=1)
        if all(isinstance(x, (float, np.floating)) for x in items):
            return np.asarray(items, dtype=np.float64)
        if all(isinstance(x, np.ndarray) and x.ndim == 2 for x in items) and \
                len({x.shape for x in items}) == 1:
            return np.stack(items, axis=2)
        return np.array(items, dtype=object)
    if isinstance(v, np.ndarray) and v.dtype.kind in "biu":
        return v.astype(np.float64)
    return v


def write_mat(path, d):
    """
    Save a dict of variables to .mat, making the parent folder if needed.
    """
    parent_dir = os.path.dirname(path)
    if parent_dir:
        os.makedirs(parent_dir, exist_ok=True)
    savemat(path, {k: _to_savable(v) for k, v in d.items()}, oned_as="row")
    return path
