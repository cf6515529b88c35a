import matplotlib
matplotlib.use("Agg")

import pytest
import torch


@pytest.fixture
def saved_dir(tmp_path, monkeypatch):
    """
    .mat records go to a throwaway folder.
    """
    d = tmp_path / "saved"
    monkeypatch.setenv("SAVED_DIR", str(d))
    return d


@pytest.fixture
def generator():
    g = torch.Generator()
    g.manual_seed(0)
    return g
