from matplotlib import pyplot as plt
import numpy as np
from einops import asnumpy

from ._base import DEFAULT_THRESHOLD


def _entries(records, direction):
    if hasattr(records, "entries"):
        return records.entries
    if direction not in ("to_x", "to_logistic"):
        raise ValueError(f"direction must be 'to_x' or 'to_logistic', got {direction}")
    return getattr(records, direction)


def uncertainty_plot(records, threshold=DEFAULT_THRESHOLD, direction="to_x", ax=None):
    """
    Log predictive variance of each output statistic per operator call,
    against the threshold; crosses mark the calls that went to the oracle.
    Takes CGOpRecords or LogisticOpRecords (pick a `direction` for the latter).
    """
    if ax is None:
        fig, ax = plt.subplots()
    else:
        fig = ax.figure
    entries = _entries(records, direction)
    unc = np.array([e["uncertainty"] for e in entries], dtype=np.float64).reshape(-1, 2)
    consult = np.array([e["consult"] for e in entries], dtype=bool)
    calls = np.arange(len(entries))
    for j in range(unc.shape[1]):
        ax.plot(calls, unc[:, j], lw=0.8, label=f"output {j + 1}")
    ax.axhline(threshold, color='black', ls='--', lw=0.8, label="threshold")
    if consult.any():
        # not-yet-ready mappers have no uncertainty; put their marks on the threshold
        y = np.nanmax(np.where(np.isnan(unc), threshold, unc), axis=1)
        ax.scatter(calls[consult], y[consult], marker='x', color='red', s=12, label="oracle")
    ax.set_xlabel("call")
    ax.set_ylabel("log predictive variance")
    ax.legend()
    return fig


def inference_time_plot(times, labels=None, ax=None):
    """
    One line of inference times per problem for each operator.
    """
    if ax is None:
        fig, ax = plt.subplots()
    else:
        fig = ax.figure
    if labels is None:
        labels = [str(i) for i in range(len(times))]
    if len(labels) != len(times):
        raise ValueError(f"{len(times)} time series but {len(labels)} labels")
    for t, label in zip(times, labels):
        t = asnumpy(t) if hasattr(t, "detach") else np.asarray(t, dtype=np.float64)
        ax.plot(np.arange(1, len(t) + 1), t, label=label)
    ax.set_yscale('log')
    ax.set_xlabel("problem")
    ax.set_ylabel("inference time (s)")
    ax.legend()
    return fig


def coefficient_plot(true_w, post, ax=None):
    """
    True coefficients against posterior means with +-2 sd bars.
    """
    if ax is None:
        fig, ax = plt.subplots()
    else:
        fig = ax.figure
    true_w = np.asarray(asnumpy(true_w) if hasattr(true_w, "detach") else true_w, dtype=np.float64).reshape(-1)
    m = asnumpy(post.mean_vector())
    sd = np.sqrt(np.clip(asnumpy(post.variance_diag()), 0.0, None))
    idx = np.arange(len(true_w))
    ax.scatter(idx, true_w, marker='o', color='black', label="true")
    ax.errorbar(idx, m, yerr=2 * sd, fmt='_', color='red', label="posterior")
    ax.set_xlabel("coefficient")
    ax.legend()
    return fig
