# %%
"""
Precision of Gaussian data under a compound gamma prior,

r2 ~ Gamma(1, 1)
precision ~ Gamma(1, r2)
x_i ~ N(0, 1/precision)

by EP with the quadrature operator and with its online kernel EP stand-in.
"""
# %load_ext autoreload
# %autoreload 2
import os
from pprint import pprint

import numpy as np
import torch
from matplotlib import pyplot as plt
from dotenv import load_dotenv
import submitit

from kernel_ep import tasks
from kernel_ep.jobs import submit_jobs, collate_job_results, compute_percentiles, timed_trial
from kernel_ep.models.compound_gamma import CompoundGamma
from kernel_ep.ops import KEPCGFacOp
from kernel_ep.plots import uncertainty_plot

load_dotenv()

# Intermediate results we do not wish to vesion
LOG_DIR = os.getenv("LOG_DIR", "_logs")
# Outputs we wish to keep
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "outputs")
# Figures we wish to keep
FIG_DIR = os.getenv("FIG_DIR", "fig")

torch.set_default_dtype(torch.float64)
import lovely_tensors as lt
lt.monkey_patch()


def run_run(
        n_problems=200,
        ep_iter=10,
        online_batch_size_trigger=20,
        seed=1):
    """
    Oracle consultation rate, and the mean absolute gap in log posterior
    mean between the online operator and the oracle.
    """
    op = KEPCGFacOp(online_batch_size_trigger=online_batch_size_trigger, seed=seed)
    cg = CompoundGamma()
    gaps = []
    rng = np.random.default_rng(seed)
    for problem in range(n_problems):
        N = int(rng.integers(10, 101))
        obs, _, _ = cg.gen_data(N, seed=int(rng.integers(2 ** 31)))
        post = cg.infer_precision(obs, ep_iter, op=op)
        ora_post = cg.infer_precision(obs, ep_iter)
        gaps.append(abs(np.log(post.mean()) - np.log(ora_post.mean())))
    return dict(
        consult_rate=op.consult_rate(),
        log_mean_gap=float(np.mean(gaps)),
        op=op)


#%% one long run, written to .mat
op, path = tasks.run_online_cg(seed_to=300, verbose=False)
print(path, op.consult_rate())
fig = uncertainty_plot(op.record)
os.makedirs(FIG_DIR, exist_ok=True)
fig.savefig(os.path.join(FIG_DIR, "kep_003_uncertainty.pdf"))

#%% time and memory of a single run
pprint({k: v for k, v in timed_trial(run_run, n_problems=50)['result'].items() if k != 'op'})

#%% how the minibatch size trades off oracle calls
executor = submitit.AutoExecutor(folder=LOG_DIR)
executor.update_parameters(
    timeout_min=59,
    slurm_account=os.getenv('SLURM_ACCOUNT'),
    slurm_array_parallelism=10,
)
# executor = submitit.DebugExecutor(folder=LOG_DIR)
sweep_param = 'online_batch_size_trigger'
job_info = submit_jobs(
    executor, run_run, dict(n_problems=200), sweep_param, [5, 10, 20, 50], n_replicates=5,
    experiment_name="kep_003_cg_batch")
# %%
results = collate_job_results(job_info, sweep_param)
for value, res in results.items():
    print(value, compute_percentiles(
        [dict(consult_rate=c, log_mean_gap=g) for c, g in zip(res['consult_rate'], res['log_mean_gap'])]))
plt.show()
