# %%
"""
Online kernel EP on a run of logistic regression problems sharing one w.
The operator keeps learning across problems, so the oracle should be
consulted less and less.
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
from kernel_ep.jobs import save_artefact, load_artefact, construct_output_path
from kernel_ep.plots import uncertainty_plot, inference_time_plot

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

base_kwargs = dict(
    seed_from=1,
    seed_to=10,
    d=20,
    n=200,
    ep_iter=10,
    # is_size=100000,
    is_size=20000,
    init_fixed_seed=1,
    verbose=False,
)

#%% runs take a while; a cluster is nice
executor = submitit.AutoExecutor(folder=LOG_DIR)
executor.update_parameters(
    timeout_min=119,
    slurm_account=os.getenv('SLURM_ACCOUNT'),
    slurm_array_parallelism=3,
)
# executor = submitit.DebugExecutor(folder=LOG_DIR)
kep_job = executor.submit(tasks.run_online_kep_sampling, **base_kwargs)
is_job = executor.submit(tasks.run_online_importance_sampling, **base_kwargs)
dnet_job = executor.submit(
    tasks.record_dnet_time,
    **{k: v for k, v in base_kwargs.items() if k != 'is_size'})

# %%
kep_records, kep_paths = kep_job.result()
is_records, is_paths = is_job.result()
dnet_times, dnet_path = dnet_job.result()
pprint(kep_paths[-1:] + is_paths[-1:] + [dnet_path])
print("saving to", save_artefact(
    dict(kep=kep_records, IS=is_records, dnet=dnet_times),
    construct_output_path("kep_002_online_logistic")))

# %%
results = load_artefact(construct_output_path("kep_002_online_logistic"))
print("fraction of to-x calls sent to the oracle", np.mean([e['consult'] for e in results['kep'].to_x]))

fig = uncertainty_plot(results['kep'], direction="to_x")
os.makedirs(FIG_DIR, exist_ok=True)
fig.savefig(os.path.join(FIG_DIR, "kep_002_uncertainty.pdf"))
fig = inference_time_plot(
    [results['kep'].inference_times, results['IS'].inference_times, results['dnet']],
    ["KJIT", "importance sampling", "deterministic"])
fig.savefig(os.path.join(FIG_DIR, "kep_002_times.pdf"))
plt.show()
