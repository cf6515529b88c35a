# %%
"""
Binary logistic regression by EP with each of the logistic factor operators
on the same problem:

w ---> z_i = w . x_i ---> p_i = sigmoid(z_i) ---> y_i

The deterministic operator, the importance sampler and the online kernel EP
operator should all land on roughly the same posterior over w.
"""
# %load_ext autoreload
# %autoreload 2
import os
import time
from pprint import pprint

import torch
from matplotlib import pyplot as plt
from dotenv import load_dotenv

from kernel_ep.models.logistic_regression import gen_data, infer_coefficients_no_bias, run_logistic_regression
from kernel_ep.ops import ISGaussianLogisticOp, KEPOnlineISLogisticOp, LogisticOp
from kernel_ep.plots import coefficient_plot
from kernel_ep.records import LogisticOpRecords
from kernel_ep.utils import make_generator

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
        d=10,
        n=200,
        ep_iter=5,
        is_size=20000,
        seed=2,
        verbose=False):
    g = make_generator(seed)
    w = torch.randn(d, generator=g)
    X, Y = gen_data(n, w, 0.0, generator=g)
    ops = dict(
        dnet=LogisticOp(),
        IS=ISGaussianLogisticOp(sample_size=is_size, seed=seed),
        kjit=KEPOnlineISLogisticOp(
            is_op=ISGaussianLogisticOp(sample_size=is_size, seed=seed),
            recorder=LogisticOpRecords(),
            print_true_when_certain=False,
            seed=seed),
    )
    res = dict(w=w)
    for name, op in ops.items():
        t0 = time.time()
        post = infer_coefficients_no_bias(X, Y, ep_iter, op, verbose=verbose)
        res[name] = dict(
            post=post,
            time=time.time() - t0,
            mse=((post.mean_vector() - w) ** 2).mean().item())
    res['kjit_records'] = ops['kjit'].recorder
    return res


#%% one problem with a bias, deterministic operator
w, b, post_w, post_b = run_logistic_regression(seed=39, d=10, n=100, ep_iter=10)

#%% operators side by side
res = run_run()
pprint({k: (v['time'], v['mse']) for k, v in res.items() if isinstance(v, dict)})

# %%
fig, axs = plt.subplots(ncols=3, figsize=(12, 3), sharey=True)
for ax, name in zip(axs, ['dnet', 'IS', 'kjit']):
    coefficient_plot(res['w'], res[name]['post'], ax=ax)
    ax.set_title(name)
os.makedirs(FIG_DIR, exist_ok=True)
fig.savefig(os.path.join(FIG_DIR, "kep_001_coefficients.pdf"))
plt.show()
