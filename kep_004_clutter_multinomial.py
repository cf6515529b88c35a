# %%
"""
The two toy models that need no special factor operator:
Minka's clutter problem, and multinomial regression fitted by Laplace.
"""
# %load_ext autoreload
# %autoreload 2
import os

import numpy as np
import torch
from matplotlib import pyplot as plt
from dotenv import load_dotenv

from kernel_ep.models.clutter import ClutterProblem
from kernel_ep.models import multinomial

load_dotenv()

# Figures we wish to keep
FIG_DIR = os.getenv("FIG_DIR", "fig")

torch.set_default_dtype(torch.float64)
import lovely_tensors as lt
lt.monkey_patch()

#%% clutter
problem = ClutterProblem(n_data=50)
post, resp = problem.infer(ep_iter=10, verbose=True)
print(post, "true theta", problem.true_theta)
print("responsibility accuracy", np.mean((resp > 0.5) == (problem.true_z == 0)))

#%% multinomial: error as the sample grows
errors = multinomial.sample_size_sweep(num_features=6, num_classes=4, total_count=10)

# %%
from tueplots import bundles, figsizes
plt.rcParams.update(bundles.iclr2024())
plt.rcParams.update(figsizes.iclr2024(ncols=2, nrows=1, height_to_width_ratio=1.0))
fig, axs = plt.subplots(ncols=2, nrows=1)
ys = np.linspace(problem.data.min() - 2, problem.data.max() + 2, 200)
m, v = post.mean_and_variance()
axs[0].plot(ys, np.exp(-0.5 * (ys - m) ** 2 / v) / np.sqrt(2 * np.pi * v), color='red')
axs[0].scatter(problem.data, np.zeros_like(problem.data), c=resp, marker='|', cmap='coolwarm')
axs[0].set_xlabel(r"$\theta$")
axs[1].loglog(multinomial.SAMPLE_SIZES, errors)
axs[1].set_xlabel("samples")
axs[1].set_ylabel("RMSE")
os.makedirs(FIG_DIR, exist_ok=True)
fig.savefig(os.path.join(FIG_DIR, "kep_004_clutter_multinomial.pdf"))
plt.show()
