"""
Precision of Gaussian data under a compound gamma prior:

r2 ~ Gamma(shape1, rate1), precision ~ Gamma(shape2, r2),
x_i ~ N(gauss_mean, 1/precision).
"""
import numpy as np

from ..dists import Gamma
from ..ops.compound_gamma import CGFacOp, CGParams
from ..utils import as_vec


class CompoundGamma:
    def __init__(self, shape1=None, rate1=None, shape2=None, gauss_mean=0.0):
        defaults = CGParams()
        self.shape1 = defaults.shape1 if shape1 is None else float(shape1)
        self.rate1 = defaults.rate1 if rate1 is None else float(rate1)
        self.shape2 = defaults.shape2 if shape2 is None else float(shape2)
        self.gauss_mean = float(gauss_mean)

    def params(self):
        return CGParams(self.shape1, self.rate1, self.shape2)

    def gen_data(self, n, seed=None):
        """
        (data, true r2, true precision)
        """
        rng = np.random.default_rng(seed)
        true_r2 = rng.gamma(self.shape1, 1.0 / self.rate1)
        true_prec = rng.gamma(self.shape2, 1.0 / true_r2)
        data = rng.normal(self.gauss_mean, 1.0 / np.sqrt(true_prec), size=n)
        return data, float(true_r2), float(true_prec)

    def likelihood_message(self, x) -> Gamma:
        """
        Product of the exact Gaussian likelihood messages to the precision.
        """
        x = as_vec(x)
        sq = ((x - self.gauss_mean) ** 2).sum().item()
        return Gamma.from_shape_and_rate(1.0 + 0.5 * x.numel(), 0.5 * sq)

    def infer_precision(self, x, ep_iter: int, op=None, verbose=False) -> Gamma:
        """
        EP posterior on the precision.
        The likelihood part never changes, so it is also the cavity
        the compound gamma operator sees; the operator is still asked
        once per iteration, as an online operator needs the traffic.
        """
        if op is None:
            op = CGFacOp(self.params())
        lik = self.likelihood_message(x)
        to_prec = Gamma.uniform()
        for it in range(ep_iter):
            to_prec = op.precision_average_conditional(lik)
            if verbose:
                print(f"EP iter {it + 1}: message to precision {to_prec}")
        return lik * to_prec


def test_inference(seeds=range(1, 6), n=100, ep_iter=10, op=None, verbose=True):
    results = []
    for seed in seeds:
        cg = CompoundGamma()
        obs, true_r2, true_prec = cg.gen_data(n, seed)
        post = cg.infer_precision(obs, ep_iter, op=op)
        if verbose:
            print(f"seed: {seed}")
            print(f"n: {n}")
            print(f"True r2: {true_r2}")
            print(f"True precision: {true_prec}")
            print(f"Inferred precision posterior: {post}")
            print("=========================")
        results.append(dict(seed=seed, true_r2=true_r2, true_prec=true_prec, post=post))
    return results


# not a pytest test, despite the name
test_inference.__test__ = False
