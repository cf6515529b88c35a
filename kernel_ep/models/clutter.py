"""
Minka's clutter problem.

y_n ~ w N(theta, data_var) + (1 - w) N(clutter_mean, clutter_var),
theta ~ N(prior_mean, prior_var).
EP keeps one Gaussian site on theta per datum; the tilted moments of a
two-component mixture are exact.
"""
import math
import warnings

import numpy as np
from scipy.special import expit

from ..dists import Gaussian


def _log_normal(y, m, v):
    return -0.5 * (math.log(2 * math.pi * v) + (y - m) ** 2 / v)


class ClutterProblem:
    def __init__(
            self,
            w=0.5,
            data_var=1.0,
            clutter_mean=0.0,
            clutter_var=10.0,
            prior_mean=0.0,
            prior_var=100.0,
            true_theta=2.0,
            n_data=10,
            seed=104):
        if not 0.0 < w <= 1.0:
            raise ValueError(f"data component weight must lie in (0, 1], got {w}")
        self.w = w
        self.data_var = data_var
        self.clutter_mean = clutter_mean
        self.clutter_var = clutter_var
        self.prior = Gaussian.from_mean_and_variance(prior_mean, prior_var)
        self.true_theta = true_theta
        self.n_data = n_data
        self.seed = seed
        self.data = None
        self.true_z = None

    def gen_data(self):
        """
        z = 0 picks the data component, z = 1 the clutter.
        """
        rng = np.random.default_rng(self.seed)
        self.true_z = (rng.random(self.n_data) >= self.w).astype(int)
        from_data = rng.normal(self.true_theta, math.sqrt(self.data_var), self.n_data)
        from_clutter = rng.normal(self.clutter_mean, math.sqrt(self.clutter_var), self.n_data)
        self.data = np.where(self.true_z == 0, from_data, from_clutter)
        return self.data, self.true_z

    def tilted(self, y, cavity: Gaussian):
        """
        Moments of cavity(theta) * likelihood(y | theta), and the posterior
        probability that y came from the data component.
        """
        m, v = cavity.mean_and_variance()
        s = v + self.data_var
        log_data = math.log(self.w) + _log_normal(y, m, s)
        log_clutter = (
            math.log1p(-self.w) + _log_normal(y, self.clutter_mean, self.clutter_var)
            if self.w < 1 else -math.inf)
        r = float(expit(log_data - log_clutter))
        d = y - m
        new_m = m + r * v * d / s
        new_v = v - r * v * v / s + r * (1 - r) * v * v * d * d / (s * s)
        return Gaussian.from_mean_and_variance(new_m, new_v), r

    def infer(self, ep_iter=10, verbose=False):
        """
        (posterior on theta, P(z_n = data component) per datum)
        """
        if self.data is None:
            self.gen_data()
        sites = [Gaussian.uniform() for _ in self.data]
        post = self.prior
        resp = np.zeros(len(self.data))
        for it in range(ep_iter):
            for i, y in enumerate(self.data):
                cavity = post.ratio(sites[i])
                if not cavity.precision > 0:
                    warnings.warn(f"EP iter {it}, datum {i}: improper cavity {cavity}; skipping")
                    continue
                new_post, resp[i] = self.tilted(float(y), cavity)
                sites[i] = new_post.ratio(cavity, force_proper=True)
                post = cavity * sites[i]
            if verbose:
                print(f"EP iter {it + 1}: posterior over theta {post}")
        return post, resp
