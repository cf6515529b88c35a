"""
Online learners for message operators.

`BayesLinRegFM` is Bayesian linear regression on random features of the
incoming messages, one scalar output each.
It sits in a minibatch phase until enough targets have arrived, then
picks its feature map by marginal likelihood and switches to rank-one
updates.
Its uncertainty is the log predictive variance, compared with a threshold
to decide whether to trust the prediction or ask an oracle.
"""
import math
from typing import List, Optional, Sequence

import torch

from ._base import DEFAULT_BATCH_TRIGGER, DEFAULT_THRESHOLD, NotReadyError
from .features import RFGJointKGG, RandomFeatureMap
from .utils import make_generator


def log_marginal_likelihood(Phi, y, noise_var):
    """
    log N(y; 0, Phi Phi^T + noise_var I)
    """
    n = y.numel()
    K = Phi @ Phi.T + noise_var * torch.eye(n, dtype=Phi.dtype)
    L = torch.linalg.cholesky(K)
    alpha = torch.cholesky_solve(y.reshape(-1, 1), L).reshape(-1)
    return (
        -0.5 * torch.dot(y, alpha)
        - torch.sum(torch.log(torch.diagonal(L)))
        - 0.5 * n * math.log(2 * math.pi)).item()


class BayesLinRegFM:
    """
    y = w^T phi(msgs) + offset + noise, w ~ N(0, I), noise ~ N(0, noise_var).
    """
    def __init__(
            self,
            feature_map: Optional[RandomFeatureMap] = None,
            threshold: float = DEFAULT_THRESHOLD,
            noise_var: float = 1e-4,
            online_batch_size_trigger: int = DEFAULT_BATCH_TRIGGER,
            median_factors: Sequence[float] = (1/16, 1/4, 1.0, 4.0, 16.0),
            noise_var_candidates: Sequence[float] = (1e-6, 1e-5, 1e-4),
            features: Sequence[int] = (500, 1000),
            minibatch_features: Sequence[int] = (250, 500),
            generator: Optional[torch.Generator] = None,
            verbose: bool = False):
        self.generator = generator if generator is not None else make_generator()
        self.template = feature_map if feature_map is not None else RFGJointKGG.empty_map(self.generator)
        self.threshold = float(threshold)
        self.noise_var = float(noise_var)
        self.online_batch_size_trigger = int(online_batch_size_trigger)
        self.median_factors = list(median_factors)
        self.noise_var_candidates = list(noise_var_candidates)
        self.features = list(features)
        self.minibatch_features = list(minibatch_features)
        self.verbose = verbose

        self.feature_map = None
        self.offset = 0.0
        self.mean = None
        self.cov = None
        self.n_updates = 0
        self.batch_msgs = []
        self.batch_targets = []

    def set_online_batch_size_trigger(self, size):
        if size <= 0:
            raise ValueError(f"batch size trigger must be positive, got {size}")
        self.online_batch_size_trigger = int(size)

    def set_threshold(self, threshold):
        self.threshold = float(threshold)

    def is_online_ready(self) -> bool:
        return self.feature_map is not None

    def gen_random_features(self, *msgs) -> Optional[torch.Tensor]:
        if not self.is_online_ready():
            return None
        return self.feature_map.map_to_vector(*msgs)

    def predict(self, phi) -> float:
        if not self.is_online_ready():
            raise NotReadyError("predict called before the minibatch was fitted")
        return (torch.dot(phi, self.mean)).item() + self.offset

    def map_to_double(self, *msgs) -> float:
        return self.predict(self.gen_random_features(*msgs))

    def predictive_variance(self, phi) -> float:
        if not self.is_online_ready():
            return math.inf
        return (phi @ self.cov @ phi).item() + self.noise_var

    def estimate_uncertainty(self, phi) -> float:
        """
        log predictive variance; inf before the minibatch fit
        """
        if not self.is_online_ready():
            return math.inf
        return math.log(self.predictive_variance(phi))

    def is_uncertain(self, phi) -> bool:
        return self.estimate_uncertainty(phi) >= self.threshold

    def update(self, target: float, msgs, phi=None):
        """
        Feed one (msgs, target) pair.
        """
        target = float(target)
        if not self.is_online_ready():
            self.batch_msgs.append(tuple(msgs))
            self.batch_targets.append(target)
            if len(self.batch_targets) >= self.online_batch_size_trigger:
                self.minibatch_fit()
            return
        if phi is None:
            phi = self.gen_random_features(*msgs)
        # Kalman-style rank-one update of the weight posterior
        s_phi = self.cov @ phi
        denom = self.noise_var + torch.dot(phi, s_phi)
        resid = target - self.offset - torch.dot(phi, self.mean)
        self.mean = self.mean + s_phi * (resid / denom)
        self.cov = self.cov - torch.outer(s_phi, s_phi) / denom
        # keep it symmetric
        self.cov = 0.5 * (self.cov + self.cov.T)
        self.n_updates += 1

    def minibatch_fit(self):
        """
        Choose the feature map and noise variance by marginal likelihood on
        the minibatch, then fit the posterior with the full feature count.
        """
        y = torch.tensor(self.batch_targets, dtype=torch.float64)
        offset = y.mean().item()
        y = y - offset
        candidates = self.template.gen_candidates(
            self.batch_msgs, self.minibatch_features, self.median_factors, self.generator)
        best_score, best = -math.inf, None
        for cand in candidates:
            Phi = torch.stack([cand.map_to_vector(*m) for m in self.batch_msgs])
            for noise_var in self.noise_var_candidates:
                try:
                    score = log_marginal_likelihood(Phi, y, noise_var)
                except torch.linalg.LinAlgError:
                    continue
                if score > best_score:
                    best_score, best = score, (cand, noise_var)
        if best is None:
            raise ValueError("no feature map candidate could be fitted to the minibatch")
        cand, noise_var = best
        if self.verbose:
            print(f"minibatch fit: outer_width2={cand.outer_width2:.4g}, noise_var={noise_var:.3g}, "
                  f"log marginal likelihood={best_score:.4g}")
        self.feature_map = cand.regenerate(self.features)
        self.noise_var = noise_var
        self.offset = offset
        Phi = torch.stack([self.feature_map.map_to_vector(*m) for m in self.batch_msgs])
        D = Phi.shape[1]
        precision = torch.eye(D, dtype=torch.float64) + Phi.T @ Phi / noise_var
        L = torch.linalg.cholesky(precision)
        self.cov = torch.cholesky_inverse(L)
        self.mean = self.cov @ (Phi.T @ y) / noise_var
        self.n_updates = len(self.batch_targets)
        self.batch_msgs = []
        self.batch_targets = []


class OnlineStackBayesLinReg:
    """
    One `BayesLinRegFM` per output statistic.
    """
    def __init__(self, *learners: BayesLinRegFM):
        if len(learners) == 0:
            raise ValueError("need at least one learner")
        self.learners = list(learners)

    def __len__(self):
        return len(self.learners)

    def set_features(self, num_features):
        for b in self.learners:
            b.features = list(num_features)

    def set_minibatch_features(self, num_features):
        for b in self.learners:
            b.minibatch_features = list(num_features)

    def set_online_batch_size_trigger(self, size):
        for b in self.learners:
            b.set_online_batch_size_trigger(size)

    def get_threshold(self) -> List[float]:
        return [b.threshold for b in self.learners]

    def set_threshold(self, *thresh):
        if len(thresh) == 1 and len(self.learners) > 1:
            thresh = thresh * len(self.learners)
        if len(thresh) != len(self.learners):
            raise ValueError("threshold length does not match number of internal mappers")
        for b, t in zip(self.learners, thresh):
            b.set_threshold(t)

    def is_online_ready(self) -> bool:
        return all(b.is_online_ready() for b in self.learners)

    def gen_all_random_features(self, *msgs):
        return [b.gen_random_features(*msgs) for b in self.learners]

    def map_to_vector(self, *msgs, features=None) -> torch.Tensor:
        if features is None:
            features = self.gen_all_random_features(*msgs)
        return torch.tensor([b.predict(f) for b, f in zip(self.learners, features)], dtype=torch.float64)

    def estimate_uncertainty(self, *msgs, features=None) -> List[float]:
        if features is None:
            features = self.gen_all_random_features(*msgs)
        return [b.estimate_uncertainty(f) for b, f in zip(self.learners, features)]

    def is_uncertain(self, *msgs, features=None) -> bool:
        if features is None:
            features = self.gen_all_random_features(*msgs)
        return any(b.is_uncertain(f) for b, f in zip(self.learners, features))

    def update(self, target, msgs, features=None):
        target = torch.as_tensor(target, dtype=torch.float64).reshape(-1)
        if target.numel() != len(self.learners):
            raise ValueError("Require target length == number of nested Bayes learners")
        if features is None:
            features = [None] * len(self.learners)
        for b, t, f in zip(self.learners, target.tolist(), features):
            b.update(t, msgs, phi=f)


class OnlineDistMapper:
    """
    Online-learned map from incoming messages to a distribution,
    through a statistic vector and a builder.
    """
    def __init__(self, stack: OnlineStackBayesLinReg, builder):
        self.stack = stack
        self.builder = builder

    @classmethod
    def with_learners(cls, builder, n_stats=2, generator=None, **kwargs):
        g = generator if generator is not None else make_generator()
        return cls(
            OnlineStackBayesLinReg(*[BayesLinRegFM(generator=g, **kwargs) for _ in range(n_stats)]),
            builder)

    def is_online_ready(self):
        return self.stack.is_online_ready()

    def gen_all_random_features(self, *msgs):
        return self.stack.gen_all_random_features(*msgs)

    def map_to_dist(self, *msgs, features=None):
        return self.builder.from_stat(self.stack.map_to_vector(*msgs, features=features))

    def estimate_uncertainty(self, *msgs, features=None):
        return self.stack.estimate_uncertainty(*msgs, features=features)

    def is_uncertain(self, *msgs, features=None):
        if not self.is_online_ready():
            return True
        return self.stack.is_uncertain(*msgs, features=features)

    def map_and_estimate(self, *msgs):
        """
        (predicted dist or None, uncertainty list, uncertain flag),
        generating random features only once.
        """
        if not self.is_online_ready():
            return None, [math.nan] * len(self.stack), True
        features = self.gen_all_random_features(*msgs)
        uncertainty = self.stack.estimate_uncertainty(features=features)
        uncertain = self.stack.is_uncertain(features=features)
        return self.map_to_dist(features=features), uncertainty, uncertain

    def update_operator(self, target_dist, msgs, features=None):
        self.stack.update(self.builder.get_stat(target_dist), msgs, features=features)

    def get_threshold(self):
        return self.stack.get_threshold()

    def set_threshold(self, *thresh):
        self.stack.set_threshold(*thresh)

    def set_online_batch_size_trigger(self, size):
        self.stack.set_online_batch_size_trigger(size)

    def set_features(self, num_features):
        self.stack.set_features(num_features)

    def set_minibatch_features(self, num_features):
        self.stack.set_minibatch_features(num_features)
