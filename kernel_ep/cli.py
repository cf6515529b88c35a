"""
kernel-ep <routine> [--seed-from N] [--seed-to N] [--n N] [--d N] [--ep-iter N] [--is-size N]

Routines:
    is              logistic regression with the importance sampling operator
    kep_is          logistic regression with the online kernel EP operator
    dnet            time the deterministic logistic operator
    collect_msgs    save logistic factor messages for offline training
    cg              online kernel EP on compound gamma precision problems
    clutter         Minka's clutter problem
    multinomial     multinomial regression over a range of sample sizes
    logistic        one logistic regression problem with a bias
    compound_gamma  compound gamma precision inference on a few seeds
"""
import argparse
import sys

from . import tasks
from .models import multinomial
from .models.clutter import ClutterProblem
from .models.compound_gamma import test_inference
from .models.logistic_regression import run_logistic_regression


def _settings(args, *names):
    """
    The options the user actually gave, so routine defaults stand otherwise.
    """
    return {k: getattr(args, k) for k in names if getattr(args, k) is not None}


def _is(args):
    return tasks.run_online_importance_sampling(**_settings(args, "seed_from", "seed_to", "n", "d", "ep_iter", "is_size"))


def _kep_is(args):
    return tasks.run_online_kep_sampling(**_settings(args, "seed_from", "seed_to", "n", "d", "ep_iter", "is_size"))


def _dnet(args):
    return tasks.record_dnet_time(**_settings(args, "seed_from", "seed_to", "n", "d", "ep_iter"))


def _collect_msgs(args):
    return tasks.collect_logistic_msgs(**_settings(args, "seed_from", "seed_to", "n", "d", "ep_iter"))


def _cg(args):
    return tasks.run_online_cg(**_settings(args, "seed_to", "ep_iter"))


def _clutter(args):
    kwargs = {}
    if args.n is not None:
        kwargs["n_data"] = args.n
    if args.seed_from is not None:
        kwargs["seed"] = args.seed_from
    problem = ClutterProblem(**kwargs)
    post, resp = problem.infer(ep_iter=args.ep_iter or 10, verbose=True)
    print(f"posterior over theta: {post}")
    print(f"P(data component): {resp}")
    return post, resp


def _multinomial(args):
    return multinomial.sample_size_sweep(
        num_features=args.d or 6, num_classes=4, total_count=10, seed=args.seed_from or 1)


def _logistic(args):
    kwargs = _settings(args, "n", "d", "ep_iter")
    if args.seed_from is not None:
        kwargs["seed"] = args.seed_from
    return run_logistic_regression(**kwargs)


def _compound_gamma(args):
    seeds = range(args.seed_from or 1, (args.seed_to or 5) + 1)
    return test_inference(seeds=seeds, **_settings(args, "n", "ep_iter"))


ROUTINES = {
    "is": _is,
    "kep_is": _kep_is,
    "dnet": _dnet,
    "collect_msgs": _collect_msgs,
    "cg": _cg,
    "clutter": _clutter,
    "multinomial": _multinomial,
    "logistic": _logistic,
    "compound_gamma": _compound_gamma,
}


def build_parser():
    p = argparse.ArgumentParser(prog="kernel-ep", description="Kernel EP experiment routines")
    p.add_argument("routine", help="one of: " + ", ".join(ROUTINES))
    p.add_argument("--seed-from", type=int, default=None)
    p.add_argument("--seed-to", type=int, default=None)
    p.add_argument("--n", type=int, default=None, help="data set size")
    p.add_argument("--d", type=int, default=None, help="input dimension")
    p.add_argument("--ep-iter", type=int, default=None)
    p.add_argument("--is-size", type=int, default=None, help="importance sampling size")
    return p


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.routine not in ROUTINES:
        raise ValueError(f"Unknown routine: {args.routine}")
    ROUTINES[args.routine](args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
