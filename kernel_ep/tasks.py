"""
Experiment routines: run an EP loop over a range of seeds with one kind of
operator and dump what happened to .mat in the saved folder.

Every constant is a keyword argument so the routines can be run small.
"""
import time
from pprint import pprint

import numpy as np
import torch

from . import config
from .dists import Gamma
from .matlab import write_mat
from .models.compound_gamma import CompoundGamma
from .models.logistic_regression import gen_data, infer_coefficients_no_bias
from .ops.compound_gamma import CGFacOp, KEPCGFacOp
from .ops.logistic import ISGaussianLogisticOp, KEPOnlineISLogisticOp, LogisticOp
from .records import LogisticOpRecords
from .utils import make_generator


def _fixed_w(d, init_fixed_seed):
    return torch.randn(d, generator=make_generator(init_fixed_seed), dtype=torch.float64)


def _regression_extra(d, n, ep_iter, w, X, Y):
    return {
        "d": float(d),
        "n": float(n),
        "epIter": float(ep_iter),
        "trueW": w,
        # one column per datum
        "X": X.T,
        "Y": Y,
    }


def to_x_dict(msgs):
    """
    (to x, from x, from logistic) triples as columns of a .mat file.
    """
    return {
        "outNormalMeans": [m.mean() for m, _, _ in msgs],
        "outNormalVariances": [m.variance() for m, _, _ in msgs],
        "inNormalMeans": [x.mean() for _, x, _ in msgs],
        "inNormalVariances": [x.variance() for _, x, _ in msgs],
        "inBetaA": [b.true_count for _, _, b in msgs],
        "inBetaB": [b.false_count for _, _, b in msgs],
    }


def to_logistic_dict(msgs):
    """
    (to logistic, from x, from logistic) triples as columns of a .mat file.
    """
    return {
        "outBetaA": [m.true_count for m, _, _ in msgs],
        "outBetaB": [m.false_count for m, _, _ in msgs],
        "inNormalMeans": [x.mean() for _, x, _ in msgs],
        "inNormalVariances": [x.variance() for _, x, _ in msgs],
        "inBetaA": [b.true_count for _, _, b in msgs],
        "inBetaB": [b.false_count for _, _, b in msgs],
    }


def collect_logistic_msgs(
        seed_from=1,
        seed_to=20,
        d=10,
        n=400,
        ep_iter=5,
        b=0.0,
        collect_proj=True,
        verbose=True):
    """
    Run the deterministic logistic operator on fresh problems and save the
    messages it saw, as training sets for offline mappers.
    Returns the paths written.
    """
    annotate = "_proj" if collect_proj else ""
    op = LogisticOp(collect_x=True, collect_logistic=True, collect_proj=collect_proj)
    all_to_x, all_to_logistic = [], []
    paths = []
    for seed in range(seed_from, seed_to + 1):
        g = make_generator(seed)
        w = torch.randn(d, generator=g, dtype=torch.float64)
        X, Y = gen_data(n, w, b, generator=g)
        if verbose:
            print(f"Y: {Y.numpy().astype(int)}")

        op.reset_message_collection()
        op.reset_buffers()
        post_w = infer_coefficients_no_bias(X, Y, ep_iter, op)
        if verbose:
            print(f"n: {n}")
            print(f"d: {d}")
            print(f"number of true: {int(Y.sum().item())}")
            print(f"True w: {w.numpy()}")
            print(f"Inferred w: {post_w}")

        all_to_x.extend(op.to_x_messages)
        all_to_logistic.extend(op.to_logistic_messages)
        extra = {
            "regression_input_dim": float(d),
            "true_w": w,
            "true_bias": float(b),
            "regression_training_size": float(n),
            "X": X.T,
            "Y": Y,
        }
        to_x_path = config.path_to_saved_file(f"binlogis_bw{annotate}_n{n}_iter{ep_iter}_s{seed}.mat")
        to_logistic_path = config.path_to_saved_file(f"binlogis_fw{annotate}_n{n}_iter{ep_iter}_s{seed}.mat")
        write_mat(to_x_path, {**to_x_dict(op.to_x_messages), **extra})
        write_mat(to_logistic_path, {**to_logistic_dict(op.to_logistic_messages), **extra})
        paths.extend([to_x_path, to_logistic_path])

    suffix = f"_n{n}_iter{ep_iter}_sf{seed_from}_st{seed_to}.mat"
    all_to_x_path = config.path_to_saved_file(f"binlogis_bw{annotate}{suffix}")
    all_to_logistic_path = config.path_to_saved_file(f"binlogis_fw{annotate}{suffix}")
    write_mat(all_to_x_path, to_x_dict(all_to_x))
    write_mat(all_to_logistic_path, to_logistic_dict(all_to_logistic))
    paths.extend([all_to_x_path, all_to_logistic_path])
    return paths


def _run_recorded_logistic(
        op,
        prefix,
        seed_from,
        seed_to,
        d,
        n,
        ep_iter,
        b,
        init_fixed_seed,
        verbose):
    """
    Shared loop of the importance sampling and online kernel EP runs:
    one fixed w, fresh data per seed, a new recorder per seed, and the
    deterministic operator run on the same data for comparison.
    """
    w = _fixed_w(d, init_fixed_seed)
    records = []
    paths = []
    for seed in range(seed_from, seed_to + 1):
        X, Y = gen_data(n, w, b, seed=seed)
        recorder = LogisticOpRecords()
        op.set_recorder(recorder)

        op.stopwatch.reset()
        post_w = infer_coefficients_no_bias(X, Y, ep_iter, op)
        inference_time = op.stopwatch.elapsed

        dnet_post_w = infer_coefficients_no_bias(X, Y, ep_iter, LogisticOp())
        recorder.record_inference(inference_time, post_w, dnet_post_w)
        records.append(recorder)

        if verbose:
            print(f"seed: {seed}")
            print(f"n: {n}")
            print(f"d: {d}")
            print(f"number of true: {int(Y.sum().item())}")
            print(f"True w: {w.numpy()}")
            print(f"Inferred w: {post_w}")
            print(f"Deterministic operator w: {dnet_post_w}")
            print(f"Inference time: {inference_time:.3f} s")
            print("=========================")

        path = config.path_to_saved_file(f"{prefix}_n{n}_logistic_iter{ep_iter}_s{seed}.mat")
        recorder.write_records(path, _regression_extra(d, n, ep_iter, w, X, Y))
        paths.append(path)

    merged = LogisticOpRecords.merge(records)
    path = config.path_to_saved_file(f"{prefix}_n{n}_logistic_iter{ep_iter}_sf{seed_from}_st{seed_to}.mat")
    merged.write_records(path, {"d": float(d), "n": float(n), "epIter": float(ep_iter), "trueW": w})
    paths.append(path)
    return merged, paths


def run_online_importance_sampling(
        seed_from=1,
        seed_to=10,
        d=20,
        n=200,
        ep_iter=10,
        is_size=100000,
        b=0.0,
        init_fixed_seed=1,
        verbose=True):
    """
    Logistic regression with the importance sampler as the operator.
    """
    op = ISGaussianLogisticOp(sample_size=is_size, seed=init_fixed_seed)
    return _run_recorded_logistic(
        op, f"rec_is{is_size}", seed_from, seed_to, d, n, ep_iter, b, init_fixed_seed, verbose)


def run_online_kep_sampling(
        seed_from=1,
        seed_to=10,
        d=20,
        n=200,
        ep_iter=10,
        is_size=100000,
        b=0.0,
        init_fixed_seed=1,
        verbose=True,
        **op_kwargs):
    """
    Logistic regression with the online kernel EP operator, which keeps
    learning across seeds and consults the importance sampler when uncertain.
    """
    op_kwargs.setdefault("print_true_when_certain", False)
    op_kwargs.setdefault("seed", init_fixed_seed)
    op = KEPOnlineISLogisticOp(
        is_op=ISGaussianLogisticOp(sample_size=is_size, seed=init_fixed_seed),
        **op_kwargs)
    merged, paths = _run_recorded_logistic(
        op, f"rec_onlinekep_is{is_size}", seed_from, seed_to, d, n, ep_iter, b, init_fixed_seed, verbose)
    if verbose:
        consult = [e["consult"] for e in merged.to_x + merged.to_logistic]
        if consult:
            print(f"oracle consulted on {np.mean(consult):.3f} of calls")
    return merged, paths


def record_dnet_time(
        seed_from=1,
        seed_to=10,
        d=20,
        n=200,
        ep_iter=10,
        b=0.0,
        init_fixed_seed=1,
        verbose=True):
    """
    Time the deterministic operator alone on the same problems.
    """
    w = _fixed_w(d, init_fixed_seed)
    times, posts = [], []
    for seed in range(seed_from, seed_to + 1):
        X, Y = gen_data(n, w, b, seed=seed)
        t0 = time.perf_counter()
        post_w = infer_coefficients_no_bias(X, Y, ep_iter, LogisticOp())
        times.append(time.perf_counter() - t0)
        posts.append(post_w)
        if verbose:
            print(f"seed: {seed}, inference time: {times[-1]:.3f} s")
            print(f"True w: {w.numpy()}")
            print(f"Inferred w: {post_w}")

    path = config.path_to_saved_file(f"rec_dnet_n{n}_logistic_iter{ep_iter}_sf{seed_from}_st{seed_to}.mat")
    write_mat(path, {
        "allInferTimes": times,
        "postMeans": torch.stack([p.mean_vector() for p in posts], dim=1),
        "postCovs": np.stack([p.cov_matrix().numpy() for p in posts], axis=2),
        "dim": float(d),
        "n": float(n),
        "epIter": float(ep_iter),
        "seed_from": float(seed_from),
        "seed_to": float(seed_to),
        "init_fixed_seed": float(init_fixed_seed),
    })
    return times, path


def _gamma_arrays(posts):
    return [p.shape for p in posts], [p.rate for p in posts]


def run_online_cg(
        seed_to=2000,
        ep_iter=10,
        gauss_mean=0.0,
        online_batch_size_trigger=20,
        n_min=10,
        n_max=100,
        print_true_when_certain=True,
        verbose=True,
        **op_kwargs):
    """
    Compound gamma precision estimation on `seed_to` problems with the
    just-in-time operator, and again with the quadrature oracle.
    """
    op_kwargs.setdefault("seed", 1)
    op = KEPCGFacOp(
        online_batch_size_trigger=online_batch_size_trigger,
        print_true_when_certain=print_true_when_certain,
        record_messages=True,
        **op_kwargs)
    oracle = CGFacOp()
    infer_times, ora_infer_times = [], []
    posts, ora_posts = [], []
    Ns, true_r2s, true_precs = [], [], []
    for seed in range(1, seed_to + 1):
        rng = np.random.default_rng(seed)
        N = int(rng.integers(n_min, n_max + 1))
        if verbose:
            print(f"\n    ///// New compound Gamma problem {seed} of size: {N}  /////\n")
        cg = CompoundGamma(gauss_mean=gauss_mean)
        obs, true_r2, true_prec = cg.gen_data(N, seed)
        Ns.append(N)
        true_r2s.append(true_r2)
        true_precs.append(true_prec)

        # only the operator and the oracles it consults are timed
        op.stopwatch.reset()
        post: Gamma = cg.infer_precision(obs, ep_iter, op=op)
        infer_times.append(op.stopwatch.elapsed)
        posts.append(post)

        t0 = time.perf_counter()
        ora_post = cg.infer_precision(obs, ep_iter, op=oracle)
        ora_infer_times.append(time.perf_counter() - t0)
        ora_posts.append(ora_post)

        if verbose:
            pprint(dict(
                seed=seed, n=N, true_r2=true_r2, true_prec=true_prec,
                post=post, oracle_post=ora_post,
                time=infer_times[-1], oracle_time=ora_infer_times[-1]))

    post_shapes, post_rates = _gamma_arrays(posts)
    ora_post_shapes, ora_post_rates = _gamma_arrays(ora_posts)
    extra = {
        "inferTimes": infer_times,
        "oraInferTimes": ora_infer_times,
        "postShapes": post_shapes,
        "postRates": post_rates,
        "oraPostShapes": ora_post_shapes,
        "oraPostRates": ora_post_rates,
        "Ns": [float(N) for N in Ns],
        "trueRate2s": true_r2s,
        "truePrecs": true_precs,
    }
    path = config.path_to_saved_file(f"kjit_cg_iter{ep_iter}_bt{online_batch_size_trigger}_st{seed_to}.mat")
    op.record.write_records(path, extra)
    if verbose:
        print(f"oracle consulted on {op.consult_rate():.3f} of calls")
    return op, path
