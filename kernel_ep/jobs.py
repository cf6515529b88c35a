"""
Sweeps over seeds or settings with submitit, and zipped pickling of what
comes back.
"""
import bz2
import os
import time
import warnings

import cloudpickle
import numpy as np
from memory_profiler import memory_usage

from . import config


def submit_seed_jobs(executor, fn, base_kwargs, seeds, experiment_name=None, batch=False):
    """
    One job per seed, all else held fixed.
    """
    if experiment_name is not None:
        executor.update_parameters(name=experiment_name)
    job_info = []

    def _submit():
        for seed in seeds:
            kwargs = base_kwargs.copy()
            kwargs['seed'] = seed
            print(f"experiment_name: {experiment_name} seed={seed}")
            job = executor.submit(fn, **kwargs)
            job_info.append({'job': job, 'params': kwargs})

    # map_array mode or not
    if batch:
        with executor.batch():
            _submit()
    else:
        _submit()
    return job_info


def submit_jobs(executor, fn, base_kwargs, sweep_param, sweep_values, n_replicates, experiment_name, job_info=None, batch=False):
    """
    `n_replicates` jobs per sweep value, seeds counting up from 0 across
    the whole sweep.
    """
    if job_info is None:
        job_info = []
    executor.update_parameters(name=experiment_name)

    def _submit():
        seed = 0
        for value in sweep_values:
            for replicate in range(n_replicates):
                kwargs = base_kwargs.copy()
                kwargs[sweep_param] = value
                kwargs['seed'] = seed
                seed += 1
                print(f"experiment_name: {experiment_name} {sweep_param}={value} replicate={replicate}")
                job = executor.submit(fn, **kwargs)
                job_info.append({'job': job, 'params': kwargs})

    if batch:
        with executor.batch():
            _submit()
    else:
        _submit()
    return job_info


def collate_job_results(job_info, sweep_param):
    """
    {sweep value: {result key: [one value per completed replicate]}},
    sorted by sweep value. Failed jobs are warned about and dropped.
    """
    results = {}
    for info in job_info:
        job = info['job']
        sweep_value = info['params'][sweep_param]
        print(f"waiting for {info['params']}")
        try:
            job_result = job.result()
        except Exception as e:
            warnings.warn(f"Job {job} failed with state {job.state}: {e}")
            continue
        results.setdefault(sweep_value, []).append(job_result)

    sorted_results = {k: results[k] for k in sorted(results)}
    # list of dicts to dict of lists
    return {k: {rk: [d[rk] for d in v] for rk in v[0]} for k, v in sorted_results.items() if v}


def compute_percentiles(results, percentiles=(0.025, 0.5, 0.975)):
    """
    Percentiles of each float in a list of result dicts.
    """
    if len(results) == 0:
        raise ValueError("no results to summarise")
    percentile_results = {}
    for key in results[0].keys():
        try:
            values = [result[key] for result in results]
            percentile_results[key] = np.nanpercentile(values, [p * 100 for p in percentiles])
        except Exception as e:
            # re-raise but tell us which key failed.
            raise ValueError(f"Failed to compute percentiles for key {key}") from e
    return percentile_results


def timed_trial(fn, **kwargs):
    """
    Run `fn(**kwargs)` and report its result, wall time and peak memory (MiB).
    """
    start_time = time.time()
    peak_memory, result = memory_usage((fn, (), kwargs), max_usage=True, retval=True)
    elapsed_time = time.time() - start_time
    return {
        'result': result,
        'time': elapsed_time,
        'memory': float(np.max(peak_memory)),
    }


def save_artefact(artefact, file_path):
    """
    Zipped pickler; makes the parent directories.
    """
    parent_dir = os.path.dirname(file_path)
    if parent_dir:
        os.makedirs(parent_dir, exist_ok=True)
    with bz2.open(file_path, "wb") as f:
        cloudpickle.dump(artefact, f)
    return file_path


def load_artefact(file_path):
    with bz2.open(file_path, "rb") as f:
        return cloudpickle.load(f)


def construct_output_path(path_fragment, base_dir=None):
    """
    `<OUTPUT_DIR>/<path_fragment>.pkl.bz2`
    """
    if base_dir is None:
        base_dir = os.getenv("OUTPUT_DIR", config.OUTPUT_DIR)
    return os.path.join(base_dir, f"{path_fragment}.pkl.bz2")


def construct_intermediate_path(path_fragment):
    """
    `<LOG_DIR>/<path_fragment>.pkl.bz2`
    """
    return construct_output_path(path_fragment, base_dir=os.getenv("LOG_DIR", config.LOG_DIR))
