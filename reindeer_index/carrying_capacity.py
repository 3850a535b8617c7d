"""
Carrying Capacity Propagation
=============================

Estimates carrying capacity K per management area by refitting the growth
model once per retained posterior draw, so that the spread of K reflects
the uncertainty of the abundance estimates and not only the fit to the
posterior mean.

For each (area, draw) unit:
    1. take the draw's post-harvest trajectory X_t (excluded years -> NaN)
    2. rebuild pre-harvest abundance N_t = X_t + harvest_t
    3. fit the growth model to the pairs (N_t, X_t-1)

Units are independent, so the grid is spread over a multiprocessing pool
when more than one worker is configured. A failed unit leaves a NaN in its
(draw, area) slot; summaries are computed over the successful draws only.
"""

import warnings
from collections import Counter
from dataclasses import dataclass
from functools import partial
from multiprocessing import Pool

import numpy as np
import pandas as pd

from .config import FIT_CHUNKSIZE, SUMMARY_QUANTILES
from .data_loading import apply_exclusions
from .growth_model import fit_growth_model
from .progress import FitProgress


@dataclass
class CarryingCapacityResult:
    """K estimates of the (draw x area) grid and their per-area summary."""
    samples: pd.DataFrame    # index = draw, columns = areas, NaN = failed fit
    summary: pd.DataFrame    # one row per area
    failures: pd.DataFrame   # area, reason, count


def make_fitter(config):
    """Growth model fitter bound to the configured settings (picklable)."""
    return partial(
        fit_growth_model,
        obs_sd=config.obs_sd,
        min_pairs=config.min_pairs,
        plausibility_check=config.plausibility_check,
    )


def reconstruct_pairs(post_harvest, harvest):
    """
    Build the (N_t, X_t-1) series of one trajectory.

    Parameters
    ----------
    post_harvest : ndarray (n_years,)
        Post-harvest abundance X_t
    harvest : ndarray (n_years,)
        Animals removed in year t

    Returns
    -------
    tuple of ndarray
        (N[1:], X[:-1]); missing values are kept and dropped by the fitter
    """
    post_harvest = np.asarray(post_harvest, dtype=float)
    pre_harvest = post_harvest + np.asarray(harvest, dtype=float)
    return pre_harvest[1:], post_harvest[:-1]


def _aligned_harvest(harvest, years, areas):
    """Harvest as a (year x area) array on the sample axes."""
    absent = [a for a in areas if a not in harvest.columns]
    if absent:
        raise ValueError(f"No harvest records for areas: {absent}")
    return harvest.reindex(index=years, columns=areas).to_numpy(dtype=float)


# ============================================================================
# WORKERS
# ============================================================================

_WORKER_FITTER = None


def _init_worker(fitter):
    global _WORKER_FITTER
    _WORKER_FITTER = fitter


def _fit_unit(task, fitter=None):
    """Fit one (area, draw) unit; returns (draw, area_idx, K or NaN, reason)."""
    draw, j, n, x = task
    fitter = fitter or _WORKER_FITTER
    fit = fitter(n, x)
    K = fit.K if fit.success else np.nan
    return draw, j, K, fit.message


def _iter_tasks(values, harvest):
    n_draws, _, n_areas = values.shape
    for j in range(n_areas):
        for d in range(n_draws):
            n, x = reconstruct_pairs(values[d, :, j], harvest[:, j])
            yield d, j, n, x


# ============================================================================
# PROPAGATION
# ============================================================================

def propagate_carrying_capacity(sample, harvest, config, fitter=None, verbose=True):
    """
    Fit the growth model for every (area, draw) unit of a posterior sample.

    Parameters
    ----------
    sample : PosteriorSample
        Post-harvest abundance draws
    harvest : DataFrame
        index = year, columns = areas
    config : PipelineConfig
        Uses exclusions, n_workers and the growth model settings
    fitter : callable, optional
        (N, X) -> GrowthModelFit. Defaults to make_fitter(config); any
        picklable callable with the same contract can be swapped in.
    verbose : bool

    Returns
    -------
    CarryingCapacityResult
    """
    fitter = fitter or make_fitter(config)

    values = apply_exclusions(sample.values, sample.years, sample.areas, config.exclusions)
    harvest_arr = _aligned_harvest(harvest, sample.years, sample.areas)

    n_draws, _, n_areas = values.shape
    total = n_draws * n_areas
    k_grid = np.full((n_draws, n_areas), np.nan)
    reasons = Counter()

    if verbose:
        print(f"Fitting growth models: {n_areas} areas x {n_draws} draws "
              f"({config.n_workers} worker{'s' if config.n_workers != 1 else ''})")

    progress = FitProgress(total, desc="Fitting", enabled=verbose)
    tasks = _iter_tasks(values, harvest_arr)

    if config.n_workers > 1:
        with Pool(config.n_workers, initializer=_init_worker, initargs=(fitter,)) as pool:
            for d, j, K, reason in pool.imap_unordered(_fit_unit, tasks, chunksize=FIT_CHUNKSIZE):
                k_grid[d, j] = K
                reasons[(sample.areas[j], reason)] += 1
                progress.update(failed=reason != 'ok')
    else:
        for task in tasks:
            d, j, K, reason = _fit_unit(task, fitter=fitter)
            k_grid[d, j] = K
            reasons[(sample.areas[j], reason)] += 1
            progress.update(failed=reason != 'ok')
    progress.close()

    samples = pd.DataFrame(k_grid, columns=sample.areas)
    samples.index.name = 'draw'

    failures = pd.DataFrame(
        [(area, reason, count) for (area, reason), count in sorted(reasons.items())
         if reason != 'ok'],
        columns=['area', 'reason', 'count'],
    )

    summary = summarize_carrying_capacity(samples)

    unavailable = summary.loc[~summary['has_estimate'], 'area'].tolist()
    if unavailable:
        warnings.warn(f"No successful growth model fit for: {unavailable}")

    if verbose:
        print_carrying_capacity_summary(summary)

    return CarryingCapacityResult(samples=samples, summary=summary, failures=failures)


def summarize_carrying_capacity(samples, quantiles=SUMMARY_QUANTILES):
    """
    Per-area statistics of K over the successful draws.

    Failed draws (NaN) are dropped before any statistic is computed, so
    the result equals the statistics of the successful draws alone. An
    area without any successful draw has has_estimate = False and NaN
    statistics.

    Parameters
    ----------
    samples : DataFrame
        index = draw, columns = areas

    Returns
    -------
    DataFrame
        Columns: area, n_success, n_failed, mean, median, sd, q2.5, q25,
        q75, q97.5, has_estimate
    """
    rows = []
    for area in samples.columns:
        k = samples[area].to_numpy(dtype=float)
        ok = k[np.isfinite(k)]

        row = {
            'area': area,
            'n_success': len(ok),
            'n_failed': len(k) - len(ok),
        }
        if len(ok) > 0:
            row['mean'] = float(np.mean(ok))
            row['median'] = float(np.median(ok))
            row['sd'] = float(np.std(ok, ddof=1)) if len(ok) > 1 else np.nan
            for q, value in zip(quantiles, np.percentile(ok, quantiles)):
                row[f"q{q:g}"] = float(value)
        else:
            row.update({'mean': np.nan, 'median': np.nan, 'sd': np.nan})
            for q in quantiles:
                row[f"q{q:g}"] = np.nan
        row['has_estimate'] = len(ok) > 0
        rows.append(row)

    return pd.DataFrame(rows)


def fit_mean_trajectories(sample, harvest, config, fitter=None):
    """
    Fit the growth model once per area on the posterior mean trajectory.

    Gives a single point estimate of K with its standard error, as a
    diagnostic next to the per-draw distribution.

    Returns
    -------
    DataFrame
        One row per area with the GrowthModelFit fields
    """
    fitter = fitter or make_fitter(config)

    mean = sample.mean_trajectory()
    mean = apply_exclusions(mean, sample.years, sample.areas, config.exclusions)
    harvest_arr = _aligned_harvest(harvest, sample.years, sample.areas)

    rows = []
    for j, area in enumerate(sample.areas):
        n, x = reconstruct_pairs(mean[area].to_numpy(), harvest_arr[:, j])
        rows.append({'area': area, **fitter(n, x).to_dict()})

    return pd.DataFrame(rows)


def print_carrying_capacity_summary(summary):
    """Print the per-area K table."""
    print("\n" + "=" * 72)
    print("CARRYING CAPACITY BY AREA")
    print("=" * 72)
    print(f"{'Area':<25} {'n ok':>6} {'failed':>7} {'mean K':>10} {'median':>10} {'sd':>9}")
    print("-" * 72)
    for _, row in summary.iterrows():
        if row['has_estimate']:
            print(f"{row['area']:<25} {row['n_success']:>6} {row['n_failed']:>7} "
                  f"{row['mean']:>10.0f} {row['median']:>10.0f} {row['sd']:>9.0f}")
        else:
            print(f"{row['area']:<25} {row['n_success']:>6} {row['n_failed']:>7} "
                  f"{'--':>10} {'--':>10} {'--':>9}")
    print("=" * 72)
