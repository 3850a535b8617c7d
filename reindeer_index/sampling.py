"""
Posterior Sampling Module
=========================

Selects a fixed-size subset of IMPM posterior draws per management area
and aligns them into one (draw x year x area) array.

Only draws that stay inside the externally reported 95% credible band
for at least `coverage_threshold` of their checkable years are eligible.
Areas are sampled independently, in alphabetical order, from a single
seeded generator so that a run is reproducible for a given seed.

Cells excluded by the data quality rules are NaN in every draw.
"""

import warnings
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .config import SUMMARY_QUANTILES
from .data_loading import exclusion_mask, intervals_to_bounds


class InsufficientDrawsError(ValueError):
    """Fewer qualifying draws than requested and replacement not allowed."""


@dataclass
class PosteriorSample:
    """Resampled posterior abundance, indexed (draw, year, area)."""
    values: np.ndarray
    years: List[int]
    areas: List[str]

    def __post_init__(self):
        self.values = np.asarray(self.values, dtype=float)
        self.years = [int(y) for y in self.years]
        self.areas = [str(a) for a in self.areas]
        expected = (len(self.years), len(self.areas))
        if self.values.ndim != 3 or self.values.shape[1:] != expected:
            raise ValueError(
                f"Sample shape {self.values.shape} does not match "
                f"(draws, {expected[0]} years, {expected[1]} areas)"
            )

    @property
    def n_draws(self) -> int:
        return self.values.shape[0]

    def area_draws(self, area: str) -> np.ndarray:
        """(draw x year) trajectories of one area."""
        return self.values[:, :, self.areas.index(area)]

    def mean_trajectory(self) -> pd.DataFrame:
        """Posterior mean per (year, area); NaN where every draw is missing."""
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', category=RuntimeWarning)
            mean = np.nanmean(self.values, axis=0)
        return pd.DataFrame(mean, index=pd.Index(self.years, name='year'), columns=self.areas)


# ============================================================================
# COVERAGE
# ============================================================================

def draw_coverage(draws, lower, upper, skip=None):
    """
    Fraction of each draw's checkable years that fall inside [lower, upper].

    A year is checkable when the draw value and both bounds are finite and
    the year is not excluded.

    Parameters
    ----------
    draws : ndarray (n_draws, n_years)
    lower, upper : ndarray (n_years,)
    skip : ndarray of bool (n_years,), optional
        Years to ignore (e.g. excluded years)

    Returns
    -------
    ndarray (n_draws,)
        Coverage in [0, 1]; NaN for a draw with no checkable year
    """
    draws = np.asarray(draws, dtype=float)
    lower = np.asarray(lower, dtype=float)
    upper = np.asarray(upper, dtype=float)

    checkable = np.isfinite(draws) & np.isfinite(lower) & np.isfinite(upper)
    if skip is not None:
        checkable &= ~np.asarray(skip, dtype=bool)

    inside = checkable & (draws >= lower) & (draws <= upper)
    n_checked = checkable.sum(axis=1)

    with np.errstate(invalid='ignore', divide='ignore'):
        coverage = inside.sum(axis=1) / n_checked
    coverage = np.where(n_checked > 0, coverage, np.nan)
    return coverage


def sample_qualifying_draws(coverage, n_samples, threshold, rng,
                            allow_replacement=False, area=None):
    """
    Pick `n_samples` draw indices among those with coverage >= threshold.

    Raises
    ------
    InsufficientDrawsError
        If fewer draws qualify than requested and replacement is not allowed,
        or if no draw qualifies at all.
    """
    coverage = np.asarray(coverage, dtype=float)
    qualifying = np.flatnonzero(np.nan_to_num(coverage, nan=-1.0) >= threshold)
    label = f" for {area}" if area else ""

    if len(qualifying) == 0:
        best = np.nanmax(coverage) if np.isfinite(coverage).any() else np.nan
        raise InsufficientDrawsError(
            f"No draws{label} reach coverage {threshold:.2f} (best: {best:.3f})"
        )

    if len(qualifying) < n_samples:
        if not allow_replacement:
            raise InsufficientDrawsError(
                f"Only {len(qualifying)} draws{label} reach coverage {threshold:.2f}, "
                f"{n_samples} requested. Lower the threshold, reduce n_samples "
                f"or allow replacement."
            )
        return rng.choice(qualifying, size=n_samples, replace=True)

    return rng.choice(qualifying, size=n_samples, replace=False)


# ============================================================================
# SAMPLE ASSEMBLY
# ============================================================================

def build_posterior_sample(raw_draws: Dict[str, pd.DataFrame],
                           intervals: pd.DataFrame,
                           config,
                           rng: Optional[np.random.Generator] = None,
                           verbose: bool = True) -> PosteriorSample:
    """
    Resample qualifying draws per area and align them into one array.

    Parameters
    ----------
    raw_draws : dict
        area -> DataFrame (rows = raw draws, columns = years), as returned
        by data_loading.load_posterior_draws
    intervals : DataFrame
        Reported bounds with columns area, year, q2.5, q97.5
    config : PipelineConfig
        Uses years, exclusions, n_samples, coverage_threshold,
        allow_replacement and seed
    rng : numpy Generator, optional
        Defaults to a generator seeded with config.seed

    Returns
    -------
    PosteriorSample
    """
    if rng is None:
        rng = np.random.default_rng(config.seed)

    years = config.years
    areas = sorted(raw_draws)
    excluded = exclusion_mask(years, areas, config.exclusions)

    values = np.full((config.n_samples, len(years), len(areas)), np.nan)

    if verbose:
        print(f"Sampling {config.n_samples} draws per area "
              f"(coverage >= {config.coverage_threshold:.0%})...")

    for j, area in enumerate(areas):
        draws = raw_draws[area].reindex(columns=years).to_numpy(dtype=float)
        lower, upper = intervals_to_bounds(intervals, area, years)

        coverage = draw_coverage(draws, lower, upper, skip=excluded[:, j])
        chosen = sample_qualifying_draws(
            coverage, config.n_samples, config.coverage_threshold, rng,
            allow_replacement=config.allow_replacement, area=area,
        )
        values[:, :, j] = draws[chosen]

        if verbose:
            n_ok = int(np.sum(np.nan_to_num(coverage, nan=-1.0) >= config.coverage_threshold))
            print(f"  {area:<25} {n_ok:>6,}/{len(draws):,} draws qualify")

    values[:, excluded] = np.nan

    return PosteriorSample(values=values, years=years, areas=areas)


def summarize_posterior_sample(sample: PosteriorSample,
                               quantiles=SUMMARY_QUANTILES) -> pd.DataFrame:
    """
    Abundance summary per (area, year), computed from the sample itself.

    Returns
    -------
    DataFrame
        Columns: area, year, mean, sd, q2.5, q25, q75, q97.5
        All statistics NaN for cells with no finite draw.
    """
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', category=RuntimeWarning)
        mean = np.nanmean(sample.values, axis=0)
        sd = np.nanstd(sample.values, axis=0, ddof=1)
        qs = np.nanpercentile(sample.values, quantiles, axis=0)

    rows = []
    for j, area in enumerate(sample.areas):
        for t, year in enumerate(sample.years):
            row = {'area': area, 'year': year, 'mean': mean[t, j], 'sd': sd[t, j]}
            for q, values in zip(quantiles, qs):
                row[f"q{q:g}"] = values[t, j]
            rows.append(row)

    return pd.DataFrame(rows)
