"""
Data Loading Module for Wild Reindeer Reference Value Analysis
===============================================================

This module handles loading data from the upstream sources:
- Posterior draws from the multi-population abundance model (IMPM)
- Reported posterior intervals (per area and year)
- Harvest records (flat file -> year x area table)
- Minimum-count surveys
- Area registry (habitat size per management area)
- Detectability scalar pair

Key Features:
- Transliteration of Norwegian area names to canonical ASCII form
- Fatal reporting of names that do not resolve across sources
- Data quality exclusions as NaN masks (never zeros)

Dependencies:
- pandas
- numpy
"""

import json
import os
import unicodedata
import warnings

import numpy as np
import pandas as pd

from .config import TRANSLITERATION


class AreaNameMismatchError(ValueError):
    """An area name did not resolve to a known management area."""


# ============================================================================
# AREA NAMES
# ============================================================================

def canonical_area_name(name):
    """
    Transliterate an area name to its canonical ASCII form.

    Norwegian letters are mapped explicitly (ø -> o, æ -> ae, å -> a);
    any remaining diacritics are stripped via NFKD decomposition.
    Surrounding whitespace is removed and internal runs collapsed.

    Parameters
    ----------
    name : str

    Returns
    -------
    str

    Examples
    --------
    >>> canonical_area_name("Snøhetta")
    'Snohetta'
    >>> canonical_area_name("Lærdal-Årdal")
    'Laerdal-Ardal'
    """
    text = str(name)
    for char, replacement in TRANSLITERATION.items():
        text = text.replace(char, replacement)
    text = unicodedata.normalize('NFKD', text)
    text = text.encode('ascii', 'ignore').decode('ascii')
    return " ".join(text.split())


def harmonize_area_names(names, known_areas, source="input"):
    """
    Map raw area names onto the set of known canonical names.

    Matching is done on the transliterated form and is case-insensitive.

    Parameters
    ----------
    names : iterable of str
        Raw names as found in an input file
    known_areas : iterable of str
        Canonical names (e.g. PipelineConfig.areas)
    source : str
        Label used in the error message

    Returns
    -------
    dict
        raw name -> canonical name

    Raises
    ------
    AreaNameMismatchError
        If any name does not resolve. All unresolved names are listed.
    """
    lookup = {canonical_area_name(a).casefold(): a for a in known_areas}

    mapping = {}
    unresolved = []
    for raw in pd.unique(pd.Series(list(names), dtype=object)):
        key = canonical_area_name(raw).casefold()
        if key in lookup:
            mapping[raw] = lookup[key]
        else:
            unresolved.append(raw)

    if unresolved:
        raise AreaNameMismatchError(
            f"{len(unresolved)} area name(s) in {source} do not match any known area: "
            f"{sorted(map(str, unresolved))}"
        )
    return mapping


def _harmonize_column(df, known_areas, source, column='area'):
    """Replace an area column with canonical names (fatal on mismatch)."""
    mapping = harmonize_area_names(df[column], known_areas, source=source)
    df = df.copy()
    df[column] = df[column].map(mapping)
    return df


# ============================================================================
# DATA QUALITY EXCLUSIONS
# ============================================================================

def exclusion_mask(years, areas, exclusions):
    """
    Boolean mask of (year, area) cells whose abundance must be treated as missing.

    Parameters
    ----------
    years : sequence of int
    areas : sequence of str
    exclusions : dict
        area -> list of (first_year, last_year) windows, inclusive;
        None means open-ended

    Returns
    -------
    ndarray of bool, shape (len(years), len(areas))
    """
    years = np.asarray(years)
    mask = np.zeros((len(years), len(areas)), dtype=bool)

    for j, area in enumerate(areas):
        for first, last in exclusions.get(area, []):
            lo = -np.inf if first is None else first
            hi = np.inf if last is None else last
            mask[:, j] |= (years >= lo) & (years <= hi)

    return mask


def apply_exclusions(values, years, areas, exclusions):
    """
    Set excluded (year, area) cells to NaN.

    Works on a 2-D (year x area) table or a 3-D (draw x year x area) sample;
    a DataFrame indexed by year with area columns is also accepted.

    Returns
    -------
    same type as `values`, copied
    """
    mask = exclusion_mask(years, areas, exclusions)

    if isinstance(values, pd.DataFrame):
        return values.astype(float).mask(mask)

    out = np.array(values, dtype=float, copy=True)
    if out.ndim == 3:
        out[:, mask] = np.nan
    elif out.ndim == 2:
        out[mask] = np.nan
    else:
        raise ValueError(f"Expected 2-D or 3-D values, got {out.ndim}-D")
    return out


# ============================================================================
# UPSTREAM MODEL OUTPUT
# ============================================================================

def _check_exists(path):
    if not os.path.exists(path):
        raise FileNotFoundError(f"Input file not found: {path}")


def load_posterior_draws(path, known_areas=None, verbose=True):
    """
    Load raw IMPM posterior draws.

    The file is an npz archive with:
        draws : (n_raw, n_years, n_areas) post-harvest abundance
        years : (n_years,)
        areas : (n_areas,)

    Returns
    -------
    dict
        canonical area -> DataFrame (rows = raw draws, columns = years)
    """
    _check_exists(path)

    with np.load(path, allow_pickle=False) as archive:
        draws = archive['draws'].astype(float)
        years = archive['years'].astype(int)
        areas = [str(a) for a in archive['areas']]

    if draws.shape[1:] != (len(years), len(areas)):
        raise ValueError(
            f"Draw array shape {draws.shape} does not match "
            f"{len(years)} years x {len(areas)} areas"
        )

    if known_areas is not None:
        mapping = harmonize_area_names(areas, known_areas, source=str(path))
        areas = [mapping[a] for a in areas]

    result = {
        area: pd.DataFrame(draws[:, :, j], columns=years)
        for j, area in enumerate(areas)
    }

    if verbose:
        print(f"Loading posterior draws: {path}")
        print(f"  Raw draws: {draws.shape[0]:,}")
        print(f"  Years: {years.min()}-{years.max()}")
        print(f"  Areas: {len(areas)}")

    return result


def load_posterior_intervals(path, known_areas=None, verbose=True):
    """
    Load the reported 2.5%/97.5% posterior bounds per (area, year).

    Returns
    -------
    DataFrame
        Columns: area, year, q2.5, q97.5 (plus any extra summary columns)
    """
    _check_exists(path)
    df = pd.read_csv(path)

    required = {'area', 'year', 'q2.5', 'q97.5'}
    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"Interval file missing columns: {sorted(missing)}")

    if known_areas is not None:
        df = _harmonize_column(df, known_areas, source=str(path))

    df['year'] = df['year'].astype(int)

    if verbose:
        print(f"Loading posterior intervals: {path}")
        print(f"  Records: {len(df):,}")

    return df


def intervals_to_bounds(intervals, area, years):
    """
    Extract the lower/upper bound vectors of one area on a year axis.

    Returns
    -------
    tuple of ndarray
        (lower, upper), NaN where the interval is not reported
    """
    sub = intervals[intervals['area'] == area].set_index('year')
    sub = sub.reindex(list(years))
    return sub['q2.5'].to_numpy(dtype=float), sub['q97.5'].to_numpy(dtype=float)


# ============================================================================
# HARVEST, SURVEYS, AREA REGISTRY
# ============================================================================

def pivot_harvest(df, years, areas):
    """
    Pivot flat harvest records into a year x area table.

    Multiple rows per (year, area) are summed. Years or areas with no
    record are left missing, not zero.
    """
    table = df.pivot_table(
        index='year', columns='area', values='total_harvested', aggfunc='sum'
    )
    table = table.reindex(index=list(years), columns=list(areas))
    table.index.name = 'year'
    table.columns.name = None

    if (table < 0).any().any():
        raise ValueError("Harvest table contains negative values")

    return table.astype(float)


def load_harvest_table(path, years, areas, verbose=True):
    """
    Load harvest records and pivot to an area-indexed wide table.

    Parameters
    ----------
    path : str
        CSV with columns year, area, total_harvested
    years : sequence of int
        Year axis to align on
    areas : sequence of str
        Canonical area names

    Returns
    -------
    DataFrame
        index = year, columns = areas
    """
    _check_exists(path)
    df = pd.read_csv(path)
    df = _harmonize_column(df, areas, source=str(path))
    df['year'] = df['year'].astype(int)

    table = pivot_harvest(df, years, areas)

    if verbose:
        print(f"Loading harvest records: {path}")
        print(f"  Records: {len(df):,}")
        print(f"  Area-years with harvest: {int(table.notna().sum().sum()):,}")

    return table


def load_survey_counts(path, known_areas, verbose=True):
    """
    Load minimum-count surveys.

    Returns
    -------
    DataFrame
        Columns: area (canonical), year, min_count, source
    """
    _check_exists(path)
    df = pd.read_csv(path)

    required = {'area', 'year', 'min_count'}
    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"Survey file missing columns: {sorted(missing)}")
    if 'source' not in df.columns:
        df['source'] = np.nan

    df = _harmonize_column(df, known_areas, source=str(path))
    df['year'] = df['year'].astype(int)
    df = df.dropna(subset=['min_count'])

    if verbose:
        print(f"Loading minimum counts: {path}")
        print(f"  Surveys: {len(df):,} in {df['area'].nunique()} areas")

    return df[['area', 'year', 'min_count', 'source']].reset_index(drop=True)


def load_area_registry(path, known_areas, verbose=True):
    """
    Load habitat area (km²) per management area.

    Areas in the configuration without a registry entry are reported
    with a warning; they cannot receive a regression prediction.

    Returns
    -------
    pandas.Series
        canonical area -> area_km2
    """
    _check_exists(path)
    df = pd.read_csv(path)
    df = _harmonize_column(df, known_areas, source=str(path))

    sizes = df.groupby('area')['area_km2'].sum().astype(float)

    absent = sorted(set(known_areas) - set(sizes.index))
    if absent:
        warnings.warn(f"No habitat size registered for: {absent}")

    if verbose:
        print(f"Loading area registry: {path}")
        print(f"  Areas: {len(sizes)}  Total: {sizes.sum():,.0f} km²")

    return sizes.reindex(sorted(sizes.index))


def load_detectability(path, verbose=True):
    """
    Load the detectability scalar pair estimated from minimum-count surveys.

    Returns
    -------
    dict
        {'mean': float, 'sd': float}
    """
    _check_exists(path)
    with open(path) as f:
        data = json.load(f)

    p_mean = float(data['mean'])
    p_sd = float(data['sd'])
    if not 0 < p_mean <= 1:
        raise ValueError(f"Detectability mean must be in (0, 1], got {p_mean}")
    if p_sd < 0:
        raise ValueError(f"Detectability sd must be non-negative, got {p_sd}")

    if verbose:
        print(f"Detectability: {p_mean:.3f} ± {p_sd:.3f}")

    return {'mean': p_mean, 'sd': p_sd}
