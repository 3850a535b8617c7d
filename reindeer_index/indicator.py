"""
Indicator Assembly
==================

Turns yearly abundance estimates into indicator values relative to each
area's reference value.

Steps:
    1. convert minimum counts to abundance using detectability
    2. merge with model-based estimates (model preferred per area-year)
    3. fill missing assessment years from neighbouring years
    4. divide by the reference value

Quartile bounds of a year are divided by the same reference value; the
uncertainty of the reference value itself is not convolved into them.

Excluded (area, year) cells stay missing through every step: no survey
fallback and no imputation.
"""

import numpy as np
import pandas as pd
from scipy import stats

from .config import DATA_TYPE_CODES, INDICATOR_UNIT, REFERENCE_LABEL, SUMMARY_QUANTILES
from .data_loading import exclusion_mask

# Neighbour windows tried in order: (radius, both sides required)
IMPUTATION_WINDOWS = ((1, True), (2, True), (3, False))

ESTIMATE_FIELDS = ['mean', 'sd'] + [f"q{q:g}" for q in SUMMARY_QUANTILES]


# ============================================================================
# SURVEY-BASED ESTIMATES
# ============================================================================

def survey_abundance(survey_counts, detectability, quantiles=SUMMARY_QUANTILES):
    """
    Convert minimum counts to abundance estimates.

    With detectability p ~ N(p_mean, p_sd):
        mean     = count / p_mean
        sd       = count * p_sd / p_mean²        (delta method)
        quantile = count / p quantile at (1 - q)

    Where an area was counted more than once in a year the largest
    minimum count is used.

    Returns
    -------
    DataFrame
        Columns: area, year, mean, sd, q2.5, q25, q75, q97.5
    """
    p_mean = detectability['mean']
    p_sd = detectability['sd']

    counts = (survey_counts.groupby(['area', 'year'], as_index=False)['min_count'].max())
    c = counts['min_count'].to_numpy(dtype=float)

    out = counts[['area', 'year']].copy()
    out['mean'] = c / p_mean
    out['sd'] = c * p_sd / p_mean ** 2

    for q in quantiles:
        if p_sd > 0:
            p_q = stats.norm.ppf(1 - q / 100, loc=p_mean, scale=p_sd)
            p_q = float(np.clip(p_q, 1e-6, 1.0))
        else:
            p_q = p_mean
        out[f"q{q:g}"] = c / p_q

    return out


# ============================================================================
# MERGING
# ============================================================================

def merge_estimates(model_summary, survey_estimates, years, areas, exclusions):
    """
    Best available estimate per (area, year).

    Model-based where the model mean is present, survey-based otherwise.

    Parameters
    ----------
    model_summary : DataFrame
        area, year, mean, sd, q2.5, q25, q75, q97.5 (from the posterior sample)
    survey_estimates : DataFrame or None
        Output of survey_abundance
    years, areas : sequences
        Axes of the result
    exclusions : dict
        Data quality windows; excluded cells are NaN with source 'excluded'

    Returns
    -------
    DataFrame
        area, year, mean, sd, q2.5, q25, q75, q97.5, source
        source in {'model', 'survey', 'excluded'} or NaN when nothing is available
    """
    grid = pd.MultiIndex.from_product([list(areas), list(years)], names=['area', 'year'])

    model = model_summary.set_index(['area', 'year']).reindex(grid)[ESTIMATE_FIELDS]
    merged = model.copy()
    source = pd.Series(np.where(model['mean'].notna(), 'model', None), index=grid, dtype=object)

    if survey_estimates is not None and len(survey_estimates) > 0:
        survey = survey_estimates.set_index(['area', 'year']).reindex(grid)[ESTIMATE_FIELDS]
        use_survey = model['mean'].isna() & survey['mean'].notna()
        merged.loc[use_survey, :] = survey.loc[use_survey, :].to_numpy()
        source[use_survey] = 'survey'

    mask = exclusion_mask(list(years), list(areas), exclusions)
    # mask is (year x area); the grid is area-major
    excluded = mask.T.ravel()
    merged.loc[excluded, :] = np.nan
    source[excluded] = 'excluded'

    merged['source'] = source
    return merged.reset_index()


# ============================================================================
# IMPUTATION
# ============================================================================

def impute_from_neighbours(values, target_year, windows=IMPUTATION_WINDOWS):
    """
    Fill a missing year from neighbouring years.

    Windows are tried in order and the first that yields a value wins:
    by default the mean of t-1 and t+1 (both required), then the mean of
    t-2 and t+2 (both required), then whichever of t-3 / t+3 exist.

    Parameters
    ----------
    values : Series or dict
        year -> value; missing values may be NaN or absent
    target_year : int
    windows : sequence of (radius, require_both)

    Returns
    -------
    float
        Imputed value, NaN if no window succeeds
    """
    lookup = dict(values.items()) if hasattr(values, 'items') else dict(values)

    for radius, require_both in windows:
        neighbours = [lookup.get(target_year - radius, np.nan),
                      lookup.get(target_year + radius, np.nan)]
        found = [float(v) for v in neighbours if v is not None and np.isfinite(v)]
        if require_both and len(found) < 2:
            continue
        if found:
            return float(np.mean(found))

    return np.nan


def assessment_year_estimates(merged, assessment_years, windows=IMPUTATION_WINDOWS):
    """
    Estimates at the assessment years, imputing those without a direct value.

    Each field (mean, sd, quartiles, ...) is imputed independently.

    Returns
    -------
    DataFrame
        area, year, mean, sd, q2.5, q25, q75, q97.5, source
        source is the direct source, 'imputed', 'excluded' or NaN
    """
    rows = []
    for area, group in merged.groupby('area', sort=True):
        group = group.set_index('year')
        for year in assessment_years:
            has_row = year in group.index
            row = {'area': area, 'year': int(year)}

            if has_row and group.loc[year, 'source'] == 'excluded':
                row.update({f: np.nan for f in ESTIMATE_FIELDS})
                row['source'] = 'excluded'
            elif has_row and np.isfinite(group.loc[year, 'mean']):
                row.update({f: group.loc[year, f] for f in ESTIMATE_FIELDS})
                row['source'] = group.loc[year, 'source']
            else:
                row.update({f: impute_from_neighbours(group[f], year, windows)
                            for f in ESTIMATE_FIELDS})
                row['source'] = 'imputed' if np.isfinite(row['mean']) else np.nan
            rows.append(row)

    return pd.DataFrame(rows)


# ============================================================================
# INDICATOR TABLE
# ============================================================================

def build_indicator_table(assessment, reference_table):
    """
    Ratio of each assessment-year estimate to the area's reference value.

    value = mean / reference, lower = q25 / reference, upper = q75 / reference.
    A pseudo-row labelled 'reference' carries 1 with the reference value's
    own quartiles on the same scale.

    Returns
    -------
    DataFrame
        area, year (label), value, lower, upper, unit, data_type
    """
    reference = reference_table.set_index('area')
    rows = []

    for area in reference.index:
        ref = reference.loc[area, 'value']
        ok = np.isfinite(ref) and ref > 0

        rows.append({
            'area': area,
            'year': REFERENCE_LABEL,
            'value': 1.0 if ok else np.nan,
            'lower': reference.loc[area, 'q25'] / ref if ok else np.nan,
            'upper': reference.loc[area, 'q75'] / ref if ok else np.nan,
            'unit': INDICATOR_UNIT,
            'data_type': DATA_TYPE_CODES['reference'],
        })

        for _, est in assessment[assessment['area'] == area].iterrows():
            source = est['source']
            rows.append({
                'area': area,
                'year': str(int(est['year'])),
                'value': est['mean'] / ref if ok else np.nan,
                'lower': est['q25'] / ref if ok else np.nan,
                'upper': est['q75'] / ref if ok else np.nan,
                'unit': INDICATOR_UNIT,
                'data_type': DATA_TYPE_CODES.get(source, np.nan) if isinstance(source, str) else np.nan,
            })

    return pd.DataFrame(rows, columns=['area', 'year', 'value', 'lower', 'upper', 'unit', 'data_type'])


def assemble_indicator(model_summary, survey_counts, detectability, reference_table,
                       config, verbose=True):
    """
    Run the full indicator stage.

    Parameters
    ----------
    model_summary : DataFrame
        Abundance summary from the posterior sample
    survey_counts : DataFrame or None
        Minimum counts (area, year, min_count, source)
    detectability : dict or None
        {'mean', 'sd'}; required when survey_counts is given
    reference_table : DataFrame
        From build_reference_table
    config : PipelineConfig

    Returns
    -------
    dict
        'estimates': merged yearly estimates, 'assessment': assessment-year
        estimates, 'indicator': indicator table
    """
    survey = None
    if survey_counts is not None and len(survey_counts) > 0:
        if detectability is None:
            raise ValueError("Detectability is required to use minimum counts")
        survey = survey_abundance(survey_counts, detectability)

    areas = sorted(set(reference_table['area']) | set(model_summary['area']))
    estimates = merge_estimates(model_summary, survey, config.years, areas, config.exclusions)
    assessment = assessment_year_estimates(estimates, config.assessment_years)
    indicator = build_indicator_table(assessment, reference_table)

    if verbose:
        counts = assessment['source'].fillna('missing').value_counts()
        print(f"Indicator values: {len(areas)} areas x {len(config.assessment_years)} years")
        for source, count in counts.items():
            print(f"  {source:<9}: {count}")

    return {'estimates': estimates, 'assessment': assessment, 'indicator': indicator}
