"""
Reference Value Regression
==========================

Relates carrying capacity to habitat size across management areas and
extrapolates reference values to areas without a direct estimate.

Model (natural logs):

    log(K) = a + b * log(area_km2)

* The mean-level fit uses the per-area mean K (statsmodels OLS) and is
  reported with standard errors and R².
* For uncertainty the regression is refitted once per posterior draw of K
  and used to predict every area, including those with a direct estimate
  (cross-validation diagnostic). With include_residual_error the draw's
  residual scatter is added to a separate predictive draw, giving a
  predictive interval for areas outside the fit.
* The reference value of an area is its direct mean K when it has one and
  otherwise the mean over draws of the line prediction exp(a + b log A).
  Residual scatter only widens sd and bounds, never shifts the value.
  Uncertainty comes from the same branch as the value.

Fewer than `min_regression_areas` areas with a direct estimate is a
configuration error and raises InsufficientAreasError.
"""

import warnings

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats

from .config import SUMMARY_QUANTILES


class InsufficientAreasError(ValueError):
    """Too few areas with a direct carrying capacity estimate to regress on."""


def _regression_areas(k_summary, area_sizes):
    """Areas with a direct K estimate and a registered habitat size."""
    direct = k_summary.loc[k_summary['has_estimate'].astype(bool), 'area'].tolist()
    sizes = area_sizes.dropna()
    sized = set(sizes.index[(sizes > 0).to_numpy()])

    missing_size = sorted(set(direct) - sized)
    if missing_size:
        warnings.warn(f"Areas with K but no habitat size are left out of the regression: {missing_size}")

    return [a for a in direct if a in sized]


def _check_minimum(n_areas, min_areas):
    if n_areas < min_areas:
        raise InsufficientAreasError(
            f"Reference regression needs at least {min_areas} areas with a direct "
            f"carrying capacity estimate, found {n_areas}"
        )


# ============================================================================
# MEAN-LEVEL REGRESSION
# ============================================================================

def fit_reference_regression(k_summary, area_sizes, min_areas=3):
    """
    Fit log(mean K) against log(habitat area) by OLS.

    Parameters
    ----------
    k_summary : DataFrame
        Output of summarize_carrying_capacity (area, mean, has_estimate, ...)
    area_sizes : Series
        area -> area_km2
    min_areas : int

    Returns
    -------
    dict
        intercept, slope, their standard errors, r_squared, residual_sd,
        n_areas, areas
    """
    areas = _regression_areas(k_summary, area_sizes)
    _check_minimum(len(areas), min_areas)

    mean_k = k_summary.set_index('area').loc[areas, 'mean'].to_numpy(dtype=float)
    log_area = np.log(area_sizes.loc[areas].to_numpy(dtype=float))

    model = sm.OLS(np.log(mean_k), sm.add_constant(log_area)).fit()

    return {
        'intercept': float(model.params[0]),
        'slope': float(model.params[1]),
        'intercept_se': float(model.bse[0]),
        'slope_se': float(model.bse[1]),
        'r_squared': float(model.rsquared),
        'residual_sd': float(np.sqrt(model.scale)),
        'n_areas': len(areas),
        'areas': areas,
    }


# ============================================================================
# PER-DRAW PREDICTION
# ============================================================================

def predict_reference_samples(k_samples, k_summary, area_sizes,
                              min_areas=3, include_residual_error=True,
                              rng=None, verbose=True):
    """
    Refit the log-log regression per K draw and predict every area.

    Two predictions are kept per draw. The line prediction
    exp(a_d + b_d * log(area)) is the draw's regression mean and is what
    the reference value averages. The predictive draw additionally
    carries N(0, residual sd of the draw's fit) on the log scale when
    include_residual_error is set, and feeds the sd and percentile bounds.

    Parameters
    ----------
    k_samples : DataFrame
        index = draw, columns = areas (NaN = failed fit)
    k_summary : DataFrame
        Output of summarize_carrying_capacity
    area_sizes : Series
        area -> area_km2; areas without a size get NaN predictions
    min_areas : int
        Minimum usable areas, both overall and per draw
    include_residual_error : bool
        Add the draw's residual scatter to the predictive draws
    rng : numpy Generator, optional

    Returns
    -------
    dict
        'line': line predictions, 'predictive': predictive draws; each a
        DataFrame with index = draw and columns = all areas (natural
        scale). Rows of skipped draws are NaN. Without residual error
        both frames hold the same values.
    """
    if rng is None:
        rng = np.random.default_rng()

    fit_areas = _regression_areas(k_summary, area_sizes)
    _check_minimum(len(fit_areas), min_areas)

    all_areas = sorted(set(k_samples.columns) | set(area_sizes.index))
    sizes = area_sizes.reindex(all_areas).to_numpy(dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        log_all = np.where(sizes > 0, np.log(sizes), np.nan)

    log_fit_area = np.log(area_sizes.loc[fit_areas].to_numpy(dtype=float))
    k_fit = k_samples[fit_areas].to_numpy(dtype=float)

    line = np.full((len(k_samples), len(all_areas)), np.nan)
    predictive = np.full_like(line, np.nan)
    skipped = 0

    for d in range(len(k_samples)):
        k = k_fit[d]
        ok = np.isfinite(k) & (k > 0)
        if ok.sum() < min_areas:
            skipped += 1
            continue

        x = log_fit_area[ok]
        y = np.log(k[ok])
        fit = stats.linregress(x, y)

        pred = fit.intercept + fit.slope * log_all
        line[d] = np.exp(pred)

        if include_residual_error:
            resid = y - (fit.intercept + fit.slope * x)
            resid_sd = np.sqrt(np.sum(resid ** 2) / (len(y) - 2)) if len(y) > 2 else 0.0
            predictive[d] = np.exp(pred + rng.normal(0.0, resid_sd, size=len(all_areas)))
        else:
            predictive[d] = line[d]

    if skipped:
        warnings.warn(f"Skipped {skipped} of {len(k_samples)} draws with fewer than "
                      f"{min_areas} usable areas")

    if verbose:
        print(f"Regression refitted on {len(k_samples) - skipped:,} draws "
              f"({len(fit_areas)} areas with direct K)")

    return {
        'line': pd.DataFrame(line, index=k_samples.index, columns=all_areas),
        'predictive': pd.DataFrame(predictive, index=k_samples.index, columns=all_areas),
    }


def summarize_predictions(line, predictive=None, quantiles=SUMMARY_QUANTILES):
    """
    Per-area summary of the per-draw predictions.

    The mean is taken over the line predictions. sd and percentile bounds
    come from the predictive draws (the line predictions if none given).

    Returns
    -------
    DataFrame
        Columns: area, n_draws, mean, sd, q2.5, q25, q75, q97.5
    """
    if predictive is None:
        predictive = line

    rows = []
    for area in line.columns:
        m = line[area].to_numpy(dtype=float)
        m = m[np.isfinite(m)]
        p = predictive[area].to_numpy(dtype=float)
        p = p[np.isfinite(p)]

        row = {'area': area, 'n_draws': len(m)}
        row['mean'] = float(np.mean(m)) if len(m) > 0 else np.nan
        row['sd'] = float(np.std(p, ddof=1)) if len(p) > 1 else np.nan
        if len(p) > 0:
            for q, value in zip(quantiles, np.percentile(p, quantiles)):
                row[f"q{q:g}"] = float(value)
        else:
            for q in quantiles:
                row[f"q{q:g}"] = np.nan
        rows.append(row)
    return pd.DataFrame(rows)


# ============================================================================
# REFERENCE TABLE
# ============================================================================

def build_reference_table(k_summary, prediction_summary, quantiles=SUMMARY_QUANTILES):
    """
    Choose the reference value per area.

    Direct mean K where the area has a direct estimate, otherwise the mean
    regression prediction. sd and percentile bounds follow the chosen branch.
    The regression prediction is kept alongside (pred_* columns) for every
    area as a cross-validation diagnostic.

    Returns
    -------
    DataFrame
        Columns: area, value, sd, q2.5, q25, q75, q97.5, source,
        pred_mean, pred_sd, pred_q2.5, pred_q97.5
        source is 'direct', 'regression' or 'none'
    """
    qcols = [f"q{q:g}" for q in quantiles]
    direct = k_summary.set_index('area')
    pred = prediction_summary.set_index('area')
    areas = sorted(set(direct.index) | set(pred.index))

    rows = []
    for area in areas:
        row = {'area': area}
        has_direct = area in direct.index and bool(direct.loc[area, 'has_estimate'])
        has_pred = area in pred.index and np.isfinite(pred.loc[area, 'mean'])

        if has_direct:
            src = direct.loc[area]
            row.update({'value': src['mean'], 'sd': src['sd'],
                        **{c: src[c] for c in qcols}, 'source': 'direct'})
        elif has_pred:
            src = pred.loc[area]
            row.update({'value': src['mean'], 'sd': src['sd'],
                        **{c: src[c] for c in qcols}, 'source': 'regression'})
        else:
            row.update({'value': np.nan, 'sd': np.nan,
                        **{c: np.nan for c in qcols}, 'source': 'none'})

        if area in pred.index:
            row['pred_mean'] = pred.loc[area, 'mean']
            row['pred_sd'] = pred.loc[area, 'sd']
            row['pred_q2.5'] = pred.loc[area, 'q2.5']
            row['pred_q97.5'] = pred.loc[area, 'q97.5']
        else:
            row.update({'pred_mean': np.nan, 'pred_sd': np.nan,
                        'pred_q2.5': np.nan, 'pred_q97.5': np.nan})
        rows.append(row)

    table = pd.DataFrame(rows)
    absent = table.loc[table['source'] == 'none', 'area'].tolist()
    if absent:
        warnings.warn(f"No reference value could be derived for: {absent}")
    return table


def estimate_reference_values(k_samples, k_summary, area_sizes, config, rng=None, verbose=True):
    """
    Run the full reference value stage.

    Parameters
    ----------
    k_samples, k_summary : DataFrame
        From propagate_carrying_capacity
    area_sizes : Series
        area -> area_km2
    config : PipelineConfig
        Uses min_regression_areas, include_residual_error, seed

    Returns
    -------
    dict
        'regression': mean-level fit, 'predictions': per-draw line and predictive draws,
        'prediction_summary': per-area summary, 'table': reference table
    """
    if rng is None:
        rng = np.random.default_rng(config.seed)

    regression = fit_reference_regression(
        k_summary, area_sizes, min_areas=config.min_regression_areas
    )
    predictions = predict_reference_samples(
        k_samples, k_summary, area_sizes,
        min_areas=config.min_regression_areas,
        include_residual_error=config.include_residual_error,
        rng=rng, verbose=verbose,
    )
    prediction_summary = summarize_predictions(predictions['line'], predictions['predictive'])
    table = build_reference_table(k_summary, prediction_summary)

    if verbose:
        print("\n" + "=" * 60)
        print("REFERENCE VALUE REGRESSION")
        print("=" * 60)
        print(f"  log(K) = {regression['intercept']:.3f} (± {regression['intercept_se']:.3f})"
              f" + {regression['slope']:.3f} (± {regression['slope_se']:.3f}) · log(area)")
        print(f"  R² = {regression['r_squared']:.3f}, n = {regression['n_areas']} areas")
        counts = table['source'].value_counts()
        for source in ['direct', 'regression', 'none']:
            print(f"  {source:<11}: {int(counts.get(source, 0))} areas")
        print("=" * 60)

    return {
        'regression': regression,
        'predictions': predictions,
        'prediction_summary': prediction_summary,
        'table': table,
    }
