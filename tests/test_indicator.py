"""Tests for survey conversion, imputation and indicator ratios."""

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from reindeer_index.indicator import (
    assemble_indicator,
    assessment_year_estimates,
    build_indicator_table,
    impute_from_neighbours,
    merge_estimates,
    survey_abundance,
)

FIELDS = ['mean', 'sd', 'q2.5', 'q25', 'q75', 'q97.5']


def _model_rows(area, years, level):
    return pd.DataFrame({
        'area': area, 'year': list(years), 'mean': level, 'sd': 0.1 * level,
        'q2.5': 0.8 * level, 'q25': 0.9 * level, 'q75': 1.1 * level, 'q97.5': 1.2 * level,
    })


def _reference(values):
    return pd.DataFrame([
        {'area': a, 'value': v, 'sd': 0.1 * v, 'q2.5': 0.8 * v, 'q25': 0.95 * v,
         'q75': 1.05 * v, 'q97.5': 1.2 * v, 'source': 'direct'}
        for a, v in values.items()
    ])


# ============================================================================
# IMPUTATION
# ============================================================================

def test_mean_of_adjacent_years():
    assert impute_from_neighbours({2009: 100.0, 2011: 120.0}, 2010) == 110.0


def test_falls_back_to_two_years_when_one_neighbour_missing():
    values = {2008: 80.0, 2009: 100.0, 2011: np.nan, 2012: 90.0}
    assert impute_from_neighbours(values, 2010) == pytest.approx(85.0)


def test_three_year_window_accepts_one_side():
    assert impute_from_neighbours({2007: 70.0}, 2010) == 70.0
    assert impute_from_neighbours({2007: 70.0, 2013: 90.0}, 2010) == 80.0


def test_nothing_within_three_years():
    assert np.isnan(impute_from_neighbours({2005: 50.0, 2016: 60.0}, 2010))


def test_accepts_series():
    series = pd.Series([100.0, np.nan, 140.0], index=[2013, 2014, 2015])
    assert impute_from_neighbours(series, 2014) == 120.0


# ============================================================================
# SURVEYS
# ============================================================================

def test_survey_conversion():
    counts = pd.DataFrame({'area': ['A'], 'year': [2010], 'min_count': [400], 'source': ['aerial']})
    est = survey_abundance(counts, {'mean': 0.8, 'sd': 0.05}).iloc[0]

    assert est['mean'] == pytest.approx(500.0)
    assert est['sd'] == pytest.approx(400 * 0.05 / 0.64)
    assert est['q25'] == pytest.approx(400 / stats.norm.ppf(0.75, 0.8, 0.05))
    assert est['q2.5'] < est['q25'] < est['mean'] < est['q75'] < est['q97.5']


def test_survey_uses_largest_count_of_a_year():
    counts = pd.DataFrame({'area': ['A', 'A'], 'year': [2010, 2010], 'min_count': [300, 420]})
    est = survey_abundance(counts, {'mean': 1.0, 'sd': 0.0})
    assert len(est) == 1
    assert est['mean'].iloc[0] == 420.0
    assert est['q97.5'].iloc[0] == 420.0


# ============================================================================
# MERGING AND ASSESSMENT YEARS
# ============================================================================

def test_model_preferred_over_survey():
    model = _model_rows('A', [2009, 2010], 1000.0)
    survey = _model_rows('A', [2010, 2011], 700.0)

    merged = merge_estimates(model, survey, [2009, 2010, 2011, 2012], ['A'], {})
    merged = merged.set_index('year')

    assert merged.loc[2010, 'mean'] == 1000.0
    assert merged.loc[2010, 'source'] == 'model'
    assert merged.loc[2011, 'mean'] == 700.0
    assert merged.loc[2011, 'source'] == 'survey'
    assert np.isnan(merged.loc[2012, 'mean'])


def test_excluded_cells_stay_missing():
    years = list(range(2010, 2020))
    model = _model_rows('A', range(2010, 2017), 1000.0)
    survey = _model_rows('A', [2018, 2019], 300.0)
    exclusions = {'A': [(2017, None)]}

    merged = merge_estimates(model, survey, years, ['A'], exclusions)
    late = merged[merged['year'] >= 2017]
    assert late['mean'].isna().all()
    assert (late['source'] == 'excluded').all()

    assessment = assessment_year_estimates(merged, [2016, 2018]).set_index('year')
    assert assessment.loc[2016, 'source'] == 'model'
    # 2017 and 2019 are excluded, 2016 is two years away on one side only
    assert np.isnan(assessment.loc[2018, 'mean'])
    assert assessment.loc[2018, 'source'] == 'excluded'


def test_missing_assessment_year_is_imputed_per_field():
    model = pd.concat([_model_rows('A', [2009], 100.0), _model_rows('A', [2011], 120.0)])
    merged = merge_estimates(model, None, list(range(2005, 2015)), ['A'], {})

    row = assessment_year_estimates(merged, [2010]).iloc[0]
    assert row['source'] == 'imputed'
    for field in FIELDS:
        expected = 0.5 * (model[field].iloc[0] + model[field].iloc[1])
        assert row[field] == pytest.approx(expected)


# ============================================================================
# INDICATOR TABLE
# ============================================================================

def test_indicator_ratios():
    assessment = pd.DataFrame([
        {'area': 'A', 'year': 2019, 'mean': 500.0, 'sd': 40.0, 'q2.5': 420.0,
         'q25': 470.0, 'q75': 530.0, 'q97.5': 580.0, 'source': 'model'},
        {'area': 'A', 'year': 2014, 'mean': np.nan, 'sd': np.nan, 'q2.5': np.nan,
         'q25': np.nan, 'q75': np.nan, 'q97.5': np.nan, 'source': np.nan},
    ])
    table = build_indicator_table(assessment, _reference({'A': 1000.0}))
    table = table.set_index('year')

    ref = table.loc['reference']
    assert ref['value'] == 1.0
    assert ref['lower'] == pytest.approx(0.95)
    assert ref['upper'] == pytest.approx(1.05)
    assert ref['data_type'] == "Referanseverdi"

    y2019 = table.loc['2019']
    assert y2019['value'] == pytest.approx(0.5)
    assert y2019['lower'] == pytest.approx(0.47)
    assert y2019['upper'] == pytest.approx(0.53)
    assert y2019['data_type'] == "Modellert"

    assert np.isnan(table.loc['2014', 'value'])
    assert pd.isna(table.loc['2014', 'data_type'])


def test_area_without_reference_value():
    assessment = pd.DataFrame([{'area': 'B', 'year': 2019, 'mean': 500.0, 'sd': 40.0,
                                'q2.5': 420.0, 'q25': 470.0, 'q75': 530.0, 'q97.5': 580.0,
                                'source': 'model'}])
    table = build_indicator_table(assessment, _reference({'B': np.nan}))
    assert table['value'].isna().all()


def test_assemble_indicator(small_config):
    model = pd.concat([
        _model_rows('Alpha', small_config.years, 800.0),
        _model_rows('Gamma', small_config.years, 2000.0),
    ])
    survey = pd.DataFrame({
        'area': ['Epsilon', 'Epsilon', 'Gamma'],
        'year': [2013, 2015, 2019],
        'min_count': [850, 950, 1500],
        'source': ['aerial'] * 3,
    })
    reference = _reference({'Alpha': 1000.0, 'Epsilon': 1250.0, 'Gamma': 2500.0})

    result = assemble_indicator(model, survey, {'mean': 0.85, 'sd': 0.05},
                                reference, small_config, verbose=False)
    indicator = result['indicator'].set_index(['area', 'year'])

    assert indicator.loc[('Alpha', '2010'), 'value'] == pytest.approx(0.8)
    assert indicator.loc[('Epsilon', '2014'), 'value'] == pytest.approx(
        0.5 * (850 + 950) / 0.85 / 1250.0)
    assert indicator.loc[('Epsilon', '2014'), 'data_type'] == "Ekspertvurdering"
    # Gamma is excluded from 2016 on; the 2019 survey is not used
    assert np.isnan(indicator.loc[('Gamma', '2019'), 'value'])
    assert indicator.loc[('Gamma', '2014'), 'value'] == pytest.approx(0.8)

    n_rows = 3 * (len(small_config.assessment_years) + 1)
    assert len(result['indicator']) == n_rows


def test_survey_counts_need_detectability(small_config):
    survey = pd.DataFrame({'area': ['Alpha'], 'year': [2010], 'min_count': [10]})
    with pytest.raises(ValueError, match="Detectability"):
        assemble_indicator(_model_rows('Alpha', [2010], 5.0), survey, None,
                           _reference({'Alpha': 10.0}), small_config, verbose=False)
