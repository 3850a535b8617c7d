"""Tests for coverage-filtered posterior resampling."""

import numpy as np
import pandas as pd
import pytest

from reindeer_index.sampling import (
    InsufficientDrawsError,
    PosteriorSample,
    build_posterior_sample,
    draw_coverage,
    sample_qualifying_draws,
    summarize_posterior_sample,
)


def _raw_area(years, n_raw, level, rng, n_outside=0):
    """Draws around `level`; the first n_outside draws leave the band once."""
    draws = level * (1 + 0.05 * rng.standard_normal((n_raw, len(years))))
    draws[:n_outside, len(years) // 2] = level * 3
    return pd.DataFrame(draws, columns=years)


def _intervals(areas_levels, years):
    rows = []
    for area, level in areas_levels.items():
        for year in years:
            rows.append({'area': area, 'year': year, 'q2.5': level * 0.5, 'q97.5': level * 1.5})
    return pd.DataFrame(rows)


@pytest.fixture
def raw_inputs(small_config):
    rng = np.random.default_rng(3)
    years = small_config.years
    levels = {'Gamma': 3000.0, 'Alpha': 800.0, 'Beta': 1500.0}
    raw = {area: _raw_area(years, 40, level, rng, n_outside=10) for area, level in levels.items()}
    return raw, _intervals(levels, years)


def test_draw_coverage():
    draws = np.array([[1.0, 2.0, 3.0, 4.0],
                      [1.0, 9.0, 3.0, 4.0],
                      [np.nan, 2.0, np.nan, np.nan]])
    lower = np.zeros(4)
    upper = np.full(4, 5.0)

    cov = draw_coverage(draws, lower, upper)
    np.testing.assert_allclose(cov, [1.0, 0.75, 1.0])


def test_draw_coverage_skips_years_and_handles_nothing_checkable():
    draws = np.array([[1.0, 9.0], [9.0, 9.0]])
    lower = np.array([0.0, np.nan])
    upper = np.array([5.0, np.nan])

    cov = draw_coverage(draws, lower, upper, skip=np.array([True, False]))
    assert np.all(np.isnan(cov))


def test_only_fully_covered_draws_are_selected(small_config, raw_inputs):
    raw, intervals = raw_inputs
    sample = build_posterior_sample(raw, intervals, small_config, verbose=False)

    for area in sample.areas:
        lower, upper = intervals.loc[intervals['area'] == area, ['q2.5', 'q97.5']].iloc[0]
        draws = sample.area_draws(area)
        finite = np.isfinite(draws)
        assert np.all((draws[finite] >= lower) & (draws[finite] <= upper))


def test_sample_axes_and_shape(small_config, raw_inputs):
    raw, intervals = raw_inputs
    sample = build_posterior_sample(raw, intervals, small_config, verbose=False)

    assert sample.areas == ['Alpha', 'Beta', 'Gamma']
    assert sample.years == small_config.years
    assert sample.values.shape == (small_config.n_samples, len(small_config.years), 3)


def test_excluded_cells_are_missing_in_every_draw(small_config, raw_inputs):
    raw, intervals = raw_inputs
    sample = build_posterior_sample(raw, intervals, small_config, verbose=False)

    gamma = sample.area_draws('Gamma')
    after = np.array(sample.years) >= 2016
    assert np.all(np.isnan(gamma[:, after]))
    assert np.all(np.isfinite(gamma[:, ~after]))


def test_same_seed_gives_same_sample(small_config, raw_inputs):
    raw, intervals = raw_inputs
    a = build_posterior_sample(raw, intervals, small_config, verbose=False)
    b = build_posterior_sample(raw, intervals, small_config, verbose=False)
    np.testing.assert_array_equal(a.values, b.values)

    c = build_posterior_sample(raw, intervals, small_config.with_overrides(seed=99), verbose=False)
    assert not np.array_equal(np.nan_to_num(a.values), np.nan_to_num(c.values))


def test_insufficient_qualifying_draws_raise(small_config, raw_inputs):
    raw, intervals = raw_inputs
    config = small_config.with_overrides(n_samples=35)

    with pytest.raises(InsufficientDrawsError, match="30 draws"):
        build_posterior_sample(raw, intervals, config, verbose=False)


def test_replacement_when_allowed(small_config, raw_inputs):
    raw, intervals = raw_inputs
    config = small_config.with_overrides(n_samples=35, allow_replacement=True)

    sample = build_posterior_sample(raw, intervals, config, verbose=False)
    assert sample.n_draws == 35


def test_no_qualifying_draw_raises_even_with_replacement():
    rng = np.random.default_rng(0)
    with pytest.raises(InsufficientDrawsError):
        sample_qualifying_draws(np.array([0.5, 0.8, np.nan]), 2, 1.0, rng,
                                allow_replacement=True, area='Alpha')


def test_sample_without_replacement_is_unique():
    rng = np.random.default_rng(0)
    chosen = sample_qualifying_draws(np.ones(20), 20, 1.0, rng)
    assert sorted(chosen) == list(range(20))


def test_posterior_sample_validates_shape():
    with pytest.raises(ValueError, match="does not match"):
        PosteriorSample(values=np.zeros((2, 3, 4)), years=[2000, 2001], areas=['A'])


def test_summary_is_computed_from_the_sample(small_config, raw_inputs):
    raw, intervals = raw_inputs
    sample = build_posterior_sample(raw, intervals, small_config, verbose=False)
    summary = summarize_posterior_sample(sample)

    assert len(summary) == len(sample.areas) * len(sample.years)
    assert list(summary.columns) == ['area', 'year', 'mean', 'sd', 'q2.5', 'q25', 'q75', 'q97.5']

    row = summary[(summary['area'] == 'Beta') & (summary['year'] == 2005)].iloc[0]
    draws = sample.area_draws('Beta')[:, sample.years.index(2005)]
    assert row['mean'] == pytest.approx(draws.mean())
    assert row['sd'] == pytest.approx(draws.std(ddof=1))
    assert row['q25'] == pytest.approx(np.percentile(draws, 25))

    excluded = summary[(summary['area'] == 'Gamma') & (summary['year'] == 2018)].iloc[0]
    assert excluded[['mean', 'sd', 'q2.5', 'q97.5']].isna().all()
