"""Shared fixtures: small synthetic reindeer populations."""

import json

import numpy as np
import pandas as pd
import pytest

from reindeer_index.config import PipelineConfig
from reindeer_index.sampling import PosteriorSample

TRUE_K = {'Alpha': 1000.0, 'Beta': 2500.0, 'Delta': 600.0, 'Gamma': 4000.0}
AREA_KM2 = {'Alpha': 800.0, 'Beta': 2100.0, 'Delta': 450.0, 'Epsilon': 1200.0, 'Gamma': 3300.0}


def simulate_ricker(K, r=0.3, n_years=20, noise=0.01, seed=0):
    """
    Post-harvest trajectory and harvest of a Ricker population.

    A heavy harvest every third year keeps the post-harvest abundance
    cycling over a wide range below K.
    """
    rng = np.random.default_rng(seed)
    rates = np.where(np.arange(n_years) % 3 == 0, 0.3, 0.02)
    post = np.empty(n_years)
    harvest = np.empty(n_years)

    x_prev = 0.3 * K
    for t in range(n_years):
        pre = x_prev * np.exp(r * (1 - x_prev / K) + noise * rng.standard_normal())
        harvest[t] = np.round(rates[t] * pre)
        post[t] = pre - harvest[t]
        x_prev = post[t]

    return post, harvest


@pytest.fixture
def ricker_pairs():
    """Ten (N_t, X_t-1) pairs from r = 0.3, K = 1000 with small process noise."""
    rng = np.random.default_rng(2024)
    x = np.array([150., 1400., 420., 900., 260., 1150., 640., 1500., 330., 780.])
    n = x * np.exp(0.3 * (1 - x / 1000.0) + 0.02 * rng.standard_normal(len(x)))
    return n, x


@pytest.fixture
def small_config(tmp_path):
    return PipelineConfig(
        data_dir=str(tmp_path / "data"),
        output_dir=str(tmp_path / "outputs"),
        areas=('Alpha', 'Beta', 'Delta', 'Epsilon', 'Gamma'),
        exclusions={'Gamma': [(2016, None)]},
        year_range=(2000, 2019),
        assessment_years=(2000, 2010, 2014, 2019),
        n_samples=8,
        seed=7,
    )


@pytest.fixture
def synthetic_sample(small_config):
    """PosteriorSample of four model areas plus their harvest table."""
    years = small_config.years
    areas = sorted(TRUE_K)
    rng = np.random.default_rng(11)

    values = np.empty((small_config.n_samples, len(years), len(areas)))
    harvest = {}
    for j, area in enumerate(areas):
        post, h = simulate_ricker(TRUE_K[area], n_years=len(years), seed=j)
        draws = post * np.exp(0.01 * rng.standard_normal((small_config.n_samples, len(years))))
        values[:, :, j] = draws
        harvest[area] = h

    harvest = pd.DataFrame(harvest, index=pd.Index(years, name='year'))
    return PosteriorSample(values=values, years=years, areas=areas), harvest


@pytest.fixture
def input_files(small_config):
    """Write a complete set of pipeline inputs under small_config.data_dir."""
    data_dir = small_config.input_path('harvest').parent
    data_dir.mkdir(parents=True)

    years = small_config.years
    areas = sorted(TRUE_K)
    rng = np.random.default_rng(5)
    n_raw = 30

    draws = np.empty((n_raw, len(years), len(areas)))
    harvest_rows = []
    for j, area in enumerate(areas):
        post, h = simulate_ricker(TRUE_K[area], n_years=len(years), seed=10 + j)
        draws[:, :, j] = post * np.exp(0.02 * rng.standard_normal((n_raw, len(years))))
        harvest_rows += [{'year': y, 'area': area, 'total_harvested': v} for y, v in zip(years, h)]

    np.savez(small_config.input_path('posterior_draws'),
             draws=draws, years=np.array(years), areas=np.array(areas))

    interval_rows = []
    for j, area in enumerate(areas):
        for t, year in enumerate(years):
            interval_rows.append({
                'area': area, 'year': year,
                'q2.5': draws[:, t, j].min(), 'q97.5': draws[:, t, j].max(),
            })
    pd.DataFrame(interval_rows).to_csv(small_config.input_path('posterior_intervals'), index=False)
    pd.DataFrame(harvest_rows).to_csv(small_config.input_path('harvest'), index=False)

    pd.DataFrame({'area': list(AREA_KM2), 'area_km2': list(AREA_KM2.values())}).to_csv(
        small_config.input_path('area_registry'), index=False)

    pd.DataFrame({
        'area': ['Epsilon', 'Epsilon', 'Epsilon'],
        'year': [2009, 2011, 2019],
        'min_count': [700, 760, 810],
        'source': ['aerial', 'aerial', 'ground'],
    }).to_csv(small_config.input_path('survey_counts'), index=False)

    with open(small_config.input_path('detectability'), 'w') as f:
        json.dump({'mean': 0.85, 'sd': 0.05}, f)

    return data_dir
