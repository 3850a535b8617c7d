"""
Intermediate artifacts passed between pipeline stages.

Arrays are stored as npz, tables as CSV and the detectability pair as JSON.
CSV tables are read back with round-trip float parsing so that values and
missingness are reproduced exactly.
"""

import json
from pathlib import Path

import numpy as np
import pandas as pd

from .sampling import PosteriorSample


def _prepare(path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


# ============================================================================
# POSTERIOR SAMPLE
# ============================================================================

def save_posterior_sample(sample, path):
    """Write a PosteriorSample to an npz archive."""
    path = _prepare(path)
    np.savez_compressed(
        path,
        values=sample.values,
        years=np.asarray(sample.years, dtype=np.int64),
        areas=np.asarray(sample.areas, dtype=str),
    )
    return path


def load_posterior_sample(path):
    """Read a PosteriorSample written by save_posterior_sample."""
    if not Path(path).exists():
        raise FileNotFoundError(f"Posterior sample not found: {path}")
    with np.load(path, allow_pickle=False) as archive:
        return PosteriorSample(
            values=archive['values'],
            years=archive['years'].tolist(),
            areas=archive['areas'].tolist(),
        )


# ============================================================================
# TABLES
# ============================================================================

def save_table(df, path, index=False):
    """Write a table as CSV."""
    path = _prepare(path)
    df.to_csv(path, index=index)
    return path


def load_table(path, index_col=None, dtype=None):
    """Read a CSV table with exact float round-trip."""
    if not Path(path).exists():
        raise FileNotFoundError(f"Table not found: {path}")
    return pd.read_csv(path, index_col=index_col, dtype=dtype, float_precision='round_trip')


def save_k_samples(samples, path):
    """K per (draw, area); the draw index is written as a column."""
    return save_table(samples, path, index=True)


def load_k_samples(path):
    samples = load_table(path, index_col='draw')
    samples.columns = [str(c) for c in samples.columns]
    return samples.astype(float)


def load_indicator_table(path):
    """Indicator table; year labels stay strings ('2019', 'reference')."""
    return load_table(path, dtype={'year': str})


# ============================================================================
# DETECTABILITY
# ============================================================================

def save_detectability(detectability, path):
    path = _prepare(path)
    with open(path, 'w') as f:
        json.dump({'mean': float(detectability['mean']), 'sd': float(detectability['sd'])}, f)
    return path

