"""
Configuration settings for Wild Reindeer Reference Value Analysis
=================================================================

This module contains all paths, parameters, and constants for the analysis.
Users should modify the PATHS section for their specific system.

The module-level constants are the defaults. Pipeline stages never read
them directly; they receive a PipelineConfig built from them, so a run can
be reproduced (or varied) without editing this file.

Project: Wild reindeer indicator for the national nature index
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

# ============================================================================
# PATHS - USER MODIFIES THESE FOR THEIR SYSTEM
# ============================================================================

# Folder holding the upstream model output and the tabular inputs
DATA_DIR = os.environ.get("REINDEER_DATA_DIR", "data")

INPUT_FILES = {
    # Raw posterior draws from the multi-population model (IMPM)
    # npz with 'draws' (n_raw x years x areas), 'years', 'areas'
    'posterior_draws': "impm_posterior_draws.npz",
    # Reported credible interval per (area, year): area, year, q2.5, q97.5
    'posterior_intervals': "impm_posterior_summary.csv",
    # Harvest records: year, area, total_harvested
    'harvest': "harvest.csv",
    # Minimum-count surveys: area, year, min_count, source
    'survey_counts': "minimum_counts.csv",
    # Area registry: area, area_km2
    'area_registry': "area_registry.csv",
    # Detectability scalar pair: {"mean": ..., "sd": ...}
    'detectability': "detectability.json",
}

# Output directory (will be created if it doesn't exist)
OUTPUT_DIR = os.environ.get("REINDEER_OUTPUT_DIR", "outputs")

# Intermediate artifacts written between pipeline stages
ARTIFACT_FILES = {
    'posterior_sample': "posterior_sample.npz",
    'abundance_summary': "abundance_summary.csv",
    'k_samples': "carrying_capacity_samples.csv",
    'k_summary': "carrying_capacity_summary.csv",
    'k_mean_fits': "carrying_capacity_mean_fits.csv",
    'reference_values': "reference_values.csv",
    'indicator': "indicator_values.csv",
}

# ============================================================================
# MANAGEMENT AREAS
# ============================================================================

# Canonical (ASCII) names of the wild reindeer management areas covered by
# the indicator. Names from input files are transliterated before they are
# matched against this list.
AREAS = [
    'Blefjell',
    'Brattfjell-Vindeggen',
    'Forollhogna',
    'Fjellheimen',
    'Knutsho',
    'Laerdal-Ardal',
    'Nordfjella',
    'Norefjell-Reinsjofjell',
    'Ottadalen',
    'Reinheimen-Breheimen',
    'Rondane',
    'Setesdal Austhei',
    'Setesdal Ryfylke',
    'Snohetta',
    'Solnkletten',
    'Tolga Ostfjell',
    'Vamur-Roan',
    'Hardangervidda',
]

# Years where an area's abundance data are unreliable and must be treated
# as missing. Each window is (first_year, last_year), inclusive; None means
# open-ended.
AREA_EXCLUSIONS = {
    # Depopulated 2017-2018 to eradicate chronic wasting disease
    'Nordfjella': [(2017, None)],
}

# Characters that NFKD decomposition does not reduce to ASCII
TRANSLITERATION = {
    'ø': 'o', 'Ø': 'O',
    'æ': 'ae', 'Æ': 'Ae',
    'å': 'a', 'Å': 'A',
}

# ============================================================================
# YEARS
# ============================================================================

# Assessment horizon (inclusive)
YEAR_RANGE = (1990, 2024)

# Years at which the nature index publishes indicator values
ASSESSMENT_YEARS = [1990, 2000, 2010, 2014, 2019, 2024]

# Label of the pseudo-row carrying the reference value
REFERENCE_LABEL = "reference"

# ============================================================================
# ANALYSIS PARAMETERS
# ============================================================================

# Abundance sampler
N_POSTERIOR_SAMPLES = 1000       # Draws retained per area
COVERAGE_THRESHOLD = 1.0         # Fraction of years a draw must stay inside the reported 95% band
ALLOW_REPLACEMENT = False         # Sample with replacement when too few draws qualify

# Growth model (Ricker with lognormal process noise)
GROWTH_MODEL_INITS = {
    'r': 0.3,
    'K_multiplier': 1.2,         # K starts at this multiple of max(N)
    'log_c': -1.0,
}
OBSERVATION_SD = 0.01            # Fixed sd of the log-scale observation layer
MIN_PAIRS_FOR_FIT = 3            # Minimum valid (N_t, X_t-1) pairs
OPTIMIZER_MAXITER = 10000
OPTIMIZER_GTOL = 1e-10
GRADIENT_TOLERANCE = 1e-5        # Accept a precision-loss exit when the gradient is this flat
PLAUSIBILITY_CHECK = False       # Flag K below the observed maximum as a failed fit

# Reference value regression
MIN_REGRESSION_AREAS = 3
INCLUDE_RESIDUAL_ERROR = True    # Add per-draw residual scatter to predictions

# Summary quantiles (percent)
SUMMARY_QUANTILES = [2.5, 25, 75, 97.5]

# ============================================================================
# PROCESSING PARAMETERS
# ============================================================================

# Random seed for reproducibility
RANDOM_SEED = 42

# Worker processes for the (area x draw) fitting grid; 1 runs serially
N_WORKERS = 1

# Units handed to a worker at a time
FIT_CHUNKSIZE = 50

# ============================================================================
# INDICATOR DATABASE OUTPUT
# ============================================================================

INDICATOR_UNIT = "proportion of reference value"

DATA_TYPE_CODES = {
    'model': "Modellert",
    'survey': "Beregnet fra data",
    'imputed': "Ekspertvurdering",
    'reference': "Referanseverdi",
}


# ============================================================================
# PIPELINE CONFIGURATION OBJECT
# ============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """Immutable settings threaded through every pipeline stage."""
    data_dir: str = DATA_DIR
    output_dir: str = OUTPUT_DIR
    areas: Tuple[str, ...] = tuple(sorted(AREAS))
    exclusions: Dict[str, List[Tuple[Optional[int], Optional[int]]]] = field(
        default_factory=lambda: {k: list(v) for k, v in AREA_EXCLUSIONS.items()}
    )
    year_range: Tuple[int, int] = YEAR_RANGE
    assessment_years: Tuple[int, ...] = tuple(ASSESSMENT_YEARS)
    n_samples: int = N_POSTERIOR_SAMPLES
    coverage_threshold: float = COVERAGE_THRESHOLD
    allow_replacement: bool = ALLOW_REPLACEMENT
    obs_sd: float = OBSERVATION_SD
    min_pairs: int = MIN_PAIRS_FOR_FIT
    plausibility_check: bool = PLAUSIBILITY_CHECK
    min_regression_areas: int = MIN_REGRESSION_AREAS
    include_residual_error: bool = INCLUDE_RESIDUAL_ERROR
    seed: int = RANDOM_SEED
    n_workers: int = N_WORKERS

    @property
    def years(self) -> List[int]:
        """All calendar years of the assessment horizon."""
        return list(range(self.year_range[0], self.year_range[1] + 1))

    def input_path(self, name: str) -> Path:
        return Path(self.data_dir) / get_input_file(name)

    def artifact_path(self, name: str) -> Path:
        if name not in ARTIFACT_FILES:
            raise ValueError(f"Unknown artifact: {name}. Available: {list(ARTIFACT_FILES.keys())}")
        return Path(self.output_dir) / ARTIFACT_FILES[name]

    def with_overrides(self, **overrides) -> "PipelineConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


def default_config() -> PipelineConfig:
    """Build a PipelineConfig from the module defaults."""
    return PipelineConfig()


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def ensure_output_dir(output_dir=None):
    """Create output directory if it doesn't exist."""
    output_dir = output_dir or OUTPUT_DIR
    Path(output_dir).mkdir(parents=True, exist_ok=True)
    return output_dir


def get_input_file(input_name):
    """Get file name for a named input, with existence check in the registry."""
    if input_name not in INPUT_FILES:
        raise ValueError(f"Unknown input: {input_name}. Available: {list(INPUT_FILES.keys())}")
    return INPUT_FILES[input_name]


def print_config_summary(config=None):
    """Print summary of current configuration."""
    config = config or default_config()
    print("=" * 60)
    print("WILD REINDEER REFERENCE VALUES - Configuration Summary")
    print("=" * 60)
    print(f"\nInputs ({config.data_dir}):")
    for name in INPUT_FILES:
        path = config.input_path(name)
        exists = "✓" if path.exists() else "✗"
        print(f"  [{exists}] {name}: {path}")
    print(f"\nAreas: {len(config.areas)}")
    for area, windows in config.exclusions.items():
        print(f"  excluded: {area} {windows}")
    print(f"Years: {config.year_range[0]}-{config.year_range[1]}")
    print(f"Assessment years: {list(config.assessment_years)}")
    print(f"Posterior samples per area: {config.n_samples}")
    print(f"Workers: {config.n_workers}")
    print(f"Output Directory: {config.output_dir}")
    print("=" * 60)


if __name__ == "__main__":
    print_config_summary()
