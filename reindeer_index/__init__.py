"""
Wild Reindeer Reference Value Package
=====================================

Estimates reference levels and indicator values for Norwegian wild reindeer
management areas, for use in the national nature index.

Core: carrying capacity K is estimated per area by fitting a stochastic
Ricker model to every retained posterior draw of abundance, and a log-log
regression of K on habitat area supplies reference values for areas
without a direct estimate.

Modules:
    config             - Paths, areas, parameters and PipelineConfig
    data_loading       - Input loaders, name harmonisation, exclusions
    sampling           - Coverage-filtered resampling of posterior draws
    growth_model       - Ricker model fit (Laplace-marginalised noise)
    carrying_capacity  - Per-draw K estimation over the (area x draw) grid
    reference_values   - K vs habitat area regression, reference values
    indicator          - Survey conversion, imputation, indicator ratios
    artifacts          - Persistence of intermediate results
    main               - Checkpointed pipeline and command line

Quick Start:
    >>> from reindeer_index import default_config, run_pipeline
    >>> results = run_pipeline(default_config().with_overrides(n_workers=8))
"""

__version__ = '0.1.0'

# Import key functions for convenient access
from .config import (
    AREAS, ASSESSMENT_YEARS, PipelineConfig,
    default_config, ensure_output_dir, print_config_summary
)

from .data_loading import (
    AreaNameMismatchError,
    canonical_area_name,
    harmonize_area_names,
    exclusion_mask,
    apply_exclusions,
    load_posterior_draws,
    load_posterior_intervals,
    load_harvest_table,
    load_survey_counts,
    load_area_registry,
    load_detectability
)

from .sampling import (
    InsufficientDrawsError,
    PosteriorSample,
    build_posterior_sample,
    summarize_posterior_sample
)

from .growth_model import (
    GrowthModelFit,
    fit_growth_model,
    laplace_marginal_nll
)

from .carrying_capacity import (
    CarryingCapacityResult,
    propagate_carrying_capacity,
    summarize_carrying_capacity,
    fit_mean_trajectories
)

from .reference_values import (
    InsufficientAreasError,
    fit_reference_regression,
    estimate_reference_values,
    build_reference_table
)

from .indicator import (
    survey_abundance,
    impute_from_neighbours,
    assemble_indicator
)

from .main import (
    run_pipeline,
    run_sampling_stage,
    run_carrying_capacity_stage,
    run_reference_stage,
    run_indicator_stage
)
