"""
Wild Reindeer Reference Values - Main Orchestration Script
==========================================================

This script provides the main entry point for the indicator pipeline. It can
be run directly or individual stages can be called interactively.

Usage:
    # Run full pipeline (reuses artifacts already in the output directory)
    python -m reindeer_index.main --full

    # Recompute everything with 8 worker processes
    python -m reindeer_index.main --full --force --workers 8

    # Or import and run specific stages:
    from reindeer_index.main import *
    config = default_config()
    sample, summary = run_sampling_stage(config)

Pipeline stages (each persists its artifact):
    1. sample             - resample IMPM posterior draws
    2. carrying_capacity  - growth model fit per area and draw
    3. reference          - log-log regression and reference values
    4. indicator          - yearly ratios at the assessment years
"""

import sys
import time
import warnings

from .artifacts import (
    load_indicator_table, load_k_samples, load_posterior_sample, load_table,
    save_k_samples, save_posterior_sample, save_table,
)
from .carrying_capacity import fit_mean_trajectories, propagate_carrying_capacity
from .config import INPUT_FILES, default_config, ensure_output_dir, print_config_summary
from .data_loading import (
    load_area_registry, load_detectability, load_harvest_table,
    load_posterior_draws, load_posterior_intervals, load_survey_counts,
)
from .indicator import assemble_indicator
from .progress import AnalysisTimer, print_step_header
from .reference_values import estimate_reference_values
from .sampling import build_posterior_sample, summarize_posterior_sample

STAGES = ['sample', 'carrying_capacity', 'reference', 'indicator']


def _have(config, *names):
    return all(config.artifact_path(n).exists() for n in names)


# ============================================================================
# STAGES
# ============================================================================

def run_sampling_stage(config, force=False, verbose=True):
    """
    Stage 1: posterior sample and its abundance summary.

    Returns
    -------
    tuple
        (PosteriorSample, abundance summary DataFrame)
    """
    if not force and _have(config, 'posterior_sample', 'abundance_summary'):
        if verbose:
            print(f"  Reusing {config.artifact_path('posterior_sample')}")
        return (load_posterior_sample(config.artifact_path('posterior_sample')),
                load_table(config.artifact_path('abundance_summary')))

    raw = load_posterior_draws(config.input_path('posterior_draws'),
                               known_areas=config.areas, verbose=verbose)
    intervals = load_posterior_intervals(config.input_path('posterior_intervals'),
                                         known_areas=config.areas, verbose=verbose)

    sample = build_posterior_sample(raw, intervals, config, verbose=verbose)
    summary = summarize_posterior_sample(sample)

    save_posterior_sample(sample, config.artifact_path('posterior_sample'))
    save_table(summary, config.artifact_path('abundance_summary'))
    return sample, summary


def run_carrying_capacity_stage(config, sample, force=False, verbose=True):
    """
    Stage 2: K per (area, draw) and per-area summary.

    Returns
    -------
    tuple
        (K samples DataFrame, K summary DataFrame)
    """
    if not force and _have(config, 'k_samples', 'k_summary'):
        if verbose:
            print(f"  Reusing {config.artifact_path('k_summary')}")
        return (load_k_samples(config.artifact_path('k_samples')),
                load_table(config.artifact_path('k_summary')))

    # Names are checked against every configured area; the fit aligns on sample.areas
    harvest = load_harvest_table(config.input_path('harvest'), sample.years,
                                 config.areas, verbose=verbose)

    result = propagate_carrying_capacity(sample, harvest, config, verbose=verbose)
    mean_fits = fit_mean_trajectories(sample, harvest, config)

    if verbose and len(result.failures) > 0:
        print("\n  Failed fits by reason:")
        for reason, count in result.failures.groupby('reason')['count'].sum().items():
            print(f"    {reason:<20} {count:,}")

    save_k_samples(result.samples, config.artifact_path('k_samples'))
    save_table(result.summary, config.artifact_path('k_summary'))
    save_table(mean_fits, config.artifact_path('k_mean_fits'))
    return result.samples, result.summary


def run_reference_stage(config, k_samples, k_summary, force=False, verbose=True):
    """Stage 3: reference value per area."""
    if not force and _have(config, 'reference_values'):
        if verbose:
            print(f"  Reusing {config.artifact_path('reference_values')}")
        return load_table(config.artifact_path('reference_values'))

    sizes = load_area_registry(config.input_path('area_registry'),
                               known_areas=config.areas, verbose=verbose)
    reference = estimate_reference_values(k_samples, k_summary, sizes, config, verbose=verbose)

    save_table(reference['table'], config.artifact_path('reference_values'))
    return reference['table']


def run_indicator_stage(config, abundance_summary, reference_table, force=False, verbose=True):
    """Stage 4: indicator table (minimum counts are optional)."""
    if not force and _have(config, 'indicator'):
        if verbose:
            print(f"  Reusing {config.artifact_path('indicator')}")
        return load_indicator_table(config.artifact_path('indicator'))

    survey_path = config.input_path('survey_counts')
    if survey_path.exists():
        survey = load_survey_counts(survey_path, known_areas=config.areas, verbose=verbose)
        detectability = load_detectability(config.input_path('detectability'), verbose=verbose)
    else:
        warnings.warn(f"No minimum-count file at {survey_path}; using model estimates only")
        survey, detectability = None, None

    result = assemble_indicator(abundance_summary, survey, detectability,
                                reference_table, config, verbose=verbose)

    save_table(result['indicator'], config.artifact_path('indicator'))
    return result['indicator']


# ============================================================================
# FULL PIPELINE
# ============================================================================

def run_pipeline(config=None, force=False, until='indicator', verbose=True):
    """
    Run the pipeline stages in order, persisting each artifact.

    Stages whose artifacts already exist in config.output_dir are loaded
    instead of recomputed unless force is True.

    Parameters
    ----------
    config : PipelineConfig, optional
    force : bool
        Recompute every stage
    until : str
        Last stage to run (one of STAGES)
    verbose : bool

    Returns
    -------
    dict
        Results of the stages that ran
    """
    if until not in STAGES:
        raise ValueError(f"Unknown stage: {until}. Available: {STAGES}")

    config = config or default_config()
    last = STAGES.index(until) + 1
    timer = AnalysisTimer()

    print("\n" + "=" * 70)
    print("WILD REINDEER REFERENCE VALUES - PIPELINE")
    print("=" * 70)
    print(f"Started at: {time.strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    ensure_output_dir(config.output_dir)
    if verbose:
        print_config_summary(config)

    results = {}

    print_step_header(1, last, "Posterior Sample")
    with timer.step("Posterior sample", verbose=verbose):
        results['sample'], results['abundance_summary'] = run_sampling_stage(
            config, force=force, verbose=verbose)

    if last >= 2:
        print_step_header(2, last, "Carrying Capacity")
        with timer.step("Carrying capacity", verbose=verbose):
            results['k_samples'], results['k_summary'] = run_carrying_capacity_stage(
                config, results['sample'], force=force, verbose=verbose)

    if last >= 3:
        print_step_header(3, last, "Reference Values")
        with timer.step("Reference values", verbose=verbose):
            results['reference'] = run_reference_stage(
                config, results['k_samples'], results['k_summary'], force=force, verbose=verbose)

    if last >= 4:
        print_step_header(4, last, "Indicator Values")
        with timer.step("Indicator values", verbose=verbose):
            results['indicator'] = run_indicator_stage(
                config, results['abundance_summary'], results['reference'],
                force=force, verbose=verbose)

    results['timing'] = timer.summary(verbose=verbose)
    return results


def quick_data_check(config=None):
    """Report which inputs and artifacts are present."""
    config = config or default_config()
    print_config_summary(config)

    print("\nArtifacts:")
    for name in ['posterior_sample', 'k_summary', 'reference_values', 'indicator']:
        path = config.artifact_path(name)
        print(f"  [{'✓' if path.exists() else ' '}] {name}: {path}")

    missing = [n for n in INPUT_FILES if not config.input_path(n).exists()]
    return len(missing) == 0


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def main(argv=None):
    """Command line entry point."""
    import argparse

    parser = argparse.ArgumentParser(description='Wild Reindeer Reference Values')
    parser.add_argument('--check', action='store_true',
                        help='Check input and artifact availability only')
    parser.add_argument('--full', action='store_true',
                        help='Run full pipeline')
    parser.add_argument('--stage', choices=STAGES, default='indicator',
                        help='Last stage to run (default: indicator)')
    parser.add_argument('--force', action='store_true',
                        help='Recompute stages even if artifacts exist')
    parser.add_argument('--data-dir', help='Input directory')
    parser.add_argument('--output-dir', help='Output directory')
    parser.add_argument('--workers', type=int, help='Worker processes for model fitting')
    parser.add_argument('--samples', type=int, help='Posterior draws retained per area')
    parser.add_argument('--seed', type=int, help='Random seed')
    parser.add_argument('--quiet', action='store_true', help='Less console output')

    args = parser.parse_args(argv)

    overrides = {
        'data_dir': args.data_dir,
        'output_dir': args.output_dir,
        'n_workers': args.workers,
        'n_samples': args.samples,
        'seed': args.seed,
    }
    config = default_config().with_overrides(
        **{k: v for k, v in overrides.items() if v is not None}
    )

    if args.check:
        return 0 if quick_data_check(config) else 1

    until = 'indicator' if args.full else args.stage
    run_pipeline(config, force=args.force, until=until, verbose=not args.quiet)
    return 0


if __name__ == "__main__":
    sys.exit(main())
