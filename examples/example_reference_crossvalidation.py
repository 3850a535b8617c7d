"""
Reference Value Cross-Validation
================================

This example compares, for every area with a direct carrying capacity
estimate, the direct mean K with what the K vs habitat area regression
would have predicted for it.

Large disagreements point to areas whose carrying capacity is not well
described by habitat size alone (e.g. strong winter range limitation).

Usage:
    python example_reference_crossvalidation.py [--output-dir outputs]

Requires the carrying_capacity stage to have run, e.g.
    python -m reindeer_index.main --stage carrying_capacity

Outputs:
    - Console table of direct vs predicted K per area
    - reference_crossvalidation.csv in the output directory
"""

import argparse
from pathlib import Path

import numpy as np

from reindeer_index import (
    default_config,
    estimate_reference_values,
    load_area_registry,
)
from reindeer_index.artifacts import load_k_samples, load_table, save_table

parser = argparse.ArgumentParser(description=__doc__.split("\n")[1])
parser.add_argument('--output-dir', help='Directory holding the pipeline artifacts')
args = parser.parse_args()

config = default_config()
if args.output_dir:
    config = config.with_overrides(output_dir=args.output_dir)

print("\n" + "=" * 70)
print("REFERENCE VALUE CROSS-VALIDATION")
print("=" * 70)

# Step 1: Load carrying capacity artifacts
print("\n[STEP 1/3] Loading carrying capacity estimates...")
k_samples = load_k_samples(config.artifact_path('k_samples'))
k_summary = load_table(config.artifact_path('k_summary'))
sizes = load_area_registry(config.input_path('area_registry'), known_areas=config.areas,
                           verbose=False)
print(f"  {k_samples.shape[1]} areas x {k_samples.shape[0]:,} draws")

# Step 2: Regression on the direct estimates
print("\n[STEP 2/3] Refitting the regression per draw...")
reference = estimate_reference_values(k_samples, k_summary, sizes, config, verbose=False)
table = reference['table']
fit = reference['regression']
print(f"  log(K) = {fit['intercept']:.3f} + {fit['slope']:.3f} · log(area)   R² = {fit['r_squared']:.3f}")

# Step 3: Direct vs predicted
print("\n[STEP 3/3] Direct vs predicted carrying capacity")
print("=" * 70)
direct = table[table['source'] == 'direct'].copy()
direct['log_ratio'] = np.log(direct['pred_mean'] / direct['value'])
direct['inside_95'] = (direct['value'] >= direct['pred_q2.5']) & (direct['value'] <= direct['pred_q97.5'])

print(f"\n{'Area':<25} | {'direct K':>9} | {'predicted':>9} | {'95% band':>19} | log ratio")
print("-" * 85)
for _, row in direct.sort_values('log_ratio').iterrows():
    band = f"{row['pred_q2.5']:,.0f}-{row['pred_q97.5']:,.0f}"
    flag = "" if row['inside_95'] else "  *"
    print(f"{row['area']:<25} | {row['value']:>9,.0f} | {row['pred_mean']:>9,.0f} | "
          f"{band:>19} | {row['log_ratio']:>+8.2f}{flag}")

print("\n" + "=" * 70)
print(f"Direct K inside the predictive 95% band: {int(direct['inside_95'].sum())}/{len(direct)}")
print("  (* = outside)")

path = save_table(direct, Path(config.output_dir) / "reference_crossvalidation.csv")
print(f"\nSaved: {path}")
