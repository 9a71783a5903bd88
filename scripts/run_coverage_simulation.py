#!/usr/bin/env python
"""
Simultaneous Confidence Band Coverage Study

This script runs the Monte Carlo experiment comparing the quantile methods of
the simultaneous confidence bands across data generating processes, sample
sizes and coverage levels.

Usage:
    python run_coverage_simulation.py                        # Run with defaults
    python run_coverage_simulation.py --n-sim 200 --n 20 50  # Custom parameters
    python run_coverage_simulation.py --dgps ou degras       # Run specific DGPs only
    python run_coverage_simulation.py --help                 # Show all options
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

import numpy as np
import pandas as pd
from tqdm import tqdm

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from scbfda.datagen import get_standard_field_dgps
from scbfda.eval import (
    aggregate_band_results,
    evaluate_single_band,
    evaluations_to_frame,
    make_band_method,
    summarize_evaluation,
)

METHODS = ["tGKF", "GKF", "NonParametricBootstrap", "MultiplierBootstrap"]

# =============================================================================
# Loop Level Functions
# =============================================================================


def run_setting(dgp, n, methods, levels, n_sim, target, mboots, rng):
    """
    Run all simulations for one (DGP, sample size) setting.

    Every method and level is applied to the same simulated samples.

    Returns:
        tuple: (individual records, {(method, level): [BandResult, ...]})
    """
    truth = dgp.true_mean if target == "mean" else dgp.get_true_snr(rng=rng)
    band_methods = {
        method: make_band_method(
            target,
            method,
            param_method={"Mboots": mboots, "seed": int(rng.integers(0, 2**31))}
            if method.endswith("Bootstrap")
            else None,
        )
        for method in methods
    }

    records = []
    results_by_method_level = {}
    for sim_idx in range(n_sim):
        Y = dgp.sample(n, rng)
        for method, band_method in band_methods.items():
            for level in levels:
                q, lower, upper = band_method(Y, level)
                band_result = evaluate_single_band(lower, upper, truth, q=q)
                results_by_method_level.setdefault((method, level), []).append(band_result)
                records.append(
                    {
                        "dgp": dgp.name,
                        "n": n,
                        "method": method,
                        "level": level,
                        "sim_idx": sim_idx,
                        "q": band_result.q,
                        "covers_entirely": band_result.covers_entirely,
                        "violation_above": band_result.violation_above,
                        "violation_below": band_result.violation_below,
                        "max_violation_above": band_result.max_violation_above,
                        "max_violation_below": band_result.max_violation_below,
                        "mean_band_width": band_result.mean_band_width,
                    }
                )
    return records, results_by_method_level


# =============================================================================
# Result Saving
# =============================================================================


def save_results(records, summary, output_dir, file_format, base_filename):
    """
    Save simulation results to disk.

    Creates:
    - Individual band evaluations (long format) as feather or CSV
    - Aggregated metrics per (DGP, n, method, level) as feather or CSV and JSON
    """
    df_individual = pd.DataFrame(records)
    if file_format == "feather":
        individual_path = output_dir / f"{base_filename}_individual.feather"
        summary_path = output_dir / f"{base_filename}_summary.feather"
        df_individual.to_feather(individual_path)
        summary.to_feather(summary_path)
    else:
        individual_path = output_dir / f"{base_filename}_individual.csv"
        summary_path = output_dir / f"{base_filename}_summary.csv"
        df_individual.to_csv(individual_path, index=False)
        summary.to_csv(summary_path, index=False)

    json_path = output_dir / f"{base_filename}_aggregated.json"
    with open(json_path, "w") as f:
        json.dump(json.loads(summary.to_json(orient="records")), f, indent=2)

    print(f"  Saved: {individual_path.name}")
    print(f"  Saved: {summary_path.name}")
    print(f"  Saved: {json_path.name}")


# =============================================================================
# Main Entry Point
# =============================================================================


def main():
    dgps = get_standard_field_dgps(np.linspace(0, 1, 100))

    parser = argparse.ArgumentParser(
        description="Run simultaneous confidence band coverage study",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--n-sim", type=int, default=500, help="Number of simulated samples per setting"
    )
    parser.add_argument(
        "--n", type=int, nargs="+", default=[20, 50, 100, 200], help="Sample sizes"
    )
    parser.add_argument(
        "--levels", type=float, nargs="+", default=[0.9, 0.95], help="Coverage levels"
    )
    parser.add_argument(
        "--dgps",
        nargs="+",
        choices=list(dgps.keys()) + ["all"],
        default=["all"],
        help="Which DGPs to run",
    )
    parser.add_argument(
        "--methods", nargs="+", choices=METHODS, default=METHODS, help="Quantile methods"
    )
    parser.add_argument(
        "--target", choices=["mean", "snr"], default="mean", help="Banded parameter"
    )
    parser.add_argument(
        "--bootstrap-size",
        "-B",
        type=int,
        default=2000,
        help="Number of bootstrap replicates for the bootstrap methods",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("data/results"),
        help="Output directory for results",
    )
    parser.add_argument(
        "--format", choices=["feather", "csv"], default="feather", help="Table format"
    )
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    args = parser.parse_args()

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    selected = list(dgps) if "all" in args.dgps else args.dgps

    print("\n" + "=" * 60)
    print("SIMULATION CONFIGURATION")
    print("=" * 60)
    print(f"DGPs: {selected}")
    print(f"Sample sizes: {args.n}")
    print(f"Methods: {args.methods}")
    print(f"Levels: {args.levels}")
    print(f"Simulations per setting: {args.n_sim}")
    print(f"Bootstrap replicates: {args.bootstrap_size}")
    print(f"Output directory: {output_dir}")
    print(f"Random seed: {args.seed}")
    print("=" * 60)

    rng = np.random.default_rng(args.seed)
    all_records = []
    evaluations = []

    for dgp_name in selected:
        dgp = dgps[dgp_name]
        for n in tqdm(args.n, desc=dgp_name):
            records, results = run_setting(
                dgp,
                n,
                args.methods,
                args.levels,
                args.n_sim,
                args.target,
                args.bootstrap_size,
                np.random.default_rng(rng.integers(0, 2**31)),
            )
            all_records.extend(records)
            for (method, level), band_results in results.items():
                evaluation = aggregate_band_results(band_results, nominal_level=level)
                labels = {"dgp": dgp_name, "n": n, "method": method, "level": level}
                evaluations.append((labels, evaluation))
                tqdm.write(
                    f"{dgp_name:>22} n={n:<5} {method:<24} level={level:.2f} "
                    f"coverage={evaluation.coverage_rate:.3f}"
                )

    summary = evaluations_to_frame(evaluations)
    timestamp = datetime.now().strftime("%Y%m%d")
    save_results(
        all_records,
        summary,
        output_dir,
        args.format,
        f"coverage_{args.target}_{timestamp}",
    )

    # Report the last setting in full
    if evaluations:
        print(summarize_evaluation(evaluations[-1][1]))

    print("\n" + "=" * 60)
    print("SIMULATION COMPLETE")
    print("=" * 60)
    print(f"Results saved to: {output_dir}")


if __name__ == "__main__":
    main()
