#!/usr/bin/env python3
"""
Run Study Analyses
==================

Simple entry point for the β-blockade reproducibility analyses.

Usage:
    python run_analysis.py                      # Run primary outcomes
    python run_analysis.py hr vo2_pct_peak      # Run specific outcomes
    python run_analysis.py --describe           # Print analysis descriptions

Environment:
    BB_DATA_DIR: Directory holding the study CSV files (optional)
"""
import os
import sys
import argparse
from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from bb_stats import describe_dataset, load_and_prepare, results_to_tables, export_to_csv
from bb_stats.lmm import get_retained_fit
from bb_stats.plotting import plot_bout_trajectories, plot_icc_comparison, plot_model_diagnostics
from bb_stats.registry import get_outcome_info
from bb_stats.reporting import print_results_summary
from analyses import ANALYSIS_SETTINGS, run_all, run_paired, summarize_results
from analyses.config import available_outcomes, default_outcomes


def save_plots(ds, results, plots_dir):
    """Write trajectory, ICC and diagnostic figures for every outcome."""
    plots_dir = Path(plots_dir)
    plots_dir.mkdir(parents=True, exist_ok=True)
    for outcome, result in results.items():
        column = get_outcome_info(outcome)["column"]
        if column not in ds["data"].columns:
            continue
        fig = plot_bout_trajectories(ds, column, save_path=str(plots_dir / f"{outcome}_trajectories.png"))
        plt.close(fig)
        if result["icc"]:
            fig = plot_icc_comparison(result["icc"], title=result["label"],
                                      save_path=str(plots_dir / f"{outcome}_icc.png"))
            plt.close(fig)
        fitted = get_retained_fit(result["lmm"]) if result["lmm"] else None
        if fitted is not None and fitted.get("resid") is not None:
            fig = plot_model_diagnostics(fitted, title_prefix=outcome,
                                         save_path=str(plots_dir / f"{outcome}_diagnostics.png"))
            plt.close(fig)


def main():
    parser = argparse.ArgumentParser(
        description="Run β-blockade reproducibility analyses",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python run_analysis.py                         # Primary outcomes
    python run_analysis.py hr mets_pct_vt          # Selected outcomes
    python run_analysis.py --output-dir results    # Export CSV tables
    python run_analysis.py --describe              # Show analysis descriptions
        """,
    )
    parser.add_argument(
        "outcomes",
        nargs="*",
        help=f"Outcomes to analyse (default: primary outcomes). One of: {', '.join(available_outcomes())}",
    )
    parser.add_argument(
        "--describe",
        action="store_true",
        help="Print analysis descriptions instead of running",
    )
    parser.add_argument(
        "--data-dir",
        default=os.getenv("BB_DATA_DIR", "data"),
        help="Directory holding the study CSV files",
    )
    parser.add_argument("--intervals", default="intervals.csv", help="Interval trials file name")
    parser.add_argument("--gxt", default="gxt.csv", help="Graded exercise test file name")
    parser.add_argument("--resting", default="resting.csv", help="Resting measurements file name (optional)")
    parser.add_argument("--sep", default=",", help="CSV field separator")
    parser.add_argument(
        "--output-dir",
        default=os.getenv("BB_OUTPUT_DIR"),
        help="Write result tables as CSV to this directory",
    )
    parser.add_argument("--plots-dir", default=None, help="Write figures to this directory")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail when an interval row has no GXT reference",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Minimal output",
    )

    args = parser.parse_args()
    unknown = [o for o in args.outcomes if o not in available_outcomes()]
    if unknown:
        parser.error(f"unknown outcome(s): {', '.join(unknown)}")
    outcomes = args.outcomes or default_outcomes()

    # Describe mode
    if args.describe:
        for key, config in ANALYSIS_SETTINGS.items():
            print("=" * 70)
            print(f"{key}: {config['name']}")
            print("=" * 70)
            print(config.get("description", "No description available"))
            print()
        return 0

    data_dir = Path(args.data_dir)
    resting_path = data_dir / args.resting
    if not resting_path.exists():
        resting_path = None

    print("=" * 70)
    print("β-BLOCKADE REPRODUCIBILITY ANALYSES")
    print("=" * 70)
    print(f"Data directory: {data_dir}")

    ds = load_and_prepare(
        data_dir / args.intervals,
        data_dir / args.gxt,
        resting_path=resting_path,
        sep=args.sep,
        strict=args.strict,
    )
    print(describe_dataset(ds))

    results = run_all(ds, outcomes=outcomes, verbose=not args.quiet)
    paired = run_paired(ds, outcomes=outcomes, verbose=not args.quiet)

    # Summary table
    print("\n" + "=" * 70)
    print("SUMMARY")
    print("=" * 70)
    print_results_summary(summarize_results(results))

    if args.output_dir:
        tables = results_to_tables(results)
        tables["paired"] = paired
        written = export_to_csv(tables, args.output_dir)
        print(f"\nWrote {len(written)} tables to {args.output_dir}")

    if args.plots_dir:
        save_plots(ds, results, args.plots_dir)

    print("\n" + "=" * 70)
    print("COMPLETE")
    print("=" * 70)

    return 0


if __name__ == "__main__":
    sys.exit(main())
