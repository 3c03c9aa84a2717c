"""
Reporting Module
================

Flattens pipeline results into tidy summary tables for the report
renderer and exports them to CSV.

Tables (one DataFrame each, stacked across outcomes):
- icc, icc_comparison: ReliabilityResult / ComparisonResult rows
- cv, cv_summary, cv_anova: variability outputs
- lrt, coefficients, emmeans, pairwise, simple_contrasts: mixed models
- errors: stage failures per outcome
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Union

import numpy as np
import pandas as pd


TABLE_NAMES = [
    "icc",
    "icc_comparison",
    "cv",
    "cv_summary",
    "cv_anova",
    "lrt",
    "coefficients",
    "emmeans",
    "pairwise",
    "simple_contrasts",
    "errors",
]


def _with_outcome(df: pd.DataFrame, outcome: str) -> pd.DataFrame:
    if df is None or df.empty:
        return pd.DataFrame()
    df = df.copy()
    if "outcome" in df.columns:
        df = df.drop(columns=["outcome"])
    df.insert(0, "outcome", outcome)
    return df


def results_to_tables(results: Dict[str, Dict[str, Any]]) -> Dict[str, pd.DataFrame]:
    """
    Convert per-outcome pipeline results into stacked DataFrames.

    :param results: Mapping outcome -> OutcomeResult (analyses.runner)
    :returns: Mapping table name -> DataFrame (empty when nothing to report)
    """
    parts: Dict[str, List[pd.DataFrame]] = {name: [] for name in TABLE_NAMES}

    for outcome, result in results.items():
        parts["icc"].append(_with_outcome(pd.DataFrame(result.get("icc", [])), outcome))
        parts["icc_comparison"].append(_with_outcome(pd.DataFrame(result.get("icc_comparison", [])), outcome))
        parts["cv"].append(_with_outcome(result.get("cv"), outcome))
        parts["cv_summary"].append(_with_outcome(result.get("cv_summary"), outcome))
        parts["cv_anova"].append(_with_outcome(result.get("cv_anova"), outcome))

        lmm = result.get("lmm")
        if lmm is not None:
            lrt = dict(lmm["lrt"])
            lrt.update({"retained": lmm["retained"], "converged": lmm["converged"],
                        "n_obs": lmm["n_obs"], "n_groups": lmm["n_groups"],
                        "warnings": "; ".join(lmm["warnings"])})
            parts["lrt"].append(_with_outcome(pd.DataFrame([lrt]), outcome))
            for key in ("coefficients", "emmeans", "pairwise", "simple_contrasts"):
                parts[key].append(_with_outcome(lmm[key], outcome))

        errors = result.get("errors", {})
        if errors:
            parts["errors"].append(pd.DataFrame(
                [{"outcome": outcome, "stage": stage, "error": message} for stage, message in errors.items()]
            ))

    tables = {}
    for name, frames in parts.items():
        frames = [f for f in frames if f is not None and not f.empty]
        tables[name] = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
    return tables


def export_to_csv(
    tables: Dict[str, pd.DataFrame],
    output_dir: Union[str, Path],
    prefix: str = "",
) -> List[Path]:
    """
    Write every non-empty table to ``output_dir/<prefix><name>.csv``.

    :returns: Paths written
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, table in tables.items():
        if table is None or table.empty:
            continue
        path = output_dir / f"{prefix}{name}.csv"
        table.to_csv(path, index=False)
        written.append(path)
    return written


def format_pvalue(p: float) -> str:
    """Format a p-value APA style."""
    if p is None or np.isnan(p):
        return "NA"
    if p < 0.001:
        return "p < .001"
    return f"p = {p:.3f}"


def print_results_summary(summary: pd.DataFrame) -> None:
    """Print the one-row-per-outcome summary table."""
    if summary.empty:
        print("No results")
        return
    print(summary.to_string(index=False))
