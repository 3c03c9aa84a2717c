"""
Analysis Runner
===============

Generic execution engine applied to every outcome variable.

This module handles the common workflow:
1. Fit the mixed models (full vs reduced, LRT, EMMs, contrasts)
2. Compute ICC(2,1) per condition x intensity and compare conditions
3. Compute subject-level CVs, their summary and the RM-ANOVA
4. Return a structured result per outcome

Each stage is isolated: an exception in one stage is recorded in
``result["errors"]`` and the remaining stages (and outcomes) still run.
"""

from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pandas as pd

from bb_stats import (
    cv_by_cell,
    cv_rm_anova,
    compare_conditions,
    fit_mixedlm,
    fit_outcome_models,
    get_outcome_info,
    icc_by_cell,
    paired_comparisons,
    subject_means,
    summarize_cv,
    summarize_lmm_result,
)
from bb_stats.prepare import AnalysisDataset
from bb_stats.registry import REFERENCE_VARIABLES, RESTING_VARIABLES
from bb_stats.reporting import format_pvalue

from .config import STUDY_DESIGN, default_outcomes, get_setting


# -----------------------------------------------------------------------------
# OutcomeResult (dictionary-based, no classes)
# -----------------------------------------------------------------------------

OutcomeResult = Dict[str, Any]


def create_outcome_result(outcome: str, label: str = "") -> OutcomeResult:
    """Create an empty OutcomeResult dictionary."""
    return {
        "outcome": outcome,
        "label": label or outcome,
        "lmm": None,
        "icc": [],
        "icc_comparison": [],
        "cv": pd.DataFrame(),
        "cv_summary": pd.DataFrame(),
        "cv_anova": pd.DataFrame(),
        "errors": {},
    }


def format_outcome_result(result: OutcomeResult) -> str:
    """Format OutcomeResult for display."""
    n_err = len(result["errors"])
    n_icc = sum(1 for r in result["icc"] if r["available"])
    status = f"{n_err} stage error(s)" if n_err else "ok"
    return f"OutcomeResult({result['outcome']}: {n_icc} ICC cells, {status})"


def _run_stage(result: OutcomeResult, stage: str, fn: Callable[[], Any], verbose: bool) -> Any:
    """Run one pipeline stage, recording its failure instead of raising."""
    try:
        return fn()
    except Exception as e:
        result["errors"][stage] = f"{type(e).__name__}: {e}"
        if verbose:
            print(f"  {stage}: FAILED ({type(e).__name__}: {e})")
        return None


# -----------------------------------------------------------------------------
# Per-outcome pipeline
# -----------------------------------------------------------------------------

def run_outcome(
    ds: AnalysisDataset,
    outcome: str,
    fit_fn: Callable = fit_mixedlm,
    verbose: bool = True,
) -> OutcomeResult:
    """
    Run every enabled analysis for one outcome.

    Args:
        ds: AnalysisDataset from bb_stats.prepare
        outcome: Outcome name (see bb_stats.registry)
        fit_fn: Mixed-model backend callable
        verbose: Print progress messages

    Returns:
        OutcomeResult dict
    """
    info = get_outcome_info(outcome)
    column = info["column"]
    result = create_outcome_result(outcome, info["label"])
    design = STUDY_DESIGN
    alpha = design["alpha"]

    if verbose:
        print(f"\n[{outcome}] {info['label']}")

    if column not in ds["data"].columns:
        result["errors"]["data"] = f"Column '{column}' not found in data"
        if verbose:
            print(f"  SKIPPED: column '{column}' not found")
        return result

    lmm_cfg = get_setting("lmm")
    if lmm_cfg.get("enabled", True):
        result["lmm"] = _run_stage(result, "lmm", lambda: fit_outcome_models(
            ds,
            column,
            alpha=alpha,
            bout_as_categorical=lmm_cfg.get("bout_as_categorical", True),
            reference=design["reference_condition"],
            treatment=design["treatment_condition"],
            fit_fn=fit_fn,
        ), verbose)
        if verbose and result["lmm"] is not None:
            print(summarize_lmm_result(result["lmm"]))

    if get_setting("icc").get("enabled", True):
        icc = _run_stage(result, "icc", lambda: icc_by_cell(
            ds,
            column,
            conditions=design["conditions"],
            intensities=design["intensities"],
            bouts=design["bouts"],
            alpha=alpha,
        ), verbose)
        result["icc"] = icc or []
        if icc:
            comparison = _run_stage(result, "icc_comparison", lambda: compare_conditions(
                icc,
                reference=design["reference_condition"],
                treatment=design["treatment_condition"],
            ), verbose)
            result["icc_comparison"] = comparison or []

        if verbose:
            for r in result["icc"]:
                if r["available"]:
                    print(f"  ICC {r['condition']:>9} RPE{r['intensity']}: {r['icc']:.3f} "
                          f"[{r['ci_lower']:.3f}, {r['ci_upper']:.3f}] n={r['n_subjects']}")
                else:
                    print(f"  ICC {r['condition']:>9} RPE{r['intensity']}: unavailable ({r['reason']})")
            for c in result["icc_comparison"]:
                if c["available"]:
                    print(f"  Fisher z RPE{c['intensity']}: z = {c['z_score']:.2f}, {format_pvalue(c['p_value'])}")
                else:
                    print(f"  Fisher z RPE{c['intensity']}: unavailable ({c['reason']})")

    cv_cfg = get_setting("cv")
    if cv_cfg.get("enabled", True):
        cv = _run_stage(result, "cv", lambda: cv_by_cell(
            ds, column, bouts=design["bouts"], min_valid=cv_cfg.get("min_valid_bouts"),
        ), verbose)
        if cv is not None:
            result["cv"] = cv
            summary = _run_stage(result, "cv_summary", lambda: summarize_cv(cv), verbose)
            result["cv_summary"] = summary if summary is not None else pd.DataFrame()
            anova = _run_stage(result, "cv_anova", lambda: cv_rm_anova(cv, subject=ds["id_var"]), verbose)
            result["cv_anova"] = anova if anova is not None else pd.DataFrame()
            if verbose and not result["cv_summary"].empty:
                overall = result["cv_summary"].iloc[0]
                print(f"  CV: mean {overall['mean']:.2f}% (SD {overall['sd']:.2f}, n={overall['n']})")

    return result


def run_all(
    ds: AnalysisDataset,
    outcomes: Optional[List[str]] = None,
    fit_fn: Callable = fit_mixedlm,
    verbose: bool = True,
) -> Dict[str, OutcomeResult]:
    """
    Run the pipeline for all (or selected) outcomes.

    Outcomes are independent; a failure in one never stops the others.

    Args:
        ds: AnalysisDataset
        outcomes: Outcome names (default: primary outcomes)
        fit_fn: Mixed-model backend callable
        verbose: Print progress messages

    Returns:
        Dictionary mapping outcome name to OutcomeResult dict
    """
    outcomes = outcomes or default_outcomes()

    if verbose:
        print("=" * 70)
        print("OUTCOME ANALYSES")
        print("=" * 70)

    results = {}
    for outcome in outcomes:
        try:
            results[outcome] = run_outcome(ds, outcome, fit_fn=fit_fn, verbose=verbose)
        except Exception as e:
            result = create_outcome_result(outcome)
            result["errors"]["outcome"] = f"{type(e).__name__}: {e}"
            results[outcome] = result
        if verbose:
            print(f"  -> {format_outcome_result(results[outcome])}")
    return results


def run_paired(
    ds: AnalysisDataset,
    outcomes: Optional[List[str]] = None,
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Paired control vs β-blockade tests on scalar per-subject variables.

    Covers resting measurements, GXT references and the subject means of
    the interval outcomes (pooled and per intensity).

    Returns:
        DataFrame of PairedResult rows with a ``source`` column
    """
    design = STUDY_DESIGN
    levels = (design["reference_condition"], design["treatment_condition"])
    frames = []

    resting = ds["resting"]
    if resting is not None and not resting.empty:
        table = paired_comparisons(resting, RESTING_VARIABLES, levels=levels, id_col=ds["id_var"])
        table.insert(0, "source", "resting")
        frames.append(table)

    references = ds["references"]
    if references is not None and not references.empty:
        table = paired_comparisons(references, REFERENCE_VARIABLES, levels=levels, id_col=ds["id_var"])
        table.insert(0, "source", "gxt")
        frames.append(table)

    for outcome in outcomes or default_outcomes():
        column = get_outcome_info(outcome)["column"]
        if column not in ds["data"].columns:
            continue
        for intensity in [None] + list(design["intensities"]):
            means = subject_means(ds, column, intensity=intensity)
            table = paired_comparisons(means, [column], levels=levels, id_col=ds["id_var"])
            table.insert(0, "source", "intervals" if intensity is None else f"intervals_rpe{intensity}")
            frames.append(table)

    paired = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()

    if verbose and not paired.empty:
        print("\n" + "=" * 70)
        print("PAIRED COMPARISONS (bblockade - control)")
        print("=" * 70)
        for _, row in paired.iterrows():
            print(f"  {row['source']:>16} {row['outcome']:>14}: diff = {row['mean_diff']:8.2f} "
                  f"(n={row['n_pairs']}), {format_pvalue(row['p_value'])}")
    return paired


def summarize_results(results: Dict[str, OutcomeResult]) -> pd.DataFrame:
    """
    Create a one-row-per-outcome summary table.

    Returns:
        DataFrame with LRT, ICC comparison and CV ANOVA highlights
    """
    rows = []
    for outcome, result in results.items():
        lmm = result.get("lmm")
        row = {
            "Outcome": outcome,
            "Label": result.get("label", outcome),
            "LRT p (3-way)": lmm["lrt"]["p_value"] if lmm else np.nan,
            "Retained": lmm["retained"] if lmm else "",
        }
        for comp in result.get("icc_comparison", []):
            key = f"Fisher z p RPE{comp['intensity']}"
            row[key] = comp["p_value"] if comp["available"] else np.nan
        anova = result.get("cv_anova")
        if anova is not None and not anova.empty:
            for _, term in anova.iterrows():
                row[f"CV ANOVA p {term['term']}"] = term["p_value"]
        row["Status"] = "Errors: " + ", ".join(result["errors"]) if result.get("errors") else "OK"
        rows.append(row)
    return pd.DataFrame(rows)
