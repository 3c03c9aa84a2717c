"""
Study Analyses
==============

Structured analyses for the β-blockade reproducibility study.

One generic pipeline (mixed model, ICC, CV) is mapped over the outcome
variables declared in bb_stats.registry; the study design and analysis
settings live in config.py.

Usage:
    from bb_stats import load_and_prepare
    from analyses import run_all, run_paired, summarize_results

    ds = load_and_prepare("intervals.csv", "gxt.csv", "resting.csv")
    results = run_all(ds)
    paired = run_paired(ds)
"""

from .config import ANALYSIS_SETTINGS, STUDY_DESIGN, get_setting
from .runner import (
    run_outcome,
    run_all,
    run_paired,
    summarize_results,
    create_outcome_result,
    format_outcome_result,
)

__all__ = [
    "ANALYSIS_SETTINGS",
    "STUDY_DESIGN",
    "get_setting",
    "run_outcome",
    "run_all",
    "run_paired",
    "summarize_results",
    "create_outcome_result",
    "format_outcome_result",
]
