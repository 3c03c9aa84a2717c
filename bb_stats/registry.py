"""
Outcome Registry
================

Descriptors for every outcome variable analysed by the pipeline.

Each descriptor is a plain dict so the same generic pipeline can be mapped
over the outcome list instead of repeating per-variable code:

    {"name": "hr", "column": "hr", "label": "Heart rate", "unit": "bpm", "primary": True}

Primary outcomes (absolute and %peak for heart rate, oxygen uptake and work
rate) are analysed by default; threshold-normalised outcomes are secondary.
"""
from __future__ import annotations

from typing import Any, Dict, List

OutcomeInfo = Dict[str, Any]


def _outcome(name: str, label: str, unit: str, primary: bool = True) -> OutcomeInfo:
    return {
        "name": name,
        "column": name,
        "label": label,
        "unit": unit,
        "primary": primary,
    }


OUTCOMES: Dict[str, OutcomeInfo] = {
    o["name"]: o
    for o in [
        _outcome("hr", "Heart rate", "bpm"),
        _outcome("hr_pct_peak", "Heart rate (%HRpeak)", "%"),
        _outcome("vo2", "Oxygen uptake", "ml/kg/min"),
        _outcome("vo2_pct_peak", "Oxygen uptake (%VO2peak)", "%"),
        _outcome("mets", "Work rate", "METs"),
        _outcome("mets_pct_peak", "Work rate (%WRpeak)", "%"),
        _outcome("hr_pct_vt", "Heart rate (%HR at VT)", "%", primary=False),
        _outcome("vo2_pct_vt", "Oxygen uptake (%VO2 at VT)", "%", primary=False),
        _outcome("mets_pct_vt", "Work rate (%WR at VT)", "%", primary=False),
    ]
}

# Scalar per-subject x condition variables compared with paired tests
RESTING_VARIABLES: List[str] = ["rest_hr", "sbp", "dbp", "spo2"]
REFERENCE_VARIABLES: List[str] = ["hr_peak", "vo2_peak", "mets_peak", "hr_vt", "vo2_vt", "mets_vt"]


def get_outcome_info(name: str) -> OutcomeInfo:
    """
    Look up an outcome descriptor.

    Unknown names get a generic descriptor (column = name) so ad-hoc
    columns can still be pushed through the pipeline.
    """
    if name in OUTCOMES:
        return OUTCOMES[name]
    return _outcome(name, name, "", primary=False)


def list_outcomes(primary_only: bool = True) -> List[str]:
    """List registered outcome names."""
    return [name for name, info in OUTCOMES.items() if info["primary"] or not primary_only]
