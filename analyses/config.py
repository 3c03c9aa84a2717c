"""
Analysis Configuration
======================

Declarative definition of the study design and of every analysis the
runner applies to each outcome.

This module centralizes the settings to:
1. Avoid one hand-written pipeline per outcome variable
2. Enable batch processing via the runner
3. Document the statistical design in one place

Design: 2 conditions (control, bblockade) x 2 intensities (RPE 13, 15)
x 3 bouts, every factor within-subject.
"""

from typing import Any, Dict, List

from bb_stats.prepare import BOUTS, CONDITIONS, INTENSITIES
from bb_stats.registry import OUTCOMES, list_outcomes


AnalysisConfig = Dict[str, Any]


STUDY_DESIGN: Dict[str, Any] = {
    "id_var": "pid",
    "conditions": list(CONDITIONS),
    "reference_condition": CONDITIONS[0],
    "treatment_condition": CONDITIONS[1],
    "intensities": list(INTENSITIES),
    "bouts": list(BOUTS),
    "alpha": 0.05,
}


ANALYSIS_SETTINGS: Dict[str, AnalysisConfig] = {
    # =========================================================================
    # Mixed model: condition x intensity x bout with random subject intercept
    # =========================================================================
    "lmm": {
        "name": "Mixed model",
        "description": """
        Does β-blockade change the response to perceptually regulated bouts,
        and does the change depend on intensity or bout?

        Full:    y ~ C(condition) * C(intensity) * C(bout) + (1|pid)
        Reduced: y ~ (C(condition) + C(intensity) + C(bout))**2 + (1|pid)

        The three-way term is tested with a likelihood-ratio test (ML fits).
        If the reduced model is retained, condition x intensity marginal
        means, their pairwise contrasts and the condition contrast within
        each intensity are reported.
        """,
        "bout_as_categorical": True,
        "enabled": True,
    },

    # =========================================================================
    # Reliability: ICC(2,1) per condition x intensity, Fisher z comparison
    # =========================================================================
    "icc": {
        "name": "Test-retest reliability",
        "description": """
        Is the bout-to-bout agreement different under β-blockade?

        ICC(2,1): two-way random effects, absolute agreement, single
        measure, on the subjects x 3 bouts matrix of each cell. Subjects
        missing a bout are excluded from that cell only. Control and
        β-blockade ICCs at the same intensity are compared with a Fisher z
        test (SE = sqrt(2 / (n - 3))).
        """,
        "enabled": True,
    },

    # =========================================================================
    # Variability: within-subject CV and RM-ANOVA
    # =========================================================================
    "cv": {
        "name": "Within-subject variability",
        "description": """
        Is the within-subject coefficient of variation across bouts
        different between conditions or intensities?

        CV = SD / mean * 100 per subject per cell (all 3 bouts required),
        then cv ~ intensity * condition repeated-measures ANOVA.
        """,
        "min_valid_bouts": len(BOUTS),
        "enabled": True,
    },
}


def get_setting(name: str) -> AnalysisConfig:
    """Get configuration for one analysis."""
    if name not in ANALYSIS_SETTINGS:
        raise ValueError(f"Unknown analysis: {name}. Available: {list(ANALYSIS_SETTINGS.keys())}")
    return ANALYSIS_SETTINGS[name]


def default_outcomes() -> List[str]:
    """Outcomes analysed when none are requested."""
    return list_outcomes(primary_only=True)


def available_outcomes() -> List[str]:
    """Every registered outcome name."""
    return list(OUTCOMES.keys())
