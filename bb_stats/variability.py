"""
Variability Module
==================

Within-subject variability of the repeated bouts.

    CV = SD / mean * 100

computed per subject for every condition x intensity cell across the three
bouts (sample SD, ddof=1), then summarised across the cohort and compared
with a two-way repeated-measures ANOVA (within factors: intensity,
condition).

Missing data policy: a cell needs ``min_valid`` (default 3) non-missing
bouts, the same complete-case rule as the ICC. Cells with fewer bouts are
kept in the table with ``available=False`` and reason ``incomplete_cell``
instead of silently yielding a CV from one or two points. A zero mean gives
reason ``zero_mean``; derived fields of a subject x condition without a GXT
reference give ``missing_reference``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence
import warnings

import numpy as np
import pandas as pd
from statsmodels.stats.anova import AnovaRM

from .errors import IncompleteCellError, UndefinedCVError
from .prepare import AnalysisDataset, BOUTS, DERIVED_FIELDS
from .reshape import pivot_wide, wide_column


def coefficient_of_variation(values: Sequence[float], min_valid: int = len(BOUTS)) -> float:
    """
    Coefficient of variation (%) of the non-missing values.

    :param values: Repeated measurements
    :param min_valid: Minimum number of non-missing values
    :returns: CV in percent
    :raises IncompleteCellError: Fewer than ``min_valid`` values present
    :raises UndefinedCVError: Mean of the values is zero
    """
    x = np.asarray(values, dtype=float)
    x = x[~np.isnan(x)]
    if len(x) < max(min_valid, 2):
        raise IncompleteCellError(len(x), max(min_valid, 2))

    mean = x.mean()
    if mean == 0:
        raise UndefinedCVError("CV undefined: mean is zero")
    return float(np.std(x, ddof=1) / mean * 100.0)


def cv_by_cell(
    ds: AnalysisDataset,
    outcome: str,
    bouts: Sequence[int] = BOUTS,
    min_valid: Optional[int] = None,
) -> pd.DataFrame:
    """
    Subject-level CV for every condition x intensity cell of one outcome.

    :param ds: AnalysisDataset
    :param outcome: Outcome column
    :param bouts: Bout levels forming a cell
    :param min_valid: Minimum valid bouts (default: all bouts)
    :returns: DataFrame with pid, condition, intensity, mean, sd, cv,
        n_valid, available, reason
    """
    min_valid = len(bouts) if min_valid is None else min_valid
    id_cols = [ds["id_var"], ds["condition_var"], ds["intensity_var"]]

    wide = pivot_wide(ds["data"], key_cols=[ds["bout_var"]], value_cols=[outcome], id_cols=id_cols)
    bout_cols = [wide_column(outcome, [b]) for b in bouts]
    values = wide.reindex(columns=bout_cols).to_numpy(dtype=float)
    missing_refs = set(ds["missing_references"]) if outcome in DERIVED_FIELDS else set()

    rows = []
    for i, key in enumerate(wide[id_cols].itertuples(index=False)):
        x = values[i]
        valid = x[~np.isnan(x)]
        row = dict(zip(id_cols, key))
        row.update({
            "outcome": outcome,
            "mean": float(valid.mean()) if len(valid) else np.nan,
            "sd": float(np.std(valid, ddof=1)) if len(valid) > 1 else np.nan,
            "cv": np.nan,
            "n_valid": int(len(valid)),
            "available": True,
            "reason": "",
        })
        try:
            row["cv"] = coefficient_of_variation(x, min_valid=min_valid)
        except IncompleteCellError:
            row["available"] = False
            if (row[ds["id_var"]], row[ds["condition_var"]]) in missing_refs:
                row["reason"] = "missing_reference"
            else:
                row["reason"] = "incomplete_cell"
        except UndefinedCVError:
            row["available"] = False
            row["reason"] = "zero_mean"
        rows.append(row)

    table = pd.DataFrame(rows)
    n_flagged = int((~table["available"]).sum()) if not table.empty else 0
    if n_flagged:
        warnings.warn(f"{outcome}: {n_flagged} cell(s) excluded from CV (see the reason column)")
    return table


def _describe(cv: pd.Series) -> Dict[str, float]:
    return {
        "n": int(cv.count()),
        "mean": float(cv.mean()) if cv.count() else np.nan,
        "sd": float(cv.std(ddof=1)) if cv.count() > 1 else np.nan,
        "min": float(cv.min()) if cv.count() else np.nan,
        "max": float(cv.max()) if cv.count() else np.nan,
    }


def summarize_cv(cv_table: pd.DataFrame) -> pd.DataFrame:
    """
    Descriptive statistics of subject-level CVs.

    The first row ("all") pools every available cell of the cohort; the
    following rows break it down per condition x intensity.

    :param cv_table: Output of cv_by_cell
    :returns: DataFrame with outcome, condition, intensity, n, mean, sd, min, max
    """
    outcome = cv_table["outcome"].iloc[0] if not cv_table.empty else ""
    available = cv_table[cv_table["available"]] if not cv_table.empty else cv_table

    rows = [{"outcome": outcome, "condition": "all", "intensity": "all",
             **_describe(available["cv"] if not available.empty else pd.Series(dtype=float))}]
    if not available.empty:
        grouped = available.groupby(["condition", "intensity"], observed=True, sort=True)["cv"]
        for (condition, intensity), cv in grouped:
            rows.append({"outcome": outcome, "condition": condition, "intensity": intensity, **_describe(cv)})
    return pd.DataFrame(rows)


def cv_rm_anova(
    cv_table: pd.DataFrame,
    subject: str = "pid",
    within: Sequence[str] = ("intensity", "condition"),
) -> pd.DataFrame:
    """
    Two-way repeated-measures ANOVA on subject-level CVs.

    Only subjects with an available CV in every within-cell are used
    (AnovaRM needs a balanced design).

    :param cv_table: Output of cv_by_cell
    :returns: DataFrame with term, f_value, num_df, den_df, p_value, n_subjects
    :raises ValueError: If fewer than 2 complete subjects remain
    """
    within = list(within)
    data = cv_table[cv_table["available"]].copy()
    for col in within:
        data[col] = data[col].astype(str)

    n_cells = int(np.prod([cv_table[col].nunique() for col in within]))
    counts = data.groupby(subject)["cv"].count()
    complete = counts[counts == n_cells].index
    dropped = sorted(set(cv_table[subject]) - set(complete))
    if dropped:
        warnings.warn(f"RM-ANOVA: dropped {len(dropped)} subject(s) with incomplete CV cells: {dropped}")

    data = data[data[subject].isin(complete)]
    if len(complete) < 2:
        raise ValueError("RM-ANOVA needs at least 2 subjects with every cell available")

    fit = AnovaRM(data, depvar="cv", subject=subject, within=within).fit()
    table = fit.anova_table.reset_index().rename(columns={
        "index": "term",
        "F Value": "f_value",
        "Num DF": "num_df",
        "Den DF": "den_df",
        "Pr > F": "p_value",
    })
    table["n_subjects"] = len(complete)
    return table
