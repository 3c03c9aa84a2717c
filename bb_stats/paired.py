"""
Paired Comparisons
==================

Paired t-tests between the two conditions for scalar per-subject outcomes
(resting measurements, GXT peak / threshold values, subject means of the
interval outcomes).

The difference is always ``level_b - level_a`` (treatment minus control by
default), so a negative mean difference means lower values under
β-blockade.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .prepare import AnalysisDataset, CONDITIONS
from .reshape import pivot_wide, wide_column


PairedResult = Dict[str, Any]


def create_paired_result(
    outcome: str,
    level_a: str,
    level_b: str,
    mean_a: float = np.nan,
    mean_b: float = np.nan,
    mean_diff: float = np.nan,
    sd_diff: float = np.nan,
    t_stat: float = np.nan,
    df: float = np.nan,
    p_value: float = np.nan,
    ci_lower: float = np.nan,
    ci_upper: float = np.nan,
    cohens_dz: float = np.nan,
    n_pairs: int = 0,
    note: str = "",
) -> PairedResult:
    """Create a PairedResult dictionary."""
    return {
        "outcome": outcome,
        "level_a": level_a,
        "level_b": level_b,
        "mean_a": mean_a,
        "mean_b": mean_b,
        "mean_diff": mean_diff,
        "sd_diff": sd_diff,
        "t_stat": t_stat,
        "df": df,
        "p_value": p_value,
        "ci_lower": ci_lower,
        "ci_upper": ci_upper,
        "cohens_dz": cohens_dz,
        "n_pairs": n_pairs,
        "note": note,
    }


def paired_ttest(
    df: pd.DataFrame,
    value: str,
    levels: Tuple[str, str] = CONDITIONS,
    id_col: str = "pid",
    pair_col: str = "condition",
    alpha: float = 0.05,
) -> PairedResult:
    """
    Paired t-test of ``value`` between two levels of ``pair_col``.

    Subjects missing either level are dropped.

    :param df: One row per subject x level
    :param value: Column to compare
    :param levels: (level_a, level_b); the difference is b - a
    :returns: PairedResult dictionary
    """
    level_a, level_b = levels
    wide = pivot_wide(df[[id_col, pair_col, value]], key_cols=[pair_col], value_cols=[value], id_cols=[id_col])
    col_a, col_b = wide_column(value, [level_a]), wide_column(value, [level_b])
    pairs = wide.reindex(columns=[col_a, col_b]).dropna()
    n = len(pairs)

    if n < 2:
        return create_paired_result(value, level_a, level_b, n_pairs=n, note="Fewer than 2 complete pairs")

    a = pairs[col_a].to_numpy(dtype=float)
    b = pairs[col_b].to_numpy(dtype=float)
    diff = b - a
    mean_diff = float(diff.mean())
    sd_diff = float(diff.std(ddof=1))

    # constant differences: the t statistic is unbounded, not undefined
    if sd_diff <= 1e-12 * max(1.0, abs(mean_diff)):
        sd_diff = 0.0
        if mean_diff != 0:
            t_stat, p_value = np.copysign(np.inf, mean_diff), 0.0
        else:
            t_stat, p_value = np.nan, np.nan
    else:
        t_stat, p_value = stats.ttest_rel(b, a)

    se = sd_diff / np.sqrt(n)
    t_crit = stats.t.ppf(1 - alpha / 2, n - 1)
    dz = mean_diff / sd_diff if sd_diff > 0 else np.nan

    return create_paired_result(
        outcome=value,
        level_a=level_a,
        level_b=level_b,
        mean_a=float(a.mean()),
        mean_b=float(b.mean()),
        mean_diff=mean_diff,
        sd_diff=sd_diff,
        t_stat=float(t_stat),
        df=n - 1,
        p_value=float(p_value),
        ci_lower=float(mean_diff - t_crit * se),
        ci_upper=float(mean_diff + t_crit * se),
        cohens_dz=float(dz),
        n_pairs=n,
        note="Zero variance of differences" if sd_diff == 0 else "",
    )


def paired_comparisons(
    df: pd.DataFrame,
    values: Sequence[str],
    levels: Tuple[str, str] = CONDITIONS,
    id_col: str = "pid",
    pair_col: str = "condition",
) -> pd.DataFrame:
    """Run paired_ttest for every column in ``values`` present in ``df``."""
    rows = [
        paired_ttest(df, v, levels=levels, id_col=id_col, pair_col=pair_col)
        for v in values
        if v in df.columns
    ]
    return pd.DataFrame(rows)


def subject_means(
    ds: AnalysisDataset,
    outcome: str,
    intensity: Optional[Any] = None,
) -> pd.DataFrame:
    """
    Collapse interval data to one mean per subject x condition.

    :param ds: AnalysisDataset
    :param outcome: Outcome column
    :param intensity: Restrict to one intensity (None = all bouts and intensities)
    :returns: DataFrame (pid, condition, outcome)
    """
    data = ds["data"]
    if intensity is not None:
        data = data[data[ds["intensity_var"]] == intensity]
    means = (
        data.groupby([ds["id_var"], ds["condition_var"]], observed=True)[outcome]
        .mean()
        .reset_index()
    )
    means[ds["condition_var"]] = means[ds["condition_var"]].astype(str)
    return means
