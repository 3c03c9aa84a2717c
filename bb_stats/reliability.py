"""
Reliability Module
==================

Test-retest reliability of the repeated bouts.

For every outcome x condition x intensity cell the three bouts form a
subjects x bouts matrix. The intraclass correlation is the two-way
random-effects, absolute-agreement, single-measure form, ICC(2,1)
(Shrout & Fleiss 1979; ICC(A,1) in McGraw & Wong 1996):

    ICC = (MSR - MSE) / (MSR + (k - 1) * MSE + k * (MSC - MSE) / n)

with MSR, MSC and MSE the subject, bout and residual mean squares of the
two-way ANOVA partition, n subjects and k bouts.

Missing data policy: complete cases only. A subject with any missing bout
in a cell is dropped from that cell (and counted in ``n_excluded``); its
other cells are unaffected. Subjects whose derived values are missing because
the GXT reference is absent are counted in ``n_missing_reference``.

ICCs of the two conditions are compared with Fisher's z transform:

    z = 0.5 * ln((1 + ICC) / (1 - ICC))
    SE_diff = sqrt(2 / (n - 3))
    p = 2 * (1 - Phi(|z_a - z_b| / SE_diff))

Architecture Note:
    Results are plain dictionaries. Cells that cannot be estimated return
    ``available=False`` with a ``reason`` code instead of raising, so one
    degenerate cell never stops the others.
"""
from __future__ import annotations

from typing import Any, Dict, List, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

from .errors import DegenerateICCError
from .prepare import AnalysisDataset, BOUTS, CONDITIONS, DERIVED_FIELDS, INTENSITIES
from .reshape import cell_matrix, pivot_wide


ReliabilityResult = Dict[str, Any]
ComparisonResult = Dict[str, Any]


def create_reliability_result(
    outcome: str = "",
    condition: Any = None,
    intensity: Any = None,
    icc: float = np.nan,
    ci_lower: float = np.nan,
    ci_upper: float = np.nan,
    f_value: float = np.nan,
    df1: float = np.nan,
    df2: float = np.nan,
    p_value: float = np.nan,
    msr: float = np.nan,
    msc: float = np.nan,
    mse: float = np.nan,
    n_subjects: int = 0,
    n_raters: int = 0,
    n_excluded: int = 0,
    n_missing_reference: int = 0,
    available: bool = True,
    reason: str = "",
) -> ReliabilityResult:
    """Create a ReliabilityResult dictionary."""
    return {
        "outcome": outcome,
        "condition": condition,
        "intensity": intensity,
        "icc": icc,
        "ci_lower": ci_lower,
        "ci_upper": ci_upper,
        "f_value": f_value,
        "df1": df1,
        "df2": df2,
        "p_value": p_value,
        "msr": msr,
        "msc": msc,
        "mse": mse,
        "n_subjects": n_subjects,
        "n_raters": n_raters,
        "n_excluded": n_excluded,
        "n_missing_reference": n_missing_reference,
        "available": available,
        "reason": reason,
    }


def create_comparison_result(
    outcome: str = "",
    intensity: Any = None,
    icc_a: float = np.nan,
    icc_b: float = np.nan,
    z_a: float = np.nan,
    z_b: float = np.nan,
    z_diff: float = np.nan,
    se_diff: float = np.nan,
    z_score: float = np.nan,
    p_value: float = np.nan,
    n_subjects: int = 0,
    available: bool = True,
    reason: str = "",
) -> ComparisonResult:
    """Create a ComparisonResult dictionary."""
    return {
        "outcome": outcome,
        "intensity": intensity,
        "icc_a": icc_a,
        "icc_b": icc_b,
        "z_a": z_a,
        "z_b": z_b,
        "z_diff": z_diff,
        "se_diff": se_diff,
        "z_score": z_score,
        "p_value": p_value,
        "n_subjects": n_subjects,
        "available": available,
        "reason": reason,
    }


# =============================================================================
# ICC(2,1)
# =============================================================================

def anova_mean_squares(matrix: np.ndarray) -> Dict[str, float]:
    """
    Two-way ANOVA partition of a complete subjects x raters matrix.

    :param matrix: 2-D array, rows = subjects, columns = raters (bouts)
    :returns: Dict with msr, msc, mse, ssr, ssc, sse, n, k
    """
    x = np.asarray(matrix, dtype=float)
    n, k = x.shape
    grand_mean = x.mean()
    row_means = x.mean(axis=1)
    col_means = x.mean(axis=0)

    ssr = k * np.sum((row_means - grand_mean) ** 2)
    ssc = n * np.sum((col_means - grand_mean) ** 2)
    residual = x - row_means[:, None] - col_means[None, :] + grand_mean
    sse = np.sum(residual ** 2)

    return {
        "ssr": float(ssr),
        "ssc": float(ssc),
        "sse": float(sse),
        "msr": float(ssr / (n - 1)),
        "msc": float(ssc / (k - 1)),
        "mse": float(sse / ((n - 1) * (k - 1))),
        "n": n,
        "k": k,
    }


def _agreement_interval(msr: float, msc: float, mse: float, icc: float, n: int, k: int, alpha: float):
    """McGraw & Wong (1996) F-based confidence interval for ICC(A,1)."""
    if mse == 0:
        return icc, icc

    a = (k * icc) / (n * (1 - icc))
    b = 1 + (k * icc * (n - 1)) / (n * (1 - icc))
    v = (a * msc + b * mse) ** 2 / (
        (a * msc) ** 2 / (k - 1) + (b * mse) ** 2 / ((n - 1) * (k - 1))
    )
    f_lower = stats.f.ppf(1 - alpha / 2, n - 1, v)
    f_upper = stats.f.ppf(1 - alpha / 2, v, n - 1)

    lower = (n * (msr - f_lower * mse)) / (
        f_lower * (k * msc + (k * n - k - n) * mse) + n * msr
    )
    upper = (n * (f_upper * msr - mse)) / (
        k * msc + (k * n - k - n) * mse + n * f_upper * msr
    )
    return float(lower), float(upper)


def icc_agreement(
    matrix: Union[np.ndarray, pd.DataFrame],
    alpha: float = 0.05,
    outcome: str = "",
    condition: Any = None,
    intensity: Any = None,
    n_missing_reference: int = 0,
) -> ReliabilityResult:
    """
    Two-way random-effects, absolute-agreement, single-measure ICC.

    Rows containing any missing value are dropped before estimation.

    :param matrix: Subjects x bouts values
    :param alpha: 1 - confidence level of the interval
    :param n_missing_reference: Subjects already left out because their GXT
        reference is missing
    :returns: ReliabilityResult; ``available`` is False with reason
        ``too_few_raters``, ``too_few_subjects``, ``missing_reference`` or
        ``zero_variance`` when the ICC cannot be estimated
    """
    x = np.asarray(matrix, dtype=float)
    if x.ndim != 2:
        raise ValueError(f"Expected a 2-D subjects x bouts matrix, got shape {x.shape}")

    complete = ~np.isnan(x).any(axis=1)
    n_excluded = int((~complete).sum())
    x = x[complete]
    n, k = x.shape

    base = dict(outcome=outcome, condition=condition, intensity=intensity,
                n_subjects=n, n_raters=k, n_excluded=n_excluded,
                n_missing_reference=n_missing_reference)

    if k < 2:
        return create_reliability_result(**base, available=False, reason="too_few_raters")
    if n < 2:
        reason = "missing_reference" if n_missing_reference else "too_few_subjects"
        return create_reliability_result(**base, available=False, reason=reason)

    ms = anova_mean_squares(x)
    msr, msc, mse = ms["msr"], ms["msc"], ms["mse"]

    denominator = msr + (k - 1) * mse + k * (msc - mse) / n
    if denominator <= 0:
        return create_reliability_result(
            **base, msr=msr, msc=msc, mse=mse, available=False, reason="zero_variance",
        )
    icc = (msr - mse) / denominator

    df1 = n - 1
    df2 = (n - 1) * (k - 1)
    if mse > 0:
        f_value = msr / mse
        p_value = float(stats.f.sf(f_value, df1, df2))
    else:
        f_value = np.inf
        p_value = 0.0

    ci_lower, ci_upper = _agreement_interval(msr, msc, mse, icc, n, k, alpha)

    return create_reliability_result(
        **base,
        icc=float(icc),
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        f_value=float(f_value),
        df1=df1,
        df2=df2,
        p_value=p_value,
        msr=msr,
        msc=msc,
        mse=mse,
    )


def icc_by_cell(
    ds: AnalysisDataset,
    outcome: str,
    conditions: Sequence[str] = CONDITIONS,
    intensities: Sequence[Any] = INTENSITIES,
    bouts: Sequence[int] = BOUTS,
    alpha: float = 0.05,
) -> List[ReliabilityResult]:
    """
    ICC(2,1) for every condition x intensity cell of one outcome.

    The long table is pivoted once with the composite (condition, intensity,
    bout) key, giving one row per subject; each cell then reads its three
    bout columns.

    :param ds: AnalysisDataset
    :param outcome: Outcome column
    :returns: List of ReliabilityResult, one per condition x intensity
    """
    id_var = ds["id_var"]
    keys = [ds["condition_var"], ds["intensity_var"], ds["bout_var"]]
    wide = pivot_wide(ds["data"], key_cols=keys, value_cols=[outcome], id_cols=[id_var])
    missing_refs = set(ds["missing_references"]) if outcome in DERIVED_FIELDS else set()

    results = []
    for condition in conditions:
        for intensity in intensities:
            matrix = cell_matrix(wide, outcome, [condition, intensity], bouts)
            # subjects with no data at all in this cell are not counted as excluded
            empty = matrix.isna().all(axis=1)
            n_missing_reference = sum(
                (pid, condition) in missing_refs for pid in wide.loc[empty, id_var]
            )
            matrix = matrix[~empty]
            results.append(
                icc_agreement(
                    matrix.values,
                    alpha=alpha,
                    outcome=outcome,
                    condition=condition,
                    intensity=intensity,
                    n_missing_reference=int(n_missing_reference),
                )
            )
    return results


# =============================================================================
# Fisher z comparison
# =============================================================================

def fisher_z(icc: float) -> float:
    """
    Fisher z transform of a correlation-type coefficient.

    :raises DegenerateICCError: reason ``icc_at_bound`` when |icc| >= 1 or
        icc is missing
    """
    if icc is None or np.isnan(icc) or abs(icc) >= 1:
        raise DegenerateICCError("icc_at_bound", f"Fisher z undefined for ICC = {icc}")
    return float(0.5 * np.log((1 + icc) / (1 - icc)))


def compare_icc(
    result_a: ReliabilityResult,
    result_b: ReliabilityResult,
) -> ComparisonResult:
    """
    Fisher z test for the difference between two ICCs from the same subjects.

    z_score is positive when ``result_a`` has the larger ICC, so swapping
    the arguments flips its sign and leaves the p-value unchanged.

    :raises DegenerateICCError: reason ``unavailable_input``,
        ``subject_count_mismatch``, ``too_few_subjects`` (n <= 3) or
        ``icc_at_bound``
    """
    if not result_a.get("available", True) or not result_b.get("available", True):
        raise DegenerateICCError("unavailable_input", "Both ICC results must be available")

    n_a, n_b = result_a["n_subjects"], result_b["n_subjects"]
    if n_a != n_b:
        raise DegenerateICCError(
            "subject_count_mismatch",
            f"ICCs computed on different subject counts ({n_a} vs {n_b})",
        )
    n = n_a
    if n <= 3:
        raise DegenerateICCError("too_few_subjects", f"Need more than 3 subjects, got {n}")

    z_a = fisher_z(result_a["icc"])
    z_b = fisher_z(result_b["icc"])
    z_diff = z_a - z_b
    se_diff = float(np.sqrt(2.0 / (n - 3)))
    z_score = z_diff / se_diff
    p_value = float(2 * (1 - stats.norm.cdf(abs(z_score))))

    return create_comparison_result(
        outcome=result_a.get("outcome", ""),
        intensity=result_a.get("intensity"),
        icc_a=result_a["icc"],
        icc_b=result_b["icc"],
        z_a=z_a,
        z_b=z_b,
        z_diff=z_diff,
        se_diff=se_diff,
        z_score=z_score,
        p_value=p_value,
        n_subjects=n,
    )


def compare_conditions(
    icc_results: List[ReliabilityResult],
    reference: str = CONDITIONS[0],
    treatment: str = CONDITIONS[1],
) -> List[ComparisonResult]:
    """
    Compare reference vs treatment ICCs at every intensity.

    A degenerate pair yields an unavailable ComparisonResult carrying the
    reason code; the other intensities are still compared.
    """
    by_cell = {(r["condition"], r["intensity"]): r for r in icc_results}
    intensities = list(dict.fromkeys(r["intensity"] for r in icc_results))

    comparisons = []
    for intensity in intensities:
        a = by_cell.get((reference, intensity))
        b = by_cell.get((treatment, intensity))
        outcome = (a or b or {}).get("outcome", "")
        if a is None or b is None:
            comparisons.append(create_comparison_result(
                outcome=outcome, intensity=intensity, available=False, reason="missing_cell",
            ))
            continue
        try:
            comparisons.append(compare_icc(a, b))
        except DegenerateICCError as e:
            comparisons.append(create_comparison_result(
                outcome=outcome,
                intensity=intensity,
                icc_a=a["icc"],
                icc_b=b["icc"],
                n_subjects=a["n_subjects"],
                available=False,
                reason=e.reason,
            ))
    return comparisons

