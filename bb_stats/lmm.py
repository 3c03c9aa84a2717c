"""
Linear Mixed Models Module
==========================

Mixed models for the condition x intensity x bout design, with a random
intercept per subject:

    full:    y ~ C(condition) * C(intensity) * C(bout) + (1 | pid)
    reduced: y ~ (C(condition) + C(intensity) + C(bout))**2 + (1 | pid)

Both are fitted by maximum likelihood and compared with a likelihood-ratio
test on the three-way interaction. When the reduced model is retained the
module reports:
- Fixed-effect coefficient table with confidence intervals
- Estimated marginal means (EMMs) for every condition x intensity
  combination, averaged with equal weights over bouts
- All pairwise EMM contrasts (Holm-adjusted)
- Planned simple contrasts of condition within each intensity

Architecture Note:
    This module builds design matrices (patsy) and reads fitted tables.
    Fitting goes through a ``fit_fn`` callable (see backend.py), so the
    design and contrast logic can be tested with a fake backend.
    Results are dictionaries, not classes.
"""
from __future__ import annotations

from itertools import combinations, product
from typing import Any, Dict, List, Optional, Sequence, Tuple
import warnings

import numpy as np
import pandas as pd
from patsy import build_design_matrices, dmatrices
from scipy import stats
from statsmodels.stats.multitest import multipletests

from .backend import FitFunction, FittedModel, fit_mixedlm
from .errors import ModelFitWarning
from .prepare import AnalysisDataset


# =============================================================================
# LMMResult (dict)
# =============================================================================

LMMResult = Dict[str, Any]
DesignSpec = Dict[str, Any]


def create_lmm_result(
    outcome: str,
    full_formula: str = "",
    reduced_formula: str = "",
    full: Optional[FittedModel] = None,
    reduced: Optional[FittedModel] = None,
    lrt: Optional[Dict[str, float]] = None,
    retained: str = "",
    coefficients: Optional[pd.DataFrame] = None,
    emmeans: Optional[pd.DataFrame] = None,
    pairwise: Optional[pd.DataFrame] = None,
    simple_contrasts: Optional[pd.DataFrame] = None,
    n_obs: int = 0,
    n_groups: int = 0,
    converged: bool = False,
    model_warnings: Optional[List[str]] = None,
) -> LMMResult:
    """
    Create an LMMResult dictionary with all model output.

    :param outcome: Name of the outcome variable
    :param full_formula: Formula with the three-way interaction
    :param reduced_formula: Formula with two-way interactions only
    :param full: FittedModel of the full formula
    :param reduced: FittedModel of the reduced formula
    :param lrt: Dict with stat, df, p_value
    :param retained: "full" or "reduced"
    :param coefficients: Coefficient table of the retained model
    :param emmeans: Estimated marginal means table
    :param pairwise: Pairwise EMM contrasts
    :param simple_contrasts: Condition contrasts within each intensity
    :param n_obs: Number of observations
    :param n_groups: Number of subjects
    :param converged: Whether both fits converged
    :param model_warnings: Warnings collected while fitting
    :returns: LMMResult dictionary
    """
    return {
        "outcome": outcome,
        "full_formula": full_formula,
        "reduced_formula": reduced_formula,
        "full": full,
        "reduced": reduced,
        "lrt": lrt if lrt is not None else {"stat": np.nan, "df": np.nan, "p_value": np.nan},
        "retained": retained,
        "coefficients": coefficients if coefficients is not None else pd.DataFrame(),
        "emmeans": emmeans if emmeans is not None else pd.DataFrame(),
        "pairwise": pairwise if pairwise is not None else pd.DataFrame(),
        "simple_contrasts": simple_contrasts if simple_contrasts is not None else pd.DataFrame(),
        "n_obs": n_obs,
        "n_groups": n_groups,
        "converged": converged,
        "warnings": model_warnings if model_warnings is not None else [],
    }


def summarize_lmm_result(result: LMMResult) -> str:
    """
    Generate a summary string for an LMM result.

    :param result: LMMResult dictionary
    :returns: Human-readable summary string
    """
    lrt = result["lrt"]
    lines = [
        f"LMM Result: {result['outcome']}",
        f"  Full:    {result['full_formula']}",
        f"  Reduced: {result['reduced_formula']}",
        f"  N observations: {result['n_obs']}",
        f"  N subjects: {result['n_groups']}",
        f"  Converged: {result['converged']}",
        f"  LRT (3-way): chi2({lrt['df']}) = {lrt['stat']:.3f}, p = {lrt['p_value']:.4f}",
        f"  Retained: {result['retained'] or '-'}",
    ]
    if result["warnings"]:
        lines.append(f"  Warnings: {len(result['warnings'])}")
    return "\n".join(lines)


# =============================================================================
# Design construction
# =============================================================================

def _quote(column: str) -> str:
    """Quote column names that would break a formula."""
    special_chars = set('.[]()+-*/:^|~ %')
    if any(c in column for c in special_chars) or column[:1].isdigit():
        return f"Q('{column}')"
    return column


def build_design(
    outcome: str,
    condition: str = "condition",
    intensity: str = "intensity",
    bout: str = "bout",
    group: str = "pid",
    bout_as_categorical: bool = True,
) -> DesignSpec:
    """
    Build full and reduced formulas for one outcome.

    :param outcome: Outcome column
    :param bout_as_categorical: Treat bout as a factor (vs numeric trend)
    :returns: DesignSpec dict with full_formula, reduced_formula, group and
        the factor column names
    """
    bout_term = f"C({bout})" if bout_as_categorical else bout
    terms = [f"C({condition})", f"C({intensity})", bout_term]
    lhs = _quote(outcome)
    return {
        "outcome": outcome,
        "full_formula": f"{lhs} ~ {' * '.join(terms)}",
        "reduced_formula": f"{lhs} ~ ({' + '.join(terms)})**2",
        "group": group,
        "factors": {"condition": condition, "intensity": intensity, "bout": bout},
        "bout_as_categorical": bout_as_categorical,
    }


def design_matrices(formula: str, data: pd.DataFrame) -> Tuple[pd.Series, pd.DataFrame]:
    """
    Outcome vector and fixed-effects design matrix for a formula.

    Rows with missing outcome or predictors are dropped by patsy; the
    returned objects keep the original row index.
    """
    y, X = dmatrices(formula, data, return_type="dataframe", NA_action="drop")
    return y.iloc[:, 0], X


def model_data(ds: AnalysisDataset, outcome: str) -> pd.DataFrame:
    """Rows usable for modelling one outcome (non-missing outcome and design)."""
    cols = [ds["id_var"], ds["condition_var"], ds["intensity_var"], ds["bout_var"], outcome]
    df = ds["data"][cols].dropna().copy()
    return df.reset_index(drop=True)


# =============================================================================
# Model comparison
# =============================================================================

def likelihood_ratio_test(full: FittedModel, reduced: FittedModel) -> Dict[str, float]:
    """
    Likelihood ratio test between nested ML fits.

    :returns: Dict with stat, df, p_value (NaN when df <= 0)
    """
    stat = 2 * (full["llf"] - reduced["llf"])
    df_diff = full["n_params"] - reduced["n_params"]
    if df_diff <= 0:
        return {"stat": np.nan, "df": np.nan, "p_value": np.nan}
    stat = max(float(stat), 0.0)
    return {"stat": stat, "df": float(df_diff), "p_value": float(stats.chi2.sf(stat, df_diff))}


def coefficient_table(fitted: FittedModel) -> pd.DataFrame:
    """Coefficient table (term, estimate, std_error, z_value, p_value, CI) from a fit."""
    table = pd.DataFrame({
        "estimate": fitted["params"],
        "std_error": fitted["bse"],
        "z_value": fitted["params"] / fitted["bse"],
        "p_value": fitted["pvalues"],
        "ci_lower": fitted["conf_int"]["ci_lower"],
        "ci_upper": fitted["conf_int"]["ci_upper"],
    })
    table = table.reset_index()
    return table.rename(columns={"index": "term"})


# =============================================================================
# Estimated marginal means and contrasts
# =============================================================================

def reference_grid(data: pd.DataFrame, design: DesignSpec) -> pd.DataFrame:
    """All combinations of the observed factor levels."""
    factors = design["factors"]
    levels = {}
    for key in ("condition", "intensity", "bout"):
        col = data[factors[key]]
        if isinstance(col.dtype, pd.CategoricalDtype):
            levels[key] = [c for c in col.cat.categories if c in set(col)]
        else:
            levels[key] = sorted(col.unique().tolist())
    grid = pd.DataFrame(
        list(product(levels["condition"], levels["intensity"], levels["bout"])),
        columns=[factors["condition"], factors["intensity"], factors["bout"]],
    )
    if isinstance(data[factors["condition"]].dtype, pd.CategoricalDtype):
        grid[factors["condition"]] = pd.Categorical(
            grid[factors["condition"]], categories=data[factors["condition"]].cat.categories,
        )
    return grid


def emm_weights(X: pd.DataFrame, data: pd.DataFrame, design: DesignSpec) -> Dict[Tuple[Any, Any], np.ndarray]:
    """
    Linear-combination vectors giving each condition x intensity EMM.

    Rows of the reference grid are built with the fitted design's patsy
    metadata and averaged over bouts with equal weights.
    """
    factors = design["factors"]
    grid = reference_grid(data, design)
    (grid_X,) = build_design_matrices([X.design_info], grid, return_type="dataframe")
    grid_X.columns = X.columns

    weights = {}
    for (condition, intensity), idx in grid.groupby(
        [factors["condition"], factors["intensity"]], observed=True, sort=False
    ).groups.items():
        weights[(condition, intensity)] = grid_X.loc[idx].mean(axis=0).to_numpy()
    return weights


def _wald(L: np.ndarray, fitted: FittedModel) -> Tuple[float, float]:
    beta = fitted["params"].to_numpy()
    cov = fitted["cov_params"].to_numpy()
    estimate = float(L @ beta)
    se = float(np.sqrt(max(L @ cov @ L, 0.0)))
    return estimate, se


def compute_emmeans(
    fitted: FittedModel,
    weights: Dict[Tuple[Any, Any], np.ndarray],
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Estimated marginal means with Wald (normal) confidence intervals.

    :returns: DataFrame with condition, intensity, emmean, std_error, ci_lower, ci_upper
    """
    z = stats.norm.ppf(1 - alpha / 2)
    rows = []
    for (condition, intensity), L in weights.items():
        estimate, se = _wald(L, fitted)
        rows.append({
            "condition": condition,
            "intensity": intensity,
            "emmean": estimate,
            "std_error": se,
            "ci_lower": estimate - z * se,
            "ci_upper": estimate + z * se,
        })
    return pd.DataFrame(rows)


def _contrast_row(label_a, label_b, L: np.ndarray, fitted: FittedModel, z_crit: float) -> Dict[str, Any]:
    estimate, se = _wald(L, fitted)
    with np.errstate(divide="ignore", invalid="ignore"):
        z_value = estimate / se if se > 0 else np.nan
    p_value = float(2 * stats.norm.sf(abs(z_value))) if np.isfinite(z_value) else np.nan
    return {
        "level_a": label_a,
        "level_b": label_b,
        "estimate": estimate,
        "std_error": se,
        "z_value": z_value,
        "p_value": p_value,
        "ci_lower": estimate - z_crit * se,
        "ci_upper": estimate + z_crit * se,
    }


def pairwise_contrasts(
    fitted: FittedModel,
    weights: Dict[Tuple[Any, Any], np.ndarray],
    alpha: float = 0.05,
    adjust: str = "holm",
) -> pd.DataFrame:
    """
    All pairwise differences between condition x intensity EMMs.

    Estimates are ``level_a - level_b``; ``p_adjusted`` uses statsmodels
    multipletests with ``adjust``.
    """
    z_crit = stats.norm.ppf(1 - alpha / 2)
    rows = []
    for cell_a, cell_b in combinations(list(weights), 2):
        row = _contrast_row(
            f"{cell_a[0]} {cell_a[1]}", f"{cell_b[0]} {cell_b[1]}",
            weights[cell_a] - weights[cell_b], fitted, z_crit,
        )
        rows.append(row)
    table = pd.DataFrame(rows)
    if not table.empty:
        p = table["p_value"].to_numpy()
        mask = ~np.isnan(p)
        adjusted = np.full(len(p), np.nan)
        if mask.any():
            adjusted[mask] = multipletests(p[mask], alpha=alpha, method=adjust)[1]
        table["p_adjusted"] = adjusted
    return table


def simple_condition_contrasts(
    fitted: FittedModel,
    weights: Dict[Tuple[Any, Any], np.ndarray],
    reference: str,
    treatment: str,
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Planned contrasts ``treatment - reference`` within each intensity.

    :returns: DataFrame with intensity, estimate, std_error, z_value,
        p_value, ci_lower, ci_upper
    """
    z_crit = stats.norm.ppf(1 - alpha / 2)
    intensities = list(dict.fromkeys(intensity for _, intensity in weights))
    rows = []
    for intensity in intensities:
        if (reference, intensity) not in weights or (treatment, intensity) not in weights:
            continue
        L = weights[(treatment, intensity)] - weights[(reference, intensity)]
        row = _contrast_row(treatment, reference, L, fitted, z_crit)
        row["intensity"] = intensity
        rows.append(row)
    columns = ["intensity", "level_a", "level_b", "estimate", "std_error", "z_value", "p_value", "ci_lower", "ci_upper"]
    return pd.DataFrame(rows, columns=columns)


# =============================================================================
# Model Fitting
# =============================================================================

def fit_outcome_models(
    ds: AnalysisDataset,
    outcome: str,
    alpha: float = 0.05,
    bout_as_categorical: bool = True,
    reference: str = "control",
    treatment: str = "bblockade",
    fit_fn: FitFunction = fit_mixedlm,
) -> LMMResult:
    """
    Fit full and reduced mixed models for one outcome and extract results.

    :param ds: AnalysisDataset dictionary with data and metadata
    :param outcome: Name of the outcome variable
    :param alpha: Significance level for the LRT and intervals
    :param bout_as_categorical: Treat bout as categorical (vs numeric trend)
    :param reference: Reference condition level
    :param treatment: Treatment condition level
    :param fit_fn: Backend fitting callable (see backend.py)
    :returns: LMMResult dictionary

    Example:
        >>> result = fit_outcome_models(ds, "hr")
        >>> print(result["simple_contrasts"])
    """
    if outcome not in ds["data"].columns:
        raise ValueError(f"Outcome '{outcome}' not found in dataset")

    design = build_design(
        outcome,
        condition=ds["condition_var"],
        intensity=ds["intensity_var"],
        bout=ds["bout_var"],
        group=ds["id_var"],
        bout_as_categorical=bout_as_categorical,
    )
    df = model_data(ds, outcome)
    n_obs = len(df)
    n_groups = df[ds["id_var"]].nunique()
    base = dict(
        outcome=outcome,
        full_formula=design["full_formula"],
        reduced_formula=design["reduced_formula"],
        n_obs=n_obs,
        n_groups=n_groups,
    )

    if n_obs < 10 or n_groups < 2:
        return create_lmm_result(**base, model_warnings=["Insufficient observations for model fitting"])

    model_warnings: List[str] = []
    fits: Dict[str, FittedModel] = {}
    matrices = {}
    for name in ("full", "reduced"):
        try:
            y, X = design_matrices(design[f"{name}_formula"], df)
            fits[name] = fit_fn(y, X, df.loc[y.index, ds["id_var"]])
            matrices[name] = X
        except Exception as e:
            message = f"{name} model fitting failed: {e}"
            warnings.warn(message, ModelFitWarning)
            model_warnings.append(message)
            continue
        model_warnings.extend(f"{name}: {w}" for w in fits[name]["warnings"])

    if "full" not in fits or "reduced" not in fits:
        return create_lmm_result(
            **base, full=fits.get("full"), reduced=fits.get("reduced"), model_warnings=model_warnings,
        )

    converged = fits["full"]["converged"] and fits["reduced"]["converged"]
    lrt = likelihood_ratio_test(fits["full"], fits["reduced"])
    reduced_retained = np.isnan(lrt["p_value"]) or lrt["p_value"] >= alpha
    retained = "reduced" if reduced_retained else "full"
    fitted = fits[retained]

    emmeans = pairwise = simple = None
    if reduced_retained:
        weights = emm_weights(matrices["reduced"], df, design)
        emmeans = compute_emmeans(fitted, weights, alpha=alpha)
        pairwise = pairwise_contrasts(fitted, weights, alpha=alpha)
        simple = simple_condition_contrasts(fitted, weights, reference, treatment, alpha=alpha)
    else:
        model_warnings.append(
            "Three-way interaction retained (LRT p < alpha); marginal means over bouts not reported"
        )

    return create_lmm_result(
        **base,
        full=fits["full"],
        reduced=fits["reduced"],
        lrt=lrt,
        retained=retained,
        coefficients=coefficient_table(fitted),
        emmeans=emmeans,
        pairwise=pairwise,
        simple_contrasts=simple,
        converged=converged,
        model_warnings=model_warnings,
    )


# =============================================================================
# Model Diagnostics (Basic)
# =============================================================================

def get_retained_fit(result: LMMResult) -> Optional[FittedModel]:
    """FittedModel of the retained model, if any."""
    if not result["retained"]:
        return None
    return result[result["retained"]]


def residual_diagnostics(fitted: Optional[FittedModel]) -> Dict[str, Any]:
    """
    Basic residual checks for a fitted model.

    :returns: Dict with shapiro_stat, shapiro_p, is_normal, skew, kurtosis, n
    """
    if fitted is None or fitted.get("resid") is None:
        return {}
    resid = pd.Series(fitted["resid"]).dropna().to_numpy()
    if len(resid) < 3:
        return {"n": len(resid)}
    sample = resid if len(resid) <= 5000 else resid[:5000]
    shapiro_stat, shapiro_p = stats.shapiro(sample)
    return {
        "n": len(resid),
        "shapiro_stat": float(shapiro_stat),
        "shapiro_p": float(shapiro_p),
        "is_normal": bool(shapiro_p >= 0.05),
        "skew": float(stats.skew(resid)),
        "kurtosis": float(stats.kurtosis(resid)),
    }
