"""
Visualization Module
====================

Figures for the reliability report:
- plot_bout_trajectories: per-subject bout-to-bout lines with condition means
- plot_icc_comparison: ICC(2,1) with confidence intervals per cell
- plot_model_diagnostics: QQ plot + residuals vs fitted for a mixed model

Architecture Note:
    Functions take the dictionaries produced by the other bb_stats modules
    and return matplotlib Figures; nothing here computes statistics.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple
import warnings

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

from .registry import get_outcome_info

if TYPE_CHECKING:
    from .backend import FittedModel
    from .prepare import AnalysisDataset


# =============================================================================
# Style Configuration
# =============================================================================

CONDITION_COLORS = {
    "control": "#4DBBD5",  # Teal blue
    "bblockade": "#E64B35",  # Coral red
}

DEFAULT_STYLE = {
    "figure.figsize": (10, 6),
    "axes.spines.top": False,
    "axes.spines.right": False,
    "font.size": 11,
    "axes.labelsize": 12,
    "axes.titlesize": 14,
}


def _apply_style() -> None:
    """Apply consistent plotting style."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        plt.rcParams.update(DEFAULT_STYLE)
        sns.set_palette("colorblind")


def _format_outcome_label(outcome: str) -> str:
    """Axis label for an outcome, e.g. "hr_pct_peak" -> "Heart rate (%HRpeak) [%]"."""
    info = get_outcome_info(outcome)
    return f"{info['label']} [{info['unit']}]" if info["unit"] else info["label"]


def _save(fig: plt.Figure, save_path: Optional[str]) -> None:
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"Saved figure to: {save_path}")


# =============================================================================
# Main Visualization Functions
# =============================================================================

def plot_bout_trajectories(
    ds: "AnalysisDataset",
    outcome: str,
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None,
) -> plt.Figure:
    """
    Spaghetti plot of bout-to-bout values, one panel per intensity.

    Light lines are individual subjects, bold lines the condition means
    with 95% CI.

    :param ds: AnalysisDataset
    :param outcome: Outcome column (Y-axis)
    :param figsize: Figure size tuple
    :param save_path: Path to save figure (None = display only)
    :returns: matplotlib Figure object
    """
    _apply_style()

    df = ds["data"].copy()
    condition, intensity, bout, subject = (
        ds["condition_var"], ds["intensity_var"], ds["bout_var"], ds["id_var"],
    )
    if outcome not in df.columns:
        raise ValueError(f"Missing column: {outcome}")
    df[condition] = df[condition].astype(str)

    intensities = sorted(df[intensity].dropna().unique().tolist())
    fig, axes = plt.subplots(1, max(len(intensities), 1), figsize=figsize, sharey=True, squeeze=False)

    for ax, level in zip(axes[0], intensities):
        sub = df[df[intensity] == level]
        sns.lineplot(
            data=sub, x=bout, y=outcome, hue=condition, units=subject,
            estimator=None, alpha=0.2, linewidth=0.8, legend=False,
            palette=CONDITION_COLORS, ax=ax,
        )
        sns.lineplot(
            data=sub, x=bout, y=outcome, hue=condition,
            linewidth=3, marker="o", markersize=8, errorbar=("ci", 95),
            palette=CONDITION_COLORS, ax=ax,
        )
        ax.set_title(f"RPE {level}")
        ax.set_xlabel("Bout")
        ax.set_xticks(sorted(sub[bout].dropna().unique().tolist()))
        ax.set_ylabel(_format_outcome_label(outcome))

    plt.tight_layout()
    _save(fig, save_path)
    return fig


def plot_icc_comparison(
    icc_results: List[Dict[str, Any]],
    title: Optional[str] = None,
    figsize: Tuple[int, int] = (8, 5),
    save_path: Optional[str] = None,
) -> plt.Figure:
    """
    Point-and-interval plot of ICC(2,1) by intensity and condition.

    Unavailable cells are left out of the plot.

    :param icc_results: ReliabilityResult dicts (one outcome)
    :returns: matplotlib Figure object
    """
    _apply_style()
    table = pd.DataFrame(icc_results)
    table = table[table["available"]] if not table.empty else table

    fig, ax = plt.subplots(figsize=figsize)
    if table.empty:
        ax.text(0.5, 0.5, "No ICC available", ha="center", va="center", transform=ax.transAxes)
        _save(fig, save_path)
        return fig

    intensities = sorted(table["intensity"].unique().tolist())
    conditions = list(dict.fromkeys(table["condition"]))
    offsets = np.linspace(-0.15, 0.15, len(conditions)) if len(conditions) > 1 else [0.0]

    for offset, condition in zip(offsets, conditions):
        sub = table[table["condition"] == condition].set_index("intensity").reindex(intensities)
        x = np.arange(len(intensities)) + offset
        yerr = np.vstack([sub["icc"] - sub["ci_lower"], sub["ci_upper"] - sub["icc"]])
        ax.errorbar(
            x, sub["icc"], yerr=yerr, fmt="o", capsize=5, markersize=8,
            color=CONDITION_COLORS.get(condition), label=condition,
        )

    ax.set_xticks(np.arange(len(intensities)))
    ax.set_xticklabels([f"RPE {i}" for i in intensities])
    ax.axhline(0, color="black", linestyle="--", linewidth=0.8)
    ax.set_ylim(min(-0.1, float(table["ci_lower"].min()) - 0.05), 1.05)
    ax.set_ylabel("ICC(2,1)")
    outcome = table["outcome"].iloc[0]
    ax.set_title(title or f"Reliability: {_format_outcome_label(outcome)}")
    ax.legend(title="Condition", loc="best", frameon=True)

    plt.tight_layout()
    _save(fig, save_path)
    return fig


def plot_model_diagnostics(
    fitted: "FittedModel",
    title_prefix: str = "",
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None,
) -> plt.Figure:
    """
    Generate diagnostic plots for mixed-model residuals.

    Creates a two-panel figure:
    1. QQ plot: Checks normality assumption of residuals
    2. Residuals vs Fitted: Checks homoscedasticity

    :param fitted: FittedModel with resid and fitted values
    :param title_prefix: Prefix for plot titles
    :returns: matplotlib Figure object
    """
    _apply_style()

    if fitted is None or fitted.get("resid") is None or fitted.get("fitted") is None:
        raise ValueError("FittedModel has no residuals / fitted values")

    residuals = pd.Series(fitted["resid"])
    fitted_values = pd.Series(fitted["fitted"])

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    # Panel 1: QQ Plot
    ax1 = axes[0]
    stats.probplot(residuals, dist="norm", plot=ax1)
    ax1.set_title(f"{title_prefix}: Q-Q Plot" if title_prefix else "Q-Q Plot")
    ax1.get_lines()[0].set_markerfacecolor("#4DBBD5")
    ax1.get_lines()[0].set_markeredgecolor("#4DBBD5")
    ax1.get_lines()[0].set_alpha(0.6)

    # Panel 2: Residuals vs Fitted
    ax2 = axes[1]
    ax2.scatter(fitted_values, residuals, alpha=0.5, s=30, c="#E64B35")
    ax2.axhline(0, color="black", linestyle="--", linewidth=1)

    if len(residuals) > 10:
        from statsmodels.nonparametric.smoothers_lowess import lowess
        smoothed = lowess(residuals, fitted_values, frac=0.3)
        ax2.plot(smoothed[:, 0], smoothed[:, 1], color="blue", linewidth=2, label="LOWESS")

    ax2.set_xlabel("Fitted Values")
    ax2.set_ylabel("Residuals")
    ax2.set_title(f"{title_prefix}: Residuals vs Fitted" if title_prefix else "Residuals vs Fitted")

    plt.tight_layout()
    _save(fig, save_path)
    return fig
