"""
Statistical Backend
===================

Narrow interface between the pipeline and the model-fitting library.

The pipeline only builds design matrices and reads fitted tables; fitting
itself is delegated to a callable with the contract

    fit_fn(endog: pd.Series, exog: pd.DataFrame, groups: pd.Series) -> FittedModel

FittedModel is a plain dict:
    params, bse, pvalues: Series indexed by exog column names
    conf_int: DataFrame (ci_lower, ci_upper) indexed the same way
    cov_params: DataFrame, fixed-effects block only
    llf: log-likelihood (ML)
    n_params: number of fixed-effect parameters
    converged: bool
    warnings: list of warning messages raised while fitting
    resid, fitted: Series (optional, used for diagnostics)
    model: the library result object (optional)

fit_mixedlm implements it with statsmodels MixedLM (random intercept per
group, ML estimation so likelihood-ratio tests are valid). Unit tests can
pass any other callable honouring the same keys.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional
import warnings

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.regression.mixed_linear_model import MixedLM, MixedLMResults
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from .errors import ModelFitWarning


FittedModel = Dict[str, Any]
FitFunction = Callable[[pd.Series, pd.DataFrame, pd.Series], FittedModel]


def create_fitted_model(
    params: pd.Series,
    cov_params: pd.DataFrame,
    llf: float,
    bse: Optional[pd.Series] = None,
    pvalues: Optional[pd.Series] = None,
    conf_int: Optional[pd.DataFrame] = None,
    converged: bool = True,
    fit_warnings: Optional[List[str]] = None,
    resid: Optional[pd.Series] = None,
    fitted: Optional[pd.Series] = None,
    model: Any = None,
) -> FittedModel:
    """
    Create a FittedModel dictionary.

    Missing standard errors, p-values and Wald intervals are derived from
    ``params`` and ``cov_params`` with the normal approximation.
    """
    if bse is None:
        bse = pd.Series(np.sqrt(np.diag(cov_params.values)), index=params.index)
    if pvalues is None:
        with np.errstate(divide="ignore", invalid="ignore"):
            pvalues = pd.Series(2 * stats.norm.sf(np.abs(params / bse)), index=params.index)
    if conf_int is None:
        z = stats.norm.ppf(0.975)
        conf_int = pd.DataFrame(
            {"ci_lower": params - z * bse, "ci_upper": params + z * bse},
            index=params.index,
        )
    return {
        "params": params,
        "bse": bse,
        "pvalues": pvalues,
        "conf_int": conf_int,
        "cov_params": cov_params,
        "llf": float(llf),
        "n_params": int(len(params)),
        "converged": bool(converged),
        "warnings": fit_warnings if fit_warnings is not None else [],
        "resid": resid,
        "fitted": fitted,
        "model": model,
    }


def fit_mixedlm(
    endog: pd.Series,
    exog: pd.DataFrame,
    groups: pd.Series,
    reml: bool = False,
) -> FittedModel:
    """
    Fit a random-intercept linear mixed model with statsmodels.

    Convergence problems are not fatal: they are collected into the
    ``warnings`` list of the returned FittedModel and re-emitted as
    ModelFitWarning.

    :param endog: Outcome vector
    :param exog: Fixed-effects design matrix (with intercept column)
    :param groups: Grouping labels for the random intercept
    :param reml: Use REML (default False; ML is required for LRT)
    :returns: FittedModel dictionary
    """
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        model = MixedLM(endog, exog, groups=groups)
        result: MixedLMResults = model.fit(reml=reml)

    fit_warnings = [
        str(w.message) for w in caught
        if issubclass(w.category, (ConvergenceWarning, RuntimeWarning, UserWarning))
    ]
    converged = bool(getattr(result, "converged", True))
    if not converged and not fit_warnings:
        fit_warnings.append("Optimizer did not converge")
    for message in fit_warnings:
        warnings.warn(message, ModelFitWarning)

    names = list(exog.columns)
    k_fe = len(names)
    params = pd.Series(np.asarray(result.fe_params), index=names)
    cov = result.cov_params()
    cov_fe = pd.DataFrame(np.asarray(cov)[:k_fe, :k_fe], index=names, columns=names)
    bse = pd.Series(np.asarray(result.bse_fe), index=names)
    pvalues = pd.Series(np.asarray(result.pvalues)[:k_fe], index=names)
    ci = np.asarray(result.conf_int())[:k_fe]
    conf_int = pd.DataFrame({"ci_lower": ci[:, 0], "ci_upper": ci[:, 1]}, index=names)

    return create_fitted_model(
        params=params,
        cov_params=cov_fe,
        llf=result.llf,
        bse=bse,
        pvalues=pvalues,
        conf_int=conf_int,
        converged=converged,
        fit_warnings=fit_warnings,
        resid=pd.Series(np.asarray(result.resid), index=endog.index),
        fitted=pd.Series(np.asarray(result.fittedvalues), index=endog.index),
        model=result,
    )
