"""
Shared fixtures: synthetic study tables and a least-squares fitting backend.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from bb_stats.backend import create_fitted_model
from bb_stats.prepare import prepare_interval_data


def make_study_tables(n_subjects=10, offset=-15, seed=42):
    """
    Synthetic intervals / GXT / resting tables.

    Heart rate is integer valued and the bblockade value of every bout is
    the control value plus ``offset`` exactly. Oxygen uptake and speed carry
    independent noise per condition.
    """
    rng = np.random.default_rng(seed)
    intervals, gxt, resting = [], [], []

    for pid in range(1, n_subjects + 1):
        base_hr = int(rng.integers(125, 160))
        base_vo2 = rng.normal(30, 4)
        base_speed = rng.uniform(8, 10)

        for condition in ("control", "bblockade"):
            shift = 0 if condition == "control" else offset
            gxt.append({
                "pid": pid,
                "condition": condition,
                "hr_peak": 190 + shift,
                "vo2_peak": 50 + rng.normal(0, 2),
                "hr_vt": 165 + shift,
                "vo2_vt": 40 + rng.normal(0, 2),
                "speed_peak": 16.0,
                "grade_peak": 2.0,
                "speed_vt": 12.0,
                "grade_vt": 1.0,
            })
            resting.append({
                "pid": pid,
                "condition": condition,
                "rest_hr": 65 + shift + rng.normal(0, 2),
                "sbp": 120 + rng.normal(0, 5),
                "dbp": 78 + rng.normal(0, 4),
                "spo2": 98 + rng.normal(0, 0.5),
            })

    control_hr = {}
    for pid in range(1, n_subjects + 1):
        for intensity in (13, 15):
            for bout in (1, 2, 3):
                control_hr[(pid, intensity, bout)] = (
                    125 + pid * 3 + (12 if intensity == 15 else 0) + int(rng.integers(-4, 5))
                )

    for pid in range(1, n_subjects + 1):
        for condition in ("control", "bblockade"):
            shift = 0 if condition == "control" else offset
            for intensity in (13, 15):
                for bout in (1, 2, 3):
                    intervals.append({
                        "pid": pid,
                        "condition": condition,
                        "intensity": intensity,
                        "bout": bout,
                        "hr": float(control_hr[(pid, intensity, bout)] + shift),
                        "vo2": 30 + pid * 0.5 + (5 if intensity == 15 else 0) + rng.normal(0, 1.5),
                        "speed": 8.5 + (1.5 if intensity == 15 else 0) + rng.normal(0, 0.3),
                        "grade": 1.0,
                    })

    return {
        "intervals": pd.DataFrame(intervals),
        "references": pd.DataFrame(gxt),
        "resting": pd.DataFrame(resting),
    }


def ols_fit(endog, exog, groups):
    """Ordinary least squares behind the fit_fn contract (ignores groups)."""
    X = exog.to_numpy(dtype=float)
    y = endog.to_numpy(dtype=float)
    beta, *_ = np.linalg.lstsq(X, y, rcond=None)
    resid = y - X @ beta
    n = len(y)
    sigma2 = float(resid @ resid) / n
    cov = sigma2 * np.linalg.pinv(X.T @ X)
    llf = -0.5 * n * (np.log(2 * np.pi * sigma2) + 1)
    names = list(exog.columns)
    return create_fitted_model(
        params=pd.Series(beta, index=names),
        cov_params=pd.DataFrame(cov, index=names, columns=names),
        llf=llf,
        resid=pd.Series(resid, index=endog.index),
        fitted=pd.Series(X @ beta, index=endog.index),
    )


@pytest.fixture
def study_tables():
    return make_study_tables()


@pytest.fixture
def study_dataset(study_tables):
    return prepare_interval_data(
        study_tables["intervals"],
        study_tables["references"],
        resting=study_tables["resting"],
    )


@pytest.fixture
def ols_backend():
    return ols_fit


@pytest.fixture
def equal_fit_backend():
    """OLS fits that report identical log-likelihoods (LRT p = 1)."""
    def fit(endog, exog, groups):
        fitted = ols_fit(endog, exog, groups)
        fitted["llf"] = -100.0
        return fitted
    return fit
