"""
Unit tests for paired condition comparisons.
"""

import numpy as np
import pandas as pd
import pytest
from scipy import stats

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from bb_stats.paired import paired_comparisons, paired_ttest, subject_means


def _pairs(control, blocked):
    rows = []
    for pid, (a, b) in enumerate(zip(control, blocked), start=1):
        rows.append({"pid": pid, "condition": "control", "value": a})
        rows.append({"pid": pid, "condition": "bblockade", "value": b})
    return pd.DataFrame(rows)


class TestPairedTTest:
    """Tests for the paired t-test wrapper."""

    def test_matches_scipy(self):
        control = np.array([70.0, 64.0, 72.0, 58.0, 66.0, 69.0])
        blocked = np.array([58.0, 55.0, 61.0, 50.0, 57.0, 54.0])
        result = paired_ttest(_pairs(control, blocked), "value")
        expected = stats.ttest_rel(blocked, control)

        assert result["mean_diff"] == pytest.approx((blocked - control).mean())
        assert result["t_stat"] == pytest.approx(expected.statistic)
        assert result["p_value"] == pytest.approx(expected.pvalue)
        assert result["df"] == 5
        assert result["n_pairs"] == 6

    def test_direction(self):
        """Difference is bblockade minus control."""
        result = paired_ttest(_pairs([60.0, 62.0, 65.0], [50.0, 51.0, 56.0]), "value")
        assert result["mean_diff"] < 0
        assert result["t_stat"] < 0
        assert result["cohens_dz"] < 0

    def test_confidence_interval(self):
        control = np.array([70.0, 64.0, 72.0, 58.0, 66.0])
        blocked = np.array([60.0, 57.0, 65.0, 49.0, 58.0])
        result = paired_ttest(_pairs(control, blocked), "value")
        diff = blocked - control
        half = stats.t.ppf(0.975, 4) * diff.std(ddof=1) / np.sqrt(5)
        assert result["ci_lower"] == pytest.approx(diff.mean() - half)
        assert result["ci_upper"] == pytest.approx(diff.mean() + half)

    def test_constant_difference(self):
        """A constant nonzero offset is significant with an unbounded t."""
        control = np.array([140.0, 152.0, 147.0, 160.0])
        result = paired_ttest(_pairs(control, control - 15), "value")
        assert result["mean_diff"] == pytest.approx(-15.0)
        assert result["p_value"] == 0.0
        assert result["t_stat"] == -np.inf
        assert result["note"] == "Zero variance of differences"

    def test_incomplete_pairs_dropped(self):
        df = _pairs([60.0, 62.0, 65.0, 61.0], [50.0, 51.0, 56.0, 52.0])
        df = df[~((df["pid"] == 2) & (df["condition"] == "bblockade"))]
        result = paired_ttest(df, "value")
        assert result["n_pairs"] == 3

    def test_too_few_pairs(self):
        result = paired_ttest(_pairs([60.0], [50.0]), "value")
        assert result["n_pairs"] == 1
        assert np.isnan(result["p_value"])
        assert result["note"]


class TestPairedComparisons:
    def test_resting_table(self, study_tables):
        table = paired_comparisons(study_tables["resting"], ["rest_hr", "sbp", "missing_column"])
        assert list(table["outcome"]) == ["rest_hr", "sbp"]
        rest_hr = table.iloc[0]
        assert rest_hr["mean_diff"] == pytest.approx(-15, abs=2.5)
        assert rest_hr["p_value"] < 0.05

    def test_subject_means(self, study_dataset):
        means = subject_means(study_dataset, "hr", intensity=13)
        assert len(means) == 20
        assert set(means["condition"]) == {"control", "bblockade"}

        result = paired_ttest(means, "hr")
        assert result["mean_diff"] == pytest.approx(-15.0)
        assert result["p_value"] < 0.05
