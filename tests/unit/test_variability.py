"""
Unit tests for the coefficient of variation and the CV RM-ANOVA.
"""

import numpy as np
import pandas as pd
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from bb_stats.errors import IncompleteCellError, MissingReferenceWarning, UndefinedCVError
from bb_stats.prepare import prepare_interval_data
from bb_stats.variability import coefficient_of_variation, cv_by_cell, cv_rm_anova, summarize_cv


def _drop_bout(tables, pid, condition, intensity, bout):
    intervals = tables["intervals"]
    drop = intervals.index[
        (intervals["pid"] == pid) & (intervals["condition"] == condition)
        & (intervals["intensity"] == intensity) & (intervals["bout"] == bout)
    ]
    return prepare_interval_data(intervals.drop(index=drop), tables["references"])


class TestCoefficientOfVariation:
    """Tests for the CV of repeated bouts."""

    def test_identical_values(self):
        assert coefficient_of_variation([142.0, 142.0, 142.0]) == 0.0

    def test_known_value(self):
        """SD 10 around a mean of 20 is a 50% CV."""
        assert coefficient_of_variation([10.0, 20.0, 30.0]) == pytest.approx(50.0)

    def test_sample_sd(self):
        values = [150.0, 155.0, 149.0]
        expected = np.std(values, ddof=1) / np.mean(values) * 100
        assert coefficient_of_variation(values) == pytest.approx(expected)

    def test_zero_mean(self):
        with pytest.raises(UndefinedCVError):
            coefficient_of_variation([-1.0, 0.0, 1.0])

    def test_incomplete(self):
        with pytest.raises(IncompleteCellError) as excinfo:
            coefficient_of_variation([150.0, np.nan, 152.0])
        assert excinfo.value.n_valid == 2
        assert excinfo.value.n_required == 3

    def test_lower_minimum(self):
        value = coefficient_of_variation([150.0, np.nan, 152.0], min_valid=2)
        assert value == pytest.approx(np.std([150, 152], ddof=1) / 151 * 100)


class TestCVByCell:
    """Tests for subject-level CVs on the study dataset."""

    def test_one_row_per_cell(self, study_dataset):
        table = cv_by_cell(study_dataset, "hr")
        assert len(table) == 10 * 2 * 2
        assert table["available"].all()
        assert (table["cv"] >= 0).all()

    def test_offset_condition_changes_only_mean(self, study_dataset):
        table = cv_by_cell(study_dataset, "hr")
        control = table[table["condition"] == "control"].set_index(["pid", "intensity"])
        blocked = table[table["condition"] == "bblockade"].set_index(["pid", "intensity"])
        np.testing.assert_allclose(blocked["sd"], control.loc[blocked.index, "sd"])
        np.testing.assert_allclose(blocked["mean"], control.loc[blocked.index, "mean"] - 15)

    def test_missing_bout_flags_only_its_cell(self, study_tables):
        ds = _drop_bout(study_tables, pid=3, condition="control", intensity=15, bout=1)
        with pytest.warns(UserWarning, match="excluded from CV"):
            table = cv_by_cell(ds, "hr")

        flagged = table[~table["available"]]
        assert len(flagged) == 1
        row = flagged.iloc[0]
        assert (row["pid"], row["condition"], row["intensity"]) == (3, "control", 15)
        assert row["reason"] == "incomplete_cell"
        assert row["n_valid"] == 2
        assert np.isnan(row["cv"])
        assert table["available"].sum() == len(table) - 1


    def test_missing_reference_reason(self, study_tables):
        """Derived fields of a subject without a GXT reference are flagged as such, raw fields are not."""
        references = study_tables["references"]
        references = references[~((references["pid"] == 2) & (references["condition"] == "bblockade"))]
        with pytest.warns(MissingReferenceWarning):
            ds = prepare_interval_data(study_tables["intervals"], references)

        with pytest.warns(UserWarning, match="excluded from CV"):
            table = cv_by_cell(ds, "hr_pct_peak")
        flagged = table[~table["available"]]
        assert len(flagged) == 2
        assert set(flagged["pid"]) == {2}
        assert set(flagged["condition"]) == {"bblockade"}
        assert set(flagged["reason"]) == {"missing_reference"}

        assert cv_by_cell(ds, "hr")["available"].all()


class TestSummaryAndAnova:
    def test_summary_rows(self, study_dataset):
        summary = summarize_cv(cv_by_cell(study_dataset, "hr"))
        assert summary.iloc[0]["condition"] == "all"
        assert summary.iloc[0]["n"] == 40
        assert len(summary) == 5
        assert (summary["min"] <= summary["mean"]).all()
        assert (summary["mean"] <= summary["max"]).all()

    def test_rm_anova_terms(self, study_dataset):
        anova = cv_rm_anova(cv_by_cell(study_dataset, "vo2"))
        assert list(anova["term"]) == ["intensity", "condition", "intensity:condition"]
        assert (anova["num_df"] == 1).all()
        assert (anova["den_df"] == 9).all()
        assert anova["p_value"].between(0, 1).all()
        assert (anova["n_subjects"] == 10).all()

    def test_rm_anova_drops_incomplete_subject(self, study_tables):
        ds = _drop_bout(study_tables, pid=3, condition="control", intensity=15, bout=1)
        with pytest.warns(UserWarning):
            table = cv_by_cell(ds, "vo2")
        with pytest.warns(UserWarning, match="dropped 1 subject"):
            anova = cv_rm_anova(table)
        assert (anova["n_subjects"] == 9).all()
        assert (anova["den_df"] == 8).all()

    def test_rm_anova_needs_subjects(self, study_dataset):
        table = cv_by_cell(study_dataset, "vo2")
        table = table[table["pid"] == 1]
        with pytest.raises(ValueError, match="at least 2 subjects"):
            cv_rm_anova(table)
