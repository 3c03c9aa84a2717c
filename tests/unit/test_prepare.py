"""
Unit tests for loading, joining and deriving normalised fields.
"""

import numpy as np
import pandas as pd
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from bb_stats.errors import MissingReferenceError, MissingReferenceWarning
from bb_stats.metabolic import treadmill_mets
from bb_stats.prepare import (
    DERIVED_FIELDS,
    check_design,
    describe_dataset,
    get_n_observations,
    get_n_subjects,
    load_and_prepare,
    load_study_data,
    normalize_condition,
    percent_of,
    prepare_interval_data,
    subset_dataset,
)
from bb_stats.reliability import icc_by_cell
from bb_stats.variability import cv_by_cell


class TestDerivedFields:
    """Tests for METs and percent-of-reference columns."""

    def test_mets_from_speed_and_grade(self, study_dataset):
        data = study_dataset["data"]
        expected = treadmill_mets(data["speed"], data["grade"])
        np.testing.assert_allclose(data["mets"], expected)

    def test_percent_of_peak(self, study_dataset):
        data = study_dataset["data"]
        np.testing.assert_allclose(data["hr_pct_peak"], data["hr"] / data["hr_peak"] * 100)
        np.testing.assert_allclose(data["vo2_pct_vt"], data["vo2"] / data["vo2_vt"] * 100)

    def test_reference_mets_derived(self, study_dataset):
        """mets_peak / mets_vt come from the GXT speed and grade."""
        data = study_dataset["data"]
        np.testing.assert_allclose(data["mets_peak"], treadmill_mets(16.0, 2.0))
        np.testing.assert_allclose(data["mets_pct_vt"], data["mets"] / treadmill_mets(12.0, 1.0) * 100)

    def test_all_outcomes_registered(self, study_dataset):
        for column in ["hr", "vo2", "mets"] + list(DERIVED_FIELDS):
            assert column in study_dataset["outcome_vars"]

    def test_zero_reference_gives_nan(self):
        result = percent_of(pd.Series([150.0, 150.0]), pd.Series([0.0, 200.0]))
        assert np.isnan(result.iloc[0])
        assert result.iloc[1] == pytest.approx(75.0)


class TestJoin:
    """Tests for the interval / reference join."""

    def test_no_missing_references(self, study_dataset):
        assert study_dataset["missing_references"] == []
        assert study_dataset["data"]["hr_pct_peak"].notna().all()

    def test_missing_reference_warns(self, study_tables):
        references = study_tables["references"]
        references = references[~((references["pid"] == 2) & (references["condition"] == "bblockade"))]

        with pytest.warns(MissingReferenceWarning):
            ds = prepare_interval_data(study_tables["intervals"], references)

        data = ds["data"]
        affected = (data["pid"] == 2) & (data["condition"] == "bblockade")
        assert ds["missing_references"] == [(2, "bblockade")]
        assert data.loc[affected, "hr_pct_peak"].isna().all()
        assert data.loc[~affected, "hr_pct_peak"].notna().all()
        # raw outcomes are untouched
        assert data.loc[affected, "hr"].notna().all()

    def test_missing_reference_strict(self, study_tables):
        references = study_tables["references"].iloc[2:]
        with pytest.raises(MissingReferenceError) as excinfo:
            prepare_interval_data(study_tables["intervals"], references, strict=True)
        assert (1, "control") in excinfo.value.missing_keys

    def test_missing_resting_warns(self, study_tables):
        resting = study_tables["resting"]
        resting = resting[~((resting["pid"] == 4) & (resting["condition"] == "bblockade"))]

        with pytest.warns(MissingReferenceWarning, match="resting record"):
            ds = prepare_interval_data(study_tables["intervals"], study_tables["references"], resting=resting)

        assert ds["missing_resting"] == [(4, "bblockade")]
        assert ds["missing_references"] == []
        assert "Missing resting records: 1" in describe_dataset(ds)

    def test_missing_resting_strict(self, study_tables):
        resting = study_tables["resting"]
        resting = resting[~((resting["pid"] == 4) & (resting["condition"] == "bblockade"))]
        with pytest.raises(MissingReferenceError) as excinfo:
            prepare_interval_data(
                study_tables["intervals"], study_tables["references"], resting=resting, strict=True,
            )
        assert excinfo.value.source == "resting"
        assert excinfo.value.missing_keys == [(4, "bblockade")]

    def test_resting_not_given(self, study_tables):
        ds = prepare_interval_data(study_tables["intervals"], study_tables["references"])
        assert ds["missing_resting"] == []

    def test_duplicate_reference_rejected(self, study_tables):
        references = pd.concat([study_tables["references"], study_tables["references"].iloc[[0]]])
        with pytest.raises(ValueError, match="Duplicated reference"):
            prepare_interval_data(study_tables["intervals"], references)

    def test_row_count_preserved(self, study_tables, study_dataset):
        assert get_n_observations(study_dataset) == len(study_tables["intervals"])
        assert get_n_subjects(study_dataset) == 10

    def test_condition_order(self, study_dataset):
        condition = study_dataset["data"]["condition"]
        assert list(condition.cat.categories) == ["control", "bblockade"]


class TestConditionLabels:
    @pytest.mark.parametrize("raw,expected", [
        ("Control", "control"),
        ("CTRL", "control"),
        ("BB", "bblockade"),
        ("Beta-Blockade", "bblockade"),
        (" bblockade ", "bblockade"),
    ])
    def test_aliases(self, raw, expected):
        assert normalize_condition(raw) == expected

    def test_aliases_applied_on_join(self, study_tables):
        intervals = study_tables["intervals"].copy()
        intervals["condition"] = intervals["condition"].replace({"bblockade": "BB"})
        ds = prepare_interval_data(intervals, study_tables["references"])
        assert set(ds["data"]["condition"].astype(str)) == {"control", "bblockade"}
        assert ds["missing_references"] == []


class TestDesign:
    def test_complete_design(self, study_dataset):
        assert check_design(study_dataset).empty

    def test_incomplete_cell_listed(self, study_tables):
        intervals = study_tables["intervals"]
        drop = intervals.index[
            (intervals["pid"] == 4) & (intervals["condition"] == "control")
            & (intervals["intensity"] == 15) & (intervals["bout"] == 2)
        ]
        ds = prepare_interval_data(intervals.drop(index=drop), study_tables["references"])
        incomplete = check_design(ds)
        assert len(incomplete) == 1
        assert incomplete.iloc[0]["pid"] == 4
        assert incomplete.iloc[0]["n_bouts"] == 2

    def test_subset(self, study_dataset):
        sub = subset_dataset(study_dataset, subjects=[1, 2, 3], intensities=[13])
        assert get_n_subjects(sub) == 3
        assert set(sub["data"]["intensity"]) == {13}

    def test_describe(self, study_dataset):
        text = describe_dataset(study_dataset)
        assert "Subjects: 10" in text
        assert "Incomplete cells: 0" in text
        assert "Missing resting records: 0" in text


class TestLoading:
    """Tests for reading the study files."""

    def _write(self, tmp_path, tables):
        paths = {}
        for name, table in tables.items():
            paths[name] = tmp_path / f"{name}.csv"
            table.to_csv(paths[name], index=False)
        return paths

    def test_load_and_prepare(self, tmp_path, study_tables):
        paths = self._write(tmp_path, study_tables)
        ds = load_and_prepare(paths["intervals"], paths["references"], paths["resting"])
        assert get_n_observations(ds) == len(study_tables["intervals"])
        assert len(ds["resting"]) == len(study_tables["resting"])

    def test_resting_optional(self, tmp_path, study_tables):
        paths = self._write(tmp_path, study_tables)
        tables = load_study_data(paths["intervals"], paths["references"])
        assert tables["resting"].empty

    def test_missing_column(self, tmp_path, study_tables):
        tables = dict(study_tables)
        tables["intervals"] = tables["intervals"].drop(columns=["speed"])
        paths = self._write(tmp_path, tables)
        with pytest.raises(ValueError, match="missing columns"):
            load_study_data(paths["intervals"], paths["references"])

    def test_separator(self, tmp_path, study_tables):
        paths = {}
        for name, table in study_tables.items():
            paths[name] = tmp_path / f"{name}.tsv"
            table.to_csv(paths[name], index=False, sep="\t")
        ds = load_and_prepare(paths["intervals"], paths["references"], sep="\t")
        assert get_n_subjects(ds) == 10

    def test_blank_bout_cell(self, tmp_path, study_tables):
        """One blank bout cell drops that row only; levels stay integers and other cells are intact."""
        tables = dict(study_tables)
        intervals = tables["intervals"].copy()
        blank = intervals.index[
            (intervals["pid"] == 3) & (intervals["condition"] == "control")
            & (intervals["intensity"] == 15) & (intervals["bout"] == 2)
        ]
        intervals["bout"] = intervals["bout"].astype(object)
        intervals.loc[blank, "bout"] = None
        tables["intervals"] = intervals
        paths = self._write(tmp_path, tables)
        assert pd.read_csv(paths["intervals"])["bout"].dtype == float

        with pytest.warns(UserWarning, match="without a design label"):
            ds = load_and_prepare(paths["intervals"], paths["references"], paths["resting"])

        assert get_n_observations(ds) == len(study_tables["intervals"]) - 1
        assert pd.api.types.is_integer_dtype(ds["data"]["bout"])
        assert pd.api.types.is_integer_dtype(ds["data"]["intensity"])

        icc = {(r["condition"], r["intensity"]): r for r in icc_by_cell(ds, "hr")}
        assert all(r["available"] for r in icc.values())
        assert icc[("control", 15)]["n_subjects"] == 9
        assert icc[("control", 15)]["n_excluded"] == 1
        assert icc[("bblockade", 13)]["n_subjects"] == 10

        with pytest.warns(UserWarning, match="excluded from CV"):
            cv = cv_by_cell(ds, "hr")
        flagged = cv[~cv["available"]]
        assert len(flagged) == 1
        assert (flagged.iloc[0]["pid"], flagged.iloc[0]["reason"]) == (3, "incomplete_cell")

    def test_float_levels_converted(self, study_tables):
        intervals = study_tables["intervals"].copy()
        intervals["intensity"] = intervals["intensity"].astype(float)
        intervals["bout"] = intervals["bout"].astype(float)
        ds = prepare_interval_data(intervals, study_tables["references"])
        assert pd.api.types.is_integer_dtype(ds["data"]["bout"])
        assert all(r["available"] for r in icc_by_cell(ds, "hr"))
        assert cv_by_cell(ds, "hr")["available"].all()

    def test_fractional_level_rejected(self, study_tables):
        intervals = study_tables["intervals"].copy()
        intervals["bout"] = intervals["bout"].astype(float)
        intervals.loc[0, "bout"] = 1.5
        with pytest.raises(ValueError, match="whole numbers"):
            prepare_interval_data(intervals, study_tables["references"])
