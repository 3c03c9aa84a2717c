"""
Data Preparation Module
=======================

Turns the three study files into an analysis-ready long-format dataset:
- Interval trial records (subject x condition x intensity x bout)
- Graded exercise test (GXT) peak / ventilatory-threshold references
- Resting cardiovascular measurements

Steps:
- Condition label harmonization (control / bblockade)
- Work rate in METs from treadmill speed and grade
- Join to subject x condition references
- Percent-of-peak and percent-of-threshold derived fields

Architecture Note:
    This module uses dictionaries instead of classes for data structures
    to keep results plain and easy to export.

    AnalysisDataset is a TypedDict containing:
    - data: pandas DataFrame with tidy long-format interval data
    - outcome_vars: list of outcome column names
    - id_var, condition_var, intensity_var, bout_var: design columns
    - references, resting: subject x condition tables
    - missing_references: (pid, condition) keys without a GXT row
    - missing_resting: (pid, condition) keys without a resting record
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, TypedDict, Union
import warnings

import numpy as np
import pandas as pd

from .errors import MissingReferenceError, MissingReferenceWarning
from .metabolic import treadmill_mets


CONDITIONS: Tuple[str, str] = ("control", "bblockade")
INTENSITIES: Tuple[int, int] = (13, 15)
BOUTS: Tuple[int, int, int] = (1, 2, 3)

KEY_COLS = ["pid", "condition"]
INTERVAL_COLS = ["pid", "condition", "intensity", "bout", "hr", "vo2", "speed", "grade"]
REFERENCE_COLS = ["pid", "condition", "hr_peak", "vo2_peak", "hr_vt", "vo2_vt"]
RESTING_COLS = ["pid", "condition", "rest_hr", "sbp", "dbp", "spo2"]

# derived column -> (raw column, reference column)
DERIVED_FIELDS: Dict[str, Tuple[str, str]] = {
    "hr_pct_peak": ("hr", "hr_peak"),
    "vo2_pct_peak": ("vo2", "vo2_peak"),
    "mets_pct_peak": ("mets", "mets_peak"),
    "hr_pct_vt": ("hr", "hr_vt"),
    "vo2_pct_vt": ("vo2", "vo2_vt"),
    "mets_pct_vt": ("mets", "mets_vt"),
}

_CONDITION_ALIASES = {
    "control": "control",
    "ctrl": "control",
    "con": "control",
    "placebo": "control",
    "bblockade": "bblockade",
    "bb": "bblockade",
    "beta": "bblockade",
    "betablockade": "bblockade",
    "beta-blockade": "bblockade",
    "beta_blockade": "bblockade",
    "b-blockade": "bblockade",
}


# =============================================================================
# Analysis Dataset TypedDict
# =============================================================================

class AnalysisDataset(TypedDict):
    """
    Container for analysis-ready data with metadata.

    Keys:
        data: Tidy long-format interval DataFrame (one row per bout)
        outcome_vars: List of outcome column names
        id_var: Subject identifier column ("pid")
        condition_var: Condition column ("condition")
        intensity_var: Intensity column ("intensity")
        bout_var: Bout column ("bout")
        references: GXT reference table (pid x condition)
        resting: Resting measurement table (pid x condition), may be empty
        missing_references: (pid, condition) keys with no GXT row
        missing_resting: (pid, condition) keys with no resting record
    """
    data: pd.DataFrame
    outcome_vars: List[str]
    id_var: str
    condition_var: str
    intensity_var: str
    bout_var: str
    references: pd.DataFrame
    resting: pd.DataFrame
    missing_references: List[Tuple[Any, str]]
    missing_resting: List[Tuple[Any, str]]


def create_analysis_dataset(
    data: pd.DataFrame,
    outcome_vars: List[str],
    references: Optional[pd.DataFrame] = None,
    resting: Optional[pd.DataFrame] = None,
    missing_references: Optional[List[Tuple[Any, str]]] = None,
    missing_resting: Optional[List[Tuple[Any, str]]] = None,
    id_var: str = "pid",
    condition_var: str = "condition",
    intensity_var: str = "intensity",
    bout_var: str = "bout",
) -> AnalysisDataset:
    """
    Create an AnalysisDataset dictionary with validation.

    :param data: Tidy long-format interval DataFrame
    :param outcome_vars: List of outcome column names
    :param references: GXT reference table
    :param resting: Resting measurement table
    :param missing_references: Keys that had no reference row
    :param missing_resting: Keys that had no resting record
    :returns: Validated AnalysisDataset dictionary
    """
    ds: AnalysisDataset = {
        "data": data,
        "outcome_vars": outcome_vars,
        "id_var": id_var,
        "condition_var": condition_var,
        "intensity_var": intensity_var,
        "bout_var": bout_var,
        "references": references if references is not None else pd.DataFrame(columns=KEY_COLS),
        "resting": resting if resting is not None else pd.DataFrame(columns=KEY_COLS),
        "missing_references": missing_references or [],
        "missing_resting": missing_resting or [],
    }
    return validate_dataset(ds)


def validate_dataset(ds: AnalysisDataset) -> AnalysisDataset:
    """
    Validate the dataset structure.

    :param ds: AnalysisDataset dictionary
    :returns: Validated AnalysisDataset (outcome_vars may be filtered)
    :raises ValueError: If design columns are missing
    """
    data = ds["data"]
    for key in ("id_var", "condition_var", "intensity_var", "bout_var"):
        if ds[key] not in data.columns:
            raise ValueError(f"Design variable '{ds[key]}' not found in data")

    missing_outcomes = [v for v in ds["outcome_vars"] if v not in data.columns]
    if missing_outcomes:
        warnings.warn(f"Outcome variables not found in data: {missing_outcomes}")
        ds["outcome_vars"] = [v for v in ds["outcome_vars"] if v in data.columns]

    return ds


def get_n_subjects(ds: AnalysisDataset) -> int:
    """Get number of unique subjects in dataset."""
    return ds["data"][ds["id_var"]].nunique()


def get_n_observations(ds: AnalysisDataset) -> int:
    """Get total number of observations in dataset."""
    return len(ds["data"])


def get_obs_per_cell(ds: AnalysisDataset) -> pd.Series:
    """Get number of bout observations per subject x condition x intensity cell."""
    cols = [ds["id_var"], ds["condition_var"], ds["intensity_var"]]
    return ds["data"].groupby(cols, observed=True).size()


def check_design(ds: AnalysisDataset, n_bouts: int = len(BOUTS)) -> pd.DataFrame:
    """
    List cells that do not hold exactly ``n_bouts`` bout observations.

    :returns: DataFrame (pid, condition, intensity, n_bouts), empty when the
        design is complete
    """
    counts = get_obs_per_cell(ds).rename("n_bouts").reset_index()
    return counts[counts["n_bouts"] != n_bouts].reset_index(drop=True)


def subset_dataset(
    ds: AnalysisDataset,
    outcomes: Optional[List[str]] = None,
    subjects: Optional[List[Any]] = None,
    conditions: Optional[List[str]] = None,
    intensities: Optional[List[int]] = None,
) -> AnalysisDataset:
    """
    Create a subset of the dataset.

    :param ds: AnalysisDataset dictionary
    :param outcomes: Subset of outcome variables
    :param subjects: Subset of subject IDs
    :param conditions: Subset of condition levels
    :param intensities: Subset of intensity levels
    :returns: New AnalysisDataset with filtered data
    """
    df = ds["data"].copy()

    if subjects is not None:
        df = df[df[ds["id_var"]].isin(subjects)]
    if conditions is not None:
        df = df[df[ds["condition_var"]].isin(conditions)]
    if intensities is not None:
        df = df[df[ds["intensity_var"]].isin(intensities)]

    return create_analysis_dataset(
        data=df.reset_index(drop=True),
        outcome_vars=outcomes if outcomes is not None else list(ds["outcome_vars"]),
        references=ds["references"],
        resting=ds["resting"],
        missing_references=list(ds["missing_references"]),
        missing_resting=list(ds["missing_resting"]),
        id_var=ds["id_var"],
        condition_var=ds["condition_var"],
        intensity_var=ds["intensity_var"],
        bout_var=ds["bout_var"],
    )


def describe_dataset(ds: AnalysisDataset) -> str:
    """
    Return a summary description of the dataset.

    :param ds: AnalysisDataset dictionary
    :returns: Human-readable summary string
    """
    data = ds["data"]
    incomplete = check_design(ds)
    lines = [
        "AnalysisDataset: interval trials",
        f"  Subjects: {get_n_subjects(ds)}",
        f"  Observations: {get_n_observations(ds)}",
        f"  Conditions: {list(pd.unique(data[ds['condition_var']].astype(str)))}",
        f"  Intensities: {sorted(pd.unique(data[ds['intensity_var']]).tolist())}",
        f"  Outcomes: {len(ds['outcome_vars'])} variables",
        f"  Incomplete cells: {len(incomplete)}",
        f"  Missing references: {len(ds['missing_references'])}",
        f"  Missing resting records: {len(ds['missing_resting'])}",
    ]
    return "\n".join(lines)


# =============================================================================
# Loading
# =============================================================================

def normalize_condition(value: Any) -> Any:
    """Map a raw condition label onto 'control' / 'bblockade'."""
    if pd.isna(value):
        return value
    key = str(value).strip().lower().replace(" ", "")
    return _CONDITION_ALIASES.get(key, key)


def _require_columns(df: pd.DataFrame, required: List[str], source: str) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(
            f"{source}: missing columns {missing}. Available columns: {list(df.columns)}"
        )


def _read_table(path: Union[str, Path], sep: str) -> pd.DataFrame:
    df = pd.read_csv(path, sep=sep)
    df.columns = [str(c).strip() for c in df.columns]
    return df


def load_study_data(
    intervals_path: Union[str, Path],
    gxt_path: Union[str, Path],
    resting_path: Optional[Union[str, Path]] = None,
    sep: str = ",",
) -> Dict[str, pd.DataFrame]:
    """
    Load the three study files.

    :param intervals_path: Interval trial records
    :param gxt_path: GXT peak / threshold references
    :param resting_path: Resting measurements (optional)
    :param sep: Field delimiter
    :returns: Dict with "intervals", "references" and "resting" DataFrames
    :raises ValueError: If a file lacks required columns
    """
    intervals = _read_table(intervals_path, sep)
    _require_columns(intervals, INTERVAL_COLS, "intervals")
    intervals["condition"] = intervals["condition"].map(normalize_condition)

    references = _read_table(gxt_path, sep)
    _require_columns(references, REFERENCE_COLS, "gxt")
    references["condition"] = references["condition"].map(normalize_condition)

    if resting_path is not None:
        resting = _read_table(resting_path, sep)
        _require_columns(resting, RESTING_COLS, "resting")
        resting["condition"] = resting["condition"].map(normalize_condition)
    else:
        resting = pd.DataFrame(columns=RESTING_COLS)

    return {"intervals": intervals, "references": references, "resting": resting}


# =============================================================================
# Join + Derived Fields
# =============================================================================

def _add_reference_mets(references: pd.DataFrame) -> pd.DataFrame:
    """Derive METs references from speed/grade when not supplied directly."""
    references = references.copy()
    for level in ("peak", "vt"):
        target = f"mets_{level}"
        speed_col, grade_col = f"speed_{level}", f"grade_{level}"
        if target not in references.columns:
            if {speed_col, grade_col}.issubset(references.columns):
                references[target] = treadmill_mets(references[speed_col], references[grade_col])
            else:
                references[target] = np.nan
    return references


def clean_design_levels(df: pd.DataFrame) -> pd.DataFrame:
    """
    Drop rows without a design label and store intensity / bout as integers.

    A blank intensity or bout cell makes read_csv parse the whole column as
    float; the affected rows are dropped with a warning and the remaining
    levels are converted back to integers.

    :raises ValueError: If an intensity or bout level is not a whole number
    """
    design = ["pid", "condition", "intensity", "bout"]
    unlabeled = df[design].isna().any(axis=1)
    if unlabeled.any():
        warnings.warn(
            f"{int(unlabeled.sum())} interval row(s) without a design label "
            f"(pid/condition/intensity/bout) dropped: rows {list(df.index[unlabeled])}"
        )
        df = df.loc[~unlabeled].copy()

    for col in ("intensity", "bout"):
        levels = pd.to_numeric(df[col], errors="coerce")
        invalid = levels.isna() | (levels % 1 != 0)
        if invalid.any():
            bad = sorted(set(df.loc[invalid, col].astype(str)))
            raise ValueError(f"'{col}' must hold whole numbers, found: {bad}")
        df[col] = levels.astype("int64")
    return df


def find_missing_keys(data: pd.DataFrame, table: pd.DataFrame) -> List[Tuple[Any, str]]:
    """(pid, condition) keys of ``data`` with no row in ``table``."""
    keys = data[KEY_COLS].drop_duplicates()
    merged = keys.merge(table[KEY_COLS].drop_duplicates(), on=KEY_COLS, how="left", indicator=True)
    unmatched = merged.loc[merged["_merge"] == "left_only", KEY_COLS]
    return [(pid, cond) for pid, cond in unmatched.itertuples(index=False)]


def percent_of(raw: pd.Series, reference: pd.Series) -> pd.Series:
    """(raw / reference) * 100; missing or zero references give NaN."""
    reference = reference.where(reference != 0)
    return raw / reference * 100.0


def prepare_interval_data(
    intervals: pd.DataFrame,
    references: pd.DataFrame,
    resting: Optional[pd.DataFrame] = None,
    strict: bool = False,
    speed_unit: str = "kmh",
) -> AnalysisDataset:
    """
    Join interval rows to GXT references and derive normalised fields.

    Rows whose (pid, condition) has no reference row keep NaN in every
    derived percentage field. The missing keys are recorded in
    ``missing_references`` and reported with MissingReferenceWarning.
    When a resting table is given, keys without a resting record are
    checked the same way and recorded in ``missing_resting``.

    :param intervals: Interval trial records
    :param references: GXT references, one row per pid x condition
    :param resting: Resting measurements (optional)
    :param strict: Raise MissingReferenceError instead of warning
    :param speed_unit: Unit of the ``speed`` column
    :returns: AnalysisDataset
    :raises ValueError: If the reference table has duplicated keys or a
        design level is not a whole number
    """
    df = intervals.copy()
    df["condition"] = df["condition"].map(normalize_condition)
    df = clean_design_levels(df)
    df["mets"] = treadmill_mets(df["speed"], df["grade"], speed_unit=speed_unit)

    references = _add_reference_mets(references)
    references["condition"] = references["condition"].map(normalize_condition)
    dupes = references.duplicated(subset=KEY_COLS, keep=False)
    if dupes.any():
        keys = references.loc[dupes, KEY_COLS].drop_duplicates().values.tolist()
        raise ValueError(f"Duplicated reference rows for pid/condition: {keys}")

    missing_keys = find_missing_keys(df, references)
    if missing_keys:
        if strict:
            raise MissingReferenceError(missing_keys)
        warnings.warn(
            f"{len(missing_keys)} subject/condition combination(s) have no GXT reference; "
            f"derived percentages left missing: {missing_keys}",
            MissingReferenceWarning,
        )

    missing_resting: List[Tuple[Any, str]] = []
    if resting is not None and not resting.empty:
        resting = resting.copy()
        resting["condition"] = resting["condition"].map(normalize_condition)
        missing_resting = find_missing_keys(df, resting)
        if missing_resting:
            if strict:
                raise MissingReferenceError(missing_resting, source="resting")
            warnings.warn(
                f"{len(missing_resting)} subject/condition combination(s) have no resting record; "
                f"they drop out of the resting comparisons: {missing_resting}",
                MissingReferenceWarning,
            )

    ref_cols = KEY_COLS + [c for c in references.columns if c.endswith(("_peak", "_vt"))]
    merged = df.merge(references[ref_cols], on=KEY_COLS, how="left")

    for derived, (raw, ref) in DERIVED_FIELDS.items():
        merged[derived] = percent_of(merged[raw], merged[ref])

    present = [c for c in CONDITIONS if c in set(merged["condition"].dropna())]
    extra = sorted(set(merged["condition"].dropna()) - set(CONDITIONS))
    merged["condition"] = pd.Categorical(merged["condition"], categories=present + extra, ordered=True)

    merged = merged.sort_values(["pid", "condition", "intensity", "bout"]).reset_index(drop=True)

    outcome_vars = ["hr", "vo2", "mets"] + list(DERIVED_FIELDS)
    return create_analysis_dataset(
        data=merged,
        outcome_vars=outcome_vars,
        references=references,
        resting=resting,
        missing_references=missing_keys,
        missing_resting=missing_resting,
    )


def load_and_prepare(
    intervals_path: Union[str, Path],
    gxt_path: Union[str, Path],
    resting_path: Optional[Union[str, Path]] = None,
    sep: str = ",",
    strict: bool = False,
) -> AnalysisDataset:
    """Load the study files and build the AnalysisDataset in one call."""
    tables = load_study_data(intervals_path, gxt_path, resting_path, sep=sep)
    return prepare_interval_data(
        tables["intervals"],
        tables["references"],
        resting=tables["resting"],
        strict=strict,
    )
