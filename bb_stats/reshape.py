"""
Reshape Module
==============

Long <-> wide pivoting for repeated-measures tables.

Every reliability and variability statistic needs the long interval table
in a different wide layout, e.g.

    pivot_wide(df, key_cols=["bout"], value_cols=["hr"])
        -> one row per pid x condition x intensity, columns hr_1, hr_2, hr_3

    pivot_wide(df, key_cols=["condition", "intensity", "bout"], value_cols=["hr"])
        -> one row per pid, columns hr_control_13_1 ... hr_bblockade_15_3

Column names are ``value + sep + level1 + sep + level2 ...``. Key levels
must not contain ``sep``; value names may, because names are parsed from
the right.

Round trip: pivot_long(pivot_wide(L)) reproduces L (up to row and column
order) whenever each id group has exactly one row per key combination.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd


def format_level(level: Any) -> str:
    """Render a key level; whole-number floats render like integers (13.0 -> "13")."""
    if isinstance(level, (float, np.floating)) and float(level).is_integer():
        return str(int(level))
    return str(level)


def wide_column(value: str, levels: Iterable[Any], sep: str = "_") -> str:
    """Build the wide column name for a value and its key levels."""
    return sep.join([str(value)] + [format_level(level) for level in levels])


def _coerce_levels(series: pd.Series) -> pd.Series:
    """Convert parsed key levels back to numbers when every level is numeric."""
    converted = pd.to_numeric(series, errors="coerce")
    if converted.notna().all():
        if np.all(np.mod(converted, 1) == 0):
            return converted.astype("int64")
        return converted
    return series


def pivot_wide(
    df: pd.DataFrame,
    key_cols: Sequence[str],
    value_cols: Sequence[str],
    id_cols: Optional[Sequence[str]] = None,
    sep: str = "_",
) -> pd.DataFrame:
    """
    Pivot a long table to wide format.

    :param df: Long-format DataFrame
    :param key_cols: Columns whose levels become column suffixes (composite keys allowed)
    :param value_cols: Columns holding the values to spread
    :param id_cols: Row identifier columns (default: every other column)
    :param sep: Separator used in generated column names
    :returns: Wide DataFrame with id columns first, then one column per
        value x key-level combination. Missing combinations are NaN.
    :raises ValueError: If a column is missing or an id group has more than
        one row for the same key combination
    """
    key_cols = list(key_cols)
    value_cols = list(value_cols)
    if id_cols is None:
        id_cols = [c for c in df.columns if c not in key_cols and c not in value_cols]
    id_cols = list(id_cols)

    missing = [c for c in id_cols + key_cols + value_cols if c not in df.columns]
    if missing:
        raise ValueError(f"Columns not found: {missing}")
    if not id_cols:
        raise ValueError("pivot_wide needs at least one id column")

    work = df[id_cols + key_cols + value_cols].copy()
    for col in key_cols:
        if isinstance(work[col].dtype, pd.CategoricalDtype):
            work[col] = work[col].astype(object)

    dupes = work.duplicated(subset=id_cols + key_cols, keep=False)
    if dupes.any():
        example = work.loc[dupes, id_cols + key_cols].head(3).to_dict("records")
        raise ValueError(
            f"{int(dupes.sum())} rows share the same id/key combination; "
            f"pivot_wide needs unique keys per group (e.g. {example})"
        )

    wide = work.set_index(id_cols + key_cols)[value_cols].unstack(key_cols)
    wide.columns = [wide_column(col[0], col[1:], sep=sep) for col in wide.columns.to_flat_index()]
    wide = wide.reset_index()
    wide.columns.name = None
    return wide


def pivot_long(
    wide: pd.DataFrame,
    id_cols: Sequence[str],
    key_cols: Sequence[str],
    value_cols: Sequence[str],
    sep: str = "_",
    dropna: bool = True,
) -> pd.DataFrame:
    """
    Pivot a wide table (as produced by pivot_wide) back to long format.

    :param wide: Wide DataFrame
    :param id_cols: Row identifier columns
    :param key_cols: Names for the key levels encoded in the column names
    :param value_cols: Value names to gather
    :param sep: Separator used in the column names
    :param dropna: Drop rows whose values are all missing
    :returns: Long DataFrame sorted by id and key columns
    """
    id_cols = list(id_cols)
    key_cols = list(key_cols)
    n_keys = len(key_cols)

    parsed: Dict[str, List[str]] = {}
    for col in wide.columns:
        if col in id_cols:
            continue
        parts = str(col).rsplit(sep, n_keys)
        if len(parts) != n_keys + 1 or parts[0] not in value_cols:
            continue
        parsed[col] = parts

    if not parsed:
        raise ValueError(f"No columns matching values {list(value_cols)} with {n_keys} key level(s)")

    melted = wide[id_cols + list(parsed)].melt(id_vars=id_cols, var_name="__column", value_name="__value")
    parts = melted["__column"].map(parsed)
    melted["__variable"] = parts.str[0]
    for i, key in enumerate(key_cols, start=1):
        melted[key] = _coerce_levels(parts.str[i])

    long = melted.set_index(id_cols + key_cols + ["__variable"])["__value"].unstack("__variable")
    long = long.reset_index()
    long.columns.name = None

    ordered_values = [v for v in value_cols if v in long.columns]
    if dropna:
        long = long.dropna(subset=ordered_values, how="all")

    long = long[id_cols + key_cols + ordered_values]
    # unstack leaves an object-dtype column index; rebuild it like a freshly built frame
    long.columns = pd.Index(id_cols + key_cols + ordered_values)
    return long.sort_values(id_cols + key_cols).reset_index(drop=True)


def cell_matrix(
    wide: pd.DataFrame,
    value: str,
    levels: Sequence[Any],
    last_levels: Sequence[Any],
    sep: str = "_",
) -> pd.DataFrame:
    """
    Select the sub-matrix for one cell of a wide table.

    Example: ``cell_matrix(wide, "hr", ["control", 13], [1, 2, 3])`` returns
    columns hr_control_13_1, hr_control_13_2, hr_control_13_3 (missing
    columns are added as NaN). Numeric levels match by value, so 13 and 13.0
    select the same columns.
    """
    cols = [wide_column(value, list(levels) + [last], sep=sep) for last in last_levels]
    return wide.reindex(columns=cols)
