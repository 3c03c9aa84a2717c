"""
Error Taxonomy
==============

Exceptions and warnings raised by bb_stats.

Failures are local to one unit of work (a cell, a comparison or an outcome).
The pipeline converts the exceptions below into unavailable-result markers
(``available=False`` plus a ``reason`` code) so other cells keep running.
"""
from __future__ import annotations

from typing import Optional


class BBStatsError(Exception):
    """Base class for bb_stats errors."""


class MissingReferenceError(BBStatsError):
    """An interval row has no matching GXT/resting reference row."""

    def __init__(self, missing_keys, source: str = "gxt"):
        self.missing_keys = list(missing_keys)
        self.source = source
        keys = ", ".join(f"{pid}/{cond}" for pid, cond in self.missing_keys)
        super().__init__(f"No {source} reference row for: {keys}")


class IncompleteCellError(BBStatsError):
    """A reliability/variability cell has fewer valid bouts than required."""

    def __init__(self, n_valid: int, n_required: int, cell: Optional[tuple] = None):
        self.n_valid = n_valid
        self.n_required = n_required
        self.cell = cell
        where = f" in cell {cell}" if cell is not None else ""
        super().__init__(f"{n_valid} of {n_required} bouts present{where}")


class DegenerateICCError(BBStatsError):
    """ICC comparison is undefined for the given inputs."""

    def __init__(self, reason: str, message: str = ""):
        self.reason = reason
        super().__init__(message or reason)


class UndefinedCVError(BBStatsError):
    """Coefficient of variation is undefined (mean of zero)."""


class MissingReferenceWarning(UserWarning):
    """A subject x condition has no GXT reference or resting record."""


class ModelFitWarning(UserWarning):
    """The mixed-model backend reported a fitting problem."""
