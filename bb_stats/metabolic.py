"""
Metabolic Equations
===================

ACSM treadmill running equation, used to express treadmill speed and grade
as metabolic equivalents (METs):

    VO2 = 3.5 + 0.2 * S + 0.9 * S * G
    METs = VO2 / 3.5

where S is speed in m/min and G is fractional grade. Valid for running
speeds (> 0); the functions do not enforce the domain.
"""
from __future__ import annotations

from typing import Literal, Union

import numpy as np
import pandas as pd

ArrayLike = Union[float, np.ndarray, pd.Series]

SpeedUnit = Literal["kmh", "mpm", "mph"]

RESTING_VO2 = 3.5  # ml/kg/min per MET

_SPEED_TO_MPM = {
    "kmh": 1000.0 / 60.0,
    "mpm": 1.0,
    "mph": 26.8,
}


def speed_to_mpm(speed: ArrayLike, speed_unit: SpeedUnit = "kmh") -> ArrayLike:
    """Convert treadmill speed to metres per minute."""
    if speed_unit not in _SPEED_TO_MPM:
        raise ValueError(f"Unknown speed unit '{speed_unit}'. Use one of {list(_SPEED_TO_MPM)}")
    return speed * _SPEED_TO_MPM[speed_unit]


def treadmill_vo2(
    speed: ArrayLike,
    grade: ArrayLike,
    speed_unit: SpeedUnit = "kmh",
) -> ArrayLike:
    """
    Oxygen cost of treadmill running (ml/kg/min).

    :param speed: Treadmill speed
    :param grade: Treadmill incline in percent
    :param speed_unit: Unit of ``speed`` ("kmh", "mpm" or "mph")
    :returns: Estimated VO2 in ml/kg/min
    """
    s = speed_to_mpm(speed, speed_unit)
    return RESTING_VO2 + 0.2 * s + 0.9 * s * grade / 100.0


def treadmill_mets(
    speed: ArrayLike,
    grade: ArrayLike,
    speed_unit: SpeedUnit = "kmh",
) -> ArrayLike:
    """
    Work rate in METs from treadmill speed and grade.

    Missing speed or grade propagates as NaN.

    Example:
        >>> round(treadmill_mets(10.0, 0.0), 3)
        10.524
    """
    return treadmill_vo2(speed, grade, speed_unit) / RESTING_VO2
