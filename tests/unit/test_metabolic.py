"""
Unit tests for the treadmill metabolic equations.
"""

import numpy as np
import pandas as pd
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from bb_stats.metabolic import RESTING_VO2, speed_to_mpm, treadmill_mets, treadmill_vo2


class TestTreadmillMets:
    """Tests for METs from speed and grade."""

    @pytest.mark.parametrize("speed", [6.0, 8.5, 10.0, 14.2])
    def test_level_grade(self, speed):
        """At zero grade METs reduce to (3.5 + 0.2 * S) / 3.5."""
        s = speed * 1000 / 60
        assert treadmill_mets(speed, 0.0) == pytest.approx((3.5 + 0.2 * s) / 3.5)

    def test_known_value(self):
        """10 km/h at 5% grade."""
        s = 10 * 1000 / 60
        expected = (3.5 + 0.2 * s + 0.9 * s * 0.05) / 3.5
        assert treadmill_mets(10.0, 5.0) == pytest.approx(expected)
        assert round(treadmill_mets(10.0, 0.0), 3) == 10.524

    def test_grade_increases_cost(self):
        assert treadmill_mets(9.0, 4.0) > treadmill_mets(9.0, 0.0)

    def test_vo2_is_mets_times_resting(self):
        assert treadmill_vo2(12.0, 2.0) == pytest.approx(treadmill_mets(12.0, 2.0) * RESTING_VO2)

    def test_vectorized_with_missing(self):
        """Series input is computed elementwise; missing values stay missing."""
        speed = pd.Series([8.0, np.nan, 12.0])
        grade = pd.Series([1.0, 1.0, np.nan])
        mets = treadmill_mets(speed, grade)
        assert isinstance(mets, pd.Series)
        assert np.isfinite(mets.iloc[0])
        assert mets.iloc[1:].isna().all()


class TestSpeedUnits:
    """Tests for speed conversion."""

    def test_units(self):
        assert speed_to_mpm(6.0, "kmh") == pytest.approx(100.0)
        assert speed_to_mpm(100.0, "mpm") == pytest.approx(100.0)
        assert speed_to_mpm(1.0, "mph") == pytest.approx(26.8)

    def test_mph_equation(self):
        """6 mph (160.8 m/min) at 0% grade costs 35.66 ml/kg/min, about 10.19 METs."""
        assert treadmill_mets(6.0, 0.0, speed_unit="mph") == pytest.approx(10.19, abs=0.01)

    def test_unknown_unit(self):
        with pytest.raises(ValueError, match="Unknown speed unit"):
            speed_to_mpm(10.0, "knots")
