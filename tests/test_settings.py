# tests/test_settings.py

"""Tests for SolverSettings validation."""

from pathlib import Path

import pytest

from scgep.config.settings import ScenarioType, SolverSettings


class TestSolverSettings:
    """Test SolverSettings defaults and __post_init__ validation."""

    def test_defaults(self):
        s = SolverSettings()
        assert s.max_iterations == 50
        assert s.tolerance == 1e-6
        assert s.binding_threshold == 0.95
        assert s.time_limit is None
        assert s.output_dir == Path("results")

    def test_output_dir_coerced(self):
        assert SolverSettings(output_dir="out/run1").output_dir == Path("out/run1")

    @pytest.mark.parametrize(
        "kwargs,error",
        [
            ({"max_iterations": 0}, ValueError),
            ({"max_iterations": None}, ValueError),
            ({"max_iterations": True}, TypeError),
            ({"max_iterations": 2.5}, TypeError),
            ({"tolerance": 0.0}, ValueError),
            ({"tolerance": "small"}, TypeError),
            ({"binding_threshold": 1.5}, ValueError),
            ({"binding_threshold": 0.0}, ValueError),
            ({"time_limit": -1.0}, ValueError),
        ],
    )
    def test_invalid(self, kwargs, error):
        with pytest.raises(error):
            SolverSettings(**kwargs)


class TestScenarioType:
    """Test scenario identifiers."""

    def test_values(self):
        assert ScenarioType("w/o_SC") is ScenarioType.WITHOUT_SUPPLY_CHAIN
        assert ScenarioType("lim_SC") is ScenarioType.LIMITED_SUPPLY_CHAIN
        assert [s.value for s in ScenarioType][0] == "baseline"
