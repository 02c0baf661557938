# tests/test_scenarios.py

"""
Tests for scenario variants and comparison.

Tests cover:
- apply_scenario for every ScenarioType
- compare_scenarios summaries and insights
"""

import dataclasses

import pytest

from scgep.config.settings import ScenarioType
from scgep.entities import Component, Material, Scenario
from scgep.scenarios import (
    UNLIMITED_SUPPLY,
    apply_scenario,
    compare_scenarios,
)


@pytest.fixture
def categorized_config(zoned_config):
    """Zoned configuration with one material per category and a component."""
    return dataclasses.replace(
        zoned_config,
        materials=(
            Material(id="m1", name="Steel", primary_supply=1e4, unit_cost=0.0),
            Material(
                id="li", name="Lithium", primary_supply=100.0, unit_cost=0.0,
                category="critical", procurement_lead_time=1,
            ),
            Material(
                id="nd", name="Neodymium", primary_supply=10.0, unit_cost=0.0,
                category="rare_earth",
            ),
        ),
        components=(
            Component(id="cell", name="Cell", production_capacity=5.0, lead_time=2),
        ),
    )


class TestApplyScenario:
    """Test apply_scenario."""

    def test_baseline_is_identity(self, feasible_config):
        assert apply_scenario(feasible_config, ScenarioType.BASELINE) is feasible_config

    def test_low_demand(self, feasible_config):
        derived = apply_scenario(feasible_config, ScenarioType.LOW_DEMAND)
        assert derived.scenario.demand == pytest.approx((36.0,))
        assert derived.scenario.name == "low_demand"
        assert feasible_config.scenario.demand == (40.0,)

    def test_high_demand_scales_growth_base(self, feasible_config):
        config = dataclasses.replace(feasible_config, scenario=Scenario(base_demand=100.0))
        derived = apply_scenario(config, ScenarioType.HIGH_DEMAND)
        assert derived.scenario.base_demand == pytest.approx(110.0)

    def test_without_supply_chain(self, categorized_config):
        derived = apply_scenario(categorized_config, ScenarioType.WITHOUT_SUPPLY_CHAIN)
        assert all(m.primary_supply == UNLIMITED_SUPPLY for m in derived.materials)
        assert all(m.procurement_lead_time == 0 for m in derived.materials)
        assert derived.components[0].production_capacity is None
        assert derived.components[0].lead_time == 0
        assert derived.zone("z1").area == pytest.approx(150.0)
        assert derived.scenario.name == "w/o_SC"

    def test_limited_supply_chain(self, categorized_config):
        derived = apply_scenario(categorized_config, ScenarioType.LIMITED_SUPPLY_CHAIN)
        assert derived.material("m1").primary_supply == 1e4
        assert derived.material("li").primary_supply == pytest.approx(70.0)
        assert derived.material("nd").primary_supply == pytest.approx(5.0)


class TestCompareScenarios:
    """Test compare_scenarios."""

    def test_summary_fields(self, infeasible_config):
        result = compare_scenarios(
            infeasible_config,
            [ScenarioType.BASELINE, ScenarioType.WITHOUT_SUPPLY_CHAIN],
        )
        assert set(result["scenarios"]) == {"baseline", "w/o_SC"}

        base = result["scenarios"]["baseline"]
        assert base["status"] == "infeasible"
        assert base["unmet_demand"] == pytest.approx(10.0)
        assert base["material_constrained_periods"] == 1
        assert base["shortfall_periods"] == [1]

        relaxed = result["scenarios"]["w/o_SC"]
        assert relaxed["feasibility"]
        assert relaxed["technology_mix"]["tech"] == pytest.approx(60.0)
        assert relaxed["total_penalty_cost"] == pytest.approx(0.0, abs=1e-6)
        assert relaxed["shortfall_periods"] == []

    def test_insights(self, infeasible_config):
        result = compare_scenarios(
            infeasible_config,
            [ScenarioType.BASELINE, ScenarioType.LOW_DEMAND],
        )
        insights = result["insights"]
        assert insights[0].startswith("Compared 2 scenario(s)")
        assert any("Demand cannot be fully served in: baseline" in line for line in insights)
        assert "baseline: load is shed from period 1 in 1 of 1 period(s)" in insights
