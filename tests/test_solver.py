# tests/test_solver.py

"""
Tests for the cutting-plane solver.

Tests cover:
- Feasible, infeasible and cut-requiring configurations
- Aggregate infeasibility screening
- Iteration budget, cancellation and diagnostics
- Monotonicity in primary supply
- Time budget checked between iterations
- Per-period unmet demand and cost split
- PlanningSolver memoization
"""

import dataclasses

import pytest

from scgep.config.settings import SolverSettings
from scgep.entities import Configuration, Material, Scenario, SolveStatus, Technology
from scgep.formulation import formulate
from scgep import solver as solver_module
from scgep.solver import (
    PlanningSolver,
    screen_infeasibility,
    solve,
    solve_configuration,
)
from scgep import utils


class SteppingClock:
    """Stand-in for the time module whose clock jumps on every read."""

    def __init__(self, step):
        self.step = step
        self.now = 0.0

    def perf_counter(self):
        value = self.now
        self.now += self.step
        return value


# =============================================================================
# Screening Tests
# =============================================================================

class TestScreenInfeasibility:
    """Test screen_infeasibility (no LP backend involved)."""

    def test_feasible_passes(self, feasible_config):
        assert screen_infeasibility(formulate(feasible_config), 1e-6) is None

    def test_material_shortfall(self, infeasible_config):
        assert screen_infeasibility(formulate(infeasible_config), 1e-6) == "material_balance"

    def test_lead_time(self, make_config):
        config = make_config(demand=(0.0, 40.0), lead_time=2)
        assert screen_infeasibility(formulate(config), 1e-6) == "lead_time"

    def test_build_rate(self, feasible_config):
        tech = dataclasses.replace(feasible_config.technologies[0], max_build_rate=10.0)
        config = dataclasses.replace(feasible_config, technologies=(tech,))
        assert screen_infeasibility(formulate(config), 1e-6) == "build_rate"

    def test_disjoint_materials_not_screened(self, two_material_config):
        assert screen_infeasibility(formulate(two_material_config), 1e-6) is None


# =============================================================================
# Solve Tests
# =============================================================================

class TestSolve:
    """Test solve() end to end."""

    def test_feasible_single_period(self, feasible_config):
        solution = solve(formulate(feasible_config))
        assert solution.status is SolveStatus.CONVERGED
        assert solution.feasibility
        assert solution.iterations == 1
        assert solution.schedule[1]["tech"] == pytest.approx(40.0)
        assert solution.material_use[1]["m1"] == pytest.approx(80.0)
        assert solution.objective_value == pytest.approx(40.0)
        assert solution.metrics["unmet_demand"] == pytest.approx(0.0, abs=1e-6)
        assert solution.config_hash == utils.config_hash(feasible_config)

    def test_infeasible_reports_penalized_objective(self, infeasible_config):
        solution = solve(formulate(infeasible_config))
        assert solution.status is SolveStatus.INFEASIBLE
        assert not solution.feasibility
        assert solution.diagnostic == "material_balance"
        assert solution.schedule[1]["tech"] == pytest.approx(50.0)
        assert solution.metrics["unmet_demand"] == pytest.approx(10.0)
        # 50 units built at cost 1, 10 unmet at the floor penalty of 100
        assert solution.objective_value == pytest.approx(50.0 + 100.0 * 10.0)
        assert solution.iterations == 2

    def test_cut_then_converge(self, two_material_config):
        solution = solve(formulate(two_material_config))
        assert solution.status is SolveStatus.CONVERGED
        assert solution.iterations == 2
        assert solution.schedule[1]["cheap"] == pytest.approx(10.0)
        assert solution.schedule[1]["costly"] == pytest.approx(30.0)
        assert solution.metrics["cuts_added"] == 1.0
        assert solution.convergence <= 1e-6

    def test_iteration_budget(self, two_material_config):
        solution = solve(formulate(two_material_config), max_iterations=1)
        assert solution.status is SolveStatus.MAX_ITERATIONS
        assert not solution.feasibility
        assert solution.iterations == 1
        assert solution.convergence > 1e-6

    def test_budget_stop_with_proof_is_infeasible(self, infeasible_config):
        solution = solve(formulate(infeasible_config), max_iterations=1)
        assert solution.status is SolveStatus.INFEASIBLE
        assert solution.diagnostic == "material_balance"

    def test_cancellation(self, two_material_config):
        solution = solve(formulate(two_material_config), should_cancel=lambda: True)
        assert solution.status is SolveStatus.CANCELLED
        assert solution.diagnostic == "cancelled"
        assert solution.iterations == 1

    def test_lead_time_diagnostic(self, make_config):
        config = make_config(demand=(0.0, 40.0), lead_time=2)
        solution = solve(formulate(config))
        assert solution.status is SolveStatus.INFEASIBLE
        assert solution.diagnostic == "lead_time"
        assert solution.objective_value == pytest.approx(100.0 * 40.0)

    def test_unconstrained_multi_period(self, make_config):
        config = make_config(supply=1e6, demand=(10.0, 20.0, 30.0))
        solution = solve(formulate(config))
        assert solution.feasibility
        served = sum(solution.schedule[t]["tech"] for t in (1, 2, 3))
        assert served == pytest.approx(30.0)
        assert solution.commissioning[1]["tech"] == pytest.approx(
            solution.schedule[1]["tech"]
        )

    def test_shortfall_spread_thinly_over_periods(self):
        # 0.95 unmet in each of two periods: each below the 1.0 tolerance,
        # together above it
        config = Configuration(
            materials=(
                Material(id="m1", name="Material 1", primary_supply=9.05, unit_cost=0.0),
            ),
            technologies=(
                Technology(
                    id="tech",
                    name="Tech",
                    capital_cost=1.0,
                    material_intensity={"m1": 1.0},
                    lifetime=1,
                ),
            ),
            zones=(),
            planning_horizon=3,
            scenario=Scenario(demand=(0.0, 10.0, 10.0)),
        )
        solution = solve(formulate(config), tolerance=0.1)
        assert solution.status is SolveStatus.INFEASIBLE
        assert solution.diagnostic == "material_balance"
        assert solution.unmet_demand[2] == pytest.approx(0.95)
        assert solution.unmet_demand[3] == pytest.approx(0.95)

    def test_land_cut(self, zoned_config):
        zone = dataclasses.replace(zoned_config.zones[0], area=25.0)
        config = dataclasses.replace(zoned_config, zones=(zone,))
        solution = solve(formulate(config))
        assert solution.status is SolveStatus.INFEASIBLE
        assert solution.diagnostic == "spatial"
        assert solution.site_schedule[1]["solar"]["z1"] == pytest.approx(25.0)

    def test_time_limit(self, monkeypatch, two_material_config):
        monkeypatch.setattr(solver_module, "time", SteppingClock(step=10.0))
        solution = solve(formulate(two_material_config), time_limit=5.0)
        assert solution.status is SolveStatus.MAX_ITERATIONS
        assert solution.diagnostic == "time_limit"
        assert solution.iterations == 1

    def test_period_values(self, infeasible_config):
        solution = solve(formulate(infeasible_config))
        assert solution.unmet_demand == pytest.approx({1: 10.0})
        costs = solution.period_costs[1]
        assert costs["investment"] == pytest.approx(50.0)
        assert costs["operational"] == pytest.approx(0.0, abs=1e-9)
        assert costs["penalty"] == pytest.approx(1000.0)
        assert sum(costs.values()) == pytest.approx(solution.objective_value)

    def test_period_costs_follow_online_capacity(self, make_config):
        config = make_config(supply=1e6, demand=(10.0, 10.0), discount_rate=0.1)
        tech = dataclasses.replace(config.technologies[0], fixed_om_cost=2.0)
        config = dataclasses.replace(config, technologies=(tech,))
        solution = solve(formulate(config))
        assert solution.feasibility
        assert solution.period_costs[1]["operational"] == pytest.approx(20.0)
        assert solution.period_costs[2]["operational"] == pytest.approx(20.0 / 1.1)
        total = sum(sum(c.values()) for c in solution.period_costs.values())
        assert total == pytest.approx(solution.objective_value)

    def test_solve_does_not_mutate_config(self, infeasible_config):
        before = utils.config_hash(infeasible_config)
        solve(formulate(infeasible_config))
        assert utils.config_hash(infeasible_config) == before

    def test_invalid_budget_raises(self, feasible_config):
        with pytest.raises(ValueError, match="max_iterations"):
            solve(formulate(feasible_config), max_iterations=0)

    def test_solve_configuration(self, feasible_config):
        solution = solve_configuration(feasible_config, SolverSettings(max_iterations=5))
        assert solution.feasibility


class TestMonotonicity:
    """More primary supply never raises the optimal cost."""

    def test_objective_non_increasing_in_supply(self, make_config):
        objectives = [
            solve(formulate(make_config(supply=s, demand=(60.0,)))).objective_value
            for s in (80.0, 100.0, 120.0, 140.0)
        ]
        for lower, higher in zip(objectives, objectives[1:]):
            assert higher <= lower + 1e-6

    def test_secondary_supply_covers_shortfall(self):
        config = Configuration(
            materials=(
                Material(
                    id="m1",
                    name="Material 1",
                    primary_supply=100.0,
                    unit_cost=0.0,
                    secondary_supply=20.0,
                    secondary_premium=0.5,
                ),
            ),
            technologies=(
                Technology(
                    id="tech", name="Tech", capital_cost=1.0, material_intensity={"m1": 2.0}
                ),
            ),
            zones=(),
            planning_horizon=1,
            scenario=Scenario(demand=(60.0,)),
        )
        solution = solve(formulate(config))
        assert solution.feasibility
        assert solution.metrics["secondary_material_used"] == pytest.approx(20.0)
        assert solution.costs["secondary_premium"] == pytest.approx(10.0)


# =============================================================================
# PlanningSolver Tests
# =============================================================================

class TestPlanningSolver:
    """Test PlanningSolver memoization."""

    def test_memoizes_equal_configuration(self, make_config):
        planner = PlanningSolver(SolverSettings())
        first = planner.solve_configuration(make_config())
        second = planner.solve_configuration(make_config())
        assert first is second
        assert planner.last_solution is first

    def test_new_configuration_resolves(self, make_config):
        planner = PlanningSolver()
        first = planner.solve_configuration(make_config(demand=(40.0,)))
        second = planner.solve_configuration(make_config(demand=(30.0,)))
        assert first is not second
        assert second.schedule[1]["tech"] == pytest.approx(30.0)

    def test_memoized_solution_is_read_only(self, make_config):
        planner = PlanningSolver()
        first = planner.solve_configuration(make_config())
        with pytest.raises(TypeError):
            first.schedule[1]["tech"] = 999.0
        with pytest.raises(TypeError):
            first.metrics["unmet_demand"] = 1.0
        again = planner.solve_configuration(make_config())
        assert again.schedule[1]["tech"] == pytest.approx(40.0)
