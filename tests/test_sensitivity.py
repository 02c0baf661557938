# tests/test_sensitivity.py

"""
Tests for sensitivity analysis.

Tests cover:
- Perturbation validation and labels
- Material sweep generation
- Baseline reproduction at 0% change
- Restoring feasibility from an infeasible baseline
- Preconditions and duplicate labels
- Land and lead-time perturbations
- Process-pool fan-out
"""

import dataclasses

import pytest

from scgep.entities import SolveStatus
from scgep.exceptions import AnalysisPreconditionError, InvalidConfigurationError
from scgep.formulation import formulate
from scgep.sensitivity import (
    Perturbation,
    as_perturbation,
    material_sweep,
    run_sensitivity,
)
from scgep.solver import solve
from scgep import utils


# =============================================================================
# Perturbation Tests
# =============================================================================

class TestPerturbation:
    """Test Perturbation construction and labels."""

    @pytest.mark.parametrize(
        "perturbation,label",
        [
            (Perturbation("lithium", 0.2), "lithium_increase_20%"),
            (Perturbation("lithium", -0.1), "lithium_decrease_10%"),
            (Perturbation("bge", -0.1, "land_availability"), "bge_area_decrease_10%"),
            (Perturbation("osw", 1, "lead_time"), "osw_lead_time_increase_1"),
            (Perturbation("osw", -2, "lead_time"), "osw_lead_time_decrease_2"),
        ],
    )
    def test_labels(self, perturbation, label):
        assert perturbation.label == label

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError, match="kind"):
            Perturbation("m1", 0.1, "price")

    def test_fractional_lead_time_raises(self):
        with pytest.raises(ValueError, match="whole periods"):
            Perturbation("tech", 0.5, "lead_time")

    def test_below_minus_100_percent_raises(self):
        with pytest.raises(ValueError):
            Perturbation("m1", -1.5)

    def test_tuple_form(self):
        assert as_perturbation(("m1", 0.1)) == Perturbation("m1", 0.1)

    def test_apply_leaves_baseline_untouched(self, feasible_config):
        before = utils.config_hash(feasible_config)
        derived = Perturbation("m1", 0.5).apply(feasible_config)
        assert derived.material("m1").primary_supply == pytest.approx(150.0)
        assert feasible_config.material("m1").primary_supply == 100.0
        assert utils.config_hash(feasible_config) == before

    def test_lead_time_floored_at_zero(self, feasible_config):
        derived = Perturbation("tech", -3, "lead_time").apply(feasible_config)
        assert derived.technology("tech").lead_time == 0

    def test_material_sweep(self, two_material_config):
        sweep = material_sweep(two_material_config)
        assert len(sweep) == 2 * 4
        assert {p.target for p in sweep} == {"scarce", "plenty"}


# =============================================================================
# run_sensitivity Tests
# =============================================================================

class TestRunSensitivity:
    """Test run_sensitivity against solved baselines."""

    def test_zero_change_reproduces_baseline(self, feasible_config):
        baseline = solve(formulate(feasible_config))
        results = run_sensitivity(feasible_config, baseline, [("m1", 0.0)])
        result = results["m1_increase_0%"]
        assert not result.infeasible
        assert result.objective_delta == pytest.approx(0.0, abs=1e-6)
        assert result.bottleneck_impact == pytest.approx(0.0, abs=1e-9)

    def test_restores_feasibility(self, infeasible_config):
        baseline = solve(formulate(infeasible_config))
        assert baseline.status is SolveStatus.INFEASIBLE
        results = run_sensitivity(infeasible_config, baseline, [Perturbation("m1", 0.2)])
        result = results["m1_increase_20%"]
        assert not result.infeasible
        assert result.objective_delta is not None
        # 60 units built at cost 1 versus 50 built plus 10 penalized at 100
        assert result.objective_delta == pytest.approx(60.0 - 1050.0)
        assert result.objective_value == pytest.approx(60.0)

    def test_infeasible_perturbation(self, feasible_config):
        baseline = solve(formulate(feasible_config))
        results = run_sensitivity(feasible_config, baseline, [("m1", -0.5)])
        result = results["m1_decrease_50%"]
        assert result.infeasible
        assert result.objective_delta is None
        assert result.bottleneck_impact is None

    def test_supply_cut_raises_utilization(self, feasible_config):
        baseline = solve(formulate(feasible_config))
        results = run_sensitivity(feasible_config, baseline, [("m1", -0.1)])
        result = results["m1_decrease_10%"]
        assert result.utilization == pytest.approx(80.0 / 90.0)
        assert result.bottleneck_impact == pytest.approx(80.0 / 90.0 - 0.8)

    def test_process_pool_matches_sequential(self, infeasible_config):
        baseline = solve(formulate(infeasible_config))
        perturbations = [("m1", 0.2), ("m1", -0.2), ("m1", 0.0), ("m1", 0.5)]
        sequential = run_sensitivity(infeasible_config, baseline, perturbations)
        parallel = run_sensitivity(
            infeasible_config, baseline, perturbations, max_workers=2
        )
        assert list(parallel) == list(sequential)
        for label, expected in sequential.items():
            result = parallel[label]
            assert result.infeasible == expected.infeasible
            if expected.objective_delta is None:
                assert result.objective_delta is None
            else:
                assert result.objective_delta == pytest.approx(expected.objective_delta)
                assert result.bottleneck_impact == pytest.approx(
                    expected.bottleneck_impact
                )

    def test_land_perturbation(self, zoned_config):
        baseline = solve(formulate(zoned_config))
        results = run_sensitivity(
            zoned_config, baseline, [Perturbation("z1", -0.5, "land_availability")]
        )
        result = results["z1_area_decrease_50%"]
        assert result.infeasible

    def test_lead_time_perturbation(self, staged_config):
        baseline = solve(formulate(staged_config))
        results = run_sensitivity(
            staged_config, baseline, [Perturbation("slow", 1, "lead_time")]
        )
        result = results["slow_lead_time_increase_1"]
        assert not result.infeasible
        # Slow capacity can no longer arrive by period 2
        assert result.objective_delta > 0

    def test_unfinished_baseline_rejected(self, feasible_config, converged_solution):
        unfinished = dataclasses.replace(
            converged_solution, feasibility=False, status=SolveStatus.MAX_ITERATIONS
        )
        with pytest.raises(AnalysisPreconditionError):
            run_sensitivity(feasible_config, unfinished, [("m1", 0.1)])

    def test_foreign_baseline_rejected(self, infeasible_config, converged_solution):
        with pytest.raises(AnalysisPreconditionError):
            run_sensitivity(infeasible_config, converged_solution, [("m1", 0.1)])

    def test_duplicate_labels_rejected(self, feasible_config, converged_solution):
        with pytest.raises(ValueError, match="Duplicate"):
            run_sensitivity(
                feasible_config, converged_solution, [("m1", 0.1), Perturbation("m1", 0.1)]
            )

    def test_unknown_target_rejected(self, feasible_config, converged_solution):
        with pytest.raises(InvalidConfigurationError, match="Unknown material"):
            run_sensitivity(feasible_config, converged_solution, [("missing", 0.1)])

    def test_baseline_not_mutated(self, feasible_config, converged_solution):
        before = utils.config_hash(feasible_config)
        run_sensitivity(feasible_config, converged_solution, [("m1", 0.2), ("m1", -0.2)])
        assert utils.config_hash(feasible_config) == before
