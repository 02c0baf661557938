# tests/conftest.py

"""
Shared fixtures for SC-GEP planner tests.

Provides small configurations with hand-checkable optima:
- single material / single technology over one period (supply 100, intensity 2)
- two technologies on disjoint materials (needs a cut to converge)
- fast/slow technology pair with growing demand (lead-time delays)
- a minimal constants YAML file for loader and CLI tests
"""

import matplotlib

matplotlib.use("Agg")

import pytest
import yaml

from scgep.config.settings import SolverSettings
from scgep.entities import (
    UNSITED,
    Configuration,
    Material,
    Scenario,
    Solution,
    SolveStatus,
    Technology,
    Zone,
)
from scgep import utils


# =============================================================================
# Configuration Builders
# =============================================================================

def single_material_config(
    supply=100.0,
    intensity=2.0,
    demand=(40.0,),
    capital_cost=1.0,
    unit_cost=0.0,
    lead_time=0,
    **scenario_fields,
):
    """One material, one unsited technology, horizon = len(demand)."""
    return Configuration(
        materials=(
            Material(id="m1", name="Material 1", primary_supply=supply, unit_cost=unit_cost),
        ),
        technologies=(
            Technology(
                id="tech",
                name="Technology",
                capital_cost=capital_cost,
                material_intensity={"m1": intensity},
                lead_time=lead_time,
            ),
        ),
        zones=(),
        planning_horizon=len(demand),
        scenario=Scenario(demand=tuple(demand), **scenario_fields),
    )


@pytest.fixture
def make_config():
    """Factory for single-material configurations."""
    return single_material_config


@pytest.fixture
def feasible_config():
    """Demand 40 against supply 100 at intensity 2: build 40, 80% utilization."""
    return single_material_config(demand=(40.0,))


@pytest.fixture
def infeasible_config():
    """Demand 60 needs 120 units of a 100-unit supply."""
    return single_material_config(demand=(60.0,))


@pytest.fixture
def two_material_config():
    """
    Cheap technology on a scarce material, expensive one on a plentiful one.

    The relaxation builds only the cheap technology; one material cut caps it
    at 10 and the expensive technology covers the remaining 30.
    """
    return Configuration(
        materials=(
            Material(id="scarce", name="Scarce", primary_supply=10.0, unit_cost=0.0),
            Material(id="plenty", name="Plenty", primary_supply=1000.0, unit_cost=0.0),
        ),
        technologies=(
            Technology(
                id="cheap", name="Cheap", capital_cost=1.0, material_intensity={"scarce": 1.0}
            ),
            Technology(
                id="costly", name="Costly", capital_cost=5.0, material_intensity={"plenty": 1.0}
            ),
        ),
        zones=(),
        planning_horizon=1,
        scenario=Scenario(demand=(40.0,)),
    )


@pytest.fixture
def staged_config():
    """
    Fast (lead 0, expensive) and slow (lead 1, cheap) technologies.

    Demand (40, 80, 80): fast covers period 1, slow committed in period 1
    covers the growth from period 2 on.
    """
    return Configuration(
        materials=(Material(id="m1", name="Material 1", primary_supply=1e4, unit_cost=0.0),),
        technologies=(
            Technology(
                id="fast", name="Fast", capital_cost=10.0, material_intensity={"m1": 1.0}
            ),
            Technology(
                id="slow",
                name="Slow",
                capital_cost=1.0,
                material_intensity={"m1": 1.0},
                lead_time=1,
            ),
        ),
        zones=(),
        planning_horizon=3,
        scenario=Scenario(demand=(40.0, 80.0, 80.0)),
    )


@pytest.fixture
def zoned_config():
    """Land-limited technology sited in a single zone."""
    return Configuration(
        materials=(Material(id="m1", name="Material 1", primary_supply=1e4, unit_cost=0.0),),
        technologies=(
            Technology(
                id="solar",
                name="Solar",
                capital_cost=1.0,
                material_intensity={"m1": 1.0},
                land_footprint=1.0,
                zones=("z1",),
            ),
        ),
        zones=(Zone(id="z1", name="Zone 1", area=50.0),),
        planning_horizon=1,
        scenario=Scenario(demand=(40.0,)),
    )


# =============================================================================
# Solutions
# =============================================================================

@pytest.fixture
def converged_solution(feasible_config):
    """Hand-built optimum of ``feasible_config`` (no LP backend needed)."""
    return Solution(
        objective_value=40.0,
        feasibility=True,
        solve_time=1.0,
        iterations=1,
        convergence=0.0,
        status=SolveStatus.CONVERGED,
        costs={
            "capital": 40.0,
            "materials": 0.0,
            "secondary_premium": 0.0,
            "fixed_om": 0.0,
            "unmet_demand_penalty": 0.0,
        },
        metrics={"unmet_demand": 0.0, "total_capacity_added": 40.0},
        schedule={1: {"tech": 40.0}},
        commissioning={1: {"tech": 40.0}},
        site_schedule={1: {"tech": {UNSITED: 40.0}}},
        material_use={1: {"m1": 80.0}},
        config_hash=utils.config_hash(feasible_config),
    )


@pytest.fixture
def settings(tmp_path):
    return SolverSettings(output_dir=tmp_path / "results")


# =============================================================================
# Constants Files
# =============================================================================

MINIMAL_CONSTANTS = {
    "planning": {"horizon": 2, "start_year": 2030},
    "scenario": {"name": "baseline", "demand": [40.0, 40.0]},
    "materials": [
        {"id": "m1", "name": "Material 1", "primary_supply": 100.0, "unit_cost": 0.0}
    ],
    "technologies": [
        {"id": "tech", "capital_cost": 1.0, "material_intensity": {"m1": 2.0}}
    ],
    "zones": [{"id": "z1", "area": 100.0}],
    "solver": {"max_iterations": 20, "tolerance": 1.0e-6},
}


@pytest.fixture
def constants_dict():
    """Deep copy of the minimal constants mapping."""
    return yaml.safe_load(yaml.safe_dump(MINIMAL_CONSTANTS))


@pytest.fixture
def constants_file(tmp_path, constants_dict):
    """Minimal constants YAML written to a temporary directory."""
    path = tmp_path / "constants.yaml"
    path.write_text(yaml.safe_dump(constants_dict))
    return path
