from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Sentinel site for technologies that are not tied to a zone
UNSITED = "_unsited"


class FrozenDict(dict):
    """
    Read-only dict used for the mapping fields of frozen entities.

    Still a dict for ``json``, ``dataclasses.asdict`` and pandas, and
    picklable for the sensitivity process pool.
    """

    def _readonly(self, *args, **kwargs):
        raise TypeError(f"{type(self).__name__} is read-only")

    __setitem__ = __delitem__ = _readonly
    clear = pop = popitem = setdefault = update = _readonly
    __ior__ = _readonly

    def __reduce__(self):
        return (type(self), (dict(self),))

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


def freeze(value: Any) -> Any:
    """Recursively wrap dicts as FrozenDict."""
    if isinstance(value, dict):
        return FrozenDict((k, freeze(v)) for k, v in value.items())
    return value


def _freeze_fields(obj: Any, *names: str) -> None:
    for name in names:
        object.__setattr__(obj, name, freeze(getattr(obj, name)))


# =============================================================================
# Configuration Model
# =============================================================================


@dataclass(frozen=True)
class Material:
    """Upstream material with per-period supply."""

    id: str
    name: str
    primary_supply: float  # units per period
    unit_cost: float
    secondary_supply: float = 0.0  # recycled units per period
    procurement_lead_time: int = 0  # periods before first delivery
    secondary_premium: float = 0.0  # extra cost per recycled unit used
    category: str = "standard"  # "standard", "critical", "rare_earth"
    sector_share: float = 1.0  # share of primary supply open to the energy sector

    @property
    def primary_available(self) -> float:
        return self.primary_supply * self.sector_share

    def available_supply(self, t: int) -> float:
        """Total supply deliverable in period t (1-based)."""
        if t <= self.procurement_lead_time:
            return 0.0
        return self.primary_available + self.secondary_supply

    def primary_supply_at(self, t: int) -> float:
        if t <= self.procurement_lead_time:
            return 0.0
        return self.primary_available


@dataclass(frozen=True)
class Component:
    """Manufactured intermediate product (cells, drivetrains, ...)."""

    id: str
    name: str
    material_intensity: dict[str, float] = field(default_factory=dict)
    production_capacity: float | None = None  # components per period
    lead_time: int = 0  # manufacturing lead time in periods

    def __post_init__(self):
        _freeze_fields(self, "material_intensity")


@dataclass(frozen=True)
class Technology:
    """Buildable generation or storage technology."""

    id: str
    name: str
    capital_cost: float  # per unit capacity
    material_intensity: dict[str, float] = field(default_factory=dict)
    component_intensity: dict[str, float] = field(default_factory=dict)
    land_footprint: float = 0.0  # area per unit capacity
    lead_time: int = 0  # periods from commitment to commissioning
    max_build_rate: float | None = None  # capacity per period
    zones: tuple[str, ...] = ()
    capacity_credit: float = 1.0
    fixed_om_cost: float = 0.0  # per unit online capacity per period
    lifetime: int | None = None  # periods online before retirement

    def __post_init__(self):
        _freeze_fields(self, "material_intensity", "component_intensity")


@dataclass(frozen=True)
class Zone:
    """Spatial unit with a land budget."""

    id: str
    name: str
    area: float
    technologies: tuple[str, ...] = ()


@dataclass(frozen=True)
class Scenario:
    """Demand and policy parameters of a planning run."""

    name: str = "baseline"
    demand: tuple[float, ...] = ()  # explicit target per period
    base_demand: float = 0.0
    demand_growth: float = 0.0
    reserve_margin: float = 0.0
    existing_capacity: float = 0.0
    discount_rate: float = 0.0
    unmet_demand_penalty: float | None = None

    def demand_target(self, t: int) -> float:
        """Net capacity requirement in period t after existing capacity."""
        if self.demand:
            raw = float(self.demand[t - 1])
        else:
            raw = (
                self.base_demand
                * (1.0 + self.demand_growth) ** (t - 1)
                * (1.0 + self.reserve_margin)
            )
        return max(0.0, raw - self.existing_capacity)


@dataclass(frozen=True)
class Configuration:
    """Complete, immutable input of a planning run."""

    materials: tuple[Material, ...]
    technologies: tuple[Technology, ...]
    zones: tuple[Zone, ...]
    planning_horizon: int
    scenario: Scenario = field(default_factory=Scenario)
    components: tuple[Component, ...] = ()

    def material(self, material_id: str) -> Material:
        for m in self.materials:
            if m.id == material_id:
                return m
        raise KeyError(material_id)

    def technology(self, tech_id: str) -> Technology:
        for k in self.technologies:
            if k.id == tech_id:
                return k
        raise KeyError(tech_id)

    def zone(self, zone_id: str) -> Zone:
        for z in self.zones:
            if z.id == zone_id:
                return z
        raise KeyError(zone_id)


# =============================================================================
# Results
# =============================================================================


class SolveStatus(Enum):
    """Terminal state of a solve."""

    CONVERGED = "converged"
    INFEASIBLE = "infeasible"
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Solution:
    """
    Result of a planning solve.

    ``objective_value`` is the total discounted cost. For infeasible
    candidates it also carries the unmet-demand penalty, so two solutions
    of nearby configurations stay comparable.
    """

    objective_value: float
    feasibility: bool
    solve_time: float  # milliseconds
    iterations: int
    convergence: float
    status: SolveStatus
    costs: dict[str, float] = field(default_factory=dict)
    metrics: dict[str, float] = field(default_factory=dict)
    schedule: dict[int, dict[str, float]] = field(default_factory=dict)
    commissioning: dict[int, dict[str, float]] = field(default_factory=dict)
    site_schedule: dict[int, dict[str, dict[str, float]]] = field(
        default_factory=dict
    )
    material_use: dict[int, dict[str, float]] = field(default_factory=dict)
    unmet_demand: dict[int, float] = field(default_factory=dict)
    # Discounted cost per period: investment, operational, penalty
    period_costs: dict[int, dict[str, float]] = field(default_factory=dict)
    diagnostic: str | None = None
    config_hash: str = ""

    def __post_init__(self):
        _freeze_fields(
            self,
            "costs",
            "metrics",
            "schedule",
            "commissioning",
            "site_schedule",
            "material_use",
            "unmet_demand",
            "period_costs",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "objectiveValue": self.objective_value,
            "feasibility": self.feasibility,
            "solveTime": self.solve_time,
            "iterations": self.iterations,
            "convergence": self.convergence,
            "status": self.status.value,
            "diagnostic": self.diagnostic,
            "costs": dict(self.costs),
            "metrics": dict(self.metrics),
            "schedule": {
                str(t): dict(row) for t, row in sorted(self.schedule.items())
            },
            "unmetDemand": {
                str(t): u for t, u in sorted(self.unmet_demand.items())
            },
            "periodCosts": {
                str(t): dict(row) for t, row in sorted(self.period_costs.items())
            },
        }


@dataclass(frozen=True)
class MaterialBottleneck:
    material: str
    utilization: float
    constraint: bool
    periods: tuple[int, ...] = ()
    severity: str = "low"
    affected_technologies: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "material": self.material,
            "utilization": self.utilization,
            "constraint": self.constraint,
            "periods": list(self.periods),
            "severity": self.severity,
            "affectedTechnologies": list(self.affected_technologies),
        }


@dataclass(frozen=True)
class SpatialConstraint:
    zone: str
    technology: str
    utilization: float
    constraint: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "zone": self.zone,
            "technology": self.technology,
            "utilization": self.utilization,
            "constraint": self.constraint,
        }


@dataclass(frozen=True)
class TechnologyDelay:
    technology: str
    delay_periods: int
    planned_period: int
    deployed_period: int
    reason: str  # "lead_time", "material", "horizon"

    def to_dict(self) -> dict[str, Any]:
        return {
            "technology": self.technology,
            "delayPeriods": self.delay_periods,
            "plannedPeriod": self.planned_period,
            "deployedPeriod": self.deployed_period,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ReliabilityIssue:
    """Period whose demand target was not fully served."""

    period: int
    unmet_demand: float
    demand: float

    @property
    def shortfall_ratio(self) -> float:
        return self.unmet_demand / self.demand if self.demand > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "unmetDemand": self.unmet_demand,
            "demand": self.demand,
            "shortfallRatio": self.shortfall_ratio,
        }


@dataclass(frozen=True)
class BottleneckReport:
    material_bottlenecks: tuple[MaterialBottleneck, ...]
    spatial_constraints: tuple[SpatialConstraint, ...]
    technology_delays: tuple[TechnologyDelay, ...]
    binding_threshold: float = 0.95
    reliability_issues: tuple[ReliabilityIssue, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "materialBottlenecks": [b.to_dict() for b in self.material_bottlenecks],
            "spatialConstraints": [s.to_dict() for s in self.spatial_constraints],
            "technologyDelays": [d.to_dict() for d in self.technology_delays],
            "reliabilityIssues": [r.to_dict() for r in self.reliability_issues],
            "bindingThreshold": self.binding_threshold,
        }


@dataclass(frozen=True)
class SensitivityResult:
    """Outcome of one perturbed solve relative to the baseline."""

    objective_delta: float | None
    bottleneck_impact: float | None
    infeasible: bool
    objective_value: float | None = None
    utilization: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "objectiveDelta": self.objective_delta,
            "bottleneckImpact": self.bottleneck_impact,
            "infeasible": self.infeasible,
        }
