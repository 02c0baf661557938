"""
Bottleneck analysis of a solved expansion plan.

Reports material and land utilization against availability, flags rows
at or above the binding threshold and infers technology deployment
delays from lead times, material scarcity and the horizon end.
"""

from __future__ import annotations

import logging

import numpy as np

from scgep.config.settings import DEFAULT_BINDING_THRESHOLD
from scgep.entities import (
    BottleneckReport,
    Configuration,
    MaterialBottleneck,
    ReliabilityIssue,
    Solution,
    SolveStatus,
    SpatialConstraint,
    TechnologyDelay,
)
from scgep.exceptions import AnalysisPreconditionError
from scgep.formulation import (
    effective_intensity,
    effective_lead_time,
    eligible_sites,
    online_window,
)
from scgep import utils

logger = logging.getLogger(__name__)

# Lower bounds of the severity bands, checked top-down
SEVERITY_BANDS = (("critical", 0.95), ("high", 0.85), ("medium", 0.70))

_EPS = 1e-6


def severity(utilization: float) -> str:
    for name, floor in SEVERITY_BANDS:
        if utilization >= floor:
            return name
    return "low"


def _ratio(used: float, available: float) -> float:
    if available > 0:
        return used / available
    # Nothing available: any use saturates the resource
    return 1.0 if used > _EPS else 0.0


def material_utilization(
    solution: Solution, config: Configuration
) -> dict[str, np.ndarray]:
    """Per material, consumed / available for each period (index t - 1)."""
    periods = range(1, config.planning_horizon + 1)
    out = {}
    for m in config.materials:
        out[m.id] = np.array(
            [
                _ratio(
                    solution.material_use.get(t, {}).get(m.id, 0.0),
                    m.available_supply(t),
                )
                for t in periods
            ]
        )
    return out


def spatial_utilization(
    solution: Solution, config: Configuration
) -> dict[tuple[str, str], np.ndarray]:
    """Per (zone, technology), land used by online capacity / zone area."""
    periods = range(1, config.planning_horizon + 1)
    out = {}
    for k in config.technologies:
        lead = effective_lead_time(config, k)
        for zid in eligible_sites(config, k):
            if zid not in {z.id for z in config.zones}:
                continue
            area = config.zone(zid).area
            series = []
            for t in periods:
                online = sum(
                    solution.site_schedule.get(tp, {}).get(k.id, {}).get(zid, 0.0)
                    for tp in online_window(t, lead, k.lifetime)
                )
                series.append(_ratio(k.land_footprint * online, area))
            out[(zid, k.id)] = np.array(series)
    return out


def peak_utilization(series: np.ndarray) -> float:
    return float(series.max()) if series.size else 0.0


def _unit_cost(config: Configuration, tech) -> float:
    """Undiscounted build cost per unit of firm capacity."""
    materials = {m.id: m for m in config.materials}
    unit = tech.capital_cost + sum(
        qty * materials[mid].unit_cost
        for mid, qty in effective_intensity(config, tech).items()
    )
    return unit / tech.capacity_credit


def _online(solution: Solution, config: Configuration) -> dict[tuple[str, int], float]:
    online = {}
    for k in config.technologies:
        lead = effective_lead_time(config, k)
        for t in range(1, config.planning_horizon + 1):
            online[(k.id, t)] = sum(
                solution.schedule.get(tp, {}).get(k.id, 0.0)
                for tp in online_window(t, lead, k.lifetime)
            )
    return online


def _technology_delays(
    solution: Solution,
    config: Configuration,
    material_util: dict[str, np.ndarray],
    threshold: float,
) -> list[TechnologyDelay]:
    horizon = config.planning_horizon
    periods = range(1, horizon + 1)
    materials = {m.id: m for m in config.materials}
    unit_costs = {
        k.id: _unit_cost(config, k) for k in config.technologies if k.capacity_credit > 0
    }
    online = _online(solution, config)
    delays = []

    for k in config.technologies:
        commits = [t for t in periods if solution.schedule.get(t, {}).get(k.id, 0.0) > _EPS]
        if not commits:
            continue
        lead = effective_lead_time(config, k)
        intensity = effective_intensity(config, k)
        earliest_build = 1 + max(
            (materials[mid].procurement_lead_time for mid in intensity), default=0
        )
        first = commits[0]

        # Committed capacity that only commissions after the horizon
        late = [t for t in commits if t + lead > horizon]
        if late:
            delays.append(
                TechnologyDelay(
                    technology=k.id,
                    delay_periods=late[0] + lead - horizon,
                    planned_period=late[0],
                    deployed_period=late[0] + lead,
                    reason="horizon",
                )
            )

        # Committed as early as possible, yet demand before it could come
        # online went unserved or fell to costlier capacity
        if k.id in unit_costs and first == earliest_build:
            available = earliest_build + lead
            costlier = [j for j, c in unit_costs.items() if c > unit_costs[k.id] + _EPS]
            stopgap = [
                t
                for t in periods
                if t < available
                and config.scenario.demand_target(t) > _EPS
                and (
                    solution.unmet_demand.get(t, 0.0) > _EPS
                    or any(online[(j, t)] > _EPS for j in costlier)
                )
            ]
            if stopgap:
                delays.append(
                    TechnologyDelay(
                        technology=k.id,
                        delay_periods=available - stopgap[0],
                        planned_period=stopgap[0],
                        deployed_period=available,
                        reason="lead_time",
                    )
                )

        # Held back while one of its materials was binding
        if first > earliest_build:
            window = slice(earliest_build - 1, first - 1)
            binding = [
                mid
                for mid in intensity
                if np.any(material_util[mid][window] >= threshold)
            ]
            if binding:
                delays.append(
                    TechnologyDelay(
                        technology=k.id,
                        delay_periods=first - earliest_build,
                        planned_period=earliest_build + lead,
                        deployed_period=first + lead,
                        reason="material",
                    )
                )
    return delays


def reliability_issues(
    solution: Solution, config: Configuration, tolerance: float = _EPS
) -> tuple[ReliabilityIssue, ...]:
    """
    Periods whose demand target was left partly unserved.

    Has no preconditions, so it also describes the load shed by an
    infeasible candidate.
    """
    issues = []
    for t in range(1, config.planning_horizon + 1):
        unmet = solution.unmet_demand.get(t, 0.0)
        if unmet > tolerance:
            issues.append(
                ReliabilityIssue(
                    period=t,
                    unmet_demand=unmet,
                    demand=config.scenario.demand_target(t),
                )
            )
    return tuple(issues)


def analyze(
    solution: Solution,
    config: Configuration,
    binding_threshold: float = DEFAULT_BINDING_THRESHOLD,
) -> BottleneckReport:
    """
    Bottleneck report for a feasible, converged Solution of ``config``.

    Raises:
        AnalysisPreconditionError: If the solution is infeasible, did not
            converge, or was solved for a different Configuration
    """
    if not solution.feasibility or solution.status is not SolveStatus.CONVERGED:
        raise AnalysisPreconditionError(
            "Bottleneck analysis needs a feasible, converged solution "
            f"(status: {solution.status.value}, feasibility: {solution.feasibility})"
        )
    if solution.config_hash and solution.config_hash != utils.config_hash(config):
        raise AnalysisPreconditionError(
            "Solution was produced for a different configuration"
        )
    if not (0.0 < binding_threshold <= 1.0):
        raise ValueError(f"binding_threshold must be in (0, 1], got {binding_threshold}")

    material_util = material_utilization(solution, config)
    material_bottlenecks = []
    for m in config.materials:
        series = material_util[m.id]
        peak = peak_utilization(series)
        users = tuple(
            k.id for k in config.technologies if m.id in effective_intensity(config, k)
        )
        material_bottlenecks.append(
            MaterialBottleneck(
                material=m.id,
                utilization=peak,
                constraint=peak >= binding_threshold,
                periods=tuple(
                    int(i) + 1 for i in np.flatnonzero(series >= binding_threshold)
                ),
                severity=severity(peak),
                affected_technologies=users,
            )
        )

    spatial_constraints = []
    for (zid, kid), series in spatial_utilization(solution, config).items():
        peak = peak_utilization(series)
        spatial_constraints.append(
            SpatialConstraint(
                zone=zid,
                technology=kid,
                utilization=peak,
                constraint=peak >= binding_threshold,
            )
        )

    delays = _technology_delays(solution, config, material_util, binding_threshold)
    binding = [b.material for b in material_bottlenecks if b.constraint]
    logger.info(
        "Bottlenecks: %d binding material(s) %s, %d delayed technology entries",
        len(binding),
        binding,
        len(delays),
    )
    return BottleneckReport(
        material_bottlenecks=tuple(material_bottlenecks),
        spatial_constraints=tuple(spatial_constraints),
        technology_delays=tuple(delays),
        binding_threshold=binding_threshold,
        reliability_issues=reliability_issues(solution, config),
    )
