"""Scenario variants and cross-scenario comparison."""

from __future__ import annotations

import logging
from typing import Any, Iterable

import numpy as np

from scgep.bottlenecks import analyze, material_utilization, reliability_issues
from scgep.config.settings import ScenarioType, SolverSettings
from scgep.entities import Configuration, Solution
from scgep.formulation import effective_lead_time, formulate, online_window
from scgep.solver import solve
from scgep import utils

logger = logging.getLogger(__name__)

LOW_DEMAND_FACTOR = 0.9
HIGH_DEMAND_FACTOR = 1.1

# Stand-in for "no limit" that still passes range validation
UNLIMITED_SUPPLY = 1.0e12
LAND_RELIEF_FACTOR = 3.0

LIMITED_SUPPLY_FACTORS = {"rare_earth": 0.5, "critical": 0.7}

# Utilization counted as a material-constrained period in comparisons
CONSTRAINED_UTILIZATION = 0.85


def _scale_demand(config: Configuration, factor: float, name: str) -> Configuration:
    sc = config.scenario
    changes: dict[str, Any] = {"name": name}
    if sc.demand:
        changes["demand"] = tuple(d * factor for d in sc.demand)
    else:
        changes["base_demand"] = sc.base_demand * factor
    return utils.merge_overrides(config, {"scenario": changes})


def apply_scenario(config: Configuration, scenario: ScenarioType) -> Configuration:
    """Derive the Configuration of a scenario variant from a base case."""
    if scenario is ScenarioType.BASELINE:
        return config
    if scenario is ScenarioType.LOW_DEMAND:
        return _scale_demand(config, LOW_DEMAND_FACTOR, scenario.value)
    if scenario is ScenarioType.HIGH_DEMAND:
        return _scale_demand(config, HIGH_DEMAND_FACTOR, scenario.value)

    if scenario is ScenarioType.WITHOUT_SUPPLY_CHAIN:
        overrides = {
            "materials": {
                m.id: {"primary_supply": UNLIMITED_SUPPLY, "procurement_lead_time": 0}
                for m in config.materials
            },
            "components": {
                c.id: {"production_capacity": None, "lead_time": 0}
                for c in config.components
            },
            "technologies": {k.id: {"lead_time": 0} for k in config.technologies},
            "zones": {z.id: {"area": z.area * LAND_RELIEF_FACTOR} for z in config.zones},
            "scenario": {"name": scenario.value},
        }
        return utils.merge_overrides(config, overrides)

    if scenario is ScenarioType.LIMITED_SUPPLY_CHAIN:
        overrides = {
            "materials": {
                m.id: {
                    "primary_supply": m.primary_supply
                    * LIMITED_SUPPLY_FACTORS[m.category]
                }
                for m in config.materials
                if m.category in LIMITED_SUPPLY_FACTORS
            },
            "scenario": {"name": scenario.value},
        }
        return utils.merge_overrides(config, overrides)

    raise ValueError(f"Unsupported scenario: {scenario}")


def _summarize(solution: Solution, config: Configuration, settings: SolverSettings) -> dict[str, Any]:
    costs = solution.costs
    final = config.planning_horizon
    mix = {
        k.id: sum(
            solution.schedule[tp][k.id]
            for tp in online_window(final, effective_lead_time(config, k), k.lifetime)
        )
        for k in config.technologies
    }
    util = material_utilization(solution, config)
    constrained = int(
        sum(np.count_nonzero(series > CONSTRAINED_UTILIZATION) for series in util.values())
    )
    delays = 0
    if solution.feasibility:
        report = analyze(solution, config, settings.binding_threshold)
        delays = sum(d.delay_periods for d in report.technology_delays)
    return {
        "status": solution.status.value,
        "feasibility": solution.feasibility,
        "objective_value": solution.objective_value,
        "total_investment": costs.get("capital", 0.0)
        + costs.get("materials", 0.0)
        + costs.get("secondary_premium", 0.0),
        "total_operational_cost": costs.get("fixed_om", 0.0),
        "total_penalty_cost": costs.get("unmet_demand_penalty", 0.0),
        "unmet_demand": solution.metrics.get("unmet_demand", 0.0),
        "shortfall_periods": [
            issue.period for issue in reliability_issues(solution, config)
        ],
        "technology_mix": mix,
        "material_constrained_periods": constrained,
        "deployment_delay_periods": delays,
    }


def compare_scenarios(
    config: Configuration,
    scenarios: Iterable[ScenarioType] | None = None,
    settings: SolverSettings | None = None,
) -> dict[str, Any]:
    """
    Solve each scenario variant of ``config`` and compare the results.

    Returns a mapping with ``scenarios`` (per-scenario summary keyed by
    scenario value) and ``insights`` (short text findings).
    """
    settings = settings or SolverSettings()
    scenarios = list(scenarios) if scenarios is not None else list(ScenarioType)
    summaries: dict[str, dict[str, Any]] = {}
    for scenario in scenarios:
        variant = apply_scenario(config, scenario)
        logger.info("Solving scenario %s", scenario.value)
        solution = solve(
            formulate(variant),
            max_iterations=settings.max_iterations,
            tolerance=settings.tolerance,
            time_limit=settings.time_limit,
            solver_name=settings.solver_name,
        )
        summaries[scenario.value] = _summarize(solution, variant, settings)
    return {
        "scenarios": summaries,
        "insights": _insights(summaries, config.planning_horizon),
    }


def _insights(summaries: dict[str, dict[str, Any]], horizon: int) -> list[str]:
    if not summaries:
        return []
    investment = {name: s["total_investment"] for name, s in summaries.items()}
    constrained = {name: s["material_constrained_periods"] for name, s in summaries.items()}
    insights = [
        f"Compared {len(summaries)} scenario(s) over a {horizon}-period planning horizon",
        f"Total investment ranges from {min(investment.values()):,.0f} "
        f"to {max(investment.values()):,.0f}",
    ]
    worst = max(constrained, key=constrained.get)
    if constrained[worst] > 0:
        insights.append(
            f"Material constraints are most severe in the {worst} scenario "
            f"({constrained[worst]} constrained material-periods)"
        )
    infeasible = [name for name, s in summaries.items() if not s["feasibility"]]
    if infeasible:
        insights.append(
            f"Demand cannot be fully served in: {', '.join(infeasible)}"
        )
    for name in infeasible:
        periods = summaries[name].get("shortfall_periods")
        if periods:
            insights.append(
                f"{name}: load is shed from period {periods[0]} "
                f"in {len(periods)} of {horizon} period(s)"
            )
    base = summaries.get(ScenarioType.BASELINE.value)
    limited = summaries.get(ScenarioType.LIMITED_SUPPLY_CHAIN.value)
    if base and limited and base["objective_value"] > 0:
        change = limited["objective_value"] / base["objective_value"] - 1.0
        insights.append(
            f"Limited supply chain changes total cost by {change:+.1%} versus baseline"
        )
    return insights
