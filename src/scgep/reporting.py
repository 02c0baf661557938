from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping

import pandas as pd

from scgep.bottlenecks import material_utilization, reliability_issues
from scgep.entities import (
    BottleneckReport,
    Configuration,
    SensitivityResult,
    Solution,
)
from scgep.formulation import COST_CATEGORIES
from scgep import utils


def export_solution_report(
    solution: Solution,
    config: Configuration,
    output_path: Path | str,
    report: BottleneckReport | None = None,
    start_year: int | None = None,
    risky_materials: Iterable[str] = (),
) -> dict[str, Any]:
    """
    Export a solved plan.

    Writes:
      - solution_report.json (solution payload, bottlenecks, recommendations)
      - build_schedule.csv (per period, technology and site)
      - material_utilization.csv (per period and material)
      - period_summary.csv (per period demand, shortfall and costs)
    """
    output_path = Path(output_path)
    output_path.mkdir(parents=True, exist_ok=True)

    payload = build_solution_report(solution, config, report, risky_materials)
    (output_path / "solution_report.json").write_text(json.dumps(payload, indent=2))

    schedule_frame(solution, config, start_year).to_csv(
        output_path / "build_schedule.csv", index=False
    )
    utilization_frame(solution, config, start_year).to_csv(
        output_path / "material_utilization.csv", index=False
    )
    period_frame(solution, config, start_year).to_csv(
        output_path / "period_summary.csv", index=False
    )
    return payload


def build_solution_report(
    solution: Solution,
    config: Configuration,
    report: BottleneckReport | None = None,
    risky_materials: Iterable[str] = (),
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "scenario": config.scenario.name,
        "planningHorizon": config.planning_horizon,
        "configHash": solution.config_hash,
        "solution": solution.to_dict(),
        "costShares": _cost_shares(solution),
        "reliabilityIssues": [
            r.to_dict() for r in reliability_issues(solution, config)
        ],
    }
    if report is not None:
        payload["bottlenecks"] = report.to_dict()
        payload["recommendations"] = build_recommendations(report, risky_materials)
    return payload


def _cost_shares(solution: Solution) -> dict[str, float]:
    total = sum(solution.costs.get(c, 0.0) for c in COST_CATEGORIES)
    if total <= 0:
        return {c: 0.0 for c in COST_CATEGORIES}
    return {c: solution.costs.get(c, 0.0) / total for c in COST_CATEGORIES}


def schedule_frame(
    solution: Solution, config: Configuration, start_year: int | None = None
) -> pd.DataFrame:
    """Long-format build schedule: one row per period, technology and site."""
    rows = []
    for t, per_tech in sorted(solution.site_schedule.items()):
        for tech_id, per_site in per_tech.items():
            for site, capacity in per_site.items():
                rows.append(
                    {
                        "period": t,
                        "year": (
                            None
                            if start_year is None
                            else utils.get_year_for_t(t, start_year)
                        ),
                        "technology": tech_id,
                        "site": site,
                        "capacity_committed": capacity,
                        "capacity_commissioned": solution.commissioning.get(t, {}).get(
                            tech_id, 0.0
                        ),
                    }
                )
    frame = pd.DataFrame(
        rows,
        columns=[
            "period",
            "year",
            "technology",
            "site",
            "capacity_committed",
            "capacity_commissioned",
        ],
    )
    if start_year is None:
        frame = frame.drop(columns=["year"])
    return frame


def utilization_frame(
    solution: Solution, config: Configuration, start_year: int | None = None
) -> pd.DataFrame:
    util = material_utilization(solution, config)
    rows = []
    for m in config.materials:
        for i, ratio in enumerate(util[m.id]):
            t = i + 1
            row = {
                "period": t,
                "material": m.id,
                "category": m.category,
                "consumed": solution.material_use.get(t, {}).get(m.id, 0.0),
                "available": m.available_supply(t),
                "utilization": float(ratio),
            }
            if start_year is not None:
                row["year"] = utils.get_year_for_t(t, start_year)
            rows.append(row)
    return pd.DataFrame(rows)


def period_frame(
    solution: Solution, config: Configuration, start_year: int | None = None
) -> pd.DataFrame:
    """Per period demand target, unmet demand and discounted cost split."""
    rows = []
    for t in range(1, config.planning_horizon + 1):
        costs = solution.period_costs.get(t, {})
        row = {
            "period": t,
            "demand": config.scenario.demand_target(t),
            "unmet_demand": solution.unmet_demand.get(t, 0.0),
            "investment": costs.get("investment", 0.0),
            "operational": costs.get("operational", 0.0),
            "penalty": costs.get("penalty", 0.0),
        }
        if start_year is not None:
            row["year"] = utils.get_year_for_t(t, start_year)
        rows.append(row)
    return pd.DataFrame(rows)


def export_sensitivity_table(
    results: Mapping[str, SensitivityResult], output_path: Path | str
) -> pd.DataFrame:
    """Write sensitivity.csv and return the table sorted by objective impact."""
    output_path = Path(output_path)
    output_path.mkdir(parents=True, exist_ok=True)
    frame = sensitivity_frame(results)
    frame.to_csv(output_path / "sensitivity.csv", index=False)
    return frame


def sensitivity_frame(results: Mapping[str, SensitivityResult]) -> pd.DataFrame:
    frame = pd.DataFrame(
        [
            {
                "perturbation": label,
                "objective_delta": r.objective_delta,
                "bottleneck_impact": r.bottleneck_impact,
                "utilization": r.utilization,
                "infeasible": r.infeasible,
            }
            for label, r in results.items()
        ],
        columns=[
            "perturbation",
            "objective_delta",
            "bottleneck_impact",
            "utilization",
            "infeasible",
        ],
    )
    if frame.empty:
        return frame
    order = (
        pd.to_numeric(frame["objective_delta"], errors="coerce")
        .abs()
        .sort_values(ascending=False, na_position="first")
    )
    return frame.loc[order.index].reset_index(drop=True)


def export_comparison_report(
    comparison: Mapping[str, Any], output_path: Path | str
) -> pd.DataFrame:
    """Write scenario_comparison.json/.csv from ``compare_scenarios`` output."""
    output_path = Path(output_path)
    output_path.mkdir(parents=True, exist_ok=True)
    (output_path / "scenario_comparison.json").write_text(
        json.dumps(comparison, indent=2)
    )
    frame = pd.DataFrame(
        [
            {"scenario": name, **{k: v for k, v in s.items() if k != "technology_mix"}}
            for name, s in comparison["scenarios"].items()
        ]
    )
    frame.to_csv(output_path / "scenario_comparison.csv", index=False)
    return frame


def build_recommendations(
    report: BottleneckReport, risky_materials: Iterable[str] = ()
) -> list[dict[str, Any]]:
    """Rule-based follow-up actions for a bottleneck report."""
    recommendations = []

    binding = [b.material for b in report.material_bottlenecks if b.constraint]
    risky = [m for m in risky_materials if m not in binding]
    if binding or risky:
        described = binding + [f"{m} (market risk)" for m in risky]
        recommendations.append(
            {
                "type": "material_diversification",
                "priority": "high" if binding else "medium",
                "title": "Material Supply Diversification",
                "description": f"Supply bottlenecks in {', '.join(described)}",
                "actions": [
                    "Establish alternative supply sources",
                    "Increase recycling rates",
                    "Invest in material substitution technologies",
                    "Build strategic material reserves",
                ],
            }
        )

    land = [s for s in report.spatial_constraints if s.constraint]
    if land:
        recommendations.append(
            {
                "type": "spatial_optimization",
                "priority": "medium",
                "title": "Land Use Optimization",
                "description": "Land constraints in "
                + ", ".join(f"{s.zone} ({s.technology})" for s in land),
                "actions": [
                    "Optimize technology mix for land efficiency",
                    "Consider offshore alternatives",
                    "Explore shared infrastructure options",
                ],
            }
        )

    if report.technology_delays:
        delayed = sorted({d.technology for d in report.technology_delays})
        recommendations.append(
            {
                "type": "lead_time_management",
                "priority": "high",
                "title": "Lead Time Management",
                "description": f"Deployment delays for {', '.join(delayed)}",
                "actions": [
                    "Pre-order critical components",
                    "Establish local manufacturing partnerships",
                    "Implement modular deployment strategies",
                ],
            }
        )
    return recommendations
