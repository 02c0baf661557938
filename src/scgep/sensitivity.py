"""
One-at-a-time sensitivity analysis against an immutable baseline.

Every perturbation derives its own Configuration from the baseline by
copy-on-write and is solved independently, sequentially by default or in
a process pool when ``max_workers`` > 1.
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Sequence

from scgep.bottlenecks import (
    material_utilization,
    peak_utilization,
    spatial_utilization,
)
from scgep.config.settings import SolverSettings
from scgep.entities import Configuration, SensitivityResult, Solution, SolveStatus
from scgep.exceptions import AnalysisPreconditionError
from scgep.formulation import effective_intensity
from scgep.solver import solve_configuration
from scgep import utils

logger = logging.getLogger(__name__)

PERTURBATION_KINDS = ("material_supply", "land_availability", "lead_time")

DEFAULT_DELTAS = (-0.2, -0.1, 0.1, 0.2)


@dataclass(frozen=True)
class Perturbation:
    """
    A single parameter change.

    ``delta`` is fractional for ``material_supply`` and ``land_availability``
    (0.2 means +20%) and a whole number of periods for ``lead_time``.
    """

    target: str
    delta: float
    kind: str = "material_supply"

    def __post_init__(self):
        if self.kind not in PERTURBATION_KINDS:
            raise ValueError(
                f"Perturbation.kind must be one of {PERTURBATION_KINDS}, got '{self.kind}'"
            )
        if self.kind == "lead_time":
            if int(self.delta) != self.delta:
                raise ValueError(
                    f"lead_time perturbation must shift by whole periods, got {self.delta}"
                )
        elif self.delta < -1.0:
            raise ValueError(
                f"Perturbation.delta below -100% leaves negative capacity: {self.delta}"
            )

    @property
    def label(self) -> str:
        direction = "increase" if self.delta >= 0 else "decrease"
        if self.kind == "lead_time":
            return f"{self.target}_lead_time_{direction}_{abs(int(self.delta))}"
        pct = f"{abs(self.delta) * 100:g}%"
        if self.kind == "land_availability":
            return f"{self.target}_area_{direction}_{pct}"
        return f"{self.target}_{direction}_{pct}"

    def apply(self, config: Configuration) -> Configuration:
        if self.kind == "material_supply":
            return utils.with_material_supply(config, self.target, 1.0 + self.delta)
        if self.kind == "land_availability":
            return utils.with_zone_area(config, self.target, 1.0 + self.delta)
        return utils.with_lead_time(config, self.target, int(self.delta))


def as_perturbation(item: Perturbation | Sequence) -> Perturbation:
    """Accept a Perturbation or a ``(target, delta[, kind])`` tuple."""
    if isinstance(item, Perturbation):
        return item
    return Perturbation(*item)


def material_sweep(
    config: Configuration, deltas: Iterable[float] = DEFAULT_DELTAS
) -> list[Perturbation]:
    """Supply perturbations for every material at each delta."""
    return [Perturbation(m.id, d) for m in config.materials for d in deltas]


def bottleneck_metric(
    solution: Solution, config: Configuration, perturbation: Perturbation
) -> float:
    """Peak utilization of the resource a perturbation acts on."""
    if perturbation.kind == "material_supply":
        return peak_utilization(material_utilization(solution, config)[perturbation.target])
    if perturbation.kind == "land_availability":
        peaks = [
            peak_utilization(series)
            for (zid, _), series in spatial_utilization(solution, config).items()
            if zid == perturbation.target
        ]
        return max(peaks, default=0.0)
    tech = config.technology(perturbation.target)
    util = material_utilization(solution, config)
    return max(
        (peak_utilization(util[mid]) for mid in effective_intensity(config, tech)),
        default=0.0,
    )


def _evaluate(
    config: Configuration,
    perturbation: Perturbation,
    settings: SolverSettings,
    baseline_objective: float,
    baseline_metric: float,
) -> SensitivityResult:
    solution = solve_configuration(config, settings)
    if solution.status is not SolveStatus.CONVERGED:
        return SensitivityResult(
            objective_delta=None,
            bottleneck_impact=None,
            infeasible=solution.status is SolveStatus.INFEASIBLE,
            objective_value=None,
            utilization=None,
        )
    metric = bottleneck_metric(solution, config, perturbation)
    return SensitivityResult(
        objective_delta=solution.objective_value - baseline_objective,
        bottleneck_impact=metric - baseline_metric,
        infeasible=False,
        objective_value=solution.objective_value,
        utilization=metric,
    )


def run_sensitivity(
    baseline: Configuration,
    baseline_solution: Solution,
    perturbations: Iterable[Perturbation | Sequence],
    settings: SolverSettings | None = None,
    max_workers: int | None = None,
) -> dict[str, SensitivityResult]:
    """
    Solve each perturbation of ``baseline`` and report deltas.

    An infeasible baseline is accepted: its objective carries the
    unmet-demand penalty, so a perturbation that restores feasibility still
    reports a finite delta.

    Raises:
        AnalysisPreconditionError: If ``baseline_solution`` did not finish
            (iteration budget, cancellation) or belongs to another Configuration
        InvalidConfigurationError: If a perturbation names an unknown id
    """
    if baseline_solution.status in (SolveStatus.MAX_ITERATIONS, SolveStatus.CANCELLED):
        raise AnalysisPreconditionError(
            "Sensitivity needs a baseline solve that terminated "
            f"(status: {baseline_solution.status.value})"
        )
    if (
        baseline_solution.config_hash
        and baseline_solution.config_hash != utils.config_hash(baseline)
    ):
        raise AnalysisPreconditionError(
            "Baseline solution was produced for a different configuration"
        )

    settings = settings or SolverSettings()
    items = [as_perturbation(p) for p in perturbations]
    labels = [p.label for p in items]
    duplicates = sorted({label for label in labels if labels.count(label) > 1})
    if duplicates:
        raise ValueError(f"Duplicate perturbation labels: {duplicates}")

    # Derive every configuration up front so bad ids fail before any solve
    prepared = [(p, p.apply(baseline)) for p in items]
    baseline_metrics = {
        p.label: bottleneck_metric(baseline_solution, baseline, p) for p in items
    }
    objective = baseline_solution.objective_value

    results: dict[str, SensitivityResult] = {}
    if max_workers is not None and max_workers > 1 and len(prepared) > 1:
        with ProcessPoolExecutor(max_workers=max_workers) as pool:
            futures = {
                p.label: pool.submit(
                    _evaluate, config, p, settings, objective, baseline_metrics[p.label]
                )
                for p, config in prepared
            }
            for label, future in futures.items():
                results[label] = future.result()
    else:
        for p, config in prepared:
            results[p.label] = _evaluate(
                config, p, settings, objective, baseline_metrics[p.label]
            )

    for label, result in results.items():
        logger.debug(
            "%s: delta=%s impact=%s infeasible=%s",
            label,
            result.objective_delta,
            result.bottleneck_impact,
            result.infeasible,
        )
    return results
