"""
Cutting-plane solver for the expansion planning Problem.

The solve loop is an explicit state machine:

    INITIALIZE -> RELAX -> SOLVE_RELAXED -> CHECK_FEASIBILITY
        -> CONVERGED | INFEASIBLE | MAX_ITERATIONS_REACHED
        -> TIGHTEN -> SOLVE_RELAXED -> ...

RELAX builds an LP without the material, spatial and manufacturing rows
and with demand softened by a priced unmet-demand slack. CHECK_FEASIBILITY
evaluates every dropped row on the candidate and TIGHTEN adds the violated
ones as cuts. Since the relaxation contains the feasible region, a
candidate that violates no row but still leaves demand unmet proves the
Problem infeasible.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable

from scgep.config.settings import SolverSettings
from scgep.entities import Configuration, Solution, SolveStatus
from scgep.formulation import LinearRow, Problem, formulate
from scgep import optimization, utils

logger = logging.getLogger(__name__)

# Rows within this fraction of their right-hand side count as tight
_TIGHT = 1e-6


class SolverState(Enum):
    INITIALIZE = "initialize"
    RELAX = "relax"
    SOLVE_RELAXED = "solve_relaxed"
    CHECK_FEASIBILITY = "check_feasibility"
    TIGHTEN = "tighten"
    CONVERGED = "converged"
    INFEASIBLE = "infeasible"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    CANCELLED = "cancelled"


_TERMINAL = {
    SolverState.CONVERGED: SolveStatus.CONVERGED,
    SolverState.INFEASIBLE: SolveStatus.INFEASIBLE,
    SolverState.MAX_ITERATIONS_REACHED: SolveStatus.MAX_ITERATIONS,
    SolverState.CANCELLED: SolveStatus.CANCELLED,
}


# =============================================================================
# Aggregate Screening
# =============================================================================


def screen_infeasibility(problem: Problem, tolerance: float) -> str | None:
    """
    Cheap necessary conditions for feasibility, checked period by period.

    Returns the failing constraint category, or None when no proof was found.
    """
    config = problem.config
    serving = [k for k in problem.sites if problem.credits[k] > 0]
    caps = {k.id: k.max_build_rate for k in config.technologies}
    materials = {m.id: m for m in config.materials}

    for t in problem.periods:
        demand = problem.demand[t]
        if demand <= tolerance * max(1.0, demand):
            continue
        windows = {
            k: [tp for tp in problem.online_windows[(k, t)] if tp >= problem.earliest_build[k]]
            for k in serving
        }
        reachable = [k for k in serving if windows[k]]
        if not reachable:
            return "lead_time"

        if all(caps[k] is not None for k in reachable):
            max_served = sum(
                problem.credits[k] * caps[k] * len(windows[k]) for k in reachable
            )
            if max_served < demand - tolerance * max(1.0, demand):
                return "build_rate"

        # Every unit of served demand needs at least the leanest material ratio
        shared = set.intersection(*(set(problem.intensity[k]) for k in reachable))
        for mid in sorted(shared):
            ratio = min(problem.intensity[k][mid] / problem.credits[k] for k in reachable)
            supply = sum(materials[mid].available_supply(s) for s in range(1, t + 1))
            if ratio * demand > supply + tolerance * max(1.0, supply):
                return "material_balance"
    return None


# =============================================================================
# State Machine
# =============================================================================


class CuttingPlaneRun:
    """One execution of the solve loop over a single Problem."""

    def __init__(
        self,
        problem: Problem,
        max_iterations: int,
        tolerance: float,
        time_limit: float | None = None,
        should_cancel: Callable[[], bool] | None = None,
        solver_name: str | None = None,
    ):
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        if tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {tolerance}")
        self.problem = problem
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.time_limit = time_limit
        self.should_cancel = should_cancel
        self.solver_name = solver_name

        self.state = SolverState.INITIALIZE
        self.iterations = 0
        self.gap = 0.0
        self.proof: str | None = None
        self.diagnostic: str | None = None
        self._added: set[tuple[str, tuple]] = set()
        self._violated: list[LinearRow] = []
        self._values: dict[str, Any] = {}
        self._model = None
        self._backend = None
        self._started = 0.0

    def run(self) -> Solution:
        self._started = time.perf_counter()
        handlers = {
            SolverState.INITIALIZE: self._initialize,
            SolverState.RELAX: self._relax,
            SolverState.SOLVE_RELAXED: self._solve_relaxed,
            SolverState.CHECK_FEASIBILITY: self._check_feasibility,
            SolverState.TIGHTEN: self._tighten,
        }
        while self.state not in _TERMINAL:
            logger.debug("iteration %d: %s", self.iterations, self.state.value)
            self.state = handlers[self.state]()

        solution = self._build_solution()
        logger.info(
            "Solve finished: %s after %d iteration(s), gap %.3g, objective %.6g",
            solution.status.value,
            solution.iterations,
            solution.convergence,
            solution.objective_value,
        )
        return solution

    # -------------------------------------------------------------------------
    # State handlers
    # -------------------------------------------------------------------------

    def _initialize(self) -> SolverState:
        self.proof = screen_infeasibility(self.problem, self.tolerance)
        if self.proof is not None:
            logger.info("Aggregate screen proves infeasibility (%s)", self.proof)
        return SolverState.RELAX

    def _relax(self) -> SolverState:
        self._backend = optimization.select_solver(self.solver_name, self.time_limit)
        self._model = optimization.PyomoBuilder(self.problem).build()
        return SolverState.SOLVE_RELAXED

    def _solve_relaxed(self) -> SolverState:
        optimization.solve_relaxation(self._backend, self._model)
        self.iterations += 1
        self._values = optimization.extract_values(self._model)
        return SolverState.CHECK_FEASIBILITY

    def _check_feasibility(self) -> SolverState:
        builds = self._values["build"]
        self._violated = []
        self.gap = 0.0
        for row in self.problem.lazy_rows:
            violation = row.violation(builds)
            if violation > self.tolerance:
                self._violated.append(row)
            self.gap = max(self.gap, violation)

        if not self._violated:
            if self._unmet_total() <= self._unmet_tolerance():
                return SolverState.CONVERGED
            self.diagnostic = self.proof or self._diagnose()
            return SolverState.INFEASIBLE

        if self.iterations >= self.max_iterations:
            return self._stop(SolverState.MAX_ITERATIONS_REACHED, None)
        if self.should_cancel is not None and self.should_cancel():
            return self._stop(SolverState.CANCELLED, "cancelled")
        if (
            self.time_limit is not None
            and time.perf_counter() - self._started >= self.time_limit
        ):
            return self._stop(SolverState.MAX_ITERATIONS_REACHED, "time_limit")
        return SolverState.TIGHTEN

    def _tighten(self) -> SolverState:
        fresh = [r for r in self._violated if (r.category, r.key) not in self._added]
        if not fresh:
            # Violated rows are already cuts: only numerical noise remains
            logger.warning("No new cuts to add; stopping with gap %.3g", self.gap)
            return self._stop(SolverState.MAX_ITERATIONS_REACHED, "stalled")
        for row in fresh:
            optimization.add_cut(self._model, row)
            self._added.add((row.category, row.key))
        logger.debug("added %d cut(s), %d total", len(fresh), len(self._added))
        return SolverState.SOLVE_RELAXED

    def _stop(self, state: SolverState, reason: str | None) -> SolverState:
        # A budget stop on a proven-infeasible problem is still a proof
        if self.proof is not None:
            self.diagnostic = self.proof
            return SolverState.INFEASIBLE
        self.diagnostic = reason
        return state

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _unmet_total(self) -> float:
        return sum(self._values["unmet"].values())

    def _unmet_tolerance(self) -> float:
        return self.tolerance * max(1.0, max(self.problem.demand.values(), default=0.0))

    def _diagnose(self) -> str:
        """First constraint category that plausibly caused unmet demand."""
        p = self.problem
        builds = self._values["build"]
        # Per-period shortfalls can each sit below the tolerance their sum exceeds
        t0 = min(t for t, u in self._values["unmet"].items() if u > 0.0)
        reachable = [
            k
            for k in p.sites
            if p.credits[k] > 0
            and any(tp >= p.earliest_build[k] for tp in p.online_windows[(k, t0)])
        ]
        if not reachable:
            return "lead_time"

        def _tight(rows, until):
            return any(
                row.key[-1] <= until and row.slack_ratio(builds) >= 1.0 - _TIGHT
                for row in rows
            )

        if _tight(p.build_rate_rows, t0):
            return "build_rate"
        by_category: dict[str, list[LinearRow]] = {}
        for row in p.lazy_rows:
            by_category.setdefault(row.category, []).append(row)
        for category in ("material_balance", "manufacturing", "spatial"):
            if _tight(by_category.get(category, []), t0):
                return category
        return "demand"

    def _period_costs(self, builds, unmet, secondary) -> dict[int, dict[str, float]]:
        """Split the objective by period into investment, operational and penalty."""
        p = self.problem
        techs = {k.id: k for k in p.config.technologies}
        rate = p.config.scenario.discount_rate
        out = {}
        for t in p.periods:
            investment = sum(
                (p.build_costs[key]["capital"] + p.build_costs[key]["materials"])
                * builds.get(key, 0.0)
                for key in p.build_keys
                if key[2] == t
            )
            fixed_om = utils.discount_factor(t, rate) * sum(
                techs[k].fixed_om_cost * p.online_capacity(builds, k, t) for k in p.sites
            )
            premium = sum(
                cost * secondary.get((mid, tp), 0.0)
                for (mid, tp), cost in p.premium_costs.items()
                if tp == t
            )
            out[t] = {
                "investment": investment,
                "operational": fixed_om + premium,
                "penalty": p.unmet_penalty * unmet.get(t, 0.0),
            }
        return out

    def _build_solution(self) -> Solution:
        p = self.problem
        values = self._values
        builds = values.get("build", {})
        status = _TERMINAL[self.state]

        schedule: dict[int, dict[str, float]] = {}
        site_schedule: dict[int, dict[str, dict[str, float]]] = {}
        commissioning: dict[int, dict[str, float]] = {t: {} for t in p.periods}
        material_use: dict[int, dict[str, float]] = {}
        for t in p.periods:
            schedule[t] = {}
            site_schedule[t] = {}
            for k, sites in p.sites.items():
                per_site = {s: builds.get((k, s, t), 0.0) for s in sites}
                site_schedule[t][k] = per_site
                schedule[t][k] = sum(per_site.values())
                online_at = t + p.lead_times[k]
                if online_at in commissioning:
                    commissioning[online_at][k] = (
                        commissioning[online_at].get(k, 0.0) + schedule[t][k]
                    )
            material_use[t] = {
                m.id: p.material_consumption(builds, m.id, t)
                for m in p.config.materials
            }
        for t in p.periods:
            for k in p.sites:
                commissioning[t].setdefault(k, 0.0)

        unmet = values.get("unmet", {})
        final = p.periods[-1]
        period_costs = self._period_costs(builds, unmet, values.get("secondary", {}))
        metrics = {
            "total_capacity_added": sum(builds.values()),
            "unmet_demand": sum(unmet.values()),
            "peak_unmet_demand": max(unmet.values(), default=0.0),
            "firm_capacity_final": p.served_demand(builds, final),
            "secondary_material_used": sum(values.get("secondary", {}).values()),
            "cuts_added": float(len(self._added)),
            "lazy_rows": float(len(p.lazy_rows)),
        }
        return Solution(
            objective_value=values.get("objective", 0.0),
            feasibility=status is SolveStatus.CONVERGED,
            solve_time=(time.perf_counter() - self._started) * 1000.0,
            iterations=self.iterations,
            convergence=self.gap,
            status=status,
            costs=dict(values.get("costs", {})),
            metrics=metrics,
            schedule=schedule,
            commissioning=commissioning,
            site_schedule=site_schedule,
            material_use=material_use,
            unmet_demand={t: unmet.get(t, 0.0) for t in p.periods},
            period_costs=period_costs,
            diagnostic=self.diagnostic,
            config_hash=p.config_hash,
        )


# =============================================================================
# Public API
# =============================================================================


def solve(
    problem: Problem,
    max_iterations: int = 50,
    tolerance: float = 1e-6,
    time_limit: float | None = None,
    should_cancel: Callable[[], bool] | None = None,
    solver_name: str | None = None,
) -> Solution:
    """
    Solve a formulated Problem.

    Always terminates within ``max_iterations`` relaxed solves. Infeasibility
    and non-convergence are reported on the returned Solution, not raised.

    Raises:
        SolverUnavailableError: If no LP backend can be used
    """
    return CuttingPlaneRun(
        problem,
        max_iterations=max_iterations,
        tolerance=tolerance,
        time_limit=time_limit,
        should_cancel=should_cancel,
        solver_name=solver_name,
    ).run()


def solve_configuration(
    config: Configuration,
    settings: SolverSettings | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> Solution:
    """Formulate and solve a Configuration in one call."""
    settings = settings or SolverSettings()
    return solve(
        formulate(config),
        max_iterations=settings.max_iterations,
        tolerance=settings.tolerance,
        time_limit=settings.time_limit,
        should_cancel=should_cancel,
        solver_name=settings.solver_name,
    )


class PlanningSolver:
    """
    Solver front-end that remembers the last solved Configuration.

    The memo is keyed on the Configuration content hash and the solve
    options, so an equal Configuration built elsewhere still hits it.
    """

    def __init__(self, settings: SolverSettings | None = None):
        self.settings = settings or SolverSettings()
        self._last: tuple[tuple, Solution] | None = None

    def _key(self, problem: Problem) -> tuple:
        s = self.settings
        return (problem.config_hash, s.max_iterations, s.tolerance, s.solver_name)

    def solve(
        self, problem: Problem, should_cancel: Callable[[], bool] | None = None
    ) -> Solution:
        key = self._key(problem)
        if self._last is not None and self._last[0] == key:
            logger.debug("Reusing memoized solution %s", problem.config_hash[:12])
            return self._last[1]
        solution = solve(
            problem,
            max_iterations=self.settings.max_iterations,
            tolerance=self.settings.tolerance,
            time_limit=self.settings.time_limit,
            should_cancel=should_cancel,
            solver_name=self.settings.solver_name,
        )
        if solution.status is not SolveStatus.CANCELLED:
            self._last = (key, solution)
        return solution

    def solve_configuration(self, config: Configuration) -> Solution:
        return self.solve(formulate(config))

    @property
    def last_solution(self) -> Solution | None:
        return None if self._last is None else self._last[1]
