from __future__ import annotations

import logging
from typing import Any

import pyomo.environ as pyo

from scgep.exceptions import SolverUnavailableError
from scgep.formulation import BuildKey, LinearRow, Problem

logger = logging.getLogger(__name__)

SOLVER_CANDIDATES = ["appsi_highs", "highs", "cbc", "glpk"]

# Name of the time-limit option per backend
_TIME_LIMIT_OPTION = {
    "appsi_highs": "time_limit",
    "highs": "time_limit",
    "cbc": "sec",
    "glpk": "tmlim",
}


class PyomoBuilder:
    """
    Builder for the relaxed expansion LP.

    The relaxation keeps build-rate caps, secondary-material accounting and
    a soft demand row per period; material, spatial and manufacturing rows
    are only added later through ``add_cut``. With the unmet-demand slack
    the relaxed LP is always feasible and bounded.
    """

    def __init__(self, problem: Problem):
        self.problem = problem
        self.m = pyo.ConcreteModel(name="SCGEPRelaxation")

    def build(self) -> pyo.ConcreteModel:
        """Construct and return the Pyomo model."""
        self._create_sets()
        self._create_variables()
        self._create_constraints()
        self._create_objective()
        return self.m

    def _create_sets(self):
        m = self.m
        p = self.problem

        m.T = pyo.Set(initialize=list(p.periods), ordered=True)
        m.K = pyo.Set(initialize=list(p.sites), ordered=True)
        m.B = pyo.Set(initialize=list(p.build_keys), dimen=3, ordered=True)
        m.S = pyo.Set(initialize=sorted(p.premium_costs), dimen=2, ordered=True)
        m.R_rate = pyo.Set(
            initialize=[row.key for row in p.build_rate_rows], dimen=2, ordered=True
        )

    def _create_variables(self):
        m = self.m

        m.build = pyo.Var(m.B, within=pyo.NonNegativeReals)
        m.unmet = pyo.Var(m.T, within=pyo.NonNegativeReals)
        m.secondary = pyo.Var(m.S, within=pyo.NonNegativeReals)

    def _create_constraints(self):
        self._add_build_rate_constraints()
        self._add_demand_constraints()
        self._add_secondary_constraints()
        # Lazy rows enter here one cut at a time
        self.m.cuts = pyo.ConstraintList()

    def _add_build_rate_constraints(self):
        m = self.m
        rows = {row.key: row for row in self.problem.build_rate_rows}

        def _build_rate_rule(mdl, k, t):
            return row_expression(mdl, rows[(k, t)]) <= rows[(k, t)].rhs

        m.build_rate = pyo.Constraint(m.R_rate, rule=_build_rate_rule)

    def _add_demand_constraints(self):
        m = self.m
        p = self.problem

        def _demand_rule(mdl, t):
            if p.demand[t] <= 0:
                return pyo.Constraint.Skip
            served = sum(
                p.credits[k] * mdl.build[k, s, tp]
                for k in p.sites
                if p.credits[k] > 0
                for s in p.sites[k]
                for tp in p.online_windows[(k, t)]
            )
            return served + mdl.unmet[t] >= p.demand[t]

        m.demand = pyo.Constraint(m.T, rule=_demand_rule)

    def _add_secondary_constraints(self):
        m = self.m
        p = self.problem

        # Recycled material covers whatever primary supply cannot
        def _secondary_rule(mdl, mid, t):
            consumption = sum(
                p.intensity[k][mid] * mdl.build[k, s, t]
                for k in p.sites
                if mid in p.intensity[k]
                for s in p.sites[k]
            )
            return mdl.secondary[mid, t] >= consumption - p.primary_available[(mid, t)]

        m.secondary_use = pyo.Constraint(m.S, rule=_secondary_rule)

    def _create_objective(self):
        m = self.m
        p = self.problem

        def _category(name):
            return sum(p.build_costs[v][name] * m.build[v] for v in m.B)

        m.cost_capital = pyo.Expression(expr=_category("capital"))
        m.cost_materials = pyo.Expression(expr=_category("materials"))
        m.cost_fixed_om = pyo.Expression(expr=_category("fixed_om"))
        m.cost_secondary_premium = pyo.Expression(
            expr=sum(p.premium_costs[s] * m.secondary[s] for s in m.S)
        )
        m.cost_unmet_demand_penalty = pyo.Expression(
            expr=p.unmet_penalty * sum(m.unmet[t] for t in m.T)
        )
        m.obj = pyo.Objective(
            expr=m.cost_capital
            + m.cost_materials
            + m.cost_fixed_om
            + m.cost_secondary_premium
            + m.cost_unmet_demand_penalty,
            sense=pyo.minimize,
        )


def row_expression(m: pyo.ConcreteModel, row: LinearRow):
    return sum(coef * m.build[var] for var, coef in row.terms)


def add_cut(m: pyo.ConcreteModel, row: LinearRow) -> None:
    """Enforce a previously dropped row on the relaxed model."""
    m.cuts.add(row_expression(m, row) <= row.rhs)


def select_solver(preferred: str | None = None, time_limit: float | None = None) -> Any:
    """First available Pyomo LP backend, preferring ``preferred``."""
    names = [preferred] + SOLVER_CANDIDATES if preferred else list(SOLVER_CANDIDATES)
    last_err: Exception | None = None
    for name in names:
        try:
            candidate = pyo.SolverFactory(name)
            if candidate is None or not candidate.available(exception_flag=False):
                continue
        except (RuntimeError, ImportError) as e:
            last_err = e
            continue
        option = _TIME_LIMIT_OPTION.get(name)
        if time_limit is not None and option is not None:
            candidate.options[option] = time_limit
        logger.debug("Using LP backend %s", name)
        return candidate
    raise SolverUnavailableError(
        "No LP solver available via Pyomo. Install highspy "
        f"(pip install highspy) or put cbc/glpk on PATH. Last error: {last_err}"
    )


def solve_relaxation(solver: Any, m: pyo.ConcreteModel) -> None:
    """Solve the relaxed model in place; the relaxation must solve to optimality."""
    try:
        result = solver.solve(m, load_solutions=False)
    except (RuntimeError, ValueError) as e:
        raise SolverUnavailableError(f"LP backend failed: {e}") from e
    if not pyo.check_optimal_termination(result):
        raise SolverUnavailableError(
            "Relaxed planning LP did not solve to optimality "
            f"(termination: {result.solver.termination_condition})"
        )
    m.solutions.load_from(result)


def extract_values(m: pyo.ConcreteModel) -> dict[str, dict]:
    """Current variable values, with solver round-off below zero clipped."""

    def v(x):
        val = pyo.value(x, exception=False)
        return max(0.0, float(val)) if val is not None else 0.0

    builds: dict[BuildKey, float] = {key: v(m.build[key]) for key in m.B}
    return {
        "build": builds,
        "unmet": {t: v(m.unmet[t]) for t in m.T},
        "secondary": {s: v(m.secondary[s]) for s in m.S},
        "costs": {
            "capital": v(m.cost_capital),
            "materials": v(m.cost_materials),
            "secondary_premium": v(m.cost_secondary_premium),
            "fixed_om": v(m.cost_fixed_om),
            "unmet_demand_penalty": v(m.cost_unmet_demand_penalty),
        },
        "objective": v(m.obj),
    }
