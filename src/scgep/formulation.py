"""
Model formulation for supply-chain-constrained expansion planning.

Turns a Configuration into a solver-neutral Problem:

- decision variables ``build[tech, site, t]`` (capacity committed at site
  in period t) for every eligible site, with the derived
  ``online[tech, t]`` given by the lead-time and lifetime window
- constraint rows for material balance, spatial capacity, component
  manufacturing capacity and per-technology build rate
- per-variable objective coefficients split by cost category

All rows are linear in the build variables, so they can be evaluated on a
candidate without the LP backend. This is what the cutting-plane solver
relies on to check feasibility and add violated rows as cuts.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Mapping

from scgep.entities import UNSITED, Configuration, Technology
from scgep.exceptions import InvalidConfigurationError
from scgep import utils

BuildKey = tuple[str, str, int]  # (technology, site, period)

MATERIAL_CATEGORIES = ("standard", "critical", "rare_earth")
COST_CATEGORIES = (
    "capital",
    "materials",
    "secondary_premium",
    "fixed_om",
    "unmet_demand_penalty",
)

# Unmet demand must always be priced above any way of serving it
PENALTY_FLOOR_FACTOR = 100.0


@dataclass(frozen=True)
class LinearRow:
    """A single ``sum(coef * build) <= rhs`` row."""

    category: str
    key: tuple
    terms: tuple[tuple[BuildKey, float], ...]
    rhs: float

    def lhs(self, values: Mapping[BuildKey, float]) -> float:
        return sum(coef * values.get(var, 0.0) for var, coef in self.terms)

    def violation(self, values: Mapping[BuildKey, float]) -> float:
        """Relative violation of the row on a candidate (0 when satisfied)."""
        excess = self.lhs(values) - self.rhs
        if excess <= 0:
            return 0.0
        return excess / max(1.0, abs(self.rhs))

    def slack_ratio(self, values: Mapping[BuildKey, float]) -> float:
        """lhs / rhs, with empty capacity reported as fully used when touched."""
        lhs = self.lhs(values)
        if self.rhs > 0:
            return lhs / self.rhs
        return 1.0 if lhs > 0 else 0.0


@dataclass(frozen=True)
class Problem:
    """Formulated planning problem; never mutated by the solver."""

    config: Configuration
    config_hash: str
    periods: tuple[int, ...]
    sites: dict[str, tuple[str, ...]]
    build_keys: tuple[BuildKey, ...]
    lead_times: dict[str, int]  # effective, incl. component manufacturing
    earliest_build: dict[str, int]
    online_windows: dict[tuple[str, int], tuple[int, ...]]
    intensity: dict[str, dict[str, float]]  # effective material intensity
    demand: dict[int, float]
    build_costs: dict[BuildKey, dict[str, float]]
    primary_available: dict[tuple[str, int], float]
    premium_costs: dict[tuple[str, int], float]
    unmet_penalty: float
    build_rate_rows: tuple[LinearRow, ...]
    lazy_rows: tuple[LinearRow, ...]
    credits: dict[str, float] = field(default_factory=dict)

    @property
    def horizon(self) -> int:
        return len(self.periods)

    def online_capacity(
        self, values: Mapping[BuildKey, float], tech_id: str, t: int, site: str | None = None
    ) -> float:
        """Capacity of a technology available in period t on a candidate."""
        sites = self.sites[tech_id] if site is None else (site,)
        return sum(
            values.get((tech_id, s, tp), 0.0)
            for s in sites
            for tp in self.online_windows[(tech_id, t)]
        )

    def served_demand(self, values: Mapping[BuildKey, float], t: int) -> float:
        return sum(
            self.credits[k] * self.online_capacity(values, k, t) for k in self.sites
        )

    def material_consumption(
        self, values: Mapping[BuildKey, float], material_id: str, t: int
    ) -> float:
        total = 0.0
        for k, sites in self.sites.items():
            coef = self.intensity[k].get(material_id, 0.0)
            if coef:
                total += coef * sum(values.get((k, s, t), 0.0) for s in sites)
        return total


# =============================================================================
# Validation
# =============================================================================


def _check_non_negative(path: str, value: float | int | None) -> None:
    if value is None:
        return
    # NaN fails the comparison as well
    if not value >= 0 or math.isinf(value):
        raise InvalidConfigurationError(
            f"{path} must be a finite non-negative number, got {value}"
        )


def _check_unique(kind: str, ids: list[str]) -> None:
    seen = set()
    for item_id in ids:
        if item_id in seen:
            raise InvalidConfigurationError(f"Duplicate {kind} id: '{item_id}'")
        seen.add(item_id)


def validate_configuration(config: Configuration) -> None:
    """
    Check ranges and id references of a Configuration.

    Raises:
        InvalidConfigurationError: On the first problem found
    """
    horizon = config.planning_horizon
    if isinstance(horizon, bool) or not isinstance(horizon, int) or horizon <= 0:
        raise InvalidConfigurationError(
            f"planning_horizon must be a positive integer, got {horizon!r}"
        )

    material_ids = [m.id for m in config.materials]
    component_ids = [c.id for c in config.components]
    tech_ids = [k.id for k in config.technologies]
    zone_ids = [z.id for z in config.zones]
    _check_unique("material", material_ids)
    _check_unique("component", component_ids)
    _check_unique("technology", tech_ids)
    _check_unique("zone", zone_ids)

    for m in config.materials:
        prefix = f"materials[{m.id}]"
        _check_non_negative(f"{prefix}.primary_supply", m.primary_supply)
        _check_non_negative(f"{prefix}.secondary_supply", m.secondary_supply)
        _check_non_negative(f"{prefix}.unit_cost", m.unit_cost)
        _check_non_negative(f"{prefix}.secondary_premium", m.secondary_premium)
        _check_non_negative(f"{prefix}.procurement_lead_time", m.procurement_lead_time)
        if not (0.0 < m.sector_share <= 1.0):
            raise InvalidConfigurationError(
                f"{prefix}.sector_share must be in (0, 1], got {m.sector_share}"
            )
        if m.category not in MATERIAL_CATEGORIES:
            raise InvalidConfigurationError(
                f"{prefix}.category must be one of {MATERIAL_CATEGORIES}, got '{m.category}'"
            )

    for c in config.components:
        prefix = f"components[{c.id}]"
        _check_non_negative(f"{prefix}.production_capacity", c.production_capacity)
        _check_non_negative(f"{prefix}.lead_time", c.lead_time)
        for mid, qty in c.material_intensity.items():
            if mid not in material_ids:
                raise InvalidConfigurationError(
                    f"{prefix} references unknown material '{mid}'"
                )
            _check_non_negative(f"{prefix}.material_intensity[{mid}]", qty)

    for k in config.technologies:
        prefix = f"technologies[{k.id}]"
        _check_non_negative(f"{prefix}.capital_cost", k.capital_cost)
        _check_non_negative(f"{prefix}.land_footprint", k.land_footprint)
        _check_non_negative(f"{prefix}.lead_time", k.lead_time)
        _check_non_negative(f"{prefix}.max_build_rate", k.max_build_rate)
        _check_non_negative(f"{prefix}.capacity_credit", k.capacity_credit)
        _check_non_negative(f"{prefix}.fixed_om_cost", k.fixed_om_cost)
        if k.lifetime is not None and k.lifetime < 1:
            raise InvalidConfigurationError(
                f"{prefix}.lifetime must be at least 1, got {k.lifetime}"
            )
        for mid, qty in k.material_intensity.items():
            if mid not in material_ids:
                raise InvalidConfigurationError(
                    f"{prefix} references unknown material '{mid}'"
                )
            _check_non_negative(f"{prefix}.material_intensity[{mid}]", qty)
        for cid, qty in k.component_intensity.items():
            if cid not in component_ids:
                raise InvalidConfigurationError(
                    f"{prefix} references unknown component '{cid}'"
                )
            _check_non_negative(f"{prefix}.component_intensity[{cid}]", qty)
        for zid in k.zones:
            if zid not in zone_ids:
                raise InvalidConfigurationError(
                    f"{prefix} references unknown zone '{zid}'"
                )

    for z in config.zones:
        _check_non_negative(f"zones[{z.id}].area", z.area)
        for kid in z.technologies:
            if kid not in tech_ids:
                raise InvalidConfigurationError(
                    f"zones[{z.id}] references unknown technology '{kid}'"
                )

    sc = config.scenario
    if sc.demand and len(sc.demand) < horizon:
        raise InvalidConfigurationError(
            f"scenario.demand has {len(sc.demand)} entries for a horizon of {horizon}"
        )
    for i, d in enumerate(sc.demand):
        _check_non_negative(f"scenario.demand[{i}]", d)
    _check_non_negative("scenario.base_demand", sc.base_demand)
    _check_non_negative("scenario.reserve_margin", sc.reserve_margin)
    _check_non_negative("scenario.existing_capacity", sc.existing_capacity)
    _check_non_negative("scenario.discount_rate", sc.discount_rate)
    _check_non_negative("scenario.unmet_demand_penalty", sc.unmet_demand_penalty)
    if not sc.demand_growth > -1.0:
        raise InvalidConfigurationError(
            f"scenario.demand_growth must be greater than -1, got {sc.demand_growth}"
        )


# =============================================================================
# Formulation
# =============================================================================


def eligible_sites(config: Configuration, tech: Technology) -> tuple[str, ...]:
    """Zones a technology may be built in, or the unsited marker."""
    zones = [
        z.id for z in config.zones if z.id in tech.zones or tech.id in z.technologies
    ]
    return tuple(zones) if zones else (UNSITED,)


def effective_intensity(config: Configuration, tech: Technology) -> dict[str, float]:
    """Direct material use plus material embodied in components."""
    intensity: dict[str, float] = defaultdict(float)
    for mid, qty in tech.material_intensity.items():
        intensity[mid] += qty
    components = {c.id: c for c in config.components}
    for cid, qty in tech.component_intensity.items():
        for mid, per_unit in components[cid].material_intensity.items():
            intensity[mid] += qty * per_unit
    return {mid: q for mid, q in intensity.items() if q > 0}


def effective_lead_time(config: Configuration, tech: Technology) -> int:
    components = {c.id: c for c in config.components}
    extra = max(
        (components[cid].lead_time for cid, q in tech.component_intensity.items() if q > 0),
        default=0,
    )
    return tech.lead_time + extra


def online_window(t: int, lead: int, lifetime: int | None) -> tuple[int, ...]:
    """Build periods t' whose capacity is online in period t."""
    last = t - lead
    first = 1 if lifetime is None else max(1, t - lead - lifetime + 1)
    return tuple(range(first, last + 1))


def formulate(config: Configuration) -> Problem:
    """
    Build the planning Problem for a Configuration.

    Pure function: the Configuration is only read.

    Raises:
        InvalidConfigurationError: If the Configuration is malformed
    """
    validate_configuration(config)

    horizon = config.planning_horizon
    periods = tuple(range(1, horizon + 1))
    rate = config.scenario.discount_rate
    disc = {t: utils.discount_factor(t, rate) for t in periods}
    materials = {m.id: m for m in config.materials}

    sites: dict[str, tuple[str, ...]] = {}
    lead_times: dict[str, int] = {}
    earliest_build: dict[str, int] = {}
    intensity: dict[str, dict[str, float]] = {}
    credits: dict[str, float] = {}
    online_windows: dict[tuple[str, int], tuple[int, ...]] = {}

    for k in config.technologies:
        sites[k.id] = eligible_sites(config, k)
        lead_times[k.id] = effective_lead_time(config, k)
        intensity[k.id] = effective_intensity(config, k)
        credits[k.id] = k.capacity_credit
        procurement = max(
            (materials[mid].procurement_lead_time for mid in intensity[k.id]),
            default=0,
        )
        earliest_build[k.id] = 1 + procurement
        for t in periods:
            online_windows[(k.id, t)] = online_window(t, lead_times[k.id], k.lifetime)

    build_keys = tuple(
        (k.id, s, t) for k in config.technologies for s in sites[k.id] for t in periods
    )

    # Objective coefficients
    build_costs: dict[BuildKey, dict[str, float]] = {}
    for k in config.technologies:
        material_cost = sum(
            qty * materials[mid].unit_cost for mid, qty in intensity[k.id].items()
        )
        for t in periods:
            om_periods = [
                s for s in periods if t in online_windows[(k.id, s)]
            ]
            coeffs = {
                "capital": k.capital_cost * disc[t],
                "materials": material_cost * disc[t],
                "fixed_om": k.fixed_om_cost * sum(disc[s] for s in om_periods),
            }
            for s in sites[k.id]:
                build_costs[(k.id, s, t)] = coeffs

    primary_available = {
        (m.id, t): m.primary_supply_at(t) for m in config.materials for t in periods
    }
    premium_costs = {
        (m.id, t): m.secondary_premium * disc[t]
        for m in config.materials
        for t in periods
        if any(m.id in intensity[k] for k in intensity)
    }

    demand = {t: config.scenario.demand_target(t) for t in periods}

    return Problem(
        config=config,
        config_hash=utils.config_hash(config),
        periods=periods,
        sites=sites,
        build_keys=build_keys,
        lead_times=lead_times,
        earliest_build=earliest_build,
        online_windows=online_windows,
        intensity=intensity,
        demand=demand,
        build_costs=build_costs,
        primary_available=primary_available,
        premium_costs=premium_costs,
        unmet_penalty=_unmet_penalty(config, intensity),
        build_rate_rows=_build_rate_rows(config, sites, periods),
        lazy_rows=(
            _material_rows(config, sites, intensity, periods)
            + _spatial_rows(config, sites, online_windows, periods)
            + _manufacturing_rows(config, sites, periods)
        ),
        credits=credits,
    )


def _unmet_penalty(config: Configuration, intensity: dict[str, dict[str, float]]) -> float:
    materials = {m.id: m for m in config.materials}
    horizon = config.planning_horizon
    worst = 0.0
    for k in config.technologies:
        if k.capacity_credit <= 0:
            continue
        unit = (
            k.capital_cost
            + k.fixed_om_cost * horizon
            + sum(
                qty * (materials[mid].unit_cost + materials[mid].secondary_premium)
                for mid, qty in intensity[k.id].items()
            )
        )
        worst = max(worst, unit / k.capacity_credit)
    floor = max(1.0, PENALTY_FLOOR_FACTOR * worst)
    voll = config.scenario.unmet_demand_penalty or 0.0
    return max(voll, floor)


def _build_rate_rows(config, sites, periods) -> tuple[LinearRow, ...]:
    rows = []
    for k in config.technologies:
        if k.max_build_rate is None:
            continue
        for t in periods:
            rows.append(
                LinearRow(
                    category="build_rate",
                    key=(k.id, t),
                    terms=tuple(((k.id, s, t), 1.0) for s in sites[k.id]),
                    rhs=float(k.max_build_rate),
                )
            )
    return tuple(rows)


def _material_rows(config, sites, intensity, periods) -> tuple[LinearRow, ...]:
    rows = []
    for m in config.materials:
        users = [k for k in sites if intensity[k].get(m.id, 0.0) > 0]
        if not users:
            continue
        for t in periods:
            terms = tuple(
                ((k, s, t), intensity[k][m.id]) for k in users for s in sites[k]
            )
            rows.append(
                LinearRow(
                    category="material_balance",
                    key=(m.id, t),
                    terms=terms,
                    rhs=m.available_supply(t),
                )
            )
    return tuple(rows)


def _spatial_rows(config, sites, online_windows, periods) -> tuple[LinearRow, ...]:
    footprints = {k.id: k.land_footprint for k in config.technologies}
    rows = []
    for z in config.zones:
        techs = [k for k in sites if z.id in sites[k] and footprints[k] > 0]
        if not techs:
            continue
        for t in periods:
            terms = tuple(
                ((k, z.id, tp), footprints[k])
                for k in techs
                for tp in online_windows[(k, t)]
            )
            if terms:
                rows.append(
                    LinearRow(category="spatial", key=(z.id, t), terms=terms, rhs=z.area)
                )
    return tuple(rows)


def _manufacturing_rows(config, sites, periods) -> tuple[LinearRow, ...]:
    rows = []
    for c in config.components:
        if c.production_capacity is None:
            continue
        users = [
            k for k in config.technologies if k.component_intensity.get(c.id, 0.0) > 0
        ]
        if not users:
            continue
        for t in periods:
            terms = tuple(
                ((k.id, s, t), k.component_intensity[c.id])
                for k in users
                for s in sites[k.id]
            )
            rows.append(
                LinearRow(
                    category="manufacturing",
                    key=(c.id, t),
                    terms=terms,
                    rhs=float(c.production_capacity),
                )
            )
    return tuple(rows)
