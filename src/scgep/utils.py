from __future__ import annotations

import copy
import dataclasses
import hashlib
import json
import sys
from pathlib import Path
from typing import Any, Iterator

import yaml

from scgep.config.settings import SolverSettings
from scgep.entities import (
    Component,
    Configuration,
    Material,
    Scenario,
    Technology,
    Zone,
)
from scgep.exceptions import InvalidConfigurationError

# =============================================================================
# Constants
# =============================================================================

REQUIRED_CONSTANT_SECTIONS = [
    "planning",
    "scenario",
    "materials",
    "technologies",
    "zones",
]

REQUIRED_MATERIAL_KEYS = ["id", "primary_supply", "unit_cost"]
REQUIRED_TECHNOLOGY_KEYS = ["id", "capital_cost"]
REQUIRED_ZONE_KEYS = ["id", "area"]
REQUIRED_COMPONENT_KEYS = ["id"]


# =============================================================================
# Config Tracker Classes
# =============================================================================


class ConfigTracker(dict):
    """
    Dictionary view over YAML data that remembers which keys were read.
    Inherits from dict to pass isinstance checks.
    """

    def __init__(self, data: dict[str, Any], path: str = ""):
        super().__init__(data)
        self._path = path
        self._accessed: set[Any] = set()
        self._children: dict[Any, ConfigTracker | ListTracker] = {}

    def __getitem__(self, key: Any) -> Any:
        self._accessed.add(key)
        if key in self._children:
            return self._children[key]
        return self._wrap(key, super().__getitem__(key))

    def get(self, key: Any, default: Any = None) -> Any:
        self._accessed.add(key)
        if key in self:
            return self[key]
        return default

    def items(self):
        for k in self:
            yield k, self[k]

    def values(self):
        for k in self:
            yield self[k]

    def _wrap(self, key: Any, val: Any) -> Any:
        child_path = f"{self._path}.{key}" if self._path else str(key)
        if isinstance(val, dict):
            self._children[key] = ConfigTracker(val, child_path)
            return self._children[key]
        if isinstance(val, list):
            self._children[key] = ListTracker(val, child_path)
            return self._children[key]
        return val

    def unused_keys(self) -> list[str]:
        """Dotted paths of keys that were never read."""
        unused = []
        for k in self:
            if k not in self._accessed:
                unused.append(f"{self._path}.{k}" if self._path else str(k))
            elif k in self._children:
                unused.extend(self._children[k].unused_keys())
        return sorted(unused)

    def report_unused(self, out_stream=sys.stdout) -> None:
        """Print unused parameters to the output stream."""
        unused = self.unused_keys()
        if not unused:
            return
        bar = "=" * 60
        out_stream.write(f"\n{bar}\n")
        out_stream.write(
            "WARNING: The following configuration parameters were NOT used:\n"
        )
        out_stream.write(f"{bar}\n")
        for path in unused:
            out_stream.write(f"  - {path}\n")
        out_stream.write(f"{bar}\n")


class ListTracker(list):
    """List counterpart of ConfigTracker; tracks nested containers only."""

    def __init__(self, data: list, path: str):
        super().__init__(data)
        self._path = path
        self._children: dict[int, ConfigTracker | ListTracker] = {}

    def __getitem__(self, index: int | slice) -> Any:
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(self)))]
        if index < 0:
            index += len(self)
        if index in self._children:
            return self._children[index]
        val = super().__getitem__(index)
        child_path = f"{self._path}[{index}]"
        if isinstance(val, dict):
            self._children[index] = ConfigTracker(val, child_path)
            return self._children[index]
        if isinstance(val, list):
            self._children[index] = ListTracker(val, child_path)
            return self._children[index]
        return val

    def __iter__(self) -> Iterator[Any]:
        for i in range(len(self)):
            yield self[i]

    def unused_keys(self) -> list[str]:
        unused = []
        for tracker in self._children.values():
            unused.extend(tracker.unused_keys())
        return unused


# =============================================================================
# Loading & Validation
# =============================================================================


def load_constants_from_file(path: Path | str) -> ConfigTracker:
    """Load constants from YAML file and wrap with tracker."""
    path = Path(path)
    if not path.exists():
        # Try relative to the config package
        path = Path(__file__).parent / "config" / path
    if not path.exists():
        raise FileNotFoundError(f"Constants file not found: {path}")
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        raise InvalidConfigurationError(f"Constants file is empty: {path}")
    if not isinstance(data, dict):
        raise InvalidConfigurationError(
            f"Constants file must contain a mapping at top level: {path}"
        )
    return ConfigTracker(data)


def _require_keys(section: str, entries: Any, keys: list[str]) -> None:
    if not isinstance(entries, list):
        raise InvalidConfigurationError(
            f"constants.yaml {section} must be a list, got {type(entries).__name__}"
        )
    for i, entry in enumerate(entries):
        for key in keys:
            if key not in entry:
                raise InvalidConfigurationError(
                    f"Missing required key in constants.yaml {section}[{i}]: '{key}'"
                )


def validate_constants(constants: ConfigTracker | dict[str, Any]) -> None:
    """
    Validate that all required sections and keys are present in constants.

    Only the shape is checked here; value ranges and id references are
    checked when the Configuration is formulated.

    Raises:
        InvalidConfigurationError: If a required section or key is missing
    """
    for section in REQUIRED_CONSTANT_SECTIONS:
        if section not in constants:
            raise InvalidConfigurationError(
                f"Missing required section in constants.yaml: '{section}'"
            )

    if "horizon" not in constants["planning"]:
        raise InvalidConfigurationError(
            "Missing required key in constants.yaml planning: 'horizon'"
        )

    _require_keys("materials", constants["materials"], REQUIRED_MATERIAL_KEYS)
    _require_keys(
        "technologies", constants["technologies"], REQUIRED_TECHNOLOGY_KEYS
    )
    _require_keys("zones", constants["zones"], REQUIRED_ZONE_KEYS)
    if "components" in constants:
        _require_keys(
            "components", constants["components"], REQUIRED_COMPONENT_KEYS
        )

    scenario = constants["scenario"]
    if "demand" not in scenario and "base_demand" not in scenario:
        raise InvalidConfigurationError(
            "constants.yaml scenario needs either 'demand' or 'base_demand'"
        )


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _material_from_dict(raw: dict[str, Any]) -> Material:
    return Material(
        id=str(raw["id"]),
        name=str(raw.get("name", raw["id"])),
        primary_supply=float(raw["primary_supply"]),
        unit_cost=float(raw["unit_cost"]),
        secondary_supply=float(raw.get("secondary_supply", 0.0)),
        procurement_lead_time=int(raw.get("procurement_lead_time", 0)),
        secondary_premium=float(raw.get("secondary_premium", 0.0)),
        category=str(raw.get("category", "standard")),
        sector_share=float(raw.get("sector_share", 1.0)),
    )


def _component_from_dict(raw: dict[str, Any]) -> Component:
    return Component(
        id=str(raw["id"]),
        name=str(raw.get("name", raw["id"])),
        material_intensity={
            str(k): float(v) for k, v in raw.get("material_intensity", {}).items()
        },
        production_capacity=_optional_float(raw.get("production_capacity")),
        lead_time=int(raw.get("lead_time", 0)),
    )


def _technology_from_dict(raw: dict[str, Any]) -> Technology:
    lifetime = raw.get("lifetime")
    return Technology(
        id=str(raw["id"]),
        name=str(raw.get("name", raw["id"])),
        capital_cost=float(raw["capital_cost"]),
        material_intensity={
            str(k): float(v) for k, v in raw.get("material_intensity", {}).items()
        },
        component_intensity={
            str(k): float(v) for k, v in raw.get("component_intensity", {}).items()
        },
        land_footprint=float(raw.get("land_footprint", 0.0)),
        lead_time=int(raw.get("lead_time", 0)),
        max_build_rate=_optional_float(raw.get("max_build_rate")),
        zones=tuple(str(z) for z in raw.get("zones", [])),
        capacity_credit=float(raw.get("capacity_credit", 1.0)),
        fixed_om_cost=float(raw.get("fixed_om_cost", 0.0)),
        lifetime=None if lifetime is None else int(lifetime),
    )


def _zone_from_dict(raw: dict[str, Any]) -> Zone:
    return Zone(
        id=str(raw["id"]),
        name=str(raw.get("name", raw["id"])),
        area=float(raw["area"]),
        technologies=tuple(str(k) for k in raw.get("technologies", [])),
    )


def _scenario_from_dict(raw: dict[str, Any]) -> Scenario:
    return Scenario(
        name=str(raw.get("name", "baseline")),
        demand=tuple(float(d) for d in raw.get("demand", [])),
        base_demand=float(raw.get("base_demand", 0.0)),
        demand_growth=float(raw.get("demand_growth", 0.0)),
        reserve_margin=float(raw.get("reserve_margin", 0.0)),
        existing_capacity=float(raw.get("existing_capacity", 0.0)),
        discount_rate=float(raw.get("discount_rate", 0.0)),
        unmet_demand_penalty=_optional_float(raw.get("unmet_demand_penalty")),
    )


def load_configuration(constants: ConfigTracker | dict[str, Any]) -> Configuration:
    """Build an immutable Configuration from validated constants."""
    validate_constants(constants)
    try:
        return Configuration(
            materials=tuple(_material_from_dict(m) for m in constants["materials"]),
            technologies=tuple(
                _technology_from_dict(k) for k in constants["technologies"]
            ),
            zones=tuple(_zone_from_dict(z) for z in constants["zones"]),
            planning_horizon=int(constants["planning"]["horizon"]),
            scenario=_scenario_from_dict(constants["scenario"]),
            components=tuple(
                _component_from_dict(c) for c in constants.get("components", [])
            ),
        )
    except (TypeError, ValueError) as e:
        raise InvalidConfigurationError(f"Invalid value in constants: {e}") from e


def load_solver_settings(
    constants: ConfigTracker | dict[str, Any], **overrides: Any
) -> SolverSettings:
    """
    Solver options from the optional ``solver`` section.

    Keyword overrides that are not None win over the file values.
    """
    solver_cfg = constants.get("solver") or {}
    values: dict[str, Any] = {}
    for key in ("max_iterations", "tolerance", "binding_threshold", "time_limit"):
        if solver_cfg.get(key) is not None:
            values[key] = solver_cfg.get(key)
    if "max_iterations" in values:
        values["max_iterations"] = int(values["max_iterations"])
    for key in ("tolerance", "binding_threshold", "time_limit"):
        if key in values:
            values[key] = float(values[key])
    if solver_cfg.get("name"):
        values["solver_name"] = str(solver_cfg.get("name"))
    values.update({k: v for k, v in overrides.items() if v is not None})
    return SolverSettings(**values)


# =============================================================================
# Helper Functions
# =============================================================================


def discount_factor(t: int, rate: float) -> float:
    """Present-value factor of period t (1-based): 1 / (1 + r)^(t - 1)."""
    return 1.0 / (1.0 + rate) ** (t - 1)


def get_year_for_t(t: int, start_year: int) -> int:
    """Calendar year of period t (1-based)."""
    return start_year + t - 1


def config_hash(config: Configuration) -> str:
    """Content hash of a Configuration (sha256 of canonical JSON)."""
    payload = json.dumps(
        dataclasses.asdict(config), sort_keys=True, separators=(",", ":"), default=str
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# =============================================================================
# Copy-on-write Derivation
# =============================================================================


def _replace_by_id(items: tuple, item_id: str, changes: dict[str, Any], kind: str):
    found = False
    out = []
    for item in items:
        if item.id == item_id:
            item = dataclasses.replace(item, **changes)
            found = True
        out.append(item)
    if not found:
        raise InvalidConfigurationError(f"Unknown {kind} id: '{item_id}'")
    return tuple(out)


def merge_overrides(config: Configuration, overrides: dict[str, Any]) -> Configuration:
    """
    Derive a new Configuration with caller-supplied overrides applied.

    ``overrides`` may contain ``materials``/``technologies``/``zones``/
    ``components`` (id -> field changes), ``scenario`` (field changes) and
    ``planning_horizon``. The result shares no mutable state with ``config``.
    """
    new = copy.deepcopy(config)
    overrides = copy.deepcopy(overrides)
    changes: dict[str, Any] = {}
    for section, kind in (
        ("materials", "material"),
        ("technologies", "technology"),
        ("zones", "zone"),
        ("components", "component"),
    ):
        items = getattr(new, section)
        for item_id, fields in (overrides.get(section) or {}).items():
            try:
                items = _replace_by_id(items, item_id, fields, kind)
            except TypeError as e:
                raise InvalidConfigurationError(
                    f"Invalid override for {kind} '{item_id}': {e}"
                ) from e
        changes[section] = items
    if overrides.get("scenario"):
        try:
            changes["scenario"] = dataclasses.replace(
                new.scenario, **overrides["scenario"]
            )
        except TypeError as e:
            raise InvalidConfigurationError(f"Invalid scenario override: {e}") from e
    if "planning_horizon" in overrides:
        changes["planning_horizon"] = int(overrides["planning_horizon"])
    unknown = set(overrides) - {
        "materials",
        "technologies",
        "zones",
        "components",
        "scenario",
        "planning_horizon",
    }
    if unknown:
        raise InvalidConfigurationError(f"Unknown override sections: {sorted(unknown)}")
    return dataclasses.replace(new, **changes)


def with_material_supply(
    config: Configuration, material_id: str, factor: float
) -> Configuration:
    """New Configuration with one material's primary supply scaled."""
    if not _has(config.materials, material_id):
        raise InvalidConfigurationError(f"Unknown material id: '{material_id}'")
    material = config.material(material_id)
    return merge_overrides(
        config,
        {"materials": {material_id: {"primary_supply": material.primary_supply * factor}}},
    )


def with_zone_area(config: Configuration, zone_id: str, factor: float) -> Configuration:
    """New Configuration with one zone's land budget scaled."""
    if not _has(config.zones, zone_id):
        raise InvalidConfigurationError(f"Unknown zone id: '{zone_id}'")
    zone = config.zone(zone_id)
    return merge_overrides(config, {"zones": {zone_id: {"area": zone.area * factor}}})


def with_lead_time(config: Configuration, tech_id: str, shift: int) -> Configuration:
    """New Configuration with one technology's lead time shifted (floored at 0)."""
    if not _has(config.technologies, tech_id):
        raise InvalidConfigurationError(f"Unknown technology id: '{tech_id}'")
    tech = config.technology(tech_id)
    return merge_overrides(
        config,
        {"technologies": {tech_id: {"lead_time": max(0, tech.lead_time + shift)}}},
    )


def _has(items: tuple, item_id: str) -> bool:
    return any(item.id == item_id for item in items)
