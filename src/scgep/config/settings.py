"""
Runtime settings for the SC-GEP planner.

This module contains run-time options that may change between runs:
solver budgets, bottleneck threshold and scenario selection.

Case-study data (materials, technologies, zones, demand) lives in
config/constants.yaml.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

# Sentinel for detecting missing required fields
_MISSING = object()

DEFAULT_BINDING_THRESHOLD = 0.95


class ScenarioType(Enum):
    """Planning scenario variants."""

    BASELINE = "baseline"
    LOW_DEMAND = "low_demand"
    HIGH_DEMAND = "high_demand"
    WITHOUT_SUPPLY_CHAIN = "w/o_SC"  # No material, land or lead-time limits
    LIMITED_SUPPLY_CHAIN = "lim_SC"  # Allied-only sourcing of critical materials


@dataclass
class SolverSettings:
    """
    Options for a single solve and its follow-up analysis.

    ``max_iterations`` and ``tolerance`` bound the cutting-plane loop.
    ``time_limit`` (seconds) is checked between iterations only.
    """

    max_iterations: int = 50
    tolerance: float = 1e-6
    binding_threshold: float = DEFAULT_BINDING_THRESHOLD
    time_limit: float | None = None
    solver_name: str | None = None
    output_dir: Path = field(default_factory=lambda: Path("results"))

    def __post_init__(self):
        _validate_required(self, "max_iterations", self.max_iterations, int)
        _validate_positive(self, "max_iterations", self.max_iterations)
        _validate_required(self, "tolerance", self.tolerance, (int, float))
        _validate_positive(self, "tolerance", self.tolerance)
        _validate_required(
            self, "binding_threshold", self.binding_threshold, (int, float)
        )
        _validate_positive(self, "binding_threshold", self.binding_threshold)
        _validate_range(self, "binding_threshold", self.binding_threshold, 0.0, 1.0)
        if self.time_limit is not None:
            _validate_positive(self, "time_limit", self.time_limit)

        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)


def _validate_required(
    obj: Any, field_name: str, value: Any, expected_type: type | tuple[type, ...]
) -> None:
    """Validate that a required field is provided and has correct type."""
    if value is _MISSING or value is None:
        raise ValueError(
            f"{obj.__class__.__name__}.{field_name} is REQUIRED and was not provided"
        )
    # bool is an int subclass but never a valid count or tolerance
    if isinstance(value, bool) or not isinstance(value, expected_type):
        names = (
            expected_type.__name__
            if isinstance(expected_type, type)
            else " or ".join(t.__name__ for t in expected_type)
        )
        raise TypeError(
            f"{obj.__class__.__name__}.{field_name} must be {names}, "
            f"got {type(value).__name__}"
        )


def _validate_positive(obj: Any, field_name: str, value: float | int) -> None:
    """Validate that a numeric field is positive."""
    if value <= 0:
        raise ValueError(
            f"{obj.__class__.__name__}.{field_name} must be positive, got {value}"
        )


def _validate_range(
    obj: Any, field_name: str, value: float, min_val: float, max_val: float
) -> None:
    """Validate that a numeric field is within range."""
    if not (min_val <= value <= max_val):
        raise ValueError(
            f"{obj.__class__.__name__}.{field_name} must be in [{min_val}, {max_val}], got {value}"
        )
