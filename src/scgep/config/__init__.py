"""Configuration package for the SC-GEP planner."""

from pathlib import Path

from .settings import (
    DEFAULT_BINDING_THRESHOLD,
    ScenarioType,
    SolverSettings,
)

DEFAULT_CONSTANTS_PATH = Path(__file__).parent / "constants.yaml"

__all__ = [
    "DEFAULT_BINDING_THRESHOLD",
    "DEFAULT_CONSTANTS_PATH",
    "ScenarioType",
    "SolverSettings",
]
