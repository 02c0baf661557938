"""SC-GEP Planner: supply-chain-constrained generation expansion planning."""

from scgep.bottlenecks import analyze
from scgep.formulation import formulate
from scgep.sensitivity import Perturbation, run_sensitivity
from scgep.solver import PlanningSolver, solve

__version__ = "0.1.0"

__all__ = [
    "Perturbation",
    "PlanningSolver",
    "analyze",
    "formulate",
    "run_sensitivity",
    "solve",
]
