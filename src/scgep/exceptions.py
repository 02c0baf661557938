"""Error taxonomy for the planner."""

from __future__ import annotations


class InvalidConfigurationError(ValueError):
    """Malformed or internally inconsistent planning input."""


class AnalysisPreconditionError(RuntimeError):
    """Analysis requested on a solution that cannot support it."""


class SolverUnavailableError(RuntimeError):
    """No usable LP backend, or the backend failed on the relaxed problem."""
