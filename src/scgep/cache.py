"""
In-memory cache of solved plans.

Keys are the Configuration content hash plus the solve options, so equal
configurations built independently share an entry. Entries are evicted
least-recently-used beyond ``max_size`` and expire after ``ttl_seconds``.
Nothing is persisted; a restarted process starts empty.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable

from scgep.config.settings import SolverSettings
from scgep.entities import Configuration, Solution, SolveStatus
from scgep.solver import solve_configuration
from scgep import utils

logger = logging.getLogger(__name__)


class SolutionCache:
    """Bounded LRU cache of Solutions keyed by configuration content."""

    def __init__(
        self,
        max_size: int = 32,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[tuple, tuple[float, Solution]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(config: Configuration, settings: SolverSettings) -> tuple:
        return (
            utils.config_hash(config),
            settings.max_iterations,
            settings.tolerance,
            settings.solver_name,
        )

    def get(self, config: Configuration, settings: SolverSettings) -> Solution | None:
        key = self.key(config, settings)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            stored_at, solution = entry
            if self.ttl_seconds is not None and self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                logger.debug("Cache entry %s expired", key[0][:12])
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return solution

    def put(self, config: Configuration, settings: SolverSettings, solution: Solution) -> None:
        key = self.key(config, settings)
        with self._lock:
            self._entries[key] = (self._clock(), solution)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache evicted %s", evicted[0][:12])

    def get_or_solve(
        self, config: Configuration, settings: SolverSettings | None = None
    ) -> Solution:
        """Cached Solution for ``config``, solving on a miss."""
        settings = settings or SolverSettings()
        cached = self.get(config, settings)
        if cached is not None:
            return cached
        solution = solve_configuration(config, settings)
        # Budget-limited results depend on timing, not only on content
        if solution.status in (SolveStatus.CONVERGED, SolveStatus.INFEASIBLE):
            self.put(config, settings, solution)
        return solution

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
