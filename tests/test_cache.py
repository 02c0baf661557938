# tests/test_cache.py

"""
Tests for SolutionCache.

Tests cover:
- Keying by configuration content and solve options
- LRU eviction
- TTL expiry with an injected clock
- get_or_solve hit/miss behaviour and which statuses are cached
"""

import dataclasses

import pytest

from scgep.cache import SolutionCache
from scgep.config.settings import SolverSettings
from scgep.entities import SolveStatus
from scgep import cache as cache_module


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class FakeSolve:
    """Stand-in for solve_configuration that counts calls."""

    def __init__(self, result):
        self.result = result
        self.calls = 0

    def __call__(self, config, settings=None):
        self.calls += 1
        return self.result


@pytest.fixture
def fake_solve(monkeypatch, converged_solution):
    fake = FakeSolve(converged_solution)
    monkeypatch.setattr(cache_module, "solve_configuration", fake)
    return fake


class TestSolutionCache:
    """Test SolutionCache."""

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            SolutionCache(max_size=0)

    def test_equal_configurations_share_key(self, make_config):
        settings = SolverSettings()
        assert SolutionCache.key(make_config(), settings) == SolutionCache.key(
            make_config(), settings
        )

    def test_options_are_part_of_key(self, make_config):
        a = SolutionCache.key(make_config(), SolverSettings(tolerance=1e-6))
        b = SolutionCache.key(make_config(), SolverSettings(tolerance=1e-4))
        assert a != b

    def test_put_get(self, feasible_config, converged_solution, settings):
        cache = SolutionCache()
        assert cache.get(feasible_config, settings) is None
        cache.put(feasible_config, settings, converged_solution)
        assert cache.get(feasible_config, settings) is converged_solution
        assert cache.hits == 1
        assert cache.misses == 1

    def test_lru_eviction(self, make_config, converged_solution, settings):
        cache = SolutionCache(max_size=2)
        a, b, c = (make_config(demand=(d,)) for d in (10.0, 20.0, 30.0))
        cache.put(a, settings, converged_solution)
        cache.put(b, settings, converged_solution)
        assert cache.get(a, settings) is not None
        cache.put(c, settings, converged_solution)
        assert len(cache) == 2
        assert cache.get(b, settings) is None
        assert cache.get(a, settings) is not None

    def test_ttl_expiry(self, feasible_config, converged_solution, settings, clock):
        cache = SolutionCache(ttl_seconds=10.0, clock=clock)
        cache.put(feasible_config, settings, converged_solution)
        clock.now = 5.0
        assert cache.get(feasible_config, settings) is not None
        clock.now = 20.0
        assert cache.get(feasible_config, settings) is None
        assert len(cache) == 0

    def test_clear(self, feasible_config, converged_solution, settings):
        cache = SolutionCache()
        cache.put(feasible_config, settings, converged_solution)
        cache.clear()
        assert len(cache) == 0


class TestGetOrSolve:
    """Test get_or_solve with the solver replaced."""

    def test_second_call_hits(self, feasible_config, settings, fake_solve):
        cache = SolutionCache()
        first = cache.get_or_solve(feasible_config, settings)
        second = cache.get_or_solve(feasible_config, settings)
        assert first is second
        assert fake_solve.calls == 1

    def test_infeasible_is_cached(self, feasible_config, settings, fake_solve):
        fake_solve.result = dataclasses.replace(
            fake_solve.result, status=SolveStatus.INFEASIBLE, feasibility=False
        )
        cache = SolutionCache()
        cache.get_or_solve(feasible_config, settings)
        cache.get_or_solve(feasible_config, settings)
        assert fake_solve.calls == 1

    def test_budget_limited_not_cached(self, feasible_config, settings, fake_solve):
        fake_solve.result = dataclasses.replace(
            fake_solve.result, status=SolveStatus.MAX_ITERATIONS, feasibility=False
        )
        cache = SolutionCache()
        cache.get_or_solve(feasible_config, settings)
        cache.get_or_solve(feasible_config, settings)
        assert fake_solve.calls == 2
        assert len(cache) == 0
