"""
Read-only market data for material parameters.

A provider answers ``signal(material_id)`` with the latest price, a supply
multiplier and a risk score, or None when it has nothing for a material.
The planner only reads from providers; applying signals yields a new
Configuration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from scgep.entities import Configuration
from scgep.exceptions import InvalidConfigurationError
from scgep import utils

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketSignal:
    material_id: str
    price: float | None = None
    supply_multiplier: float = 1.0
    risk_score: float = 0.0  # 0 (benign) .. 1 (severe)

    def __post_init__(self):
        if self.price is not None and self.price < 0:
            raise InvalidConfigurationError(
                f"MarketSignal[{self.material_id}].price must be non-negative"
            )
        if self.supply_multiplier < 0:
            raise InvalidConfigurationError(
                f"MarketSignal[{self.material_id}].supply_multiplier must be non-negative"
            )
        if not (0.0 <= self.risk_score <= 1.0):
            raise InvalidConfigurationError(
                f"MarketSignal[{self.material_id}].risk_score must be in [0, 1]"
            )


class MarketDataProvider(Protocol):
    def signal(self, material_id: str) -> MarketSignal | None: ...


class StaticMarketData:
    """Provider backed by a fixed snapshot, e.g. the ``market`` YAML section."""

    def __init__(self, signals: Mapping[str, MarketSignal] | None = None):
        self._signals = dict(signals or {})

    @classmethod
    def from_constants(cls, constants: Mapping[str, Any]) -> "StaticMarketData":
        market = constants.get("market") or {}
        signals = {}
        for raw in market.get("signals", []):
            try:
                sig = MarketSignal(
                    material_id=str(raw["material"]),
                    price=None if raw.get("price") is None else float(raw.get("price")),
                    supply_multiplier=float(raw.get("supply_multiplier", 1.0)),
                    risk_score=float(raw.get("risk_score", 0.0)),
                )
            except KeyError as e:
                raise InvalidConfigurationError(
                    f"Missing required key in constants.yaml market.signals: {e}"
                ) from e
            signals[sig.material_id] = sig
        return cls(signals)

    def signal(self, material_id: str) -> MarketSignal | None:
        return self._signals.get(material_id)

    def __len__(self) -> int:
        return len(self._signals)


def apply_market_signals(
    config: Configuration, provider: MarketDataProvider
) -> Configuration:
    """New Configuration with provider prices and supply multipliers applied."""
    overrides: dict[str, dict[str, Any]] = {}
    for m in config.materials:
        sig = provider.signal(m.id)
        if sig is None:
            continue
        changes: dict[str, Any] = {
            "primary_supply": m.primary_supply * sig.supply_multiplier
        }
        if sig.price is not None:
            changes["unit_cost"] = sig.price
        overrides[m.id] = changes
        logger.debug("Market signal for %s: %s", m.id, changes)
    if not overrides:
        return config
    return utils.merge_overrides(config, {"materials": overrides})


def risk_weighted_materials(
    config: Configuration, provider: MarketDataProvider, threshold: float = 0.7
) -> list[str]:
    """Materials whose provider risk score is at or above ``threshold``."""
    out = []
    for m in config.materials:
        sig = provider.signal(m.id)
        if sig is not None and sig.risk_score >= threshold:
            out.append(m.id)
    return out
