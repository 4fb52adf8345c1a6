"""Composite prospect scoring.

The prospect score is recomputed from the full set of active signals
every time that set changes. Each signal contributes its base weight
scaled by its strength, capped per signal type; contributions are then
capped per category and the total is clipped to 100.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ..models.signals import (
    SIGNAL_CATEGORIES,
    ProspectScore,
    Signal,
    SignalCategory,
    SignalType,
)

MAX_SCORE = 100.0


@dataclass
class SignalWeight:
    """Weight configuration for a signal type."""

    base_weight: float  # Points at very-high strength
    max_contribution: float  # Cap per signal type


DEFAULT_WEIGHTS: dict[SignalType, SignalWeight] = {
    SignalType.MORTGAGE_SATISFIED: SignalWeight(base_weight=30, max_contribution=30),
    SignalType.FREE_AND_CLEAR: SignalWeight(base_weight=25, max_contribution=25),
    SignalType.LONG_TERM_OWNERSHIP: SignalWeight(base_weight=15, max_contribution=15),
    SignalType.TRUST_TRANSFER: SignalWeight(base_weight=15, max_contribution=15),
    SignalType.RECENT_INHERITANCE: SignalWeight(base_weight=30, max_contribution=30),
    SignalType.DIVORCE_FINALIZED: SignalWeight(base_weight=20, max_contribution=20),
    SignalType.SECOND_HOME: SignalWeight(base_weight=15, max_contribution=15),
    SignalType.PRE_RETIREMENT: SignalWeight(base_weight=15, max_contribution=15),
    SignalType.INSIDER_SALE: SignalWeight(base_weight=25, max_contribution=25),
    SignalType.HIGH_VALUE_PROPERTY: SignalWeight(base_weight=20, max_contribution=15),
    SignalType.FORECLOSURE_RISK: SignalWeight(base_weight=10, max_contribution=10),
}

DEFAULT_CATEGORY_CAPS: dict[SignalCategory, float] = {
    SignalCategory.EQUITY: 45,
    SignalCategory.LIFE_EVENT: 40,
    SignalCategory.WEALTH: 35,
    SignalCategory.TIMING: 15,
    SignalCategory.DISTRESS: 10,
}


def active_signals(signals: list[Signal]) -> list[Signal]:
    """Latest signal per type; older ones are superseded."""
    latest: dict[SignalType, Signal] = {}
    for signal in signals:
        current = latest.get(signal.signal_type)
        if current is None or signal.detected_at > current.detected_at:
            latest[signal.signal_type] = signal
    return sorted(latest.values(), key=lambda s: s.signal_type.value)


class ProspectScorer:
    """Weighted aggregation of active signals into a 0-100 score."""

    def __init__(
        self,
        weights: dict[SignalType, SignalWeight] | None = None,
        category_caps: dict[SignalCategory, float] | None = None,
    ):
        self.weights = {**DEFAULT_WEIGHTS, **(weights or {})}
        self.category_caps = {**DEFAULT_CATEGORY_CAPS, **(category_caps or {})}

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ProspectScorer":
        """Load weight overrides from a YAML file.

        Expected layout::

            weights:
              mortgage_satisfied: {base_weight: 35, max_contribution: 35}
            category_caps:
              equity: 50

        Unlisted types and categories keep their defaults.
        """
        with open(path) as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}

        weights = {
            SignalType(name): SignalWeight(**values)
            for name, values in (data.get("weights") or {}).items()
        }
        caps = {
            SignalCategory(name): float(cap)
            for name, cap in (data.get("category_caps") or {}).items()
        }
        return cls(weights=weights, category_caps=caps)

    def contribution(self, signal: Signal) -> float:
        weight = self.weights.get(signal.signal_type)
        if weight is None:
            return 0.0
        scale = signal.weight if signal.weight is not None else 1.0
        value = weight.base_weight * signal.strength.multiplier * scale
        return max(0.0, min(value, weight.max_contribution))

    def score(self, entity_id: str, signals: list[Signal]) -> ProspectScore:
        """Compute the score from scratch over the active signal set."""
        active = active_signals(signals)
        contributions: dict[str, float] = {}
        by_category: dict[str, float] = {}

        for signal in active:
            value = self.contribution(signal)
            contributions[signal.signal_type.value] = round(value, 2)
            category = SIGNAL_CATEGORIES.get(signal.signal_type, SignalCategory.TIMING)
            by_category[category.value] = by_category.get(category.value, 0.0) + value

        breakdown = {
            name: round(min(total, self.category_caps.get(SignalCategory(name), MAX_SCORE)), 2)
            for name, total in by_category.items()
        }
        total = min(sum(breakdown.values()), MAX_SCORE)

        return ProspectScore(
            entity_id=entity_id,
            score=round(total, 2),
            signal_contributions=contributions,
            category_breakdown=breakdown,
            active_signals=[s.signal_type.value for s in active],
        )


def load_scorer(weights_path: str | None = None) -> ProspectScorer:
    if weights_path:
        return ProspectScorer.from_yaml(weights_path)
    return ProspectScorer()
