"""Signal models.

Signals are typed observations attached to an entity. They are never
mutated after creation; a newer signal of the same type supersedes an
older one.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .records import RecordRef, utcnow


class SignalStrength(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @property
    def multiplier(self) -> float:
        return _STRENGTH_MULTIPLIERS[self]


_STRENGTH_MULTIPLIERS = {
    SignalStrength.LOW: 0.25,
    SignalStrength.MEDIUM: 0.5,
    SignalStrength.HIGH: 0.75,
    SignalStrength.VERY_HIGH: 1.0,
}


class SignalType(str, Enum):
    """Types of prospect signals."""

    MORTGAGE_SATISFIED = "mortgage_satisfied"
    FREE_AND_CLEAR = "free_and_clear"
    LONG_TERM_OWNERSHIP = "long_term_ownership"
    TRUST_TRANSFER = "trust_transfer"
    RECENT_INHERITANCE = "recent_inheritance"
    DIVORCE_FINALIZED = "divorce_finalized"
    SECOND_HOME = "second_home"
    PRE_RETIREMENT = "pre_retirement"
    INSIDER_SALE = "insider_sale"
    HIGH_VALUE_PROPERTY = "high_value_property"
    FORECLOSURE_RISK = "foreclosure_risk"


class SignalCategory(str, Enum):
    """Categories for grouping related signals."""

    EQUITY = "equity"
    LIFE_EVENT = "life_event"
    WEALTH = "wealth"
    TIMING = "timing"
    DISTRESS = "distress"


SIGNAL_CATEGORIES = {
    SignalType.MORTGAGE_SATISFIED: SignalCategory.EQUITY,
    SignalType.FREE_AND_CLEAR: SignalCategory.EQUITY,
    SignalType.LONG_TERM_OWNERSHIP: SignalCategory.EQUITY,
    SignalType.TRUST_TRANSFER: SignalCategory.LIFE_EVENT,
    SignalType.RECENT_INHERITANCE: SignalCategory.LIFE_EVENT,
    SignalType.DIVORCE_FINALIZED: SignalCategory.LIFE_EVENT,
    SignalType.SECOND_HOME: SignalCategory.WEALTH,
    SignalType.HIGH_VALUE_PROPERTY: SignalCategory.WEALTH,
    SignalType.INSIDER_SALE: SignalCategory.WEALTH,
    SignalType.PRE_RETIREMENT: SignalCategory.TIMING,
    SignalType.FORECLOSURE_RISK: SignalCategory.DISTRESS,
}


class Signal(BaseModel):
    """A detected signal for one entity."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    signal_type: SignalType
    strength: SignalStrength
    source: str
    detected_at: datetime = Field(default_factory=utcnow)
    weight: float | None = None
    window_start: date | None = None
    window_end: date | None = None
    evidence: tuple[RecordRef, ...] = ()
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def category(self) -> SignalCategory:
        return SIGNAL_CATEGORIES.get(self.signal_type, SignalCategory.TIMING)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.entity_id, self.signal_type.value, self.detected_at.isoformat())

    def same_observation(self, other: "Signal") -> bool:
        """True if both signals describe the same event from the same evidence."""
        return (
            self.signal_type == other.signal_type
            and self.strength == other.strength
            and set(map(str, self.evidence)) == set(map(str, other.evidence))
        )

    def reassigned(self, entity_id: str) -> "Signal":
        return self.model_copy(update={"entity_id": entity_id})


class ProspectScore(BaseModel):
    """Composite prospect score computed from the active signal set."""

    entity_id: str
    score: float = Field(ge=0.0, le=100.0)
    signal_contributions: dict[str, float] = Field(default_factory=dict)
    category_breakdown: dict[str, float] = Field(default_factory=dict)
    active_signals: list[str] = Field(default_factory=list)
    computed_at: datetime = Field(default_factory=utcnow)
