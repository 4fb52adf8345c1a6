"""Signal detection and prospect scoring."""

from .detectors import DETECTORS, EntityContext, detect
from .scoring import (
    DEFAULT_CATEGORY_CAPS,
    DEFAULT_WEIGHTS,
    ProspectScorer,
    SignalWeight,
    active_signals,
    load_scorer,
)
from .service import SignalRunResult, SignalService

__all__ = [
    "DEFAULT_CATEGORY_CAPS",
    "DEFAULT_WEIGHTS",
    "DETECTORS",
    "EntityContext",
    "ProspectScorer",
    "SignalRunResult",
    "SignalService",
    "SignalWeight",
    "active_signals",
    "detect",
    "load_scorer",
]
