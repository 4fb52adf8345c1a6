"""Entity resolution: name/address normalization, match layers and the engine."""

from .addresses import NormalizedAddress, normalize_address, parse_address
from .engine import (
    ConfidencePolicy,
    MergeResult,
    OutcomeKind,
    ResolutionEngine,
    ResolutionOutcome,
    ResolutionSummary,
)
from .layers import (
    LAYER_CONFIDENCE,
    LAYERS,
    SEED_CONFIDENCE,
    EntityCandidate,
    Identity,
    LayerMatch,
    MatchLayer,
    review_score,
    run_cascade,
)
from .names import ParsedName, first_names_compatible, parse_names
from .review import ReviewQueue

__all__ = [
    "ConfidencePolicy",
    "EntityCandidate",
    "Identity",
    "LAYERS",
    "LAYER_CONFIDENCE",
    "LayerMatch",
    "MatchLayer",
    "MergeResult",
    "NormalizedAddress",
    "OutcomeKind",
    "ParsedName",
    "ResolutionEngine",
    "ResolutionOutcome",
    "ResolutionSummary",
    "ReviewQueue",
    "SEED_CONFIDENCE",
    "first_names_compatible",
    "normalize_address",
    "parse_address",
    "parse_names",
    "review_score",
    "run_cascade",
]
