"""Entity resolution: claims, matchers, weight policies, and the engine."""

from __future__ import annotations

from supplyledger.domain.resolution.claims import (
    ENTITY_TYPE_BY_DATASET,
    EvidenceClaim,
    claim_from_evidence,
    entity_type_for,
    extract_attributes,
)
from supplyledger.domain.resolution.engine import (
    EntityResolutionEngine,
    MappingSuggestion,
    ResolutionOutcome,
    SuggestionStatus,
    build_suggestions,
    rank_candidates,
    score_candidate,
)
from supplyledger.domain.resolution.matchers import AttributeMatcher, MatcherKind, normalize_text
from supplyledger.domain.resolution.weights import (
    DEFAULT_MATCHERS,
    LearnedWeightPolicy,
    StaticWeightPolicy,
    WeightPolicy,
)

__all__ = [
    "DEFAULT_MATCHERS",
    "ENTITY_TYPE_BY_DATASET",
    "AttributeMatcher",
    "EntityResolutionEngine",
    "EvidenceClaim",
    "LearnedWeightPolicy",
    "MappingSuggestion",
    "MatcherKind",
    "ResolutionOutcome",
    "StaticWeightPolicy",
    "SuggestionStatus",
    "WeightPolicy",
    "build_suggestions",
    "claim_from_evidence",
    "entity_type_for",
    "extract_attributes",
    "normalize_text",
    "rank_candidates",
    "score_candidate",
]
