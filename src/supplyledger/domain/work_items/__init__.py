"""Conflict work items, resolution strategies, and follow-ups."""

from __future__ import annotations

from supplyledger.domain.work_items.detection import (
    AssessmentKind,
    FieldAssessment,
    assess_entity,
    claims_by_field,
    field_decision_times,
    recency_hint,
    settled_evidence,
)
from supplyledger.domain.work_items.engine import (
    DetectionResult,
    FollowUpResult,
    WorkItemEngine,
    follow_up_key,
)
from supplyledger.domain.work_items.strategies import prefer_most_recent, prefer_trusted_source

__all__ = [
    "AssessmentKind",
    "DetectionResult",
    "FieldAssessment",
    "FollowUpResult",
    "WorkItemEngine",
    "assess_entity",
    "claims_by_field",
    "field_decision_times",
    "follow_up_key",
    "prefer_most_recent",
    "prefer_trusted_source",
    "recency_hint",
    "settled_evidence",
]
