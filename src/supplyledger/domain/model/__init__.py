"""Public domain model surface."""

from __future__ import annotations

from supplyledger.domain.model.audit import AuditEvent
from supplyledger.domain.model.canonical import CanonicalEntity, EvidenceLink
from supplyledger.domain.model.entity import Entity, new_id, parse_id
from supplyledger.domain.model.enums import (
    CONFLICT_STRATEGIES,
    AuditAction,
    DataMode,
    DatasetType,
    DecisionType,
    DeclaredScope,
    EntityType,
    IngestionMethod,
    LedgerState,
    Origin,
    Priority,
    ResolutionStrategy,
    RetentionPolicy,
    Role,
    SourceSystem,
    TrustLevel,
    WorkItemStatus,
    WorkItemType,
)
from supplyledger.domain.model.evidence import (
    AMENDABLE_FIELDS,
    FROZEN_STATES,
    IMMUTABLE_FIELDS,
    SYSTEM_EVIDENCE_ID,
    Evidence,
)
from supplyledger.domain.model.identity import SYSTEM_POLICY_ACTOR, Actor
from supplyledger.domain.model.policy import (
    ANY_FIELD,
    RetentionRule,
    TrustPolicy,
    most_specific_policy,
    retention_days,
    trust_level_for,
)
from supplyledger.domain.model.tenant import BLOCKED_IN_LIVE, Tenant
from supplyledger.domain.model.work import ConflictingClaim, Decision, FollowUpKey, WorkItem

__all__ = [  # noqa: RUF022
    # Identity
    "Entity",
    "new_id",
    "parse_id",
    "Actor",
    "SYSTEM_POLICY_ACTOR",
    # Enums
    "AuditAction",
    "CONFLICT_STRATEGIES",
    "DataMode",
    "DatasetType",
    "DecisionType",
    "DeclaredScope",
    "EntityType",
    "IngestionMethod",
    "LedgerState",
    "Origin",
    "Priority",
    "ResolutionStrategy",
    "RetentionPolicy",
    "Role",
    "SourceSystem",
    "TrustLevel",
    "WorkItemStatus",
    "WorkItemType",
    # Ledger
    "AMENDABLE_FIELDS",
    "FROZEN_STATES",
    "IMMUTABLE_FIELDS",
    "SYSTEM_EVIDENCE_ID",
    "Evidence",
    "AuditEvent",
    "Tenant",
    "BLOCKED_IN_LIVE",
    # Canonical projections
    "CanonicalEntity",
    "EvidenceLink",
    # Work
    "ConflictingClaim",
    "Decision",
    "FollowUpKey",
    "WorkItem",
    # Policies
    "ANY_FIELD",
    "RetentionRule",
    "TrustPolicy",
    "most_specific_policy",
    "retention_days",
    "trust_level_for",
]
