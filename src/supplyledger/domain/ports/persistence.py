"""Ports for persisting ledger aggregates and projections."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from supplyledger.domain.model import (
    AuditEvent,
    CanonicalEntity,
    Decision,
    Evidence,
    EvidenceLink,
    RetentionRule,
    Tenant,
    TrustPolicy,
    WorkItem,
)

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence
    from datetime import datetime
    from uuid import UUID

    from supplyledger.domain.model import (
        DatasetType,
        DecisionType,
        EntityType,
        FollowUpKey,
        IngestionMethod,
        LedgerState,
        Origin,
        Priority,
        WorkItemStatus,
        WorkItemType,
    )


@dataclass(frozen=True, slots=True, kw_only=True)
class EvidenceFilter:
    ledger_states: frozenset[LedgerState] | None = None
    dataset_types: frozenset[DatasetType] | None = None
    ingestion_method: IngestionMethod | None = None
    origin: Origin | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    limit: int | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class WorkItemFilter:
    types: frozenset[WorkItemType] | None = None
    statuses: frozenset[WorkItemStatus] | None = None
    priority: Priority | None = None
    linked_evidence_id: UUID | None = None
    linked_entity_ref: UUID | None = None
    parent_work_item_id: UUID | None = None
    limit: int | None = None


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class EvidenceRepository(Repository[Evidence], Protocol):
    def get(self, tenant_id: str, evidence_id: UUID) -> Evidence | None: ...

    def get_for_update(self, tenant_id: str, evidence_id: UUID) -> Evidence | None: ...

    def get_by_external_reference(
        self, tenant_id: str, external_reference_id: str
    ) -> Evidence | None: ...

    def query(self, tenant_id: str, filters: EvidenceFilter) -> list[Evidence]: ...

    def count_outside_states(self, tenant_id: str, states: Collection[LedgerState]) -> int: ...

    def count_by_origin(self, tenant_id: str, origins: Collection[Origin]) -> int: ...

    def ids_in_state(self, tenant_id: str, state: LedgerState) -> list[UUID]: ...


@runtime_checkable
class AuditEventRepository(Repository[AuditEvent], Protocol):
    def for_evidence(self, tenant_id: str, evidence_id: str) -> list[AuditEvent]: ...

    def for_tenant(
        self,
        tenant_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditEvent]: ...

    def count_for_evidence(self, tenant_id: str, evidence_id: str) -> int: ...

    def counts_for_evidence(
        self, tenant_id: str, evidence_ids: Sequence[str]
    ) -> dict[str, int]: ...


@runtime_checkable
class TenantRepository(Repository[Tenant], Protocol):
    def get(self, tenant_id: str) -> Tenant | None: ...


@runtime_checkable
class CanonicalEntityRepository(Repository[CanonicalEntity], Protocol):
    def get(self, tenant_id: str, entity_id: UUID) -> CanonicalEntity | None: ...

    def query(
        self, tenant_id: str, entity_type: EntityType | None = None
    ) -> list[CanonicalEntity]: ...


@runtime_checkable
class EvidenceLinkRepository(Repository[EvidenceLink], Protocol):
    def get(self, tenant_id: str, evidence_id: UUID) -> EvidenceLink | None: ...

    def for_entity(self, tenant_id: str, entity_id: UUID) -> list[EvidenceLink]: ...

    def for_tenant(self, tenant_id: str) -> list[EvidenceLink]: ...


@runtime_checkable
class DecisionRepository(Repository[Decision], Protocol):
    def get(self, tenant_id: str, decision_id: UUID) -> Decision | None: ...

    def for_work_item(self, tenant_id: str, work_item_id: UUID) -> list[Decision]: ...

    def for_entity(self, tenant_id: str, entity_id: UUID) -> list[Decision]: ...

    def for_tenant(
        self, tenant_id: str, decision_type: DecisionType | None = None
    ) -> list[Decision]: ...


@runtime_checkable
class WorkItemRepository(Repository[WorkItem], Protocol):
    def get(self, tenant_id: str, work_item_id: UUID) -> WorkItem | None: ...

    def query(self, tenant_id: str, filters: WorkItemFilter) -> list[WorkItem]: ...

    def open_conflict(
        self, tenant_id: str, entity_id: UUID, field_name: str
    ) -> WorkItem | None: ...

    def open_mapping(self, tenant_id: str, evidence_id: UUID) -> WorkItem | None: ...


@runtime_checkable
class FollowUpKeyRepository(Protocol):
    def get(self, key: str) -> FollowUpKey | None: ...

    def put(self, marker: FollowUpKey) -> None: ...

    def purge_expired(self, now: datetime) -> int: ...


@runtime_checkable
class PolicyRepository(Protocol):
    def trust_policies(self, tenant_id: str, dataset_type: DatasetType) -> list[TrustPolicy]: ...

    def retention_rule(self, tenant_id: str, dataset_type: DatasetType) -> RetentionRule | None: ...

    def add_trust_policy(self, policy: TrustPolicy) -> None: ...

    def add_retention_rule(self, rule: RetentionRule) -> None: ...
