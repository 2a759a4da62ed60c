"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select

from supplyledger.adapters.sqlalchemy.mappings import (
    audit_event_table,
    canonical_entity_table,
    decision_table,
    evidence_link_table,
    evidence_table,
    follow_up_key_table,
    retention_rule_table,
    trust_policy_table,
    work_item_table,
)
from supplyledger.domain.model import (
    AuditEvent,
    CanonicalEntity,
    Decision,
    Evidence,
    EvidenceLink,
    FollowUpKey,
    RetentionRule,
    Tenant,
    TrustPolicy,
    WorkItem,
    WorkItemStatus,
    WorkItemType,
)

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.orm import Session

    from supplyledger.domain.model import (
        DatasetType,
        DecisionType,
        EntityType,
        LedgerState,
        Origin,
    )
    from supplyledger.domain.ports import EvidenceFilter, WorkItemFilter


class SqlAlchemyEvidenceRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Evidence) -> None:
        self.session.add(entity)

    def get(self, tenant_id: str, evidence_id: UUID) -> Evidence | None:
        stmt = (
            select(Evidence)
            .where(evidence_table.c.tenant_id == tenant_id)
            .where(evidence_table.c.id == evidence_id)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_for_update(self, tenant_id: str, evidence_id: UUID) -> Evidence | None:
        """Load with a row lock held until the unit of work ends."""

        stmt = (
            select(Evidence)
            .where(evidence_table.c.tenant_id == tenant_id)
            .where(evidence_table.c.id == evidence_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_by_external_reference(
        self, tenant_id: str, external_reference_id: str
    ) -> Evidence | None:
        stmt = (
            select(Evidence)
            .where(evidence_table.c.tenant_id == tenant_id)
            .where(evidence_table.c.external_reference_id == external_reference_id)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def query(self, tenant_id: str, filters: EvidenceFilter) -> list[Evidence]:
        stmt = select(Evidence).where(evidence_table.c.tenant_id == tenant_id)
        if filters.ledger_states:
            stmt = stmt.where(evidence_table.c.ledger_state.in_(list(filters.ledger_states)))
        if filters.dataset_types:
            stmt = stmt.where(evidence_table.c.dataset_type.in_(list(filters.dataset_types)))
        if filters.ingestion_method is not None:
            stmt = stmt.where(evidence_table.c.ingestion_method == filters.ingestion_method)
        if filters.origin is not None:
            stmt = stmt.where(evidence_table.c.origin == filters.origin)
        if filters.created_from is not None:
            stmt = stmt.where(evidence_table.c.created_at >= filters.created_from)
        if filters.created_to is not None:
            stmt = stmt.where(evidence_table.c.created_at < filters.created_to)
        stmt = stmt.order_by(evidence_table.c.created_at, evidence_table.c.id)
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)
        return list(self.session.execute(stmt).scalars())

    def count_outside_states(self, tenant_id: str, states: Collection[LedgerState]) -> int:
        stmt = (
            select(func.count())
            .select_from(evidence_table)
            .where(evidence_table.c.tenant_id == tenant_id)
            .where(evidence_table.c.ledger_state.not_in(list(states)))
        )
        return int(self.session.execute(stmt).scalar_one())

    def count_by_origin(self, tenant_id: str, origins: Collection[Origin]) -> int:
        stmt = (
            select(func.count())
            .select_from(evidence_table)
            .where(evidence_table.c.tenant_id == tenant_id)
            .where(evidence_table.c.origin.in_(list(origins)))
        )
        return int(self.session.execute(stmt).scalar_one())

    def ids_in_state(self, tenant_id: str, state: LedgerState) -> list[UUID]:
        stmt = (
            select(evidence_table.c.id)
            .where(evidence_table.c.tenant_id == tenant_id)
            .where(evidence_table.c.ledger_state == state)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyAuditEventRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: AuditEvent) -> None:
        self.session.add(entity)

    def for_evidence(self, tenant_id: str, evidence_id: str) -> list[AuditEvent]:
        stmt = (
            select(AuditEvent)
            .where(audit_event_table.c.tenant_id == tenant_id)
            .where(audit_event_table.c.evidence_id == evidence_id)
            .order_by(audit_event_table.c.created_at, audit_event_table.c.sequence)
        )
        return list(self.session.execute(stmt).scalars())

    def for_tenant(
        self,
        tenant_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditEvent]:
        stmt = select(AuditEvent).where(audit_event_table.c.tenant_id == tenant_id)
        if start is not None:
            stmt = stmt.where(audit_event_table.c.created_at >= start)
        if end is not None:
            stmt = stmt.where(audit_event_table.c.created_at < end)
        stmt = stmt.order_by(audit_event_table.c.created_at, audit_event_table.c.sequence)
        return list(self.session.execute(stmt).scalars())

    def count_for_evidence(self, tenant_id: str, evidence_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(audit_event_table)
            .where(audit_event_table.c.tenant_id == tenant_id)
            .where(audit_event_table.c.evidence_id == evidence_id)
        )
        return int(self.session.execute(stmt).scalar_one())

    def counts_for_evidence(self, tenant_id: str, evidence_ids: Sequence[str]) -> dict[str, int]:
        if not evidence_ids:
            return {}
        stmt = (
            select(audit_event_table.c.evidence_id, func.count())
            .where(audit_event_table.c.tenant_id == tenant_id)
            .where(audit_event_table.c.evidence_id.in_(list(evidence_ids)))
            .group_by(audit_event_table.c.evidence_id)
        )
        counts = {evidence_id: 0 for evidence_id in evidence_ids}
        for evidence_id, count in self.session.execute(stmt):
            counts[evidence_id] = int(count)
        return counts


class SqlAlchemyTenantRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Tenant) -> None:
        self.session.add(entity)

    def get(self, tenant_id: str) -> Tenant | None:
        return self.session.get(Tenant, tenant_id)


class SqlAlchemyCanonicalEntityRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: CanonicalEntity) -> None:
        self.session.add(entity)

    def get(self, tenant_id: str, entity_id: UUID) -> CanonicalEntity | None:
        stmt = (
            select(CanonicalEntity)
            .where(canonical_entity_table.c.tenant_id == tenant_id)
            .where(canonical_entity_table.c.id == entity_id)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def query(self, tenant_id: str, entity_type: EntityType | None = None) -> list[CanonicalEntity]:
        stmt = select(CanonicalEntity).where(canonical_entity_table.c.tenant_id == tenant_id)
        if entity_type is not None:
            stmt = stmt.where(canonical_entity_table.c.entity_type == entity_type)
        stmt = stmt.order_by(canonical_entity_table.c.created_at, canonical_entity_table.c.id)
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyEvidenceLinkRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: EvidenceLink) -> None:
        self.session.add(entity)

    def get(self, tenant_id: str, evidence_id: UUID) -> EvidenceLink | None:
        return self.session.get(EvidenceLink, (tenant_id, evidence_id))

    def for_entity(self, tenant_id: str, entity_id: UUID) -> list[EvidenceLink]:
        stmt = (
            select(EvidenceLink)
            .where(evidence_link_table.c.tenant_id == tenant_id)
            .where(evidence_link_table.c.entity_id == entity_id)
            .order_by(evidence_link_table.c.created_at)
        )
        return list(self.session.execute(stmt).scalars())

    def for_tenant(self, tenant_id: str) -> list[EvidenceLink]:
        stmt = (
            select(EvidenceLink)
            .where(evidence_link_table.c.tenant_id == tenant_id)
            .order_by(evidence_link_table.c.created_at)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyDecisionRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Decision) -> None:
        self.session.add(entity)
        # sequence numbers order replay; assign them at append time
        self.session.flush()

    def get(self, tenant_id: str, decision_id: UUID) -> Decision | None:
        stmt = (
            select(Decision)
            .where(decision_table.c.tenant_id == tenant_id)
            .where(decision_table.c.id == decision_id)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def for_work_item(self, tenant_id: str, work_item_id: UUID) -> list[Decision]:
        stmt = (
            select(Decision)
            .where(decision_table.c.tenant_id == tenant_id)
            .where(decision_table.c.work_item_id == work_item_id)
            .order_by(decision_table.c.sequence)
        )
        return list(self.session.execute(stmt).scalars())

    def for_entity(self, tenant_id: str, entity_id: UUID) -> list[Decision]:
        stmt = (
            select(Decision)
            .where(decision_table.c.tenant_id == tenant_id)
            .where(decision_table.c.entity_id == entity_id)
            .order_by(decision_table.c.sequence)
        )
        return list(self.session.execute(stmt).scalars())

    def for_tenant(
        self, tenant_id: str, decision_type: DecisionType | None = None
    ) -> list[Decision]:
        stmt = select(Decision).where(decision_table.c.tenant_id == tenant_id)
        if decision_type is not None:
            stmt = stmt.where(decision_table.c.decision_type == decision_type)
        stmt = stmt.order_by(decision_table.c.sequence)
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyWorkItemRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: WorkItem) -> None:
        self.session.add(entity)

    def get(self, tenant_id: str, work_item_id: UUID) -> WorkItem | None:
        stmt = (
            select(WorkItem)
            .where(work_item_table.c.tenant_id == tenant_id)
            .where(work_item_table.c.id == work_item_id)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def query(self, tenant_id: str, filters: WorkItemFilter) -> list[WorkItem]:
        stmt = select(WorkItem).where(work_item_table.c.tenant_id == tenant_id)
        if filters.types:
            stmt = stmt.where(work_item_table.c.type.in_(list(filters.types)))
        if filters.statuses:
            stmt = stmt.where(work_item_table.c.status.in_(list(filters.statuses)))
        if filters.priority is not None:
            stmt = stmt.where(work_item_table.c.priority == filters.priority)
        if filters.linked_evidence_id is not None:
            stmt = stmt.where(work_item_table.c.linked_evidence_id == filters.linked_evidence_id)
        if filters.linked_entity_ref is not None:
            stmt = stmt.where(work_item_table.c.linked_entity_ref == filters.linked_entity_ref)
        if filters.parent_work_item_id is not None:
            stmt = stmt.where(
                work_item_table.c.parent_work_item_id == filters.parent_work_item_id
            )
        stmt = stmt.order_by(work_item_table.c.created_at, work_item_table.c.id)
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)
        return list(self.session.execute(stmt).scalars())

    def open_conflict(self, tenant_id: str, entity_id: UUID, field_name: str) -> WorkItem | None:
        stmt = (
            select(WorkItem)
            .where(work_item_table.c.tenant_id == tenant_id)
            .where(work_item_table.c.type == WorkItemType.CONFLICT)
            .where(work_item_table.c.linked_entity_ref == entity_id)
            .where(work_item_table.c.field_name == field_name)
            .where(work_item_table.c.status != WorkItemStatus.DONE)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def open_mapping(self, tenant_id: str, evidence_id: UUID) -> WorkItem | None:
        stmt = (
            select(WorkItem)
            .where(work_item_table.c.tenant_id == tenant_id)
            .where(work_item_table.c.type == WorkItemType.MAPPING)
            .where(work_item_table.c.linked_evidence_id == evidence_id)
            .where(work_item_table.c.status != WorkItemStatus.DONE)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()


class SqlAlchemyFollowUpKeyRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, key: str) -> FollowUpKey | None:
        return self.session.get(FollowUpKey, key)

    def put(self, marker: FollowUpKey) -> None:
        existing = self.session.get(FollowUpKey, marker.key)
        if existing is None:
            self.session.add(marker)
            return
        existing.tenant_id = marker.tenant_id
        existing.work_item_id = marker.work_item_id
        existing.expires_at = marker.expires_at

    def purge_expired(self, now: datetime) -> int:
        stmt = delete(follow_up_key_table).where(follow_up_key_table.c.expires_at <= now)
        result = self.session.execute(stmt)
        return int(result.rowcount or 0)  # pyright: ignore[reportAttributeAccessIssue]


class SqlAlchemyPolicyRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def trust_policies(self, tenant_id: str, dataset_type: DatasetType) -> list[TrustPolicy]:
        stmt = (
            select(TrustPolicy)
            .where(trust_policy_table.c.tenant_id == tenant_id)
            .where(trust_policy_table.c.dataset_type == dataset_type)
        )
        return list(self.session.execute(stmt).scalars())

    def retention_rule(self, tenant_id: str, dataset_type: DatasetType) -> RetentionRule | None:
        stmt = (
            select(RetentionRule)
            .where(retention_rule_table.c.tenant_id == tenant_id)
            .where(retention_rule_table.c.dataset_type == dataset_type)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def add_trust_policy(self, policy: TrustPolicy) -> None:
        self.session.merge(policy)

    def add_retention_rule(self, rule: RetentionRule) -> None:
        self.session.merge(rule)


if TYPE_CHECKING:
    from supplyledger.domain.ports import (
        AuditEventRepository,
        CanonicalEntityRepository,
        DecisionRepository,
        EvidenceLinkRepository,
        EvidenceRepository,
        FollowUpKeyRepository,
        PolicyRepository,
        TenantRepository,
        WorkItemRepository,
    )

    def _evidence_repo_check(session: Session) -> EvidenceRepository:
        return SqlAlchemyEvidenceRepository(session)

    def _audit_repo_check(session: Session) -> AuditEventRepository:
        return SqlAlchemyAuditEventRepository(session)

    def _tenant_repo_check(session: Session) -> TenantRepository:
        return SqlAlchemyTenantRepository(session)

    def _entity_repo_check(session: Session) -> CanonicalEntityRepository:
        return SqlAlchemyCanonicalEntityRepository(session)

    def _link_repo_check(session: Session) -> EvidenceLinkRepository:
        return SqlAlchemyEvidenceLinkRepository(session)

    def _decision_repo_check(session: Session) -> DecisionRepository:
        return SqlAlchemyDecisionRepository(session)

    def _work_item_repo_check(session: Session) -> WorkItemRepository:
        return SqlAlchemyWorkItemRepository(session)

    def _follow_up_repo_check(session: Session) -> FollowUpKeyRepository:
        return SqlAlchemyFollowUpKeyRepository(session)

    def _policy_repo_check(session: Session) -> PolicyRepository:
        return SqlAlchemyPolicyRepository(session)
