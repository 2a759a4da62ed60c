"""Conflict detection, resolution, and follow-up work items.

Work-item status and canonical field values only change by appending a
:class:`~supplyledger.domain.model.Decision`; see :mod:`supplyledger.domain.decisions`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from supplyledger.config import LedgerSettings
from supplyledger.domain.decisions import append_decision
from supplyledger.domain.errors import (
    AccessDenied,
    AlreadyResolved,
    ErrorCode,
    FieldError,
    FieldErrorCode,
    NotFound,
    ValidationFailed,
    reports_internal_errors,
)
from supplyledger.domain.locks import KeyedLocks
from supplyledger.domain.model import (
    CONFLICT_STRATEGIES,
    SYSTEM_EVIDENCE_ID,
    SYSTEM_POLICY_ACTOR,
    AuditAction,
    Decision,
    DecisionType,
    FollowUpKey,
    Priority,
    ResolutionStrategy,
    Role,
    WorkItem,
    WorkItemStatus,
    WorkItemType,
    parse_id,
)
from supplyledger.domain.ports import ConcurrentWriteError, WorkItemFilter

from .detection import (
    AssessmentKind,
    assess_entity,
    claims_by_field,
    field_decision_times,
    recency_hint,
    settled_evidence,
    value_key,
)
from .strategies import prefer_most_recent, prefer_trusted_source

if TYPE_CHECKING:
    from uuid import UUID

    from supplyledger.domain.audit_log import AuditLog
    from supplyledger.domain.clock import Clock
    from supplyledger.domain.model import Actor, ConflictingClaim, DatasetType, TrustPolicy
    from supplyledger.domain.ports import LedgerRepositories, LedgerUnitOfWorkFactory

    from .detection import FieldAssessment

log = logging.getLogger(__name__)

OVERRIDE_ROLES = frozenset({Role.REVIEWER, Role.ADMIN})
MANUAL_STATUSES = frozenset({WorkItemStatus.OPEN, WorkItemStatus.IN_PROGRESS, WorkItemStatus.BLOCKED})


@dataclass(frozen=True, slots=True)
class DetectionResult:
    entity_id: UUID
    opened: list[WorkItem] = field(default_factory=list)
    already_open: list[WorkItem] = field(default_factory=list)
    first_observations: list[Decision] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class FollowUpResult:
    work_item_id: UUID
    created: bool
    code: ErrorCode | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "ok": True,
            "work_item_id": str(self.work_item_id),
            "created": self.created,
            "code": self.code.value if self.code else None,
        }


def follow_up_key(
    tenant_id: str,
    parent_id: UUID,
    work_type: WorkItemType,
    evidence_id: UUID | None,
    entity_ref: UUID | None,
) -> str:
    return "|".join(
        (
            tenant_id,
            str(parent_id),
            work_type.value,
            str(evidence_id) if evidence_id else "-",
            str(entity_ref) if entity_ref else "-",
        )
    )


class WorkItemEngine:
    def __init__(
        self,
        uow_factory: LedgerUnitOfWorkFactory,
        *,
        audit_log: AuditLog,
        settings: LedgerSettings | None = None,
        clock: Clock | None = None,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._audit = audit_log
        self._settings = settings or LedgerSettings()
        self._clock = clock or audit_log.now
        self._locks = locks or KeyedLocks()

    # detection -----------------------------------------------------------------

    @reports_internal_errors
    def detect_conflicts(
        self, entity_id: UUID | str, *, actor: Actor, request_id: str | None = None
    ) -> DetectionResult:
        """Open conflicts and project first observations for one canonical entity."""

        with self._audit.denials(actor, request_id=request_id):
            key = parse_id(entity_id, resource="Entity")
            with self._locks.hold(("entity", actor.tenant_id, key)), self._uow_factory() as uow:
                repos = uow.repositories
                entity = repos.entities.get(actor.tenant_id, key)
                if entity is None:
                    raise NotFound(resource="Entity", resource_id=str(key))
                links = repos.links.for_entity(actor.tenant_id, key)
                records = [
                    record
                    for link in links
                    if (record := repos.evidence.get(actor.tenant_id, link.evidence_id))
                    is not None
                ]
                decisions = repos.decisions.for_entity(actor.tenant_id, key)
                assessments = assess_entity(
                    entity,
                    claims_by_field(records),
                    settled_evidence(decisions),
                    field_decision_times(entity, decisions),
                )
                result = DetectionResult(entity_id=key)
                for assessment in assessments:
                    if assessment.kind is AssessmentKind.FIRST_OBSERVATION:
                        result.first_observations.append(
                            self._first_observation(repos, actor.tenant_id, key, assessment)
                        )
                        continue
                    existing = repos.work_items.open_conflict(
                        actor.tenant_id, key, assessment.field_name
                    )
                    if existing is not None:
                        result.already_open.append(existing)
                        continue
                    work_item = self._open_conflict(repos, actor, key, assessment)
                    self._audit.append(
                        uow,
                        self._audit.event(
                            actor=actor,
                            tenant_id=actor.tenant_id,
                            action=AuditAction.CONFLICT_OPENED,
                            request_id=request_id,
                            context={
                                "work_item_id": str(work_item.id),
                                "entity_id": str(key),
                                "field_name": assessment.field_name,
                                "evidence_ids": [str(item) for item in assessment.evidence_ids],
                            },
                        ),
                    )
                    result.opened.append(work_item)
                uow.commit()
        for work_item in result.opened:
            log.info(
                "Opened conflict %s on %s.%s", work_item.id, key, work_item.field_name
            )
        return result

    def _first_observation(
        self,
        repos: LedgerRepositories,
        tenant_id: str,
        entity_id: UUID,
        assessment: FieldAssessment,
    ) -> Decision:
        return append_decision(
            repos,
            Decision(
                tenant_id=tenant_id,
                decision_type=DecisionType.FIELD_VALUE,
                strategy=ResolutionStrategy.AUTO_FIRST_OBSERVATION,
                reason_code="FIRST_OBSERVATION",
                created_by=SYSTEM_POLICY_ACTOR,
                created_at=self._clock(),
                entity_id=entity_id,
                field_name=assessment.field_name,
                winning_value=assessment.claims[0].value,
                evidence_ids=assessment.evidence_ids,
            ),
        )

    def _open_conflict(
        self,
        repos: LedgerRepositories,
        actor: Actor,
        entity_id: UUID,
        assessment: FieldAssessment,
    ) -> WorkItem:
        now = self._clock()
        hint = recency_hint(assessment.claims)
        work_item = WorkItem(
            tenant_id=actor.tenant_id,
            type=WorkItemType.CONFLICT,
            created_at=now,
            created_by=actor.actor_id,
            updated_at=now,
            updated_by=actor.actor_id,
            priority=Priority.HIGH,
            linked_entity_ref=entity_id,
            linked_evidence_id=assessment.evidence_ids[-1] if assessment.evidence_ids else None,
            field_name=assessment.field_name,
            details={
                "claims": [claim.to_dict() for claim in assessment.claims],
                "advisory": hint,
            },
            advisory=f"{hint['hint']}: {hint['value']!r}",
        )
        repos.work_items.add(work_item)
        return work_item

    # resolution ----------------------------------------------------------------

    @reports_internal_errors
    def resolve_conflict(
        self,
        work_item_id: UUID | str,
        *,
        strategy: ResolutionStrategy,
        reason_code: str,
        actor: Actor,
        winning_value: object | None = None,
        comment: str | None = None,
        correction: bool = False,
        request_id: str | None = None,
    ) -> Decision:
        """Record the decision that settles a conflict and project its value.

        A resolved conflict is only decided again when ``correction`` is set; the
        new decision supersedes the previous one instead of replacing it.
        """

        with self._audit.denials(actor, request_id=request_id):
            self._check_resolution_request(strategy, reason_code, winning_value, actor)
            key = parse_id(work_item_id, resource="WorkItem")
            # linked_entity_ref never changes after creation
            with self._uow_factory() as uow:
                work_item = uow.repositories.work_items.get(actor.tenant_id, key)
                entity_id = work_item.linked_entity_ref if work_item is not None else None
            with self._locks.hold(
                ("work-item", actor.tenant_id, key), ("entity", actor.tenant_id, entity_id)
            ):
                decision = self._resolve(
                    key,
                    strategy=strategy,
                    reason_code=reason_code.strip(),
                    actor=actor,
                    winning_value=winning_value,
                    comment=comment,
                    correction=correction,
                    request_id=request_id,
                )
        log.info(
            "%s resolved conflict %s with %s (%s)",
            actor.actor_id,
            key,
            strategy,
            "correction" if correction else "first decision",
        )
        return decision

    def _check_resolution_request(
        self,
        strategy: ResolutionStrategy,
        reason_code: str,
        winning_value: object | None,
        actor: Actor,
    ) -> None:
        errors: list[FieldError] = []
        if strategy not in CONFLICT_STRATEGIES:
            errors.append(
                FieldError(
                    field="strategy",
                    code=FieldErrorCode.INVALID_VALUE,
                    message=f"{strategy} does not resolve conflicts",
                )
            )
        if not reason_code or not reason_code.strip():
            errors.append(
                FieldError(field="reason_code", code=FieldErrorCode.REQUIRED, message="reason_code is required")
            )
        if strategy is ResolutionStrategy.MANUAL_OVERRIDE and winning_value is None:
            errors.append(
                FieldError(
                    field="winning_value",
                    code=FieldErrorCode.REQUIRED,
                    message="manual-override requires a winning_value",
                )
            )
        if errors:
            raise ValidationFailed(errors)
        if strategy is ResolutionStrategy.MANUAL_OVERRIDE and not actor.has_any_role(
            *OVERRIDE_ROLES
        ):
            raise AccessDenied(
                actor_id=actor.actor_id,
                action="override conflicting values",
                required_roles=OVERRIDE_ROLES,
            )

    def _resolve(
        self,
        work_item_id: UUID,
        *,
        strategy: ResolutionStrategy,
        reason_code: str,
        actor: Actor,
        winning_value: object | None,
        comment: str | None,
        correction: bool,
        request_id: str | None,
    ) -> Decision:
        with self._uow_factory() as uow:
            repos = uow.repositories
            work_item = repos.work_items.get(actor.tenant_id, work_item_id)
            if work_item is None or work_item.type is not WorkItemType.CONFLICT:
                raise NotFound(resource="WorkItem", resource_id=str(work_item_id))
            if work_item.is_done and not correction:
                raise AlreadyResolved(work_item_id=str(work_item.id))
            claims = work_item.conflicting_claims
            field_name = work_item.field_name or ""
            chosen = self._choose(
                repos, actor.tenant_id, claims, strategy=strategy, field_name=field_name
            )
            if chosen is not None:
                if winning_value is not None and value_key(winning_value) != value_key(
                    chosen.value
                ):
                    raise ValidationFailed(
                        [
                            FieldError(
                                field="winning_value",
                                code=FieldErrorCode.WINNING_VALUE_MISMATCH,
                                message=(
                                    f"{strategy} selects {chosen.value!r}, not {winning_value!r}"
                                ),
                            )
                        ]
                    )
                winning_value = chosen.value
            previous = repos.decisions.for_work_item(actor.tenant_id, work_item.id)
            decision = append_decision(
                repos,
                Decision(
                    tenant_id=actor.tenant_id,
                    decision_type=DecisionType.FIELD_VALUE,
                    strategy=strategy,
                    reason_code=reason_code,
                    created_by=actor.actor_id,
                    created_at=self._clock(),
                    work_item_id=work_item.id,
                    entity_id=work_item.linked_entity_ref,
                    field_name=field_name,
                    winning_value=winning_value,
                    evidence_ids=tuple(
                        claim.evidence_id for claim in claims if claim.evidence_id is not None
                    ),
                    comment=comment,
                    supersedes_decision_id=previous[-1].id if correction and previous else None,
                    details={
                        "winning_evidence_id": (
                            str(chosen.evidence_id) if chosen and chosen.evidence_id else None
                        ),
                        "correction": correction,
                    },
                ),
            )
            self._audit.append(
                uow,
                self._audit.event(
                    actor=actor,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.CONFLICT_RESOLVED,
                    evidence_id=(
                        chosen.evidence_id
                        if chosen is not None and chosen.evidence_id
                        else SYSTEM_EVIDENCE_ID
                    ),
                    request_id=request_id,
                    context={
                        "work_item_id": str(work_item.id),
                        "entity_id": str(work_item.linked_entity_ref),
                        "field_name": field_name,
                        "decision_id": str(decision.id),
                        "strategy": strategy.value,
                        "correction": correction,
                    },
                ),
            )
            uow.commit()
        return decision

    def _choose(
        self,
        repos: LedgerRepositories,
        tenant_id: str,
        claims: tuple[ConflictingClaim, ...],
        *,
        strategy: ResolutionStrategy,
        field_name: str,
    ) -> ConflictingClaim | None:
        if strategy is ResolutionStrategy.PREFER_MOST_RECENT:
            return prefer_most_recent(claims)
        if strategy is ResolutionStrategy.PREFER_TRUSTED_SOURCE:
            dataset_types = {claim.dataset_type for claim in claims if claim.dataset_type}
            policies: dict[DatasetType, list[TrustPolicy]] = {
                dataset_type: repos.policies.trust_policies(tenant_id, dataset_type)
                for dataset_type in dataset_types
            }
            return prefer_trusted_source(claims, field_name=field_name, policies=policies)
        return None

    # status and follow-ups -----------------------------------------------------

    @reports_internal_errors
    def update_status(
        self,
        work_item_id: UUID | str,
        status: WorkItemStatus,
        *,
        reason_code: str,
        actor: Actor,
        comment: str | None = None,
        request_id: str | None = None,
    ) -> Decision:
        """Move an open work item between OPEN, IN_PROGRESS and BLOCKED."""

        with self._audit.denials(actor, request_id=request_id):
            if status not in MANUAL_STATUSES:
                raise ValidationFailed(
                    [
                        FieldError(
                            field="status",
                            code=FieldErrorCode.INVALID_VALUE,
                            message="Work items are closed by resolving them",
                        )
                    ]
                )
            key = parse_id(work_item_id, resource="WorkItem")
            with self._locks.hold(("work-item", actor.tenant_id, key)), self._uow_factory() as uow:
                repos = uow.repositories
                work_item = repos.work_items.get(actor.tenant_id, key)
                if work_item is None:
                    raise NotFound(resource="WorkItem", resource_id=str(key))
                if work_item.is_done:
                    raise AlreadyResolved(work_item_id=str(key))
                previous = work_item.status
                decision = append_decision(
                    repos,
                    Decision(
                        tenant_id=actor.tenant_id,
                        decision_type=DecisionType.STATUS_CHANGE,
                        strategy=ResolutionStrategy.STATUS_UPDATE,
                        reason_code=reason_code,
                        created_by=actor.actor_id,
                        created_at=self._clock(),
                        work_item_id=key,
                        entity_id=work_item.linked_entity_ref,
                        winning_value=status.value,
                        comment=comment,
                        details={"previous_status": previous.value},
                    ),
                )
                self._audit.append(
                    uow,
                    self._audit.event(
                        actor=actor,
                        tenant_id=actor.tenant_id,
                        action=AuditAction.WORK_ITEM_STATUS_CHANGED,
                        evidence_id=work_item.linked_evidence_id,
                        request_id=request_id,
                        context={
                            "work_item_id": str(key),
                            "previous_status": previous.value,
                            "status": status.value,
                        },
                    ),
                )
                uow.commit()
        log.info("Work item %s moved %s -> %s", key, previous, status)
        return decision

    @reports_internal_errors
    def create_follow_up(
        self,
        parent_id: UUID | str,
        work_type: WorkItemType,
        *,
        actor: Actor,
        priority: Priority = Priority.MEDIUM,
        evidence_id: UUID | None = None,
        entity_ref: UUID | None = None,
        request_id: str | None = None,
    ) -> FollowUpResult:
        """Create a follow-up work item, collapsing repeats inside the dedup window."""

        with self._audit.denials(actor, request_id=request_id):
            parent = parse_id(parent_id, resource="WorkItem")
            key = follow_up_key(actor.tenant_id, parent, work_type, evidence_id, entity_ref)
            with self._locks.hold(("follow-up", key)):
                try:
                    return self._create_follow_up(
                        key,
                        parent,
                        work_type,
                        actor=actor,
                        priority=priority,
                        evidence_id=evidence_id,
                        entity_ref=entity_ref,
                        request_id=request_id,
                    )
                except ConcurrentWriteError:
                    # another process won the race for this key
                    with self._uow_factory() as uow:
                        marker = uow.repositories.follow_up_keys.get(key)
                    if marker is None:
                        raise
                    return FollowUpResult(
                        work_item_id=marker.work_item_id,
                        created=False,
                        code=ErrorCode.DUPLICATE_FOLLOW_UP,
                    )

    def _create_follow_up(
        self,
        key: str,
        parent: UUID,
        work_type: WorkItemType,
        *,
        actor: Actor,
        priority: Priority,
        evidence_id: UUID | None,
        entity_ref: UUID | None,
        request_id: str | None,
    ) -> FollowUpResult:
        now = self._clock()
        with self._uow_factory() as uow:
            repos = uow.repositories
            if repos.work_items.get(actor.tenant_id, parent) is None:
                raise NotFound(resource="WorkItem", resource_id=str(parent))
            marker = repos.follow_up_keys.get(key)
            if marker is not None and marker.is_live(now):
                log.info("Follow-up %s collapsed onto %s", key, marker.work_item_id)
                return FollowUpResult(
                    work_item_id=marker.work_item_id,
                    created=False,
                    code=ErrorCode.DUPLICATE_FOLLOW_UP,
                )
            work_item = WorkItem(
                tenant_id=actor.tenant_id,
                type=work_type,
                created_at=now,
                created_by=actor.actor_id,
                updated_at=now,
                updated_by=actor.actor_id,
                priority=priority,
                linked_evidence_id=evidence_id,
                linked_entity_ref=entity_ref,
                parent_work_item_id=parent,
            )
            repos.work_items.add(work_item)
            repos.follow_up_keys.put(
                FollowUpKey(
                    key=key,
                    tenant_id=actor.tenant_id,
                    work_item_id=work_item.id,
                    expires_at=now + timedelta(seconds=self._settings.follow_up_dedup_seconds),
                )
            )
            self._audit.append(
                uow,
                self._audit.event(
                    actor=actor,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.FOLLOW_UP_CREATED,
                    evidence_id=evidence_id,
                    request_id=request_id,
                    context={
                        "work_item_id": str(work_item.id),
                        "parent_work_item_id": str(parent),
                        "type": work_type.value,
                    },
                ),
            )
            uow.commit()
        log.info("Created %s follow-up %s under %s", work_type, work_item.id, parent)
        return FollowUpResult(work_item_id=work_item.id, created=True)

    @reports_internal_errors
    def purge_expired_follow_up_keys(self) -> int:
        with self._uow_factory() as uow:
            purged = uow.repositories.follow_up_keys.purge_expired(self._clock())
            uow.commit()
        if purged:
            log.info("Purged %d expired follow-up keys", purged)
        return purged

    # reads ---------------------------------------------------------------------

    @reports_internal_errors
    def get_work_item(
        self, work_item_id: UUID | str, *, actor: Actor, request_id: str | None = None
    ) -> WorkItem:
        with self._audit.denials(actor, request_id=request_id):
            key = parse_id(work_item_id, resource="WorkItem")
            with self._uow_factory() as uow:
                work_item = uow.repositories.work_items.get(actor.tenant_id, key)
            if work_item is None:
                raise NotFound(resource="WorkItem", resource_id=str(key))
            return work_item

    @reports_internal_errors
    def list_work_items(
        self, *, actor: Actor, filters: WorkItemFilter | None = None
    ) -> list[WorkItem]:
        with self._uow_factory() as uow:
            return uow.repositories.work_items.query(actor.tenant_id, filters or WorkItemFilter())

    @reports_internal_errors
    def list_decisions(
        self, work_item_id: UUID | str, *, actor: Actor, request_id: str | None = None
    ) -> list[Decision]:
        with self._audit.denials(actor, request_id=request_id):
            key = parse_id(work_item_id, resource="WorkItem")
            with self._uow_factory() as uow:
                repos = uow.repositories
                if repos.work_items.get(actor.tenant_id, key) is None:
                    raise NotFound(resource="WorkItem", resource_id=str(key))
                return repos.decisions.for_work_item(actor.tenant_id, key)
