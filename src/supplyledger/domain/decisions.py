"""Decision log and the projections derived from it.

Canonical entity fields, evidence links, and work-item status are never written
directly. :func:`append_decision` stores a decision and applies it to those
projections in the same unit of work; :func:`replay` rebuilds the same state from
the log alone, which :func:`verify_projections` compares against storage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, cast
from uuid import UUID

from supplyledger.domain.errors import NotFound, reports_internal_errors
from supplyledger.domain.model import (
    CanonicalEntity,
    DecisionType,
    EntityType,
    EvidenceLink,
    WorkItemStatus,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from supplyledger.domain.model import Decision
    from supplyledger.domain.ports import LedgerRepositories, LedgerUnitOfWorkFactory

log = logging.getLogger(__name__)


def entity_create_details(
    entity_type: EntityType, fields: Mapping[str, object]
) -> dict[str, object]:
    """Details payload of an ``ENTITY_CREATE`` decision."""

    return {"entity_type": entity_type.value, "fields": dict(fields)}


def _created_fields(decision: Decision) -> dict[str, object]:
    return dict(cast("Mapping[str, object]", decision.details.get("fields", {})))


def append_decision(repos: LedgerRepositories, decision: Decision) -> Decision:
    """Append ``decision`` and project it; the caller commits."""

    if decision.entity_id is None and decision.decision_type is not DecisionType.STATUS_CHANGE:
        raise ValueError(f"{decision.decision_type} decisions must name an entity")
    repos.decisions.add(decision)

    if decision.decision_type is DecisionType.ENTITY_CREATE:
        entity = CanonicalEntity(
            id=cast("UUID", decision.entity_id),
            tenant_id=decision.tenant_id,
            entity_type=EntityType(str(decision.details["entity_type"])),
            created_at=decision.created_at,
            updated_at=decision.created_at,
        )
        for name, value in _created_fields(decision).items():
            entity.apply_field(name, value, decision_id=decision.id, at=decision.created_at)
        repos.entities.add(entity)
        _link(repos, decision)
    elif decision.decision_type is DecisionType.ENTITY_LINK:
        _link(repos, decision)
    elif decision.decision_type is DecisionType.FIELD_VALUE:
        entity = repos.entities.get(decision.tenant_id, cast("UUID", decision.entity_id))
        if entity is None:
            raise NotFound(resource="Entity", resource_id=str(decision.entity_id))
        entity.apply_field(
            cast("str", decision.field_name),
            decision.winning_value,
            decision_id=decision.id,
            at=decision.created_at,
        )

    if decision.work_item_id is not None:
        work_item = repos.work_items.get(decision.tenant_id, decision.work_item_id)
        if work_item is None:
            raise NotFound(resource="WorkItem", resource_id=str(decision.work_item_id))
        work_item.record_decision(decision)
    log.debug(
        "Projected %s decision %s (%s)", decision.decision_type, decision.id, decision.strategy
    )
    return decision


def _link(repos: LedgerRepositories, decision: Decision) -> None:
    entity_id = cast("UUID", decision.entity_id)
    for evidence_id in decision.evidence_ids:
        existing = repos.links.get(decision.tenant_id, evidence_id)
        if existing is not None:
            existing.entity_id = entity_id
            existing.decision_id = decision.id
            existing.created_at = decision.created_at
            continue
        repos.links.add(
            EvidenceLink(
                tenant_id=decision.tenant_id,
                evidence_id=evidence_id,
                entity_id=entity_id,
                decision_id=decision.id,
                created_at=decision.created_at,
            )
        )


# replay ------------------------------------------------------------------------


@dataclass(slots=True)
class ProjectionState:
    """Projection values rebuilt purely from the decision log."""

    entity_types: dict[UUID, EntityType] = field(default_factory=dict)
    fields: dict[UUID, dict[str, object]] = field(default_factory=dict)
    links: dict[UUID, UUID] = field(default_factory=dict)
    work_item_status: dict[UUID, WorkItemStatus] = field(default_factory=dict)
    decision_counts: dict[UUID, int] = field(default_factory=dict)


def replay(decisions: Iterable[Decision]) -> ProjectionState:
    """Fold decisions, in log order, into projection state."""

    state = ProjectionState()
    for decision in decisions:
        entity_id = decision.entity_id
        if decision.decision_type is DecisionType.ENTITY_CREATE and entity_id is not None:
            state.entity_types[entity_id] = EntityType(str(decision.details["entity_type"]))
            state.fields[entity_id] = _created_fields(decision)
        if (
            decision.decision_type in {DecisionType.ENTITY_CREATE, DecisionType.ENTITY_LINK}
            and entity_id is not None
        ):
            for evidence_id in decision.evidence_ids:
                state.links[evidence_id] = entity_id
        if (
            decision.decision_type is DecisionType.FIELD_VALUE
            and entity_id is not None
            and decision.field_name is not None
        ):
            state.fields.setdefault(entity_id, {})[decision.field_name] = decision.winning_value
        if decision.work_item_id is not None:
            work_item_id = decision.work_item_id
            state.decision_counts[work_item_id] = state.decision_counts.get(work_item_id, 0) + 1
            state.work_item_status[work_item_id] = (
                WorkItemStatus(str(decision.winning_value))
                if decision.decision_type is DecisionType.STATUS_CHANGE
                else WorkItemStatus.DONE
            )
    return state


@dataclass(frozen=True, slots=True)
class ProjectionMismatch:
    kind: str
    key: str
    expected: object
    actual: object


@reports_internal_errors
def verify_projections(
    uow_factory: LedgerUnitOfWorkFactory, tenant_id: str
) -> list[ProjectionMismatch]:
    """Compare stored projections with a replay of the tenant's decision log.

    Work items never touched by a decision keep their initial status and are not
    compared.
    """

    with uow_factory() as uow:
        repos = uow.repositories
        decisions = repos.decisions.for_tenant(tenant_id)
        entities = repos.entities.query(tenant_id)
        links = repos.links.for_tenant(tenant_id)
        replayed = replay(decisions)
        work_items = {
            work_item_id: repos.work_items.get(tenant_id, work_item_id)
            for work_item_id in replayed.work_item_status
        }

    mismatches: list[ProjectionMismatch] = []
    stored_fields = {entity.id: entity.fields for entity in entities}
    for entity_id in stored_fields.keys() | replayed.fields.keys():
        expected = replayed.fields.get(entity_id)
        actual = stored_fields.get(entity_id)
        if expected != actual:
            mismatches.append(ProjectionMismatch("entity", str(entity_id), expected, actual))

    stored_links = {link.evidence_id: link.entity_id for link in links}
    for evidence_id in stored_links.keys() | replayed.links.keys():
        expected_link = replayed.links.get(evidence_id)
        actual_link = stored_links.get(evidence_id)
        if expected_link != actual_link:
            mismatches.append(
                ProjectionMismatch("link", str(evidence_id), expected_link, actual_link)
            )

    for work_item_id, status in replayed.work_item_status.items():
        work_item = work_items[work_item_id]
        actual_state = (
            (work_item.status, work_item.decision_count) if work_item is not None else None
        )
        expected_state = (status, replayed.decision_counts[work_item_id])
        if actual_state != expected_state:
            mismatches.append(
                ProjectionMismatch("work_item", str(work_item_id), expected_state, actual_state)
            )

    if mismatches:
        log.warning("%d projection mismatches in tenant %s", len(mismatches), tenant_id)
    return mismatches
