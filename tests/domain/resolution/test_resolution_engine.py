from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from supplyledger.app import build_ledger
from supplyledger.domain.errors import (
    AccessDenied,
    AlreadyResolved,
    FieldErrorCode,
    NotFound,
    StateConflict,
    ValidationFailed,
)
from supplyledger.domain.model import (
    SYSTEM_EVIDENCE_ID,
    SYSTEM_POLICY_ACTOR,
    AuditAction,
    DecisionType,
    EntityType,
    ResolutionStrategy,
    WorkItemStatus,
    WorkItemType,
)
from supplyledger.domain.ports import AdvisoryHint, WorkItemFilter
from supplyledger.domain.resolution import LearnedWeightPolicy, SuggestionStatus
from tests.helpers.ledger import (
    QUARANTINE_REASON,
    TENANT,
    certificate_upload,
    erp_api_record,
    supplier_payload,
    unknown_scope_upload,
)

if TYPE_CHECKING:
    from supplyledger.adapters.sqlalchemy import SqlAlchemyLedgerUnitOfWork
    from supplyledger.app import SupplyLedger
    from supplyledger.domain.model import Actor, CanonicalEntity, DatasetType
    from tests.helpers.ledger import FrozenClock

FRENCH_SNAPSHOT = erp_api_record(
    snapshot_at="2025-02-15T00:00:00+00:00", payload=supplier_payload(country_code="FR")
)
NEW_SUPPLIER = erp_api_record(
    payload={"legal_name": "Zeta Components Ltd", "vat_number": "GB999", "country_code": "GB"}
)


def _register_acme(ledger: SupplyLedger, actor: Actor) -> CanonicalEntity:
    return ledger.resolution.register_entity(EntityType.SUPPLIER, supplier_payload(), actor=actor)


def test_register_entity_records_a_creation_decision(
    ledger: SupplyLedger, reviewer: Actor
) -> None:
    entity = _register_acme(ledger, reviewer)

    assert entity.fields == supplier_payload()
    assert set(entity.field_decisions) == set(supplier_payload())
    (event,) = ledger.audit_log.by_tenant(TENANT)
    assert event.action is AuditAction.ENTITY_CREATED
    assert event.evidence_id == SYSTEM_EVIDENCE_ID
    assert ledger.verify_projections(TENANT) == []


def test_exact_match_is_auto_approved(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor
) -> None:
    entity = _register_acme(ledger, reviewer)
    evidence = ledger.evidence.ingest(erp_api_record(), actor=submitter).evidence

    (suggestion,) = ledger.resolution.generate_suggestions(evidence.id, actor=submitter)
    assert suggestion.status is SuggestionStatus.AUTO_APPROVE_ELIGIBLE
    assert suggestion.target_entity_id == entity.id

    outcome = ledger.resolution.resolve_evidence(evidence.id, actor=submitter)

    assert outcome.auto_applied
    assert outcome.decision is not None
    assert outcome.decision.decision_type is DecisionType.ENTITY_LINK
    assert outcome.decision.strategy is ResolutionStrategy.AUTO_HIGH_CONFIDENCE
    assert outcome.decision.created_by == SYSTEM_POLICY_ACTOR
    assert outcome.work_item is not None
    assert outcome.work_item.status is WorkItemStatus.DONE
    linked = ledger.audit_log.by_evidence(TENANT, evidence.id)[-1]
    assert linked.action is AuditAction.ENTITY_LINKED
    assert linked.actor == SYSTEM_POLICY_ACTOR
    assert linked.context["requested_by"] == submitter.actor_id


def test_resolving_a_linked_record_again_changes_nothing(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor
) -> None:
    entity = _register_acme(ledger, reviewer)
    evidence = ledger.evidence.ingest(erp_api_record(), actor=submitter).evidence
    ledger.resolution.resolve_evidence(evidence.id, actor=submitter)

    again = ledger.resolution.resolve_evidence(evidence.id, actor=submitter)

    assert again.already_linked_to == entity.id
    assert again.decision is None


def test_partial_match_opens_one_mapping_work_item(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor
) -> None:
    entity = _register_acme(ledger, reviewer)
    evidence = ledger.evidence.ingest(FRENCH_SNAPSHOT, actor=submitter).evidence

    outcome = ledger.resolution.resolve_evidence(evidence.id, actor=submitter)
    repeat = ledger.resolution.resolve_evidence(evidence.id, actor=submitter)

    assert not outcome.auto_applied
    assert outcome.suggestions[0].status is SuggestionStatus.PENDING
    assert outcome.suggestions[0].confidence_score == pytest.approx(5.0 / 5.5)
    work_item = outcome.work_item
    assert work_item is not None
    assert work_item.type is WorkItemType.MAPPING
    assert work_item.status is WorkItemStatus.OPEN
    assert work_item.linked_entity_ref == entity.id
    assert repeat.work_item is not None
    assert repeat.work_item.id == work_item.id


def test_auto_approval_closes_the_open_mapping_work_item(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor
) -> None:
    evidence = ledger.evidence.ingest(FRENCH_SNAPSHOT, actor=submitter).evidence
    pending = ledger.resolution.resolve_evidence(evidence.id, actor=submitter).work_item
    assert pending is not None
    french = ledger.resolution.register_entity(
        EntityType.SUPPLIER, supplier_payload(country_code="FR"), actor=reviewer
    )
    acme = _register_acme(ledger, reviewer)

    outcome = ledger.resolution.resolve_evidence(evidence.id, actor=submitter)

    assert outcome.auto_applied
    assert outcome.work_item is not None
    assert outcome.work_item.id == pending.id
    assert outcome.work_item.status is WorkItemStatus.DONE
    assert outcome.work_item.decision_count == 1
    with pytest.raises(AlreadyResolved):
        ledger.resolution.approve_suggestion(pending.id, acme.id, actor=reviewer)
    with ledger.uow_factory() as uow:
        link = uow.repositories.links.get(TENANT, evidence.id)
        mappings = uow.repositories.work_items.query(
            TENANT, WorkItemFilter(types=frozenset({WorkItemType.MAPPING}))
        )
    assert link is not None
    assert link.entity_id == french.id
    assert [item.id for item in mappings] == [pending.id]


def test_quarantined_records_are_not_resolved(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor, clock: FrozenClock
) -> None:
    _register_acme(ledger, reviewer)
    evidence = ledger.evidence.ingest(
        erp_api_record(declared_scope="UNKNOWN"), actor=submitter
    ).evidence
    ledger.evidence.quarantine(
        evidence.id,
        reason=QUARANTINE_REASON,
        deadline=clock.now + timedelta(days=14),
        actor=submitter,
    )

    with pytest.raises(StateConflict):
        ledger.resolution.generate_suggestions(evidence.id, actor=submitter)
    with pytest.raises(StateConflict):
        ledger.resolution.resolve_evidence(evidence.id, actor=submitter)
    with ledger.uow_factory() as uow:
        assert uow.repositories.links.get(TENANT, evidence.id) is None


def test_unmatched_record_suggests_a_new_entity(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor
) -> None:
    _register_acme(ledger, reviewer)
    evidence = ledger.evidence.ingest(NEW_SUPPLIER, actor=submitter).evidence

    outcome = ledger.resolution.resolve_evidence(evidence.id, actor=submitter)

    (suggestion,) = outcome.suggestions
    assert suggestion.status is SuggestionStatus.CREATE_NEW
    assert outcome.work_item is not None
    assert outcome.work_item.linked_entity_ref is None


def test_document_datasets_do_not_resolve(ledger: SupplyLedger, submitter: Actor) -> None:
    evidence = ledger.evidence.ingest(certificate_upload(), actor=submitter).evidence

    with pytest.raises(ValidationFailed) as excinfo:
        ledger.resolution.generate_suggestions(evidence.id, actor=submitter)

    assert excinfo.value.has("dataset_type", FieldErrorCode.NOT_RESOLVABLE)


def test_approval_requires_a_reviewer(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor
) -> None:
    entity = _register_acme(ledger, reviewer)
    evidence = ledger.evidence.ingest(FRENCH_SNAPSHOT, actor=submitter).evidence
    work_item = ledger.resolution.resolve_evidence(evidence.id, actor=submitter).work_item
    assert work_item is not None

    with pytest.raises(AccessDenied):
        ledger.resolution.approve_suggestion(work_item.id, entity.id, actor=submitter)

    denied = ledger.audit_log.by_tenant(TENANT)[-1]
    assert denied.action is AuditAction.ACCESS_DENIED
    assert denied.actor == submitter.actor_id


def test_reviewer_links_to_an_existing_entity(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor
) -> None:
    entity = _register_acme(ledger, reviewer)
    evidence = ledger.evidence.ingest(FRENCH_SNAPSHOT, actor=submitter).evidence
    work_item = ledger.resolution.resolve_evidence(evidence.id, actor=submitter).work_item
    assert work_item is not None

    decision = ledger.resolution.approve_suggestion(
        str(work_item.id), str(entity.id), actor=reviewer, comment="same VAT number"
    )

    assert decision.decision_type is DecisionType.ENTITY_LINK
    assert decision.strategy is ResolutionStrategy.MANUAL_APPROVAL
    assert decision.created_by == reviewer.actor_id
    assert decision.evidence_ids == (evidence.id,)
    assert decision.sequence is not None
    closed = ledger.work_items.get_work_item(work_item.id, actor=reviewer)
    assert closed.status is WorkItemStatus.DONE
    assert closed.decision_count == 1

    with pytest.raises(AlreadyResolved):
        ledger.resolution.approve_suggestion(work_item.id, entity.id, actor=reviewer)


def test_reviewer_creates_a_new_entity(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor
) -> None:
    _register_acme(ledger, reviewer)
    evidence = ledger.evidence.ingest(NEW_SUPPLIER, actor=submitter).evidence
    work_item = ledger.resolution.resolve_evidence(evidence.id, actor=submitter).work_item
    assert work_item is not None

    decision = ledger.resolution.approve_suggestion(work_item.id, None, actor=reviewer)

    assert decision.decision_type is DecisionType.ENTITY_CREATE
    assert decision.entity_id is not None
    again = ledger.resolution.resolve_evidence(evidence.id, actor=submitter)
    assert again.already_linked_to == decision.entity_id
    assert ledger.verify_projections(TENANT) == []


def test_approval_target_must_exist(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor
) -> None:
    evidence = ledger.evidence.ingest(NEW_SUPPLIER, actor=submitter).evidence
    work_item = ledger.resolution.resolve_evidence(evidence.id, actor=submitter).work_item
    assert work_item is not None

    with pytest.raises(NotFound):
        ledger.resolution.approve_suggestion(work_item.id, evidence.id, actor=reviewer)


def test_resolve_unmapped_handles_every_pending_record(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor, clock: FrozenClock
) -> None:
    entity = _register_acme(ledger, reviewer)
    exact = ledger.evidence.ingest(erp_api_record(), actor=submitter).evidence
    new = ledger.evidence.ingest(NEW_SUPPLIER, actor=submitter).evidence
    ledger.evidence.ingest(certificate_upload(), actor=submitter)
    ledger.evidence.ingest(unknown_scope_upload(clock.now), actor=submitter)

    outcomes = ledger.resolution.resolve_unmapped(actor=submitter, max_workers=3)

    by_evidence = {outcome.evidence_id: outcome for outcome in outcomes}
    assert set(by_evidence) == {exact.id, new.id}
    assert by_evidence[exact.id].auto_applied
    assert by_evidence[exact.id].decision is not None
    assert by_evidence[exact.id].decision.entity_id == entity.id  # type: ignore[union-attr]
    assert by_evidence[new.id].work_item is not None
    assert ledger.resolution.resolve_unmapped(actor=submitter) == []


def test_learned_weights_replace_the_static_table(
    ledger: SupplyLedger, submitter: Actor, reviewer: Actor
) -> None:
    entity = _register_acme(ledger, reviewer)
    evidence = ledger.evidence.ingest(FRENCH_SNAPSHOT, actor=submitter).evidence
    work_item = ledger.resolution.resolve_evidence(evidence.id, actor=submitter).work_item
    assert work_item is not None
    ledger.resolution.approve_suggestion(work_item.id, entity.id, actor=reviewer)

    policy = ledger.learn_weights(TENANT)

    assert isinstance(policy, LearnedWeightPolicy)
    assert ledger.resolution.weights is policy
    weights = {
        matcher.attribute: matcher.weight for matcher in policy.matchers_for(EntityType.SUPPLIER)
    }
    assert weights["vat_number"] == pytest.approx(6.0)
    assert weights["country_code"] == pytest.approx(0.5)


class _StubClassifier:
    def __init__(self) -> None:
        self.calls: list[tuple[str, DatasetType]] = []

    def classify(self, text: str, *, dataset_type: DatasetType) -> AdvisoryHint | None:
        self.calls.append((text, dataset_type))
        return AdvisoryHint(label="distributor", confidence=0.8)


def test_advisory_hint_is_attached_but_never_decides(
    uow_factory: type[SqlAlchemyLedgerUnitOfWork],
    clock: FrozenClock,
    submitter: Actor,
) -> None:
    classifier = _StubClassifier()
    ledger = build_ledger(
        uow_factory=uow_factory, clock=clock, advisory=classifier, use_configured_advisory=False
    )
    evidence = ledger.evidence.ingest(NEW_SUPPLIER, actor=submitter).evidence

    outcome = ledger.resolution.resolve_evidence(evidence.id, actor=submitter)

    (suggestion,) = outcome.suggestions
    assert suggestion.advisory is not None
    assert suggestion.advisory.label == "distributor"
    assert suggestion.status is SuggestionStatus.CREATE_NEW
    assert outcome.work_item is not None
    assert outcome.work_item.advisory == "distributor"
    assert len(classifier.calls) == 1
