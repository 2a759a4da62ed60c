from __future__ import annotations

from datetime import timedelta
from uuid import UUID, uuid4

from supplyledger.domain.model import (
    CanonicalEntity,
    ConflictingClaim,
    DatasetType,
    Decision,
    DecisionType,
    EntityType,
    ResolutionStrategy,
    SourceSystem,
)
from supplyledger.domain.work_items import (
    AssessmentKind,
    assess_entity,
    field_decision_times,
    recency_hint,
)
from supplyledger.domain.work_items.detection import most_recent
from tests.helpers.ledger import START, TENANT


def _entity(**fields: object) -> CanonicalEntity:
    return CanonicalEntity(
        tenant_id=TENANT,
        entity_type=EntityType.SUPPLIER,
        created_at=START,
        updated_at=START,
        fields=dict(fields),
    )


def _claim(value: object, *, days: int = 0, evidence_id: UUID | None = None) -> ConflictingClaim:
    return ConflictingClaim(
        value=value,
        evidence_id=evidence_id or uuid4(),
        dataset_type=DatasetType.SUPPLIER_MASTER,
        source_system=SourceSystem.SAP,
        observed_at=START + timedelta(days=days),
    )


def test_agreeing_claims_need_no_action() -> None:
    entity = _entity(country_code="DE")

    assessments = assess_entity(entity, {"country_code": [_claim("DE"), _claim(" DE ")]}, {})

    assert assessments == []


def test_single_value_on_an_empty_field_is_a_first_observation() -> None:
    first = _claim("1 Main Street")
    second = _claim("1 Main Street", days=1)

    (assessment,) = assess_entity(_entity(), {"address": [first, second]}, {})

    assert assessment.kind is AssessmentKind.FIRST_OBSERVATION
    assert assessment.evidence_ids == (first.evidence_id, second.evidence_id)


def test_disagreeing_claims_on_an_empty_field_conflict() -> None:
    (assessment,) = assess_entity(_entity(), {"address": [_claim("A"), _claim("B")]}, {})

    assert assessment.kind is AssessmentKind.CONFLICT
    assert len(assessment.claims) == 2


def test_conflict_includes_the_claims_behind_the_current_value() -> None:
    settled_claim = _claim("DE")
    new_claim = _claim("FR", days=3)

    (assessment,) = assess_entity(
        _entity(country_code="DE"),
        {"country_code": [settled_claim, new_claim]},
        {"country_code": {settled_claim.evidence_id}},  # type: ignore[arg-type]
    )

    assert assessment.kind is AssessmentKind.CONFLICT
    assert assessment.claims == (settled_claim, new_claim)


def test_unbacked_current_value_is_represented_without_evidence() -> None:
    (assessment,) = assess_entity(_entity(country_code="DE"), {"country_code": [_claim("FR")]}, {})

    backing, incoming = assessment.claims
    assert backing.value == "DE"
    assert backing.evidence_id is None
    assert incoming.value == "FR"
    assert assessment.evidence_ids == (incoming.evidence_id,)


def test_settled_claims_are_not_reassessed() -> None:
    claim = _claim("FR")

    assessments = assess_entity(
        _entity(country_code="DE"),
        {"country_code": [claim]},
        {"country_code": {claim.evidence_id}},  # type: ignore[arg-type]
    )

    assert assessments == []


def test_recency_hint_points_at_the_latest_claim() -> None:
    older = _claim("DE")
    newer = _claim("FR", days=14)

    hint = recency_hint([newer, older])

    assert hint["hint"] == "prefer more recent source"
    assert hint["value"] == "FR"
    assert hint["evidence_id"] == str(newer.evidence_id)


def _decision(decision_type: DecisionType, *, days: int) -> Decision:
    return Decision(
        tenant_id=TENANT,
        decision_type=decision_type,
        strategy=ResolutionStrategy.ONBOARDING,
        reason_code="TEST",
        created_by="rita",
        created_at=START + timedelta(days=days),
    )


def test_unbacked_value_is_dated_by_the_decision_that_set_it() -> None:
    onboarding = _decision(DecisionType.ENTITY_CREATE, days=0)
    first_address = _decision(DecisionType.FIELD_VALUE, days=10)
    entity = _entity()
    entity.apply_field("country_code", "DE", decision_id=onboarding.id, at=onboarding.created_at)
    entity.apply_field(
        "address", "1 Main Street", decision_id=first_address.id, at=first_address.created_at
    )
    incoming = _claim("FR", days=3)

    (assessment,) = assess_entity(
        entity,
        {"country_code": [incoming]},
        {},
        field_decision_times(entity, [onboarding, first_address]),
    )

    backing = assessment.claims[0]
    assert backing.observed_at == START
    assert most_recent(assessment.claims) is incoming
