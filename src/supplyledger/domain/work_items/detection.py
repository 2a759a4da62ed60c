"""Field-level disagreement detection over the evidence linked to one entity."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from supplyledger.domain.hashing import canonical_json
from supplyledger.domain.model import ConflictingClaim, DecisionType
from supplyledger.domain.resolution import claim_from_evidence

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from datetime import datetime
    from uuid import UUID

    from supplyledger.domain.model import CanonicalEntity, Decision, Evidence


class AssessmentKind(StrEnum):
    FIRST_OBSERVATION = "first-observation"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True)
class FieldAssessment:
    field_name: str
    kind: AssessmentKind
    claims: tuple[ConflictingClaim, ...]

    @property
    def evidence_ids(self) -> tuple[UUID, ...]:
        return tuple(claim.evidence_id for claim in self.claims if claim.evidence_id is not None)


def value_key(value: object) -> str:
    return canonical_json(value.strip() if isinstance(value, str) else value)


def claims_by_field(records: Iterable[Evidence]) -> dict[str, list[ConflictingClaim]]:
    claims: dict[str, list[ConflictingClaim]] = {}
    for record in records:
        claim = claim_from_evidence(record)
        if claim is None:
            continue
        for name, value in claim.attributes.items():
            claims.setdefault(name, []).append(
                ConflictingClaim(
                    value=value,
                    evidence_id=claim.evidence_id,
                    dataset_type=claim.dataset_type,
                    source_system=claim.source_system,
                    observed_at=claim.observed_at,
                )
            )
    return claims


def settled_evidence(decisions: Iterable[Decision]) -> dict[str, set[UUID]]:
    """Evidence ids already cited by a field decision, per field."""

    settled: dict[str, set[UUID]] = {}
    for decision in decisions:
        if decision.decision_type is DecisionType.FIELD_VALUE and decision.field_name:
            settled.setdefault(decision.field_name, set()).update(decision.evidence_ids)
    return settled


def field_decision_times(
    entity: CanonicalEntity, decisions: Iterable[Decision]
) -> dict[str, datetime]:
    """When each current field value was decided, keyed by field name."""

    by_id = {str(decision.id): decision.created_at for decision in decisions}
    return {
        name: by_id[decision_id]
        for name, decision_id in entity.field_decisions.items()
        if decision_id in by_id
    }


def most_recent(claims: Sequence[ConflictingClaim]) -> ConflictingClaim:
    return max(claims, key=lambda claim: (claim.observed_at, str(claim.evidence_id)))


def assess_entity(
    entity: CanonicalEntity,
    claims: Mapping[str, Sequence[ConflictingClaim]],
    settled: Mapping[str, set[UUID]],
    decided_at: Mapping[str, datetime] | None = None,
) -> list[FieldAssessment]:
    """Decide, per field, whether unsettled claims are a first observation or a conflict.

    Claims that agree with the current value need no action. A conflict carries
    every unsettled claim plus the claims behind the current value; a value no
    claim backs (set at onboarding, say) is represented by a claim without
    evidence, observed when the decision that set it was made.
    """

    assessments: list[FieldAssessment] = []
    for name in sorted(claims):
        field_claims = claims[name]
        done = settled.get(name, set())
        outstanding = [claim for claim in field_claims if claim.evidence_id not in done]
        if not outstanding:
            continue
        outstanding_values = {value_key(claim.value) for claim in outstanding}
        current = entity.value_of(name)
        if current is None:
            if len(outstanding_values) == 1:
                assessments.append(
                    FieldAssessment(name, AssessmentKind.FIRST_OBSERVATION, tuple(outstanding))
                )
            else:
                assessments.append(
                    FieldAssessment(name, AssessmentKind.CONFLICT, tuple(outstanding))
                )
            continue
        current_key = value_key(current)
        if outstanding_values == {current_key}:
            continue
        backing = [
            claim
            for claim in field_claims
            if claim.evidence_id in done and value_key(claim.value) == current_key
        ]
        if not backing and current_key not in outstanding_values:
            backing = [
                ConflictingClaim(
                    value=current,
                    evidence_id=None,
                    dataset_type=None,
                    source_system=None,
                    observed_at=(decided_at or {}).get(name, entity.created_at),
                )
            ]
        assessments.append(
            FieldAssessment(name, AssessmentKind.CONFLICT, tuple(backing + outstanding))
        )
    return assessments


def recency_hint(claims: Sequence[ConflictingClaim]) -> dict[str, object]:
    """Advisory only: the value a prefer-most-recent resolution would pick."""

    latest = most_recent(claims)
    return {
        "hint": "prefer more recent source",
        "value": latest.value,
        "evidence_id": str(latest.evidence_id) if latest.evidence_id else None,
        "observed_at": latest.observed_at.isoformat(),
    }
