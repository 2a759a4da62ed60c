"""Entity resolution: score claims against canonical entities and act on the result.

Scoring is pure and may run on any thread. Applying a result (auto-approval or
opening a mapping work item) is a unit of work serialized per evidence record
and per target entity.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING
from uuid import UUID

from supplyledger.config import LedgerSettings
from supplyledger.domain.decisions import append_decision, entity_create_details
from supplyledger.domain.errors import (
    AccessDenied,
    AlreadyResolved,
    FieldError,
    FieldErrorCode,
    NotFound,
    StateConflict,
    ValidationFailed,
    reports_internal_errors,
)
from supplyledger.domain.ledger import parse_evidence_id
from supplyledger.domain.locks import KeyedLocks
from supplyledger.domain.model import (
    SYSTEM_EVIDENCE_ID,
    SYSTEM_POLICY_ACTOR,
    AuditAction,
    CanonicalEntity,
    Decision,
    DecisionType,
    LedgerState,
    Priority,
    ResolutionStrategy,
    Role,
    WorkItem,
    WorkItemType,
    new_id,
    parse_id,
)
from supplyledger.domain.ports import EvidenceFilter, WorkItemFilter

from .claims import ENTITY_TYPE_BY_DATASET, EvidenceClaim, claim_from_evidence
from .matchers import is_absent
from .weights import StaticWeightPolicy, WeightPolicy

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from supplyledger.domain.audit_log import AuditLog
    from supplyledger.domain.clock import Clock
    from supplyledger.domain.model import Actor, EntityType, Evidence
    from supplyledger.domain.ports import (
        AdvisoryClassifier,
        AdvisoryHint,
        LedgerRepositories,
        LedgerUnitOfWork,
        LedgerUnitOfWorkFactory,
    )

    from .matchers import AttributeMatcher

log = logging.getLogger(__name__)

REVIEWER_ROLES = frozenset({Role.REVIEWER, Role.ADMIN})
_RESOLVABLE_STATES = frozenset({LedgerState.INGESTED, LedgerState.SEALED})


class SuggestionStatus(StrEnum):
    AUTO_APPROVE_ELIGIBLE = "AUTO_APPROVE_ELIGIBLE"
    PENDING = "PENDING"
    CREATE_NEW = "CREATE_NEW"


@dataclass(frozen=True, slots=True)
class CandidateScore:
    entity_id: UUID
    confidence_score: float
    matched_attributes: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True, slots=True, kw_only=True)
class MappingSuggestion:
    """Recomputed view of where a claim should resolve; never stored as a decision."""

    source_evidence_id: UUID
    target_entity_id: UUID | None
    confidence_score: float
    matched_attributes: dict[str, float]
    auto_approve_eligible: bool
    status: SuggestionStatus
    advisory: AdvisoryHint | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "source_evidence_id": str(self.source_evidence_id),
            "target_entity_id": str(self.target_entity_id) if self.target_entity_id else None,
            "confidence_score": round(self.confidence_score, 4),
            "matched_attributes": {
                name: round(value, 4) for name, value in self.matched_attributes.items()
            },
            "auto_approve_eligible": self.auto_approve_eligible,
            "status": self.status.value,
            "advisory": self.advisory.to_dict() if self.advisory else None,
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class ResolutionOutcome:
    evidence_id: UUID
    suggestions: tuple[MappingSuggestion, ...]
    decision: Decision | None = None
    work_item: WorkItem | None = None
    already_linked_to: UUID | None = None

    @property
    def auto_applied(self) -> bool:
        return self.decision is not None


def score_candidate(
    claim_attributes: Mapping[str, object],
    entity_fields: Mapping[str, object],
    matchers: Sequence[AttributeMatcher],
) -> tuple[float, dict[str, float]]:
    """Weighted mean similarity over attributes present on both sides.

    Returns ``0.0`` unless at least one identifying attribute was compared.
    """

    total = 0.0
    weights = 0.0
    identifying = False
    similarities: dict[str, float] = {}
    for matcher in matchers:
        left = claim_attributes.get(matcher.attribute)
        right = entity_fields.get(matcher.attribute)
        if is_absent(left) or is_absent(right) or matcher.weight <= 0:
            continue
        similarity = matcher.similarity(left, right)
        similarities[matcher.attribute] = similarity
        total += similarity * matcher.weight
        weights += matcher.weight
        identifying = identifying or matcher.identifying
    if not identifying or weights == 0:
        return 0.0, similarities
    return total / weights, similarities


def rank_candidates(
    claim: EvidenceClaim,
    candidates: Sequence[CanonicalEntity],
    matchers: Sequence[AttributeMatcher],
) -> list[CandidateScore]:
    scores = []
    for candidate in candidates:
        if candidate.entity_type is not claim.entity_type:
            continue
        score, matched = score_candidate(claim.attributes, candidate.fields, matchers)
        scores.append(
            CandidateScore(entity_id=candidate.id, confidence_score=score, matched_attributes=matched)
        )
    # ties broken by id so ranking is stable
    scores.sort(key=lambda item: (-item.confidence_score, str(item.entity_id)))
    return scores


def build_suggestions(
    claim: EvidenceClaim,
    ranked: Sequence[CandidateScore],
    *,
    settings: LedgerSettings,
    advisory: AdvisoryHint | None = None,
) -> list[MappingSuggestion]:
    suggestions: list[MappingSuggestion] = []
    for candidate in ranked:
        if candidate.confidence_score < settings.suggestion_threshold:
            break
        eligible = candidate.confidence_score >= settings.auto_approve_threshold
        suggestions.append(
            MappingSuggestion(
                source_evidence_id=claim.evidence_id,
                target_entity_id=candidate.entity_id,
                confidence_score=candidate.confidence_score,
                matched_attributes=dict(candidate.matched_attributes),
                auto_approve_eligible=eligible,
                status=(
                    SuggestionStatus.AUTO_APPROVE_ELIGIBLE if eligible else SuggestionStatus.PENDING
                ),
                advisory=advisory,
            )
        )
    if suggestions:
        return suggestions
    best = ranked[0].confidence_score if ranked else 0.0
    return [
        MappingSuggestion(
            source_evidence_id=claim.evidence_id,
            target_entity_id=None,
            confidence_score=best,
            matched_attributes={},
            auto_approve_eligible=False,
            status=SuggestionStatus.CREATE_NEW,
            advisory=advisory,
        )
    ]


class EntityResolutionEngine:
    def __init__(
        self,
        uow_factory: LedgerUnitOfWorkFactory,
        *,
        audit_log: AuditLog,
        settings: LedgerSettings | None = None,
        weights: WeightPolicy | None = None,
        advisory: AdvisoryClassifier | None = None,
        clock: Clock | None = None,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._audit = audit_log
        self._settings = settings or LedgerSettings()
        self._weights = weights or StaticWeightPolicy()
        self._advisory = advisory
        self._clock = clock or audit_log.now
        self._locks = locks or KeyedLocks()

    @property
    def weights(self) -> WeightPolicy:
        return self._weights

    @weights.setter
    def weights(self, policy: WeightPolicy) -> None:
        self._weights = policy

    # suggestions ---------------------------------------------------------------

    @reports_internal_errors
    def generate_suggestions(
        self, evidence_id: UUID | str, *, actor: Actor, request_id: str | None = None
    ) -> list[MappingSuggestion]:
        with self._audit.denials(actor, request_id=request_id):
            claim, candidates = self._load_claim(actor.tenant_id, parse_evidence_id(evidence_id))
        return self._suggest(claim, candidates, advisory=self._classify(claim))

    def _load_claim(
        self, tenant_id: str, evidence_id: UUID
    ) -> tuple[EvidenceClaim, list[CanonicalEntity]]:
        with self._uow_factory() as uow:
            evidence = uow.repositories.evidence.get(tenant_id, evidence_id)
            if evidence is None:
                raise NotFound(resource="Evidence", resource_id=str(evidence_id))
            if evidence.ledger_state not in _RESOLVABLE_STATES:
                raise StateConflict(
                    f"Evidence {evidence.id} is {evidence.ledger_state} and cannot be resolved",
                    details={"evidence_id": str(evidence.id), "ledger_state": evidence.ledger_state.value},
                )
            claim = self._claim(evidence)
            candidates = uow.repositories.entities.query(tenant_id, claim.entity_type)
        return claim, candidates

    def _claim(self, evidence: Evidence) -> EvidenceClaim:
        claim = claim_from_evidence(evidence)
        if claim is None:
            raise ValidationFailed(
                [
                    FieldError(
                        field="dataset_type",
                        code=FieldErrorCode.NOT_RESOLVABLE,
                        message=f"{evidence.dataset_type} records do not resolve to an entity",
                    )
                ]
            )
        return claim

    def _classify(self, claim: EvidenceClaim) -> AdvisoryHint | None:
        if self._advisory is None or not claim.text:
            return None
        return self._advisory.classify(claim.text, dataset_type=claim.dataset_type)

    def _suggest(
        self,
        claim: EvidenceClaim,
        candidates: Sequence[CanonicalEntity],
        *,
        advisory: AdvisoryHint | None,
    ) -> list[MappingSuggestion]:
        matchers = self._weights.matchers_for(claim.entity_type)
        ranked = rank_candidates(claim, candidates, matchers)
        return build_suggestions(claim, ranked, settings=self._settings, advisory=advisory)

    # applying ------------------------------------------------------------------

    @reports_internal_errors
    def resolve_evidence(
        self, evidence_id: UUID | str, *, actor: Actor, request_id: str | None = None
    ) -> ResolutionOutcome:
        """Auto-approve the best suggestion when eligible, else open a mapping work item."""

        with self._audit.denials(actor, request_id=request_id):
            claim, candidates = self._load_claim(actor.tenant_id, parse_evidence_id(evidence_id))
        suggestions = self._suggest(claim, candidates, advisory=self._classify(claim))
        return self._apply(claim, suggestions, actor=actor, request_id=request_id)

    def _apply(
        self,
        claim: EvidenceClaim,
        suggestions: Sequence[MappingSuggestion],
        *,
        actor: Actor,
        request_id: str | None,
    ) -> ResolutionOutcome:
        best = suggestions[0]
        keys: list[object] = [("evidence", claim.tenant_id, claim.evidence_id)]
        if best.auto_approve_eligible and best.target_entity_id is not None:
            keys.append(("entity", claim.tenant_id, best.target_entity_id))
        with self._locks.hold(*keys), self._uow_factory() as uow:
            repos = uow.repositories
            link = repos.links.get(claim.tenant_id, claim.evidence_id)
            if link is not None:
                return ResolutionOutcome(
                    evidence_id=claim.evidence_id,
                    suggestions=tuple(suggestions),
                    already_linked_to=link.entity_id,
                )
            pending = repos.work_items.open_mapping(claim.tenant_id, claim.evidence_id)
            if best.auto_approve_eligible and best.target_entity_id is not None:
                decision, work_item = self._auto_approve(
                    uow, claim, best, actor, request_id, pending=pending
                )
                uow.commit()
                log.info(
                    "Auto-approved evidence %s -> entity %s (%.3f)",
                    claim.evidence_id,
                    best.target_entity_id,
                    best.confidence_score,
                )
                return ResolutionOutcome(
                    evidence_id=claim.evidence_id,
                    suggestions=tuple(suggestions),
                    decision=decision,
                    work_item=work_item,
                )
            work_item = pending
            if work_item is None:
                work_item = self._open_mapping(repos, claim, suggestions, actor)
                uow.commit()
                log.info("Opened mapping work item %s for %s", work_item.id, claim.evidence_id)
            return ResolutionOutcome(
                evidence_id=claim.evidence_id,
                suggestions=tuple(suggestions),
                work_item=work_item,
            )

    def _auto_approve(
        self,
        uow: LedgerUnitOfWork,
        claim: EvidenceClaim,
        suggestion: MappingSuggestion,
        actor: Actor,
        request_id: str | None,
        *,
        pending: WorkItem | None,
    ) -> tuple[Decision, WorkItem]:
        """Link through the open mapping item if one exists, else a new one."""

        now = self._clock()
        if pending is not None:
            work_item = pending
        else:
            work_item = self._auto_mapping_item(claim, suggestion, now)
            uow.repositories.work_items.add(work_item)
        decision = append_decision(
            uow.repositories,
            Decision(
                tenant_id=claim.tenant_id,
                decision_type=DecisionType.ENTITY_LINK,
                strategy=ResolutionStrategy.AUTO_HIGH_CONFIDENCE,
                reason_code="AUTO_APPROVE_THRESHOLD",
                created_by=SYSTEM_POLICY_ACTOR,
                created_at=now,
                work_item_id=work_item.id,
                entity_id=suggestion.target_entity_id,
                evidence_ids=(claim.evidence_id,),
                details=self._link_details(claim.entity_type, suggestion),
            ),
        )
        self._audit.append(
            uow,
            self._audit.event(
                actor=SYSTEM_POLICY_ACTOR,
                tenant_id=claim.tenant_id,
                action=AuditAction.ENTITY_LINKED,
                evidence_id=claim.evidence_id,
                request_id=request_id,
                context={
                    "entity_id": str(suggestion.target_entity_id),
                    "decision_id": str(decision.id),
                    "strategy": decision.strategy.value,
                    "confidence_score": round(suggestion.confidence_score, 4),
                    "requested_by": actor.actor_id,
                },
            ),
        )
        return decision, work_item

    def _auto_mapping_item(
        self, claim: EvidenceClaim, suggestion: MappingSuggestion, now: datetime
    ) -> WorkItem:
        return WorkItem(
            tenant_id=claim.tenant_id,
            type=WorkItemType.MAPPING,
            created_at=now,
            created_by=SYSTEM_POLICY_ACTOR,
            updated_at=now,
            updated_by=SYSTEM_POLICY_ACTOR,
            linked_evidence_id=claim.evidence_id,
            linked_entity_ref=suggestion.target_entity_id,
            details={"suggestions": [suggestion.to_dict()]},
        )

    def _link_details(
        self, entity_type: EntityType, suggestion: MappingSuggestion
    ) -> dict[str, object]:
        return {
            "entity_type": entity_type.value,
            "confidence_score": suggestion.confidence_score,
            "matched_attributes": dict(suggestion.matched_attributes),
        }

    def _open_mapping(
        self,
        repos: LedgerRepositories,
        claim: EvidenceClaim,
        suggestions: Sequence[MappingSuggestion],
        actor: Actor,
    ) -> WorkItem:
        now = self._clock()
        best = suggestions[0]
        work_item = WorkItem(
            tenant_id=claim.tenant_id,
            type=WorkItemType.MAPPING,
            created_at=now,
            created_by=actor.actor_id,
            updated_at=now,
            updated_by=actor.actor_id,
            priority=Priority.MEDIUM,
            linked_evidence_id=claim.evidence_id,
            linked_entity_ref=best.target_entity_id,
            details={"suggestions": [suggestion.to_dict() for suggestion in suggestions]},
            advisory=best.advisory.label if best.advisory else None,
        )
        repos.work_items.add(work_item)
        return work_item

    # human approval ------------------------------------------------------------

    @reports_internal_errors
    def approve_suggestion(
        self,
        work_item_id: UUID | str,
        target_entity_id: UUID | str | None,
        *,
        actor: Actor,
        comment: str | None = None,
        request_id: str | None = None,
    ) -> Decision:
        """Resolve a mapping work item by linking to ``target_entity_id`` or creating an entity."""

        with self._audit.denials(actor, request_id=request_id):
            if not actor.has_any_role(*REVIEWER_ROLES):
                raise AccessDenied(
                    actor_id=actor.actor_id,
                    action="approve mapping suggestions",
                    required_roles=REVIEWER_ROLES,
                )
            item_key = parse_id(work_item_id, resource="WorkItem")
            target = (
                parse_id(target_entity_id, resource="Entity")
                if target_entity_id is not None
                else None
            )
            keys: list[object] = [("work-item", actor.tenant_id, item_key)]
            evidence_key = self._mapped_evidence_id(actor.tenant_id, item_key)
            if evidence_key is not None:
                keys.append(("evidence", actor.tenant_id, evidence_key))
            if target is not None:
                keys.append(("entity", actor.tenant_id, target))
            with self._locks.hold(*keys), self._uow_factory() as uow:
                repos = uow.repositories
                work_item = repos.work_items.get(actor.tenant_id, item_key)
                if work_item is None or work_item.type is not WorkItemType.MAPPING:
                    raise NotFound(resource="WorkItem", resource_id=str(item_key))
                if work_item.is_done:
                    raise AlreadyResolved(work_item_id=str(work_item.id))
                evidence_id = work_item.linked_evidence_id
                evidence = (
                    repos.evidence.get(actor.tenant_id, evidence_id) if evidence_id else None
                )
                if evidence is None:
                    raise NotFound(resource="Evidence", resource_id=str(evidence_id))
                claim = self._claim(evidence)
                now = self._clock()
                if target is not None:
                    entity = repos.entities.get(actor.tenant_id, target)
                    if entity is None or entity.entity_type is not claim.entity_type:
                        raise NotFound(resource="Entity", resource_id=str(target))
                    matchers = self._weights.matchers_for(claim.entity_type)
                    score, matched = score_candidate(claim.attributes, entity.fields, matchers)
                    decision = Decision(
                        tenant_id=actor.tenant_id,
                        decision_type=DecisionType.ENTITY_LINK,
                        strategy=ResolutionStrategy.MANUAL_APPROVAL,
                        reason_code="MAPPING_APPROVED",
                        created_by=actor.actor_id,
                        created_at=now,
                        work_item_id=work_item.id,
                        entity_id=entity.id,
                        evidence_ids=(claim.evidence_id,),
                        comment=comment,
                        details={
                            "entity_type": claim.entity_type.value,
                            "confidence_score": score,
                            "matched_attributes": matched,
                        },
                    )
                    action = AuditAction.ENTITY_LINKED
                else:
                    decision = Decision(
                        tenant_id=actor.tenant_id,
                        decision_type=DecisionType.ENTITY_CREATE,
                        strategy=ResolutionStrategy.MANUAL_APPROVAL,
                        reason_code="NEW_ENTITY_APPROVED",
                        created_by=actor.actor_id,
                        created_at=now,
                        work_item_id=work_item.id,
                        entity_id=new_id(),
                        evidence_ids=(claim.evidence_id,),
                        comment=comment,
                        details=entity_create_details(claim.entity_type, claim.attributes),
                    )
                    action = AuditAction.ENTITY_CREATED
                append_decision(repos, decision)
                self._audit.append(
                    uow,
                    self._audit.event(
                        actor=actor,
                        tenant_id=actor.tenant_id,
                        action=action,
                        evidence_id=claim.evidence_id,
                        request_id=request_id,
                        context={
                            "entity_id": str(decision.entity_id),
                            "decision_id": str(decision.id),
                            "work_item_id": str(work_item.id),
                            "strategy": decision.strategy.value,
                        },
                    ),
                )
                uow.commit()
        log.info(
            "%s approved mapping %s -> entity %s", actor.actor_id, item_key, decision.entity_id
        )
        return decision

    def _mapped_evidence_id(self, tenant_id: str, work_item_id: UUID) -> UUID | None:
        with self._uow_factory() as uow:
            work_item = uow.repositories.work_items.get(tenant_id, work_item_id)
        return work_item.linked_evidence_id if work_item is not None else None

    @reports_internal_errors
    def register_entity(
        self,
        entity_type: EntityType,
        fields: Mapping[str, object],
        *,
        actor: Actor,
        comment: str | None = None,
        request_id: str | None = None,
    ) -> CanonicalEntity:
        """Onboard a canonical entity directly; the creation is still a decision."""

        entity_id = new_id()
        with self._locks.hold(("entity", actor.tenant_id, entity_id)), self._uow_factory() as uow:
            decision = append_decision(
                uow.repositories,
                Decision(
                    tenant_id=actor.tenant_id,
                    decision_type=DecisionType.ENTITY_CREATE,
                    strategy=ResolutionStrategy.ONBOARDING,
                    reason_code="ONBOARDING",
                    created_by=actor.actor_id,
                    created_at=self._clock(),
                    entity_id=entity_id,
                    comment=comment,
                    details=entity_create_details(entity_type, fields),
                ),
            )
            self._audit.append(
                uow,
                self._audit.event(
                    actor=actor,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.ENTITY_CREATED,
                    evidence_id=SYSTEM_EVIDENCE_ID,
                    request_id=request_id,
                    context={
                        "entity_id": str(entity_id),
                        "entity_type": entity_type.value,
                        "decision_id": str(decision.id),
                    },
                ),
            )
            uow.commit()
            entity = uow.repositories.entities.get(actor.tenant_id, entity_id)
        if entity is None:  # pragma: no cover - projected above
            raise NotFound(resource="Entity", resource_id=str(entity_id))
        log.info("Registered %s entity %s", entity_type, entity_id)
        return entity

    # batch ---------------------------------------------------------------------

    @reports_internal_errors
    def resolve_unmapped(
        self, *, actor: Actor, max_workers: int = 4, request_id: str | None = None
    ) -> list[ResolutionOutcome]:
        """Resolve every unlinked, resolvable record of the actor's tenant.

        Scoring runs in a thread pool; results are applied one at a time under
        the per-entity locks.
        """

        claims, candidates = self._unmapped_claims(actor.tenant_id)
        if not claims:
            return []
        hints = [self._classify(claim) for claim in claims] if self._advisory else None
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            scored = list(
                executor.map(
                    lambda claim: self._suggest(
                        claim, candidates.get(claim.entity_type, []), advisory=None
                    ),
                    claims,
                )
            )
        outcomes: list[ResolutionOutcome] = []
        for index, (claim, suggestions) in enumerate(zip(claims, scored, strict=True)):
            if hints is not None and hints[index] is not None:
                suggestions = [_with_advisory(item, hints[index]) for item in suggestions]
            outcomes.append(self._apply(claim, suggestions, actor=actor, request_id=request_id))
        applied = sum(1 for outcome in outcomes if outcome.auto_applied)
        log.info(
            "Resolved %d unmapped records in tenant %s (%d auto-approved)",
            len(outcomes),
            actor.tenant_id,
            applied,
        )
        return outcomes

    def _unmapped_claims(
        self, tenant_id: str
    ) -> tuple[list[EvidenceClaim], dict[EntityType, list[CanonicalEntity]]]:
        with self._uow_factory() as uow:
            repos = uow.repositories
            records = repos.evidence.query(
                tenant_id,
                EvidenceFilter(
                    ledger_states=_RESOLVABLE_STATES,
                    dataset_types=frozenset(ENTITY_TYPE_BY_DATASET),
                ),
            )
            linked = {link.evidence_id for link in repos.links.for_tenant(tenant_id)}
            pending = {
                item.linked_evidence_id
                for item in repos.work_items.query(
                    tenant_id,
                    WorkItemFilter(types=frozenset({WorkItemType.MAPPING})),
                )
                if not item.is_done
            }
            entities = repos.entities.query(tenant_id)
        claims = [
            claim
            for record in records
            if record.id not in linked and record.id not in pending
            for claim in [claim_from_evidence(record)]
            if claim is not None
        ]
        candidates: dict[EntityType, list[CanonicalEntity]] = {}
        for entity in entities:
            candidates.setdefault(entity.entity_type, []).append(entity)
        return claims, candidates


def _with_advisory(suggestion: MappingSuggestion, hint: AdvisoryHint | None) -> MappingSuggestion:
    return MappingSuggestion(
        source_evidence_id=suggestion.source_evidence_id,
        target_entity_id=suggestion.target_entity_id,
        confidence_score=suggestion.confidence_score,
        matched_attributes=suggestion.matched_attributes,
        auto_approve_eligible=suggestion.auto_approve_eligible,
        status=suggestion.status,
        advisory=hint,
    )


