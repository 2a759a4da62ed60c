"""Evidence ledger: ingestion, sealing, quarantine, and guarded mutation.

Every write runs as one unit of work holding the record (or its idempotency key)
under a keyed lock, so the check that decides between "create" and "replay" and
the write itself happen inside the same serialization boundary. Each successful
transition stages exactly one audit event in the same unit of work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

from supplyledger.config import LedgerSettings
from supplyledger.domain.errors import (
    FieldError,
    FieldErrorCode,
    ModeViolation,
    NotFound,
    ValidationFailed,
    reports_internal_errors,
)
from supplyledger.domain.hashing import normalize_payload, parse_payload, payload_digest
from supplyledger.domain.locks import KeyedLocks
from supplyledger.domain.model import (
    AMENDABLE_FIELDS,
    IMMUTABLE_FIELDS,
    AuditAction,
    DataMode,
    DeclaredScope,
    Evidence,
    IngestionMethod,
    Origin,
    Tenant,
    parse_id,
    retention_days,
    trust_level_for,
)
from supplyledger.domain.ports import ConcurrentWriteError, EvidenceFilter

from .rules import resolved_source
from .validation import quarantine_errors, scope_errors, validate_submission

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from supplyledger.domain.audit_log import AuditLog
    from supplyledger.domain.clock import Clock
    from supplyledger.domain.model import Actor
    from supplyledger.domain.ports import LedgerUnitOfWork, LedgerUnitOfWorkFactory

    from .schema import EvidenceSubmission

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IngestResult:
    evidence: Evidence
    replayed: bool = False
    payload_mismatch: bool = False


def parse_evidence_id(value: UUID | str) -> UUID:
    return parse_id(value, resource="Evidence")


def _submission_view(evidence: Evidence) -> dict[str, object]:
    """Rebuild the submission fields of a stored record for re-validation."""

    payload = parse_payload(evidence.payload)
    return {
        "ingestion_method": evidence.ingestion_method,
        "dataset_type": evidence.dataset_type,
        "declared_scope": evidence.declared_scope,
        "purpose_tags": list(evidence.purpose_tags),
        "personal_data_present": evidence.personal_data_present,
        "retention_policy": evidence.retention_policy,
        "retention_custom_days": evidence.retention_custom_days,
        "payload": payload if payload is not None else evidence.payload,
        "source_system": evidence.source_system,
        "primary_intent": evidence.primary_intent,
        "scope_target_id": evidence.scope_target_id,
        "legal_basis": evidence.legal_basis,
        "external_reference_id": evidence.external_reference_id,
        "correlation_id": evidence.correlation_id,
        "snapshot_at": evidence.snapshot_at,
        "export_job_id": evidence.export_job_id,
        "connector_reference": evidence.connector_reference,
        "supplier_portal_request_id": evidence.supplier_portal_request_id,
        "entry_notes": evidence.entry_notes,
        "file_name": evidence.file_name,
        "origin": evidence.origin,
    }


class EvidenceLedger:
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

    # ingestion -----------------------------------------------------------------

    @reports_internal_errors
    def ingest(
        self,
        record: Mapping[str, object],
        *,
        actor: Actor,
        request_id: str | None = None,
    ) -> IngestResult:
        """Validate and persist ``record`` for the actor's tenant.

        A record whose ``external_reference_id`` already exists in the tenant is
        not stored again; the existing record is returned with ``replayed`` set.
        """

        with self._audit.denials(actor, request_id=request_id):
            self._check_mode(record, actor)
            submission = validate_submission(record, settings=self._settings, now=self._clock())
            reference = submission.external_reference_id
            keys = [("evidence-ref", actor.tenant_id, reference)] if reference else []
            with self._locks.hold(*keys):
                try:
                    return self._ingest(submission, actor=actor, request_id=request_id)
                except ConcurrentWriteError:
                    # another process committed the same reference first
                    replay = self._replay_after_race(submission, actor=actor)
                    if replay is None:
                        raise
                    return replay

    def _check_mode(self, record: Mapping[str, object], actor: Actor) -> None:
        raw_origin = record.get("origin")
        if raw_origin is None:
            return
        try:
            origin = Origin(str(raw_origin).strip())
        except ValueError:
            return  # reported by validation
        with self._uow_factory() as uow:
            tenant = uow.repositories.tenants.get(actor.tenant_id)
        tenant = tenant or Tenant(tenant_id=actor.tenant_id)
        if not tenant.accepts(origin):
            raise ModeViolation(origin=origin.value, data_mode=tenant.data_mode.value)

    def _ingest(
        self,
        submission: EvidenceSubmission,
        *,
        actor: Actor,
        request_id: str | None,
    ) -> IngestResult:
        with self._uow_factory() as uow:
            repos = uow.repositories
            reference = submission.external_reference_id
            if reference:
                existing = repos.evidence.get_by_external_reference(actor.tenant_id, reference)
                if existing is not None:
                    return self._replayed(uow, existing, submission)

            self._check_references(uow, submission, tenant_id=actor.tenant_id)
            tenant = repos.tenants.get(actor.tenant_id)
            evidence = self._build(
                submission,
                actor=actor,
                data_mode=tenant.data_mode if tenant is not None else DataMode.LIVE,
                request_id=request_id,
            )
            repos.evidence.add(evidence)
            self._audit.append(
                uow,
                self._audit.event(
                    actor=actor,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.INGESTED,
                    evidence_id=evidence.id,
                    new_state=evidence.ledger_state,
                    request_id=request_id,
                    correlation_id=submission.correlation_id,
                    context={
                        "ingestion_method": evidence.ingestion_method.value,
                        "dataset_type": evidence.dataset_type.value,
                        "payload_digest": evidence.payload_digest,
                        "metadata_digest": evidence.metadata_digest,
                    },
                ),
            )
            uow.commit()
            evidence.audit_event_count = 1
        log.info(
            "Ingested %s evidence %s for tenant %s as %s",
            evidence.dataset_type,
            evidence.id,
            evidence.tenant_id,
            evidence.ledger_state,
        )
        return IngestResult(evidence=evidence)

    def _check_references(
        self, uow: LedgerUnitOfWork, submission: EvidenceSubmission, *, tenant_id: str
    ) -> None:
        repos = uow.repositories
        errors: list[FieldError] = []
        superseded = submission.supersedes_evidence_id
        if superseded is not None and repos.evidence.get(tenant_id, superseded) is None:
            errors.append(
                FieldError(
                    field="supersedes_evidence_id",
                    code=FieldErrorCode.UNKNOWN_SUPERSEDED_EVIDENCE,
                    message=f"Evidence {superseded} does not exist",
                )
            )
        rule = repos.policies.retention_rule(tenant_id, submission.dataset_type)
        if rule is not None:
            days = retention_days(submission.retention_policy, submission.retention_custom_days)
            if days is None or days < rule.minimum_days:
                errors.append(
                    FieldError(
                        field="retention_policy",
                        code=FieldErrorCode.RETENTION_BELOW_MINIMUM,
                        message=(
                            f"{submission.dataset_type} records must be retained for at least "
                            f"{rule.minimum_days} days"
                        ),
                    )
                )
        if errors:
            raise ValidationFailed(errors)

    def _build(
        self,
        submission: EvidenceSubmission,
        *,
        actor: Actor,
        data_mode: DataMode,
        request_id: str | None,
    ) -> Evidence:
        now = self._clock()
        method = submission.ingestion_method
        source = resolved_source(method, submission.source_system)
        if source is None:  # pragma: no cover - guaranteed by validation
            raise ValidationFailed(
                [FieldError("source_system", FieldErrorCode.REQUIRED, "source_system is required")]
            )
        evidence = Evidence(
            tenant_id=actor.tenant_id,
            ingestion_method=method,
            source_system=source,
            dataset_type=submission.dataset_type,
            declared_scope=submission.declared_scope,
            scope_target_id=submission.scope_target_id,
            purpose_tags=submission.purpose_tags,
            primary_intent=submission.primary_intent,
            personal_data_present=submission.personal_data_present,
            legal_basis=submission.legal_basis,
            retention_policy=submission.retention_policy,
            retention_custom_days=submission.retention_custom_days,
            payload=normalize_payload(submission.payload),
            external_reference_id=submission.external_reference_id,
            correlation_id=submission.correlation_id,
            snapshot_at=submission.snapshot_at,
            export_job_id=submission.export_job_id,
            connector_reference=submission.connector_reference,
            supplier_portal_request_id=submission.supplier_portal_request_id,
            entry_notes=submission.entry_notes,
            file_name=submission.file_name,
            attested_by=actor.actor_id if method is IngestionMethod.MANUAL_ENTRY else None,
            origin=submission.origin,
            data_mode=data_mode,
            trust_level=trust_level_for(method),
            supersedes_evidence_id=submission.supersedes_evidence_id,
            created_at=now,
            created_by=actor.actor_id,
            request_id=request_id,
        )
        evidence.refresh_digests()
        if (
            submission.declared_scope is DeclaredScope.UNKNOWN
            and submission.quarantine_reason is not None
            and submission.resolution_deadline is not None
        ):
            evidence.quarantine(
                reason=submission.quarantine_reason,
                deadline=submission.resolution_deadline,
                actor_id=actor.actor_id,
                at=now,
            )
        return evidence

    def _replayed(
        self, uow: LedgerUnitOfWork, existing: Evidence, submission: EvidenceSubmission
    ) -> IngestResult:
        mismatch = existing.payload_digest != payload_digest(submission.payload)
        if mismatch:
            log.warning(
                "Replay of %s in tenant %s carried a different payload; keeping evidence %s",
                existing.external_reference_id,
                existing.tenant_id,
                existing.id,
            )
        else:
            log.info("Replayed %s as evidence %s", existing.external_reference_id, existing.id)
        existing.audit_event_count = uow.repositories.audit_events.count_for_evidence(
            existing.tenant_id, str(existing.id)
        )
        return IngestResult(evidence=existing, replayed=True, payload_mismatch=mismatch)

    def _replay_after_race(
        self, submission: EvidenceSubmission, *, actor: Actor
    ) -> IngestResult | None:
        reference = submission.external_reference_id
        if not reference:
            return None
        with self._uow_factory() as uow:
            existing = uow.repositories.evidence.get_by_external_reference(
                actor.tenant_id, reference
            )
            if existing is None:
                return None
            return self._replayed(uow, existing, submission)

    # state transitions ---------------------------------------------------------

    @reports_internal_errors
    def seal(
        self, evidence_id: UUID | str, *, actor: Actor, request_id: str | None = None
    ) -> Evidence:
        """Freeze the record; sealing an already sealed record succeeds without a new event."""

        with self._audit.denials(actor, request_id=request_id):
            key = parse_evidence_id(evidence_id)
            with self._locks.hold(("evidence", actor.tenant_id, key)), self._uow_factory() as uow:
                evidence = self._load(uow, actor.tenant_id, key, for_update=True)
                previous = evidence.ledger_state
                if evidence.seal(actor_id=actor.actor_id, at=self._clock()):
                    self._audit.append(
                        uow,
                        self._audit.event(
                            actor=actor,
                            tenant_id=actor.tenant_id,
                            action=AuditAction.SEALED,
                            evidence_id=evidence.id,
                            previous_state=previous,
                            new_state=evidence.ledger_state,
                            request_id=request_id,
                        ),
                    )
                    uow.commit()
                    log.info("Sealed evidence %s in tenant %s", evidence.id, evidence.tenant_id)
                else:
                    log.info("Evidence %s already sealed", evidence.id)
                self._fill_count(uow, evidence)
                return evidence

    @reports_internal_errors
    def quarantine(
        self,
        evidence_id: UUID | str,
        *,
        reason: str | None,
        deadline: datetime | None,
        actor: Actor,
        request_id: str | None = None,
    ) -> Evidence:
        with self._audit.denials(actor, request_id=request_id):
            key = parse_evidence_id(evidence_id)
            with self._locks.hold(("evidence", actor.tenant_id, key)), self._uow_factory() as uow:
                evidence = self._load(uow, actor.tenant_id, key, for_update=True)
                reason = reason.strip() if reason else None
                errors = quarantine_errors(
                    reason, deadline, settings=self._settings, now=self._clock()
                )
                if evidence.declared_scope is not DeclaredScope.UNKNOWN:
                    errors.insert(
                        0,
                        FieldError(
                            field="declared_scope",
                            code=FieldErrorCode.SCOPE_NOT_UNLINKED,
                            message="Only records with UNKNOWN scope can be quarantined",
                        ),
                    )
                if errors or reason is None or deadline is None:
                    raise ValidationFailed(errors)
                previous = evidence.ledger_state
                evidence.quarantine(
                    reason=reason, deadline=deadline, actor_id=actor.actor_id, at=self._clock()
                )
                self._audit.append(
                    uow,
                    self._audit.event(
                        actor=actor,
                        tenant_id=actor.tenant_id,
                        action=AuditAction.QUARANTINED,
                        evidence_id=evidence.id,
                        previous_state=previous,
                        new_state=evidence.ledger_state,
                        request_id=request_id,
                        context={"resolution_deadline": deadline.isoformat()},
                    ),
                )
                uow.commit()
                log.info("Quarantined evidence %s until %s", evidence.id, deadline)
                self._fill_count(uow, evidence)
                return evidence

    @reports_internal_errors
    def release_quarantine(
        self,
        evidence_id: UUID | str,
        *,
        declared_scope: DeclaredScope,
        scope_target_id: str | None = None,
        actor: Actor,
        request_id: str | None = None,
    ) -> Evidence:
        """Return a quarantined record to ``INGESTED`` once its scope is known."""

        with self._audit.denials(actor, request_id=request_id):
            key = parse_evidence_id(evidence_id)
            with self._locks.hold(("evidence", actor.tenant_id, key)), self._uow_factory() as uow:
                evidence = self._load(uow, actor.tenant_id, key, for_update=True)
                target = scope_target_id.strip() if scope_target_id else None
                errors = scope_errors(
                    method=evidence.ingestion_method,
                    dataset=evidence.dataset_type,
                    scope=declared_scope,
                    scope_target_id=target,
                )
                if declared_scope is DeclaredScope.UNKNOWN:
                    errors.append(
                        FieldError(
                            field="declared_scope",
                            code=FieldErrorCode.INVALID_VALUE,
                            message="A quarantine is released by declaring a known scope",
                        )
                    )
                if errors:
                    raise ValidationFailed(errors)
                previous = evidence.ledger_state
                evidence.release(declared_scope=declared_scope, scope_target_id=target)
                self._audit.append(
                    uow,
                    self._audit.event(
                        actor=actor,
                        tenant_id=actor.tenant_id,
                        action=AuditAction.QUARANTINE_RELEASED,
                        evidence_id=evidence.id,
                        previous_state=previous,
                        new_state=evidence.ledger_state,
                        request_id=request_id,
                        context={"declared_scope": declared_scope.value},
                    ),
                )
                uow.commit()
                log.info("Released evidence %s from quarantine as %s", evidence.id, declared_scope)
                self._fill_count(uow, evidence)
                return evidence

    @reports_internal_errors
    def attempt_mutate(
        self,
        evidence_id: UUID | str,
        changes: Mapping[str, object],
        *,
        actor: Actor,
        request_id: str | None = None,
    ) -> Evidence:
        """Amend descriptive fields of an ``INGESTED`` record.

        Frozen records and identity fields always raise
        :class:`~supplyledger.domain.errors.ImmutableConflict`.
        """

        with self._audit.denials(actor, request_id=request_id):
            key = parse_evidence_id(evidence_id)
            with self._locks.hold(("evidence", actor.tenant_id, key)), self._uow_factory() as uow:
                evidence = self._load(uow, actor.tenant_id, key, for_update=True)
                evidence.check_mutation(changes)
                unknown = sorted(set(changes) - AMENDABLE_FIELDS - IMMUTABLE_FIELDS)
                if unknown:
                    raise ValidationFailed(
                        FieldError(name, FieldErrorCode.INVALID_VALUE, f"{name} is not a field")
                        for name in unknown
                    )
                if not changes:
                    self._fill_count(uow, evidence)
                    return evidence
                merged = {**_submission_view(evidence), **changes}
                submission = validate_submission(
                    merged, settings=self._settings, now=self._clock()
                )
                typed: dict[str, object] = {name: getattr(submission, name) for name in changes}
                if "payload" in typed:
                    typed["payload"] = normalize_payload(typed["payload"])
                before = evidence.payload_digest, evidence.metadata_digest
                evidence.amend(typed)
                self._audit.append(
                    uow,
                    self._audit.event(
                        actor=actor,
                        tenant_id=actor.tenant_id,
                        action=AuditAction.AMENDED,
                        evidence_id=evidence.id,
                        previous_state=evidence.ledger_state,
                        new_state=evidence.ledger_state,
                        request_id=request_id,
                        context={
                            "fields": sorted(changes),
                            "previous_payload_digest": before[0],
                            "previous_metadata_digest": before[1],
                        },
                    ),
                )
                uow.commit()
                log.info("Amended evidence %s: %s", evidence.id, ", ".join(sorted(changes)))
                self._fill_count(uow, evidence)
                return evidence

    # reads ---------------------------------------------------------------------

    @reports_internal_errors
    def get(
        self, evidence_id: UUID | str, *, actor: Actor, request_id: str | None = None
    ) -> Evidence:
        with self._audit.denials(actor, request_id=request_id):
            key = parse_evidence_id(evidence_id)
            with self._uow_factory() as uow:
                evidence = self._load(uow, actor.tenant_id, key)
                self._fill_count(uow, evidence)
                return evidence

    @reports_internal_errors
    def list_by_tenant(
        self, *, actor: Actor, filters: EvidenceFilter | None = None
    ) -> list[Evidence]:
        with self._uow_factory() as uow:
            records = uow.repositories.evidence.query(actor.tenant_id, filters or EvidenceFilter())
            counts = uow.repositories.audit_events.counts_for_evidence(
                actor.tenant_id, [str(record.id) for record in records]
            )
        for record in records:
            record.audit_event_count = counts.get(str(record.id), 0)
        return records

    def _load(
        self,
        uow: LedgerUnitOfWork,
        tenant_id: str,
        evidence_id: UUID,
        *,
        for_update: bool = False,
    ) -> Evidence:
        repo = uow.repositories.evidence
        evidence = (
            repo.get_for_update(tenant_id, evidence_id)
            if for_update
            else repo.get(tenant_id, evidence_id)
        )
        if evidence is None:
            raise NotFound(resource="Evidence", resource_id=str(evidence_id))
        return evidence

    def _fill_count(self, uow: LedgerUnitOfWork, evidence: Evidence) -> None:
        evidence.audit_event_count = uow.repositories.audit_events.count_for_evidence(
            evidence.tenant_id, str(evidence.id)
        )


__all__ = ["EvidenceLedger", "IngestResult", "parse_evidence_id"]
