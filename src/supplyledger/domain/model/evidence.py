"""Evidence records and their ledger state machine.

An evidence record starts ``INGESTED``. Sealing freezes it permanently;
quarantine freezes it until its scope is resolved. Only ``INGESTED`` records may
be amended, and even then the identity and scope fields never change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Final

from supplyledger.domain.errors import ImmutableConflict, StateConflict
from supplyledger.domain.hashing import METADATA_FIELDS, metadata_digest, payload_digest

from .entity import Entity
from .enums import (
    DataMode,
    DatasetType,
    DeclaredScope,
    IngestionMethod,
    LedgerState,
    Origin,
    RetentionPolicy,
    SourceSystem,
    TrustLevel,
)
from .policy import retention_days

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime
    from uuid import UUID

SYSTEM_EVIDENCE_ID: Final = "SYSTEM"

FROZEN_STATES: Final[frozenset[LedgerState]] = frozenset(
    {LedgerState.SEALED, LedgerState.QUARANTINED}
)

AMENDABLE_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "payload",
        "primary_intent",
        "purpose_tags",
        "personal_data_present",
        "legal_basis",
        "retention_policy",
        "retention_custom_days",
        "entry_notes",
        "file_name",
        "snapshot_at",
        "correlation_id",
        "export_job_id",
        "connector_reference",
        "supplier_portal_request_id",
    }
)

IMMUTABLE_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "id",
        "tenant_id",
        "ingestion_method",
        "source_system",
        "dataset_type",
        "declared_scope",
        "scope_target_id",
        "external_reference_id",
        "origin",
        "data_mode",
        "trust_level",
        "ledger_state",
        "payload_digest",
        "metadata_digest",
        "supersedes_evidence_id",
        "created_at",
        "created_by",
        "attested_by",
        "sealed_at",
        "sealed_by",
        "quarantine_reason",
        "resolution_deadline",
        "quarantined_at",
        "quarantined_by",
        "request_id",
    }
)


@dataclass(eq=False, kw_only=True)
class Evidence(Entity):
    tenant_id: str
    ingestion_method: IngestionMethod
    source_system: SourceSystem
    dataset_type: DatasetType
    declared_scope: DeclaredScope
    purpose_tags: tuple[str, ...]
    retention_policy: RetentionPolicy
    payload: str
    created_at: datetime
    created_by: str
    payload_digest: str = ""
    metadata_digest: str = ""
    primary_intent: str | None = None
    scope_target_id: str | None = None
    personal_data_present: bool = False
    legal_basis: str | None = None
    retention_custom_days: int | None = None
    retention_ends_at: datetime | None = None
    external_reference_id: str | None = None
    correlation_id: str | None = None
    snapshot_at: datetime | None = None
    export_job_id: str | None = None
    connector_reference: str | None = None
    supplier_portal_request_id: str | None = None
    entry_notes: str | None = None
    file_name: str | None = None
    attested_by: str | None = None
    origin: Origin = Origin.USER_SUBMITTED
    data_mode: DataMode = DataMode.LIVE
    trust_level: TrustLevel = TrustLevel.MEDIUM
    ledger_state: LedgerState = LedgerState.INGESTED
    quarantine_reason: str | None = None
    resolution_deadline: datetime | None = None
    quarantined_at: datetime | None = None
    quarantined_by: str | None = None
    sealed_at: datetime | None = None
    sealed_by: str | None = None
    supersedes_evidence_id: UUID | None = None
    request_id: str | None = None
    # filled from the audit log on read; not persisted
    audit_event_count: int = field(default=0, compare=False)

    @property
    def evidence_id(self) -> UUID:
        return self.id

    @property
    def is_frozen(self) -> bool:
        return self.ledger_state in FROZEN_STATES

    @property
    def observed_at(self) -> datetime:
        return self.snapshot_at or self.created_at

    def metadata(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in METADATA_FIELDS}

    def refresh_digests(self) -> None:
        self.payload_digest = payload_digest(self.payload)
        self.metadata_digest = metadata_digest(self.metadata())
        days = retention_days(self.retention_policy, self.retention_custom_days)
        self.retention_ends_at = (
            self.created_at + timedelta(days=days) if days is not None else None
        )

    # state machine -------------------------------------------------------------

    def seal(self, *, actor_id: str, at: datetime) -> bool:
        """Seal the record; returns ``False`` when it was already sealed."""

        if self.ledger_state is LedgerState.SEALED:
            return False
        if self.ledger_state is LedgerState.QUARANTINED:
            raise StateConflict(
                f"Evidence {self.id} is quarantined; release it before sealing",
                details={"evidence_id": str(self.id), "ledger_state": self.ledger_state.value},
            )
        if self.declared_scope is DeclaredScope.UNKNOWN:
            raise StateConflict(
                f"Evidence {self.id} has an unknown scope; quarantine it instead of sealing",
                details={"evidence_id": str(self.id), "declared_scope": self.declared_scope.value},
            )
        self.ledger_state = LedgerState.SEALED
        self.sealed_at = at
        self.sealed_by = actor_id
        return True

    def quarantine(
        self, *, reason: str, deadline: datetime, actor_id: str, at: datetime
    ) -> None:
        if self.ledger_state is not LedgerState.INGESTED:
            raise StateConflict(
                f"Evidence {self.id} is {self.ledger_state}; only INGESTED records can be "
                "quarantined",
                details={"evidence_id": str(self.id), "ledger_state": self.ledger_state.value},
            )
        self.ledger_state = LedgerState.QUARANTINED
        self.quarantine_reason = reason
        self.resolution_deadline = deadline
        self.quarantined_at = at
        self.quarantined_by = actor_id

    def release(self, *, declared_scope: DeclaredScope, scope_target_id: str | None) -> None:
        """Resolve the scope of a quarantined record and return it to ``INGESTED``."""

        if self.ledger_state is not LedgerState.QUARANTINED:
            raise StateConflict(
                f"Evidence {self.id} is {self.ledger_state}; only QUARANTINED records can be "
                "released",
                details={"evidence_id": str(self.id), "ledger_state": self.ledger_state.value},
            )
        self.declared_scope = declared_scope
        self.scope_target_id = scope_target_id
        self.ledger_state = LedgerState.INGESTED
        self.metadata_digest = metadata_digest(self.metadata())

    def check_mutation(self, changes: Mapping[str, object]) -> None:
        if self.is_frozen:
            raise ImmutableConflict(
                evidence_id=str(self.id),
                ledger_state=self.ledger_state.value,
                fields=changes.keys(),
            )
        blocked = [name for name in changes if name in IMMUTABLE_FIELDS]
        if blocked:
            raise ImmutableConflict(
                evidence_id=str(self.id),
                ledger_state=self.ledger_state.value,
                fields=blocked,
            )

    def amend(self, changes: Mapping[str, object]) -> None:
        self.check_mutation(changes)
        for name, value in changes.items():
            setattr(self, name, value)
        self.refresh_digests()
