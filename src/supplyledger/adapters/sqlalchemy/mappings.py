"""SQLAlchemy mapping metadata for the ledger domain model."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    event,
    inspect,
    orm,
)
from sqlalchemy.orm import configure_mappers

from supplyledger.domain.errors import ImmutableConflict
from supplyledger.domain.model import (
    AuditAction,
    AuditEvent,
    CanonicalEntity,
    DataMode,
    DatasetType,
    Decision,
    DecisionType,
    DeclaredScope,
    EntityType,
    Evidence,
    EvidenceLink,
    FollowUpKey,
    IngestionMethod,
    LedgerState,
    Origin,
    Priority,
    ResolutionStrategy,
    RetentionPolicy,
    RetentionRule,
    SourceSystem,
    Tenant,
    TrustLevel,
    TrustPolicy,
    WorkItem,
    WorkItemStatus,
    WorkItemType,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, Engine
    from sqlalchemy.orm import Mapper

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]

# columns a quarantined row may still change while being released
_RELEASE_COLUMNS = frozenset(
    {"ledger_state", "declared_scope", "scope_target_id", "metadata_digest"}
)


class AppendOnlyViolation(RuntimeError):
    """Raised when an append-only row would be updated or deleted."""


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class JSONDictType(TypeDecorator[dict[str, object]]):
    impl = Text
    cache_ok = True

    def process_bind_param(
        self, value: dict[str, object] | None, dialect: Dialect
    ) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value, sort_keys=True, default=str)

    def process_result_value(self, value: str | None, dialect: Dialect) -> dict[str, object]:
        _ = dialect
        if value is None:
            return {}
        loaded = json.loads(value)
        if not isinstance(loaded, dict):
            return {}
        return cast(dict[str, Any], loaded)


class JSONValueType(TypeDecorator[object]):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: object, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value, sort_keys=True)

    def process_result_value(self, value: str | None, dialect: Dialect) -> object:
        _ = dialect
        if value is None:
            return None
        return json.loads(value)


class StringTupleType(TypeDecorator[tuple[str, ...]]):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: tuple[str, ...] | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(list(value))

    def process_result_value(self, value: str | None, dialect: Dialect) -> tuple[str, ...]:
        _ = dialect
        if value is None:
            return ()
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return ()
        return tuple(str(item) for item in cast(list[Any], loaded))


class UUIDTupleType(TypeDecorator[tuple[uuid.UUID, ...]]):
    impl = Text
    cache_ok = True

    def process_bind_param(
        self, value: tuple[uuid.UUID, ...] | None, dialect: Dialect
    ) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps([str(item) for item in value])

    def process_result_value(self, value: str | None, dialect: Dialect) -> tuple[uuid.UUID, ...]:
        _ = dialect
        if value is None:
            return ()
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return ()
        return tuple(uuid.UUID(str(item)) for item in cast(list[Any], loaded))


class SourceRankingType(TypeDecorator[tuple[SourceSystem, ...]]):
    impl = Text
    cache_ok = True

    def process_bind_param(
        self, value: tuple[SourceSystem, ...] | None, dialect: Dialect
    ) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps([source.value for source in value])

    def process_result_value(
        self, value: str | None, dialect: Dialect
    ) -> tuple[SourceSystem, ...]:
        _ = dialect
        if value is None:
            return ()
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return ()
        return tuple(SourceSystem(str(item)) for item in cast(list[Any], loaded))


def _enum(enum_cls: type[Any]) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        values_callable=lambda members: [member.value for member in members],
    )


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Ledger tables -----------------------------------------------------------------

tenant_table = Table(
    "tenant",
    mapper_registry.metadata,
    Column("tenant_id", String, primary_key=True),
    Column("name", String, nullable=True),
    Column("data_mode", _enum(DataMode), nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
)

evidence_table = Table(
    "evidence",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("tenant_id", String, nullable=False, index=True),
    Column("ingestion_method", _enum(IngestionMethod), nullable=False),
    Column("source_system", _enum(SourceSystem), nullable=False),
    Column("dataset_type", _enum(DatasetType), nullable=False),
    Column("declared_scope", _enum(DeclaredScope), nullable=False),
    Column("scope_target_id", String, nullable=True),
    Column("purpose_tags", StringTupleType(), nullable=False),
    Column("primary_intent", String, nullable=True),
    Column("personal_data_present", Boolean, nullable=False),
    Column("legal_basis", String, nullable=True),
    Column("retention_policy", _enum(RetentionPolicy), nullable=False),
    Column("retention_custom_days", Integer, nullable=True),
    Column("retention_ends_at", UTCDateTime(), nullable=True),
    Column("payload", Text, nullable=False),
    Column("payload_digest", String(64), nullable=False),
    Column("metadata_digest", String(64), nullable=False),
    Column("external_reference_id", String, nullable=True),
    Column("correlation_id", String, nullable=True),
    Column("snapshot_at", UTCDateTime(), nullable=True),
    Column("export_job_id", String, nullable=True),
    Column("connector_reference", String, nullable=True),
    Column("supplier_portal_request_id", String, nullable=True),
    Column("entry_notes", Text, nullable=True),
    Column("file_name", String, nullable=True),
    Column("attested_by", String, nullable=True),
    Column("origin", _enum(Origin), nullable=False),
    Column("data_mode", _enum(DataMode), nullable=False),
    Column("trust_level", _enum(TrustLevel), nullable=False),
    Column("ledger_state", _enum(LedgerState), nullable=False, index=True),
    Column("quarantine_reason", Text, nullable=True),
    Column("resolution_deadline", UTCDateTime(), nullable=True),
    Column("quarantined_at", UTCDateTime(), nullable=True),
    Column("quarantined_by", String, nullable=True),
    Column("sealed_at", UTCDateTime(), nullable=True),
    Column("sealed_by", String, nullable=True),
    Column("supersedes_evidence_id", UUIDColumnType, nullable=True),
    Column("request_id", String, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("created_by", String, nullable=False),
    UniqueConstraint("tenant_id", "external_reference_id"),
)

audit_event_table = Table(
    "audit_event",
    mapper_registry.metadata,
    Column("sequence", Integer, primary_key=True, autoincrement=True),
    Column("id", UUIDColumnType, nullable=False, unique=True, default=uuid.uuid4),
    Column("tenant_id", String, nullable=False),
    Column("evidence_id", String, nullable=False),
    Column("actor", String, nullable=False),
    Column("action", _enum(AuditAction), nullable=False),
    Column("previous_state", _enum(LedgerState), nullable=True),
    Column("new_state", _enum(LedgerState), nullable=True),
    Column("request_id", String, nullable=True),
    Column("correlation_id", String, nullable=True),
    Column("context", JSONDictType(), nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Index("ix_audit_event_tenant_evidence", "tenant_id", "evidence_id"),
    Index("ix_audit_event_tenant_created", "tenant_id", "created_at"),
)

# Canonical projections -----------------------------------------------------------

canonical_entity_table = Table(
    "canonical_entity",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("tenant_id", String, nullable=False, index=True),
    Column("entity_type", _enum(EntityType), nullable=False),
    Column("fields", JSONDictType(), nullable=False),
    Column("field_decisions", JSONDictType(), nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
)

evidence_link_table = Table(
    "evidence_link",
    mapper_registry.metadata,
    Column("tenant_id", String, primary_key=True),
    Column("evidence_id", UUIDColumnType, primary_key=True),
    Column("entity_id", UUIDColumnType, nullable=False, index=True),
    Column("decision_id", UUIDColumnType, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
)

# Work items and decisions ----------------------------------------------------------

work_item_table = Table(
    "work_item",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("tenant_id", String, nullable=False, index=True),
    Column("type", _enum(WorkItemType), nullable=False),
    Column("status", _enum(WorkItemStatus), nullable=False),
    Column("priority", _enum(Priority), nullable=False),
    Column("linked_evidence_id", UUIDColumnType, nullable=True),
    Column("linked_entity_ref", UUIDColumnType, nullable=True),
    Column("parent_work_item_id", UUIDColumnType, nullable=True),
    Column("field_name", String, nullable=True),
    Column("details", JSONDictType(), nullable=False),
    Column("advisory", Text, nullable=True),
    Column("decision_count", Integer, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("created_by", String, nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    Column("updated_by", String, nullable=False),
)

decision_table = Table(
    "decision",
    mapper_registry.metadata,
    Column("sequence", Integer, primary_key=True, autoincrement=True),
    Column("id", UUIDColumnType, nullable=False, unique=True, default=uuid.uuid4),
    Column("tenant_id", String, nullable=False, index=True),
    Column("decision_type", _enum(DecisionType), nullable=False),
    Column("strategy", _enum(ResolutionStrategy), nullable=False),
    Column("reason_code", String, nullable=False),
    Column("work_item_id", UUIDColumnType, nullable=True, index=True),
    Column("entity_id", UUIDColumnType, nullable=True, index=True),
    Column("field_name", String, nullable=True),
    Column("winning_value", JSONValueType(), nullable=True),
    Column("evidence_ids", UUIDTupleType(), nullable=False),
    Column("comment", Text, nullable=True),
    Column("supersedes_decision_id", UUIDColumnType, nullable=True),
    Column("details", JSONDictType(), nullable=False),
    Column("created_by", String, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
)

follow_up_key_table = Table(
    "follow_up_key",
    mapper_registry.metadata,
    Column("key", String, primary_key=True),
    Column("tenant_id", String, nullable=False),
    Column("work_item_id", UUIDColumnType, nullable=False),
    Column("expires_at", UTCDateTime(), nullable=False),
)

# Policies ------------------------------------------------------------------------

trust_policy_table = Table(
    "trust_policy",
    mapper_registry.metadata,
    Column("tenant_id", String, primary_key=True),
    Column("dataset_type", _enum(DatasetType), primary_key=True),
    Column("field_name", String, primary_key=True),
    Column("ranking", SourceRankingType(), nullable=False),
)

retention_rule_table = Table(
    "retention_rule",
    mapper_registry.metadata,
    Column("tenant_id", String, primary_key=True),
    Column("dataset_type", _enum(DatasetType), primary_key=True),
    Column("minimum_days", Integer, nullable=False),
)


# Write guards -----------------------------------------------------------------------


def _changed_columns(target: object) -> list[str]:
    state = inspect(target)
    return sorted(attr.key for attr in state.attrs if attr.history.has_changes())


def _guard_frozen_evidence(
    mapper: Mapper[Evidence], connection: Connection, target: Evidence
) -> None:
    _ = (mapper, connection)
    history = inspect(target).attrs.ledger_state.history
    previous = cast(LedgerState, history.deleted[0]) if history.deleted else target.ledger_state
    changed = _changed_columns(target)
    if not changed:
        return
    if previous is LedgerState.SEALED or (
        previous is LedgerState.QUARANTINED and not set(changed) <= _RELEASE_COLUMNS
    ):
        log.error("Blocked storage write to %s evidence %s: %s", previous, target.id, changed)
        raise ImmutableConflict(
            evidence_id=str(target.id), ledger_state=previous.value, fields=changed
        )


def _guard_evidence_delete(
    mapper: Mapper[Evidence], connection: Connection, target: Evidence
) -> None:
    _ = (mapper, connection)
    raise ImmutableConflict(
        evidence_id=str(target.id), ledger_state=target.ledger_state.value, fields=("id",)
    )


def _guard_append_only(mapper: Mapper[Any], connection: Connection, target: object) -> None:
    _ = connection
    raise AppendOnlyViolation(f"{mapper.class_.__name__} rows are append-only")


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(Tenant, tenant_table)
    mapper_registry.map_imperatively(Evidence, evidence_table)
    mapper_registry.map_imperatively(AuditEvent, audit_event_table)
    mapper_registry.map_imperatively(CanonicalEntity, canonical_entity_table)
    mapper_registry.map_imperatively(EvidenceLink, evidence_link_table)
    mapper_registry.map_imperatively(WorkItem, work_item_table)
    mapper_registry.map_imperatively(Decision, decision_table)
    mapper_registry.map_imperatively(FollowUpKey, follow_up_key_table)
    mapper_registry.map_imperatively(TrustPolicy, trust_policy_table)
    mapper_registry.map_imperatively(RetentionRule, retention_rule_table)

    event.listen(Evidence, "before_update", _guard_frozen_evidence)
    event.listen(Evidence, "before_delete", _guard_evidence_delete)
    for append_only in (AuditEvent, Decision):
        event.listen(append_only, "before_update", _guard_append_only)
        event.listen(append_only, "before_delete", _guard_append_only)

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
