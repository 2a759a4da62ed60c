"""Pydantic model of an evidence submission as received from a caller."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, cast
from uuid import UUID

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from supplyledger.domain.errors import FieldError, FieldErrorCode
from supplyledger.domain.model import (
    DatasetType,
    DeclaredScope,
    IngestionMethod,
    Origin,
    RetentionPolicy,
    SourceSystem,
)

JSONPayload = dict[str, Any] | list[Any] | str


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _assume_utc(value: object) -> object:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            parsed = datetime.fromisoformat(stripped)
        except ValueError:
            return stripped
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return value


class EvidenceSubmission(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    ingestion_method: IngestionMethod
    dataset_type: DatasetType
    declared_scope: DeclaredScope
    purpose_tags: tuple[str, ...]
    personal_data_present: bool
    retention_policy: RetentionPolicy
    payload: JSONPayload
    source_system: SourceSystem | None = None
    primary_intent: str | None = None
    scope_target_id: str | None = None
    legal_basis: str | None = None
    retention_custom_days: int | None = Field(default=None, gt=0)
    external_reference_id: str | None = None
    correlation_id: str | None = None
    snapshot_at: AwareDatetime | None = None
    export_job_id: str | None = None
    connector_reference: str | None = None
    supplier_portal_request_id: str | None = None
    entry_notes: str | None = None
    file_name: str | None = None
    quarantine_reason: str | None = None
    resolution_deadline: AwareDatetime | None = None
    origin: Origin = Origin.USER_SUBMITTED
    supersedes_evidence_id: UUID | None = None

    _normalize_text = field_validator(
        "primary_intent",
        "scope_target_id",
        "legal_basis",
        "external_reference_id",
        "correlation_id",
        "export_job_id",
        "connector_reference",
        "supplier_portal_request_id",
        "entry_notes",
        "file_name",
        "quarantine_reason",
        "source_system",
        mode="before",
    )(_blank_to_none)

    _normalize_datetimes = field_validator(
        "snapshot_at", "resolution_deadline", mode="before"
    )(_assume_utc)

    @field_validator("purpose_tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, Sequence) and not isinstance(value, str):
            tags: list[str] = []
            for item in cast(Sequence[object], value):
                if isinstance(item, str) and item.strip() and item.strip() not in tags:
                    tags.append(item.strip())
            return tuple(tags)
        return value


def field_errors_from(exc: ValidationError) -> list[FieldError]:
    errors: list[FieldError] = []
    for detail in exc.errors():
        location = detail.get("loc", ())
        field = str(location[0]) if location else "record"
        kind = detail.get("type", "")
        if kind == "missing":
            code = FieldErrorCode.REQUIRED
            message = f"{field} is required"
        elif kind == "enum":
            code = FieldErrorCode.INVALID_ENUM
            message = f"{field}: {detail.get('msg', 'invalid value')}"
        else:
            code = FieldErrorCode.INVALID_VALUE
            message = f"{field}: {detail.get('msg', 'invalid value')}"
        errors.append(FieldError(field=field, code=code, message=message))
    return errors


def parse_submission(
    record: Mapping[str, object],
) -> tuple[EvidenceSubmission | None, list[FieldError]]:
    try:
        return EvidenceSubmission.model_validate(dict(record)), []
    except ValidationError as exc:
        return None, field_errors_from(exc)
