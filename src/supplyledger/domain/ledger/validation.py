"""Submission validation that reports every violation at once.

Structural checks (types, enums, globally required fields) come from the pydantic
model. The conditional rules below run on the raw mapping so they still report
their findings when an unrelated field failed to parse.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, cast

from supplyledger.domain.errors import FieldError, FieldErrorCode, ValidationFailed
from supplyledger.domain.model import (
    DatasetType,
    DeclaredScope,
    IngestionMethod,
    RetentionPolicy,
    SourceSystem,
)

from .rules import (
    ATTESTATION_FIELDS,
    CLIENT_DIGEST_FIELDS,
    MANUAL_SCOPES_BY_DATASET,
    METHOD_CONTRACTS,
    METHODS_BY_DATASET,
    PLACEHOLDER_VALUES,
    SCOPES_REQUIRING_TARGET,
)
from .schema import EvidenceSubmission, parse_submission

if TYPE_CHECKING:
    from enum import StrEnum

    from supplyledger.config import LedgerSettings

_TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "on"})


def _coerce[E: StrEnum](enum_cls: type[E], value: object) -> E | None:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip())
        except ValueError:
            return None
    return None


def _text(raw: Mapping[str, object], name: str) -> str | None:
    value = raw.get(name)
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    return str(value)


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    if isinstance(value, int):
        return value != 0
    return False


def _as_datetime(value: object) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _is_placeholder(value: str) -> bool:
    return value.strip().casefold() in PLACEHOLDER_VALUES


def _placeholder_paths(value: object, path: str) -> list[str]:
    if isinstance(value, str):
        return [path] if _is_placeholder(value) else []
    if isinstance(value, Mapping):
        found: list[str] = []
        for key, item in cast(Mapping[str, object], value).items():
            found.extend(_placeholder_paths(item, f"{path}.{key}"))
        return found
    if isinstance(value, Sequence):
        found = []
        for index, item in enumerate(cast(Sequence[object], value)):
            found.extend(_placeholder_paths(item, f"{path}[{index}]"))
        return found
    return []


def _json_object(value: object) -> Mapping[str, object] | None:
    if isinstance(value, Mapping):
        return cast(Mapping[str, object], value)
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return None
        if isinstance(parsed, dict):
            return cast(dict[str, object], parsed)
    return None


# rule groups -------------------------------------------------------------------


def server_owned_field_errors(raw: Mapping[str, object]) -> list[FieldError]:
    errors: list[FieldError] = [
        FieldError(
            field=name,
            code=FieldErrorCode.CLIENT_HASH_REJECTED,
            message="Digests are computed by the ledger and may not be supplied",
        )
        for name in sorted(CLIENT_DIGEST_FIELDS.intersection(raw))
    ]
    errors.extend(
        FieldError(
            field=name,
            code=FieldErrorCode.ATTESTATION_FIELDS_REJECTED,
            message="Attestation is captured from the authenticated actor",
        )
        for name in sorted(ATTESTATION_FIELDS.intersection(raw))
    )
    return errors


def method_contract_errors(
    raw: Mapping[str, object],
    method: IngestionMethod,
    dataset: DatasetType | None,
) -> list[FieldError]:
    contract = METHOD_CONTRACTS[method]
    errors = [
        FieldError(
            field=name,
            code=FieldErrorCode.REQUIRED,
            message=f"{name} is required for {method} submissions",
        )
        for name in contract.required_fields
        if _text(raw, name) is None
    ]
    if dataset is not None and method not in METHODS_BY_DATASET[dataset]:
        errors.append(
            FieldError(
                field="ingestion_method",
                code=FieldErrorCode.UNSUPPORTED_METHOD_DATASET_COMBINATION,
                message=f"{method} cannot submit {dataset} records",
            )
        )
    if contract.forced_source is None:
        raw_source = raw.get("source_system")
        source = _coerce(SourceSystem, raw_source)
        if _text(raw, "source_system") is None:
            errors.append(
                FieldError(
                    field="source_system",
                    code=FieldErrorCode.REQUIRED,
                    message=f"source_system is required for {method} submissions",
                )
            )
        elif source is not None and source not in contract.allowed_sources:
            allowed = ", ".join(sorted(contract.allowed_sources))
            errors.append(
                FieldError(
                    field="source_system",
                    code=FieldErrorCode.INVALID_SOURCE_FOR_METHOD,
                    message=f"{method} accepts sources: {allowed}",
                )
            )
    return errors


def scope_errors(
    *,
    method: IngestionMethod | None,
    dataset: DatasetType | None,
    scope: DeclaredScope,
    scope_target_id: str | None,
) -> list[FieldError]:
    errors: list[FieldError] = []
    if scope in SCOPES_REQUIRING_TARGET and not scope_target_id:
        errors.append(
            FieldError(
                field="scope_target_id",
                code=FieldErrorCode.MISSING_SCOPE_TARGET_ID,
                message=f"{scope} scope requires scope_target_id",
            )
        )
    if scope is DeclaredScope.ENTIRE_ORGANIZATION and scope_target_id:
        errors.append(
            FieldError(
                field="scope_target_id",
                code=FieldErrorCode.SCOPE_TARGET_NOT_ALLOWED,
                message="ENTIRE_ORGANIZATION scope does not take a scope_target_id",
            )
        )
    if (
        method is IngestionMethod.MANUAL_ENTRY
        and dataset is not None
        and scope is not DeclaredScope.UNKNOWN
        and scope not in MANUAL_SCOPES_BY_DATASET[dataset]
    ):
        errors.append(
            FieldError(
                field="declared_scope",
                code=FieldErrorCode.INVALID_DATASET_SCOPE_COMBINATION,
                message=f"Manual {dataset} records cannot declare {scope} scope",
            )
        )
    return errors


def quarantine_errors(
    reason: str | None,
    deadline: datetime | None,
    *,
    settings: LedgerSettings,
    now: datetime,
) -> list[FieldError]:
    """Check a quarantine reason and deadline; both problems are reported together."""

    errors: list[FieldError] = []
    if reason is None:
        errors.append(
            FieldError(
                field="quarantine_reason",
                code=FieldErrorCode.REQUIRED,
                message="quarantine_reason is required when the scope is UNKNOWN",
            )
        )
    elif len(reason.strip()) < settings.min_quarantine_reason_length or _is_placeholder(reason):
        errors.append(
            FieldError(
                field="quarantine_reason",
                code=FieldErrorCode.QUARANTINE_REASON_TOO_SHORT,
                message=(
                    "quarantine_reason must be at least "
                    f"{settings.min_quarantine_reason_length} characters"
                ),
            )
        )
    if deadline is None:
        errors.append(
            FieldError(
                field="resolution_deadline",
                code=FieldErrorCode.REQUIRED,
                message="resolution_deadline is required when the scope is UNKNOWN",
            )
        )
    elif not now < deadline <= now + timedelta(days=settings.max_quarantine_days):
        errors.append(
            FieldError(
                field="resolution_deadline",
                code=FieldErrorCode.QUARANTINE_DEADLINE_OUT_OF_RANGE,
                message=(
                    "resolution_deadline must be in the future and within "
                    f"{settings.max_quarantine_days} days"
                ),
            )
        )
    return errors


def _quarantine_submission_errors(
    raw: Mapping[str, object],
    method: IngestionMethod | None,
    scope: DeclaredScope,
    *,
    settings: LedgerSettings,
    now: datetime,
) -> list[FieldError]:
    reason = _text(raw, "quarantine_reason")
    deadline = _as_datetime(raw.get("resolution_deadline"))
    supplied = reason is not None or raw.get("resolution_deadline") is not None
    if scope is not DeclaredScope.UNKNOWN:
        if supplied:
            return [
                FieldError(
                    field="declared_scope",
                    code=FieldErrorCode.SCOPE_NOT_UNLINKED,
                    message="Quarantine details are only accepted with UNKNOWN scope",
                )
            ]
        return []
    if method is IngestionMethod.MANUAL_ENTRY or supplied:
        return quarantine_errors(reason, deadline, settings=settings, now=now)
    return []


def _manual_entry_errors(
    raw: Mapping[str, object], *, settings: LedgerSettings
) -> list[FieldError]:
    errors: list[FieldError] = []
    notes = _text(raw, "entry_notes")
    if notes is not None and (
        len(notes) < settings.min_entry_notes_length or _is_placeholder(notes)
    ):
        errors.append(
            FieldError(
                field="entry_notes",
                code=FieldErrorCode.ENTRY_NOTES_TOO_SHORT,
                message=(
                    f"entry_notes must be at least {settings.min_entry_notes_length} characters"
                ),
            )
        )
    if _text(raw, "file_name") is not None:
        errors.append(
            FieldError(
                field="file_name",
                code=FieldErrorCode.METHOD_DISALLOWS_FILE,
                message="Manual entries cannot carry a file attachment",
            )
        )
    if "payload" in raw:
        payload = _json_object(raw.get("payload"))
        if payload is None:
            errors.append(
                FieldError(
                    field="payload",
                    code=FieldErrorCode.INVALID_PAYLOAD,
                    message="Manual entry payloads must be a JSON object",
                )
            )
        else:
            paths = _placeholder_paths(payload, "payload")
            if paths:
                errors.append(
                    FieldError(
                        field="payload",
                        code=FieldErrorCode.PLACEHOLDER_VALUE,
                        message=f"Placeholder values are not accepted: {', '.join(paths)}",
                    )
                )
    return errors


def _descriptive_errors(raw: Mapping[str, object]) -> list[FieldError]:
    errors: list[FieldError] = []
    tags = raw.get("purpose_tags")
    if tags is not None:
        candidates: Sequence[object] = (
            tags.split(",") if isinstance(tags, str) else cast(Sequence[object], tags)
        )
        if not isinstance(candidates, Sequence) or not any(
            isinstance(tag, str) and tag.strip() for tag in candidates
        ):
            errors.append(
                FieldError(
                    field="purpose_tags",
                    code=FieldErrorCode.EMPTY_PURPOSE_TAGS,
                    message="purpose_tags must contain at least one tag",
                )
            )
    if _as_bool(raw.get("personal_data_present")) and _text(raw, "legal_basis") is None:
        errors.append(
            FieldError(
                field="legal_basis",
                code=FieldErrorCode.MISSING_LEGAL_BASIS,
                message="legal_basis is required when personal data is present",
            )
        )
    policy = _coerce(RetentionPolicy, raw.get("retention_policy"))
    if policy is RetentionPolicy.CUSTOM and raw.get("retention_custom_days") is None:
        errors.append(
            FieldError(
                field="retention_custom_days",
                code=FieldErrorCode.REQUIRED,
                message="retention_custom_days is required for CUSTOM retention",
            )
        )
    return errors


def submission_errors(
    raw: Mapping[str, object],
    *,
    settings: LedgerSettings,
    now: datetime,
) -> list[FieldError]:
    """Return every conditional-rule violation in ``raw``."""

    method = _coerce(IngestionMethod, raw.get("ingestion_method"))
    dataset = _coerce(DatasetType, raw.get("dataset_type"))
    scope = _coerce(DeclaredScope, raw.get("declared_scope"))

    errors = server_owned_field_errors(raw)
    errors.extend(_descriptive_errors(raw))
    if method is not None:
        errors.extend(method_contract_errors(raw, method, dataset))
        if method is IngestionMethod.MANUAL_ENTRY:
            errors.extend(_manual_entry_errors(raw, settings=settings))
    if scope is not None:
        errors.extend(
            scope_errors(
                method=method,
                dataset=dataset,
                scope=scope,
                scope_target_id=_text(raw, "scope_target_id"),
            )
        )
        errors.extend(
            _quarantine_submission_errors(raw, method, scope, settings=settings, now=now)
        )
    return errors


def validate_submission(
    raw: Mapping[str, object],
    *,
    settings: LedgerSettings,
    now: datetime,
) -> EvidenceSubmission:
    """Parse ``raw`` or raise :class:`ValidationFailed` listing every problem."""

    submission, errors = parse_submission(raw)
    errors.extend(submission_errors(raw, settings=settings, now=now))
    if errors or submission is None:
        raise ValidationFailed(errors)
    return submission
