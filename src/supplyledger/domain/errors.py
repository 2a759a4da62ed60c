"""Typed ledger errors with stable, machine-readable codes.

Every failure surfaced to callers is a :class:`LedgerError` subclass carrying an
:class:`ErrorCode`. Validation failures additionally carry one :class:`FieldError`
per offending field so a single response can report every violation at once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from functools import wraps
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

log = logging.getLogger(__name__)


class ErrorCode(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MODE_VIOLATION = "MODE_VIOLATION"
    IMMUTABLE_CONFLICT = "IMMUTABLE_CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"
    DUPLICATE_FOLLOW_UP = "DUPLICATE_FOLLOW_UP"
    INTERNAL = "INTERNAL"
    STATE_CONFLICT = "STATE_CONFLICT"
    ACCESS_DENIED = "ACCESS_DENIED"


class FieldErrorCode(StrEnum):
    REQUIRED = "REQUIRED"
    INVALID_ENUM = "INVALID_ENUM"
    INVALID_VALUE = "INVALID_VALUE"
    EMPTY_PURPOSE_TAGS = "EMPTY_PURPOSE_TAGS"
    UNSUPPORTED_METHOD_DATASET_COMBINATION = "UNSUPPORTED_METHOD_DATASET_COMBINATION"
    INVALID_DATASET_SCOPE_COMBINATION = "INVALID_DATASET_SCOPE_COMBINATION"
    INVALID_SOURCE_FOR_METHOD = "INVALID_SOURCE_FOR_METHOD"
    MISSING_SCOPE_TARGET_ID = "MISSING_SCOPE_TARGET_ID"
    SCOPE_TARGET_NOT_ALLOWED = "SCOPE_TARGET_NOT_ALLOWED"
    QUARANTINE_REASON_TOO_SHORT = "QUARANTINE_REASON_TOO_SHORT"
    QUARANTINE_DEADLINE_OUT_OF_RANGE = "QUARANTINE_DEADLINE_OUT_OF_RANGE"
    SCOPE_NOT_UNLINKED = "SCOPE_NOT_UNLINKED"
    ENTRY_NOTES_TOO_SHORT = "ENTRY_NOTES_TOO_SHORT"
    PLACEHOLDER_VALUE = "PLACEHOLDER_VALUE"
    CLIENT_HASH_REJECTED = "CLIENT_HASH_REJECTED"
    ATTESTATION_FIELDS_REJECTED = "ATTESTATION_FIELDS_REJECTED"
    METHOD_DISALLOWS_FILE = "METHOD_DISALLOWS_FILE"
    MISSING_LEGAL_BASIS = "MISSING_LEGAL_BASIS"
    RETENTION_BELOW_MINIMUM = "RETENTION_BELOW_MINIMUM"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    UNKNOWN_SUPERSEDED_EVIDENCE = "UNKNOWN_SUPERSEDED_EVIDENCE"
    WINNING_VALUE_MISMATCH = "WINNING_VALUE_MISMATCH"
    TRUST_POLICY_MISSING = "TRUST_POLICY_MISSING"
    NOT_RESOLVABLE = "NOT_RESOLVABLE"


@dataclass(frozen=True, slots=True)
class FieldError:
    field: str
    code: FieldErrorCode
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "code": self.code.value, "message": self.message}


class LedgerError(Exception):
    """Base class for all errors reported to ledger callers."""

    code: ClassVar[ErrorCode] = ErrorCode.INTERNAL

    def __init__(self, message: str, *, details: Mapping[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, object] = dict(details or {})

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "ok": False,
            "error_code": self.code.value,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationFailed(LedgerError):
    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, errors: Iterable[FieldError], message: str | None = None) -> None:
        unique: dict[tuple[str, FieldErrorCode], FieldError] = {}
        for error in errors:
            unique.setdefault((error.field, error.code), error)
        self.errors: tuple[FieldError, ...] = tuple(unique.values())
        fields = sorted({error.field for error in self.errors})
        super().__init__(message or f"Validation failed for: {', '.join(fields)}")

    @property
    def fields(self) -> frozenset[str]:
        return frozenset(error.field for error in self.errors)

    def has(self, field: str, code: FieldErrorCode | None = None) -> bool:
        return any(
            error.field == field and (code is None or error.code is code) for error in self.errors
        )

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["field_errors"] = [error.to_dict() for error in self.errors]
        return payload


class ModeViolation(LedgerError):
    code = ErrorCode.MODE_VIOLATION

    def __init__(self, *, origin: str, data_mode: str) -> None:
        super().__init__(
            f"Origin {origin} is not accepted while the tenant is in {data_mode} mode",
            details={"origin": origin, "data_mode": data_mode},
        )
        self.origin = origin
        self.data_mode = data_mode


class ImmutableConflict(LedgerError):
    code = ErrorCode.IMMUTABLE_CONFLICT

    def __init__(self, *, evidence_id: str, ledger_state: str, fields: Iterable[str]) -> None:
        self.evidence_id = evidence_id
        self.ledger_state = ledger_state
        self.fields = tuple(sorted(fields))
        super().__init__(
            f"Evidence {evidence_id} is {ledger_state}; fields cannot change: "
            f"{', '.join(self.fields) or '(none)'}",
            details={
                "evidence_id": evidence_id,
                "ledger_state": ledger_state,
                "fields": list(self.fields),
            },
        )


class NotFound(LedgerError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, *, resource: str, resource_id: str) -> None:
        # identical message whether the id is absent or owned by another tenant
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


class AlreadyResolved(LedgerError):
    code = ErrorCode.ALREADY_RESOLVED

    def __init__(self, *, work_item_id: str) -> None:
        super().__init__(
            f"Work item {work_item_id} is already resolved; submit a correction instead",
            details={"work_item_id": work_item_id},
        )
        self.work_item_id = work_item_id


class StateConflict(LedgerError):
    code = ErrorCode.STATE_CONFLICT


class AccessDenied(LedgerError):
    code = ErrorCode.ACCESS_DENIED

    def __init__(self, *, actor_id: str, action: str, required_roles: Iterable[str]) -> None:
        self.actor_id = actor_id
        self.action = action
        self.required_roles = tuple(sorted(required_roles))
        super().__init__(
            f"Actor {actor_id} may not {action}",
            details={"action": action, "required_roles": list(self.required_roles)},
        )


class InternalError(LedgerError):
    code = ErrorCode.INTERNAL


def reports_internal_errors[**P, R](func: Callable[P, R]) -> Callable[P, R]:
    """Re-raise unexpected failures as a generic :class:`InternalError`.

    The original exception is logged with its traceback and chained, but never
    leaks its message to the caller.
    """

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return func(*args, **kwargs)
        except LedgerError:
            raise
        except Exception as exc:
            log.exception("Unexpected failure in %s", func.__qualname__)
            raise InternalError("An internal error occurred") from exc

    return wrapper
