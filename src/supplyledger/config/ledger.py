"""Tunable thresholds for the ledger, resolution, and work-item engines."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int
from .errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class LedgerSettings:
    auto_approve_threshold: float = 0.92
    suggestion_threshold: float = 0.70
    follow_up_dedup_seconds: int = 60
    max_quarantine_days: int = 90
    min_quarantine_reason_length: int = 30
    min_entry_notes_length: int = 20
    min_sealed_audit_events: int = 2

    def __post_init__(self) -> None:
        if not 0.0 < self.suggestion_threshold <= self.auto_approve_threshold <= 1.0:
            raise ConfigurationError(
                "Thresholds must satisfy 0 < suggestion_threshold <= auto_approve_threshold <= 1"
            )
        for name in (
            "follow_up_dedup_seconds",
            "max_quarantine_days",
            "min_quarantine_reason_length",
            "min_entry_notes_length",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.min_sealed_audit_events < 0:
            raise ConfigurationError("min_sealed_audit_events must not be negative")


def get_ledger_settings() -> LedgerSettings:
    defaults = LedgerSettings()
    return LedgerSettings(
        auto_approve_threshold=env_float(
            "SUPPLYLEDGER_AUTO_APPROVE_THRESHOLD", defaults.auto_approve_threshold
        ),
        suggestion_threshold=env_float(
            "SUPPLYLEDGER_SUGGESTION_THRESHOLD", defaults.suggestion_threshold
        ),
        follow_up_dedup_seconds=env_int(
            "SUPPLYLEDGER_FOLLOW_UP_DEDUP_SECONDS", defaults.follow_up_dedup_seconds
        ),
        max_quarantine_days=env_int(
            "SUPPLYLEDGER_MAX_QUARANTINE_DAYS", defaults.max_quarantine_days
        ),
        min_quarantine_reason_length=env_int(
            "SUPPLYLEDGER_MIN_QUARANTINE_REASON_LENGTH", defaults.min_quarantine_reason_length
        ),
        min_entry_notes_length=env_int(
            "SUPPLYLEDGER_MIN_ENTRY_NOTES_LENGTH", defaults.min_entry_notes_length
        ),
        min_sealed_audit_events=env_int(
            "SUPPLYLEDGER_MIN_SEALED_AUDIT_EVENTS", defaults.min_sealed_audit_events
        ),
    )
