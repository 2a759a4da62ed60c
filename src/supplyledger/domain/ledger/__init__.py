"""Evidence ledger: submission rules, validation, and the ledger service."""

from __future__ import annotations

from supplyledger.domain.ledger.readiness import ReadinessReport, readiness_report
from supplyledger.domain.ledger.schema import EvidenceSubmission, parse_submission
from supplyledger.domain.ledger.service import EvidenceLedger, IngestResult, parse_evidence_id
from supplyledger.domain.ledger.validation import (
    quarantine_errors,
    scope_errors,
    submission_errors,
    validate_submission,
)

__all__ = [
    "EvidenceLedger",
    "EvidenceSubmission",
    "IngestResult",
    "ReadinessReport",
    "parse_evidence_id",
    "parse_submission",
    "quarantine_errors",
    "readiness_report",
    "scope_errors",
    "submission_errors",
    "validate_submission",
]
