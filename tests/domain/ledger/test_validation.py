from __future__ import annotations

from datetime import timedelta

import pytest

from supplyledger.config import LedgerSettings
from supplyledger.domain.errors import FieldErrorCode, ValidationFailed
from supplyledger.domain.ledger import validate_submission
from supplyledger.domain.model import DeclaredScope, IngestionMethod, SourceSystem
from tests.helpers.ledger import (
    QUARANTINE_REASON,
    START,
    api_push_record,
    certificate_upload,
    erp_api_record,
    manual_record,
    unknown_scope_upload,
)

SETTINGS = LedgerSettings()


def _errors(record: dict[str, object]) -> ValidationFailed:
    with pytest.raises(ValidationFailed) as excinfo:
        validate_submission(record, settings=SETTINGS, now=START)
    return excinfo.value


def test_valid_erp_snapshot_parses() -> None:
    submission = validate_submission(erp_api_record(), settings=SETTINGS, now=START)

    assert submission.ingestion_method is IngestionMethod.ERP_API
    assert submission.source_system is SourceSystem.SAP
    assert submission.purpose_tags == ("supplier-onboarding",)
    assert submission.snapshot_at is not None
    assert submission.snapshot_at.tzinfo is not None


def test_purpose_tags_accept_comma_separated_text() -> None:
    submission = validate_submission(
        erp_api_record(purpose_tags="audit, onboarding,audit"), settings=SETTINGS, now=START
    )
    assert submission.purpose_tags == ("audit", "onboarding")


def test_missing_required_fields_are_all_reported() -> None:
    record = erp_api_record()
    del record["dataset_type"]
    del record["retention_policy"]
    del record["connector_reference"]

    error = _errors(record)

    assert error.has("dataset_type", FieldErrorCode.REQUIRED)
    assert error.has("retention_policy", FieldErrorCode.REQUIRED)
    assert error.has("connector_reference", FieldErrorCode.REQUIRED)


def test_unknown_enum_value_is_reported() -> None:
    error = _errors(erp_api_record(dataset_type="INVOICE"))
    assert error.has("dataset_type", FieldErrorCode.INVALID_ENUM)


def test_conditional_rules_still_run_when_parsing_fails() -> None:
    error = _errors(erp_api_record(retention_policy="FOREVER", purpose_tags=[]))

    assert error.has("retention_policy", FieldErrorCode.INVALID_ENUM)
    assert error.has("purpose_tags", FieldErrorCode.EMPTY_PURPOSE_TAGS)


def test_erp_api_rejects_non_erp_source() -> None:
    error = _errors(erp_api_record(source_system="SUPPLIER_PORTAL"))
    assert error.has("source_system", FieldErrorCode.INVALID_SOURCE_FOR_METHOD)


def test_external_methods_require_a_source() -> None:
    error = _errors(erp_api_record(source_system=None))
    assert error.has("source_system", FieldErrorCode.REQUIRED)


def test_api_push_requires_reference_and_correlation() -> None:
    error = _errors(api_push_record(external_reference_id=" ", correlation_id=None))

    assert error.has("external_reference_id", FieldErrorCode.REQUIRED)
    assert error.has("correlation_id", FieldErrorCode.REQUIRED)


def test_document_datasets_reject_erp_methods() -> None:
    error = _errors(erp_api_record(dataset_type="CERTIFICATE"))
    assert error.has("ingestion_method", FieldErrorCode.UNSUPPORTED_METHOD_DATASET_COMBINATION)


def test_manual_entry_forces_the_internal_source() -> None:
    submission = validate_submission(manual_record(), settings=SETTINGS, now=START)
    assert submission.source_system is None
    assert submission.declared_scope is DeclaredScope.LEGAL_ENTITY


def test_manual_entry_rejects_short_notes_and_attachments() -> None:
    error = _errors(manual_record(entry_notes="too short", file_name="scan.pdf"))

    assert error.has("entry_notes", FieldErrorCode.ENTRY_NOTES_TOO_SHORT)
    assert error.has("file_name", FieldErrorCode.METHOD_DISALLOWS_FILE)


def test_manual_entry_rejects_placeholder_payload_values() -> None:
    error = _errors(manual_record(payload={"legal_name": "TBD", "contacts": ["n/a"]}))

    assert error.has("payload", FieldErrorCode.PLACEHOLDER_VALUE)
    (placeholder,) = [item for item in error.errors if item.field == "payload"]
    assert "payload.legal_name" in placeholder.message
    assert "payload.contacts[0]" in placeholder.message


def test_manual_entry_payload_must_be_an_object() -> None:
    error = _errors(manual_record(payload="free text"))
    assert error.has("payload", FieldErrorCode.INVALID_PAYLOAD)


def test_manual_entry_rejects_scope_outside_dataset_matrix() -> None:
    error = _errors(manual_record(declared_scope="SITE", scope_target_id="SITE-1"))
    assert error.has("declared_scope", FieldErrorCode.INVALID_DATASET_SCOPE_COMBINATION)


def test_manual_unknown_scope_without_quarantine_details_is_rejected() -> None:
    error = _errors(manual_record(declared_scope="UNKNOWN", scope_target_id=None))

    assert error.has("quarantine_reason", FieldErrorCode.REQUIRED)
    assert error.has("resolution_deadline", FieldErrorCode.REQUIRED)


def test_unknown_scope_for_other_methods_needs_no_quarantine_details() -> None:
    submission = validate_submission(
        erp_api_record(declared_scope="UNKNOWN"), settings=SETTINGS, now=START
    )
    assert submission.declared_scope is DeclaredScope.UNKNOWN


def test_quarantine_reason_and_deadline_are_checked_together() -> None:
    record = unknown_scope_upload(
        START,
        quarantine_reason="pending",
        resolution_deadline=(START + timedelta(days=120)).isoformat(),
    )

    error = _errors(record)

    assert error.has("quarantine_reason", FieldErrorCode.QUARANTINE_REASON_TOO_SHORT)
    assert error.has("resolution_deadline", FieldErrorCode.QUARANTINE_DEADLINE_OUT_OF_RANGE)


def test_quarantine_deadline_must_be_in_the_future() -> None:
    record = unknown_scope_upload(
        START, resolution_deadline=(START - timedelta(hours=1)).isoformat()
    )
    error = _errors(record)
    assert error.has("resolution_deadline", FieldErrorCode.QUARANTINE_DEADLINE_OUT_OF_RANGE)


def test_quarantine_details_require_unknown_scope() -> None:
    error = _errors(certificate_upload(quarantine_reason=QUARANTINE_REASON))
    assert error.has("declared_scope", FieldErrorCode.SCOPE_NOT_UNLINKED)


def test_scope_target_rules() -> None:
    missing = _errors(certificate_upload(scope_target_id=None))
    assert missing.has("scope_target_id", FieldErrorCode.MISSING_SCOPE_TARGET_ID)

    not_allowed = _errors(erp_api_record(scope_target_id="LE-1"))
    assert not_allowed.has("scope_target_id", FieldErrorCode.SCOPE_TARGET_NOT_ALLOWED)


def test_personal_data_requires_legal_basis() -> None:
    error = _errors(erp_api_record(personal_data_present=True))
    assert error.has("legal_basis", FieldErrorCode.MISSING_LEGAL_BASIS)

    submission = validate_submission(
        erp_api_record(personal_data_present=True, legal_basis="contract"),
        settings=SETTINGS,
        now=START,
    )
    assert submission.legal_basis == "contract"


def test_custom_retention_requires_days() -> None:
    error = _errors(erp_api_record(retention_policy="CUSTOM"))
    assert error.has("retention_custom_days", FieldErrorCode.REQUIRED)


def test_client_supplied_digests_and_attestation_are_rejected() -> None:
    error = _errors(manual_record(payload_digest="abc", attested_by="mallory"))

    assert error.has("payload_digest", FieldErrorCode.CLIENT_HASH_REJECTED)
    assert error.has("attested_by", FieldErrorCode.ATTESTATION_FIELDS_REJECTED)


def test_error_payload_lists_every_field_error() -> None:
    error = _errors(erp_api_record(purpose_tags=[], personal_data_present=True))

    payload = error.to_dict()

    assert payload["ok"] is False
    assert payload["error_code"] == "VALIDATION_ERROR"
    codes = {(item["field"], item["code"]) for item in payload["field_errors"]}  # type: ignore[union-attr]
    assert ("purpose_tags", "EMPTY_PURPOSE_TAGS") in codes
    assert ("legal_basis", "MISSING_LEGAL_BASIS") in codes
