from __future__ import annotations

from typing import TYPE_CHECKING

from supplyledger.config import LedgerSettings
from supplyledger.domain.ledger import readiness_report
from supplyledger.domain.model import DataMode, LedgerState
from tests.helpers.ledger import TENANT, certificate_upload, erp_api_record

if TYPE_CHECKING:
    from supplyledger.adapters.sqlalchemy import SqlAlchemyLedgerUnitOfWork
    from supplyledger.app import SupplyLedger
    from supplyledger.domain.model import Actor


def test_empty_tenant_is_ready(ledger: SupplyLedger) -> None:
    report = ledger.readiness(TENANT)

    assert report.ready
    assert report.to_dict() == {
        "tenant_id": TENANT,
        "outside_allowed_states": 0,
        "test_origin_records": 0,
        "under_audited_sealed": 0,
        "ready": True,
    }


def test_unsealed_records_block_readiness(ledger: SupplyLedger, submitter: Actor) -> None:
    evidence = ledger.evidence.ingest(erp_api_record(), actor=submitter).evidence
    assert ledger.readiness(TENANT).outside_allowed_states == 1

    ledger.evidence.seal(evidence.id, actor=submitter)

    assert ledger.readiness(TENANT).ready


def test_allowed_states_are_configurable(ledger: SupplyLedger, submitter: Actor) -> None:
    ledger.evidence.ingest(certificate_upload(), actor=submitter)

    report = ledger.readiness(
        TENANT, allowed_states=frozenset({LedgerState.INGESTED, LedgerState.SEALED})
    )

    assert report.ready


def test_synthetic_records_block_readiness(ledger: SupplyLedger, submitter: Actor) -> None:
    ledger.configure_tenant(TENANT, data_mode=DataMode.SANDBOX)
    evidence = ledger.evidence.ingest(erp_api_record(origin="DEMO"), actor=submitter).evidence
    ledger.evidence.seal(evidence.id, actor=submitter)

    report = ledger.readiness(TENANT)

    assert report.test_origin_records == 1
    assert not report.ready


def test_sealed_records_need_enough_audit_events(
    ledger: SupplyLedger,
    submitter: Actor,
    uow_factory: type[SqlAlchemyLedgerUnitOfWork],
) -> None:
    evidence = ledger.evidence.ingest(erp_api_record(), actor=submitter).evidence
    ledger.evidence.seal(evidence.id, actor=submitter)

    strict = readiness_report(
        uow_factory, TENANT, settings=LedgerSettings(min_sealed_audit_events=3)
    )

    assert strict.under_audited_sealed == 1
    assert ledger.readiness(TENANT).under_audited_sealed == 0


def test_readiness_is_per_tenant(
    ledger: SupplyLedger, submitter: Actor, outsider: Actor
) -> None:
    ledger.evidence.ingest(erp_api_record(), actor=outsider)

    assert ledger.readiness(TENANT).ready
    assert not ledger.readiness(outsider.tenant_id).ready
