from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import pytest

from supplyledger.adapters.sqlalchemy.mappings import AppendOnlyViolation
from supplyledger.domain.errors import ImmutableConflict
from supplyledger.domain.model import EntityType, LedgerState
from tests.helpers.ledger import (
    TENANT,
    erp_api_record,
    supplier_payload,
    unknown_scope_upload,
)

if TYPE_CHECKING:
    from supplyledger.app import SupplyLedger
    from supplyledger.domain.model import Actor
    from tests.helpers.ledger import FrozenClock


def test_audit_events_cannot_be_rewritten(ledger: SupplyLedger, submitter: Actor) -> None:
    ledger.evidence.ingest(erp_api_record(), actor=submitter)

    with ledger.uow_factory() as uow, pytest.raises(AppendOnlyViolation):
        (event,) = uow.repositories.audit_events.for_tenant(TENANT)
        event.actor = "mallory"
        uow.commit()

    (event,) = ledger.audit_log.by_tenant(TENANT)
    assert event.actor == submitter.actor_id


def test_decisions_cannot_be_rewritten(ledger: SupplyLedger, reviewer: Actor) -> None:
    ledger.resolution.register_entity(EntityType.SUPPLIER, supplier_payload(), actor=reviewer)

    with ledger.uow_factory() as uow, pytest.raises(AppendOnlyViolation):
        (decision,) = uow.repositories.decisions.for_tenant(TENANT)
        decision.reason_code = "REWRITTEN"
        uow.commit()


def test_decisions_are_numbered_in_append_order(ledger: SupplyLedger, reviewer: Actor) -> None:
    for name in ("Acme GmbH", "Beta AG", "Gamma SA"):
        ledger.resolution.register_entity(
            EntityType.SUPPLIER, supplier_payload(legal_name=name), actor=reviewer
        )

    with ledger.uow_factory() as uow:
        decisions = uow.repositories.decisions.for_tenant(TENANT)

    sequences = [decision.sequence for decision in decisions]
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == 3
    assert [decision.details["fields"]["legal_name"] for decision in decisions] == [  # type: ignore[index]
        "Acme GmbH",
        "Beta AG",
        "Gamma SA",
    ]


def test_sealed_evidence_is_frozen_in_storage(ledger: SupplyLedger, submitter: Actor) -> None:
    evidence = ledger.evidence.ingest(erp_api_record(), actor=submitter).evidence
    ledger.evidence.seal(evidence.id, actor=submitter)

    with ledger.uow_factory() as uow, pytest.raises(ImmutableConflict) as excinfo:
        stored = uow.repositories.evidence.get(TENANT, evidence.id)
        assert stored is not None
        stored.payload = '{"legal_name":"Someone Else"}'
        uow.commit()

    assert excinfo.value.details["fields"] == ["payload"]


def test_evidence_cannot_be_deleted(ledger: SupplyLedger, submitter: Actor) -> None:
    evidence = ledger.evidence.ingest(erp_api_record(), actor=submitter).evidence

    with ledger.uow_factory() as uow, pytest.raises(ImmutableConflict):
        stored = uow.repositories.evidence.get(TENANT, evidence.id)
        uow.session.delete(stored)
        uow.commit()


def test_quarantined_evidence_only_accepts_release_columns(
    ledger: SupplyLedger, submitter: Actor, clock: FrozenClock
) -> None:
    evidence = ledger.evidence.ingest(unknown_scope_upload(clock.now), actor=submitter).evidence
    assert evidence.ledger_state is LedgerState.QUARANTINED

    with ledger.uow_factory() as uow, pytest.raises(ImmutableConflict):
        stored = uow.repositories.evidence.get(TENANT, evidence.id)
        assert stored is not None
        stored.purpose_tags = ("marketing",)
        uow.commit()


def test_timestamps_come_back_in_utc(ledger: SupplyLedger, submitter: Actor) -> None:
    evidence = ledger.evidence.ingest(erp_api_record(), actor=submitter).evidence

    with ledger.uow_factory() as uow:
        stored = uow.repositories.evidence.get(TENANT, evidence.id)

    assert stored is not None
    assert isinstance(stored.created_at, datetime)
    assert stored.created_at.utcoffset() is not None
    assert stored.snapshot_at == datetime.fromisoformat("2025-02-01T00:00:00+00:00")
