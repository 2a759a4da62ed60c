from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from supplyledger.domain.audit_log import REDACTED, AuditLog, scrub_context
from supplyledger.domain.clock import MonotonicClock
from supplyledger.domain.errors import AccessDenied, NotFound
from supplyledger.domain.model import SYSTEM_EVIDENCE_ID, AuditAction, Role
from tests.helpers.ledger import TENANT, FrozenClock, make_actor

if TYPE_CHECKING:
    from supplyledger.adapters.sqlalchemy import SqlAlchemyLedgerUnitOfWork


def test_scrub_context_redacts_credentials_recursively() -> None:
    scrubbed = scrub_context(
        {
            "api_key": "abc",
            "nested": {"Authorization": "Bearer x", "field": "vat"},
            "count": 3,
        }
    )

    assert scrubbed == {
        "api_key": REDACTED,
        "nested": {"Authorization": REDACTED, "field": "vat"},
        "count": 3,
    }


def test_record_persists_event_without_evidence_as_system(
    uow_factory: type[SqlAlchemyLedgerUnitOfWork],
) -> None:
    audit = AuditLog(uow_factory, clock=FrozenClock())
    event = audit.event(
        actor="system-policy",
        tenant_id=TENANT,
        action=AuditAction.ENTITY_CREATED,
        context={"token": "secret"},
    )

    audit.record(event)

    (stored,) = audit.by_tenant(TENANT)
    assert stored.evidence_id == SYSTEM_EVIDENCE_ID
    assert stored.context == {"token": REDACTED}
    assert audit.count_for_evidence(TENANT, SYSTEM_EVIDENCE_ID) == 1


def test_denials_record_access_denied_and_reraise(
    uow_factory: type[SqlAlchemyLedgerUnitOfWork],
) -> None:
    audit = AuditLog(uow_factory)
    actor = make_actor()

    with pytest.raises(AccessDenied), audit.denials(actor, request_id="req-9"):
        raise AccessDenied(actor_id=actor.actor_id, action="approve", required_roles=[Role.ADMIN])

    (event,) = audit.by_tenant(TENANT)
    assert event.action is AuditAction.ACCESS_DENIED
    assert event.request_id == "req-9"
    assert event.context == {"action": "approve", "required_roles": ["admin"]}


def test_denials_leave_other_errors_unaudited(
    uow_factory: type[SqlAlchemyLedgerUnitOfWork],
) -> None:
    audit = AuditLog(uow_factory)

    with pytest.raises(ValueError, match="boom"), audit.denials(make_actor()):
        raise ValueError("boom")

    assert audit.by_tenant(TENANT) == []


def test_failed_denial_write_does_not_mask_the_error() -> None:
    class _BrokenUnitOfWork:
        def __enter__(self) -> _BrokenUnitOfWork:
            raise RuntimeError("database unavailable")

        def __exit__(self, *args: object) -> bool:
            return False

    audit = AuditLog(_BrokenUnitOfWork)  # type: ignore[arg-type]

    with pytest.raises(NotFound), audit.denials(make_actor()):
        raise NotFound(resource="Evidence", resource_id="x")

    assert audit.failed_writes == 1


def test_timestamps_never_repeat(uow_factory: type[SqlAlchemyLedgerUnitOfWork]) -> None:
    audit = AuditLog(uow_factory, clock=MonotonicClock(FrozenClock()))

    first = audit.event(actor="a", tenant_id=TENANT, action=AuditAction.INGESTED)
    second = audit.event(actor="a", tenant_id=TENANT, action=AuditAction.INGESTED)

    assert second.created_at > first.created_at
