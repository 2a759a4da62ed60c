from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine

from supplyledger.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyLedgerUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)
from supplyledger.app import build_ledger
from supplyledger.config import LedgerSettings
from supplyledger.domain.model import AuditAction, LedgerState, Tenant
from supplyledger.domain.ports import ConcurrentWriteError, EvidenceFilter
from tests.helpers.ledger import TENANT, api_push_record, make_actor

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from sqlalchemy.engine import Engine

    from supplyledger.domain.ledger import IngestResult
    from supplyledger.domain.model import Evidence


@pytest.fixture(autouse=True)
def reset_unit_of_work_state() -> Iterator[None]:
    shutdown()
    yield
    shutdown()


def test_unit_of_work_requires_startup() -> None:
    assert not is_started()
    with pytest.raises(StartupError):
        SqlAlchemyLedgerUnitOfWork()


def test_startup_requires_force_for_reconfiguration() -> None:
    engine_a = create_engine("sqlite+pysqlite:///:memory:", future=True)
    engine_b = create_engine("sqlite+pysqlite:///:memory:", future=True)

    startup(engine=engine_a, force=True)

    with pytest.raises(StartupError):
        startup(engine=engine_b)

    startup(engine=engine_b, force=True)
    assert configured_engine() is engine_b


def test_unit_of_work_persists_and_rolls_back(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    with SqlAlchemyLedgerUnitOfWork() as uow:
        uow.repositories.tenants.add(Tenant(tenant_id=TENANT))
        uow.commit()

    with SqlAlchemyLedgerUnitOfWork() as uow:
        uow.repositories.tenants.add(Tenant(tenant_id="uncommitted"))

    with SqlAlchemyLedgerUnitOfWork() as uow:
        assert uow.repositories.tenants.get(TENANT) is not None
        assert uow.repositories.tenants.get("uncommitted") is None


def test_repositories_require_an_open_session(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    uow = SqlAlchemyLedgerUnitOfWork()

    with pytest.raises(StartupError):
        _ = uow.repositories


def test_uniqueness_violations_surface_as_concurrent_writes(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    with SqlAlchemyLedgerUnitOfWork() as uow:
        uow.repositories.tenants.add(Tenant(tenant_id=TENANT))
        uow.commit()

    with SqlAlchemyLedgerUnitOfWork() as uow, pytest.raises(ConcurrentWriteError):
        uow.session.add(Tenant(tenant_id=TENANT))
        uow.commit()


def test_racing_ingests_of_one_reference_store_one_record(tmp_path: Path) -> None:
    startup(database_uri=f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}", force=True)
    # separate ledgers share no in-process locks, like separate processes
    ledgers = [
        build_ledger(
            uow_factory=SqlAlchemyLedgerUnitOfWork,
            settings=LedgerSettings(),
            use_configured_advisory=False,
        )
        for _ in range(4)
    ]
    actor = make_actor()
    barrier = threading.Barrier(len(ledgers))
    results: list[IngestResult] = []
    errors: list[BaseException] = []
    guard = threading.Lock()

    def submit(index: int) -> None:
        barrier.wait()
        try:
            result = ledgers[index].evidence.ingest(api_push_record("ext-race"), actor=actor)
        except Exception as exc:  # noqa: BLE001
            with guard:
                errors.append(exc)
            return
        with guard:
            results.append(result)

    threads = [threading.Thread(target=submit, args=(index,)) for index in range(len(ledgers))]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    assert len({result.evidence.id for result in results}) == 1
    assert sum(1 for result in results if not result.replayed) == 1
    with SqlAlchemyLedgerUnitOfWork() as uow:
        stored = uow.repositories.evidence.query(TENANT, EvidenceFilter())
    assert len(stored) == 1


def test_racing_seals_of_one_record_transition_once(tmp_path: Path) -> None:
    startup(database_uri=f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}", force=True)
    ledgers = [
        build_ledger(
            uow_factory=SqlAlchemyLedgerUnitOfWork,
            settings=LedgerSettings(),
            use_configured_advisory=False,
        )
        for _ in range(4)
    ]
    actor = make_actor()
    evidence = ledgers[0].evidence.ingest(api_push_record("ext-seal"), actor=actor).evidence
    barrier = threading.Barrier(len(ledgers))
    results: list[Evidence] = []
    errors: list[BaseException] = []
    guard = threading.Lock()

    def seal(index: int) -> None:
        barrier.wait()
        try:
            result = ledgers[index].evidence.seal(evidence.id, actor=actor)
        except Exception as exc:  # noqa: BLE001
            with guard:
                errors.append(exc)
            return
        with guard:
            results.append(result)

    threads = [threading.Thread(target=seal, args=(index,)) for index in range(len(ledgers))]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    assert len(results) == len(ledgers)
    assert all(result.ledger_state is LedgerState.SEALED for result in results)
    sealed_events = [
        event
        for event in ledgers[0].audit_log.by_evidence(TENANT, evidence.id)
        if event.action is AuditAction.SEALED
    ]
    assert len(sealed_events) == 1
    assert {result.audit_event_count for result in results} == {2}
