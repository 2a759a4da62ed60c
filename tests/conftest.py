from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002

from supplyledger.adapters.sqlalchemy import SqlAlchemyLedgerUnitOfWork, shutdown, startup
from supplyledger.app import build_ledger
from supplyledger.config import LedgerSettings
from supplyledger.domain.model import Actor, Role
from tests.helpers.ledger import OTHER_TENANT, FrozenClock, make_actor

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator

    from supplyledger.app import SupplyLedger


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def uow_factory(sqlite_engine: Engine) -> Iterator[type[SqlAlchemyLedgerUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield SqlAlchemyLedgerUnitOfWork
    finally:
        shutdown()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> LedgerSettings:
    return LedgerSettings()


@pytest.fixture
def ledger(
    uow_factory: type[SqlAlchemyLedgerUnitOfWork],
    clock: FrozenClock,
    settings: LedgerSettings,
) -> Iterator[SupplyLedger]:
    app = build_ledger(
        uow_factory=uow_factory,
        settings=settings,
        clock=clock,
        use_configured_advisory=False,
    )
    try:
        yield app
    finally:
        app.close()


@pytest.fixture
def submitter() -> Actor:
    return make_actor("sam")


@pytest.fixture
def reviewer() -> Actor:
    return make_actor("riley", roles=(Role.REVIEWER,))


@pytest.fixture
def outsider() -> Actor:
    return make_actor("olga", tenant_id=OTHER_TENANT, roles=(Role.REVIEWER,))
