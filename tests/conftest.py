from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from nacl.encoding import Base64Encoder
from nacl.public import PrivateKey
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.pool import StaticPool

from milesbridge.adapters.sqlalchemy import Database, SqlAlchemyUnitOfWork, start_mappers
from milesbridge.adapters.sqlalchemy.migrations import upgrade_head
from milesbridge.adapters.vault import SealedBoxVault
from milesbridge.app import load_provider_registry
from milesbridge.config import LedgerConfig
from milesbridge.domain.state_machine import OrderStateMachine
from tests.helpers.fakes import FakeExecutionAgent, FakeLedger

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from milesbridge.domain.model import Provider


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    # one shared connection so every thread sees the same in-memory database
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    start_mappers()
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def database(sqlite_engine: Engine) -> Database:
    return Database.connect(engine=sqlite_engine, migrate=False)


@pytest.fixture
def sqlite_unit_of_work(database: Database) -> Callable[[], SqlAlchemyUnitOfWork]:
    return database.unit_of_work


@pytest.fixture
def state_machine(sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork]) -> OrderStateMachine:
    return OrderStateMachine(sqlite_unit_of_work)


@pytest.fixture
def providers(sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork]) -> list[Provider]:
    registry = load_provider_registry()
    with sqlite_unit_of_work() as uow:
        for provider in registry:
            uow.repositories.providers.upsert(provider)
        uow.commit()
    return registry


@pytest.fixture
def agent_private_key() -> PrivateKey:
    return PrivateKey.generate()


@pytest.fixture
def agent_public_key(agent_private_key: PrivateKey) -> str:
    return agent_private_key.public_key.encode(encoder=Base64Encoder).decode("ascii")


@pytest.fixture
def vault(agent_public_key: str) -> SealedBoxVault:
    return SealedBoxVault(agent_public_key)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def ledger_config() -> LedgerConfig:
    return LedgerConfig(
        escrow_contract="0x0000000000000000000000000000000000000001",
        poll_interval_seconds=0.01,
        call_timeout_seconds=1.0,
        max_poll_backoff_seconds=0.05,
    )


@pytest.fixture
def agent() -> FakeExecutionAgent:
    return FakeExecutionAgent()
