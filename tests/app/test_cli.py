from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from milesbridge.adapters.sqlalchemy import Database
from milesbridge.app import Services, build_services, load_provider_registry
from milesbridge.config import AttestationConfig, ExecutionAgentConfig, LedgerConfig
from milesbridge.domain.model import DeadLetter, DeadLetterKind, ItemType, OrderStatus, utcnow
from milesbridge.domain.reconciliation import CURSOR_NAME
from milesbridge.ui import cli
from tests.helpers.fakes import FakeLedger
from tests.helpers.orders import add_order, status_of

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from milesbridge.adapters.sqlalchemy import SqlAlchemyUnitOfWork


class ServicesFactory:
    """Stands in for ``build_services`` and remembers what it built."""

    def __init__(self, uri: str, ledger: FakeLedger | None = None) -> None:
        self.uri = uri
        self.ledger = ledger
        self.built: list[Services] = []
        self.closed = 0

    def __call__(self) -> Services:
        contract = "0x0000000000000000000000000000000000000001" if self.ledger is not None else None
        services = build_services(
            database=Database.connect(database_uri=self.uri),
            attestation_config=AttestationConfig(
                backend="mock", callback_base_url="http://marketplace.test"
            ),
            ledger_config=LedgerConfig(escrow_contract=contract),
            execution_config=ExecutionAgentConfig(),
            ledger=self.ledger,
        )
        self.built.append(services)
        return services


@pytest.fixture
def database_uri(tmp_path: Path) -> str:
    return f"sqlite+pysqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def file_unit_of_work(database_uri: str) -> Callable[[], SqlAlchemyUnitOfWork]:
    database = Database.connect(database_uri=database_uri)
    for provider in load_provider_registry():
        with database.unit_of_work() as uow:
            uow.repositories.providers.upsert(provider)
            uow.commit()
    return database.unit_of_work


@pytest.fixture
def factory(
    monkeypatch: pytest.MonkeyPatch,
    database_uri: str,
    file_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> ServicesFactory:
    services_factory = ServicesFactory(database_uri)
    close = Services.close

    def tracked_close(services: Services) -> None:
        services_factory.closed += 1
        close(services)

    monkeypatch.setattr(Services, "close", tracked_close)
    monkeypatch.setattr(cli, "build_services", services_factory)
    return services_factory


def test_stuck_lists_idle_orders(
    factory: ServicesFactory,
    file_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    caplog: pytest.LogCaptureFixture,
) -> None:
    idle = add_order(
        file_unit_of_work,
        OrderStatus.TRANSFERRING,
        updated_at=utcnow() - timedelta(hours=2),
        error_msg="dispatch failed: agent down",
    )
    caplog.set_level(logging.INFO, logger="milesbridge")

    cli.main(["stuck", "--older-than-minutes", "30"])

    assert "1 orders idle for more than 30.0 minutes" in caplog.text
    assert idle.id in caplog.text
    assert "agent down" in caplog.text
    assert factory.closed == 1


def test_stuck_rejects_negative_thresholds(factory: ServicesFactory) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["stuck", "--older-than-minutes", "-5"])

    assert exc.value.code == 2
    assert factory.built == []


def test_resolve_refunds_without_a_ledger(
    factory: ServicesFactory, file_unit_of_work: Callable[[], SqlAlchemyUnitOfWork]
) -> None:
    order = add_order(
        file_unit_of_work, OrderStatus.DISPUTED, confirmation_code="UA-1", escrow_tx="0xtx"
    )

    cli.main(["resolve", order.id, "--action", "refund"])

    assert status_of(file_unit_of_work, order.id) is OrderStatus.REFUNDED


def test_resolve_rejects_unknown_actions(factory: ServicesFactory) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["resolve", "order-1", "--action", "split"])

    assert exc.value.code == 2


def test_retry_release_completes_the_order(
    factory: ServicesFactory, file_unit_of_work: Callable[[], SqlAlchemyUnitOfWork]
) -> None:
    order = add_order(
        file_unit_of_work,
        OrderStatus.RELEASE_PENDING,
        confirmation_code="UA-1",
        escrow_tx="0xtx",
        error_msg="release failed: timeout",
    )

    cli.main(["retry-release", order.id])

    assert status_of(file_unit_of_work, order.id) is OrderStatus.COMPLETED


def test_failed_command_exits_with_one(factory: ServicesFactory) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["retry-release", "missing"])

    assert exc.value.code == 1
    assert factory.closed == 1


def test_poll_requires_a_ledger(factory: ServicesFactory) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["poll", "--once"])

    assert exc.value.code == 1


def test_poll_once_initialises_the_cursor(
    factory: ServicesFactory, file_unit_of_work: Callable[[], SqlAlchemyUnitOfWork]
) -> None:
    factory.ledger = FakeLedger(block=250)

    cli.main(["poll", "--once"])

    with file_unit_of_work() as uow:
        assert uow.repositories.cursors.get(CURSOR_NAME) == 250


def test_dead_letters_report(
    factory: ServicesFactory,
    file_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    caplog: pytest.LogCaptureFixture,
) -> None:
    with file_unit_of_work() as uow:
        uow.repositories.dead_letters.record(
            DeadLetter(
                kind=DeadLetterKind.UNMATCHED_DEPOSIT,
                reference="0xorphan",
                reason="no listed order matches this deposit",
                payload={"amount": "12.00"},
            )
        )
        uow.commit()
    caplog.set_level(logging.INFO, logger="milesbridge")

    cli.main(["dead-letters", "--all"])

    assert "1 dead letters" in caplog.text
    assert "unmatched_deposit 0xorphan order=-" in caplog.text


def test_provider_registry_is_packaged() -> None:
    registry = load_provider_registry()

    ids = [provider.id for provider in registry]
    assert len(ids) == len(set(ids))
    assert {"united", "delta"} <= set(ids)
    united = next(provider for provider in registry if provider.id == "united")
    assert united.item_type is ItemType.AIRMILES
    assert united.domain == "www.united.com"


def test_build_services_without_a_ledger(database_uri: str) -> None:
    services = build_services(
        database=Database.connect(database_uri=database_uri),
        attestation_config=AttestationConfig(backend="mock", callback_base_url="http://x.test"),
        ledger_config=LedgerConfig(),
        execution_config=ExecutionAgentConfig(),
    )
    try:
        assert services.reconciler is None
        assert len(services.marketplace.providers()) == len(load_provider_registry())
    finally:
        services.close()
