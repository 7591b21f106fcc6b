"""Composition root: builds every service once from configuration."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from importlib import resources
from logging import getLogger
from typing import TYPE_CHECKING, cast

from milesbridge.adapters.attestation import build_attestor
from milesbridge.adapters.execution import HttpExecutionAgent
from milesbridge.adapters.ledger import Web3EscrowLedger
from milesbridge.adapters.sqlalchemy import Database
from milesbridge.adapters.vault import build_vault
from milesbridge.config import (
    AttestationConfig,
    ExecutionAgentConfig,
    LedgerConfig,
    get_attestation_config,
    get_execution_agent_config,
    get_ledger_config,
)
from milesbridge.domain.marketplace import Marketplace
from milesbridge.domain.model import ItemType, Provider, utcnow
from milesbridge.domain.reconciliation import EscrowEventReconciler
from milesbridge.domain.state_machine import OrderStateMachine
from milesbridge.domain.transfer import TransferOrchestrator

if TYPE_CHECKING:
    from datetime import datetime

    from milesbridge.domain.ports import CredentialVault, EscrowLedger, ExecutionAgent, ProofBackend

log = getLogger(__name__)

PROVIDER_REGISTRY = "providers.json"


def load_provider_registry() -> list[Provider]:
    """Read the packaged provider registry."""

    raw = resources.files("milesbridge").joinpath("data", PROVIDER_REGISTRY).read_text("utf-8")
    entries = cast("list[dict[str, object]]", json.loads(raw))
    return [
        Provider(
            id=str(entry["id"]),
            name=str(entry["name"]),
            login_url=str(entry["login_url"]),
            dashboard_url=str(entry["dashboard_url"]),
            item_type=ItemType(str(entry.get("item_type", ItemType.AIRMILES))),
            selectors=cast("dict[str, str] | None", entry.get("selectors")),
        )
        for entry in entries
    ]


@dataclass(slots=True)
class Services:
    """Everything a request handler, poller or CLI command needs."""

    database: Database
    state_machine: OrderStateMachine
    marketplace: Marketplace
    orchestrator: TransferOrchestrator
    reconciler: EscrowEventReconciler | None
    attestation_config: AttestationConfig
    ledger_config: LedgerConfig
    execution_config: ExecutionAgentConfig
    started_at: datetime = field(default_factory=utcnow)

    def close(self) -> None:
        self.database.dispose()


def build_services(  # noqa: PLR0913
    *,
    database: Database | None = None,
    attestation_config: AttestationConfig | None = None,
    ledger_config: LedgerConfig | None = None,
    execution_config: ExecutionAgentConfig | None = None,
    attestor: ProofBackend | None = None,
    vault: CredentialVault | None = None,
    agent: ExecutionAgent | None = None,
    ledger: EscrowLedger | None = None,
    seed_providers: bool = True,
) -> Services:
    """Wire adapters and domain services.

    Explicit arguments win over what configuration would build, which is how tests
    swap in fakes for the ledger and the execution agent.
    """

    effective_db = database or Database.connect()
    attestation = attestation_config or get_attestation_config()
    ledger_cfg = ledger_config or get_ledger_config()
    execution = execution_config or get_execution_agent_config()

    effective_attestor = attestor or build_attestor(attestation)
    effective_vault = vault or build_vault(execution.public_key)
    effective_agent = agent or HttpExecutionAgent(config=execution)
    effective_ledger = ledger
    if effective_ledger is None and ledger_cfg.enabled:
        effective_ledger = Web3EscrowLedger(ledger_cfg)

    uow_factory = effective_db.unit_of_work
    state_machine = OrderStateMachine(uow_factory)
    orchestrator = TransferOrchestrator(
        unit_of_work_factory=uow_factory,
        state_machine=state_machine,
        agent=effective_agent,
        callback_base_url=attestation.callback_base_url,
        ledger=effective_ledger,
        ledger_config=ledger_cfg,
    )
    marketplace = Marketplace(
        unit_of_work_factory=uow_factory,
        state_machine=state_machine,
        attestor=effective_attestor,
        vault=effective_vault,
        escrow_contract=ledger_cfg.escrow_contract,
    )
    reconciler = (
        EscrowEventReconciler(
            ledger=effective_ledger,
            unit_of_work_factory=uow_factory,
            state_machine=state_machine,
            config=ledger_cfg,
            on_escrowed=orchestrator.trigger_transfer,
        )
        if effective_ledger is not None
        else None
    )

    if seed_providers:
        count = marketplace.seed_providers(load_provider_registry())
        log.info("Seeded %s providers", count)

    log.info(
        "Services ready: proof backend=%s, ledger=%s, vault=%s",
        attestation.backend,
        ledger_cfg.escrow_contract or "disabled",
        "configured" if effective_vault is not None else "missing",
    )
    return Services(
        database=effective_db,
        state_machine=state_machine,
        marketplace=marketplace,
        orchestrator=orchestrator,
        reconciler=reconciler,
        attestation_config=attestation,
        ledger_config=ledger_cfg,
        execution_config=execution,
    )
