"""Domain ports (protocols implemented by adapters)."""

from __future__ import annotations

from .attestation import ProofBackend, VerificationRequest
from .execution import CredentialVault, ExecutionAgent, TransferRequest
from .ledger import DepositEvent, EscrowLedger, EscrowState, EscrowStatus
from .persistence import (
    CursorRepository,
    DeadLetterRepository,
    OrderRepository,
    ProofRepository,
    ProviderRepository,
    Repository,
)
from .unit_of_work import MarketplaceRepositories, MarketplaceUnitOfWork, UnitOfWork

__all__ = [
    "CredentialVault",
    "CursorRepository",
    "DeadLetterRepository",
    "DepositEvent",
    "EscrowLedger",
    "EscrowState",
    "EscrowStatus",
    "ExecutionAgent",
    "MarketplaceRepositories",
    "MarketplaceUnitOfWork",
    "OrderRepository",
    "ProofBackend",
    "ProofRepository",
    "ProviderRepository",
    "Repository",
    "TransferRequest",
    "UnitOfWork",
    "VerificationRequest",
]
