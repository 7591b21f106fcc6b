"""Port for the on-chain escrow contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from decimal import Decimal


@dataclass(frozen=True, slots=True)
class DepositEvent:
    """A ``Deposited`` log as observed on the ledger.

    The order id is an indexed string parameter, so the log only carries its
    keccak digest. ``order_ref`` holds the plaintext id when the contract also
    emits it as non-indexed data.
    """

    order_id_hash: bytes
    buyer: str
    seller: str
    amount: Decimal
    departure: str
    destination: str
    tx_hash: str
    block_number: int
    log_index: int = 0
    order_ref: str | None = None


class EscrowStatus(IntEnum):
    """Settlement state of an escrow as the contract stores it."""

    NONE = 0
    FUNDED = 1
    RELEASED = 2
    REFUNDED = 3


@dataclass(frozen=True, slots=True)
class EscrowState:
    order_id: str
    status: EscrowStatus
    buyer: str | None = None
    seller: str | None = None
    amount: Decimal | None = None

    @property
    def settled(self) -> bool:
        return self.status in {EscrowStatus.RELEASED, EscrowStatus.REFUNDED}


@runtime_checkable
class EscrowLedger(Protocol):
    """Blocking ledger client. Callers bound every call with a timeout."""

    def current_block(self) -> int: ...

    def deposits(self, from_block: int, to_block: int) -> Sequence[DepositEvent]: ...

    def order_id_digest(self, order_id: str) -> bytes: ...

    def release(self, order_id: str) -> str: ...

    def refund(self, order_id: str) -> str: ...

    def get_escrow(self, order_id: str) -> EscrowState: ...
