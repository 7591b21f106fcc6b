"""The order aggregate: one seller-to-buyer transfer and its escrow record."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from .entity import new_id, utcnow
from .enums import ItemType, OrderStatus

if TYPE_CHECKING:
    from datetime import datetime

CENT = Decimal("0.01")

TERMINAL_STATUSES = frozenset({OrderStatus.FAILED, OrderStatus.COMPLETED, OrderStatus.REFUNDED})
IN_FLIGHT_STATUSES = frozenset(
    {OrderStatus.ESCROWED, OrderStatus.TRANSFERRING, OrderStatus.RELEASE_PENDING}
)
TICKET_VISIBLE_STATUSES = frozenset(
    {
        OrderStatus.TRANSFERRED,
        OrderStatus.RELEASE_PENDING,
        OrderStatus.COMPLETED,
        OrderStatus.DISPUTED,
    }
)


def money(value: float | Decimal) -> Decimal:
    """Quantise a currency amount to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(eq=False, kw_only=True)
class Order:
    """Persisted order row.

    Field groups are written once, by the transition that owns them:
    listing facts at ``VERIFIED -> LISTED``, buyer facts at ``LISTED -> ESCROWED``,
    execution facts at ``TRANSFERRING -> TRANSFERRED``. ``encrypted_creds`` is opaque
    ciphertext for the execution agent and is never decrypted here.
    """

    id: str = field(default_factory=new_id)
    item_type: ItemType = ItemType.AIRMILES
    provider_id: str
    username: str
    amount: float = 0.0

    price: float | None = None
    price_per_mile: float | None = None
    min_miles: float | None = None

    buyer_address: str | None = None
    buyer_departure: str | None = None
    buyer_destination: str | None = None
    escrow_tx: str | None = None

    encrypted_creds: str | None = None
    confirmation_code: str | None = None
    ticket_details: object | None = None

    status: OrderStatus = OrderStatus.PENDING
    proof_id: str | None = None
    error_msg: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def listed_value(self) -> Decimal | None:
        """Exact cost of the whole balance at the listed price, ``None`` when unlisted.

        Not rounded: deposit matching compares against this with a cent tolerance.
        """
        if self.price_per_mile is None:
            return None
        return Decimal(str(self.price_per_mile)) * Decimal(str(self.amount))

    def quote(self, miles: float) -> Decimal:
        if self.price_per_mile is None:
            raise ValueError(f"Order {self.id} has no listing price")
        return money(Decimal(str(self.price_per_mile)) * Decimal(str(miles)))
