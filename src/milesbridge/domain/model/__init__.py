"""Public domain model surface."""

from __future__ import annotations

from milesbridge.domain.model.dead_letter import DeadLetter
from milesbridge.domain.model.entity import new_id, utcnow
from milesbridge.domain.model.enums import (
    DeadLetterKind,
    ItemType,
    OrderStatus,
    PredicateOp,
    ProofType,
)
from milesbridge.domain.model.order import (
    IN_FLIGHT_STATUSES,
    TERMINAL_STATUSES,
    TICKET_VISIBLE_STATUSES,
    Order,
    money,
)
from milesbridge.domain.model.proof import Attestations, Proof
from milesbridge.domain.model.provider import Provider

__all__ = [  # noqa: RUF022
    # entities
    "Order",
    "Proof",
    "Attestations",
    "Provider",
    "DeadLetter",
    # enums
    "DeadLetterKind",
    "ItemType",
    "OrderStatus",
    "PredicateOp",
    "ProofType",
    # status groups
    "IN_FLIGHT_STATUSES",
    "TERMINAL_STATUSES",
    "TICKET_VISIBLE_STATUSES",
    # helpers
    "money",
    "new_id",
    "utcnow",
]
