"""Canonical order status graph and guarded transitions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

from milesbridge.domain.errors import (
    InvalidTransitionError,
    NotFoundError,
    StaleTransitionError,
)
from milesbridge.domain.model import OrderStatus

if TYPE_CHECKING:
    from milesbridge.domain.model import Order
    from milesbridge.domain.ports.unit_of_work import MarketplaceUnitOfWork

type UnitOfWorkFactory = Callable[[], MarketplaceUnitOfWork]
type Edge = tuple[OrderStatus, OrderStatus]

log = logging.getLogger(__name__)

S = OrderStatus

TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = MappingProxyType(
    {
        S.PENDING: frozenset({S.VERIFIED, S.FAILED}),
        S.VERIFIED: frozenset({S.LISTED}),
        S.LISTED: frozenset({S.ESCROWED}),
        S.ESCROWED: frozenset({S.TRANSFERRING}),
        S.TRANSFERRING: frozenset({S.TRANSFERRED}),
        S.TRANSFERRED: frozenset({S.COMPLETED, S.DISPUTED, S.RELEASE_PENDING}),
        S.DISPUTED: frozenset({S.COMPLETED, S.REFUNDED, S.RELEASE_PENDING}),
        S.RELEASE_PENDING: frozenset({S.COMPLETED}),
        S.FAILED: frozenset(),
        S.COMPLETED: frozenset(),
        S.REFUNDED: frozenset(),
    }
)

# Fields each edge owns. ``error_msg`` is diagnostic and writable on any edge.
EDGE_FIELDS: Mapping[Edge, frozenset[str]] = MappingProxyType(
    {
        (S.PENDING, S.VERIFIED): frozenset({"proof_id", "amount"}),
        (S.VERIFIED, S.LISTED): frozenset({"price", "price_per_mile", "min_miles"}),
        (S.LISTED, S.ESCROWED): frozenset(
            {"buyer_address", "buyer_departure", "buyer_destination", "escrow_tx"}
        ),
        (S.TRANSFERRING, S.TRANSFERRED): frozenset({"confirmation_code", "ticket_details"}),
    }
)

REQUIRED_FIELDS: Mapping[Edge, frozenset[str]] = MappingProxyType(
    {
        (S.PENDING, S.VERIFIED): frozenset({"proof_id", "amount"}),
        (S.VERIFIED, S.LISTED): frozenset({"price_per_mile", "min_miles"}),
        (S.LISTED, S.ESCROWED): EDGE_FIELDS[(S.LISTED, S.ESCROWED)],
        (S.TRANSFERRING, S.TRANSFERRED): frozenset({"confirmation_code"}),
    }
)

ALWAYS_WRITABLE = frozenset({"error_msg"})


def can_transition(current: OrderStatus, next_status: OrderStatus) -> bool:
    return next_status in TRANSITIONS[current]


def allowed_next(current: OrderStatus) -> frozenset[OrderStatus]:
    return TRANSITIONS[current]


def check_edge_fields(edge: Edge, updates: Mapping[str, object]) -> None:
    """Reject writes to fields owned by another edge, and missing required ones."""

    owned = EDGE_FIELDS.get(edge, frozenset()) | ALWAYS_WRITABLE
    foreign = set(updates) - owned
    if foreign:
        raise ValueError(
            f"Transition {edge[0]}->{edge[1]} cannot write: {', '.join(sorted(foreign))}"
        )
    missing = {name for name in REQUIRED_FIELDS.get(edge, ()) if updates.get(name) is None}
    if missing:
        raise ValueError(
            f"Transition {edge[0]}->{edge[1]} requires: {', '.join(sorted(missing))}"
        )


class OrderStateMachine:
    """Single writer of ``Order.status``.

    Every transition is one compare-and-swap against the persisted status. Losing a
    race raises :class:`StaleTransitionError`; callers handling external deliveries
    (ledger events, webhooks) treat that as "already processed".
    """

    def __init__(self, unit_of_work_factory: UnitOfWorkFactory) -> None:
        self._uow_factory = unit_of_work_factory

    def get(self, order_id: str) -> Order:
        with self._uow_factory() as uow:
            order = uow.repositories.orders.get(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            return order

    def transition(
        self,
        order_id: str,
        expected: OrderStatus,
        next_status: OrderStatus,
        updates: Mapping[str, object] | None = None,
    ) -> Order:
        """Apply one edge in its own unit of work and commit."""

        with self._uow_factory() as uow:
            order = self.apply(uow, order_id, expected, next_status, updates)
            uow.commit()
            return order

    def apply(
        self,
        uow: MarketplaceUnitOfWork,
        order_id: str,
        expected: OrderStatus,
        next_status: OrderStatus,
        updates: Mapping[str, object] | None = None,
    ) -> Order:
        """Apply one edge inside a caller-owned unit of work (caller commits)."""

        if not can_transition(expected, next_status):
            raise InvalidTransitionError(
                f"Transition {expected} -> {next_status} is not allowed"
            )
        fields = dict(updates or {})
        check_edge_fields((expected, next_status), fields)

        orders = uow.repositories.orders
        if not orders.compare_and_set(
            order_id, expected=expected, status=next_status, updates=fields
        ):
            current = orders.get(order_id)
            if current is None:
                raise NotFoundError(f"Order {order_id} not found")
            log.info(
                "Stale transition for order %s: expected %s, found %s (wanted %s)",
                order_id,
                expected,
                current.status,
                next_status,
            )
            raise StaleTransitionError(
                f"Order {order_id} is {current.status}, expected {expected}"
            )

        order = orders.get(order_id)
        if order is None:  # pragma: no cover - row vanished inside our own transaction
            raise NotFoundError(f"Order {order_id} not found")
        log.info("Order %s: %s -> %s", order_id, expected, next_status)
        return order
