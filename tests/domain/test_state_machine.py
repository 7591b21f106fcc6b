from __future__ import annotations

from itertools import product
from typing import TYPE_CHECKING

import pytest

from milesbridge.domain.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StaleTransitionError,
)
from milesbridge.domain.model import Order, OrderStatus, Provider
from milesbridge.domain.state_machine import (
    TRANSITIONS,
    OrderStateMachine,
    allowed_next,
    can_transition,
    check_edge_fields,
)
from tests.helpers.orders import add_order, status_of

if TYPE_CHECKING:
    from collections.abc import Callable

    from milesbridge.adapters.sqlalchemy import SqlAlchemyUnitOfWork

_NOT_ALLOWED = [
    (current, target)
    for current, target in product(OrderStatus, OrderStatus)
    if target not in TRANSITIONS[current]
]


def test_graph_covers_every_status() -> None:
    assert set(TRANSITIONS) == set(OrderStatus)
    for current, targets in TRANSITIONS.items():
        assert current not in targets


def test_terminal_statuses_have_no_outgoing_edges() -> None:
    for status in (OrderStatus.FAILED, OrderStatus.COMPLETED, OrderStatus.REFUNDED):
        assert allowed_next(status) == frozenset()


def test_main_path_is_connected() -> None:
    path = [
        OrderStatus.PENDING,
        OrderStatus.VERIFIED,
        OrderStatus.LISTED,
        OrderStatus.ESCROWED,
        OrderStatus.TRANSFERRING,
        OrderStatus.TRANSFERRED,
        OrderStatus.COMPLETED,
    ]
    for current, target in zip(path, path[1:], strict=False):
        assert can_transition(current, target)


@pytest.mark.parametrize(("current", "target"), _NOT_ALLOWED)
def test_edges_outside_the_graph_are_rejected(
    current: OrderStatus,
    target: OrderStatus,
    state_machine: OrderStateMachine,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    providers: list[Provider],
) -> None:
    order = add_order(sqlite_unit_of_work, current)

    with pytest.raises(InvalidTransitionError):
        state_machine.transition(order.id, current, target)

    assert status_of(sqlite_unit_of_work, order.id) is current


def test_transition_writes_owned_fields(
    state_machine: OrderStateMachine,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    providers: list[Provider],
) -> None:
    order = add_order(sqlite_unit_of_work, OrderStatus.VERIFIED)

    listed = state_machine.transition(
        order.id,
        OrderStatus.VERIFIED,
        OrderStatus.LISTED,
        {"price_per_mile": 0.02, "min_miles": 500.0, "price": 160.6},
    )

    assert listed.status is OrderStatus.LISTED
    assert listed.price_per_mile == 0.02
    assert listed.updated_at >= order.updated_at
    assert state_machine.get(order.id).min_miles == 500.0


def test_stale_transition_leaves_state_unchanged(
    state_machine: OrderStateMachine,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    providers: list[Provider],
) -> None:
    order = add_order(sqlite_unit_of_work, OrderStatus.ESCROWED)

    with pytest.raises(StaleTransitionError) as exc:
        state_machine.transition(
            order.id,
            OrderStatus.LISTED,
            OrderStatus.ESCROWED,
            {
                "buyer_address": "0xOther",
                "buyer_departure": "SFO",
                "buyer_destination": "CDG",
                "escrow_tx": "0xother",
            },
        )

    assert isinstance(exc.value, ConflictError)
    assert exc.value.reason == "STALE_TRANSITION"
    stored = state_machine.get(order.id)
    assert stored.status is OrderStatus.ESCROWED
    assert stored.buyer_address == "0xBuyer"
    assert stored.escrow_tx is None


def test_duplicate_delivery_advances_once(
    state_machine: OrderStateMachine,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    providers: list[Provider],
) -> None:
    order = add_order(sqlite_unit_of_work, OrderStatus.ESCROWED)

    state_machine.transition(order.id, OrderStatus.ESCROWED, OrderStatus.TRANSFERRING)
    with pytest.raises(StaleTransitionError):
        state_machine.transition(order.id, OrderStatus.ESCROWED, OrderStatus.TRANSFERRING)

    assert status_of(sqlite_unit_of_work, order.id) is OrderStatus.TRANSFERRING


def test_transition_of_unknown_order_is_not_found(state_machine: OrderStateMachine) -> None:
    with pytest.raises(NotFoundError):
        state_machine.transition("missing", OrderStatus.ESCROWED, OrderStatus.TRANSFERRING)

    with pytest.raises(NotFoundError):
        state_machine.get("missing")


def test_foreign_fields_are_rejected_before_writing(
    state_machine: OrderStateMachine,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    providers: list[Provider],
) -> None:
    order = add_order(sqlite_unit_of_work, OrderStatus.TRANSFERRED)

    with pytest.raises(ValueError, match="cannot write: price"):
        state_machine.transition(
            order.id, OrderStatus.TRANSFERRED, OrderStatus.COMPLETED, {"price": 1.0}
        )

    assert status_of(sqlite_unit_of_work, order.id) is OrderStatus.TRANSFERRED


def test_required_fields_must_be_present() -> None:
    with pytest.raises(ValueError, match="requires: escrow_tx"):
        check_edge_fields(
            (OrderStatus.LISTED, OrderStatus.ESCROWED),
            {"buyer_address": "0xB", "buyer_departure": "LAX", "buyer_destination": "NRT"},
        )
    with pytest.raises(ValueError, match="requires: confirmation_code"):
        check_edge_fields((OrderStatus.TRANSFERRING, OrderStatus.TRANSFERRED), {})


def test_error_msg_is_writable_on_any_edge() -> None:
    check_edge_fields((OrderStatus.TRANSFERRED, OrderStatus.DISPUTED), {"error_msg": "late"})


def test_apply_inside_caller_unit_of_work_needs_commit(
    state_machine: OrderStateMachine,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    providers: list[Provider],
) -> None:
    order = add_order(sqlite_unit_of_work, OrderStatus.TRANSFERRED)

    with sqlite_unit_of_work() as uow:
        applied = state_machine.apply(
            uow, order.id, OrderStatus.TRANSFERRED, OrderStatus.DISPUTED, {"error_msg": "x"}
        )
        assert applied.status is OrderStatus.DISPUTED
        # no commit: the unit of work discards the change

    assert status_of(sqlite_unit_of_work, order.id) is OrderStatus.TRANSFERRED


def test_new_orders_start_pending() -> None:
    order = Order(provider_id="united", username="seller@example.com")

    assert order.status is OrderStatus.PENDING
    assert not order.is_terminal
    assert order.listed_value is None
