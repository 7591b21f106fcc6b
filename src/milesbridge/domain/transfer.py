"""Hand-off to the execution agent and settlement of escrowed orders."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from milesbridge.config import LedgerConfig
from milesbridge.domain.errors import (
    ConflictError,
    ExternalCallError,
    NotFoundError,
    StaleTransitionError,
)
from milesbridge.domain.external import bounded_call
from milesbridge.domain.model import (
    IN_FLIGHT_STATUSES,
    DeadLetter,
    DeadLetterKind,
    Order,
    OrderStatus,
    utcnow,
)
from milesbridge.domain.ports import EscrowStatus, TransferRequest

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from milesbridge.domain.ports import EscrowLedger, ExecutionAgent
    from milesbridge.domain.state_machine import OrderStateMachine, UnitOfWorkFactory

log = logging.getLogger(__name__)


class Resolution(StrEnum):
    RELEASE = "release"
    REFUND = "refund"


class TransferOrchestrator:
    """Drives an order from ESCROWED to a settled terminal state.

    ``ledger`` is ``None`` when no escrow contract is configured; settlement then
    skips the on-chain step. With a ledger, COMPLETED is only reached once the
    release transaction went through; until then the order waits in
    RELEASE_PENDING.

    A settlement call can fail after its transaction landed (a lost receipt, a
    timeout). Before retrying, and after every failure, the escrow is read back
    from the contract and an escrow that already settled the requested way
    finishes the transition instead of being sent again.
    """

    def __init__(
        self,
        *,
        unit_of_work_factory: UnitOfWorkFactory,
        state_machine: OrderStateMachine,
        agent: ExecutionAgent,
        callback_base_url: str,
        ledger: EscrowLedger | None = None,
        ledger_config: LedgerConfig | None = None,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._state_machine = state_machine
        self._agent = agent
        self._callback_url = f"{callback_base_url.rstrip('/')}/callback/transfer"
        self._ledger = ledger
        config = ledger_config or LedgerConfig()
        self._call_timeout = config.call_timeout_seconds
        self._settle_timeout = config.settlement_timeout_seconds

    # execution -----------------------------------------------------------------

    async def trigger_transfer(self, order_id: str) -> Order | None:
        """Claim an ESCROWED order and dispatch it to the execution agent.

        Returns ``None`` when another trigger already claimed the order. A failed
        dispatch is not retried here: the order stays TRANSFERRING with the error
        recorded and a dead letter for the operator.
        """

        try:
            order = await self._db(
                self._state_machine.transition,
                order_id,
                OrderStatus.ESCROWED,
                OrderStatus.TRANSFERRING,
            )
        except StaleTransitionError:
            log.info("Order %s already claimed for transfer", order_id)
            return None

        request = TransferRequest(
            order_id=order.id,
            encrypted_creds=order.encrypted_creds,
            username=order.username,
            provider_id=order.provider_id,
            departure=order.buyer_departure,
            destination=order.buyer_destination,
            miles_amount=order.amount,
            callback_url=self._callback_url,
        )
        log.info(
            "Dispatching transfer for order %s: %s miles %s -> %s",
            order.id,
            order.amount,
            order.buyer_departure,
            order.buyer_destination,
        )
        try:
            await self._agent.execute(request)
        except ExternalCallError as exc:
            log.error("Transfer dispatch for order %s failed: %s", order.id, exc)  # noqa: TRY400
            await self._db(
                self._record_failure,
                order.id,
                DeadLetterKind.DISPATCH_FAILED,
                f"dispatch failed: {exc}",
                retryable=exc.retryable,
            )
            return await self._db(self._state_machine.get, order.id)
        log.info("Execution agent accepted order %s", order.id)
        return order

    def complete_transfer(
        self, order_id: str, confirmation_code: str, ticket_details: object | None = None
    ) -> Order:
        with self._uow_factory() as uow:
            order = self._state_machine.apply(
                uow,
                order_id,
                OrderStatus.TRANSFERRING,
                OrderStatus.TRANSFERRED,
                {"confirmation_code": confirmation_code, "ticket_details": ticket_details},
            )
            # the agent delivered after all
            uow.repositories.dead_letters.resolve(DeadLetterKind.DISPATCH_FAILED, order_id)
            uow.commit()
        log.info("Order %s transferred (confirmation %s)", order_id, confirmation_code)
        return order

    # settlement ----------------------------------------------------------------

    async def approve(self, order_id: str) -> Order:
        """Buyer confirms the transfer; funds are released to the seller."""

        if self._ledger is None:
            return await self._db(
                self._state_machine.transition,
                order_id,
                OrderStatus.TRANSFERRED,
                OrderStatus.COMPLETED,
            )
        await self._db(
            self._state_machine.transition,
            order_id,
            OrderStatus.TRANSFERRED,
            OrderStatus.RELEASE_PENDING,
        )
        return await self._release(order_id)

    def dispute(self, order_id: str, reason: str) -> Order:
        order = self._state_machine.transition(
            order_id, OrderStatus.TRANSFERRED, OrderStatus.DISPUTED, {"error_msg": reason}
        )
        log.warning("Order %s disputed: %s", order_id, reason)
        return order

    async def resolve_dispute(self, order_id: str, action: Resolution | str) -> Order:
        """Operator decision on a disputed order."""

        resolution = Resolution(action)
        if resolution is Resolution.RELEASE:
            if self._ledger is None:
                return await self._db(
                    self._state_machine.transition,
                    order_id,
                    OrderStatus.DISPUTED,
                    OrderStatus.COMPLETED,
                )
            released = await self._settled_on_chain(order_id, EscrowStatus.RELEASED)
            await self._db(
                self._state_machine.transition,
                order_id,
                OrderStatus.DISPUTED,
                OrderStatus.RELEASE_PENDING,
            )
            if released:
                return await self._db(self._finish_release, order_id, tx_hash=None)
            return await self._release(order_id, strict=True)

        order = await self._db(self._state_machine.get, order_id)
        if order.status is not OrderStatus.DISPUTED:
            raise ConflictError(f"Order {order_id} is {order.status}, expected DISPUTED")
        tx_hash = None if self._ledger is None else await self._refund(order)
        return await self._db(self._finish_refund, order_id, tx_hash=tx_hash)

    async def retry_release(self, order_id: str) -> Order:
        order = await self._db(self._state_machine.get, order_id)
        if order.status is not OrderStatus.RELEASE_PENDING:
            raise ConflictError(f"Order {order_id} is {order.status}, expected RELEASE_PENDING")
        if self._ledger is None or await self._settled_on_chain(order_id, EscrowStatus.RELEASED):
            return await self._db(self._finish_release, order_id, tx_hash=None)
        return await self._release(order_id, strict=True)

    async def _release(self, order_id: str, *, strict: bool = False) -> Order:
        assert self._ledger is not None
        try:
            tx_hash = await bounded_call(
                self._ledger.release,
                order_id,
                timeout=self._settle_timeout,
                what=f"release of order {order_id}",
            )
        except ExternalCallError as exc:
            log.error("Release for order %s failed: %s", order_id, exc)  # noqa: TRY400
            await self._db(
                self._record_failure,
                order_id,
                DeadLetterKind.RELEASE_FAILED,
                f"release failed: {exc}",
                retryable=exc.retryable,
            )
            if await self._settled_on_chain(order_id, EscrowStatus.RELEASED):
                return await self._db(self._finish_release, order_id, tx_hash=None)
            if strict:
                raise
            return await self._db(self._state_machine.get, order_id)
        return await self._db(self._finish_release, order_id, tx_hash=tx_hash)

    async def _refund(self, order: Order) -> str | None:
        """Send the refund; ``None`` when the escrow was already refunded."""

        assert self._ledger is not None
        if await self._settled_on_chain(order.id, EscrowStatus.REFUNDED):
            return None
        try:
            return await bounded_call(
                self._ledger.refund,
                order.id,
                timeout=self._settle_timeout,
                what=f"refund of order {order.id}",
            )
        except ExternalCallError as exc:
            log.error("Refund for order %s failed: %s", order.id, exc)  # noqa: TRY400
            dispute = f" (dispute: {order.error_msg})" if order.error_msg else ""
            await self._db(
                self._record_failure,
                order.id,
                DeadLetterKind.REFUND_FAILED,
                f"refund failed: {exc}{dispute}",
                retryable=exc.retryable,
            )
            if await self._settled_on_chain(order.id, EscrowStatus.REFUNDED):
                return None
            raise

    async def _settled_on_chain(self, order_id: str, wanted: EscrowStatus) -> bool:
        """Whether the contract already settled the escrow as ``wanted``.

        An escrow settled the other way raises :class:`ConflictError`. An
        unreadable escrow counts as unsettled.
        """

        assert self._ledger is not None
        try:
            state = await bounded_call(
                self._ledger.get_escrow,
                order_id,
                timeout=self._call_timeout,
                what=f"escrow state of order {order_id}",
            )
        except ExternalCallError as exc:
            log.warning("Could not read the escrow of order %s: %s", order_id, exc)
            return False
        if state.status is wanted:
            log.info("Escrow of order %s is already %s on-chain", order_id, wanted.name)
            return True
        if state.settled:
            raise ConflictError(
                f"Escrow of order {order_id} was already {state.status.name} on-chain"
            )
        return False

    def _finish_release(self, order_id: str, *, tx_hash: str | None) -> Order:
        with self._uow_factory() as uow:
            order = self._state_machine.apply(
                uow,
                order_id,
                OrderStatus.RELEASE_PENDING,
                OrderStatus.COMPLETED,
                {"error_msg": None},
            )
            uow.repositories.dead_letters.resolve(DeadLetterKind.RELEASE_FAILED, order_id)
            uow.commit()
        log.info("Order %s completed, funds released in %s", order_id, tx_hash)
        return order

    def _finish_refund(self, order_id: str, *, tx_hash: str | None) -> Order:
        with self._uow_factory() as uow:
            order = self._state_machine.apply(
                uow, order_id, OrderStatus.DISPUTED, OrderStatus.REFUNDED, {}
            )
            uow.repositories.dead_letters.resolve(DeadLetterKind.REFUND_FAILED, order_id)
            uow.commit()
        log.info("Order %s refunded in %s", order_id, tx_hash)
        return order

    # operations ----------------------------------------------------------------

    def stuck_orders(self, older_than: timedelta) -> Sequence[Order]:
        """In-flight orders that have not moved for ``older_than``."""

        with self._uow_factory() as uow:
            return uow.repositories.orders.stuck(
                statuses=IN_FLIGHT_STATUSES, updated_before=utcnow() - older_than
            )

    @staticmethod
    async def _db[T](func: Callable[..., T], *args: object, **kwargs: object) -> T:
        # keeps blocking session work off the event loop
        return await asyncio.to_thread(func, *args, **kwargs)

    def _record_failure(
        self, order_id: str, kind: DeadLetterKind, reason: str, *, retryable: bool
    ) -> None:
        with self._uow_factory() as uow:
            if uow.repositories.orders.get(order_id) is None:
                raise NotFoundError(f"Order {order_id} not found")
            uow.repositories.orders.annotate(order_id, reason)
            uow.repositories.dead_letters.record(
                DeadLetter(
                    kind=kind,
                    reference=order_id,
                    order_id=order_id,
                    reason=reason,
                    payload={"retryable": retryable},
                )
            )
            uow.commit()
