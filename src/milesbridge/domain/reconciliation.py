"""Correlation of ledger deposits with listed orders.

The escrow contract indexes the order id, so a ``Deposited`` log only carries its
keccak digest. Matching runs in a fixed order:

1. ``order_ref``: the plaintext id, when the contract emits it as plain data and
   it agrees with the digest;
2. digest: ``keccak(order.id)`` of every listing against the log's topic;
3. amount: ``price_per_mile * amount`` within one cent of the deposit. Two or
   more candidates are ambiguous and are never guessed.

Unmatched and ambiguous deposits go to the dead-letter queue for an operator.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

from milesbridge.domain.errors import ExternalCallError, StaleTransitionError
from milesbridge.domain.external import bounded_call
from milesbridge.domain.model import DeadLetter, DeadLetterKind, Order, OrderStatus

if TYPE_CHECKING:
    from milesbridge.config import LedgerConfig
    from milesbridge.domain.ports import DepositEvent, EscrowLedger
    from milesbridge.domain.ports.unit_of_work import MarketplaceUnitOfWork
    from milesbridge.domain.state_machine import OrderStateMachine, UnitOfWorkFactory

log = logging.getLogger(__name__)

CURSOR_NAME: Final[str] = "escrow.deposits"
AMOUNT_TOLERANCE: Final[Decimal] = Decimal("0.01")

type EscrowedHandler = Callable[[str], Coroutine[Any, Any, object]]


class MatchOutcome(StrEnum):
    MATCHED_REF = "matched_ref"
    MATCHED_HASH = "matched_hash"
    MATCHED_AMOUNT = "matched_amount"
    AMBIGUOUS = "ambiguous"
    UNMATCHED = "unmatched"
    # identifies an order that is no longer LISTED
    STALE = "stale"
    # the transaction was already applied to an order
    DUPLICATE = "duplicate"


MATCHED: Final = frozenset(
    {MatchOutcome.MATCHED_REF, MatchOutcome.MATCHED_HASH, MatchOutcome.MATCHED_AMOUNT}
)


@dataclass(frozen=True, slots=True)
class MatchResult:
    outcome: MatchOutcome
    order_id: str | None = None
    candidates: tuple[str, ...] = ()

    @property
    def matched(self) -> bool:
        return self.outcome in MATCHED


def match_deposit(
    event: DepositEvent,
    listings: Sequence[Order],
    others: Sequence[Order] | Callable[[], Sequence[Order]],
    *,
    digest: Callable[[str], bytes],
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> MatchResult:
    """Resolve which order ``event`` pays for.

    ``listings`` are orders currently LISTED; ``others`` are orders that were
    listed once and have moved on, used to recognise late or replayed deposits.
    ``others`` may be a loader; it is only called when no listing matches.
    """

    def past() -> Sequence[Order]:
        nonlocal others
        if callable(others):
            others = others()
        return others

    if event.order_ref is not None:
        if digest(event.order_ref) == event.order_id_hash:
            for order in listings:
                if order.id == event.order_ref:
                    return MatchResult(MatchOutcome.MATCHED_REF, order.id)
            for order in past():
                if order.id == event.order_ref:
                    return MatchResult(MatchOutcome.STALE, order.id)
            return MatchResult(MatchOutcome.UNMATCHED)
        log.warning(
            "Deposit %s carries orderRef %r that does not match its indexed digest",
            event.tx_hash,
            event.order_ref,
        )

    for order in listings:
        if digest(order.id) == event.order_id_hash:
            return MatchResult(MatchOutcome.MATCHED_HASH, order.id)
    for order in past():
        if digest(order.id) == event.order_id_hash:
            return MatchResult(MatchOutcome.STALE, order.id)

    candidates = tuple(
        order.id
        for order in listings
        if order.listed_value is not None
        and abs(order.listed_value - event.amount) <= tolerance
    )
    if len(candidates) == 1:
        return MatchResult(MatchOutcome.MATCHED_AMOUNT, candidates[0], candidates)
    if candidates:
        return MatchResult(MatchOutcome.AMBIGUOUS, candidates=candidates)
    return MatchResult(MatchOutcome.UNMATCHED)


@dataclass(slots=True)
class TickResult:
    from_block: int | None
    to_block: int
    events: int = 0
    escrowed: list[str] = field(default_factory=list)
    dead_lettered: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)


def _event_payload(event: DepositEvent) -> dict[str, object]:
    return {
        "order_id_hash": "0x" + event.order_id_hash.hex(),
        "order_ref": event.order_ref,
        "buyer": event.buyer,
        "seller": event.seller,
        "amount": str(event.amount),
        "departure": event.departure,
        "destination": event.destination,
        "block_number": event.block_number,
        "log_index": event.log_index,
    }


class EscrowEventReconciler:
    """Polls the escrow contract and escrows the orders its deposits pay for.

    The block cursor is persisted and only advanced after every event of the
    range was handled, so a crash replays the range. Replays are harmless: a
    transaction already recorded on an order is skipped, and the LISTED ->
    ESCROWED compare-and-swap admits one winner.
    """

    def __init__(
        self,
        *,
        ledger: EscrowLedger,
        unit_of_work_factory: UnitOfWorkFactory,
        state_machine: OrderStateMachine,
        config: LedgerConfig,
        on_escrowed: EscrowedHandler | None = None,
        tolerance: Decimal = AMOUNT_TOLERANCE,
    ) -> None:
        self._ledger = ledger
        self._uow_factory = unit_of_work_factory
        self._state_machine = state_machine
        self._config = config
        self._on_escrowed = on_escrowed
        self._tolerance = tolerance
        self._handoffs: set[asyncio.Task[object]] = set()

    async def tick(self) -> TickResult:
        """Process one block range and advance the cursor."""

        current = await bounded_call(
            self._ledger.current_block,
            timeout=self._config.call_timeout_seconds,
            what="ledger block number",
        )
        with self._uow_factory() as uow:
            last = uow.repositories.cursors.get(CURSOR_NAME)
            if last is None:
                # first run starts at the chain head
                uow.repositories.cursors.set(CURSOR_NAME, current)
                uow.commit()
                log.info("Escrow cursor initialised at block %s", current)
                return TickResult(from_block=None, to_block=current)

        result = TickResult(from_block=last + 1, to_block=current)
        if current <= last:
            return result

        events = await bounded_call(
            self._ledger.deposits,
            last + 1,
            current,
            timeout=self._config.call_timeout_seconds,
            what=f"ledger deposits {last + 1}..{current}",
        )
        result.events = len(events)
        for event in sorted(events, key=lambda item: (item.block_number, item.log_index)):
            self._handle(event, result)

        with self._uow_factory() as uow:
            uow.repositories.cursors.set(CURSOR_NAME, current)
            uow.commit()
        if events:
            log.info(
                "Blocks %s..%s: %s deposits, escrowed=%s dead_lettered=%s dropped=%s",
                last + 1,
                current,
                len(events),
                len(result.escrowed),
                len(result.dead_lettered),
                len(result.dropped),
            )
        return result

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Poll until ``stop`` is set, backing off exponentially while ticks fail."""

        stop_event = stop or asyncio.Event()
        interval = self._config.poll_interval_seconds
        delay = interval
        log.info("Escrow reconciler polling every %.1fs", interval)
        while not stop_event.is_set():
            try:
                await self.tick()
            except ExternalCallError as exc:
                delay = min(max(delay, interval) * 2, self._config.max_poll_backoff_seconds)
                log.warning("Escrow poll failed (%s); retrying in %.1fs", exc, delay)
            except Exception:  # noqa: BLE001 - the loop must outlive a bad tick
                delay = min(max(delay, interval) * 2, self._config.max_poll_backoff_seconds)
                log.exception("Escrow poll tick crashed; retrying in %.1fs", delay)
            else:
                delay = interval
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except TimeoutError:
                continue
        await self.drain()
        log.info("Escrow reconciler stopped")

    def _handle(self, event: DepositEvent, result: TickResult) -> None:
        handoff: str | None = None
        with self._uow_factory() as uow:
            orders = uow.repositories.orders
            existing = orders.find_by_escrow_tx(event.tx_hash)
            if existing is not None:
                log.info("Deposit %s already applied to order %s", event.tx_hash, existing.id)
                result.dropped.append(event.tx_hash)
                if existing.status is OrderStatus.ESCROWED:
                    # crashed between escrow and handoff last time
                    handoff = existing.id
            else:
                handoff = self._apply(uow, event, result)

        if handoff is not None and self._on_escrowed is not None:
            self._schedule_handoff(self._on_escrowed, handoff)

    def _schedule_handoff(self, handler: EscrowedHandler, order_id: str) -> None:
        # the poll does not wait for agent dispatch
        task: asyncio.Task[object] = asyncio.create_task(
            handler(order_id), name=f"handoff-{order_id}"
        )
        self._handoffs.add(task)
        task.add_done_callback(self._handoff_done)

    def _handoff_done(self, task: asyncio.Task[object]) -> None:
        self._handoffs.discard(task)
        if task.cancelled():
            log.warning("Handoff %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            log.error("Handoff %s failed", task.get_name(), exc_info=exc)

    async def drain(self) -> None:
        """Wait for every handoff scheduled so far."""

        while self._handoffs:
            await asyncio.gather(*self._handoffs, return_exceptions=True)

    def _apply(
        self, uow: MarketplaceUnitOfWork, event: DepositEvent, result: TickResult
    ) -> str | None:
        orders = uow.repositories.orders
        match = match_deposit(
            event,
            orders.list(status=OrderStatus.LISTED),
            orders.past_listings,
            digest=self._ledger.order_id_digest,
            tolerance=self._tolerance,
        )

        if match.outcome is MatchOutcome.AMBIGUOUS:
            log.warning(
                "Deposit %s of %s matches %s listings by amount; leaving unresolved",
                event.tx_hash,
                event.amount,
                len(match.candidates),
            )
            self._dead_letter(
                uow,
                event,
                DeadLetterKind.AMBIGUOUS_DEPOSIT,
                f"{len(match.candidates)} listings within tolerance",
                candidates=list(match.candidates),
            )
            result.dead_lettered.append(event.tx_hash)
            return None
        if match.outcome is MatchOutcome.UNMATCHED:
            log.warning("Deposit %s of %s matches no listing", event.tx_hash, event.amount)
            self._dead_letter(uow, event, DeadLetterKind.UNMATCHED_DEPOSIT, "no matching listing")
            result.dead_lettered.append(event.tx_hash)
            return None
        if not match.matched or match.order_id is None:
            log.info(
                "Deposit %s is for order %s which is no longer listed",
                event.tx_hash,
                match.order_id,
            )
            result.dropped.append(event.tx_hash)
            return None

        try:
            self._state_machine.apply(
                uow,
                match.order_id,
                OrderStatus.LISTED,
                OrderStatus.ESCROWED,
                {
                    "buyer_address": event.buyer,
                    "buyer_departure": event.departure,
                    "buyer_destination": event.destination,
                    "escrow_tx": event.tx_hash,
                },
            )
        except StaleTransitionError:
            result.dropped.append(event.tx_hash)
            return None
        uow.commit()
        log.info(
            "Order %s escrowed by %s (%s, %s)",
            match.order_id,
            event.tx_hash,
            match.outcome,
            event.amount,
        )
        result.escrowed.append(match.order_id)
        return match.order_id

    @staticmethod
    def _dead_letter(
        uow: MarketplaceUnitOfWork,
        event: DepositEvent,
        kind: DeadLetterKind,
        reason: str,
        **extra: object,
    ) -> None:
        uow.repositories.dead_letters.record(
            DeadLetter(
                kind=kind,
                reference=event.tx_hash,
                reason=reason,
                payload=_event_payload(event) | extra,
            )
        )
        uow.commit()
