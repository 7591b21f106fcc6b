"""Seller intake, proof callbacks, listings and buyer quotes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from milesbridge.domain.errors import (
    BackendNotConfiguredError,
    BelowMinimumError,
    ConflictError,
    DuplicateOrderError,
    InsufficientBalanceError,
    InvalidInputError,
    NotFoundError,
)
from milesbridge.domain.evidence import extract_balance, nested_deeper_than
from milesbridge.domain.model import (
    TICKET_VISIBLE_STATUSES,
    DeadLetter,
    DeadLetterKind,
    ItemType,
    Order,
    OrderStatus,
    PredicateOp,
    money,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from milesbridge.domain.model import Proof, Provider
    from milesbridge.domain.ports import CredentialVault, ProofBackend, VerificationRequest
    from milesbridge.domain.state_machine import OrderStateMachine, UnitOfWorkFactory

log = logging.getLogger(__name__)

BALANCE_FIELD = "airmiles_balance"


@dataclass(frozen=True, slots=True)
class SellResult:
    order: Order
    verification: VerificationRequest


@dataclass(frozen=True, slots=True)
class ProofOutcome:
    order: Order
    balance: float
    proof: Proof | None = None

    @property
    def verified(self) -> bool:
        return self.order.status is OrderStatus.VERIFIED


@dataclass(frozen=True, slots=True)
class Quote:
    order: Order
    miles_amount: float
    total_cost: Decimal
    escrow_contract: str | None

    @property
    def instructions(self) -> str:
        return (
            f"Deposit {self.total_cost:.2f} USDC to the escrow contract with "
            f"orderId={self.order.id}. The deposit is detected on-chain; "
            f"POST /listings/{self.order.id}/confirm-escrow with the tx hash if it is not."
        )


def parse_asset(asset: str) -> ItemType:
    """Map a URL asset segment (``airmiles``, ``gift-card``) to an item type."""

    normalised = asset.strip().upper().replace("-", "_")
    try:
        return ItemType(normalised)
    except ValueError as exc:
        raise InvalidInputError(f"Unsupported asset {asset!r}") from exc


class Marketplace:
    """Request-path services around the order lifecycle.

    Status changes go through :class:`OrderStateMachine`; this class validates
    input and shapes what the HTTP layer returns.
    """

    def __init__(
        self,
        *,
        unit_of_work_factory: UnitOfWorkFactory,
        state_machine: OrderStateMachine,
        attestor: ProofBackend,
        vault: CredentialVault | None,
        escrow_contract: str | None = None,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._state_machine = state_machine
        self._attestor = attestor
        self._vault = vault
        self._escrow_contract = escrow_contract

    # seller --------------------------------------------------------------------

    async def sell(
        self, *, asset: str, provider_id: str, username: str, password: str
    ) -> SellResult:
        item_type = parse_asset(asset)
        if not provider_id or not username or not password:
            raise InvalidInputError("provider, username and password are required")

        await asyncio.to_thread(self._check_can_sell, item_type, provider_id, username)
        if self._vault is None:
            raise BackendNotConfiguredError("EXECUTION_AGENT_PUBLIC_KEY is not configured")
        encrypted = self._vault.encrypt({"username": username, "password": password})

        order = Order(
            item_type=item_type,
            provider_id=provider_id,
            username=username,
            encrypted_creds=encrypted,
        )
        verification = await self._attestor.create_verification_request(order.id, provider_id)
        await asyncio.to_thread(self._add_order, order)
        log.info("Order %s created for provider %s", order.id, provider_id)
        return SellResult(order=order, verification=verification)

    def _check_can_sell(self, item_type: ItemType, provider_id: str, username: str) -> None:
        with self._uow_factory() as uow:
            provider = uow.repositories.providers.get(provider_id)
            if provider is None:
                raise NotFoundError(f"Provider {provider_id!r} not found")
            if provider.item_type is not item_type:
                raise InvalidInputError(
                    f"Provider {provider_id!r} trades {provider.item_type}, not {item_type}"
                )
            existing = uow.repositories.orders.find_active(provider_id, username)
            if existing is not None:
                raise DuplicateOrderError(
                    f"An active order already exists for this provider and username "
                    f"(status: {existing.status})",
                    existing_order_id=existing.id,
                )

    def _add_order(self, order: Order) -> None:
        with self._uow_factory() as uow:
            uow.repositories.orders.add(order)
            uow.commit()

    def record_proof(self, order_id: str, document: object) -> ProofOutcome:
        """Turn a proof callback into a VERIFIED order, or flag it for review."""

        with self._uow_factory() as uow:
            orders = uow.repositories.orders
            order = orders.get(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            if order.status is not OrderStatus.PENDING:
                raise ConflictError(f"Order is already {order.status}")

            if nested_deeper_than(document):
                # not a proof shape; neither read nor stored
                document = "<omitted: nested too deeply>"
            balance = extract_balance(document)
            if balance <= 0:
                message = "could not verify a balance from the proof"
                log.warning("Order %s: %s", order_id, message)
                orders.annotate(order_id, message)
                uow.repositories.dead_letters.record(
                    DeadLetter(
                        kind=DeadLetterKind.UNVERIFIED_BALANCE,
                        reference=order_id,
                        order_id=order_id,
                        reason=message,
                        payload={"document": document},
                    )
                )
                uow.commit()
                return ProofOutcome(order=order, balance=0.0)

            provider = uow.repositories.providers.get(order.provider_id)
            domain = provider.domain if provider is not None else order.provider_id
            proof = self._attestor.generate_proof(
                domain=domain,
                response_data={BALANCE_FIELD: balance, "raw": document},
                predicate_field=BALANCE_FIELD,
                predicate_value=balance,
                predicate_op=PredicateOp.GTE,
            )
            uow.repositories.proofs.add(proof)

            if not self._attestor.verify_proof(proof):
                log.error("Order %s: issued proof %s does not verify", order_id, proof.id)
                order = self._state_machine.apply(
                    uow,
                    order_id,
                    OrderStatus.PENDING,
                    OrderStatus.FAILED,
                    {"error_msg": "proof signature did not verify"},
                )
            else:
                order = self._state_machine.apply(
                    uow,
                    order_id,
                    OrderStatus.PENDING,
                    OrderStatus.VERIFIED,
                    {"proof_id": proof.id, "amount": balance},
                )
            uow.repositories.dead_letters.resolve(DeadLetterKind.UNVERIFIED_BALANCE, order_id)
            uow.commit()
        log.info("Order %s %s with balance %s", order_id, order.status, balance)
        return ProofOutcome(order=order, balance=balance, proof=proof)

    def list_order(self, order_id: str, *, price_per_mile: float, min_miles: float) -> Order:
        if price_per_mile <= 0:
            raise InvalidInputError("price_per_mile must be > 0")
        if min_miles <= 0:
            raise InvalidInputError("min_miles must be > 0")

        with self._uow_factory() as uow:
            order = uow.repositories.orders.get(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            if order.status is not OrderStatus.VERIFIED:
                raise ConflictError(
                    f"Order must be VERIFIED to list. Current status: {order.status}"
                )
            if min_miles > order.amount:
                raise InvalidInputError(
                    f"min_miles ({min_miles}) cannot exceed available balance ({order.amount})"
                )
            # price is the value of the whole balance at the listed rate
            price = money(Decimal(str(price_per_mile)) * Decimal(str(order.amount)))
            order = self._state_machine.apply(
                uow,
                order_id,
                OrderStatus.VERIFIED,
                OrderStatus.LISTED,
                {
                    "price": float(price),
                    "price_per_mile": price_per_mile,
                    "min_miles": min_miles,
                },
            )
            uow.commit()
            return order

    # buyer ---------------------------------------------------------------------

    def listings(
        self, *, provider_id: str | None = None, max_price: float | None = None
    ) -> Sequence[Order]:
        with self._uow_factory() as uow:
            return uow.repositories.orders.list(
                status=OrderStatus.LISTED, provider_id=provider_id, max_price=max_price
            )

    def quote(self, order_id: str, miles_amount: float) -> Quote:
        if miles_amount <= 0:
            raise InvalidInputError("miles_amount must be > 0")
        order = self._state_machine.get(order_id)
        if order.status is not OrderStatus.LISTED:
            raise ConflictError(f"Order must be LISTED to buy. Current status: {order.status}")
        if miles_amount < (order.min_miles or 0):
            raise BelowMinimumError(
                f"miles_amount ({miles_amount:g}) is below the minimum ({order.min_miles:g})"
            )
        if miles_amount > order.amount:
            raise InsufficientBalanceError(
                f"miles_amount ({miles_amount:g}) exceeds available balance ({order.amount:g})"
            )
        return Quote(
            order=order,
            miles_amount=miles_amount,
            total_cost=order.quote(miles_amount),
            escrow_contract=self._escrow_contract,
        )

    def confirm_escrow(
        self,
        order_id: str,
        *,
        buyer_address: str,
        escrow_tx: str,
        departure: str,
        destination: str,
    ) -> Order:
        """Manual LISTED -> ESCROWED for deposits the reconciler did not pick up."""

        if not all((buyer_address, escrow_tx, departure, destination)):
            raise InvalidInputError(
                "buyer_address, escrow_tx, departure and destination are required"
            )
        with self._uow_factory() as uow:
            claimed = uow.repositories.orders.find_by_escrow_tx(escrow_tx)
            if claimed is not None:
                raise ConflictError(f"Transaction {escrow_tx} already escrowed order {claimed.id}")
            order = self._state_machine.apply(
                uow,
                order_id,
                OrderStatus.LISTED,
                OrderStatus.ESCROWED,
                {
                    "buyer_address": buyer_address,
                    "buyer_departure": departure,
                    "buyer_destination": destination,
                    "escrow_tx": escrow_tx,
                },
            )
            uow.commit()
        log.info("Order %s escrowed manually by %s", order_id, escrow_tx)
        return order

    def ticket(self, order_id: str) -> Order:
        order = self._state_machine.get(order_id)
        if order.status not in TICKET_VISIBLE_STATUSES:
            raise ConflictError(
                f"Ticket not available yet. Current status: {order.status}"
            )
        return order

    # reads ---------------------------------------------------------------------

    def get_order(self, order_id: str) -> tuple[Order, Proof | None]:
        with self._uow_factory() as uow:
            order = uow.repositories.orders.get(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            proof = uow.repositories.proofs.get(order.proof_id) if order.proof_id else None
            return order, proof

    def orders(
        self, *, status: OrderStatus | None = None, provider_id: str | None = None
    ) -> Sequence[Order]:
        with self._uow_factory() as uow:
            return uow.repositories.orders.list(status=status, provider_id=provider_id)

    def providers(self) -> Sequence[Provider]:
        with self._uow_factory() as uow:
            return uow.repositories.providers.list()

    def dead_letters(self, *, include_resolved: bool = False) -> Sequence[DeadLetter]:
        with self._uow_factory() as uow:
            return uow.repositories.dead_letters.list(include_resolved=include_resolved)

    def seed_providers(self, providers: Iterable[Provider]) -> int:
        count = 0
        with self._uow_factory() as uow:
            for provider in providers:
                uow.repositories.providers.upsert(provider)
                count += 1
            uow.commit()
        return count
