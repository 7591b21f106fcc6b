"""Ports for persisting domain aggregates."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from milesbridge.domain.model import (
    DeadLetter,
    DeadLetterKind,
    Order,
    OrderStatus,
    Proof,
    Provider,
)

if TYPE_CHECKING:
    from collections.abc import Collection, Mapping, Sequence
    from datetime import datetime


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class OrderRepository(Repository[Order], Protocol):
    """Persistence contract for orders.

    ``compare_and_set`` is the only way to change ``status``.
    """

    def get(self, order_id: str) -> Order | None: ...

    def list(
        self,
        *,
        status: OrderStatus | None = None,
        provider_id: str | None = None,
        max_price: float | None = None,
    ) -> Sequence[Order]: ...

    def find_active(self, provider_id: str, username: str) -> Order | None: ...

    def find_by_escrow_tx(self, escrow_tx: str) -> Order | None: ...

    def past_listings(self) -> Sequence[Order]: ...

    def compare_and_set(
        self,
        order_id: str,
        *,
        expected: OrderStatus,
        status: OrderStatus,
        updates: Mapping[str, object],
    ) -> bool: ...

    def annotate(self, order_id: str, error_msg: str) -> None: ...

    def stuck(
        self, *, statuses: Collection[OrderStatus], updated_before: datetime
    ) -> Sequence[Order]: ...


@runtime_checkable
class ProofRepository(Repository[Proof], Protocol):
    """Proofs are append-only."""

    def get(self, proof_id: str) -> Proof | None: ...


@runtime_checkable
class ProviderRepository(Repository[Provider], Protocol):
    def get(self, provider_id: str) -> Provider | None: ...

    def list(self) -> Sequence[Provider]: ...

    def upsert(self, provider: Provider) -> None: ...


@runtime_checkable
class DeadLetterRepository(Protocol):
    """Operator queue of work that needs manual intervention."""

    def record(self, letter: DeadLetter) -> DeadLetter: ...

    def list(self, *, include_resolved: bool = False) -> Sequence[DeadLetter]: ...

    def resolve(self, kind: DeadLetterKind, reference: str) -> bool: ...


@runtime_checkable
class CursorRepository(Protocol):
    """High-water marks for pollers."""

    def get(self, name: str) -> int | None: ...

    def set(self, name: str, value: int) -> None: ...
