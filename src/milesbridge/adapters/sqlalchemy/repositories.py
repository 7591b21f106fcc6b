"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import select, update

from milesbridge.adapters.sqlalchemy.mappings import (
    dead_letter_table,
    ledger_cursor_table,
    order_table,
    provider_table,
)
from milesbridge.domain.model import (
    DeadLetter,
    DeadLetterKind,
    Order,
    OrderStatus,
    Proof,
    Provider,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Collection, Mapping, Sequence
    from datetime import datetime

    from sqlalchemy.engine import CursorResult
    from sqlalchemy.orm import Session

# orders that still hold a seller's slot for a given provider account
_ACTIVE_STATUSES = (OrderStatus.PENDING, OrderStatus.VERIFIED)

# columns a transition may write besides status/updated_at
_WRITABLE_COLUMNS = frozenset(
    column.name
    for column in order_table.columns
    if column.name not in {"id", "status", "created_at", "updated_at"}
)


class SqlAlchemyOrderRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Order) -> None:
        self.session.add(entity)

    def get(self, order_id: str) -> Order | None:
        return self.session.get(Order, order_id)

    def list(
        self,
        *,
        status: OrderStatus | None = None,
        provider_id: str | None = None,
        max_price: float | None = None,
    ) -> Sequence[Order]:
        stmt = select(Order).order_by(order_table.c.created_at.desc())
        if status is not None:
            stmt = stmt.where(order_table.c.status == status)
        if provider_id is not None:
            stmt = stmt.where(order_table.c.provider_id == provider_id)
        if max_price is not None:
            stmt = stmt.where(order_table.c.price_per_mile <= max_price)
        return list(self.session.execute(stmt).scalars())

    def find_active(self, provider_id: str, username: str) -> Order | None:
        stmt = (
            select(Order)
            .where(order_table.c.provider_id == provider_id)
            .where(order_table.c.username == username)
            .where(order_table.c.status.in_(_ACTIVE_STATUSES))
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def find_by_escrow_tx(self, escrow_tx: str) -> Order | None:
        stmt = select(Order).where(order_table.c.escrow_tx == escrow_tx).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()

    def past_listings(self) -> Sequence[Order]:
        """Orders that were listed once and have since moved past LISTED."""

        stmt = (
            select(Order)
            .where(order_table.c.price_per_mile.is_not(None))
            .where(order_table.c.status != OrderStatus.LISTED)
        )
        return list(self.session.execute(stmt).scalars())

    def compare_and_set(
        self,
        order_id: str,
        *,
        expected: OrderStatus,
        status: OrderStatus,
        updates: Mapping[str, object],
    ) -> bool:
        """Move ``order_id`` from ``expected`` to ``status`` in one conditional UPDATE.

        Returns ``False`` when no row matched, i.e. the order is missing or its
        persisted status is no longer ``expected``.
        """

        unknown = set(updates) - _WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot write order columns: {', '.join(sorted(unknown))}")

        # pending ORM changes must reach the row before the guarded UPDATE reads it
        self.session.flush()
        stmt = (
            update(order_table)
            .where(order_table.c.id == order_id)
            .where(order_table.c.status == expected)
            .values(status=status, updated_at=utcnow(), **dict(updates))
            .execution_options(synchronize_session=False)
        )
        result = cast("CursorResult[Any]", self.session.execute(stmt))
        if result.rowcount != 1:
            return False

        refreshed = select(Order).where(order_table.c.id == order_id)
        self.session.execute(refreshed.execution_options(populate_existing=True))
        return True

    def annotate(self, order_id: str, error_msg: str) -> None:
        self.session.flush()
        stmt = (
            update(order_table)
            .where(order_table.c.id == order_id)
            .values(error_msg=error_msg, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)
        self.session.execute(
            select(Order)
            .where(order_table.c.id == order_id)
            .execution_options(populate_existing=True)
        )

    def stuck(
        self, *, statuses: Collection[OrderStatus], updated_before: datetime
    ) -> Sequence[Order]:
        stmt = (
            select(Order)
            .where(order_table.c.status.in_(tuple(statuses)))
            .where(order_table.c.updated_at < updated_before)
            .order_by(order_table.c.updated_at)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyProofRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Proof) -> None:
        self.session.add(entity)

    def get(self, proof_id: str) -> Proof | None:
        return self.session.get(Proof, proof_id)


class SqlAlchemyProviderRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Provider) -> None:
        self.session.add(entity)

    def get(self, provider_id: str) -> Provider | None:
        return self.session.get(Provider, provider_id)

    def list(self) -> Sequence[Provider]:
        stmt = select(Provider).order_by(provider_table.c.name)
        return list(self.session.execute(stmt).scalars())

    def upsert(self, provider: Provider) -> None:
        existing = self.get(provider.id)
        if existing is None:
            self.session.add(provider)
            return
        existing.name = provider.name
        existing.login_url = provider.login_url
        existing.dashboard_url = provider.dashboard_url
        existing.item_type = provider.item_type
        existing.selectors = provider.selectors


class SqlAlchemyDeadLetterRepository:
    """Dead letters are keyed by ``(kind, reference)``; re-recording bumps ``attempts``."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def record(self, letter: DeadLetter) -> DeadLetter:
        existing = self._find(letter.kind, letter.reference)
        if existing is None:
            self.session.add(letter)
            return letter
        existing.attempts += 1
        existing.reason = letter.reason
        existing.payload = letter.payload
        existing.order_id = letter.order_id or existing.order_id
        existing.resolved_at = None
        return existing

    def list(self, *, include_resolved: bool = False) -> Sequence[DeadLetter]:
        stmt = select(DeadLetter).order_by(dead_letter_table.c.created_at)
        if not include_resolved:
            stmt = stmt.where(dead_letter_table.c.resolved_at.is_(None))
        return list(self.session.execute(stmt).scalars())

    def resolve(self, kind: DeadLetterKind, reference: str) -> bool:
        existing = self._find(kind, reference)
        if existing is None or existing.resolved_at is not None:
            return False
        existing.resolved_at = utcnow()
        return True

    def _find(self, kind: DeadLetterKind, reference: str) -> DeadLetter | None:
        stmt = (
            select(DeadLetter)
            .where(dead_letter_table.c.kind == kind)
            .where(dead_letter_table.c.reference == reference)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()


class SqlAlchemyCursorRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, name: str) -> int | None:
        stmt = select(ledger_cursor_table.c.block).where(ledger_cursor_table.c.name == name)
        value = self.session.execute(stmt).scalar_one_or_none()
        return None if value is None else int(value)

    def set(self, name: str, value: int) -> None:
        stmt = (
            update(ledger_cursor_table)
            .where(ledger_cursor_table.c.name == name)
            .values(block=value, updated_at=utcnow())
        )
        result = cast("CursorResult[Any]", self.session.execute(stmt))
        if result.rowcount == 0:
            self.session.execute(
                ledger_cursor_table.insert().values(name=name, block=value, updated_at=utcnow())
            )
