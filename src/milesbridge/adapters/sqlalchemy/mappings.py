"""SQLAlchemy mapping metadata for the milesbridge domain model."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Dialect,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    orm,
)
from sqlalchemy.orm import configure_mappers

from milesbridge.domain.model import (
    Attestations,
    DeadLetter,
    DeadLetterKind,
    ItemType,
    Order,
    OrderStatus,
    Proof,
    ProofType,
    Provider,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

ID_LENGTH = 36


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class AttestationsType(TypeDecorator[Attestations]):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Attestations | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value.to_dict(), sort_keys=True)

    def process_result_value(self, value: str | None, dialect: Dialect) -> Attestations:
        _ = dialect
        if value is None:
            return Attestations()
        loaded = json.loads(value)
        if not isinstance(loaded, dict):
            return Attestations()
        return Attestations.from_mapping(cast(dict[str, Any], loaded))


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Core tables -----------------------------------------------------------------

provider_table = Table(
    "providers",
    mapper_registry.metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String, nullable=False),
    Column("login_url", String, nullable=False),
    Column("dashboard_url", String, nullable=False),
    Column("item_type", Enum(ItemType, native_enum=False), nullable=False),
    Column("selectors", JSON, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
)

proof_table = Table(
    "proofs",
    mapper_registry.metadata,
    Column("id", String(ID_LENGTH), primary_key=True),
    Column("provider_domain", String, nullable=False),
    Column("proof_type", Enum(ProofType, native_enum=False), nullable=False),
    Column("attestations", AttestationsType(), nullable=False),
    Column("predicate_expr", String, nullable=False),
    Column("raw_proof", Text, nullable=False),
    Column("signature", String, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
)

order_table = Table(
    "orders",
    mapper_registry.metadata,
    Column("id", String(ID_LENGTH), primary_key=True),
    Column("item_type", Enum(ItemType, native_enum=False), nullable=False),
    Column("provider_id", String(64), ForeignKey("providers.id"), nullable=False),
    Column("username", String, nullable=False),
    Column("amount", Float, nullable=False),
    Column("price", Float, nullable=True),
    Column("price_per_mile", Float, nullable=True),
    Column("min_miles", Float, nullable=True),
    Column("buyer_address", String, nullable=True),
    Column("buyer_departure", String, nullable=True),
    Column("buyer_destination", String, nullable=True),
    Column("escrow_tx", String, nullable=True),
    Column("encrypted_creds", Text, nullable=True),
    Column("confirmation_code", String, nullable=True),
    Column("ticket_details", JSON, nullable=True),
    Column("status", Enum(OrderStatus, native_enum=False, length=32), nullable=False),
    Column("proof_id", String(ID_LENGTH), ForeignKey("proofs.id"), nullable=True),
    Column("error_msg", Text, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    Index("ix_orders_status", "status"),
    Index("ix_orders_provider_username", "provider_id", "username"),
    Index("ix_orders_escrow_tx", "escrow_tx"),
)

dead_letter_table = Table(
    "dead_letters",
    mapper_registry.metadata,
    Column("id", String(ID_LENGTH), primary_key=True),
    Column("kind", Enum(DeadLetterKind, native_enum=False, length=32), nullable=False),
    Column("reference", String, nullable=False),
    Column("order_id", String(ID_LENGTH), nullable=True),
    Column("reason", Text, nullable=False),
    Column("payload", JSON, nullable=False),
    Column("attempts", Integer, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("resolved_at", UTCDateTime(), nullable=True),
    UniqueConstraint("kind", "reference", name="uq_dead_letters_kind_reference"),
)

# Not mapped: cursors are plain key/value rows.
ledger_cursor_table = Table(
    "ledger_cursors",
    mapper_registry.metadata,
    Column("name", String(64), primary_key=True),
    Column("block", BigInteger, nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model (idempotent)."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(Provider, provider_table)
    mapper_registry.map_imperatively(Proof, proof_table)
    mapper_registry.map_imperatively(Order, order_table)
    mapper_registry.map_imperatively(DeadLetter, dead_letter_table)

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
