"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-09-14 10:12:00
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "providers",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("login_url", sa.String(), nullable=False),
        sa.Column("dashboard_url", sa.String(), nullable=False),
        sa.Column("item_type", sa.String(9), nullable=False),
        sa.Column("selectors", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_providers"),
    )
    op.create_table(
        "proofs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("provider_domain", sa.String(), nullable=False),
        sa.Column("proof_type", sa.String(7), nullable=False),
        sa.Column("attestations", sa.Text(), nullable=False),
        sa.Column("predicate_expr", sa.String(), nullable=False),
        sa.Column("raw_proof", sa.Text(), nullable=False),
        sa.Column("signature", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_proofs"),
    )
    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("item_type", sa.String(9), nullable=False),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("price_per_mile", sa.Float(), nullable=True),
        sa.Column("min_miles", sa.Float(), nullable=True),
        sa.Column("buyer_address", sa.String(), nullable=True),
        sa.Column("buyer_departure", sa.String(), nullable=True),
        sa.Column("buyer_destination", sa.String(), nullable=True),
        sa.Column("escrow_tx", sa.String(), nullable=True),
        sa.Column("encrypted_creds", sa.Text(), nullable=True),
        sa.Column("confirmation_code", sa.String(), nullable=True),
        sa.Column("ticket_details", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("proof_id", sa.String(36), nullable=True),
        sa.Column("error_msg", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["provider_id"], ["providers.id"], name="fk_orders_provider_id_providers"
        ),
        sa.ForeignKeyConstraint(["proof_id"], ["proofs.id"], name="fk_orders_proof_id_proofs"),
        sa.PrimaryKeyConstraint("id", name="pk_orders"),
    )
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_provider_username", "orders", ["provider_id", "username"])
    op.create_index("ix_orders_escrow_tx", "orders", ["escrow_tx"])
    op.create_table(
        "dead_letters",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("reference", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(36), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_dead_letters"),
        sa.UniqueConstraint("kind", "reference", name="uq_dead_letters_kind_reference"),
    )
    op.create_table(
        "ledger_cursors",
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("block", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name", name="pk_ledger_cursors"),
    )


def downgrade() -> None:
    op.drop_table("ledger_cursors")
    op.drop_table("dead_letters")
    op.drop_index("ix_orders_escrow_tx", table_name="orders")
    op.drop_index("ix_orders_provider_username", table_name="orders")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_table("orders")
    op.drop_table("proofs")
    op.drop_table("providers")
