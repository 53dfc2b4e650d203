"""Create commerce core tables: catalog, wallets, ledger, orders, outbox

Revision ID: commerce_20251120_0001
Revises:
Create Date: 2025-11-20 00:00:00
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "commerce_20251120_0001"
down_revision = None
branch_labels = None
depends_on = None

wallet_tx_direction = sa.Enum("credit", "debit", name="wallet_tx_direction")
wallet_tx_type = sa.Enum(
    "recharge", "order_pay", "order_refund", "adjust_in", "adjust_out", "correction", name="wallet_tx_type"
)


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("created_at", sa.BigInteger(), nullable=False, server_default="0"),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("price", sa.BigInteger(), nullable=False),
        sa.Column("duration_min", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sellable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "wallets",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("customer_id", sa.BigInteger(), nullable=False),
        sa.Column("balance", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.SmallInteger(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint("customer_id", name="uq_wallets_customer"),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("wallet_id", sa.BigInteger(), sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("direction", wallet_tx_direction, nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("type", wallet_tx_type, nullable=False),
        sa.Column("biz_ref_type", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("biz_ref_id", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("idempotency_key", sa.String(length=64), nullable=False),
        sa.Column("operator_id", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("reason_code", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("note", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_wallet_tx_idem"),
        sa.CheckConstraint("amount > 0", name="ck_wallet_tx_amount_positive"),
    )
    op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"])
    op.create_index("ix_wallet_tx_wallet_created", "wallet_transactions", ["wallet_id", "created_at"])

    op.create_table(
        "orders",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("order_no", sa.String(length=32), nullable=False),
        sa.Column("customer_id", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("pay_method", sa.String(length=16), nullable=False),
        sa.Column("total_amount", sa.Numeric(20, 0), nullable=False),
        sa.Column("discount_amount", sa.Numeric(20, 0), nullable=False, server_default="0"),
        sa.Column("final_amount", sa.Numeric(20, 0), nullable=False),
        sa.Column("remark", sa.Text(), nullable=False, server_default=""),
        sa.Column("channel", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("assigned_to", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("source_ref", sa.String(length=64), nullable=True),
        sa.Column("idempotency_key", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("order_no", name="uq_orders_order_no"),
        sa.UniqueConstraint("customer_id", "idempotency_key", name="uq_orders_customer_idem"),
        sa.CheckConstraint("final_amount >= 0", name="ck_orders_final_non_negative"),
    )
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])
    op.create_index("ix_orders_created", "orders", ["created_at", "id"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), nullable=False),
        sa.Column("product_name_snapshot", sa.String(length=128), nullable=False),
        sa.Column("unit_price_snapshot", sa.BigInteger(), nullable=False),
        sa.Column("duration_min_snapshot", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("final_price", sa.Numeric(20, 0), nullable=False),
        sa.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "outbox",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.LargeBinary(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("processed_at", sa.BigInteger(), nullable=True),
    )
    op.create_index("ix_outbox_processed", "outbox", ["processed_at"])


def downgrade() -> None:
    op.drop_index("ix_outbox_processed", table_name="outbox")
    op.drop_table("outbox")
    op.drop_index("ix_order_items_order_id", table_name="order_items")
    op.drop_table("order_items")
    op.drop_index("ix_orders_created", table_name="orders")
    op.drop_index("ix_orders_customer_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_wallet_tx_wallet_created", table_name="wallet_transactions")
    op.drop_index("ix_wallet_transactions_wallet_id", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")
    wallet_tx_type.drop(op.get_bind(), checkfirst=True)
    wallet_tx_direction.drop(op.get_bind(), checkfirst=True)
    op.drop_table("wallets")
    op.drop_table("products")
    op.drop_table("customers")
