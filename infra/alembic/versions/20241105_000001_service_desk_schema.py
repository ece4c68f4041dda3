"""Service desk schema: users, tickets, inventory, shop and scrap."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20241105_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=150), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True, unique=True),
        sa.Column("api_token_hash", sa.String(length=64), nullable=True, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "user_roles",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"])

    op.create_table(
        "service_tickets",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("ticket_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("customer_phone", sa.String(length=50), nullable=False),
        sa.Column("battery_model", sa.String(length=255), nullable=False),
        sa.Column("inverter_model", sa.String(length=255), nullable=True),
        sa.Column("issue_description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_by", sa.String(length=36), nullable=False),
        sa.Column("assigned_battery", sa.String(length=36), nullable=True),
        sa.Column("assigned_inverter", sa.String(length=36), nullable=True),
        sa.Column("battery_resolved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("battery_rechargeable", sa.Boolean(), nullable=True),
        sa.Column("battery_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("battery_resolved_by", sa.String(length=36), nullable=True),
        sa.Column("battery_resolved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("inverter_resolved", sa.Boolean(), nullable=True),
        sa.Column("inverter_outcome", sa.Boolean(), nullable=True),
        sa.Column("inverter_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("inverter_issue_description", sa.Text(), nullable=True),
        sa.Column("inverter_resolved_by", sa.String(length=36), nullable=True),
        sa.Column("inverter_resolved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("service_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("payment_method", sa.String(length=10), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_service_tickets_status", "service_tickets", ["status"])

    op.create_table(
        "service_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "ticket_id",
            sa.String(length=36),
            sa.ForeignKey("service_tickets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", sa.String(length=500), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("from_status", sa.String(length=20), nullable=True),
        sa.Column("to_status", sa.String(length=20), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_service_logs_ticket_id", "service_logs", ["ticket_id"])

    op.create_table(
        "products",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("model", sa.String(length=255), nullable=False),
        sa.Column("capacity", sa.String(length=100), nullable=True),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    for table in ("warehouse_stock", "shop_stock"):
        op.create_table(
            table,
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column(
                "product_id",
                sa.String(length=36),
                sa.ForeignKey("products.id", ondelete="CASCADE"),
                nullable=False,
                unique=True,
            ),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        )

    op.create_table(
        "stock_transactions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(length=10), nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("handled_by", sa.String(length=36), nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_stock_transactions_product_id", "stock_transactions", ["product_id"])

    op.create_table(
        "shop_sales",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("sold_by", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "shop_sale_items",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("sale_id", sa.String(length=36), sa.ForeignKey("shop_sales.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_type", sa.String(length=50), nullable=False),
        sa.Column("model_number", sa.String(length=255), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("products.id", ondelete="SET NULL"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_shop_sale_items_sale_id", "shop_sale_items", ["sale_id"])

    op.create_table(
        "scrap_entries",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("scrap_item", sa.String(length=255), nullable=False),
        sa.Column("scrap_model", sa.String(length=255), nullable=False),
        sa.Column("scrap_value", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(length=10), nullable=False, server_default=sa.text("'IN'")),
        sa.Column("recorded_by", sa.String(length=36), nullable=False),
        sa.Column("marked_out_by", sa.String(length=36), nullable=True),
        sa.Column("marked_out_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("scrap_entries")
    op.drop_index("ix_shop_sale_items_sale_id", table_name="shop_sale_items")
    op.drop_table("shop_sale_items")
    op.drop_table("shop_sales")
    op.drop_index("ix_stock_transactions_product_id", table_name="stock_transactions")
    op.drop_table("stock_transactions")
    op.drop_table("shop_stock")
    op.drop_table("warehouse_stock")
    op.drop_table("products")
    op.drop_index("ix_service_logs_ticket_id", table_name="service_logs")
    op.drop_table("service_logs")
    op.drop_index("ix_service_tickets_status", table_name="service_tickets")
    op.drop_table("service_tickets")
    op.drop_index("ix_user_roles_user_id", table_name="user_roles")
    op.drop_table("user_roles")
    op.drop_table("profiles")
