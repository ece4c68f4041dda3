"""SQLModel table definitions for the voltdesk data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class ProfileTable(SQLModel, table=True):
    """Application users. ``api_token_hash`` is the SHA-256 digest of the bearer token."""

    __tablename__ = "profiles"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    username: str = Field(sa_column=Column(String(150), nullable=False, unique=True))
    display_name: str = Field(sa_column=Column(String(255), nullable=False))
    email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True, unique=True))
    api_token_hash: str | None = Field(default=None, sa_column=Column(String(64), nullable=True, unique=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class UserRoleTable(SQLModel, table=True):
    """Role grants; a user holds one row per role."""

    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    user_id: str = Field(
        sa_column=Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    role: str = Field(sa_column=Column(String(50), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ServiceTicketTable(SQLModel, table=True):
    """Service tickets with their battery and inverter tracks."""

    __tablename__ = "service_tickets"

    id: str = Field(primary_key=True, index=True)
    ticket_number: str = Field(sa_column=Column(String(32), nullable=False, unique=True))
    customer_name: str = Field(sa_column=Column(String(255), nullable=False))
    customer_phone: str = Field(sa_column=Column(String(50), nullable=False))
    battery_model: str = Field(sa_column=Column(String(255), nullable=False))
    inverter_model: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    issue_description: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    created_by: str = Field(sa_column=Column(String(36), nullable=False))
    assigned_battery: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    assigned_inverter: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    battery_resolved: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    battery_rechargeable: bool | None = Field(default=None, sa_column=Column(Boolean, nullable=True))
    battery_price: Decimal | None = Field(default=None, sa_column=Column(Numeric(12, 2), nullable=True))
    battery_resolved_by: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    battery_resolved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    inverter_resolved: bool | None = Field(default=None, sa_column=Column(Boolean, nullable=True))
    inverter_outcome: bool | None = Field(default=None, sa_column=Column(Boolean, nullable=True))
    inverter_price: Decimal | None = Field(default=None, sa_column=Column(Numeric(12, 2), nullable=True))
    inverter_issue_description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    inverter_resolved_by: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    inverter_resolved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    resolution_notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    service_price: Decimal | None = Field(default=None, sa_column=Column(Numeric(12, 2), nullable=True))
    payment_method: str | None = Field(default=None, sa_column=Column(String(10), nullable=True))
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ServiceLogTable(SQLModel, table=True):
    """Best effort audit trail of ticket actions."""

    __tablename__ = "service_logs"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("service_tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    action: str = Field(sa_column=Column(String(500), nullable=False))
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    user_id: str = Field(sa_column=Column(String(36), nullable=False))
    from_status: str | None = Field(default=None, sa_column=Column(String(20), nullable=True))
    to_status: str | None = Field(default=None, sa_column=Column(String(20), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ProductTable(SQLModel, table=True):
    """Catalogue of batteries, inverters and accessories."""

    __tablename__ = "products"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    model: str = Field(sa_column=Column(String(255), nullable=False))
    capacity: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    category: str = Field(sa_column=Column(String(50), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class WarehouseStockTable(SQLModel, table=True):
    """Warehouse quantity per product."""

    __tablename__ = "warehouse_stock"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    product_id: str = Field(
        sa_column=Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, unique=True)
    )
    quantity: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ShopStockTable(SQLModel, table=True):
    """Shop floor quantity per product."""

    __tablename__ = "shop_stock"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    product_id: str = Field(
        sa_column=Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, unique=True)
    )
    quantity: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class StockTransactionTable(SQLModel, table=True):
    """Stock movements booked against the warehouse."""

    __tablename__ = "stock_transactions"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    product_id: str = Field(
        sa_column=Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    transaction_type: str = Field(sa_column=Column(String(10), nullable=False))
    source: str = Field(sa_column=Column(String(20), nullable=False))
    handled_by: str = Field(sa_column=Column(String(36), nullable=False))
    remarks: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ShopSaleTable(SQLModel, table=True):
    """Point of sale receipts."""

    __tablename__ = "shop_sales"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    customer_name: str = Field(sa_column=Column(String(255), nullable=False))
    sold_by: str = Field(sa_column=Column(String(36), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ShopSaleItemTable(SQLModel, table=True):
    """Line items of a shop sale."""

    __tablename__ = "shop_sale_items"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    sale_id: str = Field(
        sa_column=Column(String(36), ForeignKey("shop_sales.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    product_type: str = Field(sa_column=Column(String(50), nullable=False))
    model_number: str = Field(sa_column=Column(String(255), nullable=False))
    price: Decimal | None = Field(default=None, sa_column=Column(Numeric(12, 2), nullable=True))
    product_id: str | None = Field(
        default=None, sa_column=Column(String(36), ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    )
    quantity: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ScrapEntryTable(SQLModel, table=True):
    """Scrap taken in from customers and later sent out."""

    __tablename__ = "scrap_entries"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    customer_name: str = Field(sa_column=Column(String(255), nullable=False))
    scrap_item: str = Field(sa_column=Column(String(255), nullable=False))
    scrap_model: str = Field(sa_column=Column(String(255), nullable=False))
    scrap_value: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    status: str = Field(default="IN", sa_column=Column(String(10), nullable=False, default="IN"))
    recorded_by: str = Field(sa_column=Column(String(36), nullable=False))
    marked_out_by: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    marked_out_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
