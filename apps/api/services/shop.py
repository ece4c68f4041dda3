from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.api.metrics import MetricsRegistry, definitions, metrics_registry
from apps.api.services.errors import (
    InvalidInputError,
    PermissionDeniedError,
    ServiceError,
    translate_store_errors,
)
from apps.api.services.inventory import Product, StockItem, stock_level
from packages.db.models import ProductTable, ShopSaleItemTable, ShopSaleTable, ShopStockTable
from packages.workflow import Actor, InvalidAmountError, parse_amount
from packages.workflow import roles as capabilities

logger = logging.getLogger(__name__)


class ShopServiceError(ServiceError):
    """Base error for shop sales."""


class SaleValidationError(ShopServiceError, InvalidInputError):
    pass


class SalePermissionError(ShopServiceError, PermissionDeniedError):
    pass


@dataclass(slots=True, frozen=True)
class SaleItemInput:
    product_type: str
    model_number: str
    quantity: int = 1
    price: Any = None
    product_id: str | None = None


@dataclass(slots=True, frozen=True)
class SaleItem:
    id: str
    product_type: str
    model_number: str
    quantity: int
    price: Decimal | None = None
    product_id: str | None = None


@dataclass(slots=True, frozen=True)
class Sale:
    id: str
    customer_name: str
    sold_by: str
    created_at: datetime
    items: tuple[SaleItem, ...]

    @property
    def total(self) -> Decimal:
        return sum(((item.price or Decimal("0")) * item.quantity for item in self.items), Decimal("0"))


def _clean_items(items: Sequence[SaleItemInput]) -> list[SaleItemInput]:
    """Drop rows without a model number and validate the rest."""

    cleaned: list[SaleItemInput] = []
    for item in items:
        model_number = (item.model_number or "").strip()
        if not model_number:
            continue
        if item.quantity < 1:
            raise SaleValidationError(f"Quantity for {model_number} must be at least 1")
        price: Decimal | None = None
        if item.price not in (None, ""):
            try:
                price = parse_amount(item.price, field_name=f"price of {model_number}")
            except InvalidAmountError as exc:
                raise SaleValidationError(str(exc)) from None
        cleaned.append(
            SaleItemInput(
                product_type=(item.product_type or "").strip() or "Other",
                model_number=model_number,
                quantity=item.quantity,
                price=price,
                product_id=item.product_id or None,
            )
        )
    if not cleaned:
        raise SaleValidationError("Add at least one item with a model number")
    return cleaned


class ShopService:
    """Shop floor stock and point of sale."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        low_stock_threshold: int = 5,
        medium_stock_threshold: int = 20,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._low = low_stock_threshold
        self._medium = medium_stock_threshold
        self._metrics = metrics or metrics_registry

    @translate_store_errors
    async def list_shop_stock(self, *, category: str | None = None) -> list[StockItem]:
        query = (
            select(ShopStockTable, ProductTable)
            .join(ProductTable, ProductTable.id == ShopStockTable.product_id)
            .order_by(ProductTable.name.asc())
        )
        if category:
            query = query.where(ProductTable.category == category)
        async with self._session_factory() as session:
            rows = (await session.execute(query)).all()
        return [
            StockItem(
                product=Product(
                    id=product.id,
                    name=product.name,
                    model=product.model,
                    category=product.category,
                    capacity=product.capacity,
                ),
                quantity=stock.quantity,
                level=stock_level(stock.quantity, low_threshold=self._low, medium_threshold=self._medium),
            )
            for stock, product in rows
        ]

    @translate_store_errors
    async def record_sale(self, *, actor: Actor, customer_name: str, items: Sequence[SaleItemInput]) -> Sale:
        if not capabilities.can_record_sale(actor):
            raise SalePermissionError("You are not allowed to record sales")
        customer_name = (customer_name or "").strip()
        if not customer_name:
            raise SaleValidationError("customer name is required")
        cleaned = _clean_items(items)
        now = datetime.now(timezone.utc)
        sale_id = str(uuid.uuid4())

        recorded: list[SaleItem] = []
        async with self._session_factory() as session:
            async with session.begin():
                session.add(ShopSaleTable(id=sale_id, customer_name=customer_name, sold_by=actor.id, created_at=now))
                await session.flush()
                for item in cleaned:
                    row = ShopSaleItemTable(
                        id=str(uuid.uuid4()),
                        sale_id=sale_id,
                        product_type=item.product_type,
                        model_number=item.model_number,
                        price=item.price,
                        product_id=item.product_id,
                        quantity=item.quantity,
                        created_at=now,
                    )
                    session.add(row)
                    if item.product_id:
                        await self._deduct(session, item.product_id, item.quantity, now)
                    recorded.append(
                        SaleItem(
                            id=row.id,
                            product_type=item.product_type,
                            model_number=item.model_number,
                            quantity=item.quantity,
                            price=item.price,
                            product_id=item.product_id,
                        )
                    )

        self._metrics.counter(definitions.SHOP_SALES).inc()
        logger.info("Sale %s recorded by %s with %d item(s)", sale_id, actor.username, len(recorded))
        return Sale(id=sale_id, customer_name=customer_name, sold_by=actor.id, created_at=now, items=tuple(recorded))

    @translate_store_errors
    async def list_sales(self, *, limit: int = 100) -> list[Sale]:
        async with self._session_factory() as session:
            sales = (
                await session.execute(select(ShopSaleTable).order_by(ShopSaleTable.created_at.desc()).limit(limit))
            ).scalars().all()
            sale_ids = [sale.id for sale in sales]
            item_rows = []
            if sale_ids:
                item_rows = (
                    await session.execute(
                        select(ShopSaleItemTable)
                        .where(ShopSaleItemTable.sale_id.in_(sale_ids))
                        .order_by(ShopSaleItemTable.created_at.asc())
                    )
                ).scalars().all()

        items_by_sale: dict[str, list[SaleItem]] = {}
        for row in item_rows:
            items_by_sale.setdefault(row.sale_id, []).append(
                SaleItem(
                    id=row.id,
                    product_type=row.product_type,
                    model_number=row.model_number,
                    quantity=row.quantity,
                    price=Decimal(str(row.price)) if row.price is not None else None,
                    product_id=row.product_id,
                )
            )
        return [
            Sale(
                id=sale.id,
                customer_name=sale.customer_name,
                sold_by=sale.sold_by,
                created_at=sale.created_at,
                items=tuple(items_by_sale.get(sale.id, ())),
            )
            for sale in sales
        ]

    @staticmethod
    async def _deduct(session: AsyncSession, product_id: str, quantity: int, now: datetime) -> None:
        remaining = ShopStockTable.quantity - quantity
        await session.execute(
            update(ShopStockTable)
            .where(ShopStockTable.product_id == product_id)
            .values(quantity=case((remaining < 0, 0), else_=remaining), updated_at=now)
            .execution_options(synchronize_session=False)
        )
