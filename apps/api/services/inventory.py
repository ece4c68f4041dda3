from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Sequence

from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.api.metrics import MetricsRegistry, definitions, metrics_registry
from apps.api.services.errors import (
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
    translate_store_errors,
)
from packages.db.models import ProductTable, ShopStockTable, StockTransactionTable, WarehouseStockTable
from packages.workflow import Actor, StockSource, TransactionType, TransferOptions, transfer_options
from packages.workflow import roles as capabilities

logger = logging.getLogger(__name__)


class InventoryServiceError(ServiceError):
    """Base error for inventory operations."""


class ProductNotFoundError(InventoryServiceError, NotFoundError):
    pass


class InventoryValidationError(InventoryServiceError, InvalidInputError):
    pass


class InventoryPermissionError(InventoryServiceError, PermissionDeniedError):
    pass


class StockLevel(str, Enum):
    LOW = "Low Stock"
    MEDIUM = "Medium"
    IN_STOCK = "In Stock"


def stock_level(quantity: int, *, low_threshold: int = 5, medium_threshold: int = 20) -> StockLevel:
    if quantity < low_threshold:
        return StockLevel.LOW
    if quantity < medium_threshold:
        return StockLevel.MEDIUM
    return StockLevel.IN_STOCK


@dataclass(slots=True, frozen=True)
class Product:
    id: str
    name: str
    model: str
    category: str
    capacity: str | None = None


@dataclass(slots=True, frozen=True)
class StockItem:
    product: Product
    quantity: int
    level: StockLevel


@dataclass(slots=True, frozen=True)
class TransferItem:
    product_id: str
    quantity: int


@dataclass(slots=True, frozen=True)
class StockTransaction:
    id: str
    product: Product
    quantity: int
    transaction_type: TransactionType
    source: StockSource
    handled_by: str
    created_at: datetime
    remarks: str | None = None


def _product(row: ProductTable) -> Product:
    return Product(id=row.id, name=row.name, model=row.model, category=row.category, capacity=row.capacity)


def _validate_items(items: Sequence[TransferItem]) -> list[TransferItem]:
    if not items:
        raise InventoryValidationError("Add at least one product to the transfer")
    seen: set[str] = set()
    for item in items:
        if item.product_id in seen:
            raise InventoryValidationError(f"Product {item.product_id} appears more than once")
        if item.quantity < 1:
            raise InventoryValidationError("Quantities must be at least 1")
        seen.add(item.product_id)
    return list(items)


class InventoryService:
    """Products, warehouse stock and stock transfers."""

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

    def level_for(self, quantity: int) -> StockLevel:
        return stock_level(quantity, low_threshold=self._low, medium_threshold=self._medium)

    @translate_store_errors
    async def add_product(
        self,
        *,
        actor: Actor,
        name: str,
        model: str,
        category: str,
        capacity: str | None = None,
    ) -> Product:
        if not capabilities.can_manage_products(actor):
            raise InventoryPermissionError("Only procurement staff or admins can add products")
        name, model, category = (name or "").strip(), (model or "").strip(), (category or "").strip()
        if not name or not model or not category:
            raise InventoryValidationError("name, model and category are required")

        row = ProductTable(
            id=str(uuid.uuid4()),
            name=name,
            model=model,
            category=category,
            capacity=(capacity or "").strip() or None,
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
                await session.flush()
                session.add(WarehouseStockTable(product_id=row.id, quantity=0))
                session.add(ShopStockTable(product_id=row.id, quantity=0))
        logger.info("Product %s (%s) added by %s", name, model, actor.username)
        return _product(row)

    @translate_store_errors
    async def delete_product(self, product_id: str, *, actor: Actor) -> None:
        if not capabilities.can_delete_products(actor):
            raise InventoryPermissionError("Only admins can delete products")
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(delete(ProductTable).where(ProductTable.id == product_id))
        if not result.rowcount:
            raise ProductNotFoundError(f"Product {product_id} not found")

    @translate_store_errors
    async def list_products(self) -> list[Product]:
        async with self._session_factory() as session:
            result = await session.execute(select(ProductTable).order_by(ProductTable.name.asc()))
            return [_product(row) for row in result.scalars().all()]

    @translate_store_errors
    async def list_stock(self, *, search: str | None = None, category: str | None = None) -> list[StockItem]:
        query = (
            select(WarehouseStockTable, ProductTable)
            .join(ProductTable, ProductTable.id == WarehouseStockTable.product_id)
            .order_by(ProductTable.name.asc())
        )
        if category:
            query = query.where(ProductTable.category == category)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(ProductTable.name.ilike(pattern), ProductTable.model.ilike(pattern)))
        async with self._session_factory() as session:
            result = await session.execute(query)
            rows = result.all()
        return [
            StockItem(product=_product(product), quantity=stock.quantity, level=self.level_for(stock.quantity))
            for stock, product in rows
        ]

    async def low_stock(self) -> list[StockItem]:
        return [item for item in await self.list_stock() if item.level is StockLevel.LOW]

    def options_for(self, actor: Actor) -> TransferOptions:
        return transfer_options(actor)

    @translate_store_errors
    async def transfer_stock(
        self,
        *,
        actor: Actor,
        transaction_type: TransactionType,
        source: StockSource,
        items: Sequence[TransferItem],
        remarks: str | None = None,
    ) -> list[StockTransaction]:
        """Book a multi product stock movement against the warehouse.

        ``OUT`` never drives warehouse stock below zero, and ``OUT`` to the shop
        also credits the shop floor.
        """

        options = transfer_options(actor)
        if not options.pairs:
            raise InventoryPermissionError("You are not allowed to transfer stock")
        if not options.allows(transaction_type, source):
            raise InventoryPermissionError(
                f"{transaction_type.value} from/to {source.value} is not available for your role"
            )
        validated = _validate_items(items)
        remarks = (remarks or "").strip() or None
        now = datetime.now(timezone.utc)

        booked: list[StockTransaction] = []
        async with self._session_factory() as session:
            async with session.begin():
                for item in validated:
                    product = await session.get(ProductTable, item.product_id)
                    if product is None:
                        raise ProductNotFoundError(f"Product {item.product_id} not found")

                    transaction = StockTransactionTable(
                        id=str(uuid.uuid4()),
                        product_id=product.id,
                        quantity=item.quantity,
                        transaction_type=transaction_type.value,
                        source=source.value,
                        handled_by=actor.id,
                        remarks=remarks,
                        created_at=now,
                    )
                    session.add(transaction)
                    await self._adjust(session, WarehouseStockTable, product.id, self._delta(transaction_type, item), now)
                    if transaction_type is TransactionType.OUT and source is StockSource.SHOP:
                        await self._adjust(session, ShopStockTable, product.id, item.quantity, now)

                    booked.append(
                        StockTransaction(
                            id=transaction.id,
                            product=_product(product),
                            quantity=item.quantity,
                            transaction_type=transaction_type,
                            source=source,
                            handled_by=actor.id,
                            created_at=now,
                            remarks=remarks,
                        )
                    )

        self._metrics.counter(definitions.STOCK_TRANSFERS).inc(
            len(booked), labels={"transaction_type": transaction_type.value, "source": source.value}
        )
        logger.info(
            "%s booked %d %s transfer item(s) with %s", actor.username, len(booked), transaction_type.value, source.value
        )
        return booked

    @translate_store_errors
    async def list_transactions(self, *, limit: int = 200) -> list[StockTransaction]:
        query = (
            select(StockTransactionTable, ProductTable)
            .join(ProductTable, ProductTable.id == StockTransactionTable.product_id)
            .order_by(StockTransactionTable.created_at.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(query)).all()
        return [
            StockTransaction(
                id=transaction.id,
                product=_product(product),
                quantity=transaction.quantity,
                transaction_type=TransactionType(transaction.transaction_type),
                source=StockSource(transaction.source),
                handled_by=transaction.handled_by,
                created_at=transaction.created_at,
                remarks=transaction.remarks,
            )
            for transaction, product in rows
        ]

    async def total_units(self) -> int:
        return sum(item.quantity for item in await self.list_stock())

    @staticmethod
    def _delta(transaction_type: TransactionType, item: TransferItem) -> int:
        return item.quantity if transaction_type is TransactionType.IN else -item.quantity

    @staticmethod
    async def _adjust(session: AsyncSession, table, product_id: str, delta: int, now: datetime) -> None:
        """Add ``delta`` to a stock row, clamping at zero and creating the row if needed."""

        new_quantity = table.quantity + delta
        result = await session.execute(
            update(table)
            .where(table.product_id == product_id)
            .values(quantity=case((new_quantity < 0, 0), else_=new_quantity), updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            session.add(table(product_id=product_id, quantity=max(0, delta), updated_at=now))
