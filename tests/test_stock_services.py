from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from apps.api.metrics import MetricsRegistry, definitions, register_default_metrics
from apps.api.services.inventory import (
    InventoryPermissionError,
    InventoryService,
    InventoryValidationError,
    ProductNotFoundError,
    TransferItem,
)
from apps.api.services.scrap import (
    ScrapAlreadyOutError,
    ScrapEntryNotFoundError,
    ScrapPermissionError,
    ScrapService,
    ScrapStatus,
    ScrapValidationError,
)
from apps.api.services.shop import SaleItemInput, SalePermissionError, SaleValidationError, ShopService
from packages.db.models import (
    ProductTable,
    ScrapEntryTable,
    ShopSaleItemTable,
    ShopSaleTable,
    StockTransactionTable,
    WarehouseStockTable,
)
from packages.workflow import Actor, Role, StockSource, TransactionType

NOW = datetime(2024, 11, 5, 12, 0, tzinfo=timezone.utc)


class DummyTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummySession:
    def __init__(self, rowcount: int = 1):
        self.execute = AsyncMock(return_value=MagicMock(rowcount=rowcount))
        self.get = AsyncMock(return_value=None)
        self.add = MagicMock()
        self.flush = AsyncMock()

    def begin(self):
        return DummyTransaction()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def added(self, table) -> list:
        return [call.args[0] for call in self.add.call_args_list if isinstance(call.args[0], table)]

    def statements(self) -> list:
        return [call.args[0] for call in self.execute.await_args_list]


def _actor(*roles: Role, actor_id: str = "u-1") -> Actor:
    return Actor(id=actor_id, username=actor_id, roles=frozenset(roles))


def _product_row(product_id: str = "p-1") -> ProductTable:
    return ProductTable(id=product_id, name="Tubular 150Ah", model="EXIDE-150AH", category="Battery", created_at=NOW)


@pytest.fixture
def registry() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


def _inventory(session: DummySession, registry: MetricsRegistry) -> InventoryService:
    return InventoryService(lambda: session, metrics=registry)


@pytest.mark.asyncio
async def test_transfer_out_to_shop_moves_stock_to_shop_floor(registry):
    session = DummySession()
    session.get = AsyncMock(return_value=_product_row())
    service = _inventory(session, registry)

    booked = await service.transfer_stock(
        actor=_actor(Role.WAREHOUSE_STAFF),
        transaction_type=TransactionType.OUT,
        source=StockSource.SHOP,
        items=[TransferItem(product_id="p-1", quantity=3)],
        remarks="  weekly refill ",
    )

    assert [item.quantity for item in booked] == [3]
    assert booked[0].remarks == "weekly refill"
    transactions = session.added(StockTransactionTable)
    assert len(transactions) == 1
    assert transactions[0].transaction_type == "OUT"
    assert transactions[0].source == "SHOP"
    assert transactions[0].handled_by == "u-1"
    assert [statement.table.name for statement in session.statements()] == ["warehouse_stock", "shop_stock"]
    counter = registry.counter(definitions.STOCK_TRANSFERS)
    assert counter.value(labels={"transaction_type": "OUT", "source": "SHOP"}) == 1


@pytest.mark.asyncio
async def test_transfer_out_clamps_warehouse_stock_at_zero(registry):
    session = DummySession()
    session.get = AsyncMock(return_value=_product_row())

    await _inventory(session, registry).transfer_stock(
        actor=_actor(Role.ADMIN),
        transaction_type=TransactionType.OUT,
        source=StockSource.WAREHOUSE,
        items=[TransferItem(product_id="p-1", quantity=50)],
    )

    statements = session.statements()
    assert len(statements) == 1
    assert "CASE WHEN" in str(statements[0].compile(dialect=postgresql.dialect()))


@pytest.mark.asyncio
async def test_transfer_in_creates_missing_stock_row(registry):
    session = DummySession(rowcount=0)
    session.get = AsyncMock(return_value=_product_row())

    await _inventory(session, registry).transfer_stock(
        actor=_actor(Role.PROCUREMENT_STAFF),
        transaction_type=TransactionType.IN,
        source=StockSource.SUPPLIER,
        items=[TransferItem(product_id="p-1", quantity=4)],
    )

    created = session.added(WarehouseStockTable)
    assert len(created) == 1
    assert created[0].product_id == "p-1"
    assert created[0].quantity == 4


@pytest.mark.asyncio
async def test_transfer_direction_is_limited_by_role(registry):
    session = DummySession()
    service = _inventory(session, registry)

    with pytest.raises(InventoryPermissionError, match="not available for your role"):
        await service.transfer_stock(
            actor=_actor(Role.WAREHOUSE_STAFF),
            transaction_type=TransactionType.IN,
            source=StockSource.SUPPLIER,
            items=[TransferItem(product_id="p-1", quantity=1)],
        )
    with pytest.raises(InventoryPermissionError, match="not allowed"):
        await service.transfer_stock(
            actor=_actor(Role.SELLER),
            transaction_type=TransactionType.OUT,
            source=StockSource.SHOP,
            items=[TransferItem(product_id="p-1", quantity=1)],
        )

    session.execute.assert_not_awaited()
    session.add.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "items",
    [
        [],
        [TransferItem(product_id="p-1", quantity=0)],
        [TransferItem(product_id="p-1", quantity=1), TransferItem(product_id="p-1", quantity=2)],
    ],
)
async def test_transfer_rejects_invalid_items(registry, items):
    session = DummySession()

    with pytest.raises(InventoryValidationError):
        await _inventory(session, registry).transfer_stock(
            actor=_actor(Role.ADMIN),
            transaction_type=TransactionType.IN,
            source=StockSource.SUPPLIER,
            items=items,
        )

    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_transfer_unknown_product(registry):
    session = DummySession()

    with pytest.raises(ProductNotFoundError):
        await _inventory(session, registry).transfer_stock(
            actor=_actor(Role.ADMIN),
            transaction_type=TransactionType.IN,
            source=StockSource.SUPPLIER,
            items=[TransferItem(product_id="missing", quantity=1)],
        )


@pytest.mark.asyncio
async def test_add_product_seeds_empty_stock_rows(registry):
    session = DummySession()

    product = await _inventory(session, registry).add_product(
        actor=_actor(Role.PROCUREMENT_STAFF), name=" Tubular 150Ah ", model="EXIDE-150AH", category="Battery"
    )

    assert product.name == "Tubular 150Ah"
    assert product.capacity is None
    assert [row.quantity for row in session.added(WarehouseStockTable)] == [0]
    session.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_delete_product_is_admin_only_and_reports_missing(registry):
    session = DummySession(rowcount=0)
    service = _inventory(session, registry)

    with pytest.raises(InventoryPermissionError):
        await service.delete_product("p-1", actor=_actor(Role.PROCUREMENT_STAFF))
    with pytest.raises(ProductNotFoundError):
        await service.delete_product("p-1", actor=_actor(Role.ADMIN))


@pytest.mark.asyncio
async def test_record_sale_deducts_linked_shop_stock(registry):
    session = DummySession()
    service = ShopService(lambda: session, metrics=registry)

    sale = await service.record_sale(
        actor=_actor(Role.SELLER),
        customer_name=" Anil ",
        items=[
            SaleItemInput(product_type="Battery", model_number="EXIDE-150AH", quantity=2, price="4500", product_id="p-1"),
            SaleItemInput(product_type="", model_number="", quantity=1),
            SaleItemInput(product_type="", model_number="Terminal clamp", quantity=1, price="50.5"),
        ],
    )

    assert sale.customer_name == "Anil"
    assert sale.total == Decimal("9050.50")
    assert [item.product_type for item in sale.items] == ["Battery", "Other"]
    assert len(session.added(ShopSaleTable)) == 1
    assert len(session.added(ShopSaleItemTable)) == 2
    statements = session.statements()
    assert [statement.table.name for statement in statements] == ["shop_stock"]
    assert "CASE WHEN" in str(statements[0].compile(dialect=postgresql.dialect()))
    assert registry.counter(definitions.SHOP_SALES).value() == 1


@pytest.mark.asyncio
async def test_record_sale_checks_role_and_customer(registry):
    session = DummySession()
    service = ShopService(lambda: session, metrics=registry)
    items = [SaleItemInput(product_type="Battery", model_number="EXIDE-150AH")]

    with pytest.raises(SalePermissionError):
        await service.record_sale(actor=_actor(Role.WAREHOUSE_STAFF), customer_name="Anil", items=items)
    with pytest.raises(SaleValidationError):
        await service.record_sale(actor=_actor(Role.SELLER), customer_name="  ", items=items)

    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_record_scrap_entry_defaults_value_to_zero():
    session = DummySession()
    service = ScrapService(lambda: session)

    entry = await service.record_entry(
        actor=_actor(Role.SCRAP_MANAGER), customer_name="Ravi", scrap_item="Battery", scrap_model="EXIDE-100AH"
    )

    assert entry.status is ScrapStatus.IN
    assert entry.scrap_value == Decimal("0.00")
    assert entry.recorded_by == "u-1"
    assert len(session.added(ScrapEntryTable)) == 1


@pytest.mark.asyncio
async def test_record_scrap_entry_validation():
    service = ScrapService(lambda: DummySession())
    actor = _actor(Role.COUNTER_STAFF)

    with pytest.raises(ScrapValidationError, match="customer name, scrap model required"):
        await service.record_entry(actor=actor, customer_name="", scrap_item="Battery", scrap_model=" ")
    with pytest.raises(ScrapValidationError, match="must not be negative"):
        await service.record_entry(
            actor=actor, customer_name="Ravi", scrap_item="Battery", scrap_model="X", scrap_value="-5"
        )
    with pytest.raises(ScrapPermissionError):
        await service.record_entry(
            actor=_actor(Role.SELLER), customer_name="Ravi", scrap_item="Battery", scrap_model="X"
        )


def _scrap_row(status: str) -> ScrapEntryTable:
    return ScrapEntryTable(
        id="scrap-1",
        customer_name="Ravi",
        scrap_item="Battery",
        scrap_model="EXIDE-100AH",
        scrap_value=Decimal("300.00"),
        status=status,
        recorded_by="u-2",
        marked_out_by="u-1" if status == "OUT" else None,
        marked_out_at=NOW if status == "OUT" else None,
        created_at=NOW,
    )


@pytest.mark.asyncio
async def test_mark_out_moves_entry_out():
    session = DummySession()
    result = MagicMock()
    result.scalar_one_or_none.return_value = _scrap_row("OUT")
    session.execute = AsyncMock(return_value=result)

    entry = await ScrapService(lambda: session).mark_out("scrap-1", actor=_actor(Role.SCRAP_MANAGER))

    assert entry.status is ScrapStatus.OUT
    assert entry.marked_out_by == "u-1"
    session.get.assert_not_awaited()


@pytest.mark.asyncio
async def test_mark_out_twice_is_rejected():
    session = DummySession()
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    session.execute = AsyncMock(return_value=result)
    session.get = AsyncMock(return_value=_scrap_row("OUT"))
    service = ScrapService(lambda: session)

    with pytest.raises(ScrapAlreadyOutError):
        await service.mark_out("scrap-1", actor=_actor(Role.SCRAP_MANAGER))

    session.get = AsyncMock(return_value=None)
    with pytest.raises(ScrapEntryNotFoundError):
        await service.mark_out("scrap-9", actor=_actor(Role.SCRAP_MANAGER))
