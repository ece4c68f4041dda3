"""Database models and utilities."""

from .models import (
    ProductTable,
    ProfileTable,
    ScrapEntryTable,
    ServiceLogTable,
    ServiceTicketTable,
    ShopSaleItemTable,
    ShopSaleTable,
    ShopStockTable,
    StockTransactionTable,
    UserRoleTable,
    WarehouseStockTable,
)

__all__ = [
    "ProductTable",
    "ProfileTable",
    "ScrapEntryTable",
    "ServiceLogTable",
    "ServiceTicketTable",
    "ShopSaleItemTable",
    "ShopSaleTable",
    "ShopStockTable",
    "StockTransactionTable",
    "UserRoleTable",
    "WarehouseStockTable",
]
