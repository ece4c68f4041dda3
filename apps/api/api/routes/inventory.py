from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from apps.api.api.errors import to_http_exception
from apps.api.dependencies.auth import (
    AuthenticatedUser,
    User,
    require_product_admin,
    require_product_manager,
    require_stock_manager,
)
from apps.api.dependencies.services import InventoryServiceDep
from apps.api.services.errors import ServiceError
from apps.api.services.exports import stock_to_csv
from apps.api.services.inventory import Product, StockItem, StockLevel, StockTransaction, TransferItem
from packages.workflow import StockSource, TransactionType

router = APIRouter(prefix="/inventory", tags=["inventory"])

ProductManager = Annotated[User, Depends(require_product_manager)]
ProductAdmin = Annotated[User, Depends(require_product_admin)]
StockManager = Annotated[User, Depends(require_stock_manager)]


class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    model: str = Field(..., min_length=1, max_length=255)
    category: str = Field(default="Battery", min_length=1, max_length=50)
    capacity: str | None = Field(default=None, max_length=100)


class ProductResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    model: str
    category: str
    capacity: str | None


class StockItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product: ProductResponse
    quantity: int
    level: StockLevel


class TransferItemRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1)


class TransferRequest(BaseModel):
    transaction_type: TransactionType
    source: StockSource
    items: list[TransferItemRequest] = Field(..., min_length=1)
    remarks: str | None = Field(default=None, max_length=500)


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    product: ProductResponse
    quantity: int
    transaction_type: TransactionType
    source: StockSource
    handled_by: str
    remarks: str | None
    created_at: datetime


class TransferOptionsResponse(BaseModel):
    types: list[TransactionType]
    sources: list[StockSource]
    pairs: list[tuple[TransactionType, StockSource]]


def _product(product: Product) -> ProductResponse:
    return ProductResponse.model_validate(product)


def _stock(item: StockItem) -> StockItemResponse:
    return StockItemResponse.model_validate(item)


def _transaction(transaction: StockTransaction) -> TransactionResponse:
    return TransactionResponse.model_validate(transaction)


@router.get("/products", response_model=list[ProductResponse])
async def list_products(service: InventoryServiceDep, _: AuthenticatedUser) -> list[ProductResponse]:
    try:
        products = await service.list_products()
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return [_product(product) for product in products]


@router.post("/products", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def add_product(payload: ProductCreateRequest, service: InventoryServiceDep, user: ProductManager) -> ProductResponse:
    try:
        product = await service.add_product(
            actor=user.as_actor(),
            name=payload.name,
            model=payload.model,
            category=payload.category,
            capacity=payload.capacity,
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return _product(product)


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(product_id: str, service: InventoryServiceDep, user: ProductAdmin) -> None:
    try:
        await service.delete_product(product_id, actor=user.as_actor())
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/stock", response_model=list[StockItemResponse])
async def list_stock(
    service: InventoryServiceDep,
    _: AuthenticatedUser,
    search: str | None = Query(default=None, max_length=255),
    category: str | None = Query(default=None, max_length=50),
) -> list[StockItemResponse]:
    try:
        items = await service.list_stock(search=search, category=category)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return [_stock(item) for item in items]


@router.get("/stock/export", summary="Export warehouse stock as CSV")
async def export_stock(
    service: InventoryServiceDep,
    _: AuthenticatedUser,
    category: str | None = Query(default=None, max_length=50),
) -> Response:
    try:
        items = await service.list_stock(category=category)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return Response(
        content=stock_to_csv(items),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="warehouse-stock.csv"'},
    )


@router.get("/transfer-options", response_model=TransferOptionsResponse)
async def get_transfer_options(service: InventoryServiceDep, user: StockManager) -> TransferOptionsResponse:
    options = service.options_for(user.as_actor())
    return TransferOptionsResponse(types=list(options.types), sources=list(options.sources), pairs=list(options.pairs))


@router.post("/transfers", response_model=list[TransactionResponse], status_code=status.HTTP_201_CREATED)
async def transfer_stock(payload: TransferRequest, service: InventoryServiceDep, user: StockManager) -> list[TransactionResponse]:
    try:
        booked = await service.transfer_stock(
            actor=user.as_actor(),
            transaction_type=payload.transaction_type,
            source=payload.source,
            items=[TransferItem(product_id=item.product_id, quantity=item.quantity) for item in payload.items],
            remarks=payload.remarks,
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return [_transaction(transaction) for transaction in booked]


@router.get("/transactions", response_model=list[TransactionResponse])
async def list_transactions(
    service: InventoryServiceDep,
    _: StockManager,
    limit: int = Query(default=200, ge=1, le=1000),
) -> list[TransactionResponse]:
    try:
        transactions = await service.list_transactions(limit=limit)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return [_transaction(transaction) for transaction in transactions]
