from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from apps.api.api.errors import to_http_exception
from apps.api.api.routes.inventory import StockItemResponse
from apps.api.dependencies.auth import User, require_seller
from apps.api.dependencies.services import ShopServiceDep
from apps.api.services.errors import ServiceError
from apps.api.services.shop import Sale, SaleItemInput

router = APIRouter(prefix="/shop", tags=["shop"])

Seller = Annotated[User, Depends(require_seller)]


class SaleItemRequest(BaseModel):
    product_type: str = Field(default="Battery", max_length=50)
    model_number: str = Field(default="", max_length=255)
    quantity: int = Field(default=1, ge=1)
    price: Decimal | None = None
    product_id: str | None = None


class SaleRequest(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=255)
    items: list[SaleItemRequest] = Field(..., min_length=1)


class SaleItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    product_type: str
    model_number: str
    quantity: int
    price: Decimal | None
    product_id: str | None


class SaleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_name: str
    sold_by: str
    created_at: datetime
    items: list[SaleItemResponse]
    total: Decimal


def _sale(sale: Sale) -> SaleResponse:
    return SaleResponse.model_validate(sale)


@router.get("/stock", response_model=list[StockItemResponse])
async def list_shop_stock(
    service: ShopServiceDep,
    _: Seller,
    category: str | None = Query(default=None, max_length=50),
) -> list[StockItemResponse]:
    try:
        items = await service.list_shop_stock(category=category)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return [StockItemResponse.model_validate(item) for item in items]


@router.post("/sales", response_model=SaleResponse, status_code=status.HTTP_201_CREATED)
async def record_sale(payload: SaleRequest, service: ShopServiceDep, user: Seller) -> SaleResponse:
    items = [
        SaleItemInput(
            product_type=item.product_type,
            model_number=item.model_number,
            quantity=item.quantity,
            price=item.price,
            product_id=item.product_id,
        )
        for item in payload.items
    ]
    try:
        sale = await service.record_sale(actor=user.as_actor(), customer_name=payload.customer_name, items=items)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return _sale(sale)


@router.get("/sales", response_model=list[SaleResponse])
async def list_sales(
    service: ShopServiceDep,
    _: Seller,
    limit: int = Query(default=100, ge=1, le=500),
) -> list[SaleResponse]:
    try:
        sales = await service.list_sales(limit=limit)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return [_sale(sale) for sale in sales]
