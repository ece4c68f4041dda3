from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from apps.api.api.errors import to_http_exception
from apps.api.dependencies.auth import User, require_scrap_manager
from apps.api.dependencies.services import ScrapServiceDep
from apps.api.services.errors import ServiceError
from apps.api.services.scrap import ScrapEntry, ScrapStatus

router = APIRouter(prefix="/scrap", tags=["scrap"])

ScrapManager = Annotated[User, Depends(require_scrap_manager)]


class ScrapCreateRequest(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=255)
    scrap_item: str = Field(..., min_length=1, max_length=255)
    scrap_model: str = Field(..., min_length=1, max_length=255)
    scrap_value: Decimal = Field(default=Decimal("0"))


class ScrapResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_name: str
    scrap_item: str
    scrap_model: str
    scrap_value: Decimal
    status: ScrapStatus
    recorded_by: str
    created_at: datetime
    marked_out_by: str | None
    marked_out_at: datetime | None


def _entry(entry: ScrapEntry) -> ScrapResponse:
    return ScrapResponse.model_validate(entry)


@router.get("", response_model=list[ScrapResponse])
async def list_scrap(
    service: ScrapServiceDep,
    _: ScrapManager,
    status_filter: ScrapStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=255),
) -> list[ScrapResponse]:
    try:
        entries = await service.list_entries(status=status_filter, search=search)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return [_entry(entry) for entry in entries]


@router.post("", response_model=ScrapResponse, status_code=status.HTTP_201_CREATED)
async def record_scrap(payload: ScrapCreateRequest, service: ScrapServiceDep, user: ScrapManager) -> ScrapResponse:
    try:
        entry = await service.record_entry(
            actor=user.as_actor(),
            customer_name=payload.customer_name,
            scrap_item=payload.scrap_item,
            scrap_model=payload.scrap_model,
            scrap_value=payload.scrap_value,
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return _entry(entry)


@router.post("/{entry_id}/mark-out", response_model=ScrapResponse)
async def mark_scrap_out(entry_id: str, service: ScrapServiceDep, user: ScrapManager) -> ScrapResponse:
    try:
        entry = await service.mark_out(entry_id, actor=user.as_actor())
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return _entry(entry)
