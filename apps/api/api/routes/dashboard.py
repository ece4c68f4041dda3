from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Response
from pydantic import BaseModel, ConfigDict

from apps.api.api.errors import to_http_exception
from apps.api.api.routes.inventory import StockItemResponse
from apps.api.api.routes.tickets import TicketResponse
from apps.api.core.config import get_settings
from apps.api.dependencies.auth import AuthenticatedUser
from apps.api.dependencies.services import DashboardServiceDep
from apps.api.services.errors import ServiceError
from apps.api.services.exports import dashboard_stats_to_csv

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


class DashboardStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    open_tickets: int
    in_progress_tickets: int
    closed_today: int
    total_stock: int
    low_stock_count: int


class DashboardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stats: DashboardStatsResponse
    recent_tickets: list[TicketResponse]
    low_stock_items: list[StockItemResponse]
    generated_at: datetime


@router.get("", response_model=DashboardResponse)
async def get_dashboard(service: DashboardServiceDep, _: AuthenticatedUser) -> DashboardResponse:
    try:
        snapshot = await service.snapshot()
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return DashboardResponse.model_validate(snapshot)


@router.get("/export", summary="Export today's dashboard statistics as CSV")
async def export_dashboard(service: DashboardServiceDep, _: AuthenticatedUser) -> Response:
    try:
        snapshot = await service.snapshot()
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    report_date = snapshot.generated_at.astimezone(ZoneInfo(get_settings().local_timezone)).date()
    return Response(
        content=dashboard_stats_to_csv(snapshot.stats, report_date),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="dashboard-{report_date.isoformat()}.csv"'},
    )
