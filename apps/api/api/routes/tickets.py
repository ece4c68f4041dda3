from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, ConfigDict, Field

from apps.api.api.errors import to_http_exception
from apps.api.core.config import get_settings
from apps.api.dependencies.auth import (
    AuthenticatedUser,
    User,
    require_ticket_admin,
    require_ticket_assigner,
    require_ticket_closer,
    require_ticket_creator,
)
from apps.api.dependencies.services import TicketServiceDep, UserServiceDep
from apps.api.services.errors import ServiceError
from apps.api.services.exports import render_ticket_html, tickets_to_csv
from apps.api.services.tickets import ServiceLogEntry
from packages.workflow import (
    AssignBattery,
    AssignInverter,
    CloseTicket,
    PaymentMethod,
    ResolveBattery,
    ResolveInverter,
    ServiceTicket,
    TicketEvent,
    TicketStatus,
)

router = APIRouter(prefix="/tickets", tags=["tickets"])

CreatorUser = Annotated[User, Depends(require_ticket_creator)]
AssignerUser = Annotated[User, Depends(require_ticket_assigner)]
CloserUser = Annotated[User, Depends(require_ticket_closer)]
TicketAdminUser = Annotated[User, Depends(require_ticket_admin)]


class TicketCreateRequest(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_phone: str = Field(..., min_length=1, max_length=50)
    battery_model: str = Field(..., min_length=1, max_length=255)
    issue_description: str = Field(..., min_length=1)
    inverter_model: str | None = Field(default=None, max_length=255)


class AssignRequest(BaseModel):
    specialist: str = Field(..., min_length=1)


class ResolveBatteryRequest(BaseModel):
    rechargeable: bool | None = None
    price: Decimal | None = None


class ResolveInverterRequest(BaseModel):
    resolved: bool | None = None
    price: Decimal | None = None
    issue_description: str | None = None


class CloseTicketRequest(BaseModel):
    payment_method: str = Field(..., min_length=1)


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_number: str
    customer_name: str
    customer_phone: str
    battery_model: str
    inverter_model: str | None
    issue_description: str
    status: TicketStatus
    created_by: str
    assigned_battery: str | None
    assigned_inverter: str | None
    battery_resolved: bool
    battery_rechargeable: bool | None
    battery_price: Decimal | None
    battery_resolved_by: str | None
    battery_resolved_at: datetime | None
    inverter_resolved: bool | None
    inverter_outcome: bool | None
    inverter_price: Decimal | None
    inverter_issue_description: str | None
    inverter_resolved_by: str | None
    inverter_resolved_at: datetime | None
    resolution_notes: str | None
    service_price: Decimal | None
    payment_method: PaymentMethod | None
    total_price: Decimal
    version: int
    created_at: datetime
    updated_at: datetime


class ServiceLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    action: str
    notes: str | None
    user_id: str
    from_status: TicketStatus | None
    to_status: TicketStatus | None
    created_at: datetime


class TicketDetailResponse(TicketResponse):
    logs: list[ServiceLogResponse] = Field(default_factory=list)


class SpecialistResponse(BaseModel):
    id: str
    display_name: str


class SpecialistPoolsResponse(BaseModel):
    battery: list[SpecialistResponse]
    inverter: list[SpecialistResponse]


def _to_response(ticket: ServiceTicket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def _to_detail(ticket: ServiceTicket, logs: list[ServiceLogEntry]) -> TicketDetailResponse:
    return TicketDetailResponse(
        **_to_response(ticket).model_dump(),
        logs=[ServiceLogResponse.model_validate(entry) for entry in logs],
    )


async def _apply(service: TicketServiceDep, ticket_id: str, event: TicketEvent, user: User) -> TicketResponse:
    try:
        ticket = await service.apply_event(ticket_id, event, actor=user.as_actor())
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(ticket)


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketCreateRequest, service: TicketServiceDep, user: CreatorUser) -> TicketResponse:
    try:
        ticket = await service.create_ticket(
            actor=user.as_actor(),
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            battery_model=payload.battery_model,
            issue_description=payload.issue_description,
            inverter_model=payload.inverter_model,
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(ticket)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    service: TicketServiceDep,
    _: AuthenticatedUser,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=255),
) -> list[TicketResponse]:
    try:
        tickets = await service.list_tickets(status=status_filter, search=search)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return [_to_response(ticket) for ticket in tickets]


@router.get("/export", summary="Export tickets as CSV")
async def export_tickets(
    service: TicketServiceDep,
    users: UserServiceDep,
    _: AuthenticatedUser,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=255),
) -> Response:
    try:
        tickets = await service.list_tickets(status=status_filter, search=search)
        names = await users.display_names(ticket.assigned_battery for ticket in tickets)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    content = tickets_to_csv(tickets, names, tz=ZoneInfo(get_settings().local_timezone))
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="service-tickets.csv"'},
    )


@router.get("/specialists", response_model=SpecialistPoolsResponse)
async def list_specialists(
    service: TicketServiceDep, users: UserServiceDep, _: AuthenticatedUser
) -> SpecialistPoolsResponse:
    try:
        pools = await service.specialist_pools()
        names = await users.display_names((*pools.battery, *pools.inverter))
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return SpecialistPoolsResponse(
        battery=[SpecialistResponse(id=user_id, display_name=names.get(user_id, user_id)) for user_id in pools.battery],
        inverter=[SpecialistResponse(id=user_id, display_name=names.get(user_id, user_id)) for user_id in pools.inverter],
    )


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, _: AuthenticatedUser) -> TicketDetailResponse:
    try:
        ticket = await service.get_ticket(ticket_id)
        logs = await service.get_logs(ticket_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return _to_detail(ticket, logs)


@router.get("/{ticket_id}/print", response_class=HTMLResponse)
async def print_ticket(
    ticket_id: str, service: TicketServiceDep, users: UserServiceDep, _: AuthenticatedUser
) -> HTMLResponse:
    settings = get_settings()
    try:
        ticket = await service.get_ticket(ticket_id)
        names = await users.display_names([ticket.assigned_battery, ticket.assigned_inverter])
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    html = render_ticket_html(
        ticket,
        names.get(ticket.assigned_battery or ""),
        names.get(ticket.assigned_inverter or ""),
        symbol=settings.currency_symbol,
        tz=ZoneInfo(settings.local_timezone),
    )
    return HTMLResponse(content=html)


@router.post("/{ticket_id}/assign/battery", response_model=TicketResponse)
async def assign_battery(
    ticket_id: str, payload: AssignRequest, service: TicketServiceDep, user: AssignerUser
) -> TicketResponse:
    return await _apply(service, ticket_id, AssignBattery(specialist=payload.specialist), user)


@router.post("/{ticket_id}/assign/inverter", response_model=TicketResponse)
async def assign_inverter(
    ticket_id: str, payload: AssignRequest, service: TicketServiceDep, user: AssignerUser
) -> TicketResponse:
    return await _apply(service, ticket_id, AssignInverter(specialist=payload.specialist), user)


@router.post("/{ticket_id}/resolve/battery", response_model=TicketResponse)
async def resolve_battery(
    ticket_id: str, payload: ResolveBatteryRequest, service: TicketServiceDep, user: AuthenticatedUser
) -> TicketResponse:
    event = ResolveBattery(rechargeable=payload.rechargeable, price=payload.price)
    return await _apply(service, ticket_id, event, user)


@router.post("/{ticket_id}/resolve/inverter", response_model=TicketResponse)
async def resolve_inverter(
    ticket_id: str, payload: ResolveInverterRequest, service: TicketServiceDep, user: AuthenticatedUser
) -> TicketResponse:
    event = ResolveInverter(
        resolved=payload.resolved,
        price=payload.price,
        issue_description=payload.issue_description,
    )
    return await _apply(service, ticket_id, event, user)


@router.post("/{ticket_id}/close", response_model=TicketResponse)
async def close_ticket(
    ticket_id: str, payload: CloseTicketRequest, service: TicketServiceDep, user: CloserUser
) -> TicketResponse:
    return await _apply(service, ticket_id, CloseTicket(payment_method=payload.payment_method), user)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: str, service: TicketServiceDep, user: TicketAdminUser) -> None:
    try:
        await service.delete_ticket(ticket_id, actor=user.as_actor())
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
