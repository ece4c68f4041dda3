from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request

from apps.api.services.dashboard import DashboardService
from apps.api.services.inventory import InventoryService
from apps.api.services.scrap import ScrapService
from apps.api.services.shop import ShopService
from apps.api.services.tickets import TicketService
from apps.api.services.users import UserService


def _service(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{label} service is not available")
    return service


async def get_ticket_service(request: Request) -> TicketService:
    return _service(request, "ticket_service", "Ticket")


async def get_user_service(request: Request) -> UserService:
    return _service(request, "user_service", "User")


async def get_inventory_service(request: Request) -> InventoryService:
    return _service(request, "inventory_service", "Inventory")


async def get_shop_service(request: Request) -> ShopService:
    return _service(request, "shop_service", "Shop")


async def get_scrap_service(request: Request) -> ScrapService:
    return _service(request, "scrap_service", "Scrap")


async def get_dashboard_service(request: Request) -> DashboardService:
    return _service(request, "dashboard_service", "Dashboard")


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
UserServiceDep = Annotated[UserService, Depends(get_user_service)]
InventoryServiceDep = Annotated[InventoryService, Depends(get_inventory_service)]
ShopServiceDep = Annotated[ShopService, Depends(get_shop_service)]
ScrapServiceDep = Annotated[ScrapService, Depends(get_scrap_service)]
DashboardServiceDep = Annotated[DashboardService, Depends(get_dashboard_service)]
