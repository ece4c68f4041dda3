from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo

from apps.api.services.inventory import InventoryService, StockItem, StockLevel
from apps.api.services.tickets import TicketRepository
from packages.workflow import ServiceTicket, TicketStatus

RECENT_TICKET_LIMIT = 5


@dataclass(slots=True, frozen=True)
class DashboardStats:
    open_tickets: int
    in_progress_tickets: int
    closed_today: int
    total_stock: int
    low_stock_count: int


@dataclass(slots=True, frozen=True)
class DashboardSnapshot:
    stats: DashboardStats
    recent_tickets: tuple[ServiceTicket, ...]
    low_stock_items: tuple[StockItem, ...]
    generated_at: datetime


def start_of_day(now: datetime, tz: tzinfo) -> datetime:
    """Local midnight of ``now`` in ``tz``, as an aware datetime."""

    local = now.astimezone(tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


class DashboardService:
    def __init__(
        self,
        tickets: TicketRepository,
        inventory: InventoryService,
        *,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self._tickets = tickets
        self._inventory = inventory
        self._tz = tz

    async def snapshot(self, *, now: datetime | None = None) -> DashboardSnapshot:
        now = now or datetime.now(timezone.utc)
        midnight = start_of_day(now, self._tz)

        open_count = await self._tickets.count_tickets(status=TicketStatus.OPEN)
        in_progress = await self._tickets.count_tickets(status=TicketStatus.IN_PROGRESS)
        closed_today = await self._tickets.count_tickets(status=TicketStatus.CLOSED, updated_since=midnight)
        recent = await self._tickets.list_tickets(limit=RECENT_TICKET_LIMIT)
        stock = await self._inventory.list_stock()
        low_stock = tuple(item for item in stock if item.level is StockLevel.LOW)

        stats = DashboardStats(
            open_tickets=open_count,
            in_progress_tickets=in_progress,
            closed_today=closed_today,
            total_stock=sum(item.quantity for item in stock),
            low_stock_count=len(low_stock),
        )
        return DashboardSnapshot(
            stats=stats,
            recent_tickets=tuple(recent),
            low_stock_items=low_stock,
            generated_at=now,
        )
