from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class TicketStatus(str, Enum):
    """Supported states for a service ticket's lifecycle."""

    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    @property
    def is_settled(self) -> bool:
        return self in (TicketStatus.RESOLVED, TicketStatus.CLOSED)


_STATUS_ORDER: tuple[TicketStatus, ...] = (
    TicketStatus.OPEN,
    TicketStatus.IN_PROGRESS,
    TicketStatus.RESOLVED,
    TicketStatus.CLOSED,
)


class PaymentMethod(str, Enum):
    """Payment options recorded when a ticket is closed."""

    CASH = "CASH"
    CARD = "CARD"
    UPI = "UPI"


@dataclass(slots=True, frozen=True)
class ServiceTicket:
    """Snapshot of a service ticket row as seen by the workflow.

    ``inverter_resolved`` is ``None`` exactly when the ticket has no inverter
    model. ``version`` increases by one on every persisted write.
    """

    id: str
    ticket_number: str
    customer_name: str
    customer_phone: str
    battery_model: str
    issue_description: str
    status: TicketStatus
    created_by: str
    created_at: datetime
    updated_at: datetime
    inverter_model: str | None = None
    assigned_battery: str | None = None
    assigned_inverter: str | None = None
    battery_resolved: bool = False
    battery_rechargeable: bool | None = None
    battery_price: Decimal | None = None
    battery_resolved_by: str | None = None
    battery_resolved_at: datetime | None = None
    inverter_resolved: bool | None = None
    inverter_outcome: bool | None = None
    inverter_price: Decimal | None = None
    inverter_issue_description: str | None = None
    inverter_resolved_by: str | None = None
    inverter_resolved_at: datetime | None = None
    resolution_notes: str | None = None
    service_price: Decimal | None = None
    payment_method: PaymentMethod | None = None
    version: int = 1

    @property
    def has_inverter(self) -> bool:
        return bool(self.inverter_model)

    @property
    def tracks_settled(self) -> bool:
        """Completion guard: every applicable track has a recorded outcome."""

        if not self.battery_resolved:
            return False
        if self.has_inverter:
            return self.inverter_resolved is True
        return True

    @property
    def total_price(self) -> Decimal:
        return (self.battery_price or Decimal("0")) + (self.inverter_price or Decimal("0"))
