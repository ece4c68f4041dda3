from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from packages.workflow import Actor, Role, ServiceTicket, TicketStatus, WorkflowContext

CREATED_AT = datetime(2024, 11, 5, 9, 30, tzinfo=timezone.utc)
NOW = datetime(2024, 11, 5, 12, 0, tzinfo=timezone.utc)


def _ticket(**overrides: Any) -> ServiceTicket:
    base = ServiceTicket(
        id="ticket-1",
        ticket_number="SRV-20241105-ABC123",
        customer_name="Ravi Kumar",
        customer_phone="9876543210",
        battery_model="EXIDE-150AH",
        issue_description="Battery drains overnight",
        status=TicketStatus.IN_PROGRESS,
        created_by="counter-1",
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
        assigned_battery="sp-battery-1",
    )
    ticket = replace(base, **overrides)
    if ticket.inverter_model and "inverter_resolved" not in overrides:
        ticket = replace(ticket, inverter_resolved=False)
    return ticket


@pytest.fixture
def make_ticket() -> Callable[..., ServiceTicket]:
    return _ticket


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", username="admin", roles=frozenset({Role.ADMIN}))


@pytest.fixture
def counter_staff() -> Actor:
    return Actor(id="counter-1", username="counter", roles=frozenset({Role.COUNTER_STAFF}))


@pytest.fixture
def battery_specialist() -> Actor:
    return Actor(id="sp-battery-1", username="bala", roles=frozenset({Role.SP_BATTERY}))


@pytest.fixture
def inverter_specialist() -> Actor:
    return Actor(id="sp-inverter-1", username="indu", roles=frozenset({Role.SP_INVERTER}))


@pytest.fixture
def context(admin: Actor) -> WorkflowContext:
    return WorkflowContext(actor=admin, now=NOW)
