from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from apps.api.dependencies import services as service_deps
from apps.api.dependencies.auth import User, anonymous_user, get_current_user
from apps.api.main import create_app
from apps.api.services.errors import StoreUnavailableError
from apps.api.services.tickets import (
    InvalidTicketTransitionError,
    ServiceLogEntry,
    TicketConflictError,
    TicketNotFoundError,
    TicketPermissionError,
    TicketValidationError,
)
from packages.workflow import (
    CloseTicket,
    PaymentMethod,
    ResolveBattery,
    Role,
    ServiceTicket,
    SpecialistPools,
    TicketStatus,
)

CREATED_AT = datetime(2024, 11, 5, 9, 30, tzinfo=timezone.utc)


def _make_ticket(**overrides) -> ServiceTicket:
    ticket = ServiceTicket(
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
    return replace(ticket, **overrides)


class Session:
    def __init__(self):
        self.user = User("counter", (Role.COUNTER_STAFF,), id="counter-1")


@pytest.fixture
def ticket_client():
    app = create_app()
    service = AsyncMock()
    users = AsyncMock()
    users.display_names = AsyncMock(return_value={})
    session = Session()

    async def override_service():
        return service

    async def override_users():
        return users

    app.dependency_overrides[service_deps.get_ticket_service] = override_service
    app.dependency_overrides[service_deps.get_user_service] = override_users
    app.dependency_overrides[get_current_user] = lambda: session.user

    client = TestClient(app)
    try:
        yield client, service, users, session
    finally:
        app.dependency_overrides.clear()


def test_create_ticket_endpoint_returns_created(ticket_client):
    client, service, _, _ = ticket_client
    service.create_ticket = AsyncMock(return_value=_make_ticket())

    response = client.post(
        "/tickets",
        json={
            "customer_name": "Ravi Kumar",
            "customer_phone": "9876543210",
            "battery_model": "EXIDE-150AH",
            "issue_description": "Battery drains overnight",
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["ticket_number"] == "SRV-20241105-ABC123"
    assert body["status"] == "IN_PROGRESS"
    assert body["version"] == 1
    kwargs = service.create_ticket.await_args.kwargs
    assert kwargs["actor"].id == "counter-1"
    assert kwargs["inverter_model"] is None


def test_create_ticket_requires_counter_role(ticket_client):
    client, service, _, session = ticket_client
    session.user = User("bala", (Role.SP_BATTERY,), id="sp-battery-1")

    response = client.post(
        "/tickets",
        json={"customer_name": "A", "customer_phone": "1", "battery_model": "B", "issue_description": "C"},
    )

    assert response.status_code == 403
    assert response.json()["detail"] == "Insufficient permissions"
    service.create_ticket.assert_not_called()


def test_anonymous_user_is_rejected(ticket_client):
    client, _, _, session = ticket_client
    session.user = anonymous_user()

    response = client.get("/tickets")

    assert response.status_code == 401


def test_list_tickets_passes_filters(ticket_client):
    client, service, _, _ = ticket_client
    service.list_tickets = AsyncMock(return_value=[_make_ticket(status=TicketStatus.OPEN)])

    response = client.get("/tickets", params={"status": "OPEN", "search": "ravi"})

    assert response.status_code == 200
    assert [ticket["status"] for ticket in response.json()] == ["OPEN"]
    service.list_tickets.assert_awaited_with(status=TicketStatus.OPEN, search="ravi")


def test_get_ticket_includes_logs(ticket_client):
    client, service, _, _ = ticket_client
    service.get_ticket = AsyncMock(return_value=_make_ticket())
    service.get_logs = AsyncMock(
        return_value=[
            ServiceLogEntry(
                id="log-1",
                ticket_id="ticket-1",
                action="Ticket created",
                user_id="counter-1",
                created_at=CREATED_AT,
                to_status=TicketStatus.IN_PROGRESS,
            )
        ]
    )

    response = client.get("/tickets/ticket-1")

    assert response.status_code == 200
    logs = response.json()["logs"]
    assert logs[0]["action"] == "Ticket created"
    assert logs[0]["to_status"] == "IN_PROGRESS"


def test_get_missing_ticket_returns_404(ticket_client):
    client, service, _, _ = ticket_client
    service.get_ticket = AsyncMock(side_effect=TicketNotFoundError("Ticket missing not found"))

    response = client.get("/tickets/missing")

    assert response.status_code == 404


def test_resolve_battery_builds_event(ticket_client):
    client, service, _, session = ticket_client
    session.user = User("bala", (Role.SP_BATTERY,), id="sp-battery-1")
    resolved = _make_ticket(
        status=TicketStatus.RESOLVED,
        battery_resolved=True,
        battery_rechargeable=True,
        battery_price=Decimal("450.00"),
        service_price=Decimal("450.00"),
    )
    service.apply_event = AsyncMock(return_value=resolved)

    response = client.post("/tickets/ticket-1/resolve/battery", json={"rechargeable": True, "price": "450"})

    assert response.status_code == 200
    assert response.json()["status"] == "RESOLVED"
    assert Decimal(response.json()["total_price"]) == Decimal("450")
    ticket_id, event = service.apply_event.await_args.args
    assert ticket_id == "ticket-1"
    assert event == ResolveBattery(rechargeable=True, price=Decimal("450"))
    assert service.apply_event.await_args.kwargs["actor"].id == "sp-battery-1"


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (TicketValidationError("price must not be negative"), 422),
        (InvalidTicketTransitionError("Battery track is already resolved"), 409),
        (TicketPermissionError("not allowed"), 403),
        (TicketConflictError("kept changing"), 409),
        (StoreUnavailableError("database unavailable"), 503),
    ],
)
def test_service_errors_map_to_status_codes(ticket_client, error, status_code):
    client, service, _, _ = ticket_client
    service.apply_event = AsyncMock(side_effect=error)

    response = client.post("/tickets/ticket-1/resolve/battery", json={"rechargeable": True, "price": "-5"})

    assert response.status_code == status_code
    assert response.json()["detail"] == str(error)


def test_close_ticket_passes_payment_method(ticket_client):
    client, service, _, _ = ticket_client
    service.apply_event = AsyncMock(
        return_value=_make_ticket(status=TicketStatus.CLOSED, battery_resolved=True, payment_method=PaymentMethod.UPI)
    )

    response = client.post("/tickets/ticket-1/close", json={"payment_method": "UPI"})

    assert response.status_code == 200
    assert response.json()["payment_method"] == "UPI"
    assert service.apply_event.await_args.args[1] == CloseTicket(payment_method="UPI")


def test_delete_ticket_requires_admin(ticket_client):
    client, service, _, session = ticket_client

    assert client.delete("/tickets/ticket-1").status_code == 403

    session.user = User("admin", (Role.ADMIN,), id="admin-1")
    service.delete_ticket = AsyncMock(return_value=None)
    response = client.delete("/tickets/ticket-1")

    assert response.status_code == 204
    service.delete_ticket.assert_awaited_once()


def test_export_tickets_returns_csv(ticket_client):
    client, service, users, _ = ticket_client
    service.list_tickets = AsyncMock(return_value=[_make_ticket(customer_name="Kumar, Ravi")])
    users.display_names = AsyncMock(return_value={"sp-battery-1": "Bala"})

    response = client.get("/tickets/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]
    lines = response.text.splitlines()
    assert lines[0].startswith("Ticket Number,Customer Name,Phone")
    assert '"Kumar, Ravi"' in lines[1]
    assert ",Bala," in lines[1]


def test_print_ticket_renders_html(ticket_client):
    client, service, users, _ = ticket_client
    service.get_ticket = AsyncMock(return_value=_make_ticket())
    users.display_names = AsyncMock(return_value={"sp-battery-1": "Bala"})

    response = client.get("/tickets/ticket-1/print")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "SERVICE TICKET" in response.text
    assert "Bala" in response.text


def test_specialists_lists_display_names(ticket_client):
    client, service, users, _ = ticket_client
    service.specialist_pools = AsyncMock(return_value=SpecialistPools(battery=("b-1",), inverter=("i-1",)))
    users.display_names = AsyncMock(return_value={"b-1": "Bala"})

    response = client.get("/tickets/specialists")

    assert response.status_code == 200
    assert response.json() == {
        "battery": [{"id": "b-1", "display_name": "Bala"}],
        "inverter": [{"id": "i-1", "display_name": "i-1"}],
    }


def test_missing_service_returns_503():
    app = create_app()
    app.dependency_overrides[get_current_user] = lambda: User("counter", (Role.COUNTER_STAFF,), id="counter-1")
    client = TestClient(app)

    response = client.get("/tickets")

    assert response.status_code == 503
    assert response.json()["detail"] == "Ticket service is not available"
