from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from apps.api.services.errors import StoreUnavailableError
from apps.api.services.tickets import TicketRepository
from packages.db.models import ServiceTicketTable
from packages.workflow import PaymentMethod, Role, TicketStatus


class DummyTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummySession:
    def __init__(self):
        self.execute = AsyncMock()
        self.get = AsyncMock(return_value=None)
        self.add = MagicMock()

    def begin(self):
        return DummyTransaction()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


def _repository(session: DummySession) -> TicketRepository:
    return TicketRepository(lambda: session)


def _row(**overrides) -> ServiceTicketTable:
    values = dict(
        id="ticket-1",
        ticket_number="SRV-20241105-ABC123",
        customer_name="Ravi Kumar",
        customer_phone="9876543210",
        battery_model="EXIDE-150AH",
        inverter_model="LUM-900",
        issue_description="Battery drains overnight",
        status="CLOSED",
        created_by="counter-1",
        assigned_battery="sp-battery-1",
        battery_resolved=True,
        battery_rechargeable=True,
        battery_price=Decimal("150.00"),
        inverter_resolved=True,
        inverter_outcome=False,
        inverter_price=Decimal("0.00"),
        service_price=Decimal("150.00"),
        payment_method="UPI",
        version=4,
        created_at=datetime(2024, 11, 5, 9, 30),
        updated_at=datetime(2024, 11, 5, 11, 0, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return ServiceTicketTable(**values)


@pytest.mark.asyncio
async def test_ensure_schema_requires_engine():
    repository = _repository(DummySession())

    with pytest.raises(RuntimeError):
        await repository.ensure_schema()


@pytest.mark.asyncio
async def test_get_ticket_maps_row():
    session = DummySession()
    session.get = AsyncMock(return_value=_row())

    ticket = await _repository(session).get_ticket("ticket-1")

    assert ticket is not None
    assert ticket.status is TicketStatus.CLOSED
    assert ticket.payment_method is PaymentMethod.UPI
    assert ticket.battery_price == Decimal("150.00")
    assert ticket.inverter_outcome is False
    assert ticket.created_at.tzinfo is timezone.utc
    assert ticket.version == 4
    assert ticket.total_price == Decimal("150.00")


@pytest.mark.asyncio
async def test_get_missing_ticket_returns_none():
    assert await _repository(DummySession()).get_ticket("missing") is None


@pytest.mark.asyncio
async def test_insert_ticket_adds_row(make_ticket):
    session = DummySession()

    await _repository(session).insert_ticket(make_ticket(inverter_model="LUM-900"))

    row = session.add.call_args.args[0]
    assert isinstance(row, ServiceTicketTable)
    assert row.status == "IN_PROGRESS"
    assert row.inverter_resolved is False
    assert row.version == 1


@pytest.mark.asyncio
async def test_compare_and_swap_returns_none_on_version_mismatch():
    session = DummySession()
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    session.execute = AsyncMock(return_value=result)

    written = await _repository(session).compare_and_swap(
        "ticket-1", 3, {"status": TicketStatus.RESOLVED, "service_price": Decimal("150.00")}
    )

    assert written is None
    session.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_compare_and_swap_returns_written_ticket():
    session = DummySession()
    result = MagicMock()
    result.scalar_one_or_none.return_value = _row(version=5)
    session.execute = AsyncMock(return_value=result)

    written = await _repository(session).compare_and_swap("ticket-1", 4, {"payment_method": PaymentMethod.UPI})

    assert written is not None
    assert written.version == 5


@pytest.mark.asyncio
async def test_delete_ticket_reports_missing_rows():
    session = DummySession()
    session.execute = AsyncMock(return_value=MagicMock(rowcount=0))

    assert await _repository(session).delete_ticket("missing") is False


@pytest.mark.asyncio
async def test_specialist_pools_split_by_role():
    session = DummySession()
    result = MagicMock()
    result.all.return_value = [
        ("b-1", Role.SP_BATTERY.value),
        ("i-1", Role.SP_INVERTER.value),
        ("b-2", Role.SP_BATTERY.value),
    ]
    session.execute = AsyncMock(return_value=result)

    pools = await _repository(session).specialist_pools()

    assert pools.battery == ("b-1", "b-2")
    assert pools.inverter == ("i-1",)


@pytest.mark.asyncio
async def test_count_tickets():
    session = DummySession()
    result = MagicMock()
    result.scalar_one.return_value = 7
    session.execute = AsyncMock(return_value=result)

    assert await _repository(session).count_tickets(status=TicketStatus.OPEN) == 7


@pytest.mark.asyncio
async def test_connectivity_failure_becomes_store_unavailable():
    session = DummySession()
    session.get = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused")))

    with pytest.raises(StoreUnavailableError):
        await _repository(session).get_ticket("ticket-1")
