from decimal import Decimal

import pytest

from packages.workflow import (
    Actor,
    InvalidAmountError,
    Role,
    SpecialistPools,
    StockSource,
    TicketStatus,
    TransactionType,
    WorkflowContext,
    initial_assignment,
    parse_amount,
    transfer_options,
)
from packages.workflow import roles as capabilities
from packages.workflow import summary


def _context(actor, battery=(), inverter=()):
    return WorkflowContext(actor=actor, specialists=SpecialistPools(battery=battery, inverter=inverter))


def test_initial_assignment_picks_first_specialist_of_each_pool(counter_staff):
    result = initial_assignment(
        _context(counter_staff, battery=("b-1", "b-2"), inverter=("i-1",)),
        inverter_model="LUM-900",
    )

    assert result.assigned_battery == "b-1"
    assert result.assigned_inverter == "i-1"
    assert result.status is TicketStatus.IN_PROGRESS


def test_initial_assignment_without_battery_specialist_stays_open(counter_staff):
    result = initial_assignment(_context(counter_staff, inverter=("i-1",)), inverter_model="LUM-900")

    assert result.assigned_battery is None
    assert result.assigned_inverter == "i-1"
    assert result.status is TicketStatus.OPEN


def test_initial_assignment_skips_inverter_pool_without_inverter(counter_staff):
    result = initial_assignment(_context(counter_staff, battery=("b-1",), inverter=("i-1",)), inverter_model=None)

    assert result.assigned_inverter is None
    assert result.status is TicketStatus.IN_PROGRESS


def test_actor_of_parses_role_strings():
    actor = Actor.of("u-1", "meena", ["sp_invertor", Role.SELLER])

    assert actor.has_role(Role.SP_INVERTER)
    assert actor.has_role(Role.SELLER)
    assert not actor.is_admin


def test_specialists_only_resolve_their_own_track(make_ticket, battery_specialist, inverter_specialist, admin):
    ticket = make_ticket(inverter_model="LUM-900", assigned_inverter="sp-inverter-1")
    other = Actor(id="sp-battery-2", username="other", roles=frozenset({Role.SP_BATTERY}))

    assert capabilities.can_resolve_battery(battery_specialist, ticket)
    assert not capabilities.can_resolve_battery(other, ticket)
    assert not capabilities.can_resolve_battery(inverter_specialist, ticket)
    assert capabilities.can_resolve_inverter(inverter_specialist, ticket)
    assert capabilities.can_resolve_inverter(admin, ticket)


def test_service_agent_resolves_tracks_assigned_to_them(make_ticket):
    agent = Actor(id="agent-1", username="agent", roles=frozenset({Role.SERVICE_AGENT}))
    ticket = make_ticket(assigned_battery="agent-1", inverter_model="LUM-900", assigned_inverter="agent-1")

    assert capabilities.can_resolve_battery(agent, ticket)
    assert capabilities.can_resolve_inverter(agent, ticket)


@pytest.mark.parametrize(
    ("check", "allowed", "denied"),
    [
        (capabilities.can_create_ticket, Role.COUNTER_STAFF, Role.SP_BATTERY),
        (capabilities.can_assign_ticket, Role.COUNTER_STAFF, Role.SELLER),
        (capabilities.can_close_ticket, Role.COUNTER_STAFF, Role.WAREHOUSE_STAFF),
        (capabilities.can_manage_products, Role.PROCUREMENT_STAFF, Role.WAREHOUSE_STAFF),
        (capabilities.can_manage_stock, Role.WAREHOUSE_STAFF, Role.SELLER),
        (capabilities.can_record_sale, Role.SELLER, Role.SCRAP_MANAGER),
        (capabilities.can_manage_scrap, Role.SCRAP_MANAGER, Role.SELLER),
    ],
)
def test_capability_matrix(check, allowed, denied):
    assert check(Actor(id="a", username="a", roles=frozenset({allowed})))
    assert check(Actor(id="admin", username="admin", roles=frozenset({Role.ADMIN})))
    assert not check(Actor(id="d", username="d", roles=frozenset({denied})))


def test_only_admins_delete_or_manage_users(counter_staff, admin):
    assert capabilities.can_delete_ticket(admin)
    assert capabilities.can_manage_users(admin)
    assert capabilities.can_delete_products(admin)
    assert not capabilities.can_delete_ticket(counter_staff)
    assert not capabilities.can_manage_users(counter_staff)


def test_transfer_options_by_role(admin):
    warehouse = Actor(id="w", username="w", roles=frozenset({Role.WAREHOUSE_STAFF}))
    procurement = Actor(id="p", username="p", roles=frozenset({Role.PROCUREMENT_STAFF}))
    both = Actor(id="b", username="b", roles=frozenset({Role.WAREHOUSE_STAFF, Role.PROCUREMENT_STAFF}))

    assert transfer_options(warehouse).pairs == ((TransactionType.OUT, StockSource.SHOP),)
    assert transfer_options(procurement).pairs == ((TransactionType.IN, StockSource.SUPPLIER),)
    assert transfer_options(both).types == (TransactionType.OUT, TransactionType.IN)
    assert len(transfer_options(admin).pairs) == len(TransactionType) * len(StockSource)
    assert transfer_options(admin).allows(TransactionType.IN, StockSource.WAREHOUSE)
    assert not transfer_options(warehouse).allows(TransactionType.IN, StockSource.SUPPLIER)


def test_parse_amount_quantizes_and_rejects_negative():
    assert parse_amount("12.346") == Decimal("12.35")
    assert parse_amount(0) == Decimal("0.00")
    with pytest.raises(InvalidAmountError):
        parse_amount(-1)
    with pytest.raises(InvalidAmountError, match="inverter price"):
        parse_amount("x", field_name="inverter price")


def test_parse_amount_upper_bound():
    assert parse_amount("9999999999.99") == Decimal("9999999999.99")
    with pytest.raises(InvalidAmountError, match="must not exceed"):
        parse_amount("10000000000")
    with pytest.raises(InvalidAmountError, match="too large"):
        parse_amount(Decimal("1e30"))


@pytest.mark.parametrize(
    ("amount", "expected"),
    [(Decimal("450"), "₹450"), (Decimal("450.5"), "₹450.50"), (None, "₹0"), (Decimal("0.00"), "₹0")],
)
def test_format_amount(amount, expected):
    assert summary.format_amount(amount) == expected


def test_resolution_notes_mark_pending_tracks(make_ticket):
    ticket = make_ticket(
        inverter_model="LUM-900",
        battery_resolved=True,
        battery_rechargeable=False,
        battery_price=Decimal("75"),
    )

    assert summary.compose_resolution_notes(ticket) == "Battery: rechargeable no, ₹75 | Inverter: pending"
