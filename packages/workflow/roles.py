"""Roles and capability checks.

Every permission decision in the service goes through one of the ``can_*``
functions below instead of comparing role strings at call sites.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from .state import ServiceTicket


class Role(str, Enum):
    """Closed set of roles a user may hold."""

    ADMIN = "admin"
    COUNTER_STAFF = "counter_staff"
    SERVICE_AGENT = "service_agent"
    WAREHOUSE_STAFF = "warehouse_staff"
    PROCUREMENT_STAFF = "procurement_staff"
    SP_BATTERY = "sp_battery"
    SP_INVERTER = "sp_invertor"
    SELLER = "seller"
    SCRAP_MANAGER = "scrap_manager"


class TransactionType(str, Enum):
    IN = "IN"
    OUT = "OUT"


class StockSource(str, Enum):
    SHOP = "SHOP"
    SUPPLIER = "SUPPLIER"
    WAREHOUSE = "WAREHOUSE"


@dataclass(frozen=True, slots=True)
class Actor:
    """Identity of the user performing an action."""

    id: str
    username: str
    roles: frozenset[Role] = field(default_factory=frozenset)

    @classmethod
    def of(cls, id: str, username: str, roles: Iterable[Role | str]) -> "Actor":
        return cls(id=id, username=username, roles=frozenset(Role(role) for role in roles))

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def has_any_role(self, *roles: Role) -> bool:
        return any(role in self.roles for role in roles)

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles


@dataclass(frozen=True, slots=True)
class TransferOptions:
    """Transaction type and source pairs a user may pick for a stock transfer."""

    pairs: tuple[tuple[TransactionType, StockSource], ...]

    @property
    def types(self) -> tuple[TransactionType, ...]:
        return tuple(dict.fromkeys(kind for kind, _ in self.pairs))

    @property
    def sources(self) -> tuple[StockSource, ...]:
        return tuple(dict.fromkeys(source for _, source in self.pairs))

    def allows(self, transaction_type: TransactionType, source: StockSource) -> bool:
        return (transaction_type, source) in self.pairs


def can_create_ticket(actor: Actor) -> bool:
    return actor.has_any_role(Role.ADMIN, Role.COUNTER_STAFF)


def can_assign_ticket(actor: Actor) -> bool:
    return actor.has_any_role(Role.ADMIN, Role.COUNTER_STAFF)


def can_resolve_battery(actor: Actor, ticket: ServiceTicket) -> bool:
    # Specialists may only settle tracks assigned to them.
    if actor.is_admin:
        return True
    if not actor.has_any_role(Role.SP_BATTERY, Role.SERVICE_AGENT):
        return False
    return ticket.assigned_battery == actor.id


def can_resolve_inverter(actor: Actor, ticket: ServiceTicket) -> bool:
    if actor.is_admin:
        return True
    if not actor.has_any_role(Role.SP_INVERTER, Role.SERVICE_AGENT):
        return False
    return ticket.assigned_inverter == actor.id


def can_close_ticket(actor: Actor) -> bool:
    return actor.has_any_role(Role.ADMIN, Role.COUNTER_STAFF)


def can_delete_ticket(actor: Actor) -> bool:
    return actor.is_admin


def can_manage_products(actor: Actor) -> bool:
    return actor.has_any_role(Role.ADMIN, Role.PROCUREMENT_STAFF)


def can_delete_products(actor: Actor) -> bool:
    return actor.is_admin


def can_manage_stock(actor: Actor) -> bool:
    return actor.has_any_role(Role.ADMIN, Role.WAREHOUSE_STAFF, Role.PROCUREMENT_STAFF)


def can_record_sale(actor: Actor) -> bool:
    return actor.has_any_role(Role.ADMIN, Role.COUNTER_STAFF, Role.SELLER)


def can_manage_scrap(actor: Actor) -> bool:
    return actor.has_any_role(Role.ADMIN, Role.COUNTER_STAFF, Role.SCRAP_MANAGER)


def can_manage_users(actor: Actor) -> bool:
    return actor.is_admin


def transfer_options(actor: Actor) -> TransferOptions:
    """Return the stock transfer choices available to ``actor``.

    Admins may move stock in any direction. Warehouse staff only ship stock out
    to the shop and procurement staff only book stock in from suppliers.
    """

    if actor.is_admin:
        return TransferOptions(
            tuple((kind, source) for kind in TransactionType for source in StockSource)
        )

    pairs: list[tuple[TransactionType, StockSource]] = []
    if actor.has_role(Role.WAREHOUSE_STAFF):
        pairs.append((TransactionType.OUT, StockSource.SHOP))
    if actor.has_role(Role.PROCUREMENT_STAFF):
        pairs.append((TransactionType.IN, StockSource.SUPPLIER))
    return TransferOptions(tuple(pairs))
