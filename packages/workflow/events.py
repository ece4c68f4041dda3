from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class AssignBattery:
    specialist: str

    name = "assign_battery"


@dataclass(frozen=True, slots=True)
class AssignInverter:
    specialist: str

    name = "assign_inverter"


@dataclass(frozen=True, slots=True)
class ResolveBattery:
    """Record the battery outcome. ``price`` is validated by the state machine."""

    rechargeable: Any
    price: Any

    name = "resolve_battery"


@dataclass(frozen=True, slots=True)
class ResolveInverter:
    """Record the inverter outcome.

    ``resolved`` says whether the inverter was actually fixed. It ends up in the
    notes and log text only; the track counts as settled either way.
    """

    resolved: Any
    price: Any
    issue_description: str | None = None

    name = "resolve_inverter"


@dataclass(frozen=True, slots=True)
class CloseTicket:
    payment_method: Any

    name = "close_ticket"


TicketEvent = Union[AssignBattery, AssignInverter, ResolveBattery, ResolveInverter, CloseTicket]
