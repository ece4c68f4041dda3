from __future__ import annotations

from dataclasses import dataclass

from .context import WorkflowContext
from .state import TicketStatus


@dataclass(frozen=True, slots=True)
class InitialAssignment:
    """Specialists and status picked for a freshly created ticket."""

    assigned_battery: str | None
    assigned_inverter: str | None
    status: TicketStatus


def initial_assignment(context: WorkflowContext, *, inverter_model: str | None) -> InitialAssignment:
    """Route a new ticket to the first available specialist of each track.

    Only the battery track drives the initial status since it is mandatory.
    Empty pools leave the ticket ``OPEN`` for manual assignment later.
    """

    pools = context.specialists
    battery = next(iter(pools.battery), None)
    inverter = next(iter(pools.inverter), None) if inverter_model else None
    status = TicketStatus.IN_PROGRESS if battery is not None else TicketStatus.OPEN
    return InitialAssignment(assigned_battery=battery, assigned_inverter=inverter, status=status)
