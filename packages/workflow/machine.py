from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping, Union

from . import summary
from .context import WorkflowContext
from .events import AssignBattery, AssignInverter, CloseTicket, ResolveBattery, ResolveInverter, TicketEvent
from .money import CENTS, InvalidAmountError, parse_amount
from .state import PaymentMethod, ServiceTicket, TicketStatus


class RejectionReason(str, Enum):
    """Why an event was refused."""

    PRECONDITION_FAILED = "precondition_failed"
    INVALID_INPUT = "invalid_input"


@dataclass(frozen=True, slots=True)
class TransitionRejected:
    reason: RejectionReason
    message: str


@dataclass(frozen=True, slots=True)
class TransitionApplied:
    """Outcome of an accepted event.

    ``changes`` holds every field written by the event, including
    ``updated_at``, and ``ticket`` is the input ticket with those changes applied.
    """

    ticket: ServiceTicket
    changes: Mapping[str, Any]
    action: str
    from_status: TicketStatus
    to_status: TicketStatus

    @property
    def status_changed(self) -> bool:
        return self.from_status != self.to_status


TransitionResult = Union[TransitionApplied, TransitionRejected]


class _Rejection(Exception):
    def __init__(self, reason: RejectionReason, message: str) -> None:
        super().__init__(message)
        self.result = TransitionRejected(reason=reason, message=message)


def _precondition(message: str) -> _Rejection:
    return _Rejection(RejectionReason.PRECONDITION_FAILED, message)


def _invalid(message: str) -> _Rejection:
    return _Rejection(RejectionReason.INVALID_INPUT, message)


def _price(value: Any, field_name: str) -> Decimal:
    try:
        return parse_amount(value, field_name=field_name)
    except InvalidAmountError as exc:
        raise _invalid(str(exc)) from None


def _require_choice(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise _invalid(f"{field_name} must be answered yes or no")
    return value


def _parse_payment_method(value: Any) -> PaymentMethod:
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value).strip().upper())
    except ValueError:
        options = ", ".join(method.value for method in PaymentMethod)
        raise _invalid(f"payment method must be one of {options}") from None


def _require_specialist(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise _invalid("specialist is required")
    return value.strip()


Changes = dict[str, Any]
_Handler = Callable[[ServiceTicket, Any, WorkflowContext], "tuple[Changes, str]"]


class TicketStateMachine:
    """Pure decision logic for the dual track ticket workflow."""

    _TRANSITIONS: dict[TicketStatus, set[TicketStatus]] = {
        TicketStatus.OPEN: {TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED},
        TicketStatus.IN_PROGRESS: {TicketStatus.RESOLVED},
        TicketStatus.RESOLVED: {TicketStatus.CLOSED},
        TicketStatus.CLOSED: set(),
    }

    def __init__(self) -> None:
        self._handlers: dict[type, _Handler] = {
            AssignBattery: self._assign_battery,
            AssignInverter: self._assign_inverter,
            ResolveBattery: self._resolve_battery,
            ResolveInverter: self._resolve_inverter,
            CloseTicket: self._close,
        }

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        if current == new:
            return True
        return new in cls._TRANSITIONS.get(current, set())

    def apply(self, ticket: ServiceTicket, event: TicketEvent, context: WorkflowContext) -> TransitionResult:
        handler = self._handlers.get(type(event))
        if handler is None:
            return TransitionRejected(RejectionReason.INVALID_INPUT, f"Unsupported event {type(event).__name__}")
        try:
            changes, action = handler(ticket, event, context)
        except _Rejection as exc:
            return exc.result
        return self._finish(ticket, changes, action, context)

    def promote_if_settled(self, ticket: ServiceTicket, context: WorkflowContext) -> TransitionApplied | None:
        """Re-run the completion guard on an already persisted ticket."""

        if ticket.status.is_settled or not ticket.tracks_settled:
            return None
        return self._finish(ticket, {}, f"Status changed to {TicketStatus.RESOLVED.value}", context)

    def _finish(
        self,
        ticket: ServiceTicket,
        changes: Changes,
        action: str,
        context: WorkflowContext,
    ) -> TransitionApplied:
        changes["updated_at"] = context.now
        candidate = replace(ticket, **changes)
        if not candidate.status.is_settled and candidate.tracks_settled:
            changes["status"] = TicketStatus.RESOLVED
            changes["service_price"] = candidate.total_price.quantize(CENTS)
            changes["resolution_notes"] = summary.compose_resolution_notes(
                candidate, symbol=context.currency_symbol
            )
            candidate = replace(ticket, **changes)

        if not self.can_transition(ticket.status, candidate.status):
            raise ValueError(f"Illegal transition {ticket.status.value} -> {candidate.status.value}")

        return TransitionApplied(
            ticket=candidate,
            changes=changes,
            action=action,
            from_status=ticket.status,
            to_status=candidate.status,
        )

    def _assign_battery(self, ticket: ServiceTicket, event: AssignBattery, context: WorkflowContext) -> tuple[Changes, str]:
        if ticket.status.is_settled or ticket.battery_resolved:
            raise _precondition("Battery track is already resolved")
        specialist = _require_specialist(event.specialist)
        if ticket.assigned_battery == specialist:
            raise _precondition("Battery specialist is already assigned")

        changes: Changes = {"assigned_battery": specialist}
        if ticket.status == TicketStatus.OPEN:
            changes["status"] = TicketStatus.IN_PROGRESS
        return changes, "Battery specialist assigned"

    def _assign_inverter(self, ticket: ServiceTicket, event: AssignInverter, context: WorkflowContext) -> tuple[Changes, str]:
        if not ticket.has_inverter:
            raise _precondition("Ticket has no inverter track")
        if ticket.status.is_settled or ticket.inverter_resolved:
            raise _precondition("Inverter track is already resolved")
        specialist = _require_specialist(event.specialist)
        if ticket.assigned_inverter == specialist:
            raise _precondition("Inverter specialist is already assigned")
        return {"assigned_inverter": specialist}, "Inverter specialist assigned"

    def _resolve_battery(self, ticket: ServiceTicket, event: ResolveBattery, context: WorkflowContext) -> tuple[Changes, str]:
        if ticket.battery_resolved or ticket.status == TicketStatus.CLOSED:
            raise _precondition("Battery track is already resolved")
        rechargeable = _require_choice(event.rechargeable, "rechargeable")
        price = _price(event.price, "battery price")

        changes: Changes = {
            "battery_resolved": True,
            "battery_rechargeable": rechargeable,
            "battery_price": price,
            "battery_resolved_by": context.actor.id,
            "battery_resolved_at": context.now,
        }
        return changes, summary.battery_log_action(rechargeable, price, symbol=context.currency_symbol)

    def _resolve_inverter(self, ticket: ServiceTicket, event: ResolveInverter, context: WorkflowContext) -> tuple[Changes, str]:
        if not ticket.has_inverter:
            raise _precondition("Ticket has no inverter track")
        if ticket.inverter_resolved or ticket.status == TicketStatus.CLOSED:
            raise _precondition("Inverter track is already resolved")
        resolved = _require_choice(event.resolved, "resolved")
        price = _price(event.price, "inverter price")
        issue = (event.issue_description or "").strip() or None

        changes: Changes = {
            "inverter_resolved": True,
            "inverter_outcome": resolved,
            "inverter_price": price,
            "inverter_issue_description": issue,
            "inverter_resolved_by": context.actor.id,
            "inverter_resolved_at": context.now,
        }
        return changes, summary.inverter_log_action(resolved, price, issue, symbol=context.currency_symbol)

    def _close(self, ticket: ServiceTicket, event: CloseTicket, context: WorkflowContext) -> tuple[Changes, str]:
        if ticket.status != TicketStatus.RESOLVED or not ticket.tracks_settled:
            raise _precondition(f"Only resolved tickets can be closed (status is {ticket.status.value})")
        method = _parse_payment_method(event.payment_method)
        changes: Changes = {"payment_method": method, "status": TicketStatus.CLOSED}
        return changes, f"Ticket closed - Payment: {method.value}"


_default_machine = TicketStateMachine()


def apply(ticket: ServiceTicket, event: TicketEvent, context: WorkflowContext) -> TransitionResult:
    """Module level entry point using a shared, stateless machine."""

    return _default_machine.apply(ticket, event, context)


def promote_if_settled(ticket: ServiceTicket, context: WorkflowContext) -> TransitionApplied | None:
    return _default_machine.promote_if_settled(ticket, context)
