"""Service ticket workflow: roles, assignment policy and resolution state machine."""

from .assignment import InitialAssignment, initial_assignment
from .context import SpecialistPools, WorkflowContext
from .events import AssignBattery, AssignInverter, CloseTicket, ResolveBattery, ResolveInverter, TicketEvent
from .machine import (
    RejectionReason,
    TicketStateMachine,
    TransitionApplied,
    TransitionRejected,
    TransitionResult,
    apply,
    promote_if_settled,
)
from .money import InvalidAmountError, parse_amount
from .roles import Actor, Role, StockSource, TransactionType, TransferOptions, transfer_options
from .state import PaymentMethod, ServiceTicket, TicketStatus

__all__ = [
    "Actor",
    "AssignBattery",
    "AssignInverter",
    "CloseTicket",
    "InitialAssignment",
    "InvalidAmountError",
    "PaymentMethod",
    "RejectionReason",
    "ResolveBattery",
    "ResolveInverter",
    "Role",
    "ServiceTicket",
    "SpecialistPools",
    "StockSource",
    "TicketEvent",
    "TicketStateMachine",
    "TicketStatus",
    "TransactionType",
    "TransferOptions",
    "TransitionApplied",
    "TransitionRejected",
    "TransitionResult",
    "WorkflowContext",
    "apply",
    "initial_assignment",
    "parse_amount",
    "promote_if_settled",
    "transfer_options",
]
