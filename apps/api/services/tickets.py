from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping

from opentelemetry import trace
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

from apps.api.metrics import MetricsRegistry, definitions, metrics_registry
from apps.api.services.errors import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    ServiceError,
    translate_store_errors,
)
from packages.db.models import ProfileTable, ServiceLogTable, ServiceTicketTable, UserRoleTable
from packages.workflow import (
    Actor,
    AssignBattery,
    AssignInverter,
    CloseTicket,
    PaymentMethod,
    RejectionReason,
    ResolveBattery,
    ResolveInverter,
    Role,
    ServiceTicket,
    SpecialistPools,
    TicketEvent,
    TicketStateMachine,
    TicketStatus,
    TransitionApplied,
    TransitionRejected,
    WorkflowContext,
    initial_assignment,
)
from packages.workflow import roles as capabilities
from packages.workflow.summary import CURRENCY_SYMBOL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class TicketServiceError(ServiceError):
    """Base error for ticket service issues."""


class TicketNotFoundError(TicketServiceError, NotFoundError):
    """Raised when a ticket could not be located."""


class InvalidTicketTransitionError(TicketServiceError, PreconditionFailedError):
    """Raised when the ticket's current state does not allow the event."""


class TicketValidationError(TicketServiceError, InvalidInputError):
    """Raised when an event or creation payload is invalid."""


class TicketPermissionError(TicketServiceError, PermissionDeniedError):
    """Raised when the actor may not perform the requested ticket action."""


class TicketConflictError(TicketServiceError, ConflictError):
    """Raised when concurrent writers exhausted every write attempt."""


@dataclass(slots=True, frozen=True)
class ServiceLogEntry:
    """Audit entry describing one ticket action."""

    id: str
    ticket_id: str
    action: str
    user_id: str
    created_at: datetime
    notes: str | None = None
    from_status: TicketStatus | None = None
    to_status: TicketStatus | None = None


def generate_ticket_number(now: datetime, *, prefix: str = "SRV") -> str:
    """Return a human readable ticket number such as ``SRV-20240611-4F2A9C``."""

    return f"{prefix}-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _ensure_datetime(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


class TicketRepository:
    """Persistence helper wrapping ``service_tickets`` and ``service_logs``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    @translate_store_errors
    async def insert_ticket(self, ticket: ServiceTicket) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(self._ticket_to_table(ticket))

    @translate_store_errors
    async def get_ticket(self, ticket_id: str) -> ServiceTicket | None:
        async with self._session_factory() as session:
            row = await session.get(ServiceTicketTable, ticket_id)
            if row is None:
                return None
            return self._table_to_ticket(row)

    @translate_store_errors
    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[ServiceTicket]:
        query = select(ServiceTicketTable).order_by(ServiceTicketTable.created_at.desc())
        if status is not None:
            query = query.where(ServiceTicketTable.status == status.value)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(
                    ServiceTicketTable.customer_name.ilike(pattern),
                    ServiceTicketTable.customer_phone.ilike(pattern),
                    ServiceTicketTable.battery_model.ilike(pattern),
                    ServiceTicketTable.inverter_model.ilike(pattern),
                    ServiceTicketTable.ticket_number.ilike(pattern),
                )
            )
        if limit is not None:
            query = query.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._table_to_ticket(row) for row in result.scalars().all()]

    @translate_store_errors
    async def count_tickets(self, *, status: TicketStatus, updated_since: datetime | None = None) -> int:
        query = select(func.count()).select_from(ServiceTicketTable).where(ServiceTicketTable.status == status.value)
        if updated_since is not None:
            query = query.where(ServiceTicketTable.updated_at >= updated_since)
        async with self._session_factory() as session:
            return int((await session.execute(query)).scalar_one())

    @translate_store_errors
    async def compare_and_swap(
        self, ticket_id: str, expected_version: int, changes: Mapping[str, Any]
    ) -> ServiceTicket | None:
        """Write ``changes`` only if the row is still at ``expected_version``.

        Returns the written ticket, or ``None`` when another writer got there first
        or the ticket no longer exists.
        """

        values = {key: _column_value(value) for key, value in changes.items()}
        values["version"] = ServiceTicketTable.version + 1
        statement = (
            update(ServiceTicketTable)
            .where(ServiceTicketTable.id == ticket_id, ServiceTicketTable.version == expected_version)
            .values(**values)
            .returning(ServiceTicketTable)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(statement)
                row = result.scalar_one_or_none()
                if row is None:
                    return None
                return self._table_to_ticket(row)

    @translate_store_errors
    async def delete_ticket(self, ticket_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(delete(ServiceTicketTable).where(ServiceTicketTable.id == ticket_id))
                return bool(result.rowcount)

    @translate_store_errors
    async def append_log(self, entry: ServiceLogEntry) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    ServiceLogTable(
                        id=entry.id,
                        ticket_id=entry.ticket_id,
                        action=entry.action,
                        notes=entry.notes,
                        user_id=entry.user_id,
                        from_status=entry.from_status.value if entry.from_status else None,
                        to_status=entry.to_status.value if entry.to_status else None,
                        created_at=entry.created_at,
                    )
                )

    @translate_store_errors
    async def list_logs(self, ticket_id: str) -> list[ServiceLogEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ServiceLogTable)
                .where(ServiceLogTable.ticket_id == ticket_id)
                .order_by(ServiceLogTable.created_at.asc())
            )
            return [self._table_to_log(row) for row in result.scalars().all()]

    @translate_store_errors
    async def specialist_pools(self) -> SpecialistPools:
        """Active specialists per track, oldest profile first."""

        query = (
            select(ProfileTable.id, UserRoleTable.role)
            .join(UserRoleTable, UserRoleTable.user_id == ProfileTable.id)
            .where(
                ProfileTable.is_active.is_(True),
                UserRoleTable.role.in_([Role.SP_BATTERY.value, Role.SP_INVERTER.value]),
            )
            .order_by(ProfileTable.created_at.asc(), ProfileTable.id.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            rows = result.all()
        battery = [user_id for user_id, role in rows if role == Role.SP_BATTERY.value]
        inverter = [user_id for user_id, role in rows if role == Role.SP_INVERTER.value]
        return SpecialistPools(battery=tuple(battery), inverter=tuple(inverter))

    @staticmethod
    def _ticket_to_table(ticket: ServiceTicket) -> ServiceTicketTable:
        return ServiceTicketTable(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            customer_name=ticket.customer_name,
            customer_phone=ticket.customer_phone,
            battery_model=ticket.battery_model,
            inverter_model=ticket.inverter_model,
            issue_description=ticket.issue_description,
            status=ticket.status.value,
            created_by=ticket.created_by,
            assigned_battery=ticket.assigned_battery,
            assigned_inverter=ticket.assigned_inverter,
            battery_resolved=ticket.battery_resolved,
            inverter_resolved=ticket.inverter_resolved,
            version=ticket.version,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )

    @staticmethod
    def _table_to_ticket(row: ServiceTicketTable) -> ServiceTicket:
        return ServiceTicket(
            id=row.id,
            ticket_number=row.ticket_number,
            customer_name=row.customer_name,
            customer_phone=row.customer_phone,
            battery_model=row.battery_model,
            issue_description=row.issue_description,
            status=TicketStatus(row.status),
            created_by=row.created_by,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
            inverter_model=row.inverter_model,
            assigned_battery=row.assigned_battery,
            assigned_inverter=row.assigned_inverter,
            battery_resolved=bool(row.battery_resolved),
            battery_rechargeable=row.battery_rechargeable,
            battery_price=_decimal(row.battery_price),
            battery_resolved_by=row.battery_resolved_by,
            battery_resolved_at=_ensure_datetime(row.battery_resolved_at),
            inverter_resolved=row.inverter_resolved,
            inverter_outcome=row.inverter_outcome,
            inverter_price=_decimal(row.inverter_price),
            inverter_issue_description=row.inverter_issue_description,
            inverter_resolved_by=row.inverter_resolved_by,
            inverter_resolved_at=_ensure_datetime(row.inverter_resolved_at),
            resolution_notes=row.resolution_notes,
            service_price=_decimal(row.service_price),
            payment_method=PaymentMethod(row.payment_method) if row.payment_method else None,
            version=row.version,
        )

    @staticmethod
    def _table_to_log(row: ServiceLogTable) -> ServiceLogEntry:
        return ServiceLogEntry(
            id=row.id,
            ticket_id=row.ticket_id,
            action=row.action,
            notes=row.notes,
            user_id=row.user_id,
            from_status=TicketStatus(row.from_status) if row.from_status else None,
            to_status=TicketStatus(row.to_status) if row.to_status else None,
            created_at=_ensure_datetime(row.created_at),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _required_text(value: str | None, field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise TicketValidationError(f"{field_name} is required")
    return text


class TicketService:
    """Orchestrates ticket creation, workflow events and the service log."""

    def __init__(
        self,
        repository: TicketRepository,
        *,
        state_machine: TicketStateMachine | None = None,
        write_attempts: int = 3,
        ticket_number_prefix: str = "SRV",
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], datetime] = _utcnow,
        currency_symbol: str = CURRENCY_SYMBOL,
    ) -> None:
        self._repository = repository
        self._machine = state_machine or TicketStateMachine()
        self._write_attempts = max(1, write_attempts)
        self._ticket_number_prefix = ticket_number_prefix
        self._metrics = metrics or metrics_registry
        self._clock = clock
        self._currency_symbol = currency_symbol

    async def specialist_pools(self) -> SpecialistPools:
        return await self._repository.specialist_pools()

    async def create_ticket(
        self,
        *,
        actor: Actor,
        customer_name: str,
        customer_phone: str,
        battery_model: str,
        issue_description: str,
        inverter_model: str | None = None,
    ) -> ServiceTicket:
        if not capabilities.can_create_ticket(actor):
            raise TicketPermissionError("Only counter staff or admins can create tickets")

        customer_name = _required_text(customer_name, "customer name")
        customer_phone = _required_text(customer_phone, "customer phone")
        battery_model = _required_text(battery_model, "battery model")
        issue_description = _required_text(issue_description, "issue description")
        inverter_model = (inverter_model or "").strip() or None

        now = self._clock()
        pools = await self._repository.specialist_pools()
        assignment = initial_assignment(
            WorkflowContext(actor=actor, now=now, specialists=pools, currency_symbol=self._currency_symbol),
            inverter_model=inverter_model,
        )
        ticket = ServiceTicket(
            id=str(uuid.uuid4()),
            ticket_number=generate_ticket_number(now, prefix=self._ticket_number_prefix),
            customer_name=customer_name,
            customer_phone=customer_phone,
            battery_model=battery_model,
            issue_description=issue_description,
            status=assignment.status,
            created_by=actor.id,
            created_at=now,
            updated_at=now,
            inverter_model=inverter_model,
            assigned_battery=assignment.assigned_battery,
            assigned_inverter=assignment.assigned_inverter,
            inverter_resolved=False if inverter_model else None,
        )
        await self._repository.insert_ticket(ticket)
        logger.info("Created ticket %s with status %s", ticket.ticket_number, ticket.status.value)
        self._metrics.counter(definitions.TICKETS_CREATED).inc(labels={"status": ticket.status.value})

        await self._append_log(
            ticket.id,
            action="Ticket created",
            actor=actor,
            from_status=None,
            to_status=ticket.status,
            now=now,
        )
        return ticket

    async def get_ticket(self, ticket_id: str) -> ServiceTicket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(
        self, *, status: TicketStatus | None = None, search: str | None = None
    ) -> list[ServiceTicket]:
        return await self._repository.list_tickets(status=status, search=search)

    async def get_logs(self, ticket_id: str) -> list[ServiceLogEntry]:
        await self.get_ticket(ticket_id)
        return await self._repository.list_logs(ticket_id)

    async def delete_ticket(self, ticket_id: str, *, actor: Actor) -> None:
        if not capabilities.can_delete_ticket(actor):
            raise TicketPermissionError("Only admins can delete tickets")
        deleted = await self._repository.delete_ticket(ticket_id)
        if not deleted:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        logger.info("Ticket %s deleted by %s", ticket_id, actor.username)

    async def apply_event(self, ticket_id: str, event: TicketEvent, *, actor: Actor) -> ServiceTicket:
        """Apply ``event`` as an atomic read-modify-write on the ticket row.

        A lost compare-and-swap re-reads the ticket and re-runs the event against
        the fresh state, so a precondition that became false is reported as such.
        """

        duration = self._metrics.distribution(definitions.TICKET_EVENT_DURATION)
        with tracer.start_as_current_span("tickets.apply_event") as span, duration.time(labels={"event": event.name}):
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("ticket.event", event.name)
            for attempt in range(1, self._write_attempts + 1):
                ticket = await self.get_ticket(ticket_id)
                self._authorize(event, ticket, actor)

                context = self._context(actor)
                result = self._machine.apply(ticket, event, context)
                if isinstance(result, TransitionRejected):
                    self._reject(event, result)

                written = await self._repository.compare_and_swap(ticket.id, ticket.version, result.changes)
                if written is None:
                    self._metrics.counter(definitions.TICKET_WRITE_CONFLICTS).inc()
                    logger.info(
                        "Ticket %s changed while applying %s (attempt %d/%d)",
                        ticket_id,
                        event.name,
                        attempt,
                        self._write_attempts,
                    )
                    continue

                await self._log_transition(result, actor, context.now)
                self._metrics.counter(definitions.TICKET_EVENTS).inc(labels={"event": event.name})
                span.set_attribute("ticket.status", written.status.value)
                return await self._settle(written, actor)

        raise TicketConflictError(f"Ticket {ticket_id} kept changing; please retry")

    async def _settle(self, ticket: ServiceTicket, actor: Actor) -> ServiceTicket:
        """Promote a ticket whose tracks are all settled but status still lags."""

        for _ in range(self._write_attempts):
            context = self._context(actor)
            promotion = self._machine.promote_if_settled(ticket, context)
            if promotion is None:
                return ticket
            written = await self._repository.compare_and_swap(ticket.id, ticket.version, promotion.changes)
            if written is not None:
                await self._log_transition(promotion, actor, context.now)
                return written
            self._metrics.counter(definitions.TICKET_WRITE_CONFLICTS).inc()
            ticket = await self.get_ticket(ticket.id)
        return ticket

    def _context(self, actor: Actor) -> WorkflowContext:
        return WorkflowContext(actor=actor, now=self._clock(), currency_symbol=self._currency_symbol)

    def _authorize(self, event: TicketEvent, ticket: ServiceTicket, actor: Actor) -> None:
        if isinstance(event, (AssignBattery, AssignInverter)):
            allowed = capabilities.can_assign_ticket(actor)
        elif isinstance(event, ResolveBattery):
            allowed = capabilities.can_resolve_battery(actor, ticket)
        elif isinstance(event, ResolveInverter):
            allowed = capabilities.can_resolve_inverter(actor, ticket)
        elif isinstance(event, CloseTicket):
            allowed = capabilities.can_close_ticket(actor)
        else:
            allowed = False
        if not allowed:
            raise TicketPermissionError(f"{actor.username} is not allowed to {event.name.replace('_', ' ')}")

    def _reject(self, event: TicketEvent, rejection: TransitionRejected) -> None:
        self._metrics.counter(definitions.TICKET_REJECTIONS).inc(
            labels={"event": event.name, "reason": rejection.reason.value}
        )
        if rejection.reason is RejectionReason.INVALID_INPUT:
            raise TicketValidationError(rejection.message)
        raise InvalidTicketTransitionError(rejection.message)

    async def _log_transition(self, result: TransitionApplied, actor: Actor, now: datetime) -> None:
        await self._append_log(
            result.ticket.id,
            action=result.action,
            actor=actor,
            from_status=result.from_status,
            to_status=result.to_status,
            notes=result.ticket.resolution_notes if result.status_changed else None,
            now=now,
        )

    async def _append_log(
        self,
        ticket_id: str,
        *,
        action: str,
        actor: Actor,
        from_status: TicketStatus | None,
        to_status: TicketStatus | None,
        now: datetime,
        notes: str | None = None,
    ) -> None:
        entry = ServiceLogEntry(
            id=str(uuid.uuid4()),
            ticket_id=ticket_id,
            action=action,
            notes=notes,
            user_id=actor.id,
            from_status=from_status,
            to_status=to_status,
            created_at=now,
        )
        try:
            await self._repository.append_log(entry)
        except Exception:
            self._metrics.counter(definitions.SERVICE_LOG_FAILURES).inc()
            logger.warning("Failed to append service log for ticket %s: %s", ticket_id, action, exc_info=True)


__all__ = [
    "InvalidTicketTransitionError",
    "ServiceLogEntry",
    "TicketConflictError",
    "TicketNotFoundError",
    "TicketPermissionError",
    "TicketRepository",
    "TicketService",
    "TicketServiceError",
    "TicketValidationError",
    "generate_ticket_number",
]
