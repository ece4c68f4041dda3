from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.api.services.errors import (
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    ServiceError,
    translate_store_errors,
)
from packages.db.models import ScrapEntryTable
from packages.workflow import Actor, InvalidAmountError, parse_amount
from packages.workflow import roles as capabilities

logger = logging.getLogger(__name__)


class ScrapServiceError(ServiceError):
    """Base error for scrap handling."""


class ScrapEntryNotFoundError(ScrapServiceError, NotFoundError):
    pass


class ScrapValidationError(ScrapServiceError, InvalidInputError):
    pass


class ScrapPermissionError(ScrapServiceError, PermissionDeniedError):
    pass


class ScrapAlreadyOutError(ScrapServiceError, PreconditionFailedError):
    pass


class ScrapStatus(str, Enum):
    IN = "IN"
    OUT = "OUT"


@dataclass(slots=True, frozen=True)
class ScrapEntry:
    id: str
    customer_name: str
    scrap_item: str
    scrap_model: str
    scrap_value: Decimal
    status: ScrapStatus
    recorded_by: str
    created_at: datetime
    marked_out_by: str | None = None
    marked_out_at: datetime | None = None


def _entry(row: ScrapEntryTable) -> ScrapEntry:
    return ScrapEntry(
        id=row.id,
        customer_name=row.customer_name,
        scrap_item=row.scrap_item,
        scrap_model=row.scrap_model,
        scrap_value=Decimal(str(row.scrap_value)),
        status=ScrapStatus(row.status),
        recorded_by=row.recorded_by,
        created_at=row.created_at,
        marked_out_by=row.marked_out_by,
        marked_out_at=row.marked_out_at,
    )


class ScrapService:
    """Scrap intake from customers and outflow to recyclers."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _authorize(self, actor: Actor) -> None:
        if not capabilities.can_manage_scrap(actor):
            raise ScrapPermissionError("You are not allowed to manage scrap")

    @translate_store_errors
    async def record_entry(
        self,
        *,
        actor: Actor,
        customer_name: str,
        scrap_item: str,
        scrap_model: str,
        scrap_value: Any = 0,
    ) -> ScrapEntry:
        self._authorize(actor)
        fields = {
            "customer name": (customer_name or "").strip(),
            "scrap item": (scrap_item or "").strip(),
            "scrap model": (scrap_model or "").strip(),
        }
        missing = [name for name, value in fields.items() if not value]
        if missing:
            raise ScrapValidationError(f"{', '.join(missing)} required")
        try:
            value = parse_amount(scrap_value if scrap_value not in (None, "") else 0, field_name="scrap value")
        except InvalidAmountError as exc:
            raise ScrapValidationError(str(exc)) from None

        row = ScrapEntryTable(
            id=str(uuid.uuid4()),
            customer_name=fields["customer name"],
            scrap_item=fields["scrap item"],
            scrap_model=fields["scrap model"],
            scrap_value=value,
            status=ScrapStatus.IN.value,
            recorded_by=actor.id,
            created_at=datetime.now(timezone.utc),
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
        logger.info("Scrap %s from %s recorded by %s", row.scrap_item, row.customer_name, actor.username)
        return _entry(row)

    @translate_store_errors
    async def mark_out(self, entry_id: str, *, actor: Actor) -> ScrapEntry:
        """Move an entry from ``IN`` to ``OUT``; entries already out are rejected."""

        self._authorize(actor)
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(ScrapEntryTable)
                    .where(ScrapEntryTable.id == entry_id, ScrapEntryTable.status == ScrapStatus.IN.value)
                    .values(status=ScrapStatus.OUT.value, marked_out_by=actor.id, marked_out_at=now)
                    .returning(ScrapEntryTable)
                    .execution_options(synchronize_session=False)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    existing = await session.get(ScrapEntryTable, entry_id)
                    if existing is None:
                        raise ScrapEntryNotFoundError(f"Scrap entry {entry_id} not found")
                    raise ScrapAlreadyOutError(f"Scrap entry {entry_id} is already marked out")
                return _entry(row)

    @translate_store_errors
    async def list_entries(self, *, status: ScrapStatus | None = None, search: str | None = None) -> list[ScrapEntry]:
        query = select(ScrapEntryTable).order_by(ScrapEntryTable.created_at.desc())
        if status is not None:
            query = query.where(ScrapEntryTable.status == status.value)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(
                    ScrapEntryTable.customer_name.ilike(pattern),
                    ScrapEntryTable.scrap_item.ilike(pattern),
                    ScrapEntryTable.scrap_model.ilike(pattern),
                )
            )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_entry(row) for row in result.scalars().all()]
