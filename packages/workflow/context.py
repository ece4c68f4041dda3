from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from .roles import Actor
from .summary import CURRENCY_SYMBOL


@dataclass(frozen=True, slots=True)
class SpecialistPools:
    """Ordered pools of users available to work each track."""

    battery: Sequence[str] = ()
    inverter: Sequence[str] = ()


@dataclass(frozen=True, slots=True)
class WorkflowContext:
    """Request scoped inputs for the assignment policy and state machine."""

    actor: Actor
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    specialists: SpecialistPools = field(default_factory=SpecialistPools)
    currency_symbol: str = CURRENCY_SYMBOL
