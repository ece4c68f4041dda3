from __future__ import annotations

import functools
from typing import Awaitable, Callable, ParamSpec, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError


class ServiceError(RuntimeError):
    """Base error for service layer failures."""


class NotFoundError(ServiceError):
    """Raised when an operation targets a missing record."""


class InvalidInputError(ServiceError):
    """Raised when a payload is malformed or out of range."""


class PreconditionFailedError(ServiceError):
    """Raised when the record is not in a state that allows the operation."""


class PermissionDeniedError(ServiceError):
    """Raised when the acting user lacks the capability for an operation."""


class ConflictError(ServiceError):
    """Raised when a concurrent writer kept winning the race for a record."""


class StoreUnavailableError(ServiceError):
    """Raised when the database cannot be reached."""


P = ParamSpec("P")
R = TypeVar("R")


def translate_store_errors(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
    """Re-raise driver level connectivity failures as ``StoreUnavailableError``."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await func(*args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailableError("Database is unavailable") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise StoreUnavailableError("Database connection was lost") from exc
            raise

    return wrapper
