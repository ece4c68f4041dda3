"""Bearer token authentication for every request."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from apps.api.core.logging import bind_actor, release_actor
from apps.api.dependencies.auth import User, resolve_user_from_token
from apps.api.services.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


def _bearer_token(authorization: str | None) -> tuple[bool, str | None]:
    """Split an ``Authorization`` header into (well formed, token)."""

    if not authorization:
        return True, None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return False, None
    return True, credentials.strip() or None


class RBACMiddleware(BaseHTTPMiddleware):
    """Resolve the caller once and expose it as ``request.state.user``.

    Requests without a token continue as the anonymous user; route
    dependencies decide whether that is acceptable.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        well_formed, token = _bearer_token(request.headers.get("Authorization"))
        if not well_formed:
            return JSONResponse(status_code=401, content={"detail": "Invalid authentication credentials"})

        try:
            user: User = await resolve_user_from_token(token, getattr(request.app.state, "user_service", None))
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
        except StoreUnavailableError as exc:
            logger.warning("Token lookup failed: %s", exc)
            return JSONResponse(status_code=503, content={"detail": str(exc)})

        request.state.user = user
        bound = bind_actor(user.username)
        try:
            return await call_next(request)
        finally:
            release_actor(bound)
