from collections.abc import Callable
from typing import Annotated, Protocol

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from packages.workflow import Actor, Role
from packages.workflow import roles as capabilities


class TokenResolver(Protocol):
    async def resolve_token(self, token: str) -> Actor | None:
        ...


class User:
    """Authenticated (or anonymous) caller of the API."""

    def __init__(self, username: str, roles: tuple[Role, ...], *, id: str | None = None, anonymous: bool = False):
        self.id = id or username
        self.username = username
        self.roles = roles
        self.is_anonymous = anonymous

    def as_actor(self) -> Actor:
        return Actor(id=self.id, username=self.username, roles=frozenset(self.roles))

    @classmethod
    def from_actor(cls, actor: Actor) -> "User":
        return cls(actor.username, tuple(sorted(actor.roles, key=lambda role: role.value)), id=actor.id)


ANONYMOUS_USERNAME = "anonymous"

bearer_scheme = HTTPBearer(auto_error=False)


def anonymous_user() -> User:
    return User(username=ANONYMOUS_USERNAME, roles=(), anonymous=True)


async def resolve_user_from_token(token: str | None, resolver: TokenResolver | None) -> User:
    """Return the user owning ``token``; no token means an anonymous caller."""

    if token is None:
        return anonymous_user()

    if resolver is None:
        raise HTTPException(status_code=503, detail="User service is not available")

    actor = await resolver.resolve_token(token)
    if actor is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return User.from_actor(actor)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User:
    """Return the user resolved by ``RBACMiddleware`` or resolve the bearer token now."""

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = await resolve_user_from_token(token, getattr(request.app.state, "user_service", None))
    request.state.user = user
    return user


async def require_authenticated(user: Annotated[User, Depends(get_current_user)]) -> User:
    if user.is_anonymous:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def capability_required(check: Callable[[Actor], bool]) -> Callable[[User], User]:
    """Dependency factory gating a route on one of the ``can_*`` capability checks."""

    async def dependency(user: Annotated[User, Depends(require_authenticated)]) -> User:
        if not check(user.as_actor()):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


require_ticket_creator = capability_required(capabilities.can_create_ticket)
require_ticket_assigner = capability_required(capabilities.can_assign_ticket)
require_ticket_closer = capability_required(capabilities.can_close_ticket)
require_ticket_admin = capability_required(capabilities.can_delete_ticket)
require_product_manager = capability_required(capabilities.can_manage_products)
require_product_admin = capability_required(capabilities.can_delete_products)
require_stock_manager = capability_required(capabilities.can_manage_stock)
require_seller = capability_required(capabilities.can_record_sale)
require_scrap_manager = capability_required(capabilities.can_manage_scrap)
require_user_admin = capability_required(capabilities.can_manage_users)

AuthenticatedUser = Annotated[User, Depends(require_authenticated)]
