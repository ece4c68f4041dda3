from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from packages.workflow import Actor, Role


@dataclass(frozen=True, slots=True)
class AuthProfile:
    """Signed-in user as seen by the dashboard."""

    id: str
    username: str
    token: str | None
    roles: tuple[Role, ...]

    @property
    def is_anonymous(self) -> bool:
        return self.token is None

    def as_actor(self) -> Actor:
        return Actor(id=self.id, username=self.username, roles=frozenset(self.roles))


def anonymous_profile() -> AuthProfile:
    return AuthProfile(id="anonymous", username="anonymous", token=None, roles=())


def profile_from_ping(token: str, payload: Mapping[str, Any]) -> AuthProfile:
    """Build a profile from a ``/ping/secure`` response; unknown roles are ignored."""

    roles: list[Role] = []
    for value in payload.get("roles", []):
        try:
            roles.append(Role(value))
        except ValueError:
            continue
    username = str(payload.get("user", ""))
    return AuthProfile(
        id=str(payload.get("id") or username),
        username=username,
        token=token,
        roles=tuple(roles),
    )
