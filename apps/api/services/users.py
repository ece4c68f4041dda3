from __future__ import annotations

import logging
import hashlib
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.api.services.errors import (
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    ServiceError,
    translate_store_errors,
)
from packages.db.models import ProfileTable, UserRoleTable
from packages.workflow import Actor, Role
from packages.workflow import roles as capabilities

logger = logging.getLogger(__name__)


class UserServiceError(ServiceError):
    """Base error for user administration."""


class UserNotFoundError(UserServiceError, NotFoundError):
    pass


class UserValidationError(UserServiceError, InvalidInputError):
    pass


class DuplicateUserError(UserServiceError, PreconditionFailedError):
    pass


class UserPermissionError(UserServiceError, PermissionDeniedError):
    pass


@dataclass(slots=True, frozen=True)
class UserProfile:
    id: str
    username: str
    display_name: str
    email: str | None
    is_active: bool
    created_at: datetime
    roles: tuple[Role, ...] = field(default_factory=tuple)

    def as_actor(self) -> Actor:
        return Actor(id=self.id, username=self.username, roles=frozenset(self.roles))


@dataclass(slots=True, frozen=True)
class CreatedUser:
    """A new profile together with its API token, returned only at creation."""

    profile: UserProfile
    api_token: str


def generate_api_token() -> str:
    return secrets.token_urlsafe(32)


def hash_api_token(token: str) -> str:
    """Digest stored in place of the bearer token itself."""

    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _parse_roles(values: Iterable[Role | str]) -> tuple[Role, ...]:
    roles: list[Role] = []
    for value in values:
        try:
            role = Role(value)
        except ValueError:
            raise UserValidationError(f"Unknown role: {value}") from None
        if role not in roles:
            roles.append(role)
    return tuple(roles)


def _sorted_roles(roles: Iterable[Role]) -> tuple[Role, ...]:
    return tuple(sorted(roles, key=lambda role: role.value))


class UserService:
    """Profiles, role grants and bearer token lookup."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @translate_store_errors
    async def resolve_token(self, token: str) -> Actor | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProfileTable).where(
                    ProfileTable.api_token_hash == hash_api_token(token), ProfileTable.is_active.is_(True)
                )
            )
            profile = result.scalars().first()
            if profile is None:
                return None
            roles = await self._load_roles(session, profile.id)
        return Actor(id=profile.id, username=profile.username, roles=frozenset(roles))

    @translate_store_errors
    async def list_users(self) -> list[UserProfile]:
        async with self._session_factory() as session:
            profiles = (await session.execute(select(ProfileTable).order_by(ProfileTable.created_at.asc()))).scalars().all()
            grants = (await session.execute(select(UserRoleTable))).scalars().all()

        roles_by_user: dict[str, list[Role]] = {}
        for grant in grants:
            roles_by_user.setdefault(grant.user_id, []).append(Role(grant.role))
        return [self._to_profile(row, roles_by_user.get(row.id, ())) for row in profiles]

    @translate_store_errors
    async def get_user(self, user_id: str) -> UserProfile:
        async with self._session_factory() as session:
            row = await session.get(ProfileTable, user_id)
            if row is None:
                raise UserNotFoundError(f"User {user_id} not found")
            roles = await self._load_roles(session, user_id)
        return self._to_profile(row, roles)

    @translate_store_errors
    async def display_names(self, user_ids: Iterable[str | None]) -> dict[str, str]:
        """Map user ids to display names, skipping unknown ids."""

        wanted = {user_id for user_id in user_ids if user_id}
        if not wanted:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(ProfileTable).where(ProfileTable.id.in_(wanted)))
            return {row.id: row.display_name for row in result.scalars().all()}

    @translate_store_errors
    async def create_user(
        self,
        *,
        actor: Actor,
        username: str,
        display_name: str | None = None,
        email: str | None = None,
        roles: Iterable[Role | str] = (),
    ) -> CreatedUser:
        if not capabilities.can_manage_users(actor):
            raise UserPermissionError("Only admins can manage users")
        return await self._insert_user(
            username=username,
            display_name=display_name,
            email=email,
            roles=_parse_roles(roles),
            api_token=generate_api_token(),
        )

    @translate_store_errors
    async def set_roles(self, user_id: str, roles: Iterable[Role | str], *, actor: Actor) -> UserProfile:
        """Replace every role held by ``user_id`` with ``roles``."""

        if not capabilities.can_manage_users(actor):
            raise UserPermissionError("Only admins can manage users")
        parsed = _parse_roles(roles)
        if user_id == actor.id and Role.ADMIN not in parsed:
            raise UserValidationError("Admins cannot remove their own admin role")

        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(ProfileTable, user_id)
                if row is None:
                    raise UserNotFoundError(f"User {user_id} not found")
                await session.execute(delete(UserRoleTable).where(UserRoleTable.user_id == user_id))
                for role in parsed:
                    session.add(UserRoleTable(user_id=user_id, role=role.value))
                row.updated_at = datetime.now(timezone.utc)
            profile = self._to_profile(row, parsed)
        logger.info("Roles of %s set to %s by %s", profile.username, [role.value for role in parsed], actor.username)
        return profile

    @translate_store_errors
    async def ensure_bootstrap_admin(self, *, username: str, token: str) -> UserProfile:
        """Create the first administrator, or refresh its token and role."""

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(select(ProfileTable).where(ProfileTable.username == username))
                row = result.scalars().first()
                if row is None:
                    row = ProfileTable(
                        id=str(uuid.uuid4()),
                        username=username,
                        display_name=username,
                        api_token_hash=hash_api_token(token),
                    )
                    session.add(row)
                    await session.flush()
                    logger.info("Created bootstrap admin %s", username)
                else:
                    row.api_token_hash = hash_api_token(token)
                    row.is_active = True
                roles = await self._load_roles(session, row.id)
                if Role.ADMIN not in roles:
                    session.add(UserRoleTable(user_id=row.id, role=Role.ADMIN.value))
                    roles = (*roles, Role.ADMIN)
            return self._to_profile(row, roles)

    async def _insert_user(
        self,
        *,
        username: str,
        display_name: str | None,
        email: str | None,
        roles: tuple[Role, ...],
        api_token: str,
    ) -> CreatedUser:
        username = (username or "").strip()
        if not username:
            raise UserValidationError("username is required")
        profile_row = ProfileTable(
            id=str(uuid.uuid4()),
            username=username,
            display_name=(display_name or "").strip() or username,
            email=(email or "").strip() or None,
            api_token_hash=hash_api_token(api_token),
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(profile_row)
                    await session.flush()
                    for role in roles:
                        session.add(UserRoleTable(user_id=profile_row.id, role=role.value))
        except IntegrityError as exc:
            raise DuplicateUserError(f"User {username} already exists") from exc
        logger.info("Created user %s with roles %s", username, [role.value for role in roles])
        return CreatedUser(profile=self._to_profile(profile_row, roles), api_token=api_token)

    @staticmethod
    async def _load_roles(session: AsyncSession, user_id: str) -> tuple[Role, ...]:
        result = await session.execute(select(UserRoleTable.role).where(UserRoleTable.user_id == user_id))
        return tuple(Role(value) for value in result.scalars().all())

    @staticmethod
    def _to_profile(row: ProfileTable, roles: Iterable[Role]) -> UserProfile:
        created_at = row.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return UserProfile(
            id=row.id,
            username=row.username,
            display_name=row.display_name,
            email=row.email,
            is_active=row.is_active,
            created_at=created_at,
            roles=_sorted_roles(roles),
        )
