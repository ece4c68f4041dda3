from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from apps.api.services.users import (
    DuplicateUserError,
    UserNotFoundError,
    UserPermissionError,
    UserService,
    UserValidationError,
    hash_api_token,
)
from packages.db.models import ProfileTable, UserRoleTable
from packages.workflow import Actor, Role

NOW = datetime(2024, 11, 5, 12, 0, tzinfo=timezone.utc)


class DummyTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummySession:
    def __init__(self):
        self.execute = AsyncMock(return_value=MagicMock())
        self.get = AsyncMock(return_value=None)
        self.add = MagicMock()
        self.flush = AsyncMock()

    def begin(self):
        return DummyTransaction()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def added(self, table) -> list:
        return [call.args[0] for call in self.add.call_args_list if isinstance(call.args[0], table)]


def _first(row) -> MagicMock:
    result = MagicMock()
    result.scalars.return_value.first.return_value = row
    return result


def _all(values) -> MagicMock:
    result = MagicMock()
    result.scalars.return_value.all.return_value = values
    return result


def _profile_row(**overrides) -> ProfileTable:
    values = dict(
        id="u-2",
        username="meena",
        display_name="Meena",
        api_token_hash=hash_api_token("old-token"),
        is_active=True,
        created_at=NOW,
        updated_at=NOW,
    )
    values.update(overrides)
    return ProfileTable(**values)


def test_hash_api_token_is_stable_hex_digest():
    digest = hash_api_token("secret")

    assert digest == hash_api_token("secret")
    assert digest != hash_api_token("secret2")
    assert len(digest) == 64
    assert "secret" not in digest


@pytest.mark.asyncio
async def test_create_user_stores_only_token_digest(admin):
    session = DummySession()
    service = UserService(lambda: session)

    created = await service.create_user(actor=admin, username=" meena ", roles=["seller", "seller"])

    profile_row = session.added(ProfileTable)[0]
    assert created.profile.username == "meena"
    assert created.profile.display_name == "meena"
    assert created.profile.roles == (Role.SELLER,)
    assert created.api_token
    assert profile_row.api_token_hash == hash_api_token(created.api_token)
    assert profile_row.api_token_hash != created.api_token
    assert [grant.role for grant in session.added(UserRoleTable)] == ["seller"]


@pytest.mark.asyncio
async def test_create_user_duplicate_username(admin):
    session = DummySession()
    session.flush = AsyncMock(side_effect=IntegrityError("INSERT INTO profiles", {}, Exception("duplicate key")))

    with pytest.raises(DuplicateUserError):
        await UserService(lambda: session).create_user(actor=admin, username="meena")


@pytest.mark.asyncio
async def test_create_user_validation_and_permission(admin):
    service = UserService(lambda: DummySession())

    with pytest.raises(UserValidationError, match="Unknown role"):
        await service.create_user(actor=admin, username="meena", roles=["owner"])
    with pytest.raises(UserValidationError, match="username is required"):
        await service.create_user(actor=admin, username="  ")
    with pytest.raises(UserPermissionError):
        await service.create_user(
            actor=Actor(id="u-3", username="sam", roles=frozenset({Role.SELLER})), username="meena"
        )


@pytest.mark.asyncio
async def test_resolve_token_looks_up_digest():
    session = DummySession()
    session.execute = AsyncMock(side_effect=[_first(_profile_row()), _all(["seller", "counter_staff"])])

    actor = await UserService(lambda: session).resolve_token("old-token")

    assert actor == Actor(id="u-2", username="meena", roles=frozenset({Role.SELLER, Role.COUNTER_STAFF}))
    lookup = session.execute.await_args_list[0].args[0]
    params = lookup.compile().params.values()
    assert hash_api_token("old-token") in params
    assert "old-token" not in params


@pytest.mark.asyncio
async def test_resolve_unknown_token():
    session = DummySession()
    session.execute = AsyncMock(return_value=_first(None))

    assert await UserService(lambda: session).resolve_token("nope") is None


@pytest.mark.asyncio
async def test_admin_cannot_drop_own_admin_role(admin):
    session = DummySession()

    with pytest.raises(UserValidationError, match="own admin role"):
        await UserService(lambda: session).set_roles("admin-1", ["seller"], actor=admin)

    session.get.assert_not_awaited()
    session.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_set_roles_replaces_grants(admin):
    session = DummySession()
    session.get = AsyncMock(return_value=_profile_row())

    profile = await UserService(lambda: session).set_roles("u-2", ["seller", "counter_staff"], actor=admin)

    assert profile.roles == (Role.COUNTER_STAFF, Role.SELLER)
    session.execute.assert_awaited_once()
    assert sorted(grant.role for grant in session.added(UserRoleTable)) == ["counter_staff", "seller"]


@pytest.mark.asyncio
async def test_set_roles_checks_actor_and_target(admin):
    session = DummySession()
    service = UserService(lambda: session)

    with pytest.raises(UserPermissionError):
        await service.set_roles(
            "u-2", ["seller"], actor=Actor(id="u-3", username="sam", roles=frozenset({Role.COUNTER_STAFF}))
        )
    with pytest.raises(UserNotFoundError):
        await service.set_roles("u-9", ["seller"], actor=admin)


@pytest.mark.asyncio
async def test_bootstrap_admin_is_created_with_hashed_token():
    session = DummySession()
    session.execute = AsyncMock(side_effect=[_first(None), _all([])])

    profile = await UserService(lambda: session).ensure_bootstrap_admin(username="owner", token="boot-token")

    row = session.added(ProfileTable)[0]
    assert row.username == "owner"
    assert row.api_token_hash == hash_api_token("boot-token")
    assert [grant.role for grant in session.added(UserRoleTable)] == ["admin"]
    assert profile.roles == (Role.ADMIN,)
    session.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_bootstrap_admin_refreshes_existing_profile():
    session = DummySession()
    row = _profile_row(username="owner", is_active=False)
    session.execute = AsyncMock(side_effect=[_first(row), _all(["admin"])])

    profile = await UserService(lambda: session).ensure_bootstrap_admin(username="owner", token="new-token")

    assert row.api_token_hash == hash_api_token("new-token")
    assert row.is_active is True
    assert profile.roles == (Role.ADMIN,)
    session.add.assert_not_called()
