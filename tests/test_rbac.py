from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from apps.api.dependencies.auth import (
    User,
    anonymous_user,
    capability_required,
    require_authenticated,
    resolve_user_from_token,
)
from apps.api.main import create_app
from apps.api.services.errors import StoreUnavailableError
from packages.workflow import Actor, Role
from packages.workflow import roles as capabilities


@pytest.mark.asyncio
async def test_capability_required_uses_workflow_checks():
    dependency = capability_required(capabilities.can_manage_scrap)

    allowed = await dependency(User("sam", (Role.SCRAP_MANAGER,)))  # type: ignore[arg-type]
    assert allowed.username == "sam"

    with pytest.raises(HTTPException) as exc:
        await dependency(User("sid", (Role.SP_BATTERY,)))  # type: ignore[arg-type]
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_require_authenticated_rejects_anonymous():
    with pytest.raises(HTTPException) as exc:
        await require_authenticated(anonymous_user())

    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_user_named_anonymous_is_still_authenticated():
    user = User.from_actor(Actor(id="u-9", username="anonymous", roles=frozenset({Role.SELLER})))

    assert user.is_anonymous is False
    assert await require_authenticated(user) is user


@pytest.mark.asyncio
async def test_resolve_user_from_token():
    resolver = AsyncMock()
    resolver.resolve_token = AsyncMock(
        return_value=Actor(id="u-1", username="meena", roles=frozenset({Role.SELLER, Role.COUNTER_STAFF}))
    )

    user = await resolve_user_from_token("secret", resolver)

    assert user.id == "u-1"
    assert user.roles == (Role.COUNTER_STAFF, Role.SELLER)
    assert (await resolve_user_from_token(None, resolver)).is_anonymous

    resolver.resolve_token = AsyncMock(return_value=None)
    with pytest.raises(HTTPException) as exc:
        await resolve_user_from_token("wrong", resolver)
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_resolve_user_without_user_service():
    with pytest.raises(HTTPException) as exc:
        await resolve_user_from_token("secret", None)

    assert exc.value.status_code == 503


def _client_with_user_service(user_service) -> TestClient:
    app = create_app()
    app.state.user_service = user_service
    return TestClient(app)


def test_middleware_resolves_bearer_token():
    user_service = AsyncMock()
    user_service.resolve_token = AsyncMock(
        return_value=Actor(id="u-1", username="meena", roles=frozenset({Role.ADMIN}))
    )
    client = _client_with_user_service(user_service)

    response = client.get("/ping/secure", headers={"Authorization": "Bearer secret"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "id": "u-1", "user": "meena", "roles": ["admin"]}
    user_service.resolve_token.assert_awaited_once_with("secret")


def test_middleware_rejects_unknown_token():
    user_service = AsyncMock()
    user_service.resolve_token = AsyncMock(return_value=None)
    client = _client_with_user_service(user_service)

    response = client.get("/ping", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid authentication credentials"


def test_middleware_rejects_non_bearer_scheme():
    client = _client_with_user_service(AsyncMock())

    response = client.get("/ping", headers={"Authorization": "Basic abc"})

    assert response.status_code == 401


def test_middleware_reports_unavailable_store():
    user_service = AsyncMock()
    user_service.resolve_token = AsyncMock(side_effect=StoreUnavailableError("database unavailable"))
    client = _client_with_user_service(user_service)

    response = client.get("/ping", headers={"Authorization": "Bearer secret"})

    assert response.status_code == 503


def test_public_ping_and_anonymous_secure_ping():
    client = _client_with_user_service(AsyncMock())

    assert client.get("/ping").json() == {"status": "ok"}
    assert client.get("/ping/secure").status_code == 401
