from fastapi import APIRouter

from apps.api.dependencies.auth import AuthenticatedUser

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/secure", summary="Authenticated health check")
async def secure_ping(user: AuthenticatedUser) -> dict[str, object]:
    return {"status": "ok", "id": user.id, "user": user.username, "roles": [role.value for role in user.roles]}
