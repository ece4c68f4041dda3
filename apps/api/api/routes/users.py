from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from apps.api.api.errors import to_http_exception
from apps.api.dependencies.auth import User, require_user_admin
from apps.api.dependencies.services import UserServiceDep
from apps.api.services.errors import ServiceError
from apps.api.services.users import UserProfile
from packages.workflow import Role

router = APIRouter(prefix="/users", tags=["users"])

UserAdmin = Annotated[User, Depends(require_user_admin)]


class UserCreateRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=150)
    display_name: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    roles: list[Role] = Field(default_factory=list)


class RolesUpdateRequest(BaseModel):
    roles: list[Role]


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    display_name: str
    email: str | None
    is_active: bool
    created_at: datetime
    roles: list[Role]


class CreatedUserResponse(UserResponse):
    api_token: str


def _user(profile: UserProfile) -> UserResponse:
    return UserResponse.model_validate(profile)


@router.get("", response_model=list[UserResponse])
async def list_users(service: UserServiceDep, _: UserAdmin) -> list[UserResponse]:
    try:
        profiles = await service.list_users()
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return [_user(profile) for profile in profiles]


@router.post("", response_model=CreatedUserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreateRequest, service: UserServiceDep, user: UserAdmin) -> CreatedUserResponse:
    try:
        created = await service.create_user(
            actor=user.as_actor(),
            username=payload.username,
            display_name=payload.display_name,
            email=payload.email,
            roles=payload.roles,
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return CreatedUserResponse(**_user(created.profile).model_dump(), api_token=created.api_token)


@router.put("/{user_id}/roles", response_model=UserResponse)
async def set_user_roles(
    user_id: str, payload: RolesUpdateRequest, service: UserServiceDep, user: UserAdmin
) -> UserResponse:
    try:
        profile = await service.set_roles(user_id, payload.roles, actor=user.as_actor())
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return _user(profile)
