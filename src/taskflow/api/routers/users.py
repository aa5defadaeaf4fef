"""User management routes."""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from ...deps import CurrentUserDependency, UserServiceDependency
from ...schemas import UserCreate, UserRead, UserUpdate

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[UserRead], summary="List users")
async def list_users(current_user: CurrentUserDependency, service: UserServiceDependency) -> list[UserRead]:
    return [UserRead.model_validate(user) for user in await service.list_users(current_user)]


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED, summary="Create a user")
async def create_user(
    payload: UserCreate,
    current_user: CurrentUserDependency,
    service: UserServiceDependency,
) -> UserRead:
    user = await service.create_user(current_user, payload.model_dump())
    return UserRead.model_validate(user)


@router.get("/me", response_model=UserRead, summary="Current user profile")
async def read_current_user(current_user: CurrentUserDependency) -> UserRead:
    return UserRead.model_validate(current_user)


@router.get("/{user_id}", response_model=UserRead, summary="Retrieve a user")
async def read_user(
    user_id: int,
    current_user: CurrentUserDependency,
    service: UserServiceDependency,
) -> UserRead:
    return UserRead.model_validate(await service.get_user(current_user, user_id))


@router.patch("/{user_id}", response_model=UserRead, summary="Update a user")
async def update_user(
    user_id: int,
    payload: UserUpdate,
    current_user: CurrentUserDependency,
    service: UserServiceDependency,
) -> UserRead:
    user = await service.find_user(user_id)
    user = await service.update_user(user, current_user, payload.model_dump(exclude_unset=True))
    return UserRead.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a user")
async def delete_user(
    user_id: int,
    current_user: CurrentUserDependency,
    service: UserServiceDependency,
) -> Response:
    user = await service.find_user(user_id)
    await service.delete_user(user, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
