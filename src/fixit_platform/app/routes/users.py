"""User administration routes."""

import logging

from fastapi import APIRouter, Depends, Query, Request

from fixit_platform.app.routes.auth import client_ip, get_current_user_dep, get_service_context
from fixit_platform.domain.models import User
from fixit_platform.domain.schemas import (
    NotificationPreferencesUpdate,
    RoleUpdate,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(
    data: UserCreate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await UserService(ctx).create_user(data, user, client_ip(request))


@router.get("")
async def list_users(
    role: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    items, total = await UserService(ctx).list_users(user, role, search, include_inactive, page, limit)
    return {
        "items": [UserResponse.model_validate(u) for u in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await UserService(ctx).get_user(user_id, user)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    data: UserUpdate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await UserService(ctx).update_user(user_id, data, user, client_ip(request))


@router.put("/{user_id}/role", response_model=UserResponse)
async def update_role(
    user_id: str,
    data: RoleUpdate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await UserService(ctx).update_user_role(user_id, data.role, user, client_ip(request))


@router.post("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(
    user_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await UserService(ctx).deactivate_user(user_id, user, client_ip(request))


@router.put("/{user_id}/notification-preferences", response_model=UserResponse)
async def update_preferences(
    user_id: str,
    data: NotificationPreferencesUpdate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await UserService(ctx).update_notification_preferences(user_id, data, user, client_ip(request))
