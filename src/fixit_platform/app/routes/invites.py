"""Invitation routes. The /token/* endpoints are public; the rest need a login."""

import logging

from fastapi import APIRouter, Depends, Query, Request

from fixit_platform.app.routes.auth import client_ip, get_current_user_dep, get_service_context
from fixit_platform.domain.enums import InviteStatus
from fixit_platform.domain.models import User
from fixit_platform.domain.schemas import (
    InviteAccept,
    InviteCreate,
    InviteDecline,
    InviteResponse,
    PropertyUserResponse,
    TokenResponse,
    UserResponse,
)
from fixit_platform.services.auth_service import create_access_token
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.invite_service import InviteService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invites", tags=["invites"])


@router.post("", response_model=InviteResponse, status_code=201)
async def create_invite(
    data: InviteCreate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await InviteService(ctx).create_invite(data, user, client_ip(request))


@router.get("")
async def list_invites(
    status: InviteStatus | None = None,
    property_id: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    items, total = await InviteService(ctx).list_invites(user, status, property_id, page, limit)
    return {
        "items": [InviteResponse.model_validate(i) for i in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.post("/{invite_id}/cancel", response_model=InviteResponse)
async def cancel_invite(
    invite_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await InviteService(ctx).cancel_invite(invite_id, user, client_ip(request))


@router.post("/{invite_id}/resend", response_model=InviteResponse)
async def resend_invite(
    invite_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await InviteService(ctx).resend_invite(invite_id, user, client_ip(request))


# ---------------------------------------------------------------------------
# Public, token-addressed
# ---------------------------------------------------------------------------


@router.get("/token/{token}", response_model=InviteResponse)
async def verify_invite(token: str, ctx: ServiceContext = Depends(get_service_context)):
    return await InviteService(ctx).verify_invite(token)


@router.post("/token/{token}/accept")
async def accept_invite(
    token: str,
    data: InviteAccept,
    request: Request,
    ctx: ServiceContext = Depends(get_service_context),
):
    result = await InviteService(ctx).accept_invite(token, data, client_ip(request))
    access_token = create_access_token(result.user.id, result.user.role)
    return {
        "auth": TokenResponse(access_token=access_token, user=UserResponse.model_validate(result.user)),
        "property_user": PropertyUserResponse.model_validate(result.property_user),
        "is_new_user": result.is_new_user,
    }


@router.post("/token/{token}/decline", response_model=InviteResponse)
async def decline_invite(
    token: str,
    data: InviteDecline,
    request: Request,
    ctx: ServiceContext = Depends(get_service_context),
):
    return await InviteService(ctx).decline_invite(token, data.reason, client_ip(request))
