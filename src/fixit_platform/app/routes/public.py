"""Unauthenticated public-link routes for external vendors."""

import logging

from fastapi import APIRouter, Depends, Request

from fixit_platform.app.routes.auth import client_ip, get_service_context
from fixit_platform.domain.enums import CommentContextType
from fixit_platform.domain.schemas import (
    CommentResponse,
    PublicComment,
    PublicScheduleUpdate,
    PublicUpdate,
)
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.public_link_service import PublicLinkService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/public", tags=["public"])


@router.get("/requests/{token}")
async def view_request(
    token: str,
    request: Request,
    ctx: ServiceContext = Depends(get_service_context),
):
    return await PublicLinkService(ctx).get_public_request(
        token, client_ip(request), request.headers.get("User-Agent"),
    )


@router.post("/requests/{token}/update")
async def update_request(
    token: str,
    data: PublicUpdate,
    request: Request,
    ctx: ServiceContext = Depends(get_service_context),
):
    updated = await PublicLinkService(ctx).public_request_update(
        token, data.name, data.phone, data.status, data.comment_message, client_ip(request),
    )
    return {"ok": True, "status": updated.status}


@router.post("/requests/{token}/comments", response_model=CommentResponse, status_code=201)
async def comment_on_request(
    token: str,
    data: PublicComment,
    request: Request,
    ctx: ServiceContext = Depends(get_service_context),
):
    return await PublicLinkService(ctx).add_public_comment(
        token, data.name, data.phone, data.message, CommentContextType.REQUEST, client_ip(request),
    )


@router.get("/scheduled-maintenance/{token}")
async def view_schedule(
    token: str,
    request: Request,
    ctx: ServiceContext = Depends(get_service_context),
):
    return await PublicLinkService(ctx).get_public_schedule(
        token, client_ip(request), request.headers.get("User-Agent"),
    )


@router.post("/scheduled-maintenance/{token}/update")
async def update_schedule(
    token: str,
    data: PublicScheduleUpdate,
    request: Request,
    ctx: ServiceContext = Depends(get_service_context),
):
    updated = await PublicLinkService(ctx).public_schedule_update(
        token, data.name, data.phone, data.status, data.comment_message, client_ip(request),
    )
    return {"ok": True, "status": updated.status}


@router.post("/scheduled-maintenance/{token}/comments", response_model=CommentResponse, status_code=201)
async def comment_on_schedule(
    token: str,
    data: PublicComment,
    request: Request,
    ctx: ServiceContext = Depends(get_service_context),
):
    return await PublicLinkService(ctx).add_public_comment(
        token, data.name, data.phone, data.message,
        CommentContextType.SCHEDULED_MAINTENANCE, client_ip(request),
    )
