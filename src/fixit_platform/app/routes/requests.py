"""Maintenance request routes."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile

from fixit_platform.app.routes.auth import client_ip, get_current_user_dep, get_service_context
from fixit_platform.domain.models import User
from fixit_platform.domain.schemas import (
    FeedbackSubmit,
    MediaResponse,
    PublicLinkEnable,
    PublicLinkResponse,
    RequestAssign,
    RequestCreate,
    RequestListResponse,
    RequestResponse,
    RequestStatusUpdate,
    RequestUpdate,
)
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.media_service import MediaUpload
from fixit_platform.services.request_service import RequestService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/requests", tags=["requests"])


async def read_uploads(files: list[UploadFile]) -> list[MediaUpload]:
    """Read multipart files into MediaUpload payloads for the services."""
    uploads = []
    for f in files:
        uploads.append(MediaUpload(
            data=await f.read(),
            filename=f.filename or "upload",
            mime_type=f.content_type or "application/octet-stream",
        ))
    return uploads


@router.post("", response_model=RequestResponse, status_code=201)
async def create_request(
    data: RequestCreate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await RequestService(ctx).create_request(data, user, client_ip(request))


@router.get("", response_model=RequestListResponse)
async def list_requests(
    status: str | None = None,
    category: str | None = None,
    priority: str | None = None,
    property_id: str | None = None,
    unit_id: str | None = None,
    assigned_to_id: str | None = None,
    search: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    items, total = await RequestService(ctx).list_requests(
        user,
        status=status,
        category=category,
        priority=priority,
        property_id=property_id,
        unit_id=unit_id,
        assigned_to_id=assigned_to_id,
        search=search,
        start_date=start_date,
        end_date=end_date,
        include_inactive=include_inactive,
        page=page,
        limit=limit,
    )
    return RequestListResponse(
        items=[RequestResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{request_id}", response_model=RequestResponse)
async def get_request(
    request_id: str,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await RequestService(ctx).get_request(request_id, user)


@router.patch("/{request_id}", response_model=RequestResponse)
async def update_request(
    request_id: str,
    data: RequestUpdate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await RequestService(ctx).update_request(request_id, data, user, client_ip(request))


@router.delete("/{request_id}")
async def delete_request(
    request_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    await RequestService(ctx).delete_request(request_id, user, client_ip(request))
    return {"ok": True}


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("/{request_id}/status", response_model=RequestResponse)
async def update_status(
    request_id: str,
    data: RequestStatusUpdate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await RequestService(ctx).update_status(request_id, data.status, user, data.notes, client_ip(request))


@router.post("/{request_id}/assign", response_model=RequestResponse)
async def assign_request(
    request_id: str,
    data: RequestAssign,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await RequestService(ctx).assign_request(
        request_id, data.assigned_to_id, data.assigned_to_model, user, client_ip(request),
    )


@router.post("/{request_id}/verify", response_model=RequestResponse)
async def verify_request(
    request_id: str,
    request: Request,
    notes: str | None = None,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await RequestService(ctx).verify_request(request_id, user, notes, client_ip(request))


@router.post("/{request_id}/reopen", response_model=RequestResponse)
async def reopen_request(
    request_id: str,
    request: Request,
    notes: str | None = None,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await RequestService(ctx).reopen_request(request_id, user, notes, client_ip(request))


@router.post("/{request_id}/archive", response_model=RequestResponse)
async def archive_request(
    request_id: str,
    request: Request,
    notes: str | None = None,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await RequestService(ctx).archive_request(request_id, user, notes, client_ip(request))


@router.post("/{request_id}/cancel", response_model=RequestResponse)
async def cancel_request(
    request_id: str,
    request: Request,
    notes: str | None = None,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await RequestService(ctx).cancel_request(request_id, user, notes, client_ip(request))


@router.post("/{request_id}/feedback", response_model=RequestResponse)
async def submit_feedback(
    request_id: str,
    data: FeedbackSubmit,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await RequestService(ctx).submit_feedback(
        request_id, data.rating, data.comment, user, client_ip(request),
    )


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


@router.post("/{request_id}/media", response_model=list[MediaResponse], status_code=201)
async def upload_media(
    request_id: str,
    request: Request,
    files: list[UploadFile] = File(...),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    uploads = await read_uploads(files)
    return await RequestService(ctx).upload_media(request_id, uploads, user, client_ip(request))


@router.delete("/{request_id}/media/{media_id}")
async def delete_media(
    request_id: str,
    media_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    await RequestService(ctx).delete_media(request_id, media_id, user, client_ip(request))
    return {"ok": True}


# ---------------------------------------------------------------------------
# Public link
# ---------------------------------------------------------------------------


@router.post("/{request_id}/public-link", response_model=PublicLinkResponse)
async def enable_public_link(
    request_id: str,
    request: Request,
    data: PublicLinkEnable | None = None,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    data = data or PublicLinkEnable()
    return await RequestService(ctx).enable_public_link(
        request_id, user, data.expires_in_days, data.rotate, client_ip(request),
    )


@router.delete("/{request_id}/public-link", response_model=RequestResponse)
async def disable_public_link(
    request_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await RequestService(ctx).disable_public_link(request_id, user, client_ip(request))
