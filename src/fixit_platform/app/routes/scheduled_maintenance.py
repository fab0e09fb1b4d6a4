"""Scheduled maintenance routes."""

import logging

from fastapi import APIRouter, Depends, Query, Request

from fixit_platform.app.routes.auth import client_ip, get_current_user_dep, get_service_context
from fixit_platform.domain.models import User
from fixit_platform.domain.schemas import (
    PublicLinkEnable,
    PublicLinkResponse,
    ScheduledMaintenanceCreate,
    ScheduledMaintenanceResponse,
    ScheduledMaintenanceUpdate,
    ScheduleStatusUpdate,
)
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.scheduled_maintenance_service import ScheduledMaintenanceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scheduled-maintenance", tags=["scheduled-maintenance"])


@router.post("", response_model=ScheduledMaintenanceResponse, status_code=201)
async def create_task(
    data: ScheduledMaintenanceCreate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await ScheduledMaintenanceService(ctx).create_task(data, user, client_ip(request))


@router.get("")
async def list_tasks(
    property_id: str | None = None,
    unit_id: str | None = None,
    status: str | None = None,
    recurring: bool | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    items, total = await ScheduledMaintenanceService(ctx).list_tasks(
        user,
        property_id=property_id,
        unit_id=unit_id,
        status=status,
        recurring=recurring,
        search=search,
        include_inactive=include_inactive,
        page=page,
        limit=limit,
    )
    return {
        "items": [ScheduledMaintenanceResponse.model_validate(t) for t in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/{task_id}", response_model=ScheduledMaintenanceResponse)
async def get_task(
    task_id: str,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await ScheduledMaintenanceService(ctx).get_task(task_id, user)


@router.patch("/{task_id}", response_model=ScheduledMaintenanceResponse)
async def update_task(
    task_id: str,
    data: ScheduledMaintenanceUpdate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await ScheduledMaintenanceService(ctx).update_task(task_id, data, user, client_ip(request))


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    hard_deleted = await ScheduledMaintenanceService(ctx).delete_task(task_id, user, client_ip(request))
    return {"ok": True, "deleted": hard_deleted}


@router.post("/{task_id}/pause", response_model=ScheduledMaintenanceResponse)
async def pause_task(
    task_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await ScheduledMaintenanceService(ctx).pause_task(task_id, user, client_ip(request))


@router.post("/{task_id}/resume", response_model=ScheduledMaintenanceResponse)
async def resume_task(
    task_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await ScheduledMaintenanceService(ctx).resume_task(task_id, user, client_ip(request))


@router.post("/{task_id}/status", response_model=ScheduledMaintenanceResponse)
async def update_status(
    task_id: str,
    data: ScheduleStatusUpdate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await ScheduledMaintenanceService(ctx).update_status(
        task_id, data.status, user, data.notes, client_ip(request),
    )


@router.post("/{task_id}/public-link", response_model=PublicLinkResponse)
async def enable_public_link(
    task_id: str,
    request: Request,
    data: PublicLinkEnable | None = None,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    data = data or PublicLinkEnable()
    return await ScheduledMaintenanceService(ctx).enable_public_link(
        task_id, user, data.expires_in_days, data.rotate, client_ip(request),
    )


@router.delete("/{task_id}/public-link", response_model=ScheduledMaintenanceResponse)
async def disable_public_link(
    task_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await ScheduledMaintenanceService(ctx).disable_public_link(task_id, user, client_ip(request))
