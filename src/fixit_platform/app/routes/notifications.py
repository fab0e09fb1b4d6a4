"""In-app notification inbox routes."""

from fastapi import APIRouter, Depends, Query

from fixit_platform.app.routes.auth import get_current_user_dep, get_service_context
from fixit_platform.domain.models import User
from fixit_platform.domain.schemas import NotificationResponse
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.notification_service import NotificationService

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await NotificationService(ctx).list_notifications(user, unread_only, page, limit)


@router.post("/read-all")
async def mark_all_read(
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    updated = await NotificationService(ctx).mark_all_as_read(user)
    return {"ok": True, "updated": updated}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await NotificationService(ctx).mark_as_read(notification_id, user)


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    await NotificationService(ctx).delete_notification(notification_id, user)
    return {"ok": True}
