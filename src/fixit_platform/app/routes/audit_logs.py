"""Admin-only audit trail queries."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from fixit_platform.app.routes.auth import get_current_user_dep, get_service_context
from fixit_platform.domain.models import User
from fixit_platform.domain.schemas import AuditLogResponse
from fixit_platform.services.audit_service import AuditService
from fixit_platform.services.context import ServiceContext

router = APIRouter(prefix="/api/audit-logs", tags=["audit"])


@router.get("")
async def list_audit_logs(
    user_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    action: str | None = None,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = Query("desc", pattern="^(asc|desc)$"),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    items, total = await AuditService(ctx).list_audit_logs(
        user, user_id, resource_type, resource_id, action, status, start_date, end_date,
        page, limit, newest_first=(sort == "desc"),
    )
    return {
        "items": [AuditLogResponse.model_validate(row) for row in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/resources/{resource_type}/{resource_id}")
async def resource_history(
    resource_type: str,
    resource_id: str,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    rows = await AuditService(ctx).get_resource_history(resource_type, resource_id, user, limit)
    return [AuditLogResponse.model_validate(row) for row in rows]


@router.get("/{log_id}", response_model=AuditLogResponse)
async def get_audit_log(
    log_id: str,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await AuditService(ctx).get_audit_log(log_id, user)
