"""Audit sink (append-only, never fails the caller) plus admin queries over it."""

import logging
from datetime import date, datetime
from enum import Enum

from sqlalchemy import func, select

from fixit_platform.domain.enums import AuditStatus, UserRole
from fixit_platform.domain.errors import ForbiddenError, NotFoundError
from fixit_platform.domain.models import AuditLog
from fixit_platform.services.context import ServiceContext

logger = logging.getLogger(__name__)

MAX_FIELD_LENGTH = 2000
TRUNCATION_MARKER = "...[truncated]"

# Columns never copied into audit snapshots
_REDACTED_COLUMNS = {"password_hash"}


def _json_safe(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, str) and len(value) > MAX_FIELD_LENGTH:
        return value[:MAX_FIELD_LENGTH] + TRUNCATION_MARKER
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    return value


def snapshot(row) -> dict | None:
    """JSON-safe copy of an ORM row's column values."""
    if row is None:
        return None
    if isinstance(row, dict):
        return _json_safe(row)
    return {
        column.key: _json_safe(getattr(row, column.key, None))
        for column in row.__table__.columns
        if column.key not in _REDACTED_COLUMNS
    }


class AuditService:
    """Writes AuditLog rows into the caller's open transaction."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db

    def log(
        self,
        action: str,
        resource_type: str,
        resource_id: str | None,
        user=None,
        external_user_identifier: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        old_value=None,
        new_value=None,
        description: str | None = None,
        status: str = AuditStatus.SUCCESS.value,
        error_message: str | None = None,
        metadata: dict | None = None,
    ) -> AuditLog | None:
        """Record one audit row. Returns None (and logs) if the row can't be built."""
        try:
            entry = AuditLog(
                user_id=getattr(user, "id", user),
                external_user_identifier=external_user_identifier,
                action=getattr(action, "value", action),
                resource_type=getattr(resource_type, "value", resource_type),
                resource_id=resource_id,
                old_value=snapshot(old_value),
                new_value=snapshot(new_value),
                status=getattr(status, "value", status),
                error_message=error_message,
                ip_address=ip_address,
                user_agent=user_agent,
                description=_json_safe(description),
                extra_data=_json_safe(metadata) if metadata else None,
                created_at=self.ctx.now(),
            )
            self.db.add(entry)
            return entry
        except Exception as e:
            logger.critical(
                "CRITICAL: failed to write audit log action=%s resource=%s/%s: %s",
                action, resource_type, resource_id, e,
            )
            return None

    # ------------------------------------------------------------------
    # Queries (admin only)
    # ------------------------------------------------------------------

    @staticmethod
    def _require_admin(current_user) -> None:
        if current_user.role != UserRole.ADMIN.value:
            raise ForbiddenError("Only administrators can view audit logs.")

    async def list_audit_logs(
        self,
        current_user,
        user_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        action: str | None = None,
        status: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        page: int = 1,
        limit: int = 20,
        newest_first: bool = True,
    ) -> tuple[list[AuditLog], int]:
        """Filtered, paginated audit rows. Returns (items, total)."""
        self._require_admin(current_user)
        query = select(AuditLog)
        if user_id:
            query = query.where(AuditLog.user_id == user_id)
        if resource_type:
            query = query.where(AuditLog.resource_type == getattr(resource_type, "value", resource_type))
        if resource_id:
            query = query.where(AuditLog.resource_id == resource_id)
        if action:
            query = query.where(AuditLog.action == getattr(action, "value", action))
        if status:
            query = query.where(AuditLog.status == getattr(status, "value", status))
        if start_date:
            query = query.where(AuditLog.created_at >= start_date)
        if end_date:
            query = query.where(AuditLog.created_at <= end_date)

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        order = AuditLog.created_at.desc() if newest_first else AuditLog.created_at.asc()
        result = await self.db.execute(query.order_by(order).offset((page - 1) * limit).limit(limit))
        return list(result.scalars().all()), total

    async def get_audit_log(self, log_id: str, current_user) -> AuditLog:
        self._require_admin(current_user)
        entry = await self.db.get(AuditLog, log_id)
        if entry is None:
            raise NotFoundError("Audit log not found.")
        return entry

    async def get_resource_history(self, resource_type: str, resource_id: str, current_user, limit: int = 50) -> list[AuditLog]:
        """Most recent audit rows for one resource."""
        items, _ = await self.list_audit_logs(
            current_user, resource_type=resource_type, resource_id=resource_id, limit=limit,
        )
        return items
