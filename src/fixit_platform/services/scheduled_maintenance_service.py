"""Scheduled maintenance templates."""

import logging
import secrets
from datetime import timedelta

from sqlalchemy import delete, func, select

from fixit_platform.domain.enums import (
    AuditAction,
    AuditResourceType,
    AuthAction,
    CommentContextType,
    FrequencyType,
    NotificationType,
    ScheduledMaintenanceStatus,
    UserRole,
)
from fixit_platform.domain.errors import NotFoundError, ValidationError
from fixit_platform.domain.models import Comment, Property, Request, ScheduledMaintenance, Unit
from fixit_platform.domain.schemas import ScheduledMaintenanceCreate, ScheduledMaintenanceUpdate
from fixit_platform.infra.clock import utc_naive
from fixit_platform.services.audit_service import AuditService, snapshot
from fixit_platform.services.authorization import AuthorizationService, ResourceScope
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.notification_service import NotificationService
from fixit_platform.services.property_user_service import PropertyUserService
from fixit_platform.services.recurrence import calculate_next_due_date, parse_end_date
from fixit_platform.services.request_service import RequestService, history_entry

logger = logging.getLogger(__name__)

SM = ScheduledMaintenanceStatus

# Statuses the driver picks up; legacy rows may still say "active"
RUNNABLE_STATUSES = {SM.SCHEDULED.value, SM.ACTIVE.value}
FINISHED_STATUSES = {SM.COMPLETED.value, SM.CANCELLED.value}
PAUSABLE_STATUSES = {SM.SCHEDULED.value, SM.ACTIVE.value, SM.IN_PROGRESS.value}

DEFAULT_FREQUENCY = {"type": FrequencyType.MONTHLY.value, "interval": 1}


def normalize_frequency(recurring: bool, frequency, scheduled_date) -> dict | None:
    """Stored frequency for a task: defaulted when recurring, cleared otherwise."""
    if not recurring:
        return None
    if frequency is None:
        return dict(DEFAULT_FREQUENCY)
    data = frequency.model_dump(mode="json", exclude_none=True) if hasattr(frequency, "model_dump") else dict(frequency)
    if not data.get("type"):
        data.update(DEFAULT_FREQUENCY)
    if data["type"] == FrequencyType.CUSTOM_DAYS.value and not data.get("custom_days"):
        raise ValidationError("custom_days frequency requires a list of day gaps.")
    end_date = parse_end_date(data.get("end_date"))
    if end_date is not None and end_date < scheduled_date:
        raise ValidationError("Frequency end date cannot be before the scheduled date.")
    return data


class ScheduledMaintenanceService:
    """CRUD, pause/resume, status and public links for scheduled maintenance."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.authz = AuthorizationService(ctx)
        self.notifications = NotificationService(ctx)
        self.property_users = PropertyUserService(ctx)
        self.requests = RequestService(ctx)

    async def _get(self, task_id: str) -> ScheduledMaintenance:
        task = await self.db.get(ScheduledMaintenance, task_id)
        if task is None:
            raise NotFoundError("Scheduled maintenance task not found.")
        return task

    def _link(self, task: ScheduledMaintenance) -> str:
        return self.ctx.frontend_link(f"scheduled-maintenance/{task.id}")

    def append_history(self, task: ScheduledMaintenance, status: str, changed_by: str | None, notes: str | None) -> None:
        task.status = status
        task.status_history = list(task.status_history or []) + [
            history_entry(status, changed_by, self.ctx.now(), notes)
        ]
        task.updated_at = self.ctx.now()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create_task(
        self,
        data: ScheduledMaintenanceCreate,
        current_user,
        ip_address: str | None = None,
    ) -> ScheduledMaintenance:
        prop = await self.db.get(Property, data.property_id)
        if prop is None or not prop.is_active:
            raise NotFoundError("Property not found.")
        if data.unit_id:
            unit = await self.db.get(Unit, data.unit_id)
            if unit is None or unit.property_id != data.property_id:
                raise NotFoundError("Unit not found in the specified property.")

        await self.authz.ensure(
            current_user,
            AuthAction.MANAGE,
            ResourceScope(data.property_id, data.unit_id),
            "Not authorized to schedule maintenance for this property.",
        )
        if data.assigned_to_id:
            if data.assigned_to_model is None:
                raise ValidationError("assigned_to_model is required with assigned_to_id.")
            await self.requests.resolve_assignee(data.assigned_to_id, data.assigned_to_model)

        scheduled_date = utc_naive(data.scheduled_date)
        frequency = normalize_frequency(data.recurring, data.frequency, scheduled_date)
        now = self.ctx.now()
        async with self.ctx.transaction("create scheduled maintenance"):
            creator = await self.property_users.attributable_property_user(
                current_user, data.property_id, data.unit_id,
            )
            task = ScheduledMaintenance(
                title=data.title,
                description=data.description,
                category=data.category.value,
                priority=data.priority.value,
                status=SM.SCHEDULED.value,
                property_id=data.property_id,
                unit_id=data.unit_id,
                created_by_property_user_id=creator.id if creator else None,
                assigned_to_id=data.assigned_to_id,
                assigned_to_model=data.assigned_to_model.value if data.assigned_to_model else None,
                scheduled_date=scheduled_date,
                recurring=data.recurring,
                frequency=frequency,
                next_due_date=scheduled_date,
                next_execution_attempt=scheduled_date,
                status_history=[history_entry(SM.SCHEDULED, current_user.id, now, "Task created")],
                created_at=now,
                updated_at=now,
            )
            self.db.add(task)
            await self.db.flush()
            self.audit.log(
                AuditAction.CREATE,
                AuditResourceType.SCHEDULED_MAINTENANCE,
                task.id,
                user=current_user,
                ip_address=ip_address,
                new_value=task,
            )

        logger.info("Scheduled maintenance %s created for %s", task.id, scheduled_date.isoformat())
        await self.notifications.fan_out(
            NotificationType.ASSIGNMENT if task.assigned_to_id else NotificationType.GENERAL_ALERT,
            f"Maintenance '{task.title}' scheduled for {scheduled_date:%d %b %Y}.",
            resource=task,
            actor=current_user,
            link=self._link(task),
        )
        return task

    async def list_tasks(
        self,
        current_user,
        property_id: str | None = None,
        unit_id: str | None = None,
        status: str | None = None,
        recurring: bool | None = None,
        search: str | None = None,
        include_inactive: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[ScheduledMaintenance], int]:
        query = select(ScheduledMaintenance)
        if current_user.role != UserRole.ADMIN.value:
            membership = await self.authz.membership(current_user)
            query = query.where(membership.visibility_clause(ScheduledMaintenance, current_user.id))
        if not include_inactive:
            query = query.where(ScheduledMaintenance.is_active.is_(True))
        if property_id:
            query = query.where(ScheduledMaintenance.property_id == property_id)
        if unit_id:
            query = query.where(ScheduledMaintenance.unit_id == unit_id)
        if status:
            query = query.where(ScheduledMaintenance.status == getattr(status, "value", status))
        if recurring is not None:
            query = query.where(ScheduledMaintenance.recurring.is_(recurring))
        if search:
            query = query.where(ScheduledMaintenance.title.ilike(f"%{search}%"))

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        page = max(page, 1)
        result = await self.db.execute(
            query.order_by(ScheduledMaintenance.next_due_date).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_task(self, task_id: str, current_user) -> ScheduledMaintenance:
        task = await self._get(task_id)
        await self.authz.ensure(current_user, AuthAction.READ, task, "Not authorized to view this task.")
        return task

    async def update_task(
        self,
        task_id: str,
        data: ScheduledMaintenanceUpdate,
        current_user,
        ip_address: str | None = None,
    ) -> ScheduledMaintenance:
        """Edit a task; schedule edits re-derive the next due date."""
        task = await self._get(task_id)
        await self.authz.ensure(current_user, AuthAction.UPDATE, task, "Not authorized to update this task.")
        changes = data.model_dump(exclude_unset=True)
        status = changes.pop("status", None)
        if status is not None:
            await self.update_status(task_id, status, current_user, ip_address=ip_address)
        if not changes:
            return task
        if task.status in FINISHED_STATUSES:
            raise ValidationError(f"Cannot edit a task that is {task.status}.")

        if changes.get("assigned_to_id"):
            model = changes.get("assigned_to_model") or task.assigned_to_model
            if model is None:
                raise ValidationError("assigned_to_model is required with assigned_to_id.")
            await self.requests.resolve_assignee(changes["assigned_to_id"], model)

        scheduled_date = utc_naive(changes.pop("scheduled_date", None)) or task.scheduled_date
        recurring = changes.pop("recurring", task.recurring)
        schedule_changed = (
            scheduled_date != task.scheduled_date
            or recurring != task.recurring
            or "frequency" in changes
        )
        frequency = (
            normalize_frequency(recurring, data.frequency if "frequency" in changes else task.frequency, scheduled_date)
            if schedule_changed else task.frequency
        )
        changes.pop("frequency", None)

        async with self.ctx.transaction("update scheduled maintenance"):
            old_value = snapshot(task)
            for key, value in changes.items():
                setattr(task, key, getattr(value, "value", value))
            if schedule_changed:
                task.scheduled_date = scheduled_date
                task.recurring = recurring
                task.frequency = frequency
                if not task.occurrences_generated:
                    task.next_due_date = scheduled_date
                    task.next_execution_attempt = scheduled_date
            task.updated_at = self.ctx.now()
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.SCHEDULED_MAINTENANCE,
                task.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=task,
            )
        return task

    async def delete_task(
        self,
        task_id: str,
        current_user,
        ip_address: str | None = None,
    ) -> bool:
        """Soft-delete when requests were generated from the task, else hard delete.

        Returns True if the row was removed.
        """
        task = await self._get(task_id)
        await self.authz.ensure(current_user, AuthAction.DELETE, task, "Not authorized to delete this task.")
        generated = (await self.db.execute(
            select(func.count()).select_from(Request).where(Request.generated_from_schedule_id == task_id)
        )).scalar_one()

        async with self.ctx.transaction("delete scheduled maintenance"):
            old_value = snapshot(task)
            if generated:
                task.is_active = False
                task.public_link_enabled = False
                if task.status not in FINISHED_STATUSES:
                    self.append_history(task, SM.CANCELLED.value, current_user.id, "Task deleted")
            else:
                await self.db.execute(
                    delete(Comment).where(
                        Comment.context_type == CommentContextType.SCHEDULED_MAINTENANCE.value,
                        Comment.context_id == task_id,
                    )
                )
                await self.db.delete(task)
            self.audit.log(
                AuditAction.DELETE,
                AuditResourceType.SCHEDULED_MAINTENANCE,
                task_id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                description="Soft-deleted; generated requests kept." if generated else None,
            )
        return not generated

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def pause_task(self, task_id: str, current_user, ip_address: str | None = None) -> ScheduledMaintenance:
        task = await self._get(task_id)
        await self.authz.ensure(current_user, AuthAction.MANAGE, task, "Not authorized to pause this task.")
        if task.status not in PAUSABLE_STATUSES:
            raise ValidationError(f"Cannot pause a task that is {task.status}.")
        return await self._set_status(task, SM.PAUSED.value, current_user, "Task paused", ip_address)

    async def resume_task(self, task_id: str, current_user, ip_address: str | None = None) -> ScheduledMaintenance:
        """Resume a paused task; an overdue next occurrence fires on the next tick."""
        task = await self._get(task_id)
        await self.authz.ensure(current_user, AuthAction.MANAGE, task, "Not authorized to resume this task.")
        if task.status != SM.PAUSED.value:
            raise ValidationError("Only paused tasks can be resumed.")
        task.next_execution_attempt = task.next_due_date
        return await self._set_status(task, SM.SCHEDULED.value, current_user, "Task resumed", ip_address)

    async def update_status(
        self,
        task_id: str,
        status,
        current_user,
        notes: str | None = None,
        ip_address: str | None = None,
    ) -> ScheduledMaintenance:
        """Move a task to a new status.

        Completing an occurrence of a recurring task rolls it forward to the
        next due date; the task only finishes when the series has ended.
        """
        target = ScheduledMaintenanceStatus(status).value
        task = await self._get(task_id)
        await self.authz.ensure(current_user, AuthAction.STATUS_ADVANCE, task, "Not authorized to update this task.")
        if task.status in FINISHED_STATUSES:
            raise ValidationError(f"Task is already {task.status}.")
        if target == task.status:
            raise ValidationError(f"Task is already {target}.")

        if target == SM.COMPLETED.value:
            next_due = self.finish_occurrence(task)
            if next_due is not None:
                return await self._set_status(
                    task, SM.SCHEDULED.value, current_user,
                    notes or f"Next occurrence scheduled for {next_due:%d %b %Y}", ip_address,
                )
        return await self._set_status(task, target, current_user, notes, ip_address)

    async def _set_status(self, task, status: str, current_user, notes: str | None, ip_address: str | None):
        old_status = task.status
        async with self.ctx.transaction("update scheduled maintenance status"):
            self.append_history(task, status, current_user.id, notes)
            self.audit.log(
                AuditAction.STATUS_UPDATE,
                AuditResourceType.SCHEDULED_MAINTENANCE,
                task.id,
                user=current_user,
                ip_address=ip_address,
                old_value={"status": old_status},
                new_value={"status": status},
                description=notes,
            )
        await self.notifications.fan_out(
            NotificationType.STATUS_UPDATE,
            f"Scheduled maintenance '{task.title}' is now {status}.",
            resource=task,
            actor=current_user,
            link=self._link(task),
        )
        return task

    def finish_occurrence(self, task: ScheduledMaintenance):
        """Stamp the current occurrence as done and roll the task to its next due date.

        Returns the next due date, or None when the series has ended.
        """
        task.last_executed_at = self.ctx.now()
        next_due = calculate_next_due_date(task)
        if next_due is not None:
            task.next_due_date = next_due
            task.next_execution_attempt = next_due
        return next_due

    def add_generated_request(self, task: ScheduledMaintenance, request: Request) -> None:
        """Record a spawned request on the task. Caller owns the transaction."""
        task.generated_request_ids = list(task.generated_request_ids or []) + [request.id]
        task.last_generated_request_id = request.id
        task.occurrences_generated = (task.occurrences_generated or 0) + 1

    # ------------------------------------------------------------------
    # Public link
    # ------------------------------------------------------------------

    async def enable_public_link(
        self,
        task_id: str,
        current_user,
        expires_in_days: int | None = None,
        rotate: bool = False,
        ip_address: str | None = None,
    ) -> dict:
        task = await self._get(task_id)
        await self.authz.ensure(current_user, AuthAction.MANAGE, task, "Not authorized to share this task.")
        if task.status in FINISHED_STATUSES or not task.is_active:
            raise ValidationError(f"Cannot share a task that is {task.status}.")
        days = expires_in_days if expires_in_days is not None else self.ctx.settings.public_link_default_days
        if days < 1:
            raise ValidationError("Public links must be valid for at least one day.")

        async with self.ctx.transaction("enable schedule public link"):
            if not task.public_link_token or rotate:
                task.public_link_token = secrets.token_hex(24)
            task.public_link_enabled = True
            task.public_link_expires = self.ctx.now() + timedelta(days=days)
            self.audit.log(
                AuditAction.PUBLIC_LINK_ENABLED,
                AuditResourceType.SCHEDULED_MAINTENANCE,
                task.id,
                user=current_user,
                ip_address=ip_address,
                new_value={"expires_at": task.public_link_expires, "rotated": rotate},
            )
        return {
            "public_link": self.ctx.frontend_link(f"scheduled-maintenance/public/{task.public_link_token}"),
            "token": task.public_link_token,
            "expires_at": task.public_link_expires,
        }

    async def disable_public_link(self, task_id: str, current_user, ip_address: str | None = None) -> ScheduledMaintenance:
        task = await self._get(task_id)
        await self.authz.ensure(current_user, AuthAction.MANAGE, task, "Not authorized to manage this task's link.")
        async with self.ctx.transaction("disable schedule public link"):
            task.public_link_enabled = False
            self.audit.log(
                AuditAction.PUBLIC_LINK_DISABLED,
                AuditResourceType.SCHEDULED_MAINTENANCE,
                task.id,
                user=current_user,
                ip_address=ip_address,
            )
        return task
