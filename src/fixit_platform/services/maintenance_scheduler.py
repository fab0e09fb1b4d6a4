"""Periodic jobs: scheduled-maintenance spawning and reminders.

``MaintenanceScheduler.tick()`` runs every job once. Jobs are idempotent:
a due schedule is claimed with a compare-and-swap on
``next_execution_attempt`` before anything is spawned, and reminders check
for a recent notification of the same kind before sending another.

A claim pushes ``next_execution_attempt`` forward by
``scheduler_claim_minutes``; if the spawn then fails the claim simply
lapses and a later tick retries.
"""

import logging
from datetime import timedelta

from sqlalchemy import func, select, update

from fixit_platform.domain.enums import (
    AuditAction,
    AuditResourceType,
    NotificationType,
    RentStatus,
    RequestStatus,
    ScheduledMaintenanceStatus,
)
from fixit_platform.domain.models import Notification, Property, Rent, Request, ScheduledMaintenance, Unit
from fixit_platform.services.audit_service import AuditService
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.lease_service import LeaseService
from fixit_platform.services.notification_service import NotificationService
from fixit_platform.services.recurrence import parse_end_date
from fixit_platform.services.request_service import history_entry
from fixit_platform.services.scheduled_maintenance_service import RUNNABLE_STATUSES, ScheduledMaintenanceService
from fixit_platform.services.sms_service import rent_reminder_text

logger = logging.getLogger(__name__)

SM = ScheduledMaintenanceStatus

OVERDUE_REQUEST_STATUSES = (RequestStatus.NEW.value, RequestStatus.ASSIGNED.value)
OPEN_RENT_STATUSES = (RentStatus.DUE.value, RentStatus.PARTIALLY_PAID.value)
REMINDER_COOLDOWN = timedelta(hours=24)


class MaintenanceScheduler:
    """Drives scheduled maintenance and time-based reminders."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.notifications = NotificationService(ctx)
        self.schedules = ScheduledMaintenanceService(ctx)
        self.leases = LeaseService(ctx)

    async def tick(self) -> dict:
        """Run every job once; one failing job does not stop the others."""
        results = {}
        jobs = [
            ("spawned_requests", "spawn_error", self.run_due_schedules),
            ("overdue_reminders", "overdue_error", self.send_overdue_reminders),
            ("lease_expiry_reminders", "lease_expiry_error", self.send_lease_expiry_reminders),
            ("rent_reminders", "rent_error", self.send_rent_reminders),
        ]
        for key, error_key, job in jobs:
            try:
                results[key] = await job()
            except Exception as e:
                await self.db.rollback()
                logger.error("Scheduler job %s failed: %s", key, e)
                results[error_key] = str(e)
        logger.info("Scheduler tick at %s: %s", self.ctx.now().isoformat(), results)
        return results

    # ------------------------------------------------------------------
    # Scheduled maintenance
    # ------------------------------------------------------------------

    async def run_due_schedules(self) -> int:
        """Spawn one request for every due, runnable schedule. Returns the spawn count."""
        now = self.ctx.now()
        due = (await self.db.execute(
            select(ScheduledMaintenance.id, ScheduledMaintenance.next_execution_attempt).where(
                ScheduledMaintenance.status.in_(RUNNABLE_STATUSES),
                ScheduledMaintenance.is_active.is_(True),
                ScheduledMaintenance.next_execution_attempt.is_not(None),
                ScheduledMaintenance.next_execution_attempt <= now,
            ).order_by(ScheduledMaintenance.next_execution_attempt)
        )).all()

        spawned = 0
        for task_id, observed in due:
            try:
                if not await self._claim(task_id, observed):
                    logger.info("Schedule %s already claimed by another driver", task_id)
                    continue
                if await self._execute(task_id):
                    spawned += 1
            except Exception as e:
                await self.db.rollback()
                logger.error("Failed to run scheduled maintenance %s: %s", task_id, e)
        return spawned

    async def _claim(self, task_id: str, observed) -> bool:
        result = await self.db.execute(
            update(ScheduledMaintenance)
            .where(
                ScheduledMaintenance.id == task_id,
                ScheduledMaintenance.next_execution_attempt == observed,
                ScheduledMaintenance.status.in_(RUNNABLE_STATUSES),
            )
            .values(
                next_execution_attempt=self.ctx.now()
                + timedelta(minutes=self.ctx.settings.scheduler_claim_minutes)
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    def _series_over(self, task: ScheduledMaintenance, due_date) -> bool:
        frequency = task.frequency or {}
        cap = frequency.get("occurrences") if task.recurring else 1
        if cap and (task.occurrences_generated or 0) >= int(cap):
            return True
        end_date = parse_end_date(frequency.get("end_date")) if task.recurring else None
        return end_date is not None and due_date > end_date

    def _complete(self, task: ScheduledMaintenance, notes: str) -> None:
        self.schedules.append_history(task, SM.COMPLETED.value, None, notes)
        task.next_execution_attempt = None

    async def _execute(self, task_id: str) -> bool:
        """Spawn the due occurrence of a claimed task. Returns True if a request was created."""
        task = await self.db.get(ScheduledMaintenance, task_id)
        await self.db.refresh(task)
        due_date = task.next_due_date or task.scheduled_date

        if self._series_over(task, due_date):
            async with self.ctx.transaction("complete scheduled maintenance"):
                self._complete(task, "Series finished")
                self.audit.log(
                    AuditAction.STATUS_UPDATE,
                    AuditResourceType.SCHEDULED_MAINTENANCE,
                    task.id,
                    new_value={"status": task.status},
                    description="Completed by scheduler: no occurrences left.",
                )
            logger.info("Schedule %s completed without spawning", task.id)
            return False

        now = self.ctx.now()
        async with self.ctx.transaction("spawn scheduled request"):
            request = Request(
                title=f"Scheduled Maintenance: {task.title}",
                description=task.description,
                category=task.category,
                priority=task.priority,
                property_id=task.property_id,
                unit_id=task.unit_id,
                created_by_property_user_id=task.created_by_property_user_id,
                assigned_to_id=task.assigned_to_id,
                assigned_to_model=task.assigned_to_model,
                status=RequestStatus.NEW.value,
                status_history=[history_entry(
                    RequestStatus.NEW, None, now, f"Generated from schedule due {due_date:%Y-%m-%d}",
                )],
                generated_from_schedule_id=task.id,
                created_at=now,
                updated_at=now,
            )
            self.db.add(request)
            await self.db.flush()

            self.schedules.add_generated_request(task, request)
            next_due = self.schedules.finish_occurrence(task)
            if next_due is None:
                self._complete(task, "Last occurrence generated")

            self.audit.log(
                AuditAction.CREATE,
                AuditResourceType.REQUEST,
                request.id,
                new_value=request,
                description=f"Request generated from scheduled maintenance {task.id}.",
            )
            self.audit.log(
                AuditAction.GENERATED_REQUEST,
                AuditResourceType.SCHEDULED_MAINTENANCE,
                task.id,
                new_value={
                    "request_id": request.id,
                    "next_due_date": task.next_due_date,
                    "status": task.status,
                },
            )

        logger.info(
            "Schedule %s spawned request %s (occurrence %d), next due %s",
            task.id, request.id, task.occurrences_generated, next_due,
        )
        await self.notifications.fan_out(
            NotificationType.NEW_REQUEST,
            f"Scheduled maintenance '{task.title}' is due and a request has been created.",
            resource=request,
            link=self.ctx.frontend_link(f"requests/{request.id}"),
            context_data={"schedule_id": task.id},
        )
        return True

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def _recently_reminded(self, notification_type: NotificationType, related_id: str) -> bool:
        count = (await self.db.execute(
            select(func.count()).select_from(Notification).where(
                Notification.type == notification_type.value,
                Notification.related_id == related_id,
                Notification.created_at >= self.ctx.now() - REMINDER_COOLDOWN,
            )
        )).scalar_one()
        return count > 0

    async def send_overdue_reminders(self) -> int:
        """Remind managers and assignees about requests left untouched too long."""
        cutoff = self.ctx.now() - timedelta(days=self.ctx.settings.overdue_reminder_days)
        requests = (await self.db.execute(
            select(Request).where(
                Request.status.in_(OVERDUE_REQUEST_STATUSES),
                Request.is_active.is_(True),
                Request.created_at <= cutoff,
            )
        )).scalars().all()

        sent = 0
        for request in requests:
            if await self._recently_reminded(NotificationType.REMINDER_OVERDUE, request.id):
                continue
            age = (self.ctx.now() - request.created_at).days
            await self.notifications.fan_out(
                NotificationType.REMINDER_OVERDUE,
                f"Request '{request.title}' has been {request.status} for {age} days.",
                resource=request,
                include_creator=False,
                link=self.ctx.frontend_link(f"requests/{request.id}"),
                context_data={"age_days": age},
            )
            sent += 1
        return sent

    async def send_lease_expiry_reminders(self) -> int:
        days = self.ctx.settings.lease_expiry_notice_days
        leases = await self.leases.get_expiring_leases(days_ahead=days, only_unnotified=True)

        sent = 0
        for lease in leases:
            days_left = (lease.lease_end_date - self.ctx.now()).days
            await self.notifications.fan_out(
                NotificationType.LEASE_EXPIRY,
                f"Lease ending {lease.lease_end_date:%d %b %Y} ({days_left} days left).",
                resource=lease,
                related_kind=AuditResourceType.LEASE.value,
                extra_user_ids=[lease.tenant_id, lease.landlord_id],
                link=self.ctx.frontend_link(f"leases/{lease.id}"),
                context_data={"days_left": days_left},
            )
            await self.leases.mark_renewal_notice_sent(lease.id)
            sent += 1
        return sent

    async def send_rent_reminders(self) -> int:
        """Flag overdue rent and remind tenants of rent coming due."""
        now = self.ctx.now()
        horizon = now + timedelta(days=self.ctx.settings.rent_reminder_days_ahead)
        rents = (await self.db.execute(
            select(Rent).where(
                Rent.is_active.is_(True),
                Rent.status.in_(OPEN_RENT_STATUSES + (RentStatus.OVERDUE.value,)),
                Rent.due_date <= horizon,
            )
        )).scalars().all()

        sent = 0
        for rent in rents:
            overdue = rent.due_date < now
            if overdue and rent.status != RentStatus.OVERDUE.value:
                async with self.ctx.transaction("mark rent overdue"):
                    rent.status = RentStatus.OVERDUE.value
                    self.audit.log(
                        AuditAction.STATUS_UPDATE,
                        AuditResourceType.RENT,
                        rent.id,
                        new_value={"status": rent.status},
                        description="Rent marked overdue by scheduler.",
                    )
            if await self._recently_reminded(NotificationType.RENT_DUE, rent.id):
                continue

            prop = await self.db.get(Property, rent.property_id)
            unit = await self.db.get(Unit, rent.unit_id)
            outstanding = max(rent.amount_due - (rent.amount_paid or 0), 0)
            reminder_type = "overdue" if overdue else "due"
            text = rent_reminder_text(
                prop.name if prop else "", unit.name if unit else "", outstanding, rent.due_date, reminder_type,
            )
            await self.notifications.fan_out(
                NotificationType.RENT_DUE,
                text.removeprefix("Fix-It: "),
                include_managers=False,
                related_kind=AuditResourceType.RENT.value,
                related_id=rent.id,
                extra_user_ids=[rent.tenant_id],
                sms_text=text,
                context_data={"reminder_type": reminder_type, "amount": outstanding},
            )
            sent += 1
        return sent
