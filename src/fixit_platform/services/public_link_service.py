"""Unauthenticated access to requests and schedules through share tokens.

Disabled, expired and unknown tokens all surface as the same NotFoundError
so a caller cannot tell them apart. Projections carry display names only.
"""

import logging

from sqlalchemy import select

from fixit_platform.domain.enums import (
    AssignedToModel,
    AuditAction,
    AuditResourceType,
    CommentContextType,
    NotificationType,
    RequestStatus,
    ScheduledMaintenanceStatus,
)
from fixit_platform.domain.errors import NotFoundError, ValidationError
from fixit_platform.domain.models import (
    Comment,
    Media,
    Property,
    Request,
    ScheduledMaintenance,
    Unit,
    User,
    Vendor,
)
from fixit_platform.services.audit_service import AuditService
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.notification_service import NotificationService
from fixit_platform.services.request_service import RequestService
from fixit_platform.services.request_state_machine import RequestStateMachine
from fixit_platform.services.scheduled_maintenance_service import FINISHED_STATUSES, ScheduledMaintenanceService
from fixit_platform.services.sms_service import request_update_text
from fixit_platform.services.user_service import UserService

logger = logging.getLogger(__name__)

INVALID_LINK = "Link is invalid or has expired."

SM = ScheduledMaintenanceStatus
PUBLIC_SCHEDULE_STATUSES = {SM.IN_PROGRESS.value, SM.COMPLETED.value}
PUBLIC_SCHEDULE_SOURCES = {SM.SCHEDULED.value, SM.ACTIVE.value, SM.IN_PROGRESS.value}


def _require_identity(name: str | None, phone: str | None) -> tuple[str, str]:
    name = (name or "").strip()
    phone = (phone or "").strip()
    if not name or not phone:
        raise ValidationError("Name and phone are required for accountability.")
    return name, phone


class PublicLinkService:
    """View, comment on and update shared work without an account."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.notifications = NotificationService(ctx)
        self.users = UserService(ctx)
        self.requests = RequestService(ctx)
        self.schedules = ScheduledMaintenanceService(ctx)
        self.machine = RequestStateMachine()

    # ------------------------------------------------------------------
    # Token resolution
    # ------------------------------------------------------------------

    def _live(self, enabled: bool, expires_at) -> bool:
        return bool(enabled) and expires_at is not None and expires_at > self.ctx.now()

    async def _request_by_token(self, token: str) -> Request:
        if not token:
            raise NotFoundError(INVALID_LINK)
        request = (await self.db.execute(
            select(Request).where(Request.public_token == token)
        )).scalar_one_or_none()
        if request is None or not request.is_active or not self._live(request.public_link_enabled, request.public_link_expires_at):
            raise NotFoundError(INVALID_LINK)
        return request

    async def _schedule_by_token(self, token: str) -> ScheduledMaintenance:
        if not token:
            raise NotFoundError(INVALID_LINK)
        task = (await self.db.execute(
            select(ScheduledMaintenance).where(ScheduledMaintenance.public_link_token == token)
        )).scalar_one_or_none()
        if task is None or not task.is_active or not self._live(task.public_link_enabled, task.public_link_expires):
            raise NotFoundError(INVALID_LINK)
        return task

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    async def _assignee_name(self, resource) -> str | None:
        if not resource.assigned_to_id:
            return None
        if resource.assigned_to_model == AssignedToModel.VENDOR.value:
            vendor = await self.db.get(Vendor, resource.assigned_to_id)
            return (vendor.name or vendor.contact_person) if vendor else "Assigned Vendor"
        user = await self.db.get(User, resource.assigned_to_id)
        return user.full_name if user else None

    async def _public_comments(self, context_type: CommentContextType, context_id: str) -> list[dict]:
        comments = (await self.db.execute(
            select(Comment).where(
                Comment.context_type == context_type.value,
                Comment.context_id == context_id,
                Comment.is_internal_note.is_(False),
            ).order_by(Comment.created_at)
        )).scalars().all()

        sender_ids = {c.sender_id for c in comments if c.sender_id and not c.is_external}
        names = {}
        if sender_ids:
            senders = (await self.db.execute(select(User).where(User.id.in_(sender_ids)))).scalars().all()
            names = {u.id: u.full_name for u in senders}

        return [
            {
                "id": c.id,
                "message": c.message,
                "created_at": c.created_at,
                "is_external": c.is_external,
                "external_user_name": c.external_user_name if c.is_external else None,
                "sender_name": names.get(c.sender_id) if not c.is_external else None,
            }
            for c in comments
        ]

    async def _public_media(self, related_to: str, related_id: str) -> list[dict]:
        rows = (await self.db.execute(
            select(Media).where(
                Media.related_to == related_to,
                Media.related_id == related_id,
                Media.is_public.is_(True),
            )
        )).scalars().all()
        return [
            {
                "id": m.id,
                "url": m.url,
                "thumbnail_url": m.thumbnail_url,
                "filename": m.original_name,
                "mime_type": m.mime_type,
                "description": m.description,
            }
            for m in rows
        ]

    async def _location(self, resource) -> dict:
        prop = await self.db.get(Property, resource.property_id)
        unit = await self.db.get(Unit, resource.unit_id) if resource.unit_id else None
        return {
            "property": {
                "name": prop.name,
                "address": {
                    "street": prop.street,
                    "city": prop.city,
                    "state": prop.state,
                    "zip_code": prop.zip_code,
                    "country": prop.country,
                },
            } if prop else None,
            "unit": {"name": unit.name} if unit else None,
        }

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def get_public_request(
        self,
        token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> dict:
        request = await self._request_by_token(token)
        view = {
            "id": request.id,
            "title": request.title,
            "description": request.description,
            "status": request.status,
            "category": request.category,
            "priority": request.priority,
            **await self._location(request),
            "assigned_to_name": await self._assignee_name(request),
            "comments": await self._public_comments(CommentContextType.REQUEST, request.id),
            "media": await self._public_media(AuditResourceType.REQUEST.value, request.id),
            "created_at": request.created_at,
            "resolved_at": request.resolved_at,
            "public_link_expires_at": request.public_link_expires_at,
        }

        async with self.ctx.transaction("log public request view"):
            self.audit.log(
                AuditAction.READ,
                AuditResourceType.REQUEST,
                request.id,
                external_user_identifier=token,
                ip_address=ip_address,
                user_agent=user_agent,
                description=f"Public request '{request.title}' viewed via public link.",
            )
        return view

    async def get_public_schedule(
        self,
        token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> dict:
        task = await self._schedule_by_token(token)
        view = {
            "id": task.id,
            "title": task.title,
            "description": task.description,
            "status": task.status,
            "category": task.category,
            "priority": task.priority,
            **await self._location(task),
            "assigned_to_name": await self._assignee_name(task),
            "scheduled_date": task.scheduled_date,
            "next_due_date": task.next_due_date,
            "recurring": task.recurring,
            "frequency": task.frequency,
            "comments": await self._public_comments(CommentContextType.SCHEDULED_MAINTENANCE, task.id),
            "media": await self._public_media(AuditResourceType.SCHEDULED_MAINTENANCE.value, task.id),
            "public_link_expires_at": task.public_link_expires,
        }

        async with self.ctx.transaction("log public schedule view"):
            self.audit.log(
                AuditAction.READ,
                AuditResourceType.SCHEDULED_MAINTENANCE,
                task.id,
                external_user_identifier=token,
                ip_address=ip_address,
                user_agent=user_agent,
                description=f"Public scheduled maintenance '{task.title}' viewed via public link.",
            )
        return view

    # ------------------------------------------------------------------
    # External writes
    # ------------------------------------------------------------------

    def _stage_comment(self, context_type: CommentContextType, context_id: str, message: str, name: str, pseudo: User) -> Comment:
        comment = Comment(
            context_type=context_type.value,
            context_id=context_id,
            sender_id=pseudo.id,
            message=message,
            is_external=True,
            external_user_name=name,
            external_user_email=pseudo.email,
            is_internal_note=False,
            media_ids=[],
            created_at=self.ctx.now(),
        )
        self.db.add(comment)
        return comment

    async def public_request_update(
        self,
        token: str,
        name: str,
        phone: str,
        status=None,
        comment_message: str | None = None,
        ip_address: str | None = None,
    ) -> Request:
        """Let an external vendor advance a shared request and/or leave a comment."""
        name, phone = _require_identity(name, phone)
        message = (comment_message or "").strip()
        if status is None and not message:
            raise ValidationError("Provide a status update or a comment.")

        request = await self._request_by_token(token)
        target = None
        if status is not None:
            target = RequestStatus(getattr(status, "value", status))
            self.machine.validate_public_transition(request.status, target)

        old_status = request.status
        async with self.ctx.transaction("public request update"):
            pseudo = await self.users.get_or_create_pseudo_user(name, phone)
            new_value = {}
            if target is not None:
                self.requests.apply_status(request, target, pseudo.id, f"Updated via public link by {name}")
                new_value["status"] = request.status
            if message:
                comment = self._stage_comment(CommentContextType.REQUEST, request.id, message, name, pseudo)
                await self.db.flush()
                new_value.update(comment_id=comment.id, message=message)

            if target is not None:
                description = f"External vendor {name} updated request '{request.title}' from {old_status} to {request.status}."
            else:
                description = f"External vendor {name} commented on request '{request.title}'."
            self.audit.log(
                AuditAction.PUBLIC_UPDATE if target is not None else AuditAction.COMMENT_ADDED,
                AuditResourceType.REQUEST,
                request.id,
                user=pseudo,
                external_user_identifier=f"{name} ({pseudo.email})",
                ip_address=ip_address,
                old_value={"status": old_status} if target is not None else None,
                new_value=new_value,
                description=description,
            )

        logger.info("Public update on request %s by %s status=%s", request.id, name, target)

        link = self.ctx.frontend_link(f"requests/{request.id}")
        if target is not None:
            await self.notifications.fan_out(
                NotificationType.TASK_COMPLETED if target == RequestStatus.COMPLETED else NotificationType.STATUS_UPDATE,
                f"External vendor {name} updated request '{request.title}' to {request.status}.",
                resource=request,
                actor=pseudo.id,
                link=link,
                sms_text=request_update_text(request.title, request.status, link),
                context_data={"updater_name": name, "new_status": request.status},
            )
        if message:
            await self.notifications.fan_out(
                NotificationType.NEW_COMMENT,
                f"New comment on request '{request.title}' from external vendor {name}.",
                resource=request,
                actor=pseudo.id,
                link=link,
                context_data={"comment": message, "updater_name": name},
            )
        return request

    async def public_schedule_update(
        self,
        token: str,
        name: str,
        phone: str,
        status=None,
        comment_message: str | None = None,
        ip_address: str | None = None,
    ) -> ScheduledMaintenance:
        """External vendor update on a shared schedule.

        Completing an occurrence of a recurring task rolls it to the next due
        date instead of finishing the series.
        """
        name, phone = _require_identity(name, phone)
        message = (comment_message or "").strip()
        if status is None and not message:
            raise ValidationError("Provide a status update or a comment.")

        task = await self._schedule_by_token(token)
        target = None
        if status is not None:
            target = getattr(status, "value", status)
            if target not in PUBLIC_SCHEDULE_STATUSES:
                raise ValidationError(
                    f"Invalid status for public update. Must be one of: {', '.join(sorted(PUBLIC_SCHEDULE_STATUSES))}."
                )
            if task.status not in PUBLIC_SCHEDULE_SOURCES or task.status == target:
                raise ValidationError(f"Task in {task.status} cannot be updated through a public link.")

        old_status = task.status
        async with self.ctx.transaction("public schedule update"):
            pseudo = await self.users.get_or_create_pseudo_user(name, phone)
            new_value = {}
            if target is not None:
                new_status = target
                notes = f"Updated via public link by {name}"
                if target == SM.COMPLETED.value and self.schedules.finish_occurrence(task) is not None:
                    new_status = SM.SCHEDULED.value
                    notes = f"Occurrence completed via public link by {name}"
                self.schedules.append_history(task, new_status, pseudo.id, notes)
                new_value.update(status=task.status, next_due_date=task.next_due_date)
            if message:
                comment = self._stage_comment(CommentContextType.SCHEDULED_MAINTENANCE, task.id, message, name, pseudo)
                await self.db.flush()
                new_value.update(comment_id=comment.id, message=message)

            if target is not None:
                description = f"External vendor {name} updated scheduled task '{task.title}' to {task.status}."
            else:
                description = f"External vendor {name} commented on scheduled task '{task.title}'."
            self.audit.log(
                AuditAction.PUBLIC_UPDATE if target is not None else AuditAction.COMMENT_ADDED,
                AuditResourceType.SCHEDULED_MAINTENANCE,
                task.id,
                user=pseudo,
                external_user_identifier=f"{name} ({pseudo.email})",
                ip_address=ip_address,
                old_value={"status": old_status} if target is not None else None,
                new_value=new_value,
                description=description,
            )

        link = self.ctx.frontend_link(f"scheduled-maintenance/{task.id}")
        if target is not None:
            await self.notifications.fan_out(
                NotificationType.STATUS_UPDATE,
                f"External vendor {name} updated scheduled task '{task.title}' to {target}.",
                resource=task,
                actor=pseudo.id,
                link=link,
                context_data={"updater_name": name, "new_status": task.status},
            )
        if message:
            await self.notifications.fan_out(
                NotificationType.NEW_COMMENT,
                f"New comment on scheduled task '{task.title}' from external vendor {name}.",
                resource=task,
                actor=pseudo.id,
                link=link,
                context_data={"comment": message, "updater_name": name},
            )
        return task

    async def add_public_comment(
        self,
        token: str,
        name: str,
        phone: str,
        message: str,
        context_type=CommentContextType.REQUEST,
        ip_address: str | None = None,
    ) -> Comment:
        """Comment on a shared request or schedule without changing its status."""
        name, phone = _require_identity(name, phone)
        message = (message or "").strip()
        if not message:
            raise ValidationError("Comment message is required.")

        kind = CommentContextType(context_type)
        if kind == CommentContextType.REQUEST:
            resource = await self._request_by_token(token)
            resource_type = AuditResourceType.REQUEST
            link = self.ctx.frontend_link(f"requests/{resource.id}")
        elif kind == CommentContextType.SCHEDULED_MAINTENANCE:
            resource = await self._schedule_by_token(token)
            resource_type = AuditResourceType.SCHEDULED_MAINTENANCE
            link = self.ctx.frontend_link(f"scheduled-maintenance/{resource.id}")
        else:
            raise ValidationError(f"Public comments are not supported on {kind.value}.")
        if kind == CommentContextType.SCHEDULED_MAINTENANCE and resource.status in FINISHED_STATUSES:
            raise ValidationError(f"Cannot comment on a task that is {resource.status}.")

        async with self.ctx.transaction("add public comment"):
            pseudo = await self.users.get_or_create_pseudo_user(name, phone)
            comment = self._stage_comment(kind, resource.id, message, name, pseudo)
            await self.db.flush()
            self.audit.log(
                AuditAction.COMMENT_ADDED,
                resource_type,
                resource.id,
                user=pseudo,
                external_user_identifier=f"{name} ({pseudo.email})",
                ip_address=ip_address,
                new_value={"comment_id": comment.id, "message": message},
            )

        await self.notifications.fan_out(
            NotificationType.NEW_COMMENT,
            f"New comment on '{resource.title}' from external user {name}.",
            resource=resource,
            actor=pseudo.id,
            link=link,
            context_data={"comment": message, "updater_name": name},
        )
        return comment
