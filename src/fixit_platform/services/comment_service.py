"""Threaded comments on requests, schedules, properties and units."""

import logging

from sqlalchemy import select

from fixit_platform.domain.enums import (
    AuditAction,
    AuditResourceType,
    AuthAction,
    CommentContextType,
    NotificationType,
    UserRole,
)
from fixit_platform.domain.errors import ForbiddenError, NotFoundError, ValidationError
from fixit_platform.domain.models import Comment, Property, Request, ScheduledMaintenance, Unit
from fixit_platform.services.audit_service import AuditService
from fixit_platform.services.authorization import AuthorizationService
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

CONTEXT_MODELS = {
    CommentContextType.REQUEST: (Request, AuditResourceType.REQUEST, "requests"),
    CommentContextType.SCHEDULED_MAINTENANCE: (
        ScheduledMaintenance, AuditResourceType.SCHEDULED_MAINTENANCE, "scheduled-maintenance",
    ),
    CommentContextType.PROPERTY: (Property, AuditResourceType.PROPERTY, "properties"),
    CommentContextType.UNIT: (Unit, AuditResourceType.UNIT, "units"),
}


class CommentService:
    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.authz = AuthorizationService(ctx)
        self.notifications = NotificationService(ctx)

    async def load_context(self, context_type, context_id: str):
        """Resolve the commented-on entity. Only owners of each kind dereference it."""
        try:
            kind = CommentContextType(context_type)
        except ValueError as e:
            raise ValidationError(f"Unsupported comment context: {context_type}") from e
        model, _, _ = CONTEXT_MODELS[kind]
        resource = await self.db.get(model, context_id)
        if resource is None:
            raise NotFoundError(f"{model.__name__} not found.")
        return kind, resource

    async def add_comment(
        self,
        context_type,
        context_id: str,
        message: str,
        current_user,
        is_internal_note: bool = False,
        media_ids: list[str] | None = None,
        ip_address: str | None = None,
    ) -> Comment:
        message = (message or "").strip()
        if not message:
            raise ValidationError("Comment message cannot be empty.")

        kind, resource = await self.load_context(context_type, context_id)
        await self.authz.ensure(current_user, AuthAction.COMMENT, resource, "Not authorized to comment here.")
        if is_internal_note and not await self.authz.has_management_access(current_user, resource_property(resource)):
            raise ForbiddenError("Only management can add internal notes.")

        _, resource_type, path = CONTEXT_MODELS[kind]
        async with self.ctx.transaction("add comment"):
            comment = Comment(
                context_type=kind.value,
                context_id=context_id,
                sender_id=current_user.id,
                message=message,
                is_internal_note=is_internal_note,
                media_ids=list(media_ids or []),
                created_at=self.ctx.now(),
            )
            self.db.add(comment)
            await self.db.flush()
            self.audit.log(
                AuditAction.COMMENT_ADDED,
                resource_type,
                context_id,
                user=current_user,
                ip_address=ip_address,
                new_value={"comment_id": comment.id, "message": message, "internal": is_internal_note},
            )

        title = getattr(resource, "title", None) or getattr(resource, "name", "")
        await self.notifications.fan_out(
            NotificationType.NEW_COMMENT,
            f"{current_user.full_name} commented on '{title}'.",
            resource=resource,
            actor=current_user,
            # Internal notes stay with management
            include_creator=not is_internal_note,
            include_assignee=not is_internal_note,
            link=self.ctx.frontend_link(f"{path}/{context_id}"),
            related_kind=resource_type.value,
            related_id=context_id,
        )
        return comment

    async def list_comments(self, context_type, context_id: str, current_user) -> list[Comment]:
        """Comments oldest first; tenants never see internal notes."""
        kind, resource = await self.load_context(context_type, context_id)
        await self.authz.ensure(current_user, AuthAction.READ, resource, "Not authorized to view these comments.")

        query = select(Comment).where(
            Comment.context_type == kind.value,
            Comment.context_id == context_id,
        )
        if current_user.role == UserRole.TENANT.value or not await self.authz.has_management_access(
            current_user, resource_property(resource)
        ):
            query = query.where(Comment.is_internal_note.is_(False))
        result = await self.db.execute(query.order_by(Comment.created_at))
        return list(result.scalars().all())


def resource_property(resource) -> str | None:
    if isinstance(resource, Property):
        return resource.id
    return getattr(resource, "property_id", None)
