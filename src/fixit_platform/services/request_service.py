"""Maintenance request lifecycle.

Every mutation follows the same shape: authorize, open a transaction,
mutate and audit, commit, then fan out notifications outside the
transaction.
"""

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select

from fixit_platform.domain.enums import (
    AssignedToModel,
    AuditAction,
    AuditResourceType,
    AuthAction,
    CommentContextType,
    NotificationType,
    RequestStatus,
    UserRole,
)
from fixit_platform.domain.errors import (
    AppError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from fixit_platform.domain.models import (
    Comment,
    Media,
    Notification,
    Property,
    Request,
    Unit,
    User,
    Vendor,
)
from fixit_platform.domain.schemas import RequestCreate, RequestUpdate
from fixit_platform.services.audit_service import AuditService, snapshot
from fixit_platform.services.authorization import AuthorizationService, ResourceScope
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.media_service import MediaService, MediaUpload
from fixit_platform.services.notification_service import NotificationService
from fixit_platform.services.property_user_service import PropertyUserService
from fixit_platform.services.sms_service import request_update_text
from fixit_platform.services.request_state_machine import (
    FEEDBACK_STATES,
    TERMINAL_STATES,
    RequestStateMachine,
)

logger = logging.getLogger(__name__)

S = RequestStatus

ASSIGNABLE_USER_ROLES = {
    UserRole.PROPERTY_MANAGER.value,
    UserRole.LANDLORD.value,
    UserRole.ADMIN.value,
    UserRole.VENDOR.value,
}

ASSIGNABLE_STATES = {S.NEW, S.ASSIGNED, S.IN_PROGRESS, S.REOPENED}

# Fields a tenant creator may still edit while the request is new
CREATOR_EDITABLE_FIELDS = {"title", "description"}


def history_entry(status, changed_by: str | None, changed_at: datetime, notes: str | None = None) -> dict:
    return {
        "status": getattr(status, "value", status),
        "changed_at": changed_at.isoformat(),
        "changed_by": changed_by,
        "notes": notes,
    }


class RequestService:
    """Create, query and drive maintenance requests through their lifecycle."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.authz = AuthorizationService(ctx)
        self.notifications = NotificationService(ctx)
        self.property_users = PropertyUserService(ctx)
        self.media = MediaService(ctx)
        self.machine = RequestStateMachine()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get(self, request_id: str) -> Request:
        request = await self.db.get(Request, request_id)
        if request is None:
            raise NotFoundError("Maintenance request not found.")
        return request

    def _link(self, request: Request) -> str:
        return self.ctx.frontend_link(f"requests/{request.id}")

    def apply_status(self, request: Request, target: RequestStatus, changed_by: str | None, notes: str | None = None) -> None:
        """Set the status and append exactly one history entry."""
        now = self.ctx.now()
        request.status = target.value
        request.status_history = list(request.status_history or []) + [
            history_entry(target, changed_by, now, notes)
        ]
        if target == S.COMPLETED:
            request.resolved_at = now
        request.updated_at = now

    async def resolve_assignee(self, assigned_to_id: str, assigned_to_model) -> User | Vendor:
        """Load the polymorphic assignee and check it can take work."""
        model = AssignedToModel(assigned_to_model)
        if model == AssignedToModel.USER:
            user = await self.db.get(User, assigned_to_id)
            if user is None or not user.is_active:
                raise NotFoundError("Assignee user not found or inactive.")
            if user.role not in ASSIGNABLE_USER_ROLES:
                raise ValidationError(f"Users with role {user.role} cannot be assigned requests.")
            return user
        vendor = await self.db.get(Vendor, assigned_to_id)
        if vendor is None or not vendor.is_active:
            raise NotFoundError("Vendor not found or inactive.")
        return vendor

    async def _visibility_clause(self, user):
        """SQL filter for the requests ``user`` may see; None means unrestricted."""
        if user.role == UserRole.ADMIN.value:
            return None
        membership = await self.authz.membership(user)
        return membership.visibility_clause(Request, user.id)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create_request(
        self,
        data: RequestCreate,
        current_user,
        ip_address: str | None = None,
    ) -> Request:
        """Open a new request on a property (and optionally a unit)."""
        prop = await self.db.get(Property, data.property_id)
        if prop is None or not prop.is_active:
            raise NotFoundError("Property not found.")
        if data.unit_id:
            unit = await self.db.get(Unit, data.unit_id)
            if unit is None or unit.property_id != data.property_id or not unit.is_active:
                raise NotFoundError("Unit not found in the specified property.")

        await self.authz.ensure(
            current_user,
            AuthAction.CREATE,
            ResourceScope(data.property_id, data.unit_id),
            "Not authorized to create requests for this property or unit.",
        )
        now = self.ctx.now()
        async with self.ctx.transaction("create request"):
            creator = await self.property_users.attributable_property_user(
                current_user, data.property_id, data.unit_id,
            )
            request = Request(
                title=data.title,
                description=data.description,
                category=data.category.value,
                priority=data.priority.value,
                property_id=data.property_id,
                unit_id=data.unit_id,
                created_by_property_user_id=creator.id if creator else None,
                status=S.NEW.value,
                status_history=[history_entry(S.NEW, current_user.id, now, "Request created")],
                created_at=now,
                updated_at=now,
            )
            self.db.add(request)
            await self.db.flush()
            self.audit.log(
                AuditAction.CREATE,
                AuditResourceType.REQUEST,
                request.id,
                user=current_user,
                ip_address=ip_address,
                new_value=request,
                description=f"Request '{request.title}' created.",
            )

        logger.info("Request %s created by %s on property %s", request.id, current_user.id, request.property_id)

        await self.notifications.fan_out(
            NotificationType.NEW_REQUEST,
            f"New maintenance request '{request.title}' at {prop.name}.",
            resource=request,
            actor=current_user,
            link=self._link(request),
            context_data={"priority": request.priority, "category": request.category},
        )
        return request

    async def list_requests(
        self,
        current_user,
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
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Request], int]:
        """Role-filtered, paginated request listing. Returns (items, total)."""
        query = select(Request)
        visibility = await self._visibility_clause(current_user)
        if visibility is not None:
            query = query.where(visibility)
        if not include_inactive:
            query = query.where(Request.is_active.is_(True))
        if status:
            query = query.where(Request.status == getattr(status, "value", status))
        if category:
            query = query.where(Request.category == getattr(category, "value", category))
        if priority:
            query = query.where(Request.priority == getattr(priority, "value", priority))
        if property_id:
            query = query.where(Request.property_id == property_id)
        if unit_id:
            query = query.where(Request.unit_id == unit_id)
        if assigned_to_id:
            query = query.where(Request.assigned_to_id == assigned_to_id)
        if search:
            pattern = f"%{search}%"
            query = query.where(Request.title.ilike(pattern) | Request.description.ilike(pattern))
        if start_date:
            query = query.where(Request.created_at >= start_date)
        if end_date:
            query = query.where(Request.created_at <= end_date)

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        page = max(page, 1)
        result = await self.db.execute(
            query.order_by(Request.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_request(self, request_id: str, current_user) -> Request:
        request = await self._get(request_id)
        await self.authz.ensure(current_user, AuthAction.READ, request, "Not authorized to view this request.")
        return request

    async def update_request(
        self,
        request_id: str,
        data: RequestUpdate,
        current_user,
        ip_address: str | None = None,
    ) -> Request:
        """Edit request details. Non-managers may only touch title/description while new."""
        request = await self._get(request_id)
        await self.authz.ensure(current_user, AuthAction.UPDATE, request, "Not authorized to update this request.")

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No fields provided for update.")
        if not await self.authz.has_management_access(current_user, request.property_id):
            if request.status != S.NEW.value:
                raise ForbiddenError("Requests can only be edited by their creator while new.")
            blocked = set(changes) - CREATOR_EDITABLE_FIELDS
            if blocked:
                raise ForbiddenError(f"Not allowed to change: {', '.join(sorted(blocked))}.")

        async with self.ctx.transaction("update request"):
            old_value = snapshot(request)
            for key, value in changes.items():
                setattr(request, key, getattr(value, "value", value))
            request.updated_at = self.ctx.now()
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.REQUEST,
                request.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=request,
            )
        return request

    async def delete_request(
        self,
        request_id: str,
        current_user,
        ip_address: str | None = None,
    ) -> None:
        """Hard-delete a request with its comments, notifications and media."""
        request = await self._get(request_id)
        await self.authz.ensure(current_user, AuthAction.DELETE, request, "Not authorized to delete this request.")

        media_rows = await self.media.for_resource(AuditResourceType.REQUEST.value, request_id)
        async with self.ctx.transaction("delete request"):
            old_value = snapshot(request)
            await self.db.execute(
                delete(Comment).where(
                    Comment.context_type == CommentContextType.REQUEST.value,
                    Comment.context_id == request_id,
                )
            )
            await self.db.execute(
                delete(Notification).where(
                    Notification.related_kind == AuditResourceType.REQUEST.value,
                    Notification.related_id == request_id,
                )
            )
            await self.db.execute(
                delete(Media).where(
                    Media.related_to == AuditResourceType.REQUEST.value,
                    Media.related_id == request_id,
                )
            )
            await self.db.delete(request)
            self.audit.log(
                AuditAction.DELETE,
                AuditResourceType.REQUEST,
                request_id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                description=f"Request '{old_value['title']}' deleted with {len(media_rows)} media file(s).",
            )

        deleted = await self.media.purge_objects(media_rows)
        logger.info(
            "Request %s deleted by %s; removed %d/%d stored file(s)",
            request_id, current_user.id, deleted, len(media_rows),
        )

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def update_status(
        self,
        request_id: str,
        status,
        current_user,
        notes: str | None = None,
        ip_address: str | None = None,
    ) -> Request:
        """Advance a request's status, routing special transitions to their operations."""
        target = RequestStatus(status)
        special = {
            S.VERIFIED: self.verify_request,
            S.REOPENED: self.reopen_request,
            S.ARCHIVED: self.archive_request,
            S.CANCELLED: self.cancel_request,
        }
        if target in special:
            return await special[target](request_id, current_user, notes=notes, ip_address=ip_address)
        if target == S.ASSIGNED:
            raise ValidationError("Use the assign operation to assign a request.")

        request = await self._get(request_id)
        await self.authz.ensure(
            current_user, AuthAction.STATUS_ADVANCE, request, "Not authorized to update this request's status.",
        )
        is_management = await self.authz.has_management_access(current_user, request.property_id)
        self.machine.validate_transition(request.status, target, is_management)

        old_status = request.status
        async with self.ctx.transaction("update request status"):
            self.apply_status(request, target, current_user.id, notes)
            self.audit.log(
                AuditAction.STATUS_UPDATE,
                AuditResourceType.REQUEST,
                request.id,
                user=current_user,
                ip_address=ip_address,
                old_value={"status": old_status},
                new_value={"status": request.status},
                description=notes,
            )

        ntype = NotificationType.TASK_COMPLETED if target == S.COMPLETED else NotificationType.STATUS_UPDATE
        await self.notifications.fan_out(
            ntype,
            f"Request '{request.title}' is now {request.status}.",
            resource=request,
            actor=current_user,
            link=self._link(request),
            context_data={"old_status": old_status, "new_status": request.status},
            sms_text=request_update_text(request.title, request.status, self._link(request)),
        )
        return request

    async def _management_transition(
        self,
        request_id: str,
        current_user,
        target: RequestStatus,
        auth_action: AuthAction,
        audit_action: AuditAction,
        notification_type: NotificationType,
        notes: str | None,
        ip_address: str | None,
        mutate=None,
    ) -> Request:
        request = await self._get(request_id)
        await self.authz.ensure(
            current_user, auth_action, request, f"Not authorized to {auth_action.value} this request.",
        )
        is_management = await self.authz.has_management_access(current_user, request.property_id)
        self.machine.validate_transition(request.status, target, is_management)

        old_status = request.status
        async with self.ctx.transaction(f"{auth_action.value} request"):
            self.apply_status(request, target, current_user.id, notes)
            if mutate is not None:
                mutate(request)
            self.audit.log(
                audit_action,
                AuditResourceType.REQUEST,
                request.id,
                user=current_user,
                ip_address=ip_address,
                old_value={"status": old_status},
                new_value={"status": request.status},
                description=notes,
            )

        logger.info("Request %s %s -> %s by %s", request.id, old_status, request.status, current_user.id)
        await self.notifications.fan_out(
            notification_type,
            f"Request '{request.title}' was {request.status}.",
            resource=request,
            actor=current_user,
            link=self._link(request),
            context_data={"old_status": old_status, "new_status": request.status},
            sms_text=request_update_text(request.title, request.status, self._link(request)),
        )
        return request

    async def verify_request(self, request_id: str, current_user, notes: str | None = None, ip_address: str | None = None) -> Request:
        def mark_verified(request: Request) -> None:
            request.verified_by_id = current_user.id

        return await self._management_transition(
            request_id, current_user, S.VERIFIED, AuthAction.VERIFY, AuditAction.VERIFY,
            NotificationType.TASK_VERIFIED, notes, ip_address, mutate=mark_verified,
        )

    async def reopen_request(self, request_id: str, current_user, notes: str | None = None, ip_address: str | None = None) -> Request:
        def clear_resolution(request: Request) -> None:
            request.resolved_at = None
            request.verified_by_id = None

        return await self._management_transition(
            request_id, current_user, S.REOPENED, AuthAction.REOPEN, AuditAction.REOPEN,
            NotificationType.STATUS_UPDATE, notes, ip_address, mutate=clear_resolution,
        )

    async def archive_request(self, request_id: str, current_user, notes: str | None = None, ip_address: str | None = None) -> Request:
        return await self._management_transition(
            request_id, current_user, S.ARCHIVED, AuthAction.ARCHIVE, AuditAction.ARCHIVE,
            NotificationType.STATUS_UPDATE, notes, ip_address,
        )

    async def cancel_request(self, request_id: str, current_user, notes: str | None = None, ip_address: str | None = None) -> Request:
        return await self._management_transition(
            request_id, current_user, S.CANCELLED, AuthAction.CANCEL, AuditAction.CANCEL,
            NotificationType.STATUS_UPDATE, notes, ip_address,
        )

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    async def assign_request(
        self,
        request_id: str,
        assigned_to_id: str,
        assigned_to_model,
        current_user,
        ip_address: str | None = None,
    ) -> Request:
        """Assign to a User or Vendor; new/reopened requests move to assigned.

        Re-assigning the current assignee only refreshes ``assigned_at``.
        """
        request = await self._get(request_id)
        await self.authz.ensure(current_user, AuthAction.ASSIGN, request, "Not authorized to assign this request.")
        if RequestStatus(request.status) not in ASSIGNABLE_STATES:
            raise ValidationError(f"Cannot assign a request that is {request.status}.")

        model = AssignedToModel(assigned_to_model)
        assignee = await self.resolve_assignee(assigned_to_id, model)
        same_assignee = request.assigned_to_id == assigned_to_id and request.assigned_to_model == model.value

        old_value = {
            "assigned_to_id": request.assigned_to_id,
            "assigned_to_model": request.assigned_to_model,
            "status": request.status,
        }
        async with self.ctx.transaction("assign request"):
            assigner = await self.property_users.attributable_property_user(
                current_user, request.property_id, request.unit_id,
            )
            request.assigned_at = self.ctx.now()
            if not same_assignee:
                request.assigned_to_id = assigned_to_id
                request.assigned_to_model = model.value
                request.assigned_by_property_user_id = assigner.id if assigner else None
            if request.status in (S.NEW.value, S.REOPENED.value):
                self.machine.validate_transition(request.status, S.ASSIGNED, is_management=True)
                self.apply_status(request, S.ASSIGNED, current_user.id, f"Assigned to {model.value} {assigned_to_id}")
            self.audit.log(
                AuditAction.ASSIGN,
                AuditResourceType.REQUEST,
                request.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value={
                    "assigned_to_id": request.assigned_to_id,
                    "assigned_to_model": request.assigned_to_model,
                    "status": request.status,
                },
                description="Assignment refreshed." if same_assignee else None,
            )

        if same_assignee:
            return request

        assignee_name = assignee.full_name if isinstance(assignee, User) else assignee.name
        message = f"Request '{request.title}' has been assigned to {assignee_name}."
        if isinstance(assignee, Vendor):
            await self.notifications.notify_vendor(
                assignee,
                NotificationType.ASSIGNMENT,
                f"You have been assigned maintenance request '{request.title}'.",
                link=self._link(request),
                related_kind=AuditResourceType.REQUEST.value,
                related_id=request.id,
                sender_id=current_user.id,
            )
        await self.notifications.fan_out(
            NotificationType.ASSIGNMENT,
            message,
            resource=request,
            actor=current_user,
            link=self._link(request),
            context_data={"assigned_to_model": model.value},
        )
        return request

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def upload_media(
        self,
        request_id: str,
        uploads: list[MediaUpload],
        current_user,
        ip_address: str | None = None,
    ) -> list[Media]:
        request = await self._get(request_id)
        if not (
            await self.authz.authorize(current_user, AuthAction.UPDATE, request)
            or await self.authz.authorize(current_user, AuthAction.COMMENT, request)
        ):
            raise ForbiddenError("Not authorized to upload media to this request.")

        rows = await self.media.upload_all(
            uploads,
            related_to=AuditResourceType.REQUEST.value,
            related_id=request.id,
            uploaded_by_id=current_user.id,
            folder=f"requests/{request.id}",
        )
        try:
            async with self.ctx.transaction("upload request media"):
                await self.db.flush()
                self.audit.log(
                    AuditAction.FILE_UPLOAD,
                    AuditResourceType.REQUEST,
                    request.id,
                    user=current_user,
                    ip_address=ip_address,
                    new_value={"media_ids": [row.id for row in rows]},
                    description=f"{len(rows)} file(s) uploaded.",
                )
        except AppError:
            await self.media.purge_objects(rows)
            raise
        return rows

    async def delete_media(
        self,
        request_id: str,
        media_id: str,
        current_user,
        ip_address: str | None = None,
    ) -> None:
        request = await self._get(request_id)
        await self.authz.ensure(current_user, AuthAction.UPDATE, request, "Not authorized to delete media from this request.")
        media = await self.db.get(Media, media_id)
        if media is None or media.related_id != request.id:
            raise NotFoundError("Media not found on this request.")

        url, mime_type = media.url, media.mime_type
        async with self.ctx.transaction("delete request media"):
            old_value = snapshot(media)
            await self.db.delete(media)
            self.audit.log(
                AuditAction.FILE_DELETE,
                AuditResourceType.MEDIA,
                media_id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
            )
        await self.ctx.storage.delete_by_url(url, mime_type)

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    async def submit_feedback(
        self,
        request_id: str,
        rating: int,
        comment: str | None,
        current_user,
        ip_address: str | None = None,
    ) -> Request:
        """Record the creating tenant's one-time rating of finished work."""
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be an integer between 1 and 5.")

        request = await self._get(request_id)
        if current_user.role != UserRole.TENANT.value or not await self.authz.is_creator(current_user, request):
            raise ForbiddenError("Only the tenant who created this request can leave feedback.")
        if RequestStatus(request.status) not in FEEDBACK_STATES:
            raise ValidationError("Feedback can only be submitted for completed or verified requests.")
        if request.feedback:
            raise ConflictError("Feedback has already been submitted for this request.")

        async with self.ctx.transaction("submit feedback"):
            request.feedback = {
                "rating": rating,
                "comment": comment,
                "submitted_at": self.ctx.now().isoformat(),
                "submitted_by": current_user.id,
            }
            self.audit.log(
                AuditAction.FEEDBACK,
                AuditResourceType.REQUEST,
                request.id,
                user=current_user,
                ip_address=ip_address,
                new_value={"feedback": request.feedback},
            )

        await self.notifications.fan_out(
            NotificationType.GENERAL_ALERT,
            f"Tenant rated request '{request.title}' {rating}/5.",
            resource=request,
            actor=current_user,
            include_assignee=False,
            link=self._link(request),
        )
        return request

    # ------------------------------------------------------------------
    # Public link
    # ------------------------------------------------------------------

    async def enable_public_link(
        self,
        request_id: str,
        current_user,
        expires_in_days: int | None = None,
        rotate: bool = False,
        ip_address: str | None = None,
    ) -> dict:
        """Create or refresh the vendor-facing link. Returns {public_link, token, expires_at}."""
        request = await self._get(request_id)
        await self.authz.ensure(current_user, AuthAction.MANAGE, request, "Not authorized to share this request.")
        if RequestStatus(request.status) in TERMINAL_STATES:
            raise ValidationError(f"Cannot share a request that is {request.status}.")

        days = expires_in_days if expires_in_days is not None else self.ctx.settings.public_link_default_days
        if days < 1:
            raise ValidationError("Public links must be valid for at least one day.")

        async with self.ctx.transaction("enable request public link"):
            if not request.public_token or rotate:
                request.public_token = secrets.token_hex(24)
            request.public_link_enabled = True
            request.public_link_expires_at = self.ctx.now() + timedelta(days=days)
            self.audit.log(
                AuditAction.PUBLIC_LINK_ENABLED,
                AuditResourceType.REQUEST,
                request.id,
                user=current_user,
                ip_address=ip_address,
                new_value={"expires_at": request.public_link_expires_at, "rotated": rotate},
            )

        return {
            "public_link": self.ctx.frontend_link(f"requests/public/{request.public_token}"),
            "token": request.public_token,
            "expires_at": request.public_link_expires_at,
        }

    async def disable_public_link(
        self,
        request_id: str,
        current_user,
        ip_address: str | None = None,
    ) -> Request:
        request = await self._get(request_id)
        await self.authz.ensure(current_user, AuthAction.MANAGE, request, "Not authorized to manage this request's link.")
        async with self.ctx.transaction("disable request public link"):
            request.public_link_enabled = False
            self.audit.log(
                AuditAction.PUBLIC_LINK_DISABLED,
                AuditResourceType.REQUEST,
                request.id,
                user=current_user,
                ip_address=ip_address,
            )
        return request
