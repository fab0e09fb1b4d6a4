"""Notification fan-out.

Runs after the primary write has committed. For each recipient an in-app
Notification row is always written; email and SMS go out through the
providers when the user has the address and has not opted out. Failures are
logged per recipient and never reach the caller.
"""

import logging

from sqlalchemy import select, update

from fixit_platform.domain.enums import (
    MANAGEMENT_ROLES,
    SMS_NOTIFICATION_TYPES,
    AssignedToModel,
    NotificationType,
    PropertyUserRole,
)
from fixit_platform.domain.errors import NotFoundError
from fixit_platform.domain.models import Notification, PropertyUser, User, Vendor
from fixit_platform.services.context import ServiceContext

logger = logging.getLogger(__name__)

N = NotificationType

SUBJECTS: dict[str, str] = {
    N.NEW_REQUEST.value: "New maintenance request",
    N.STATUS_UPDATE.value: "Maintenance request update",
    N.NEW_COMMENT.value: "New comment",
    N.ASSIGNMENT.value: "New assignment",
    N.REMINDER_DUE.value: "Maintenance due",
    N.REMINDER_OVERDUE.value: "Overdue maintenance request",
    N.TASK_COMPLETED.value: "Task completed",
    N.TASK_VERIFIED.value: "Task verified",
    N.PROPERTY_ADDED.value: "Added to a property",
    N.UNIT_ADDED.value: "Assigned to a unit",
    N.DOCUMENT_SHARED.value: "New document",
    N.USER_DEACTIVATED.value: "Account deactivated",
    N.LEASE_EXPIRY.value: "Lease expiring soon",
    N.LEASE_UPDATE.value: "Lease update",
    N.RENT_DUE.value: "Rent due",
    N.GENERAL_ALERT.value: "Fix-It alert",
    N.UNIT_UPDATE.value: "Unit update",
    N.INVITATION.value: "You have been invited",
    N.INVITATION_ACCEPTED.value: "Invitation accepted",
    N.INVITATION_DECLINED.value: "Invitation declined",
    N.INVITATION_CANCELLED.value: "Invitation cancelled",
}

# (recipient_id, recipient_model, email or None, phone or None)
Channels = tuple[str, str, str | None, str | None]


class NotificationService:
    """Computes recipient sets and dispatches in-app, email and SMS notifications."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db

    # ------------------------------------------------------------------
    # Recipient computation
    # ------------------------------------------------------------------

    async def management_user_ids(self, property_id: str) -> set[str]:
        """Distinct users with an active landlord/manager/admin_access row on the property."""
        result = await self.db.execute(
            select(PropertyUser.user_id, PropertyUser.roles).where(
                PropertyUser.property_id == property_id,
                PropertyUser.is_active.is_(True),
            )
        )
        return {
            user_id for user_id, roles in result.all()
            if MANAGEMENT_ROLES.intersection(roles or [])
        }

    async def unit_tenant_ids(self, unit_id: str) -> set[str]:
        result = await self.db.execute(
            select(PropertyUser.user_id, PropertyUser.roles).where(
                PropertyUser.unit_id == unit_id,
                PropertyUser.is_active.is_(True),
            )
        )
        return {
            user_id for user_id, roles in result.all()
            if PropertyUserRole.TENANT.value in (roles or [])
        }

    async def collect_recipients(
        self,
        resource=None,
        actor_id: str | None = None,
        include_creator: bool = True,
        include_assignee: bool = True,
        include_managers: bool = True,
        include_unit_tenants: bool = False,
        extra_user_ids=(),
    ) -> list[User]:
        """Union of the relevant user sets, deduplicated by id, minus the actor."""
        ids: set[str] = set(uid for uid in extra_user_ids if uid)

        if resource is not None:
            creator_pu_id = getattr(resource, "created_by_property_user_id", None)
            if include_creator and creator_pu_id:
                creator = await self.db.get(PropertyUser, creator_pu_id)
                if creator is not None:
                    ids.add(creator.user_id)

            if (
                include_assignee
                and getattr(resource, "assigned_to_model", None) == AssignedToModel.USER.value
                and getattr(resource, "assigned_to_id", None)
            ):
                ids.add(resource.assigned_to_id)

            property_id = getattr(resource, "property_id", None)
            if include_managers and property_id:
                ids |= await self.management_user_ids(property_id)

            unit_id = getattr(resource, "unit_id", None)
            if include_unit_tenants and unit_id:
                ids |= await self.unit_tenant_ids(unit_id)

        ids.discard(actor_id)
        if not ids:
            return []

        result = await self.db.execute(
            select(User).where(User.id.in_(ids), User.is_active.is_(True))
        )
        return sorted(result.scalars().all(), key=lambda u: u.id)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def create_in_app(
        self,
        recipient_id: str,
        notification_type: str,
        message: str,
        link: str | None = None,
        related_kind: str | None = None,
        related_id: str | None = None,
        sender_id: str | None = None,
        context_data: dict | None = None,
        recipient_model: str = AssignedToModel.USER.value,
    ) -> Notification:
        now = self.ctx.now()
        notification = Notification(
            recipient_id=recipient_id,
            recipient_model=recipient_model,
            sender_id=sender_id,
            type=getattr(notification_type, "value", notification_type),
            message=message,
            link=link,
            is_read=False,
            related_kind=related_kind,
            related_id=related_id,
            sent_at=now,
            context_data=context_data,
            created_at=now,
        )
        self.db.add(notification)
        await self.db.commit()
        return notification

    async def send_notification(
        self,
        recipient: User,
        notification_type: str,
        message: str,
        link: str | None = None,
        related_kind: str | None = None,
        related_id: str | None = None,
        sender_id: str | None = None,
        context_data: dict | None = None,
        subject: str | None = None,
        sms_text: str | None = None,
    ) -> Notification | None:
        """Deliver one notification on every enabled channel; never raises."""
        ntype = getattr(notification_type, "value", notification_type)
        return await self._deliver(
            self._channels(recipient, ntype), ntype, message, link,
            related_kind, related_id, sender_id, context_data, subject,
            sms_text=sms_text,
        )

    async def notify_vendor(
        self,
        vendor: Vendor,
        notification_type: str,
        message: str,
        link: str | None = None,
        related_kind: str | None = None,
        related_id: str | None = None,
        sender_id: str | None = None,
        context_data: dict | None = None,
    ) -> Notification | None:
        """Notify an external vendor record. Vendors have no preferences to honour."""
        ntype = getattr(notification_type, "value", notification_type)
        channels = (
            vendor.id,
            AssignedToModel.VENDOR.value,
            vendor.email,
            vendor.phone if ntype in SMS_NOTIFICATION_TYPES else None,
        )
        return await self._deliver(
            channels, ntype, message, link, related_kind, related_id, sender_id, context_data, None,
        )

    @staticmethod
    def _channels(recipient: User, ntype: str) -> Channels:
        """Recipient address tuple after applying the user's preferences."""
        email = recipient.email if recipient.wants("email", ntype) else None
        phone = (
            recipient.phone
            if ntype in SMS_NOTIFICATION_TYPES and recipient.wants("sms", ntype)
            else None
        )
        return recipient.id, AssignedToModel.USER.value, email, phone

    async def _deliver(
        self,
        channels: Channels,
        ntype: str,
        message: str,
        link: str | None,
        related_kind: str | None,
        related_id: str | None,
        sender_id: str | None,
        context_data: dict | None,
        subject: str | None,
        sms_text: str | None = None,
    ) -> Notification | None:
        # Works from plain values; a rollback below expires ORM instances
        recipient_id, recipient_model, email, phone = channels
        notification = None

        try:
            notification = await self.create_in_app(
                recipient_id, ntype, message, link, related_kind, related_id, sender_id, context_data,
                recipient_model=recipient_model,
            )
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "In-app notification failed for recipient=%s type=%s related=%s: %s",
                recipient_id, ntype, related_id, e,
            )

        if email:
            try:
                await self.ctx.email.send_notification_email(
                    email, subject or SUBJECTS.get(ntype, "Fix-It notification"), message, link,
                )
            except Exception as e:
                logger.error("Email notification failed for recipient=%s type=%s: %s", recipient_id, ntype, e)

        if phone:
            try:
                text = sms_text or f"Fix-It: {message}"
                if link and not sms_text:
                    text += f" {link}"
                await self.ctx.sms.send_sms(phone, text)
            except Exception as e:
                logger.error("SMS notification failed for recipient=%s type=%s: %s", recipient_id, ntype, e)

        return notification

    async def fan_out(
        self,
        notification_type: str,
        message: str,
        resource=None,
        actor=None,
        link: str | None = None,
        related_kind: str | None = None,
        related_id: str | None = None,
        include_creator: bool = True,
        include_assignee: bool = True,
        include_managers: bool = True,
        include_unit_tenants: bool = False,
        extra_user_ids=(),
        context_data: dict | None = None,
        subject: str | None = None,
        sms_text: str | None = None,
    ) -> int:
        """Notify everyone relevant to ``resource`` except ``actor``. Returns recipient count."""
        actor_id = getattr(actor, "id", actor)
        try:
            recipients = await self.collect_recipients(
                resource,
                actor_id=actor_id,
                include_creator=include_creator,
                include_assignee=include_assignee,
                include_managers=include_managers,
                include_unit_tenants=include_unit_tenants,
                extra_user_ids=extra_user_ids,
            )
        except Exception as e:
            logger.error(
                "Recipient computation failed for type=%s related=%s actor=%s: %s",
                notification_type, related_id, actor_id, e,
            )
            return 0

        if related_id is None and resource is not None:
            related_id = getattr(resource, "id", None)
        if related_kind is None and resource is not None:
            related_kind = type(resource).__name__

        ntype = getattr(notification_type, "value", notification_type)
        channels = [self._channels(recipient, ntype) for recipient in recipients]
        for recipient_channels in channels:
            await self._deliver(
                recipient_channels, ntype, message, link,
                related_kind, related_id, actor_id, context_data, subject,
                sms_text=sms_text,
            )

        logger.info(
            "Fan-out %s for %s %s reached %d recipient(s)",
            ntype, related_kind, related_id, len(channels),
        )
        return len(channels)

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    def _inbox(self, user):
        return select(Notification).where(
            Notification.recipient_id == user.id,
            Notification.recipient_model == AssignedToModel.USER.value,
        )

    async def list_notifications(
        self,
        user,
        unread_only: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> list[Notification]:
        query = self._inbox(user)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        query = (
            query.order_by(Notification.created_at.desc())
            .offset((max(page, 1) - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _owned(self, notification_id: str, user) -> Notification:
        notification = await self.db.get(Notification, notification_id)
        if (
            notification is None
            or notification.recipient_id != user.id
            or notification.recipient_model != AssignedToModel.USER.value
        ):
            raise NotFoundError("Notification not found.")
        return notification

    async def mark_as_read(self, notification_id: str, user) -> Notification:
        notification = await self._owned(notification_id, user)
        async with self.ctx.transaction("mark notification read"):
            notification.is_read = True
            notification.read_at = self.ctx.now()
        return notification

    async def mark_all_as_read(self, user) -> int:
        async with self.ctx.transaction("mark all notifications read"):
            result = await self.db.execute(
                update(Notification)
                .where(
                    Notification.recipient_id == user.id,
                    Notification.recipient_model == AssignedToModel.USER.value,
                    Notification.is_read.is_(False),
                )
                .values(is_read=True, read_at=self.ctx.now())
            )
        return result.rowcount or 0

    async def delete_notification(self, notification_id: str, user) -> None:
        notification = await self._owned(notification_id, user)
        async with self.ctx.transaction("delete notification"):
            await self.db.delete(notification)
