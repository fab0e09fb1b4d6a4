"""Invitations: emailed tokens that attach a person to a property on acceptance."""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import func, or_, select

from fixit_platform.domain.enums import (
    MANAGEMENT_ROLES,
    AuditAction,
    AuditResourceType,
    InviteStatus,
    NotificationType,
    PropertyUserRole,
    RegistrationStatus,
    UnitStatus,
    UserRole,
)
from fixit_platform.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from fixit_platform.domain.models import Invite, Property, PropertyUser, Unit, User
from fixit_platform.domain.schemas import InviteAccept, InviteCreate
from fixit_platform.services.audit_service import AuditService
from fixit_platform.services.auth_service import get_user_by_email, hash_password
from fixit_platform.services.authorization import AuthorizationService
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.notification_service import NotificationService
from fixit_platform.services.property_user_service import PropertyUserService

logger = logging.getLogger(__name__)

MAX_RESENDS = 3
RESEND_COOLDOWN = timedelta(hours=24)

P = PropertyUserRole

# Global role given to a person who signs up through an invite, by invited property role
_SIGNUP_ROLE = {
    P.LANDLORD.value: UserRole.LANDLORD,
    P.PROPERTY_MANAGER.value: UserRole.PROPERTY_MANAGER,
    P.TENANT.value: UserRole.TENANT,
    P.VENDOR.value: UserRole.VENDOR,
    P.VENDOR_ACCESS.value: UserRole.VENDOR,
}


@dataclass
class InviteAcceptance:
    user: User
    property_user: PropertyUser
    is_new_user: bool


def _signup_role(roles: list[str]) -> UserRole:
    for role in roles:
        if role in _SIGNUP_ROLE:
            return _SIGNUP_ROLE[role]
    return UserRole.TENANT


class InviteService:
    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.authz = AuthorizationService(ctx)
        self.notifications = NotificationService(ctx)
        self.property_users = PropertyUserService(ctx)

    def _link(self, invite: Invite) -> str:
        return self.ctx.frontend_link(f"accept-invite/{invite.token}")

    async def _get(self, invite_id: str) -> Invite:
        invite = await self.db.get(Invite, invite_id)
        if invite is None:
            raise NotFoundError("Invitation not found.")
        return invite

    async def _place_name(self, invite: Invite) -> str:
        prop = await self.db.get(Property, invite.property_id)
        name = prop.name if prop else "the property"
        if invite.unit_id:
            unit = await self.db.get(Unit, invite.unit_id)
            if unit is not None:
                name = f"{name} - Unit {unit.name}"
        return name

    async def can_invite(self, inviter, property_id: str, roles: list[str]) -> bool:
        """Admins invite anyone. Managers invite tenants and vendors; only landlords add managers."""
        if inviter.role == UserRole.ADMIN.value:
            return True
        rows = await self.authz.active_property_users(inviter.id, property_id)
        held = {role for row in rows for role in (row.roles or [])}
        if not MANAGEMENT_ROLES.intersection(held):
            return False
        for role in roles:
            if role in (P.LANDLORD.value, P.ADMIN_ACCESS.value):
                return False
            if role == P.PROPERTY_MANAGER.value and P.LANDLORD.value not in held:
                return False
        return True

    async def _pending_by_token(self, token: str) -> Invite:
        """Pending, unexpired invite for ``token``; an expired one is marked as such."""
        invite = (await self.db.execute(
            select(Invite).where(Invite.token == token, Invite.status == InviteStatus.PENDING.value)
        )).scalar_one_or_none()
        if invite is None:
            raise NotFoundError("Invalid or already processed invitation link.")
        if invite.expires_at <= self.ctx.now():
            async with self.ctx.transaction("expire invite"):
                invite.status = InviteStatus.EXPIRED.value
            raise ValidationError("Invitation link has expired.")
        return invite

    async def _deliver(self, invite: Invite, inviter, phone: str | None = None) -> None:
        place = await self._place_name(invite)
        roles = ", ".join(invite.roles)
        inviter_name = inviter.full_name or inviter.email
        link = self._link(invite)
        message = f"{inviter_name} invited you to join {place} as {roles}."

        result = await self.ctx.email.send_notification_email(invite.email, f"Invitation to {place}", message, link)
        if not result.get("ok"):
            logger.warning("Invitation email to %s not sent: %s", invite.email, result.get("error"))
        if phone:
            sms = await self.ctx.sms.send_sms(phone, f"Fix-It: {message} Accept: {link}")
            if not sms.get("ok"):
                logger.warning("Invitation SMS to %s not sent: %s", phone, sms.get("error"))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_invite(self, data: InviteCreate, current_user, ip_address: str | None = None) -> Invite:
        roles = list(dict.fromkeys(r.value for r in data.roles))
        email = data.email.strip().lower()

        prop = await self.db.get(Property, data.property_id)
        if prop is None or not prop.is_active:
            raise NotFoundError("Property not found.")
        if P.TENANT.value in roles:
            if not data.unit_id:
                raise ValidationError("Unit ID is required for tenant invites.")
            unit = await self.db.get(Unit, data.unit_id)
            if unit is None or unit.property_id != prop.id or not unit.is_active:
                raise NotFoundError("Unit not found in the specified property.")
        elif data.unit_id:
            raise ValidationError("Unit ID should only be provided when inviting a tenant.")
        if not await self.can_invite(current_user, prop.id, roles):
            raise ForbiddenError("Not authorized to invite users with these roles to this property.")

        existing_user = await get_user_by_email(self.db, email)
        if existing_user is not None:
            row = await self.property_users.find(existing_user.id, prop.id, data.unit_id)
            if row is not None and row.is_active and set(roles) <= set(row.roles or []):
                raise ConflictError(f"{email} already holds these roles on this property.")

        pending = (await self.db.execute(
            select(Invite).where(
                Invite.email == email,
                Invite.property_id == prop.id,
                Invite.status == InviteStatus.PENDING.value,
                Invite.expires_at > self.ctx.now(),
            )
        )).scalars().all()
        if any((i.unit_id or None) == (data.unit_id or None) and set(roles) & set(i.roles) for i in pending):
            raise ConflictError(f"A pending invitation for {email} already exists for this property.")

        now = self.ctx.now()
        async with self.ctx.transaction("create invite"):
            invite = Invite(
                email=email,
                roles=roles,
                property_id=prop.id,
                unit_id=data.unit_id,
                token=secrets.token_urlsafe(32),
                status=InviteStatus.PENDING.value,
                generated_by_id=current_user.id,
                expires_at=now + timedelta(days=self.ctx.settings.invite_expiry_days),
                resend_count=0,
                created_at=now,
            )
            self.db.add(invite)
            await self.db.flush()
            self.audit.log(
                AuditAction.CREATE,
                AuditResourceType.INVITE,
                invite.id,
                user=current_user,
                ip_address=ip_address,
                new_value={"email": email, "roles": roles, "property_id": prop.id, "unit_id": data.unit_id},
                description=f"Invitation sent to {email} for {', '.join(roles)} at {prop.name}.",
            )

        logger.info("Invite %s created for %s by %s", invite.id, email, current_user.id)
        await self._deliver(invite, current_user, data.phone)
        if existing_user is not None:
            await self.notifications.send_notification(
                existing_user,
                NotificationType.INVITATION,
                f"You've been invited as {', '.join(roles)} for {await self._place_name(invite)}.",
                link=self._link(invite),
                related_kind=AuditResourceType.INVITE.value,
                related_id=invite.id,
                sender_id=current_user.id,
            )
        return invite

    async def list_invites(
        self,
        current_user,
        status: str | None = None,
        property_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Invite], int]:
        """Invites the user sent or that target a property they manage."""
        query = select(Invite)
        if current_user.role != UserRole.ADMIN.value:
            managed = (await self.authz.membership(current_user)).managed_property_ids
            clauses = [Invite.generated_by_id == current_user.id]
            if managed:
                clauses.append(Invite.property_id.in_(managed))
            query = query.where(or_(*clauses))
        if status:
            query = query.where(Invite.status == getattr(status, "value", status))
        if property_id:
            query = query.where(Invite.property_id == property_id)

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        result = await self.db.execute(
            query.order_by(Invite.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def verify_invite(self, token: str) -> Invite:
        return await self._pending_by_token(token)

    async def accept_invite(self, token: str, data: InviteAccept, ip_address: str | None = None) -> InviteAcceptance:
        """Create or update the invitee's account and grant the invited roles."""
        invite = await self._pending_by_token(token)
        email = data.email.strip().lower()
        if email != invite.email:
            raise ValidationError("The email provided does not match the invited email.")

        user = await get_user_by_email(self.db, email)
        is_new = user is None
        if is_new and not (data.first_name and data.password):
            raise ValidationError("First name and password are required to create an account.")

        now = self.ctx.now()
        async with self.ctx.transaction("accept invite"):
            if is_new:
                user = User(
                    first_name=data.first_name.strip(),
                    last_name=(data.last_name or "").strip(),
                    email=email,
                    phone=data.phone,
                    password_hash=hash_password(data.password),
                    role=_signup_role(invite.roles).value,
                    registration_status=RegistrationStatus.ACTIVE.value,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(user)
                await self.db.flush()
            else:
                if data.first_name:
                    user.first_name = data.first_name.strip()
                if data.last_name:
                    user.last_name = data.last_name.strip()
                if data.phone:
                    user.phone = data.phone
                if data.password:
                    user.password_hash = hash_password(data.password)
                user.registration_status = RegistrationStatus.ACTIVE.value
                user.updated_at = now

            row = await self.property_users.find(user.id, invite.property_id, invite.unit_id)
            if row is None:
                row = PropertyUser(
                    user_id=user.id,
                    property_id=invite.property_id,
                    unit_id=invite.unit_id,
                    roles=list(invite.roles),
                    created_at=now,
                )
                self.db.add(row)
            else:
                row.roles = [*(row.roles or []), *(r for r in invite.roles if r not in (row.roles or []))]
            row.is_active = True
            row.start_date = now
            row.end_date = None
            row.invited_by_id = invite.generated_by_id

            if invite.unit_id and P.TENANT.value in invite.roles:
                unit = await self.db.get(Unit, invite.unit_id)
                if unit is not None and user.id not in (unit.tenant_ids or []):
                    unit.tenant_ids = [*(unit.tenant_ids or []), user.id]
                    unit.status = UnitStatus.OCCUPIED.value

            invite.status = InviteStatus.ACCEPTED.value
            invite.accepted_by_id = user.id
            invite.accepted_at = now
            await self.db.flush()
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.INVITE,
                invite.id,
                user=user,
                ip_address=ip_address,
                old_value={"status": InviteStatus.PENDING.value},
                new_value={"status": invite.status, "accepted_by_id": user.id, "property_user_id": row.id},
                description=f"Invitation accepted by {email}.",
            )

        logger.info("Invite %s accepted by %s (new user: %s)", invite.id, email, is_new)
        inviter = await self.db.get(User, invite.generated_by_id)
        if inviter is not None:
            await self.notifications.send_notification(
                inviter,
                NotificationType.INVITATION_ACCEPTED,
                f"{user.full_name or email} accepted your invitation as {', '.join(invite.roles)}.",
                related_kind=AuditResourceType.INVITE.value,
                related_id=invite.id,
                sender_id=user.id,
            )
        return InviteAcceptance(user=user, property_user=row, is_new_user=is_new)

    async def decline_invite(self, token: str, reason: str | None = None, ip_address: str | None = None) -> Invite:
        invite = await self._pending_by_token(token)
        async with self.ctx.transaction("decline invite"):
            invite.status = InviteStatus.DECLINED.value
            invite.decline_reason = reason
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.INVITE,
                invite.id,
                external_user_identifier=invite.email,
                ip_address=ip_address,
                old_value={"status": InviteStatus.PENDING.value},
                new_value={"status": invite.status, "decline_reason": reason},
            )

        inviter = await self.db.get(User, invite.generated_by_id)
        if inviter is not None:
            await self.notifications.send_notification(
                inviter,
                NotificationType.INVITATION_DECLINED,
                f"{invite.email} declined your invitation." + (f" Reason: {reason}" if reason else ""),
                related_kind=AuditResourceType.INVITE.value,
                related_id=invite.id,
            )
        return invite

    async def cancel_invite(self, invite_id: str, current_user, ip_address: str | None = None) -> Invite:
        invite = await self._get(invite_id)
        if current_user.role != UserRole.ADMIN.value and invite.generated_by_id != current_user.id:
            raise ForbiddenError("You are not authorized to cancel this invitation.")
        if invite.status != InviteStatus.PENDING.value:
            raise ValidationError(f"Only pending invitations can be cancelled (this one is {invite.status}).")

        async with self.ctx.transaction("cancel invite"):
            invite.status = InviteStatus.CANCELLED.value
            invite.revoked_by_id = current_user.id
            invite.revoked_at = self.ctx.now()
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.INVITE,
                invite.id,
                user=current_user,
                ip_address=ip_address,
                old_value={"status": InviteStatus.PENDING.value},
                new_value={"status": invite.status},
            )

        invitee = await get_user_by_email(self.db, invite.email)
        if invitee is not None:
            await self.notifications.send_notification(
                invitee,
                NotificationType.INVITATION_CANCELLED,
                f"Your invitation to {await self._place_name(invite)} has been cancelled.",
                related_kind=AuditResourceType.INVITE.value,
                related_id=invite.id,
                sender_id=current_user.id,
            )
        return invite

    async def resend_invite(self, invite_id: str, current_user, ip_address: str | None = None) -> Invite:
        """Re-send a pending invite and push its expiry out; at most 3 times, once a day."""
        invite = await self._get(invite_id)
        if current_user.role != UserRole.ADMIN.value and invite.generated_by_id != current_user.id:
            raise ForbiddenError("You are not authorized to resend this invitation.")
        if invite.status != InviteStatus.PENDING.value:
            raise ValidationError(f"Only pending invitations can be resent (this one is {invite.status}).")
        now = self.ctx.now()
        if invite.resend_count >= MAX_RESENDS or (
            invite.last_resend_at is not None and now - invite.last_resend_at < RESEND_COOLDOWN
        ):
            raise ConflictError("This invitation has been resent too many times or too recently.")

        async with self.ctx.transaction("resend invite"):
            invite.expires_at = now + timedelta(days=self.ctx.settings.invite_expiry_days)
            invite.resend_count += 1
            invite.last_resend_at = now
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.INVITE,
                invite.id,
                user=current_user,
                ip_address=ip_address,
                metadata={"resend_count": invite.resend_count, "expires_at": invite.expires_at},
                description=f"Invitation for {invite.email} resent.",
            )

        await self._deliver(invite, current_user)
        return invite
