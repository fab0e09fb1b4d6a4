"""User accounts: creation, visibility, roles, deactivation and preferences."""

import logging
import re

from sqlalchemy import func, or_, select, update

from fixit_platform.domain.enums import (
    AuditAction,
    AuditResourceType,
    NotificationType,
    RegistrationStatus,
    UserRole,
)
from fixit_platform.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from fixit_platform.domain.models import PropertyUser, User
from fixit_platform.domain.schemas import NotificationPreferencesUpdate, UserCreate, UserUpdate
from fixit_platform.services.audit_service import AuditService, snapshot
from fixit_platform.services.auth_service import get_user_by_email, hash_password, random_password_hash
from fixit_platform.services.authorization import AuthorizationService
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

PSEUDO_USER_DOMAIN = "external.vendor"

# Roles a landlord or property manager may create on their own
DELEGATED_ROLES = {UserRole.TENANT.value, UserRole.VENDOR.value}
VALID_NOTIFICATION_TYPES = {t.value for t in NotificationType}


class UserService:
    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.authz = AuthorizationService(ctx)
        self.notifications = NotificationService(ctx)

    async def _get(self, user_id: str) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    @staticmethod
    def _is_admin(user) -> bool:
        return user.role == UserRole.ADMIN.value

    async def _managed_user_ids(self, current_user) -> set[str]:
        """Users holding any PropertyUser row on a property ``current_user`` manages."""
        membership = await self.authz.membership(current_user)
        if not membership.managed_property_ids:
            return set()
        result = await self.db.execute(
            select(PropertyUser.user_id).where(
                PropertyUser.property_id.in_(membership.managed_property_ids)
            )
        )
        return set(result.scalars().all())

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create_user(
        self,
        data: UserCreate,
        current_user=None,
        ip_address: str | None = None,
    ) -> User:
        """Create an account. Without ``current_user`` this is self-registration as tenant."""
        role = data.role.value
        if current_user is None:
            if role != UserRole.TENANT.value:
                raise ForbiddenError("Self-registration is only available for tenants.")
        elif not self._is_admin(current_user):
            if current_user.role not in (UserRole.LANDLORD.value, UserRole.PROPERTY_MANAGER.value):
                raise ForbiddenError("Access denied: You do not have permission to create users.")
            if role not in DELEGATED_ROLES:
                raise ForbiddenError(
                    "Only administrators can create other admin, landlord, or property manager accounts."
                )

        email = data.email.strip().lower()
        if await get_user_by_email(self.db, email) is not None:
            raise ConflictError("A user with this email already exists.")

        now = self.ctx.now()
        async with self.ctx.transaction("create user"):
            user = User(
                first_name=data.first_name.strip(),
                last_name=(data.last_name or "").strip(),
                email=email,
                phone=data.phone,
                password_hash=hash_password(data.password) if data.password else None,
                role=role,
                registration_status=(
                    RegistrationStatus.ACTIVE.value if data.password
                    else RegistrationStatus.PENDING_PASSWORD_SET.value
                ),
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            self.db.add(user)
            await self.db.flush()
            self.audit.log(
                AuditAction.CREATE,
                AuditResourceType.USER,
                user.id,
                user=current_user or user,
                ip_address=ip_address,
                new_value=user,
                description=f"User {email} created with role {role}.",
            )

        logger.info("User %s (%s) created with role %s", user.id, email, role)
        return user

    async def get_user(self, user_id: str, current_user) -> User:
        user = await self._get(user_id)
        if user.id == current_user.id or self._is_admin(current_user):
            return user
        if user.id not in await self._managed_user_ids(current_user):
            raise ForbiddenError("Access denied: You do not have permission to view this user.")
        return user

    async def list_users(
        self,
        current_user,
        role: str | None = None,
        search: str | None = None,
        include_inactive: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[User], int]:
        """Admins see everyone; landlords and managers see users on their properties."""
        query = select(User)
        if not self._is_admin(current_user):
            if current_user.role not in (UserRole.LANDLORD.value, UserRole.PROPERTY_MANAGER.value):
                raise ForbiddenError("Access denied: You do not have permission to view other users.")
            visible = await self._managed_user_ids(current_user)
            if not visible:
                return [], 0
            query = query.where(User.id.in_(visible))

        if role:
            role = getattr(role, "value", role)
            if role not in {r.value for r in UserRole}:
                raise ValidationError(f"Invalid role filter: {role}")
            query = query.where(User.role == role)
        if not include_inactive:
            query = query.where(User.is_active.is_(True))
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
                User.email.ilike(pattern),
                User.phone.ilike(pattern),
            ))

        total = (await self.db.execute(
            select(func.count()).select_from(query.subquery())
        )).scalar_one()
        result = await self.db.execute(
            query.order_by(User.created_at.desc()).offset((max(page, 1) - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def update_user(
        self,
        user_id: str,
        data: UserUpdate,
        current_user,
        ip_address: str | None = None,
    ) -> User:
        user = await self._get(user_id)
        if user.id != current_user.id and not self._is_admin(current_user):
            raise ForbiddenError("Access denied: You are not authorized to update this user.")

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return user
        old_value = snapshot(user)
        async with self.ctx.transaction("update user"):
            for key, value in changes.items():
                if key in ("first_name", "last_name") and value is not None:
                    value = value.strip()
                setattr(user, key, value)
            user.updated_at = self.ctx.now()
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.USER,
                user.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=user,
            )
        return user

    async def update_user_role(
        self,
        user_id: str,
        role,
        current_user,
        ip_address: str | None = None,
    ) -> User:
        role = getattr(role, "value", role)
        if role not in {r.value for r in UserRole}:
            raise ValidationError("Invalid role provided.")
        if not self._is_admin(current_user):
            raise ForbiddenError("Access denied: Only administrators can update user roles.")
        user = await self._get(user_id)
        if user.id == current_user.id and role != UserRole.ADMIN.value:
            raise ForbiddenError("Administrators cannot change their own global role to a non-admin role.")
        if user.role == role:
            return user

        old_role = user.role
        async with self.ctx.transaction("update user role"):
            user.role = role
            user.updated_at = self.ctx.now()
            self.audit.log(
                AuditAction.ROLE_CHANGE,
                AuditResourceType.USER,
                user.id,
                user=current_user,
                ip_address=ip_address,
                old_value={"role": old_role},
                new_value={"role": role},
                description=f"Role of {user.email} changed from {old_role} to {role}.",
            )

        logger.info("User %s role changed %s -> %s by %s", user.id, old_role, role, current_user.id)
        return user

    async def deactivate_user(
        self,
        user_id: str,
        current_user,
        ip_address: str | None = None,
    ) -> User:
        """Deactivate the account and every PropertyUser row it holds."""
        if user_id == current_user.id:
            raise ValidationError("You cannot deactivate your own account.")
        if not self._is_admin(current_user):
            raise ForbiddenError("Access denied: Only administrators can deactivate users.")
        user = await self._get(user_id)
        if not user.is_active:
            raise ValidationError("User is already deactivated.")

        now = self.ctx.now()
        old_value = snapshot(user)
        async with self.ctx.transaction("deactivate user"):
            user.is_active = False
            user.registration_status = RegistrationStatus.DEACTIVATED.value
            user.updated_at = now
            result = await self.db.execute(
                update(PropertyUser)
                .where(PropertyUser.user_id == user.id, PropertyUser.is_active.is_(True))
                .values(is_active=False, end_date=now)
            )
            self.audit.log(
                AuditAction.DEACTIVATE,
                AuditResourceType.USER,
                user.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=user,
                metadata={"property_users_deactivated": result.rowcount or 0},
            )

        logger.info("User %s deactivated by %s", user.id, current_user.id)

        # Inactive users are skipped by fan_out, so notify the account directly
        await self.notifications.send_notification(
            user,
            NotificationType.USER_DEACTIVATED,
            "Your Fix-It account has been deactivated.",
            related_kind=AuditResourceType.USER.value,
            related_id=user.id,
            sender_id=current_user.id,
        )
        return user

    async def update_notification_preferences(
        self,
        user_id: str,
        data: NotificationPreferencesUpdate,
        current_user,
        ip_address: str | None = None,
    ) -> User:
        if user_id != current_user.id and not self._is_admin(current_user):
            raise ForbiddenError("You can only change your own notification preferences.")
        user = await self._get(user_id)

        merged = {channel: dict(values) for channel, values in (user.preferences or {}).items()}
        for channel in ("email", "sms"):
            updates = getattr(data, channel) or {}
            unknown = set(updates) - VALID_NOTIFICATION_TYPES
            if unknown:
                raise ValidationError(f"Unknown notification type(s): {', '.join(sorted(unknown))}")
            merged.setdefault(channel, {}).update(updates)

        old_value = {"preferences": user.preferences}
        async with self.ctx.transaction("update notification preferences"):
            user.preferences = merged
            self.audit.log(
                AuditAction.SETTINGS_CHANGE,
                AuditResourceType.USER,
                user.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value={"preferences": merged},
            )
        return user

    # ------------------------------------------------------------------
    # External identities
    # ------------------------------------------------------------------

    async def get_or_create_pseudo_user(self, name: str | None, phone: str | None) -> User:
        """Stable vendor-role account for an external public-link participant.

        Keyed by phone digits; reuses the account on later visits. The row is
        flushed into the caller's open transaction.
        """
        digits = re.sub(r"\D", "", phone or "")
        if not digits:
            raise ValidationError("Phone number is required.")
        email = f"{digits}@{PSEUDO_USER_DOMAIN}"

        existing = (await self.db.execute(select(User).where(User.email == email))).scalar_one_or_none()
        if existing is not None:
            return existing

        parts = (name or "External User").strip().split()
        now = self.ctx.now()
        user = User(
            first_name=parts[0] if parts else "External",
            last_name=" ".join(parts[1:]) or "User",
            email=email,
            phone=digits,
            role=UserRole.VENDOR.value,
            password_hash=random_password_hash(),
            registration_status=RegistrationStatus.ACTIVE.value,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self.db.add(user)
        await self.db.flush()
        logger.info("Created pseudo-user %s for external interaction", email)
        return user
