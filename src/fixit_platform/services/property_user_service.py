"""PropertyUser management: the (user, property, unit) role bridge."""

import logging

from sqlalchemy import func, select

from fixit_platform.domain.enums import (
    MANAGEMENT_ROLES,
    AuditAction,
    AuditResourceType,
    AuthAction,
    LeaseStatus,
    NotificationType,
    PropertyUserRole,
    UnitStatus,
    UserRole,
)
from fixit_platform.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from fixit_platform.domain.models import (
    Lease,
    Property,
    PropertyUser,
    Request,
    ScheduledMaintenance,
    Unit,
    User,
)
from fixit_platform.services.audit_service import AuditService, snapshot
from fixit_platform.services.authorization import AuthorizationService
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

VALID_ROLES = {role.value for role in PropertyUserRole}


def _role_values(roles) -> list[str]:
    values = []
    for role in roles:
        value = getattr(role, "value", role)
        if value not in VALID_ROLES:
            raise ValidationError(f"Invalid property role: {value}")
        if value not in values:
            values.append(value)
    if not values:
        raise ValidationError("At least one role is required.")
    return values


class PropertyUserService:
    """Creates, updates and retires PropertyUser associations."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.authz = AuthorizationService(ctx)
        self.notifications = NotificationService(ctx)

    async def find(
        self,
        user_id: str,
        property_id: str,
        unit_id: str | None = None,
    ) -> PropertyUser | None:
        """Look up the row for an exact (user, property, unit) triple."""
        result = await self.db.execute(
            select(PropertyUser).where(
                PropertyUser.user_id == user_id,
                PropertyUser.property_id == property_id,
                PropertyUser.unit_key == (unit_id or ""),
            )
        )
        return result.scalar_one_or_none()

    async def find_active_for_user(self, user_id: str, property_id: str) -> list[PropertyUser]:
        return await self.authz.active_property_users(user_id, property_id)

    async def acting_property_user(self, user, property_id: str, unit_id: str | None = None) -> PropertyUser | None:
        """Best PropertyUser row to attribute an action on (property, unit) to.

        Prefers the unit-specific tenancy, then a management row, then any row.
        """
        rows = await self.find_active_for_user(user.id, property_id)
        if not rows:
            return None
        for row in rows:
            if unit_id and row.unit_id == unit_id:
                return row
        for row in rows:
            if MANAGEMENT_ROLES.intersection(row.roles or []):
                return row
        return rows[0]

    async def attributable_property_user(self, user, property_id: str, unit_id: str | None = None) -> PropertyUser | None:
        """Like ``acting_property_user``, but gives an admin without a row an admin_access one.

        Must run inside the caller's transaction; the new row is flushed, not committed.
        """
        row = await self.acting_property_user(user, property_id, unit_id)
        if row is not None or user.role != UserRole.ADMIN.value:
            return row

        now = self.ctx.now()
        row = await self.find(user.id, property_id)
        if row is None:
            row = PropertyUser(
                user_id=user.id,
                property_id=property_id,
                roles=[PropertyUserRole.ADMIN_ACCESS.value],
                invited_by_id=user.id,
                created_at=now,
            )
            self.db.add(row)
        elif PropertyUserRole.ADMIN_ACCESS.value not in (row.roles or []):
            row.roles = [*(row.roles or []), PropertyUserRole.ADMIN_ACCESS.value]
        row.is_active = True
        row.start_date = now
        row.end_date = None
        await self.db.flush()
        logger.info("Admin %s attached to property %s with admin_access", user.id, property_id)
        return row

    async def get_management_users(self, property_id: str) -> list[User]:
        ids = await self.notifications.management_user_ids(property_id)
        if not ids:
            return []
        result = await self.db.execute(
            select(User).where(User.id.in_(ids), User.is_active.is_(True))
        )
        return list(result.scalars().all())

    async def list_for_property(self, property_id: str, current_user, include_inactive: bool = False) -> list[PropertyUser]:
        prop = await self.db.get(Property, property_id)
        if prop is None:
            raise NotFoundError("Property not found.")
        await self.authz.ensure(current_user, AuthAction.READ, prop, "Not authorized to view this property.")
        query = select(PropertyUser).where(PropertyUser.property_id == property_id)
        if not include_inactive:
            query = query.where(PropertyUser.is_active.is_(True))
        result = await self.db.execute(query.order_by(PropertyUser.created_at))
        return list(result.scalars().all())

    async def assign_user_to_property(
        self,
        property_id: str,
        user_id: str,
        roles,
        current_user,
        unit_id: str | None = None,
        ip_address: str | None = None,
    ) -> PropertyUser:
        """Grant roles on a property (or unit, for tenants).

        Raises ConflictError when the active row already carries every role.
        """
        roles = _role_values(roles)

        prop = await self.db.get(Property, property_id)
        if prop is None or not prop.is_active:
            raise NotFoundError("Property not found.")
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User to assign not found.")

        if not await self.authz.has_management_access(current_user, property_id):
            raise ForbiddenError("Not authorized to assign users to this property.")

        if PropertyUserRole.TENANT.value in roles:
            if not unit_id:
                raise ValidationError("Unit ID is required when assigning a tenant.")
            unit = await self.db.get(Unit, unit_id)
            if unit is None or unit.property_id != property_id:
                raise NotFoundError("Unit not found or does not belong to the specified property.")
        elif unit_id:
            raise ValidationError("Unit ID should only be provided when assigning a tenant role.")

        now = self.ctx.now()
        action = AuditAction.CREATE
        async with self.ctx.transaction("assign user to property"):
            assignment = await self.find(user_id, property_id, unit_id)
            old_value = snapshot(assignment)
            if assignment is not None:
                current_roles = list(assignment.roles or [])
                if assignment.is_active and all(role in current_roles for role in roles):
                    raise ConflictError(
                        "User is already assigned with the specified active roles for this property/unit."
                    )
                assignment.roles = current_roles + [r for r in roles if r not in current_roles]
                if not assignment.is_active:
                    assignment.start_date = now
                assignment.is_active = True
                assignment.end_date = None
                assignment.invited_by_id = current_user.id
                action = AuditAction.UPDATE
            else:
                assignment = PropertyUser(
                    user_id=user_id,
                    property_id=property_id,
                    unit_id=unit_id,
                    roles=roles,
                    is_active=True,
                    start_date=now,
                    invited_by_id=current_user.id,
                    created_at=now,
                )
                self.db.add(assignment)
            await self.db.flush()

            self.audit.log(
                action,
                AuditResourceType.PROPERTY_USER,
                assignment.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=assignment,
                description=f"User {user.email} assigned to property {prop.name} with roles {', '.join(roles)}.",
            )

        logger.info("User %s assigned to property %s roles=%s by %s", user_id, property_id, roles, current_user.id)

        await self.notifications.fan_out(
            NotificationType.PROPERTY_ADDED,
            f"You have been added to {prop.name} as {', '.join(roles)}.",
            actor=current_user,
            include_managers=False,
            extra_user_ids=[user_id],
            related_kind="Property",
            related_id=property_id,
            link=self.ctx.frontend_link(f"properties/{property_id}"),
        )
        return assignment

    async def remove_user_from_property(
        self,
        property_id: str,
        user_id: str,
        roles,
        current_user,
        unit_id: str | None = None,
        ip_address: str | None = None,
    ) -> PropertyUser:
        """Strip roles; deactivate the row when nothing is left or a tenancy ends."""
        roles = _role_values(roles)

        prop = await self.db.get(Property, property_id)
        if prop is None:
            raise NotFoundError("Property not found.")
        if not await self.authz.has_management_access(current_user, property_id):
            raise ForbiddenError("Not authorized to remove users from this property.")

        assignment = await self.find(user_id, property_id, unit_id)
        if (
            assignment is None
            or not assignment.is_active
            or not set(roles).intersection(assignment.roles or [])
        ):
            raise NotFoundError("User is not actively assigned with the specified roles for this property/unit.")

        removing_tenancy = PropertyUserRole.TENANT.value in roles and unit_id is not None
        if removing_tenancy:
            active_lease = await self.db.execute(
                select(Lease.id).where(
                    Lease.tenant_id == user_id,
                    Lease.unit_id == unit_id,
                    Lease.status == LeaseStatus.ACTIVE.value,
                    Lease.is_active.is_(True),
                )
            )
            if active_lease.first() is not None:
                raise ValidationError("Cannot remove tenant with an active lease for this unit. Terminate lease first.")

        async with self.ctx.transaction("remove user from property"):
            old_value = snapshot(assignment)
            remaining = [r for r in (assignment.roles or []) if r not in roles]
            if not remaining or removing_tenancy:
                self._deactivate(assignment)
            else:
                assignment.roles = remaining

            if removing_tenancy:
                unit = await self.db.get(Unit, unit_id)
                if unit is not None:
                    unit.tenant_ids = [t for t in (unit.tenant_ids or []) if t != user_id]
                    if not unit.tenant_ids and not await self._unit_has_active_lease(unit_id):
                        unit.status = UnitStatus.VACANT.value

            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.PROPERTY_USER,
                assignment.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=assignment,
                description=f"User {user_id} removed from property {prop.name} for roles {', '.join(roles)}.",
            )

        logger.info("User %s removed from property %s roles=%s", user_id, property_id, roles)
        return assignment

    async def delete_property_user(
        self,
        property_user_id: str,
        current_user,
        ip_address: str | None = None,
    ) -> bool:
        """Hard-delete an unreferenced row; deactivate it otherwise.

        Returns True if the row was physically removed.
        """
        assignment = await self.db.get(PropertyUser, property_user_id)
        if assignment is None:
            raise NotFoundError("Property association not found.")
        if not await self.authz.has_management_access(current_user, assignment.property_id):
            raise ForbiddenError("Not authorized to manage users on this property.")

        referenced = await self.is_referenced(assignment)
        async with self.ctx.transaction("delete property user"):
            old_value = snapshot(assignment)
            if referenced:
                self._deactivate(assignment)
                action = AuditAction.DEACTIVATE
            else:
                await self.db.delete(assignment)
                action = AuditAction.DELETE
            self.audit.log(
                action,
                AuditResourceType.PROPERTY_USER,
                property_user_id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=None if not referenced else assignment,
            )
        return not referenced

    async def is_referenced(self, assignment: PropertyUser) -> bool:
        """True if any request, schedule or lease points at this association."""
        checks = [
            select(func.count()).select_from(Request).where(
                (Request.created_by_property_user_id == assignment.id)
                | (Request.assigned_by_property_user_id == assignment.id)
            ),
            select(func.count()).select_from(ScheduledMaintenance).where(
                ScheduledMaintenance.created_by_property_user_id == assignment.id
            ),
        ]
        if assignment.unit_id:
            checks.append(
                select(func.count()).select_from(Lease).where(
                    Lease.tenant_id == assignment.user_id,
                    Lease.unit_id == assignment.unit_id,
                )
            )
        for query in checks:
            if (await self.db.execute(query)).scalar_one():
                return True
        return assignment.lease_id is not None

    def _deactivate(self, assignment: PropertyUser) -> None:
        assignment.is_active = False
        assignment.end_date = self.ctx.now()
        assignment.lease_id = None

    async def _unit_has_active_lease(self, unit_id: str) -> bool:
        result = await self.db.execute(
            select(Lease.id).where(
                Lease.unit_id == unit_id,
                Lease.status == LeaseStatus.ACTIVE.value,
                Lease.is_active.is_(True),
            )
        )
        return result.first() is not None
