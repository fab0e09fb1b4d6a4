"""Unit CRUD and tenant placement."""

import logging

from sqlalchemy import func, or_, select, update

from fixit_platform.domain.enums import (
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
from fixit_platform.domain.models import Lease, Property, PropertyUser, Request, ScheduledMaintenance, Unit, User
from fixit_platform.domain.schemas import UnitCreate, UnitUpdate
from fixit_platform.services.audit_service import AuditService, snapshot
from fixit_platform.services.authorization import AuthorizationService
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.notification_service import NotificationService
from fixit_platform.services.property_user_service import PropertyUserService

logger = logging.getLogger(__name__)


def _is_tenancy(row: PropertyUser) -> bool:
    return PropertyUserRole.TENANT.value in (row.roles or [])


class UnitService:
    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.authz = AuthorizationService(ctx)
        self.notifications = NotificationService(ctx)
        self.property_users = PropertyUserService(ctx)

    async def _property(self, property_id: str) -> Property:
        prop = await self.db.get(Property, property_id)
        if prop is None or not prop.is_active:
            raise NotFoundError("Property not found.")
        return prop

    async def _get(self, property_id: str, unit_id: str) -> Unit:
        unit = await self.db.get(Unit, unit_id)
        if unit is None or unit.property_id != property_id or not unit.is_active:
            raise NotFoundError("Unit not found in the specified property.")
        return unit

    def _link(self, unit: Unit) -> str:
        return self.ctx.frontend_link(f"properties/{unit.property_id}/units/{unit.id}")

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create_unit(
        self,
        property_id: str,
        data: UnitCreate,
        current_user,
        ip_address: str | None = None,
    ) -> Unit:
        prop = await self._property(property_id)
        await self.authz.ensure(current_user, AuthAction.MANAGE, prop, "Not authorized to create units for this property.")

        now = self.ctx.now()
        async with self.ctx.transaction("create unit"):
            unit = Unit(
                property_id=prop.id,
                name=data.name.strip(),
                floor=data.floor,
                bedrooms=data.bedrooms,
                bathrooms=data.bathrooms,
                rent_amount=data.rent_amount,
                status=data.status.value,
                tenant_ids=[],
                created_at=now,
                updated_at=now,
            )
            self.db.add(unit)
            await self.db.flush()
            self.audit.log(
                AuditAction.CREATE,
                AuditResourceType.UNIT,
                unit.id,
                user=current_user,
                ip_address=ip_address,
                new_value=unit,
                description=f"Unit {unit.name} created in {prop.name}.",
            )

        logger.info("Unit %s (%s) created in property %s", unit.id, unit.name, prop.id)
        return unit

    async def list_units(
        self,
        property_id: str,
        current_user,
        status: str | None = None,
        search: str | None = None,
        include_inactive: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Unit], int]:
        """Units of a property; tenants only see the units they live in."""
        prop = await self._property(property_id)
        query = select(Unit).where(Unit.property_id == prop.id)

        if not await self.authz.has_management_access(current_user, prop.id):
            rows = await self.authz.active_property_users(current_user.id, prop.id)
            unit_ids = [row.unit_id for row in rows if row.unit_id and _is_tenancy(row)]
            if current_user.role != UserRole.TENANT.value or not unit_ids:
                raise ForbiddenError("Access denied: You do not have permission to list units for this property.")
            query = query.where(Unit.id.in_(unit_ids))

        if not include_inactive:
            query = query.where(Unit.is_active.is_(True))
        if status:
            status = getattr(status, "value", status)
            if status not in {s.value for s in UnitStatus}:
                raise ValidationError(f"Invalid unit status filter: {status}")
            query = query.where(Unit.status == status)
        if search:
            query = query.where(Unit.name.ilike(f"%{search}%"))

        total = (await self.db.execute(
            select(func.count()).select_from(query.subquery())
        )).scalar_one()
        result = await self.db.execute(
            query.order_by(Unit.name).offset((max(page, 1) - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_unit(self, property_id: str, unit_id: str, current_user) -> Unit:
        unit = await self._get(property_id, unit_id)
        await self.authz.ensure(current_user, AuthAction.READ, unit, "Not authorized to view this unit.")
        return unit

    async def update_unit(
        self,
        property_id: str,
        unit_id: str,
        data: UnitUpdate,
        current_user,
        ip_address: str | None = None,
    ) -> Unit:
        unit = await self._get(property_id, unit_id)
        await self.authz.ensure(current_user, AuthAction.MANAGE, unit, "Not authorized to update this unit.")

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return unit
        old_value = snapshot(unit)
        status_changed = "status" in changes and changes["status"] is not None and changes["status"].value != unit.status

        async with self.ctx.transaction("update unit"):
            for key, value in changes.items():
                if key == "status":
                    if value is None:
                        continue
                    value = value.value
                if key == "name" and value:
                    value = value.strip()
                setattr(unit, key, value)
            unit.updated_at = self.ctx.now()
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.UNIT,
                unit.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=unit,
            )

        if status_changed:
            await self.notifications.fan_out(
                NotificationType.UNIT_UPDATE,
                f"Unit {unit.name} is now {unit.status.replace('_', ' ')}.",
                resource=unit,
                actor=current_user,
                include_managers=False,
                include_unit_tenants=True,
                link=self._link(unit),
            )
        return unit

    async def delete_unit(
        self,
        property_id: str,
        unit_id: str,
        current_user,
        ip_address: str | None = None,
    ) -> bool:
        """Hard-delete an unused unit; deactivate it when history points at it.

        Returns True if the row was physically removed.
        """
        unit = await self._get(property_id, unit_id)
        await self.authz.ensure(current_user, AuthAction.DELETE, unit, "Not authorized to delete this unit.")

        if await self._has_open_lease(unit.id):
            raise ValidationError("Cannot delete a unit with an active lease. Terminate the lease first.")
        referenced = await self._is_referenced(unit.id)

        old_value = snapshot(unit)
        async with self.ctx.transaction("delete unit"):
            if referenced:
                unit.is_active = False
                unit.status = UnitStatus.UNAVAILABLE.value
                unit.tenant_ids = []
                await self.db.execute(
                    update(PropertyUser)
                    .where(PropertyUser.unit_id == unit.id, PropertyUser.is_active.is_(True))
                    .values(is_active=False, end_date=self.ctx.now())
                )
            else:
                await self.db.delete(unit)
            self.audit.log(
                AuditAction.DEACTIVATE if referenced else AuditAction.DELETE,
                AuditResourceType.UNIT,
                unit_id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                description=f"Unit {old_value['name']} {'deactivated' if referenced else 'deleted'}.",
            )

        logger.info("Unit %s %s by %s", unit_id, "deactivated" if referenced else "deleted", current_user.id)
        return not referenced

    async def _has_open_lease(self, unit_id: str) -> bool:
        result = await self.db.execute(
            select(Lease.id).where(
                Lease.unit_id == unit_id,
                Lease.is_active.is_(True),
                Lease.status == LeaseStatus.ACTIVE.value,
            )
        )
        return result.first() is not None

    async def _is_referenced(self, unit_id: str) -> bool:
        checks = [
            select(func.count()).select_from(Request).where(Request.unit_id == unit_id),
            select(func.count()).select_from(ScheduledMaintenance).where(ScheduledMaintenance.unit_id == unit_id),
            select(func.count()).select_from(Lease).where(Lease.unit_id == unit_id),
            select(func.count()).select_from(PropertyUser).where(PropertyUser.unit_id == unit_id),
        ]
        for query in checks:
            if (await self.db.execute(query)).scalar_one():
                return True
        return False

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    async def assign_tenant_to_unit(
        self,
        property_id: str,
        unit_id: str,
        tenant_id: str,
        current_user,
        ip_address: str | None = None,
    ) -> Unit:
        """Place a tenant in a unit.

        A tenant holds one unit per property: an existing tenancy elsewhere
        in the property is moved, otherwise a PropertyUser row is created.
        """
        prop = await self._property(property_id)
        unit = await self._get(property_id, unit_id)
        tenant = await self.db.get(User, tenant_id)
        if tenant is None or not tenant.is_active:
            raise NotFoundError("Tenant user not found.")
        if tenant.role != UserRole.TENANT.value:
            raise ValidationError('Assigned user must have the role of "tenant".')
        if not await self.authz.has_management_access(current_user, prop.id):
            raise ForbiddenError("Not authorized to assign tenants to this unit.")

        if tenant_id in (unit.tenant_ids or []):
            raise ConflictError("Tenant is already assigned to this unit.")

        rows = (await self.db.execute(
            select(PropertyUser).where(
                PropertyUser.user_id == tenant_id,
                PropertyUser.property_id == prop.id,
            )
        )).scalars().all()
        here = next((row for row in rows if row.unit_id == unit.id), None)
        if here is not None and here.is_active and _is_tenancy(here):
            raise ConflictError("Tenant is already assigned to this unit.")
        elsewhere = next(
            (row for row in rows if row.is_active and row.unit_id and row.unit_id != unit.id and _is_tenancy(row)),
            None,
        )
        if elsewhere is not None and elsewhere.lease_id:
            raise ValidationError("Tenant has an active lease on another unit in this property. Terminate it first.")

        now = self.ctx.now()
        previous_unit_id = elsewhere.unit_id if elsewhere is not None else None
        async with self.ctx.transaction("assign tenant to unit"):
            if here is not None:
                here.roles = [*(r for r in (here.roles or []) if r != PropertyUserRole.TENANT.value), PropertyUserRole.TENANT.value]
                here.is_active = True
                here.start_date = now
                here.end_date = None
                here.invited_by_id = current_user.id
                assignment = here
                if elsewhere is not None:
                    elsewhere.is_active = False
                    elsewhere.end_date = now
            elif elsewhere is not None:
                moved = await self.db.execute(
                    update(PropertyUser)
                    .where(PropertyUser.id == elsewhere.id, PropertyUser.unit_id == previous_unit_id)
                    .values(unit_id=unit.id, unit_key=unit.id, start_date=now, invited_by_id=current_user.id)
                    .execution_options(synchronize_session=False)
                )
                if moved.rowcount != 1:
                    raise ConflictError("Tenant assignment changed concurrently. Please retry.")
                await self.db.refresh(elsewhere)
                assignment = elsewhere
            else:
                assignment = PropertyUser(
                    user_id=tenant_id,
                    property_id=prop.id,
                    unit_id=unit.id,
                    roles=[PropertyUserRole.TENANT.value],
                    is_active=True,
                    start_date=now,
                    invited_by_id=current_user.id,
                    created_at=now,
                )
                self.db.add(assignment)
            await self.db.flush()

            if previous_unit_id:
                previous = await self.db.get(Unit, previous_unit_id)
                if previous is not None:
                    previous.tenant_ids = [t for t in (previous.tenant_ids or []) if t != tenant_id]
                    if not previous.tenant_ids and not await self._has_open_lease(previous.id):
                        previous.status = UnitStatus.VACANT.value
                logger.info("Tenant %s moved from unit %s to %s", tenant_id, previous_unit_id, unit.id)

            unit.tenant_ids = [*(unit.tenant_ids or []), tenant_id]
            unit.status = UnitStatus.OCCUPIED.value
            unit.updated_at = now

            self.audit.log(
                AuditAction.TENANT_ASSIGNED,
                AuditResourceType.UNIT,
                unit.id,
                user=current_user,
                ip_address=ip_address,
                new_value={
                    "tenant_id": tenant_id,
                    "unit_id": unit.id,
                    "property_id": prop.id,
                    "property_user_id": assignment.id,
                    "previous_unit_id": previous_unit_id,
                },
                description=f"Tenant {tenant.email} assigned to unit {unit.name} by {current_user.email}.",
            )

        await self.notifications.fan_out(
            NotificationType.UNIT_ADDED,
            f"You have been assigned to unit {unit.name} in {prop.name}.",
            actor=current_user,
            include_managers=False,
            related_kind=AuditResourceType.UNIT.value,
            related_id=unit.id,
            extra_user_ids=[tenant_id],
            link=self._link(unit),
            context_data={"unit_name": unit.name, "property_name": prop.name},
        )
        return unit

    async def remove_tenant_from_unit(
        self,
        property_id: str,
        unit_id: str,
        tenant_id: str,
        current_user,
        ip_address: str | None = None,
    ) -> Unit:
        prop = await self._property(property_id)
        unit = await self._get(property_id, unit_id)
        if not await self.authz.has_management_access(current_user, prop.id):
            raise ForbiddenError("Not authorized to remove tenants from this unit.")

        tenancy = await self.property_users.find(tenant_id, prop.id, unit.id)
        listed = tenant_id in (unit.tenant_ids or [])
        if not listed and (tenancy is None or not tenancy.is_active):
            raise NotFoundError("Tenant is not assigned to this unit.")

        open_lease = (await self.db.execute(
            select(Lease.id).where(
                Lease.tenant_id == tenant_id,
                Lease.unit_id == unit.id,
                Lease.is_active.is_(True),
                or_(Lease.status == LeaseStatus.ACTIVE.value, Lease.status == LeaseStatus.PENDING_RENEWAL.value),
            )
        )).first()
        if open_lease is not None:
            raise ValidationError("Cannot remove tenant with an active lease for this unit. Terminate lease first.")

        now = self.ctx.now()
        async with self.ctx.transaction("remove tenant from unit"):
            unit.tenant_ids = [t for t in (unit.tenant_ids or []) if t != tenant_id]
            if not unit.tenant_ids and unit.status == UnitStatus.OCCUPIED.value:
                unit.status = UnitStatus.VACANT.value
            unit.updated_at = now
            if tenancy is not None and tenancy.is_active:
                tenancy.is_active = False
                tenancy.end_date = now
                tenancy.lease_id = None
            self.audit.log(
                AuditAction.TENANT_REMOVED,
                AuditResourceType.UNIT,
                unit.id,
                user=current_user,
                ip_address=ip_address,
                new_value={"tenant_id": tenant_id, "unit_id": unit.id, "property_id": prop.id},
                description=f"Tenant {tenant_id} removed from unit {unit.name} by {current_user.email}.",
            )

        await self.notifications.fan_out(
            NotificationType.UNIT_UPDATE,
            f"You have been removed from unit {unit.name} in {prop.name}.",
            actor=current_user,
            include_managers=False,
            related_kind=AuditResourceType.UNIT.value,
            related_id=unit.id,
            extra_user_ids=[tenant_id],
        )
        return unit
