"""Property administration."""

import logging

from sqlalchemy import func, select

from fixit_platform.domain.enums import (
    AuditAction,
    AuditResourceType,
    AuthAction,
    PropertyUserRole,
    RequestStatus,
    UserRole,
)
from fixit_platform.domain.errors import ForbiddenError, NotFoundError
from fixit_platform.domain.models import Property, PropertyUser, Request, Unit
from fixit_platform.domain.schemas import PropertyCreate, PropertyUpdate
from fixit_platform.services.audit_service import AuditService, snapshot
from fixit_platform.services.authorization import AuthorizationService
from fixit_platform.services.context import ServiceContext

logger = logging.getLogger(__name__)

CREATOR_ROLES = {UserRole.ADMIN.value, UserRole.LANDLORD.value, UserRole.PROPERTY_MANAGER.value}


class PropertyService:
    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.authz = AuthorizationService(ctx)

    async def create_property(
        self,
        data: PropertyCreate,
        current_user,
        ip_address: str | None = None,
    ) -> Property:
        """Create a property; a non-admin creator is attached as its landlord or manager."""
        if current_user.role not in CREATOR_ROLES:
            raise ForbiddenError("Only landlords, property managers or admins can create properties.")

        now = self.ctx.now()
        async with self.ctx.transaction("create property"):
            prop = Property(
                **data.model_dump(),
                created_by_id=current_user.id,
                created_at=now,
            )
            self.db.add(prop)
            await self.db.flush()

            if current_user.role != UserRole.ADMIN.value:
                role = (
                    PropertyUserRole.PROPERTY_MANAGER.value
                    if current_user.role == UserRole.PROPERTY_MANAGER.value
                    else PropertyUserRole.LANDLORD.value
                )
                self.db.add(PropertyUser(
                    user_id=current_user.id,
                    property_id=prop.id,
                    roles=[role],
                    is_active=True,
                    start_date=now,
                    invited_by_id=current_user.id,
                    created_at=now,
                ))

            self.audit.log(
                AuditAction.CREATE,
                AuditResourceType.PROPERTY,
                prop.id,
                user=current_user,
                ip_address=ip_address,
                new_value=prop,
                description=f"Property {prop.name} created.",
            )

        logger.info("Property %s created by %s", prop.id, current_user.id)
        return prop

    async def get_property(self, property_id: str, current_user) -> Property:
        prop = await self.db.get(Property, property_id)
        if prop is None:
            raise NotFoundError("Property not found.")
        if not await self._can_view(current_user, prop):
            raise ForbiddenError("Not authorized to view this property.")
        return prop

    async def list_properties(
        self,
        current_user,
        search: str | None = None,
        include_inactive: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Property], int]:
        """Admins see every property; everyone else sees properties they belong to."""
        query = select(Property)
        if current_user.role != UserRole.ADMIN.value:
            member_of = select(PropertyUser.property_id).where(
                PropertyUser.user_id == current_user.id,
                PropertyUser.is_active.is_(True),
            )
            query = query.where(Property.id.in_(member_of))
        if not include_inactive:
            query = query.where(Property.is_active.is_(True))
        if search:
            pattern = f"%{search}%"
            query = query.where(Property.name.ilike(pattern) | Property.city.ilike(pattern))

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        result = await self.db.execute(
            query.order_by(Property.name).offset((max(page, 1) - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def update_property(
        self,
        property_id: str,
        data: PropertyUpdate,
        current_user,
        ip_address: str | None = None,
    ) -> Property:
        prop = await self.db.get(Property, property_id)
        if prop is None or not prop.is_active:
            raise NotFoundError("Property not found.")
        await self.authz.ensure(current_user, AuthAction.MANAGE, prop, "Not authorized to update this property.")

        async with self.ctx.transaction("update property"):
            old_value = snapshot(prop)
            for key, value in data.model_dump(exclude_unset=True).items():
                setattr(prop, key, value)
            prop.updated_at = self.ctx.now()
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.PROPERTY,
                prop.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=prop,
            )
        return prop

    async def deactivate_property(
        self,
        property_id: str,
        current_user,
        ip_address: str | None = None,
    ) -> Property:
        """Soft-delete a property along with its units and associations.

        Refused while the property still has open maintenance requests.
        """
        prop = await self.db.get(Property, property_id)
        if prop is None or not prop.is_active:
            raise NotFoundError("Property not found.")
        await self.authz.ensure(current_user, AuthAction.DELETE, prop, "Not authorized to delete this property.")

        open_requests = (await self.db.execute(
            select(func.count()).select_from(Request).where(
                Request.property_id == property_id,
                Request.is_active.is_(True),
                Request.status.in_([
                    RequestStatus.NEW.value,
                    RequestStatus.ASSIGNED.value,
                    RequestStatus.IN_PROGRESS.value,
                    RequestStatus.REOPENED.value,
                ]),
            )
        )).scalar_one()
        if open_requests:
            raise ForbiddenError(f"Property has {open_requests} open request(s); close them first.")

        now = self.ctx.now()
        async with self.ctx.transaction("deactivate property"):
            old_value = snapshot(prop)
            prop.is_active = False
            prop.updated_at = now
            units = (await self.db.execute(select(Unit).where(Unit.property_id == property_id))).scalars().all()
            for unit in units:
                unit.is_active = False
            memberships = (await self.db.execute(
                select(PropertyUser).where(
                    PropertyUser.property_id == property_id,
                    PropertyUser.is_active.is_(True),
                )
            )).scalars().all()
            for membership in memberships:
                membership.is_active = False
                membership.end_date = now
            self.audit.log(
                AuditAction.DELETE,
                AuditResourceType.PROPERTY,
                prop.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=prop,
                description=f"Property {prop.name} deactivated with {len(units)} unit(s).",
            )

        logger.info("Property %s deactivated by %s", property_id, current_user.id)
        return prop

    async def _can_view(self, user, prop: Property) -> bool:
        if await self.authz.authorize(user, AuthAction.READ, prop):
            return True
        # Tenants and vendors can see properties they hold any active row on
        rows = await self.authz.active_property_users(user.id, prop.id)
        return bool(rows) and user.is_active
