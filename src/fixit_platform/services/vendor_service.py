"""Vendor directory: external service companies that can be assigned work.

Admins see every vendor. Landlords and property managers see the vendors
they added plus those associated with a property they manage.
"""

import logging

from sqlalchemy import func, or_, select

from fixit_platform.domain.enums import (
    AssignedToModel,
    AuditAction,
    AuditResourceType,
    RequestStatus,
    UserRole,
)
from fixit_platform.domain.errors import ConflictError, ForbiddenError, NotFoundError
from fixit_platform.domain.models import Request, ScheduledMaintenance, Vendor
from fixit_platform.domain.schemas import VendorCreate, VendorUpdate
from fixit_platform.services.audit_service import AuditService, snapshot
from fixit_platform.services.authorization import AuthorizationService
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.request_service import history_entry

logger = logging.getLogger(__name__)

VENDOR_MANAGER_ROLES = {
    UserRole.ADMIN.value,
    UserRole.LANDLORD.value,
    UserRole.PROPERTY_MANAGER.value,
}

# Work still waiting on the vendor; it goes back to the queue when the vendor is removed
_OPEN_REQUEST_STATES = {RequestStatus.ASSIGNED.value, RequestStatus.IN_PROGRESS.value}


class VendorService:
    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.authz = AuthorizationService(ctx)

    def _require_manager_role(self, user) -> None:
        if user.role not in VENDOR_MANAGER_ROLES:
            raise ForbiddenError("Only landlords, property managers or admins can manage vendors.")

    async def _get(self, vendor_id: str) -> Vendor:
        vendor = await self.db.get(Vendor, vendor_id)
        if vendor is None:
            raise NotFoundError("Vendor not found.")
        return vendor

    async def _ensure_can_associate(self, user, property_ids) -> list[str]:
        ids = list(dict.fromkeys(property_ids or []))
        for property_id in ids:
            if not await self.authz.has_management_access(user, property_id):
                raise ForbiddenError(f"Not authorized to associate vendors with property {property_id}.")
        return ids

    async def _ensure_email_free(self, email: str, vendor_id: str | None = None) -> None:
        query = select(Vendor.id).where(func.lower(Vendor.email) == email.lower())
        if vendor_id:
            query = query.where(Vendor.id != vendor_id)
        if (await self.db.execute(query)).first() is not None:
            raise ConflictError(f"A vendor with email {email} already exists.")

    async def can_manage(self, user, vendor: Vendor) -> bool:
        """Admin, the user who added the vendor, or a manager of an associated property."""
        if user.role == UserRole.ADMIN.value:
            return True
        if user.role not in VENDOR_MANAGER_ROLES:
            return False
        if vendor.added_by_id == user.id:
            return True
        managed = (await self.authz.membership(user)).managed_property_ids
        return bool(managed.intersection(vendor.associated_property_ids or []))

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create_vendor(self, data: VendorCreate, current_user, ip_address: str | None = None) -> Vendor:
        self._require_manager_role(current_user)
        property_ids = await self._ensure_can_associate(current_user, data.associated_property_ids)
        email = data.email.lower()
        await self._ensure_email_free(email)

        now = self.ctx.now()
        async with self.ctx.transaction("create vendor"):
            vendor = Vendor(
                name=data.name.strip(),
                phone=data.phone.strip(),
                email=email,
                services=[s.value for s in data.services],
                contact_person=data.contact_person,
                company_name=data.company_name,
                description=data.description,
                notes=data.notes,
                fixed_callout_fee=data.fixed_callout_fee,
                associated_property_ids=property_ids,
                added_by_id=current_user.id,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            self.db.add(vendor)
            await self.db.flush()
            self.audit.log(
                AuditAction.CREATE,
                AuditResourceType.VENDOR,
                vendor.id,
                user=current_user,
                ip_address=ip_address,
                new_value=vendor,
                description=f"Vendor {vendor.name} created.",
            )

        logger.info("Vendor %s created by %s", vendor.id, current_user.id)
        return vendor

    async def list_vendors(
        self,
        current_user,
        service: str | None = None,
        property_id: str | None = None,
        search: str | None = None,
        include_inactive: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Vendor], int]:
        """Visible vendors, newest first. Returns (items, total)."""
        self._require_manager_role(current_user)
        if property_id and not await self.authz.has_management_access(current_user, property_id):
            raise ForbiddenError("Not authorized to filter vendors by this property.")

        query = select(Vendor)
        if not include_inactive:
            query = query.where(Vendor.is_active.is_(True))
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(
                Vendor.name.ilike(pattern),
                Vendor.email.ilike(pattern),
                Vendor.phone.ilike(pattern),
                Vendor.company_name.ilike(pattern),
            ))
        rows = (await self.db.execute(query.order_by(Vendor.created_at.desc()))).scalars().all()

        # Service tags and property associations live in JSON lists
        managed = None
        if current_user.role != UserRole.ADMIN.value:
            managed = (await self.authz.membership(current_user)).managed_property_ids
        service = getattr(service, "value", service)
        visible = []
        for vendor in rows:
            associated = vendor.associated_property_ids or []
            if managed is not None and vendor.added_by_id != current_user.id and not managed.intersection(associated):
                continue
            if service and service.lower() not in (vendor.services or []):
                continue
            if property_id and property_id not in associated:
                continue
            visible.append(vendor)

        start = (page - 1) * limit
        return visible[start:start + limit], len(visible)

    async def get_vendor(self, vendor_id: str, current_user) -> Vendor:
        vendor = await self._get(vendor_id)
        if not await self.can_manage(current_user, vendor):
            raise ForbiddenError("You are not authorized to view this vendor.")
        return vendor

    async def update_vendor(
        self,
        vendor_id: str,
        data: VendorUpdate,
        current_user,
        ip_address: str | None = None,
    ) -> Vendor:
        vendor = await self._get(vendor_id)
        if not await self.can_manage(current_user, vendor):
            raise ForbiddenError("You are not authorized to update this vendor.")

        changes = data.model_dump(exclude_unset=True)
        if "associated_property_ids" in changes:
            added = set(changes["associated_property_ids"] or []) - set(vendor.associated_property_ids or [])
            await self._ensure_can_associate(current_user, added)
            changes["associated_property_ids"] = list(dict.fromkeys(changes["associated_property_ids"] or []))
        if changes.get("email"):
            changes["email"] = changes["email"].lower()
            await self._ensure_email_free(changes["email"], vendor.id)
        if changes.get("services") is not None:
            changes["services"] = [getattr(s, "value", s) for s in changes["services"]]

        old_value = snapshot(vendor)
        async with self.ctx.transaction("update vendor"):
            for key, value in changes.items():
                setattr(vendor, key, value)
            vendor.updated_at = self.ctx.now()
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.VENDOR,
                vendor.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=vendor,
                description=f"Vendor {vendor.name} updated.",
            )
        return vendor

    async def deactivate_vendor(self, vendor_id: str, current_user, ip_address: str | None = None) -> Vendor:
        """Hide a vendor from assignment; open work stays with it until reassigned."""
        vendor = await self._get(vendor_id)
        if not await self.can_manage(current_user, vendor):
            raise ForbiddenError("You are not authorized to deactivate this vendor.")
        if not vendor.is_active:
            return vendor

        async with self.ctx.transaction("deactivate vendor"):
            vendor.is_active = False
            vendor.updated_at = self.ctx.now()
            self.audit.log(
                AuditAction.DEACTIVATE,
                AuditResourceType.VENDOR,
                vendor.id,
                user=current_user,
                ip_address=ip_address,
                old_value={"is_active": True},
                new_value={"is_active": False},
            )
        logger.info("Vendor %s deactivated by %s", vendor.id, current_user.id)
        return vendor

    async def delete_vendor(self, vendor_id: str, current_user, ip_address: str | None = None) -> None:
        """Admin-only hard delete.

        Requests and schedules assigned to the vendor are unassigned; requests
        still waiting on it go back to ``new``.
        """
        if current_user.role != UserRole.ADMIN.value:
            raise ForbiddenError("Only administrators can delete vendors.")
        vendor = await self._get(vendor_id)
        now = self.ctx.now()

        async with self.ctx.transaction("delete vendor"):
            requests = (await self.db.execute(
                select(Request).where(
                    Request.assigned_to_id == vendor.id,
                    Request.assigned_to_model == AssignedToModel.VENDOR.value,
                )
            )).scalars().all()
            for request in requests:
                request.assigned_to_id = None
                request.assigned_to_model = None
                request.assigned_by_property_user_id = None
                if request.status in _OPEN_REQUEST_STATES:
                    request.status = RequestStatus.NEW.value
                    request.status_history = [
                        *(request.status_history or []),
                        history_entry(RequestStatus.NEW, current_user.id, now, f"Vendor {vendor.name} removed"),
                    ]
                request.updated_at = now

            tasks = (await self.db.execute(
                select(ScheduledMaintenance).where(
                    ScheduledMaintenance.assigned_to_id == vendor.id,
                    ScheduledMaintenance.assigned_to_model == AssignedToModel.VENDOR.value,
                )
            )).scalars().all()
            for task in tasks:
                task.assigned_to_id = None
                task.assigned_to_model = None

            self.audit.log(
                AuditAction.DELETE,
                AuditResourceType.VENDOR,
                vendor.id,
                user=current_user,
                ip_address=ip_address,
                old_value=vendor,
                metadata={"unassigned_requests": len(requests), "unassigned_schedules": len(tasks)},
            )
            await self.db.delete(vendor)

        logger.info(
            "Vendor %s deleted by %s (%d requests, %d schedules unassigned)",
            vendor_id, current_user.id, len(requests), len(tasks),
        )
