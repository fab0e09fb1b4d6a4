"""Lease lifecycle: creation against an existing tenancy, amendments,
termination, documents, expiry tracking and recorded rent rows."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select, update

from fixit_platform.domain.enums import (
    AuditAction,
    AuditResourceType,
    LeaseStatus,
    NotificationType,
    PropertyUserRole,
    RentStatus,
    UnitStatus,
    UserRole,
)
from fixit_platform.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from fixit_platform.domain.models import Lease, Media, Property, PropertyUser, Rent, Unit, User
from fixit_platform.domain.schemas import LeaseCreate, LeaseUpdate
from fixit_platform.infra.clock import utc_naive
from fixit_platform.infra.document_generator import DOCUMENT_TITLES
from fixit_platform.services.audit_service import AuditService, snapshot
from fixit_platform.services.authorization import AuthorizationService
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.media_service import MediaService, MediaUpload
from fixit_platform.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

GENERATED_DOCUMENT_TYPES = ("renewal_notice", "exit_letter", "termination_notice", "lease_notice", "lease_agreement")
OPEN_LEASE_STATUSES = {LeaseStatus.ACTIVE.value, LeaseStatus.PENDING_RENEWAL.value}


def lease_history_entry(status: str, changed_by: str | None, changed_at: datetime, notes: str | None = None) -> dict:
    return {
        "status": status,
        "changed_at": changed_at.isoformat(),
        "changed_by": changed_by,
        "notes": notes,
    }


class LeaseService:
    """Lease and rent operations scoped to property management."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db
        self.audit = AuditService(ctx)
        self.authz = AuthorizationService(ctx)
        self.notifications = NotificationService(ctx)
        self.media = MediaService(ctx)

    async def _get(self, lease_id: str) -> Lease:
        lease = await self.db.get(Lease, lease_id)
        if lease is None or not lease.is_active:
            raise NotFoundError("Lease not found.")
        return lease

    async def _ensure_manager(self, current_user, property_id: str, message: str) -> None:
        if not await self.authz.has_management_access(current_user, property_id):
            raise ForbiddenError(message)

    def _link(self, lease: Lease) -> str:
        return self.ctx.frontend_link(f"leases/{lease.id}")

    async def _tenancy(self, tenant_id: str, unit: Unit) -> PropertyUser | None:
        result = await self.db.execute(
            select(PropertyUser).where(
                PropertyUser.user_id == tenant_id,
                PropertyUser.property_id == unit.property_id,
                PropertyUser.unit_id == unit.id,
                PropertyUser.is_active.is_(True),
            )
        )
        return next(
            (row for row in result.scalars().all() if PropertyUserRole.TENANT.value in (row.roles or [])),
            None,
        )

    async def _resolve_landlord(self, prop: Property) -> str:
        result = await self.db.execute(
            select(PropertyUser).where(
                PropertyUser.property_id == prop.id,
                PropertyUser.is_active.is_(True),
            ).order_by(PropertyUser.created_at)
        )
        for row in result.scalars().all():
            if PropertyUserRole.LANDLORD.value in (row.roles or []):
                return row.user_id
        if prop.created_by_id:
            return prop.created_by_id
        raise ValidationError("No active landlord found for this property.")

    async def _other_open_leases(self, lease: Lease) -> int:
        return (await self.db.execute(
            select(func.count()).select_from(Lease).where(
                Lease.unit_id == lease.unit_id,
                Lease.id != lease.id,
                Lease.is_active.is_(True),
                Lease.status.in_(OPEN_LEASE_STATUSES),
            )
        )).scalar_one()

    async def _release_unit(self, lease: Lease) -> None:
        """Vacate the unit and detach the tenancy once ``lease`` stops being active."""
        if not await self._other_open_leases(lease):
            unit = await self.db.get(Unit, lease.unit_id)
            if unit is not None and unit.status == UnitStatus.OCCUPIED.value:
                unit.status = UnitStatus.VACANT.value
                logger.info("Unit %s vacated after lease %s ended", unit.id, lease.id)

        # The tenancy row stays active; removing the tenant is a separate property-user operation
        await self.db.execute(
            update(PropertyUser)
            .where(PropertyUser.lease_id == lease.id)
            .values(lease_id=None, end_date=lease.terminated_at or self.ctx.now())
        )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create_lease(
        self,
        data: LeaseCreate,
        current_user,
        ip_address: str | None = None,
    ) -> Lease:
        start = utc_naive(data.lease_start_date)
        end = utc_naive(data.lease_end_date)
        if end <= start:
            raise ValidationError("Lease end date must be after start date.")

        prop = await self.db.get(Property, data.property_id)
        if prop is None or not prop.is_active:
            raise NotFoundError("Property not found.")
        unit = await self.db.get(Unit, data.unit_id)
        if unit is None or unit.property_id != prop.id or not unit.is_active:
            raise NotFoundError("Unit not found in the specified property.")
        await self._ensure_manager(current_user, prop.id, "Not authorized to create leases for this property.")

        tenant = await self.db.get(User, data.tenant_id)
        if tenant is None or not tenant.is_active or tenant.role != UserRole.TENANT.value:
            raise NotFoundError("Tenant not found or not an active tenant.")
        tenancy = await self._tenancy(tenant.id, unit)
        if tenancy is None:
            raise ValidationError(
                "Tenant is not actively associated with this unit. Assign the tenant to the unit first."
            )

        existing = (await self.db.execute(
            select(Lease.id).where(
                Lease.unit_id == unit.id,
                Lease.is_active.is_(True),
                Lease.status == LeaseStatus.ACTIVE.value,
            )
        )).first()
        if existing is not None:
            raise ConflictError(f"Unit {unit.name} already has an active lease. Please terminate it first.")

        landlord_id = await self._resolve_landlord(prop)
        now = self.ctx.now()

        async with self.ctx.transaction("create lease"):
            lease = Lease(
                property_id=prop.id,
                unit_id=unit.id,
                tenant_id=tenant.id,
                landlord_id=landlord_id,
                lease_start_date=start,
                lease_end_date=end,
                monthly_rent=data.monthly_rent,
                currency=data.currency,
                payment_due_date=data.payment_due_date,
                security_deposit=data.security_deposit,
                terms_and_conditions=data.terms_and_conditions,
                notes=data.notes,
                status=LeaseStatus.ACTIVE.value,
                status_history=[lease_history_entry(LeaseStatus.ACTIVE.value, current_user.id, now, "Lease created")],
                created_by_id=current_user.id,
                updated_by_id=current_user.id,
                created_at=now,
                updated_at=now,
            )
            self.db.add(lease)
            await self.db.flush()

            unit.status = UnitStatus.OCCUPIED.value
            tenancy.lease_id = lease.id
            tenancy.start_date = start
            tenancy.end_date = end

            self.audit.log(
                AuditAction.CREATE,
                AuditResourceType.LEASE,
                lease.id,
                user=current_user,
                ip_address=ip_address,
                new_value=lease,
                description=f"Lease created for {tenant.email} on unit {unit.name}.",
            )

        logger.info("Lease %s created for tenant %s on unit %s", lease.id, tenant.id, unit.id)

        await self.notifications.fan_out(
            NotificationType.LEASE_UPDATE,
            f"A lease for unit {unit.name} at {prop.name} has been created.",
            actor=current_user,
            related_kind=AuditResourceType.LEASE.value,
            related_id=lease.id,
            extra_user_ids=[tenant.id, landlord_id],
            link=self._link(lease),
        )
        return lease

    async def list_leases(
        self,
        current_user,
        property_id: str | None = None,
        unit_id: str | None = None,
        status: str | None = None,
        expiring_before: datetime | None = None,
        include_inactive: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Lease], int]:
        query = select(Lease)
        if not include_inactive:
            query = query.where(Lease.is_active.is_(True))

        if current_user.role == UserRole.TENANT.value:
            query = query.where(Lease.tenant_id == current_user.id)
        elif current_user.role != UserRole.ADMIN.value:
            membership = await self.authz.membership(current_user)
            if not membership.managed_property_ids:
                return [], 0
            query = query.where(Lease.property_id.in_(membership.managed_property_ids))

        if property_id:
            query = query.where(Lease.property_id == property_id)
        if unit_id:
            query = query.where(Lease.unit_id == unit_id)
        if status:
            query = query.where(Lease.status == getattr(status, "value", status))
        if expiring_before:
            query = query.where(Lease.lease_end_date <= utc_naive(expiring_before))

        total = (await self.db.execute(
            select(func.count()).select_from(query.subquery())
        )).scalar_one()
        result = await self.db.execute(
            query.order_by(Lease.lease_end_date)
            .offset((max(page, 1) - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_lease(self, lease_id: str, current_user) -> Lease:
        lease = await self._get(lease_id)
        if lease.tenant_id == current_user.id or lease.landlord_id == current_user.id:
            return lease
        await self._ensure_manager(current_user, lease.property_id, "Not authorized to view this lease.")
        return lease

    async def update_lease(
        self,
        lease_id: str,
        data: LeaseUpdate,
        current_user,
        ip_address: str | None = None,
    ) -> Lease:
        lease = await self._get(lease_id)
        await self._ensure_manager(current_user, lease.property_id, "Not authorized to update this lease.")
        if lease.status not in OPEN_LEASE_STATUSES:
            raise ValidationError(f"Cannot update a lease that is {lease.status}.")

        changes = data.model_dump(exclude_unset=True)
        start = utc_naive(changes.get("lease_start_date")) or lease.lease_start_date
        end = utc_naive(changes.get("lease_end_date")) or lease.lease_end_date
        if end <= start:
            raise ValidationError("Lease end date must be after start date.")

        old_value = snapshot(lease)
        async with self.ctx.transaction("update lease"):
            for key, value in changes.items():
                if key in ("lease_start_date", "lease_end_date"):
                    value = utc_naive(value)
                setattr(lease, key, value)
            if "lease_end_date" in changes:
                lease.renewal_notice_sent = False
                lease.renewal_notice_sent_at = None
                await self.db.execute(
                    update(PropertyUser).where(PropertyUser.lease_id == lease.id).values(end_date=end)
                )
            lease.updated_by_id = current_user.id
            lease.updated_at = self.ctx.now()
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.LEASE,
                lease.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=lease,
            )

        await self.notifications.fan_out(
            NotificationType.LEASE_UPDATE,
            "Your lease details have been updated.",
            actor=current_user,
            include_managers=False,
            related_kind=AuditResourceType.LEASE.value,
            related_id=lease.id,
            extra_user_ids=[lease.tenant_id],
            link=self._link(lease),
        )
        return lease

    async def terminate_lease(
        self,
        lease_id: str,
        current_user,
        reason: str | None = None,
        ip_address: str | None = None,
    ) -> Lease:
        lease = await self._get(lease_id)
        await self._ensure_manager(current_user, lease.property_id, "Not authorized to terminate this lease.")
        if lease.status == LeaseStatus.TERMINATED.value:
            raise ValidationError("Lease is already terminated.")

        now = self.ctx.now()
        old_value = snapshot(lease)
        async with self.ctx.transaction("terminate lease"):
            self._mark_terminated(lease, current_user, now, reason or "Lease terminated.")
            await self._release_unit(lease)
            self.audit.log(
                AuditAction.LEASE_TERMINATED,
                AuditResourceType.LEASE,
                lease.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=lease,
                description=reason,
            )

        await self._notify_terminated(lease, current_user, lease.termination_reason)
        return lease

    def _mark_terminated(self, lease: Lease, current_user, now: datetime, reason: str) -> None:
        lease.status = LeaseStatus.TERMINATED.value
        lease.status_history = [
            *(lease.status_history or []),
            lease_history_entry(LeaseStatus.TERMINATED.value, current_user.id, now, reason),
        ]
        lease.terminated_at = now
        lease.terminated_by_id = current_user.id
        lease.termination_reason = reason
        lease.updated_by_id = current_user.id
        lease.updated_at = now

    async def _notify_terminated(self, lease: Lease, current_user, reason: str | None) -> None:
        unit = await self.db.get(Unit, lease.unit_id)
        prop = await self.db.get(Property, lease.property_id)
        await self.notifications.fan_out(
            NotificationType.LEASE_UPDATE,
            f"Your lease for unit {unit.name if unit else ''} in {prop.name if prop else ''} has been terminated."
            + (f" Reason: {reason}" if reason else ""),
            actor=current_user,
            include_managers=False,
            related_kind=AuditResourceType.LEASE.value,
            related_id=lease.id,
            extra_user_ids=[lease.tenant_id],
            link=self._link(lease),
        )

    async def delete_lease(
        self,
        lease_id: str,
        current_user,
        ip_address: str | None = None,
    ) -> Lease:
        """Soft-delete: terminate, vacate the unit, detach the tenancy, retire rent rows."""
        lease = await self._get(lease_id)
        await self._ensure_manager(current_user, lease.property_id, "Not authorized to delete this lease.")

        now = self.ctx.now()
        old_value = snapshot(lease)
        async with self.ctx.transaction("delete lease"):
            self._mark_terminated(lease, current_user, now, "Lease deleted by administrator.")
            lease.is_active = False
            await self._release_unit(lease)
            await self.db.execute(
                update(Rent).where(Rent.lease_id == lease.id).values(is_active=False)
            )
            self.audit.log(
                AuditAction.DELETE,
                AuditResourceType.LEASE,
                lease.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                description=f"Lease {lease.id} deleted by {current_user.email}.",
            )

        logger.info("Lease %s deleted by %s", lease.id, current_user.id)
        await self._notify_terminated(lease, current_user, lease.termination_reason)
        return lease

    # ------------------------------------------------------------------
    # Expiry tracking
    # ------------------------------------------------------------------

    async def get_expiring_leases(
        self,
        current_user=None,
        days_ahead: int = 90,
        property_id: str | None = None,
        only_unnotified: bool = False,
    ) -> list[Lease]:
        """Active leases ending within ``days_ahead``. ``current_user`` None means system scope."""
        now = self.ctx.now()
        query = select(Lease).where(
            Lease.is_active.is_(True),
            Lease.status == LeaseStatus.ACTIVE.value,
            Lease.lease_end_date >= now,
            Lease.lease_end_date <= now + timedelta(days=days_ahead),
        )
        if only_unnotified:
            query = query.where(Lease.renewal_notice_sent.is_(False))
        if property_id:
            query = query.where(Lease.property_id == property_id)
        if current_user is not None and current_user.role != UserRole.ADMIN.value:
            membership = await self.authz.membership(current_user)
            query = query.where(Lease.property_id.in_(membership.managed_property_ids))

        result = await self.db.execute(query.order_by(Lease.lease_end_date))
        return list(result.scalars().all())

    async def mark_renewal_notice_sent(
        self,
        lease_id: str,
        current_user=None,
        ip_address: str | None = None,
    ) -> Lease:
        lease = await self._get(lease_id)
        if current_user is not None:
            await self._ensure_manager(current_user, lease.property_id, "Not authorized to update this lease.")
        async with self.ctx.transaction("mark renewal notice sent"):
            lease.renewal_notice_sent = True
            lease.renewal_notice_sent_at = self.ctx.now()
            self.audit.log(
                AuditAction.UPDATE,
                AuditResourceType.LEASE,
                lease.id,
                user=current_user,
                ip_address=ip_address,
                new_value={"renewal_notice_sent": True, "renewal_notice_sent_at": lease.renewal_notice_sent_at},
                description="Renewal notice sent.",
            )
        return lease

    # ------------------------------------------------------------------
    # Amendments and documents
    # ------------------------------------------------------------------

    async def add_lease_amendment(
        self,
        lease_id: str,
        description: str,
        current_user,
        document_id: str | None = None,
        ip_address: str | None = None,
    ) -> Lease:
        if not description or not description.strip():
            raise ValidationError("Amendment description is required.")
        lease = await self._get(lease_id)
        await self._ensure_manager(current_user, lease.property_id, "Not authorized to amend this lease.")
        if document_id and document_id not in (lease.document_ids or []):
            raise ValidationError("Document is not attached to this lease.")

        old_value = snapshot(lease)
        async with self.ctx.transaction("amend lease"):
            lease.amendments = [
                *(lease.amendments or []),
                {
                    "amendment_date": self.ctx.now().isoformat(),
                    "description": description.strip(),
                    "document_id": document_id,
                    "created_by": current_user.id,
                },
            ]
            lease.version = (lease.version or 1) + 1
            lease.updated_by_id = current_user.id
            self.audit.log(
                AuditAction.LEASE_AMENDED,
                AuditResourceType.LEASE,
                lease.id,
                user=current_user,
                ip_address=ip_address,
                old_value=old_value,
                new_value=lease,
                description=description.strip(),
            )

        await self.notifications.fan_out(
            NotificationType.LEASE_UPDATE,
            f"Your lease has been amended: {description.strip()}",
            actor=current_user,
            include_managers=False,
            related_kind=AuditResourceType.LEASE.value,
            related_id=lease.id,
            extra_user_ids=[lease.tenant_id],
            link=self._link(lease),
        )
        return lease

    async def upload_lease_document(
        self,
        lease_id: str,
        uploads: list[MediaUpload],
        current_user,
        ip_address: str | None = None,
    ) -> list[Media]:
        lease = await self._get(lease_id)
        await self._ensure_manager(current_user, lease.property_id, "Not authorized to upload lease documents.")

        rows = await self.media.upload_all(
            uploads,
            related_to=AuditResourceType.LEASE.value,
            related_id=lease.id,
            uploaded_by_id=current_user.id,
            folder=f"leases/{lease.id}",
        )
        try:
            async with self.ctx.transaction("upload lease document"):
                await self.db.flush()
                lease.document_ids = [*(lease.document_ids or []), *(row.id for row in rows)]
                self.audit.log(
                    AuditAction.FILE_UPLOAD,
                    AuditResourceType.LEASE,
                    lease.id,
                    user=current_user,
                    ip_address=ip_address,
                    new_value={"media_ids": [row.id for row in rows]},
                )
        except Exception:
            await self.media.purge_objects(rows)
            raise

        await self._share_documents(lease, current_user, len(rows))
        return rows

    async def generate_lease_document(
        self,
        lease_id: str,
        document_type: str,
        current_user,
        ip_address: str | None = None,
    ) -> Media:
        """Render a PDF for the lease, store it and attach it to ``document_ids``."""
        if document_type not in GENERATED_DOCUMENT_TYPES:
            raise ValidationError(
                f"Invalid document type: {document_type}. Allowed types: {', '.join(GENERATED_DOCUMENT_TYPES)}"
            )
        lease = await self._get(lease_id)
        await self._ensure_manager(current_user, lease.property_id, "Not authorized to generate documents for this lease.")

        prop = await self.db.get(Property, lease.property_id)
        unit = await self.db.get(Unit, lease.unit_id)
        tenant = await self.db.get(User, lease.tenant_id)
        landlord = await self.db.get(User, lease.landlord_id) if lease.landlord_id else None
        data = {
            "property_name": prop.name if prop else None,
            "unit_name": unit.name if unit else None,
            "tenant_name": tenant.full_name if tenant else None,
            "landlord_name": landlord.full_name if landlord else None,
            "lease_start_date": lease.lease_start_date,
            "lease_end_date": lease.lease_end_date,
            "monthly_rent": lease.monthly_rent,
            "currency": lease.currency,
            "payment_due_date": lease.payment_due_date,
            "security_deposit": lease.security_deposit,
            "terms_and_conditions": lease.terms_and_conditions,
        }

        try:
            media = await self.ctx.documents.generate_and_upload(
                document_type, data, AuditResourceType.LEASE.value, lease.id, uploaded_by_id=current_user.id,
            )
        except Exception as e:
            logger.error("Document generation failed for lease %s: %s", lease.id, e)
            raise ValidationError(f"Failed to generate {DOCUMENT_TITLES[document_type].lower()}.") from e

        try:
            async with self.ctx.transaction("generate lease document"):
                media.created_at = self.ctx.now()
                self.db.add(media)
                await self.db.flush()
                lease.document_ids = [*(lease.document_ids or []), media.id]
                self.audit.log(
                    AuditAction.CREATE,
                    AuditResourceType.MEDIA,
                    media.id,
                    user=current_user,
                    ip_address=ip_address,
                    new_value=media,
                    description=f"{DOCUMENT_TITLES[document_type]} generated for lease {lease.id}.",
                )
        except Exception:
            await self.media.purge_objects([media])
            raise

        await self._share_documents(lease, current_user, 1)
        return media

    async def _share_documents(self, lease: Lease, current_user, count: int) -> None:
        await self.notifications.fan_out(
            NotificationType.DOCUMENT_SHARED,
            f"{count} new document(s) were added to your lease.",
            actor=current_user,
            include_managers=False,
            related_kind=AuditResourceType.LEASE.value,
            related_id=lease.id,
            extra_user_ids=[lease.tenant_id],
            link=self._link(lease),
        )

    # ------------------------------------------------------------------
    # Rent
    # ------------------------------------------------------------------

    async def record_rent(
        self,
        lease_id: str,
        due_date: datetime,
        current_user,
        amount_due: float | None = None,
        amount_paid: float = 0,
        billing_period: str | None = None,
        ip_address: str | None = None,
    ) -> Rent:
        """Record a rent obligation (and optional payment) against an active lease."""
        lease = await self._get(lease_id)
        await self._ensure_manager(current_user, lease.property_id, "Not authorized to record rent for this lease.")
        amount_due = lease.monthly_rent if amount_due is None else amount_due
        if amount_due <= 0 or amount_paid < 0:
            raise ValidationError("Rent amounts must be positive.")

        if amount_paid >= amount_due:
            status = RentStatus.PAID
        elif amount_paid > 0:
            status = RentStatus.PARTIALLY_PAID
        else:
            status = RentStatus.DUE
        due_date = utc_naive(due_date)

        async with self.ctx.transaction("record rent"):
            rent = Rent(
                lease_id=lease.id,
                tenant_id=lease.tenant_id,
                property_id=lease.property_id,
                unit_id=lease.unit_id,
                amount_due=amount_due,
                amount_paid=amount_paid,
                due_date=due_date,
                billing_period=billing_period or due_date.strftime("%Y-%m"),
                status=status.value,
                created_at=self.ctx.now(),
            )
            self.db.add(rent)
            await self.db.flush()
            self.audit.log(
                AuditAction.CREATE,
                AuditResourceType.RENT,
                rent.id,
                user=current_user,
                ip_address=ip_address,
                new_value=rent,
            )
        return rent

    async def list_rents(self, lease_id: str, current_user, include_inactive: bool = False) -> list[Rent]:
        lease = await self.db.get(Lease, lease_id)
        if lease is None:
            raise NotFoundError("Lease not found.")
        if lease.tenant_id != current_user.id:
            await self._ensure_manager(current_user, lease.property_id, "Not authorized to view rent for this lease.")
        query = select(Rent).where(Rent.lease_id == lease.id)
        if not include_inactive:
            query = query.where(Rent.is_active.is_(True))
        result = await self.db.execute(query.order_by(Rent.due_date))
        return list(result.scalars().all())
