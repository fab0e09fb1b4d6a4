"""Tests for VendorService: directory CRUD, visibility and removal side effects."""

import pytest
from sqlalchemy import select

from fixit_platform.domain.enums import (
    AssignedToModel,
    AuditAction,
    Category,
    PropertyUserRole,
    RequestStatus,
    UserRole,
)
from fixit_platform.domain.errors import ConflictError, ForbiddenError, NotFoundError
from fixit_platform.domain.models import AuditLog, Vendor
from fixit_platform.domain.schemas import RequestCreate, VendorCreate, VendorUpdate
from fixit_platform.services.request_service import RequestService
from fixit_platform.services.vendor_service import VendorService


@pytest.fixture
def service(ctx):
    return VendorService(ctx)


def _vendor_data(**overrides):
    fields = {
        "name": "Kampala Sparks",
        "phone": "+256700000123",
        "email": "office@ksparks.test",
        "services": [Category.ELECTRICAL],
        "contact_person": "Grace",
    }
    fields.update(overrides)
    return VendorCreate(**fields)


async def _other_portfolio(make_user, make_property, make_property_user):
    owner = await make_user(role=UserRole.LANDLORD, email="other-owner@test.com")
    prop = await make_property("Hillside Court", created_by=owner)
    await make_property_user(owner, prop, [PropertyUserRole.LANDLORD])
    return owner, prop


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreateVendor:

    async def test_manager_creates_vendor(self, service, db_session, portfolio):
        vendor = await service.create_vendor(
            _vendor_data(email="Office@KSparks.test", associated_property_ids=[portfolio.prop.id]),
            portfolio.manager,
            "10.0.0.5",
        )
        assert vendor.email == "office@ksparks.test"
        assert vendor.services == ["electrical"]
        assert vendor.added_by_id == portfolio.manager.id
        assert vendor.associated_property_ids == [portfolio.prop.id]

        audit = (await db_session.execute(
            select(AuditLog).where(AuditLog.resource_id == vendor.id)
        )).scalar_one()
        assert audit.action == AuditAction.CREATE.value
        assert audit.resource_type == "Vendor"
        assert audit.ip_address == "10.0.0.5"

    async def test_tenant_cannot_create(self, service, portfolio):
        with pytest.raises(ForbiddenError):
            await service.create_vendor(_vendor_data(), portfolio.tenant)

    async def test_duplicate_email_conflicts(self, service, portfolio):
        await service.create_vendor(_vendor_data(), portfolio.manager)
        with pytest.raises(ConflictError):
            await service.create_vendor(_vendor_data(name="Another", email="OFFICE@ksparks.test"), portfolio.landlord)

    async def test_cannot_associate_unmanaged_property(
        self, service, portfolio, make_user, make_property, make_property_user,
    ):
        _, other = await _other_portfolio(make_user, make_property, make_property_user)
        with pytest.raises(ForbiddenError):
            await service.create_vendor(_vendor_data(associated_property_ids=[other.id]), portfolio.manager)


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------


class TestListVendors:

    async def test_manager_sees_own_and_associated_only(
        self, service, portfolio, make_user, make_property, make_property_user,
    ):
        owner, other = await _other_portfolio(make_user, make_property, make_property_user)
        mine = await service.create_vendor(_vendor_data(), portfolio.manager)
        shared = await service.create_vendor(
            _vendor_data(name="Acacia Gardens", email="hello@acacia.test", services=[Category.LANDSCAPING],
                         associated_property_ids=[portfolio.prop.id]),
            portfolio.landlord,
        )
        await service.create_vendor(
            _vendor_data(name="Hillside Locks", email="locks@hill.test", associated_property_ids=[other.id]),
            owner,
        )

        items, total = await service.list_vendors(portfolio.manager)
        assert total == 2
        assert {v.id for v in items} == {mine.id, shared.id}

    async def test_admin_sees_everything(self, service, db_session, portfolio, make_user, make_vendor):
        admin = await make_user(role=UserRole.ADMIN)
        await make_vendor()
        await service.create_vendor(_vendor_data(), portfolio.manager)
        items, total = await service.list_vendors(admin)
        assert total == 2

    async def test_filters_by_service_and_search(self, service, portfolio):
        await service.create_vendor(_vendor_data(), portfolio.manager)
        await service.create_vendor(
            _vendor_data(name="Drip Fixers", email="drip@fix.test", services=[Category.PLUMBING]),
            portfolio.manager,
        )
        items, total = await service.list_vendors(portfolio.manager, service=Category.PLUMBING)
        assert total == 1 and items[0].name == "Drip Fixers"

        items, total = await service.list_vendors(portfolio.manager, search="sparks")
        assert total == 1 and items[0].name == "Kampala Sparks"

    async def test_inactive_hidden_by_default(self, service, portfolio):
        vendor = await service.create_vendor(_vendor_data(), portfolio.manager)
        await service.deactivate_vendor(vendor.id, portfolio.manager)
        assert (await service.list_vendors(portfolio.manager))[1] == 0
        assert (await service.list_vendors(portfolio.manager, include_inactive=True))[1] == 1

    async def test_tenant_forbidden(self, service, portfolio):
        with pytest.raises(ForbiddenError):
            await service.list_vendors(portfolio.tenant)


# ---------------------------------------------------------------------------
# Update / deactivate / delete
# ---------------------------------------------------------------------------


class TestUpdateVendor:

    async def test_update_records_old_value(self, service, db_session, portfolio):
        vendor = await service.create_vendor(_vendor_data(), portfolio.manager)
        await service.update_vendor(
            vendor.id, VendorUpdate(phone="+256700000456", services=[Category.ELECTRICAL, Category.SECURITY]),
            portfolio.manager,
        )
        assert vendor.phone == "+256700000456"
        assert vendor.services == ["electrical", "security"]

        audit = (await db_session.execute(
            select(AuditLog).where(AuditLog.resource_id == vendor.id, AuditLog.action == AuditAction.UPDATE.value)
        )).scalar_one()
        assert audit.old_value["phone"] == "+256700000123"
        assert audit.new_value["phone"] == "+256700000456"

    async def test_unrelated_landlord_cannot_update(
        self, service, portfolio, make_user, make_property, make_property_user,
    ):
        owner, _ = await _other_portfolio(make_user, make_property, make_property_user)
        vendor = await service.create_vendor(_vendor_data(), portfolio.manager)
        with pytest.raises(ForbiddenError):
            await service.update_vendor(vendor.id, VendorUpdate(name="Mine now"), owner)

    async def test_email_clash_on_update(self, service, portfolio):
        await service.create_vendor(_vendor_data(), portfolio.manager)
        other = await service.create_vendor(_vendor_data(name="B", email="b@vendors.test"), portfolio.manager)
        with pytest.raises(ConflictError):
            await service.update_vendor(other.id, VendorUpdate(email="office@ksparks.test"), portfolio.manager)


class TestDeactivateVendor:

    async def test_deactivated_vendor_cannot_be_assigned(self, service, ctx, portfolio):
        vendor = await service.create_vendor(
            _vendor_data(associated_property_ids=[portfolio.prop.id]), portfolio.manager,
        )
        await service.deactivate_vendor(vendor.id, portfolio.manager)
        assert vendor.is_active is False

        requests = RequestService(ctx)
        request = await requests.create_request(
            RequestCreate(title="Sparking socket", category=Category.ELECTRICAL,
                          property_id=portfolio.prop.id, unit_id=portfolio.unit.id),
            portfolio.tenant,
        )
        with pytest.raises(NotFoundError):
            await requests.assign_request(request.id, vendor.id, AssignedToModel.VENDOR, portfolio.manager)


class TestDeleteVendor:

    async def test_admin_only(self, service, portfolio):
        vendor = await service.create_vendor(_vendor_data(), portfolio.manager)
        with pytest.raises(ForbiddenError):
            await service.delete_vendor(vendor.id, portfolio.manager)

    async def test_delete_returns_open_work_to_queue(self, service, ctx, db_session, portfolio, make_user):
        admin = await make_user(role=UserRole.ADMIN)
        vendor = await service.create_vendor(_vendor_data(), portfolio.manager)

        requests = RequestService(ctx)
        request = await requests.create_request(
            RequestCreate(title="No power in kitchen", category=Category.ELECTRICAL,
                          property_id=portfolio.prop.id, unit_id=portfolio.unit.id),
            portfolio.tenant,
        )
        await requests.assign_request(request.id, vendor.id, AssignedToModel.VENDOR, portfolio.manager)
        assert request.status == RequestStatus.ASSIGNED.value

        await service.delete_vendor(vendor.id, admin)

        assert await db_session.get(Vendor, vendor.id) is None
        assert request.assigned_to_id is None
        assert request.assigned_to_model is None
        assert request.status == RequestStatus.NEW.value
        assert request.status_history[-1]["notes"] == "Vendor Kampala Sparks removed"

        audit = (await db_session.execute(
            select(AuditLog).where(AuditLog.resource_id == vendor.id, AuditLog.action == AuditAction.DELETE.value)
        )).scalar_one()
        assert audit.extra_data == {"unassigned_requests": 1, "unassigned_schedules": 0}

    async def test_missing_vendor(self, service, make_user):
        admin = await make_user(role=UserRole.ADMIN)
        with pytest.raises(NotFoundError):
            await service.delete_vendor("nope", admin)
