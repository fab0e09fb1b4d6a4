"""Tests for UnitService: tenant placement, uniqueness and deletion."""

from datetime import datetime

import pytest
from sqlalchemy import select

from fixit_platform.domain.enums import AuditAction, LeaseStatus, PropertyUserRole, UnitStatus, UserRole
from fixit_platform.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from fixit_platform.domain.models import AuditLog, Lease, PropertyUser, Request, Unit
from fixit_platform.domain.schemas import UnitCreate, UnitUpdate
from fixit_platform.services.unit_service import UnitService


@pytest.fixture
def service(ctx):
    return UnitService(ctx)


@pytest.fixture
async def newcomer(make_user):
    return await make_user(role=UserRole.TENANT, first_name="Nina", email="nina@test.com")


async def _tenancies(db, user_id, property_id):
    return (await db.execute(
        select(PropertyUser).where(
            PropertyUser.user_id == user_id,
            PropertyUser.property_id == property_id,
            PropertyUser.is_active.is_(True),
        )
    )).scalars().all()


# ---------------------------------------------------------------------------
# Tenant assignment
# ---------------------------------------------------------------------------


class TestAssignTenant:

    async def test_creates_tenancy_and_occupies_unit(self, service, db_session, portfolio, newcomer, make_unit):
        unit = await make_unit(portfolio.prop, "B1")
        await service.assign_tenant_to_unit(portfolio.prop.id, unit.id, newcomer.id, portfolio.manager)

        assert unit.tenant_ids == [newcomer.id]
        assert unit.status == UnitStatus.OCCUPIED.value
        rows = await _tenancies(db_session, newcomer.id, portfolio.prop.id)
        assert len(rows) == 1
        assert rows[0].unit_id == unit.id
        assert rows[0].roles == [PropertyUserRole.TENANT.value]

        audit = (await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.TENANT_ASSIGNED.value)
        )).scalar_one()
        assert audit.resource_id == unit.id

    async def test_second_assignment_conflicts(self, service, db_session, portfolio, newcomer, make_unit):
        unit = await make_unit(portfolio.prop, "B1")
        await service.assign_tenant_to_unit(portfolio.prop.id, unit.id, newcomer.id, portfolio.manager)
        with pytest.raises(ConflictError):
            await service.assign_tenant_to_unit(portfolio.prop.id, unit.id, newcomer.id, portfolio.landlord)

        await db_session.refresh(unit)
        assert unit.tenant_ids.count(newcomer.id) == 1
        assert len(await _tenancies(db_session, newcomer.id, portfolio.prop.id)) == 1

    async def test_existing_tenancy_without_listing_conflicts(self, service, db_session, portfolio):
        # The row exists but the materialized list lost the tenant
        portfolio.unit.tenant_ids = []
        await db_session.commit()
        with pytest.raises(ConflictError):
            await service.assign_tenant_to_unit(portfolio.prop.id, portfolio.unit.id, portfolio.tenant.id, portfolio.manager)

    async def test_moves_tenant_between_units(self, service, db_session, portfolio, make_unit):
        target = await make_unit(portfolio.prop, "B2")
        await service.assign_tenant_to_unit(portfolio.prop.id, target.id, portfolio.tenant.id, portfolio.manager)

        rows = await _tenancies(db_session, portfolio.tenant.id, portfolio.prop.id)
        assert len(rows) == 1
        assert rows[0].id == portfolio.tenant_pu.id
        assert rows[0].unit_id == target.id
        assert rows[0].unit_key == target.id

        await db_session.refresh(portfolio.unit)
        assert portfolio.unit.tenant_ids == []
        assert portfolio.unit.status == UnitStatus.VACANT.value
        assert target.tenant_ids == [portfolio.tenant.id]

    async def test_move_blocked_by_lease(self, service, db_session, portfolio, make_unit):
        portfolio.tenant_pu.lease_id = "lease-1"
        await db_session.commit()
        target = await make_unit(portfolio.prop, "B2")
        with pytest.raises(ValidationError):
            await service.assign_tenant_to_unit(portfolio.prop.id, target.id, portfolio.tenant.id, portfolio.manager)

    async def test_non_tenant_role_rejected(self, service, portfolio, make_user):
        worker = await make_user(role=UserRole.VENDOR)
        with pytest.raises(ValidationError):
            await service.assign_tenant_to_unit(portfolio.prop.id, portfolio.unit.id, worker.id, portfolio.manager)

    async def test_tenant_cannot_assign(self, service, portfolio, newcomer):
        with pytest.raises(ForbiddenError):
            await service.assign_tenant_to_unit(portfolio.prop.id, portfolio.unit.id, newcomer.id, portfolio.tenant)

    async def test_duplicate_triple_maps_to_conflict(self, ctx, db_session, portfolio):
        with pytest.raises(ConflictError):
            async with ctx.transaction("duplicate tenancy"):
                db_session.add(PropertyUser(
                    user_id=portfolio.tenant.id,
                    property_id=portfolio.prop.id,
                    unit_id=portfolio.unit.id,
                    roles=[PropertyUserRole.TENANT.value],
                ))


class TestRemoveTenant:

    async def test_remove_vacates(self, service, db_session, portfolio):
        await service.remove_tenant_from_unit(portfolio.prop.id, portfolio.unit.id, portfolio.tenant.id, portfolio.manager)
        assert portfolio.unit.tenant_ids == []
        assert portfolio.unit.status == UnitStatus.VACANT.value
        await db_session.refresh(portfolio.tenant_pu)
        assert portfolio.tenant_pu.is_active is False

    async def test_remove_unknown_tenant(self, service, portfolio, newcomer):
        with pytest.raises(NotFoundError):
            await service.remove_tenant_from_unit(portfolio.prop.id, portfolio.unit.id, newcomer.id, portfolio.manager)

    async def test_remove_blocked_by_active_lease(self, service, db_session, portfolio):
        db_session.add(Lease(
            property_id=portfolio.prop.id,
            unit_id=portfolio.unit.id,
            tenant_id=portfolio.tenant.id,
            lease_start_date=datetime(2024, 1, 1),
            lease_end_date=datetime(2024, 12, 31),
            monthly_rent=800000,
            status=LeaseStatus.ACTIVE.value,
        ))
        await db_session.commit()
        with pytest.raises(ValidationError):
            await service.remove_tenant_from_unit(portfolio.prop.id, portfolio.unit.id, portfolio.tenant.id, portfolio.manager)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


class TestUnitCrud:

    async def test_create_and_duplicate_name(self, service, portfolio):
        unit = await service.create_unit(portfolio.prop.id, UnitCreate(name="D4", bedrooms=2), portfolio.landlord)
        assert unit.status == UnitStatus.VACANT.value
        with pytest.raises(ConflictError):
            await service.create_unit(portfolio.prop.id, UnitCreate(name="D4"), portfolio.landlord)

    async def test_tenant_cannot_create(self, service, portfolio):
        with pytest.raises(ForbiddenError):
            await service.create_unit(portfolio.prop.id, UnitCreate(name="D5"), portfolio.tenant)

    async def test_update(self, service, portfolio):
        unit = await service.update_unit(
            portfolio.prop.id, portfolio.unit.id, UnitUpdate(rent_amount=950000), portfolio.manager,
        )
        assert unit.rent_amount == 950000

    async def test_unused_unit_hard_deleted(self, service, db_session, portfolio, make_unit):
        unit = await make_unit(portfolio.prop, "E1")
        await db_session.commit()
        unit_id = unit.id
        assert await service.delete_unit(portfolio.prop.id, unit_id, portfolio.landlord) is True
        assert await db_session.get(Unit, unit_id) is None

    async def test_referenced_unit_soft_deleted(self, service, db_session, clock, portfolio, make_unit):
        unit = await make_unit(portfolio.prop, "E2")
        db_session.add(Request(
            title="Old job",
            category="other",
            priority="low",
            property_id=portfolio.prop.id,
            unit_id=unit.id,
            status="archived",
            status_history=[],
            created_at=clock.now(),
        ))
        await db_session.commit()

        assert await service.delete_unit(portfolio.prop.id, unit.id, portfolio.landlord) is False
        await db_session.refresh(unit)
        assert unit.is_active is False
        assert unit.status == UnitStatus.UNAVAILABLE.value

    async def test_unit_with_active_lease_not_deleted(self, service, db_session, portfolio):
        db_session.add(Lease(
            property_id=portfolio.prop.id,
            unit_id=portfolio.unit.id,
            tenant_id=portfolio.tenant.id,
            lease_start_date=datetime(2024, 1, 1),
            lease_end_date=datetime(2024, 12, 31),
            monthly_rent=800000,
            status=LeaseStatus.ACTIVE.value,
        ))
        await db_session.commit()
        with pytest.raises(ValidationError):
            await service.delete_unit(portfolio.prop.id, portfolio.unit.id, portfolio.landlord)
