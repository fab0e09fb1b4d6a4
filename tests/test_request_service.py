"""Tests for RequestService: lifecycle, assignment, feedback and side effects."""

from datetime import datetime

import pytest
from sqlalchemy import func, select

from fixit_platform.domain.enums import (
    AssignedToModel,
    AuditAction,
    Category,
    NotificationType,
    RequestStatus,
    UserRole,
)
from fixit_platform.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from fixit_platform.domain.models import AuditLog, Notification, PropertyUser
from fixit_platform.domain.schemas import RequestCreate, RequestUpdate
from fixit_platform.services.request_service import RequestService
from fixit_platform.services.request_state_machine import InvalidTransitionError

S = RequestStatus


@pytest.fixture
def service(ctx):
    return RequestService(ctx)


@pytest.fixture
async def worker(make_user):
    return await make_user(role=UserRole.VENDOR, first_name="Wally", email="worker@test.com")


async def _open_request(service, portfolio, **overrides):
    data = RequestCreate(
        title=overrides.pop("title", "Kitchen sink leaking"),
        description="Water under the cabinet",
        category=Category.PLUMBING,
        property_id=portfolio.prop.id,
        unit_id=portfolio.unit.id,
    )
    return await service.create_request(data, overrides.pop("user", portfolio.tenant))


async def _count(db, model, *where):
    return (await db.execute(select(func.count()).select_from(model).where(*where))).scalar_one()


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateRequest:

    async def test_tenant_creates_new_request(self, service, portfolio):
        request = await _open_request(service, portfolio)
        assert request.status == S.NEW.value
        assert request.created_by_property_user_id == portfolio.tenant_pu.id
        assert len(request.status_history) == 1
        assert request.status_history[0]["status"] == "new"

    async def test_notifies_management_not_actor(self, service, db_session, portfolio):
        request = await _open_request(service, portfolio)
        rows = (await db_session.execute(
            select(Notification).where(Notification.related_id == request.id)
        )).scalars().all()
        recipients = {n.recipient_id for n in rows}
        assert recipients == {portfolio.landlord.id, portfolio.manager.id}
        assert all(n.type == NotificationType.NEW_REQUEST.value for n in rows)

    async def test_audit_row_written(self, service, db_session, portfolio):
        request = await _open_request(service, portfolio)
        assert await _count(
            db_session, AuditLog, AuditLog.resource_id == request.id, AuditLog.action == AuditAction.CREATE.value,
        ) == 1

    async def test_tenant_cannot_create_on_other_unit(self, service, portfolio, make_unit):
        other = await make_unit(portfolio.prop, "B7")
        data = RequestCreate(
            title="Broken window",
            category=Category.STRUCTURAL,
            property_id=portfolio.prop.id,
            unit_id=other.id,
        )
        with pytest.raises(ForbiddenError):
            await service.create_request(data, portfolio.tenant)

    async def test_unknown_property(self, service, portfolio):
        data = RequestCreate(title="x", category=Category.OTHER, property_id="missing")
        with pytest.raises(NotFoundError):
            await service.create_request(data, portfolio.tenant)

    async def test_admin_without_membership_gets_admin_access_row(self, service, db_session, portfolio, make_user):
        admin = await make_user(role=UserRole.ADMIN, email="admin@test.com")
        first = await _open_request(service, portfolio, user=admin)
        second = await _open_request(service, portfolio, user=admin, title="Hallway light out")

        creator = await db_session.get(PropertyUser, first.created_by_property_user_id)
        assert creator is not None
        assert creator.user_id == admin.id
        assert creator.property_id == portfolio.prop.id
        assert creator.roles == ["admin_access"]
        assert second.created_by_property_user_id == creator.id
        assert await _count(db_session, PropertyUser, PropertyUser.user_id == admin.id) == 1


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:

    async def test_one_history_entry_per_transition(self, service, clock, portfolio, worker):
        request = await _open_request(service, portfolio)
        await service.assign_request(request.id, worker.id, AssignedToModel.USER, portfolio.landlord)
        clock.advance(hours=1)
        await service.update_status(request.id, S.IN_PROGRESS, worker)
        clock.advance(hours=3)
        await service.update_status(request.id, S.COMPLETED, worker, notes="Replaced washer")
        await service.verify_request(request.id, portfolio.landlord)

        statuses = [entry["status"] for entry in request.status_history]
        assert statuses == ["new", "assigned", "in_progress", "completed", "verified"]
        assert request.status_history[3]["notes"] == "Replaced washer"
        assert request.status_history[3]["changed_by"] == worker.id
        assert request.resolved_at == datetime(2024, 1, 15, 13, 0)
        assert request.verified_by_id == portfolio.landlord.id

    async def test_status_update_audited(self, service, db_session, portfolio, worker):
        request = await _open_request(service, portfolio)
        await service.assign_request(request.id, worker.id, AssignedToModel.USER, portfolio.landlord)
        await service.update_status(request.id, S.IN_PROGRESS, worker)
        rows = (await db_session.execute(
            select(AuditLog).where(
                AuditLog.resource_id == request.id,
                AuditLog.action == AuditAction.STATUS_UPDATE.value,
            )
        )).scalars().all()
        assert len(rows) == 1
        assert rows[0].old_value == {"status": "assigned"}
        assert rows[0].new_value == {"status": "in_progress"}

    async def test_tenant_cannot_advance_status(self, service, portfolio):
        request = await _open_request(service, portfolio)
        with pytest.raises(ForbiddenError):
            await service.update_status(request.id, S.IN_PROGRESS, portfolio.tenant)

    async def test_direct_assigned_status_rejected(self, service, portfolio):
        request = await _open_request(service, portfolio)
        with pytest.raises(ValidationError, match="assign operation"):
            await service.update_status(request.id, S.ASSIGNED, portfolio.landlord)

    async def test_skipping_states_rejected(self, service, portfolio):
        request = await _open_request(service, portfolio)
        with pytest.raises(InvalidTransitionError):
            await service.update_status(request.id, S.COMPLETED, portfolio.landlord)
        assert request.status == S.NEW.value
        assert len(request.status_history) == 1

    async def test_update_status_routes_verify(self, service, portfolio, worker):
        request = await _open_request(service, portfolio)
        await service.assign_request(request.id, worker.id, AssignedToModel.USER, portfolio.landlord)
        await service.update_status(request.id, S.IN_PROGRESS, worker)
        await service.update_status(request.id, S.COMPLETED, worker)
        await service.update_status(request.id, S.VERIFIED, portfolio.manager)
        assert request.status == S.VERIFIED.value
        assert request.verified_by_id == portfolio.manager.id

    async def test_worker_cannot_verify(self, service, portfolio, worker):
        request = await _open_request(service, portfolio)
        await service.assign_request(request.id, worker.id, AssignedToModel.USER, portfolio.landlord)
        await service.update_status(request.id, S.IN_PROGRESS, worker)
        await service.update_status(request.id, S.COMPLETED, worker)
        with pytest.raises(ForbiddenError):
            await service.verify_request(request.id, worker)

    async def test_reopen_clears_resolution(self, service, portfolio, worker):
        request = await _open_request(service, portfolio)
        await service.assign_request(request.id, worker.id, AssignedToModel.USER, portfolio.landlord)
        await service.update_status(request.id, S.IN_PROGRESS, worker)
        await service.update_status(request.id, S.COMPLETED, worker)
        await service.reopen_request(request.id, portfolio.landlord, notes="Still dripping")
        assert request.status == S.REOPENED.value
        assert request.resolved_at is None

    async def test_cancel_from_new(self, service, portfolio):
        request = await _open_request(service, portfolio)
        await service.cancel_request(request.id, portfolio.landlord)
        assert request.status == S.CANCELLED.value
        with pytest.raises(InvalidTransitionError):
            await service.cancel_request(request.id, portfolio.landlord)


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


class TestAssignment:

    async def test_assign_moves_new_to_assigned(self, service, portfolio, worker):
        request = await _open_request(service, portfolio)
        await service.assign_request(request.id, worker.id, AssignedToModel.USER, portfolio.landlord)
        assert request.status == S.ASSIGNED.value
        assert request.assigned_to_id == worker.id
        assert request.assigned_to_model == "User"
        assert request.assigned_by_property_user_id == portfolio.landlord_pu.id

    async def test_same_assignee_only_refreshes_timestamp(self, service, db_session, clock, portfolio, worker):
        request = await _open_request(service, portfolio)
        await service.assign_request(request.id, worker.id, AssignedToModel.USER, portfolio.landlord)
        history_len = len(request.status_history)
        notifications = await _count(db_session, Notification, Notification.related_id == request.id)

        clock.advance(hours=2)
        await service.assign_request(request.id, worker.id, AssignedToModel.USER, portfolio.landlord)

        assert request.assigned_at == datetime(2024, 1, 15, 11, 0)
        assert len(request.status_history) == history_len
        assert await _count(db_session, Notification, Notification.related_id == request.id) == notifications

    async def test_assign_vendor_notifies_vendor_record(self, service, db_session, portfolio, make_vendor, sms_mock):
        vendor = await make_vendor()
        request = await _open_request(service, portfolio)
        await service.assign_request(request.id, vendor.id, AssignedToModel.VENDOR, portfolio.landlord)
        vendor_rows = (await db_session.execute(
            select(Notification).where(Notification.recipient_id == vendor.id)
        )).scalars().all()
        assert len(vendor_rows) == 1
        assert vendor_rows[0].recipient_model == "Vendor"
        assert any(number == vendor.phone for number, _ in sms_mock.sent)

    async def test_tenant_role_cannot_be_assignee(self, service, portfolio, make_user):
        other_tenant = await make_user(role=UserRole.TENANT)
        request = await _open_request(service, portfolio)
        with pytest.raises(ValidationError):
            await service.assign_request(request.id, other_tenant.id, AssignedToModel.USER, portfolio.landlord)

    async def test_cannot_assign_completed(self, service, portfolio, worker):
        request = await _open_request(service, portfolio)
        await service.assign_request(request.id, worker.id, AssignedToModel.USER, portfolio.landlord)
        await service.update_status(request.id, S.IN_PROGRESS, worker)
        await service.update_status(request.id, S.COMPLETED, worker)
        with pytest.raises(ValidationError):
            await service.assign_request(request.id, worker.id, AssignedToModel.USER, portfolio.landlord)


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------


class TestFeedback:

    async def _completed(self, service, portfolio, worker):
        request = await _open_request(service, portfolio)
        await service.assign_request(request.id, worker.id, AssignedToModel.USER, portfolio.landlord)
        await service.update_status(request.id, S.IN_PROGRESS, worker)
        await service.update_status(request.id, S.COMPLETED, worker)
        return request

    async def test_creator_tenant_rates_once(self, service, portfolio, worker):
        request = await self._completed(service, portfolio, worker)
        await service.submit_feedback(request.id, 5, "Quick fix", portfolio.tenant)
        assert request.feedback["rating"] == 5
        assert request.feedback["submitted_by"] == portfolio.tenant.id

        with pytest.raises(ConflictError):
            await service.submit_feedback(request.id, 4, "Changed my mind", portfolio.tenant)
        assert request.feedback["rating"] == 5

    async def test_feedback_before_completion_rejected(self, service, portfolio):
        request = await _open_request(service, portfolio)
        with pytest.raises(ValidationError):
            await service.submit_feedback(request.id, 3, None, portfolio.tenant)

    async def test_non_creator_rejected(self, service, portfolio, worker):
        request = await self._completed(service, portfolio, worker)
        with pytest.raises(ForbiddenError):
            await service.submit_feedback(request.id, 3, None, portfolio.landlord)

    @pytest.mark.parametrize("rating", [0, 6, True])
    async def test_rating_bounds(self, service, portfolio, worker, rating):
        request = await self._completed(service, portfolio, worker)
        with pytest.raises(ValidationError):
            await service.submit_feedback(request.id, rating, None, portfolio.tenant)


# ---------------------------------------------------------------------------
# Update / list / delete
# ---------------------------------------------------------------------------


class TestEditing:

    async def test_creator_edits_title_while_new(self, service, portfolio):
        request = await _open_request(service, portfolio)
        await service.update_request(request.id, RequestUpdate(title="Sink and tap leaking"), portfolio.tenant)
        assert request.title == "Sink and tap leaking"

    async def test_creator_cannot_change_priority(self, service, portfolio):
        request = await _open_request(service, portfolio)
        with pytest.raises(ForbiddenError):
            await service.update_request(request.id, RequestUpdate(priority="urgent"), portfolio.tenant)

    async def test_list_scoped_for_tenant(self, service, portfolio, make_unit):
        await _open_request(service, portfolio)
        other = await make_unit(portfolio.prop, "C3")
        data = RequestCreate(title="Hallway light", category=Category.ELECTRICAL, property_id=portfolio.prop.id, unit_id=other.id)
        await service.create_request(data, portfolio.landlord)

        tenant_items, tenant_total = await service.list_requests(portfolio.tenant)
        landlord_items, landlord_total = await service.list_requests(portfolio.landlord)
        assert tenant_total == 1
        assert tenant_items[0].unit_id == portfolio.unit.id
        assert landlord_total == 2

    async def test_delete_removes_notifications(self, service, db_session, portfolio):
        request = await _open_request(service, portfolio)
        request_id = request.id
        await service.delete_request(request_id, portfolio.landlord)
        assert await _count(db_session, Notification, Notification.related_id == request_id) == 0
        with pytest.raises(NotFoundError):
            await service.get_request(request_id, portfolio.landlord)
