"""Tests for public share links on requests and scheduled maintenance."""

from datetime import datetime

import pytest
from sqlalchemy import select

from fixit_platform.domain.enums import (
    AssignedToModel,
    Category,
    CommentContextType,
    RequestStatus,
    ScheduledMaintenanceStatus,
    UserRole,
)
from fixit_platform.domain.errors import NotFoundError, ValidationError
from fixit_platform.domain.models import AuditLog, Comment, User
from fixit_platform.domain.schemas import FrequencySchema, RequestCreate, ScheduledMaintenanceCreate
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.public_link_service import INVALID_LINK, PublicLinkService
from fixit_platform.services.request_service import RequestService
from fixit_platform.services.request_state_machine import InvalidTransitionError
from fixit_platform.services.scheduled_maintenance_service import ScheduledMaintenanceService


async def _audit_rows(db, resource_id):
    return (await db.execute(select(AuditLog).where(AuditLog.resource_id == resource_id))).scalars().all()


@pytest.fixture
def requests(ctx):
    return RequestService(ctx)


@pytest.fixture
def public(ctx):
    return PublicLinkService(ctx)


@pytest.fixture
async def assigned_request(requests, portfolio, make_vendor):
    vendor = await make_vendor()
    data = RequestCreate(
        title="Leak",
        description="Under sink",
        category=Category.PLUMBING,
        priority="high",
        property_id=portfolio.prop.id,
        unit_id=portfolio.unit.id,
    )
    request = await requests.create_request(data, portfolio.tenant)
    await requests.assign_request(request.id, vendor.id, AssignedToModel.VENDOR, portfolio.manager)
    return request


# ---------------------------------------------------------------------------
# Token lifecycle
# ---------------------------------------------------------------------------


class TestRequestLinks:

    async def test_enable_returns_frontend_url(self, requests, portfolio, assigned_request, settings):
        link = await requests.enable_public_link(assigned_request.id, portfolio.manager, expires_in_days=3)
        assert link["public_link"] == f"{settings.frontend_url}/requests/public/{link['token']}"
        assert link["expires_at"] == datetime(2024, 1, 18, 9, 0)

    async def test_projection_hides_internal_fields(self, requests, public, portfolio, assigned_request):
        link = await requests.enable_public_link(assigned_request.id, portfolio.manager)
        view = await public.get_public_request(link["token"])
        assert view["title"] == "Leak"
        assert view["property"]["name"] == portfolio.prop.name
        assert view["assigned_to_name"] == "Kampala Plumbing Ltd"
        for hidden in ("status_history", "created_by_property_user_id", "public_token", "feedback"):
            assert hidden not in view

    async def test_view_is_audited(self, requests, public, db_session, portfolio, assigned_request):
        link = await requests.enable_public_link(assigned_request.id, portfolio.manager)
        await public.get_public_request(link["token"], ip_address="41.210.0.1")
        row = (await db_session.execute(
            select(AuditLog).where(AuditLog.action == "READ", AuditLog.resource_id == assigned_request.id)
        )).scalar_one()
        assert row.external_user_identifier == link["token"]
        assert row.ip_address == "41.210.0.1"

    async def test_expired_after_default_window(
        self, db_session, clock, settings, email_mock, sms_mock, storage_mock, portfolio, assigned_request,
    ):
        short = settings.model_copy(update={"public_link_default_days": 1})
        ctx = ServiceContext(db_session, settings=short, clock=clock, email=email_mock, sms=sms_mock, storage=storage_mock)
        link = await RequestService(ctx).enable_public_link(assigned_request.id, portfolio.manager)
        public = PublicLinkService(ctx)

        clock.advance(hours=23)
        await public.get_public_request(link["token"])

        clock.advance(hours=2)
        with pytest.raises(NotFoundError, match=INVALID_LINK):
            await public.get_public_request(link["token"])

    async def test_disabled_link_not_found(self, requests, public, portfolio, assigned_request):
        link = await requests.enable_public_link(assigned_request.id, portfolio.manager)
        await requests.disable_public_link(assigned_request.id, portfolio.manager)
        with pytest.raises(NotFoundError, match=INVALID_LINK):
            await public.get_public_request(link["token"])

    async def test_unknown_token_not_found(self, public):
        with pytest.raises(NotFoundError, match=INVALID_LINK):
            await public.get_public_request("not-a-token")

    async def test_reenable_keeps_token_unless_rotated(self, requests, portfolio, assigned_request):
        first = await requests.enable_public_link(assigned_request.id, portfolio.manager)
        again = await requests.enable_public_link(assigned_request.id, portfolio.manager)
        rotated = await requests.enable_public_link(assigned_request.id, portfolio.manager, rotate=True)
        assert first["token"] == again["token"]
        assert rotated["token"] != first["token"]

    async def test_tenant_cannot_share(self, requests, portfolio, assigned_request):
        from fixit_platform.domain.errors import ForbiddenError

        with pytest.raises(ForbiddenError):
            await requests.enable_public_link(assigned_request.id, portfolio.tenant)


# ---------------------------------------------------------------------------
# External updates
# ---------------------------------------------------------------------------


class TestPublicRequestUpdate:

    async def test_vendor_completes_with_comment(self, requests, public, db_session, portfolio, assigned_request):
        link = await requests.enable_public_link(assigned_request.id, portfolio.manager)
        before = await _audit_rows(db_session, assigned_request.id)
        await public.public_request_update(
            link["token"], "Alex", "555-123-4567", status="completed", comment_message="Replaced trap",
        )

        assert assigned_request.status == RequestStatus.COMPLETED.value

        after = await _audit_rows(db_session, assigned_request.id)
        assert len(after) == len(before) + 1
        (row,) = [r for r in after if r.action in ("PUBLIC_UPDATE", "COMMENT_ADDED")]
        assert row.action == "PUBLIC_UPDATE"
        assert row.new_value["status"] == "completed"
        assert row.new_value["message"] == "Replaced trap"
        assert row.new_value["comment_id"]
        assert assigned_request.resolved_at is not None
        pseudo = (await db_session.execute(
            select(User).where(User.email == "5551234567@external.vendor")
        )).scalar_one()
        assert pseudo.role == UserRole.VENDOR.value
        assert assigned_request.status_history[-1]["changed_by"] == pseudo.id

        comments = (await db_session.execute(
            select(Comment).where(
                Comment.context_type == CommentContextType.REQUEST.value,
                Comment.context_id == assigned_request.id,
            )
        )).scalars().all()
        assert len(comments) == 1
        assert comments[0].is_external is True
        assert comments[0].external_user_name == "Alex"

    async def test_pseudo_user_reused(self, requests, public, db_session, portfolio, assigned_request):
        link = await requests.enable_public_link(assigned_request.id, portfolio.manager)
        await public.public_request_update(link["token"], "Alex", "5551234567", status="in_progress")
        await public.add_public_comment(link["token"], "Alex K", "+5551234567", "On my way")
        users = (await db_session.execute(
            select(User).where(User.email == "5551234567@external.vendor")
        )).scalars().all()
        assert len(users) == 1

    async def test_identity_required(self, requests, public, portfolio, assigned_request):
        link = await requests.enable_public_link(assigned_request.id, portfolio.manager)
        with pytest.raises(ValidationError):
            await public.public_request_update(link["token"], "", "5551234567", status="in_progress")

    async def test_needs_status_or_comment(self, requests, public, portfolio, assigned_request):
        link = await requests.enable_public_link(assigned_request.id, portfolio.manager)
        with pytest.raises(ValidationError):
            await public.public_request_update(link["token"], "Alex", "5551234567")

    async def test_cannot_verify_through_link(self, requests, public, portfolio, assigned_request):
        link = await requests.enable_public_link(assigned_request.id, portfolio.manager)
        with pytest.raises(InvalidTransitionError):
            await public.public_request_update(link["token"], "Alex", "5551234567", status="verified")
        assert assigned_request.status == RequestStatus.ASSIGNED.value


# ---------------------------------------------------------------------------
# Scheduled maintenance links
# ---------------------------------------------------------------------------


class TestScheduleLinks:

    async def test_completing_recurring_occurrence_rolls_forward(self, ctx, public, portfolio):
        schedules = ScheduledMaintenanceService(ctx)
        task = await schedules.create_task(
            ScheduledMaintenanceCreate(
                title="Generator service",
                category=Category.ELECTRICAL,
                property_id=portfolio.prop.id,
                scheduled_date=datetime(2024, 1, 15, 9, 0),
                recurring=True,
                frequency=FrequencySchema(type="monthly"),
            ),
            portfolio.manager,
        )
        link = await schedules.enable_public_link(task.id, portfolio.manager)
        await public.public_schedule_update(link["token"], "Sam", "0772000111", status="completed")

        assert task.status == ScheduledMaintenanceStatus.SCHEDULED.value
        assert task.next_due_date == datetime(2024, 2, 15, 9, 0)
        assert task.last_executed_at == datetime(2024, 1, 15, 9, 0)

    async def test_invalid_schedule_status(self, ctx, public, portfolio):
        schedules = ScheduledMaintenanceService(ctx)
        task = await schedules.create_task(
            ScheduledMaintenanceCreate(
                title="Pest control",
                category=Category.PEST_CONTROL,
                property_id=portfolio.prop.id,
                scheduled_date=datetime(2024, 2, 1),
            ),
            portfolio.manager,
        )
        link = await schedules.enable_public_link(task.id, portfolio.manager)
        with pytest.raises(ValidationError):
            await public.public_schedule_update(link["token"], "Sam", "0772000111", status="paused")

    async def test_status_and_comment_audited_once(self, ctx, public, db_session, portfolio):
        schedules = ScheduledMaintenanceService(ctx)
        task = await schedules.create_task(
            ScheduledMaintenanceCreate(
                title="Gutter clearing",
                category=Category.CLEANING,
                property_id=portfolio.prop.id,
                scheduled_date=datetime(2024, 1, 20),
            ),
            portfolio.manager,
        )
        link = await schedules.enable_public_link(task.id, portfolio.manager)
        before = await _audit_rows(db_session, task.id)
        await public.public_schedule_update(
            link["token"], "Sam", "0772000111", status="in_progress", comment_message="On site",
        )

        after = await _audit_rows(db_session, task.id)
        assert len(after) == len(before) + 1
        (row,) = [r for r in after if r.action in ("PUBLIC_UPDATE", "COMMENT_ADDED")]
        assert row.new_value["status"] == "in_progress"
        assert row.new_value["message"] == "On site"
