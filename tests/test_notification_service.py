"""Tests for notification fan-out and the in-app inbox."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select

from fixit_platform.domain.enums import NotificationType, PropertyUserRole, UserRole
from fixit_platform.domain.errors import NotFoundError
from fixit_platform.domain.models import Notification, Request
from fixit_platform.services.notification_service import NotificationService
from fixit_platform.services.sms_service import SMSService


@pytest.fixture
def service(ctx):
    return NotificationService(ctx)


@pytest.fixture
async def worker(make_user):
    return await make_user(role=UserRole.VENDOR, email="worker@test.com", phone="+256700000050")


@pytest.fixture
async def request_row(db_session, clock, portfolio, worker):
    request = Request(
        title="Blocked drain",
        category="plumbing",
        priority="high",
        property_id=portfolio.prop.id,
        unit_id=portfolio.unit.id,
        created_by_property_user_id=portfolio.tenant_pu.id,
        assigned_to_id=worker.id,
        assigned_to_model="User",
        status="assigned",
        status_history=[],
        created_at=clock.now(),
    )
    db_session.add(request)
    await db_session.commit()
    return request


async def _inbox(db, notification_type=None):
    query = select(Notification)
    if notification_type is not None:
        query = query.where(Notification.type == notification_type.value)
    return (await db.execute(query)).scalars().all()


class TestRecipients:

    async def test_creator_assignee_and_managers(self, service, portfolio, worker, request_row):
        users = await service.collect_recipients(request_row)
        ids = {u.id for u in users}
        assert ids == {
            portfolio.tenant.id,
            worker.id,
            portfolio.landlord.id,
            portfolio.manager.id,
        }

    async def test_actor_excluded(self, service, portfolio, request_row):
        users = await service.collect_recipients(request_row, actor_id=portfolio.landlord.id)
        assert portfolio.landlord.id not in {u.id for u in users}

    async def test_inactive_users_skipped(self, service, db_session, portfolio, request_row):
        portfolio.manager.is_active = False
        await db_session.flush()
        users = await service.collect_recipients(request_row)
        assert portfolio.manager.id not in {u.id for u in users}

    async def test_extra_ids_deduplicated(self, service, portfolio, request_row):
        users = await service.collect_recipients(
            request_row, extra_user_ids=[portfolio.tenant.id, portfolio.tenant.id, None],
        )
        assert [u.id for u in users].count(portfolio.tenant.id) == 1

    async def test_unit_tenants_optional(self, service, db_session, portfolio, make_user, make_property_user, request_row):
        roommate = await make_user(role=UserRole.TENANT)
        await make_property_user(roommate, portfolio.prop, [PropertyUserRole.TENANT], unit=portfolio.unit)
        without = {u.id for u in await service.collect_recipients(request_row)}
        with_tenants = {u.id for u in await service.collect_recipients(request_row, include_unit_tenants=True)}
        assert roommate.id not in without
        assert roommate.id in with_tenants


class TestFanOut:

    async def test_one_row_per_recipient(self, service, db_session, portfolio, request_row):
        count = await service.fan_out(
            NotificationType.STATUS_UPDATE, "Status changed", resource=request_row, actor=portfolio.landlord,
        )
        rows = await _inbox(db_session, NotificationType.STATUS_UPDATE)
        assert count == 3
        assert len(rows) == 3
        assert portfolio.landlord.id not in {r.recipient_id for r in rows}
        assert all(r.related_kind == "Request" and r.related_id == request_row.id for r in rows)
        assert all(r.sender_id == portfolio.landlord.id for r in rows)

    async def test_email_and_sms_sent(self, service, portfolio, worker, request_row, email_mock, sms_mock):
        await service.fan_out(
            NotificationType.STATUS_UPDATE, "Status changed", resource=request_row, actor=portfolio.landlord,
        )
        emailed = {to for to, _, _ in email_mock.sent}
        assert portfolio.tenant.email in emailed
        texted = {number for number, _ in sms_mock.sent}
        assert worker.phone in texted

    async def test_plain_digit_phone_reaches_gateway(self, ctx, settings, db_session, portfolio, worker, request_row):
        worker.phone = "0772 000 111"
        await db_session.commit()
        ctx.sms = SMSService(settings.model_copy(update={"sms_username": "fixit", "sms_api_key": "key-123"}))
        gateway = MagicMock()
        gateway.post = AsyncMock(return_value=MagicMock(status_code=201, json=MagicMock(return_value={})))
        session = MagicMock()
        session.__aenter__ = AsyncMock(return_value=gateway)
        session.__aexit__ = AsyncMock(return_value=False)

        with patch("fixit_platform.services.sms_service.httpx.AsyncClient", return_value=session):
            await NotificationService(ctx).fan_out(
                NotificationType.STATUS_UPDATE, "Status changed", resource=request_row, actor=portfolio.landlord,
            )

        numbers = {call.kwargs["data"]["to"] for call in gateway.post.await_args_list}
        assert "+256772000111" in numbers

    async def test_non_sms_type_skips_sms(self, service, portfolio, request_row, sms_mock):
        await service.fan_out(NotificationType.NEW_COMMENT, "New comment", resource=request_row)
        assert sms_mock.sent == []

    async def test_preferences_opt_out(self, service, db_session, portfolio, request_row, email_mock):
        portfolio.tenant.preferences = {"email": {"status_update": False}}
        await db_session.commit()
        await service.fan_out(NotificationType.STATUS_UPDATE, "Status changed", resource=request_row)
        assert portfolio.tenant.email not in {to for to, _, _ in email_mock.sent}
        rows = await _inbox(db_session, NotificationType.STATUS_UPDATE)
        assert portfolio.tenant.id in {r.recipient_id for r in rows}

    async def test_provider_failures_swallowed(self, service, db_session, portfolio, request_row, email_mock, sms_mock):
        email_mock.send_notification_email = AsyncMock(side_effect=RuntimeError("sendgrid down"))
        sms_mock.send_sms = AsyncMock(side_effect=RuntimeError("gateway down"))
        count = await service.fan_out(NotificationType.STATUS_UPDATE, "Status changed", resource=request_row)
        assert count == 4
        assert len(await _inbox(db_session, NotificationType.STATUS_UPDATE)) == 4

    async def test_recipient_lookup_failure_returns_zero(self, service, request_row):
        service.collect_recipients = AsyncMock(side_effect=RuntimeError("db down"))
        assert await service.fan_out(NotificationType.STATUS_UPDATE, "x", resource=request_row) == 0


class TestInbox:

    async def test_mark_read_and_delete(self, service, db_session, portfolio, request_row):
        await service.fan_out(NotificationType.STATUS_UPDATE, "Status changed", resource=request_row)
        rows = await _inbox(db_session)
        mine = next(r for r in rows if r.recipient_id == portfolio.tenant.id)

        read = await service.mark_as_read(mine.id, portfolio.tenant)
        assert read.is_read is True
        assert read.read_at is not None

        with pytest.raises(NotFoundError):
            await service.mark_as_read(mine.id, portfolio.landlord)

        await service.delete_notification(mine.id, portfolio.tenant)
        with pytest.raises(NotFoundError):
            await service.mark_as_read(mine.id, portfolio.tenant)

    async def test_mark_all_as_read(self, service, portfolio, request_row):
        await service.fan_out(NotificationType.STATUS_UPDATE, "one", resource=request_row)
        await service.fan_out(NotificationType.NEW_COMMENT, "two", resource=request_row)
        assert await service.mark_all_as_read(portfolio.tenant) == 2
        assert await service.mark_all_as_read(portfolio.tenant) == 0
