"""End-to-end flows across services: the request lifecycle with an external vendor, and tenant isolation."""

import pytest
from sqlalchemy import select

from fixit_platform.domain.enums import AssignedToModel, Category, PropertyUserRole, RequestStatus, UserRole
from fixit_platform.domain.errors import ConflictError, ForbiddenError
from fixit_platform.domain.models import AuditLog, Comment, Notification, User
from fixit_platform.domain.schemas import RequestCreate
from fixit_platform.services.public_link_service import PublicLinkService
from fixit_platform.services.request_service import RequestService


@pytest.fixture
def requests(ctx):
    return RequestService(ctx)


def _leak(portfolio):
    return RequestCreate(
        title="Leak",
        description="Under sink",
        category=Category.PLUMBING,
        priority="high",
        property_id=portfolio.prop.id,
        unit_id=portfolio.unit.id,
    )


class TestVendorLifecycle:

    async def test_tenant_to_vendor_to_feedback(
        self, ctx, requests, db_session, clock, portfolio, make_vendor, settings,
    ):
        vendor = await make_vendor()

        request = await requests.create_request(_leak(portfolio), portfolio.tenant)
        assert request.status == RequestStatus.NEW.value

        await requests.assign_request(request.id, vendor.id, AssignedToModel.VENDOR, portfolio.manager)
        assert request.status == RequestStatus.ASSIGNED.value
        vendor_rows = (await db_session.execute(
            select(Notification).where(Notification.recipient_id == vendor.id)
        )).scalars().all()
        assert len(vendor_rows) == 1
        assert vendor_rows[0].recipient_model == "Vendor"
        actions = set((await db_session.execute(
            select(AuditLog.action).where(AuditLog.resource_id == request.id)
        )).scalars().all())
        assert {"CREATE", "ASSIGN"} <= actions

        link = await requests.enable_public_link(request.id, portfolio.manager, expires_in_days=3)
        assert link["public_link"].startswith(f"{settings.frontend_url}/requests/public/")

        clock.advance(hours=5)
        await PublicLinkService(ctx).public_request_update(
            link["token"], "Alex", "5551234567", status="completed", comment_message="Replaced trap",
        )
        assert request.status == RequestStatus.COMPLETED.value
        assert request.resolved_at == clock.now()
        pseudo = (await db_session.execute(
            select(User).where(User.email == "5551234567@external.vendor")
        )).scalar_one()
        assert pseudo.role == UserRole.VENDOR.value
        comments = (await db_session.execute(
            select(Comment).where(Comment.context_id == request.id)
        )).scalars().all()
        assert [(c.message, c.is_external) for c in comments] == [("Replaced trap", True)]

        await requests.submit_feedback(request.id, 5, "Fast!", portfolio.tenant)
        assert request.feedback["rating"] == 5
        assert request.feedback["comment"] == "Fast!"
        with pytest.raises(ConflictError):
            await requests.submit_feedback(request.id, 4, "Changed my mind", portfolio.tenant)


class TestTenantIsolation:

    async def test_tenant_on_other_unit_forbidden(
        self, requests, portfolio, make_user, make_unit, make_property_user,
    ):
        request = await requests.create_request(_leak(portfolio), portfolio.tenant)

        neighbour = await make_user(role=UserRole.TENANT, email="neighbour@test.com")
        other_unit = await make_unit(portfolio.prop, "C3")
        await make_property_user(neighbour, portfolio.prop, [PropertyUserRole.TENANT], unit=other_unit)

        with pytest.raises(ForbiddenError) as exc:
            await requests.get_request(request.id, neighbour)
        assert "Leak" not in exc.value.message
        assert request.id not in exc.value.message

        items, total = await requests.list_requests(neighbour)
        assert total == 0
        assert items == []
