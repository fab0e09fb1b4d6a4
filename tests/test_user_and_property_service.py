"""Tests for user accounts, properties and comments."""

import pytest
from sqlalchemy import select

from fixit_platform.domain.enums import CommentContextType, PropertyUserRole, RegistrationStatus, UserRole
from fixit_platform.domain.errors import ConflictError, ForbiddenError, ValidationError
from fixit_platform.domain.models import PropertyUser
from fixit_platform.domain.schemas import (
    NotificationPreferencesUpdate,
    PropertyCreate,
    RequestCreate,
    UserCreate,
)
from fixit_platform.services.auth_service import verify_password
from fixit_platform.services.comment_service import CommentService
from fixit_platform.services.property_service import PropertyService
from fixit_platform.services.request_service import RequestService
from fixit_platform.services.user_service import UserService


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestCreateUser:

    async def test_self_registration(self, ctx):
        user = await UserService(ctx).create_user(UserCreate(
            first_name=" Grace ", email="Grace@Test.com", password="correct-horse",
        ))
        assert user.email == "grace@test.com"
        assert user.first_name == "Grace"
        assert user.role == UserRole.TENANT.value
        assert user.registration_status == RegistrationStatus.ACTIVE.value
        assert verify_password("correct-horse", user.password_hash)

    async def test_self_registration_tenant_only(self, ctx):
        with pytest.raises(ForbiddenError):
            await UserService(ctx).create_user(UserCreate(
                first_name="Eve", email="eve@test.com", password="correct-horse", role=UserRole.LANDLORD,
            ))

    async def test_landlord_creates_vendor_not_manager(self, ctx, portfolio):
        service = UserService(ctx)
        worker = await service.create_user(
            UserCreate(first_name="Moses", email="moses@test.com", role=UserRole.VENDOR), portfolio.landlord,
        )
        assert worker.registration_status == RegistrationStatus.PENDING_PASSWORD_SET.value
        with pytest.raises(ForbiddenError):
            await service.create_user(
                UserCreate(first_name="Pat", email="pat@test.com", role=UserRole.PROPERTY_MANAGER),
                portfolio.landlord,
            )

    async def test_duplicate_email(self, ctx, portfolio):
        with pytest.raises(ConflictError):
            await UserService(ctx).create_user(UserCreate(first_name="T", email="TENANT@test.com", password="x" * 8))


class TestUserAccess:

    async def test_manager_sees_tenant_on_property(self, ctx, portfolio, make_user):
        service = UserService(ctx)
        assert (await service.get_user(portfolio.tenant.id, portfolio.manager)).id == portfolio.tenant.id
        outsider = await make_user(role=UserRole.TENANT)
        with pytest.raises(ForbiddenError):
            await service.get_user(outsider.id, portfolio.manager)

    async def test_preferences_merge(self, ctx, portfolio):
        service = UserService(ctx)
        await service.update_notification_preferences(
            portfolio.tenant.id, NotificationPreferencesUpdate(email={"new_comment": False}), portfolio.tenant,
        )
        user = await service.update_notification_preferences(
            portfolio.tenant.id, NotificationPreferencesUpdate(sms={"rent_due": False}), portfolio.tenant,
        )
        assert user.preferences == {"email": {"new_comment": False}, "sms": {"rent_due": False}}
        assert user.wants("email", "new_comment") is False
        assert user.wants("email", "rent_due") is True

    async def test_unknown_preference_rejected(self, ctx, portfolio):
        with pytest.raises(ValidationError):
            await UserService(ctx).update_notification_preferences(
                portfolio.tenant.id, NotificationPreferencesUpdate(email={"carrier_pigeon": True}), portfolio.tenant,
            )

    async def test_deactivate_cascades_memberships(self, ctx, db_session, portfolio, make_user):
        admin = await make_user(role=UserRole.ADMIN)
        user = await UserService(ctx).deactivate_user(portfolio.manager.id, admin)
        assert user.is_active is False
        await db_session.refresh(portfolio.manager_pu)
        assert portfolio.manager_pu.is_active is False

    async def test_cannot_deactivate_self(self, ctx, make_user):
        admin = await make_user(role=UserRole.ADMIN)
        with pytest.raises(ValidationError):
            await UserService(ctx).deactivate_user(admin.id, admin)


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestProperties:

    async def test_manager_creator_gets_management_row(self, ctx, db_session, make_user):
        manager = await make_user(role=UserRole.PROPERTY_MANAGER)
        prop = await PropertyService(ctx).create_property(PropertyCreate(name="Hillside Court", city="Kampala"), manager)
        row = (await db_session.execute(
            select(PropertyUser).where(PropertyUser.property_id == prop.id)
        )).scalar_one()
        assert row.user_id == manager.id
        assert row.roles == [PropertyUserRole.PROPERTY_MANAGER.value]

    async def test_tenant_cannot_create(self, ctx, portfolio):
        with pytest.raises(ForbiddenError):
            await PropertyService(ctx).create_property(PropertyCreate(name="Nope"), portfolio.tenant)

    async def test_list_scoped_to_membership(self, ctx, portfolio, make_property):
        await make_property(name="Someone Else's Block")
        items, total = await PropertyService(ctx).list_properties(portfolio.tenant)
        assert total == 1
        assert items[0].id == portfolio.prop.id

    async def test_deactivate_refused_with_open_requests(self, ctx, portfolio):
        await RequestService(ctx).create_request(
            RequestCreate(title="Leak", category="plumbing", property_id=portfolio.prop.id, unit_id=portfolio.unit.id),
            portfolio.tenant,
        )
        with pytest.raises(ForbiddenError):
            await PropertyService(ctx).deactivate_property(portfolio.prop.id, portfolio.landlord)

    async def test_deactivate_cascades(self, ctx, db_session, portfolio):
        prop = await PropertyService(ctx).deactivate_property(portfolio.prop.id, portfolio.landlord)
        assert prop.is_active is False
        await db_session.refresh(portfolio.unit)
        await db_session.refresh(portfolio.tenant_pu)
        assert portfolio.unit.is_active is False
        assert portfolio.tenant_pu.is_active is False


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


class TestComments:

    @pytest.fixture
    async def request_row(self, ctx, portfolio):
        return await RequestService(ctx).create_request(
            RequestCreate(title="Leak", category="plumbing", property_id=portfolio.prop.id, unit_id=portfolio.unit.id),
            portfolio.tenant,
        )

    async def test_internal_notes_hidden_from_tenant(self, ctx, portfolio, request_row):
        comments = CommentService(ctx)
        await comments.add_comment(CommentContextType.REQUEST, request_row.id, "Will check today", portfolio.tenant)
        await comments.add_comment(
            CommentContextType.REQUEST, request_row.id, "Tenant caused this", portfolio.manager, is_internal_note=True,
        )
        tenant_view = await comments.list_comments(CommentContextType.REQUEST, request_row.id, portfolio.tenant)
        manager_view = await comments.list_comments(CommentContextType.REQUEST, request_row.id, portfolio.manager)
        assert [c.message for c in tenant_view] == ["Will check today"]
        assert len(manager_view) == 2

    async def test_tenant_cannot_add_internal_note(self, ctx, portfolio, request_row):
        with pytest.raises(ForbiddenError):
            await CommentService(ctx).add_comment(
                CommentContextType.REQUEST, request_row.id, "secret", portfolio.tenant, is_internal_note=True,
            )

    async def test_empty_message(self, ctx, portfolio, request_row):
        with pytest.raises(ValidationError):
            await CommentService(ctx).add_comment(CommentContextType.REQUEST, request_row.id, "   ", portfolio.tenant)

    async def test_unsupported_context(self, ctx, portfolio):
        with pytest.raises(ValidationError):
            await CommentService(ctx).add_comment("spaceship", "x", "hi", portfolio.tenant)
