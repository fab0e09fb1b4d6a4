"""Shared test infrastructure for the Fix-It test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- clock: FrozenClock pinned to 2024-01-15 09:00 UTC
- email_mock / sms_mock / storage_mock: provider doubles capturing outbound calls
- ctx: ServiceContext wired to the session, clock and provider doubles
- make_user / make_vendor / make_property / make_unit / make_property_user: row factories
- portfolio: a property with a landlord, a manager, a unit and a tenant on it
"""

import uuid
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from fixit_platform.infra.database import Base

import fixit_platform.domain.models  # noqa: F401

from fixit_platform.app.config import get_settings
from fixit_platform.domain.enums import PropertyUserRole, UnitStatus, UserRole
from fixit_platform.domain.models import Property, PropertyUser, Unit, User, Vendor
from fixit_platform.infra.clock import FrozenClock
from fixit_platform.services.context import ServiceContext

START = datetime(2024, 1, 15, 9, 0)


# ---------------------------------------------------------------------------
# Database session fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


# ---------------------------------------------------------------------------
# Clock and provider mocks
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def email_mock():
    """Mock EmailService; sent emails land in .sent as (to, subject, message)."""
    mock = MagicMock()
    mock.sent = []

    async def _capture(to_email: str, subject: str, message: str, link: str | None = None):
        mock.sent.append((to_email, subject, message))
        return {"ok": True}

    mock.send_notification_email = AsyncMock(side_effect=_capture)
    return mock


@pytest.fixture
def sms_mock():
    """Mock SMSService capturing (to_number, message) tuples in .sent."""
    mock = MagicMock()
    mock.sent = []

    async def _capture_send(to_number: str, message: str):
        mock.sent.append((to_number, message))
        return {"ok": True}

    mock.send_sms = AsyncMock(side_effect=_capture_send)
    return mock


@pytest.fixture
def storage_mock():
    """Mock ObjectStorage returning predictable Cloudinary-style URLs."""
    mock = MagicMock()
    counter = {"n": 0}

    async def _upload(data: bytes, mime_type: str, filename: str, folder: str = "uploads"):
        counter["n"] += 1
        public_id = f"fixit/{folder}/file{counter['n']}"
        return {
            "url": f"https://res.cloudinary.com/demo/image/upload/v1/{public_id}.jpg",
            "thumbnail_url": None,
            "public_id": public_id,
            "size": len(data),
        }

    mock.upload = AsyncMock(side_effect=_upload)
    mock.delete_by_url = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def ctx(db_session, clock, email_mock, sms_mock, storage_mock, settings):
    return ServiceContext(
        db_session,
        settings=settings,
        clock=clock,
        email=email_mock,
        sms=sms_mock,
        storage=storage_mock,
        documents=MagicMock(),
    )


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db_session, clock):
    """Factory for User rows.

    Usage:
        landlord = await make_user(role=UserRole.LANDLORD)
    """
    async def _factory(
        role: UserRole = UserRole.TENANT,
        first_name: str = "Test",
        last_name: str = "User",
        email: str | None = None,
        phone: str | None = "+256700000001",
        is_active: bool = True,
        preferences: dict | None = None,
    ) -> User:
        user = User(
            id=str(uuid.uuid4()),
            first_name=first_name,
            last_name=last_name,
            email=email or f"{uuid.uuid4().hex[:10]}@test.com",
            phone=phone,
            role=role.value,
            is_active=is_active,
            preferences=preferences,
            created_at=clock.now(),
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _factory


@pytest.fixture
def make_vendor(db_session):
    async def _factory(name: str = "Kampala Plumbing Ltd", phone: str = "+256700000099") -> Vendor:
        vendor = Vendor(
            id=str(uuid.uuid4()),
            name=name,
            phone=phone,
            email="jobs@kplumbing.test",
            contact_person="Moses",
        )
        db_session.add(vendor)
        await db_session.flush()
        return vendor

    return _factory


@pytest.fixture
def make_property(db_session, clock):
    async def _factory(name: str = "Sunset Apartments", created_by: User | None = None) -> Property:
        prop = Property(
            id=str(uuid.uuid4()),
            name=name,
            street="Plot 12 Acacia Avenue",
            city="Kampala",
            country="Uganda",
            created_by_id=created_by.id if created_by else None,
            created_at=clock.now(),
        )
        db_session.add(prop)
        await db_session.flush()
        return prop

    return _factory


@pytest.fixture
def make_unit(db_session, clock):
    async def _factory(prop: Property, name: str = "A1", status: UnitStatus = UnitStatus.VACANT) -> Unit:
        unit = Unit(
            id=str(uuid.uuid4()),
            property_id=prop.id,
            name=name,
            status=status.value,
            tenant_ids=[],
            created_at=clock.now(),
        )
        db_session.add(unit)
        await db_session.flush()
        return unit

    return _factory


@pytest.fixture
def make_property_user(db_session, clock):
    """Factory for PropertyUser rows.

    Usage:
        pu = await make_property_user(tenant, prop, [PropertyUserRole.TENANT], unit=unit)
    """
    async def _factory(
        user: User,
        prop: Property,
        roles: list[PropertyUserRole],
        unit: Unit | None = None,
        is_active: bool = True,
    ) -> PropertyUser:
        row = PropertyUser(
            id=str(uuid.uuid4()),
            user_id=user.id,
            property_id=prop.id,
            unit_id=unit.id if unit else None,
            roles=[r.value for r in roles],
            is_active=is_active,
            start_date=clock.now(),
            created_at=clock.now(),
        )
        db_session.add(row)
        if unit is not None and PropertyUserRole.TENANT in roles and is_active:
            unit.tenant_ids = [*(unit.tenant_ids or []), user.id]
            unit.status = UnitStatus.OCCUPIED.value
        await db_session.flush()
        return row

    return _factory


@pytest.fixture
async def portfolio(db_session, make_user, make_property, make_unit, make_property_user):
    """Landlord-owned property with a manager and one occupied unit."""
    landlord = await make_user(role=UserRole.LANDLORD, first_name="Lydia", email="landlord@test.com")
    manager = await make_user(role=UserRole.PROPERTY_MANAGER, first_name="Martin", email="manager@test.com")
    tenant = await make_user(role=UserRole.TENANT, first_name="Tom", email="tenant@test.com", phone="+256700000002")
    prop = await make_property(created_by=landlord)
    unit = await make_unit(prop, "A1")
    landlord_pu = await make_property_user(landlord, prop, [PropertyUserRole.LANDLORD])
    manager_pu = await make_property_user(manager, prop, [PropertyUserRole.PROPERTY_MANAGER])
    tenant_pu = await make_property_user(tenant, prop, [PropertyUserRole.TENANT], unit=unit)
    await db_session.commit()

    return SimpleNamespace(
        landlord=landlord,
        manager=manager,
        tenant=tenant,
        prop=prop,
        unit=unit,
        landlord_pu=landlord_pu,
        manager_pu=manager_pu,
        tenant_pu=tenant_pu,
    )
