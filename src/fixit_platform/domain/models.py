"""SQLAlchemy ORM models for the Fix-It platform.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for embedded arrays and snapshots (no JSONB)
- DateTime for naive UTC timestamps (no TIMESTAMPTZ)

JSON columns are replaced wholesale on change (never mutated in place) so
the ORM sees the new value.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import validates

from fixit_platform.domain.enums import (
    InviteStatus,
    LeaseStatus,
    RegistrationStatus,
    RentStatus,
    RequestStatus,
    ScheduledMaintenanceStatus,
    UnitStatus,
    UserRole,
)
from fixit_platform.infra.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------


class User(Base):
    """Platform user. Global role decides the coarse capability set."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(50), nullable=True)
    password_hash = Column(String(255), nullable=True)
    avatar = Column(String(500), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.TENANT.value)
    registration_status = Column(
        String(40), nullable=False, default=RegistrationStatus.ACTIVE.value
    )
    is_active = Column(Boolean, nullable=False, default=True)
    # {"email": {notification_type: bool}, "sms": {notification_type: bool}}
    preferences = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    last_login_at = Column(DateTime, nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def wants(self, channel: str, notification_type: str) -> bool:
        """Channel preference for a notification kind; missing entries mean yes."""
        prefs = (self.preferences or {}).get(channel) or {}
        return prefs.get(notification_type) is not False


class Vendor(Base):
    """External service company that can be assigned work."""

    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    contact_person = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    services = Column(JSON, nullable=True)
    # Property ids whose managers may see and edit this vendor
    associated_property_ids = Column(JSON, nullable=True)
    fixed_callout_fee = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    added_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# Property / Unit / PropertyUser
# ---------------------------------------------------------------------------


class Property(Base):
    """A managed property. Units hang off it by property_id."""

    __tablename__ = "properties"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    street = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    zip_code = Column(String(20), nullable=True)
    country = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class Unit(Base):
    """A rentable unit within a property."""

    __tablename__ = "units"
    __table_args__ = (UniqueConstraint("property_id", "name", name="uq_unit_property_name"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    floor = Column(String(20), nullable=True)
    bedrooms = Column(Integer, nullable=True)
    bathrooms = Column(Float, nullable=True)
    rent_amount = Column(Float, nullable=True)
    status = Column(String(30), nullable=False, default=UnitStatus.VACANT.value)
    # Materialized list of current tenant user ids; PropertyUser is the source of truth
    tenant_ids = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class PropertyUser(Base):
    """Bridge row binding a user to a property (and optionally a unit) with roles.

    unit_key mirrors unit_id with "" for property-wide rows so the unique
    constraint treats a missing unit as a single value.
    """

    __tablename__ = "property_users"
    __table_args__ = (
        UniqueConstraint("user_id", "property_id", "unit_key", name="uq_property_user_triple"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False, index=True)
    unit_id = Column(String(36), ForeignKey("units.id"), nullable=True, index=True)
    unit_key = Column(String(36), nullable=False, default="")
    roles = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    lease_id = Column(String(36), ForeignKey("leases.id"), nullable=True)
    invited_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    @validates("unit_id")
    def _sync_unit_key(self, key, value):
        self.unit_key = value or ""
        return value


class Invite(Base):
    """Emailed invitation that grants PropertyUser roles once accepted."""

    __tablename__ = "invites"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, index=True)
    roles = Column(JSON, nullable=False, default=list)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False, index=True)
    unit_id = Column(String(36), ForeignKey("units.id"), nullable=True)
    token = Column(String(64), nullable=False, unique=True, index=True)
    status = Column(String(20), nullable=False, default=InviteStatus.PENDING.value, index=True)
    generated_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    accepted_at = Column(DateTime, nullable=True)
    accepted_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    revoked_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    decline_reason = Column(Text, nullable=True)
    resend_count = Column(Integer, nullable=False, default=0)
    last_resend_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


class Request(Base):
    """Maintenance request work item."""

    __tablename__ = "requests"
    __table_args__ = (
        Index("ix_requests_property_status", "property_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(40), nullable=False)
    priority = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=RequestStatus.NEW.value)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False, index=True)
    unit_id = Column(String(36), ForeignKey("units.id"), nullable=True, index=True)
    created_by_property_user_id = Column(
        String(36), ForeignKey("property_users.id"), nullable=True
    )

    # Polymorphic assignee: assigned_to_model is "User" or "Vendor"
    assigned_to_id = Column(String(36), nullable=True, index=True)
    assigned_to_model = Column(String(10), nullable=True)
    assigned_by_property_user_id = Column(
        String(36), ForeignKey("property_users.id"), nullable=True
    )
    assigned_at = Column(DateTime, nullable=True)

    status_history = Column(JSON, nullable=False, default=list)
    feedback = Column(JSON, nullable=True)

    public_token = Column(String(64), unique=True, nullable=True)
    public_link_enabled = Column(Boolean, nullable=False, default=False)
    public_link_expires_at = Column(DateTime, nullable=True)

    resolved_at = Column(DateTime, nullable=True)
    verified_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    generated_from_schedule_id = Column(String(36), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class ScheduledMaintenance(Base):
    """Template that periodically spawns maintenance requests."""

    __tablename__ = "scheduled_maintenances"
    __table_args__ = (
        Index("ix_scheduled_due", "status", "next_execution_attempt"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(40), nullable=False)
    priority = Column(String(20), nullable=False)
    status = Column(
        String(20), nullable=False, default=ScheduledMaintenanceStatus.SCHEDULED.value
    )
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False, index=True)
    unit_id = Column(String(36), ForeignKey("units.id"), nullable=True)
    created_by_property_user_id = Column(
        String(36), ForeignKey("property_users.id"), nullable=True
    )
    assigned_to_id = Column(String(36), nullable=True)
    assigned_to_model = Column(String(10), nullable=True)

    scheduled_date = Column(DateTime, nullable=False)
    recurring = Column(Boolean, nullable=False, default=False)
    # {type, interval, day_of_week, day_of_month, month_of_year, end_date, occurrences, custom_days}
    frequency = Column(JSON, nullable=True)
    next_due_date = Column(DateTime, nullable=True)
    next_execution_attempt = Column(DateTime, nullable=True)
    last_executed_at = Column(DateTime, nullable=True)
    last_generated_request_id = Column(String(36), nullable=True)
    generated_request_ids = Column(JSON, nullable=False, default=list)
    occurrences_generated = Column(Integer, nullable=False, default=0)
    status_history = Column(JSON, nullable=False, default=list)

    public_link_token = Column(String(64), unique=True, nullable=True)
    public_link_enabled = Column(Boolean, nullable=False, default=False)
    public_link_expires = Column(DateTime, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class Comment(Base):
    """Comment attached to a request, schedule, property or unit."""

    __tablename__ = "comments"
    __table_args__ = (Index("ix_comments_context", "context_type", "context_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    context_type = Column(String(30), nullable=False)
    context_id = Column(String(36), nullable=False)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    message = Column(Text, nullable=False)
    is_external = Column(Boolean, nullable=False, default=False)
    external_user_name = Column(String(255), nullable=True)
    external_user_email = Column(String(255), nullable=True)
    is_internal_note = Column(Boolean, nullable=False, default=False)
    media_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=_utcnow)


class Media(Base):
    """Metadata for a file whose bytes live in the object store."""

    __tablename__ = "media"
    __table_args__ = (Index("ix_media_related", "related_to", "related_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    url = Column(String(1000), nullable=False)
    thumbnail_url = Column(String(1000), nullable=True)
    filename = Column(String(255), nullable=True)
    original_name = Column(String(255), nullable=True)
    mime_type = Column(String(100), nullable=True)
    size = Column(Integer, nullable=True)
    uploaded_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    related_to = Column(String(40), nullable=False)
    related_id = Column(String(36), nullable=False)
    is_public = Column(Boolean, nullable=False, default=False)
    tags = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)


# ---------------------------------------------------------------------------
# Notifications / Audit
# ---------------------------------------------------------------------------


class Notification(Base):
    """Durable in-app notification; email/SMS dispatch is best-effort on top."""

    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_related", "related_kind", "related_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    # Polymorphic: a User id, or a Vendor id when recipient_model == "Vendor"
    recipient_id = Column(String(36), nullable=False, index=True)
    recipient_model = Column(String(10), nullable=False, default="User")
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    type = Column(String(40), nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String(500), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    related_kind = Column(String(40), nullable=True)
    related_id = Column(String(36), nullable=True)
    scheduled_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    context_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_utcnow)


class AuditLog(Base):
    """Append-only activity log row."""

    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_resource", "resource_type", "resource_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=True, index=True)
    external_user_identifier = Column(String(255), nullable=True)
    action = Column(String(40), nullable=False)
    resource_type = Column(String(40), nullable=False)
    resource_id = Column(String(36), nullable=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    status = Column(String(10), nullable=False, default="success")
    error_message = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    extra_data = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=_utcnow)


# ---------------------------------------------------------------------------
# Leasing
# ---------------------------------------------------------------------------


class Lease(Base):
    """Lease agreement between a tenant and landlord for one unit."""

    __tablename__ = "leases"
    __table_args__ = (Index("ix_leases_unit_status", "unit_id", "status"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False, index=True)
    unit_id = Column(String(36), ForeignKey("units.id"), nullable=False)
    tenant_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    landlord_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    lease_start_date = Column(DateTime, nullable=False)
    lease_end_date = Column(DateTime, nullable=False)
    monthly_rent = Column(Float, nullable=False)
    currency = Column(String(10), nullable=False, default="UGX")
    payment_due_date = Column(Integer, nullable=False, default=1)
    security_deposit = Column(Float, nullable=False, default=0)
    terms_and_conditions = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=LeaseStatus.ACTIVE.value)
    status_history = Column(JSON, nullable=False, default=list)
    document_ids = Column(JSON, nullable=False, default=list)
    # [{amendment_date, description, document_id, created_by}]
    amendments = Column(JSON, nullable=False, default=list)
    version = Column(Integer, nullable=False, default=1)
    renewal_notice_sent = Column(Boolean, nullable=False, default=False)
    renewal_notice_sent_at = Column(DateTime, nullable=True)
    terminated_at = Column(DateTime, nullable=True)
    terminated_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    termination_reason = Column(Text, nullable=True)
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    updated_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class Rent(Base):
    """Recorded rent obligation for a lease period."""

    __tablename__ = "rents"

    id = Column(String(36), primary_key=True, default=_uuid)
    lease_id = Column(String(36), ForeignKey("leases.id"), nullable=False, index=True)
    tenant_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False)
    unit_id = Column(String(36), ForeignKey("units.id"), nullable=False)
    amount_due = Column(Float, nullable=False)
    amount_paid = Column(Float, nullable=False, default=0)
    due_date = Column(DateTime, nullable=False)
    billing_period = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default=RentStatus.DUE.value)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)
