"""Pydantic v2 schemas for request/response validation."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from fixit_platform.domain.enums import (
    AssignedToModel,
    Category,
    CommentContextType,
    FrequencyType,
    Priority,
    PropertyUserRole,
    RequestStatus,
    ScheduledMaintenanceStatus,
    UnitStatus,
    UserRole,
)


# ---------------------------------------------------------------------------
# Auth / User
# ---------------------------------------------------------------------------


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: "UserResponse"


class UserCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field("", max_length=100)
    email: EmailStr
    phone: Optional[str] = None
    password: Optional[str] = Field(None, min_length=8)
    role: UserRole = UserRole.TENANT


class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = None
    avatar: Optional[str] = None


class RoleUpdate(BaseModel):
    role: UserRole


class NotificationPreferencesUpdate(BaseModel):
    """Per-channel switches keyed by notification type."""

    email: dict[str, bool] = Field(default_factory=dict)
    sms: dict[str, bool] = Field(default_factory=dict)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    avatar: Optional[str] = None
    role: str
    registration_status: str
    is_active: bool
    preferences: Optional[dict] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Property / Unit / PropertyUser
# ---------------------------------------------------------------------------


class PropertyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    description: Optional[str] = None


class PropertyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    description: Optional[str] = None


class PropertyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    description: Optional[str] = None
    is_active: bool


class PropertyUserAssign(BaseModel):
    user_id: str
    roles: list[PropertyUserRole] = Field(..., min_length=1)
    unit_id: Optional[str] = None


class PropertyUserRemove(BaseModel):
    user_id: str
    roles: list[PropertyUserRole] = Field(..., min_length=1)
    unit_id: Optional[str] = None


class PropertyUserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    property_id: str
    unit_id: Optional[str] = None
    roles: list[str]
    is_active: bool
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    lease_id: Optional[str] = None


class UnitCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    floor: Optional[str] = None
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[float] = Field(None, ge=0)
    rent_amount: Optional[float] = Field(None, ge=0)
    status: UnitStatus = UnitStatus.VACANT


class UnitUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    floor: Optional[str] = None
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[float] = Field(None, ge=0)
    rent_amount: Optional[float] = Field(None, ge=0)
    status: Optional[UnitStatus] = None


class TenantAssign(BaseModel):
    tenant_id: str


class UnitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    property_id: str
    name: str
    floor: Optional[str] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    rent_amount: Optional[float] = None
    status: str
    tenant_ids: list[str] = []
    is_active: bool


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RequestCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: Category
    priority: Priority = Priority.MEDIUM
    property_id: str
    unit_id: Optional[str] = None


class RequestUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[Category] = None
    priority: Optional[Priority] = None


class RequestStatusUpdate(BaseModel):
    status: RequestStatus
    notes: Optional[str] = None


class RequestAssign(BaseModel):
    assigned_to_id: str
    assigned_to_model: AssignedToModel


class FeedbackSubmit(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class PublicLinkEnable(BaseModel):
    expires_in_days: Optional[int] = Field(None, ge=1, le=365)
    rotate: bool = False


class PublicLinkResponse(BaseModel):
    public_link: str
    token: str
    expires_at: datetime


class RequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: Optional[str] = None
    category: str
    priority: str
    status: str
    property_id: str
    unit_id: Optional[str] = None
    created_by_property_user_id: Optional[str] = None
    assigned_to_id: Optional[str] = None
    assigned_to_model: Optional[str] = None
    assigned_at: Optional[datetime] = None
    status_history: list[dict] = []
    feedback: Optional[dict] = None
    public_link_enabled: bool
    public_link_expires_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    verified_by_id: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None


class RequestListResponse(BaseModel):
    items: list[RequestResponse]
    total: int
    page: int
    limit: int


# ---------------------------------------------------------------------------
# Scheduled maintenance
# ---------------------------------------------------------------------------


class FrequencySchema(BaseModel):
    type: FrequencyType = FrequencyType.MONTHLY
    interval: int = Field(1, ge=1)
    day_of_week: Optional[list[int]] = None
    day_of_month: Optional[list[int]] = None
    month_of_year: Optional[list[int]] = None
    end_date: Optional[datetime] = None
    occurrences: Optional[int] = Field(None, ge=1)
    custom_days: Optional[list[int]] = None


class ScheduledMaintenanceCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: Category
    priority: Priority = Priority.LOW
    property_id: str
    unit_id: Optional[str] = None
    scheduled_date: datetime
    recurring: bool = False
    frequency: Optional[FrequencySchema] = None
    assigned_to_id: Optional[str] = None
    assigned_to_model: Optional[AssignedToModel] = None


class ScheduledMaintenanceUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[Category] = None
    priority: Optional[Priority] = None
    scheduled_date: Optional[datetime] = None
    recurring: Optional[bool] = None
    frequency: Optional[FrequencySchema] = None
    status: Optional[ScheduledMaintenanceStatus] = None
    assigned_to_id: Optional[str] = None
    assigned_to_model: Optional[AssignedToModel] = None


class ScheduleStatusUpdate(BaseModel):
    status: ScheduledMaintenanceStatus
    notes: Optional[str] = None


class ScheduledMaintenanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: Optional[str] = None
    category: str
    priority: str
    status: str
    property_id: str
    unit_id: Optional[str] = None
    scheduled_date: datetime
    recurring: bool
    frequency: Optional[dict] = None
    next_due_date: Optional[datetime] = None
    last_executed_at: Optional[datetime] = None
    last_generated_request_id: Optional[str] = None
    generated_request_ids: list[str] = []
    occurrences_generated: int = 0
    status_history: list[dict] = []
    public_link_enabled: bool
    public_link_expires: Optional[datetime] = None
    is_active: bool


# ---------------------------------------------------------------------------
# Comments / Public
# ---------------------------------------------------------------------------


class CommentCreate(BaseModel):
    context_type: CommentContextType
    context_id: str
    message: str = Field(..., min_length=1, max_length=5000)
    is_internal_note: bool = False
    media_ids: list[str] = Field(default_factory=list)


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    context_type: str
    context_id: str
    sender_id: Optional[str] = None
    message: str
    is_external: bool
    external_user_name: Optional[str] = None
    is_internal_note: bool
    created_at: Optional[datetime] = None


class PublicUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=5, max_length=30)
    status: Optional[RequestStatus] = None
    comment_message: Optional[str] = Field(None, max_length=5000)


class PublicComment(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=5, max_length=30)
    message: str = Field(..., min_length=1, max_length=5000)


class PublicScheduleUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=5, max_length=30)
    status: Optional[ScheduledMaintenanceStatus] = None
    comment_message: Optional[str] = Field(None, max_length=5000)


# ---------------------------------------------------------------------------
# Leases
# ---------------------------------------------------------------------------


class LeaseCreate(BaseModel):
    property_id: str
    unit_id: str
    tenant_id: str
    lease_start_date: datetime
    lease_end_date: datetime
    monthly_rent: float = Field(..., gt=0)
    currency: str = "UGX"
    payment_due_date: int = Field(1, ge=1, le=31)
    security_deposit: float = Field(0, ge=0)
    terms_and_conditions: Optional[str] = None
    notes: Optional[str] = None


class LeaseUpdate(BaseModel):
    lease_start_date: Optional[datetime] = None
    lease_end_date: Optional[datetime] = None
    monthly_rent: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = None
    payment_due_date: Optional[int] = Field(None, ge=1, le=31)
    security_deposit: Optional[float] = Field(None, ge=0)
    terms_and_conditions: Optional[str] = None
    notes: Optional[str] = None


class LeaseTerminate(BaseModel):
    reason: Optional[str] = None


class LeaseAmendmentCreate(BaseModel):
    description: str = Field(..., min_length=1)
    document_id: Optional[str] = None


class LeaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    property_id: str
    unit_id: str
    tenant_id: str
    landlord_id: Optional[str] = None
    lease_start_date: datetime
    lease_end_date: datetime
    monthly_rent: float
    currency: str
    payment_due_date: int
    security_deposit: float
    status: str
    document_ids: list[str] = []
    amendments: list[dict] = []
    version: int
    renewal_notice_sent: bool
    is_active: bool


class LeaseDocumentGenerate(BaseModel):
    document_type: str = "lease_agreement"


class RentCreate(BaseModel):
    due_date: datetime
    amount_due: Optional[float] = Field(None, gt=0)
    amount_paid: float = Field(0, ge=0)
    billing_period: Optional[str] = Field(None, max_length=20)


class RentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    lease_id: str
    tenant_id: str
    amount_due: float
    amount_paid: float
    due_date: datetime
    billing_period: Optional[str] = None
    status: str
    is_active: bool


# ---------------------------------------------------------------------------
# Media / Notifications
# ---------------------------------------------------------------------------


class MediaResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    url: str
    thumbnail_url: Optional[str] = None
    original_name: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None
    related_to: str
    related_id: str
    is_public: bool


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    message: str
    link: Optional[str] = None
    is_read: bool
    related_kind: Optional[str] = None
    related_id: Optional[str] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Vendors
# ---------------------------------------------------------------------------


class VendorCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=7, max_length=30)
    email: EmailStr
    services: list[Category] = Field(..., min_length=1)
    contact_person: Optional[str] = None
    company_name: Optional[str] = None
    description: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = None
    fixed_callout_fee: Optional[float] = Field(None, ge=0)
    associated_property_ids: list[str] = Field(default_factory=list)


class VendorUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, min_length=7, max_length=30)
    email: Optional[EmailStr] = None
    services: Optional[list[Category]] = Field(None, min_length=1)
    contact_person: Optional[str] = None
    company_name: Optional[str] = None
    description: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = None
    fixed_callout_fee: Optional[float] = Field(None, ge=0)
    associated_property_ids: Optional[list[str]] = None
    is_active: Optional[bool] = None


class VendorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    services: Optional[list[str]] = None
    contact_person: Optional[str] = None
    company_name: Optional[str] = None
    description: Optional[str] = None
    fixed_callout_fee: Optional[float] = None
    associated_property_ids: Optional[list[str]] = None
    is_active: bool
    added_by_id: Optional[str] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------


class InviteCreate(BaseModel):
    email: EmailStr
    roles: list[PropertyUserRole] = Field(..., min_length=1)
    property_id: str
    unit_id: Optional[str] = None
    phone: Optional[str] = None


class InviteAccept(BaseModel):
    email: EmailStr
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    password: Optional[str] = Field(None, min_length=8)
    phone: Optional[str] = None


class InviteDecline(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class InviteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    roles: list[str]
    property_id: str
    unit_id: Optional[str] = None
    status: str
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    resend_count: int
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: Optional[str] = None
    external_user_identifier: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    old_value: Optional[dict] = None
    new_value: Optional[dict] = None
    status: str
    error_message: Optional[str] = None
    ip_address: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None


TokenResponse.model_rebuild()
