"""Domain enumerations for the Fix-It platform.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class UserRole(str, Enum):
    """Global role carried on the User row."""

    ADMIN = "admin"
    LANDLORD = "landlord"
    PROPERTY_MANAGER = "propertymanager"
    TENANT = "tenant"
    VENDOR = "vendor"


class RegistrationStatus(str, Enum):
    """Where a user is in the onboarding flow."""

    PENDING_EMAIL_VERIFICATION = "pending_email_verification"
    PENDING_PASSWORD_SET = "pending_password_set"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DEACTIVATED = "deactivated"


class PropertyUserRole(str, Enum):
    """Property-scoped roles granted through a PropertyUser row."""

    LANDLORD = "landlord"
    PROPERTY_MANAGER = "propertymanager"
    TENANT = "tenant"
    VENDOR_ACCESS = "vendor_access"
    ADMIN_ACCESS = "admin_access"
    USER = "user"
    VENDOR = "vendor"


MANAGEMENT_ROLES: frozenset[str] = frozenset({
    PropertyUserRole.LANDLORD.value,
    PropertyUserRole.PROPERTY_MANAGER.value,
    PropertyUserRole.ADMIN_ACCESS.value,
})


class RequestStatus(str, Enum):
    """Maintenance request lifecycle states."""

    NEW = "new"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"
    REOPENED = "reopened"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"


class ScheduledMaintenanceStatus(str, Enum):
    """Scheduled maintenance task states. ACTIVE is a legacy alias of SCHEDULED."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PAUSED = "paused"


class LeaseStatus(str, Enum):
    """Lease lifecycle states."""

    ACTIVE = "active"
    PENDING_RENEWAL = "pending_renewal"
    TERMINATED = "terminated"
    EXPIRED = "expired"


class UnitStatus(str, Enum):
    """Occupancy state of a unit."""

    VACANT = "vacant"
    OCCUPIED = "occupied"
    UNDER_MAINTENANCE = "under_maintenance"
    UNAVAILABLE = "unavailable"


class FrequencyType(str, Enum):
    """Recurrence rule kinds for scheduled maintenance."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM_DAYS = "custom_days"


class Category(str, Enum):
    """Maintenance work category."""

    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    HVAC = "hvac"
    APPLIANCE = "appliance"
    STRUCTURAL = "structural"
    LANDSCAPING = "landscaping"
    OTHER = "other"
    SECURITY = "security"
    PEST_CONTROL = "pest_control"
    CLEANING = "cleaning"
    SCHEDULED = "scheduled"
    PAINTING = "painting"
    ROOFING = "roofing"
    CARPENTRY = "carpentry"
    GENERAL_REPAIR = "general_repair"


class Priority(str, Enum):
    """Urgency of a maintenance item."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"
    CRITICAL = "critical"


class AssignedToModel(str, Enum):
    """Discriminator for the polymorphic assignee reference."""

    USER = "User"
    VENDOR = "Vendor"


class CommentContextType(str, Enum):
    """Kinds of entity a comment can be attached to."""

    REQUEST = "request"
    SCHEDULED_MAINTENANCE = "scheduledmaintenance"
    PROPERTY = "property"
    UNIT = "unit"


class NotificationType(str, Enum):
    """Closed set of notification kinds."""

    NEW_REQUEST = "new_request"
    STATUS_UPDATE = "status_update"
    NEW_COMMENT = "new_comment"
    ASSIGNMENT = "assignment"
    REMINDER_DUE = "reminder_due"
    REMINDER_OVERDUE = "reminder_overdue"
    TASK_COMPLETED = "task_completed"
    TASK_VERIFIED = "task_verified"
    PROPERTY_ADDED = "property_added"
    UNIT_ADDED = "unit_added"
    DOCUMENT_SHARED = "document_shared"
    USER_DEACTIVATED = "user_deactivated"
    LEASE_EXPIRY = "lease_expiry"
    LEASE_UPDATE = "lease_update"
    RENT_DUE = "rent_due"
    GENERAL_ALERT = "general_alert"
    UNIT_UPDATE = "unit_update"
    INVITATION = "invitation"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_DECLINED = "invitation_declined"
    INVITATION_CANCELLED = "invitation_cancelled"


# Notification kinds that also go out by SMS when the recipient has a phone
SMS_NOTIFICATION_TYPES: frozenset[str] = frozenset({
    NotificationType.ASSIGNMENT.value,
    NotificationType.STATUS_UPDATE.value,
    NotificationType.TASK_COMPLETED.value,
    NotificationType.REMINDER_OVERDUE.value,
    NotificationType.LEASE_EXPIRY.value,
    NotificationType.RENT_DUE.value,
})


class AuditAction(str, Enum):
    """Actions recorded in the audit log."""

    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ASSIGN = "ASSIGN"
    STATUS_UPDATE = "STATUS_UPDATE"
    VERIFY = "VERIFY"
    REOPEN = "REOPEN"
    ARCHIVE = "ARCHIVE"
    CANCEL = "CANCEL"
    FEEDBACK = "FEEDBACK"
    FILE_UPLOAD = "FILE_UPLOAD"
    FILE_DELETE = "FILE_DELETE"
    PUBLIC_LINK_ENABLED = "PUBLIC_LINK_ENABLED"
    PUBLIC_LINK_DISABLED = "PUBLIC_LINK_DISABLED"
    PUBLIC_UPDATE = "PUBLIC_UPDATE"
    COMMENT_ADDED = "COMMENT_ADDED"
    GENERATED_REQUEST = "GENERATED_REQUEST"
    TENANT_ASSIGNED = "TENANT_ASSIGNED"
    TENANT_REMOVED = "TENANT_REMOVED"
    LEASE_TERMINATED = "LEASE_TERMINATED"
    LEASE_AMENDED = "LEASE_AMENDED"
    ROLE_CHANGE = "ROLE_CHANGE"
    DEACTIVATE = "DEACTIVATE"
    SETTINGS_CHANGE = "SETTINGS_CHANGE"
    LOGIN = "LOGIN"


class AuditResourceType(str, Enum):
    """Entity kinds that audit rows point at."""

    USER = "User"
    PROPERTY = "Property"
    UNIT = "Unit"
    PROPERTY_USER = "PropertyUser"
    REQUEST = "Request"
    SCHEDULED_MAINTENANCE = "ScheduledMaintenance"
    VENDOR = "Vendor"
    MEDIA = "Media"
    COMMENT = "Comment"
    LEASE = "Lease"
    RENT = "Rent"
    NOTIFICATION = "Notification"
    INVITE = "Invite"
    SYSTEM = "System"


class InviteStatus(str, Enum):
    """Lifecycle of an invitation token."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class AuditStatus(str, Enum):
    """Outcome recorded on an audit row."""

    SUCCESS = "success"
    FAILURE = "failure"


class RentStatus(str, Enum):
    """Payment state of a recorded rent row."""

    DUE = "due"
    PAID = "paid"
    OVERDUE = "overdue"
    PARTIALLY_PAID = "partially_paid"
    WAIVED = "waived"


class AuthAction(str, Enum):
    """Verbs the authorization resolver answers for."""

    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ASSIGN = "assign"
    COMMENT = "comment"
    STATUS_ADVANCE = "status_advance"
    VERIFY = "verify"
    REOPEN = "reopen"
    ARCHIVE = "archive"
    CANCEL = "cancel"
    MANAGE = "manage"
