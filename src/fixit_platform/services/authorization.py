"""Authorization resolver.

Answers "may this user perform this action on this resource" from three
inputs only: the user's global role, ownership/assignment fields on the
resource, and the user's active PropertyUser rows on the resource's
property. Rules are evaluated in order and the first allow wins; anything
unexpected denies.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import or_, select

from fixit_platform.domain.enums import (
    MANAGEMENT_ROLES,
    AssignedToModel,
    AuthAction,
    PropertyUserRole,
    UserRole,
)
from fixit_platform.domain.errors import ForbiddenError
from fixit_platform.domain.models import Property, PropertyUser, Unit
from fixit_platform.services.context import ServiceContext

logger = logging.getLogger(__name__)

A = AuthAction

# Rule 2: creator of a request / schedule
CREATOR_ACTIONS: frozenset[AuthAction] = frozenset({A.READ, A.UPDATE})

# Rule 3: User assignee
ASSIGNEE_ACTIONS: frozenset[AuthAction] = frozenset({A.READ, A.COMMENT, A.STATUS_ADVANCE})

# Rule 4: landlord / property manager / admin_access on the property
MANAGEMENT_ACTIONS: frozenset[AuthAction] = frozenset({
    A.READ,
    A.UPDATE,
    A.ASSIGN,
    A.DELETE,
    A.VERIFY,
    A.REOPEN,
    A.ARCHIVE,
    A.CREATE,
    A.COMMENT,
    A.CANCEL,
    A.STATUS_ADVANCE,
    A.MANAGE,
})

# Rule 5: tenant on the resource's unit
TENANT_ACTIONS: frozenset[AuthAction] = frozenset({A.READ, A.CREATE, A.COMMENT})


@dataclass(frozen=True)
class ResourceScope:
    """Property/unit scope for resources that don't exist yet (e.g. on create)."""

    property_id: str
    unit_id: str | None = None


@dataclass(frozen=True)
class Membership:
    """A user's PropertyUser footprint, used to scope list queries."""

    property_user_ids: frozenset[str]
    managed_property_ids: frozenset[str]
    tenant_unit_ids: frozenset[str]

    def visibility_clause(self, model, user_id: str):
        """OR of the rules under which ``user_id`` may read rows of ``model``."""
        clauses = [
            (model.assigned_to_id == user_id)
            & (model.assigned_to_model == AssignedToModel.USER.value)
        ]
        if self.property_user_ids:
            clauses.append(model.created_by_property_user_id.in_(self.property_user_ids))
        if self.managed_property_ids:
            clauses.append(model.property_id.in_(self.managed_property_ids))
        if self.tenant_unit_ids:
            clauses.append(model.unit_id.in_(self.tenant_unit_ids))
        return or_(*clauses)


def resource_scope(resource) -> tuple[str | None, str | None]:
    """Return (property_id, unit_id) for any supported resource."""
    if isinstance(resource, Property):
        return resource.id, None
    if isinstance(resource, Unit):
        return resource.property_id, resource.id
    return getattr(resource, "property_id", None), getattr(resource, "unit_id", None)


class AuthorizationService:
    """Rule-ordered, fail-closed authorization checks."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db

    async def authorize(self, user, action: AuthAction, resource) -> bool:
        """Return True if ``user`` may perform ``action`` on ``resource``."""
        try:
            return await self._evaluate(user, AuthAction(action), resource)
        except Exception as e:
            logger.error(
                "Authorization check failed closed for user=%s action=%s resource=%s: %s",
                getattr(user, "id", None), action, getattr(resource, "id", None), e,
            )
            return False

    async def ensure(self, user, action: AuthAction, resource, message: str | None = None) -> None:
        """Raise ForbiddenError unless authorized."""
        if not await self.authorize(user, action, resource):
            raise ForbiddenError(message or "You are not authorized to perform this action.")

    async def active_property_users(self, user_id: str, property_id: str) -> list[PropertyUser]:
        result = await self.db.execute(
            select(PropertyUser).where(
                PropertyUser.user_id == user_id,
                PropertyUser.property_id == property_id,
                PropertyUser.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    async def has_management_access(self, user, property_id: str) -> bool:
        """Admin, or an active management-role PropertyUser on the property."""
        if user is None:
            return False
        if user.role == UserRole.ADMIN.value:
            return True
        rows = await self.active_property_users(user.id, property_id)
        return any(MANAGEMENT_ROLES.intersection(row.roles or []) for row in rows)

    async def membership(self, user) -> Membership:
        """Summarize every PropertyUser row held by ``user`` for list filtering."""
        rows = (await self.db.execute(
            select(PropertyUser).where(PropertyUser.user_id == user.id)
        )).scalars().all()
        active = [row for row in rows if row.is_active]
        tenant_units = frozenset()
        if user.role == UserRole.TENANT.value:
            tenant_units = frozenset(
                row.unit_id for row in active
                if row.unit_id and PropertyUserRole.TENANT.value in (row.roles or [])
            )
        return Membership(
            property_user_ids=frozenset(row.id for row in rows),
            managed_property_ids=frozenset(
                row.property_id for row in active if MANAGEMENT_ROLES.intersection(row.roles or [])
            ),
            tenant_unit_ids=tenant_units,
        )

    async def _evaluate(self, user, action: AuthAction, resource) -> bool:
        if user is None or resource is None or not user.is_active:
            return False

        # 1. Global admin
        if user.role == UserRole.ADMIN.value:
            return True

        # 2. Creator of a request / schedule
        if action in CREATOR_ACTIONS and await self.is_creator(user, resource):
            return True

        # 3. User assignee
        if (
            action in ASSIGNEE_ACTIONS
            and getattr(resource, "assigned_to_model", None) == AssignedToModel.USER.value
            and getattr(resource, "assigned_to_id", None) == user.id
        ):
            return True

        property_id, unit_id = resource_scope(resource)
        if property_id is None:
            return False
        rows = await self.active_property_users(user.id, property_id)

        # 4. Management role on the property
        if action in MANAGEMENT_ACTIONS and any(
            MANAGEMENT_ROLES.intersection(row.roles or []) for row in rows
        ):
            return True

        # 5. Tenant on the resource's unit
        if (
            action in TENANT_ACTIONS
            and user.role == UserRole.TENANT.value
            and any(
                row.unit_id == unit_id and PropertyUserRole.TENANT.value in (row.roles or [])
                for row in rows
            )
        ):
            return True

        # 6. Deny
        return False

    async def is_creator(self, user, resource) -> bool:
        creator_pu_id = getattr(resource, "created_by_property_user_id", None)
        if not creator_pu_id:
            return False
        creator = await self.db.get(PropertyUser, creator_pu_id)
        return creator is not None and creator.user_id == user.id
