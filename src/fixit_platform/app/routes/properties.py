"""Property routes: properties, their users and their units."""

import logging

from fastapi import APIRouter, Depends, Query, Request

from fixit_platform.app.routes.auth import client_ip, get_current_user_dep, get_service_context
from fixit_platform.domain.models import User
from fixit_platform.domain.schemas import (
    PropertyCreate,
    PropertyResponse,
    PropertyUpdate,
    PropertyUserAssign,
    PropertyUserRemove,
    PropertyUserResponse,
    TenantAssign,
    UnitCreate,
    UnitResponse,
    UnitUpdate,
)
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.property_service import PropertyService
from fixit_platform.services.property_user_service import PropertyUserService
from fixit_platform.services.unit_service import UnitService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/properties", tags=["properties"])


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


@router.post("", response_model=PropertyResponse, status_code=201)
async def create_property(
    data: PropertyCreate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await PropertyService(ctx).create_property(data, user, client_ip(request))


@router.get("")
async def list_properties(
    search: str | None = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    items, total = await PropertyService(ctx).list_properties(user, search, include_inactive, page, limit)
    return {
        "items": [PropertyResponse.model_validate(p) for p in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/{property_id}", response_model=PropertyResponse)
async def get_property(
    property_id: str,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await PropertyService(ctx).get_property(property_id, user)


@router.patch("/{property_id}", response_model=PropertyResponse)
async def update_property(
    property_id: str,
    data: PropertyUpdate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await PropertyService(ctx).update_property(property_id, data, user, client_ip(request))


@router.delete("/{property_id}", response_model=PropertyResponse)
async def deactivate_property(
    property_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await PropertyService(ctx).deactivate_property(property_id, user, client_ip(request))


# ---------------------------------------------------------------------------
# Property users
# ---------------------------------------------------------------------------


@router.get("/{property_id}/users", response_model=list[PropertyUserResponse])
async def list_property_users(
    property_id: str,
    include_inactive: bool = False,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await PropertyUserService(ctx).list_for_property(property_id, user, include_inactive)


@router.post("/{property_id}/users", response_model=PropertyUserResponse, status_code=201)
async def assign_property_user(
    property_id: str,
    data: PropertyUserAssign,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await PropertyUserService(ctx).assign_user_to_property(
        property_id, data.user_id, data.roles, user, data.unit_id, client_ip(request),
    )


@router.post("/{property_id}/users/remove", response_model=PropertyUserResponse)
async def remove_property_user(
    property_id: str,
    data: PropertyUserRemove,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await PropertyUserService(ctx).remove_user_from_property(
        property_id, data.user_id, data.roles, user, data.unit_id, client_ip(request),
    )


@router.delete("/{property_id}/users/{property_user_id}")
async def delete_property_user(
    property_id: str,
    property_user_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    hard_deleted = await PropertyUserService(ctx).delete_property_user(property_user_id, user, client_ip(request))
    return {"ok": True, "deleted": hard_deleted}


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------


@router.post("/{property_id}/units", response_model=UnitResponse, status_code=201)
async def create_unit(
    property_id: str,
    data: UnitCreate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await UnitService(ctx).create_unit(property_id, data, user, client_ip(request))


@router.get("/{property_id}/units")
async def list_units(
    property_id: str,
    status: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    items, total = await UnitService(ctx).list_units(
        property_id, user, status, search, include_inactive, page, limit,
    )
    return {
        "items": [UnitResponse.model_validate(u) for u in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/{property_id}/units/{unit_id}", response_model=UnitResponse)
async def get_unit(
    property_id: str,
    unit_id: str,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await UnitService(ctx).get_unit(property_id, unit_id, user)


@router.patch("/{property_id}/units/{unit_id}", response_model=UnitResponse)
async def update_unit(
    property_id: str,
    unit_id: str,
    data: UnitUpdate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await UnitService(ctx).update_unit(property_id, unit_id, data, user, client_ip(request))


@router.delete("/{property_id}/units/{unit_id}")
async def delete_unit(
    property_id: str,
    unit_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    hard_deleted = await UnitService(ctx).delete_unit(property_id, unit_id, user, client_ip(request))
    return {"ok": True, "deleted": hard_deleted}


@router.post("/{property_id}/units/{unit_id}/tenants", response_model=UnitResponse)
async def assign_tenant(
    property_id: str,
    unit_id: str,
    data: TenantAssign,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await UnitService(ctx).assign_tenant_to_unit(
        property_id, unit_id, data.tenant_id, user, client_ip(request),
    )


@router.delete("/{property_id}/units/{unit_id}/tenants/{tenant_id}", response_model=UnitResponse)
async def remove_tenant(
    property_id: str,
    unit_id: str,
    tenant_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await UnitService(ctx).remove_tenant_from_unit(
        property_id, unit_id, tenant_id, user, client_ip(request),
    )
