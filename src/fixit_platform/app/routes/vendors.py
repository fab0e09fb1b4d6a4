"""Vendor directory routes."""

import logging

from fastapi import APIRouter, Depends, Query, Request

from fixit_platform.app.routes.auth import client_ip, get_current_user_dep, get_service_context
from fixit_platform.domain.enums import Category
from fixit_platform.domain.models import User
from fixit_platform.domain.schemas import VendorCreate, VendorResponse, VendorUpdate
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.vendor_service import VendorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vendors", tags=["vendors"])


@router.post("", response_model=VendorResponse, status_code=201)
async def create_vendor(
    data: VendorCreate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await VendorService(ctx).create_vendor(data, user, client_ip(request))


@router.get("")
async def list_vendors(
    service: Category | None = None,
    property_id: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    items, total = await VendorService(ctx).list_vendors(
        user, service, property_id, search, include_inactive, page, limit,
    )
    return {
        "items": [VendorResponse.model_validate(v) for v in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/{vendor_id}", response_model=VendorResponse)
async def get_vendor(
    vendor_id: str,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await VendorService(ctx).get_vendor(vendor_id, user)


@router.patch("/{vendor_id}", response_model=VendorResponse)
async def update_vendor(
    vendor_id: str,
    data: VendorUpdate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await VendorService(ctx).update_vendor(vendor_id, data, user, client_ip(request))


@router.post("/{vendor_id}/deactivate", response_model=VendorResponse)
async def deactivate_vendor(
    vendor_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await VendorService(ctx).deactivate_vendor(vendor_id, user, client_ip(request))


@router.delete("/{vendor_id}")
async def delete_vendor(
    vendor_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    await VendorService(ctx).delete_vendor(vendor_id, user, client_ip(request))
    return {"ok": True}
