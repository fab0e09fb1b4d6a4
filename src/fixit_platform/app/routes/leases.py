"""Lease routes: leases, documents, amendments and rent rows."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile

from fixit_platform.app.routes.auth import client_ip, get_current_user_dep, get_service_context
from fixit_platform.app.routes.requests import read_uploads
from fixit_platform.domain.models import User
from fixit_platform.domain.schemas import (
    LeaseAmendmentCreate,
    LeaseCreate,
    LeaseDocumentGenerate,
    LeaseResponse,
    LeaseTerminate,
    LeaseUpdate,
    MediaResponse,
    RentCreate,
    RentResponse,
)
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.lease_service import LeaseService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/leases", tags=["leases"])


@router.post("", response_model=LeaseResponse, status_code=201)
async def create_lease(
    data: LeaseCreate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await LeaseService(ctx).create_lease(data, user, client_ip(request))


@router.get("")
async def list_leases(
    property_id: str | None = None,
    unit_id: str | None = None,
    status: str | None = None,
    expiring_before: datetime | None = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    items, total = await LeaseService(ctx).list_leases(
        user,
        property_id=property_id,
        unit_id=unit_id,
        status=status,
        expiring_before=expiring_before,
        include_inactive=include_inactive,
        page=page,
        limit=limit,
    )
    return {
        "items": [LeaseResponse.model_validate(lease) for lease in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/expiring", response_model=list[LeaseResponse])
async def expiring_leases(
    days_ahead: int = Query(90, ge=1, le=365),
    property_id: str | None = None,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await LeaseService(ctx).get_expiring_leases(user, days_ahead, property_id)


@router.get("/{lease_id}", response_model=LeaseResponse)
async def get_lease(
    lease_id: str,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await LeaseService(ctx).get_lease(lease_id, user)


@router.patch("/{lease_id}", response_model=LeaseResponse)
async def update_lease(
    lease_id: str,
    data: LeaseUpdate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await LeaseService(ctx).update_lease(lease_id, data, user, client_ip(request))


@router.post("/{lease_id}/terminate", response_model=LeaseResponse)
async def terminate_lease(
    lease_id: str,
    request: Request,
    data: LeaseTerminate | None = None,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    reason = data.reason if data else None
    return await LeaseService(ctx).terminate_lease(lease_id, user, reason, client_ip(request))


@router.delete("/{lease_id}", response_model=LeaseResponse)
async def delete_lease(
    lease_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await LeaseService(ctx).delete_lease(lease_id, user, client_ip(request))


@router.post("/{lease_id}/renewal-notice", response_model=LeaseResponse)
async def mark_renewal_notice_sent(
    lease_id: str,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await LeaseService(ctx).mark_renewal_notice_sent(lease_id, user, client_ip(request))


@router.post("/{lease_id}/amendments", response_model=LeaseResponse)
async def add_amendment(
    lease_id: str,
    data: LeaseAmendmentCreate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await LeaseService(ctx).add_lease_amendment(
        lease_id, data.description, user, data.document_id, client_ip(request),
    )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@router.post("/{lease_id}/documents", response_model=list[MediaResponse], status_code=201)
async def upload_documents(
    lease_id: str,
    request: Request,
    files: list[UploadFile] = File(...),
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    uploads = await read_uploads(files)
    return await LeaseService(ctx).upload_lease_document(lease_id, uploads, user, client_ip(request))


@router.post("/{lease_id}/documents/generate", response_model=MediaResponse, status_code=201)
async def generate_document(
    lease_id: str,
    data: LeaseDocumentGenerate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await LeaseService(ctx).generate_lease_document(lease_id, data.document_type, user, client_ip(request))


# ---------------------------------------------------------------------------
# Rent
# ---------------------------------------------------------------------------


@router.get("/{lease_id}/rents", response_model=list[RentResponse])
async def list_rents(
    lease_id: str,
    include_inactive: bool = False,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await LeaseService(ctx).list_rents(lease_id, user, include_inactive)


@router.post("/{lease_id}/rents", response_model=RentResponse, status_code=201)
async def record_rent(
    lease_id: str,
    data: RentCreate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await LeaseService(ctx).record_rent(
        lease_id,
        data.due_date,
        user,
        amount_due=data.amount_due,
        amount_paid=data.amount_paid,
        billing_period=data.billing_period,
        ip_address=client_ip(request),
    )
