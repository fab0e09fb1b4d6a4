"""Comment routes for requests, schedules, properties and units."""

from fastapi import APIRouter, Depends, Request

from fixit_platform.app.routes.auth import client_ip, get_current_user_dep, get_service_context
from fixit_platform.domain.enums import CommentContextType
from fixit_platform.domain.models import User
from fixit_platform.domain.schemas import CommentCreate, CommentResponse
from fixit_platform.services.comment_service import CommentService
from fixit_platform.services.context import ServiceContext

router = APIRouter(prefix="/api/comments", tags=["comments"])


@router.post("", response_model=CommentResponse, status_code=201)
async def add_comment(
    data: CommentCreate,
    request: Request,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await CommentService(ctx).add_comment(
        data.context_type,
        data.context_id,
        data.message,
        user,
        is_internal_note=data.is_internal_note,
        media_ids=data.media_ids,
        ip_address=client_ip(request),
    )


@router.get("/{context_type}/{context_id}", response_model=list[CommentResponse])
async def list_comments(
    context_type: CommentContextType,
    context_id: str,
    user: User = Depends(get_current_user_dep),
    ctx: ServiceContext = Depends(get_service_context),
):
    return await CommentService(ctx).list_comments(context_type, context_id, user)
