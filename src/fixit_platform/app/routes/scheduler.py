"""Scheduler cron endpoint, called by an external cron in place of the in-process loop."""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException

from fixit_platform.app.config import get_settings
from fixit_platform.app.routes.auth import get_service_context
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.maintenance_scheduler import MaintenanceScheduler

logger = logging.getLogger(__name__)


async def verify_internal_token(x_internal_token: str = Header(...)):
    """Verify that the request includes a valid internal auth token."""
    if x_internal_token != get_settings().internal_token:
        raise HTTPException(status_code=401, detail="Invalid internal token")


router = APIRouter(
    prefix="/api/internal/scheduler",
    tags=["scheduler"],
    dependencies=[Depends(verify_internal_token)],
)


@router.post("/tick")
async def tick(ctx: ServiceContext = Depends(get_service_context)):
    """Run every scheduler job once."""
    results = await MaintenanceScheduler(ctx).tick()
    logger.info("Scheduler tick via cron: %s", results)
    return {"ok": True, "results": results}
