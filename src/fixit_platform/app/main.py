"""FastAPI application entry point for the Fix-It API."""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fixit_platform.app.config import get_settings
from fixit_platform.domain.errors import AppError
from fixit_platform.infra.database import init_db, session_scope
from fixit_platform.services.context import ServiceContext
from fixit_platform.services.maintenance_scheduler import MaintenanceScheduler

logger = logging.getLogger(__name__)


async def scheduler_loop():
    """Run the maintenance scheduler every ``scheduler_interval_seconds``."""
    interval = get_settings().scheduler_interval_seconds
    while True:
        try:
            async with session_scope() as db:
                results = await MaintenanceScheduler(ServiceContext(db)).tick()
                if any(results.values()):
                    logger.info("Scheduler loop: %s", results)
        except Exception as e:
            logger.error("Scheduler loop error: %s", e)
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database and start the scheduler."""
    await init_db()
    task = None
    if settings.scheduler_interval_seconds > 0:
        task = asyncio.create_task(scheduler_loop())
    yield
    if task is not None:
        task.cancel()


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Fix-It API",
    lifespan=lifespan,
    debug=settings.debug,
)

_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from fixit_platform.app.routes.audit_logs import router as audit_logs_router
from fixit_platform.app.routes.auth import router as auth_router
from fixit_platform.app.routes.comments import router as comments_router
from fixit_platform.app.routes.invites import router as invites_router
from fixit_platform.app.routes.leases import router as leases_router
from fixit_platform.app.routes.notifications import router as notifications_router
from fixit_platform.app.routes.properties import router as properties_router
from fixit_platform.app.routes.public import router as public_router
from fixit_platform.app.routes.requests import router as requests_router
from fixit_platform.app.routes.scheduled_maintenance import router as scheduled_maintenance_router
from fixit_platform.app.routes.scheduler import router as scheduler_router
from fixit_platform.app.routes.users import router as users_router
from fixit_platform.app.routes.vendors import router as vendors_router

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(properties_router)
app.include_router(requests_router)
app.include_router(vendors_router)
app.include_router(scheduled_maintenance_router)
app.include_router(leases_router)
app.include_router(comments_router)
app.include_router(notifications_router)
app.include_router(public_router)
app.include_router(scheduler_router)
app.include_router(invites_router)
app.include_router(audit_logs_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "fixit-platform"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "fixit_platform.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
