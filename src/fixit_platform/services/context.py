"""Per-operation service context.

Carries the database session plus the process-wide collaborators (settings,
clock, provider clients) into every service so nothing reaches for globals.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fixit_platform.app.config import Settings, get_settings
from fixit_platform.domain.errors import AppError, ConflictError, InternalError
from fixit_platform.infra.clock import Clock
from fixit_platform.infra.document_generator import DocumentGenerator
from fixit_platform.infra.object_storage import ObjectStorage
from fixit_platform.services.email_service import EmailService
from fixit_platform.services.sms_service import SMSService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    db: AsyncSession
    settings: Settings = field(default_factory=get_settings)
    clock: Clock = field(default_factory=Clock)
    email: EmailService | None = None
    sms: SMSService | None = None
    storage: ObjectStorage | None = None
    documents: DocumentGenerator | None = None

    def __post_init__(self):
        if self.email is None:
            self.email = EmailService(self.settings)
        if self.sms is None:
            self.sms = SMSService(self.settings)
        if self.storage is None:
            self.storage = ObjectStorage(self.settings)
        if self.documents is None:
            self.documents = DocumentGenerator(self.storage)

    def now(self):
        return self.clock.now()

    def frontend_link(self, path: str) -> str:
        return f"{self.settings.frontend_url.rstrip('/')}/{path.lstrip('/')}"

    @asynccontextmanager
    async def transaction(self, operation: str = "operation"):
        """Commit the session on success, roll back on any error.

        Store errors are translated into the error taxonomy: unique-index
        violations become ConflictError, anything else InternalError.
        """
        try:
            yield self.db
            await self.db.commit()
        except AppError:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning("%s violated a uniqueness constraint: %s", operation, e.orig)
            raise ConflictError("A record with these details already exists.") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception("%s failed in the store", operation)
            raise InternalError(f"Failed to complete {operation}.") from e
        except Exception:
            await self.db.rollback()
            raise
