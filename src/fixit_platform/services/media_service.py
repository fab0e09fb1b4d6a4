"""Media attachments shared by requests, schedules and leases."""

import logging
from dataclasses import dataclass

from sqlalchemy import select

from fixit_platform.domain.errors import InternalError, ValidationError
from fixit_platform.domain.models import Media
from fixit_platform.services.context import ServiceContext

logger = logging.getLogger(__name__)


@dataclass
class MediaUpload:
    """Raw file handed to a service by the HTTP layer."""

    data: bytes
    filename: str
    mime_type: str = "application/octet-stream"
    description: str | None = None


class MediaService:
    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.db = ctx.db

    async def upload_all(
        self,
        uploads: list[MediaUpload],
        related_to: str,
        related_id: str,
        uploaded_by_id: str | None,
        folder: str,
        is_public: bool = False,
    ) -> list[Media]:
        """Push every file to the object store and stage a Media row for each.

        Already-uploaded objects are removed again if a later file fails, so
        a failed batch leaves nothing behind in the store.
        """
        if not uploads:
            raise ValidationError("No files provided for upload.")

        rows: list[Media] = []
        try:
            for upload in uploads:
                stored = await self.ctx.storage.upload(
                    upload.data, upload.mime_type, upload.filename, folder=folder,
                )
                rows.append(Media(
                    url=stored["url"],
                    thumbnail_url=stored.get("thumbnail_url"),
                    filename=stored.get("public_id"),
                    original_name=upload.filename,
                    mime_type=upload.mime_type,
                    size=stored.get("size"),
                    uploaded_by_id=uploaded_by_id,
                    related_to=related_to,
                    related_id=related_id,
                    is_public=is_public,
                    description=upload.description,
                    created_at=self.ctx.now(),
                ))
        except ValueError as e:
            await self.purge_objects(rows)
            raise ValidationError(str(e)) from e
        except Exception as e:
            await self.purge_objects(rows)
            logger.error("Media upload failed for %s %s: %s", related_to, related_id, e)
            raise InternalError("Failed to upload media.") from e

        for row in rows:
            self.db.add(row)
        return rows

    async def for_resource(self, related_to: str, related_id: str) -> list[Media]:
        result = await self.db.execute(
            select(Media).where(Media.related_to == related_to, Media.related_id == related_id)
        )
        return list(result.scalars().all())

    async def purge_objects(self, rows: list[Media]) -> int:
        """Delete stored bytes for ``rows``. Returns how many deletions succeeded."""
        deleted = 0
        for row in rows:
            if await self.ctx.storage.delete_by_url(row.url, row.mime_type):
                deleted += 1
        return deleted
