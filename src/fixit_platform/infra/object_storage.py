"""Cloudinary object storage client.

Media bytes live in Cloudinary; Media rows only hold the returned URLs.
The SDK is synchronous, so calls run in a worker thread.
"""

import asyncio
import logging
import re

import cloudinary
import cloudinary.uploader

from fixit_platform.app.config import Settings, get_settings

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024

# .../upload/v1712345678/fixit/requests/abc123.jpg -> fixit/requests/abc123
_PUBLIC_ID_RE = re.compile(r"/upload/(?:v\d+/)?(.+)\.[A-Za-z0-9]+$")


def extract_public_id(url: str | None) -> str | None:
    """Return the object key encoded in a Cloudinary delivery URL."""
    if not url:
        return None
    match = _PUBLIC_ID_RE.search(url)
    return match.group(1) if match else None


def resource_type_for(mime_type: str | None) -> str:
    if mime_type and mime_type.startswith("image/"):
        return "image"
    if mime_type and mime_type.startswith("video/"):
        return "video"
    return "raw"


class ObjectStorage:
    """Upload and delete media in Cloudinary."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        cloudinary.config(
            cloud_name=self.settings.cloudinary_cloud_name,
            api_key=self.settings.cloudinary_api_key,
            api_secret=self.settings.cloudinary_api_secret,
            secure=True,
        )

    async def upload(
        self,
        data: bytes,
        mime_type: str,
        filename: str,
        folder: str = "uploads",
    ) -> dict:
        """Upload bytes and return {url, thumbnail_url, public_id, size}."""
        if len(data) > MAX_FILE_SIZE:
            raise ValueError(f"File '{filename}' exceeds maximum allowed size.")

        resource_type = resource_type_for(mime_type)
        options = {
            "folder": f"{self.settings.cloudinary_folder}/{folder}",
            "resource_type": resource_type,
            "use_filename": True,
            "unique_filename": True,
        }
        if resource_type == "image":
            options["eager"] = [{"width": 300, "height": 300, "crop": "fill"}]

        result = await asyncio.to_thread(cloudinary.uploader.upload, data, **options)

        thumbnail_url = None
        eager = result.get("eager") or []
        if eager:
            thumbnail_url = eager[0].get("secure_url")

        logger.info("Uploaded %s to Cloudinary as %s", filename, result.get("public_id"))
        return {
            "url": result.get("secure_url"),
            "thumbnail_url": thumbnail_url,
            "public_id": result.get("public_id"),
            "size": result.get("bytes", len(data)),
        }

    async def delete(self, public_id: str, resource_type: str = "image") -> dict:
        """Delete an object by key. Deleting a missing key is not an error."""
        return await asyncio.to_thread(
            cloudinary.uploader.destroy,
            public_id,
            resource_type=resource_type,
            invalidate=True,
        )

    async def delete_by_url(self, url: str, mime_type: str | None = None) -> bool:
        """Delete the object behind a delivery URL; log and report failures."""
        public_id = extract_public_id(url)
        if not public_id:
            logger.warning("Could not extract public id from media URL %s", url)
            return False
        try:
            await self.delete(public_id, resource_type_for(mime_type))
            return True
        except Exception as e:
            logger.error("Failed to delete %s from Cloudinary: %s", public_id, e)
            return False
