"""
Blob storage for uploaded certificate files.

Uploads are synchronous: the certificate row is only written once a durable
URL has come back, so a failed upload never leaves a dangling reference.
"""
import logging
from typing import Protocol

import cloudinary.uploader

from app.core.config import Settings
from app.core.errors import Unavailable

logger = logging.getLogger(__name__)


class BlobStorage(Protocol):
    def upload(self, payload: str, folder: str | None = None) -> str:
        """Store a base64 data URI (or remote URL) and return its public URL."""
        ...


class CloudinaryStorage:
    def __init__(self, settings: Settings):
        self.settings = settings

    def upload(self, payload: str, folder: str | None = None) -> str:
        try:
            result = cloudinary.uploader.upload(
                payload,
                folder=folder or self.settings.cloudinary_folder,
                resource_type="auto",
                cloud_name=self.settings.cloudinary_cloud_name,
                api_key=self.settings.cloudinary_api_key,
                api_secret=self.settings.cloudinary_api_secret,
                timeout=self.settings.upload_timeout_seconds,
                secure=True,
            )
        except Exception as exc:
            logger.error("Blob upload failed: %s", exc)
            raise Unavailable(f"File upload failed: {exc}") from exc
        url = result.get("secure_url") or result.get("url")
        if not url:
            raise Unavailable("File upload returned no URL.")
        return url
