"""Stored media: inbound WhatsApp attachments and admin product images.

Files live under MEDIA_DIR and are served by the app at /media/<name>.
"""
import logging
import mimetypes
import os
import re
import time
import uuid
from pathlib import Path
from typing import Optional

import requests

from sachetan.core.config import settings

logger = logging.getLogger(__name__)

INBOUND_DIR = "inbound"
PRODUCTS_DIR = "products"
MAX_DOWNLOAD_BYTES = 16 * 1024 * 1024  # WhatsApp media limit
DOWNLOAD_CHUNK_BYTES = 64 * 1024


class MediaStore:
    def __init__(self, media_dir: Optional[str] = None, base_url: Optional[str] = None,
                 auth: Optional[tuple] = None, timeout: float = 15.0):
        self.root = Path(media_dir or settings.MEDIA_DIR)
        self.base_url = (base_url or settings.BASE_URL).rstrip("/")
        if auth is None and settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN:
            auth = (settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        self.auth = auth
        self.timeout = timeout

    def public_url(self, relative_path: str) -> str:
        return f"{self.base_url}/media/{relative_path}"

    def _target(self, folder: str, filename: str) -> Path:
        directory = self.root / folder
        directory.mkdir(parents=True, exist_ok=True)
        return directory / filename

    def download_inbound(self, url: str, content_type: Optional[str], phone: str) -> str:
        """Fetch a provider media URL and return the relative stored path.

        Raises requests.RequestException / ValueError on failure.
        """
        chunks = []
        received = 0
        with requests.get(url, auth=self.auth, timeout=self.timeout, stream=True) as response:
            response.raise_for_status()
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_BYTES):
                received += len(chunk)
                if received > MAX_DOWNLOAD_BYTES:
                    raise ValueError("Attachment too large")
                chunks.append(chunk)
        content = b"".join(chunks)
        extension = mimetypes.guess_extension((content_type or "").split(";")[0].strip()) or ".bin"
        safe_phone = re.sub(r"\D", "", phone)[-10:] or "unknown"
        filename = f"{safe_phone}_{int(time.time() * 1000)}{extension}"
        path = self._target(INBOUND_DIR, filename)
        path.write_bytes(content)
        logger.info(f"[Media] Stored inbound attachment {filename} ({len(content)} bytes)")
        return f"{INBOUND_DIR}/{filename}"

    def save_upload(self, data: bytes, original_name: str) -> str:
        """Persist an admin-uploaded product image; returns the relative path."""
        extension = os.path.splitext(original_name or "")[1].lower() or ".jpg"
        if not re.fullmatch(r"\.[a-z0-9]{1,5}", extension):
            extension = ".jpg"
        filename = f"{uuid.uuid4().hex}{extension}"
        self._target(PRODUCTS_DIR, filename).write_bytes(data)
        return f"{PRODUCTS_DIR}/{filename}"

    def delete(self, relative_path: str) -> bool:
        """Remove a stored file. Paths outside the media root are refused."""
        path = (self.root / relative_path).resolve()
        if self.root.resolve() not in path.parents:
            logger.warning(f"[Media] Refusing to delete outside media dir: {relative_path}")
            return False
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
