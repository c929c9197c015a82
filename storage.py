"""Object storage client for thumbnails, avatars, videos and project files.

Files are pushed to a BunnyCDN storage zone over its HTTP API and served from
the pull zone. The client is synchronous (``requests``); routers call it via
``run_in_threadpool``.
"""

import logging
import os
import secrets
import time
from typing import Iterable, Optional

import requests
from fastapi import HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool

import config
from envelope import ExternalServiceError

logger = logging.getLogger(__name__)


class ObjectStorage:
    def __init__(
        self,
        storage_zone: str = config.BUNNY_STORAGE_ZONE,
        api_key: str = config.BUNNY_API_KEY,
        pull_zone: str = config.BUNNY_PULL_ZONE,
        storage_host: str = config.BUNNY_STORAGE_HOST,
        timeout: int = config.STORAGE_TIMEOUT_SECONDS,
    ):
        self.storage_zone = storage_zone
        self.api_key = api_key
        self.public_base = f"https://{pull_zone}"
        self.storage_base = f"https://{storage_host}/{storage_zone}"
        self.timeout = timeout
        self.session = requests.Session()

    def _headers(self, content_type: str = "application/octet-stream") -> dict:
        return {"AccessKey": self.api_key, "Content-Type": content_type}

    def upload(self, folder: str, filename: str, content: bytes) -> str:
        """Store ``content`` under ``folder/filename`` and return its public URL."""
        key = f"{folder}/{filename}" if folder else filename
        try:
            response = self.session.put(
                f"{self.storage_base}/{key}",
                data=content,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Upload of %s failed: %s", key, exc)
            raise ExternalServiceError("File upload failed")
        logger.info("Uploaded %s (%d bytes)", key, len(content))
        return f"{self.public_base}/{key}"

    def owns(self, url: Optional[str]) -> bool:
        return bool(url) and url.startswith(self.public_base + "/")

    def delete(self, url: Optional[str]) -> bool:
        """Delete a previously uploaded file. URLs outside the pull zone are ignored."""
        if not self.owns(url):
            return False
        key = url[len(self.public_base) + 1:]
        try:
            response = self.session.delete(
                f"{self.storage_base}/{key}", headers=self._headers(), timeout=self.timeout
            )
            if response.status_code == 404:
                return False
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Delete of %s failed: %s", key, exc)
            raise ExternalServiceError("File delete failed")
        logger.info("Deleted %s", key)
        return True


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


async def discard_media(storage: ObjectStorage, *urls: Optional[str]) -> None:
    """Delete files whose owning record is already gone or replaced.

    Storage failures are logged and skipped; the database change stands.
    """
    for url in urls:
        if not storage.owns(url):
            continue
        try:
            await run_in_threadpool(storage.delete, url)
        except ExternalServiceError:
            logger.warning("Could not delete %s; file left in storage", url)


def unique_name(prefix: str, original: Optional[str]) -> str:
    _, ext = os.path.splitext(original or "")
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext.lower()}"


async def read_upload(file: UploadFile, allowed_types: Iterable[str], max_size: int, label: str) -> bytes:
    """Validate an incoming multipart file and return its bytes."""
    if file.content_type not in set(allowed_types):
        allowed = ", ".join(sorted(t.split("/")[-1] for t in allowed_types))
        raise HTTPException(status_code=400, detail=f"Only {label} files are allowed ({allowed})")
    content = await file.read(max_size + 1)
    if len(content) > max_size:
        raise HTTPException(status_code=400, detail=f"{label.capitalize()} file is too large")
    if not content:
        raise HTTPException(status_code=400, detail=f"{label.capitalize()} file is empty")
    return content
