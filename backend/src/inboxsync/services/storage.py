"""Attachment uploads through signed object-storage URLs."""

import logging
import secrets
import time

import httpx

from inboxsync.config import settings
from inboxsync.errors import StorageError, TransientError
from inboxsync.ports import ImageFile
from inboxsync.retry import raise_for_transient, retry_transient

logger = logging.getLogger(__name__)


def upload_path(thread_id: int, image: ImageFile) -> str:
    """Object key for an upload: <thread>/<epoch ms>-<random>.<ext>"""
    return f"{thread_id}/{int(time.time() * 1000)}-{secrets.token_hex(4)}.{image.extension}"


class SignedUrlStorage:
    """Uploads images with a two-step signed URL flow.

    The upload-url function returns a signed PUT URL and the object's public
    URL; the bytes go straight to storage.
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url or settings.function_url(settings.upload_url_path)
        self.api_key = api_key if api_key is not None else settings.functions_api_key
        self.timeout = timeout or settings.request_timeout
        self._transport = transport

    async def upload(self, thread_id: int, image: ImageFile) -> str:
        path = upload_path(thread_id, image)
        try:
            signed = await self._request_signed_url(path, image.content_type)
            await self._put(signed["signedUrl"], image)
        except TransientError as e:
            raise StorageError(f"Failed to upload {image.name}: {e}") from e
        logger.info(f"Uploaded {image.name} to {signed['filePath']}")
        return signed["publicUrl"]

    @retry_transient(
        max_attempts=settings.retry_attempts,
        base_wait=settings.retry_base_wait,
        max_wait=settings.retry_max_wait,
    )
    async def _request_signed_url(self, path: str, content_type: str) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    self.url,
                    json={"filePath": path, "contentType": content_type},
                    headers=headers,
                )
            except httpx.RequestError as e:
                raise TransientError(str(e)) from e
            raise_for_transient(response)
            if response.is_error:
                raise StorageError(f"Failed to get upload URL: HTTP {response.status_code}")
            try:
                data = response.json()
            except ValueError as e:
                raise StorageError("Upload URL response is not JSON") from e

        if not isinstance(data, dict):
            raise StorageError("Upload URL response is not an object")
        if not data.get("signedUrl") or not data.get("publicUrl"):
            raise StorageError("Upload URL response is missing signedUrl or publicUrl")
        data.setdefault("filePath", path)
        return data

    @retry_transient(
        max_attempts=settings.retry_attempts,
        base_wait=settings.retry_base_wait,
        max_wait=settings.retry_max_wait,
    )
    async def _put(self, signed_url: str, image: ImageFile) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.put(
                    signed_url,
                    content=image.data,
                    headers={"Content-Type": image.content_type},
                )
            except httpx.RequestError as e:
                raise TransientError(str(e)) from e
            raise_for_transient(response)
            if response.is_error:
                raise StorageError(f"Failed to upload {image.name}: HTTP {response.status_code}")
