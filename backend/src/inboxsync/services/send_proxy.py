"""Client for the outbound message proxy."""

import logging

import httpx

from inboxsync.config import settings
from inboxsync.errors import SendError
from inboxsync.ports import SendRequest

logger = logging.getLogger(__name__)


class SendProxyClient:
    """Posts outbound messages to the send proxy.

    Not retried: a timed-out send may still have been delivered, and a second
    attempt would text the recipient twice.
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url or settings.function_url(settings.send_proxy_path)
        self.api_key = api_key if api_key is not None else settings.functions_api_key
        self.timeout = timeout or settings.request_timeout
        self._transport = transport

    async def send(self, request: SendRequest) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    self.url, json=request.to_payload(), headers=headers
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error(f"Send proxy HTTP error: {e}")
                raise SendError(
                    f"HTTP {e.response.status_code}: {e.response.text[:200]}"
                ) from e
            except httpx.RequestError as e:
                logger.error(f"Send proxy request error: {e}")
                raise SendError(f"Request failed: {e}") from e

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {"raw": response.text}
        return data if isinstance(data, dict) else {"result": data}
