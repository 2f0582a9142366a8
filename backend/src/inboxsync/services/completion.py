"""Client for the chat completion edge function."""

import logging

import httpx

from inboxsync.config import settings
from inboxsync.errors import CompletionError, TransientError
from inboxsync.retry import raise_for_transient, retry_transient

logger = logging.getLogger(__name__)


class CompletionClient:
    """HTTP client for an OpenAI-style chat completion endpoint."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url or settings.function_url(settings.completion_path)
        self.api_key = api_key if api_key is not None else settings.functions_api_key
        self.timeout = timeout or settings.request_timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def complete(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """
        Run a chat completion and return the first choice's content.

        Transient failures are retried; anything else, including a response
        without content, raises CompletionError.
        """
        payload = {
            "model": model or settings.completion_model,
            "messages": messages,
            "temperature": settings.completion_temperature if temperature is None else temperature,
            "max_tokens": max_tokens or settings.completion_max_tokens,
        }
        try:
            data = await self._post(payload)
        except TransientError as e:
            raise CompletionError(f"Completion request failed after retries: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise CompletionError(f"Unexpected completion response: {data!r}") from e
        if not isinstance(content, str):
            raise CompletionError("Completion response has no text content")
        return content

    @retry_transient(
        max_attempts=settings.retry_attempts,
        base_wait=settings.retry_base_wait,
        max_wait=settings.retry_max_wait,
    )
    async def _post(self, payload: dict) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(self.url, json=payload, headers=self._headers())
            except httpx.RequestError as e:
                logger.warning(f"Completion request error: {e}")
                raise TransientError(str(e)) from e
            raise_for_transient(response)
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error(f"Completion HTTP error: {e}")
                raise CompletionError(
                    f"HTTP {e.response.status_code}: {e.response.text[:200]}"
                ) from e
            try:
                return response.json()
            except ValueError as e:
                raise CompletionError("Completion response is not JSON") from e
