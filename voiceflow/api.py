"""Async HTTP plumbing shared by the transcription and completion clients."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from voiceflow.errors import (
    InvalidEndpointError,
    NetworkFailureError,
    NoCredentialError,
    NoResponseBodyError,
    ParseFailureError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


@dataclass
class ApiResponse:
    """Decoded JSON object plus the HTTP status it arrived with."""

    status_code: int
    payload: dict[str, Any]

    @property
    def error_message(self) -> str | None:
        """Return ``error.message`` when the payload carries one."""
        error = self.payload.get("error")
        if isinstance(error, Mapping):
            message = error.get("message")
            if isinstance(message, str):
                return message
        return None


class OpenAIClient:
    """Bearer-authenticated POST helper for OpenAI-compatible endpoints.

    Lazily creates an ``httpx.AsyncClient`` on first use unless one is
    injected, and only closes clients it created itself.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize API client.

        Args:
            api_key: Bearer credential, already resolved by the caller
            base_url: API root, e.g. https://api.openai.com/v1
            timeout: Request timeout in seconds
            client: Optional pre-built httpx.AsyncClient (tests, pooling)
        """
        self.api_key = api_key.strip() if api_key else None
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._client_owned = client is None
        self._client_lock = asyncio.Lock()

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key)

    def endpoint(self, path: str) -> str:
        """Build an absolute endpoint URL.

        Raises:
            InvalidEndpointError: If the base URL is not absolute http(s)
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError) as e:
            raise InvalidEndpointError(f"Invalid API URL: {url}") from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise InvalidEndpointError(f"Invalid API URL: {url}")
        return url

    async def post_multipart(
        self,
        path: str,
        data: Mapping[str, str],
        files: Mapping[str, tuple[str, bytes, str]],
    ) -> ApiResponse:
        """POST a multipart form and return the decoded JSON object."""
        return await self._post(path, data=dict(data), files=dict(files))

    async def post_json(self, path: str, payload: Mapping[str, Any]) -> ApiResponse:
        """POST a JSON body and return the decoded JSON object."""
        return await self._post(path, json=dict(payload))

    async def _post(self, path: str, **kwargs: Any) -> ApiResponse:
        if not self.has_credential:
            raise NoCredentialError()
        url = self.endpoint(path)

        client = await self._ensure_client()
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            response = await client.post(url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.error("Request to %s failed: %s", url, e)
            raise NetworkFailureError(f"Request to {url} failed: {e}") from e

        logger.debug("POST %s -> %d (%d bytes)", url, response.status_code, len(response.content))
        return ApiResponse(status_code=response.status_code, payload=decode_body(response))

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=self.timeout)
                self._client_owned = True
            return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._client is not None and self._client_owned:
            await self._client.aclose()
            logger.debug("HTTP client closed")
        self._client = None


def decode_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a response body into a JSON object.

    The status code is not checked here; OpenAI reports failures as
    ``{"error": {"message": ...}}`` which callers classify themselves.

    Raises:
        NoResponseBodyError: If the body is empty
        ParseFailureError: If the body is not a JSON object
    """
    if not response.content:
        raise NoResponseBodyError()
    try:
        payload = json.loads(response.content)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseFailureError(
            f"Failed to parse response (HTTP {response.status_code}): {e}"
        ) from e
    if not isinstance(payload, dict):
        raise ParseFailureError(
            f"Expected JSON object, got {type(payload).__name__} (HTTP {response.status_code})"
        )
    return payload
