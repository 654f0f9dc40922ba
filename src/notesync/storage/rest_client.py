"""HTTP client shared by the hosted note store and auth provider."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from notesync import __version__

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class HttpFailure(Exception):
    """A non-2xx response or a transport failure.

    Attributes:
        message: The server's own message, or the transport error text
        status_code: HTTP status, None for transport failures
        payload: Decoded JSON body when there was one
    """

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}


def _message_from_response(response: httpx.Response) -> tuple[str, Dict[str, Any]]:
    try:
        payload = response.json()
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    # auth endpoints use msg / error_description, the table API uses message
    for key in ("msg", "message", "error_description", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value, payload
    return response.reason_phrase or f"HTTP {response.status_code}", payload


class ApiClient:
    """Async client for a hosted backend exposing ``/auth/v1`` and ``/rest/v1``.

    Every request carries the project ``apikey``; the bearer token is the
    signed-in user's access token when given, the API key otherwise.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={
                "apikey": api_key,
                "User-Agent": f"notesync/{__version__}",
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Send a request and decode the JSON body.

        Returns:
            The decoded body, or None for empty responses.

        Raises:
            HttpFailure: On a non-2xx status or a transport error.
        """
        request_headers = {"Authorization": f"Bearer {token or self._api_key}"}
        if headers:
            request_headers.update(headers)
        try:
            response = await self._client.request(
                method, path, params=params, json=json_body, headers=request_headers
            )
        except httpx.HTTPError as exc:
            logger.warning(f"{method} {path} failed: {exc}")
            raise HttpFailure(str(exc) or exc.__class__.__name__) from exc

        if 200 <= response.status_code < 300:
            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except json.JSONDecodeError as exc:
                raise HttpFailure(
                    f"Invalid JSON in response to {method} {path}",
                    status_code=response.status_code,
                ) from exc

        message, payload = _message_from_response(response)
        logger.debug(f"{method} {path} -> {response.status_code}: {message}")
        raise HttpFailure(message, status_code=response.status_code, payload=payload)
