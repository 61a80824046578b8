"""HTTP client for the chat service REST API."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from .errors import ChatlinkConnectionError, ChatlinkResponseError, ChatlinkTimeout
from .safe_json import decode_or_raw, format_json

_LOGGER = logging.getLogger(__name__)

DEFAULT_API_HOST = "discord.com"
DEFAULT_API_VERSION = 10


@dataclass(frozen=True)
class HttpResponse:
    """Response envelope: status, headers and a decoded-or-raw body.

    ``headers`` keeps repeated fields such as ``Set-Cookie``; use ``getall``
    on the multidict to read every value.
    """

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None

    @property
    def is_json(self) -> bool:
        """True when the body decoded to a JSON value."""
        return not isinstance(self.body, (bytes, bytearray))

    def body_field(self, name: str, default: Any = None) -> Any:
        """Return a top-level body field, or ``default`` for non-object bodies."""
        if isinstance(self.body, dict):
            return self.body.get(name, default)
        return default

    def has_body_field(self, name: str) -> bool:
        return isinstance(self.body, dict) and name in self.body


class ChatlinkHttpClient:
    """HTTP client wrapper for the chat service API.

    Requests to the default API host are prefixed with the versioned API path
    (``/api/v10``). Requests to any other host use the path verbatim, which
    allows following server-provided alternate endpoints.

    One call is exactly one round trip: there is no retry at this layer.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        api_host: str = DEFAULT_API_HOST,
        api_version: int = DEFAULT_API_VERSION,
        token: str | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._session = session
        self._api_host = api_host
        self._api_version = api_version
        self._token = token
        self._timeout = timeout

    @property
    def api_host(self) -> str:
        return self._api_host

    def _url(self, path: str, host: str | None = None) -> str:
        if host is None or host == self._api_host:
            return f"https://{self._api_host}/api/v{self._api_version}{path}"
        return f"https://{host}{path}"

    def _build_headers(
        self, headers: Mapping[str, str] | None, payload: bytes | None
    ) -> dict[str, str]:
        merged: dict[str, str] = dict(headers or {})
        present = {key.lower() for key in merged}

        if self._token and "authorization" not in present:
            merged["Authorization"] = self._token

        if payload is not None:
            merged["Content-Length"] = str(len(payload))
            if "content-type" not in present:
                merged["Content-Type"] = "application/json"

        return merged

    async def request(
        self,
        path: str = "/",
        method: str = "GET",
        *,
        host: str | None = None,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> HttpResponse:
        """Issue a single request and return its status, headers and body.

        ``body`` is sent as compact, ASCII-escaped JSON. The response body is
        decoded when it is well-formed JSON and returned as raw bytes
        otherwise (error pages, empty bodies, images).

        Raises:
            ChatlinkTimeout: If the request times out
            ChatlinkConnectionError: If the network request fails
        """
        encoded = format_json(body)
        payload = encoded.encode("ascii") if encoded is not None else None
        url = self._url(path, host)

        try:
            async with self._session.request(
                method,
                url,
                headers=self._build_headers(headers, payload),
                data=payload,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                raw = await resp.read()
                response = HttpResponse(
                    status=resp.status,
                    headers=resp.headers.copy(),
                    body=decode_or_raw(raw),
                )
        except TimeoutError as err:
            raise ChatlinkTimeout(f"{method} {path} timed out") from err
        except aiohttp.ClientError as err:
            raise ChatlinkConnectionError(f"{method} {path} failed") from err

        _LOGGER.debug("%s %s -> %d", method, url, response.status)
        return response

    async def get(self, path: str = "/", **kwargs: Any) -> HttpResponse:
        return await self.request(path, "GET", **kwargs)

    async def post(self, path: str = "/", **kwargs: Any) -> HttpResponse:
        return await self.request(path, "POST", **kwargs)

    async def patch(self, path: str = "/", **kwargs: Any) -> HttpResponse:
        return await self.request(path, "PATCH", **kwargs)

    async def put(self, path: str = "/", **kwargs: Any) -> HttpResponse:
        return await self.request(path, "PUT", **kwargs)

    async def delete(self, path: str = "/", **kwargs: Any) -> HttpResponse:
        return await self.request(path, "DELETE", **kwargs)

    async def fetch_gateway_url(self) -> str | None:
        """Fetch the gateway WebSocket URL from the /gateway endpoint.

        Raises:
            ChatlinkResponseError: If the API returns a non-200 status
        """
        response = await self.get("/gateway")
        if response.status != 200:
            raise ChatlinkResponseError(
                response.status, "Gateway discovery failed with non-200 response"
            )
        url = response.body_field("url")
        return url if isinstance(url, str) and url else None
