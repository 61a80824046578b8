"""WebSocket client wrapper for the chat gateway."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from ..errors import ChatlinkConnectionError
from ..safe_json import format_json
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class GatewayWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class GatewayWsMessage:
    """Normalized WebSocket message payload."""

    type: GatewayWsMessageType
    data: str | None = None
    close_code: int | None = None


def _close_code(source: Any) -> int | None:
    code = getattr(source, "code", None)
    return code if isinstance(code, int) else None


def _close_code_of_connection(ws: Any) -> int | None:
    code = getattr(ws, "close_code", None)
    return code if isinstance(code, int) else None


class GatewayWsClient:
    """Wrapper around the websockets library for the gateway connection."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    async def connect(self, url: str, *, timeout: float = 15.0) -> None:
        """Connect to the gateway websocket."""
        self._ws = await connect_websocket(url, timeout=timeout)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the websocket connection with ``code``."""
        if self._ws is not None:
            await self._ws.close(code, reason)

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a frame as compact, ASCII-escaped JSON text."""
        if self._ws is None:
            raise ChatlinkConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(format_json(payload))
        except ConnectionClosed as err:
            raise ChatlinkConnectionError("WebSocket closed while sending") from err

    def __aiter__(self) -> AsyncIterator[GatewayWsMessage]:
        if self._ws is None:
            raise ChatlinkConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[GatewayWsMessage]:
        if self._ws is None:
            raise ChatlinkConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                normalized = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
        except ConnectionClosed as err:
            yield GatewayWsMessage(
                type=GatewayWsMessageType.CLOSED,
                close_code=_close_code(err.rcvd),
            )
        except Exception:
            yield GatewayWsMessage(type=GatewayWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield GatewayWsMessage(
                type=GatewayWsMessageType.CLOSED,
                close_code=_close_code_of_connection(self._ws),
            )

    @staticmethod
    def _normalize_message(msg: Any) -> GatewayWsMessage | None:
        """Normalize backend frames; binary frames are skipped."""
        if isinstance(msg, (bytes, bytearray)):
            return None
        if isinstance(msg, str):
            return GatewayWsMessage(GatewayWsMessageType.TEXT, msg)
        return GatewayWsMessage(GatewayWsMessageType.TEXT, str(msg))