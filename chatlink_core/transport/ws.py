"""WebSocket helpers for the chat gateway."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    ChatlinkConnectionError,
    ChatlinkHandshakeError,
    ChatlinkTimeout,
)


async def connect_websocket(
    url: str,
    *,
    timeout: float = 15.0,
) -> ClientConnection:
    """Connect to a gateway WebSocket endpoint.

    Protocol-level keepalive is disabled: liveness is tracked with gateway
    HEARTBEAT frames at the interval the server announces in HELLO.

    Args:
        url: Full ``wss://`` URL including query parameters
        timeout: Opening handshake timeout
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=None,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise ChatlinkTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise ChatlinkHandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise ChatlinkConnectionError("WebSocket connection failed") from err
