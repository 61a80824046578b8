"""Pytest configuration and fixtures for chatlink_core tests."""

from __future__ import annotations

import asyncio
import json
import random
from collections.abc import Callable, Mapping
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatlink_core.transport.ws_client import GatewayWsMessage, GatewayWsMessageType


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    read_data: bytes = b"",
    headers: Mapping[str, str] | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        read_data: Raw body returned from read()
        headers: Response headers

    Returns:
        Configured AsyncMock response usable as an async context manager
    """
    response = AsyncMock()
    response.status = status
    response.headers = headers or {}
    response.read.return_value = read_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class FixedRandom(random.Random):
    """Random source that always returns the same value."""

    def __init__(self, value: float) -> None:
        super().__init__()
        self.value = value

    def random(self) -> float:
        return self.value


class FakeGatewaySocket:
    """Scripted stand-in for GatewayWsClient.

    Frames pushed with ``feed`` are yielded by iteration in order; ``drop``
    ends iteration with a CLOSED message.
    """

    def __init__(self) -> None:
        self.connect = AsyncMock()
        self.sent: list[dict[str, Any]] = []
        self.closed_with: int | None = None
        self._inbox: asyncio.Queue[GatewayWsMessage] = asyncio.Queue()

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = code

    def feed(
        self,
        op: int,
        d: Any = None,
        *,
        s: int | None = None,
        t: str | None = None,
    ) -> None:
        text = json.dumps({"op": op, "d": d, "s": s, "t": t})
        self._inbox.put_nowait(GatewayWsMessage(GatewayWsMessageType.TEXT, text))

    def drop(self, code: int | None = None) -> None:
        self._inbox.put_nowait(
            GatewayWsMessage(GatewayWsMessageType.CLOSED, close_code=code)
        )

    def sent_ops(self) -> list[int]:
        return [frame["op"] for frame in self.sent]

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        while True:
            msg = await self._inbox.get()
            yield msg
            if msg.type is not GatewayWsMessageType.TEXT:
                return


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0)
