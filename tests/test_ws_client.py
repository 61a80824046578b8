"""Tests for GatewayWsClient WebSocket wrapper."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from chatlink_core.errors import ChatlinkConnectionError
from chatlink_core.transport.ws_client import (
    GatewayWsClient,
    GatewayWsMessage,
    GatewayWsMessageType,
)

URL = "wss://gateway.example/?v=10&encoding=json"


class TestGatewayWsMessage:
    """Tests for GatewayWsMessage dataclass."""

    def test_create_text_message(self):
        msg = GatewayWsMessage(type=GatewayWsMessageType.TEXT, data="hello")
        assert msg.type == GatewayWsMessageType.TEXT
        assert msg.data == "hello"
        assert msg.close_code is None

    def test_create_closed_message(self):
        msg = GatewayWsMessage(type=GatewayWsMessageType.CLOSED, close_code=4009)
        assert msg.data is None
        assert msg.close_code == 4009

    def test_message_is_frozen(self):
        msg = GatewayWsMessage(type=GatewayWsMessageType.TEXT, data="test")
        with pytest.raises(AttributeError):
            msg.data = "modified"  # type: ignore[misc]


class TestGatewayWsClientConnect:
    """Tests for GatewayWsClient.connect()."""

    async def test_connect_success(self):
        mock_ws = AsyncMock()

        with patch(
            "chatlink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ) as mock_connect:
            client = GatewayWsClient()
            await client.connect(URL)

            mock_connect.assert_called_once_with(URL, timeout=15.0)
            assert client._ws is mock_ws

    async def test_connect_propagates_errors(self):
        with patch(
            "chatlink_core.transport.ws_client.connect_websocket",
            side_effect=ChatlinkConnectionError("WebSocket connection failed"),
        ):
            client = GatewayWsClient()
            with pytest.raises(ChatlinkConnectionError, match="connection failed"):
                await client.connect(URL)


class TestGatewayWsClientClose:
    """Tests for GatewayWsClient.close()."""

    async def test_close_with_code(self):
        mock_ws = AsyncMock()

        with patch(
            "chatlink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = GatewayWsClient()
            await client.connect(URL)
            await client.close(4000)

            mock_ws.close.assert_called_once_with(4000, "")

    async def test_close_not_connected(self):
        client = GatewayWsClient()
        await client.close()


class TestGatewayWsClientSendJson:
    """Tests for GatewayWsClient.send_json()."""

    async def test_send_json_uses_wire_format(self):
        mock_ws = AsyncMock()

        with patch(
            "chatlink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = GatewayWsClient()
            await client.connect(URL)
            await client.send_json({"op": 2, "d": {"device": "bürö"}})

            mock_ws.send.assert_called_once_with(
                '{"op":2,"d":{"device":"b\\u00fcr\\u00f6"}}'
            )

    async def test_send_json_not_connected(self):
        client = GatewayWsClient()
        with pytest.raises(ChatlinkConnectionError, match="not connected"):
            await client.send_json({"op": 1, "d": None})

    async def test_send_on_closed_socket(self):
        mock_ws = AsyncMock()
        mock_ws.send.side_effect = ConnectionClosed(None, None)

        with patch(
            "chatlink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = GatewayWsClient()
            await client.connect(URL)
            with pytest.raises(ChatlinkConnectionError, match="closed while sending"):
                await client.send_json({"op": 1, "d": None})


class AsyncIteratorMock:
    """Helper class to create a proper async iterator mock."""

    def __init__(
        self,
        items: list,
        *,
        raise_on_iter: Exception | None = None,
        close_code: int | None = None,
    ):
        self._items = items
        self._index = 0
        self._raise_on_iter = raise_on_iter
        self.close_code = close_code
        self.close = AsyncMock()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._raise_on_iter is not None:
            raise self._raise_on_iter
        if self._index >= len(self._items):
            raise StopAsyncIteration
        item = self._items[self._index]
        self._index += 1
        return item


class TestGatewayWsClientIteration:
    """Tests for GatewayWsClient async iteration."""

    def test_iter_not_connected(self):
        client = GatewayWsClient()
        with pytest.raises(ChatlinkConnectionError, match="not connected"):
            client.__aiter__()

    async def test_iter_text_messages(self):
        mock_ws = AsyncIteratorMock(["message1", "message2"])

        with patch(
            "chatlink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = GatewayWsClient()
            await client.connect(URL)

            messages = [msg async for msg in client]

        text_messages = [m for m in messages if m.type == GatewayWsMessageType.TEXT]
        assert [m.data for m in text_messages] == ["message1", "message2"]

    async def test_iter_connection_closed_carries_code(self):
        closed = ConnectionClosed(Close(4009, "Session timed out"), None)
        mock_ws = AsyncIteratorMock([], raise_on_iter=closed)

        with patch(
            "chatlink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = GatewayWsClient()
            await client.connect(URL)

            messages = [msg async for msg in client]

        assert len(messages) == 1
        assert messages[0].type == GatewayWsMessageType.CLOSED
        assert messages[0].close_code == 4009

    async def test_iter_connection_closed_without_frame(self):
        mock_ws = AsyncIteratorMock([], raise_on_iter=ConnectionClosed(None, None))

        with patch(
            "chatlink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = GatewayWsClient()
            await client.connect(URL)

            messages = [msg async for msg in client]

        assert messages == [GatewayWsMessage(GatewayWsMessageType.CLOSED)]

    async def test_iter_unexpected_error(self):
        mock_ws = AsyncIteratorMock([], raise_on_iter=RuntimeError("Unexpected"))

        with patch(
            "chatlink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = GatewayWsClient()
            await client.connect(URL)

            messages = [msg async for msg in client]

        assert len(messages) == 1
        assert messages[0].type == GatewayWsMessageType.ERROR

    async def test_iter_graceful_close(self):
        mock_ws = AsyncIteratorMock(["hello"], close_code=1000)

        with patch(
            "chatlink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = GatewayWsClient()
            await client.connect(URL)

            messages = [msg async for msg in client]

        assert len(messages) == 2
        assert messages[0].data == "hello"
        assert messages[1].type == GatewayWsMessageType.CLOSED
        assert messages[1].close_code == 1000

    async def test_iter_skips_binary_messages(self):
        mock_ws = AsyncIteratorMock(["text1", b"\x78\x9c\x00", "text2"])

        with patch(
            "chatlink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = GatewayWsClient()
            await client.connect(URL)

            messages = [msg async for msg in client]

        text_messages = [m for m in messages if m.type == GatewayWsMessageType.TEXT]
        assert [m.data for m in text_messages] == ["text1", "text2"]


class TestGatewayWsClientNormalization:
    """Tests for GatewayWsClient message normalization."""

    def test_normalize_string_message(self):
        result = GatewayWsClient._normalize_message("hello world")
        assert result == GatewayWsMessage(GatewayWsMessageType.TEXT, "hello world")

    def test_normalize_bytes_returns_none(self):
        assert GatewayWsClient._normalize_message(b"\x00\x01\x02") is None

    def test_normalize_unknown_object(self):
        class Frame:
            def __str__(self) -> str:
                return "x"

        result = GatewayWsClient._normalize_message(Frame())
        assert result is not None
        assert result.data == "x"
