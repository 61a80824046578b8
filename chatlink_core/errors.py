"""Client error types for chat API and gateway interactions."""

from __future__ import annotations


class ChatlinkClientError(Exception):
    """Base error for chat client failures."""


class ChatlinkTimeout(ChatlinkClientError):
    """Timeout while communicating with the service."""


class ChatlinkConnectionError(ChatlinkClientError):
    """Network connection to the service failed."""


class ChatlinkHandshakeError(ChatlinkClientError):
    """WebSocket handshake with the gateway failed."""


class ChatlinkProtocolError(ChatlinkClientError):
    """Gateway frame could not be decoded."""


class ChatlinkResponseError(ChatlinkClientError):
    """HTTP response error from the API."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
