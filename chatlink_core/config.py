"""Immutable configuration values for gateway sessions."""

from __future__ import annotations

import platform
from dataclasses import dataclass, field
from urllib.parse import urlencode, urlsplit, urlunsplit

DEFAULT_GATEWAY_URL = "wss://gateway.discord.gg"


def _default_os() -> str:
    return platform.system().lower() or "unknown"


@dataclass(frozen=True)
class PlatformMetadata:
    """Client platform descriptor sent with IDENTIFY."""

    os: str = field(default_factory=_default_os)
    browser: str = "chatlink"
    device: str = "chatlink"

    def to_properties(self) -> dict[str, str]:
        return {"os": self.os, "browser": self.browser, "device": self.device}


@dataclass(frozen=True)
class GatewayConfig:
    """Configuration for a gateway session.

    Attributes:
        gateway_url: Default gateway endpoint, used when no resume URL is known
        api_version: Gateway protocol version requested in the URL query
        encoding: Frame encoding requested in the URL query
        platform_metadata: Platform descriptor sent with IDENTIFY
        intents: Optional gateway intents bitfield sent with IDENTIFY
        heartbeat_ack_timeout_ms: How long an unacknowledged heartbeat may be
            outstanding before the next tick declares the connection dead
        reconnect_delay_ms: Fixed delay before each reconnect attempt
        connect_timeout: WebSocket opening handshake timeout (seconds)
        verbose_logging: Log every inbound and outbound frame at debug level
    """

    gateway_url: str | None = DEFAULT_GATEWAY_URL
    api_version: int = 10
    encoding: str = "json"
    platform_metadata: PlatformMetadata = field(default_factory=PlatformMetadata)
    intents: int | None = None
    heartbeat_ack_timeout_ms: int = 10000
    reconnect_delay_ms: int = 5000
    connect_timeout: float = 15.0
    verbose_logging: bool = True

    def connection_url(self, base_url: str) -> str:
        """Append the version and encoding query to ``base_url``."""
        parts = urlsplit(base_url)
        query = urlencode({"v": self.api_version, "encoding": self.encoding})
        path = parts.path or "/"
        return urlunsplit((parts.scheme, parts.netloc, path, query, ""))
