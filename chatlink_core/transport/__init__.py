"""Gateway socket transport.

Components:
- ws: WebSocket connection opening
- ws_client: WebSocket message iteration and frame sending
"""

from .ws import connect_websocket
from .ws_client import GatewayWsClient, GatewayWsMessage, GatewayWsMessageType

__all__ = [
    "GatewayWsClient",
    "GatewayWsMessage",
    "GatewayWsMessageType",
    "connect_websocket",
]
