"""Chat service client core: authentication, safe JSON and gateway session."""

__version__ = "0.1.0"

from .auth import (
    AuthFlow,
    AuthResult,
    Credentials,
    LoginResult,
    MfaChallenge,
    MfaErrorCode,
)
from .config import GatewayConfig, PlatformMetadata
from .errors import (
    ChatlinkClientError,
    ChatlinkConnectionError,
    ChatlinkHandshakeError,
    ChatlinkProtocolError,
    ChatlinkResponseError,
    ChatlinkTimeout,
)
from .http import ChatlinkHttpClient, HttpResponse
from .protocol import GatewayFrame, GatewayOpcode, parse_frame
from .safe_json import decode, decode_or_raw, format_json, is_structured_text
from .session import GatewaySession, GatewaySessionState, GatewayState

__all__ = [
    "AuthFlow",
    "AuthResult",
    "ChatlinkClientError",
    "ChatlinkConnectionError",
    "ChatlinkHandshakeError",
    "ChatlinkHttpClient",
    "ChatlinkProtocolError",
    "ChatlinkResponseError",
    "ChatlinkTimeout",
    "Credentials",
    "GatewayConfig",
    "GatewayFrame",
    "GatewayOpcode",
    "GatewaySession",
    "GatewaySessionState",
    "GatewayState",
    "HttpResponse",
    "LoginResult",
    "MfaChallenge",
    "MfaErrorCode",
    "PlatformMetadata",
    "__version__",
    "decode",
    "decode_or_raw",
    "format_json",
    "is_structured_text",
    "parse_frame",
]
