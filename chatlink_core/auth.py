"""Credential login and multi-factor authentication flow.

Login and MFA failures are returned as structured results rather than raised:
callers branch on ``success``. Transport failures (timeouts, connection
errors) still propagate as exceptions from the HTTP client.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from functools import partial
from typing import Any, Self

from .http import ChatlinkHttpClient, HttpResponse

_LOGGER = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
MFA_PATH = "/auth/mfa/{protocol}"

# Offered by the server but not implemented by this client.
UNSUPPORTED_MFA_PROTOCOLS: frozenset[str] = frozenset({"sms"})


class MfaErrorCode(IntEnum):
    """Stable client-side validation codes for MFA completion.

    ``MFA_BAD_CODE`` is never produced by this client: a server-side code
    rejection is returned with the server's own ``code`` and ``message``. The
    member exists to keep the numbering stable for callers matching on it.
    """

    MFA_NO_PROTOCOL = -1
    MFA_BAD_PROTOCOL = -2
    MFA_UNSUPPORTED = -3
    MFA_NO_CODE = -4
    MFA_BAD_CODE = -5


@dataclass(frozen=True)
class Credentials:
    """Login fields for a single login attempt.

    Attributes:
        login: Account identifier (email or phone)
        password: Account secret
        ticket: Optional MFA ticket already known to the caller
        extra: Additional fields forwarded verbatim in the login body
    """

    login: str
    password: str = field(repr=False)
    ticket: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = dict(self.extra)
        body["login"] = self.login
        body["password"] = self.password
        if self.ticket is not None:
            body["ticket"] = self.ticket
        return body


@dataclass(frozen=True)
class MfaChallenge:
    """MFA challenge issued by the login endpoint."""

    protocols: tuple[str, ...]
    ticket: str | None
    login_instance_id: str | None

    def offers(self, protocol: str) -> bool:
        wanted = protocol.lower()
        return any(offered.lower() == wanted for offered in self.protocols)


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a login or MFA completion request.

    On malformed responses ``raw`` holds the decoded body (or raw bytes) and
    ``message``/``code`` mirror the body's own fields when present.
    """

    success: bool
    token: str | None = None
    message: str | None = None
    code: int | None = None
    status: int | None = None
    raw: Any = None

    @classmethod
    def failure(cls, message: str, code: MfaErrorCode) -> AuthResult:
        return cls(success=False, message=message, code=code)

    @classmethod
    def from_malformed(cls, response: HttpResponse) -> Self:
        return cls(
            success=False,
            message=response.body_field("message"),
            code=response.body_field("code"),
            status=response.status,
            raw=response.body,
        )


MfaCompleter = Callable[[str | None, str | None], Awaitable[AuthResult]]


@dataclass(frozen=True)
class LoginResult(AuthResult):
    """Outcome of ``AuthFlow.login``.

    When ``mfa`` is True, ``complete_mfa(protocol, code)`` finishes the login
    against the challenge captured from this response.
    """

    mfa: bool = False
    protocols: tuple[str, ...] = ()
    challenge: MfaChallenge | None = None
    complete_mfa: MfaCompleter | None = field(default=None, repr=False, compare=False)


def _offered_protocols(body: Mapping[str, Any]) -> tuple[str, ...]:
    return tuple(key for key, value in body.items() if key != "mfa" and value is True)


class AuthFlow:
    """Exchange credentials for a session token, including the MFA sub-flow."""

    def __init__(self, http: ChatlinkHttpClient) -> None:
        self._http = http

    async def login(self, credentials: Credentials | Mapping[str, Any]) -> LoginResult:
        """Submit credentials to the login endpoint.

        Returns:
            ``success=False`` when the response has no ``mfa`` field,
            a token when no MFA is required, or the offered protocols and a
            bound ``complete_mfa`` when it is.
        """
        if isinstance(credentials, Credentials):
            body = credentials.to_body()
        else:
            body = dict(credentials)
        response = await self._http.post(LOGIN_PATH, body=body)

        if not response.has_body_field("mfa"):
            _LOGGER.warning(
                "Login response has no mfa field (status %d)", response.status
            )
            return LoginResult.from_malformed(response)

        if not response.body_field("mfa"):
            return LoginResult(
                success=True,
                mfa=False,
                token=response.body_field("token"),
                status=response.status,
            )

        challenge = MfaChallenge(
            protocols=_offered_protocols(response.body),
            ticket=response.body_field("ticket"),
            login_instance_id=response.body_field("login_instance_id"),
        )
        _LOGGER.debug(
            "MFA required, offered protocols: %s", ", ".join(challenge.protocols)
        )

        return LoginResult(
            success=True,
            mfa=True,
            protocols=challenge.protocols,
            challenge=challenge,
            status=response.status,
            complete_mfa=partial(self.complete_mfa, challenge),
        )

    async def complete_mfa(
        self,
        challenge: MfaChallenge,
        protocol: str | None,
        code: str | None,
    ) -> AuthResult:
        """Submit an MFA code for ``challenge`` using ``protocol``.

        Validation happens before any request is made. ``sms`` is rejected as
        unsupported even when the server does not offer it.
        """
        if not protocol:
            return AuthResult.failure(
                "No MFA protocol specified", MfaErrorCode.MFA_NO_PROTOCOL
            )

        protocol = protocol.lower()
        if protocol in UNSUPPORTED_MFA_PROTOCOLS:
            return AuthResult.failure(
                "MFA protocol not supported", MfaErrorCode.MFA_UNSUPPORTED
            )

        if not challenge.offers(protocol):
            return AuthResult.failure(
                "MFA protocol unavailable", MfaErrorCode.MFA_BAD_PROTOCOL
            )

        if not code:
            return AuthResult.failure("No MFA code specified", MfaErrorCode.MFA_NO_CODE)

        response = await self._http.post(
            MFA_PATH.format(protocol=protocol),
            body={
                "code": code,
                "login_instance_id": challenge.login_instance_id,
                "ticket": challenge.ticket,
            },
        )

        if not response.has_body_field("token"):
            _LOGGER.warning("MFA response has no token (status %d)", response.status)
            return AuthResult.from_malformed(response)

        return AuthResult(
            success=True, token=response.body_field("token"), status=response.status
        )
