"""Exceptions raised by the LBSLM cloud client."""

from __future__ import annotations


class LbslmError(Exception):
    """Base class for all errors raised by :mod:`lbslm`."""


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthError(LbslmError):
    """Logging in or refreshing the session failed."""


class InvalidCredentials(AuthError):
    """The cloud rejected the username/password pair."""


class MissingCredentialsConfig(AuthError):
    """No username/password is configured, so the session cannot be refreshed."""


class UidNotFound(AuthError):
    """Login succeeded but the session cookies carry no ``uid``."""


class SessionNotEstablished(AuthError):
    """Login returned no session cookies."""


class NoDevicesFound(LbslmError):
    """The account has no devices registered."""


class NoTimersFound(LbslmError):
    """The device has no timer to update."""


# ---------------------------------------------------------------------------
# API calls
# ---------------------------------------------------------------------------


class ApiError(LbslmError):
    """A cloud API call failed.

    :attr:`kind` names the failure class (``"HttpError"``,
    ``"ApiStatusError"``...) and :attr:`detail` carries the diagnostic text.
    """

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail)
        self.detail = detail

    @property
    def kind(self) -> str:
        return type(self).__name__


class HttpError(ApiError):
    """The server answered with an unexpected HTTP status."""

    def __init__(self, status: int) -> None:
        super().__init__(f"HTTP {status}")
        self.status = status


class ApiStatusError(ApiError):
    """The API answered with a business error in its ``status`` field."""

    def __init__(self, status: object, body: dict[str, object]) -> None:
        super().__init__(f"API returned status {status}: {body}")
        self.status = status
        self.body = body


class InvalidResponse(ApiError):
    """The API answered with a body that is not JSON."""

    def __init__(self, body_prefix: str) -> None:
        super().__init__(f"Invalid API response: {body_prefix}...")
        self.body_prefix = body_prefix


class ParseError(ApiError):
    """A JSON document could not be parsed."""


class AuthExhausted(ApiError):
    """Authentication failed again after the session was refreshed."""


class TransportError(ApiError, ConnectionError):
    """The request never got an HTTP answer (socket error or timeout).

    Wraps the underlying :mod:`aiohttp` / timeout exception so callers do not
    need to import ``aiohttp`` to catch connection failures.
    """


# ---------------------------------------------------------------------------
# Caller-facing
# ---------------------------------------------------------------------------


class ServiceUnavailable(LbslmError):
    """A user command could not be carried out.

    Always chained from the underlying :class:`LbslmError`, whose message is
    repeated in this exception's message.
    """
