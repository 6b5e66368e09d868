"""Error taxonomy & redaction for bgl.

Every failure raised by the client layer derives from :class:`BglError` so the
CLI boundary has a single place to translate exceptions into exit codes.
The three families mirror where the failure originated:

- ``ConfigError`` -> the on-disk credential file or local settings
- ``AuthError`` -> the OAuth flow or the token lifecycle
- ``ApiError`` -> a request against the Backlog REST API

Public API:
- the exception classes below
- redact(text) -> str
"""

from __future__ import annotations

import re

LOGIN_HINT = "Please run 'bgl auth login'"

_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]{8,}"),
    re.compile(r"((?:access|refresh)_token[\"']?\s*[:=]\s*[\"']?)[A-Za-z0-9._~+/=-]{8,}"),
    re.compile(r"(client_secret[\"']?\s*[:=]\s*[\"']?)[A-Za-z0-9._~+/=-]{4,}"),
]

_REDACTION_PLACEHOLDER = "<redacted>"


def redact(text: str) -> str:
    """Redact bearer tokens and client secrets in arbitrary text."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        redacted = pat.sub(lambda m: m.group(1) + _REDACTION_PLACEHOLDER, redacted)
    return redacted


class BglError(RuntimeError):
    """Base class for all bgl failures."""


class UsageError(BglError):
    """Invalid command-line input that argparse cannot catch."""


# ---- configuration ---------------------------------------------------------
class ConfigError(BglError):
    pass


class ConfigLoadError(ConfigError):
    pass


class ConfigPersistError(ConfigError):
    pass


# ---- authentication --------------------------------------------------------
class AuthError(BglError):
    pass


class NotAuthenticated(AuthError):
    def __init__(self, message: str = f"Not logged in. {LOGIN_HINT} first") -> None:
        super().__init__(message)


class InvalidSpaceFormat(AuthError):
    def __init__(self, space: str) -> None:
        super().__init__(
            f"Invalid space format {space!r}: must be <your-space-key>.backlog.com "
            "or <your-space-key>.backlog.jp"
        )
        self.space = space


class MissingClientCredentials(AuthError):
    def __init__(self) -> None:
        super().__init__(
            "OAuth client credentials are not configured. "
            "Set BACKLOG_CLIENT_ID and BACKLOG_CLIENT_SECRET (environment or .env)"
        )


class CallbackPortUnavailable(AuthError):
    def __init__(self, port: int, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to start callback server on port {port}{detail}")
        self.port = port


class StateMismatch(AuthError):
    def __init__(self) -> None:
        super().__init__("OAuth state mismatch: the callback did not originate from this login")


class MissingAuthorizationCode(AuthError):
    def __init__(self) -> None:
        super().__init__("No authorization code received")


class AuthenticationTimeout(AuthError):
    def __init__(self, seconds: float) -> None:
        super().__init__(f"Authentication timed out after {seconds:g}s")
        self.seconds = seconds


class Cancelled(AuthError):
    def __init__(self, message: str = "Cancelled by user") -> None:
        super().__init__(message)


class TokenExchangeFailed(AuthError):
    def __init__(self, status: int) -> None:
        super().__init__(f"Token request failed with status: {status}")
        self.status = status


class TokenResponseParseError(AuthError):
    pass


class NoRefreshToken(AuthError):
    def __init__(self) -> None:
        super().__init__(f"No refresh token found. {LOGIN_HINT} first")


class RefreshRejected(AuthError):
    def __init__(self, status: int) -> None:
        super().__init__(f"Token refresh failed with status: {status}")
        self.status = status


class InvalidToken(AuthError):
    def __init__(self) -> None:
        super().__init__(f"Access token is invalid. {LOGIN_HINT}")


class TokenRefreshFailed(AuthError):
    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Failed to refresh token: {cause}. {LOGIN_HINT}")
        self.cause = cause


# ---- remote API -------------------------------------------------------------
class ApiError(BglError):
    pass


class AuthenticationFailed(ApiError):
    def __init__(self, status: int, detail: str = "") -> None:
        extra = f", {detail}" if detail else ""
        super().__init__(f"Authentication failed (status {status}{extra}). {LOGIN_HINT}")
        self.status = status


class ApiRequestFailed(ApiError):
    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"API request failed with status {status}: {body}")
        self.status = status
        self.body = body


class TransportError(ApiError):
    pass


class ResponseParseError(ApiError):
    pass


__all__ = [
    "LOGIN_HINT",
    "redact",
    "BglError",
    "UsageError",
    "ConfigError",
    "ConfigLoadError",
    "ConfigPersistError",
    "AuthError",
    "NotAuthenticated",
    "InvalidSpaceFormat",
    "MissingClientCredentials",
    "CallbackPortUnavailable",
    "StateMismatch",
    "MissingAuthorizationCode",
    "AuthenticationTimeout",
    "Cancelled",
    "TokenExchangeFailed",
    "TokenResponseParseError",
    "NoRefreshToken",
    "RefreshRejected",
    "InvalidToken",
    "TokenRefreshFailed",
    "ApiError",
    "AuthenticationFailed",
    "ApiRequestFailed",
    "TransportError",
    "ResponseParseError",
]
