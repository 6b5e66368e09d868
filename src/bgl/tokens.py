"""Token endpoint helpers and the refresh-token exchange."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import Any

import requests

from .config import Settings
from .credentials import Credential, TokenStore, now_millis
from .errors import (
    MissingClientCredentials,
    NoRefreshToken,
    RefreshRejected,
    TokenResponseParseError,
    TransportError,
)
from .logging import get_logger

HTTP_OK = 200


@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    refresh_token: str = ""
    token_type: str = "Bearer"
    expires_in: int = 0

    def expires_at(self, now_ms: int | None = None) -> int:
        """Absolute expiry in epoch milliseconds, 0 when the server gave none."""
        if self.expires_in <= 0:
            return 0
        base = now_millis() if now_ms is None else now_ms
        return base + self.expires_in * 1000


def token_endpoint(space: str) -> str:
    return f"https://{space}/api/v2/oauth2/token"


def parse_token_response(body: bytes | str) -> TokenResponse:
    try:
        data: Any = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise TokenResponseParseError(f"Malformed token response: {exc}") from exc
    if not isinstance(data, dict):
        raise TokenResponseParseError("Malformed token response: expected a JSON object")
    access = data.get("access_token")
    if not isinstance(access, str) or not access:
        raise TokenResponseParseError("Malformed token response: missing access_token")
    refresh = data.get("refresh_token")
    expires_in = data.get("expires_in")
    token_type = data.get("token_type")
    return TokenResponse(
        access_token=access,
        refresh_token=refresh if isinstance(refresh, str) else "",
        token_type=token_type if isinstance(token_type, str) else "Bearer",
        expires_in=int(expires_in) if isinstance(expires_in, (int, float)) else 0,
    )


def post_token_request(
    session: requests.Session,
    space: str,
    form: dict[str, str],
    *,
    timeout: float,
) -> requests.Response:
    """POST a form to the space's token endpoint, mapping transport failures."""
    url = token_endpoint(space)
    try:
        return session.post(url, data=form, timeout=timeout)
    except requests.RequestException as exc:
        raise TransportError(f"Token request to {url} failed: {exc}") from exc


class TokenRefresher:
    """Exchanges the stored refresh token for a new token pair and persists it."""

    def __init__(
        self,
        settings: Settings,
        store: TokenStore,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.session = session or requests.Session()
        self.logger = get_logger()

    def refresh(self) -> Credential:
        credential = self.store.load()
        if not credential.refresh_token:
            raise NoRefreshToken()
        if not self.settings.has_client_credentials:
            raise MissingClientCredentials()

        form = {
            "grant_type": "refresh_token",
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            "refresh_token": credential.refresh_token,
        }
        response = post_token_request(
            self.session, credential.space, form, timeout=self.settings.request_timeout
        )
        if response.status_code != HTTP_OK:
            self.logger.warning(
                "token refresh rejected", space=credential.space, status=response.status_code
            )
            raise RefreshRejected(response.status_code)

        token = parse_token_response(response.content)
        updated = replace(
            credential,
            access_token=token.access_token,
            refresh_token=token.refresh_token or credential.refresh_token,
            expires_at=token.expires_at(),
        )
        self.store.save(updated)
        self.logger.log_operation("token_refreshed", space=credential.space)
        return updated


__all__ = [
    "TokenResponse",
    "TokenRefresher",
    "parse_token_response",
    "post_token_request",
    "token_endpoint",
]
