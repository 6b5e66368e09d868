from __future__ import annotations

import time
from collections.abc import Mapping
from urllib.parse import quote

import requests

from .config import DEFAULT_REQUEST_TIMEOUT
from .credentials import Credential, TokenStore
from .errors import (
    ApiRequestFailed,
    AuthenticationFailed,
    BglError,
    InvalidToken,
    NotAuthenticated,
    TokenRefreshFailed,
    TransportError,
)
from .logging import get_logger
from .tokens import TokenRefresher

USER_AGENT = "bgl/0.1.0"
HTTP_UNAUTHORIZED = 401

EXPIRED_CHALLENGE = "The access token expired"
INVALID_CHALLENGE = "The access token is invalid"

# One refresh-and-retry per request, never more.
MAX_AUTH_RETRIES = 1

_SUCCESS_STATUSES: dict[str, tuple[int, ...]] = {
    "GET": (200,),
    "POST": (200, 201),
    "PATCH": (200,),
}


def _segment(value: str | int) -> str:
    return quote(str(value), safe="")


class BacklogClient:
    """Authenticated Backlog REST client with a single refresh-and-retry on expiry."""

    def __init__(
        self,
        credential: Credential,
        store: TokenStore,
        refresher: TokenRefresher,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self._credential = credential
        self._store = store
        self._refresher = refresher
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)
        self._session.headers.setdefault("Accept", "application/json")
        self.timeout = timeout
        self.logger = get_logger()

    @classmethod
    def create(
        cls,
        store: TokenStore,
        refresher: TokenRefresher,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> BacklogClient:
        """Load credentials, refreshing them first when the stored expiry has passed."""
        credential = store.load()
        if not credential.is_authenticated:
            raise NotAuthenticated()
        if credential.is_expired():
            get_logger().log_operation("token_expired_on_startup", space=credential.space)
            credential = cls._refresh_and_reload(store, refresher)
        return cls(credential, store, refresher, session=session, timeout=timeout)

    @property
    def space(self) -> str:
        return self._credential.space

    @staticmethod
    def _refresh_and_reload(store: TokenStore, refresher: TokenRefresher) -> Credential:
        try:
            refresher.refresh()
        except BglError as exc:
            raise TokenRefreshFailed(exc) from exc
        return store.load()

    # ---- transport ----------------------------------------------------
    def _send(
        self, method: str, path: str, data: Mapping[str, str] | None
    ) -> requests.Response:
        url = f"https://{self._credential.space}{path}"
        headers = {"Authorization": f"Bearer {self._credential.access_token}"}
        start = time.perf_counter()
        try:
            response = self._session.request(
                method,
                url,
                data=dict(data) if data is not None else None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc
        self.logger.log_request(
            method, path, response.status_code, (time.perf_counter() - start) * 1000
        )
        return response

    def request(
        self, method: str, path: str, data: Mapping[str, str] | None = None
    ) -> bytes:
        """Issue ``method path`` and return the raw response body.

        ``data`` is sent form-encoded. A 401 whose challenge reports an expired
        token triggers one refresh and one retry of the identical request.
        """
        method = method.upper()
        for attempt in range(MAX_AUTH_RETRIES + 1):
            response = self._send(method, path, data)
            if response.status_code != HTTP_UNAUTHORIZED:
                return self._check_status(method, response)

            challenge = response.headers.get("WWW-Authenticate", "")
            if EXPIRED_CHALLENGE in challenge:
                if attempt >= MAX_AUTH_RETRIES:
                    raise AuthenticationFailed(
                        response.status_code, "access token still expired after refresh"
                    )
                self.logger.log_operation("token_expired", method=method, path=path)
                self._credential = self._refresh_and_reload(self._store, self._refresher)
                continue
            if INVALID_CHALLENGE in challenge:
                raise InvalidToken()
            raise AuthenticationFailed(response.status_code)
        raise AssertionError("unreachable: retry loop always returns or raises")

    @staticmethod
    def _check_status(method: str, response: requests.Response) -> bytes:
        allowed = _SUCCESS_STATUSES.get(method, (200,))
        if response.status_code not in allowed:
            raise ApiRequestFailed(response.status_code, response.text)
        return response.content

    # ---- issues -------------------------------------------------------
    def get_issue(self, issue_key: str) -> bytes:
        return self.request("GET", f"/api/v2/issues/{_segment(issue_key)}")

    def update_issue(self, issue_key: str, fields: Mapping[str, str]) -> bytes:
        return self.request("PATCH", f"/api/v2/issues/{_segment(issue_key)}", data=fields)

    def update_issue_status(self, issue_key: str, status_id: str | int) -> bytes:
        return self.update_issue(issue_key, {"statusId": str(status_id)})

    # ---- comments -----------------------------------------------------
    def get_comments(self, issue_key: str) -> bytes:
        return self.request("GET", f"/api/v2/issues/{_segment(issue_key)}/comments")

    def get_comment(self, issue_key: str, comment_id: str | int) -> bytes:
        return self.request(
            "GET", f"/api/v2/issues/{_segment(issue_key)}/comments/{_segment(comment_id)}"
        )

    def add_comment(self, issue_key: str, content: str) -> bytes:
        return self.request(
            "POST", f"/api/v2/issues/{_segment(issue_key)}/comments", data={"content": content}
        )

    # ---- projects -----------------------------------------------------
    def get_project_statuses(self, project_key: str) -> bytes:
        return self.request("GET", f"/api/v2/projects/{_segment(project_key)}/statuses")

    def comment_url(self, issue_key: str, comment_id: int) -> str:
        return f"https://{self.space}/view/{issue_key}#comment-{comment_id}"


__all__ = [
    "BacklogClient",
    "EXPIRED_CHALLENGE",
    "INVALID_CHALLENGE",
    "MAX_AUTH_RETRIES",
]
