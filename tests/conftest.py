"""Pytest configuration for bgl tests.

Ensures the in-repo ``src`` directory is on ``sys.path`` so the package can be
imported without an editable install, isolates the credential directory per
test, and provides hand-written ``requests`` session doubles.
"""

from __future__ import annotations

import json
import socket
import sys
from pathlib import Path
from typing import Any

import pytest
from requests.structures import CaseInsensitiveDict

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from bgl.config import Settings  # noqa: E402
from bgl.credentials import Credential, TokenStore  # noqa: E402
from bgl.logging import configure_logging  # noqa: E402

SPACE = "acme.backlog.com"


class DummyResponse:
    def __init__(
        self,
        status_code: int,
        payload: Any = None,
        *,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self.payload = payload
        self.headers = CaseInsensitiveDict(headers or {})

    @property
    def text(self) -> str:
        if isinstance(self.payload, (dict, list)):
            return json.dumps(self.payload)
        if self.payload is None:
            return ""
        return str(self.payload)

    @property
    def content(self) -> bytes:
        return self.text.encode("utf-8")


class DummySession:
    """Queues responses for ``request`` (API calls) and ``post`` (token endpoint)."""

    def __init__(
        self,
        responses: list[Any] | None = None,
        token_responses: list[Any] | None = None,
    ) -> None:
        self.responses = list(responses or [])
        self.token_responses = list(token_responses or [])
        self.request_log: list[tuple[str, str, dict[str, Any]]] = []
        self.post_log: list[tuple[str, dict[str, str], float | None]] = []
        self.headers: dict[str, str] = {}

    def request(
        self,
        method: str,
        url: str,
        *,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> DummyResponse:
        self.request_log.append(
            (method, url, {"data": data, "headers": dict(headers or {}), "timeout": timeout})
        )
        if not self.responses:
            raise AssertionError("No response queued for request")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def post(
        self,
        url: str,
        *,
        data: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> DummyResponse:
        self.post_log.append((url, dict(data or {}), timeout))
        if not self.token_responses:
            raise AssertionError("No token response queued")
        item = self.token_responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def token_payload(access: str = "new-access", refresh: str = "new-refresh", expires_in: int = 3600) -> dict[str, Any]:
    return {
        "access_token": access,
        "token_type": "Bearer",
        "expires_in": expires_in,
        "refresh_token": refresh,
    }


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BGL_CONFIG_DIR", str(tmp_path / "config"))
    for var in (
        "BACKLOG_CLIENT_ID",
        "BACKLOG_CLIENT_SECRET",
        "BGL_CALLBACK_PORT",
        "BGL_LOG_JSON",
        "BGL_LOG_LEVEL",
        "XDG_CONFIG_HOME",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    configure_logging()


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


@pytest.fixture
def settings(free_port: int) -> Settings:
    return Settings(
        client_id="client-id",
        client_secret="client-secret",
        callback_port=free_port,
        login_timeout=5.0,
        request_timeout=30.0,
    )


@pytest.fixture
def store(tmp_path: Path) -> TokenStore:
    return TokenStore(tmp_path / "config" / "config.json")


@pytest.fixture
def logged_in(store: TokenStore) -> Credential:
    credential = Credential(
        space=SPACE,
        access_token="old-access",
        refresh_token="old-refresh",
        expires_at=0,
    )
    store.save(credential)
    return credential
