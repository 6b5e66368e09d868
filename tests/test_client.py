from __future__ import annotations

import pytest
import requests

from bgl.client import BacklogClient
from bgl.config import Settings
from bgl.credentials import Credential, TokenStore
from bgl.errors import (
    ApiRequestFailed,
    AuthenticationFailed,
    InvalidToken,
    NotAuthenticated,
    RefreshRejected,
    TokenRefreshFailed,
    TransportError,
)
from bgl.tokens import TokenRefresher
from conftest import SPACE, DummyResponse, DummySession, token_payload

EXPIRED = {"WWW-Authenticate": 'Bearer error="invalid_token", error_description="The access token expired"'}
INVALID = {"WWW-Authenticate": 'Bearer error="invalid_token", error_description="The access token is invalid"'}
ISSUE = {"summary": "Fix it", "description": "", "projectId": 7}


def _client(settings: Settings, store: TokenStore, session: DummySession) -> BacklogClient:
    refresher = TokenRefresher(settings, store, session=session)  # type: ignore[arg-type]
    return BacklogClient.create(store, refresher, session=session, timeout=settings.request_timeout)  # type: ignore[arg-type]


# ---- construction ----------------------------------------------------------------------
def test_create_without_tokens_is_not_authenticated(settings: Settings, store: TokenStore) -> None:
    store.save(Credential(space=SPACE, access_token="", refresh_token=""))

    with pytest.raises(NotAuthenticated):
        _client(settings, store, DummySession())


def test_create_with_no_config_file_is_not_authenticated(settings: Settings, store: TokenStore) -> None:
    with pytest.raises(NotAuthenticated):
        _client(settings, store, DummySession())


def test_create_refreshes_expired_token(settings: Settings, store: TokenStore) -> None:
    store.save(Credential(space=SPACE, access_token="stale", refresh_token="old-refresh", expires_at=1))
    session = DummySession(
        responses=[DummyResponse(200, ISSUE)],
        token_responses=[DummyResponse(200, token_payload(access="fresh"))],
    )

    client = _client(settings, store, session)
    client.get_issue("PROJ-1")

    persisted = store.load()
    assert persisted.access_token == "fresh"
    assert persisted.access_token != "stale"
    assert len(session.post_log) == 1
    assert session.request_log[0][2]["headers"]["Authorization"] == "Bearer fresh"


def test_create_does_not_refresh_without_expiry(settings: Settings, store: TokenStore, logged_in: Credential) -> None:
    session = DummySession()

    client = _client(settings, store, session)

    assert client.space == SPACE
    assert session.post_log == []


def test_create_fails_when_refresh_fails(settings: Settings, store: TokenStore) -> None:
    store.save(Credential(space=SPACE, access_token="stale", refresh_token="r", expires_at=1))
    session = DummySession(token_responses=[DummyResponse(500, "boom")])

    with pytest.raises(TokenRefreshFailed) as excinfo:
        _client(settings, store, session)
    assert isinstance(excinfo.value.__cause__, RefreshRejected)


# ---- request classification -------------------------------------------------------------
def test_request_sends_bearer_token_and_timeout(settings: Settings, store: TokenStore, logged_in: Credential) -> None:
    session = DummySession(responses=[DummyResponse(200, ISSUE)])

    body = _client(settings, store, session).get_issue("PROJ-1")

    method, url, kw = session.request_log[0]
    assert (method, url) == ("GET", f"https://{SPACE}/api/v2/issues/PROJ-1")
    assert kw["headers"]["Authorization"] == "Bearer old-access"
    assert kw["timeout"] == 30.0
    assert body == DummyResponse(200, ISSUE).content


def test_expired_token_is_refreshed_and_request_retried_once(
    settings: Settings, store: TokenStore, logged_in: Credential
) -> None:
    session = DummySession(
        responses=[DummyResponse(401, "", headers=EXPIRED), DummyResponse(200, ISSUE)],
        token_responses=[DummyResponse(200, token_payload(access="fresh"))],
    )

    body = _client(settings, store, session).get_issue("PROJ-1")

    assert body == DummyResponse(200, ISSUE).content
    assert len(session.post_log) == 1
    assert len(session.request_log) == 2
    assert session.request_log[1][2]["headers"]["Authorization"] == "Bearer fresh"
    assert session.request_log[0][1] == session.request_log[1][1]
    assert store.load().access_token == "fresh"


def test_retry_is_capped_at_one(settings: Settings, store: TokenStore, logged_in: Credential) -> None:
    session = DummySession(
        responses=[DummyResponse(401, "", headers=EXPIRED) for _ in range(5)],
        token_responses=[DummyResponse(200, token_payload(access=f"fresh-{i}")) for i in range(5)],
    )

    with pytest.raises(AuthenticationFailed):
        _client(settings, store, session).get_issue("PROJ-1")

    assert len(session.request_log) == 2
    assert len(session.post_log) == 1


def test_retry_repeats_identical_form_body(settings: Settings, store: TokenStore, logged_in: Credential) -> None:
    session = DummySession(
        responses=[DummyResponse(401, "", headers=EXPIRED), DummyResponse(201, {"id": 9})],
        token_responses=[DummyResponse(200, token_payload())],
    )

    _client(settings, store, session).add_comment("PROJ-1", "hello")

    first, second = session.request_log
    assert first[0] == second[0] == "POST"
    assert first[2]["data"] == second[2]["data"] == {"content": "hello"}


def test_refresh_failure_during_retry(settings: Settings, store: TokenStore, logged_in: Credential) -> None:
    session = DummySession(
        responses=[DummyResponse(401, "", headers=EXPIRED)],
        token_responses=[DummyResponse(400, "bad refresh")],
    )

    with pytest.raises(TokenRefreshFailed):
        _client(settings, store, session).get_issue("PROJ-1")
    assert len(session.request_log) == 1


def test_invalid_token_is_not_refreshed(settings: Settings, store: TokenStore, logged_in: Credential) -> None:
    session = DummySession(responses=[DummyResponse(401, "", headers=INVALID)])

    with pytest.raises(InvalidToken):
        _client(settings, store, session).get_issue("PROJ-1")
    assert session.post_log == []


@pytest.mark.parametrize("headers", [{}, {"WWW-Authenticate": 'Bearer realm="backlog"'}])
def test_unrecognized_challenge_fails_closed(
    settings: Settings, store: TokenStore, logged_in: Credential, headers: dict[str, str]
) -> None:
    session = DummySession(responses=[DummyResponse(401, "", headers=headers)])

    with pytest.raises(AuthenticationFailed) as excinfo:
        _client(settings, store, session).get_issue("PROJ-1")
    assert excinfo.value.status == 401
    assert session.post_log == []


def test_other_errors_include_status_and_body(settings: Settings, store: TokenStore, logged_in: Credential) -> None:
    session = DummySession(responses=[DummyResponse(404, {"errors": [{"message": "No issue"}]})])

    with pytest.raises(ApiRequestFailed) as excinfo:
        _client(settings, store, session).get_issue("NOPE-1")
    assert excinfo.value.status == 404
    assert "No issue" in excinfo.value.body


@pytest.mark.parametrize(
    "method, status, ok",
    [("GET", 200, True), ("GET", 201, False), ("POST", 201, True), ("POST", 200, True), ("PATCH", 200, True), ("PATCH", 204, False)],
)
def test_success_statuses_per_method(
    settings: Settings, store: TokenStore, logged_in: Credential, method: str, status: int, ok: bool
) -> None:
    session = DummySession(responses=[DummyResponse(status, {"ok": True})])
    client = _client(settings, store, session)

    if ok:
        assert client.request(method, "/api/v2/anything") == DummyResponse(status, {"ok": True}).content
    else:
        with pytest.raises(ApiRequestFailed):
            client.request(method, "/api/v2/anything")


def test_transport_errors_are_not_retried(settings: Settings, store: TokenStore, logged_in: Credential) -> None:
    session = DummySession(responses=[requests.ConnectTimeout("slow"), DummyResponse(200, ISSUE)])

    with pytest.raises(TransportError):
        _client(settings, store, session).get_issue("PROJ-1")
    assert len(session.request_log) == 1


# ---- endpoints ----------------------------------------------------------------------------
def test_endpoint_paths(settings: Settings, store: TokenStore, logged_in: Credential) -> None:
    session = DummySession(responses=[DummyResponse(200, []) for _ in range(4)] + [DummyResponse(200, ISSUE)])
    client = _client(settings, store, session)

    client.get_comments("PROJ-1")
    client.get_comment("PROJ-1", 42)
    client.get_project_statuses("PROJ")
    client.get_issue("PROJ/../1")
    client.update_issue_status("PROJ-1", 3)

    calls = [(m, u.removeprefix(f"https://{SPACE}"), kw["data"]) for m, u, kw in session.request_log]
    assert calls == [
        ("GET", "/api/v2/issues/PROJ-1/comments", None),
        ("GET", "/api/v2/issues/PROJ-1/comments/42", None),
        ("GET", "/api/v2/projects/PROJ/statuses", None),
        ("GET", "/api/v2/issues/PROJ%2F..%2F1", None),
        ("PATCH", "/api/v2/issues/PROJ-1", {"statusId": "3"}),
    ]


def test_comment_url(settings: Settings, store: TokenStore, logged_in: Credential) -> None:
    client = _client(settings, store, DummySession())

    assert client.comment_url("PROJ-1", 12) == f"https://{SPACE}/view/PROJ-1#comment-12"
