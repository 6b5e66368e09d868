"""OAuth 2.0 authorization-code login for Backlog.

The flow binds a loopback HTTP listener on a fixed port, sends the user to the
space's authorization page and waits for exactly one outcome:

- the redirect arrives with the expected ``state`` and a ``code``
- the redirect arrives but fails validation (state mismatch / missing code)
- the login window times out
- the user cancels (Ctrl+C or :meth:`OAuthFlow.cancel`)

Outcomes are delivered through a single-slot :class:`ResultSlot`; the first
offer wins and later ones are dropped. The listener is shut down on every
exit path before the result is acted upon.

The redirect URI names ``localhost``, so the listener binds both loopback
addresses (``127.0.0.1`` and ``::1``); the IPv6 one is skipped on hosts
without IPv6. Each connection is served on its own thread with a read
timeout, so an idle browser preconnect can neither hold back the real
redirect nor delay shutdown.
"""

from __future__ import annotations

import errno
import hmac
import secrets
import socket
import threading
import webbrowser
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager, nullcontext
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from types import TracebackType
from typing import Union
from urllib.parse import parse_qs, urlencode, urlsplit

import requests

from .config import Settings
from .credentials import Credential, TokenStore
from .errors import (
    AuthenticationTimeout,
    AuthError,
    CallbackPortUnavailable,
    Cancelled,
    InvalidSpaceFormat,
    MissingAuthorizationCode,
    MissingClientCredentials,
    NotAuthenticated,
    StateMismatch,
    TokenExchangeFailed,
)
from .logging import get_logger
from .tokens import HTTP_OK, TokenResponse, parse_token_response, post_token_request

SPACE_SUFFIXES = (".backlog.com", ".backlog.jp")
AUTHORIZE_PATH = "/OAuth2AccessRequest.action"
CALLBACK_HOSTS = ("127.0.0.1", "::1")
# Seconds a connection may sit silent before its handler thread gives up.
CALLBACK_READ_TIMEOUT = 5.0

SUCCESS_PAGE = (
    b"<html><body><h1>Login successful!</h1>"
    b"<p>You can close this window.</p></body></html>"
)


def validate_space(space: str) -> str:
    """Return ``space`` unchanged if it ends in a Backlog domain suffix."""
    if not space or not space.endswith(SPACE_SUFFIXES):
        raise InvalidSpaceFormat(space)
    return space


def generate_state() -> str:
    return secrets.token_hex(16)


def build_authorization_url(space: str, client_id: str, redirect_uri: str, state: str) -> str:
    query = urlencode(
        {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "state": state,
        }
    )
    return f"https://{space}{AUTHORIZE_PATH}?{query}"


# ---- callback outcomes -------------------------------------------------------
@dataclass(frozen=True)
class Succeeded:
    code: str


@dataclass(frozen=True)
class Failed:
    error: AuthError


@dataclass(frozen=True)
class Interrupted:
    reason: str = "Cancelled by user"


CallbackOutcome = Union[Succeeded, Failed, Interrupted]


class ResultSlot:
    """Single-shot result holder: the first :meth:`offer` wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._outcome: CallbackOutcome | None = None

    def offer(self, outcome: CallbackOutcome) -> bool:
        with self._lock:
            if self._outcome is not None:
                return False
            self._outcome = outcome
        self._ready.set()
        return True

    @property
    def outcome(self) -> CallbackOutcome | None:
        return self._outcome

    def wait(self, poll_interval: float = 0.2) -> CallbackOutcome:
        # Short polls keep the main thread responsive to KeyboardInterrupt.
        while not self._ready.wait(poll_interval):
            pass
        assert self._outcome is not None
        return self._outcome


# ---- loopback listener ---------------------------------------------------------
class _CallbackServer(ThreadingHTTPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, address: tuple[str, int], expected_state: str, slot: ResultSlot) -> None:
        self.address_family = socket.AF_INET6 if ":" in address[0] else socket.AF_INET
        self.expected_state = expected_state
        self.slot = slot
        super().__init__(address, _CallbackHandler)


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer
    timeout = CALLBACK_READ_TIMEOUT

    def do_GET(self) -> None:  # noqa: N802
        parts = urlsplit(self.path)
        if parts.path != "/":
            self._reply(404, b"Not found", "text/plain; charset=utf-8")
            return
        params = parse_qs(parts.query)
        state = params.get("state", [""])[0]
        code = params.get("code", [""])[0]

        if not hmac.compare_digest(state.encode(), self.server.expected_state.encode()):
            self.server.slot.offer(Failed(StateMismatch()))
            self._reply(400, b"State mismatch", "text/plain; charset=utf-8")
            return
        if not code:
            self.server.slot.offer(Failed(MissingAuthorizationCode()))
            self._reply(400, b"No authorization code", "text/plain; charset=utf-8")
            return

        self._reply(200, SUCCESS_PAGE, "text/html; charset=utf-8")
        self.server.slot.offer(Succeeded(code))

    def _reply(self, status: int, body: bytes, content_type: str) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        get_logger().debug("callback server: " + (format % args))


class CallbackListener:
    """Scoped loopback HTTP servers, one per host; shut down unconditionally on exit.

    The first host is required. Later hosts are best effort: an address family
    the machine lacks is skipped, but a port already taken there still fails.
    """

    def __init__(
        self,
        port: int,
        expected_state: str,
        slot: ResultSlot,
        *,
        hosts: tuple[str, ...] = CALLBACK_HOSTS,
    ) -> None:
        self.port = port
        self.hosts = hosts
        self.expected_state = expected_state
        self.slot = slot
        self._servers: list[_CallbackServer] = []
        self._threads: list[threading.Thread] = []

    @property
    def bound_hosts(self) -> list[str]:
        return [str(server.server_address[0]) for server in self._servers]

    def __enter__(self) -> CallbackListener:
        logger = get_logger()
        for host in self.hosts:
            try:
                self._servers.append(_CallbackServer((host, self.port), self.expected_state, self.slot))
            except OSError as exc:
                if self._servers and exc.errno != errno.EADDRINUSE:
                    logger.debug(f"callback listener skipped {host}: {exc}")
                    continue
                self._close_servers()
                raise CallbackPortUnavailable(self.port, exc.strerror or str(exc)) from exc
        for server in self._servers:
            thread = threading.Thread(
                target=server.serve_forever,
                kwargs={"poll_interval": 0.1},
                name="bgl-oauth-callback",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        logger.debug(f"callback listener bound to {', '.join(self.bound_hosts)} port {self.port}")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        for server in self._servers:
            server.shutdown()
        self._close_servers()
        get_logger().debug(f"callback listener on port {self.port} closed")

    def _close_servers(self) -> None:
        servers, threads = self._servers, self._threads
        self._servers = []
        self._threads = []
        for server in servers:
            server.server_close()
        for thread in threads:
            thread.join(timeout=5)


@contextmanager
def _deadline(slot: ResultSlot, seconds: float) -> Iterator[None]:
    timer = threading.Timer(seconds, lambda: slot.offer(Failed(AuthenticationTimeout(seconds))))
    timer.daemon = True
    timer.start()
    try:
        yield
    finally:
        timer.cancel()


def await_callback(slot: ResultSlot) -> CallbackOutcome:
    """Block until the slot is filled; Ctrl+C counts as cancellation."""
    try:
        return slot.wait()
    except KeyboardInterrupt:
        slot.offer(Interrupted())
        outcome = slot.outcome
        assert outcome is not None
        return outcome


def outcome_code(outcome: CallbackOutcome) -> str:
    if isinstance(outcome, Succeeded):
        return outcome.code
    if isinstance(outcome, Failed):
        raise outcome.error
    raise Cancelled(outcome.reason)


# ---- flow ---------------------------------------------------------------------
class OAuthFlow:
    """Drive one authorization-code login and persist the resulting tokens."""

    def __init__(
        self,
        settings: Settings,
        store: TokenStore,
        *,
        session: requests.Session | None = None,
        notify: Callable[[str], None] | None = None,
        browser_opener: Callable[[str], object] = webbrowser.open,
        waiting: Callable[[], AbstractContextManager[object]] = nullcontext,
        warn: Callable[[str], None] | None = None,
        hosts: tuple[str, ...] = CALLBACK_HOSTS,
    ) -> None:
        self.settings = settings
        self.store = store
        self.session = session or requests.Session()
        self.notify = notify or (lambda message: None)
        self.warn = warn or self.notify
        self.browser_opener = browser_opener
        self.waiting = waiting
        self.hosts = hosts
        self.logger = get_logger()
        self._slot: ResultSlot | None = None

    def cancel(self) -> bool:
        """Cancel an in-flight login; returns False when nothing was waiting."""
        slot = self._slot
        if slot is None:
            return False
        return slot.offer(Interrupted())

    def login(self, space: str) -> Credential:
        validate_space(space)
        if not self.settings.has_client_credentials:
            raise MissingClientCredentials()

        state = generate_state()
        redirect_uri = self.settings.redirect_uri
        auth_url = build_authorization_url(space, self.settings.client_id, redirect_uri, state)
        slot = ResultSlot()

        with self.logger.timed_operation("oauth_login", space=space):
            self._slot = slot
            try:
                with CallbackListener(self.settings.callback_port, state, slot, hosts=self.hosts):
                    with _deadline(slot, self.settings.login_timeout):
                        self.notify(
                            "Opening browser for authentication...\n"
                            f"If browser doesn't open automatically, please visit:\n{auth_url}"
                        )
                        self._open_browser(auth_url)
                        with self.waiting():
                            outcome = await_callback(slot)
            finally:
                self._slot = None

            code = outcome_code(outcome)
            token = self._exchange_code(space, code, redirect_uri)
            credential = Credential(
                space=space,
                access_token=token.access_token,
                refresh_token=token.refresh_token,
                expires_at=token.expires_at(),
            )
            self.store.save(credential)
        return credential

    def _open_browser(self, url: str) -> None:
        try:
            opened = self.browser_opener(url)
        except Exception as exc:  # noqa: BLE001 - any browser failure is non-fatal
            self.warn(f"Failed to open browser: {exc}")
            return
        if opened is False:
            self.logger.debug("no browser available; waiting for manual visit")

    def _exchange_code(self, space: str, code: str, redirect_uri: str) -> TokenResponse:
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
        }
        response = post_token_request(
            self.session, space, form, timeout=self.settings.request_timeout
        )
        if response.status_code != HTTP_OK:
            raise TokenExchangeFailed(response.status_code)
        return parse_token_response(response.content)


def logout(store: TokenStore) -> Credential:
    """Drop stored tokens while keeping the space for the next login."""
    credential = store.load()
    if not credential.access_token and not credential.refresh_token:
        raise NotAuthenticated("Not logged in")
    cleared = credential.cleared()
    store.save(cleared)
    get_logger().log_operation("logout", space=credential.space)
    return cleared


__all__ = [
    "SPACE_SUFFIXES",
    "CallbackListener",
    "CallbackOutcome",
    "Failed",
    "Interrupted",
    "OAuthFlow",
    "ResultSlot",
    "Succeeded",
    "await_callback",
    "build_authorization_url",
    "generate_state",
    "logout",
    "outcome_code",
    "validate_space",
]
