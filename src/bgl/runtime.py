"""Runtime helpers for bgl CLI orchestration."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from .client import BacklogClient
from .config import Settings, get_config_path, load_settings
from .credentials import TokenStore
from .errors import BglError, Cancelled, redact
from .logging import get_logger
from .oauth import OAuthFlow
from .tokens import TokenRefresher
from .ux import print_error, print_info

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


class _HandlerCallable(Protocol):
    def __call__(self) -> Any: ...


@dataclass
class Services:
    """Shared wiring for one CLI invocation."""

    settings: Settings
    store: TokenStore
    session: requests.Session = field(default_factory=requests.Session)

    def refresher(self) -> TokenRefresher:
        return TokenRefresher(self.settings, self.store, session=self.session)

    def client(self) -> BacklogClient:
        return BacklogClient.create(
            self.store,
            self.refresher(),
            session=self.session,
            timeout=self.settings.request_timeout,
        )

    def oauth_flow(self, **kwargs: Any) -> OAuthFlow:
        return OAuthFlow(self.settings, self.store, session=self.session, **kwargs)


def prepare_services(
    *,
    loader: Callable[[], Settings] = load_settings,
    session: requests.Session | None = None,
) -> Services:
    settings = loader()
    store = TokenStore(get_config_path(settings.config_dir))
    if session is None:
        return Services(settings=settings, store=store)
    return Services(settings=settings, store=store, session=session)


def execute_command(handler: _HandlerCallable, command: str) -> int:
    """Run a command handler, translating bgl errors into exit codes."""
    logger = get_logger()
    start = time.monotonic()
    try:
        result = handler()
        exit_code = int(result) if result is not None else EXIT_OK
    except Cancelled as exc:
        print_info(str(exc))
        exit_code = EXIT_CANCELLED
    except BglError as exc:
        print_error(redact(str(exc)))
        exit_code = EXIT_FAILURE
    except KeyboardInterrupt:
        print_info("Cancelled.")
        exit_code = EXIT_CANCELLED
    duration = max(0.0, time.monotonic() - start)
    logger.log_performance(f"command_{command}", duration * 1000, exit_code=exit_code)
    return exit_code


__all__ = [
    "EXIT_CANCELLED",
    "EXIT_FAILURE",
    "EXIT_OK",
    "Services",
    "execute_command",
    "prepare_services",
]
