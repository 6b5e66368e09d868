"""Runtime settings for bgl.

OAuth client credentials are never baked into the package: they are read
from the environment (optionally seeded from a ``.env`` file) and handed to
the OAuth flow and token refresher as an explicit :class:`Settings` value.

Environment variables:
  BACKLOG_CLIENT_ID       OAuth client id
  BACKLOG_CLIENT_SECRET   OAuth client secret
  BGL_CALLBACK_PORT       loopback redirect port (default 18765)
  BGL_CONFIG_DIR          credential directory override
  XDG_CONFIG_HOME         base for the default credential directory
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigError
from .logging import get_logger

APP_NAME = "bgl"
CONFIG_FILE_NAME = "config.json"
DEFAULT_CALLBACK_PORT = 18765
DEFAULT_LOGIN_TIMEOUT = 300.0
DEFAULT_REQUEST_TIMEOUT = 30.0

CLIENT_ID_VAR = "BACKLOG_CLIENT_ID"
CLIENT_SECRET_VAR = "BACKLOG_CLIENT_SECRET"
_DOTENV_LOCATIONS = (".env", ".env.local")


@dataclass(frozen=True)
class Settings:
    """Explicit configuration injected into the OAuth flow, refresher and client."""

    client_id: str = ""
    client_secret: str = ""
    callback_port: int = DEFAULT_CALLBACK_PORT
    login_timeout: float = DEFAULT_LOGIN_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    config_dir: Path | None = None

    @property
    def has_client_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self.callback_port}"


def get_config_dir() -> Path:
    """Return the credential directory.

    ``$BGL_CONFIG_DIR`` wins, then ``$XDG_CONFIG_HOME/bgl``, then ``~/.config/bgl``.
    """
    override = os.environ.get("BGL_CONFIG_DIR")
    if override:
        return Path(override)
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_NAME
    return Path.home() / ".config" / APP_NAME


def get_config_path(config_dir: Path | None = None) -> Path:
    return (config_dir or get_config_dir()) / CONFIG_FILE_NAME


def _load_dotenv(dotenv_path: str | None) -> bool:
    logger = get_logger()
    candidates = [dotenv_path] if dotenv_path else list(_DOTENV_LOCATIONS)
    for location in candidates:
        env_file = Path(location)
        if env_file.exists():
            load_dotenv(str(env_file), override=False)
            logger.debug(f"Loaded environment variables from {env_file}")
            return True
    return False


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if not 0 < value < 65536:
        raise ConfigError(f"{name} must be a valid TCP port, got {value}")
    return value


def load_settings(*, dotenv: bool = True, dotenv_path: str | None = None) -> Settings:
    """Build :class:`Settings` from the environment (and ``.env`` when present)."""
    if dotenv:
        _load_dotenv(dotenv_path)
    config_dir_override = os.environ.get("BGL_CONFIG_DIR")
    return Settings(
        client_id=os.environ.get(CLIENT_ID_VAR, "").strip(),
        client_secret=os.environ.get(CLIENT_SECRET_VAR, "").strip(),
        callback_port=_int_env("BGL_CALLBACK_PORT", DEFAULT_CALLBACK_PORT),
        config_dir=Path(config_dir_override) if config_dir_override else None,
    )


__all__ = [
    "APP_NAME",
    "CONFIG_FILE_NAME",
    "DEFAULT_CALLBACK_PORT",
    "DEFAULT_LOGIN_TIMEOUT",
    "DEFAULT_REQUEST_TIMEOUT",
    "Settings",
    "get_config_dir",
    "get_config_path",
    "load_settings",
]
