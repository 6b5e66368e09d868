"""File-based credential persistence.

The credential file lives at ``<config dir>/config.json`` and is written with
owner-only permissions. A missing file is a valid "logged out" state.
"""

from __future__ import annotations

import json
import os
import stat
import time
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

from .config import get_config_path
from .errors import ConfigLoadError, ConfigPersistError
from .logging import get_logger

_DIR_MODE = stat.S_IRWXU
_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Credential:
    """Persisted login state for one Backlog space."""

    space: str = ""
    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0  # epoch milliseconds, 0 = unknown

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    def is_expired(self, now_ms: int | None = None) -> bool:
        if self.expires_at <= 0:
            return False
        current = now_millis() if now_ms is None else now_ms
        return current >= self.expires_at

    def cleared(self) -> Credential:
        return replace(self, access_token="", refresh_token="", expires_at=0)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Credential:
        def _str(key: str) -> str:
            value = raw.get(key)
            return value if isinstance(value, str) else ""

        expires = raw.get("expires_at")
        return cls(
            space=_str("space"),
            access_token=_str("access_token"),
            refresh_token=_str("refresh_token"),
            expires_at=int(expires) if isinstance(expires, (int, float)) else 0,
        )


class TokenStore:
    """Loads and saves the :class:`Credential` JSON document."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path or get_config_path()

    def load(self) -> Credential:
        path = self.path
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Credential()
        except OSError as exc:
            raise ConfigLoadError(f"Failed to read config {path}: {exc}") from exc
        try:
            raw = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as exc:
            raise ConfigLoadError(f"Failed to parse config {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigLoadError(f"Config {path} must contain a JSON object")
        return Credential.from_dict(raw)

    def save(self, credential: Credential) -> None:
        path = self.path
        try:
            path.parent.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(credential.to_dict(), fh, indent=2)
            os.chmod(path, _FILE_MODE)
        except OSError as exc:
            raise ConfigPersistError(f"Failed to save config {path}: {exc}") from exc
        get_logger().log_operation("credentials_saved", space=credential.space)


__all__ = ["Credential", "TokenStore", "now_millis"]
