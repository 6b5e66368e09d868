"""bgl - command line client for the Backlog issue tracker.

High-level public API:

from bgl import BacklogClient, TokenRefresher, TokenStore, load_settings

settings = load_settings()
store = TokenStore()
client = BacklogClient.create(store, TokenRefresher(settings, store))
issue_json = client.get_issue("PROJ-1")

The ``bgl`` console script wraps the same objects (see :mod:`bgl.cli`).
"""

from __future__ import annotations

__version__ = "0.1.0"

from .client import BacklogClient
from .config import Settings, load_settings
from .credentials import Credential, TokenStore
from .oauth import OAuthFlow, logout, validate_space
from .tokens import TokenRefresher

__all__ = [
    "BacklogClient",
    "Credential",
    "OAuthFlow",
    "Settings",
    "TokenRefresher",
    "TokenStore",
    "load_settings",
    "logout",
    "validate_space",
    "__version__",
]
