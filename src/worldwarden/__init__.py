"""
worldwarden - access control for collaborative world-building.
"""

from .config import AccessPolicyConfig, load_config
from .engine import AccessEngine
from .errors import AccessError, ForbiddenError, InvalidRequestError, NotFoundError
from .models import *
from .repository import AccessRepository, InMemoryRepository
from .sqlite_store import SqliteRepository

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("worldwarden")
except Exception:
    __version__ = "0.1.0"  # Fallback if metadata unavailable
__all__ = [
    "AccessEngine",
    "AccessError",
    "AccessPolicyConfig",
    "AccessRepository",
    "ForbiddenError",
    "InMemoryRepository",
    "InvalidRequestError",
    "NotFoundError",
    "SqliteRepository",
    "load_config",
]
