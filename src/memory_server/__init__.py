"""Session memory server: sliding-window conversation memory on Redis.

This package provides a FastAPI application factory named ``create_app``
(see :func:`memory_server.server.create_app`) and the pieces it is built
from, usable without the HTTP layer.

Typical usage
-------------
from memory_server import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8080
"""

from __future__ import annotations

from .compaction import Compactor, WindowCompactor, spawn_compaction
from .errors import MemoryServerError, StoreUnavailableError
from .models import MemoryMessage
from .registry import SessionCleanupRegistry
from .server import create_app
from .service import MemoryService
from .store import RedisStore

__all__ = [
    "create_app",
    "Compactor",
    "MemoryMessage",
    "MemoryServerError",
    "MemoryService",
    "RedisStore",
    "SessionCleanupRegistry",
    "StoreUnavailableError",
    "WindowCompactor",
    "spawn_compaction",
    "__version__",
    "get_version",
]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__
