"""Exception types raised by the memory server."""
from __future__ import annotations

from typing import Optional


class MemoryServerError(Exception):
    """Base class for memory server failures."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class StoreUnavailableError(MemoryServerError):
    """The backing store could not be reached or rejected a command.

    Raised by :class:`memory_server.store.RedisStore` for every client-side
    failure. Never retried here; the HTTP layer maps it to a 503.
    """
