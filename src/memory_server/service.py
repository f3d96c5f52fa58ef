"""Per-session sliding-window memory over the Redis store."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence, Set

from . import codec
from .compaction import Compactor, spawn_compaction
from .models import MAX_DELETE_COUNT, MemoryMessage, MemoryResponse
from .registry import SessionCleanupRegistry
from .store import RedisStore, context_key

logger = logging.getLogger(__name__)


class MemoryService:
    """Read, append, delete and verified-trim of session memory.

    Appends that push a session's list past ``window_size`` hand off to a
    background compaction, at most one per session at a time (see
    :class:`SessionCleanupRegistry`). Nothing is cached between calls.
    """

    def __init__(
        self,
        store: RedisStore,
        *,
        window_size: int,
        registry: Optional[SessionCleanupRegistry] = None,
        compactor: Optional[Compactor] = None,
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self.store = store
        self.window_size = int(window_size)
        self.registry = registry if registry is not None else SessionCleanupRegistry()
        self.compactor = compactor
        # Strong refs so detached tasks are not collected mid-flight.
        self._tasks: Set["asyncio.Task[None]"] = set()

    # --------- core API ----------
    async def read(self, session_id: str) -> MemoryResponse:
        """Newest-first window (``window_size + 1`` lines at most) plus context.

        An unknown session is an empty result, not an error.
        """
        lines, context = await self.store.read_window(
            session_id, 0, self.window_size, context_key(session_id)
        )
        return MemoryResponse(messages=codec.decode_many(lines), context=context)

    async def append(self, session_id: str, messages: Sequence[MemoryMessage]) -> int:
        """Push ``messages`` as one batch; return the new list length (0 if empty)."""
        if not messages:
            return 0
        length = await self.store.push(session_id, [codec.encode(m) for m in messages])

        if length > self.window_size and self.compactor is not None:
            if await self.registry.try_admit(session_id):
                task = spawn_compaction(session_id, self.registry, self.store, self.compactor)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                logger.info(
                    "Session %s at %d messages (window %d); compaction scheduled",
                    session_id, length, self.window_size,
                )
        return length

    async def delete(self, session_id: str) -> None:
        removed = await self.store.delete_keys([session_id, context_key(session_id)])
        logger.info("Deleted memory for session %s (%d keys)", session_id, removed)

    async def delete_last(self, session_id: str, count: int, expected_text: str) -> bool:
        """Drop the ``count`` newest messages if the newest one matches ``expected_text``.

        Returns False, leaving the list untouched, when the list is empty or
        the newest entry's content differs (or cannot be decoded). This guards
        a retried delete from removing messages that arrived in between.
        """
        if not 1 <= count <= MAX_DELETE_COUNT:
            raise ValueError(f"count must be between 1 and {MAX_DELETE_COUNT}")
        logger.info("Deleting last %d messages of session %s", count, session_id)

        lines = await self.store.range_read(session_id, 0, count - 1)
        if not lines:
            logger.warning("No messages found for session %s", session_id)
            return False

        newest = codec.decode(lines[0])
        if newest is None or newest.content != expected_text:
            logger.warning(
                "Message text mismatch for session %s: %r != %r",
                session_id, newest.content if newest else None, expected_text,
            )
            return False

        await self.store.trim(session_id, count, -1)
        return True

    # --------- background tasks ----------
    @property
    def pending_compactions(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every compaction spawned so far to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
