"""Background compaction: the detached trigger and the default compactor."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from . import codec
from .registry import SessionCleanupRegistry
from .store import RedisStore, context_key
from .summarizer import Summarizer

logger = logging.getLogger(__name__)

# Consumes a session's messages and writes a new context back to the store.
# Its return value is ignored.
Compactor = Callable[[str, RedisStore], Awaitable[None]]


async def _run_compaction(
    session_id: str,
    registry: SessionCleanupRegistry,
    store: RedisStore,
    compactor: Compactor,
) -> None:
    logger.info("Running compaction for session %s", session_id)
    try:
        await compactor(session_id, store)
    except Exception:
        # A failed run leaves the context stale until the next overflow.
        logger.exception("Compaction failed for session %s", session_id)
    else:
        logger.info("Compaction finished for session %s", session_id)
    finally:
        await registry.release(session_id)


def spawn_compaction(
    session_id: str,
    registry: SessionCleanupRegistry,
    store: RedisStore,
    compactor: Compactor,
) -> "asyncio.Task[None]":
    """Start a compaction task without waiting for it.

    The caller must already own the session's slot (``registry.try_admit``);
    the task releases it when done, whatever the outcome.
    """
    return asyncio.create_task(
        _run_compaction(session_id, registry, store, compactor),
        name=f"compaction:{session_id}",
    )


class WindowCompactor:
    """Folds everything older than the newest ``window_size // 2`` entries into context.

    The older tail is read, summarized together with the current context, then
    removed with a tail-relative LTRIM so lines prepended while the summary was
    being built are kept. If the session was deleted or rewritten meanwhile the
    summary is dropped instead of written.
    """

    def __init__(self, summarizer: Summarizer, window_size: int) -> None:
        self.summarizer = summarizer
        self.keep = max(1, window_size // 2)

    async def __call__(self, session_id: str, store: RedisStore) -> None:
        ctx_key = context_key(session_id)
        lines, context = await store.read_window(session_id, self.keep, -1, ctx_key)
        if not lines:
            return

        # Stored newest-first; summaries read better oldest-first.
        older = codec.decode_many(reversed(lines))
        summary = await self.summarizer.summarize(older, context)

        if not await store.replace_tail(session_id, lines, ctx_key, context, summary):
            logger.info("Session %s changed during compaction; summary discarded", session_id)
            return
        logger.debug(
            "Folded %d lines of session %s into context (%d chars)",
            len(lines), session_id, len(summary),
        )
