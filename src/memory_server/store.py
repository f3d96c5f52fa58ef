"""Redis-backed list/string store used by the memory service.

Layout per session:
    <session_id>            list of encoded message lines, newest first
    <session_id>_context    latest compaction summary (string)
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from .errors import StoreUnavailableError

logger = logging.getLogger(__name__)


def context_key(session_id: str) -> str:
    return f"{session_id}_context"


@contextmanager
def _store_errors(op: str) -> Iterator[None]:
    try:
        yield
    except (RedisError, OSError) as e:
        logger.error("Store operation %s failed: %s", op, e)
        raise StoreUnavailableError(f"Store unavailable during {op}: {e}", cause=e) from e


class RedisStore:
    """Thin async adapter over the Redis list and string commands we need.

    Single-key commands are atomic on the server. Multi-key reads are sent as
    one pipeline round trip without cross-key guarantees. Every client error
    surfaces as :class:`StoreUnavailableError`; nothing is retried here.
    """

    def __init__(self, client: "redis.Redis") -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, max_connections: int = 50) -> "RedisStore":
        # Pooled: each command checks out its own connection, so concurrent
        # requests and background compactions never share one.
        pool = redis.ConnectionPool.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=max_connections,
        )
        return cls(redis.Redis(connection_pool=pool))

    @property
    def client(self) -> "redis.Redis":
        return self._client

    # --------- reads ----------
    async def range_read(self, key: str, start: int, stop: int) -> List[str]:
        """LRANGE with Redis' inclusive ``stop``."""
        with _store_errors("LRANGE"):
            return list(await self._client.lrange(key, start, stop))

    async def get_string(self, key: str) -> Optional[str]:
        with _store_errors("GET"):
            return await self._client.get(key)

    async def read_window(
        self, list_key: str, start: int, stop: int, string_key: str
    ) -> Tuple[List[str], Optional[str]]:
        """LRANGE + GET in a single round trip."""
        with _store_errors("LRANGE/GET"):
            async with self._client.pipeline(transaction=False) as pipe:
                pipe.lrange(list_key, start, stop)
                pipe.get(string_key)
                lines, value = await pipe.execute()
        return list(lines or []), value

    # --------- writes ----------
    async def push(self, key: str, values: Sequence[str]) -> int:
        """LPUSH all ``values`` in one call and return the new list length."""
        with _store_errors("LPUSH"):
            return int(await self._client.lpush(key, *values))

    async def delete_keys(self, keys: Sequence[str]) -> int:
        with _store_errors("DEL"):
            return int(await self._client.delete(*keys))

    async def trim(self, key: str, start: int, stop: int) -> None:
        with _store_errors("LTRIM"):
            await self._client.ltrim(key, start, stop)

    async def replace_tail(
        self,
        list_key: str,
        tail: Sequence[str],
        string_key: str,
        expected: Optional[str],
        value: str,
        *,
        attempts: int = 3,
    ) -> bool:
        """Drop ``tail`` from the end of the list and SET the string, if unchanged.

        Both keys are WATCHed. The write only goes through while the list still
        ends with ``tail`` and the string still equals ``expected``; lines pushed
        onto the head in the meantime are kept. Returns False when the session
        was deleted or rewritten, or when every attempt lost a WATCH race.
        """
        tail = list(tail)
        if not tail:
            return False
        n = len(tail)
        with _store_errors("LTRIM/SET"):
            for _ in range(attempts):
                async with self._client.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(list_key, string_key)
                        current_tail = await pipe.lrange(list_key, -n, -1)
                        current = await pipe.get(string_key)
                        if list(current_tail) != tail or current != expected:
                            await pipe.unwatch()
                            return False
                        pipe.multi()
                        pipe.ltrim(list_key, 0, -(n + 1))
                        pipe.set(string_key, value)
                        await pipe.execute()
                        return True
                    except WatchError:
                        logger.debug("WATCH on %s lost a race; retrying", list_key)
                        continue
        return False

    # --------- lifecycle ----------
    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as e:
            logger.warning("Store ping failed: %s", e)
            return False

    async def close(self) -> None:
        await self._client.aclose()
