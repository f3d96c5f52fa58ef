"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from memory_server.store import RedisStore  # noqa: E402


# -----------------------------
# In-memory Redis double
# -----------------------------
def _bounds(n: int, start: int, stop: int) -> Tuple[int, int]:
    """Redis-style inclusive index normalisation; empty when start > stop."""
    if start < 0:
        start = max(start + n, 0)
    if stop < 0:
        stop += n
    stop = min(stop, n - 1)
    return start, stop


class FakePipeline:
    """Buffers commands; after ``watch`` runs them immediately until ``multi``."""

    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._ops: List[Callable[[], Any]] = []
        self._watched: Optional[Dict[str, int]] = None
        self._immediate = False

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._ops.clear()
        self._watched = None
        self._immediate = False

    async def _run(self, op: Callable[[], Any]) -> Any:
        self._redis._check()
        return op()

    def _queue(self, op: Callable[[], Any]) -> Any:
        if self._immediate:
            return self._run(op)
        self._ops.append(op)
        return self

    async def watch(self, *keys: str) -> bool:
        self._redis._check()
        self._watched = {k: self._redis.versions.get(k, 0) for k in keys}
        self._immediate = True
        if self._redis.on_watch is not None:
            hook, self._redis.on_watch = self._redis.on_watch, None
            await hook()
        return True

    async def unwatch(self) -> bool:
        self._watched = None
        self._immediate = False
        return True

    def multi(self) -> None:
        self._immediate = False

    def lrange(self, key: str, start: int, stop: int) -> Any:
        return self._queue(lambda: self._redis._lrange(key, start, stop))

    def get(self, key: str) -> Any:
        return self._queue(lambda: self._redis.strings.get(key))

    def ltrim(self, key: str, start: int, stop: int) -> Any:
        return self._queue(lambda: self._redis._ltrim(key, start, stop))

    def set(self, key: str, value: str) -> Any:
        return self._queue(lambda: self._redis._set(key, value))

    async def execute(self) -> List[Any]:
        self._redis._check()
        ops, self._ops = self._ops, []
        watched, self._watched = self._watched, None
        if watched and any(self._redis.versions.get(k, 0) != v for k, v in watched.items()):
            raise WatchError("Watched variable changed.")
        return [op() for op in ops]


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for :class:`RedisStore`."""

    def __init__(self) -> None:
        self.lists: Dict[str, List[str]] = {}
        self.strings: Dict[str, str] = {}
        self.versions: Dict[str, int] = {}
        # Runs once inside the next WATCH, to simulate a racing writer.
        self.on_watch: Optional[Callable[[], Awaitable[Any]]] = None
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def _touch(self, key: str) -> None:
        self.versions[key] = self.versions.get(key, 0) + 1

    def _lrange(self, key: str, start: int, stop: int) -> List[str]:
        items = self.lists.get(key, [])
        start, stop = _bounds(len(items), start, stop)
        return list(items[start : stop + 1]) if start <= stop else []

    def _ltrim(self, key: str, start: int, stop: int) -> bool:
        self._touch(key)
        kept = self._lrange(key, start, stop)
        if kept:
            self.lists[key] = kept
        else:
            self.lists.pop(key, None)
        return True

    def _set(self, key: str, value: str) -> bool:
        self._touch(key)
        self.strings[key] = value
        return True

    async def lrange(self, key: str, start: int, stop: int) -> List[str]:
        self._check()
        return self._lrange(key, start, stop)

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.strings.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._check()
        return self._set(key, value)

    async def lpush(self, key: str, *values: str) -> int:
        self._check()
        self._touch(key)
        items = self.lists.setdefault(key, [])
        for v in values:
            items.insert(0, v)
        return len(items)

    async def ltrim(self, key: str, start: int, stop: int) -> bool:
        self._check()
        return self._ltrim(key, start, stop)

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for k in keys:
            self._touch(k)
            if self.lists.pop(k, None) is not None:
                removed += 1
            if self.strings.pop(k, None) is not None:
                removed += 1
        return removed

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)


# -----------------------------
# Fixtures
# -----------------------------
@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture(scope="function")
def store(fake_redis: FakeRedis) -> RedisStore:
    return RedisStore(fake_redis)  # type: ignore[arg-type]


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in ["MEMORY_SERVER_CONFIG", "REDIS_URL", "OPENAI_API_KEY"]:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("MEMORY_SERVER__"):
            monkeypatch.delenv(var, raising=False)
    yield
