"""Process-wide admission gate for background compaction."""
from __future__ import annotations

import asyncio
from typing import Dict


class SessionCleanupRegistry:
    """Maps session id -> "compaction in flight" under a single lock.

    ``try_admit`` is the only way to set a flag and ``release`` the only way
    to clear one; both are one critical section with no I/O inside, so two
    appends racing on the same session can never both be admitted.
    Absent and ``False`` both mean "not in flight".
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._flags: Dict[str, bool] = {}

    async def try_admit(self, session_id: str) -> bool:
        async with self._lock:
            if self._flags.get(session_id, False):
                return False
            self._flags[session_id] = True
            return True

    async def release(self, session_id: str) -> None:
        async with self._lock:
            self._flags.pop(session_id, None)

    def is_in_flight(self, session_id: str) -> bool:
        return self._flags.get(session_id, False)

    def __len__(self) -> int:
        return sum(1 for v in self._flags.values() if v)
