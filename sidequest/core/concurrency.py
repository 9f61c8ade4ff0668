"""Async helpers: per-quest mutation locks and bounded awaits."""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Dict

logger = logging.getLogger(__name__)


class QuestLockRegistry:
    """Hands out one ``asyncio.Lock`` per quest id.

    Locks are bound to the running event loop, so the registry keeps a
    separate table per loop and drops it when the loop is collected.
    """

    def __init__(self):
        self._tables: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = (
            weakref.WeakKeyDictionary()
        )

    def get(self, quest_id: str) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        table = self._tables.get(loop)
        if table is None:
            table = {}
            self._tables[loop] = table
        lock = table.get(quest_id)
        if lock is None:
            lock = asyncio.Lock()
            table[quest_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, quest_id: str):
        """Serialize a block of work against other mutations of the quest."""
        lock = self.get(quest_id)
        if lock.locked():
            logger.debug(f"[QUEST_LOCK] Waiting for quest {quest_id}")
        async with lock:
            yield

    def is_locked(self, quest_id: str) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        lock = self._tables.get(loop, {}).get(quest_id)
        return bool(lock and lock.locked())


quest_locks = QuestLockRegistry()


async def run_with_timeout(awaitable: Awaitable[Any], timeout_seconds: float) -> Any:
    """Await with a hard timeout; raises ``asyncio.TimeoutError`` on expiry."""
    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0")
    return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
