from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ..config import MATCH_LOCK_TIMEOUT_SECONDS
from ..exceptions import MatchBusy

logger = logging.getLogger(__name__)


class MatchLockRegistry:
    """One ``asyncio.Lock`` per match id.

    Every read-modify-write of a match (ball, undo, status, result) runs
    under its match's lock, so two scorers can never interleave on the same
    innings. Different matches never contend. Locks are held weakly and
    disappear once nobody is holding or waiting on them.
    """

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self._timeout = timeout_seconds
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, match_id: str) -> asyncio.Lock:
        lock = self._locks.get(match_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[match_id] = lock
        return lock

    def locked(self, match_id: str) -> bool:
        lock = self._locks.get(match_id)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(
        self, match_id: str, timeout: float | None = None
    ) -> AsyncIterator[None]:
        lock = self._lock_for(match_id)
        wait = self._timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(lock.acquire(), wait)
        except asyncio.TimeoutError:
            logger.warning("Timed out after %.1fs waiting for match %s", wait, match_id)
            raise MatchBusy(match_id)
        try:
            yield
        finally:
            lock.release()


match_locks = MatchLockRegistry(timeout_seconds=MATCH_LOCK_TIMEOUT_SECONDS)
