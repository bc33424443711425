"""
Per-deal write serialization
Every mutation of a deal's cached status goes through one lock per deal_id,
so the poller and the interaction correlator cannot overwrite each other.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict

logger = logging.getLogger(__name__)


class DealLockManager:
    """Keyed asyncio locks, created on demand and dropped when idle"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def lock(self, deal_id: str) -> AsyncGenerator[None, None]:
        """
        Hold the write lock for deal_id.

        Usage:
            async with deal_locks.lock(deal.deal_id):
                fresh = await store.get_deal_by_id(deal.deal_id)
                ...
        """
        deal_lock = self._locks.get(deal_id)
        if deal_lock is None:
            deal_lock = asyncio.Lock()
            self._locks[deal_id] = deal_lock
        self._waiters[deal_id] = self._waiters.get(deal_id, 0) + 1
        try:
            async with deal_lock:
                yield
        finally:
            self._waiters[deal_id] -= 1
            if self._waiters[deal_id] == 0:
                del self._waiters[deal_id]
                del self._locks[deal_id]

    def is_locked(self, deal_id: str) -> bool:
        deal_lock = self._locks.get(deal_id)
        return deal_lock is not None and deal_lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
