"""
Pending Interaction Registry
In-memory correlation table between signing requests and their async responses.

Process-lifetime only: a restart loses in-flight correlations, and responses
arriving afterwards are treated as unknown.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from models import TransactionAction

logger = logging.getLogger(__name__)


@dataclass
class PendingInteraction:
    """A signing request awaiting its response"""
    interaction_id: str
    deal_id: str
    action: TransactionAction
    channel_id: str
    initiating_user: Optional[str] = None
    created_at: float = field(default_factory=time.monotonic)

    def age_seconds(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.created_at


class PendingInteractionRegistry:
    """Correlation table guarded by an asyncio lock"""

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 wall_clock_ms: Callable[[], int] = lambda: int(time.time() * 1000)):
        self._entries: Dict[str, PendingInteraction] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._wall_clock_ms = wall_clock_ms

    def _generate_id(self, deal_id: str, action: TransactionAction) -> str:
        base = f"tx-{deal_id}-{action.value}-{self._wall_clock_ms()}"
        candidate = base
        suffix = 1
        while candidate in self._entries:
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    async def register(self, deal_id: str, action: TransactionAction, channel_id: str,
                       initiating_user: Optional[str] = None) -> PendingInteraction:
        """Create and store a new pending interaction under a fresh correlation id"""
        async with self._lock:
            interaction = PendingInteraction(
                interaction_id=self._generate_id(deal_id, action),
                deal_id=deal_id,
                action=action,
                channel_id=channel_id,
                initiating_user=initiating_user,
                created_at=self._clock(),
            )
            self._entries[interaction.interaction_id] = interaction
        logger.debug(f"📝 INTERACTION_REGISTERED: {interaction.interaction_id}")
        return interaction

    async def get(self, interaction_id: str) -> Optional[PendingInteraction]:
        async with self._lock:
            return self._entries.get(interaction_id)

    async def pop(self, interaction_id: str) -> Optional[PendingInteraction]:
        """Atomically look up and remove an entry"""
        async with self._lock:
            return self._entries.pop(interaction_id, None)

    async def has_pending(self, deal_id: str, action: TransactionAction) -> bool:
        async with self._lock:
            return any(
                entry.deal_id == deal_id and entry.action is action
                for entry in self._entries.values()
            )

    async def sweep_expired(self, ttl_seconds: float) -> List[PendingInteraction]:
        """
        Drop entries older than ttl_seconds and return them.

        A ttl of 0 or less disables expiry.
        """
        if not ttl_seconds or ttl_seconds <= 0:
            return []
        now = self._clock()
        async with self._lock:
            expired = [e for e in self._entries.values() if e.age_seconds(now) > ttl_seconds]
            for entry in expired:
                del self._entries[entry.interaction_id]
        for entry in expired:
            logger.warning(
                f"⏰ INTERACTION_EXPIRED: {entry.interaction_id} ({entry.action.value} on {entry.deal_id}) "
                f"unanswered after {entry.age_seconds(now):.0f}s"
            )
        return expired

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, interaction_id: str) -> bool:
        return interaction_id in self._entries
