"""
Deal State Machine
Status lattice for cached deals and the mapping from on-chain escrow status
"""

import logging
from typing import Dict, FrozenSet, Optional, Set

from models import DealStatus, EscrowChainStatus

logger = logging.getLogger(__name__)


TERMINAL_STATUSES: FrozenSet[str] = frozenset({
    DealStatus.RELEASED.value,
    DealStatus.REFUNDED.value,
    DealStatus.RESOLVED.value,
})


class DealStateValidator:
    """Validates deal status transitions and prevents regressions"""

    # Direct edges of the lattice: draft -> created -> funded -> {released | refunded | disputed -> resolved}
    VALID_TRANSITIONS: Dict[Optional[str], Set[str]] = {
        None: {DealStatus.DRAFT.value, DealStatus.CREATED.value},
        DealStatus.DRAFT.value: {DealStatus.CREATED.value},
        DealStatus.CREATED.value: {DealStatus.FUNDED.value},
        DealStatus.FUNDED.value: {
            DealStatus.RELEASED.value,
            DealStatus.REFUNDED.value,
            DealStatus.DISPUTED.value,
        },
        DealStatus.DISPUTED.value: {DealStatus.RESOLVED.value},
        # Terminal states (no transitions allowed)
        DealStatus.RELEASED.value: set(),
        DealStatus.REFUNDED.value: set(),
        DealStatus.RESOLVED.value: set(),
    }

    @classmethod
    def is_valid_transition(cls, current_status: Optional[str], new_status: str) -> bool:
        """Check if new_status is a direct successor of current_status"""
        return new_status in cls.VALID_TRANSITIONS.get(current_status, set())

    @classmethod
    def reachable_from(cls, current_status: Optional[str]) -> Set[str]:
        """All statuses reachable by moving forward, possibly skipping steps"""
        seen: Set[str] = set()
        frontier = list(cls.VALID_TRANSITIONS.get(current_status, set()))
        while frontier:
            status = frontier.pop()
            if status in seen:
                continue
            seen.add(status)
            frontier.extend(cls.VALID_TRANSITIONS.get(status, set()))
        return seen

    @classmethod
    def is_forward_transition(cls, current_status: Optional[str], new_status: str) -> bool:
        """
        True when new_status lies ahead of current_status in the lattice.

        A poller can miss intermediate states between ticks (created -> released
        when funded was never observed), so this accepts skipped steps but never
        a move backward or sideways across branches.
        """
        return new_status in cls.reachable_from(current_status)

    @classmethod
    def is_terminal_state(cls, status: str) -> bool:
        """Check if status is terminal (no further transitions)"""
        return status in TERMINAL_STATUSES

    @classmethod
    def is_known_status(cls, status: Optional[str]) -> bool:
        return status in cls.VALID_TRANSITIONS and status is not None


def chain_status_to_deal_status(raw_status) -> Optional[str]:
    """
    Map the contract's numeric status to the cache vocabulary.

    Returns None for values outside the contract enum.
    """
    try:
        chain_status = EscrowChainStatus(int(raw_status))
    except (TypeError, ValueError):
        logger.warning(f"⚠️ UNKNOWN_CHAIN_STATUS: {raw_status!r}")
        return None
    return chain_status.name.lower()


def chain_status_name(raw_status) -> str:
    """Upper-case status name for display, UNKNOWN when out of range"""
    try:
        return EscrowChainStatus(int(raw_status)).name
    except (TypeError, ValueError):
        return "UNKNOWN"
