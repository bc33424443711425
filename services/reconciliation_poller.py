"""
Deal Reconciliation Poller
Compares each active deal's cached status with its escrow contract and applies
differences, announcing the transitions users care about exactly once.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from config import Config
from models import Deal
from services.chain_reader import ChainReader
from services.deal_notifications import build_status_notification, needs_dispute_winner
from services.deal_store import DealStore
from services.messaging_gateway import MessagingGateway
from utils.deal_locks import DealLockManager
from utils.deal_state_machine import DealStateValidator, chain_status_to_deal_status

logger = logging.getLogger(__name__)


class ReconciliationResult:
    """Counters for one poll tick"""

    def __init__(self):
        self.deals_checked = 0
        self.status_changes = 0
        self.notifications_sent = 0
        self.notification_failures = 0
        self.regressions_skipped = 0
        self.unknown_statuses = 0
        self.execution_time_ms = 0
        self.changes: List[Dict[str, Any]] = []
        self.errors: List[str] = []

    def add_change(self, deal_id: str, old_status: str, new_status: str):
        self.status_changes += 1
        self.changes.append({"deal_id": deal_id, "from": old_status, "to": new_status})

    def add_error(self, error: str):
        self.errors.append(error)
        logger.error(f"❌ POLL_ERROR: {error}")

    def get_summary(self) -> Dict[str, Any]:
        return {
            "deals_checked": self.deals_checked,
            "status_changes": self.status_changes,
            "notifications_sent": self.notifications_sent,
            "notification_failures": self.notification_failures,
            "regressions_skipped": self.regressions_skipped,
            "unknown_statuses": self.unknown_statuses,
            "error_count": len(self.errors),
            "execution_time_ms": self.execution_time_ms,
        }


class DealReconciliationPoller:
    """Applies on-chain status changes to the deal cache"""

    def __init__(self, store: DealStore, chain_reader: ChainReader, gateway: MessagingGateway,
                 deal_locks: DealLockManager, settings=Config):
        self.store = store
        self.chain_reader = chain_reader
        self.gateway = gateway
        self.deal_locks = deal_locks
        self.settings = settings

    async def run_once(self) -> ReconciliationResult:
        """One poll tick over every active deal"""
        started = time.monotonic()
        result = ReconciliationResult()
        try:
            deals = await self.store.get_active_deals()
        except Exception as e:
            result.add_error(f"Could not load active deals: {e}")
            return result

        deals = [deal for deal in deals if deal.escrow_address]
        logger.debug(f"🔍 POLL_START: Checking {len(deals)} active deals")
        await asyncio.gather(*(self.reconcile_deal(deal, result) for deal in deals))

        result.execution_time_ms = int((time.monotonic() - started) * 1000)
        if result.status_changes or result.errors:
            logger.info(f"📊 POLL_SUMMARY: {result.get_summary()}")
        return result

    async def reconcile_deal(self, deal: Deal, result: Optional[ReconciliationResult] = None) -> Optional[str]:
        """
        Reconcile a single deal.

        Returns:
            The newly applied status, or None when nothing changed
        """
        result = result if result is not None else ReconciliationResult()
        result.deals_checked += 1
        try:
            info = await self.chain_reader.get_deal_info(deal.escrow_address)
        except Exception as e:
            result.add_error(f"Chain read failed for {deal.deal_id} at {deal.escrow_address}: {e}")
            return None

        observed = chain_status_to_deal_status(info.status)
        if observed is None:
            result.unknown_statuses += 1
            return None

        try:
            async with self.deal_locks.lock(deal.deal_id):
                current = await self.store.get_deal_by_id(deal.deal_id)
                if current is None:
                    return None
                old_status = current.status
                if old_status == observed:
                    return None
                if not DealStateValidator.is_forward_transition(old_status, observed):
                    result.regressions_skipped += 1
                    logger.warning(
                        f"⚠️ POLL_REGRESSION_SKIPPED: {deal.deal_id} cached={old_status} chain={observed}"
                    )
                    return None

                logger.info(f"🔄 POLL_STATUS_CHANGE: {deal.deal_id}: {old_status} -> {observed}")
                updated = await self.store.update_deal_status(deal.deal_id, observed, current.escrow_address)
                if updated is None:
                    result.add_error(f"Status update refused for {deal.deal_id}")
                    return None
                result.add_change(deal.deal_id, old_status, observed)
        except Exception as e:
            result.add_error(f"Persisting status for {deal.deal_id} failed: {e}")
            return None

        await self._notify(updated, old_status, observed, result)
        return observed

    async def _lookup_winner(self, deal: Deal) -> Optional[str]:
        try:
            return await self.chain_reader.get_dispute_winner(deal.escrow_address)
        except Exception as e:
            logger.error(f"❌ DISPUTE_WINNER_LOOKUP_FAILED: {deal.deal_id}: {e}")
            return None

    async def _notify(self, deal: Deal, old_status: str, new_status: str, result: ReconciliationResult):
        try:
            winner = await self._lookup_winner(deal) if needs_dispute_winner(new_status) else None
            message = build_status_notification(
                deal, old_status, new_status,
                arbitrator_address=self.settings.ARBITRATOR_ADDRESS,
                winner=winner,
            )
            if message is None:
                return
            await self.gateway.send_message(deal.channel_id, message)
            result.notifications_sent += 1
            logger.info(f"📣 POLL_NOTIFIED: {deal.deal_id} {new_status}")
        except Exception as e:
            result.notification_failures += 1
            logger.error(f"❌ POLL_NOTIFY_FAILED: {deal.deal_id} {new_status}: {e}")
