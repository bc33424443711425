"""
Interaction Correlator
Matches wallet responses to pending signing requests and drives the
create -> approve -> fund chain.

Each continuation waits for the previous transaction's receipt, never on a
timer. A reverted receipt ends the chain; an unreadable one does not.
"""

import logging
from typing import Optional

from config import Config
from models import Deal, DealStatus, TransactionAction
from services.chain_reader import ChainReader
from services.deal_notifications import (
    FUNDED_INSTRUCTIONS,
    next_step_message,
    transaction_confirmed_message,
    transaction_failed_message,
)
from services.deal_store import DealStore
from services.errors import ChainReadError
from services.messaging_gateway import InteractionResponse, MessagingGateway
from services.pending_interactions import PendingInteraction, PendingInteractionRegistry
from services.transaction_orchestrator import TransactionOrchestrator
from utils.deal_locks import DealLockManager
from utils.deal_state_machine import DealStateValidator

logger = logging.getLogger(__name__)


class InteractionCorrelator:
    """Consumes signing responses"""

    def __init__(self, registry: PendingInteractionRegistry, orchestrator: TransactionOrchestrator,
                 store: DealStore, chain_reader: ChainReader, gateway: MessagingGateway,
                 deal_locks: DealLockManager, settings=Config):
        self.registry = registry
        self.orchestrator = orchestrator
        self.store = store
        self.chain_reader = chain_reader
        self.gateway = gateway
        self.deal_locks = deal_locks
        self.settings = settings

    async def handle_response(self, response: InteractionResponse) -> Optional[PendingInteraction]:
        """
        Resolve one signing response.

        The pending entry is removed up front, so a duplicate delivery of the
        same response is treated as unknown. Never raises.

        Returns:
            The matched interaction, or None for an unknown correlation id
        """
        interaction = await self.registry.pop(response.interaction_id)
        if interaction is None:
            logger.info(f"❓ TX_RESPONSE_UNKNOWN: {response.interaction_id}")
            return None

        logger.info(f"📥 TX_RESPONSE: {interaction.interaction_id}: {'SUCCESS' if response.succeeded else 'FAILED'}")
        try:
            if response.tx_hash:
                await self._handle_success(interaction, response.tx_hash)
            elif response.error:
                await self._send(interaction.channel_id, transaction_failed_message(interaction.action, response.error))
            else:
                logger.warning(f"⚠️ TX_RESPONSE_EMPTY: {interaction.interaction_id} carried neither hash nor error")
        except Exception as e:
            logger.error(f"❌ TX_RESPONSE_HANDLING_FAILED: {interaction.interaction_id}: {e}")
        return interaction

    async def _send(self, channel_id: str, text: str):
        try:
            await self.gateway.send_message(channel_id, text)
        except Exception as e:
            logger.error(f"❌ TX_MESSAGE_FAILED: chat={channel_id}: {e}")

    async def _handle_success(self, interaction: PendingInteraction, tx_hash: str):
        await self._send(
            interaction.channel_id,
            transaction_confirmed_message(interaction.action, interaction.deal_id, tx_hash, self.settings.EXPLORER_URL),
        )

        action = interaction.action
        if action is TransactionAction.CREATE:
            await self._continue_after_create(interaction, tx_hash)
        elif action is TransactionAction.APPROVE:
            await self._continue_after_approve(interaction, tx_hash)
        elif action is TransactionAction.FUND:
            await self._continue_after_fund(interaction, tx_hash)
        elif action in (TransactionAction.RELEASE, TransactionAction.DISPUTE, TransactionAction.RESOLVE):
            # Outcome is picked up and announced by the reconciliation poller
            pass
        logger.info(f"✅ TX_FLOW_DONE: Deal {interaction.deal_id} action {action.value}")

    async def _apply_status(self, deal_id: str, status: str, escrow_address: Optional[str] = None) -> Optional[Deal]:
        """Write status under the deal lock unless the cache is already at or past it"""
        async with self.deal_locks.lock(deal_id):
            current = await self.store.get_deal_by_id(deal_id)
            if current is None:
                logger.warning(f"⚠️ TX_DEAL_MISSING: {deal_id}")
                return None
            if current.status == status or DealStateValidator.is_forward_transition(current.status, status):
                return await self.store.update_deal_status(deal_id, status, escrow_address)
            logger.info(f"ℹ️ TX_STATUS_ALREADY_AHEAD: {deal_id} cached={current.status}, not writing {status}")
            if escrow_address and current.escrow_address is None:
                return await self.store.update_deal_status(deal_id, current.status, escrow_address)
            return current

    async def _continue_after_create(self, interaction: PendingInteraction, tx_hash: str):
        try:
            escrow_address = await self.chain_reader.wait_for_escrow_address(tx_hash)
        except Exception as e:
            logger.error(f"❌ AUTO_APPROVE_RECEIPT_FAILED: {tx_hash}: {e}")
            return
        if not escrow_address:
            logger.warning(f"⚠️ AUTO_APPROVE_NO_ESCROW_LOG: {tx_hash} has no EscrowCreated event")
            return

        logger.info(f"🏗️ ESCROW_DEPLOYED: {interaction.deal_id} at {escrow_address}")
        deal = await self._apply_status(interaction.deal_id, DealStatus.CREATED.value, escrow_address)
        if deal is None or not deal.escrow_address:
            return
        await self._auto_issue(deal, TransactionAction.APPROVE, interaction)

    async def _continue_after_approve(self, interaction: PendingInteraction, tx_hash: str):
        if not await self._confirmed_on_chain(interaction, tx_hash):
            return
        deal = await self.store.get_deal_by_id(interaction.deal_id)
        if deal is None:
            logger.warning(f"⚠️ TX_DEAL_MISSING: {interaction.deal_id}")
            return
        await self._auto_issue(deal, TransactionAction.FUND, interaction)

    async def _continue_after_fund(self, interaction: PendingInteraction, tx_hash: str):
        if not await self._confirmed_on_chain(interaction, tx_hash):
            return
        deal = await self._apply_status(interaction.deal_id, DealStatus.FUNDED.value)
        if deal is None:
            return
        await self._send(interaction.channel_id, FUNDED_INSTRUCTIONS)

    async def _confirmed_on_chain(self, interaction: PendingInteraction, tx_hash: str) -> bool:
        """
        False only for a confirmed revert. When the receipt cannot be read the
        wallet's hash is taken as success and the reconciliation poller corrects
        the cached status later.
        """
        try:
            succeeded = await self.chain_reader.wait_for_success(tx_hash)
        except ChainReadError as e:
            logger.warning(
                f"⚠️ TX_RECEIPT_UNAVAILABLE: {interaction.action.value} {tx_hash}: {e}, continuing on wallet hash"
            )
            return True
        if not succeeded:
            logger.warning(f"⚠️ TX_REVERTED: {interaction.action.value} {tx_hash} for {interaction.deal_id}")
            await self._send(
                interaction.channel_id,
                transaction_failed_message(interaction.action, f"transaction {tx_hash} reverted on-chain"),
            )
        return succeeded

    async def _auto_issue(self, deal: Deal, action: TransactionAction, interaction: PendingInteraction):
        """Ask the buyer to sign the next step, unless that step is already awaiting a signature"""
        if await self.registry.has_pending(deal.deal_id, action):
            logger.info(f"⏭️ AUTO_{action.value.upper()}_SKIPPED: {deal.deal_id} already has a pending {action.value}")
            return
        try:
            await self.orchestrator.request_action(
                deal, action,
                acting_user=deal.buyer_address,
                channel_id=interaction.channel_id,
            )
        except Exception as e:
            logger.error(f"❌ AUTO_{action.value.upper()}_FAILED: {deal.deal_id}: {e}")
            return
        logger.info(f"🔗 AUTO_{action.value.upper()}: requested from buyer {deal.buyer_address} for {deal.deal_id}")
        await self._send(interaction.channel_id, next_step_message(action, self.settings.TOKEN_SYMBOL))
