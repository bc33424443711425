"""
Transaction Orchestrator
Turns a deal action into a signing request, registers it for correlation and
hands it to the messaging gateway.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from web3 import Web3

from config import Config
from models import Deal, parse_action
from services.errors import InvalidActionError, InteractionDispatchError, InteractionDispatchTimeout
from services.messaging_gateway import MessagingGateway
from services.pending_interactions import PendingInteraction, PendingInteractionRegistry
from services.transaction_builder import TransactionDescriptor, build_transaction

logger = logging.getLogger(__name__)


def build_interaction_payload(interaction: PendingInteraction, descriptor: TransactionDescriptor,
                              acting_user: Optional[str]) -> Dict[str, Any]:
    """Signing request payload; recipient only when acting_user is a chain address"""
    payload = {
        "type": "transaction",
        "id": interaction.interaction_id,
        "title": descriptor.title,
        "subtitle": descriptor.subtitle,
        "tx": descriptor.to_tx_payload(),
    }
    if acting_user and Web3.is_address(acting_user):
        payload["recipient"] = Web3.to_checksum_address(acting_user)
    return payload


class TransactionOrchestrator:
    """Issues signing requests for deal actions"""

    def __init__(self, registry: PendingInteractionRegistry, gateway: MessagingGateway, settings=Config):
        self.registry = registry
        self.gateway = gateway
        self.settings = settings

    async def request_action(self, deal: Deal, action, acting_user: Optional[str] = None,
                             channel_id: Optional[str] = None) -> str:
        """
        Ask a participant to sign the transaction for one deal action.

        Args:
            deal: Deal the action applies to
            action: TransactionAction or its string value
            acting_user: Address of the expected signer, if known
            channel_id: Chat to post the request in, defaults to the deal's channel

        Returns:
            The correlation id of the registered pending interaction

        Raises:
            InvalidActionError: unknown action, nothing registered
            MissingEscrowAddressError: action needs the escrow instance, nothing registered
            InteractionDispatchTimeout: gateway did not acknowledge in time; the
                pending entry stays registered
            InteractionDispatchError: gateway rejected the request; the pending
                entry stays registered
        """
        parsed = parse_action(action)
        if parsed is None:
            raise InvalidActionError(action)

        descriptor = build_transaction(deal, parsed, self.settings)
        channel = channel_id or deal.channel_id
        interaction = await self.registry.register(
            deal_id=deal.deal_id,
            action=parsed,
            channel_id=channel,
            initiating_user=acting_user,
        )
        payload = build_interaction_payload(interaction, descriptor, acting_user)
        logger.info(
            f"📤 TX_REQUEST: {interaction.interaction_id} {parsed.value} for {deal.deal_id} -> {descriptor.to}"
        )

        timeout = self.settings.INTERACTION_TIMEOUT_SECONDS
        try:
            await asyncio.wait_for(self.gateway.send_interaction_request(channel, payload), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"⏰ TX_REQUEST_TIMEOUT: {interaction.interaction_id} took > {timeout}s")
            raise InteractionDispatchTimeout(
                f"Timeout: sendInteractionRequest took > {timeout}s for {interaction.interaction_id}"
            ) from e
        except Exception as e:
            logger.error(f"❌ TX_REQUEST_FAILED: {interaction.interaction_id}: {e}")
            raise InteractionDispatchError(str(e)) from e

        return interaction.interaction_id
