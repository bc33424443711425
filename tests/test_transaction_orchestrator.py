"""
Tests for issuing signing requests through the orchestrator
"""

import asyncio

import pytest
from web3 import Web3

from models import Deal, TransactionAction
from services.errors import (
    InteractionDispatchError, InteractionDispatchTimeout, InvalidActionError, MissingEscrowAddressError
)
from services.transaction_orchestrator import TransactionOrchestrator

from conftest import BUYER, CHANNEL, ESCROW, SELLER


@pytest.fixture
def orchestrator(registry, gateway, settings):
    return TransactionOrchestrator(registry, gateway, settings)


def _deal(escrow_address=ESCROW):
    return Deal(
        deal_id="D1",
        seller_address=SELLER,
        buyer_address=BUYER,
        amount="100",
        deadline=1_900_000_000,
        escrow_address=escrow_address,
        channel_id=CHANNEL,
    )


@pytest.mark.asyncio
async def test_request_registers_and_dispatches(orchestrator, registry, gateway):
    interaction_id = await orchestrator.request_action(_deal(escrow_address=None), "create", acting_user=SELLER)

    assert interaction_id.startswith("tx-D1-create-")
    pending = await registry.get(interaction_id)
    assert pending.action is TransactionAction.CREATE
    assert pending.channel_id == CHANNEL

    channel, payload = gateway.send_interaction_request.await_args.args
    assert channel == CHANNEL
    assert payload["type"] == "transaction"
    assert payload["id"] == interaction_id
    assert payload["title"] == "🚀 Deploy Escrow"
    assert payload["recipient"] == Web3.to_checksum_address(SELLER)
    assert set(payload["tx"]) == {"chainId", "to", "value", "data"}


@pytest.mark.asyncio
async def test_channel_override(orchestrator, gateway):
    await orchestrator.request_action(_deal(), TransactionAction.FUND, channel_id="other-chat")
    assert gateway.send_interaction_request.await_args.args[0] == "other-chat"


@pytest.mark.asyncio
async def test_recipient_only_for_chain_addresses(orchestrator, gateway):
    await orchestrator.request_action(_deal(), "release", acting_user="telegram-user-42")
    payload = gateway.send_interaction_request.await_args.args[1]
    assert "recipient" not in payload


@pytest.mark.asyncio
async def test_invalid_action_registers_nothing(orchestrator, registry, gateway):
    with pytest.raises(InvalidActionError):
        await orchestrator.request_action(_deal(), "withdraw")

    assert len(registry) == 0
    gateway.send_interaction_request.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_escrow_registers_nothing(orchestrator, registry, gateway):
    with pytest.raises(MissingEscrowAddressError):
        await orchestrator.request_action(_deal(escrow_address=None), TransactionAction.APPROVE)

    assert len(registry) == 0
    gateway.send_interaction_request.assert_not_awaited()


@pytest.mark.asyncio
async def test_dispatch_timeout_keeps_pending_entry(orchestrator, registry, gateway):
    async def slow_send(channel_id, payload):
        await asyncio.sleep(5)

    gateway.send_interaction_request.side_effect = slow_send

    with pytest.raises(InteractionDispatchTimeout):
        await orchestrator.request_action(_deal(), TransactionAction.FUND)

    assert len(registry) == 1
    assert await registry.has_pending("D1", TransactionAction.FUND)


@pytest.mark.asyncio
async def test_dispatch_error_keeps_pending_entry(orchestrator, registry, gateway):
    gateway.send_interaction_request.side_effect = RuntimeError("Chat not found")

    with pytest.raises(InteractionDispatchError) as exc_info:
        await orchestrator.request_action(_deal(), TransactionAction.DISPUTE)

    assert not isinstance(exc_info.value, InteractionDispatchTimeout)
    assert len(registry) == 1
