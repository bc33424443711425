"""
Tests for the interaction correlator and the create -> approve -> fund chain
"""

import pytest

from models import TransactionAction
from services.errors import ChainReadError
from services.interaction_correlator import InteractionCorrelator
from services.messaging_gateway import InteractionResponse
from services.transaction_orchestrator import TransactionOrchestrator

from conftest import BUYER, CHANNEL, ESCROW


@pytest.fixture
def correlator(registry, gateway, store, chain, deal_locks, settings):
    orchestrator = TransactionOrchestrator(registry, gateway, settings)
    return InteractionCorrelator(registry, orchestrator, store, chain, gateway, deal_locks, settings)


def _requested_actions(gateway):
    return [call.args[1]["id"].split("-")[2] for call in gateway.send_interaction_request.await_args_list]


def _sent_texts(gateway):
    return [call.args[1] for call in gateway.send_message.await_args_list]


@pytest.mark.asyncio
async def test_unknown_interaction_is_ignored(correlator, store, gateway, make_deal):
    await make_deal("D1")

    result = await correlator.handle_response(InteractionResponse("tx-D1-create-1", tx_hash="0xabc"))

    assert result is None
    assert (await store.get_deal_by_id("D1")).status == "draft"
    gateway.send_message.assert_not_awaited()
    gateway.send_interaction_request.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_success_records_escrow_and_requests_one_approve(correlator, registry, store, chain, gateway, make_deal):
    await make_deal("D1")
    pending = await registry.register("D1", TransactionAction.CREATE, CHANNEL)
    chain.escrow_for_tx["0xcreate"] = ESCROW

    matched = await correlator.handle_response(InteractionResponse(pending.interaction_id, tx_hash="0xcreate"))

    assert matched is pending
    deal = await store.get_deal_by_id("D1")
    assert deal.status == "created"
    assert deal.escrow_address == ESCROW
    assert _requested_actions(gateway) == ["approve"]
    assert gateway.send_interaction_request.await_args.args[1]["recipient"].lower() == BUYER
    assert await registry.has_pending("D1", TransactionAction.APPROVE)
    assert pending.interaction_id not in registry

    texts = _sent_texts(gateway)
    assert "Transaction Confirmed" in texts[0]
    assert "Approve USDC" in texts[-1]


@pytest.mark.asyncio
async def test_duplicate_response_is_handled_once(correlator, registry, chain, gateway, make_deal):
    await make_deal("D1")
    pending = await registry.register("D1", TransactionAction.CREATE, CHANNEL)
    chain.escrow_for_tx["0xcreate"] = ESCROW
    response = InteractionResponse(pending.interaction_id, tx_hash="0xcreate")

    await correlator.handle_response(response)
    assert await correlator.handle_response(response) is None

    assert _requested_actions(gateway) == ["approve"]


@pytest.mark.asyncio
async def test_approve_success_requests_one_fund(correlator, registry, store, gateway, make_deal):
    await make_deal("D1", status="created", escrow_address=ESCROW)
    pending = await registry.register("D1", TransactionAction.APPROVE, CHANNEL)

    await correlator.handle_response(InteractionResponse(pending.interaction_id, tx_hash="0xapprove"))

    assert _requested_actions(gateway) == ["fund"]
    assert (await store.get_deal_by_id("D1")).status == "created"
    assert "Deposit Funds" in _sent_texts(gateway)[-1]


@pytest.mark.asyncio
async def test_fund_success_marks_funded_and_ends_chain(correlator, registry, store, gateway, make_deal):
    await make_deal("D1", status="created", escrow_address=ESCROW)
    pending = await registry.register("D1", TransactionAction.FUND, CHANNEL)

    await correlator.handle_response(InteractionResponse(pending.interaction_id, tx_hash="0xfund"))

    deal = await store.get_deal_by_id("D1")
    assert deal.status == "funded"
    assert deal.escrow_address == ESCROW
    gateway.send_interaction_request.assert_not_awaited()
    assert "Funds Deposited" in _sent_texts(gateway)[-1]
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_fund_does_not_regress_status_already_ahead(correlator, registry, store, make_deal):
    await make_deal("D1", status="disputed", escrow_address=ESCROW)
    pending = await registry.register("D1", TransactionAction.FUND, CHANNEL)

    await correlator.handle_response(InteractionResponse(pending.interaction_id, tx_hash="0xfund"))

    assert (await store.get_deal_by_id("D1")).status == "disputed"


@pytest.mark.asyncio
async def test_reverted_approve_stops_chain(correlator, registry, chain, gateway, make_deal):
    await make_deal("D1", status="created", escrow_address=ESCROW)
    pending = await registry.register("D1", TransactionAction.APPROVE, CHANNEL)
    chain.receipt_success["0xapprove"] = False

    await correlator.handle_response(InteractionResponse(pending.interaction_id, tx_hash="0xapprove"))

    gateway.send_interaction_request.assert_not_awaited()
    assert "Transaction Failed" in _sent_texts(gateway)[-1]


@pytest.mark.asyncio
async def test_unreadable_approve_receipt_still_requests_fund(correlator, registry, chain, gateway, make_deal):
    await make_deal("D1", status="created", escrow_address=ESCROW)
    pending = await registry.register("D1", TransactionAction.APPROVE, CHANNEL)
    chain.receipt_success["0xapprove"] = ChainReadError("Receipt not available: timeout")

    await correlator.handle_response(InteractionResponse(pending.interaction_id, tx_hash="0xapprove"))

    assert _requested_actions(gateway) == ["fund"]
    assert not any("Transaction Failed" in text for text in _sent_texts(gateway))


@pytest.mark.asyncio
async def test_unreadable_fund_receipt_still_marks_funded(correlator, registry, store, chain, gateway, make_deal):
    await make_deal("D1", status="created", escrow_address=ESCROW)
    pending = await registry.register("D1", TransactionAction.FUND, CHANNEL)
    chain.receipt_success["0xfund"] = ChainReadError("Receipt not available: timeout")

    await correlator.handle_response(InteractionResponse(pending.interaction_id, tx_hash="0xfund"))

    assert (await store.get_deal_by_id("D1")).status == "funded"
    assert "Funds Deposited" in _sent_texts(gateway)[-1]


@pytest.mark.asyncio
async def test_wallet_error_reports_failure_without_state_change(correlator, registry, store, gateway, make_deal):
    await make_deal("D1", status="created", escrow_address=ESCROW)
    pending = await registry.register("D1", TransactionAction.FUND, CHANNEL)

    await correlator.handle_response(InteractionResponse(pending.interaction_id, error="User rejected the request"))

    texts = _sent_texts(gateway)
    assert len(texts) == 1
    assert "User rejected the request" in texts[0]
    assert (await store.get_deal_by_id("D1")).status == "created"
    gateway.send_interaction_request.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_creation_log_stalls_chain(correlator, registry, store, gateway, make_deal):
    await make_deal("D1")
    pending = await registry.register("D1", TransactionAction.CREATE, CHANNEL)

    await correlator.handle_response(InteractionResponse(pending.interaction_id, tx_hash="0xnolog"))

    deal = await store.get_deal_by_id("D1")
    assert deal.status == "draft"
    assert deal.escrow_address is None
    gateway.send_interaction_request.assert_not_awaited()


@pytest.mark.asyncio
async def test_auto_step_skipped_when_already_pending(correlator, registry, chain, gateway, make_deal):
    await make_deal("D1")
    await registry.register("D1", TransactionAction.APPROVE, CHANNEL)
    pending = await registry.register("D1", TransactionAction.CREATE, CHANNEL)
    chain.escrow_for_tx["0xcreate"] = ESCROW

    await correlator.handle_response(InteractionResponse(pending.interaction_id, tx_hash="0xcreate"))

    gateway.send_interaction_request.assert_not_awaited()
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_gateway_failure_does_not_escape(correlator, registry, store, gateway, make_deal):
    await make_deal("D1", status="created", escrow_address=ESCROW)
    pending = await registry.register("D1", TransactionAction.FUND, CHANNEL)
    gateway.send_message.side_effect = RuntimeError("Telegram unavailable")

    matched = await correlator.handle_response(InteractionResponse(pending.interaction_id, tx_hash="0xfund"))

    assert matched is pending
    assert (await store.get_deal_by_id("D1")).status == "funded"
