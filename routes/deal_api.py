"""
Deal API Routes
Read-side and action endpoints used by the signing web app and the dashboard
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request

from models import Deal, parse_action
from services.container import DealServices
from services.deal_notifications import build_status_notification, needs_dispute_winner
from services.errors import (
    ChainReadError,
    DealNotFoundError,
    InteractionDispatchError,
    InteractionDispatchTimeout,
    InvalidActionError,
    MissingEscrowAddressError,
)
from services.messaging_gateway import InteractionResponse
from services.transaction_builder import from_base_units
from utils.deal_state_machine import DealStateValidator, chain_status_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["deals"])


def get_services(request: Request) -> DealServices:
    services = getattr(request.app.state, "deal_services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return services


async def _load_deal(services: DealServices, deal_id: str) -> Deal:
    deal = await services.store.get_deal_by_id(deal_id)
    if deal is None:
        raise DealNotFoundError(deal_id)
    return deal


async def _read_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


def _deadline_iso(deadline: int):
    """ISO timestamp for a chain deadline, or the raw value when it is out of datetime range"""
    try:
        return datetime.fromtimestamp(deadline, tz=timezone.utc).isoformat()
    except (OverflowError, ValueError, OSError):
        return deadline


@router.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/ping")
async def ping():
    return {"pong": True}


@router.get("/deal/{deal_id}")
async def get_deal(deal_id: str, request: Request):
    deal = await _load_deal(get_services(request), deal_id)
    return deal.to_dict()


@router.get("/deals/user/{address}")
async def get_user_deals(address: str, request: Request, role: str = Query("buyer")):
    if role not in ("buyer", "seller"):
        raise HTTPException(status_code=400, detail="role must be 'buyer' or 'seller'")
    services = get_services(request)
    deals = await services.store.get_deals_by_user(address, role=role)
    return {"deals": [deal.to_dict() for deal in deals]}


@router.post("/deal/{deal_id}/status")
async def update_deal_status(deal_id: str, request: Request):
    """
    Manual status update from the dashboard.
    Runs under the deal lock, refuses regressions and announces the change
    the same way the reconciliation poller would.
    """
    services = get_services(request)
    body = await _read_json(request)
    status = body.get("status")
    escrow_address = body.get("escrowAddress")
    if not DealStateValidator.is_known_status(status):
        raise HTTPException(status_code=400, detail=f"Unknown status: {status!r}")

    async with services.deal_locks.lock(deal_id):
        current = await _load_deal(services, deal_id)
        old_status = current.status
        if old_status != status and not DealStateValidator.is_forward_transition(old_status, status):
            raise HTTPException(status_code=409, detail=f"Cannot move deal from {old_status} to {status}")
        updated = await services.store.update_deal_status(deal_id, status, escrow_address)
        if updated is None:
            raise HTTPException(status_code=409, detail="Escrow address already set to a different value")

    if old_status != status:
        try:
            winner = None
            if needs_dispute_winner(status) and updated.escrow_address:
                winner = await services.chain_reader.get_dispute_winner(updated.escrow_address)
            message = build_status_notification(
                updated, old_status, status,
                arbitrator_address=services.settings.ARBITRATOR_ADDRESS,
                winner=winner,
            )
            if message:
                await services.gateway.send_message(updated.channel_id, message)
        except Exception as e:
            logger.error(f"❌ STATUS_NOTIFY_FAILED: {deal_id} {status}: {e}")

    return {"success": True, "deal": updated.to_dict()}


@router.post("/request-transaction")
async def request_transaction(request: Request):
    services = get_services(request)
    body = await _read_json(request)
    deal_id = body.get("dealId")
    action = parse_action(body.get("action"))
    if not deal_id:
        raise HTTPException(status_code=400, detail="dealId is required")
    if action is None:
        raise HTTPException(status_code=400, detail=f"Invalid action: {body.get('action')!r}")

    deal = await _load_deal(services, deal_id)

    try:
        interaction_id = await services.orchestrator.request_action(
            deal, action,
            acting_user=body.get("userId"),
            channel_id=body.get("channelId"),
        )
    except (InvalidActionError, MissingEscrowAddressError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InteractionDispatchTimeout as e:
        raise HTTPException(status_code=504, detail=str(e))
    except InteractionDispatchError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {"success": True, "interactionId": interaction_id}


@router.post("/interaction-response")
async def interaction_response(request: Request, background_tasks: BackgroundTasks):
    """Wallet callback; matching and follow-up steps run after the reply is sent"""
    services = get_services(request)
    body = await _read_json(request)
    try:
        response = InteractionResponse.from_payload(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(services.correlator.handle_response, response)
    return {"success": True, "interactionId": response.interaction_id}


@router.get("/escrow/{address}")
async def escrow_info(address: str, request: Request):
    services = get_services(request)
    try:
        info = await services.chain_reader.get_deal_info(address)
    except ChainReadError as e:
        logger.error(f"❌ ESCROW_INFO_FAILED: {address}: {e}")
        raise HTTPException(status_code=502, detail="Could not read escrow contract")

    settings = services.settings
    return {
        "address": address,
        "buyer": info.buyer,
        "seller": info.seller,
        "token": info.token,
        "amount": from_base_units(info.amount, settings.TOKEN_DECIMALS),
        "deadline": _deadline_iso(info.deadline),
        "arbiter": info.arbiter,
        "status": chain_status_name(info.status),
        "fundedAt": info.funded_at or None,
        "explorerUrl": f"{settings.EXPLORER_URL}/address/{address}",
    }


@router.get("/stats")
async def escrow_stats(request: Request):
    services = get_services(request)
    try:
        total = await services.chain_reader.get_escrow_count()
    except ChainReadError as e:
        logger.error(f"❌ ESCROW_STATS_FAILED: {e}")
        raise HTTPException(status_code=502, detail="Could not read escrow factory")
    return {
        "totalEscrows": total,
        "factory": services.settings.FACTORY_ADDRESS,
        "pendingInteractions": len(services.registry),
    }
