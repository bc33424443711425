"""
Deal Store
Async CRUD over the cached deal projection
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from database import AsyncSessionLocal, async_managed_session
from models import Deal, DealStatus, utcnow
from utils.deal_state_machine import TERMINAL_STATUSES

logger = logging.getLogger(__name__)

DEFAULT_USER_DEALS_LIMIT = 20


class DealStore:
    """Reads and writes Deal rows; every call runs in its own short session"""

    def __init__(self, session_factory: async_sessionmaker = None):
        self.session_factory = session_factory or AsyncSessionLocal

    async def get_active_deals(self) -> List[Deal]:
        """Deals that are deployed on-chain and not yet in a terminal status"""
        async with async_managed_session(self.session_factory) as session:
            stmt = (
                select(Deal)
                .where(Deal.status.notin_(sorted(TERMINAL_STATUSES)))
                .where(Deal.escrow_address.isnot(None))
                .order_by(Deal.id)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_deal_by_id(self, deal_id: str) -> Optional[Deal]:
        async with async_managed_session(self.session_factory) as session:
            result = await session.execute(select(Deal).where(Deal.deal_id == deal_id))
            return result.scalar_one_or_none()

    async def get_deals_by_user(self, address: str, role: str = "buyer",
                                limit: int = DEFAULT_USER_DEALS_LIMIT) -> List[Deal]:
        """Most recent deals where address is the buyer (default) or the seller"""
        column = Deal.seller_address if role == "seller" else Deal.buyer_address
        async with async_managed_session(self.session_factory) as session:
            stmt = (
                select(Deal)
                .where(func.lower(column) == address.lower())
                .order_by(Deal.created_at.desc(), Deal.id.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def create_deal(self, **fields) -> Deal:
        fields.setdefault("status", DealStatus.DRAFT.value)
        deal = Deal(**fields)
        async with async_managed_session(self.session_factory) as session:
            session.add(deal)
            await session.flush()
        logger.info(f"✅ DEAL_CREATED: {deal.deal_id} seller={deal.seller_address} buyer={deal.buyer_address} amount={deal.amount}")
        return deal

    async def update_deal_status(self, deal_id: str, status: str,
                                 escrow_address: Optional[str] = None) -> Optional[Deal]:
        """
        Persist a new cached status.

        Args:
            deal_id: Deal to update
            status: New DealStatus value
            escrow_address: Escrow instance address. Ignored when None; assigned
                when the deal has none yet. An attempt to replace an existing
                address with a different one is refused.

        Returns:
            The updated Deal, or None when the deal does not exist or the write
            was refused
        """
        async with async_managed_session(self.session_factory) as session:
            result = await session.execute(select(Deal).where(Deal.deal_id == deal_id))
            deal = result.scalar_one_or_none()
            if deal is None:
                logger.warning(f"⚠️ DEAL_UPDATE_MISSING: {deal_id} not found")
                return None

            if escrow_address:
                if deal.escrow_address is None:
                    deal.escrow_address = escrow_address
                elif deal.escrow_address.lower() != escrow_address.lower():
                    logger.error(
                        f"❌ ESCROW_ADDRESS_CONFLICT: {deal_id} already bound to {deal.escrow_address}, "
                        f"refusing {escrow_address}"
                    )
                    return None

            previous = deal.status
            deal.status = status
            deal.updated_at = utcnow()
            await session.flush()
        logger.info(f"🔄 DEAL_STATUS_UPDATED: {deal_id} {previous} -> {status}")
        return deal
