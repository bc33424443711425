"""
Deal Escrow Bot - Database Schema
=================================

Cached projection of on-chain escrow deals. The escrow contract is the
source of truth; the `deals` table stores what the bot last observed plus
the off-chain fields (description, notification channel) the contract
does not carry.
"""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, Index
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class DealStatus(Enum):
    """Cached deal lifecycle states"""
    DRAFT = "draft"
    CREATED = "created"
    FUNDED = "funded"
    RELEASED = "released"
    REFUNDED = "refunded"
    DISPUTED = "disputed"
    RESOLVED = "resolved"


class EscrowChainStatus(IntEnum):
    """Status enum as returned by the escrow contract's getDealInfo()"""
    CREATED = 0
    FUNDED = 1
    RELEASED = 2
    REFUNDED = 3
    DISPUTED = 4
    RESOLVED = 5


class TransactionAction(Enum):
    """Transactions a participant can be asked to sign for a deal"""
    CREATE = "create"
    APPROVE = "approve"
    FUND = "fund"
    RELEASE = "release"
    DISPUTE = "dispute"
    RESOLVE = "resolve"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# DEALS
# ============================================================================

class Deal(Base):
    """Escrow deal between a buyer and a seller"""
    __tablename__ = 'deals'

    id = Column(Integer, primary_key=True, autoincrement=True)
    deal_id = Column(String(64), unique=True, nullable=False, index=True)  # Public facing ID

    # Participants (chain addresses)
    seller_address = Column(String(42), nullable=False)
    buyer_address = Column(String(42), nullable=False)

    # Terms; amount is a decimal string in whole token units
    amount = Column(String(78), nullable=False)
    token = Column(String(16), nullable=False, default="USDC")
    description = Column(Text, nullable=False)
    deadline = Column(BigInteger, nullable=False)  # unix seconds

    # Lifecycle
    status = Column(String(20), nullable=False, default=DealStatus.DRAFT.value)
    escrow_address = Column(String(42), nullable=True)  # Set once, when the escrow is deployed

    # Notification routing
    channel_id = Column(String(128), nullable=False)
    space_id = Column(String(128), nullable=True)
    message_id = Column(String(128), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_deals_seller', 'seller_address'),
        Index('idx_deals_buyer', 'buyer_address'),
        Index('idx_deals_status', 'status'),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the HTTP API"""
        return {
            "deal_id": self.deal_id,
            "seller_address": self.seller_address,
            "buyer_address": self.buyer_address,
            "amount": self.amount,
            "token": self.token,
            "description": self.description,
            "deadline": self.deadline,
            "status": self.status,
            "escrow_address": self.escrow_address,
            "channel_id": self.channel_id,
            "space_id": self.space_id,
            "message_id": self.message_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Deal {self.deal_id} status={self.status} escrow={self.escrow_address}>"


def parse_action(value: Any) -> Optional[TransactionAction]:
    """Coerce a TransactionAction or its string value; None when unknown"""
    if isinstance(value, TransactionAction):
        return value
    if isinstance(value, str):
        try:
            return TransactionAction(value.strip().lower())
        except ValueError:
            return None
    return None
