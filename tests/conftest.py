"""
Shared fixtures for the Deal Escrow Bot test suite

- In-memory SQLite (aiosqlite) database with the full schema per test
- Fake chain reader with scriptable statuses, receipts and dispute winners
- AsyncMock messaging gateway
- Fresh registry and deal locks per test
"""

import logging
from typing import Dict, Optional, Union
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from config import Config
from database import build_session_factory, create_tables
from models import DealStatus
from services.chain_reader import DealInfo
from services.deal_store import DealStore
from services.messaging_gateway import MessagingGateway
from services.pending_interactions import PendingInteractionRegistry
from utils.deal_locks import DealLockManager

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

SELLER = "0x1111111111111111111111111111111111111111"
BUYER = "0x2222222222222222222222222222222222222222"
ESCROW = "0x3333333333333333333333333333333333333333"
OTHER_ESCROW = "0x4444444444444444444444444444444444444444"
ARBITRATOR = "0x9999999999999999999999999999999999999999"
CHANNEL = "-100123456"


class FastSettings(Config):
    """Config with short timeouts for tests"""
    ARBITRATOR_ADDRESS = ARBITRATOR
    INTERACTION_TIMEOUT_SECONDS = 0.2
    RECEIPT_TIMEOUT_SECONDS = 1
    PENDING_INTERACTION_TTL_SECONDS = 3600


class FakeChainReader:
    """Stands in for ChainReader; every answer is scripted per test"""

    def __init__(self):
        self.statuses: Dict[str, Union[int, Exception]] = {}
        self.winners: Dict[str, Optional[str]] = {}
        self.receipt_success: Dict[str, Union[bool, Exception]] = {}
        self.escrow_for_tx: Dict[str, Optional[str]] = {}
        self.escrow_count = 0
        self.deadline = 1_900_000_000
        self.deal_info_calls = []

    async def get_deal_info(self, escrow_address: str) -> DealInfo:
        self.deal_info_calls.append(escrow_address)
        status = self.statuses[escrow_address]
        if isinstance(status, Exception):
            raise status
        return DealInfo(
            buyer=BUYER,
            seller=SELLER,
            token=Config.TOKEN_ADDRESS,
            amount=100_000_000,
            deadline=self.deadline,
            arbiter=ARBITRATOR,
            memo_hash=b"\x00" * 32,
            status=status,
            funded_at=0,
        )

    async def get_dispute_winner(self, escrow_address: str) -> Optional[str]:
        return self.winners.get(escrow_address)

    async def get_escrow_count(self) -> int:
        return self.escrow_count

    async def wait_for_success(self, tx_hash: str) -> bool:
        outcome = self.receipt_success.get(tx_hash, True)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def wait_for_escrow_address(self, tx_hash: str) -> Optional[str]:
        return self.escrow_for_tx.get(tx_hash)


@pytest.fixture
def settings():
    return FastSettings


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    assert await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def store(engine):
    return DealStore(build_session_factory(engine))


@pytest.fixture
def chain():
    return FakeChainReader()


@pytest.fixture
def gateway():
    gateway = AsyncMock(spec=MessagingGateway)
    gateway.send_message.return_value = None
    gateway.send_interaction_request.return_value = {"interaction_id": "ack", "message_id": 1}
    return gateway


@pytest.fixture
def registry():
    return PendingInteractionRegistry()


@pytest.fixture
def deal_locks():
    return DealLockManager()


@pytest.fixture
def make_deal(store):
    """Insert a deal with sensible defaults; keyword arguments override columns"""

    async def _make_deal(deal_id: str = "D1", **overrides):
        fields = {
            "deal_id": deal_id,
            "seller_address": SELLER,
            "buyer_address": BUYER,
            "amount": "100",
            "token": "USDC",
            "description": "Logo design",
            "deadline": 1_900_000_000,
            "status": DealStatus.DRAFT.value,
            "channel_id": CHANNEL,
        }
        fields.update(overrides)
        return await store.create_deal(**fields)

    return _make_deal
