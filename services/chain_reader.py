"""
Chain Reader
Read-only queries against the escrow factory and escrow instances on Base.

web3's HTTP provider is synchronous; every call is pushed to a worker thread
so the event loop keeps serving ticks and webhooks while an RPC is in flight.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional

from web3 import Web3
from web3.logs import DISCARD

from config import Config
from services.errors import ChainReadError

logger = logging.getLogger(__name__)

ABI_DIR = Path(__file__).parent / "abi"
DISPUTE_RESOLVED_SIGNATURE = "DisputeResolved(address,uint256)"


@lru_cache(maxsize=None)
def load_abi(name: str) -> List[dict]:
    """Load a bundled read-side ABI by file stem (EscrowFactory, Escrow)"""
    with open(ABI_DIR / f"{name}.json", "r", encoding="utf-8") as fh:
        return json.load(fh)


@dataclass(frozen=True)
class DealInfo:
    """Decoded getDealInfo() tuple"""
    buyer: str
    seller: str
    token: str
    amount: int  # raw token units
    deadline: int
    arbiter: str
    memo_hash: bytes
    status: int
    funded_at: int

    @classmethod
    def from_call_result(cls, info) -> "DealInfo":
        return cls(
            buyer=info[0],
            seller=info[1],
            token=info[2],
            amount=int(info[3]),
            deadline=int(info[4]),
            arbiter=info[5],
            memo_hash=bytes(info[6]),
            status=int(info[7]),
            funded_at=int(info[8]),
        )


def build_web3(rpc_url: str) -> Web3:
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))


class ChainReader:
    """Read-only view of the escrow contracts"""

    def __init__(self, w3: Optional[Web3] = None, settings=Config):
        self.settings = settings
        self.w3 = w3 or build_web3(settings.RPC_URL)

    def _factory(self):
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(self.settings.FACTORY_ADDRESS),
            abi=load_abi("EscrowFactory"),
        )

    def _escrow(self, escrow_address: str):
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(escrow_address),
            abi=load_abi("Escrow"),
        )

    async def get_deal_info(self, escrow_address: str) -> DealInfo:
        """
        Fetch the on-chain state of one escrow instance.

        Raises:
            ChainReadError: RPC failure or the address is not an escrow contract
        """
        try:
            info = await asyncio.to_thread(self._escrow(escrow_address).functions.getDealInfo().call)
        except Exception as e:
            raise ChainReadError(f"getDealInfo failed for {escrow_address}: {e}") from e
        return DealInfo.from_call_result(info)

    async def get_escrow_count(self) -> int:
        try:
            count = await asyncio.to_thread(self._factory().functions.getEscrowCount().call)
        except Exception as e:
            raise ChainReadError(f"getEscrowCount failed: {e}") from e
        return int(count)

    async def get_dispute_winner(self, escrow_address: str) -> Optional[str]:
        """
        Winner of the first DisputeResolved event emitted by the escrow, from genesis.

        Returns None when no such event exists or the lookup fails.
        """
        try:
            escrow = self._escrow(escrow_address)
            topic = Web3.to_hex(Web3.keccak(text=DISPUTE_RESOLVED_SIGNATURE))
            logs = await asyncio.to_thread(
                self.w3.eth.get_logs,
                {
                    "address": escrow.address,
                    "fromBlock": 0,
                    "toBlock": "latest",
                    "topics": [topic],
                },
            )
            if not logs:
                return None
            event = escrow.events.DisputeResolved().process_log(logs[0])
            return event["args"]["winner"]
        except Exception as e:
            logger.error(f"❌ DISPUTE_WINNER_LOOKUP_FAILED: {escrow_address}: {e}")
            return None

    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[int] = None) -> Any:
        timeout = timeout or self.settings.RECEIPT_TIMEOUT_SECONDS
        try:
            return await asyncio.to_thread(
                self.w3.eth.wait_for_transaction_receipt, tx_hash, timeout=timeout
            )
        except Exception as e:
            raise ChainReadError(f"Receipt for {tx_hash} not available: {e}") from e

    async def wait_for_success(self, tx_hash: str) -> bool:
        """True when the transaction was mined with status 1"""
        receipt = await self.wait_for_receipt(tx_hash)
        return int(receipt["status"]) == 1

    def extract_escrow_address(self, receipt) -> Optional[str]:
        """Escrow address from the factory's EscrowCreated log, None if absent"""
        events = self._factory().events.EscrowCreated().process_receipt(receipt, errors=DISCARD)
        if not events:
            return None
        return events[0]["args"]["escrowAddress"]

    async def wait_for_escrow_address(self, tx_hash: str) -> Optional[str]:
        """Wait for a createEscrow transaction and return the deployed escrow address"""
        receipt = await self.wait_for_receipt(tx_hash)
        if int(receipt["status"]) != 1:
            logger.warning(f"⚠️ CREATE_TX_REVERTED: {tx_hash}")
            return None
        return self.extract_escrow_address(receipt)
