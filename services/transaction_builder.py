"""
Transaction Builder
Pure mapping from (deal, action) to the transaction a participant must sign.
Nothing here touches the network or the database.
"""

import logging
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, Optional, Sequence

from eth_abi import encode
from web3 import Web3

from config import Config
from models import Deal, TransactionAction, parse_action
from services.errors import InvalidActionError, MissingEscrowAddressError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransactionDescriptor:
    """Unsigned transaction plus the text shown to the signer"""
    to: str
    data: str
    chain_id: int
    title: str
    subtitle: str
    description: str = ""
    value: str = "0"

    def to_tx_payload(self) -> Dict[str, str]:
        return {
            "chainId": str(self.chain_id),
            "to": self.to,
            "value": self.value,
            "data": self.data,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def encode_call(signature: str, arg_types: Sequence[str] = (), args: Sequence[Any] = ()) -> str:
    """ABI-encode a function call: 4-byte selector followed by the encoded arguments"""
    selector = Web3.keccak(text=signature)[:4]
    payload = encode(list(arg_types), list(args)) if arg_types else b""
    return Web3.to_hex(selector + payload)


def to_base_units(amount: str, decimals: int) -> int:
    """Scale a decimal string of whole tokens to integer base units"""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid token amount: {amount!r}") from e
    if value <= 0:
        raise ValueError(f"Token amount must be positive: {amount!r}")
    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(scaled)


def from_base_units(raw: int, decimals: int) -> str:
    value = Decimal(int(raw)) / (Decimal(10) ** decimals)
    return format(value.normalize(), "f") if value else "0"


def memo_hash(deal_id: str) -> bytes:
    """keccak256 of the UTF-8 deal id, stored on-chain as the escrow memo"""
    return bytes(Web3.keccak(text=deal_id))


def short_address(address: Optional[str]) -> str:
    if not address:
        return "0x..."
    return f"0x...{address[-4:]}"


def _require_escrow(deal: Deal, action: TransactionAction) -> str:
    if not deal.escrow_address:
        raise MissingEscrowAddressError(deal.deal_id, action.value)
    return Web3.to_checksum_address(deal.escrow_address)


def build_transaction(deal: Deal, action, settings=Config) -> TransactionDescriptor:
    """
    Build the transaction descriptor for one action on a deal.

    Args:
        deal: Deal row (persisted fields only are used)
        action: TransactionAction or its string value
        settings: Object carrying FACTORY_ADDRESS, TOKEN_ADDRESS, ARBITRATOR_ADDRESS,
            CHAIN_ID, TOKEN_DECIMALS, TOKEN_SYMBOL

    Raises:
        InvalidActionError: action is not a TransactionAction
        MissingEscrowAddressError: action needs the escrow instance and the deal has none
    """
    parsed = parse_action(action)
    if parsed is None:
        raise InvalidActionError(action)

    symbol = settings.TOKEN_SYMBOL
    amount_units = to_base_units(deal.amount, settings.TOKEN_DECIMALS)
    chain_id = int(settings.CHAIN_ID)

    if parsed is TransactionAction.CREATE:
        factory = Web3.to_checksum_address(settings.FACTORY_ADDRESS)
        data = encode_call(
            "createEscrow(address,address,uint256,uint256,address,bytes32)",
            ["address", "address", "uint256", "uint256", "address", "bytes32"],
            [
                Web3.to_checksum_address(deal.seller_address),
                Web3.to_checksum_address(settings.TOKEN_ADDRESS),
                amount_units,
                int(deal.deadline),
                Web3.to_checksum_address(settings.ARBITRATOR_ADDRESS),
                memo_hash(deal.deal_id),
            ],
        )
        return TransactionDescriptor(
            to=factory,
            data=data,
            chain_id=chain_id,
            title="🚀 Deploy Escrow",
            subtitle=f"Create secure escrow instance for {deal.amount} {symbol}",
            description=f"Deploying a new escrow contract via Factory ({short_address(factory)}) for Deal {deal.deal_id}.",
        )

    escrow = _require_escrow(deal, parsed)

    if parsed is TransactionAction.APPROVE:
        return TransactionDescriptor(
            to=Web3.to_checksum_address(settings.TOKEN_ADDRESS),
            data=encode_call("approve(address,uint256)", ["address", "uint256"], [escrow, amount_units]),
            chain_id=chain_id,
            title=f"💰 Approve {symbol}",
            subtitle=f"Authorize escrow to handle {deal.amount} {symbol}",
            description=f"Allowing the Escrow contract ({short_address(escrow)}) to pull {symbol} for funding.",
        )

    if parsed is TransactionAction.FUND:
        return TransactionDescriptor(
            to=escrow,
            data=encode_call("fund()"),
            chain_id=chain_id,
            title="🔒 Fund Escrow",
            subtitle=f"Deposit {deal.amount} {symbol} into agreement",
            description=f"Transferring {deal.amount} {symbol} from your wallet into the Escrow contract ({short_address(escrow)}).",
        )

    if parsed is TransactionAction.RELEASE:
        return TransactionDescriptor(
            to=escrow,
            data=encode_call("release()"),
            chain_id=chain_id,
            title="✅ Release Funds",
            subtitle=f"Send {deal.amount} {symbol} to seller",
            description=f"Completing the deal and releasing funds to {short_address(deal.seller_address)}.",
        )

    if parsed is TransactionAction.DISPUTE:
        return TransactionDescriptor(
            to=escrow,
            data=encode_call("openDispute()"),
            chain_id=chain_id,
            title="⚠️ Raise Dispute",
            subtitle="Escalate this deal to arbitration",
            description=(
                f"Opening a dispute for the Escrow contract ({short_address(escrow)}). "
                f"The arbitrator ({short_address(settings.ARBITRATOR_ADDRESS)}) will decide the outcome."
            ),
        )

    if parsed is TransactionAction.RESOLVE:
        return TransactionDescriptor(
            to=escrow,
            data=encode_call("resolve(bool)", ["bool"], [True]),
            chain_id=chain_id,
            title="⚖️ Resolve Dispute",
            subtitle="Arbiter final decision",
            description="Final settlement of the dispute in favor of the Seller.",
        )

    # Unreachable while every TransactionAction member is handled above
    raise InvalidActionError(action)
