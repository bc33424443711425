"""
Deal Notifications
Pure functions deciding which chat message, if any, a status change produces.
No I/O: the caller fetches the dispute winner and delivers the text.
"""

from typing import Optional

from models import Deal, DealStatus, TransactionAction
from services.transaction_builder import short_address

# Only these transitions are announced; created and funded stay silent
NOTIFIED_STATUSES = frozenset({
    DealStatus.DISPUTED.value,
    DealStatus.RELEASED.value,
    DealStatus.REFUNDED.value,
    DealStatus.RESOLVED.value,
})


def needs_dispute_winner(new_status: str) -> bool:
    return new_status == DealStatus.RESOLVED.value


def winner_role(deal: Deal, winner: Optional[str]) -> Optional[str]:
    """'seller', 'buyer' or None, comparing addresses case-insensitively"""
    if not winner:
        return None
    winner_lower = winner.lower()
    if deal.seller_address and winner_lower == deal.seller_address.lower():
        return "seller"
    if deal.buyer_address and winner_lower == deal.buyer_address.lower():
        return "buyer"
    return None


def dispute_opened_message(deal: Deal, arbitrator_address: str) -> str:
    return (
        f"⚠️ **DISPUTE OPENED**\n\n"
        f"Deal `{deal.deal_id}` has been flagged for dispute.\n"
        f"Arbitrator: {short_address(arbitrator_address)}\n\n"
        f"The protocol arbitrator will review the transaction evidence."
    )


def dispute_resolved_message(deal: Deal, winner: Optional[str]) -> str:
    msg = f"⚖️ **DISPUTE RESOLVED**\n\nArbitrator has settled Deal `{deal.deal_id}`."
    role = winner_role(deal, winner)
    if role == "seller":
        msg += "\n\n✅ **Winner:** Seller\n💰 Funds transferred to seller."
    elif role == "buyer":
        msg += "\n\n✅ **Winner:** Buyer\n💰 Funds returned to buyer."
    return msg


def build_status_notification(deal: Deal, old_status: Optional[str], new_status: str,
                              arbitrator_address: str, winner: Optional[str] = None) -> Optional[str]:
    """
    Message for a cached status change, or None when nothing is announced.

    Args:
        deal: Deal whose status changed
        old_status: Status before the change
        new_status: Status after the change
        arbitrator_address: Named in the dispute-opened notice
        winner: DisputeResolved winner, only consulted for 'resolved'
    """
    if old_status == new_status or new_status not in NOTIFIED_STATUSES:
        return None

    if new_status == DealStatus.DISPUTED.value:
        return dispute_opened_message(deal, arbitrator_address)
    if new_status == DealStatus.RELEASED.value:
        return f"💎 **DEAL COMPLETED**\nFunds released to seller for Deal `{deal.deal_id}`."
    if new_status == DealStatus.REFUNDED.value:
        return f"↩️ **DEAL REFUNDED**\nFunds returned to buyer for Deal `{deal.deal_id}`."
    return dispute_resolved_message(deal, winner)


# --- Interaction outcome messages ---

def transaction_confirmed_message(action: TransactionAction, deal_id: str, tx_hash: str, explorer_url: str) -> str:
    return (
        f"✅ **Transaction Confirmed!**\n\n"
        f"Action: **{action.value.upper()}**\n"
        f"Deal: `{deal_id}`\n\n"
        f"[View on BaseScan]({explorer_url}/tx/{tx_hash})"
    )


def transaction_failed_message(action: TransactionAction, error: str) -> str:
    return (
        f"❌ **Transaction Failed**\n\n"
        f"Action: **{action.value.upper()}**\n"
        f"Error: {error}\n\n"
        f"Please try again or contact support."
    )


def next_step_message(action: TransactionAction, token_symbol: str) -> str:
    if action is TransactionAction.APPROVE:
        return f"👉 **Next Step:** Automated \"Approve {token_symbol}\" request sent to Buyer."
    return f"👉 **Next Step:** {token_symbol} Approved! Automated \"Deposit Funds\" request sent to Buyer."


FUNDED_INSTRUCTIONS = (
    "🎉 **Funds Deposited!**\n\n"
    "The escrow is now fully funded and secured on-chain.\n\n"
    "👉 **Next Step:** Return to the App to **Release Funds** (Seller) or **Raise Dispute** (Buyer/Seller)."
)
