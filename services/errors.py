"""Exception hierarchy for deal orchestration"""


class DealEscrowError(Exception):
    """Base class for all deal escrow errors"""


class InvalidActionError(DealEscrowError, ValueError):
    """Action is not one of the supported transaction actions"""

    def __init__(self, action):
        self.action = action
        super().__init__(f"Invalid action: {action!r}")


class MissingEscrowAddressError(DealEscrowError):
    """Action targets the escrow instance but the deal has not been deployed yet"""

    def __init__(self, deal_id: str, action: str):
        self.deal_id = deal_id
        self.action = action
        super().__init__(f"Deal {deal_id} has no escrow address; cannot build '{action}' transaction")


class DealNotFoundError(DealEscrowError, LookupError):
    def __init__(self, deal_id: str):
        self.deal_id = deal_id
        super().__init__(f"Deal not found: {deal_id}")


class InteractionDispatchError(DealEscrowError):
    """Signing request could not be delivered through the messaging gateway"""


class InteractionDispatchTimeout(InteractionDispatchError):
    """Signing request delivery exceeded the configured timeout"""


class ChainReadError(DealEscrowError):
    """Read-only chain query failed"""
