"""Wiring of the orchestration services around shared collaborators"""

from dataclasses import dataclass
from typing import Optional

from config import Config
from services.chain_reader import ChainReader
from services.deal_store import DealStore
from services.interaction_correlator import InteractionCorrelator
from services.messaging_gateway import MessagingGateway, TelegramMessagingGateway
from services.pending_interactions import PendingInteractionRegistry
from services.reconciliation_poller import DealReconciliationPoller
from services.transaction_orchestrator import TransactionOrchestrator
from utils.deal_locks import DealLockManager


@dataclass
class DealServices:
    store: DealStore
    chain_reader: ChainReader
    gateway: MessagingGateway
    registry: PendingInteractionRegistry
    deal_locks: DealLockManager
    orchestrator: TransactionOrchestrator
    correlator: InteractionCorrelator
    poller: DealReconciliationPoller
    settings: type = Config


def build_services(store: Optional[DealStore] = None, chain_reader: Optional[ChainReader] = None,
                   gateway: Optional[MessagingGateway] = None, settings=Config) -> DealServices:
    """
    Build the service graph. Collaborators not passed in are created from settings;
    the registry and deal locks are always fresh and shared by every component.
    """
    store = store or DealStore()
    chain_reader = chain_reader or ChainReader(settings=settings)
    gateway = gateway or TelegramMessagingGateway(app_url=settings.APP_URL)
    registry = PendingInteractionRegistry()
    deal_locks = DealLockManager()
    orchestrator = TransactionOrchestrator(registry, gateway, settings)
    correlator = InteractionCorrelator(registry, orchestrator, store, chain_reader, gateway, deal_locks, settings)
    poller = DealReconciliationPoller(store, chain_reader, gateway, deal_locks, settings)
    return DealServices(
        store=store,
        chain_reader=chain_reader,
        gateway=gateway,
        registry=registry,
        deal_locks=deal_locks,
        orchestrator=orchestrator,
        correlator=correlator,
        poller=poller,
        settings=settings,
    )
