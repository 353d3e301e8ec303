"""
Core Wiring for Team Ledger

This module ties the components together:
1. Ledger service        (bank transactions)
2. Reconciliation engine (inbox items <-> transactions)
3. Invoice manager       (invoice lifecycle)
4. Activity recorder     (event feed + notifications)

DESIGN DECISION: All four share one storage, one activity recorder and one
id generator. External collaborators (similarity scoring, exchange rates,
notification transport) are passed in; the core never constructs clients
for outside services itself.
"""

from typing import Optional

from teamledger.activity import ActivityRecorder, configure_logging
from teamledger.config import (
    InvoiceSettings,
    LedgerSettings,
    NotificationSettings,
    ReconciliationSettings,
    get_settings,
)
from teamledger.invoicing import InvoiceLifecycleManager
from teamledger.ledger import LedgerService
from teamledger.reconciliation import ReconciliationEngine
from teamledger.services.providers import (
    ExchangeRateProvider,
    IdGenerator,
    NotificationTransport,
    SimilarityProvider,
    TableExchangeRateProvider,
    default_id_generator,
)
from teamledger.services.storage import InMemoryLedgerStorage, LedgerStorageInterface


class LedgerCore:
    """The wired set of core services sharing one store."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        activities: ActivityRecorder,
        ledger: LedgerService,
        reconciliation: ReconciliationEngine,
        invoices: InvoiceLifecycleManager,
    ):
        self.storage = storage
        self.activities = activities
        self.ledger = ledger
        self.reconciliation = reconciliation
        self.invoices = invoices


def create_core(
    similarity: SimilarityProvider,
    storage: Optional[LedgerStorageInterface] = None,
    exchange_rates: Optional[ExchangeRateProvider] = None,
    transport: Optional[NotificationTransport] = None,
    id_generator: Optional[IdGenerator] = None,
    reconciliation_settings: Optional[ReconciliationSettings] = None,
    ledger_settings: Optional[LedgerSettings] = None,
    invoice_settings: Optional[InvoiceSettings] = None,
    notification_settings: Optional[NotificationSettings] = None,
) -> LedgerCore:
    """
    Factory function to create all core components.

    Args:
        similarity: Scores inbox item / transaction pairs
        storage: Transactional store. Defaults to a fresh in-memory store.
        exchange_rates: Rate provider. Defaults to an empty rate table,
            which only supports same-currency conversions.
        transport: Notification transport. If None, activities are only
            logged and stored.
        id_generator: Source of every id. Defaults to uuid4.
        *_settings: Overrides for the environment-derived settings

    Returns:
        LedgerCore with every service wired to the same store
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)

    storage = storage or InMemoryLedgerStorage()
    exchange_rates = exchange_rates or TableExchangeRateProvider()
    id_generator = id_generator or default_id_generator
    ledger_settings = ledger_settings or settings.ledger

    activities = ActivityRecorder(
        storage,
        transport=transport,
        id_generator=id_generator,
        settings=notification_settings or settings.notification,
    )

    return LedgerCore(
        storage=storage,
        activities=activities,
        ledger=LedgerService(
            storage,
            activities,
            exchange_rates,
            id_generator=id_generator,
            settings=ledger_settings,
        ),
        reconciliation=ReconciliationEngine(
            storage,
            activities,
            similarity,
            exchange_rates,
            id_generator=id_generator,
            settings=reconciliation_settings or settings.reconciliation,
            supported_currencies=ledger_settings.supported_currencies_set,
        ),
        invoices=InvoiceLifecycleManager(
            storage,
            activities,
            id_generator=id_generator,
            settings=invoice_settings or settings.invoice,
            supported_currencies=ledger_settings.supported_currencies_set,
        ),
    )
