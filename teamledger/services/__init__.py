"""Services package."""

from teamledger.services.providers import (
    Conversion,
    ExchangeRateProvider,
    IdGenerator,
    NotificationTransport,
    SimilarityProvider,
    TableExchangeRateProvider,
    default_id_generator,
)
from teamledger.services.storage import (
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    require_team_id,
)

__all__ = [
    # Collaborators
    "Conversion",
    "ExchangeRateProvider",
    "IdGenerator",
    "NotificationTransport",
    "SimilarityProvider",
    "TableExchangeRateProvider",
    "default_id_generator",
    # Storage
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "require_team_id",
]
