"""External collaborator contracts."""

from teamledger.services.providers.exchange_rates import TableExchangeRateProvider
from teamledger.services.providers.interface import (
    Conversion,
    ExchangeRateProvider,
    IdGenerator,
    NotificationTransport,
    SimilarityProvider,
    default_id_generator,
)

__all__ = [
    "Conversion",
    "ExchangeRateProvider",
    "IdGenerator",
    "NotificationTransport",
    "SimilarityProvider",
    "TableExchangeRateProvider",
    "default_id_generator",
]
