"""
External Collaborator Interfaces

The core never talks to the outside world directly. Similarity scoring,
exchange rates and notification delivery sit behind these narrow async
interfaces so they can be swapped (or faked in tests).

DESIGN DECISION: The similarity provider is stateless from the core's
point of view. The core never computes embeddings; it only asks for a
score per (inbox item, transaction) pair.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from teamledger.models.inbox import InboxItem
from teamledger.models.ledger import Transaction


IdGenerator = Callable[[], UUID]
"""Zero-argument callable returning a fresh UUID. Injected everywhere ids are made."""


def default_id_generator() -> UUID:
    return uuid4()


class Conversion(BaseModel):
    """Result of converting an amount between currencies."""

    amount: Decimal
    rate: Decimal = Field(..., gt=0)
    rate_date: date

    def staleness_days(self, as_of: date) -> int:
        """How many days older the rate is than the date it was used for."""
        return max(0, (as_of - self.rate_date).days)


class SimilarityProvider(ABC):
    """Scores how likely an inbox item documents a transaction."""

    @abstractmethod
    async def score(self, inbox_item: InboxItem, transaction: Transaction) -> float:
        """
        Score one candidate pair.

        Returns:
            A similarity in [0, 1]
        """
        pass


class ExchangeRateProvider(ABC):
    """Converts amounts between currencies."""

    @abstractmethod
    async def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
        as_of: date,
    ) -> Conversion:
        """
        Convert an amount using the rate valid at as_of.

        Raises:
            DependencyError: If no rate is available or the provider fails
        """
        pass


class NotificationTransport(ABC):
    """
    Delivers activities to users.

    Delivery is at-least-once: the same activity id may arrive more than
    once and the transport dedups on it.
    """

    @abstractmethod
    async def deliver(self, activity_id: UUID, payload: dict[str, Any]) -> None:
        pass
