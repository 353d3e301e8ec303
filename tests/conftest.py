"""
Shared fixtures and fakes.

No real collaborators in tests: similarity scoring, exchange rates and the
notification transport are replaced by in-process fakes.
"""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import pytest
import pytest_asyncio

from teamledger.config import NotificationSettings, ReconciliationSettings
from teamledger.exceptions import DependencyError
from teamledger.models import ExchangeRate, InboxItem, Transaction
from teamledger.orchestrator import create_core
from teamledger.services.providers import (
    NotificationTransport,
    SimilarityProvider,
    TableExchangeRateProvider,
)
from teamledger.services.storage import InMemoryLedgerStorage


TODAY = date(2024, 3, 15)
RATE_TIME = datetime(2024, 3, 15, tzinfo=timezone.utc)


class CounterIds:
    """Deterministic id generator: UUID(int=1), UUID(int=2), ..."""

    def __init__(self):
        self.count = 0

    def __call__(self) -> UUID:
        self.count += 1
        return UUID(int=self.count)


class FakeSimilarityProvider(SimilarityProvider):
    """
    Scores looked up per transaction id.

    delays makes a call slow, failures makes it raise DependencyError,
    errors makes it raise the given exception, and gate (when set) holds
    every call until the event fires.
    """

    def __init__(self):
        self.scores: dict[UUID, float] = {}
        self.default = 0.0
        self.delays: dict[UUID, float] = {}
        self.failures: set[UUID] = set()
        self.errors: dict[UUID, Exception] = {}
        self.gate: Optional[asyncio.Event] = None
        self.calls: list[tuple[UUID, UUID]] = []

    async def score(self, inbox_item: InboxItem, transaction: Transaction) -> float:
        self.calls.append((inbox_item.id, transaction.id))
        if self.gate is not None:
            await self.gate.wait()
        if transaction.id in self.delays:
            await asyncio.sleep(self.delays[transaction.id])
        if transaction.id in self.failures:
            raise DependencyError("similarity", "scoring backend unavailable")
        if transaction.id in self.errors:
            raise self.errors[transaction.id]
        return self.scores.get(transaction.id, self.default)


class RecordingTransport(NotificationTransport):
    """
    Records deliveries; the first fail_times calls raise ConnectionError.

    gate (when set) holds every call until the event fires.
    """

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.attempts = 0
        self.delivered: list[tuple[UUID, dict[str, Any]]] = []
        self.gate: Optional[asyncio.Event] = None

    async def deliver(self, activity_id: UUID, payload: dict[str, Any]) -> None:
        if self.gate is not None:
            await self.gate.wait()
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise ConnectionError("transport down")
        self.delivered.append((activity_id, payload))


def transaction_record(internal_id: str, amount: str, currency: str = "USD", **fields: Any) -> dict:
    """A raw bank-sync record as a dict."""
    return {
        "internal_id": internal_id,
        "date": fields.pop("date", TODAY),
        "name": fields.pop("name", f"Payment {internal_id}"),
        "amount": amount,
        "currency": currency,
        **fields,
    }


@pytest.fixture
def ids():
    return CounterIds()


@pytest.fixture
def similarity():
    return FakeSimilarityProvider()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def exchange_rates():
    return TableExchangeRateProvider([
        ExchangeRate(base="EUR", target="USD", rate=Decimal("1.10"), updated_at=RATE_TIME),
        ExchangeRate(base="USD", target="JPY", rate=Decimal("150"), updated_at=RATE_TIME),
    ])


@pytest.fixture
def reconciliation_settings():
    return ReconciliationSettings(score_timeout_seconds=0.2)


@pytest.fixture
def core(similarity, transport, exchange_rates, ids, reconciliation_settings):
    return create_core(
        similarity,
        storage=InMemoryLedgerStorage(),
        exchange_rates=exchange_rates,
        transport=transport,
        id_generator=ids,
        reconciliation_settings=reconciliation_settings,
        notification_settings=NotificationSettings(delivery_attempts=3, delivery_backoff_seconds=0),
    )


@pytest_asyncio.fixture
async def team(core):
    return await core.ledger.create_team("Acme Studio", base_currency="USD")


@pytest_asyncio.fixture
async def other_team(core):
    return await core.ledger.create_team("Globex", base_currency="USD")
