"""
Candidate Selection and Ranking

Pure functions: no storage, no providers, no clock. The engine feeds them
the data it loaded and acts on what they return.

CANDIDATE RULES:
- Transaction is live (not excluded or archived) and not linked to an inbox item
- Transaction date within +/- date_window_days of the document date
- Same currency: absolute amounts differ by at most amount_tolerance
- Different currency: compared through base amounts, with a relative
  tolerance widened by how stale the exchange rate is

Amounts are compared by absolute value. Documents carry positive totals
while bank outflows are negative.
"""

from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from teamledger.config import ReconciliationSettings
from teamledger.models.inbox import AnalysisOutcome, InboxItem
from teamledger.models.ledger import Transaction


class Candidate(BaseModel):
    """A transaction that passed the filters, with its score once known."""

    transaction: Transaction
    cross_currency: bool = False
    date_distance: int = Field(..., ge=0)
    score: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @property
    def is_scored(self) -> bool:
        return self.score is not None


class Decision(BaseModel):
    """What to do with an inbox item after scoring."""

    outcome: AnalysisOutcome
    best: Optional[Candidate] = None
    suggestions: list[Candidate] = Field(default_factory=list)


def cross_currency_tolerance(
    settings: ReconciliationSettings,
    reference: Decimal,
    staleness_days: int,
) -> Decimal:
    """
    Tolerance for comparing base amounts.

    The larger of the absolute tolerance and the relative one, widened by
    fx_staleness_widening_per_day for each day the rate is older than the
    document.
    """
    base = max(settings.amount_tolerance, settings.cross_currency_tolerance_pct * abs(reference))
    widening = 1 + settings.fx_staleness_widening_per_day * max(0, staleness_days)
    return base * widening


def select_candidates(
    item: InboxItem,
    transactions: Iterable[Transaction],
    linked_ids: set[UUID],
    settings: ReconciliationSettings,
    base_currency: Optional[str] = None,
    item_base_amount: Optional[Decimal] = None,
    staleness_days: int = 0,
) -> list[Candidate]:
    """
    Filter transactions down to reconciliation candidates for one item.

    Args:
        item: The inbox item; without amount, currency and date nothing matches
        transactions: Transactions of the item's team
        linked_ids: Transactions already linked to an inbox item
        settings: Window and tolerances
        base_currency: The team's base currency
        item_base_amount: The item's amount in base_currency, if known.
            Without it, cross-currency candidates are skipped.
        staleness_days: Age of the rate used for item_base_amount
    """
    if item.amount is None or item.currency is None or item.date is None:
        return []

    candidates = []
    for txn in transactions:
        if txn.team_id != item.team_id:
            continue
        if not txn.status.is_matchable or txn.id in linked_ids:
            continue

        distance = abs((txn.date - item.date).days)
        if distance > settings.date_window_days:
            continue

        if txn.currency == item.currency:
            if abs(abs(txn.amount) - abs(item.amount)) > settings.amount_tolerance:
                continue
            cross_currency = False
        else:
            if (
                item_base_amount is None
                or txn.base_amount is None
                or txn.base_currency != base_currency
            ):
                continue
            tolerance = cross_currency_tolerance(settings, item_base_amount, staleness_days)
            if abs(abs(txn.base_amount) - abs(item_base_amount)) > tolerance:
                continue
            cross_currency = True

        candidates.append(Candidate(
            transaction=txn,
            cross_currency=cross_currency,
            date_distance=distance,
        ))
    return candidates


def rank(candidates: Iterable[Candidate]) -> list[Candidate]:
    """
    Order scored candidates best first.

    Score descending, then nearest date, then the most recent transaction
    (created_at, then id). Unscored candidates are dropped.
    """
    scored = [c for c in candidates if c.is_scored]
    return sorted(
        scored,
        key=lambda c: (
            -c.score,
            c.date_distance,
            -c.transaction.created_at.timestamp(),
            -c.transaction.id.int,
        ),
    )


def decide(candidates: Iterable[Candidate], settings: ReconciliationSettings) -> Decision:
    """
    Apply the thresholds to ranked candidates.

    best > auto_confirm_threshold   -> auto match
    best > review_threshold         -> suggestions above review_threshold
    otherwise                       -> no match
    """
    ranked = rank(candidates)
    if not ranked:
        return Decision(outcome=AnalysisOutcome.NO_MATCH)

    best = ranked[0]
    if best.score > settings.auto_confirm_threshold:
        return Decision(outcome=AnalysisOutcome.AUTO_MATCHED, best=best, suggestions=[best])
    if best.score > settings.review_threshold:
        suggestions = [c for c in ranked if c.score > settings.review_threshold]
        return Decision(
            outcome=AnalysisOutcome.SUGGESTED,
            best=best,
            suggestions=suggestions[:settings.max_suggestions],
        )
    return Decision(outcome=AnalysisOutcome.NO_MATCH, best=best)
