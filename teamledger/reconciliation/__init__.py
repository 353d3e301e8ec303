"""Inbox reconciliation: candidate matching and the engine driving inbox items."""

from teamledger.reconciliation.engine import ReconciliationEngine
from teamledger.reconciliation.matching import (
    Candidate,
    Decision,
    cross_currency_tolerance,
    decide,
    rank,
    select_candidates,
)

__all__ = [
    "Candidate",
    "Decision",
    "ReconciliationEngine",
    "cross_currency_tolerance",
    "decide",
    "rank",
    "select_candidates",
]
