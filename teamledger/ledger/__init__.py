"""Ledger ingestion and transaction operations."""

from teamledger.ledger.money import normalize_money, quantize_money
from teamledger.ledger.service import LedgerService

__all__ = ["LedgerService", "normalize_money", "quantize_money"]
