"""
Storage Services Package

Provides the abstract transactional store interface and the bundled
in-memory implementation.
"""

from teamledger.services.storage.interface import (
    LedgerStorageInterface,
    require_team_id,
)
from teamledger.services.storage.memory import InMemoryLedgerStorage

__all__ = [
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "require_team_id",
]
