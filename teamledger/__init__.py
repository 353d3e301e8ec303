"""
Team Ledger - Source Package

The transactional core of a multi-tenant bookkeeping platform: bank
transactions, inbox evidence and issued invoices, reconciled into one
consistent ledger per team.

DESIGN PRINCIPLES:
1. Every operation is scoped to exactly one team
2. Ingestion is idempotent (keyed by external identifiers)
3. Status fields are closed state machines
4. Every state change is recorded as an Activity
5. External collaborators sit behind narrow interfaces
"""

__version__ = "1.0.0"
__author__ = "Team Ledger Team"
