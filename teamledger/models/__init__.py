"""
Data Models Package

This package contains all Pydantic models used by the ledger core.
All data flowing through the system must conform to these schemas.
"""

from teamledger.models.ledger import (
    AccountType,
    BankAccount,
    BankConnection,
    BankProvider,
    ConnectionStatus,
    ExchangeRate,
    ExternalTransactionRecord,
    IngestOutcome,
    IngestResult,
    Plan,
    Tag,
    Team,
    Transaction,
    TransactionAttachment,
    TransactionCategory,
    TransactionEnrichment,
    TransactionMethod,
    TransactionStatus,
    utcnow,
)
from teamledger.models.inbox import (
    AnalysisOutcome,
    AnalysisResult,
    InboxAttachment,
    InboxItem,
    InboxPayload,
    InboxSource,
    InboxStatus,
    InboxType,
    MatchSuggestion,
    SuggestionStatus,
)
from teamledger.models.invoice import (
    Customer,
    DeliveryType,
    Invoice,
    InvoiceDraft,
    InvoiceLineItem,
    InvoiceProduct,
    InvoiceSize,
    InvoiceStatus,
    InvoiceTemplate,
    compute_totals,
)
from teamledger.models.activity import (
    Activity,
    ActivitySource,
    ActivityStatus,
    ActivityType,
)

__all__ = [
    # Ledger models
    "AccountType",
    "BankAccount",
    "BankConnection",
    "BankProvider",
    "ConnectionStatus",
    "ExchangeRate",
    "ExternalTransactionRecord",
    "IngestOutcome",
    "IngestResult",
    "Plan",
    "Tag",
    "Team",
    "Transaction",
    "TransactionAttachment",
    "TransactionCategory",
    "TransactionEnrichment",
    "TransactionMethod",
    "TransactionStatus",
    "utcnow",
    # Inbox models
    "AnalysisOutcome",
    "AnalysisResult",
    "InboxAttachment",
    "InboxItem",
    "InboxPayload",
    "InboxSource",
    "InboxStatus",
    "InboxType",
    "MatchSuggestion",
    "SuggestionStatus",
    # Invoice models
    "Customer",
    "DeliveryType",
    "Invoice",
    "InvoiceDraft",
    "InvoiceLineItem",
    "InvoiceProduct",
    "InvoiceSize",
    "InvoiceStatus",
    "InvoiceTemplate",
    "compute_totals",
    # Activity models
    "Activity",
    "ActivitySource",
    "ActivityStatus",
    "ActivityType",
]
