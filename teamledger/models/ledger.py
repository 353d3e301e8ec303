"""
Ledger Models

Teams, bank connections, transactions and everything hanging off a
transaction (categories, tags, attachments, enrichments).

DESIGN DECISION: Money is always Decimal, never binary float.
Amounts are quantized to the currency's minor unit at ingestion time, and a
parallel base_amount/base_currency pair holds the team-currency value.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Plan(str, Enum):
    TRIAL = "trial"
    STARTER = "starter"
    PRO = "pro"


class BankProvider(str, Enum):
    GOCARDLESS = "gocardless"
    PLAID = "plaid"
    TELLER = "teller"
    ENABLEBANKING = "enablebanking"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    UNKNOWN = "unknown"


class AccountType(str, Enum):
    DEPOSITORY = "depository"
    CREDIT = "credit"
    OTHER_ASSET = "other_asset"
    LOAN = "loan"
    OTHER_LIABILITY = "other_liability"


class TransactionMethod(str, Enum):
    """How money moved, as reported by the bank."""
    PAYMENT = "payment"
    CARD_PURCHASE = "card_purchase"
    CARD_ATM = "card_atm"
    TRANSFER = "transfer"
    OTHER = "other"
    UNKNOWN = "unknown"
    ACH = "ach"
    INTEREST = "interest"
    DEPOSIT = "deposit"
    WIRE = "wire"
    FEE = "fee"


class TransactionStatus(str, Enum):
    """
    Transaction status.

    Transactions are never physically deleted; ARCHIVED hides them.
    """
    POSTED = "posted"
    PENDING = "pending"
    EXCLUDED = "excluded"
    COMPLETED = "completed"
    ARCHIVED = "archived"

    @property
    def is_matchable(self) -> bool:
        """Only live transactions are reconciliation candidates."""
        return self not in (TransactionStatus.EXCLUDED, TransactionStatus.ARCHIVED)


class IngestOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


# =============================================================================
# TENANT & BANKING
# =============================================================================

class Team(BaseModel):
    """
    The tenant boundary.

    invoice_sequence is the NEXT invoice number to hand out.
    It only ever moves forward.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    plan: Plan = Plan.TRIAL
    base_currency: str = Field(default="USD", min_length=3, max_length=3)
    invoice_sequence: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('base_currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class BankConnection(BaseModel):
    id: UUID
    team_id: UUID
    institution_id: str
    name: Optional[str] = None
    provider: BankProvider
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_accessed: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    error_details: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class BankAccount(BaseModel):
    id: UUID
    team_id: UUID
    name: str
    currency: Optional[str] = None
    bank_connection_id: Optional[UUID] = None
    account_id: Optional[str] = None
    type: Optional[AccountType] = None
    enabled: bool = True
    manual: bool = False
    balance: Optional[Decimal] = None
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    A bank transaction owned by one team.

    internal_id is the bank-sync idempotency key, unique per team.
    version is bumped by storage on every update (optimistic concurrency).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Fields a user sets by hand. Re-ingestion leaves them alone unless
    # the bank-sync record carries them explicitly.
    USER_FIELDS: ClassVar[tuple[str, ...]] = (
        "category_slug",
        "note",
        "tag_ids",
        "assigned_id",
    )

    id: UUID
    team_id: UUID
    internal_id: str = Field(..., min_length=1, max_length=255)
    date: date
    name: str = Field(..., min_length=1, max_length=500)
    method: TransactionMethod = TransactionMethod.UNKNOWN
    amount: Decimal
    currency: str = Field(..., min_length=3, max_length=3)
    base_amount: Optional[Decimal] = None
    base_currency: Optional[str] = None
    status: TransactionStatus = TransactionStatus.POSTED
    bank_account_id: Optional[UUID] = None
    balance: Optional[Decimal] = None
    description: Optional[str] = None
    counterparty_name: Optional[str] = None
    merchant_name: Optional[str] = None
    manual: bool = False
    enrichment_completed: bool = False

    # User-set fields
    category_slug: Optional[str] = None
    note: Optional[str] = None
    tag_ids: list[UUID] = Field(default_factory=list)
    assigned_id: Optional[UUID] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = Field(default=0, ge=0)


class ExternalTransactionRecord(BaseModel):
    """
    A raw record pushed by the bank-sync collaborator.

    Optional fields only overwrite stored values when they were actually
    provided (see model_fields_set).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    internal_id: str = Field(..., min_length=1, max_length=255)
    date: date
    name: str = Field(..., min_length=1, max_length=500)
    amount: Decimal = Field(..., allow_inf_nan=True)
    currency: str = Field(..., min_length=1, max_length=10)
    method: TransactionMethod = TransactionMethod.UNKNOWN
    bank_account_id: Optional[UUID] = None
    status: Optional[TransactionStatus] = None
    balance: Optional[Decimal] = None
    description: Optional[str] = None
    counterparty_name: Optional[str] = None
    merchant_name: Optional[str] = None
    manual: Optional[bool] = None

    category_slug: Optional[str] = None
    note: Optional[str] = None
    tag_ids: Optional[list[UUID]] = None
    assigned_id: Optional[UUID] = None


class IngestResult(BaseModel):
    """Outcome of one idempotent ingestion."""

    outcome: IngestOutcome
    transaction: Transaction
    changed_fields: list[str] = Field(default_factory=list)


class TransactionCategory(BaseModel):
    """Keyed by (team_id, slug)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    team_id: UUID
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9][a-z0-9_-]*$")
    name: str = Field(..., min_length=1, max_length=200)
    color: Optional[str] = None
    description: Optional[str] = None
    system: bool = False
    vat: Optional[Decimal] = Field(default=None, ge=0, le=100)
    created_at: datetime = Field(default_factory=utcnow)


class Tag(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID
    team_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class TransactionAttachment(BaseModel):
    id: UUID
    team_id: UUID
    transaction_id: UUID
    name: str = Field(..., min_length=1, max_length=500)
    path: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)
    type: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class TransactionEnrichment(BaseModel):
    id: UUID
    team_id: UUID
    transaction_id: UUID
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class ExchangeRate(BaseModel):
    """Global reference data: 1 unit of base = rate units of target."""

    base: str = Field(..., min_length=3, max_length=3)
    target: str = Field(..., min_length=3, max_length=3)
    rate: Decimal = Field(..., gt=0)
    updated_at: datetime = Field(default_factory=utcnow)
