"""
Inbox Models

Inbox items are unstructured financial evidence (receipts, invoices)
arriving by email or upload. The reconciliation engine links them to
bank transactions through scored MatchSuggestion rows.

CRITICAL: InboxStatus is a closed state machine. Every status change goes
through InboxItem.transition_to, which consults the transition table below.
"""

import datetime as dt
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from teamledger.exceptions import ConflictError
from teamledger.models.ledger import utcnow


class InboxStatus(str, Enum):
    """
    Inbox item status.

    new -> processing -> analyzing -> {suggested_match | no_match} -> {done | archived}
    pending is the entry point for manual uploads.
    """
    NEW = "new"
    PENDING = "pending"
    PROCESSING = "processing"
    ANALYZING = "analyzing"
    SUGGESTED_MATCH = "suggested_match"
    NO_MATCH = "no_match"
    DONE = "done"
    ARCHIVED = "archived"
    DELETED = "deleted"

    @property
    def is_terminal(self) -> bool:
        return self in (InboxStatus.DONE, InboxStatus.DELETED)

    def can_transition_to(self, target: "InboxStatus") -> bool:
        return target in INBOX_TRANSITIONS[self]


INBOX_TRANSITIONS: dict[InboxStatus, frozenset[InboxStatus]] = {
    InboxStatus.NEW: frozenset({
        InboxStatus.PROCESSING, InboxStatus.ARCHIVED, InboxStatus.DELETED,
    }),
    InboxStatus.PENDING: frozenset({
        InboxStatus.PROCESSING, InboxStatus.ARCHIVED, InboxStatus.DELETED,
    }),
    InboxStatus.PROCESSING: frozenset({
        InboxStatus.ANALYZING, InboxStatus.ARCHIVED, InboxStatus.DELETED,
    }),
    InboxStatus.ANALYZING: frozenset({
        InboxStatus.SUGGESTED_MATCH, InboxStatus.NO_MATCH, InboxStatus.DONE,
        InboxStatus.ARCHIVED, InboxStatus.DELETED,
    }),
    # -> analyzing is re-analysis, -> no_match is "user declined everything"
    InboxStatus.SUGGESTED_MATCH: frozenset({
        InboxStatus.DONE, InboxStatus.NO_MATCH, InboxStatus.ANALYZING,
        InboxStatus.ARCHIVED, InboxStatus.DELETED,
    }),
    InboxStatus.NO_MATCH: frozenset({
        InboxStatus.DONE, InboxStatus.ANALYZING,
        InboxStatus.ARCHIVED, InboxStatus.DELETED,
    }),
    InboxStatus.ARCHIVED: frozenset({InboxStatus.DELETED}),
    InboxStatus.DONE: frozenset(),
    InboxStatus.DELETED: frozenset(),
}


class InboxType(str, Enum):
    INVOICE = "invoice"
    EXPENSE = "expense"


class InboxSource(str, Enum):
    """Where an inbox item came from. Uploads enter as PENDING."""
    EMAIL = "email"
    UPLOAD = "upload"
    INTEGRATION = "integration"


class SuggestionStatus(str, Enum):
    ACTIVE = "active"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    INVALIDATED = "invalidated"


class AnalysisOutcome(str, Enum):
    AUTO_MATCHED = "auto_matched"
    SUGGESTED = "suggested"
    NO_MATCH = "no_match"
    ABORTED = "aborted"


class InboxAttachment(BaseModel):
    name: str = Field(..., min_length=1, max_length=500)
    path: Optional[str] = None
    content_type: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)


class InboxPayload(BaseModel):
    """
    What the ingestion collaborator extracted from a document.

    All fields are optional - extraction might miss any of them.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = Field(default=None, allow_inf_nan=True)
    currency: Optional[str] = Field(default=None, max_length=10)
    date: Optional[dt.date] = None
    display_name: Optional[str] = Field(default=None, max_length=500)
    website: Optional[str] = None
    description: Optional[str] = None
    type: Optional[InboxType] = None
    source: InboxSource = InboxSource.EMAIL
    attachments: list[InboxAttachment] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class InboxItem(BaseModel):
    """
    One piece of inbox evidence.

    reference_id is the ingestion idempotency key, unique per team.
    transaction_id is set if and only if status is DONE.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID
    team_id: UUID
    reference_id: str = Field(..., min_length=1, max_length=255)
    status: InboxStatus = InboxStatus.NEW
    type: Optional[InboxType] = None
    source: InboxSource = InboxSource.EMAIL

    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    base_amount: Optional[Decimal] = None
    base_currency: Optional[str] = None
    date: Optional[dt.date] = None
    display_name: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    attachments: list[InboxAttachment] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    transaction_id: Optional[UUID] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = Field(default=0, ge=0)

    @model_validator(mode='after')
    def validate_link(self) -> 'InboxItem':
        """A linked transaction and status DONE go together."""
        if (self.status == InboxStatus.DONE) != (self.transaction_id is not None):
            raise ValueError("transaction_id must be set exactly when status is done")
        return self

    def transition_to(
        self,
        target: InboxStatus,
        transaction_id: Optional[UUID] = None,
    ) -> 'InboxItem':
        """
        Return a copy of this item in the target status.

        Raises:
            ConflictError: If the transition is not in the table
        """
        if not self.status.can_transition_to(target):
            raise ConflictError(
                f"Illegal inbox transition {self.status.value} -> {target.value}",
                {"inbox_id": str(self.id), "from": self.status.value, "to": target.value},
            )
        if (target == InboxStatus.DONE) != (transaction_id is not None):
            raise ConflictError(
                "A transaction link is required exactly when moving to done",
                {"inbox_id": str(self.id)},
            )
        return self.model_copy(update={
            "status": target,
            "transaction_id": transaction_id,
            "updated_at": utcnow(),
        })


class MatchSuggestion(BaseModel):
    """A scored candidate link between an inbox item and a transaction."""

    id: UUID
    team_id: UUID
    inbox_id: UUID
    transaction_id: UUID
    score: float = Field(..., ge=0.0, le=1.0)
    status: SuggestionStatus = SuggestionStatus.ACTIVE
    cross_currency: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AnalysisResult(BaseModel):
    """What one reconciliation run decided for one inbox item."""

    inbox_id: UUID
    outcome: AnalysisOutcome
    status: InboxStatus
    transaction_id: Optional[UUID] = None
    suggestions: list[MatchSuggestion] = Field(default_factory=list)
    candidate_count: int = Field(default=0, ge=0)
    unscored_transaction_ids: list[UUID] = Field(default_factory=list)
