"""
Activity Models

Every state change in the ledger, inbox or invoicing components is recorded
as an Activity. Activities feed the notification transport.

DESIGN DECISION: Activities are append-only. Their content never changes
after creation; only the read-state (unread -> read -> archived) advances.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from teamledger.models.ledger import utcnow


class ActivityType(str, Enum):
    """
    Types of domain events.

    Grouped by the component that emits them.
    """
    # Ledger
    TRANSACTIONS_CREATED = "transactions_created"
    TRANSACTIONS_ENRICHED = "transactions_enriched"
    TRANSACTIONS_CATEGORIZED = "transactions_categorized"
    TRANSACTIONS_ASSIGNED = "transactions_assigned"
    TRANSACTION_ATTACHMENT_CREATED = "transaction_attachment_created"
    TRANSACTION_CATEGORY_CREATED = "transaction_category_created"

    # Inbox
    INBOX_NEW = "inbox_new"
    INBOX_AUTO_MATCHED = "inbox_auto_matched"
    INBOX_NEEDS_REVIEW = "inbox_needs_review"
    INBOX_CROSS_CURRENCY_MATCHED = "inbox_cross_currency_matched"
    INBOX_MATCH_CONFIRMED = "inbox_match_confirmed"
    DOCUMENT_PROCESSED = "document_processed"

    # Invoicing
    DRAFT_INVOICE_CREATED = "draft_invoice_created"
    INVOICE_CREATED = "invoice_created"
    INVOICE_SCHEDULED = "invoice_scheduled"
    INVOICE_SENT = "invoice_sent"
    INVOICE_PAID = "invoice_paid"
    INVOICE_OVERDUE = "invoice_overdue"
    INVOICE_CANCELLED = "invoice_cancelled"
    INVOICE_DUPLICATED = "invoice_duplicated"
    INVOICE_REMINDER_SENT = "invoice_reminder_sent"
    CUSTOMER_CREATED = "customer_created"


class ActivitySource(str, Enum):
    SYSTEM = "system"
    USER = "user"


class ActivityStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"
    ARCHIVED = "archived"

    def can_transition_to(self, target: "ActivityStatus") -> bool:
        return target in ACTIVITY_TRANSITIONS[self]


ACTIVITY_TRANSITIONS: dict[ActivityStatus, frozenset[ActivityStatus]] = {
    ActivityStatus.UNREAD: frozenset({ActivityStatus.READ, ActivityStatus.ARCHIVED}),
    ActivityStatus.READ: frozenset({ActivityStatus.ARCHIVED}),
    ActivityStatus.ARCHIVED: frozenset(),
}


class Activity(BaseModel):
    """
    A single domain event.

    This is the unit handed to the notification transport; the transport
    dedups on id.
    """

    id: UUID
    team_id: UUID
    type: ActivityType
    source: ActivitySource = ActivitySource.SYSTEM
    status: ActivityStatus = ActivityStatus.UNREAD
    user_id: Optional[UUID] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "activity_id": str(self.id),
            "team_id": str(self.team_id),
            "activity_type": self.type.value,
            "source": self.source.value,
            "user_id": str(self.user_id) if self.user_id else None,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }

    def to_notification_payload(self) -> dict:
        """Payload handed to the notification transport."""
        return self.model_dump(mode="json", exclude={"status"})
