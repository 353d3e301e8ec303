"""
Invoice Models

Issued invoices, their line items, customers, products and templates.

DESIGN DECISION: An invoice's content is editable only while it is a
DRAFT. Once it leaves DRAFT only lifecycle fields (status, paid_at,
sent_at, viewed_at, reminder_sent) may change, and its invoice_number is
fixed forever.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, ClassVar, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from teamledger.exceptions import ConflictError
from teamledger.models.ledger import utcnow


CENT = Decimal("0.01")


class InvoiceStatus(str, Enum):
    """
    Invoice status.

    draft -> {scheduled | sent} -> {paid | overdue | canceled}
    Scheduling is one-directional: sent never goes back to scheduled.
    """
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (InvoiceStatus.PAID, InvoiceStatus.CANCELED)

    def can_transition_to(self, target: "InvoiceStatus") -> bool:
        return target in INVOICE_TRANSITIONS[self]


INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({
        InvoiceStatus.SCHEDULED, InvoiceStatus.SENT, InvoiceStatus.CANCELED,
    }),
    InvoiceStatus.SCHEDULED: frozenset({
        InvoiceStatus.SENT, InvoiceStatus.CANCELED,
    }),
    InvoiceStatus.SENT: frozenset({
        InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELED,
    }),
    InvoiceStatus.OVERDUE: frozenset({
        InvoiceStatus.PAID, InvoiceStatus.CANCELED,
    }),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.CANCELED: frozenset(),
}


class DeliveryType(str, Enum):
    CREATE = "create"
    CREATE_AND_SEND = "create_and_send"
    SCHEDULED = "scheduled"


class InvoiceSize(str, Enum):
    A4 = "a4"
    LETTER = "letter"


# =============================================================================
# REFERENCE DATA
# =============================================================================

class Customer(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID
    team_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = None
    contact_name: Optional[str] = None
    vat_number: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class InvoiceProduct(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID
    team_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    unit: Optional[str] = Field(default=None, max_length=20)
    created_at: datetime = Field(default_factory=utcnow)


class InvoiceTemplate(BaseModel):
    """Per-team defaults applied to new drafts."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID
    team_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    currency: Optional[str] = None
    size: InvoiceSize = InvoiceSize.A4
    vat_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    delivery_type: DeliveryType = DeliveryType.CREATE
    from_details: Optional[dict[str, Any]] = None
    payment_details: Optional[dict[str, Any]] = None
    logo_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# INVOICE
# =============================================================================

class InvoiceLineItem(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(default=Decimal("1"), ge=0)
    price: Decimal = Field(..., ge=0)
    unit: Optional[str] = None
    product_id: Optional[UUID] = None

    @property
    def total(self) -> Decimal:
        return (self.quantity * self.price).quantize(CENT, rounding=ROUND_HALF_UP)


class InvoiceDraft(BaseModel):
    """Caller input for creating or editing a draft."""
    model_config = ConfigDict(str_strip_whitespace=True)

    customer_id: Optional[UUID] = None
    template_id: Optional[UUID] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    line_items: list[InvoiceLineItem] = Field(default_factory=list)
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    vat_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    discount: Optional[Decimal] = Field(default=None, ge=0)
    note_details: Optional[str] = None
    internal_note: Optional[str] = None
    from_details: Optional[dict[str, Any]] = None
    customer_details: Optional[dict[str, Any]] = None
    payment_details: Optional[dict[str, Any]] = None
    template: Optional[InvoiceSize] = None
    delivery_type: Optional[DeliveryType] = None


class Invoice(BaseModel):
    """
    An issued (or to-be-issued) invoice.

    invoice_number is None while DRAFT and allocated exactly once on the
    first transition out of DRAFT. token is the public-link key, unique
    across all teams.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Only these may change after the invoice leaves DRAFT
    LIFECYCLE_FIELDS: ClassVar[frozenset[str]] = frozenset({
        "status",
        "invoice_number",
        "sequence_number",
        "paid",
        "paid_at",
        "sent_at",
        "viewed_at",
        "reminder_sent",
        "schedule_date",
        "updated_at",
        "version",
    })

    id: UUID
    team_id: UUID
    token: str = Field(..., min_length=1)
    status: InvoiceStatus = InvoiceStatus.DRAFT
    invoice_number: Optional[str] = None
    sequence_number: Optional[int] = Field(default=None, ge=1)

    customer_id: Optional[UUID] = None
    currency: str = Field(..., min_length=3, max_length=3)
    line_items: list[InvoiceLineItem] = Field(default_factory=list)
    vat_rate: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None
    discount: Decimal = Decimal("0.00")
    subtotal: Decimal = Decimal("0.00")
    vat: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    amount: Decimal = Decimal("0.00")

    issue_date: date
    due_date: Optional[date] = None
    schedule_date: Optional[datetime] = None

    paid: bool = False
    paid_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    reminder_sent: bool = False

    note_details: Optional[str] = None
    internal_note: Optional[str] = None
    from_details: Optional[dict[str, Any]] = None
    customer_details: Optional[dict[str, Any]] = None
    payment_details: Optional[dict[str, Any]] = None
    template: InvoiceSize = InvoiceSize.A4
    delivery_type: DeliveryType = DeliveryType.CREATE

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = Field(default=0, ge=0)

    @model_validator(mode='after')
    def validate_dates(self) -> 'Invoice':
        if self.due_date and self.due_date < self.issue_date:
            raise ValueError("Due date cannot be before issue date")
        return self

    def transition_to(self, target: InvoiceStatus, **changes: Any) -> 'Invoice':
        """
        Return a copy in the target status with lifecycle field changes.

        Raises:
            ConflictError: If the transition is not in the table, or a
                content field is included in changes
        """
        if not self.status.can_transition_to(target):
            raise ConflictError(
                f"Illegal invoice transition {self.status.value} -> {target.value}",
                {"invoice_id": str(self.id), "from": self.status.value, "to": target.value},
            )
        illegal = set(changes) - self.LIFECYCLE_FIELDS
        if illegal:
            raise ConflictError(
                f"Cannot change content fields during a transition: {sorted(illegal)}",
                {"invoice_id": str(self.id)},
            )
        return self.model_copy(update={
            **changes,
            "status": target,
            "updated_at": utcnow(),
        })


def compute_totals(
    line_items: list[InvoiceLineItem],
    vat_rate: Optional[Decimal],
    tax_rate: Optional[Decimal],
    discount: Optional[Decimal],
) -> dict[str, Decimal]:
    """
    Subtotal, VAT, tax and grand total for a set of line items.

    Rates are percentages: vat = subtotal * vat_rate / 100.
    """
    subtotal = sum((item.total for item in line_items), Decimal("0.00"))
    vat = (subtotal * (vat_rate or 0) / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    tax = (subtotal * (tax_rate or 0) / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    discount = (discount or Decimal("0")).quantize(CENT, rounding=ROUND_HALF_UP)
    return {
        "subtotal": subtotal.quantize(CENT),
        "vat": vat,
        "tax": tax,
        "discount": discount,
        "amount": (subtotal + vat + tax - discount).quantize(CENT),
    }
