"""
Invoice Lifecycle Manager

Drafts, numbering and the status lifecycle of issued invoices.

LIFECYCLE:
    draft -> scheduled -> sent -> paid
                  \\        \\-> overdue -> paid
                   \\-> (any non-paid status) -> canceled

NUMBERING: An invoice gets its number exactly once, on its first move out
of DRAFT. The number comes from Team.invoice_sequence, advanced with a
compare-and-set while holding the team's sequence lock. Numbers are never
reused, and a draft canceled before issuance never consumes one.

IMPORTANT: Content is frozen once an invoice leaves DRAFT. Only lifecycle
fields (status, sent/paid/viewed timestamps, reminder flag) change after
that; anything else raises ConflictError.
"""

from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog
from tenacity import AsyncRetrying, retry, retry_if_exception_type, stop_after_attempt

from teamledger.activity import ActivityRecorder, actor_source
from teamledger.concurrency import KeyedLock
from teamledger.config import InvoiceSettings, get_settings
from teamledger.exceptions import ConflictError, NotFoundError, ValidationError
from teamledger.models.activity import ActivityType
from teamledger.models.invoice import (
    Customer,
    Invoice,
    InvoiceDraft,
    InvoiceProduct,
    InvoiceStatus,
    InvoiceTemplate,
    compute_totals,
)
from teamledger.models.ledger import Team, utcnow
from teamledger.services.providers import IdGenerator, default_id_generator
from teamledger.services.storage import LedgerStorageInterface, require_team_id
from teamledger.validation import build_model


# Content fields carried over by duplicate()
COPIED_FIELDS = (
    "customer_id",
    "currency",
    "line_items",
    "vat_rate",
    "tax_rate",
    "discount",
    "note_details",
    "from_details",
    "customer_details",
    "payment_details",
    "template",
    "delivery_type",
)

# Draft edits that pass None for these keep the current value
REQUIRED_FIELDS = frozenset({"currency", "issue_date", "discount", "template", "delivery_type"})


class InvoiceLifecycleManager:
    """
    Owns invoices, customers, products and templates.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        activities: ActivityRecorder,
        id_generator: Optional[IdGenerator] = None,
        settings: Optional[InvoiceSettings] = None,
        supported_currencies: Optional[frozenset[str]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the manager.

        Args:
            storage: Transactional store
            activities: Activity fan-out
            id_generator: Source of ids and public-link tokens
            settings: Numbering policy
            supported_currencies: Accepted invoice currencies
            clock: Returns the current aware datetime
        """
        self._storage = storage
        self._activities = activities
        self._new_id = id_generator or default_id_generator
        self._settings = settings or get_settings().invoice
        self._currencies = supported_currencies or get_settings().ledger.supported_currencies_set
        self._clock = clock
        self._locks = KeyedLock()
        self._logger = structlog.get_logger(__name__)

    # =========================================================================
    # REFERENCE DATA
    # =========================================================================

    async def _require_team(self, team_id: UUID) -> Team:
        team = await self._storage.get_team(require_team_id(team_id))
        if team is None:
            raise NotFoundError("Team not found", {"team_id": str(team_id)})
        return team

    def _check_currency(self, currency: str) -> str:
        code = currency.upper()
        if code not in self._currencies:
            raise ValidationError(f"Unsupported currency: {currency!r}", {"currency": currency})
        return code

    async def create_customer(
        self,
        team_id: UUID,
        name: str,
        user_id: Optional[UUID] = None,
        **details: Any,
    ) -> Customer:
        await self._require_team(team_id)
        customer = build_model(Customer, {
            **details,
            "id": self._new_id(),
            "team_id": team_id,
            "name": name,
        })
        customer = await self._storage.insert_customer(customer)
        await self._activities.record(
            team_id,
            ActivityType.CUSTOMER_CREATED,
            source=actor_source(user_id),
            user_id=user_id,
            metadata={"customer_id": str(customer.id), "name": customer.name},
        )
        return customer

    async def create_product(
        self,
        team_id: UUID,
        name: str,
        price: Any,
        currency: str,
        unit: Optional[str] = None,
        description: Optional[str] = None,
    ) -> InvoiceProduct:
        await self._require_team(team_id)
        return await self._storage.insert_product(build_model(InvoiceProduct, {
            "id": self._new_id(),
            "team_id": team_id,
            "name": name,
            "price": price,
            "currency": self._check_currency(currency),
            "unit": unit,
            "description": description,
        }))

    async def create_template(self, team_id: UUID, name: str, **fields: Any) -> InvoiceTemplate:
        await self._require_team(team_id)
        if fields.get("currency"):
            fields["currency"] = self._check_currency(fields["currency"])
        return await self._storage.insert_template(build_model(InvoiceTemplate, {
            **fields,
            "id": self._new_id(),
            "team_id": team_id,
            "name": name,
        }))

    # =========================================================================
    # DRAFTS
    # =========================================================================

    async def get_invoice(self, team_id: UUID, invoice_id: UUID) -> Invoice:
        invoice = await self._storage.get_invoice(team_id, invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found", {"invoice_id": str(invoice_id)})
        return invoice

    async def list_invoices(
        self,
        team_id: UUID,
        statuses: Optional[list[InvoiceStatus]] = None,
    ) -> list[Invoice]:
        return await self._storage.list_invoices(team_id, statuses=statuses)

    @retry(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _insert(self, invoice: Invoice) -> Invoice:
        """Insert with a fresh public token; a taken token is regenerated."""
        token = self._new_id().hex
        return await self._storage.insert_invoice(invoice.model_copy(update={"token": token}))

    async def create_draft(
        self,
        team_id: UUID,
        draft: Union[InvoiceDraft, dict[str, Any], None] = None,
        user_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Create a DRAFT invoice, optionally seeded from a template.

        Explicit draft values win over template values, which win over
        team defaults.

        Raises:
            ValidationError: Malformed draft, unsupported currency,
                due date before issue date
            NotFoundError: Unknown team, template or customer
        """
        if draft is None:
            draft = InvoiceDraft()
        elif not isinstance(draft, InvoiceDraft):
            draft = build_model(InvoiceDraft, draft)
        team = await self._require_team(team_id)

        defaults: dict[str, Any] = {}
        if draft.template_id is not None:
            template = await self._storage.get_template(team_id, draft.template_id)
            if template is None:
                raise NotFoundError("Template not found", {"template_id": str(draft.template_id)})
            defaults = {
                "currency": template.currency,
                "vat_rate": template.vat_rate,
                "tax_rate": template.tax_rate,
                "template": template.size,
                "delivery_type": template.delivery_type,
                "from_details": template.from_details,
                "payment_details": template.payment_details,
            }
        if draft.customer_id is not None:
            await self._require_customer(team_id, draft.customer_id)

        values = {k: v for k, v in defaults.items() if v is not None}
        values.update(draft.model_dump(exclude={"template_id"}, exclude_none=True))
        values["currency"] = self._check_currency(values.get("currency") or team.base_currency)
        values.setdefault("issue_date", self._clock().date())

        invoice = build_model(Invoice, {
            **values,
            **compute_totals(
                draft.line_items,
                values.get("vat_rate"),
                values.get("tax_rate"),
                values.get("discount"),
            ),
            "id": self._new_id(),
            "team_id": team_id,
            "token": "pending",
            "status": InvoiceStatus.DRAFT,
        })
        invoice = await self._insert(invoice)

        await self._activities.record(
            team_id,
            ActivityType.DRAFT_INVOICE_CREATED,
            source=actor_source(user_id),
            user_id=user_id,
            metadata={"invoice_id": str(invoice.id), "amount": str(invoice.amount), "currency": invoice.currency},
        )
        return invoice

    async def _require_customer(self, team_id: UUID, customer_id: UUID) -> Customer:
        customer = await self._storage.get_customer(team_id, customer_id)
        if customer is None:
            raise NotFoundError("Customer not found", {"customer_id": str(customer_id)})
        return customer

    async def update_draft(
        self,
        team_id: UUID,
        invoice_id: UUID,
        changes: Union[InvoiceDraft, dict[str, Any]],
    ) -> Invoice:
        """
        Edit a draft. Only the fields present in changes are applied.

        Raises:
            ConflictError: The invoice is no longer a draft
        """
        if not isinstance(changes, InvoiceDraft):
            changes = build_model(InvoiceDraft, changes)
        provided = changes.model_fields_set - {"template_id"}

        async with self._locks.hold((team_id, "invoice", invoice_id)):
            invoice = await self.get_invoice(team_id, invoice_id)
            if invoice.status != InvoiceStatus.DRAFT:
                raise ConflictError(
                    f"Cannot edit an invoice in status {invoice.status.value}",
                    {"invoice_id": str(invoice_id)},
                )
            if "customer_id" in provided and changes.customer_id is not None:
                await self._require_customer(team_id, changes.customer_id)

            values = invoice.model_dump()
            for field in provided:
                value = getattr(changes, field)
                if value is None and field in REQUIRED_FIELDS:
                    continue
                values[field] = value
            values["currency"] = self._check_currency(values["currency"])
            values.update(compute_totals(
                changes.line_items if "line_items" in provided else invoice.line_items,
                values.get("vat_rate"),
                values.get("tax_rate"),
                values.get("discount"),
            ))
            return await self._storage.update_invoice(build_model(Invoice, values))

    async def duplicate(
        self,
        team_id: UUID,
        invoice_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Invoice:
        """Copy an invoice's content into a new draft dated today."""
        source = await self.get_invoice(team_id, invoice_id)
        today = self._clock().date()
        values = {field: getattr(source, field) for field in COPIED_FIELDS}
        due_date = None
        if source.due_date is not None:
            due_date = today + (source.due_date - source.issue_date)

        invoice = build_model(Invoice, {
            **values,
            **compute_totals(source.line_items, source.vat_rate, source.tax_rate, source.discount),
            "id": self._new_id(),
            "team_id": team_id,
            "token": "pending",
            "status": InvoiceStatus.DRAFT,
            "issue_date": today,
            "due_date": due_date,
        })
        invoice = await self._insert(invoice)
        await self._activities.record(
            team_id,
            ActivityType.INVOICE_DUPLICATED,
            source=actor_source(user_id),
            user_id=user_id,
            metadata={"invoice_id": str(invoice.id), "source_invoice_id": str(invoice_id)},
        )
        return invoice

    # =========================================================================
    # NUMBERING
    # =========================================================================

    def render_number(self, sequence: int) -> str:
        return f"{self._settings.number_prefix}{sequence:0{self._settings.number_padding}d}"

    async def _reserve_sequence(self, team_id: UUID) -> int:
        """
        Take the team's next invoice number.

        Reads Team.invoice_sequence and advances it by compare-and-set. A
        lost race is retried after reloading.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ConflictError),
            stop=stop_after_attempt(self._settings.sequence_retry_attempts),
            reraise=True,
        ):
            with attempt:
                team = await self._require_team(team_id)
                sequence = team.invoice_sequence
                if not await self._storage.compare_and_set_invoice_sequence(
                    team_id, sequence, sequence + 1
                ):
                    raise ConflictError(
                        "Invoice sequence moved concurrently",
                        {"team_id": str(team_id), "expected": sequence},
                    )
        return sequence

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def _apply(
        self,
        team_id: UUID,
        invoice_id: UUID,
        target: InvoiceStatus,
        changes: Callable[[Invoice], dict[str, Any]] = lambda invoice: {},
        idempotent: bool = False,
    ) -> tuple[Invoice, bool]:
        """
        Move an invoice to target, allocating its number on first issuance.

        Returns:
            (invoice, moved); moved is False only for an idempotent no-op
        """
        async with self._locks.hold((team_id, "invoice", invoice_id)):
            invoice = await self.get_invoice(team_id, invoice_id)
            if idempotent and invoice.status == target:
                return invoice, False

            if not invoice.status.can_transition_to(target):
                raise ConflictError(
                    f"Illegal invoice transition {invoice.status.value} -> {target.value}",
                    {"invoice_id": str(invoice_id), "from": invoice.status.value, "to": target.value},
                )
            update = changes(invoice)

            if invoice.invoice_number is None and target in (InvoiceStatus.SCHEDULED, InvoiceStatus.SENT):
                async with self._locks.hold((team_id, "invoice_sequence")):
                    sequence = await self._reserve_sequence(team_id)
                    update.update(sequence_number=sequence, invoice_number=self.render_number(sequence))
                    invoice = await self._storage.update_invoice(invoice.transition_to(target, **update))
                self._logger.info(
                    "invoice_number_allocated",
                    team_id=str(team_id),
                    invoice_id=str(invoice_id),
                    invoice_number=invoice.invoice_number,
                )
                await self._activities.record(
                    team_id,
                    ActivityType.INVOICE_CREATED,
                    metadata={"invoice_id": str(invoice_id), "invoice_number": invoice.invoice_number},
                )
                return invoice, True

            return await self._storage.update_invoice(invoice.transition_to(target, **update)), True

    def _metadata(self, invoice: Invoice, **extra: Any) -> dict[str, Any]:
        return {
            "invoice_id": str(invoice.id),
            "invoice_number": invoice.invoice_number,
            "amount": str(invoice.amount),
            "currency": invoice.currency,
            **extra,
        }

    async def schedule(
        self,
        team_id: UUID,
        invoice_id: UUID,
        schedule_date: datetime,
        user_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Schedule a draft for sending at schedule_date.

        Raises:
            ValidationError: schedule_date is naive or not in the future
            ConflictError: The invoice is not a draft
        """
        if schedule_date.tzinfo is None:
            raise ValidationError("schedule_date must be timezone-aware")
        if schedule_date <= self._clock():
            raise ValidationError(
                "schedule_date must be in the future",
                {"schedule_date": schedule_date.isoformat()},
            )

        invoice, _ = await self._apply(
            team_id,
            invoice_id,
            InvoiceStatus.SCHEDULED,
            lambda inv: {"schedule_date": schedule_date},
        )
        await self._activities.record(
            team_id,
            ActivityType.INVOICE_SCHEDULED,
            source=actor_source(user_id),
            user_id=user_id,
            metadata=self._metadata(invoice, schedule_date=schedule_date.isoformat()),
        )
        return invoice

    async def send(
        self,
        team_id: UUID,
        invoice_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Invoice:
        """Send a draft or scheduled invoice now."""
        invoice, _ = await self._apply(
            team_id,
            invoice_id,
            InvoiceStatus.SENT,
            lambda inv: {"sent_at": self._clock()},
        )
        await self._activities.record(
            team_id,
            ActivityType.INVOICE_SENT,
            source=actor_source(user_id),
            user_id=user_id,
            metadata=self._metadata(invoice),
        )
        return invoice

    async def sweep_scheduled(self, team_id: UUID, now: Optional[datetime] = None) -> list[Invoice]:
        """
        Send every scheduled invoice whose schedule_date has arrived.

        Returns:
            The invoices sent by this sweep
        """
        now = now or self._clock()
        sent = []
        for invoice in await self._storage.list_invoices(team_id, statuses=[InvoiceStatus.SCHEDULED]):
            if invoice.schedule_date is None or invoice.schedule_date > now:
                continue
            try:
                sent.append(await self.send(team_id, invoice.id))
            except ConflictError as e:
                # Canceled or sent by someone else since the listing
                self._logger.warning(
                    "scheduled_invoice_skipped",
                    team_id=str(team_id),
                    invoice_id=str(invoice.id),
                    error=e.message,
                )
        return sent

    async def sweep_overdue(self, team_id: UUID, today: Optional[date] = None) -> list[Invoice]:
        """
        Mark sent, unpaid invoices past their due date as overdue.

        Returns:
            The invoices that became overdue
        """
        today = today or self._clock().date()
        overdue = []
        for invoice in await self._storage.list_invoices(team_id, statuses=[InvoiceStatus.SENT]):
            if invoice.paid or invoice.due_date is None or invoice.due_date >= today:
                continue
            try:
                updated, _ = await self._apply(team_id, invoice.id, InvoiceStatus.OVERDUE)
            except ConflictError as e:
                self._logger.warning(
                    "overdue_invoice_skipped",
                    team_id=str(team_id),
                    invoice_id=str(invoice.id),
                    error=e.message,
                )
                continue
            await self._activities.record(
                team_id,
                ActivityType.INVOICE_OVERDUE,
                metadata=self._metadata(updated, due_date=updated.due_date.isoformat()),
            )
            overdue.append(updated)
        return overdue

    async def mark_paid(
        self,
        team_id: UUID,
        invoice_id: UUID,
        paid_at: Optional[datetime] = None,
        user_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Record payment. Marking a paid invoice paid again is a no-op.

        Raises:
            ConflictError: The invoice is a draft, scheduled or canceled
        """
        invoice, moved = await self._apply(
            team_id,
            invoice_id,
            InvoiceStatus.PAID,
            lambda inv: {"paid": True, "paid_at": paid_at or self._clock()},
            idempotent=True,
        )
        if moved:
            await self._activities.record(
                team_id,
                ActivityType.INVOICE_PAID,
                source=actor_source(user_id),
                user_id=user_id,
                metadata=self._metadata(invoice),
            )
        return invoice

    async def cancel(
        self,
        team_id: UUID,
        invoice_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Cancel an invoice. A canceled draft never receives a number.

        Raises:
            ConflictError: The invoice is paid or already canceled
        """
        invoice, _ = await self._apply(team_id, invoice_id, InvoiceStatus.CANCELED)
        await self._activities.record(
            team_id,
            ActivityType.INVOICE_CANCELLED,
            source=actor_source(user_id),
            user_id=user_id,
            metadata=self._metadata(invoice),
        )
        return invoice

    async def send_reminder(
        self,
        team_id: UUID,
        invoice_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Remind the customer about a sent or overdue invoice.

        Raises:
            ConflictError: The invoice is not sent or overdue
        """
        async with self._locks.hold((team_id, "invoice", invoice_id)):
            invoice = await self.get_invoice(team_id, invoice_id)
            if invoice.status not in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE):
                raise ConflictError(
                    f"Cannot remind about an invoice in status {invoice.status.value}",
                    {"invoice_id": str(invoice_id)},
                )
            invoice = await self._storage.update_invoice(
                invoice.model_copy(update={"reminder_sent": True})
            )

        await self._activities.record(
            team_id,
            ActivityType.INVOICE_REMINDER_SENT,
            source=actor_source(user_id),
            user_id=user_id,
            metadata=self._metadata(invoice),
        )
        return invoice

    async def get_by_token(self, token: str) -> Invoice:
        """
        Resolve a public invoice link.

        The first view of an issued invoice records viewed_at.

        Raises:
            NotFoundError: Unknown token
        """
        invoice = await self._storage.get_invoice_by_token(token)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        if invoice.viewed_at is not None or invoice.status == InvoiceStatus.DRAFT:
            return invoice

        async with self._locks.hold((invoice.team_id, "invoice", invoice.id)):
            invoice = await self.get_invoice(invoice.team_id, invoice.id)
            if invoice.viewed_at is None:
                invoice = await self._storage.update_invoice(
                    invoice.model_copy(update={"viewed_at": self._clock()})
                )
        return invoice
