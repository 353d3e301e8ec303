"""
Tests for the invoice lifecycle manager.
"""

import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from teamledger.exceptions import ConflictError, NotFoundError, ValidationError
from teamledger.models import ActivityType, InvoiceStatus


LINE_ITEMS = [
    {"name": "Design", "quantity": "2", "price": "50.00"},
    {"name": "Hosting", "price": "25.50"},
]


def in_days(days: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


async def activity_count(core, team, activity_type):
    return len(await core.activities.list_activities(team.id, types=[activity_type]))


class TestDrafts:
    """Creating and editing drafts."""

    @pytest.mark.asyncio
    async def test_draft_totals(self, core, team):
        """Totals are derived from line items, VAT and discount."""
        invoice = await core.invoices.create_draft(team.id, {
            "line_items": LINE_ITEMS,
            "vat_rate": "20",
            "discount": "10",
        })

        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.invoice_number is None
        assert invoice.currency == "USD"
        assert invoice.subtotal == Decimal("125.50")
        assert invoice.amount == Decimal("140.60")
        assert await activity_count(core, team, ActivityType.DRAFT_INVOICE_CREATED) == 1

    @pytest.mark.asyncio
    async def test_unsupported_currency(self, core, team):
        """Drafts only accept supported currencies."""
        with pytest.raises(ValidationError):
            await core.invoices.create_draft(team.id, {"currency": "XYZ"})

    @pytest.mark.asyncio
    async def test_due_before_issue(self, core, team):
        """A due date before the issue date is rejected."""
        with pytest.raises(ValidationError):
            await core.invoices.create_draft(team.id, {
                "issue_date": date(2024, 3, 15),
                "due_date": date(2024, 3, 1),
            })

    @pytest.mark.asyncio
    async def test_unknown_customer(self, core, team, other_team):
        """The customer must belong to the invoicing team."""
        customer = await core.invoices.create_customer(other_team.id, "Initech")
        with pytest.raises(NotFoundError):
            await core.invoices.create_draft(team.id, {"customer_id": customer.id})

    @pytest.mark.asyncio
    async def test_customer_created_activity(self, core, team):
        """Creating a customer is recorded."""
        customer = await core.invoices.create_customer(team.id, "Initech", email="ap@initech.example")
        assert customer.email == "ap@initech.example"
        assert await activity_count(core, team, ActivityType.CUSTOMER_CREATED) == 1

    @pytest.mark.asyncio
    async def test_template_defaults(self, core, team):
        """Template values fill what the draft leaves out; explicit values win."""
        template = await core.invoices.create_template(
            team.id, "Europe", currency="EUR", vat_rate=Decimal("19")
        )

        from_template = await core.invoices.create_draft(team.id, {"template_id": template.id})
        explicit = await core.invoices.create_draft(
            team.id, {"template_id": template.id, "currency": "GBP"}
        )

        assert from_template.currency == "EUR"
        assert from_template.vat_rate == Decimal("19")
        assert explicit.currency == "GBP"
        assert explicit.vat_rate == Decimal("19")

    @pytest.mark.asyncio
    async def test_update_draft_recomputes(self, core, team):
        """Editing a draft applies only the given fields and recomputes totals."""
        invoice = await core.invoices.create_draft(team.id, {
            "line_items": LINE_ITEMS,
            "vat_rate": "20",
            "note_details": "Thanks!",
        })
        updated = await core.invoices.update_draft(team.id, invoice.id, {"discount": "25.50"})

        assert updated.amount == Decimal("125.10")
        assert updated.note_details == "Thanks!"
        assert updated.token == invoice.token

    @pytest.mark.asyncio
    async def test_update_after_send_conflicts(self, core, team):
        """Content is frozen once the invoice leaves draft."""
        invoice = await core.invoices.create_draft(team.id, {"line_items": LINE_ITEMS})
        await core.invoices.send(team.id, invoice.id)
        with pytest.raises(ConflictError):
            await core.invoices.update_draft(team.id, invoice.id, {"discount": "1"})

    @pytest.mark.asyncio
    async def test_duplicate(self, core, team):
        """A duplicate is a new draft with the same content and due offset."""
        source = await core.invoices.create_draft(team.id, {
            "line_items": LINE_ITEMS,
            "issue_date": date(2024, 3, 1),
            "due_date": date(2024, 3, 31),
        })
        await core.invoices.send(team.id, source.id)

        copy = await core.invoices.duplicate(team.id, source.id)

        assert copy.id != source.id
        assert copy.token != source.token
        assert copy.status == InvoiceStatus.DRAFT
        assert copy.invoice_number is None
        assert copy.amount == source.amount
        assert copy.due_date - copy.issue_date == timedelta(days=30)
        assert await activity_count(core, team, ActivityType.INVOICE_DUPLICATED) == 1


class TestNumbering:
    """Per-team invoice numbers."""

    @pytest.mark.asyncio
    async def test_send_allocates_number(self, core, team):
        """The first issuance gets INV-0001 and emits invoice_created."""
        invoice = await core.invoices.create_draft(team.id, {"line_items": LINE_ITEMS})
        sent = await core.invoices.send(team.id, invoice.id)

        assert sent.status == InvoiceStatus.SENT
        assert sent.invoice_number == "INV-0001"
        assert sent.sequence_number == 1
        assert sent.sent_at is not None
        assert (await core.ledger.get_team(team.id)).invoice_sequence == 2
        assert await activity_count(core, team, ActivityType.INVOICE_CREATED) == 1

    @pytest.mark.asyncio
    async def test_concurrent_sends_are_contiguous(self, core, team):
        """Ten invoices sent at once get ten distinct, gap-free numbers."""
        drafts = [
            await core.invoices.create_draft(team.id, {"line_items": LINE_ITEMS})
            for _ in range(10)
        ]
        sent = await asyncio.gather(*(core.invoices.send(team.id, d.id) for d in drafts))

        assert sorted(i.sequence_number for i in sent) == list(range(1, 11))
        assert len({i.invoice_number for i in sent}) == 10
        assert (await core.ledger.get_team(team.id)).invoice_sequence == 11

    @pytest.mark.asyncio
    async def test_concurrent_transitions_of_one_invoice(self, core, team):
        """Racing sends of one draft number it once."""
        draft = await core.invoices.create_draft(team.id, {"line_items": LINE_ITEMS})
        results = await asyncio.gather(
            core.invoices.send(team.id, draft.id),
            core.invoices.send(team.id, draft.id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert (await core.ledger.get_team(team.id)).invoice_sequence == 2

    @pytest.mark.asyncio
    async def test_canceled_draft_consumes_no_number(self, core, team):
        """Canceling before issuance leaves the sequence untouched."""
        canceled = await core.invoices.create_draft(team.id)
        canceled = await core.invoices.cancel(team.id, canceled.id)
        issued = await core.invoices.create_draft(team.id)
        issued = await core.invoices.send(team.id, issued.id)

        assert canceled.status == InvoiceStatus.CANCELED
        assert canceled.invoice_number is None
        assert issued.invoice_number == "INV-0001"

    @pytest.mark.asyncio
    async def test_numbers_are_per_team(self, core, team, other_team):
        """Each team numbers from 1."""
        a = await core.invoices.create_draft(team.id)
        b = await core.invoices.create_draft(other_team.id)
        a = await core.invoices.send(team.id, a.id)
        b = await core.invoices.send(other_team.id, b.id)
        assert a.invoice_number == b.invoice_number == "INV-0001"

    def test_render_number(self, core):
        """Numbers are prefix plus zero-padded sequence."""
        assert core.invoices.render_number(42) == "INV-0042"
        assert core.invoices.render_number(12345) == "INV-12345"


class TestLifecycle:
    """Status transitions after issuance."""

    @pytest.mark.asyncio
    async def test_schedule_then_sweep(self, core, team):
        """A scheduled invoice is numbered at once and sent when due."""
        invoice = await core.invoices.create_draft(team.id, {"line_items": LINE_ITEMS})
        scheduled = await core.invoices.schedule(team.id, invoice.id, in_days(1))

        assert scheduled.status == InvoiceStatus.SCHEDULED
        assert scheduled.invoice_number == "INV-0001"
        assert await core.invoices.sweep_scheduled(team.id) == []

        [sent] = await core.invoices.sweep_scheduled(team.id, now=in_days(2))
        assert sent.status == InvoiceStatus.SENT
        assert sent.invoice_number == "INV-0001"
        assert await activity_count(core, team, ActivityType.INVOICE_CREATED) == 1

    @pytest.mark.asyncio
    async def test_schedule_in_the_past(self, core, team):
        """schedule_date must be in the future."""
        invoice = await core.invoices.create_draft(team.id)
        with pytest.raises(ValidationError):
            await core.invoices.schedule(team.id, invoice.id, in_days(-1))

    @pytest.mark.asyncio
    async def test_schedule_naive_datetime(self, core, team):
        """schedule_date must carry a timezone."""
        invoice = await core.invoices.create_draft(team.id)
        with pytest.raises(ValidationError):
            await core.invoices.schedule(team.id, invoice.id, datetime(2999, 1, 1))

    @pytest.mark.asyncio
    async def test_sweep_skips_canceled(self, core, team):
        """A scheduled invoice canceled before its time is not sent."""
        invoice = await core.invoices.create_draft(team.id)
        await core.invoices.schedule(team.id, invoice.id, in_days(1))
        await core.invoices.cancel(team.id, invoice.id)
        assert await core.invoices.sweep_scheduled(team.id, now=in_days(2)) == []

    @pytest.mark.asyncio
    async def test_sweep_overdue(self, core, team):
        """Sent invoices past their due date become overdue."""
        invoice = await core.invoices.create_draft(team.id, {
            "issue_date": date(2024, 3, 1),
            "due_date": date(2024, 3, 31),
        })
        await core.invoices.send(team.id, invoice.id)

        assert await core.invoices.sweep_overdue(team.id, today=date(2024, 3, 31)) == []
        [overdue] = await core.invoices.sweep_overdue(team.id, today=date(2024, 4, 1))
        assert overdue.status == InvoiceStatus.OVERDUE
        assert await activity_count(core, team, ActivityType.INVOICE_OVERDUE) == 1

        paid = await core.invoices.mark_paid(team.id, invoice.id)
        assert paid.status == InvoiceStatus.PAID

    @pytest.mark.asyncio
    async def test_mark_paid_is_idempotent(self, core, team):
        """Paying twice records one payment."""
        invoice = await core.invoices.create_draft(team.id)
        await core.invoices.send(team.id, invoice.id)

        first = await core.invoices.mark_paid(team.id, invoice.id)
        second = await core.invoices.mark_paid(team.id, invoice.id)

        assert first.paid and second.paid
        assert first.paid_at == second.paid_at
        assert await activity_count(core, team, ActivityType.INVOICE_PAID) == 1

    @pytest.mark.asyncio
    async def test_draft_cannot_be_paid(self, core, team):
        """Only issued invoices can be paid."""
        invoice = await core.invoices.create_draft(team.id)
        with pytest.raises(ConflictError):
            await core.invoices.mark_paid(team.id, invoice.id)

    @pytest.mark.asyncio
    async def test_paid_cannot_be_canceled(self, core, team):
        """paid is terminal."""
        invoice = await core.invoices.create_draft(team.id)
        await core.invoices.send(team.id, invoice.id)
        await core.invoices.mark_paid(team.id, invoice.id)
        with pytest.raises(ConflictError):
            await core.invoices.cancel(team.id, invoice.id)

    @pytest.mark.asyncio
    async def test_reminder(self, core, team):
        """Reminders go out for sent invoices only."""
        invoice = await core.invoices.create_draft(team.id)
        with pytest.raises(ConflictError):
            await core.invoices.send_reminder(team.id, invoice.id)

        await core.invoices.send(team.id, invoice.id)
        reminded = await core.invoices.send_reminder(team.id, invoice.id)
        assert reminded.reminder_sent is True
        assert await activity_count(core, team, ActivityType.INVOICE_REMINDER_SENT) == 1


class TestPublicLinks:
    """Token lookup and view tracking."""

    @pytest.mark.asyncio
    async def test_first_view_recorded(self, core, team):
        """viewed_at is set on the first view of an issued invoice and kept after."""
        invoice = await core.invoices.create_draft(team.id)
        draft_view = await core.invoices.get_by_token(invoice.token)
        assert draft_view.viewed_at is None

        await core.invoices.send(team.id, invoice.id)
        first = await core.invoices.get_by_token(invoice.token)
        second = await core.invoices.get_by_token(invoice.token)

        assert first.viewed_at is not None
        assert second.viewed_at == first.viewed_at

    @pytest.mark.asyncio
    async def test_unknown_token(self, core):
        """Unknown tokens are NotFoundError."""
        with pytest.raises(NotFoundError):
            await core.invoices.get_by_token(uuid4().hex)

    @pytest.mark.asyncio
    async def test_invoice_invisible_to_other_team(self, core, team, other_team):
        """Outside the token lookup, invoices are team-scoped."""
        invoice = await core.invoices.create_draft(team.id)
        with pytest.raises(NotFoundError):
            await core.invoices.get_invoice(other_team.id, invoice.id)
        with pytest.raises(NotFoundError):
            await core.invoices.send(other_team.id, invoice.id)
