"""
In-Memory Storage Implementation

DESIGN DECISION: The bundled store keeps everything in dictionaries keyed
by (team_id, id). It is the reference implementation of the interface and
the backend used by the tests.

Every method body runs without a suspension point, so each call is atomic
with respect to other coroutines on the event loop. Models are deep-copied
on the way in and out, so callers never hold a reference to stored state.

TRADEOFFS:
- Nothing survives a restart
- Filtering is a linear scan per team
"""

from datetime import date
from typing import Iterable, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from teamledger.exceptions import ConflictError, NotFoundError
from teamledger.models.activity import Activity, ActivityStatus, ActivityType
from teamledger.models.inbox import (
    InboxItem,
    InboxStatus,
    MatchSuggestion,
    SuggestionStatus,
)
from teamledger.models.invoice import (
    Customer,
    Invoice,
    InvoiceProduct,
    InvoiceStatus,
    InvoiceTemplate,
)
from teamledger.models.ledger import (
    BankAccount,
    BankConnection,
    Tag,
    Team,
    Transaction,
    TransactionAttachment,
    TransactionCategory,
    TransactionEnrichment,
    TransactionStatus,
    utcnow,
)
from teamledger.services.storage.interface import LedgerStorageInterface, require_team_id


M = TypeVar("M", bound=BaseModel)


def _copy(model: M) -> M:
    return model.model_copy(deep=True)


def _bump(model: M, stored_version: int, entity: str) -> M:
    """Check the caller's version against storage and return the next revision."""
    if model.version != stored_version:
        raise ConflictError(
            f"Stale {entity}: version {model.version} != stored {stored_version}",
            {"entity": entity, "id": str(model.id)},
        )
    return model.model_copy(
        update={"version": stored_version + 1, "updated_at": utcnow()},
        deep=True,
    )


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    Dictionary-backed implementation of the transactional store.

    Each team's rows live in their own dicts, so a query for one team
    cannot even see another team's data.
    """

    def __init__(self):
        self._teams: dict[UUID, Team] = {}
        self._bank_connections: dict[UUID, dict[UUID, BankConnection]] = {}
        self._bank_accounts: dict[UUID, dict[UUID, BankAccount]] = {}
        self._transactions: dict[UUID, dict[UUID, Transaction]] = {}
        self._internal_ids: dict[UUID, dict[str, UUID]] = {}
        self._categories: dict[UUID, dict[str, TransactionCategory]] = {}
        self._tags: dict[UUID, dict[UUID, Tag]] = {}
        self._attachments: dict[UUID, dict[UUID, TransactionAttachment]] = {}
        self._enrichments: dict[UUID, dict[UUID, TransactionEnrichment]] = {}
        self._inbox: dict[UUID, dict[UUID, InboxItem]] = {}
        self._reference_ids: dict[UUID, dict[str, UUID]] = {}
        self._suggestions: dict[UUID, dict[UUID, MatchSuggestion]] = {}
        self._invoices: dict[UUID, dict[UUID, Invoice]] = {}
        self._invoice_tokens: dict[str, tuple[UUID, UUID]] = {}
        self._customers: dict[UUID, dict[UUID, Customer]] = {}
        self._products: dict[UUID, dict[UUID, InvoiceProduct]] = {}
        self._templates: dict[UUID, dict[UUID, InvoiceTemplate]] = {}
        self._activities: dict[UUID, dict[UUID, Activity]] = {}

    @staticmethod
    def _bucket(table: dict, team_id: UUID) -> dict:
        return table.setdefault(require_team_id(team_id), {})

    @staticmethod
    def _rows(table: dict, team_id: UUID) -> dict:
        """Read-only view of a team's rows; never creates a bucket."""
        return table.get(require_team_id(team_id), {})

    # -------------------------------------------------------------------------
    # Teams & banking
    # -------------------------------------------------------------------------

    async def create_team(self, team: Team) -> Team:
        require_team_id(team.id)
        if team.id in self._teams:
            raise ConflictError("Team already exists", {"team_id": str(team.id)})
        self._teams[team.id] = _copy(team)
        return _copy(team)

    async def get_team(self, team_id: UUID) -> Optional[Team]:
        team = self._teams.get(require_team_id(team_id))
        return _copy(team) if team else None

    async def compare_and_set_invoice_sequence(
        self,
        team_id: UUID,
        expected: int,
        new: int,
    ) -> bool:
        team = self._teams.get(require_team_id(team_id))
        if team is None:
            raise NotFoundError("Team not found", {"team_id": str(team_id)})
        if new <= expected:
            raise ConflictError(
                "Invoice sequence can only move forward",
                {"team_id": str(team_id), "expected": expected, "new": new},
            )
        if team.invoice_sequence != expected:
            return False
        self._teams[team_id] = team.model_copy(update={"invoice_sequence": new})
        return True

    async def insert_bank_connection(self, connection: BankConnection) -> BankConnection:
        self._bucket(self._bank_connections, connection.team_id)[connection.id] = _copy(connection)
        return _copy(connection)

    async def insert_bank_account(self, account: BankAccount) -> BankAccount:
        self._bucket(self._bank_accounts, account.team_id)[account.id] = _copy(account)
        return _copy(account)

    async def get_bank_account(self, team_id: UUID, account_id: UUID) -> Optional[BankAccount]:
        account = self._rows(self._bank_accounts, team_id).get(account_id)
        return _copy(account) if account else None

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def get_transaction(
        self,
        team_id: UUID,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        txn = self._rows(self._transactions, team_id).get(transaction_id)
        return _copy(txn) if txn else None

    async def get_transaction_by_internal_id(
        self,
        team_id: UUID,
        internal_id: str,
    ) -> Optional[Transaction]:
        txn_id = self._rows(self._internal_ids, team_id).get(internal_id)
        if txn_id is None:
            return None
        return await self.get_transaction(team_id, txn_id)

    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        index = self._bucket(self._internal_ids, transaction.team_id)
        if transaction.internal_id in index:
            raise ConflictError(
                "Transaction with this internal_id already exists",
                {"team_id": str(transaction.team_id), "internal_id": transaction.internal_id},
            )
        rows = self._bucket(self._transactions, transaction.team_id)
        if transaction.id in rows:
            raise ConflictError("Transaction id already exists", {"id": str(transaction.id)})
        rows[transaction.id] = _copy(transaction)
        index[transaction.internal_id] = transaction.id
        return _copy(transaction)

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        rows = self._bucket(self._transactions, transaction.team_id)
        stored = rows.get(transaction.id)
        if stored is None:
            raise NotFoundError("Transaction not found", {"id": str(transaction.id)})
        if stored.internal_id != transaction.internal_id:
            raise ConflictError("internal_id cannot change", {"id": str(transaction.id)})
        updated = _bump(transaction, stored.version, "transaction")
        rows[transaction.id] = updated
        return _copy(updated)

    async def list_transactions(
        self,
        team_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        statuses: Optional[Iterable[TransactionStatus]] = None,
        currency: Optional[str] = None,
        category_slug: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        wanted = set(statuses) if statuses is not None else None
        results = []
        for txn in self._rows(self._transactions, team_id).values():
            if date_from and txn.date < date_from:
                continue
            if date_to and txn.date > date_to:
                continue
            if wanted is not None and txn.status not in wanted:
                continue
            if currency and txn.currency != currency:
                continue
            if category_slug and txn.category_slug != category_slug:
                continue
            results.append(_copy(txn))
        results.sort(key=lambda t: (t.date, t.created_at), reverse=True)
        return results[:limit] if limit else results

    async def insert_category(self, category: TransactionCategory) -> TransactionCategory:
        rows = self._bucket(self._categories, category.team_id)
        if category.slug in rows:
            raise ConflictError(
                "Category slug already exists",
                {"team_id": str(category.team_id), "slug": category.slug},
            )
        rows[category.slug] = _copy(category)
        return _copy(category)

    async def get_category(self, team_id: UUID, slug: str) -> Optional[TransactionCategory]:
        category = self._rows(self._categories, team_id).get(slug)
        return _copy(category) if category else None

    async def list_categories(self, team_id: UUID) -> list[TransactionCategory]:
        return [_copy(c) for c in self._rows(self._categories, team_id).values()]

    async def insert_tag(self, tag: Tag) -> Tag:
        rows = self._bucket(self._tags, tag.team_id)
        if any(existing.name == tag.name for existing in rows.values()):
            raise ConflictError("Tag name already exists", {"name": tag.name})
        rows[tag.id] = _copy(tag)
        return _copy(tag)

    async def get_tag(self, team_id: UUID, tag_id: UUID) -> Optional[Tag]:
        tag = self._rows(self._tags, team_id).get(tag_id)
        return _copy(tag) if tag else None

    async def insert_attachment(self, attachment: TransactionAttachment) -> TransactionAttachment:
        self._bucket(self._attachments, attachment.team_id)[attachment.id] = _copy(attachment)
        return _copy(attachment)

    async def list_attachments(
        self,
        team_id: UUID,
        transaction_id: UUID,
    ) -> list[TransactionAttachment]:
        return [
            _copy(a) for a in self._rows(self._attachments, team_id).values()
            if a.transaction_id == transaction_id
        ]

    async def insert_enrichment(self, enrichment: TransactionEnrichment) -> TransactionEnrichment:
        self._bucket(self._enrichments, enrichment.team_id)[enrichment.id] = _copy(enrichment)
        return _copy(enrichment)

    async def list_enrichments(
        self,
        team_id: UUID,
        transaction_id: UUID,
    ) -> list[TransactionEnrichment]:
        return [
            _copy(e) for e in self._rows(self._enrichments, team_id).values()
            if e.transaction_id == transaction_id
        ]

    # -------------------------------------------------------------------------
    # Inbox & suggestions
    # -------------------------------------------------------------------------

    async def get_inbox_item(self, team_id: UUID, inbox_id: UUID) -> Optional[InboxItem]:
        item = self._rows(self._inbox, team_id).get(inbox_id)
        return _copy(item) if item else None

    async def get_inbox_item_by_reference(
        self,
        team_id: UUID,
        reference_id: str,
    ) -> Optional[InboxItem]:
        inbox_id = self._rows(self._reference_ids, team_id).get(reference_id)
        if inbox_id is None:
            return None
        return await self.get_inbox_item(team_id, inbox_id)

    async def insert_inbox_item(self, item: InboxItem) -> InboxItem:
        index = self._bucket(self._reference_ids, item.team_id)
        if item.reference_id in index:
            raise ConflictError(
                "Inbox item with this reference_id already exists",
                {"team_id": str(item.team_id), "reference_id": item.reference_id},
            )
        self._bucket(self._inbox, item.team_id)[item.id] = _copy(item)
        index[item.reference_id] = item.id
        return _copy(item)

    async def update_inbox_item(self, item: InboxItem) -> InboxItem:
        rows = self._bucket(self._inbox, item.team_id)
        stored = rows.get(item.id)
        if stored is None:
            raise NotFoundError("Inbox item not found", {"id": str(item.id)})
        if stored.reference_id != item.reference_id:
            raise ConflictError("reference_id cannot change", {"id": str(item.id)})
        updated = _bump(item, stored.version, "inbox_item")
        rows[item.id] = updated
        return _copy(updated)

    async def list_inbox_items(
        self,
        team_id: UUID,
        statuses: Optional[Iterable[InboxStatus]] = None,
    ) -> list[InboxItem]:
        wanted = set(statuses) if statuses is not None else None
        items = [
            _copy(item) for item in self._rows(self._inbox, team_id).values()
            if wanted is None or item.status in wanted
        ]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items

    async def list_linked_transaction_ids(self, team_id: UUID) -> set[UUID]:
        return {
            item.transaction_id
            for item in self._rows(self._inbox, team_id).values()
            if item.transaction_id is not None
        }

    async def replace_suggestions(
        self,
        team_id: UUID,
        inbox_id: UUID,
        suggestions: list[MatchSuggestion],
    ) -> list[MatchSuggestion]:
        transaction_ids = [s.transaction_id for s in suggestions]
        if len(set(transaction_ids)) != len(transaction_ids):
            raise ConflictError(
                "Duplicate suggestion for the same transaction",
                {"inbox_id": str(inbox_id)},
            )
        for suggestion in suggestions:
            if suggestion.team_id != team_id or suggestion.inbox_id != inbox_id:
                raise ConflictError("Suggestion does not belong to this inbox item")
        rows = self._bucket(self._suggestions, team_id)
        for suggestion_id in [s.id for s in rows.values() if s.inbox_id == inbox_id]:
            del rows[suggestion_id]
        for suggestion in suggestions:
            rows[suggestion.id] = _copy(suggestion)
        return [_copy(s) for s in suggestions]

    async def get_suggestion(
        self,
        team_id: UUID,
        suggestion_id: UUID,
    ) -> Optional[MatchSuggestion]:
        suggestion = self._rows(self._suggestions, team_id).get(suggestion_id)
        return _copy(suggestion) if suggestion else None

    async def update_suggestions(
        self,
        team_id: UUID,
        suggestions: list[MatchSuggestion],
    ) -> list[MatchSuggestion]:
        rows = self._rows(self._suggestions, team_id)
        for suggestion in suggestions:
            if suggestion.id not in rows:
                raise NotFoundError("Suggestion not found", {"id": str(suggestion.id)})
        for suggestion in suggestions:
            rows[suggestion.id] = suggestion.model_copy(update={"updated_at": utcnow()}, deep=True)
        return [_copy(rows[s.id]) for s in suggestions]

    async def list_suggestions(
        self,
        team_id: UUID,
        inbox_id: Optional[UUID] = None,
        status: Optional[SuggestionStatus] = None,
    ) -> list[MatchSuggestion]:
        results = [
            _copy(s) for s in self._rows(self._suggestions, team_id).values()
            if (inbox_id is None or s.inbox_id == inbox_id)
            and (status is None or s.status == status)
        ]
        results.sort(key=lambda s: s.score, reverse=True)
        return results

    # -------------------------------------------------------------------------
    # Invoicing
    # -------------------------------------------------------------------------

    def _check_invoice_number(self, invoice: Invoice) -> None:
        if invoice.invoice_number is None:
            return
        for other in self._bucket(self._invoices, invoice.team_id).values():
            if other.id != invoice.id and other.invoice_number == invoice.invoice_number:
                raise ConflictError(
                    "Invoice number already used in this team",
                    {"team_id": str(invoice.team_id), "invoice_number": invoice.invoice_number},
                )

    async def insert_invoice(self, invoice: Invoice) -> Invoice:
        rows = self._bucket(self._invoices, invoice.team_id)
        if invoice.token in self._invoice_tokens:
            raise ConflictError("Invoice token already used", {"id": str(invoice.id)})
        if invoice.id in rows:
            raise ConflictError("Invoice id already exists", {"id": str(invoice.id)})
        self._check_invoice_number(invoice)
        rows[invoice.id] = _copy(invoice)
        self._invoice_tokens[invoice.token] = (invoice.team_id, invoice.id)
        return _copy(invoice)

    async def get_invoice(self, team_id: UUID, invoice_id: UUID) -> Optional[Invoice]:
        invoice = self._rows(self._invoices, team_id).get(invoice_id)
        return _copy(invoice) if invoice else None

    async def get_invoice_by_token(self, token: str) -> Optional[Invoice]:
        location = self._invoice_tokens.get(token)
        if location is None:
            return None
        team_id, invoice_id = location
        return await self.get_invoice(team_id, invoice_id)

    async def update_invoice(self, invoice: Invoice) -> Invoice:
        rows = self._bucket(self._invoices, invoice.team_id)
        stored = rows.get(invoice.id)
        if stored is None:
            raise NotFoundError("Invoice not found", {"id": str(invoice.id)})
        if stored.token != invoice.token:
            raise ConflictError("Invoice token cannot change", {"id": str(invoice.id)})
        self._check_invoice_number(invoice)
        updated = _bump(invoice, stored.version, "invoice")
        rows[invoice.id] = updated
        return _copy(updated)

    async def list_invoices(
        self,
        team_id: UUID,
        statuses: Optional[Iterable[InvoiceStatus]] = None,
    ) -> list[Invoice]:
        wanted = set(statuses) if statuses is not None else None
        invoices = [
            _copy(i) for i in self._rows(self._invoices, team_id).values()
            if wanted is None or i.status in wanted
        ]
        invoices.sort(key=lambda i: i.created_at)
        return invoices

    async def insert_customer(self, customer: Customer) -> Customer:
        self._bucket(self._customers, customer.team_id)[customer.id] = _copy(customer)
        return _copy(customer)

    async def get_customer(self, team_id: UUID, customer_id: UUID) -> Optional[Customer]:
        customer = self._rows(self._customers, team_id).get(customer_id)
        return _copy(customer) if customer else None

    async def insert_product(self, product: InvoiceProduct) -> InvoiceProduct:
        self._bucket(self._products, product.team_id)[product.id] = _copy(product)
        return _copy(product)

    async def get_product(self, team_id: UUID, product_id: UUID) -> Optional[InvoiceProduct]:
        product = self._rows(self._products, team_id).get(product_id)
        return _copy(product) if product else None

    async def insert_template(self, template: InvoiceTemplate) -> InvoiceTemplate:
        self._bucket(self._templates, template.team_id)[template.id] = _copy(template)
        return _copy(template)

    async def get_template(self, team_id: UUID, template_id: UUID) -> Optional[InvoiceTemplate]:
        template = self._rows(self._templates, team_id).get(template_id)
        return _copy(template) if template else None

    # -------------------------------------------------------------------------
    # Activities
    # -------------------------------------------------------------------------

    async def append_activity(self, activity: Activity) -> Activity:
        rows = self._bucket(self._activities, activity.team_id)
        if activity.id in rows:
            raise ConflictError("Activity already recorded", {"id": str(activity.id)})
        rows[activity.id] = _copy(activity)
        return _copy(activity)

    async def get_activity(self, team_id: UUID, activity_id: UUID) -> Optional[Activity]:
        activity = self._rows(self._activities, team_id).get(activity_id)
        return _copy(activity) if activity else None

    async def set_activity_status(
        self,
        team_id: UUID,
        activity_id: UUID,
        status: ActivityStatus,
    ) -> Activity:
        rows = self._rows(self._activities, team_id)
        stored = rows.get(activity_id)
        if stored is None:
            raise NotFoundError("Activity not found", {"id": str(activity_id)})
        if not stored.status.can_transition_to(status):
            raise ConflictError(
                f"Illegal activity transition {stored.status.value} -> {status.value}",
                {"id": str(activity_id)},
            )
        rows[activity_id] = stored.model_copy(update={"status": status})
        return _copy(rows[activity_id])

    async def list_activities(
        self,
        team_id: UUID,
        statuses: Optional[Iterable[ActivityStatus]] = None,
        types: Optional[Iterable[ActivityType]] = None,
        limit: int = 100,
    ) -> list[Activity]:
        wanted_statuses = set(statuses) if statuses is not None else None
        wanted_types = set(types) if types is not None else None
        results = [
            _copy(a) for a in self._rows(self._activities, team_id).values()
            if (wanted_statuses is None or a.status in wanted_statuses)
            and (wanted_types is None or a.type in wanted_types)
        ]
        results.sort(key=lambda a: a.created_at, reverse=True)
        return results[:limit]
