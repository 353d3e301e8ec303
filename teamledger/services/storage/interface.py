"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the in-memory store for a real database later
2. Keep business logic decoupled from the physical storage format
3. Enforce the tenant boundary in exactly one place

TENANT BOUNDARY: Every method takes team_id as a required argument and
implementations must reject calls without one (see require_team_id).
Lookups by id only ever search inside the given team. The single global
lookup is get_invoice_by_token, which serves public invoice links.

CONCURRENCY: Mutable entities carry a version. update_* methods must fail
with ConflictError when the stored version differs from the one passed in
(optimistic concurrency), and bump the version on success.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Iterable, Optional
from uuid import UUID

from teamledger.exceptions import ValidationError
from teamledger.models.activity import Activity, ActivityStatus, ActivityType
from teamledger.models.inbox import InboxItem, InboxStatus, MatchSuggestion, SuggestionStatus
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
)


def require_team_id(team_id: Any) -> UUID:
    """
    Reject any storage call that is not scoped to a team.

    Raises:
        ValidationError: If team_id is missing or not a UUID
    """
    if team_id is None:
        raise ValidationError("team_id is required for every storage operation")
    if not isinstance(team_id, UUID):
        raise ValidationError(
            "team_id must be a UUID",
            {"team_id": repr(team_id)},
        )
    return team_id


class LedgerStorageInterface(ABC):
    """
    Abstract interface for the transactional store.

    Any storage implementation (in-memory, PostgreSQL, SQLite, etc.)
    must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Teams & banking
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_team(self, team: Team) -> Team:
        pass

    @abstractmethod
    async def get_team(self, team_id: UUID) -> Optional[Team]:
        pass

    @abstractmethod
    async def compare_and_set_invoice_sequence(
        self,
        team_id: UUID,
        expected: int,
        new: int,
    ) -> bool:
        """
        Atomically move Team.invoice_sequence from expected to new.

        Args:
            team_id: Team whose counter is advanced
            expected: Value the caller read
            new: Value to store (must be greater than expected)

        Returns:
            True if the swap happened, False if another writer got there first
        """
        pass

    @abstractmethod
    async def insert_bank_connection(self, connection: BankConnection) -> BankConnection:
        pass

    @abstractmethod
    async def insert_bank_account(self, account: BankAccount) -> BankAccount:
        pass

    @abstractmethod
    async def get_bank_account(self, team_id: UUID, account_id: UUID) -> Optional[BankAccount]:
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_transaction(
        self,
        team_id: UUID,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def get_transaction_by_internal_id(
        self,
        team_id: UUID,
        internal_id: str,
    ) -> Optional[Transaction]:
        """
        Look up a transaction by its bank-sync idempotency key.

        Returns:
            The transaction if found in this team, None otherwise
        """
        pass

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        """
        Insert a new transaction.

        Raises:
            ConflictError: If (team_id, internal_id) already exists
        """
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> Transaction:
        """
        Replace a stored transaction, checking its version.

        Returns:
            The stored transaction with its bumped version

        Raises:
            NotFoundError: If the transaction is not in the team
            ConflictError: If the stored version moved on
        """
        pass

    @abstractmethod
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
        """
        List transactions with optional filters, newest date first.
        """
        pass

    @abstractmethod
    async def insert_category(self, category: TransactionCategory) -> TransactionCategory:
        """
        Raises:
            ConflictError: If the slug exists in the team
        """
        pass

    @abstractmethod
    async def get_category(self, team_id: UUID, slug: str) -> Optional[TransactionCategory]:
        pass

    @abstractmethod
    async def list_categories(self, team_id: UUID) -> list[TransactionCategory]:
        pass

    @abstractmethod
    async def insert_tag(self, tag: Tag) -> Tag:
        """
        Raises:
            ConflictError: If a tag with this name exists in the team
        """
        pass

    @abstractmethod
    async def get_tag(self, team_id: UUID, tag_id: UUID) -> Optional[Tag]:
        pass

    @abstractmethod
    async def insert_attachment(self, attachment: TransactionAttachment) -> TransactionAttachment:
        pass

    @abstractmethod
    async def list_attachments(
        self,
        team_id: UUID,
        transaction_id: UUID,
    ) -> list[TransactionAttachment]:
        pass

    @abstractmethod
    async def insert_enrichment(self, enrichment: TransactionEnrichment) -> TransactionEnrichment:
        pass

    @abstractmethod
    async def list_enrichments(
        self,
        team_id: UUID,
        transaction_id: UUID,
    ) -> list[TransactionEnrichment]:
        pass

    # -------------------------------------------------------------------------
    # Inbox & suggestions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_inbox_item(self, team_id: UUID, inbox_id: UUID) -> Optional[InboxItem]:
        pass

    @abstractmethod
    async def get_inbox_item_by_reference(
        self,
        team_id: UUID,
        reference_id: str,
    ) -> Optional[InboxItem]:
        pass

    @abstractmethod
    async def insert_inbox_item(self, item: InboxItem) -> InboxItem:
        """
        Raises:
            ConflictError: If (team_id, reference_id) already exists
        """
        pass

    @abstractmethod
    async def update_inbox_item(self, item: InboxItem) -> InboxItem:
        """
        Replace a stored inbox item, checking its version.

        Raises:
            NotFoundError: If the item is not in the team
            ConflictError: If the stored version moved on
        """
        pass

    @abstractmethod
    async def list_inbox_items(
        self,
        team_id: UUID,
        statuses: Optional[Iterable[InboxStatus]] = None,
    ) -> list[InboxItem]:
        pass

    @abstractmethod
    async def list_linked_transaction_ids(self, team_id: UUID) -> set[UUID]:
        """Transactions already linked to an inbox item in DONE."""
        pass

    @abstractmethod
    async def replace_suggestions(
        self,
        team_id: UUID,
        inbox_id: UUID,
        suggestions: list[MatchSuggestion],
    ) -> list[MatchSuggestion]:
        """
        Atomically replace every suggestion row of one inbox item.

        Re-analysis goes through here so rows are never appended twice.

        Raises:
            ConflictError: If two suggestions share a transaction_id
        """
        pass

    @abstractmethod
    async def get_suggestion(
        self,
        team_id: UUID,
        suggestion_id: UUID,
    ) -> Optional[MatchSuggestion]:
        pass

    @abstractmethod
    async def update_suggestions(
        self,
        team_id: UUID,
        suggestions: list[MatchSuggestion],
    ) -> list[MatchSuggestion]:
        pass

    @abstractmethod
    async def list_suggestions(
        self,
        team_id: UUID,
        inbox_id: Optional[UUID] = None,
        status: Optional[SuggestionStatus] = None,
    ) -> list[MatchSuggestion]:
        """List suggestions, highest score first."""
        pass

    # -------------------------------------------------------------------------
    # Invoicing
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_invoice(self, invoice: Invoice) -> Invoice:
        """
        Raises:
            ConflictError: If the token is taken (globally) or the
                invoice_number is taken in the team
        """
        pass

    @abstractmethod
    async def get_invoice(self, team_id: UUID, invoice_id: UUID) -> Optional[Invoice]:
        pass

    @abstractmethod
    async def get_invoice_by_token(self, token: str) -> Optional[Invoice]:
        """Global lookup backing public invoice links."""
        pass

    @abstractmethod
    async def update_invoice(self, invoice: Invoice) -> Invoice:
        """
        Replace a stored invoice, checking its version and number uniqueness.

        Raises:
            NotFoundError: If the invoice is not in the team
            ConflictError: If the stored version moved on, or the
                invoice_number is used by another invoice of the team
        """
        pass

    @abstractmethod
    async def list_invoices(
        self,
        team_id: UUID,
        statuses: Optional[Iterable[InvoiceStatus]] = None,
    ) -> list[Invoice]:
        pass

    @abstractmethod
    async def insert_customer(self, customer: Customer) -> Customer:
        pass

    @abstractmethod
    async def get_customer(self, team_id: UUID, customer_id: UUID) -> Optional[Customer]:
        pass

    @abstractmethod
    async def insert_product(self, product: InvoiceProduct) -> InvoiceProduct:
        pass

    @abstractmethod
    async def get_product(self, team_id: UUID, product_id: UUID) -> Optional[InvoiceProduct]:
        pass

    @abstractmethod
    async def insert_template(self, template: InvoiceTemplate) -> InvoiceTemplate:
        pass

    @abstractmethod
    async def get_template(self, team_id: UUID, template_id: UUID) -> Optional[InvoiceTemplate]:
        pass

    # -------------------------------------------------------------------------
    # Activities (append-only)
    # -------------------------------------------------------------------------

    @abstractmethod
    async def append_activity(self, activity: Activity) -> Activity:
        """
        Append an activity. Activities are never updated or deleted,
        except for their read-state.

        Raises:
            ConflictError: If the activity id already exists
        """
        pass

    @abstractmethod
    async def get_activity(self, team_id: UUID, activity_id: UUID) -> Optional[Activity]:
        pass

    @abstractmethod
    async def set_activity_status(
        self,
        team_id: UUID,
        activity_id: UUID,
        status: ActivityStatus,
    ) -> Activity:
        pass

    @abstractmethod
    async def list_activities(
        self,
        team_id: UUID,
        statuses: Optional[Iterable[ActivityStatus]] = None,
        types: Optional[Iterable[ActivityType]] = None,
        limit: int = 100,
    ) -> list[Activity]:
        """List activities, newest first."""
        pass
