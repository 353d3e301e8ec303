"""
Ledger Service

Idempotent ingestion of bank transactions and the user-facing operations
on them (categorize, tag, assign, annotate, attach, enrich, archive).

INGESTION FLOW:
1. Validate the raw record (currency, finite amount, references)
2. Take the per-(team_id, internal_id) lock
3. Create, or diff-merge into the stored transaction
4. Emit an activity for what changed

DESIGN DECISION: Re-ingestion never clobbers what a user set by hand.
category_slug, note, tag_ids and assigned_id are only overwritten when the
bank-sync record carries them explicitly.

IMPORTANT: Transactions are never deleted. Archiving is a status.
"""

from typing import Any, Callable, Iterable, Optional, Union
from uuid import UUID

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from teamledger.activity import ActivityRecorder, actor_source
from teamledger.concurrency import KeyedLock
from teamledger.config import LedgerSettings, get_settings
from teamledger.exceptions import ConflictError, NotFoundError, ValidationError
from teamledger.ledger.money import normalize_money, quantize_money
from teamledger.models.activity import ActivityType
from teamledger.models.ledger import (
    AccountType,
    BankAccount,
    BankConnection,
    BankProvider,
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
    TransactionStatus,
)
from teamledger.services.providers import (
    ExchangeRateProvider,
    IdGenerator,
    default_id_generator,
)
from teamledger.services.storage import LedgerStorageInterface, require_team_id
from teamledger.validation import build_model


# Fields the bank-sync collaborator owns. Overwritten whenever provided.
SYNC_FIELDS: tuple[str, ...] = (
    "date",
    "name",
    "method",
    "amount",
    "currency",
    "bank_account_id",
    "status",
    "balance",
    "description",
    "counterparty_name",
    "merchant_name",
    "manual",
)

# Provided-as-None means "no value" for these, not "clear it"
NON_NULLABLE_FIELDS = frozenset({"status", "manual", "method", "tag_ids"})


class LedgerService:
    """
    Owns transactions and their categories, tags, attachments and enrichments.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        activities: ActivityRecorder,
        exchange_rates: ExchangeRateProvider,
        id_generator: Optional[IdGenerator] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._activities = activities
        self._exchange_rates = exchange_rates
        self._new_id = id_generator or default_id_generator
        self._settings = settings or get_settings().ledger
        self._locks = KeyedLock()
        self._logger = structlog.get_logger(__name__)

    # =========================================================================
    # TEAMS & BANKING
    # =========================================================================

    async def create_team(
        self,
        name: str,
        base_currency: Optional[str] = None,
        plan: Plan = Plan.TRIAL,
    ) -> Team:
        currency = (base_currency or self._settings.default_base_currency).upper()
        if currency not in self._settings.supported_currencies_set:
            raise ValidationError(f"Unsupported base currency: {currency}")
        team = build_model(Team, {
            "id": self._new_id(),
            "name": name,
            "plan": plan,
            "base_currency": currency,
        })
        team = await self._storage.create_team(team)
        self._logger.info("team_created", team_id=str(team.id), base_currency=currency)
        return team

    async def get_team(self, team_id: UUID) -> Team:
        team = await self._storage.get_team(require_team_id(team_id))
        if team is None:
            raise NotFoundError("Team not found", {"team_id": str(team_id)})
        return team

    async def create_bank_connection(
        self,
        team_id: UUID,
        institution_id: str,
        provider: BankProvider,
        name: Optional[str] = None,
    ) -> BankConnection:
        await self.get_team(team_id)
        connection = build_model(BankConnection, {
            "id": self._new_id(),
            "team_id": team_id,
            "institution_id": institution_id,
            "provider": provider,
            "name": name,
        })
        return await self._storage.insert_bank_connection(connection)

    async def create_bank_account(
        self,
        team_id: UUID,
        name: str,
        currency: Optional[str] = None,
        bank_connection_id: Optional[UUID] = None,
        type: Optional[AccountType] = None,
        manual: bool = False,
    ) -> BankAccount:
        await self.get_team(team_id)
        account = build_model(BankAccount, {
            "id": self._new_id(),
            "team_id": team_id,
            "name": name,
            "currency": currency.upper() if currency else None,
            "bank_connection_id": bank_connection_id,
            "type": type,
            "manual": manual,
        })
        return await self._storage.insert_bank_account(account)

    # =========================================================================
    # INGESTION
    # =========================================================================

    async def ingest_transaction(
        self,
        team_id: UUID,
        record: Union[ExternalTransactionRecord, dict[str, Any]],
    ) -> IngestResult:
        """
        Idempotently ingest one bank-sync record.

        Args:
            team_id: Owning team
            record: The raw record (a dict is validated into one)

        Returns:
            IngestResult with outcome created, updated or unchanged

        Raises:
            ValidationError: Unsupported currency, non-finite amount,
                unknown category/tag/bank account
            NotFoundError: Unknown team
            DependencyError: Exchange-rate provider failure
        """
        result = await self._ingest(team_id, record)
        await self._emit_ingest_activities(team_id, [result])
        return result

    async def ingest_transactions(
        self,
        team_id: UUID,
        records: Iterable[Union[ExternalTransactionRecord, dict[str, Any]]],
    ) -> list[IngestResult]:
        """
        Ingest a batch of records.

        Each record is ingested independently; one summarizing activity is
        emitted per outcome kind instead of one per record. If a record
        fails, activities are still emitted for the ones written before it.
        """
        results = []
        try:
            for record in records:
                results.append(await self._ingest(team_id, record))
        finally:
            await self._emit_ingest_activities(team_id, results)
        return results

    async def _ingest(
        self,
        team_id: UUID,
        record: Union[ExternalTransactionRecord, dict[str, Any]],
    ) -> IngestResult:
        require_team_id(team_id)
        if not isinstance(record, ExternalTransactionRecord):
            record = build_model(ExternalTransactionRecord, record)

        team = await self.get_team(team_id)
        values = await self._validate_record(team_id, record)

        async with self._locks.hold((team_id, record.internal_id)):
            result = await self._upsert(team, record, values)

        self._logger.info(
            "transaction_ingested",
            team_id=str(team_id),
            internal_id=record.internal_id,
            transaction_id=str(result.transaction.id),
            outcome=result.outcome.value,
            changed_fields=result.changed_fields,
        )
        return result

    async def _validate_record(
        self,
        team_id: UUID,
        record: ExternalTransactionRecord,
    ) -> dict[str, Any]:
        """
        Check a record against the team and return its normalized values.

        Only fields the record actually provides are returned.
        """
        amount, currency = normalize_money(
            record.amount,
            record.currency,
            self._settings.supported_currencies_set,
        )

        provided = record.model_fields_set
        fields = [
            f for f in SYNC_FIELDS + Transaction.USER_FIELDS
            if f in provided or f in ("date", "name", "amount", "currency")
        ]
        values = {f: getattr(record, f) for f in fields}
        values["amount"] = amount
        values["currency"] = currency
        if values.get("balance") is not None:
            values["balance"] = quantize_money(values["balance"], currency)
        for field in NON_NULLABLE_FIELDS:
            if field in values and values[field] is None:
                del values[field]

        if values.get("category_slug") is not None:
            if await self._storage.get_category(team_id, values["category_slug"]) is None:
                raise ValidationError(
                    "Unknown category",
                    {"team_id": str(team_id), "category_slug": values["category_slug"]},
                )
        if values.get("bank_account_id") is not None:
            if await self._storage.get_bank_account(team_id, values["bank_account_id"]) is None:
                raise ValidationError(
                    "Unknown bank account",
                    {"team_id": str(team_id), "bank_account_id": str(values["bank_account_id"])},
                )
        for tag_id in values.get("tag_ids") or []:
            if await self._storage.get_tag(team_id, tag_id) is None:
                raise ValidationError(
                    "Unknown tag",
                    {"team_id": str(team_id), "tag_id": str(tag_id)},
                )

        return values

    async def _base_amount(self, team: Team, values: dict[str, Any]) -> dict[str, Any]:
        """Team-currency value of the record's amount."""
        if values["currency"] == team.base_currency:
            base = values["amount"]
        else:
            conversion = await self._exchange_rates.convert(
                values["amount"],
                values["currency"],
                team.base_currency,
                values["date"],
            )
            base = quantize_money(conversion.amount, team.base_currency)
        return {"base_amount": base, "base_currency": team.base_currency}

    @retry(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(2),
        reraise=True,
    )
    async def _upsert(
        self,
        team: Team,
        record: ExternalTransactionRecord,
        values: dict[str, Any],
    ) -> IngestResult:
        # Reloaded on every attempt; a retry sees the winner's write
        existing = await self._storage.get_transaction_by_internal_id(team.id, record.internal_id)

        if existing is None:
            transaction = build_model(Transaction, {
                **values,
                **await self._base_amount(team, values),
                "id": self._new_id(),
                "team_id": team.id,
                "internal_id": record.internal_id,
            })
            stored = await self._storage.insert_transaction(transaction)
            return IngestResult(outcome=IngestOutcome.CREATED, transaction=stored)

        changes = {
            field: value for field, value in values.items()
            if getattr(existing, field) != value
        }
        if not changes:
            return IngestResult(outcome=IngestOutcome.UNCHANGED, transaction=existing)

        if {"amount", "currency", "date"} & changes.keys():
            base = await self._base_amount(team, values)
            changes.update({
                field: value for field, value in base.items()
                if getattr(existing, field) != value
            })

        merged = existing.model_copy(update=changes, deep=True)
        stored = await self._storage.update_transaction(merged)
        return IngestResult(
            outcome=IngestOutcome.UPDATED,
            transaction=stored,
            changed_fields=sorted(changes),
        )

    async def _emit_ingest_activities(self, team_id: UUID, results: list[IngestResult]) -> None:
        created = [str(r.transaction.id) for r in results if r.outcome == IngestOutcome.CREATED]
        updated = [str(r.transaction.id) for r in results if r.outcome == IngestOutcome.UPDATED]
        if created:
            await self._activities.record(
                team_id,
                ActivityType.TRANSACTIONS_CREATED,
                metadata={"transaction_ids": created, "count": len(created)},
            )
        if updated:
            await self._activities.record(
                team_id,
                ActivityType.TRANSACTIONS_ENRICHED,
                metadata={"transaction_ids": updated, "count": len(updated)},
            )

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_transaction(self, team_id: UUID, transaction_id: UUID) -> Transaction:
        transaction = await self._storage.get_transaction(team_id, transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction not found", {"transaction_id": str(transaction_id)})
        return transaction

    async def list_transactions(self, team_id: UUID, **filters: Any) -> list[Transaction]:
        """List a team's transactions. See LedgerStorageInterface.list_transactions for filters."""
        return await self._storage.list_transactions(team_id, **filters)

    async def list_categories(self, team_id: UUID) -> list[TransactionCategory]:
        return await self._storage.list_categories(team_id)

    async def list_attachments(self, team_id: UUID, transaction_id: UUID) -> list[TransactionAttachment]:
        return await self._storage.list_attachments(team_id, transaction_id)

    async def list_enrichments(self, team_id: UUID, transaction_id: UUID) -> list[TransactionEnrichment]:
        return await self._storage.list_enrichments(team_id, transaction_id)

    # =========================================================================
    # USER OPERATIONS
    # =========================================================================

    @retry(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(2),
        reraise=True,
    )
    async def _modify(
        self,
        team_id: UUID,
        transaction_id: UUID,
        change: Callable[[Transaction], dict[str, Any]],
    ) -> Transaction:
        """Load, apply change(transaction) and store with a version check."""
        transaction = await self.get_transaction(team_id, transaction_id)
        updates = {
            field: value for field, value in change(transaction).items()
            if getattr(transaction, field) != value
        }
        if not updates:
            return transaction
        return await self._storage.update_transaction(
            transaction.model_copy(update=updates, deep=True)
        )

    async def create_category(
        self,
        team_id: UUID,
        slug: str,
        name: str,
        color: Optional[str] = None,
        description: Optional[str] = None,
        vat: Optional[Any] = None,
        system: bool = False,
        user_id: Optional[UUID] = None,
    ) -> TransactionCategory:
        """
        Raises:
            ValidationError: Malformed slug or VAT
            ConflictError: Slug already exists in the team
        """
        await self.get_team(team_id)
        category = build_model(TransactionCategory, {
            "team_id": team_id,
            "slug": slug,
            "name": name,
            "color": color,
            "description": description,
            "vat": vat,
            "system": system,
        })
        category = await self._storage.insert_category(category)
        await self._activities.record(
            team_id,
            ActivityType.TRANSACTION_CATEGORY_CREATED,
            source=actor_source(user_id),
            user_id=user_id,
            metadata={"slug": category.slug, "name": category.name},
        )
        return category

    async def _require_transactions(self, team_id: UUID, transaction_ids: Iterable[UUID]) -> list[UUID]:
        """Check every id exists before a bulk change writes anything."""
        transaction_ids = list(transaction_ids)
        for txn_id in transaction_ids:
            await self.get_transaction(team_id, txn_id)
        return transaction_ids

    async def categorize_transactions(
        self,
        team_id: UUID,
        transaction_ids: Iterable[UUID],
        category_slug: Optional[str],
        user_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Set (or clear, with None) the category of several transactions.

        Raises:
            NotFoundError: Unknown category or transaction; nothing is changed
        """
        if category_slug is not None:
            if await self._storage.get_category(team_id, category_slug) is None:
                raise NotFoundError(
                    "Category not found",
                    {"team_id": str(team_id), "category_slug": category_slug},
                )

        transaction_ids = await self._require_transactions(team_id, transaction_ids)
        updated = [
            await self._modify(team_id, txn_id, lambda t: {"category_slug": category_slug})
            for txn_id in transaction_ids
        ]
        await self._activities.record(
            team_id,
            ActivityType.TRANSACTIONS_CATEGORIZED,
            source=actor_source(user_id),
            user_id=user_id,
            metadata={
                "transaction_ids": [str(t.id) for t in updated],
                "category_slug": category_slug,
            },
        )
        return updated

    async def assign_transactions(
        self,
        team_id: UUID,
        transaction_ids: Iterable[UUID],
        assigned_id: Optional[UUID],
        user_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Raises:
            NotFoundError: Unknown transaction; nothing is changed
        """
        transaction_ids = await self._require_transactions(team_id, transaction_ids)
        updated = [
            await self._modify(team_id, txn_id, lambda t: {"assigned_id": assigned_id})
            for txn_id in transaction_ids
        ]
        await self._activities.record(
            team_id,
            ActivityType.TRANSACTIONS_ASSIGNED,
            source=actor_source(user_id),
            user_id=user_id,
            metadata={
                "transaction_ids": [str(t.id) for t in updated],
                "assigned_id": str(assigned_id) if assigned_id else None,
            },
        )
        return updated

    async def update_note(
        self,
        team_id: UUID,
        transaction_id: UUID,
        note: Optional[str],
    ) -> Transaction:
        return await self._modify(team_id, transaction_id, lambda t: {"note": note})

    async def create_tag(
        self,
        team_id: UUID,
        name: str,
        color: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Tag:
        """
        Raises:
            ConflictError: Tag name already exists in the team
        """
        await self.get_team(team_id)
        tag = build_model(Tag, {
            "id": self._new_id(),
            "team_id": team_id,
            "name": name,
            "color": color,
            "description": description,
        })
        return await self._storage.insert_tag(tag)

    async def _require_tag(self, team_id: UUID, tag_id: UUID) -> Tag:
        tag = await self._storage.get_tag(team_id, tag_id)
        if tag is None:
            raise NotFoundError("Tag not found", {"tag_id": str(tag_id)})
        return tag

    async def tag_transaction(self, team_id: UUID, transaction_id: UUID, tag_id: UUID) -> Transaction:
        await self._require_tag(team_id, tag_id)
        return await self._modify(
            team_id,
            transaction_id,
            lambda t: {"tag_ids": t.tag_ids if tag_id in t.tag_ids else [*t.tag_ids, tag_id]},
        )

    async def untag_transaction(self, team_id: UUID, transaction_id: UUID, tag_id: UUID) -> Transaction:
        return await self._modify(
            team_id,
            transaction_id,
            lambda t: {"tag_ids": [existing for existing in t.tag_ids if existing != tag_id]},
        )

    async def add_attachment(
        self,
        team_id: UUID,
        transaction_id: UUID,
        name: str,
        path: Optional[str] = None,
        size: Optional[int] = None,
        type: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> TransactionAttachment:
        await self.get_transaction(team_id, transaction_id)
        attachment = build_model(TransactionAttachment, {
            "id": self._new_id(),
            "team_id": team_id,
            "transaction_id": transaction_id,
            "name": name,
            "path": path,
            "size": size,
            "type": type,
        })
        attachment = await self._storage.insert_attachment(attachment)
        await self._activities.record(
            team_id,
            ActivityType.TRANSACTION_ATTACHMENT_CREATED,
            source=actor_source(user_id),
            user_id=user_id,
            metadata={
                "transaction_id": str(transaction_id),
                "attachment_id": str(attachment.id),
                "name": attachment.name,
            },
        )
        return attachment

    async def record_enrichment(
        self,
        team_id: UUID,
        transaction_id: UUID,
        data: dict[str, Any],
    ) -> Transaction:
        """
        Store enrichment output for a transaction and mark it enriched.

        merchant_name and counterparty_name in data are copied onto the
        transaction.
        """
        await self.get_transaction(team_id, transaction_id)
        await self._storage.insert_enrichment(build_model(TransactionEnrichment, {
            "id": self._new_id(),
            "team_id": team_id,
            "transaction_id": transaction_id,
            "data": data,
        }))

        def apply(transaction: Transaction) -> dict[str, Any]:
            changes = {"enrichment_completed": True}
            for field in ("merchant_name", "counterparty_name"):
                if data.get(field):
                    changes[field] = str(data[field])
            return changes

        transaction = await self._modify(team_id, transaction_id, apply)
        await self._activities.record(
            team_id,
            ActivityType.TRANSACTIONS_ENRICHED,
            metadata={"transaction_ids": [str(transaction_id)], "count": 1},
        )
        return transaction

    async def archive_transaction(self, team_id: UUID, transaction_id: UUID) -> Transaction:
        transaction = await self._modify(
            team_id,
            transaction_id,
            lambda t: {"status": TransactionStatus.ARCHIVED},
        )
        self._logger.info(
            "transaction_archived",
            team_id=str(team_id),
            transaction_id=str(transaction_id),
        )
        return transaction
