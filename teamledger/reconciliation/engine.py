"""
Inbox Reconciliation Engine

Links inbox evidence (receipts, invoices) to bank transactions.

FLOW:
1. Ingest    -> item created in NEW (or PENDING for uploads), idempotent by reference_id
2. Process   -> NEW/PENDING -> PROCESSING while content extraction runs
3. Extract   -> PROCESSING -> ANALYZING with amount/currency/date filled in
4. Analyze   -> candidates scored by the similarity provider, then:
                 best > T_auto   -> DONE (auto match)
                 best > T_review -> SUGGESTED_MATCH (user reviews)
                 otherwise       -> NO_MATCH
5. Review    -> confirm / decline a suggestion, or match by hand

CRITICAL: Analysis of one item is single-flight and re-checks the item
before committing. If a user archived, deleted or matched the item while
scores were being computed, the run is dropped.

A slow or failing similarity provider never fails analysis. The affected
candidates are left unscored and are never auto-confirmed or suggested.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from teamledger.activity import ActivityRecorder, actor_source
from teamledger.concurrency import KeyedLock, SingleFlight
from teamledger.config import ReconciliationSettings, get_settings
from teamledger.exceptions import ConflictError, DependencyError, NotFoundError, ValidationError
from teamledger.ledger.money import normalize_money, quantize_money
from teamledger.models.activity import ActivityType
from teamledger.models.inbox import (
    AnalysisOutcome,
    AnalysisResult,
    InboxItem,
    InboxPayload,
    InboxSource,
    InboxStatus,
    MatchSuggestion,
    SuggestionStatus,
)
from teamledger.models.ledger import Team
from teamledger.reconciliation.matching import Candidate, Decision, decide, select_candidates
from teamledger.services.providers import (
    ExchangeRateProvider,
    IdGenerator,
    SimilarityProvider,
    default_id_generator,
)
from teamledger.services.storage import LedgerStorageInterface, require_team_id
from teamledger.validation import build_model


# Payload fields copied onto the item
CONTENT_FIELDS = ("amount", "currency", "date", "display_name", "website", "description", "type")

# Statuses from which a run may (re)start
ANALYZABLE = frozenset({InboxStatus.ANALYZING, InboxStatus.SUGGESTED_MATCH, InboxStatus.NO_MATCH})

# Activity type and metadata, recorded after the link lock is released
PendingActivity = tuple[ActivityType, dict[str, Any]]


class ReconciliationEngine:
    """
    Owns inbox items and match suggestions.

    All operations are scoped to one team. Lock keys always start with the
    team id, so teams never wait on each other.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        activities: ActivityRecorder,
        similarity: SimilarityProvider,
        exchange_rates: ExchangeRateProvider,
        id_generator: Optional[IdGenerator] = None,
        settings: Optional[ReconciliationSettings] = None,
        supported_currencies: Optional[frozenset[str]] = None,
    ):
        self._storage = storage
        self._activities = activities
        self._similarity = similarity
        self._exchange_rates = exchange_rates
        self._new_id = id_generator or default_id_generator
        self._settings = settings or get_settings().reconciliation
        self._currencies = supported_currencies or get_settings().ledger.supported_currencies_set
        self._locks = KeyedLock()
        self._flights = SingleFlight()
        self._logger = structlog.get_logger(__name__)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def _require_team(self, team_id: UUID) -> Team:
        team = await self._storage.get_team(require_team_id(team_id))
        if team is None:
            raise NotFoundError("Team not found", {"team_id": str(team_id)})
        return team

    async def get_item(self, team_id: UUID, inbox_id: UUID) -> InboxItem:
        item = await self._storage.get_inbox_item(team_id, inbox_id)
        if item is None:
            raise NotFoundError("Inbox item not found", {"inbox_id": str(inbox_id)})
        return item

    async def list_items(
        self,
        team_id: UUID,
        statuses: Optional[list[InboxStatus]] = None,
    ) -> list[InboxItem]:
        return await self._storage.list_inbox_items(team_id, statuses=statuses)

    async def list_suggestions(
        self,
        team_id: UUID,
        inbox_id: Optional[UUID] = None,
        status: Optional[SuggestionStatus] = None,
    ) -> list[MatchSuggestion]:
        return await self._storage.list_suggestions(team_id, inbox_id=inbox_id, status=status)

    # =========================================================================
    # INGESTION & EXTRACTION
    # =========================================================================

    def _content(self, payload: InboxPayload) -> dict[str, Any]:
        """
        Normalized content fields the payload actually carries.

        Raises:
            ValidationError: Non-finite amount or unsupported currency
        """
        content = {
            field: getattr(payload, field) for field in CONTENT_FIELDS
            if field in payload.model_fields_set and getattr(payload, field) is not None
        }
        if "currency" in content:
            if "amount" in content:
                content["amount"], content["currency"] = normalize_money(
                    content["amount"], content["currency"], self._currencies
                )
            else:
                content["currency"] = normalize_money(
                    Decimal(0), content["currency"], self._currencies
                )[1]
        elif "amount" in content and not content["amount"].is_finite():
            raise ValidationError("Amount must be finite", {"amount": str(content["amount"])})
        if "metadata" in payload.model_fields_set:
            content["metadata"] = payload.metadata
        return content

    async def ingest_inbox_item(
        self,
        team_id: UUID,
        reference_id: str,
        payload: Union[InboxPayload, dict[str, Any], None] = None,
    ) -> InboxItem:
        """
        Idempotently ingest a document.

        The first call creates the item (PENDING for uploads, NEW otherwise)
        and emits inbox_new. Repeats merge extracted fields without emitting
        anything.

        Raises:
            ValidationError: Malformed payload
            NotFoundError: Unknown team
        """
        if payload is None:
            payload = InboxPayload()
        elif not isinstance(payload, InboxPayload):
            payload = build_model(InboxPayload, payload)
        await self._require_team(team_id)
        content = self._content(payload)

        async with self._locks.hold((team_id, "inbox", reference_id)):
            item, created = await self._upsert_item(team_id, reference_id, payload, content)

        if created:
            self._logger.info(
                "inbox_item_created",
                team_id=str(team_id),
                inbox_id=str(item.id),
                reference_id=reference_id,
                source=item.source.value,
            )
            await self._activities.record(
                team_id,
                ActivityType.INBOX_NEW,
                metadata={
                    "inbox_id": str(item.id),
                    "reference_id": reference_id,
                    "display_name": item.display_name,
                    "amount": str(item.amount) if item.amount is not None else None,
                    "currency": item.currency,
                    "source": item.source.value,
                },
            )
        return item

    @retry(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(2),
        reraise=True,
    )
    async def _upsert_item(
        self,
        team_id: UUID,
        reference_id: str,
        payload: InboxPayload,
        content: dict[str, Any],
    ) -> tuple[InboxItem, bool]:
        existing = await self._storage.get_inbox_item_by_reference(team_id, reference_id)
        if existing is None:
            item = build_model(InboxItem, {
                **content,
                "id": self._new_id(),
                "team_id": team_id,
                "reference_id": reference_id,
                "status": (
                    InboxStatus.PENDING if payload.source == InboxSource.UPLOAD
                    else InboxStatus.NEW
                ),
                "source": payload.source,
                "attachments": payload.attachments,
            })
            return await self._storage.insert_inbox_item(item), True

        changes = {
            field: value for field, value in content.items()
            if getattr(existing, field) != value
        }
        known = {a.name for a in existing.attachments}
        added = [a for a in payload.attachments if a.name not in known]
        if added:
            changes["attachments"] = [*existing.attachments, *added]
        if not changes:
            return existing, False
        return await self._storage.update_inbox_item(
            existing.model_copy(update=changes, deep=True)
        ), False

    @retry(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(2),
        reraise=True,
    )
    async def _transition(
        self,
        team_id: UUID,
        inbox_id: UUID,
        target: InboxStatus,
        transaction_id: Optional[UUID] = None,
        changes: Optional[dict[str, Any]] = None,
    ) -> InboxItem:
        """Reload, move to target through the transition table, store."""
        item = await self.get_item(team_id, inbox_id)
        moved = item.transition_to(target, transaction_id)
        if changes:
            moved = moved.model_copy(update=changes, deep=True)
        return await self._storage.update_inbox_item(moved)

    async def start_processing(self, team_id: UUID, inbox_id: UUID) -> InboxItem:
        """NEW/PENDING -> PROCESSING. Content extraction has been requested."""
        return await self._transition(team_id, inbox_id, InboxStatus.PROCESSING)

    async def complete_extraction(
        self,
        team_id: UUID,
        inbox_id: UUID,
        extracted: Union[InboxPayload, dict[str, Any]],
    ) -> InboxItem:
        """
        Store extracted fields and move PROCESSING -> ANALYZING.

        Raises:
            ConflictError: Item is not PROCESSING
            DependencyError: Base amount could not be converted
        """
        if not isinstance(extracted, InboxPayload):
            extracted = build_model(InboxPayload, extracted)
        team = await self._require_team(team_id)
        item = await self.get_item(team_id, inbox_id)
        if item.status != InboxStatus.PROCESSING:
            raise ConflictError(
                f"Cannot complete extraction of an inbox item in status {item.status.value}",
                {"inbox_id": str(inbox_id)},
            )

        changes = self._content(extracted)
        amount = changes.get("amount", item.amount)
        currency = changes.get("currency", item.currency)
        when = changes.get("date", item.date)
        if amount is not None and currency is not None and when is not None:
            changes["base_amount"], _ = await self._to_base(team, amount, currency, when)
            changes["base_currency"] = team.base_currency

        item = await self._transition(team_id, inbox_id, InboxStatus.ANALYZING, changes=changes)
        await self._activities.record(
            team_id,
            ActivityType.DOCUMENT_PROCESSED,
            metadata={"inbox_id": str(item.id), "display_name": item.display_name},
        )
        return item

    async def _to_base(self, team: Team, amount: Decimal, currency: str, when) -> tuple[Decimal, int]:
        """An amount in the team's base currency, and the rate's staleness in days."""
        if currency == team.base_currency:
            return amount, 0
        conversion = await self._exchange_rates.convert(amount, currency, team.base_currency, when)
        return quantize_money(conversion.amount, team.base_currency), conversion.staleness_days(when)

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    async def analyze(self, team_id: UUID, inbox_id: UUID) -> AnalysisResult:
        """
        Find, score and decide matches for one inbox item.

        Concurrent calls for the same item share one run. Items in
        SUGGESTED_MATCH or NO_MATCH are re-analyzed from scratch.

        Raises:
            ConflictError: Item is not in an analyzable status
            NotFoundError: Unknown team or item
        """
        require_team_id(team_id)
        return await self._flights.do(
            (team_id, inbox_id),
            lambda: self._analyze(team_id, inbox_id),
        )

    async def _analyze(self, team_id: UUID, inbox_id: UUID) -> AnalysisResult:
        team = await self._require_team(team_id)
        item = await self.get_item(team_id, inbox_id)
        if item.status not in ANALYZABLE:
            raise ConflictError(
                f"Cannot analyze an inbox item in status {item.status.value}",
                {"inbox_id": str(inbox_id), "status": item.status.value},
            )
        if item.status != InboxStatus.ANALYZING:
            item = await self._transition(team_id, inbox_id, InboxStatus.ANALYZING)

        candidates = await self._find_candidates(team, item)
        scored = await self._score_candidates(item, candidates)
        unscored = [c.transaction.id for c in scored if not c.is_scored]

        async with self._locks.hold((team_id, "link")):
            result, activity = await self._commit(team, item, scored, unscored)

        if activity is not None:
            activity_type, metadata = activity
            await self._activities.record(team_id, activity_type, metadata=metadata)
        return result

    async def _find_candidates(self, team: Team, item: InboxItem) -> list[Candidate]:
        if item.amount is None or item.currency is None or item.date is None:
            return []

        window = timedelta(days=self._settings.date_window_days)
        transactions = await self._storage.list_transactions(
            team.id,
            date_from=item.date - window,
            date_to=item.date + window,
        )
        linked = await self._storage.list_linked_transaction_ids(team.id)

        item_base, staleness = None, 0
        if any(txn.currency != item.currency for txn in transactions):
            try:
                item_base, staleness = await self._to_base(team, item.amount, item.currency, item.date)
            except DependencyError as e:
                self._logger.warning(
                    "cross_currency_candidates_skipped",
                    team_id=str(team.id),
                    inbox_id=str(item.id),
                    error=str(e),
                )

        return select_candidates(
            item,
            transactions,
            linked,
            self._settings,
            base_currency=team.base_currency,
            item_base_amount=item_base,
            staleness_days=staleness,
        )

    async def _score_candidates(self, item: InboxItem, candidates: list[Candidate]) -> list[Candidate]:
        """
        Score every candidate with bounded concurrency and a per-call timeout.

        Candidates whose call times out or fails come back unscored.
        """
        semaphore = asyncio.Semaphore(self._settings.max_concurrent_scoring)

        async def score_one(candidate: Candidate) -> Candidate:
            async with semaphore:
                try:
                    score = await asyncio.wait_for(
                        self._similarity.score(item, candidate.transaction),
                        timeout=self._settings.score_timeout_seconds,
                    )
                    score = float(score)
                except asyncio.TimeoutError:
                    reason = "timeout"
                except DependencyError as e:
                    reason = e.message
                except Exception as e:
                    # Any provider failure leaves this one candidate unscored
                    reason = f"{type(e).__name__}: {e}"
                else:
                    if 0.0 <= score <= 1.0:
                        return candidate.model_copy(update={"score": score})
                    reason = f"score out of range: {score}"

            self._logger.warning(
                "candidate_unscored",
                team_id=str(item.team_id),
                inbox_id=str(item.id),
                transaction_id=str(candidate.transaction.id),
                reason=reason,
            )
            return candidate

        return list(await asyncio.gather(*(score_one(c) for c in candidates)))

    async def _commit(
        self,
        team: Team,
        item: InboxItem,
        candidates: list[Candidate],
        unscored: list[UUID],
    ) -> tuple[AnalysisResult, Optional[PendingActivity]]:
        """
        Apply the decision, unless the item moved on while we were scoring.

        Returns the result and the activity to record for it, if any.
        """
        current = await self._storage.get_inbox_item(team.id, item.id)
        if current is None or current.status != InboxStatus.ANALYZING:
            status = current.status if current else item.status
            self._logger.warning(
                "inbox_analysis_aborted",
                team_id=str(team.id),
                inbox_id=str(item.id),
                status=status.value,
            )
            return AnalysisResult(
                inbox_id=item.id,
                outcome=AnalysisOutcome.ABORTED,
                status=status,
                candidate_count=len(candidates),
                unscored_transaction_ids=unscored,
            ), None

        # Another item may have claimed a transaction meanwhile
        linked = await self._storage.list_linked_transaction_ids(team.id)
        decision = decide(
            [c for c in candidates if c.transaction.id not in linked],
            self._settings,
        )

        if decision.outcome == AnalysisOutcome.AUTO_MATCHED:
            updated, suggestions, activity = await self._commit_auto_match(team, current, decision)
        elif decision.outcome == AnalysisOutcome.SUGGESTED:
            updated, suggestions, activity = await self._commit_suggestions(team, current, decision)
        else:
            activity = None
            updated = await self._storage.update_inbox_item(
                current.transition_to(InboxStatus.NO_MATCH)
            )
            suggestions = await self._storage.replace_suggestions(team.id, current.id, [])

        self._logger.info(
            "inbox_analyzed",
            team_id=str(team.id),
            inbox_id=str(item.id),
            outcome=decision.outcome.value,
            candidates=len(candidates),
            unscored=len(unscored),
            best_score=decision.best.score if decision.best else None,
        )
        return AnalysisResult(
            inbox_id=item.id,
            outcome=decision.outcome,
            status=updated.status,
            transaction_id=updated.transaction_id,
            suggestions=suggestions,
            candidate_count=len(candidates),
            unscored_transaction_ids=unscored,
        ), activity

    def _suggestion(
        self,
        team_id: UUID,
        inbox_id: UUID,
        candidate: Candidate,
        status: SuggestionStatus = SuggestionStatus.ACTIVE,
    ) -> MatchSuggestion:
        return MatchSuggestion(
            id=self._new_id(),
            team_id=team_id,
            inbox_id=inbox_id,
            transaction_id=candidate.transaction.id,
            score=candidate.score,
            status=status,
            cross_currency=candidate.cross_currency,
        )

    async def _commit_auto_match(
        self,
        team: Team,
        item: InboxItem,
        decision: Decision,
    ) -> tuple[InboxItem, list[MatchSuggestion], PendingActivity]:
        best = decision.best
        updated = await self._storage.update_inbox_item(
            item.transition_to(InboxStatus.DONE, best.transaction.id)
        )
        suggestions = await self._storage.replace_suggestions(
            team.id,
            item.id,
            [self._suggestion(team.id, item.id, best, SuggestionStatus.CONFIRMED)],
        )
        await self._invalidate_elsewhere(team.id, item.id, best.transaction.id)

        activity_type = (
            ActivityType.INBOX_CROSS_CURRENCY_MATCHED if best.cross_currency
            else ActivityType.INBOX_AUTO_MATCHED
        )
        return updated, suggestions, (activity_type, {
            "inbox_id": str(item.id),
            "transaction_id": str(best.transaction.id),
            "score": best.score,
            "display_name": item.display_name,
        })

    async def _commit_suggestions(
        self,
        team: Team,
        item: InboxItem,
        decision: Decision,
    ) -> tuple[InboxItem, list[MatchSuggestion], PendingActivity]:
        updated = await self._storage.update_inbox_item(
            item.transition_to(InboxStatus.SUGGESTED_MATCH)
        )
        suggestions = await self._storage.replace_suggestions(
            team.id,
            item.id,
            [self._suggestion(team.id, item.id, c) for c in decision.suggestions],
        )
        return updated, suggestions, (ActivityType.INBOX_NEEDS_REVIEW, {
            "inbox_id": str(item.id),
            "suggestion_count": len(suggestions),
            "best_transaction_id": str(decision.best.transaction.id),
            "best_score": decision.best.score,
        })

    # =========================================================================
    # REVIEW
    # =========================================================================

    async def _close_suggestions(
        self,
        team_id: UUID,
        inbox_id: UUID,
        confirmed_transaction_id: Optional[UUID] = None,
    ) -> None:
        """Confirm the suggestion for the linked transaction, invalidate the other active ones."""
        closing = []
        for suggestion in await self._storage.list_suggestions(team_id, inbox_id=inbox_id):
            if suggestion.status != SuggestionStatus.ACTIVE:
                continue
            status = (
                SuggestionStatus.CONFIRMED
                if suggestion.transaction_id == confirmed_transaction_id
                else SuggestionStatus.INVALIDATED
            )
            closing.append(suggestion.model_copy(update={"status": status}))
        if closing:
            await self._storage.update_suggestions(team_id, closing)

    async def _invalidate_elsewhere(self, team_id: UUID, inbox_id: UUID, transaction_id: UUID) -> None:
        """A linked transaction can no longer be suggested for other items."""
        stale = [
            s.model_copy(update={"status": SuggestionStatus.INVALIDATED})
            for s in await self._storage.list_suggestions(team_id, status=SuggestionStatus.ACTIVE)
            if s.transaction_id == transaction_id and s.inbox_id != inbox_id
        ]
        if stale:
            await self._storage.update_suggestions(team_id, stale)

    async def _link(
        self,
        team_id: UUID,
        inbox_id: UUID,
        transaction_id: UUID,
    ) -> InboxItem:
        """Move an item to DONE with a transaction. Caller holds the team's link lock."""
        transaction = await self._storage.get_transaction(team_id, transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction not found", {"transaction_id": str(transaction_id)})
        if not transaction.status.is_matchable:
            raise ConflictError(
                f"Transaction in status {transaction.status.value} cannot be matched",
                {"transaction_id": str(transaction_id)},
            )
        if transaction_id in await self._storage.list_linked_transaction_ids(team_id):
            raise ConflictError(
                "Transaction is already matched to another inbox item",
                {"transaction_id": str(transaction_id)},
            )

        item = await self._transition(team_id, inbox_id, InboxStatus.DONE, transaction_id)
        await self._close_suggestions(team_id, inbox_id, transaction_id)
        await self._invalidate_elsewhere(team_id, inbox_id, transaction_id)
        return item

    async def confirm_suggestion(
        self,
        team_id: UUID,
        suggestion_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> InboxItem:
        """
        Accept one suggestion: the item moves to DONE, the suggestion is
        confirmed and every other suggestion of the item is invalidated.

        Raises:
            NotFoundError: Unknown suggestion
            ConflictError: Suggestion not active, item not SUGGESTED_MATCH,
                or the transaction is already matched elsewhere
        """
        suggestion = await self._storage.get_suggestion(team_id, suggestion_id)
        if suggestion is None:
            raise NotFoundError("Suggestion not found", {"suggestion_id": str(suggestion_id)})
        if suggestion.status != SuggestionStatus.ACTIVE:
            raise ConflictError(
                f"Suggestion is {suggestion.status.value}",
                {"suggestion_id": str(suggestion_id)},
            )

        async with self._locks.hold((team_id, "link")):
            item = await self.get_item(team_id, suggestion.inbox_id)
            if item.status != InboxStatus.SUGGESTED_MATCH:
                raise ConflictError(
                    f"Cannot confirm a suggestion of an inbox item in status {item.status.value}",
                    {"inbox_id": str(item.id)},
                )
            item = await self._link(team_id, item.id, suggestion.transaction_id)

        await self._activities.record(
            team_id,
            ActivityType.INBOX_MATCH_CONFIRMED,
            source=actor_source(user_id),
            user_id=user_id,
            metadata={
                "inbox_id": str(item.id),
                "transaction_id": str(suggestion.transaction_id),
                "suggestion_id": str(suggestion_id),
                "score": suggestion.score,
            },
        )
        return item

    async def decline_suggestion(
        self,
        team_id: UUID,
        suggestion_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> InboxItem:
        """
        Reject one suggestion. When none stay active the item moves to NO_MATCH.
        """
        async with self._locks.hold((team_id, "link")):
            suggestion = await self._storage.get_suggestion(team_id, suggestion_id)
            if suggestion is None:
                raise NotFoundError("Suggestion not found", {"suggestion_id": str(suggestion_id)})
            if suggestion.status != SuggestionStatus.ACTIVE:
                raise ConflictError(
                    f"Suggestion is {suggestion.status.value}",
                    {"suggestion_id": str(suggestion_id)},
                )
            await self._storage.update_suggestions(
                team_id,
                [suggestion.model_copy(update={"status": SuggestionStatus.DECLINED})],
            )

            item = await self.get_item(team_id, suggestion.inbox_id)
            remaining = await self._storage.list_suggestions(
                team_id, inbox_id=item.id, status=SuggestionStatus.ACTIVE
            )
            if not remaining and item.status == InboxStatus.SUGGESTED_MATCH:
                item = await self._transition(team_id, item.id, InboxStatus.NO_MATCH)

        self._logger.info(
            "suggestion_declined",
            team_id=str(team_id),
            suggestion_id=str(suggestion_id),
            user_id=str(user_id) if user_id else None,
            remaining=len(remaining),
        )
        return item

    async def match_transaction(
        self,
        team_id: UUID,
        inbox_id: UUID,
        transaction_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> InboxItem:
        """
        Link an item to a transaction by hand.

        Raises:
            ConflictError: Item not in SUGGESTED_MATCH or NO_MATCH, or the
                transaction is archived, excluded or already matched
            NotFoundError: Unknown item or transaction
        """
        async with self._locks.hold((team_id, "link")):
            item = await self.get_item(team_id, inbox_id)
            if item.status not in (InboxStatus.SUGGESTED_MATCH, InboxStatus.NO_MATCH):
                raise ConflictError(
                    f"Cannot match an inbox item in status {item.status.value}",
                    {"inbox_id": str(inbox_id)},
                )
            item = await self._link(team_id, inbox_id, transaction_id)

        await self._activities.record(
            team_id,
            ActivityType.INBOX_MATCH_CONFIRMED,
            source=actor_source(user_id),
            user_id=user_id,
            metadata={
                "inbox_id": str(inbox_id),
                "transaction_id": str(transaction_id),
                "manual": True,
            },
        )
        return item

    async def archive_item(self, team_id: UUID, inbox_id: UUID) -> InboxItem:
        """Dismiss an item. Any run in flight for it is dropped at commit."""
        item = await self._transition(team_id, inbox_id, InboxStatus.ARCHIVED)
        await self._close_suggestions(team_id, inbox_id)
        return item

    async def delete_item(self, team_id: UUID, inbox_id: UUID) -> InboxItem:
        item = await self._transition(team_id, inbox_id, InboxStatus.DELETED)
        await self._close_suggestions(team_id, inbox_id)
        return item
