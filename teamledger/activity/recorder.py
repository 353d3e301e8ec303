"""
Activity Recorder

DESIGN DECISION: Every state change in the core is recorded as an Activity.
This provides:
1. A per-team event feed for the product
2. The input to notification delivery
3. Traceability of who (user or system) did what

The recorder:
- Always logs locally (structured JSON)
- Persists the activity (append-only)
- Parks it in an outbox and delivers it in the background, at-least-once;
  the caller never waits on the notification transport
"""

import asyncio
import logging
from typing import Any, Iterable, Optional
from uuid import UUID

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from teamledger.config import NotificationSettings, get_settings
from teamledger.exceptions import NotFoundError
from teamledger.models.activity import (
    Activity,
    ActivitySource,
    ActivityStatus,
    ActivityType,
)
from teamledger.services.providers import (
    IdGenerator,
    NotificationTransport,
    default_id_generator,
)
from teamledger.services.storage import LedgerStorageInterface, require_team_id


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog's JSON lines through the stdlib root logger at level."""
    logging.basicConfig(format="%(message)s", level=level.upper())


def actor_source(user_id: Optional[UUID]) -> ActivitySource:
    """USER when a user triggered the change, SYSTEM otherwise."""
    return ActivitySource.USER if user_id else ActivitySource.SYSTEM


class ActivityRecorder:
    """
    Central activity fan-out.

    Records activities to:
    1. Structured local log (for debugging)
    2. Storage (the team's activity feed)
    3. The notification transport (at-least-once)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        transport: Optional[NotificationTransport] = None,
        id_generator: Optional[IdGenerator] = None,
        settings: Optional[NotificationSettings] = None,
    ):
        """
        Initialize the recorder.

        Args:
            storage: Where activities are appended.
            transport: Notification transport. If None, nothing is delivered.
            id_generator: Source of activity ids.
            settings: Delivery retry policy.
        """
        self._storage = storage
        self._transport = transport
        self._new_id = id_generator or default_id_generator
        self._settings = settings or get_settings().notification
        self._logger = structlog.get_logger(__name__)
        # Activities not yet accepted by the transport, oldest first
        self._outbox: dict[UUID, Activity] = {}
        self._tasks: set[asyncio.Future] = set()

    async def record(
        self,
        team_id: UUID,
        type: ActivityType,
        source: ActivitySource = ActivitySource.SYSTEM,
        metadata: Optional[dict[str, Any]] = None,
        user_id: Optional[UUID] = None,
    ) -> UUID:
        """
        Append an activity and fan it out.

        Returns:
            The new activity id
        """
        activity = Activity(
            id=self._new_id(),
            team_id=require_team_id(team_id),
            type=type,
            source=source,
            user_id=user_id,
            metadata=metadata or {},
        )

        self._logger.info("activity_recorded", **activity.to_log_dict())
        await self._storage.append_activity(activity)
        if self._transport is not None:
            self._park(activity)
            self._spawn(self._deliver(activity))
        return activity.id

    def _park(self, activity: Activity) -> None:
        """Queue an activity for delivery, dropping the oldest past the limit."""
        self._outbox[activity.id] = activity
        while len(self._outbox) > self._settings.outbox_limit:
            dropped = next(iter(self._outbox))
            del self._outbox[dropped]
            self._logger.warning("activity_delivery_dropped", activity_id=str(dropped))

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def flush(self) -> None:
        """Wait for every delivery started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def aclose(self) -> None:
        """Cancel in-flight deliveries. Their activities stay parked."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _deliver(self, activity: Activity) -> bool:
        """
        Deliver one parked activity, retrying with backoff.

        Runs in the background; the activity stays in the outbox until the
        transport accepts it.

        Returns True if the transport accepted it.
        """
        payload = activity.to_notification_payload()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.delivery_attempts),
                wait=wait_exponential(
                    multiplier=self._settings.delivery_backoff_seconds,
                    max=30,
                ),
                reraise=True,
            ):
                with attempt:
                    await self._transport.deliver(activity.id, payload)
        except Exception as e:
            # Left parked for redelivery, never fails the caller
            self._logger.error(
                "activity_delivery_failed",
                activity_id=str(activity.id),
                team_id=str(activity.team_id),
                error=str(e),
            )
            return False

        self._outbox.pop(activity.id, None)
        return True

    @property
    def pending_delivery(self) -> list[UUID]:
        """Ids of activities the transport has not accepted yet."""
        return list(self._outbox)

    async def redeliver_pending(self) -> int:
        """
        Retry every parked activity once more.

        The transport may see an activity twice; it dedups on the id.

        Returns:
            Number of activities delivered in this pass
        """
        await self.flush()
        delivered = 0
        for activity in list(self._outbox.values()):
            if await self._deliver(activity):
                delivered += 1
        return delivered

    async def list_activities(
        self,
        team_id: UUID,
        statuses: Optional[Iterable[ActivityStatus]] = None,
        types: Optional[Iterable[ActivityType]] = None,
        limit: int = 100,
    ) -> list[Activity]:
        return await self._storage.list_activities(
            team_id, statuses=statuses, types=types, limit=limit
        )

    async def get_activity(self, team_id: UUID, activity_id: UUID) -> Activity:
        activity = await self._storage.get_activity(team_id, activity_id)
        if activity is None:
            raise NotFoundError("Activity not found", {"activity_id": str(activity_id)})
        return activity

    async def mark_read(self, team_id: UUID, activity_id: UUID) -> Activity:
        return await self._storage.set_activity_status(team_id, activity_id, ActivityStatus.READ)

    async def archive(self, team_id: UUID, activity_id: UUID) -> Activity:
        return await self._storage.set_activity_status(
            team_id, activity_id, ActivityStatus.ARCHIVED
        )
