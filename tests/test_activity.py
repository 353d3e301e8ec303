"""
Tests for activity recording and notification delivery.
"""

import asyncio
import pytest
from uuid import uuid4

from conftest import RecordingTransport
from teamledger.activity import ActivityRecorder, actor_source
from teamledger.config import NotificationSettings
from teamledger.exceptions import ConflictError, NotFoundError, ValidationError
from teamledger.models import ActivitySource, ActivityStatus, ActivityType
from teamledger.services.storage import InMemoryLedgerStorage


def make_recorder(transport, attempts=3, backoff=0, outbox_limit=1000):
    return ActivityRecorder(
        InMemoryLedgerStorage(),
        transport=transport,
        settings=NotificationSettings(
            delivery_attempts=attempts,
            delivery_backoff_seconds=backoff,
            outbox_limit=outbox_limit,
        ),
    )


class TestRecording:
    """Activities are stored per team."""

    @pytest.mark.asyncio
    async def test_record_and_read_back(self, core, team):
        """A recorded activity starts unread with its metadata."""
        activity_id = await core.activities.record(
            team.id, ActivityType.INBOX_NEW, metadata={"inbox_id": "x"}
        )
        activity = await core.activities.get_activity(team.id, activity_id)

        assert activity.status == ActivityStatus.UNREAD
        assert activity.source == ActivitySource.SYSTEM
        assert activity.metadata == {"inbox_id": "x"}

    @pytest.mark.asyncio
    async def test_other_team_cannot_read(self, core, team, other_team):
        """Activities are invisible across teams."""
        activity_id = await core.activities.record(team.id, ActivityType.INBOX_NEW)
        with pytest.raises(NotFoundError):
            await core.activities.get_activity(other_team.id, activity_id)
        assert await core.activities.list_activities(other_team.id) == []

    @pytest.mark.asyncio
    async def test_missing_team(self, core):
        """Recording without a team id is rejected."""
        with pytest.raises(ValidationError):
            await core.activities.record(None, ActivityType.INBOX_NEW)

    @pytest.mark.asyncio
    async def test_filter_by_type(self, core, team):
        """list_activities narrows by type and status."""
        await core.activities.record(team.id, ActivityType.INBOX_NEW)
        read_id = await core.activities.record(team.id, ActivityType.INVOICE_SENT)
        await core.activities.mark_read(team.id, read_id)

        inbox = await core.activities.list_activities(team.id, types=[ActivityType.INBOX_NEW])
        unread = await core.activities.list_activities(team.id, statuses=[ActivityStatus.UNREAD])
        assert [a.type for a in inbox] == [ActivityType.INBOX_NEW]
        assert [a.type for a in unread] == [ActivityType.INBOX_NEW]

    def test_actor_source(self):
        """A user id makes the source USER."""
        assert actor_source(uuid4()) == ActivitySource.USER
        assert actor_source(None) == ActivitySource.SYSTEM


class TestReadState:
    """unread -> read -> archived."""

    @pytest.mark.asyncio
    async def test_mark_read_then_archive(self, core, team):
        """The read-state moves forward."""
        activity_id = await core.activities.record(team.id, ActivityType.INBOX_NEW)
        assert (await core.activities.mark_read(team.id, activity_id)).status == ActivityStatus.READ
        assert (await core.activities.archive(team.id, activity_id)).status == ActivityStatus.ARCHIVED

    @pytest.mark.asyncio
    async def test_archived_cannot_be_read(self, core, team):
        """Archived is final."""
        activity_id = await core.activities.record(team.id, ActivityType.INBOX_NEW)
        await core.activities.archive(team.id, activity_id)
        with pytest.raises(ConflictError):
            await core.activities.mark_read(team.id, activity_id)


class TestDelivery:
    """At-least-once notification delivery."""

    @pytest.mark.asyncio
    async def test_delivered_once(self, core, team, transport):
        """A healthy transport receives the JSON payload."""
        activity_id = await core.activities.record(team.id, ActivityType.INVOICE_PAID)
        await core.activities.flush()

        [(delivered_id, payload)] = transport.delivered
        assert delivered_id == activity_id
        assert payload["type"] == "invoice_paid"
        assert payload["team_id"] == str(team.id)

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self):
        """Failures within the attempt budget are retried."""
        transport = RecordingTransport(fail_times=2)
        recorder = make_recorder(transport)

        await recorder.record(uuid4(), ActivityType.INBOX_NEW)
        await recorder.flush()

        assert transport.attempts == 3
        assert len(transport.delivered) == 1
        assert recorder.pending_delivery == []

    @pytest.mark.asyncio
    async def test_exhausted_delivery_parks_activity(self):
        """A transport that keeps failing never fails the caller."""
        transport = RecordingTransport(fail_times=3)
        recorder = make_recorder(transport)
        team_id = uuid4()

        activity_id = await recorder.record(team_id, ActivityType.INBOX_NEW)
        await recorder.flush()

        assert transport.delivered == []
        assert recorder.pending_delivery == [activity_id]
        assert (await recorder.get_activity(team_id, activity_id)).id == activity_id

        assert await recorder.redeliver_pending() == 1
        assert recorder.pending_delivery == []
        assert [d[0] for d in transport.delivered] == [activity_id]

    @pytest.mark.asyncio
    async def test_no_transport(self):
        """Without a transport activities are only stored."""
        recorder = ActivityRecorder(InMemoryLedgerStorage())
        team_id = uuid4()
        activity_id = await recorder.record(team_id, ActivityType.INBOX_NEW)
        assert recorder.pending_delivery == []
        assert (await recorder.get_activity(team_id, activity_id)).type == ActivityType.INBOX_NEW

    @pytest.mark.asyncio
    async def test_record_does_not_wait_for_delivery(self):
        """A slow or failing transport never holds up the caller."""
        transport = RecordingTransport(fail_times=2)
        recorder = make_recorder(transport, backoff=5)
        team_id = uuid4()

        activity_id = await asyncio.wait_for(
            recorder.record(team_id, ActivityType.INBOX_NEW), timeout=0.5
        )

        assert recorder.pending_delivery == [activity_id]
        assert (await recorder.get_activity(team_id, activity_id)).id == activity_id
        assert transport.delivered == []

        await recorder.aclose()
        assert recorder.pending_delivery == [activity_id]

    @pytest.mark.asyncio
    async def test_outbox_is_bounded(self):
        """Past the limit the oldest undelivered activity is dropped."""
        transport = RecordingTransport(fail_times=100)
        recorder = make_recorder(transport, attempts=1, outbox_limit=2)
        team_id = uuid4()

        recorded = [await recorder.record(team_id, ActivityType.INBOX_NEW) for _ in range(3)]
        await recorder.flush()

        assert recorder.pending_delivery == recorded[1:]
        assert len(await recorder.list_activities(team_id)) == 3
