"""
Tests for the notification outbox, the database sink and notification reads.

Usage:
    cd backend && pytest tests/test_notifications.py -v
"""

import asyncio
import logging
import uuid

import pytest

from factories import FailingSink, FrozenClock, RecordingSink, make_user, open_database
from proposal_review.errors import NotFound
from proposal_review.models.enums import NotificationKind, Role
from proposal_review.services.notification_service import (
    DatabaseNotificationSink,
    NotificationOutbox,
    list_for_user,
    mark_all_read,
    mark_read,
)

KIND = NotificationKind.PROPOSAL_STATUS_CHANGED


# ============================================================================
# OUTBOX
# ============================================================================

class TestOutbox:
    def test_notify_only_buffers(self):
        sink = RecordingSink()
        outbox = NotificationOutbox(sink)
        outbox.notify(uuid.uuid4(), KIND, "Title", "Message")

        assert len(outbox.pending) == 1
        assert sink.events == []

    def test_flush_delivers_and_empties(self):
        sink = RecordingSink()
        outbox = NotificationOutbox(sink)
        user_id = uuid.uuid4()
        outbox.notify(user_id, KIND, "One", "m")
        outbox.notify(user_id, NotificationKind.EVALUATION_ASSIGNED, "Two", "m")

        assert asyncio.run(outbox.flush()) == 2
        assert [e.title for e in sink.events] == ["One", "Two"]
        assert outbox.pending == ()

    def test_failures_are_logged_and_swallowed(self, caplog):
        sink = FailingSink()
        outbox = NotificationOutbox(sink)
        outbox.notify(uuid.uuid4(), KIND, "One", "m")
        outbox.notify(uuid.uuid4(), KIND, "Two", "m")

        with caplog.at_level(logging.WARNING):
            delivered = asyncio.run(outbox.flush())

        assert delivered == 0
        assert sink.attempts == 2
        assert "Failed to deliver" in caplog.text

    def test_discard_drops_pending(self):
        sink = RecordingSink()
        outbox = NotificationOutbox(sink)
        outbox.notify(uuid.uuid4(), KIND, "Rolled back", "m")
        outbox.discard()

        assert asyncio.run(outbox.flush()) == 0
        assert sink.events == []

    def test_no_sink(self):
        outbox = NotificationOutbox(None)
        outbox.notify(uuid.uuid4(), KIND, "Nowhere", "m")
        assert asyncio.run(outbox.flush()) == 0
        assert outbox.pending == ()


# ============================================================================
# DATABASE SINK AND READS
# ============================================================================

class TestDatabaseSink:
    def test_rows_written_and_read_back(self):
        async def scenario():
            clock = FrozenClock()
            async with open_database() as database:
                async with database.session() as db:
                    alice = await make_user(db, Role.PRINCIPAL_INVESTIGATOR)
                    bob = await make_user(db, Role.REVIEWER)
                    alice_id, bob_id = alice.id, bob.id

                outbox = NotificationOutbox(DatabaseNotificationSink(database, clock))
                proposal_id = uuid.uuid4()
                outbox.notify(
                    alice_id,
                    KIND,
                    "Proposal Status Updated",
                    "changed",
                    related_proposal_id=proposal_id,
                    payload={"proposal_id": proposal_id},
                )
                clock.advance(minutes=1)
                outbox.notify(alice_id, NotificationKind.EVALUATION_RECEIVED, "Evaluation Received", "new")
                outbox.notify(bob_id, NotificationKind.EVALUATION_ASSIGNED, "New Proposal Assignment", "go")
                assert await outbox.flush() == 3

                async with database.session() as db:
                    mine = await list_for_user(db, alice_id)
                    assert len(mine) == 2
                    assert all(not n.is_read for n in mine)
                    first = next(n for n in mine if n.kind is KIND)
                    assert first.payload == {"proposal_id": str(proposal_id)}
                    assert first.related_proposal_id == proposal_id

                    read = await mark_read(db, first.id, alice_id)
                    assert read.is_read
                    unread = await list_for_user(db, alice_id, unread_only=True)
                    assert [n.kind for n in unread] == [NotificationKind.EVALUATION_RECEIVED]

                    with pytest.raises(NotFound):
                        await mark_read(db, first.id, bob_id)
                    with pytest.raises(NotFound):
                        await mark_read(db, uuid.uuid4(), alice_id)

                    assert await mark_all_read(db, alice_id) == 1
                    assert await list_for_user(db, alice_id, unread_only=True) == []
                    assert len(await list_for_user(db, bob_id, unread_only=True)) == 1

        asyncio.run(scenario())
