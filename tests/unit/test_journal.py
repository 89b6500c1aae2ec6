"""
Unit tests for the in-memory change journal.

Tests cover:
- Append ordering and revision checks
- since() windows and compaction
- follow() waking on new changes
"""

import asyncio

import pytest

from provider.inventory_server.errors import JournalCompactedError, StoreError
from provider.inventory_server.model import ModelRecord
from provider.inventory_server.store import Change, ChangeAction, ChangeJournal


def change(revision, record_id="h1", action=ChangeAction.CREATED):
    record = ModelRecord(kind="Host", id=record_id, revision=revision)
    return Change(revision=revision, kind="Host", id=record_id, action=action, record=record)


class TestChangeJournal:
    """Tests for ChangeJournal."""

    @pytest.fixture
    def journal(self):
        """Create a journal retaining five changes."""
        return ChangeJournal(retention=5)

    def test_append_advances_revision(self, journal):
        """Revision follows the last appended change."""
        journal.append(change(1))
        journal.append(change(2))

        assert journal.revision == 2
        assert len(journal) == 2
        assert journal.oldest == 1

    def test_append_rejects_stale_revision(self, journal):
        """A change must carry a higher revision than the last one."""
        journal.append(change(3))

        with pytest.raises(ValueError):
            journal.append(change(3))

    def test_since_returns_later_changes(self, journal):
        """since() is exclusive of its bound and keeps order."""
        for revision in range(1, 5):
            journal.append(change(revision))

        assert [c.revision for c in journal.since(2)] == [3, 4]
        assert journal.since(4) == []
        assert [c.revision for c in journal.since(0)] == [1, 2, 3, 4]

    def test_since_after_compaction(self, journal):
        """Asking for dropped changes raises instead of skipping them."""
        for revision in range(1, 9):
            journal.append(change(revision))

        assert journal.oldest == 4
        assert [c.revision for c in journal.since(3)] == [4, 5, 6, 7, 8]

        with pytest.raises(JournalCompactedError) as exc_info:
            journal.since(2)

        assert isinstance(exc_info.value, StoreError)
        assert exc_info.value.oldest == 4

    def test_starting_revision(self):
        """A journal started at a revision has nothing at or before it."""
        journal = ChangeJournal(retention=5, revision=10)

        assert journal.since(10) == []
        with pytest.raises(JournalCompactedError):
            journal.since(9)
        with pytest.raises(ValueError):
            journal.append(change(10))

    def test_invalid_retention(self):
        with pytest.raises(ValueError):
            ChangeJournal(retention=0)

    @pytest.mark.asyncio
    async def test_follow_yields_existing_then_new(self, journal):
        """follow() replays retained changes, then waits for new ones."""
        journal.append(change(1))
        seen = []

        async def consume():
            async for c in journal.follow(0):
                seen.append(c.revision)
                if len(seen) == 3:
                    return

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        assert seen == [1]

        journal.append(change(2))
        journal.append(change(3))
        await asyncio.wait_for(task, timeout=1.0)

        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_follow_ends_on_close(self, journal):
        """Closing the journal ends every follower."""
        seen = []

        async def consume():
            async for c in journal.follow(0):
                seen.append(c)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        journal.close()
        await asyncio.wait_for(task, timeout=1.0)

        assert seen == []
        assert journal.closed
