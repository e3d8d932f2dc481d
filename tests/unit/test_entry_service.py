"""Unit tests for EntryService."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from schoolsync.database.repository import TaskStore
from schoolsync.models.task_record import KIND_NOTE, KIND_TEST, TaskUpdate
from schoolsync.services.entry_service import CascadeOutcome, EntryService
from schoolsync.services.synchronizer import SyncOutcome, SyncStatus


@pytest.fixture
def service(store):
    """Create an EntryService pinned to 2025-01-15."""
    return EntryService(store, clock=lambda: date(2025, 1, 15))


class TestCreateEntry:
    """Tests for creating entries."""

    def test_appends_to_day(self, service: EntryService):
        """Test positions grow within a day."""
        first = service.create_entry(KIND_NOTE, "2025-01-20", "Storia", "a")
        second = service.create_entry(KIND_NOTE, "2025-01-20", "Storia", "b")
        other_day = service.create_entry(KIND_NOTE, "2025-01-21", "Storia", "c")

        assert first.position == 0
        assert second.position == 1
        assert other_day.position == 0

    def test_explicit_position(self, service: EntryService):
        """Test a given position is kept."""
        record = service.create_entry(KIND_NOTE, "2025-01-20", "Storia", "a", position=5)

        assert record.position == 5

    def test_duplicates_allowed_by_default(self, service: EntryService, store: TaskStore):
        """Test direct creation does not deduplicate."""
        service.create_entry(KIND_NOTE, "2025-01-20", "Storia", "a")
        service.create_entry(KIND_NOTE, "2025-01-20", "Storia", "a")

        assert store.count() == 2

    def test_skip_if_duplicate(self, service: EntryService, store: TaskStore):
        """Test opting in to the source_id check."""
        service.create_entry(KIND_NOTE, "2025-01-20", "Storia", "a")

        result = service.create_entry(
            KIND_NOTE, "2025-01-20", "Storia", "a", skip_if_duplicate=True
        )

        assert result is None
        assert store.count() == 1

    def test_test_gets_study_sessions(self, service: EntryService, store: TaskStore):
        """Test creating a test plans its sessions right away."""
        record = service.create_entry(KIND_TEST, "2025-01-20", "Matematica", "Verifica cap. 3")

        children = service.children(record.id)
        assert len(children) == 4
        assert store.count() == 5


class TestUpdateEntry:
    """Tests for editing entries."""

    def test_update_returns_new_state(self, service: EntryService):
        """Test the updated record is returned."""
        record = service.create_entry(KIND_NOTE, "2025-01-20", "Storia", "a")

        updated = service.update_entry(record.id, TaskUpdate(completed=True, date="2025-01-21"))

        assert updated.completed is True
        assert updated.date == "2025-01-21"
        assert updated.source_id == record.source_id

    def test_update_missing(self, service: EntryService):
        """Test updating an unknown id returns None."""
        assert service.update_entry("nope", TaskUpdate(completed=True)) is None


class TestDeleteEntry:
    """Tests for deleting entries."""

    def test_delete_orphans_sessions(self, service: EntryService, store: TaskStore):
        """Test deleting a test keeps its sessions as orphans."""
        test = service.create_entry(KIND_TEST, "2025-01-20", "Matematica", "Verifica cap. 3")

        outcome = service.delete_entry(test.id)

        assert outcome.deleted is True
        assert outcome.had_children is True
        assert outcome.children_orphaned == 4
        assert store.get_stats()["orphaned_sessions"] == 4

    def test_delete_plain_entry(self, service: EntryService):
        """Test deleting an entry without sessions."""
        record = service.create_entry(KIND_NOTE, "2025-01-20", "Storia", "a")

        outcome = service.delete_entry(record.id)

        assert outcome.deleted is True
        assert outcome.had_children is False

    def test_delete_missing(self, service: EntryService):
        """Test deleting an unknown id."""
        assert service.delete_entry("nope").deleted is False

    def test_delete_cascade(self, service: EntryService, store: TaskStore):
        """Test cascade delete removes the sessions too."""
        test = service.create_entry(KIND_TEST, "2025-01-20", "Matematica", "Verifica cap. 3")

        outcome = service.delete_cascade(test.id)

        assert outcome == CascadeOutcome(deleted_count=5)
        assert outcome.deleted is True
        assert store.count() == 0


class TestReorder:
    """Tests for reordering a day."""

    def test_reorder_returns_day(self, service: EntryService):
        """Test the day comes back in its new order."""
        a = service.create_entry(KIND_NOTE, "2025-01-20", "Storia", "a")
        b = service.create_entry(KIND_NOTE, "2025-01-20", "Storia", "b")

        records = service.reorder("2025-01-20", [b.id, a.id])

        assert [r.task_text for r in records] == ["b", "a"]


class TestRefresh:
    """Tests for manual refresh."""

    def test_refresh_runs_a_pass(self, store: TaskStore):
        """Test refresh delegates to the synchronizer."""
        synchronizer = MagicMock()
        synchronizer.run_pass.return_value = SyncOutcome(status=SyncStatus.NO_CHANGE)
        service = EntryService(store, synchronizer=synchronizer)

        outcome = service.refresh()

        assert outcome.status == SyncStatus.NO_CHANGE
        synchronizer.run_pass.assert_called_once()

    def test_refresh_without_synchronizer(self, service: EntryService):
        """Test refresh needs a synchronizer."""
        with pytest.raises(RuntimeError):
            service.refresh()
