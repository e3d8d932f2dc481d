"""Entry operations exposed to the presentation layer."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from schoolsync.database.repository import TaskStore
from schoolsync.models.task_record import TaskRecord, TaskUpdate
from schoolsync.services.merge_engine import import_if_absent
from schoolsync.services.study_planner import StudyPlanner
from schoolsync.services.synchronizer import SyncOutcome, Synchronizer

logger = logging.getLogger(__name__)


@dataclass
class DeleteOutcome:
    """Result of deleting a single entry."""

    deleted: bool
    had_children: bool = False
    children_orphaned: int = 0


@dataclass
class CascadeOutcome:
    """Result of deleting an entry together with its children."""

    deleted_count: int

    @property
    def deleted(self) -> bool:
        return self.deleted_count > 0


class EntryService:
    """Create, edit and remove entries on behalf of a user.

    Every mutation returns the affected record's current state (or a
    not-found signal) so a caller can refresh its view without re-reading.
    """

    def __init__(
        self,
        store: TaskStore,
        synchronizer: Optional[Synchronizer] = None,
        planner: Optional[StudyPlanner] = None,
        clock: Callable[[], date] = date.today,
    ):
        self.store = store
        self.synchronizer = synchronizer
        if planner is None:
            planner = synchronizer.planner if synchronizer else StudyPlanner()
        self.planner = planner
        self.clock = clock

    def list_entries(self) -> list[TaskRecord]:
        return self.store.get_all()

    def get_entry(self, record_id: str) -> Optional[TaskRecord]:
        return self.store.get(record_id)

    def children(self, record_id: str) -> list[TaskRecord]:
        return self.store.children_of(record_id)

    def create_entry(
        self,
        kind: str,
        date: str,
        subject: str,
        task_text: str,
        position: Optional[int] = None,
        skip_if_duplicate: bool = False,
    ) -> Optional[TaskRecord]:
        """Create an entry, appended to the end of its day unless a position is given.

        Direct creation does not check source_id; pass `skip_if_duplicate` to
        refuse content that is already stored. Tests get their study sessions
        right away.

        Returns:
            The created record, or None if skipped as a duplicate
        """
        record = TaskRecord.new(kind, date, subject, task_text)

        with self.store.locked():
            if skip_if_duplicate and self.store.source_id_exists(record.source_id):
                logger.debug("Entry %s %s already exists, skipped", date, subject)
                return None

            if position is None:
                position = self.store.max_position_for(date) + 1
            record.position = position
            self.store.insert(record)

            if self.planner.is_test(record):
                created = 0
                for session in self.planner.generate(record, self.clock()):
                    if import_if_absent(self.store, session):
                        created += 1
                if created:
                    logger.debug("Created %d study session(s) for %s", created, record.id)

        logger.debug("Entry created id=%s subject=%s", record.id, record.subject)
        return record

    def update_entry(self, record_id: str, changes: TaskUpdate) -> Optional[TaskRecord]:
        """Apply a partial update.

        Returns:
            The record after the update, or None if it does not exist
        """
        with self.store.locked():
            if not self.store.update(record_id, changes):
                return None
            logger.debug("Entry updated id=%s", record_id)
            return self.store.get(record_id)

    def delete_entry(self, record_id: str) -> DeleteOutcome:
        """Delete an entry; its study sessions stay, orphaned."""
        orphaned = self.store.delete(record_id)
        if orphaned is None:
            return DeleteOutcome(deleted=False)
        logger.debug("Entry deleted id=%s orphaned=%d", record_id, orphaned)
        return DeleteOutcome(deleted=True, had_children=orphaned > 0, children_orphaned=orphaned)

    def delete_cascade(self, record_id: str) -> CascadeOutcome:
        """Delete an entry together with its study sessions."""
        count = self.store.delete_with_children(record_id)
        logger.debug("Cascade delete id=%s deleted_count=%d", record_id, count)
        return CascadeOutcome(deleted_count=count)

    def reorder(self, date: str, ordered_ids: list[str]) -> list[TaskRecord]:
        """Reorder a day's entries and return them in their new order."""
        with self.store.locked():
            self.store.reorder(date, ordered_ids)
            return self.store.get_for_date(date)

    def refresh(self) -> SyncOutcome:
        """Run a reconciliation pass on demand."""
        if self.synchronizer is None:
            raise RuntimeError("EntryService was created without a synchronizer")
        logger.info("Manual refresh triggered")
        outcome = self.synchronizer.run_pass()
        outcome.log()
        return outcome
