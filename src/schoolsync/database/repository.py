"""Persistent store for task records."""

import logging
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Iterator, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from schoolsync.database.schema import TaskRecordRow, init_database
from schoolsync.errors import RecordConflictError, StoreError
from schoolsync.models.task_record import KIND_STUDY_SESSION, TaskRecord, TaskUpdate

logger = logging.getLogger(__name__)


class TaskStore:
    """Authoritative holder of all task records.

    Every public operation serializes through a single re-entrant lock, so an
    absence check and the insert that follows it always see the same state.
    Callers that need several operations to be atomic wrap them in `locked()`.
    """

    def __init__(self, database_url: str):
        """Initialize the store, creating the schema if needed.

        Raises:
            StoreError: If the database cannot be opened or created
        """
        self._lock = threading.RLock()
        try:
            self.session_factory = init_database(database_url)
        except SQLAlchemyError as e:
            raise StoreError(f"Cannot open database {database_url}: {e}") from e
        logger.info("TaskStore ready url=%s total=%d", database_url, self.count())

    def _get_session(self) -> Session:
        """Get a new database session."""
        return self.session_factory()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Open a session under the store lock, reporting database failures as StoreError."""
        with self._lock:
            try:
                with self._get_session() as session:
                    yield session
            except SQLAlchemyError as e:
                raise StoreError(f"Database operation failed: {e}") from e

    @contextmanager
    def locked(self) -> Iterator["TaskStore"]:
        """Hold the store lock across several operations."""
        with self._lock:
            yield self

    # ==================== Queries ====================

    def get_all(self) -> list[TaskRecord]:
        """Get all records ordered by date, then position."""
        with self._session() as session:
            stmt = select(TaskRecordRow).order_by(
                TaskRecordRow.date, TaskRecordRow.position, TaskRecordRow.created_at
            )
            return [self._row_to_record(r) for r in session.scalars(stmt).all()]

    def get(self, record_id: str) -> Optional[TaskRecord]:
        """Get a record by id."""
        with self._session() as session:
            row = session.get(TaskRecordRow, record_id)
            if row:
                return self._row_to_record(row)
            return None

    def get_for_date(self, date: str) -> list[TaskRecord]:
        """Get the records of one day in display order."""
        with self._session() as session:
            stmt = (
                select(TaskRecordRow)
                .where(TaskRecordRow.date == date)
                .order_by(TaskRecordRow.position, TaskRecordRow.created_at)
            )
            return [self._row_to_record(r) for r in session.scalars(stmt).all()]

    def get_by_source_id(self, source_id: str) -> Optional[TaskRecord]:
        """Get the oldest record carrying a source_id."""
        with self._session() as session:
            stmt = (
                select(TaskRecordRow)
                .where(TaskRecordRow.source_id == source_id)
                .order_by(TaskRecordRow.created_at)
            )
            row = session.scalars(stmt).first()
            if row:
                return self._row_to_record(row)
            return None

    def source_id_exists(self, source_id: str) -> bool:
        """Check whether any record carries this source_id."""
        with self._session() as session:
            return self._source_id_exists(session, source_id)

    def children_of(self, record_id: str) -> list[TaskRecord]:
        """Get records derived from a parent, ordered by date."""
        with self._session() as session:
            stmt = (
                select(TaskRecordRow)
                .where(TaskRecordRow.parent_id == record_id)
                .order_by(TaskRecordRow.date)
            )
            return [self._row_to_record(r) for r in session.scalars(stmt).all()]

    def max_position_for(self, date: str) -> int:
        """Get the highest position used on a date, or -1 if the day is empty."""
        with self._session() as session:
            stmt = select(func.max(TaskRecordRow.position)).where(TaskRecordRow.date == date)
            result = session.scalar(stmt)
            return -1 if result is None else int(result)

    def count(self) -> int:
        """Count all records."""
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(TaskRecordRow)) or 0

    # ==================== Mutations ====================

    def insert(self, record: TaskRecord) -> TaskRecord:
        """Insert a record unconditionally.

        No source_id check happens here; deduplication belongs to the import
        layer.

        Raises:
            RecordConflictError: If a record with the same id exists
        """
        with self._session() as session:
            if session.get(TaskRecordRow, record.id) is not None:
                raise RecordConflictError(record.id)
            session.add(self._record_to_row(record))
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise StoreError(f"Cannot insert record {record.id}: {e.orig}") from e
            return record

    def insert_if_absent(self, record: TaskRecord) -> bool:
        """Insert a record unless one with the same source_id already exists.

        An existing record is never modified, even when its date or text has
        since been edited.

        Returns:
            True if the record was inserted
        """
        with self._lock:
            with self._session() as session:
                if record.source_id and self._source_id_exists(session, record.source_id):
                    return False
            self.insert(record)
            return True

    def update(self, record_id: str, changes: TaskUpdate) -> bool:
        """Apply the provided fields and refresh updated_at.

        Returns:
            True if the record existed
        """
        with self._session() as session:
            row = session.get(TaskRecordRow, record_id)
            if row is None:
                return False
            if changes.date is not None:
                row.date = changes.date
            if changes.completed is not None:
                row.completed = changes.completed
            if changes.position is not None:
                row.position = changes.position
            if changes.task_text is not None:
                row.task_text = changes.task_text
            row.updated_at = self._now()
            session.commit()
            return True

    def delete(self, record_id: str) -> Optional[int]:
        """Delete a record, orphaning its children.

        Returns:
            Number of children orphaned, or None if the record did not exist
        """
        with self._session() as session, session.begin():
            if session.get(TaskRecordRow, record_id) is None:
                return None
            orphaned = session.execute(
                update(TaskRecordRow)
                .where(TaskRecordRow.parent_id == record_id)
                .values(parent_id=None, updated_at=self._now())
            ).rowcount
            session.execute(delete(TaskRecordRow).where(TaskRecordRow.id == record_id))
            return orphaned

    def delete_with_children(self, record_id: str) -> int:
        """Delete a record and its direct children.

        Returns:
            Total number of records removed
        """
        with self._session() as session, session.begin():
            children = session.execute(
                delete(TaskRecordRow).where(TaskRecordRow.parent_id == record_id)
            ).rowcount
            parent = session.execute(
                delete(TaskRecordRow).where(TaskRecordRow.id == record_id)
            ).rowcount
            return children + parent

    def reorder(self, date: str, ordered_ids: list[str]) -> int:
        """Assign position = index to each id on a date, all or nothing.

        Ids that do not belong to the date are left untouched.

        Returns:
            Number of records repositioned
        """
        with self._session() as session, session.begin():
            moved = 0
            for position, record_id in enumerate(ordered_ids):
                moved += self._set_position(session, record_id, date, position)
            return moved

    # ==================== Statistics ====================

    def get_stats(self) -> dict:
        """Get store statistics."""
        with self._session() as session:
            total = session.query(TaskRecordRow).count()
            completed = (
                session.query(TaskRecordRow).filter(TaskRecordRow.completed.is_(True)).count()
            )
            study_sessions = (
                session.query(TaskRecordRow)
                .filter(TaskRecordRow.kind == KIND_STUDY_SESSION)
                .count()
            )
            orphans = (
                session.query(TaskRecordRow)
                .filter(
                    TaskRecordRow.kind == KIND_STUDY_SESSION,
                    TaskRecordRow.parent_id.is_(None),
                )
                .count()
            )

            return {
                "total_records": total,
                "completed_records": completed,
                "study_sessions": study_sessions,
                "orphaned_sessions": orphans,
            }

    # ==================== Helper Methods ====================

    def _set_position(self, session: Session, record_id: str, date: str, position: int) -> int:
        result = session.execute(
            update(TaskRecordRow)
            .where(TaskRecordRow.id == record_id, TaskRecordRow.date == date)
            .values(position=position, updated_at=self._now())
        )
        return result.rowcount

    @staticmethod
    def _source_id_exists(session: Session, source_id: str) -> bool:
        stmt = select(TaskRecordRow.id).where(TaskRecordRow.source_id == source_id).limit(1)
        return session.scalar(stmt) is not None

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    @staticmethod
    def _as_utc(value: datetime) -> datetime:
        # SQLite drops tzinfo on the way back
        return value if value.tzinfo else value.replace(tzinfo=UTC)

    def _row_to_record(self, row: TaskRecordRow) -> TaskRecord:
        """Convert database row to TaskRecord model."""
        return TaskRecord(
            id=row.id,
            source_id=row.source_id,
            kind=row.kind,
            date=row.date,
            subject=row.subject or "",
            task_text=row.task_text,
            completed=row.completed,
            position=row.position,
            parent_id=row.parent_id,
            created_at=self._as_utc(row.created_at),
            updated_at=self._as_utc(row.updated_at),
        )

    @staticmethod
    def _record_to_row(record: TaskRecord) -> TaskRecordRow:
        return TaskRecordRow(
            id=record.id,
            source_id=record.source_id,
            kind=record.kind,
            date=record.date,
            subject=record.subject,
            task_text=record.task_text,
            completed=record.completed,
            position=record.position,
            parent_id=record.parent_id,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
