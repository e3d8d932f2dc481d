"""Reconciliation pass: exports -> merge/import -> study sessions -> store."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional

from schoolsync.config import Settings
from schoolsync.database.repository import TaskStore
from schoolsync.errors import (
    ExportParseError,
    NoSourceDataError,
    RecordConflictError,
    SchoolSyncError,
)
from schoolsync.models.task_record import TaskRecord
from schoolsync.services.merge_engine import import_entries, import_if_absent, merge
from schoolsync.services.normalizer import (
    DEFAULT_POLICY,
    NormalizationPolicy,
    find_exports,
    parse_export_file,
)
from schoolsync.services.snapshot import SnapshotFile
from schoolsync.services.study_planner import StudyPlanner

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    """Outcome category of a reconciliation pass."""

    UPDATED = "updated"  # Records were added
    NO_CHANGE = "no_change"  # Nothing new, including "no exports but data exists"
    ERROR = "error"  # No exports and no data, or the store failed


@dataclass
class SyncOutcome:
    """Result of one reconciliation pass."""

    status: SyncStatus
    old_count: int = 0
    new_count: int = 0
    imported: int = 0
    study_sessions: int = 0
    skipped_files: list[Path] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != SyncStatus.ERROR

    def __str__(self) -> str:
        if self.status == SyncStatus.ERROR:
            return f"Sync failed: {self.error}"
        if self.status == SyncStatus.UPDATED:
            return f"Updated {self.old_count} -> {self.new_count} records"
        return f"No change ({self.new_count} records)"

    def log(self) -> None:
        """Log the outcome at a level matching its status."""
        if self.status == SyncStatus.UPDATED:
            logger.info(
                "Entries updated total=%d delta=%+d imported=%d study_sessions=%d",
                self.new_count,
                self.new_count - self.old_count,
                self.imported,
                self.study_sessions,
            )
        elif self.status == SyncStatus.NO_CHANGE:
            logger.debug("No new entries found total=%d", self.new_count)
        else:
            logger.error("Failed to refresh: %s", self.error)


class Synchronizer:
    """Drives reconciliation passes against the store.

    Safe to call from several threads; passes never overlap. A pass can be
    re-run at any time: every insert goes through the source_id absence
    check, so repeating a pass adds nothing.
    """

    def __init__(
        self,
        store: TaskStore,
        data_dir: Path,
        export_prefix: str = "export_",
        snapshot: Optional[SnapshotFile] = None,
        planner: Optional[StudyPlanner] = None,
        policy: NormalizationPolicy = DEFAULT_POLICY,
        clock: Callable[[], date] = date.today,
    ):
        self.store = store
        self.data_dir = Path(data_dir)
        self.export_prefix = export_prefix
        self.snapshot = snapshot
        self.planner = planner or StudyPlanner()
        self.policy = policy
        self.clock = clock
        self._pass_lock = threading.Lock()

    @classmethod
    def from_settings(cls, store: TaskStore, settings: Settings, **kwargs) -> "Synchronizer":
        """Build a synchronizer from application settings."""
        snapshot = SnapshotFile(settings.snapshot_path) if settings.snapshot_path else None
        keywords = tuple(settings.test_keywords)
        planner = StudyPlanner(max_sessions=settings.study_days_max, keywords=keywords)
        kwargs.setdefault("policy", NormalizationPolicy(test_keywords=keywords))
        return cls(
            store=store,
            data_dir=settings.data_dir,
            export_prefix=settings.export_prefix,
            snapshot=snapshot,
            planner=planner,
            **kwargs,
        )

    def run_pass(self, today: Optional[date] = None) -> SyncOutcome:
        """Run one reconciliation pass.

        Never raises for data problems; failures are reported in the outcome.
        """
        with self._pass_lock:
            try:
                return self._run(today or self.clock())
            except NoSourceDataError as e:
                return SyncOutcome(status=SyncStatus.ERROR, error=str(e))
            except SchoolSyncError as e:
                logger.exception("Reconciliation pass failed")
                return SyncOutcome(status=SyncStatus.ERROR, error=str(e))

    def derive_study_sessions(self, records: Iterable[TaskRecord], today: date) -> int:
        """Insert study sessions for every test among `records`.

        Sessions hang off the persisted copy of each test, found by source_id,
        so they point at a record that exists and follow a moved test date.
        Call with the store locked.

        Returns:
            Number of sessions inserted
        """
        created = 0
        for record in records:
            if not self.planner.is_test(record):
                continue
            parent = self._persisted_copy(record)
            if parent is None:
                continue
            for session in self.planner.generate(parent, today):
                try:
                    if import_if_absent(self.store, session):
                        created += 1
                except RecordConflictError:
                    # Test was moved; its sessions for the old date keep these ids
                    logger.debug("Study session %s already exists, skipped", session.id)
                except SchoolSyncError as e:
                    logger.warning("Skipping study session %s: %s", session.id, e)
        return created

    def _persisted_copy(self, record: TaskRecord) -> Optional[TaskRecord]:
        if record.source_id:
            persisted = self.store.get_by_source_id(record.source_id)
            if persisted is not None:
                return persisted
        return self.store.get(record.id)

    def _load_snapshot(self) -> list[TaskRecord]:
        if self.snapshot is None:
            return []
        try:
            return self.snapshot.load()
        except ExportParseError as e:
            logger.warning("Ignoring unreadable snapshot, it will be rewritten: %s", e)
            return []

    def _collect(self) -> tuple[list[Path], list[TaskRecord], list[Path]]:
        files = find_exports(self.data_dir, self.export_prefix)
        fresh: list[TaskRecord] = []
        skipped: list[Path] = []
        for path in files:
            logger.debug("Processing export file %s", path)
            try:
                fresh.extend(parse_export_file(path, self.policy))
            except ExportParseError as e:
                logger.warning("Failed to parse export file %s: %s", path, e)
                skipped.append(path)
        return files, fresh, skipped

    def _run(self, today: date) -> SyncOutcome:
        # Parsing happens before taking the store lock; nothing is written
        # until every file has been normalized.
        files, fresh, skipped = self._collect()
        existing = self._load_snapshot()

        if not files and not existing:
            count = self.store.count()
            if count == 0:
                raise NoSourceDataError(
                    f"No export files found in {self.data_dir} and no existing data."
                )
            return SyncOutcome(status=SyncStatus.NO_CHANGE, old_count=count, new_count=count)

        batch = merge(existing, fresh)
        if self.snapshot and files:
            try:
                self.snapshot.save(batch)
            except OSError as e:
                logger.warning("Could not write snapshot %s: %s", self.snapshot.path, e)

        with self.store.locked():
            old_count = self.store.count()
            imported = import_entries(self.store, batch)
            sessions = self.derive_study_sessions(batch, today)
            new_count = self.store.count()

        status = (
            SyncStatus.UPDATED
            if imported > 0 or sessions > 0 or new_count != old_count
            else SyncStatus.NO_CHANGE
        )
        return SyncOutcome(
            status=status,
            old_count=old_count,
            new_count=new_count,
            imported=imported,
            study_sessions=sessions,
            skipped_files=skipped,
        )
