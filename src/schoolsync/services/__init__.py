"""Services for SchoolSync."""

from schoolsync.services.entry_service import CascadeOutcome, DeleteOutcome, EntryService
from schoolsync.services.merge_engine import import_entries, import_if_absent, merge
from schoolsync.services.normalizer import (
    DEFAULT_POLICY,
    NormalizationPolicy,
    find_exports,
    normalize,
    parse_export_file,
)
from schoolsync.services.snapshot import SnapshotFile
from schoolsync.services.study_planner import StudyPlanner, generate_study_sessions, is_test
from schoolsync.services.synchronizer import SyncOutcome, SyncStatus, Synchronizer
from schoolsync.services.watcher import Debouncer, ExportWatcher, ReconcileLoop

__all__ = [
    "CascadeOutcome",
    "DEFAULT_POLICY",
    "Debouncer",
    "DeleteOutcome",
    "EntryService",
    "ExportWatcher",
    "NormalizationPolicy",
    "ReconcileLoop",
    "SnapshotFile",
    "StudyPlanner",
    "SyncOutcome",
    "SyncStatus",
    "Synchronizer",
    "find_exports",
    "generate_study_sessions",
    "import_entries",
    "import_if_absent",
    "is_test",
    "merge",
    "normalize",
    "parse_export_file",
]
