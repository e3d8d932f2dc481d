"""Data models for SchoolSync."""

from schoolsync.models.task_record import (
    KIND_NOTE,
    KIND_STUDY_SESSION,
    KIND_TEST,
    TaskRecord,
    TaskUpdate,
    compute_source_id,
    compute_stable_id,
    new_record_id,
)

__all__ = [
    "KIND_NOTE",
    "KIND_STUDY_SESSION",
    "KIND_TEST",
    "TaskRecord",
    "TaskUpdate",
    "compute_source_id",
    "compute_stable_id",
    "new_record_id",
]
