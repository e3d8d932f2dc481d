"""Merge engine for reconciling freshly parsed records with persisted ones."""

import logging
from typing import Iterable

from schoolsync.database.repository import TaskStore
from schoolsync.errors import SchoolSyncError
from schoolsync.models.task_record import TaskRecord

logger = logging.getLogger(__name__)


def merge(existing: Iterable[TaskRecord], incoming: Iterable[TaskRecord]) -> list[TaskRecord]:
    """Merge two record lists, dropping content duplicates.

    Records are visited existing-first, so a persisted record always wins over
    a freshly parsed one with the same (date, subject, task_text), even when
    other fields such as kind differ. The result is sorted by date; ties keep
    their visiting order.

    Args:
        existing: Records already in the snapshot
        incoming: Records freshly parsed from exports

    Returns:
        Duplicate-free list sorted by date
    """
    seen: set[tuple[str, str, str]] = set()
    result: list[TaskRecord] = []

    for source in (existing, incoming):
        for record in source:
            key = record.dedup_key
            if key in seen:
                continue
            seen.add(key)
            result.append(record)

    result.sort(key=lambda r: r.date)
    return result


def import_if_absent(store: TaskStore, record: TaskRecord) -> bool:
    """Insert a record unless its source_id is already persisted.

    A record that was moved to another date keeps its source_id, so
    re-importing the original export row is recognised and skipped.

    Returns:
        True if the record was inserted
    """
    return store.insert_if_absent(record)


def import_entries(store: TaskStore, records: Iterable[TaskRecord]) -> int:
    """Import records best-effort, skipping those already present.

    A failure on one record is logged and does not abort the batch.

    Returns:
        Number of records inserted
    """
    inserted = 0
    for record in records:
        try:
            if import_if_absent(store, record):
                inserted += 1
        except SchoolSyncError as e:
            logger.warning(
                "Skipping record %s (%s %s): %s", record.id, record.date, record.subject, e
            )
    if inserted:
        logger.debug("Imported %d record(s)", inserted)
    return inserted
