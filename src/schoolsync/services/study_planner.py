"""Study session derivation for upcoming tests."""

import hashlib
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional

from schoolsync.models.task_record import (
    KIND_STUDY_SESSION,
    TaskRecord,
    compute_source_id,
)

DEFAULT_TEST_KEYWORDS = ("verifica", "prova", "test", "interrogazione", "quiz", "exam", "esame")

STUDY_PREFIX = "Study for: "
TASK_PREVIEW_LENGTH = 100
_SESSION_ID_SALT = "study"


def is_test(record: TaskRecord, keywords: Iterable[str] = DEFAULT_TEST_KEYWORDS) -> bool:
    """Check whether a record's task text mentions a test keyword (case-insensitive)."""
    task_lower = record.task_text.lower()
    return any(keyword.lower() in task_lower for keyword in keywords)


def session_id(parent_id: str, days_before: int) -> str:
    """Deterministic id of the study session `days_before` days ahead of a test."""
    payload = f"{parent_id}\x1f{days_before}\x1f{_SESSION_ID_SALT}".encode("utf-8")
    return "study_" + hashlib.blake2b(payload, digest_size=8).hexdigest()


def _preview(task_text: str) -> str:
    if len(task_text) > TASK_PREVIEW_LENGTH:
        return task_text[:TASK_PREVIEW_LENGTH] + "..."
    return task_text


@dataclass
class StudyPlanner:
    """Generates study session records for tests.

    Stateless apart from its configuration; the same parent and day always
    produce the same sessions with the same ids.
    """

    max_sessions: int = 4
    keywords: tuple[str, ...] = DEFAULT_TEST_KEYWORDS

    def is_test(self, record: TaskRecord) -> bool:
        return is_test(record, self.keywords)

    def generate(self, test: TaskRecord, today: date) -> list[TaskRecord]:
        """Create study sessions on the days leading up to a test.

        Sessions are ordered closest-to-the-test first. An unparseable date,
        a past test, or a test less than two days away yields no sessions.

        Args:
            test: The test record (its id becomes the sessions' parent_id)
            today: Reference date

        Returns:
            List of derived records
        """
        test_date = _parse_date(test.date)
        if test_date is None:
            return []

        days_until = (test_date - today).days
        if days_until < 2:
            return []

        sessions_to_make = min(self.max_sessions, days_until - 1)
        task_text = STUDY_PREFIX + _preview(test.task_text)

        sessions = []
        for days_before in range(1, sessions_to_make + 1):
            session_date = (test_date - timedelta(days=days_before)).isoformat()
            sessions.append(
                TaskRecord(
                    id=session_id(test.id, days_before),
                    source_id=compute_source_id(session_date, test.subject, task_text),
                    kind=KIND_STUDY_SESSION,
                    date=session_date,
                    subject=test.subject,
                    task_text=task_text,
                    parent_id=test.id,
                )
            )
        return sessions


def _parse_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def generate_study_sessions(test: TaskRecord, today: date) -> list[TaskRecord]:
    """Generate study sessions with the default planner."""
    return StudyPlanner().generate(test, today)
