"""Task record model for SchoolSync."""

import hashlib
import uuid
import zlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional

KIND_NOTE = "nota"  # Generic default when an export row has no type
KIND_TEST = "verifica"  # Tests, quizzes and oral exams
KIND_STUDY_SESSION = "studio"  # Derived study day ahead of a test

_FIELD_SEPARATOR = "\x1f"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _identity_bytes(date: str, subject: str, task_text: str) -> bytes:
    return _FIELD_SEPARATOR.join((date, subject, task_text)).encode("utf-8")


def compute_source_id(date: str, subject: str, task_text: str) -> str:
    """Content hash of a record as originally ingested.

    16 hex characters (64-bit BLAKE2b digest). No normalization happens here,
    so the hash is case- and whitespace-sensitive.
    """
    digest = hashlib.blake2b(_identity_bytes(date, subject, task_text), digest_size=8)
    return digest.hexdigest()


def compute_stable_id(date: str, subject: str, task_text: str) -> str:
    """Short content hash of a record's current content (8 hex characters, CRC-32)."""
    return f"{zlib.crc32(_identity_bytes(date, subject, task_text)):08x}"


def new_record_id() -> str:
    """Process-unique identifier for a freshly created record."""
    return uuid.uuid4().hex


@dataclass
class TaskRecord:
    """A dated, subject-tagged unit of work or note."""

    # Content
    kind: str
    date: str  # YYYY-MM-DD
    subject: str
    task_text: str

    # Identity
    id: str = field(default_factory=new_record_id)
    source_id: Optional[str] = None

    # User state
    completed: bool = False
    position: int = 0

    # Study sessions point back at the test they were derived from
    parent_id: Optional[str] = None

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(cls, kind: str, date: str, subject: str, task_text: str) -> "TaskRecord":
        """Create a record with a fresh id and a source_id over its content."""
        return cls(
            kind=kind,
            date=date,
            subject=subject,
            task_text=task_text,
            source_id=compute_source_id(date, subject, task_text),
        )

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        """Key used by the flat-snapshot merge to detect duplicates."""
        return (self.date, self.subject, self.task_text)

    @property
    def stable_id(self) -> str:
        """Presentation-layer reference; changes whenever the content changes."""
        return compute_stable_id(self.date, self.subject, self.task_text)

    @property
    def is_study_session(self) -> bool:
        return self.kind == KIND_STUDY_SESSION

    @property
    def is_orphan(self) -> bool:
        """True for a study session whose parent has been deleted."""
        return self.is_study_session and self.parent_id is None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON shape used by snapshots and the API layer."""
        return {
            "id": self.id,
            "source_id": self.source_id,
            "stable_id": self.stable_id,
            "type": self.kind,
            "date": self.date,
            "subject": self.subject,
            "task": self.task_text,
            "completed": self.completed,
            "position": self.position,
            "parent_id": self.parent_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskRecord":
        """Build a record from `to_dict` output.

        Older snapshots only carry type/date/subject/task; missing identity
        fields are filled in the same way `new` would.
        """
        date = str(data.get("date", ""))
        subject = str(data.get("subject", ""))
        task_text = str(data.get("task", ""))
        record = cls(
            kind=str(data.get("type", KIND_NOTE)),
            date=date,
            subject=subject,
            task_text=task_text,
            source_id=data.get("source_id") or compute_source_id(date, subject, task_text),
            completed=bool(data.get("completed", False)),
            position=int(data.get("position", 0)),
            parent_id=data.get("parent_id"),
        )
        if data.get("id"):
            record.id = str(data["id"])
        if data.get("created_at"):
            record.created_at = datetime.fromisoformat(data["created_at"])
        if data.get("updated_at"):
            record.updated_at = datetime.fromisoformat(data["updated_at"])
        return record


@dataclass
class TaskUpdate:
    """Partial update of a record; only fields that are not None are applied."""

    date: Optional[str] = None
    completed: Optional[bool] = None
    position: Optional[int] = None
    task_text: Optional[str] = None

    def is_empty(self) -> bool:
        return (
            self.date is None
            and self.completed is None
            and self.position is None
            and self.task_text is None
        )
