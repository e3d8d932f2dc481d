"""Flat JSON snapshot of merged task records."""

import json
import logging
from pathlib import Path

from schoolsync.errors import ExportParseError
from schoolsync.models.task_record import TaskRecord

logger = logging.getLogger(__name__)


class SnapshotFile:
    """JSON file holding the merged record list.

    Kept alongside the database so the merged view survives without it and
    can be inspected or versioned by hand.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> list[TaskRecord]:
        """Load records; a missing file is an empty snapshot.

        Raises:
            ExportParseError: If the file exists but is not a valid snapshot
        """
        if not self.path.exists():
            return []

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ExportParseError(f"Failed to read snapshot {self.path}: {e}") from e

        if not isinstance(data, list):
            raise ExportParseError(f"Snapshot {self.path} is not a list of entries")

        try:
            records = [TaskRecord.from_dict(item) for item in data]
        except (AttributeError, TypeError, ValueError) as e:
            raise ExportParseError(f"Malformed entry in snapshot {self.path}: {e}") from e
        logger.debug("Loaded %d record(s) from %s", len(records), self.path)
        return records

    def save(self, records: list[TaskRecord]) -> None:
        """Write records as pretty-printed JSON."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [record.to_dict() for record in records]
        self.path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.debug("Saved %d record(s) to %s", len(records), self.path)
