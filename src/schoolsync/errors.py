"""Exception types for SchoolSync."""


class SchoolSyncError(Exception):
    """Base class for SchoolSync errors."""

    pass


class StoreError(SchoolSyncError):
    """The persistent store could not be opened or written."""

    pass


class RecordConflictError(StoreError):
    """A record with the same id already exists."""

    def __init__(self, record_id: str):
        super().__init__(f"Record already exists: {record_id}")
        self.record_id = record_id


class ExportParseError(SchoolSyncError):
    """An export or snapshot file could not be read or parsed."""

    pass


class NoSourceDataError(SchoolSyncError):
    """No export files were found and no data exists yet."""

    pass
