"""Pytest fixtures for SchoolSync tests."""

import sqlite3
import tempfile
from pathlib import Path
from xml.sax.saxutils import escape

import pytest

from schoolsync.config import Settings
from schoolsync.database.repository import TaskStore

HEADERS = ["Data Inizio", "Materia", "Tipo", "Nota"]


def spreadsheet_xml(rows: list[list[str]], headers: list[str] = HEADERS) -> str:
    """Build a SpreadsheetML 2003 document with a header row."""

    def render(row: list[str]) -> str:
        cells = "".join(
            f'<Cell><Data ss:Type="String">{escape(value)}</Data></Cell>' for value in row
        )
        return f"<Row>{cells}</Row>"

    body = "".join(render(row) for row in [headers, *rows])
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<Workbook xmlns="urn:schemas-microsoft-com:office:spreadsheet" '
        'xmlns:ss="urn:schemas-microsoft-com:office:spreadsheet">'
        f'<Worksheet ss:Name="Agenda"><Table>{body}</Table></Worksheet>'
        "</Workbook>"
    )


def write_export(directory: Path, name: str, rows: list[list[str]]) -> Path:
    """Write an export file into a directory and return its path."""
    path = directory / name
    path.write_text(spreadsheet_xml(rows), encoding="utf-8")
    return path


@pytest.fixture
def temp_dir():
    """Provide a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir):
    """Provide a temporary database path."""
    return temp_dir / "test.db"


@pytest.fixture
def store(temp_db_path):
    """Provide a store with a temporary database."""
    return TaskStore(f"sqlite:///{temp_db_path}")


@pytest.fixture
def data_dir(temp_dir):
    """Provide an empty export directory."""
    path = temp_dir / "data"
    path.mkdir()
    return path


@pytest.fixture
def export_writer(data_dir):
    """Provide a function writing SpreadsheetML exports into the data directory."""

    def write(name: str, rows: list[list[str]]) -> Path:
        return write_export(data_dir, name, rows)

    return write


@pytest.fixture
def make_spreadsheet():
    """Provide the SpreadsheetML document builder."""
    return spreadsheet_xml


@pytest.fixture
def settings(temp_dir, data_dir, temp_db_path):
    """Provide settings pointing at temporary paths, without a snapshot."""
    return Settings(
        data_dir=data_dir,
        database_path=temp_db_path,
        snapshot_path="",
        log_dir=temp_dir / "logs",
    )


@pytest.fixture
def locked_store(temp_db_path):
    """Provide a store whose database another connection holds exclusively."""
    store = TaskStore(f"sqlite:///{temp_db_path}?timeout=0.1")
    blocker = sqlite3.connect(temp_db_path, timeout=0, isolation_level=None)
    blocker.execute("BEGIN EXCLUSIVE")
    try:
        yield store
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()
