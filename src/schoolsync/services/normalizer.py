"""Spreadsheet export parsing and normalization into task records."""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

from openpyxl import load_workbook
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from schoolsync.errors import ExportParseError
from schoolsync.models.task_record import KIND_NOTE, KIND_TEST, TaskRecord
from schoolsync.services.study_planner import DEFAULT_TEST_KEYWORDS

logger = logging.getLogger(__name__)


KNOWN_SUBJECTS: tuple[tuple[str, str], ...] = (
    ("matematica", "Matematica"),
    ("aritmetica", "Matematica"),
    ("geometria", "Matematica"),
    ("italiano", "Italiano"),
    ("antologia", "Italiano"),
    ("storia", "Storia"),
    ("geografia", "Geografia"),
    ("inglese", "Lingua Inglese"),
    ("english", "Lingua Inglese"),
    ("verbi irregolari", "Lingua Inglese"),
    ("tedesco", "Tedesco"),
    ("deutsch", "Tedesco"),
    ("arte", "Arte e Immagine"),
    ("disegno", "Arte e Immagine"),
    ("tecnologia", "Tecnologia"),
    ("proiezioni ortogonali", "Tecnologia"),
    ("scienze", "Scienze"),
    ("lavoisier", "Scienze"),
    ("musica", "Musica"),
    ("ed. fisica", "Educazione Fisica"),
    ("educazione fisica", "Educazione Fisica"),
    ("religione", "Religione"),
    ("ed. civica", "Educazione Civica"),
    ("educazione civica", "Educazione Civica"),
)

SUBJECT_OVERRIDES: tuple[tuple[str, str], ...] = (
    ("Seconda Lingua Comunitaria", "Tedesco"),
    ("Seconda Lingua Straniera", "Tedesco"),
)

# Words suggesting that a subject mentioned in free text is the task's subject
CONTEXT_HINTS: tuple[str, ...] = (
    "verifica",
    "test",
    "interrogazione",
    "prova",
    "portare",
    "libro di",
    "quaderno",
    "scritto",
    "in inglese",
    "attività",
)


@dataclass
class NormalizationPolicy:
    """Locale-specific heuristics used to normalize export rows.

    The keyword lists are best effort; swap the policy to support other
    schools or languages.
    """

    test_keywords: tuple[str, ...] = DEFAULT_TEST_KEYWORDS
    subject_lead_words: tuple[str, ...] = (
        "verifica",
        "test",
        "interrogazione",
        "prova",
        "esame",
    )
    known_subjects: tuple[tuple[str, str], ...] = KNOWN_SUBJECTS
    subject_overrides: tuple[tuple[str, str], ...] = SUBJECT_OVERRIDES
    context_hints: tuple[str, ...] = CONTEXT_HINTS
    default_kind: str = KIND_NOTE
    test_kind: str = KIND_TEST


DEFAULT_POLICY = NormalizationPolicy()


# ==================== Discovery ====================


def is_export_file(path: Path, prefix: str = "export_") -> bool:
    """Check if a path looks like a spreadsheet export."""
    name = Path(path).name
    return name.startswith(prefix) and ".xls" in name


def find_exports(data_dir: Path, prefix: str = "export_") -> list[Path]:
    """List export files in a directory, sorted by name."""
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        return []
    return sorted(p for p in data_dir.iterdir() if p.is_file() and is_export_file(p, prefix))


# ==================== Parsing ====================


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type(OSError),
    reraise=True,
)
def _read_bytes(path: Path) -> bytes:
    return Path(path).read_bytes()


def parse_export_file(path: Path, policy: NormalizationPolicy = DEFAULT_POLICY) -> list[TaskRecord]:
    """Parse an export file into normalized task records.

    SpreadsheetML 2003 XML (the `.xls` flavour produced by web exports) is
    detected from its content; anything else is opened as an `.xlsx`
    workbook.

    Raises:
        ExportParseError: If the file cannot be read or holds no rows
    """
    path = Path(path)
    try:
        raw = _read_bytes(path)
    except OSError as e:
        raise ExportParseError(f"Cannot read {path}: {e}") from e

    head = raw[:4096].decode("utf-8", errors="ignore").lstrip()
    if head.startswith("<?xml") or "<Workbook" in head:
        rows = parse_spreadsheet_rows(raw)
    else:
        rows = _read_workbook_rows(path)

    if not rows:
        raise ExportParseError(f"No data rows found in {path}")

    records = normalize(rows, policy)
    logger.debug("Parsed %s: %d row(s), %d record(s)", path.name, len(rows) - 1, len(records))
    return records


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_spreadsheet_rows(xml: bytes | str) -> list[list[str]]:
    """Parse SpreadsheetML XML into rows of trimmed cell values.

    Cells without a Data element become empty strings; rows without cells are
    skipped.

    Raises:
        ExportParseError: If the XML is malformed
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        raise ExportParseError(f"XML parse error: {e}") from e

    rows: list[list[str]] = []
    for element in root.iter():
        if _local_name(element.tag) != "Row":
            continue
        row: list[str] = []
        for cell in element:
            if _local_name(cell.tag) != "Cell":
                continue
            data = next((c for c in cell if _local_name(c.tag) == "Data"), None)
            row.append("".join(data.itertext()).strip() if data is not None else "")
        if row:
            rows.append(row)
    return rows


def _read_workbook_rows(path: Path) -> list[list[str]]:
    try:
        workbook = load_workbook(path, read_only=True, data_only=True)
    except Exception as e:  # openpyxl raises many unrelated types for bad files
        raise ExportParseError(f"Cannot open workbook {path}: {e}") from e

    try:
        if not workbook.sheetnames:
            raise ExportParseError(f"Workbook has no sheets: {path}")
        sheet = workbook[workbook.sheetnames[0]]
        return [
            [cell_to_string(value) for value in row]
            for row in sheet.iter_rows(values_only=True)
        ]
    finally:
        workbook.close()


def cell_to_string(value: Any) -> str:
    """Convert a workbook cell value to text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ==================== Normalization ====================


def normalize(
    rows: list[list[str]], policy: NormalizationPolicy = DEFAULT_POLICY
) -> list[TaskRecord]:
    """Turn raw rows (header first) into task records.

    Rows with neither subject nor task text are dropped.
    """
    if not rows:
        return []

    columns = map_columns(rows[0])
    records = []
    for row in rows[1:]:
        record = parse_row(row, columns, policy)
        if record is not None:
            records.append(record)
    return records


def map_columns(headers: list[str]) -> dict[str, int]:
    """Map header names to column indices; the first matching column wins."""
    indices: dict[str, int] = {}

    for i, header in enumerate(headers):
        lower = header.lower()

        if "data" in lower or "inizio" in lower or "date" in lower:
            indices.setdefault("date", i)

        if "materia" in lower or "subject" in lower or "corso" in lower:
            indices.setdefault("subject", i)

        if "nota" in lower or "descrizione" in lower or "task" in lower or "compito" in lower:
            indices.setdefault("task", i)

        if lower == "tipo" or ("tipo" in lower and "evento" not in lower):
            indices.setdefault("type", i)

    return indices


def parse_row(
    row: list[str], columns: dict[str, int], policy: NormalizationPolicy = DEFAULT_POLICY
) -> Optional[TaskRecord]:
    """Parse a single row into a TaskRecord, or None if it carries no data."""

    def get_col(key: str) -> str:
        i = columns.get(key)
        if i is None or i >= len(row):
            return ""
        return (row[i] or "").strip()

    raw_type = get_col("type")
    task = get_col("task")
    subject = get_col("subject")

    if not task and not subject:
        return None

    kind = detect_kind(task, raw_type, policy)

    if subject:
        subject = normalize_subject(subject, policy)
    else:
        subject = extract_subject_from_task(task, policy) or ""

    return TaskRecord.new(kind, normalize_date(get_col("date")), subject, task)


def detect_kind(task: str, original_type: str, policy: NormalizationPolicy = DEFAULT_POLICY) -> str:
    """Test keywords override the exported type; an empty type gets the default."""
    task_lower = task.lower()
    if any(keyword.lower() in task_lower for keyword in policy.test_keywords):
        return policy.test_kind
    return original_type or policy.default_kind


def to_title_case(text: str) -> str:
    """Title-case each whitespace separated word ("MATEMATICA" -> "Matematica")."""
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


def normalize_subject(subject: str, policy: NormalizationPolicy = DEFAULT_POLICY) -> str:
    """Title-case a subject and apply the canonical-name overrides."""
    title_cased = to_title_case(subject)
    for source, target in policy.subject_overrides:
        if title_cased.lower() == source.lower():
            return target
    return title_cased


def extract_subject_from_task(
    task: str, policy: NormalizationPolicy = DEFAULT_POLICY
) -> Optional[str]:
    """Guess the subject from the task text.

    Tried in order: "<test word> di|su <subject>", a leading "<subject>:" or
    "<subject> ", then a known subject anywhere in a test/assignment context.
    """
    task_lower = task.lower()

    for lead in policy.subject_lead_words:
        for joiner in (" di ", " su "):
            prefix = lead + joiner
            pos = task_lower.find(prefix)
            if pos < 0:
                continue
            after = task_lower[pos + len(prefix):]
            for keyword, canonical in policy.known_subjects:
                if after.startswith(keyword):
                    return canonical

    for keyword, canonical in policy.known_subjects:
        if task_lower.startswith(keyword):
            after = task_lower[len(keyword):]
            if after.startswith(":") or after.startswith(" "):
                return canonical

    if any(hint in task_lower for hint in policy.context_hints):
        for keyword, canonical in policy.known_subjects:
            if keyword in task_lower:
                return canonical

    return None


_DMY = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})$")


def normalize_date(value: str) -> str:
    """Normalize a date cell to YYYY-MM-DD when the format is recognised.

    Unrecognised values are returned unchanged (minus any time part).
    """
    parts = value.split()
    date_part = parts[0] if parts else ""
    if "T" in date_part:
        date_part = date_part.split("T", 1)[0]

    match = _DMY.match(date_part)
    if match:
        day, month, year = (int(g) for g in match.groups())
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            return date_part

    return date_part
