"""CSV import of existing submissions into a form.

Columns map to fields by field_name or label (case-insensitive). A column
whose header mentions "timestamp" or "submitted" supplies the submission
time instead of a field value. Rows whose form-code is already stored for
the form (or appeared earlier in the file) are skipped. Every kept row goes
through `save_submission`, so lookups and entity derivation behave exactly
like a live submission. Nothing here commits.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from formdesk.db.models.form import Form
from formdesk.db.models.form_field import FormField
from formdesk.db.models.form_response import FormResponse
from formdesk.utils.ingest import save_submission

logger = logging.getLogger("formdesk.import")

MAX_IMPORT_BYTES = 10 * 1024 * 1024
MAX_IMPORT_ROWS = 20_000

_TIMESTAMP_HINTS = ("timestamp", "submitted")
_DATE_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%d.%m.%Y %H:%M",
    "%d.%m.%Y",
)
# spreadsheet day 0
_SERIAL_EPOCH = datetime(1899, 12, 30)


class CsvImportError(ValueError):
    pass


@dataclass(slots=True)
class ColumnPlan:
    fields: dict[int, FormField]
    timestamp_col: int | None
    ignored: list[str]


@dataclass(slots=True)
class ImportResult:
    imported: int = 0
    skipped_existing: int = 0
    skipped_blank: int = 0
    ignored_columns: list[str] = field(default_factory=list)
    submission_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        out = asdict(self)
        out.pop("submission_ids")
        return out


def read_csv(raw: bytes) -> tuple[list[str], list[list[str]]]:
    """Header row and data rows of a UTF-8 (optionally BOM-prefixed) CSV."""
    if len(raw) > MAX_IMPORT_BYTES:
        raise CsvImportError(f"File is larger than {MAX_IMPORT_BYTES // (1024 * 1024)} MB")
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise CsvImportError("File must be a UTF-8 encoded CSV")
    try:
        rows = list(csv.reader(io.StringIO(text)))
    except csv.Error as exc:
        raise CsvImportError(f"Malformed CSV: {exc}")
    if not rows or not any(h.strip() for h in rows[0]):
        raise CsvImportError("CSV has no header row")
    if len(rows) - 1 > MAX_IMPORT_ROWS:
        raise CsvImportError(f"At most {MAX_IMPORT_ROWS} rows per import")
    return rows[0], rows[1:]


def is_timestamp_header(header: str) -> bool:
    h = header.strip().lower()
    return any(hint in h for hint in _TIMESTAMP_HINTS)


def plan_columns(headers: list[str], fields: list[FormField]) -> ColumnPlan:
    by_key: dict[str, FormField] = {}
    for f in fields:
        by_key.setdefault(f.field_name.strip().lower(), f)
    for f in fields:
        if f.field_label:
            by_key.setdefault(f.field_label.strip().lower(), f)

    mapped: dict[int, FormField] = {}
    timestamp_col = None
    ignored = []
    used: set[int] = set()
    for i, header in enumerate(headers):
        key = header.strip().lower()
        f = by_key.get(key)
        if f is not None and f.id not in used:
            mapped[i] = f
            used.add(f.id)
        elif timestamp_col is None and is_timestamp_header(header):
            timestamp_col = i
        elif key:
            ignored.append(header.strip())
    return ColumnPlan(fields=mapped, timestamp_col=timestamp_col, ignored=ignored)


def parse_timestamp(raw: str | None) -> datetime | None:
    """ISO, common spreadsheet exports or a spreadsheet serial day; naive UTC."""
    s = (raw or "").strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        dt = None
    if dt is None:
        for fmt in _DATE_FORMATS:
            try:
                dt = datetime.strptime(s, fmt)
                break
            except ValueError:
                continue
    if dt is None:
        try:
            serial = float(s)
        except ValueError:
            return None
        if not 1 <= serial < 2958466:
            return None
        return _SERIAL_EPOCH + timedelta(days=serial)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def code_field(fields: list[FormField]) -> FormField | None:
    for f in fields:
        name = f.field_name.lower()
        if "form" in name and "code" in name:
            return f
    return None


def existing_codes(db: Session, f: FormField) -> set[str]:
    rows = db.query(FormResponse.value).filter(FormResponse.field_id == f.id).all()
    return {v.strip() for (v,) in rows if v and v.strip()}


def import_rows(db: Session, form: Form, headers: list[str], rows: list[list[str]]) -> ImportResult:
    fields = list(form.fields)
    plan = plan_columns(headers, fields)
    if not plan.fields:
        raise CsvImportError("No column matches a field of this form")

    code = code_field(fields)
    code_col = next((i for i, f in plan.fields.items() if code is not None and f.id == code.id), None)
    seen = existing_codes(db, code) if code_col is not None else set()

    result = ImportResult(ignored_columns=plan.ignored)
    for row in rows:
        payload = {}
        for i, f in plan.fields.items():
            cell = row[i].strip() if i < len(row) else ""
            if cell:
                payload[f.field_name] = cell
        if not payload:
            result.skipped_blank += 1
            continue

        if code_col is not None:
            value = payload.get(code.field_name)
            if value:
                if value in seen:
                    result.skipped_existing += 1
                    continue
                seen.add(value)

        ts = None
        if plan.timestamp_col is not None and plan.timestamp_col < len(row):
            ts = parse_timestamp(row[plan.timestamp_col])
        sub = save_submission(db, form, payload, timestamp=ts)
        result.submission_ids.append(sub.id)
        result.imported += 1

    logger.info(
        "import form=%s imported=%s skipped_existing=%s skipped_blank=%s",
        form.id,
        result.imported,
        result.skipped_existing,
        result.skipped_blank,
    )
    return result
