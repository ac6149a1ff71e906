"""Record <-> row conversion.

A row is a list of strings positioned 1:1 with a table's columns; `""` is
null. Decoding infers types from column-name conventions and never raises,
so read paths survive malformed historical rows.
"""

from __future__ import annotations

import json
import math
import re
from datetime import date, datetime, timezone
from typing import Any, Sequence

_NUMERIC_COLUMN_HINTS = ("amount", "budget", "hours", "rate")
_ARRAY_COLUMNS = {"tags", "dependencies"}
_STRUCTURED_COLUMNS = {"line_items", "tax_breakdown", "metadata"}

_ISO_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def sheet_title_ref(sheet: str) -> str:
    """Quote a sheet title for use in an A1 range when needed."""

    if re.fullmatch(r"[A-Za-z0-9_]+", sheet):
        return sheet
    escaped = sheet.replace("'", "''")
    return f"'{escaped}'"


def a1_range(
    sheet: str,
    last_column: str,
    start_row: int | None = None,
    end_row: int | None = None,
) -> str:
    """Build `Sheet!A:Z` or `Sheet!A<start>:Z<end>` (rows are 1-based)."""

    ref = sheet_title_ref(sheet)
    if start_row is None:
        return f"{ref}!A:{last_column}"
    end = start_row if end_row is None else end_row
    return f"{ref}!A{start_row}:{last_column}{end}"


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a `Z` suffix."""

    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_datetime(value: str) -> datetime | None:
    """Parse ISO-8601 text (with optional `Z`) into an aware datetime."""

    s = (value or "").strip()
    if not s:
        return None
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _format_number(value: int | float) -> str:
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def encode_value(value: Any) -> str:
    if value is None:
        return ""
    # bool before int: bool is an int subclass.
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return _format_number(value)
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def encode_row(record: dict[str, Any], columns: Sequence[str]) -> list[str]:
    return [encode_value(record.get(col)) for col in columns]


def _is_date_column(column: str) -> bool:
    return "date" in column or "_at" in column


def is_numeric_column(column: str) -> bool:
    return any(hint in column for hint in _NUMERIC_COLUMN_HINTS)


def _decode_date(raw: str) -> str:
    # Date-only values stay date-only so they round-trip unchanged.
    if _ISO_DATE_ONLY.match(raw):
        try:
            date.fromisoformat(raw)
        except ValueError:
            return raw
        return raw
    dt = parse_datetime(raw)
    if dt is None:
        return raw
    return format_timestamp(dt)


def _decode_float(raw: str) -> float:
    m = re.match(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?", raw)
    if not m:
        return 0.0
    try:
        out = float(m.group(0))
    except ValueError:
        return 0.0
    return 0.0 if math.isnan(out) else out


def _decode_array(raw: str) -> list[Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return [part.strip() for part in raw.split(",")]
    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _decode_structured(raw: str) -> Any:
    s = raw.strip()
    if not (s.startswith("{") or s.startswith("[")):
        return raw
    try:
        return json.loads(s)
    except json.JSONDecodeError:
        return raw


def decode_value(column: str, raw: Any) -> Any:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raw = str(raw)
    if raw == "":
        return None

    if _is_date_column(column):
        return _decode_date(raw)
    if is_numeric_column(column):
        return _decode_float(raw)
    if column.startswith("is_") or raw in ("TRUE", "FALSE"):
        return raw == "TRUE"
    if column in _ARRAY_COLUMNS:
        return _decode_array(raw)
    if column in _STRUCTURED_COLUMNS:
        return _decode_structured(raw)
    return raw


def decode_row(row: Sequence[Any], columns: Sequence[str]) -> dict[str, Any]:
    """Decode a row into a record. Short rows pad with None; extra cells are dropped."""

    record: dict[str, Any] = {}
    for i, col in enumerate(columns):
        raw = row[i] if i < len(row) else None
        try:
            record[col] = decode_value(col, raw)
        except Exception:
            # Decoding must stay total; keep the raw cell rather than fail a read.
            record[col] = raw if raw != "" else None
    return record


def is_blank_row(row: Sequence[Any]) -> bool:
    return not any(str(c).strip() for c in row if c is not None)
