"""Record validation.

Two layers:
- Generic shape checks that apply to any table carrying the field (email,
  phone, tax ids, currency, URLs, dates, non-negative numbers).
- Per-table rules from the YAML rulebook: required fields, enum membership
  and cross-field checks dispatched by `type` through a `CheckRegistry`.

The store validates the *merged* record on update, so a partial patch can
never leave a composite record invalid.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urlparse

import yaml

from src.backend.store.errors import ValidationError
from src.backend.store.row_codec import is_numeric_column, parse_datetime
from src.backend.store.schema_registry import SchemaRegistry

logger = logging.getLogger(__name__)

DEFAULT_RULEBOOK_PATH = Path(__file__).resolve().with_name("validation_rules.yaml")

VALID_CURRENCIES = frozenset({"INR", "USD", "EUR", "GBP", "AUD", "CAD", "SGD"})

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^\+?[1-9]\d{0,15}$")
_PHONE_SEPARATORS_RE = re.compile(r"[\s\-().]")
_GSTIN_RE = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")
_PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")

EMAIL_FIELDS = ("email", "client_email", "sender_email")
CURRENCY_FIELDS = ("currency", "default_currency")
URL_FIELDS = ("receipt_url", "website", "url")
DATE_FIELDS = (
    "start_date",
    "end_date",
    "due_date",
    "issue_date",
    "date",
    "created_at",
    "updated_at",
)
NON_NEGATIVE_FIELDS = (
    "budget",
    "amount",
    "tax_amount",
    "subtotal",
    "total_amount",
    "hours",
    "estimated_hours",
    "actual_hours",
)


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value))


def is_valid_phone(value: str) -> bool:
    return bool(_PHONE_RE.match(_PHONE_SEPARATORS_RE.sub("", value)))


def is_valid_gstin(value: str) -> bool:
    return bool(_GSTIN_RE.match(value))


def is_valid_pan(value: str) -> bool:
    return bool(_PAN_RE.match(value))


def is_valid_currency(value: str) -> bool:
    return value.upper() in VALID_CURRENCIES


def is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def to_datetime(value: Any) -> datetime | None:
    """Coerce date-ish values (ISO text, date, datetime) to an aware datetime."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        return parse_datetime(value)
    return None


def to_number(value: Any) -> float | None:
    """Coerce to a finite float; NaN and infinities count as not a number."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def sanitize_data(data: Any) -> Any:
    """Trim strings and strip angle brackets, recursively."""

    if isinstance(data, str):
        return data.strip().replace("<", "").replace(">", "")
    if isinstance(data, list):
        return [sanitize_data(v) for v in data]
    if isinstance(data, tuple):
        return tuple(sanitize_data(v) for v in data)
    if isinstance(data, dict):
        return {k: sanitize_data(v) for k, v in data.items()}
    return data


@dataclass(slots=True)
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# A check handler returns True when the rule is violated.
CheckHandler = Callable[[dict[str, Any], dict[str, Any]], bool]


@dataclass(frozen=True, slots=True)
class _RegisteredCheck:
    handler: CheckHandler
    severity: str


class CheckRegistry:
    def __init__(self) -> None:
        self._checks: dict[str, _RegisteredCheck] = {}

    def register(
        self, check_type: str, *, severity: str = "error"
    ) -> Callable[[CheckHandler], CheckHandler]:
        if severity not in ("error", "warning"):
            raise ValueError(f"severity must be 'error' or 'warning', got {severity!r}")

        def _decorator(fn: CheckHandler) -> CheckHandler:
            self._checks[check_type] = _RegisteredCheck(handler=fn, severity=severity)
            return fn

        return _decorator

    def get(self, check_type: str) -> _RegisteredCheck | None:
        return self._checks.get(check_type)

    def implemented_types(self) -> set[str]:
        return set(self._checks.keys())


def _default_check_registry() -> CheckRegistry:
    reg = CheckRegistry()

    @reg.register("date_order")
    def _date_order(rule: dict[str, Any], record: dict[str, Any]) -> bool:
        start = to_datetime(record.get(rule["start"]))
        end = to_datetime(record.get(rule["end"]))
        if start is None or end is None:
            return False
        return start > end

    @reg.register("not_less_than")
    def _not_less_than(rule: dict[str, Any], record: dict[str, Any]) -> bool:
        value = to_number(record.get(rule["field"]))
        baseline = to_number(record.get(rule["baseline"]))
        if value is None or baseline is None:
            return False
        return value < baseline

    @reg.register("positive")
    def _positive(rule: dict[str, Any], record: dict[str, Any]) -> bool:
        value = to_number(record.get(rule["field"]))
        return value is None or value <= 0

    @reg.register("max_value")
    def _max_value(rule: dict[str, Any], record: dict[str, Any]) -> bool:
        value = to_number(record.get(rule["field"]))
        return value is not None and value > float(rule["max"])

    @reg.register("range")
    def _range(rule: dict[str, Any], record: dict[str, Any]) -> bool:
        value = to_number(record.get(rule["field"]))
        if value is None:
            return False
        return value < float(rule["min"]) or value > float(rule["max"])

    @reg.register("length")
    def _length(rule: dict[str, Any], record: dict[str, Any]) -> bool:
        value = record.get(rule["field"])
        if is_blank(value):
            return False
        return len(str(value).strip()) != int(rule["length"])

    @reg.register("ratio_warning", severity="warning")
    def _ratio_warning(rule: dict[str, Any], record: dict[str, Any]) -> bool:
        value = to_number(record.get(rule["field"]))
        baseline = to_number(record.get(rule["baseline"]))
        if not value or not baseline:
            return False
        return value > baseline * float(rule.get("ratio", 2))

    return reg


def load_rulebook(path: Path | str = DEFAULT_RULEBOOK_PATH) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@dataclass(frozen=True, slots=True)
class TableRules:
    required: tuple[str, ...] = ()
    enums: dict[str, tuple[str, ...]] = field(default_factory=dict)
    checks: tuple[dict[str, Any], ...] = ()


def _parse_table_rules(
    table: str, raw: dict[str, Any], checks: CheckRegistry
) -> TableRules:
    if not isinstance(raw, dict):
        raise ValueError(f"Rulebook entry for {table} must be a mapping")

    required = raw.get("required") or []
    if not isinstance(required, list):
        raise ValueError(f"{table}.required must be a list")

    enums_raw = raw.get("enums") or {}
    if not isinstance(enums_raw, dict):
        raise ValueError(f"{table}.enums must be a mapping")
    enums: dict[str, tuple[str, ...]] = {}
    for name, allowed in enums_raw.items():
        if not isinstance(allowed, list) or not allowed:
            raise ValueError(f"{table}.enums.{name} must be a non-empty list")
        enums[str(name)] = tuple(str(v) for v in allowed)

    checks_raw = raw.get("checks") or []
    if not isinstance(checks_raw, list):
        raise ValueError(f"{table}.checks must be a list")
    for rule in checks_raw:
        check_type = (rule or {}).get("type")
        if checks.get(str(check_type)) is None:
            raise ValueError(f"{table}: unknown check type {check_type!r}")

    return TableRules(
        required=tuple(str(f) for f in required),
        enums=enums,
        checks=tuple(dict(rule) for rule in checks_raw),
    )


class Validator:
    """Validate records against generic shape rules and the per-table rulebook."""

    def __init__(
        self,
        rulebook: dict[str, Any] | None = None,
        *,
        schemas: SchemaRegistry | None = None,
        checks: CheckRegistry | None = None,
    ) -> None:
        self._schemas = schemas
        self._checks = checks or _default_check_registry()
        doc = rulebook if rulebook is not None else load_rulebook()
        tables = doc.get("tables") or {}
        if not isinstance(tables, dict):
            raise ValueError("Rulebook 'tables' must be a mapping")
        self._rules: dict[str, TableRules] = {
            str(name): _parse_table_rules(str(name), raw, self._checks)
            for name, raw in tables.items()
        }

    @classmethod
    def from_yaml(
        cls, path: Path | str, *, schemas: SchemaRegistry | None = None
    ) -> "Validator":
        return cls(load_rulebook(path), schemas=schemas)

    @property
    def checks(self) -> CheckRegistry:
        return self._checks

    def rules_for(self, table: str) -> TableRules:
        return self._rules.get(table) or TableRules()

    def validate(self, table: str, record: dict[str, Any]) -> ValidationResult:
        result = ValidationResult()

        if self._schemas is not None:
            schema = self._schemas.get(table)
            for key in record:
                if not schema.has_column(key):
                    result.warnings.append(f"Unknown field '{key}' is not stored in {table}")

        self._check_generic(record, result)
        self._check_table(table, record, result)

        for w in result.warnings:
            logger.warning("Validation warning for %s: %s", table, w)
        return result

    def assert_valid(
        self, table: str, record: dict[str, Any], *, record_id: str | None = None
    ) -> ValidationResult:
        result = self.validate(table, record)
        if not result.ok:
            raise ValidationError(table, result.errors, record_id=record_id)
        return result

    def _check_generic(self, record: dict[str, Any], result: ValidationResult) -> None:
        errors = result.errors

        for name in EMAIL_FIELDS:
            value = record.get(name)
            if not is_blank(value) and not is_valid_email(str(value).strip()):
                errors.append(f"Invalid email format for {name}")

        phone = record.get("phone")
        if not is_blank(phone) and not is_valid_phone(str(phone).strip()):
            errors.append("Invalid phone number format")

        gstin = record.get("gstin")
        if not is_blank(gstin) and not is_valid_gstin(str(gstin).strip()):
            errors.append("Invalid GSTIN format")

        pan = record.get("pan")
        if not is_blank(pan) and not is_valid_pan(str(pan).strip()):
            errors.append("Invalid PAN format")

        for name in CURRENCY_FIELDS:
            value = record.get(name)
            if not is_blank(value) and not is_valid_currency(str(value).strip()):
                errors.append(f"Invalid currency code for {name}")

        for name in URL_FIELDS:
            value = record.get(name)
            if not is_blank(value) and not is_valid_url(str(value).strip()):
                errors.append(f"Invalid URL format for {name}")

        for name in DATE_FIELDS:
            value = record.get(name)
            if not is_blank(value) and to_datetime(value) is None:
                errors.append(f"Invalid date format for {name}")

        for name in NON_NEGATIVE_FIELDS:
            value = record.get(name)
            if is_blank(value):
                continue
            number = to_number(value)
            if number is None:
                errors.append(f"{name} must be a valid number")
            elif number < 0:
                errors.append(f"{name} cannot be negative")

        # Other numeric-typed columns (tax_rate, paid_amount, ...) must parse.
        for name, value in record.items():
            if name in NON_NEGATIVE_FIELDS or not is_numeric_column(name) or is_blank(value):
                continue
            if to_number(value) is None:
                errors.append(f"{name} must be a valid number")

    def _check_table(
        self, table: str, record: dict[str, Any], result: ValidationResult
    ) -> None:
        rules = self._rules.get(table)
        if rules is None:
            return

        for name in rules.required:
            if is_blank(record.get(name)):
                result.errors.append(f"{name} is required")

        for name, allowed in rules.enums.items():
            value = record.get(name)
            if not is_blank(value) and str(value) not in allowed:
                result.errors.append(
                    f"Invalid {name} '{value}' (expected one of: {', '.join(allowed)})"
                )

        for rule in rules.checks:
            registered = self._checks.get(str(rule["type"]))
            if registered is None:
                continue
            if registered.handler(rule, record):
                message = str(rule.get("message") or f"{rule['type']} check failed")
                if registered.severity == "warning":
                    result.warnings.append(message)
                else:
                    result.errors.append(message)
