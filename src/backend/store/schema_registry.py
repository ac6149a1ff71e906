"""Table schemas: logical table name -> ordered column list.

Column order is the wire contract with the spreadsheet. It defines both the
physical column position in a sheet and the logical field order. Do not
reorder columns without migrating existing sheets.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

from src.backend.store.errors import UnknownTableError


def column_letter(column_number: int) -> str:
    """Convert a 1-based column number to A1 letters (1->A, 26->Z, 27->AA)."""

    if column_number < 1:
        raise ValueError("column_number must be >= 1")

    result = ""
    n = column_number
    while n > 0:
        n, rem = divmod(n - 1, 26)
        result = chr(ord("A") + rem) + result
    return result


@dataclass(frozen=True, slots=True)
class TableSchema:
    name: str
    columns: tuple[str, ...]

    @property
    def width(self) -> int:
        return len(self.columns)

    @property
    def last_column_letter(self) -> str:
        return column_letter(self.width)

    def has_column(self, column: str) -> bool:
        return column in self.columns


class SchemaRegistry:
    def __init__(self) -> None:
        self._schemas: dict[str, TableSchema] = {}
        self._frozen = False

    def register(self, table: str, columns: Iterable[str]) -> TableSchema:
        if self._frozen:
            raise RuntimeError(f"Schema registry is frozen; cannot register {table!r}")
        if not table or not table.strip():
            raise ValueError("table name must be non-empty")
        if table in self._schemas:
            raise ValueError(f"Table already registered: {table}")

        cols = tuple(columns)
        if not cols:
            raise ValueError(f"{table}: columns must be non-empty")
        if cols[0] != "id":
            raise ValueError(f"{table}: first column must be 'id', got {cols[0]!r}")
        if len(set(cols)) != len(cols):
            dupes = sorted({c for c in cols if cols.count(c) > 1})
            raise ValueError(f"{table}: duplicate columns {dupes}")

        schema = TableSchema(name=table, columns=cols)
        self._schemas[table] = schema
        return schema

    def get(self, table: str) -> TableSchema:
        schema = self._schemas.get(table)
        if schema is None:
            raise UnknownTableError(table)
        return schema

    def freeze(self) -> "SchemaRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def tables(self) -> list[str]:
        return list(self._schemas.keys())

    def __contains__(self, table: object) -> bool:
        return table in self._schemas

    def __iter__(self) -> Iterator[TableSchema]:
        return iter(self._schemas.values())

    def __len__(self) -> int:
        return len(self._schemas)


DEFAULT_TABLE_COLUMNS: dict[str, list[str]] = {
    "Projects": [
        "id", "name", "client_id", "status", "start_date", "end_date",
        "budget", "description", "created_at", "updated_at",
    ],
    "Tasks": [
        "id", "project_id", "title", "description", "status", "priority",
        "due_date", "estimated_hours", "actual_hours", "created_at",
    ],
    "Clients": [
        "id", "name", "email", "phone", "address", "city", "state", "country",
        "postal_code", "gstin", "pan", "payment_terms", "default_currency",
        "billing_address", "shipping_address", "contact_person", "website",
        "notes", "is_active", "portal_access_enabled", "portal_password_hash",
        "last_portal_login", "company_name", "created_at", "updated_at",
    ],
    "Invoices": [
        "id", "invoice_number", "client_id", "project_id", "line_items",
        "subtotal", "tax_breakdown", "total_amount", "currency", "status",
        "issue_date", "due_date", "payment_terms", "notes", "terms_conditions",
        "is_recurring", "recurring_frequency", "next_invoice_date",
        "payment_status", "paid_amount", "payment_date", "payment_method",
        "late_fee_applied", "discount_percentage", "discount_amount",
        "created_at", "updated_at",
    ],
    "Time_Entries": [
        "id", "task_id", "project_id", "hours", "description", "date", "created_at",
    ],
    "Expenses": [
        "id", "project_id", "category", "amount", "currency", "description",
        "date", "receipt_url", "vendor", "is_billable", "tax_amount",
        "tax_rate", "reimbursable", "approval_status", "approved_by",
        "approved_at", "invoice_id", "created_at", "updated_at",
    ],
    "Users": [
        "id", "name", "email", "password_hash", "role", "is_active",
        "email_verified", "last_login", "failed_login_attempts",
        "locked_until", "created_at", "updated_at",
    ],
    "Client_Communications": [
        "id", "client_id", "project_id", "subject", "message", "sender",
        "sender_name", "sender_email", "status", "thread_id", "created_at",
    ],
    "Client_Activities": ["id", "client_id", "activity", "metadata", "timestamp"],
    "Payment_Links": [
        "id", "gateway", "url", "amount", "currency", "description",
        "invoice_id", "client_email", "client_name", "status", "expires_at",
        "allow_partial_payments", "paid_amount", "paid_at", "metadata",
        "created_at", "updated_at",
    ],
    "Payment_Reminders": [
        "id", "invoice_id", "type", "days_offset", "template", "method",
        "status", "scheduled_at", "sent_at", "created_at", "updated_at",
    ],
    "Late_Fee_Rules": [
        "id", "name", "type", "amount", "grace_period_days", "max_amount",
        "compounding_frequency", "is_active", "created_at", "updated_at",
    ],
    "Late_Fees": [
        "id", "invoice_id", "rule_id", "amount", "days_past_due", "applied_at",
        "created_at",
    ],
}


def build_default_registry() -> SchemaRegistry:
    """Registry with every business table, frozen and ready for a store."""

    registry = SchemaRegistry()
    for table, columns in DEFAULT_TABLE_COLUMNS.items():
        registry.register(table, columns)
    return registry.freeze()
