from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from src.backend.store.row_codec import (
    a1_range,
    decode_row,
    decode_value,
    encode_row,
    encode_value,
    format_timestamp,
    is_blank_row,
    parse_datetime,
    sheet_title_ref,
)
from src.backend.store.schema_registry import build_default_registry
from src.backend.store.validator import Validator


def test_sheet_title_ref_quotes_when_needed() -> None:
    assert sheet_title_ref("Time_Entries") == "Time_Entries"
    assert sheet_title_ref("My Sheet") == "'My Sheet'"
    assert sheet_title_ref("Bob's") == "'Bob''s'"


def test_a1_range() -> None:
    assert a1_range("Projects", "J") == "Projects!A:J"
    assert a1_range("Projects", "J", 5) == "Projects!A5:J5"
    assert a1_range("Projects", "J", 2, 9) == "Projects!A2:J9"


def test_encode_value() -> None:
    assert encode_value(None) == ""
    assert encode_value(True) == "TRUE"
    assert encode_value(False) == "FALSE"
    assert encode_value(1000) == "1000"
    assert encode_value(1000.0) == "1000"
    assert encode_value(12.5) == "12.5"
    assert encode_value(float("nan")) == ""
    assert encode_value(date(2024, 1, 31)) == "2024-01-31"
    assert encode_value(datetime(2024, 1, 31, 8, 0, 0, 123456, tzinfo=timezone.utc)) == "2024-01-31T08:00:00.123Z"
    assert encode_value(["a", "b"]) == '["a","b"]'
    assert encode_value({"k": 1}) == '{"k":1}'
    assert encode_value("plain") == "plain"


def test_encode_row_orders_by_columns_and_drops_unknown_fields() -> None:
    row = encode_row({"name": "X", "id": "1", "extra": "ignored"}, ["id", "name", "budget"])
    assert row == ["1", "X", ""]


def test_parse_and_format_timestamp() -> None:
    dt = parse_datetime("2024-03-01T10:20:30.456Z")
    assert dt == datetime(2024, 3, 1, 10, 20, 30, 456000, tzinfo=timezone.utc)
    assert format_timestamp(dt) == "2024-03-01T10:20:30.456Z"
    assert parse_datetime("2024-03-01").tzinfo is not None
    assert parse_datetime("not a date") is None
    assert parse_datetime("") is None


@pytest.mark.parametrize(
    "column,raw,expected",
    [
        ("budget", "1000", 1000.0),
        ("amount", "12.5abc", 12.5),
        ("estimated_hours", "n/a", 0.0),
        ("tax_rate", "-3", -3.0),
        ("is_active", "TRUE", True),
        ("is_active", "no", False),
        ("reimbursable", "FALSE", False),
        ("start_date", "2024-01-01", "2024-01-01"),
        ("created_at", "2024-01-01T00:00:00+00:00", "2024-01-01T00:00:00.000Z"),
        ("due_date", "someday", "someday"),
        ("tags", '["a","b"]', ["a", "b"]),
        ("tags", "a, b", ["a", "b"]),
        ("metadata", '{"k": 1}', {"k": 1}),
        ("metadata", "{broken", "{broken"),
        ("name", "Alpha", "Alpha"),
        ("name", "", None),
    ],
)
def test_decode_value(column: str, raw: str, expected: object) -> None:
    assert decode_value(column, raw) == expected


def test_decode_row_pads_short_rows() -> None:
    record = decode_row(["p1", "Alpha"], ["id", "name", "budget", "status"])
    assert record == {"id": "p1", "name": "Alpha", "budget": None, "status": None}


def test_decode_row_drops_extra_cells() -> None:
    record = decode_row(["p1", "Alpha", "surplus"], ["id", "name"])
    assert record == {"id": "p1", "name": "Alpha"}


def test_round_trip_preserves_values() -> None:
    columns = ["id", "name", "budget", "is_active", "start_date", "tags", "line_items"]
    record = {
        "id": "abc",
        "name": "Website",
        "budget": 2500.0,
        "is_active": True,
        "start_date": "2024-02-01",
        "tags": ["web", "design"],
        "line_items": [{"desc": "Design", "qty": 2}],
    }
    assert decode_row(encode_row(record, columns), columns) == record


def test_is_blank_row() -> None:
    assert is_blank_row([])
    assert is_blank_row(["", "  ", None])
    assert not is_blank_row(["", "x"])


_TS = "2024-01-01T00:00:00.000Z"

# One complete, valid record per business table, written in the decoded
# shape: numeric-hinted columns as floats, everything else numeric as text.
SAMPLE_RECORDS: dict[str, dict] = {
    "Projects": {
        "id": "p1", "name": "Website", "client_id": "c1", "status": "active",
        "start_date": "2024-01-01", "end_date": "2024-03-31", "budget": 1000.0,
        "description": "Marketing site", "created_at": _TS, "updated_at": _TS,
    },
    "Tasks": {
        "id": "t1", "project_id": "p1", "title": "Wireframes", "description": None,
        "status": "todo", "priority": "high", "due_date": "2024-01-15",
        "estimated_hours": 4.0, "actual_hours": 3.5, "created_at": _TS,
        "updated_at": _TS,
    },
    "Clients": {
        "id": "c1", "name": "Acme", "email": "billing@acme.in", "phone": "+919876543210",
        "address": "1 Main Road", "city": "Mumbai", "state": "MH", "country": "IN",
        "postal_code": "400001", "gstin": "27AAPFU0939F1ZV", "pan": "ABCDE1234F",
        "payment_terms": "Net 30", "default_currency": "INR",
        "billing_address": "1 Main Road", "shipping_address": None,
        "contact_person": "Asha", "website": "https://acme.in", "notes": None,
        "is_active": True, "portal_access_enabled": False,
        "portal_password_hash": None, "last_portal_login": None,
        "company_name": "Acme Pvt Ltd", "created_at": _TS, "updated_at": _TS,
    },
    "Invoices": {
        "id": "i1", "invoice_number": "INV-001", "client_id": "c1", "project_id": "p1",
        "line_items": [{"description": "Design", "quantity": 2, "rate": 500}],
        "subtotal": "1000", "tax_breakdown": {"cgst": 90, "sgst": 90},
        "total_amount": 1180.0, "currency": "INR", "status": "sent",
        "issue_date": "2024-01-01", "due_date": "2024-01-31", "payment_terms": "Net 30",
        "notes": None, "terms_conditions": "Pay on time", "is_recurring": False,
        "recurring_frequency": None, "next_invoice_date": None,
        "payment_status": "pending", "paid_amount": 0.0, "payment_date": None,
        "payment_method": None, "late_fee_applied": False,
        "discount_percentage": "0", "discount_amount": 0.0,
        "created_at": _TS, "updated_at": _TS,
    },
    "Time_Entries": {
        "id": "te1", "task_id": "t1", "project_id": "p1", "hours": 2.5,
        "description": "Layout", "date": "2024-01-02", "created_at": _TS,
    },
    "Expenses": {
        "id": "e1", "project_id": "p1", "category": "software", "amount": 1000.0,
        "currency": "USD", "description": "Licence", "date": "2024-01-03",
        "receipt_url": "https://example.com/r/1", "vendor": "Figma",
        "is_billable": True, "tax_amount": 180.0, "tax_rate": 18.0,
        "reimbursable": False, "approval_status": "approved", "approved_by": "u1",
        "approved_at": _TS, "invoice_id": None, "created_at": _TS, "updated_at": _TS,
    },
    "Users": {
        "id": "u1", "name": "Admin", "email": "admin@acme.in", "password_hash": "x$hash",
        "role": "admin", "is_active": True, "email_verified": True, "last_login": None,
        "failed_login_attempts": "0", "locked_until": None,
        "created_at": _TS, "updated_at": _TS,
    },
    "Client_Communications": {
        "id": "m1", "client_id": "c1", "project_id": "p1", "subject": "Kickoff",
        "message": "Hello", "sender": "client", "sender_name": "Asha",
        "sender_email": "asha@acme.in", "status": "unread", "thread_id": "th1",
        "created_at": _TS,
    },
    "Client_Activities": {
        "id": "a1", "client_id": "c1", "activity": "login",
        "metadata": {"ip": "10.0.0.1"}, "timestamp": "2024-01-01 09:00",
    },
    "Payment_Links": {
        "id": "pl1", "gateway": "razorpay", "url": "https://pay.example.com/pl1",
        "amount": 1180.0, "currency": "INR", "description": "INV-001",
        "invoice_id": "i1", "client_email": "billing@acme.in", "client_name": "Acme",
        "status": "active", "expires_at": _TS, "allow_partial_payments": False,
        "paid_amount": 0.0, "paid_at": None, "metadata": {"source": "invoice"},
        "created_at": _TS, "updated_at": _TS,
    },
    "Payment_Reminders": {
        "id": "r1", "invoice_id": "i1", "type": "before_due", "days_offset": "-3",
        "template": "gentle", "method": "email", "status": "scheduled",
        "scheduled_at": _TS, "sent_at": None, "created_at": _TS, "updated_at": _TS,
    },
    "Late_Fee_Rules": {
        "id": "lr1", "name": "Standard", "type": "percentage", "amount": 2.0,
        "grace_period_days": "7", "max_amount": 500.0, "compounding_frequency": "monthly",
        "is_active": True, "created_at": _TS, "updated_at": _TS,
    },
    "Late_Fees": {
        "id": "lf1", "invoice_id": "i1", "rule_id": "lr1", "amount": 23.6,
        "days_past_due": "5", "applied_at": _TS, "created_at": _TS,
    },
}


def test_sample_records_cover_every_registered_table() -> None:
    registry = build_default_registry()
    assert set(SAMPLE_RECORDS) == set(registry.tables())
    for name, sample in SAMPLE_RECORDS.items():
        assert list(sample) == list(registry.get(name).columns), name


@pytest.mark.parametrize("table", sorted(SAMPLE_RECORDS))
def test_valid_record_round_trips_for_every_table(table: str) -> None:
    registry = build_default_registry()
    columns = registry.get(table).columns
    record = SAMPLE_RECORDS[table]

    result = Validator(schemas=registry).validate(table, record)
    assert result.ok, result.errors
    assert decode_row(encode_row(record, columns), columns) == record
