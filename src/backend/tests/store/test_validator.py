from __future__ import annotations

from pathlib import Path

import pytest

from src.backend.store.errors import UnknownTableError, ValidationError
from src.backend.store.schema_registry import build_default_registry
from src.backend.store.validator import (
    CheckRegistry,
    Validator,
    is_valid_gstin,
    is_valid_pan,
    is_valid_phone,
    sanitize_data,
)


@pytest.fixture
def validator() -> Validator:
    return Validator(schemas=build_default_registry())


def test_sanitize_data_trims_and_strips_angle_brackets() -> None:
    data = {"name": "  <b>Acme</b> ", "tags": [" x ", "<y>"], "budget": 10}
    assert sanitize_data(data) == {"name": "bAcme/b", "tags": ["x", "y"], "budget": 10}


def test_format_helpers() -> None:
    assert is_valid_phone("+91 98765-43210")
    assert not is_valid_phone("phone")
    assert is_valid_gstin("27AAPFU0939F1ZV")
    assert not is_valid_gstin("27AAPFU0939F1Z")
    assert is_valid_pan("ABCDE1234F")
    assert not is_valid_pan("abcde1234f")


def test_valid_project_passes(validator: Validator) -> None:
    result = validator.validate(
        "Projects",
        {"name": "Site", "client_id": "c1", "status": "active", "start_date": "2024-01-01", "end_date": "2024-02-01"},
    )
    assert result.ok
    assert result.warnings == []


def test_required_fields(validator: Validator) -> None:
    result = validator.validate("Projects", {"name": "  "})
    assert "name is required" in result.errors
    assert "client_id is required" in result.errors


def test_enum_membership(validator: Validator) -> None:
    result = validator.validate("Projects", {"name": "x", "client_id": "c", "status": "archived"})
    assert not result.ok
    assert any("Invalid status 'archived'" in e for e in result.errors)


def test_date_order(validator: Validator) -> None:
    result = validator.validate(
        "Projects",
        {"name": "x", "client_id": "c", "start_date": "2024-03-01", "end_date": "2024-02-01"},
    )
    assert result.errors == ["Start date cannot be after end date"]


def test_generic_format_checks(validator: Validator) -> None:
    result = validator.validate(
        "Clients",
        {
            "name": "Acme",
            "email": "not-an-email",
            "phone": "call me",
            "default_currency": "XYZ",
            "website": "ftp://acme",
            "country": "IND",
            "pan": "bad",
        },
    )
    assert "Invalid email format for email" in result.errors
    assert "Invalid phone number format" in result.errors
    assert "Invalid currency code for default_currency" in result.errors
    assert "Invalid URL format for website" in result.errors
    assert "Invalid PAN format" in result.errors
    assert "Country code must be 2 characters (ISO 3166-1 alpha-2)" in result.errors


def test_non_negative_numbers(validator: Validator) -> None:
    result = validator.validate("Projects", {"name": "x", "client_id": "c", "budget": -5})
    assert result.errors == ["budget cannot be negative"]

    result = validator.validate("Projects", {"name": "x", "client_id": "c", "budget": "lots"})
    assert result.errors == ["budget must be a valid number"]


def test_time_entry_hours_bounds(validator: Validator) -> None:
    base = {"task_id": "t", "project_id": "p"}
    assert validator.validate("Time_Entries", {**base, "hours": 8}).ok
    assert validator.validate("Time_Entries", {**base, "hours": 0}).errors == ["Hours must be greater than 0"]
    assert validator.validate("Time_Entries", {**base, "hours": 25}).errors == [
        "Hours cannot exceed 24 in a single entry"
    ]


def test_invoice_total_not_less_than_subtotal(validator: Validator) -> None:
    result = validator.validate(
        "Invoices",
        {"invoice_number": "INV-1", "client_id": "c", "subtotal": 100, "total_amount": 90, "currency": "INR"},
    )
    assert result.errors == ["Total amount cannot be less than subtotal"]


def test_expense_tax_rate_range(validator: Validator) -> None:
    result = validator.validate(
        "Expenses", {"project_id": "p", "category": "travel", "amount": 10, "tax_rate": 120}
    )
    assert result.errors == ["Tax rate must be between 0 and 100"]


def test_ratio_warning_does_not_fail(validator: Validator) -> None:
    result = validator.validate(
        "Tasks", {"title": "t", "project_id": "p", "estimated_hours": 2, "actual_hours": 5}
    )
    assert result.ok
    assert result.warnings == ["Actual hours significantly exceed estimated hours"]


def test_unknown_fields_warn(validator: Validator) -> None:
    result = validator.validate("Projects", {"name": "x", "client_id": "c", "colour": "red"})
    assert result.ok
    assert result.warnings == ["Unknown field 'colour' is not stored in Projects"]


def test_unknown_table_raises(validator: Validator) -> None:
    with pytest.raises(UnknownTableError):
        validator.validate("Nope", {})


def test_table_without_rules_only_runs_generic_checks() -> None:
    v = Validator()
    assert v.validate("Late_Fees", {"amount": 5}).ok
    assert not v.validate("Late_Fees", {"amount": -5}).ok


def test_assert_valid_raises_with_context(validator: Validator) -> None:
    with pytest.raises(ValidationError) as exc:
        validator.assert_valid("Projects", {"name": "x"}, record_id="p1")
    err = exc.value
    assert err.code == "VALIDATION_ERROR"
    assert err.errors == ["client_id is required"]
    assert err.record_id == "p1"
    assert err.details["table"] == "Projects"


def test_rulebook_rejects_unknown_check_type() -> None:
    rulebook = {"tables": {"Projects": {"checks": [{"type": "made_up"}]}}}
    with pytest.raises(ValueError, match="unknown check type"):
        Validator(rulebook)


def test_custom_check_registry() -> None:
    checks = CheckRegistry()

    @checks.register("no_x", severity="warning")
    def _no_x(rule: dict, record: dict) -> bool:
        return "x" in str(record.get(rule["field"], ""))

    v = Validator(
        {"tables": {"Projects": {"checks": [{"type": "no_x", "field": "name", "message": "has x"}]}}},
        checks=checks,
    )
    result = v.validate("Projects", {"name": "xylophone"})
    assert result.ok
    assert result.warnings == ["has x"]
    assert checks.implemented_types() == {"no_x"}


def test_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "rules.yaml"
    path.write_text(
        "tables:\n  Projects:\n    required: [owner]\n",
        encoding="utf-8",
    )
    v = Validator.from_yaml(path)
    assert v.rules_for("Projects").required == ("owner",)
    assert v.rules_for("Tasks").required == ()


@pytest.mark.parametrize("budget", [float("inf"), float("-inf"), float("nan"), "NaN", "Infinity"])
def test_non_finite_numbers_are_rejected(validator: Validator, budget: object) -> None:
    result = validator.validate("Projects", {"name": "x", "client_id": "c", "budget": budget})
    assert result.errors == ["budget must be a valid number"]


def test_numeric_columns_outside_non_negative_list_must_parse(validator: Validator) -> None:
    base = {"project_id": "p", "category": "travel", "amount": 10}
    assert validator.validate("Expenses", {**base, "tax_rate": "NaN"}).errors == [
        "tax_rate must be a valid number"
    ]
    assert validator.validate("Expenses", {**base, "tax_rate": "eighteen"}).errors == [
        "tax_rate must be a valid number"
    ]
    assert validator.validate("Expenses", {**base, "tax_rate": "18"}).ok
