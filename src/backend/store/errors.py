"""Exception taxonomy for the record store.

Every error carries a stable `code`, a human message and a `details` dict with
enough context (table, record id, operation) for callers to log or present.
"""

from __future__ import annotations

from typing import Any


class SheetsStoreError(Exception):
    """Base exception for the record store."""

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class UnknownTableError(SheetsStoreError):
    """Raised when an operation names a table that was never registered."""

    def __init__(self, table: str):
        super().__init__(
            code="UNKNOWN_TABLE",
            message=f"Unknown table: {table}",
            details={"table": table},
        )
        self.table = table


class ValidationError(SheetsStoreError):
    """Raised when record data fails validation."""

    def __init__(self, table: str, errors: list[str], record_id: str | None = None):
        details: dict[str, Any] = {"table": table, "errors": list(errors)}
        if record_id:
            details["record_id"] = record_id
        super().__init__(
            code="VALIDATION_ERROR",
            message=f"Data validation failed for {table}: {', '.join(errors)}",
            details=details,
        )
        self.table = table
        self.errors = list(errors)
        self.record_id = record_id


class QueryError(SheetsStoreError):
    """Raised for malformed query predicates or aggregate requests."""

    def __init__(self, message: str, table: str | None = None):
        super().__init__(
            code="INVALID_QUERY",
            message=message,
            details={"table": table} if table else None,
        )


class RemoteError(SheetsStoreError):
    """A failed call against the remote spreadsheet service."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        status_code: int | None = None,
        table: str | None = None,
    ):
        details: dict[str, Any] = {"operation": operation}
        if status_code is not None:
            details["status_code"] = status_code
        if table:
            details["table"] = table
        super().__init__(code="REMOTE_ERROR", message=message, details=details)
        self.operation = operation
        self.status_code = status_code
        self.table = table


class RemoteTransientError(RemoteError):
    """Rate limit, network reset/timeout or 5xx. Eligible for retry."""

    retryable = True


class RemoteFatalError(RemoteError):
    """Auth, permission or malformed request. Never retried."""

    retryable = False
