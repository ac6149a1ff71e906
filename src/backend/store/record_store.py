"""Schema-enforced record store on top of a Google Sheets spreadsheet.

Each table is one sheet whose first row holds the column names. Records are
addressed by their `id`; the physical row is only ever resolved from a fresh
read, under the table's lock, immediately before a write. Deleting a row
shifts every following row up, so a row number captured earlier is never
reused.

This module intentionally avoids web framework types.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import timedelta
from typing import Any, Callable, Iterable, Mapping, TypeVar

from src.backend.integrations.google_sheets_client import GoogleSheetsClient
from src.backend.store.errors import (
    QueryError,
    RemoteError,
    SheetsStoreError,
)
from src.backend.store.models import (
    AggregateOp,
    BatchItemResult,
    BatchOperation,
    BatchOperationType,
    BatchResult,
    QueryOptions,
    StructureReport,
)
from src.backend.store.query_engine import (
    aggregate_values,
    coerce_query_options,
    run_query,
)
from src.backend.store.retry import RetryConfig, RetryPolicy
from src.backend.store.row_codec import (
    a1_range,
    decode_row,
    encode_row,
    format_timestamp,
    is_blank_row,
    parse_datetime,
    sheet_title_ref,
    utc_now_iso,
)
from src.backend.store.schema_registry import (
    SchemaRegistry,
    TableSchema,
    build_default_registry,
)
from src.backend.store.validator import Validator, sanitize_data

logger = logging.getLogger(__name__)

T = TypeVar("T")

HEADER_ROWS = 1
STORE_MANAGED_FIELDS = ("id", "created_at", "updated_at")

Record = dict[str, Any]


class RecordStore:
    def __init__(
        self,
        client: GoogleSheetsClient,
        *,
        registry: SchemaRegistry | None = None,
        validator: Validator | None = None,
        retry: RetryPolicy | None = None,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], str] | None = None,
    ) -> None:
        self._client = client
        self._registry = registry or build_default_registry()
        self._validator = validator or Validator(schemas=self._registry)
        self._retry = retry or RetryPolicy(RetryConfig.from_env())
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._clock = clock or utc_now_iso
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_env(cls) -> "RecordStore":
        return cls(GoogleSheetsClient.from_env())

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    @property
    def validator(self) -> Validator:
        return self._validator

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _schema(self, table: str) -> TableSchema:
        return self._registry.get(table)

    def _lock_for(self, table: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(table)
            if lock is None:
                lock = threading.Lock()
                self._locks[table] = lock
            return lock

    def _remote(self, description: str, fn: Callable[[], T], *, table: str | None = None) -> T:
        try:
            return self._retry.call(fn, description=description)
        except RemoteError as e:
            logger.error(
                "Sheets %s failed%s: %s",
                description,
                f" for {table}" if table else "",
                e,
            )
            raise

    def _fetch_rows(self, schema: TableSchema) -> list[list[str]]:
        return self._client.get_range(
            a1_range(schema.name, schema.last_column_letter),
            table=schema.name,
        )

    def _load(self, schema: TableSchema) -> list[tuple[int, Record]]:
        """Read the sheet and return (1-based row number, record) for each data row."""

        rows = self._fetch_rows(schema)
        out: list[tuple[int, Record]] = []
        for offset, row in enumerate(rows[HEADER_ROWS:]):
            if is_blank_row(row):
                continue
            out.append((offset + HEADER_ROWS + 1, decode_row(row, schema.columns)))
        return out

    def _locate(self, schema: TableSchema, record_id: str) -> tuple[int, Record] | None:
        """Rebuild the id -> row index from a fresh read and resolve one id."""

        index: dict[str, tuple[int, Record]] = {}
        for row_number, record in self._load(schema):
            rid = record.get("id")
            if rid is None:
                continue
            key = str(rid)
            if key in index:
                logger.warning(
                    "Duplicate id %s in %s (rows %d and %d); using the first",
                    key,
                    schema.name,
                    index[key][0],
                    row_number,
                )
                continue
            index[key] = (row_number, record)
        return index.get(str(record_id))

    def _next_timestamp(self, previous: Any) -> str:
        """Current time, nudged forward so it is strictly after `previous`."""

        now = self._clock()
        prev_dt = parse_datetime(previous) if isinstance(previous, str) else None
        now_dt = parse_datetime(now)
        if prev_dt is not None and now_dt is not None and now_dt <= prev_dt:
            return format_timestamp(prev_dt + timedelta(milliseconds=1))
        return now

    def _clean_input(self, data: Mapping[str, Any]) -> Record:
        cleaned = sanitize_data(dict(data))
        for name in STORE_MANAGED_FIELDS:
            cleaned.pop(name, None)
        return cleaned

    def _prepare_new(self, schema: TableSchema, data: Mapping[str, Any], now: str) -> Record:
        record = self._clean_input(data)
        self._validator.assert_valid(schema.name, record)

        record["id"] = self._id_factory()
        if schema.has_column("created_at"):
            record["created_at"] = now
        if schema.has_column("updated_at"):
            record["updated_at"] = now
        return record

    def _append_idempotent(
        self, schema: TableSchema, rows: list[list[str]], first_id: str, description: str
    ) -> None:
        """Append rows; on a retry, skip the append if an earlier attempt already landed."""

        attempted = False

        def _attempt() -> None:
            nonlocal attempted
            if attempted and self._locate(schema, first_id) is not None:
                logger.info("%s: rows from an earlier attempt are present; not re-appending", description)
                return
            attempted = True
            self._client.append_rows(
                a1_range(schema.name, schema.last_column_letter),
                rows,
                table=schema.name,
            )

        self._remote(description, _attempt, table=schema.name)

    def _sheet_id(self, table: str) -> int:
        meta = self._client.get_sheet_metadata()
        props = meta.get(table)
        if props is None:
            raise SheetsStoreError(
                "SHEET_NOT_FOUND",
                f"Sheet '{table}' does not exist; run initialize_tables()",
                {"table": table},
            )
        return props.sheet_id

    def _check_columns(self, schema: TableSchema, options: QueryOptions) -> None:
        for p in options.filters:
            if not schema.has_column(p.column):
                raise QueryError(f"Unknown column '{p.column}' in {schema.name}", table=schema.name)
        if options.sort_by and not schema.has_column(options.sort_by):
            raise QueryError(f"Unknown sort column '{options.sort_by}' in {schema.name}", table=schema.name)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, table: str, data: Mapping[str, Any]) -> str:
        schema = self._schema(table)
        record = self._prepare_new(schema, data, self._clock())
        row = encode_row(record, schema.columns)

        with self._lock_for(table):
            self._append_idempotent(schema, [row], record["id"], f"create in {table}")

        logger.debug("Created %s/%s", table, record["id"])
        return record["id"]

    def read(self, table: str, record_id: str | None = None) -> list[Record]:
        schema = self._schema(table)
        loaded = self._remote(f"read {table}", lambda: self._load(schema), table=table)
        records = [record for _, record in loaded]
        if record_id is not None:
            return [r for r in records if r.get("id") == record_id]
        return records

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> bool:
        schema = self._schema(table)
        changes = self._clean_input(patch)

        def _attempt() -> bool:
            located = self._locate(schema, record_id)
            if located is None:
                return False
            row_number, existing = located

            merged = {**existing, **changes}
            if schema.has_column("updated_at"):
                merged["updated_at"] = self._next_timestamp(existing.get("updated_at"))

            self._validator.assert_valid(table, merged, record_id=record_id)

            self._client.update_range(
                a1_range(table, schema.last_column_letter, row_number),
                [encode_row(merged, schema.columns)],
                table=table,
            )
            return True

        with self._lock_for(table):
            updated = self._remote(f"update {table}/{record_id}", _attempt, table=table)

        if updated:
            logger.debug("Updated %s/%s", table, record_id)
        return updated

    def delete(self, table: str, record_id: str) -> bool:
        schema = self._schema(table)
        attempted = False

        def _attempt() -> bool:
            nonlocal attempted
            located = self._locate(schema, record_id)
            if located is None:
                # A previous attempt that errored after the server applied it.
                return attempted
            row_number, _ = located
            sheet_id = self._sheet_id(table)
            attempted = True
            self._client.delete_rows(sheet_id, row_number - 1, row_number, table=table)
            return True

        with self._lock_for(table):
            deleted = self._remote(f"delete {table}/{record_id}", _attempt, table=table)

        if deleted:
            logger.debug("Deleted %s/%s", table, record_id)
        return deleted

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def batch_create(self, table: str, items: Iterable[Mapping[str, Any]]) -> list[str]:
        """Validate every item, then append all rows in one remote call.

        Any invalid item raises before anything is written. The append itself
        either lands as a whole or not at all.
        """

        schema = self._schema(table)
        now = self._clock()
        records = [self._prepare_new(schema, data, now) for data in items]
        if not records:
            return []

        rows = [encode_row(r, schema.columns) for r in records]
        ids = [r["id"] for r in records]

        with self._lock_for(table):
            self._append_idempotent(schema, rows, ids[0], f"batch create in {table}")

        logger.info("Batch created %d records in %s", len(ids), table)
        return ids

    def batch_update(self, operations: Iterable[BatchOperation | Mapping[str, Any]]) -> BatchResult:
        """Apply create/update operations independently, in order.

        A failing item is recorded in the result and does not roll back or stop
        the others.
        """

        result = BatchResult()
        for index, raw in enumerate(operations):
            try:
                op = raw if isinstance(raw, BatchOperation) else BatchOperation.model_validate(dict(raw))
            except (TypeError, ValueError) as e:
                result.results.append(
                    BatchItemResult(
                        index=index,
                        operation=BatchOperationType.update,
                        table=str((raw or {}).get("table", "")) if isinstance(raw, Mapping) else "",
                        ok=False,
                        error=f"Invalid batch operation: {e}",
                        error_code="INVALID_OPERATION",
                    )
                )
                continue

            try:
                if op.operation == BatchOperationType.create:
                    new_id = self.create(op.table, op.data)
                    item = BatchItemResult(index=index, operation=op.operation, table=op.table, id=new_id, ok=True)
                else:
                    found = self.update(op.table, str(op.id), op.data)
                    item = BatchItemResult(
                        index=index,
                        operation=op.operation,
                        table=op.table,
                        id=op.id,
                        ok=found,
                        error=None if found else f"Record not found: {op.id}",
                        error_code=None if found else "NOT_FOUND",
                    )
            except SheetsStoreError as e:
                logger.warning("Batch item %d (%s %s) failed: %s", index, op.operation.value, op.table, e)
                item = BatchItemResult(
                    index=index,
                    operation=op.operation,
                    table=op.table,
                    id=op.id,
                    ok=False,
                    error=e.message,
                    error_code=e.code,
                )
            result.results.append(item)

        return result

    # ------------------------------------------------------------------
    # Query / aggregate
    # ------------------------------------------------------------------

    def query(
        self, table: str, options: QueryOptions | Mapping[str, Any] | None = None
    ) -> list[Record]:
        schema = self._schema(table)
        opts = coerce_query_options(options, table=table)
        self._check_columns(schema, opts)
        return run_query(self.read(table), opts)

    def aggregate(
        self,
        table: str,
        op: AggregateOp | str,
        field: str | None = None,
        options: QueryOptions | Mapping[str, Any] | None = None,
    ) -> float | int:
        schema = self._schema(table)
        if field is not None and not schema.has_column(field):
            raise QueryError(f"Unknown column '{field}' in {table}", table=table)
        records = self.query(table, options) if options is not None else self.read(table)
        return aggregate_values(records, op, field)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def _read_header(self, schema: TableSchema) -> list[str]:
        rows = self._client.get_range(f"{sheet_title_ref(schema.name)}!1:1", table=schema.name)
        return [str(c).strip() for c in (rows[0] if rows else [])]

    def _write_header(self, schema: TableSchema) -> None:
        self._client.update_range(
            a1_range(schema.name, schema.last_column_letter, 1),
            [list(schema.columns)],
            table=schema.name,
        )

    def initialize_tables(self) -> list[str]:
        """Create every missing sheet with its header row. Safe to run repeatedly.

        Returns the titles of sheets that were created.
        """

        existing = self._remote("spreadsheets.get", self._client.get_sheet_metadata)
        created: list[str] = []

        for schema in self._registry:
            if schema.name in existing:
                header = self._remote(
                    f"read header {schema.name}", lambda: self._read_header(schema), table=schema.name
                )
                if not any(header):
                    logger.info("Writing missing header row for %s", schema.name)
                    self._remote(
                        f"write header {schema.name}", lambda: self._write_header(schema), table=schema.name
                    )
                continue

            def _add(schema: TableSchema = schema) -> None:
                if schema.name in self._client.get_sheet_metadata():
                    return
                self._client.add_sheet(schema.name)

            self._remote(f"add sheet {schema.name}", _add, table=schema.name)
            self._remote(f"write header {schema.name}", lambda: self._write_header(schema), table=schema.name)
            logger.info("Created sheet %s with %d columns", schema.name, schema.width)
            created.append(schema.name)

        return created

    def validate_table_structure(self, table: str) -> StructureReport:
        """Compare the sheet's header row against the registered schema.

        Missing sheet, missing columns or reordered columns are errors; extra
        columns are warnings.
        """

        schema = self._schema(table)
        report = StructureReport()

        existing = self._remote("spreadsheets.get", self._client.get_sheet_metadata, table=table)
        if table not in existing:
            report.errors.append(f"Sheet '{table}' does not exist")
            return report

        actual = self._remote(f"read header {table}", lambda: self._read_header(schema), table=table)

        for col in schema.columns:
            if col not in actual:
                report.errors.append(f"Missing header '{col}' in sheet '{table}'")

        for col in actual:
            if col and not schema.has_column(col):
                report.warnings.append(f"Unexpected header '{col}' in sheet '{table}'")
                logger.warning("Unexpected header '%s' in sheet '%s'", col, table)

        if not report.errors:
            for position, (expected, got) in enumerate(zip(schema.columns, actual), start=1):
                if expected != got:
                    report.errors.append(
                        f"Column {position} of '{table}' is '{got}', expected '{expected}'"
                    )
                    break

        if report.errors:
            logger.info("Structure check failed for %s: %s", table, "; ".join(report.errors))
        return report

    def validate_all_tables(self) -> StructureReport:
        report = StructureReport()
        for schema in self._registry:
            report = report.merge(self.validate_table_structure(schema.name))
        return report

    # ------------------------------------------------------------------
    # Export / maintenance
    # ------------------------------------------------------------------

    def export_table(self, table: str) -> list[Record]:
        return self.read(table)

    def export_all(self) -> dict[str, list[Record]]:
        return {schema.name: self.read(schema.name) for schema in self._registry}

    def clear_table(self, table: str, preserve_headers: bool = True) -> bool:
        """Delete every data row (and the header too unless preserve_headers)."""

        schema = self._schema(table)

        def _attempt() -> bool:
            rows = self._fetch_rows(schema)
            start = HEADER_ROWS if preserve_headers else 0
            end = len(rows)
            if end <= start:
                return False
            self._client.delete_rows(self._sheet_id(table), start, end, table=table)
            return True

        with self._lock_for(table):
            cleared = self._remote(f"clear {table}", _attempt, table=table)

        if cleared:
            logger.info("Cleared %s (preserve_headers=%s)", table, preserve_headers)
        return cleared
