"""Google Sheets transport (service-account based).

Goals
- Keep every network call to the Sheets API in this module.
- Translate client failures once, at this boundary, into
  `RemoteTransientError` (retryable) or `RemoteFatalError`.

Retry is not done here; the record store wraps each primitive in its retry
policy. This module does not know about schemas or records.
"""

from __future__ import annotations

import errno
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Literal

from src.backend.common.config.app_config import config
from src.backend.store.errors import (
    RemoteError,
    RemoteFatalError,
    RemoteTransientError,
)

logger = logging.getLogger(__name__)

SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"

ErrorClass = Literal["retryable", "fatal"]

_RETRYABLE_ERRNOS = {errno.ECONNRESET, errno.ETIMEDOUT, errno.ECONNABORTED, errno.EPIPE}


def http_status(err: BaseException) -> int | None:
    """Best-effort HTTP status of a client error (googleapiclient HttpError or similar)."""

    status = getattr(err, "status_code", None)
    if status is None:
        resp = getattr(err, "resp", None)
        status = getattr(resp, "status", None) if resp is not None else None
    if status is None:
        status = getattr(err, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def classify_error(err: BaseException) -> ErrorClass:
    """Classify a failed call.

    Retryable: 429, any 5xx, connection resets and timeouts.
    Fatal: every other 4xx (auth, permission, bad request, not found) and
    anything unrecognised.
    """

    if isinstance(err, RemoteError):
        return "retryable" if err.retryable else "fatal"

    status = http_status(err)
    if status is not None:
        if status == 429 or status >= 500:
            return "retryable"
        return "fatal"

    if isinstance(err, (TimeoutError, ConnectionError)):
        return "retryable"
    if isinstance(err, OSError) and err.errno in _RETRYABLE_ERRNOS:
        return "retryable"
    return "fatal"


def translate_error(
    err: BaseException, *, operation: str, table: str | None = None
) -> RemoteError:
    if isinstance(err, RemoteError):
        return err
    status = http_status(err)
    message = f"Sheets {operation} failed"
    if table:
        message += f" for {table}"
    message += f": {status or type(err).__name__} {err}"
    cls = RemoteTransientError if classify_error(err) == "retryable" else RemoteFatalError
    return cls(message, operation=operation, status_code=status, table=table)


@dataclass(frozen=True, slots=True)
class SheetProperties:
    sheet_id: int
    title: str
    index: int
    row_count: int | None = None
    column_count: int | None = None


class GoogleSheetsClient:
    def __init__(
        self,
        *,
        spreadsheet_id: str,
        service_account_info: dict[str, Any] | None = None,
        timeout_seconds: int = 30,
        service: Any | None = None,
    ) -> None:
        if service is None and not service_account_info:
            raise ValueError("service_account_info is required when no service is injected")
        self._spreadsheet_id = spreadsheet_id
        self._service_account_info = service_account_info
        self._timeout_seconds = timeout_seconds
        self._injected_service = service
        # httplib2 connections are not thread-safe; build one service per thread.
        self._local = threading.local()

    @classmethod
    def from_env(cls) -> "GoogleSheetsClient":
        if not config.GOOGLE_SHEETS_ID:
            raise ValueError("Missing GOOGLE_SHEETS_ID")
        return cls(
            spreadsheet_id=config.GOOGLE_SHEETS_ID,
            service_account_info=config.get_service_account_info(),
            timeout_seconds=config.GOOGLE_HTTP_TIMEOUT_SECONDS,
        )

    @property
    def spreadsheet_id(self) -> str:
        return self._spreadsheet_id

    def _build_sheets_service(self) -> Any:
        # Lazy import so unit tests with an injected fake service do not
        # require the Google client libs.
        import httplib2
        from google.oauth2 import service_account
        from google_auth_httplib2 import AuthorizedHttp
        from googleapiclient.discovery import build

        creds = service_account.Credentials.from_service_account_info(
            self._service_account_info,
            scopes=[SHEETS_SCOPE],
        )
        http = AuthorizedHttp(creds, http=httplib2.Http(timeout=self._timeout_seconds))
        return build("sheets", "v4", http=http, cache_discovery=False)

    def _service(self) -> Any:
        if self._injected_service is not None:
            return self._injected_service
        svc = getattr(self._local, "service", None)
        if svc is None:
            svc = self._build_sheets_service()
            self._local.service = svc
        return svc

    def _execute(
        self,
        operation: str,
        request_factory: Callable[[Any], Any],
        *,
        table: str | None = None,
    ) -> Any:
        try:
            return request_factory(self._service()).execute()
        except Exception as e:
            remote = translate_error(e, operation=operation, table=table)
            raise remote from e

    def get_range(self, a1_range: str, *, table: str | None = None) -> list[list[str]]:
        resp = self._execute(
            "values.get",
            lambda s: s.spreadsheets()
            .values()
            .get(
                spreadsheetId=self._spreadsheet_id,
                range=a1_range,
                valueRenderOption="FORMATTED_VALUE",
            ),
            table=table,
        )
        rows = (resp or {}).get("values", [])
        return rows if isinstance(rows, list) else []

    def append_rows(
        self, a1_range: str, rows: list[list[str]], *, table: str | None = None
    ) -> dict[str, Any]:
        body = {"values": rows}
        return self._execute(
            "values.append",
            lambda s: s.spreadsheets()
            .values()
            .append(
                spreadsheetId=self._spreadsheet_id,
                range=a1_range,
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body=body,
            ),
            table=table,
        )

    def update_range(
        self, a1_range: str, rows: list[list[str]], *, table: str | None = None
    ) -> dict[str, Any]:
        body = {"values": rows}
        return self._execute(
            "values.update",
            lambda s: s.spreadsheets()
            .values()
            .update(
                spreadsheetId=self._spreadsheet_id,
                range=a1_range,
                valueInputOption="RAW",
                body=body,
            ),
            table=table,
        )

    def delete_rows(
        self,
        sheet_id: int,
        start_index: int,
        end_index: int,
        *,
        table: str | None = None,
    ) -> dict[str, Any]:
        """Delete rows [start_index, end_index) by 0-based grid index.

        All following rows shift up; any row index captured before this call
        is stale afterwards.
        """

        if start_index < 0 or end_index <= start_index:
            raise ValueError(f"invalid row span [{start_index}, {end_index})")

        body = {
            "requests": [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": sheet_id,
                            "dimension": "ROWS",
                            "startIndex": start_index,
                            "endIndex": end_index,
                        }
                    }
                }
            ]
        }
        return self._execute(
            "spreadsheets.batchUpdate(deleteDimension)",
            lambda s: s.spreadsheets().batchUpdate(
                spreadsheetId=self._spreadsheet_id, body=body
            ),
            table=table,
        )

    def get_sheet_metadata(self) -> dict[str, SheetProperties]:
        """Return sheet title -> properties for every tab in the spreadsheet."""

        meta = self._execute(
            "spreadsheets.get",
            lambda s: s.spreadsheets().get(
                spreadsheetId=self._spreadsheet_id,
                fields="sheets(properties(sheetId,title,index,gridProperties(rowCount,columnCount)))",
            ),
        )
        out: dict[str, SheetProperties] = {}
        for sheet in (meta or {}).get("sheets", []):
            props = sheet.get("properties") or {}
            title = props.get("title")
            if title is None:
                continue
            grid = props.get("gridProperties") or {}
            out[title] = SheetProperties(
                sheet_id=int(props.get("sheetId", 0)),
                title=title,
                index=int(props.get("index", 0)),
                row_count=grid.get("rowCount"),
                column_count=grid.get("columnCount"),
            )
        return out

    def list_sheet_titles(self) -> list[str]:
        return list(self.get_sheet_metadata().keys())

    def add_sheet(self, title: str) -> int:
        body = {"requests": [{"addSheet": {"properties": {"title": title}}}]}
        resp = self._execute(
            "spreadsheets.batchUpdate(addSheet)",
            lambda s: s.spreadsheets().batchUpdate(
                spreadsheetId=self._spreadsheet_id, body=body
            ),
            table=title,
        )
        replies = (resp or {}).get("replies") or [{}]
        props = (replies[0].get("addSheet") or {}).get("properties") or {}
        return int(props.get("sheetId", 0))
