"""Application configuration for the sheets-backed record store.

Values come from the process environment, optionally seeded from `.env`.
Keep this module free of Google client imports so tests can load it cheaply.
"""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import dotenv_values, load_dotenv

load_dotenv(override=False)

# Convenience: allow local runs with only `.env.example` filled.
# `.env.example` ships blank placeholders for secrets; blanks never override
# real values.
if not (os.environ.get("GOOGLE_SHEETS_ID") or os.environ.get("SPREADSHEET_ID")):
    example_path = os.path.abspath(".env.example")
    if os.path.exists(example_path):
        for k, v in (dotenv_values(example_path) or {}).items():
            if not k or v is None or v == "":
                continue
            if not os.environ.get(k):
                os.environ[k] = v


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


class AppConfig:
    """Environment-backed settings. Read once at construction."""

    def __init__(self) -> None:
        self.GOOGLE_SHEETS_ID: str = (
            os.environ.get("GOOGLE_SHEETS_ID") or os.environ.get("SPREADSHEET_ID") or ""
        )
        self.GOOGLE_SERVICE_ACCOUNT_KEY: str = os.environ.get("GOOGLE_SERVICE_ACCOUNT_KEY", "")
        self.GOOGLE_SA_FILE: str = os.environ.get("GOOGLE_SA_FILE", "")
        self.GOOGLE_HTTP_TIMEOUT_SECONDS: int = _env_int("GOOGLE_HTTP_TIMEOUT_SECONDS", 30)

        self.SHEETS_RETRY_MAX_ATTEMPTS: int = _env_int("SHEETS_RETRY_MAX_ATTEMPTS", 4)
        self.SHEETS_RETRY_BASE_DELAY: float = _env_float("SHEETS_RETRY_BASE_DELAY", 1.0)
        self.SHEETS_RETRY_MAX_DELAY: float = _env_float("SHEETS_RETRY_MAX_DELAY", 30.0)

        self.LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    def get_service_account_info(self) -> dict[str, Any]:
        """Return the service-account key as a dict.

        Inline JSON (`GOOGLE_SERVICE_ACCOUNT_KEY`) wins over a key file path.
        """

        if self.GOOGLE_SERVICE_ACCOUNT_KEY:
            try:
                return json.loads(self.GOOGLE_SERVICE_ACCOUNT_KEY)
            except json.JSONDecodeError as e:
                raise ValueError("GOOGLE_SERVICE_ACCOUNT_KEY is not valid JSON") from e

        path = os.path.expanduser(self.GOOGLE_SA_FILE) if self.GOOGLE_SA_FILE else ""
        if not path:
            raise ValueError("Missing GOOGLE_SERVICE_ACCOUNT_KEY or GOOGLE_SA_FILE")
        if not os.path.exists(path):
            raise FileNotFoundError(f"Service account file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)


config = AppConfig()
