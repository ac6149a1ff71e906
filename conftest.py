"""Pytest configuration.

Ensures local packages can be imported consistently during test collection.
"""

import sys
from pathlib import Path

import pytest


def _prepend_sys_path(path: Path) -> None:
    resolved = str(path.resolve())
    if resolved not in sys.path:
        sys.path.insert(0, resolved)


REPO_ROOT = Path(__file__).resolve().parent

# Allow importing `src.*` package explicitly.
_prepend_sys_path(REPO_ROOT)


@pytest.fixture(autouse=True)
def _isolate_sheets_env(monkeypatch):
    """Keep a developer's real spreadsheet settings out of unit tests."""
    for name in ("GOOGLE_SERVICE_ACCOUNT_KEY", "GOOGLE_SA_FILE"):
        monkeypatch.delenv(name, raising=False)
