"""Smoke test: validate the record validation YAML rulebook.

This is intentionally lightweight and does NOT call external systems.
It catches common issues (tables missing from the schema registry, unknown
check types, fields that no table column backs) so you can iterate on the
rulebook quickly.

Run:
  python scripts/validation_rules_smoke.py

Optional env vars:
  VALIDATION_RULES_PATH  (default: src/backend/store/validation_rules.yaml)
"""

from __future__ import annotations

import os
import sys

from dotenv import load_dotenv

# Allow running as: `python scripts/validation_rules_smoke.py`
_REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

load_dotenv(override=False)


def _fail(msg: str) -> int:
    print(f"ERROR: {msg}", file=sys.stderr)
    return 1


def main() -> int:
    from src.backend.store.schema_registry import build_default_registry
    from src.backend.store.validator import DEFAULT_RULEBOOK_PATH, Validator, load_rulebook

    path = os.environ.get("VALIDATION_RULES_PATH", str(DEFAULT_RULEBOOK_PATH))
    if not os.path.exists(path):
        return _fail(f"Rulebook file not found: {path}")

    doc = load_rulebook(path)
    tables = doc.get("tables")
    if not isinstance(tables, dict) or not tables:
        return _fail("Top-level tables must be a non-empty mapping")

    registry = build_default_registry()
    unknown_tables = sorted(t for t in tables if t not in registry)
    if unknown_tables:
        return _fail(f"Rulebook names tables missing from the schema registry: {unknown_tables}")

    try:
        validator = Validator(doc, schemas=registry)
    except ValueError as e:
        return _fail(str(e))

    # Every field a rule touches should be a real column.
    unbacked: list[str] = []
    for table in tables:
        schema = registry.get(table)
        rules = validator.rules_for(table)
        fields = set(rules.required) | set(rules.enums)
        for check in rules.checks:
            fields |= {check[k] for k in ("field", "baseline", "start", "end") if k in check}
        unbacked += [f"{table}.{f}" for f in sorted(fields) if not schema.has_column(f)]

    print("✅ Rulebook parsed")
    print(f"- Path: {path}")
    print(f"- Version: {doc.get('version')}")
    print(f"- Tables with rules: {len(tables)} of {len(registry)}")
    print(f"- Check types available: {', '.join(sorted(validator.checks.implemented_types()))}")
    if unbacked:
        print("- Fields referenced by rules but not stored in any column:")
        for f in unbacked:
            print(f"  - {f}")
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
