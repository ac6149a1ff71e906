"""Spreadsheet-backed record store.

- `record_store.RecordStore`: CRUD, batch, query and aggregate over tables
- `schema_registry`: table -> ordered columns (the wire contract)
- `validator`: generic and per-table record rules
- `row_codec` / `query_engine`: pure helpers, no IO
"""
