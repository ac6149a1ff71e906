"""In-memory filter / sort / paginate / aggregate over decoded records.

No network calls here: every function takes already-read records. There is
no index, so a query is O(n log n); tables are bounded by what a spreadsheet
can practically hold.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Mapping, Sequence

from pydantic import ValidationError as PydanticValidationError

from src.backend.store.errors import QueryError
from src.backend.store.models import (
    AggregateOp,
    QueryOperator,
    QueryOptions,
    QueryPredicate,
    SortOrder,
)

_OPTION_KEYS = {"filters", "sort_by", "sort_order", "offset", "limit"}

# Operators accepted in the shorthand mapping form, e.g. {"date": {">=": "2024-01-01"}}.
_SHORTHAND_OPERATORS = {
    "==": QueryOperator.eq,
    "=": QueryOperator.eq,
    "!=": QueryOperator.ne,
    ">": QueryOperator.gt,
    "<": QueryOperator.lt,
    ">=": QueryOperator.gte,
    "<=": QueryOperator.lte,
}


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _as_float(v: Any) -> float | None:
    if _is_number(v):
        out = float(v)
    elif isinstance(v, str):
        try:
            out = float(v.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(out) else out


def _comparable_pair(a: Any, b: Any) -> tuple[Any, Any]:
    """Bring two values onto a common footing for ordering comparisons.

    Numbers (and numeric strings paired with numbers) compare numerically;
    everything else compares as text.
    """

    if _is_number(a) or _is_number(b):
        fa, fb = _as_float(a), _as_float(b)
        if fa is not None and fb is not None:
            return fa, fb
    return str(a), str(b)


def _equals(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, bool) or isinstance(b, bool):
        if isinstance(a, bool) and isinstance(b, bool):
            return a == b
        other = b if isinstance(a, bool) else a
        flag = a if isinstance(a, bool) else b
        return str(other).strip().lower() == ("true" if flag else "false")
    if _is_number(a) or _is_number(b):
        fa, fb = _as_float(a), _as_float(b)
        if fa is not None and fb is not None:
            return fa == fb
    return a == b


def _contains(value: Any, needle: Any) -> bool:
    if value is None:
        return False
    n = str(needle).lower()
    if isinstance(value, (list, tuple)):
        return any(n in str(item).lower() for item in value)
    return n in str(value).lower()


def matches(record: Mapping[str, Any], predicate: QueryPredicate) -> bool:
    value = record.get(predicate.column)
    op = predicate.operator
    target = predicate.value

    if op == QueryOperator.eq:
        return _equals(value, target)
    if op == QueryOperator.ne:
        return not _equals(value, target)
    if op == QueryOperator.contains:
        return _contains(value, target)
    if op == QueryOperator.in_:
        if isinstance(target, (list, tuple, set, frozenset)):
            return any(_equals(value, t) for t in target)
        return _equals(value, target)

    if value is None:
        return False
    a, b = _comparable_pair(value, target)
    if op == QueryOperator.gt:
        return a > b
    if op == QueryOperator.lt:
        return a < b
    if op == QueryOperator.gte:
        return a >= b
    if op == QueryOperator.lte:
        return a <= b
    raise QueryError(f"Unsupported operator: {op}")


def apply_filters(
    records: Iterable[Mapping[str, Any]], predicates: Sequence[QueryPredicate]
) -> list[dict[str, Any]]:
    if not predicates:
        return [dict(r) for r in records]
    return [dict(r) for r in records if all(matches(r, p) for p in predicates)]


def _sort_key(value: Any) -> tuple[int, Any]:
    if _is_number(value) or isinstance(value, bool):
        return (0, float(value))
    return (1, str(value))


def sort_records(
    records: list[dict[str, Any]], column: str, order: SortOrder = SortOrder.asc
) -> list[dict[str, Any]]:
    """Stable sort by one column; nulls always last."""

    present = [r for r in records if r.get(column) is not None]
    missing = [r for r in records if r.get(column) is None]
    present.sort(key=lambda r: _sort_key(r[column]), reverse=order == SortOrder.desc)
    return present + missing


def paginate(records: list[dict[str, Any]], offset: int = 0, limit: int | None = None) -> list[dict[str, Any]]:
    end = None if limit is None else offset + limit
    return records[offset:end]


def _shorthand_to_options(mapping: Mapping[str, Any]) -> QueryOptions:
    filters: list[QueryPredicate] = []
    for column, condition in mapping.items():
        if isinstance(condition, (list, tuple, set)):
            filters.append(QueryPredicate(column=column, operator=QueryOperator.in_, value=list(condition)))
        elif isinstance(condition, Mapping):
            for op_token, operand in condition.items():
                op = _SHORTHAND_OPERATORS.get(str(op_token))
                if op is None:
                    try:
                        op = QueryOperator(str(op_token))
                    except ValueError:
                        raise QueryError(f"Unsupported operator {op_token!r} for {column}") from None
                filters.append(QueryPredicate(column=column, operator=op, value=operand))
        else:
            filters.append(QueryPredicate(column=column, operator=QueryOperator.eq, value=condition))
    return QueryOptions(filters=filters)


def coerce_query_options(
    options: QueryOptions | Mapping[str, Any] | None, *, table: str | None = None
) -> QueryOptions:
    """Accept QueryOptions, a QueryOptions-shaped dict, or the shorthand mapping form.

    A mapping may mix both: option keys (filters, sort_by, ...) configure the
    query and every other key is a shorthand column condition ANDed with the
    explicit filters.
    """

    if options is None:
        return QueryOptions()
    if isinstance(options, QueryOptions):
        return options
    if not isinstance(options, Mapping):
        raise QueryError(f"Unsupported query options type: {type(options).__name__}", table=table)

    settings = {k: v for k, v in options.items() if k in _OPTION_KEYS}
    conditions = {k: v for k, v in options.items() if k not in _OPTION_KEYS}

    try:
        opts = QueryOptions.model_validate(settings)
        if not conditions:
            return opts
        shorthand = _shorthand_to_options(conditions)
    except PydanticValidationError as e:
        raise QueryError(f"Invalid query: {e}", table=table) from e
    return opts.model_copy(update={"filters": [*opts.filters, *shorthand.filters]})


def run_query(records: list[dict[str, Any]], options: QueryOptions) -> list[dict[str, Any]]:
    out = apply_filters(records, options.filters)
    if options.sort_by:
        out = sort_records(out, options.sort_by, options.sort_order)
    if options.offset or options.limit is not None:
        out = paginate(out, options.offset, options.limit)
    return out


def aggregate_values(
    records: Sequence[Mapping[str, Any]],
    op: AggregateOp | str,
    field: str | None = None,
) -> float | int:
    """Reduce records with count/sum/avg/min/max.

    sum/avg treat unparsable or null values as 0. min/max skip them; with no
    numeric values at all, min/max return 0.
    """

    try:
        op = AggregateOp(op)
    except ValueError:
        raise QueryError(f"Unknown aggregation operation: {op}") from None

    if op == AggregateOp.count:
        return len(records)
    if not field:
        raise QueryError(f"Field is required for {op.value} operation")

    if op in (AggregateOp.sum, AggregateOp.avg):
        total = 0.0
        for r in records:
            v = _as_float(r.get(field))
            total += v if v is not None else 0.0
        if op == AggregateOp.sum:
            return total
        return total / len(records) if records else 0.0

    numbers = [v for v in (_as_float(r.get(field)) for r in records) if v is not None]
    if not numbers:
        return 0.0
    return min(numbers) if op == AggregateOp.min else max(numbers)
