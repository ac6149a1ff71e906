"""
Request/result models for the record store contract.

Route handlers build these from request payloads; the store accepts them (or
plain dicts that validate into them).
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class QueryOperator(str, Enum):
    eq = "eq"
    ne = "ne"
    gt = "gt"
    lt = "lt"
    gte = "gte"
    lte = "lte"
    contains = "contains"
    in_ = "in"


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


class AggregateOp(str, Enum):
    count = "count"
    sum = "sum"
    avg = "avg"
    min = "min"
    max = "max"


class BatchOperationType(str, Enum):
    create = "create"
    update = "update"


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------

class QueryPredicate(BaseModel):
    """One filter condition; a query ANDs all of its predicates."""

    column: str = Field(min_length=1)
    operator: QueryOperator = QueryOperator.eq
    value: Any = None

    @model_validator(mode="after")
    def _check_value(self) -> "QueryPredicate":
        if self.value is None and self.operator not in (QueryOperator.eq, QueryOperator.ne):
            raise ValueError(f"value is required for operator '{self.operator.value}'")
        return self


class QueryOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    filters: List[QueryPredicate] = Field(default_factory=list)
    sort_by: Optional[str] = None
    sort_order: SortOrder = SortOrder.asc
    offset: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(default=None, ge=0)


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

class BatchOperation(BaseModel):
    operation: BatchOperationType
    table: str = Field(min_length=1)
    id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_id(self) -> "BatchOperation":
        if self.operation == BatchOperationType.update and not self.id:
            raise ValueError("id is required for update operations")
        return self


class BatchItemResult(BaseModel):
    index: int
    operation: BatchOperationType
    table: str
    id: Optional[str] = None
    ok: bool
    error: Optional[str] = None
    error_code: Optional[str] = None


class BatchResult(BaseModel):
    results: List[BatchItemResult] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def succeeded(self) -> List[BatchItemResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[BatchItemResult]:
        return [r for r in self.results if not r.ok]


# ---------------------------------------------------------------------------
# Structure checks
# ---------------------------------------------------------------------------

class StructureReport(BaseModel):
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def merge(self, other: "StructureReport") -> "StructureReport":
        return StructureReport(
            errors=[*self.errors, *other.errors],
            warnings=[*self.warnings, *other.warnings],
        )
