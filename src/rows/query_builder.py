"""
Row query compilation.

Request-side filter / sort / search specs are resolved against the table's
visible columns into a small predicate tree (Compare | Junction), and that
tree is compiled to SQLAlchemy expressions in one place.  The same tree has
a pure-Python evaluator so SQL results can be checked row by row.

Dialect notes:
  - PostgreSQL: `is` / `eq` compile to JSONB containment (`data @> {...}`)
    so the GIN index on `data` applies; text sorts use COLLATE "C".
  - SQLite: containment becomes extracted-value equality; text sorts use
    COLLATE BINARY.  Numeric extraction relies on REGEXP, which the SQLite
    dialect registers on connect.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Annotated, Any, List, Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field
from sqlalchemy import Numeric, and_, case, cast, func, not_, or_, type_coerce
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import ColumnElement, FromClause

from src.rows.values import (
    NUMBER,
    NUMERIC_SHAPE_PATTERN,
    canonical_decimal,
    coerce_column_type,
    is_numeric_shape,
)
from src.utils.cache import make_key

# ──────────────────────────────────────────────────────────────────────────────
# Request models
# ──────────────────────────────────────────────────────────────────────────────

Connector = Literal["and", "or"]
FilterOperator = Literal[
    "contains",
    "does_not_contain",
    "is",
    "is_not",
    "is_empty",
    "is_not_empty",
    "eq",
    "neq",
    "lt",
    "gt",
    "lte",
    "gte",
]

TEXT_OPERATORS = frozenset({"contains", "does_not_contain", "is", "is_not", "is_empty", "is_not_empty"})
NUMBER_OPERATORS = frozenset({"eq", "neq", "lt", "gt", "lte", "gte", "is_empty", "is_not_empty"})
VALUE_OPERATORS = frozenset(
    {"contains", "does_not_contain", "is", "is_not", "eq", "neq", "lt", "gt", "lte", "gte"}
)


class FilterCondition(BaseModel):
    """单个过滤条件"""

    type: Literal["condition"] = "condition"
    column_id: str = Field(..., description="列 ID")
    operator: FilterOperator = Field(..., description="比较运算符，需与列类型匹配")
    value: Optional[str] = Field(None, description="比较值；is_empty / is_not_empty 不需要")


class FilterGroup(BaseModel):
    """条件组，可任意嵌套"""

    type: Literal["group"] = "group"
    connector: Connector = Field("and", description="组内连接方式: and | or")
    conditions: List["FilterItem"] = Field(default_factory=list)


FilterItem = Annotated[Union[FilterCondition, FilterGroup], Field(discriminator="type")]
FilterGroup.model_rebuild()


class FilterSpec(BaseModel):
    """过滤树根节点"""

    connector: Connector = Field("and", description="顶层连接方式: and | or")
    items: List[FilterItem] = Field(default_factory=list)


class SortItem(BaseModel):
    """排序项"""

    column_id: str = Field(..., description="列 ID")
    direction: Literal["asc", "desc"] = Field("asc", description="asc | desc")


# ──────────────────────────────────────────────────────────────────────────────
# Predicate tree
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Compare:
    """One resolved condition.  `value` is trimmed text or a canonical decimal."""

    column_id: str
    operator: str
    value: str = ""
    numeric: bool = False

    def describe(self) -> dict[str, Any]:
        return {"c": self.column_id, "op": self.operator, "v": self.value, "n": self.numeric}


@dataclass(frozen=True)
class Junction:
    connector: str
    children: tuple = ()

    def describe(self) -> dict[str, Any]:
        return {"j": self.connector, "of": [c.describe() for c in self.children]}


Predicate = Union[Compare, Junction]


@dataclass(frozen=True)
class SortKey:
    column_id: str
    descending: bool = False
    numeric: bool = False

    def describe(self) -> dict[str, Any]:
        return {"c": self.column_id, "d": self.descending, "n": self.numeric}


def _resolve_condition(cond: FilterCondition, columns: Mapping[str, str]) -> Optional[Compare]:
    column_type = columns.get(cond.column_id)
    if column_type is None:
        # hidden, deleted or belongs to another table
        return None
    numeric = coerce_column_type(column_type) == NUMBER
    allowed = NUMBER_OPERATORS if numeric else TEXT_OPERATORS
    if cond.operator not in allowed:
        return None
    trimmed = (cond.value or "").strip()
    if cond.operator not in VALUE_OPERATORS:
        return Compare(cond.column_id, cond.operator, "", numeric)
    if not trimmed:
        return None
    if numeric:
        canonical = canonical_decimal(trimmed)
        if not canonical:
            return None
        return Compare(cond.column_id, cond.operator, canonical, True)
    return Compare(cond.column_id, cond.operator, trimmed, False)


def _resolve_item(item: Union[FilterCondition, FilterGroup], columns: Mapping[str, str]) -> Optional[Predicate]:
    if isinstance(item, FilterCondition):
        return _resolve_condition(item, columns)
    children = tuple(
        child for child in (_resolve_item(c, columns) for c in item.conditions) if child is not None
    )
    if not children:
        return None
    return Junction(item.connector, children)


def resolve_filter(spec: Optional[FilterSpec], columns: Mapping[str, str]) -> Optional[Junction]:
    """
    Resolve a request filter against {column_id: type} of the visible columns.

    Conditions on unknown columns, operators invalid for the column type,
    value operators with an empty value and unparseable numbers are dropped;
    groups left empty are dropped.  The root is kept as a Junction so its
    connector survives even when only one item remains.
    """
    if spec is None or not spec.items:
        return None
    children = tuple(
        child for child in (_resolve_item(item, columns) for item in spec.items) if child is not None
    )
    if not children:
        return None
    return Junction(spec.connector, children)


def prefilter_terms(root: Optional[Junction]) -> list[str]:
    """
    Terms that must appear in search_text for any match of `root`.

    Only top-level `contains` conditions under an AND root qualify: each
    must hold, and a substring of a trimmed cell value is also a substring
    of the space-joined concatenation.  OR roots and nested groups never
    contribute.
    """
    if root is None or root.connector != "and":
        return []
    return [
        child.value
        for child in root.children
        if isinstance(child, Compare) and child.operator == "contains"
    ]


def resolve_sort(items: Optional[Sequence[SortItem]], columns: Mapping[str, str]) -> list[SortKey]:
    """De-duplicate by first occurrence and drop hidden / missing columns."""
    seen: set[str] = set()
    keys: list[SortKey] = []
    for item in items or []:
        if item.column_id in seen:
            continue
        seen.add(item.column_id)
        column_type = columns.get(item.column_id)
        if column_type is None:
            continue
        keys.append(
            SortKey(
                column_id=item.column_id,
                descending=item.direction == "desc",
                numeric=coerce_column_type(column_type) == NUMBER,
            )
        )
    return keys


# ──────────────────────────────────────────────────────────────────────────────
# SQL compilation
# ──────────────────────────────────────────────────────────────────────────────

def text_value(rows: FromClause, column_id: str) -> ColumnElement:
    return func.coalesce(rows.c.data[column_id].as_string(), "")


def numeric_value(rows: FromClause, column_id: str) -> ColumnElement:
    """Decimal value of a cell, NULL when empty or not decimal-shaped."""
    raw = rows.c.data[column_id].as_string()
    return case(
        (raw.regexp_match(NUMERIC_SHAPE_PATTERN), cast(raw, Numeric(asdecimal=True))),
        else_=None,
    )


def _structural_eq(rows: FromClause, column_id: str, value: str, postgres: bool) -> ColumnElement:
    if postgres:
        return type_coerce(rows.c.data, JSONB).contains({column_id: value})
    return text_value(rows, column_id) == value


def _compile_compare(cmp: Compare, rows: FromClause, postgres: bool) -> ColumnElement:
    op = cmp.operator
    if op == "is_empty":
        return text_value(rows, cmp.column_id) == ""
    if op == "is_not_empty":
        return text_value(rows, cmp.column_id) != ""
    if op in ("is", "eq"):
        return _structural_eq(rows, cmp.column_id, cmp.value, postgres)

    if cmp.numeric:
        num = numeric_value(rows, cmp.column_id)
        rhs = Decimal(cmp.value)
        if op == "neq":
            return num != rhs
        if op == "lt":
            return num < rhs
        if op == "gt":
            return num > rhs
        if op == "lte":
            return num <= rhs
        if op == "gte":
            return num >= rhs
    else:
        txt = text_value(rows, cmp.column_id)
        if op == "contains":
            return txt.icontains(cmp.value, autoescape=True)
        if op == "does_not_contain":
            return not_(txt.icontains(cmp.value, autoescape=True))
        if op == "is_not":
            return txt != cmp.value
    raise ValueError(f"unsupported operator {op!r}")


def compile_predicate(pred: Predicate, rows: FromClause, postgres: bool) -> ColumnElement:
    if isinstance(pred, Compare):
        return _compile_compare(pred, rows, postgres)
    parts = [compile_predicate(child, rows, postgres) for child in pred.children]
    if len(parts) == 1:
        return parts[0]
    return or_(*parts) if pred.connector == "or" else and_(*parts)


def search_clause(rows: FromClause, term: str) -> ColumnElement:
    return rows.c.search_text.icontains(term, autoescape=True)


def compile_order_by(keys: Sequence[SortKey], rows: FromClause, postgres: bool) -> list[ColumnElement]:
    """
    ORDER BY clauses for `keys`, always ending in created_at, id.

    Empty / non-numeric cells sort first ascending and last descending.
    """
    clauses: list[ColumnElement] = []
    for key in keys:
        if key.numeric:
            expr = numeric_value(rows, key.column_id)
            clauses.append(expr.desc().nulls_last() if key.descending else expr.asc().nulls_first())
        else:
            expr = text_value(rows, key.column_id).collate("C" if postgres else "BINARY")
            clauses.append(expr.desc() if key.descending else expr.asc())
    clauses.append(rows.c.created_at.asc())
    clauses.append(rows.c.id.asc())
    return clauses


# ──────────────────────────────────────────────────────────────────────────────
# Python evaluation (mirrors the SQL above)
# ──────────────────────────────────────────────────────────────────────────────

def _cell_decimal(raw: str) -> Optional[Decimal]:
    return Decimal(raw) if is_numeric_shape(raw) else None


def evaluate(pred: Optional[Predicate], data: Mapping[str, Any]) -> bool:
    if pred is None:
        return True
    if isinstance(pred, Junction):
        results = (evaluate(child, data) for child in pred.children)
        return any(results) if pred.connector == "or" else all(results)

    raw = data.get(pred.column_id)
    text = "" if raw is None else str(raw)
    op = pred.operator
    if op == "is_empty":
        return text == ""
    if op == "is_not_empty":
        return text != ""
    if op in ("is", "eq"):
        return raw is not None and text == pred.value
    if pred.numeric:
        cell = _cell_decimal(text)
        if cell is None:
            return False
        rhs = Decimal(pred.value)
        return {
            "neq": cell != rhs,
            "lt": cell < rhs,
            "gt": cell > rhs,
            "lte": cell <= rhs,
            "gte": cell >= rhs,
        }[op]
    if op == "contains":
        return pred.value.lower() in text.lower()
    if op == "does_not_contain":
        return pred.value.lower() not in text.lower()
    if op == "is_not":
        return text != pred.value
    raise ValueError(f"unsupported operator {op!r}")


def matches_search(term: str, search_text: str) -> bool:
    return not term or term.lower() in (search_text or "").lower()


# ──────────────────────────────────────────────────────────────────────────────
# Resolved request
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class RowQuery:
    """A get_rows request resolved against one table's visible columns."""

    table_id: str
    sort_keys: list[SortKey] = field(default_factory=list)
    predicate: Optional[Junction] = None
    search: str = ""

    @property
    def is_filtered(self) -> bool:
        return self.predicate is not None or bool(self.search)

    @property
    def is_sorted(self) -> bool:
        return bool(self.sort_keys)

    def where(self, rows: FromClause, postgres: bool) -> list[ColumnElement]:
        clauses: list[ColumnElement] = [rows.c.table_id == self.table_id]
        if self.predicate is not None:
            clauses.append(compile_predicate(self.predicate, rows, postgres))
            for term in prefilter_terms(self.predicate):
                clauses.append(search_clause(rows, term))
        if self.search:
            clauses.append(search_clause(rows, self.search))
        return clauses

    def order_by(self, rows: FromClause, postgres: bool) -> list[ColumnElement]:
        return compile_order_by(self.sort_keys, rows, postgres)

    def fingerprint(self) -> str:
        return make_key(
            "rows",
            [k.describe() for k in self.sort_keys],
            self.predicate.describe() if self.predicate is not None else None,
            self.search.lower(),
        )

    def matches(self, data: Mapping[str, Any], search_text: str) -> bool:
        return evaluate(self.predicate, data) and matches_search(self.search, search_text)


def build_row_query(
    table_id: str,
    columns: Mapping[str, str],
    sort: Optional[Sequence[SortItem]] = None,
    filter: Optional[FilterSpec] = None,
    search: Optional[str] = None,
) -> RowQuery:
    """`columns` maps each visible column id to its type."""
    return RowQuery(
        table_id=table_id,
        sort_keys=resolve_sort(sort, columns),
        predicate=resolve_filter(filter, columns),
        search=(search or "").strip(),
    )
