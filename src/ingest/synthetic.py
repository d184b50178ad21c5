"""
Deterministic synthetic cell values.

A value depends only on (column type, row number, column position), so the
set-based SQL path and the batched Python path produce identical rows:

  number            (row_num * 97 + offset * 13) % 500001 - 250000
  single_line_text  "<prefix> <noun>"
  long_text         "<action> <object> for <context>. Status: <outcome>."

Each lexicon word is picked with ((row_num * m) + offset * (m + 5)) % len,
using a different multiplier m per lexicon.
"""

from __future__ import annotations

from typing import Dict, List, Sequence

from sqlalchemy import Integer, Text, case, cast, literal
from sqlalchemy.sql import ColumnElement

from src.rows.directory import ColumnMeta
from src.rows.values import LONG_TEXT, NUMBER, coerce_column_type

TEXT_PREFIXES = (
    "Atlas", "Beacon", "Cedar", "Delta", "Ember", "Falcon", "Glacier", "Harbor", "Iris", "Juniper",
    "Kite", "Lumen", "Meridian", "Nova", "Orbit", "Pioneer", "Quartz", "River", "Summit", "Timber",
)
TEXT_NOUNS = (
    "Plan", "Project", "Request", "Review", "Task", "Record", "Ticket", "Asset", "Milestone", "Brief",
    "Update", "Proposal", "Rollout", "Audit", "Checklist",
)
LONG_ACTIONS = (
    "Review", "Confirm", "Prepare", "Coordinate", "Validate", "Schedule", "Update", "Document",
    "Track", "Finalize",
)
LONG_OBJECTS = (
    "handoff details", "delivery scope", "support notes", "launch checklist", "risk summary",
    "resource plan", "timeline changes", "approval path", "onboarding steps", "status blockers",
)
LONG_CONTEXTS = (
    "the growth team", "operations", "customer success", "finance", "engineering", "marketing",
    "product", "support", "leadership", "partners",
)
LONG_OUTCOMES = (
    "pending review", "ready for handoff", "blocked by dependency", "on schedule", "in progress",
    "needs approval", "awaiting feedback", "validated", "scheduled", "complete",
)

# (lexicon, multiplier)
_SINGLE_LINE_PARTS = ((TEXT_PREFIXES, 19), (TEXT_NOUNS, 23))
_LONG_TEXT_PARTS = ((LONG_ACTIONS, 7), (LONG_OBJECTS, 11), (LONG_CONTEXTS, 13), (LONG_OUTCOMES, 17))

NUMBER_ROW_FACTOR = 97
NUMBER_OFFSET_FACTOR = 13
NUMBER_MODULUS = 500_001
NUMBER_SHIFT = 250_000


def _lexicon_index(row_num: int, column_offset: int, multiplier: int, size: int) -> int:
    return (row_num * multiplier + column_offset * (multiplier + 5)) % size


def _pick(values: Sequence[str], row_num: int, column_offset: int, multiplier: int) -> str:
    return values[_lexicon_index(row_num, column_offset, multiplier, len(values))]


# ── Python generation ─────────────────────────────────────────────────────────

def synthetic_value(column_type: str, row_num: int, column_offset: int) -> str:
    column_type = coerce_column_type(column_type)
    if column_type == NUMBER:
        n = (row_num * NUMBER_ROW_FACTOR + column_offset * NUMBER_OFFSET_FACTOR) % NUMBER_MODULUS
        return str(n - NUMBER_SHIFT)
    if column_type == LONG_TEXT:
        action, obj, context, outcome = (
            _pick(values, row_num, column_offset, m) for values, m in _LONG_TEXT_PARTS
        )
        return f"{action} {obj} for {context}. Status: {outcome}."
    prefix, noun = (_pick(values, row_num, column_offset, m) for values, m in _SINGLE_LINE_PARTS)
    return f"{prefix} {noun}"


def synthetic_row(columns: Sequence[ColumnMeta], row_num: int) -> Dict[str, str]:
    """Cell values for 1-based `row_num`, keyed by column id in column order."""
    return {col.id: synthetic_value(col.type, row_num, offset) for offset, col in enumerate(columns)}


# ── SQL generation ────────────────────────────────────────────────────────────

def _lexicon_expr(values: Sequence[str], row_num: ColumnElement, column_offset: int, multiplier: int) -> ColumnElement:
    index = (row_num * multiplier + column_offset * (multiplier + 5)) % len(values)
    return case({i: literal(v, Text) for i, v in enumerate(values)}, value=index)


def synthetic_value_expr(column_type: str, row_num: ColumnElement, column_offset: int) -> ColumnElement:
    """SQL expression producing the same text as synthetic_value for each series row."""
    column_type = coerce_column_type(column_type)
    if column_type == NUMBER:
        n = (cast(row_num, Integer) * NUMBER_ROW_FACTOR + column_offset * NUMBER_OFFSET_FACTOR) % NUMBER_MODULUS
        return cast(n - NUMBER_SHIFT, Text)
    if column_type == LONG_TEXT:
        action, obj, context, outcome = (
            _lexicon_expr(values, row_num, column_offset, m) for values, m in _LONG_TEXT_PARTS
        )
        return (
            action.concat(" ").concat(obj).concat(" for ").concat(context)
            .concat(". Status: ").concat(outcome).concat(".")
        )
    prefix, noun = (_lexicon_expr(values, row_num, column_offset, m) for values, m in _SINGLE_LINE_PARTS)
    return prefix.concat(" ").concat(noun)


def synthetic_value_exprs(columns: Sequence[ColumnMeta], row_num: ColumnElement) -> List[ColumnElement]:
    return [synthetic_value_expr(col.type, row_num, offset) for offset, col in enumerate(columns)]
