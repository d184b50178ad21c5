"""
Cell value normalization and the derived search string.

Every write path (bulk ingestion, single-cell update, column population)
goes through these helpers so stored values stay canonical:

  - single_line_text: newlines collapsed to spaces, clamped to MAX_CELL_CHARS
  - long_text:        clamped to MAX_CELL_CHARS
  - number:           canonical decimal string ("" for empty, None if invalid)
"""

import re
from typing import Mapping, Optional

MAX_CELL_CHARS = 100_000
MAX_NUMBER_DECIMALS = 8

SINGLE_LINE_TEXT = "single_line_text"
LONG_TEXT = "long_text"
NUMBER = "number"

_NUMBER_RE = re.compile(r"^([+-]?)(\d*)(?:\.(\d*))?$")
_NEWLINE_RE = re.compile(r"\r?\n|\r")

# Shape accepted by the SQL numeric extraction guard; canonical numbers always match it.
NUMERIC_SHAPE_PATTERN = r"^-?[0-9]+(\.[0-9]+)?$"
_NUMERIC_SHAPE_RE = re.compile(NUMERIC_SHAPE_PATTERN)


def coerce_column_type(value: Optional[str]) -> str:
    """Unknown or missing column types are treated as single-line text."""
    return value if value in (LONG_TEXT, NUMBER) else SINGLE_LINE_TEXT


def clamp_text(value: str) -> str:
    return value[:MAX_CELL_CHARS]


def normalize_single_line(value: str) -> str:
    return clamp_text(_NEWLINE_RE.sub(" ", value))


def normalize_long_text(value: str) -> str:
    return clamp_text(value)


def normalize_number(value: str) -> Optional[str]:
    """
    Canonicalize a decimal string.

    "007.50" -> "7.5", "-0" -> "0", ".5" -> "0.5", "" -> "".
    Returns None for anything that is not a plain decimal or carries more
    than MAX_NUMBER_DECIMALS fractional digits.
    """
    return canonical_decimal(value, MAX_NUMBER_DECIMALS)


def canonical_decimal(value: str, max_decimals: Optional[int] = None) -> Optional[str]:
    trimmed = value.strip()
    if not trimmed:
        return ""
    match = _NUMBER_RE.match(trimmed)
    if not match:
        return None
    sign, integer, decimals = match.group(1), match.group(2), match.group(3) or ""
    if not integer and not decimals:
        return None
    if max_decimals is not None and len(decimals) > max_decimals:
        return None
    integer = integer.lstrip("0") or "0"
    decimals = decimals.rstrip("0")
    if integer == "0" and not decimals:
        return "0"
    body = f"{integer}.{decimals}" if decimals else integer
    return f"-{body}" if sign == "-" else body


def normalize_cell(column_type: Optional[str], value: str) -> Optional[str]:
    """Normalize a raw cell value for its column type; None means invalid."""
    column_type = coerce_column_type(column_type)
    if column_type == LONG_TEXT:
        return normalize_long_text(value)
    if column_type == NUMBER:
        return normalize_number(value)
    return normalize_single_line(value)


def is_numeric_shape(value: str) -> bool:
    return bool(_NUMERIC_SHAPE_RE.match(value))


def build_search_text(data: Optional[Mapping[str, object]]) -> str:
    """Space-joined concatenation of the non-empty, trimmed cell values."""
    parts = []
    for value in (data or {}).values():
        text = str(value if value is not None else "").strip()
        if text:
            parts.append(text)
    return " ".join(parts)
