"""
Value coercions shared by the formula, filter, aggregation and pivot code.

Record payloads are open attribute maps, so a column can hold a number, a
numeric string, an ISO date string, a bool or nothing at all. Every numeric,
date, text and equality rule lives here so the engines agree on them:

- to_number(v)    → float/int, or None when v is not numeric
- to_datetime(v)  → naive UTC datetime, or None when v is not a date
- to_text(v)      → display string ("" for None, 1500.0 → "1500")
- truthy(v)       → JavaScript-style truthiness of stored values
- loose_equals    → equality across number/text/date representations
- compare         → ordering across the same representations
"""

import dataclasses
import math
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from dateutil import parser as date_parser


class ValueKind(str, Enum):
    """Tag for the runtime kind of a stored or computed value."""

    NULL = "null"
    NUMBER = "number"
    TEXT = "text"
    DATE = "date"
    BOOL = "bool"
    OTHER = "other"


_MISSING = object()

# DD/MM/YYYY and DD.MM.YYYY — the formats used by CSV ingestion.
_DAY_FIRST_RE = re.compile(r"^(\d{1,2})[/.](\d{1,2})[/.](\d{4})$")


def kind_of(value) -> ValueKind:
    """Classify a value without coercing it."""
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, (int, float, Decimal)):
        return ValueKind.NUMBER
    if isinstance(value, (datetime, date)):
        return ValueKind.DATE
    if isinstance(value, str):
        return ValueKind.TEXT
    return ValueKind.OTHER


def is_empty(value) -> bool:
    """None and the empty string are 'empty'; 0 and False are not."""
    return value is None or value == ""


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def to_number(value):
    """Coerce to a finite number, or None when the value is not numeric.

    Booleans are deliberately not numbers: a checkbox column must not leak
    into SUM/AVERAGE populations.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def numeric_values(values) -> list:
    """Keep only the values that coerce to numbers, coerced."""
    result = []
    for v in values:
        n = to_number(v)
        if n is not None:
            result.append(n)
    return result


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def _naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def to_datetime(value):
    """Coerce to a naive (UTC) datetime, or None when the value is not a date.

    Accepts datetime/date objects, epoch milliseconds, DD/MM/YYYY and
    DD.MM.YYYY strings, and anything dateutil can parse.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        m = _DAY_FIRST_RE.match(text)
        if m:
            day, month, year = (int(p) for p in m.groups())
            try:
                return datetime(year, month, day)
            except ValueError:
                return None
        try:
            return _naive_utc(date_parser.parse(text))
        except (ValueError, OverflowError):
            return None
    return None


# ---------------------------------------------------------------------------
# Text / truthiness
# ---------------------------------------------------------------------------

def to_text(value) -> str:
    """Render a value the way the dashboard displays it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return ",".join(to_text(v) for v in value)
    return str(value)


def truthy(value) -> bool:
    """Truthiness of a stored value: None, False, 0, NaN and "" are false.

    Containers are true even when empty, matching how JSON payloads coming
    from the browser are interpreted.
    """
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


# ---------------------------------------------------------------------------
# Equality / ordering
# ---------------------------------------------------------------------------

def _number_or_bool(value):
    if isinstance(value, bool):
        return 1 if value else 0
    return to_number(value)


def loose_equals(left, right) -> bool:
    """Equality that tolerates "5" vs 5 and date vs ISO string."""
    if left is None or right is None:
        return left is None and right is None
    left_kind, right_kind = kind_of(left), kind_of(right)
    if ValueKind.NUMBER in (left_kind, right_kind) or ValueKind.BOOL in (left_kind, right_kind):
        a, b = _number_or_bool(left), _number_or_bool(right)
        if a is None or b is None:
            return False
        return a == b
    if ValueKind.DATE in (left_kind, right_kind):
        a, b = to_datetime(left), to_datetime(right)
        return a is not None and a == b
    return to_text(left) == to_text(right)


_ORDERINGS = {
    ">": lambda a, b: a > b,
    "<": lambda a, b: a < b,
    ">=": lambda a, b: a >= b,
    "<=": lambda a, b: a <= b,
}


def compare(left, op: str, right) -> bool:
    """Compare two values with one of > < >= <= == !=.

    Numbers compare numerically when both sides coerce, dates compare as
    timestamps when either side is a date, and two strings compare
    lexicographically. Anything else is simply false.
    """
    if op == "==":
        return loose_equals(left, right)
    if op == "!=":
        return not loose_equals(left, right)
    ordering = _ORDERINGS.get(op)
    if ordering is None:
        raise ValueError(f"Unknown comparison: {op}")
    if left is None or right is None:
        return False

    a, b = to_number(left), to_number(right)
    if a is not None and b is not None:
        return ordering(a, b)

    if ValueKind.DATE in (kind_of(left), kind_of(right)):
        da, db = to_datetime(left), to_datetime(right)
        if da is not None and db is not None:
            return ordering(da, db)
        return False

    if isinstance(left, str) and isinstance(right, str):
        return ordering(left, right)
    return False


# ---------------------------------------------------------------------------
# Record field access
# ---------------------------------------------------------------------------

def _member(obj, name):
    """Read one attribute/key from a dict or a dataclass record."""
    if isinstance(obj, dict):
        return obj.get(name, _MISSING)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        if name in {f.name for f in dataclasses.fields(obj)}:
            return getattr(obj, name)
    return _MISSING


def record_value(record, field: str):
    """Resolve a field against the flexible record shapes stores produce.

    Tries the direct property, then the nested ``data`` map, then a dotted
    path. Returns None when nothing matches.
    """
    direct = _member(record, field)
    if direct is not _MISSING:
        return direct

    data = _member(record, "data")
    if isinstance(data, dict) and field in data:
        return data[field]

    value = record
    for part in field.split("."):
        value = _member(value, part)
        if value is _MISSING or value is None:
            return None
    return value
