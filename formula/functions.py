"""
Built-in formula functions.

Each function is registered by name in formula.expr.FUNCTIONS together with
its arity and the value it degrades to on bad input. Adding a function is a
single register_function() call; the evaluator never changes.
"""

import math
from decimal import ROUND_HALF_UP, Decimal

from dateutil.relativedelta import relativedelta

from formula.expr import FormulaError, register_function
from formula.values import (
    is_empty,
    loose_equals,
    numeric_values,
    record_value,
    to_datetime,
    to_number,
    to_text,
    truthy,
)

# DATEDIFF uses fixed-length months and years, not calendar arithmetic.
DAYS_PER_MONTH = 30.44
DAYS_PER_YEAR = 365.25
_SECONDS_PER_DAY = 86400


def _number(value, what="number"):
    n = to_number(value)
    if n is None:
        raise FormulaError(f"{value!r} is not a {what}")
    return n


def _date(value):
    d = to_datetime(value)
    if d is None:
        raise FormulaError(f"{value!r} is not a date")
    return d


# ---------------------------------------------------------------------------
# Conditionals (lazy: only the chosen branch is evaluated)
# ---------------------------------------------------------------------------

def _if(args, ctx):
    condition, then_, else_ = args
    if truthy(condition.eval(ctx)):
        return then_.eval(ctx)
    return else_.eval(ctx)


def _switch(args, ctx):
    subject = args[0].eval(ctx)
    cases = args[1:]
    for i in range(0, len(cases) - 1, 2):
        if loose_equals(subject, cases[i].eval(ctx)):
            return cases[i + 1].eval(ctx)
    if len(cases) % 2 == 1:
        return cases[-1].eval(ctx)
    return None


def _coalesce(args, ctx):
    for arg in args:
        value = arg.eval(ctx)
        if not is_empty(value):
            return value
    return None


# ---------------------------------------------------------------------------
# LOOKUP(key, "table", "keyColumn", "valueColumn")
# ---------------------------------------------------------------------------

def _lookup(args, ctx):
    key, table, key_column, value_column = args
    for name in (table, key_column, value_column):
        if not isinstance(name, str) or not name:
            raise FormulaError("LOOKUP table and column names must be text")
    if ctx.lookup is None:
        return None
    for record in ctx.lookup(table) or []:
        if loose_equals(record_value(record, key_column), key):
            return record_value(record, value_column)
    return None


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def _now(args, ctx):
    return ctx.now()


def _datediff(args, ctx):
    first, second = _date(args[0]), _date(args[1])
    unit = to_text(args[2]).lower()
    days = (first - second).total_seconds() / _SECONDS_PER_DAY
    if unit == "days":
        return math.floor(days)
    if unit == "months":
        return math.floor(days / DAYS_PER_MONTH)
    if unit == "years":
        return math.floor(days / DAYS_PER_YEAR)
    return 0


def _dateadd(args, ctx):
    start = _date(args[0])
    amount = int(_number(args[1], "number of units"))
    unit = to_text(args[2]).lower()
    if unit == "days":
        return start + relativedelta(days=amount)
    if unit == "months":
        return start + relativedelta(months=amount)
    if unit == "years":
        return start + relativedelta(years=amount)
    return start


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------

def _concat(args, ctx):
    return "".join(to_text(v) for v in args)


def _upper(args, ctx):
    return to_text(args[0]).upper()


def _lower(args, ctx):
    return to_text(args[0]).lower()


def _len(args, ctx):
    return len(to_text(args[0]))


def _isblank(args, ctx):
    return is_empty(args[0])


# ---------------------------------------------------------------------------
# Math
# ---------------------------------------------------------------------------

def _round(args, ctx):
    number = _number(args[0])
    decimals = int(_number(args[1])) if len(args) > 1 else 0
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(repr(number)).quantize(quantum, rounding=ROUND_HALF_UP))


def _abs(args, ctx):
    return abs(_number(args[0]))


def _floor(args, ctx):
    return math.floor(_number(args[0]))


def _ceil(args, ctx):
    return math.ceil(_number(args[0]))


def _min(args, ctx):
    numbers = numeric_values(args)
    if not numbers:
        raise FormulaError("MIN() needs at least one number")
    return min(numbers)


def _max(args, ctx):
    numbers = numeric_values(args)
    if not numbers:
        raise FormulaError("MAX() needs at least one number")
    return max(numbers)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

register_function("IF", _if, min_args=3, max_args=3, lazy=True, fallback=None)
register_function("SWITCH", _switch, min_args=3, lazy=True, fallback=None)
register_function("COALESCE", _coalesce, min_args=1, lazy=True, fallback=None)
register_function("LOOKUP", _lookup, min_args=4, max_args=4, fallback=None)
register_function("TODAY", _now, max_args=0, fallback=None)
register_function("NOW", _now, max_args=0, fallback=None)
register_function("DATEDIFF", _datediff, min_args=3, max_args=3, fallback=0)
register_function("DATEADD", _dateadd, min_args=3, max_args=3, fallback=None)
register_function("CONCAT", _concat, fallback="")
register_function("UPPER", _upper, min_args=1, max_args=1, fallback="")
register_function("LOWER", _lower, min_args=1, max_args=1, fallback="")
register_function("LEN", _len, min_args=1, max_args=1, fallback=0)
register_function("ISBLANK", _isblank, min_args=1, max_args=1, fallback=False)
register_function("ROUND", _round, min_args=1, max_args=2, fallback=0)
register_function("ABS", _abs, min_args=1, max_args=1, fallback=0)
register_function("FLOOR", _floor, min_args=1, max_args=1, fallback=0)
register_function("CEIL", _ceil, min_args=1, max_args=1, fallback=0)
register_function("MIN", _min, min_args=1, fallback=0)
register_function("MAX", _max, min_args=1, fallback=0)
