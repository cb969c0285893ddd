"""
Safe entry point for evaluating user-authored formulas.

evaluate_formula() never raises for malformed formula text: parse errors give
None, failing function calls give that function's fallback. Record-store
errors raised while resolving LOOKUP() are the one exception and propagate,
since they mean the result is unreliable rather than merely empty.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from formula.expr import EvalContext, FormulaError
from formula.parser import FormulaSyntaxError, irregular_names, parse_formula

logger = logging.getLogger(__name__)


def evaluate_formula(
    expression: str,
    column_values: dict,
    lookup_tables: Optional[dict] = None,
    lookup: Optional[Callable[[str], list]] = None,
    now: Optional[Callable[[], datetime]] = None,
    column_names=None,
):
    """Evaluate `expression` against one row's column values.

    lookup_tables maps table name → list of rows for LOOKUP(); lookup is a
    callable used for tables not found there (normally a record source's
    fetch_all). now overrides the clock behind TODAY()/NOW(). column_names
    lists the module's columns so names such as 'net-profit' read as one
    column; it defaults to the keys of column_values.
    """
    if not isinstance(expression, str) or not expression.strip():
        return None

    try:
        if column_names is None:
            column_names = column_values or ()
        names = irregular_names(column_names)
        tree = parse_formula(expression.strip(), names)
    except FormulaSyntaxError as exc:
        logger.debug("Cannot parse formula %r: %s", expression, exc)
        return None

    ctx = EvalContext(
        values=dict(column_values or {}),
        lookup=_lookup_resolver(lookup_tables, lookup),
        now=now or datetime.now,
    )
    try:
        return tree.eval(ctx)
    except (FormulaError, ValueError, TypeError, ArithmeticError, RecursionError) as exc:
        logger.warning("Formula %r failed: %s", expression, exc)
        return tree.fallback


def column_references(expression: str, column_names=()) -> list:
    """Column names a formula reads, or [] when it does not parse."""
    if not isinstance(expression, str) or not expression.strip():
        return []
    try:
        tree = parse_formula(expression.strip(), irregular_names(column_names))
        return tree.references()
    except (FormulaSyntaxError, RecursionError):
        return []


def check_formula(expression: str, column_names=()) -> Optional[str]:
    """Return a syntax error message for `expression`, or None when it parses."""
    try:
        parse_formula((expression or "").strip(), irregular_names(column_names))
    except FormulaSyntaxError as exc:
        return str(exc)
    return None


def _lookup_resolver(tables, fallback):
    if tables is None:
        return fallback

    def resolve(name):
        if name in tables:
            return tables[name]
        if fallback is not None:
            return fallback(name)
        return []

    return resolve
