"""
Cross-module aggregation for formula/reference columns.

    aggregate(store, "invoices", "amount", "SUM", {"status": "paid"})

fetches every record of the target module, keeps the ones matching the
exact-match filter, and aggregates the numeric values of one column.
Values that are empty or do not parse as numbers are left out of the
population rather than counted as 0, and an empty population gives 0 for
every operation so aggregates can be shown on empty tables.

COUNT here is the number of numeric values. The pivot engine's COUNT
counts every value in a cell instead (see engine.pivot.aggregate_values);
dashboards rely on both, so they are kept apart.
"""

import logging

from formula.values import numeric_values
from store.models import as_column

logger = logging.getLogger(__name__)

def stored_value(record, key: str):
    """A record's stored value for `key`, from its data map when it has one."""
    data = getattr(record, "data", None)
    if data is None and isinstance(record, dict):
        data = record.get("data", record)
    if not isinstance(data, dict):
        return None
    return data.get(key)


def _same(a, b) -> bool:
    # True == 1 in Python; a checkbox must not match a numeric filter.
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def matches_filter(record, filter) -> bool:
    """Every key/value of the exact-match filter equals the record's value."""
    return all(_same(stored_value(record, k), v) for k, v in (filter or {}).items())


def aggregate_numbers(values, operation: str):
    """Apply SUM/AVERAGE/COUNT/MIN/MAX to already-numeric values."""
    if not values:
        return 0
    if operation == "SUM":
        return sum(values)
    if operation == "AVERAGE":
        return sum(values) / len(values)
    if operation == "COUNT":
        return len(values)
    if operation == "MIN":
        return min(values)
    if operation == "MAX":
        return max(values)
    logger.warning("Unknown aggregation operation %r; returning 0", operation)
    return 0


def aggregate(source, module_name: str, column_key: str, operation: str, filter=None):
    """Aggregate one column of another module. StoreError propagates."""
    records = source.fetch_all(module_name)
    if filter:
        records = [r for r in records if matches_filter(r, filter)]
    values = numeric_values(stored_value(r, column_key) for r in records)
    return aggregate_numbers(values, operation)


def evaluate_formula_columns(source, columns) -> dict:
    """Aggregate every aggregation-type column of a schema.

    Returns {column name: value}. The value does not depend on the row, so
    callers compute it once per module read.
    """
    results = {}
    for col in map(as_column, columns):
        meta = col.formula
        if col.type == "lookup" or meta is None or not meta.is_aggregation:
            continue
        results[col.name] = aggregate(
            source,
            meta.target_module_name,
            meta.target_column_key,
            meta.operation,
            meta.filter,
        )
    return results
