"""
Pivot tables over a record set.

Without column dimensions the records are grouped by the row fields and
each group gets one cell per value aggregation, plus grand totals:

    generate_pivot(records, PivotConfig(rows=["status"],
                                        values=[PivotValue("amount", "SUM")]))
    # headers: ["status", "SUM(amount)"]
    # rows:    [{"status": "paid", "SUM(amount)": 300}, ...]
    # totals:  {"SUM(amount)": 450}

With column dimensions every row additionally spreads over the sorted
distinct column keys, one cell per (column key, value) named
"<column key>|<label or field>", with per-cell-column totals.

Composite keys join the dimension values with "|".
"""

import logging
import statistics
from dataclasses import dataclass, field
from typing import Any, Optional

from engine.csvio import write_csv
from engine.filters import apply_filters, as_group
from formula.values import numeric_values, record_value, to_text

logger = logging.getLogger(__name__)

AGGREGATIONS = ("SUM", "AVG", "COUNT", "MIN", "MAX", "MEDIAN")

KEY_SEPARATOR = "|"


@dataclass
class PivotValue:
    field: str
    aggregation: str = "SUM"
    label: Optional[str] = None

    @property
    def column_name(self) -> str:
        """Output field name in grouped (no-column) mode."""
        return self.label or f"{self.aggregation}({self.field})"

    def cell_name(self, column_key: str) -> str:
        """Output field name in full pivot mode."""
        return f"{column_key}{KEY_SEPARATOR}{self.label or self.field}"

    @classmethod
    def from_dict(cls, d: dict) -> "PivotValue":
        return cls(field=d["field"], aggregation=d.get("aggregation", "SUM"), label=d.get("label"))


@dataclass
class PivotConfig:
    rows: list = field(default_factory=list)
    values: list = field(default_factory=list)
    columns: list = field(default_factory=list)
    filters: Any = None

    def __post_init__(self):
        self.values = [v if isinstance(v, PivotValue) else PivotValue.from_dict(v)
                       for v in self.values]
        self.columns = list(self.columns or [])

    @classmethod
    def from_dict(cls, d: dict) -> "PivotConfig":
        return cls(
            rows=list(d.get("rows") or []),
            values=list(d.get("values") or []),
            columns=list(d.get("columns") or []),
            filters=d.get("filters"),
        )


@dataclass
class PivotResult:
    headers: list
    rows: list
    totals: Optional[dict] = None
    column_totals: Optional[dict] = None

    def to_dict(self) -> dict:
        out = {"headers": list(self.headers), "rows": [dict(r) for r in self.rows]}
        if self.totals is not None:
            out["totals"] = dict(self.totals)
        if self.column_totals is not None:
            out["columnTotals"] = dict(self.column_totals)
        return out


def get_field_value(record, field_name: str):
    """Direct property, then the record's `data` map, then a dotted path."""
    return record_value(record, field_name)


def aggregate_values(values, aggregation: str):
    """Aggregate one pivot cell.

    COUNT is the number of values in the cell, numeric or not, i.e. the row
    count. This differs on purpose from the cross-module aggregation COUNT
    (engine.aggregation), which counts numeric values only. The other
    aggregations use the numeric values and give 0 when there are none.
    """
    values = list(values)
    if aggregation == "COUNT":
        return len(values)

    numbers = numeric_values(values)
    if not numbers:
        return 0
    if aggregation == "SUM":
        return sum(numbers)
    if aggregation == "AVG":
        return sum(numbers) / len(numbers)
    if aggregation == "MIN":
        return min(numbers)
    if aggregation == "MAX":
        return max(numbers)
    if aggregation == "MEDIAN":
        return statistics.median(numbers)
    logger.warning("Unknown pivot aggregation %r; returning 0", aggregation)
    return 0


def _key_parts(record, fields) -> list:
    return [to_text(get_field_value(record, f)) for f in fields]


def generate_pivot(records, config) -> PivotResult:
    if isinstance(config, dict):
        config = PivotConfig.from_dict(config)

    records = list(records)
    group = as_group(config.filters)
    if group is not None and group.conditions:
        records = apply_filters(records, group)

    if not config.columns:
        return _grouped(records, config)
    return _full_pivot(records, config)


def _grouped(records, config: PivotConfig) -> PivotResult:
    groups = {}     # row key → (row parts, records)
    for record in records:
        parts = _key_parts(record, config.rows)
        key = KEY_SEPARATOR.join(parts)
        groups.setdefault(key, (parts, []))[1].append(record)

    rows = []
    totals = {}
    for parts, members in groups.values():
        row = dict(zip(config.rows, parts))
        for value in config.values:
            name = value.column_name
            cell = aggregate_values(
                (get_field_value(r, value.field) for r in members), value.aggregation
            )
            row[name] = cell
            totals[name] = totals.get(name, 0) + cell
        rows.append(row)

    headers = list(config.rows) + [v.column_name for v in config.values]
    return PivotResult(headers=headers, rows=rows, totals=totals)


def _full_pivot(records, config: PivotConfig) -> PivotResult:
    column_keys = set()
    table = {}      # row key → (row parts, {column key: records})
    for record in records:
        parts = _key_parts(record, config.rows)
        row_key = KEY_SEPARATOR.join(parts)
        col_key = KEY_SEPARATOR.join(_key_parts(record, config.columns))
        column_keys.add(col_key)
        cells = table.setdefault(row_key, (parts, {}))[1]
        cells.setdefault(col_key, []).append(record)

    sorted_keys = sorted(column_keys)

    rows = []
    column_totals = {}
    for parts, cells in table.values():
        row = dict(zip(config.rows, parts))
        for col_key in sorted_keys:
            members = cells.get(col_key, [])
            for value in config.values:
                name = value.cell_name(col_key)
                cell = aggregate_values(
                    (get_field_value(r, value.field) for r in members), value.aggregation
                )
                row[name] = cell
                column_totals[name] = column_totals.get(name, 0) + cell
        rows.append(row)

    headers = list(config.rows) + [
        value.cell_name(col_key) for col_key in sorted_keys for value in config.values
    ]
    return PivotResult(headers=headers, rows=rows, column_totals=column_totals)


def export_pivot_to_csv(result) -> str:
    """Render a pivot result as CSV: headers, one line per row, then the
    totals line (grand totals, or column totals for a full pivot)."""
    if isinstance(result, dict):
        result = PivotResult(
            headers=result["headers"],
            rows=result["rows"],
            totals=result.get("totals"),
            column_totals=result.get("columnTotals"),
        )

    lines = [result.headers]
    for row in result.rows:
        lines.append([row.get(h) for h in result.headers])

    totals = result.totals if result.totals is not None else result.column_totals
    if totals:
        lines.append([totals.get(h) for h in result.headers])
    return write_csv(lines)
