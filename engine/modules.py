"""
Module reads with computed columns filled in.

ModuleEvaluator is what a table view or report calls: it reads a module's
stored records and schema, then synthesizes every computed column on
detached copies. Nothing computed is ever written back to the store.

Per row, columns are computed in this order:
  1. aggregation columns (formula/reference): one value per module read,
     shared by every row
  2. lookup columns, keyed on stored, aggregation or earlier lookup values
  3. expression columns, in declared order, each seeing the stored values
     and every column computed before it

Within one call, fetches go through a CachedSource so a module referenced
by several columns (or by LOOKUP() in every row) is read once.
"""

import dataclasses
import logging
from datetime import datetime
from typing import Callable, Optional

from engine.aggregation import evaluate_formula_columns
from engine.filters import apply_filters
from engine.formatting import cell_style
from engine.pivot import generate_pivot
from engine.relationships import resolve_lookup, resolve_lookup_options
from formula import evaluate_formula

logger = logging.getLogger(__name__)


class CachedSource:
    """Request-scoped memo of fetch_all() by module name."""

    def __init__(self, store):
        self.store = store
        self._records = {}

    def fetch_all(self, module_name: str) -> list:
        if module_name not in self._records:
            self._records[module_name] = self.store.fetch_all(module_name)
        return self._records[module_name]


class ModuleEvaluator:
    """Reads modules from a RecordStore with computed columns evaluated."""

    def __init__(self, store, use_cache: bool = True,
                 now: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.use_cache = use_cache
        self.now = now

    def _source(self):
        return CachedSource(self.store) if self.use_cache else self.store

    # ── Rows ─────────────────────────────────────────────────────────

    def records(self, module_name: str, source=None) -> list:
        """All records of a module, newest first, with computed columns."""
        source = source or self._source()
        schema = self.store.get_schema(module_name)
        stored = source.fetch_all(module_name)
        aggregates = evaluate_formula_columns(source, schema.columns)
        rows = [self.evaluate_record(r, schema, source, aggregates) for r in stored]
        logger.debug("Evaluated %d %s records", len(rows), module_name)
        return rows

    def evaluate_record(self, record, schema, source=None, aggregates=None):
        """Copy of `record` whose data also holds the computed columns."""
        source = source or self._source()
        if aggregates is None:
            aggregates = evaluate_formula_columns(source, schema.columns)

        values = schema.strip_computed(record.data)
        computed = schema.computed_columns()
        names = [c.name for c in schema.columns] + list(values)

        for col in computed:
            if col.name in aggregates:
                values[col.name] = aggregates[col.name]

        for col in computed:
            if col.type == "lookup":
                rel = col.relationship
                values[col.name] = resolve_lookup(source, rel, values.get(rel.source_column_key))

        for col in computed:
            meta = col.formula
            if col.type != "lookup" and meta is not None and meta.is_expression:
                values[col.name] = evaluate_formula(
                    meta.expression, values, lookup=source.fetch_all, now=self.now,
                    column_names=names,
                )

        return dataclasses.replace(record, data=values)

    def styles(self, record, schema) -> dict:
        """{column name: style} for the cells of an evaluated record that
        match a conditional formatting rule."""
        out = {}
        for col in schema.columns:
            if col.conditional_formatting:
                style = cell_style(col, record.data.get(col.name))
                if style:
                    out[col.name] = style
        return out

    # ── Derived views ────────────────────────────────────────────────

    def lookup_options(self, module_name: str) -> dict:
        """{lookup column: [{"value", "label"}]} for a module's lookup columns."""
        source = self._source()
        schema = self.store.get_schema(module_name)
        return {
            col.name: resolve_lookup_options(source, col.relationship)
            for col in schema.computed_columns()
            if col.type == "lookup"
        }

    def filtered(self, module_name: str, group) -> list:
        return apply_filters(self.records(module_name), group)

    def pivot(self, module_name: str, config):
        return generate_pivot(self.records(module_name), config)
