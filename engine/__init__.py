"""
Evaluation engine for dynamic CRM modules: cross-module aggregation,
lookups, filtering, pivot tables, conditional formatting, and module reads
with computed columns.
"""

from engine.aggregation import aggregate, aggregate_numbers, evaluate_formula_columns
from engine.csvio import parse_csv, parse_csv_records
from engine.filters import (
    FilterCondition,
    FilterGroup,
    apply_filters,
    evaluate_condition,
    get_filter_description,
)
from engine.formatting import cell_style, rule_matches
from engine.modules import CachedSource, ModuleEvaluator
from engine.pivot import (
    PivotConfig,
    PivotResult,
    PivotValue,
    aggregate_values,
    export_pivot_to_csv,
    generate_pivot,
)
from engine.relationships import resolve_lookup, resolve_lookup_options
