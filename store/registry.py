"""
Schema registry checks for module column definitions.

A module's columns are an ordered list of ColumnDefinition. Before a list is
persisted, validate_columns() enforces the invariants the engine relies on:

  - column names are unique within the module (expressions resolve by bare name)
  - every column type is known
  - formula/reference/calculated columns carry exactly one of an aggregation
    (target module + column + operation) or a row-level expression
  - lookup columns carry a complete relationship whose source key is a
    different column and not an expression column (computed values are never
    stored, and lookups are resolved before expressions)

ModuleSchema is the read-only view the engine and the stores work from.
Record-level validation returns a list of error strings (empty = valid).
"""

import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

from formula import column_references, check_formula
from formula.values import is_empty, to_datetime, to_number
from store.models import AGGREGATIONS, COLUMN_TYPES, ColumnDefinition, as_column


class RegistryError(Exception):
    """Raised when a module's column definitions are invalid."""


# ---------------------------------------------------------------------------
# Column-list validation
# ---------------------------------------------------------------------------

def validate_columns(columns) -> list:
    """Validate and normalize a module's column list.

    Accepts ColumnDefinition objects or their persisted dicts and returns
    ColumnDefinition objects, with expression columns' column_references
    filled from the parsed formula. Raises RegistryError on the first problem.
    """
    result = []
    seen = set()

    for raw in columns:
        try:
            col = as_column(raw)
        except (KeyError, TypeError, AttributeError) as exc:
            raise RegistryError(f"Malformed column definition {raw!r}: {exc}") from exc

        if not col.name:
            raise RegistryError("Column name must not be empty")
        if col.name in seen:
            raise RegistryError(f"Column '{col.name}' is defined more than once")
        seen.add(col.name)

        if col.type not in COLUMN_TYPES:
            raise RegistryError(
                f"Column '{col.name}': unknown type '{col.type}' "
                f"(expected one of {', '.join(COLUMN_TYPES)})"
            )

        if col.type == "lookup":
            _check_lookup(col)
        elif col.is_computed:
            _check_formula(col)

        result.append(col)

    names = [c.name for c in result]
    for col in result:
        if col.type == "lookup":
            _check_lookup_source(col, result)
        elif col.formula is not None and col.formula.is_expression:
            col.formula.column_references = column_references(col.formula.expression, names)

    return result


def _check_formula(col: ColumnDefinition) -> None:
    meta = col.formula
    if meta is None:
        raise RegistryError(f"Column '{col.name}': {col.type} columns need formula metadata")

    if meta.is_aggregation == meta.is_expression:
        raise RegistryError(
            f"Column '{col.name}': formula must be either an aggregation "
            f"(target_module_name + target_column_key) or an expression, not "
            f"{'both' if meta.is_aggregation else 'neither'}"
        )

    if meta.is_aggregation:
        if meta.operation not in AGGREGATIONS:
            raise RegistryError(
                f"Column '{col.name}': operation must be one of "
                f"{', '.join(AGGREGATIONS)}, got {meta.operation!r}"
            )
        if meta.filter is not None and not isinstance(meta.filter, dict):
            raise RegistryError(f"Column '{col.name}': filter must be a column → value map")
        return

    # Unparsable expressions are allowed; they evaluate to null and read no
    # columns. References are filled once every column name is known.


def _check_lookup(col: ColumnDefinition) -> None:
    rel = col.relationship
    if rel is None or not rel.is_complete:
        raise RegistryError(
            f"Column '{col.name}': lookup columns need target_module_name, "
            f"target_column_key, source_column_key and display_column_key"
        )
    if rel.source_column_key == col.name:
        raise RegistryError(
            f"Column '{col.name}': a lookup cannot read its key from itself; "
            f"point source_column_key at a stored column"
        )


def _check_lookup_source(col: ColumnDefinition, columns) -> None:
    source = next((c for c in columns if c.name == col.relationship.source_column_key), None)
    if source is not None and source.formula is not None and source.formula.is_expression:
        raise RegistryError(
            f"Column '{col.name}': source_column_key '{source.name}' is an expression "
            f"column, which is computed after lookups"
        )


def formula_warnings(columns) -> list:
    """Non-fatal problems: expressions that do not parse, or that reference
    columns the module does not define."""
    cols = [as_column(c) for c in columns]
    names = {c.name for c in cols}
    warnings = []
    for col in cols:
        meta = col.formula
        if meta is None or not meta.is_expression:
            continue
        error = check_formula(meta.expression, names)
        if error:
            warnings.append(f"{col.name}: {error}")
            continue
        for ref in column_references(meta.expression, names):
            if ref not in names:
                warnings.append(f"{col.name}: unknown column '{ref}' evaluates to 0")
    return warnings


# ---------------------------------------------------------------------------
# Field validation rules
# ---------------------------------------------------------------------------

RULE_TYPES = ("required", "min", "max", "pattern", "email", "phone", "url")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^0[2-9]\d{1,2}-?\d{7}$")   # Israeli landline/mobile


@dataclass
class ValidationRule:
    """A per-field rule configured by the tenant."""

    field_name: str
    rule_type: str
    rule_value: Optional[str] = None
    error_message: str = ""
    is_active: bool = True

    def __post_init__(self):
        if self.rule_type not in RULE_TYPES:
            raise RegistryError(
                f"{self.field_name}: unknown rule type {self.rule_type!r} "
                f"(expected one of {', '.join(RULE_TYPES)})"
            )

    @classmethod
    def from_dict(cls, d: dict) -> "ValidationRule":
        return cls(
            field_name=d["field_name"],
            rule_type=d["rule_type"],
            rule_value=d.get("rule_value"),
            error_message=d.get("error_message") or f"{d['field_name']}: {d['rule_type']} check failed",
            is_active=d.get("is_active", True),
        )

    def message(self) -> str:
        return self.error_message or f"{self.field_name}: {self.rule_type} check failed"


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and (parsed.netloc or parsed.path))


def _rule_fails(rule: ValidationRule, value: Any) -> bool:
    t = rule.rule_type
    if t == "required":
        return is_empty(value)

    is_number = isinstance(value, (int, float)) and not isinstance(value, bool)
    if t in ("min", "max"):
        limit = to_number(rule.rule_value)
        if limit is None or not is_number:
            return False
        return value < limit if t == "min" else value > limit

    if not isinstance(value, str) or not value:
        return False
    if t == "pattern":
        if not rule.rule_value:
            return False
        try:
            return re.search(rule.rule_value, value) is None
        except re.error:
            return False
    if t == "email":
        return _EMAIL_RE.match(value) is None
    if t == "phone":
        return _PHONE_RE.match(re.sub(r"\s", "", value)) is None
    if t == "url":
        return not _is_url(value)
    return False


def validate_field(value: Any, rules) -> list:
    """Apply active rules to one value. Returns error messages."""
    return [r.message() for r in rules if r.is_active and _rule_fails(r, value)]


# ---------------------------------------------------------------------------
# Module schema
# ---------------------------------------------------------------------------

class ModuleSchema:
    """Ordered, validated column list of one module."""

    def __init__(self, module_name: str, columns=()):
        self.module_name = module_name
        self.columns = validate_columns(columns)
        self._by_name = {c.name: c for c in self.columns}

    def __repr__(self):
        return f"ModuleSchema({self.module_name!r}, {[c.name for c in self.columns]})"

    def __iter__(self):
        return iter(self.columns)

    def __len__(self):
        return len(self.columns)

    def column(self, name: str) -> Optional[ColumnDefinition]:
        return self._by_name.get(name)

    def computed_columns(self) -> list:
        return [c for c in self.columns if c.is_computed]

    def stored_columns(self) -> list:
        return [c for c in self.columns if not c.is_computed]

    def strip_computed(self, data: dict) -> dict:
        """Drop computed column keys; they are synthesized on read."""
        computed = {c.name for c in self.computed_columns()}
        return {k: v for k, v in (data or {}).items() if k not in computed}

    def apply_defaults(self, data: dict) -> dict:
        """Fill stored columns that are absent with their declared default."""
        out = dict(data or {})
        for col in self.stored_columns():
            if col.default is not None and col.name not in out:
                out[col.name] = col.default
        return out

    def validate_record(self, data: dict, rules=None) -> list:
        """Check required flags, numeric/date typing and tenant rules.

        Returns a list of error strings (empty = valid).
        """
        errors = []
        data = data or {}

        for col in self.stored_columns():
            value = data.get(col.name)
            if is_empty(value):
                if col.required:
                    errors.append(f"{col.name}: value is required")
                continue
            if col.is_numeric and to_number(value) is None:
                errors.append(f"{col.name}: {value!r} is not a number")
            elif col.type == "date" and to_datetime(value) is None:
                errors.append(f"{col.name}: {value!r} is not a date")

        for rule in rules or ():
            if isinstance(rule, dict):
                rule = ValidationRule.from_dict(rule)
            errors.extend(validate_field(data.get(rule.field_name), [rule]))

        return errors
