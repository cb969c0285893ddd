"""
Module schema and record types.

Column definitions are persisted as JSON using the dashboard's keys
(camelCase for conditionalFormatting, columnReferences, backgroundColor...).
from_dict() accepts those and the snake_case spellings; to_dict() writes the
persisted form back.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


# Column types whose values are synthesized on read and never stored.
COMPUTED_TYPES = ("formula", "reference", "calculated", "lookup")
NUMERIC_TYPES = ("number", "currency")
COLUMN_TYPES = ("number", "text", "date", "currency") + COMPUTED_TYPES

AGGREGATIONS = ("SUM", "AVERAGE", "COUNT", "MIN", "MAX")


def _pick(d: dict, *keys, default=None):
    for k in keys:
        if k in d:
            return d[k]
    return default


@dataclass
class FormulaMetadata:
    """Either a cross-module aggregation or a row-level expression."""

    # Cross-module aggregation
    target_module_name: Optional[str] = None
    target_column_key: Optional[str] = None
    operation: Optional[str] = None       # SUM, AVERAGE, COUNT, MIN, MAX
    filter: Optional[dict] = None         # exact-match column → value

    # Row-level expression
    expression: Optional[str] = None
    column_references: list = field(default_factory=list)

    @property
    def is_aggregation(self) -> bool:
        return bool(self.target_module_name and self.target_column_key)

    @property
    def is_expression(self) -> bool:
        return bool(self.expression and self.expression.strip())

    @classmethod
    def from_dict(cls, d: dict) -> "FormulaMetadata":
        return cls(
            target_module_name=d.get("target_module_name"),
            target_column_key=d.get("target_column_key"),
            operation=d.get("operation"),
            filter=d.get("filter"),
            expression=d.get("expression"),
            column_references=list(_pick(d, "columnReferences", "column_references", default=[]) or []),
        )

    def to_dict(self) -> dict:
        out = {}
        if self.target_module_name is not None:
            out["target_module_name"] = self.target_module_name
        if self.target_column_key is not None:
            out["target_column_key"] = self.target_column_key
        if self.operation is not None:
            out["operation"] = self.operation
        if self.filter:
            out["filter"] = dict(self.filter)
        if self.expression is not None:
            out["expression"] = self.expression
            out["columnReferences"] = list(self.column_references)
        return out


@dataclass
class RelationshipMetadata:
    """Foreign key by value: source_column_key in this row matches
    target_column_key in target_module_name; display_column_key is shown."""

    target_module_name: str = ""
    target_column_key: str = ""
    source_column_key: str = ""
    display_column_key: str = ""

    @property
    def is_complete(self) -> bool:
        return all((self.target_module_name, self.target_column_key,
                    self.source_column_key, self.display_column_key))

    @classmethod
    def from_dict(cls, d: dict) -> "RelationshipMetadata":
        return cls(
            target_module_name=d.get("target_module_name", ""),
            target_column_key=d.get("target_column_key", ""),
            source_column_key=d.get("source_column_key", ""),
            display_column_key=d.get("display_column_key", ""),
        )

    def to_dict(self) -> dict:
        return {
            "target_module_name": self.target_module_name,
            "target_column_key": self.target_column_key,
            "source_column_key": self.source_column_key,
            "display_column_key": self.display_column_key,
        }


@dataclass
class ConditionalFormatting:
    """One display rule: when the cell matches `condition value`, apply the colors."""

    condition: str = "eq"   # eq, neq, gt, lt, gte, lte, contains
    value: Any = None
    background_color: Optional[str] = None
    text_color: Optional[str] = None
    font_weight: Optional[str] = None
    column_key: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, d: dict) -> "ConditionalFormatting":
        return cls(
            condition=d.get("condition", "eq"),
            value=d.get("value"),
            background_color=_pick(d, "backgroundColor", "background_color"),
            text_color=_pick(d, "textColor", "text_color"),
            font_weight=_pick(d, "fontWeight", "font_weight"),
            column_key=d.get("column_key"),
            id=d.get("id"),
        )

    def to_dict(self) -> dict:
        out = {"condition": self.condition, "value": self.value}
        if self.background_color:
            out["backgroundColor"] = self.background_color
        if self.text_color:
            out["textColor"] = self.text_color
        if self.font_weight:
            out["fontWeight"] = self.font_weight
        if self.column_key:
            out["column_key"] = self.column_key
        if self.id:
            out["id"] = self.id
        return out


@dataclass
class ColumnDefinition:
    """One column of a module."""

    name: str
    type: str = "text"
    label: str = ""
    required: bool = False
    default: Any = None
    formula: Optional[FormulaMetadata] = None
    relationship: Optional[RelationshipMetadata] = None
    conditional_formatting: list = field(default_factory=list)

    @property
    def is_computed(self) -> bool:
        return self.type in COMPUTED_TYPES

    @property
    def is_numeric(self) -> bool:
        return self.type in NUMERIC_TYPES

    @classmethod
    def from_dict(cls, d: dict) -> "ColumnDefinition":
        formula = d.get("formula")
        relationship = d.get("relationship")
        rules = _pick(d, "conditionalFormatting", "conditional_formatting", default=[]) or []
        return cls(
            name=d["name"],
            type=d.get("type", "text"),
            label=d.get("label") or d["name"],
            required=bool(d.get("required", False)),
            default=d.get("default"),
            formula=FormulaMetadata.from_dict(formula) if formula else None,
            relationship=RelationshipMetadata.from_dict(relationship) if relationship else None,
            conditional_formatting=[ConditionalFormatting.from_dict(r) for r in rules],
        )

    def to_dict(self) -> dict:
        out = {"name": self.name, "type": self.type, "label": self.label or self.name}
        if self.required:
            out["required"] = True
        if self.default is not None:
            out["default"] = self.default
        if self.formula is not None:
            out["formula"] = self.formula.to_dict()
        if self.relationship is not None:
            out["relationship"] = self.relationship.to_dict()
        if self.conditional_formatting:
            out["conditionalFormatting"] = [r.to_dict() for r in self.conditional_formatting]
        return out


def as_column(col) -> ColumnDefinition:
    """Accept a ColumnDefinition or its persisted dict."""
    if isinstance(col, ColumnDefinition):
        return col
    return ColumnDefinition.from_dict(col)


@dataclass
class Record:
    """One row of a module. `data` holds stored values only."""

    id: str
    module_name: str
    data: dict = field(default_factory=dict)
    tenant: Optional[str] = None
    entry_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def get(self, key: str, default=None):
        return self.data.get(key, default)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "module_name": self.module_name,
            "tenant": self.tenant,
            "entry_date": self.entry_date.isoformat() if self.entry_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "data": dict(self.data),
        }
