"""
Filter engine: reduce a record set with a flat AND/OR group of typed
conditions.

    group = FilterGroup.from_dict({
        "logic": "AND",
        "conditions": [
            {"field": "status", "operator": "equals", "value": "paid", "dataType": "text"},
            {"field": "amount", "operator": "gt", "value": 1000, "dataType": "number"},
        ],
    })
    paid = apply_filters(records, group)

isEmpty / isNotEmpty look at the raw value whatever the dataType. Every
other operator fails on a missing value, and a value that cannot be read
as the condition's dataType fails the condition instead of raising.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Optional

from formula.values import is_empty, record_value, to_datetime, to_number, to_text, truthy

TEXT_OPERATORS = ("equals", "notEquals", "contains", "notContains",
                  "startsWith", "endsWith", "in", "notIn")
NUMBER_OPERATORS = ("equals", "notEquals", "gt", "gte", "lt", "lte",
                    "between", "in", "notIn")
DATE_OPERATORS = ("equals", "notEquals", "gt", "gte", "lt", "lte", "between")
BOOLEAN_OPERATORS = ("equals", "notEquals")
EMPTY_OPERATORS = ("isEmpty", "isNotEmpty")

OPERATORS = TEXT_OPERATORS + ("gt", "gte", "lt", "lte", "between") + EMPTY_OPERATORS

DEFAULT_LOCALE = os.getenv("CRM_LOCALE", "he")


@dataclass
class FilterCondition:
    field: str
    operator: str
    value: Any = None
    value2: Any = None
    data_type: str = "text"

    @classmethod
    def from_dict(cls, d: dict) -> "FilterCondition":
        return cls(
            field=d["field"],
            operator=d["operator"],
            value=d.get("value"),
            value2=d.get("value2"),
            data_type=d.get("dataType", d.get("data_type", "text")),
        )

    def to_dict(self) -> dict:
        out = {
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "dataType": self.data_type,
        }
        if self.value2 is not None:
            out["value2"] = self.value2
        return out


@dataclass
class FilterGroup:
    logic: str = "AND"
    conditions: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict) -> "FilterGroup":
        return cls(
            logic=d.get("logic", "AND"),
            conditions=[c if isinstance(c, FilterCondition) else FilterCondition.from_dict(c)
                        for c in d.get("conditions") or []],
        )

    def to_dict(self) -> dict:
        return {"logic": self.logic, "conditions": [c.to_dict() for c in self.conditions]}


def as_group(group) -> Optional[FilterGroup]:
    if group is None or isinstance(group, FilterGroup):
        return group
    return FilterGroup.from_dict(group)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def get_field_value(record, path: str):
    """Field value with dotted paths ("data.amount", "client.name"); records
    that keep values under `data` resolve bare names too."""
    return record_value(record, path)


def apply_filters(records, group) -> list:
    """Records that satisfy the group. No conditions → every record."""
    group = as_group(group)
    records = list(records)
    if group is None or not group.conditions:
        return records
    combine = all if group.logic == "AND" else any
    return [r for r in records
            if combine(evaluate_condition(r, c) for c in group.conditions)]


def evaluate_condition(record, condition) -> bool:
    if isinstance(condition, dict):
        condition = FilterCondition.from_dict(condition)
    value = get_field_value(record, condition.field)
    op = condition.operator

    if op == "isEmpty":
        return is_empty(value)
    if op == "isNotEmpty":
        return not is_empty(value)
    if value is None:
        return False

    check = _CHECKS.get(condition.data_type)
    if check is None:
        return False
    return check(value, op, condition.value, condition.value2)


def _text(value, op, target, _target2) -> bool:
    text = to_text(value).lower()
    if op in ("in", "notIn"):
        if not isinstance(target, (list, tuple)):
            return False
        found = any(text == to_text(t).lower() for t in target)
        return found if op == "in" else not found

    wanted = to_text(target).lower()
    if op == "equals":
        return text == wanted
    if op == "notEquals":
        return text != wanted
    if op == "contains":
        return wanted in text
    if op == "notContains":
        return wanted not in text
    if op == "startsWith":
        return text.startswith(wanted)
    if op == "endsWith":
        return text.endswith(wanted)
    return False


def _number(value, op, target, target2) -> bool:
    n = to_number(value)
    if n is None:
        return False
    if op in ("in", "notIn"):
        if not isinstance(target, (list, tuple)):
            return False
        found = n in {to_number(t) for t in target}
        return found if op == "in" else not found

    t = to_number(target)
    if t is None:
        return False
    if op == "equals":
        return n == t
    if op == "notEquals":
        return n != t
    if op == "gt":
        return n > t
    if op == "gte":
        return n >= t
    if op == "lt":
        return n < t
    if op == "lte":
        return n <= t
    if op == "between":
        t2 = to_number(target2)
        return t2 is not None and t <= n <= t2
    return False


def _date(value, op, target, target2) -> bool:
    d, t = to_datetime(value), to_datetime(target)
    if d is None or t is None:
        return False
    if op == "equals":
        return d.date() == t.date()
    if op == "notEquals":
        return d.date() != t.date()
    if op == "gt":
        return d > t
    if op == "gte":
        return d >= t
    if op == "lt":
        return d < t
    if op == "lte":
        return d <= t
    if op == "between":
        t2 = to_datetime(target2)
        return t2 is not None and t <= d <= t2
    return False


def _boolean(value, op, target, _target2) -> bool:
    if op == "equals":
        return truthy(value) == truthy(target)
    if op == "notEquals":
        return truthy(value) != truthy(target)
    return False


_CHECKS = {
    "text": _text,
    "number": _number,
    "date": _date,
    "boolean": _boolean,
}


# ---------------------------------------------------------------------------
# Description
# ---------------------------------------------------------------------------

OPERATOR_LABELS = {
    "he": {
        "equals": "שווה ל",
        "notEquals": "לא שווה ל",
        "contains": "מכיל",
        "notContains": "לא מכיל",
        "startsWith": "מתחיל ב",
        "endsWith": "מסתיים ב",
        "gt": "גדול מ",
        "gte": "גדול או שווה ל",
        "lt": "קטן מ",
        "lte": "קטן או שווה ל",
        "between": "בין",
        "in": "אחד מ",
        "notIn": "לא אחד מ",
        "isEmpty": "ריק",
        "isNotEmpty": "לא ריק",
    },
    "en": {
        "equals": "equals",
        "notEquals": "does not equal",
        "contains": "contains",
        "notContains": "does not contain",
        "startsWith": "starts with",
        "endsWith": "ends with",
        "gt": "greater than",
        "gte": "greater than or equal to",
        "lt": "less than",
        "lte": "less than or equal to",
        "between": "between",
        "in": "one of",
        "notIn": "not one of",
        "isEmpty": "is empty",
        "isNotEmpty": "is not empty",
    },
}

_PHRASES = {
    "he": {"none": "אין פילטרים", "AND": " וגם ", "OR": " או ", "range": "{} ל-{}"},
    "en": {"none": "No filters", "AND": " and ", "OR": " or ", "range": "{} and {}"},
}


def get_filter_description(group, locale: Optional[str] = None) -> str:
    """Human-readable summary, e.g. "amount גדול מ 1000 וגם status שווה ל paid"."""
    group = as_group(group)
    locale = locale or DEFAULT_LOCALE
    if locale not in OPERATOR_LABELS:
        locale = "he"
    labels, phrases = OPERATOR_LABELS[locale], _PHRASES[locale]

    if group is None or not group.conditions:
        return phrases["none"]

    parts = []
    for c in group.conditions:
        label = labels.get(c.operator, c.operator)
        if c.operator in EMPTY_OPERATORS:
            parts.append(f"{c.field} {label}")
            continue
        if c.operator == "between":
            value = phrases["range"].format(to_text(c.value), to_text(c.value2))
        elif isinstance(c.value, (list, tuple)):
            value = ", ".join(to_text(v) for v in c.value)
        else:
            value = to_text(c.value)
        parts.append(f"{c.field} {label} {value}")

    connective = phrases["AND"] if group.logic == "AND" else phrases["OR"]
    return connective.join(parts)
