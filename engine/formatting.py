"""
Conditional formatting of table cells.

A column's rules are checked in declared order and the first rule whose
condition matches the cell value decides the cell style.
"""

from formula.values import loose_equals, to_number, to_text
from store.models import ConditionalFormatting, as_column

CONDITIONS = ("eq", "neq", "gt", "lt", "gte", "lte", "contains")

_NUMERIC = {
    "gt": lambda a, b: a > b,
    "lt": lambda a, b: a < b,
    "gte": lambda a, b: a >= b,
    "lte": lambda a, b: a <= b,
}


def _rule(rule) -> ConditionalFormatting:
    if isinstance(rule, ConditionalFormatting):
        return rule
    return ConditionalFormatting.from_dict(rule)


def rule_matches(rule, value) -> bool:
    """Does `value` satisfy the rule's condition? Ordering conditions need
    both sides to be numbers; anything else simply does not match."""
    rule = _rule(rule)
    if rule.condition in _NUMERIC:
        a, b = to_number(value), to_number(rule.value)
        return a is not None and b is not None and _NUMERIC[rule.condition](a, b)
    if rule.condition == "eq":
        return loose_equals(value, rule.value)
    if rule.condition == "neq":
        return not loose_equals(value, rule.value)
    if rule.condition == "contains":
        return to_text(rule.value).lower() in to_text(value).lower()
    return False


def rule_style(rule) -> dict:
    rule = _rule(rule)
    style = {}
    if rule.background_color:
        style["backgroundColor"] = rule.background_color
    if rule.text_color:
        style["color"] = rule.text_color
    if rule.font_weight:
        style["fontWeight"] = rule.font_weight
    return style


def cell_style(column, value) -> dict:
    """Style of the first matching rule of `column`, or {}."""
    for rule in as_column(column).conditional_formatting:
        if rule_matches(rule, value):
            return rule_style(rule)
    return {}
