"""
Tests for the filter engine: typed conditions, AND/OR groups, empty checks
and the localized description.
"""

from datetime import datetime

import pytest

from engine.filters import (
    OPERATOR_LABELS,
    OPERATORS,
    FilterCondition,
    FilterGroup,
    apply_filters,
    evaluate_condition,
    get_field_value,
    get_filter_description,
)
from store.models import Record


def cond(field, operator, value=None, data_type="text", value2=None):
    return {"field": field, "operator": operator, "value": value,
            "value2": value2, "dataType": data_type}


# ===========================================================================
# Groups
# ===========================================================================

class TestGroups:
    RECORDS = [{"a": 1, "b": 2}, {"a": 1, "b": 5}]

    def test_and(self):
        group = {"logic": "AND", "conditions": [
            cond("a", "equals", 1, "number"),
            cond("b", "gt", 3, "number"),
        ]}
        assert apply_filters(self.RECORDS, group) == [{"a": 1, "b": 5}]

    def test_or_with_never_matching_condition(self):
        group = {"logic": "OR", "conditions": [
            cond("a", "equals", 1, "number"),
            cond("b", "gt", 3, "number"),
            cond("c", "equals", "nope"),
        ]}
        assert apply_filters(self.RECORDS, group) == self.RECORDS

    def test_no_conditions_is_identity(self):
        assert apply_filters(self.RECORDS, {"logic": "AND", "conditions": []}) == self.RECORDS
        assert apply_filters(self.RECORDS, None) == self.RECORDS

    def test_group_objects(self):
        group = FilterGroup("AND", [FilterCondition("b", "lte", 2, data_type="number")])
        assert apply_filters(self.RECORDS, group) == [{"a": 1, "b": 2}]

    def test_round_trip(self):
        group = FilterGroup.from_dict({"logic": "OR", "conditions": [
            cond("amount", "between", 1, "number", value2=5),
        ]})
        assert FilterGroup.from_dict(group.to_dict()) == group


# ===========================================================================
# Empty checks
# ===========================================================================

class TestEmptiness:
    RECORDS = [{"x": None}, {"x": ""}, {"x": 0}, {"x": "a"}, {}, {"x": False}]

    def test_is_empty(self):
        result = apply_filters(self.RECORDS, {"logic": "AND", "conditions": [cond("x", "isEmpty")]})
        assert result == [{"x": None}, {"x": ""}, {}]

    @pytest.mark.parametrize("data_type", ["text", "number", "date", "boolean"])
    def test_partition(self, data_type):
        empty = apply_filters(self.RECORDS, {"logic": "AND",
                                             "conditions": [cond("x", "isEmpty", data_type=data_type)]})
        not_empty = apply_filters(self.RECORDS, {"logic": "AND",
                                                 "conditions": [cond("x", "isNotEmpty", data_type=data_type)]})
        assert len(empty) + len(not_empty) == len(self.RECORDS)
        assert all(r not in not_empty for r in empty)

    def test_missing_value_never_matches_other_operators(self):
        assert not evaluate_condition({}, cond("x", "notEquals", "a"))
        assert not evaluate_condition({"x": None}, cond("x", "notContains", "a"))


# ===========================================================================
# Typed comparisons
# ===========================================================================

class TestText:
    R = {"name": "Dana Levi"}

    @pytest.mark.parametrize("operator, value, expected", [
        ("equals", "dana levi", True),
        ("notEquals", "dana", True),
        ("contains", "LEVI", True),
        ("notContains", "cohen", True),
        ("startsWith", "dan", True),
        ("endsWith", "levi", True),
        ("endsWith", "dana", False),
        ("in", ["Avi", "DANA LEVI"], True),
        ("notIn", ["Avi"], True),
        ("in", "Dana Levi", False),
        ("gt", "a", False),
    ])
    def test_operators(self, operator, value, expected):
        assert evaluate_condition(self.R, cond("name", operator, value)) is expected

    def test_numbers_compare_as_text(self):
        assert evaluate_condition({"n": 1500.0}, cond("n", "equals", "1500"))


class TestNumber:
    R = {"amount": "1200"}

    @pytest.mark.parametrize("operator, value, expected", [
        ("equals", 1200, True),
        ("notEquals", 1200, False),
        ("gt", 1000, True),
        ("gte", "1200", True),
        ("lt", 1000, False),
        ("lte", 1200.0, True),
        ("in", [1, "1200"], True),
        ("notIn", [1, 2], True),
        ("contains", 12, False),
    ])
    def test_operators(self, operator, value, expected):
        assert evaluate_condition(self.R, cond("amount", operator, value, "number")) is expected

    def test_between_inclusive(self):
        assert evaluate_condition(self.R, cond("amount", "between", 1200, "number", value2=1300))
        assert evaluate_condition(self.R, cond("amount", "between", 1000, "number", value2=1200))
        assert not evaluate_condition(self.R, cond("amount", "between", 1000, "number"))

    def test_non_numeric_value_is_false(self):
        assert not evaluate_condition({"amount": "n/a"}, cond("amount", "gt", 1, "number"))
        assert not evaluate_condition({"amount": "n/a"}, cond("amount", "notEquals", 1, "number"))


class TestDate:
    R = {"due": "2025-03-15T18:30:00"}

    def test_equals_same_day(self):
        assert evaluate_condition(self.R, cond("due", "equals", "2025-03-15", "date"))
        assert evaluate_condition(self.R, cond("due", "notEquals", "2025-03-16", "date"))

    def test_ordering_uses_timestamp(self):
        assert evaluate_condition(self.R, cond("due", "gt", "2025-03-15", "date"))
        assert evaluate_condition(self.R, cond("due", "lte", datetime(2025, 3, 15, 18, 30), "date"))

    def test_between(self):
        assert evaluate_condition(self.R, cond("due", "between", "2025-03-01", "date",
                                               value2="2025-03-31"))

    def test_invalid_dates_are_false(self):
        assert not evaluate_condition({"due": "whenever"}, cond("due", "equals", "2025-03-15", "date"))
        assert not evaluate_condition(self.R, cond("due", "gt", "soon", "date"))

    def test_day_first_format(self):
        assert evaluate_condition({"due": "15/03/2025"}, cond("due", "equals", "2025-03-15", "date"))


class TestBoolean:
    def test_truthy_coercion(self):
        assert evaluate_condition({"done": True}, cond("done", "equals", True, "boolean"))
        assert evaluate_condition({"done": 0}, cond("done", "equals", False, "boolean"))
        assert evaluate_condition({"done": "yes"}, cond("done", "notEquals", False, "boolean"))

    def test_other_operators(self):
        assert not evaluate_condition({"done": True}, cond("done", "gt", False, "boolean"))

    def test_unknown_data_type(self):
        assert not evaluate_condition({"x": 1}, cond("x", "equals", 1, "currency"))


# ===========================================================================
# Field access
# ===========================================================================

class TestFieldAccess:
    def test_dotted_path(self):
        assert get_field_value({"client": {"name": "Dana"}}, "client.name") == "Dana"
        assert get_field_value({"data": {"amount": 5}}, "data.amount") == 5

    def test_record_objects(self):
        rec = Record(id="1", module_name="invoices", data={"amount": 5})
        assert get_field_value(rec, "amount") == 5
        assert get_field_value(rec, "data.amount") == 5
        group = {"logic": "AND", "conditions": [cond("amount", "gte", 5, "number")]}
        assert apply_filters([rec], group) == [rec]


# ===========================================================================
# Description
# ===========================================================================

class TestDescription:
    def test_hebrew_default(self):
        group = {"logic": "AND", "conditions": [
            cond("amount", "gt", 1000, "number"),
            cond("status", "isEmpty"),
        ]}
        assert get_filter_description(group, "he") == "amount גדול מ 1000 וגם status ריק"

    def test_english(self):
        group = {"logic": "OR", "conditions": [
            cond("amount", "between", 1, "number", value2=5),
            cond("tag", "in", ["a", "b"]),
        ]}
        assert get_filter_description(group, "en") == "amount between 1 and 5 or tag one of a, b"

    def test_no_conditions(self):
        assert get_filter_description({"logic": "AND", "conditions": []}, "en") == "No filters"
        assert get_filter_description(None, "he") == "אין פילטרים"

    def test_unknown_locale_falls_back_to_hebrew(self):
        group = {"logic": "AND", "conditions": [cond("x", "isNotEmpty")]}
        assert get_filter_description(group, "fr") == "x לא ריק"

    @pytest.mark.parametrize("locale", sorted(OPERATOR_LABELS))
    def test_every_operator_has_a_label(self, locale):
        assert set(OPERATORS) <= set(OPERATOR_LABELS[locale])
