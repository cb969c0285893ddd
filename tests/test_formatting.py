"""
Tests for conditional formatting rules.
"""

import pytest

from engine.formatting import CONDITIONS, cell_style, rule_matches, rule_style
from store.models import ColumnDefinition, ConditionalFormatting


class TestRuleMatches:
    @pytest.mark.parametrize("condition, rule_value, value, expected", [
        ("gt", 1000, 1500, True),
        ("gt", 1000, "1500", True),
        ("gt", 1000, 1000, False),
        ("gte", 1000, 1000, True),
        ("lt", "10", 9.5, True),
        ("lte", 10, 11, False),
        ("eq", 5, "5", True),
        ("eq", "paid", "paid", True),
        ("neq", "paid", "open", True),
        ("neq", 5, 5.0, False),
        ("contains", "VIP", "vip client", True),
        ("contains", "gold", "silver", False),
    ])
    def test_conditions(self, condition, rule_value, value, expected):
        rule = {"condition": condition, "value": rule_value}
        assert rule_matches(rule, value) is expected

    def test_ordering_needs_numbers(self):
        assert not rule_matches({"condition": "gt", "value": 10}, "lots")
        assert not rule_matches({"condition": "lt", "value": "ten"}, 5)
        assert not rule_matches({"condition": "gte", "value": 0}, None)

    def test_unknown_condition(self):
        assert not rule_matches({"condition": "between", "value": 1}, 1)

    def test_all_conditions_known(self):
        for condition in CONDITIONS:
            rule_matches(ConditionalFormatting(condition=condition, value=1), 1)


class TestStyles:
    def test_rule_style(self):
        rule = {"condition": "gt", "value": 1, "backgroundColor": "#fee2e2",
                "textColor": "#991b1b", "fontWeight": "bold"}
        assert rule_style(rule) == {
            "backgroundColor": "#fee2e2", "color": "#991b1b", "fontWeight": "bold",
        }

    def test_only_set_properties(self):
        assert rule_style(ConditionalFormatting(condition="eq", value=1, text_color="red")) == {
            "color": "red",
        }

    def test_first_matching_rule_wins(self):
        column = ColumnDefinition.from_dict({
            "name": "balance",
            "type": "currency",
            "conditionalFormatting": [
                {"condition": "gt", "value": 1000, "backgroundColor": "red"},
                {"condition": "gt", "value": 500, "backgroundColor": "yellow"},
            ],
        })
        assert cell_style(column, 1500) == {"backgroundColor": "red"}
        assert cell_style(column, 700) == {"backgroundColor": "yellow"}
        assert cell_style(column, 100) == {}

    def test_column_dict(self):
        column = {"name": "status", "conditionalFormatting": [
            {"condition": "eq", "value": "overdue", "textColor": "red"},
        ]}
        assert cell_style(column, "overdue") == {"color": "red"}

    def test_no_rules(self):
        assert cell_style({"name": "x"}, 1) == {}
