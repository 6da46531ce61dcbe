# tests/test_filters.py
"""Tests for sheet2chat/core/filters.py"""
from sheet2chat.core.domain import Filter
from sheet2chat.core.filters import evaluate


class TestEvaluate:
    def test_no_filter_passes(self):
        assert evaluate(None, {"a": "1"}) is True

    def test_empty_target_column_passes(self):
        assert evaluate(Filter(target_column="", target_value="x"), {}) is True

    def test_equals_match(self):
        f = Filter(target_column="ステータス", operator="equals", target_value="承認")
        assert evaluate(f, {"ステータス": "承認"}) is True

    def test_equals_mismatch(self):
        f = Filter(target_column="ステータス", operator="equals", target_value="承認")
        assert evaluate(f, {"ステータス": "却下"}) is False

    def test_values_are_trimmed(self):
        f = Filter(target_column="A", operator="equals", target_value=" yes ")
        assert evaluate(f, {"A": "yes  "}) is True

    def test_missing_column_is_empty_string(self):
        f = Filter(target_column="A", operator="equals", target_value="")
        assert evaluate(f, {}) is True

    def test_not_equals(self):
        f = Filter(target_column="A", operator="not_equals", target_value="x")
        assert evaluate(f, {"A": "y"}) is True
        assert evaluate(f, {"A": "x"}) is False

    def test_numeric_cell_compared_as_string(self):
        f = Filter(target_column="A", operator="equals", target_value="1")
        assert evaluate(f, {"A": 1}) is True

    def test_unknown_operator_passes(self):
        f = Filter(target_column="A", operator="contains", target_value="x")
        assert evaluate(f, {"A": "y"}) is True

    def test_from_dict(self):
        f = Filter.from_dict({"targetColumn": "A", "operator": "not_equals", "targetValue": 0})
        assert f == Filter(target_column="A", operator="not_equals", target_value="0")
        assert Filter.from_dict(None) is None
