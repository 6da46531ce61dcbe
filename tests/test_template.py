# tests/test_template.py
"""Tests for sheet2chat/core/template.py"""
from sheet2chat.core.domain import InboundEvent
from sheet2chat.core.template import format_value, render, stringify


class TestRender:
    def test_simple_key(self):
        assert render("Hi {name}", {"name": "Taro"}) == "Hi Taro"

    def test_missing_key_renders_empty(self):
        assert render("Hi {name}", {}) == "Hi "

    def test_none_value_renders_empty(self):
        assert render("Hi {name}", {"name": None}) == "Hi "

    def test_nested_all_fields_path(self):
        data = {"allFields": {"氏名": "山田"}}
        assert render("Client: {allFields.氏名}", data) == "Client: 山田"

    def test_all_fields_column_containing_dots(self):
        event = InboundEvent(all_fields={"No.": "7", "金額(税込.円)": "1000"})
        data = event.template_data()
        assert render("{allFields.No.}", data) == "7"
        assert render("{allFields.金額(税込.円)}", data) == "1000"

    def test_other_dotted_paths_still_walk(self):
        assert render("{meta.source.name}", {"meta": {"source": {"name": "form"}}}) == "form"
        assert render("{allFields.missing}", {"allFields": {}}) == ""

    def test_literal_key_with_dot_wins(self):
        assert render("{No.}", {"No.": 7}) == "7"

    def test_japanese_column_key(self):
        assert render("{電話番号}", {"電話番号": "090"}) == "090"

    def test_multiple_tokens(self):
        assert render("{a}-{b}-{a}", {"a": 1, "b": 2}) == "1-2-1"

    def test_empty_template(self):
        assert render("", {"a": 1}) == ""
        assert render(None, {"a": 1}) == ""

    def test_no_tokens(self):
        assert render("plain text", {}) == "plain text"


class TestDateTimeShaping:
    def test_date_only_cell_drops_midnight(self):
        assert render("{d}", {"d": "2026/01/31 00:00:00"}) == "2026/01/31"

    def test_time_only_cell_drops_epoch_day(self):
        assert render("{t}", {"t": "1899/12/30 10:05:00"}) == "10:05"

    def test_regular_datetime_untouched(self):
        assert format_value("2026/01/31 10:05:00") == "2026/01/31 10:05:00"

    def test_non_string_passes_through(self):
        assert format_value(5) == 5


class TestStringify:
    def test_dict_is_json(self):
        assert stringify({"a": "あ"}) == '{"a": "あ"}'

    def test_bool(self):
        assert stringify(True) == "true"

    def test_number(self):
        assert stringify(3) == "3"
