# tests/test_rule_matcher.py
"""Tests for sheet2chat/core/rule_matcher.py"""
from conftest import make_config
from sheet2chat.core.rule_matcher import match_rules


def _config():
    return make_config(notificationRules=[
        {"id": "r1", "sheetName": "申込", "notifications": [{"roomId": "1", "template": "a"}]},
        {"id": "r2", "sheetName": "ワークショップ", "notifications": []},
        {"id": "r3", "sheetName": "申込", "notifications": [{"roomId": "2", "template": "b"}]},
        {"id": "r4", "sheetName": ""},
    ])


class TestMatchRules:
    def test_all_matching_rules_in_config_order(self):
        result = match_rules(_config(), "申込")
        assert result.matched
        assert [r.id for r in result.rules] == ["r1", "r3"]

    def test_exact_match_only(self):
        assert not match_rules(_config(), "申込 ").matched
        assert not match_rules(_config(), "申").matched

    def test_diagnostic_lists_compared_sheet_names(self):
        result = match_rules(_config(), "Unknown")
        assert not result.matched
        assert result.compared_sheet_names == ("申込", "ワークショップ", "申込")
        assert result.diagnostic == (
            "No rules matched. Requested: 'Unknown', Available: [申込, ワークショップ, 申込]"
        )

    def test_rules_without_sheet_name_are_ignored(self):
        assert "" not in match_rules(_config(), "x").compared_sheet_names

    def test_none_sheet_name(self):
        result = match_rules(_config(), None)
        assert not result.matched
        assert "Requested: 'None'" in result.diagnostic

    def test_no_rules(self):
        result = match_rules(make_config(), "申込")
        assert not result.matched
        assert result.diagnostic.endswith("Available: []")
