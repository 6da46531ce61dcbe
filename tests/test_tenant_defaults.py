# tests/test_tenant_defaults.py
"""Tests for sheet2chat/core/tenant_defaults.py — default precedence and rule sanitizing."""
from conftest import make_settings
from sheet2chat.core.domain import (
    DEFAULT_BOOKING_LIST_SHEET,
    DEFAULT_STAFF_CHAT_SHEET,
    DEFAULT_STAFF_LIST_SHEET,
)
from sheet2chat.core.tenant_defaults import resolve_tenant_defaults, sanitize_rules


class TestSanitizeRules:
    def test_drops_rules_without_id(self):
        rules = sanitize_rules([{"sheetName": "a"}, {"id": "", "sheetName": "b"}, {"id": "x", "sheetName": "c"}])
        assert [r["id"] for r in rules] == ["x"]

    def test_keeps_first_of_duplicate_ids(self):
        rules = sanitize_rules([{"id": "x", "sheetName": "a"}, {"id": "x", "sheetName": "b"}])
        assert len(rules) == 1
        assert rules[0]["sheetName"] == "a"

    def test_non_list(self):
        assert sanitize_rules(None) == []
        assert sanitize_rules({"id": "x"}) == []


class TestResolveTenantDefaults:
    def test_hard_coded_defaults(self):
        config = resolve_tenant_defaults("promo", {}, make_settings())
        assert config.booking_list_sheet == DEFAULT_BOOKING_LIST_SHEET
        assert config.staff_list_sheet == DEFAULT_STAFF_LIST_SHEET
        assert config.staff_chat_sheet == DEFAULT_STAFF_CHAT_SHEET
        assert config.chatwork_token is None

    def test_tenant_value_wins(self):
        settings = make_settings(booking_list_sheet="EnvSheet")
        config = resolve_tenant_defaults("main", {"bookingListSheet": "Mine"}, settings)
        assert config.booking_list_sheet == "Mine"

    def test_environment_layer_for_legacy_promotion(self):
        settings = make_settings(chatwork_token="env-token", chatwork_room_id="42", booking_list_sheet="EnvSheet")
        config = resolve_tenant_defaults("main", {}, settings)
        assert config.chatwork_token == "env-token"
        assert config.room_id == "42"
        assert config.booking_list_sheet == "EnvSheet"
        assert config.is_legacy

    def test_environment_layer_not_inherited_by_other_promotions(self):
        settings = make_settings(chatwork_token="env-token", booking_list_sheet="EnvSheet")
        config = resolve_tenant_defaults("promo_b", {}, settings)
        assert config.chatwork_token is None
        assert config.booking_list_sheet == DEFAULT_BOOKING_LIST_SHEET
        assert not config.is_legacy

    def test_blank_tenant_value_falls_through(self):
        config = resolve_tenant_defaults("promo", {"staffListSheet": "  "}, make_settings())
        assert config.staff_list_sheet == DEFAULT_STAFF_LIST_SHEET

    def test_rules_parsed(self):
        raw = {
            "notificationRules": [
                {
                    "id": "r1",
                    "sheetName": "申込",
                    "notifications": [{"roomId": "rid123", "template": "t", "columns": ["氏名"]}],
                    "task": {"enabled": True, "roomId": "5", "assigneeIds": ["1", " 2 "],
                             "filter": {"targetColumn": "A", "targetValue": "x"}},
                },
                {"sheetName": "no id"},
            ]
        }
        config = resolve_tenant_defaults("promo", raw, make_settings())
        assert len(config.notification_rules) == 1
        rule = config.notification_rules[0]
        assert rule.notifications[0].room_id == "rid123"
        assert rule.notifications[0].columns == ("氏名",)
        assert rule.task.enabled
        assert rule.task.assignee_ids == ("1", " 2 ")
        assert rule.task.filter.target_column == "A"
        assert config.rule_sheet_names == ["申込"]

    def test_reminder_block_and_legacy_template_key(self):
        config = resolve_tenant_defaults("promo", {"reminderTemplate": "T"}, make_settings())
        assert config.reminder.enabled
        assert config.reminder.template == "T"

        config = resolve_tenant_defaults(
            "promo", {"reminder": {"enabled": False, "roomId": 7}}, make_settings()
        )
        assert not config.reminder.enabled
        assert config.reminder.room_id == "7"

    def test_admin_credentials(self):
        config = resolve_tenant_defaults(
            "promo", {"adminChatworkToken": "t", "adminChatworkRoomId": "9"}, make_settings()
        )
        assert config.admin_chatwork_token == "t"
        assert config.admin_room_id == "9"
