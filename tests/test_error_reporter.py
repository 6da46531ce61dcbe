# tests/test_error_reporter.py
"""Tests for sheet2chat/core/error_reporter.py — admin reports never raise."""
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import ADMIN_ROOM, ADMIN_TOKEN, FakeChat, make_config, make_settings
from sheet2chat.core.error_reporter import (
    ErrorReporter,
    build_error_message,
    jst_timestamp,
    summarize_payload,
)
from sheet2chat.core.errors import (
    ErrorCategory,
    TaskAssigneeError,
    classify_exception,
)
from sheet2chat.infra.chatwork_client import ChatworkAPIError
from sheet2chat.infra.config_store import ConfigStoreError, InMemoryConfigStore
from sheet2chat.infra.sheets_client import SheetsAPIError


class TestFormatting:
    def test_jst_timestamp(self):
        now = datetime(2026, 1, 31, 15, 0, tzinfo=timezone.utc)
        assert jst_timestamp(now) == "2026-02-01 00:00:00 JST"

    def test_summarize_dict(self):
        assert summarize_payload({"a": 1, "b": 2}) == "Keys: a, b"

    def test_summarize_dict_truncates_keys(self):
        payload = {k: 1 for k in "abcdefg"}
        assert summarize_payload(payload) == "Keys: a, b, c, d, e..."

    def test_summarize_string(self):
        assert summarize_payload("x" * 150) == "x" * 100

    def test_summarize_empty(self):
        assert summarize_payload(None) == ""

    def test_message_layout(self):
        now = datetime(2026, 1, 31, 0, 0, tzinfo=timezone.utc)
        message = build_error_message(
            "Case 1", ErrorCategory.STAFF_MATCH_FAILED, "no staff", 12, "Keys: a", now
        )
        assert message.splitlines() == [
            "[info][title]⚠️ System Automation Error[/title]",
            "【Timestamp】: 2026-01-31 09:00:00 JST",
            "【Case】: Case 1",
            "【Error Type】: Staff Matching Failed",
            "【Detail】: no staff",
            "【Source Row】: 12",
            "【Payload Reference】: Keys: a",
            "[/info]",
        ]

    def test_optional_lines_omitted(self):
        message = build_error_message("Case", ErrorCategory.UNKNOWN, "m")
        assert "Source Row" not in message
        assert "Payload Reference" not in message


class TestClassifyException:
    def test_dispatch_error_category(self):
        assert classify_exception(TaskAssigneeError("x")) == ErrorCategory.TASK_ASSIGNEE_INVALID

    def test_timeout(self):
        assert classify_exception(asyncio.TimeoutError()) == ErrorCategory.API_TIMEOUT
        assert classify_exception(ChatworkAPIError(0, "request timeout")) == ErrorCategory.API_TIMEOUT

    def test_status_codes(self):
        assert classify_exception(ChatworkAPIError(401, "bad token")) == ErrorCategory.AUTH_FAILURE
        assert classify_exception(ChatworkAPIError(403, "no")) == ErrorCategory.PERMISSION_DENIED
        assert classify_exception(SheetsAPIError(404, "missing")) == ErrorCategory.SHEET_NOT_FOUND

    def test_not_found_message(self):
        assert classify_exception(RuntimeError("Sheet not found")) == ErrorCategory.SHEET_NOT_FOUND

    def test_unknown(self):
        assert classify_exception(ValueError("boom")) == ErrorCategory.UNKNOWN


class TestErrorReporter:
    @pytest.mark.asyncio
    async def test_report_uses_environment_channel(self, chat, reporter):
        ok = await reporter.report("Case", ErrorCategory.UNKNOWN, "boom", payload={"k": 1})
        assert ok is True
        token, room, body = chat.send_message.call_args.args
        assert (token, room) == (ADMIN_TOKEN, ADMIN_ROOM)
        assert "【Detail】: boom" in body
        assert "Keys: k" in body

    @pytest.mark.asyncio
    async def test_promotion_channel_wins(self, chat, reporter):
        config = make_config(adminChatworkToken="p-token", adminChatworkRoomId="555")
        await reporter.report("Case", ErrorCategory.UNKNOWN, "boom", config=config)
        assert chat.send_message.call_args.args[:2] == ("p-token", "555")

    @pytest.mark.asyncio
    async def test_no_channel_returns_false(self):
        chat = FakeChat()
        reporter = ErrorReporter(chat, make_settings(admin_chatwork_token=None, admin_room_id=None))
        assert await reporter.report("Case", ErrorCategory.UNKNOWN, "boom") is False
        chat.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_delivery_failure_never_raises(self, chat, reporter):
        chat.send_message.side_effect = ChatworkAPIError(500, "down")
        assert await reporter.report("Case", ErrorCategory.UNKNOWN, "boom") is False
        # Not re-reported
        assert chat.send_message.call_count == 1


class TestStoredAdminChannel:
    """The admin UI saves the shared admin channel on the legacy promotion."""

    LEGACY = {"adminChatworkToken": "legacy-token", "adminChatworkRoomId": "777"}

    @pytest.mark.asyncio
    async def test_stored_legacy_channel_used_without_environment(self):
        settings = make_settings(admin_chatwork_token=None, admin_room_id=None)
        chat = FakeChat()
        reporter = ErrorReporter(chat, settings, InMemoryConfigStore(settings, {"main": self.LEGACY}))

        assert await reporter.report("Case", ErrorCategory.UNKNOWN, "boom") is True
        assert chat.send_message.call_args.args[:2] == ("legacy-token", "777")

    @pytest.mark.asyncio
    async def test_stored_legacy_channel_beats_environment(self):
        settings = make_settings()
        reporter = ErrorReporter(FakeChat(), settings, InMemoryConfigStore(settings, {"main": self.LEGACY}))
        assert await reporter.admin_credentials() == ("legacy-token", "777")

    @pytest.mark.asyncio
    async def test_promotion_channel_beats_stored_legacy(self):
        settings = make_settings()
        reporter = ErrorReporter(FakeChat(), settings, InMemoryConfigStore(settings, {"main": self.LEGACY}))
        config = make_config(adminChatworkToken="p-token", adminChatworkRoomId="555")
        assert await reporter.admin_credentials(config) == ("p-token", "555")

    @pytest.mark.asyncio
    async def test_legacy_without_admin_fields_falls_back_to_environment(self):
        settings = make_settings()
        reporter = ErrorReporter(FakeChat(), settings, InMemoryConfigStore(settings, {"main": {"roomId": "1"}}))
        assert await reporter.admin_credentials() == (ADMIN_TOKEN, ADMIN_ROOM)

    @pytest.mark.asyncio
    async def test_store_failure_falls_back_to_environment(self):
        store = MagicMock()
        store.get_config = AsyncMock(side_effect=ConfigStoreError("db down"))
        reporter = ErrorReporter(FakeChat(), make_settings(), store)
        assert await reporter.admin_credentials() == (ADMIN_TOKEN, ADMIN_ROOM)
