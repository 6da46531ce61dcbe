# tests/test_viewer.py
"""Tests for sheet2chat/core/viewer.py"""
import pytest

from conftest import FakeSheets, make_config, make_settings
from sheet2chat.core.handlers.consultation import generate_viewer_url
from sheet2chat.core.viewer import (
    AssignmentViewer,
    ViewerLookupError,
    email_column,
    find_participant,
    name_column,
    viewer_digest,
)
from sheet2chat.infra.sheets_client import SheetsAPIError

MASTER = [
    ["タイムスタンプ", "お名前", "メールアドレス"],
    ["2026/1/1", "山田 太郎", "taro@example.com"],
    ["2026/1/2", "佐藤 花子"],
]


def _viewer_config(**viewer):
    block = {"questionnaire": {"ssId": "master-1"}, "assignments": [{"name": "課題1"}, {"name": "課題2"}]}
    block.update(viewer)
    return make_config(assignmentViewer=block)


class TestColumns:
    def test_email_column(self):
        assert email_column(["氏名", "E-mail"]) is None
        assert email_column(["氏名", "Email Address"]) == 1
        assert email_column(["メールアドレス"]) == 0

    def test_name_column(self):
        assert name_column(["日時", "お名前"]) == 1
        assert name_column(["氏名（漢字）"]) == 0
        assert name_column([None, "メール"]) is None


class TestFindParticipant:
    def test_digest_matches_viewer_url(self):
        url = generate_viewer_url("https://v.example.com", "salt", "taro@example.com", "山田 太郎")
        assert url.endswith("/viewer/" + viewer_digest("salt", "taro@example.com"))
        assert find_participant(MASTER, url.rsplit("/", 1)[1], "salt") == ("山田 太郎", "taro@example.com")

    def test_row_without_email_matches_name_digest(self):
        assert find_participant(MASTER, viewer_digest("salt", "佐藤 花子"), "salt") == ("佐藤 花子", "")

    def test_plain_email(self):
        assert find_participant(MASTER, "taro@example.com", "salt")[0] == "山田 太郎"

    def test_other_salt_does_not_match(self):
        assert find_participant(MASTER, viewer_digest("other", "taro@example.com"), "salt") is None

    def test_no_identifying_columns(self):
        with pytest.raises(ViewerLookupError) as info:
            find_participant([["日時", "回答"], ["x", "y"]], "id", "salt")
        assert info.value.status == 500


class TestAssignmentViewer:
    def setup_method(self):
        self.settings = make_settings(viewer_url_salt="salt")
        self.sheets = FakeSheets({"事前アンケート!A:Z": MASTER})
        self.viewer = AssignmentViewer(self.sheets, self.settings)

    @pytest.mark.asyncio
    async def test_submission_status(self):
        self.sheets.ranges["課題1!A:Z"] = [["メール", "回答"], ["taro@example.com", "done"]]
        self.sheets.ranges["課題2!A:Z"] = [["メール"], ["other@example.com"]]

        result = await self.viewer.lookup(_viewer_config(), "taro@example.com")

        assert result["userName"] == "山田 太郎"
        assert result["userEmail"] == "taro@example.com"
        assert result["assignments"] == [
            {"name": "課題1", "submitted": True, "lastUpdated": "提出済み"},
            {"name": "課題2", "submitted": False, "lastUpdated": "未提出"},
        ]

    @pytest.mark.asyncio
    async def test_name_column_when_sheet_has_no_email(self):
        self.sheets.ranges["課題1!A:Z"] = [["氏名"], ["佐藤 花子"]]
        result = await self.viewer.lookup(_viewer_config(), viewer_digest("salt", "佐藤 花子"))
        assert result["assignments"][0]["submitted"] is True
        assert result["assignments"][1]["submitted"] is False

    @pytest.mark.asyncio
    async def test_unreadable_assignment_sheet(self):
        self.sheets.ranges["課題2!A:Z"] = SheetsAPIError(404, "Unable to parse range")
        result = await self.viewer.lookup(_viewer_config(), "taro@example.com")
        assert result["assignments"][1] == {
            "name": "課題2",
            "submitted": False,
            "error": "シートが読み込めませんでした",
        }

    @pytest.mark.asyncio
    async def test_assignments_spreadsheet_override(self):
        config = _viewer_config(spreadsheetId="assign-1", assignments=[{"name": "課題1"}])
        await self.viewer.lookup(config, "taro@example.com")
        assert self.sheets.read_range.call_args_list[-1].args == ("assign-1", "課題1!A:Z")

    @pytest.mark.asyncio
    async def test_custom_questionnaire_sheet(self):
        self.sheets.ranges["回答!A:Z"] = MASTER
        config = _viewer_config(questionnaire={"ssId": "master-1", "sheetName": "回答"}, assignments=[])
        result = await self.viewer.lookup(config, "taro@example.com")
        assert result["assignments"] == []
        assert self.sheets.read_range.call_args_list[0].args == ("master-1", "回答!A:Z")

    @pytest.mark.asyncio
    async def test_unknown_name_label(self):
        self.sheets.ranges["事前アンケート!A:Z"] = [["メール"], ["anon@example.com"]]
        result = await self.viewer.lookup(_viewer_config(assignments=[]), "anon@example.com")
        assert result["userName"] == "不明"

    @pytest.mark.asyncio
    async def test_not_configured(self):
        with pytest.raises(ViewerLookupError, match="Viewer not configured") as info:
            await self.viewer.lookup(make_config(), "taro@example.com")
        assert info.value.status == 404
        self.sheets.read_range.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_master_sheet(self):
        self.sheets.ranges["事前アンケート!A:Z"] = []
        with pytest.raises(ViewerLookupError, match="Master sheet is empty"):
            await self.viewer.lookup(_viewer_config(), "taro@example.com")

    @pytest.mark.asyncio
    async def test_unknown_participant(self):
        with pytest.raises(ViewerLookupError, match="User not found"):
            await self.viewer.lookup(_viewer_config(), "nobody@example.com")
