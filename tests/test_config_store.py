# tests/test_config_store.py
"""Tests for sheet2chat/infra/config_store.py"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import make_settings
from sheet2chat.infra.config_store import (
    AsyncPostgresConfigStore,
    ConfigStoreError,
    InMemoryConfigStore,
    merge_config,
)


class TestMergeConfig:
    def test_top_level_keys_replace(self):
        merged = merge_config({"roomId": "1", "reminder": {"enabled": True, "template": "T"}},
                              {"reminder": {"enabled": False}})
        assert merged == {"roomId": "1", "reminder": {"enabled": False}}

    def test_rules_sanitized(self):
        merged = merge_config({}, {"notificationRules": [{"id": "a"}, {"id": "a"}, {"sheetName": "x"}]})
        assert merged["notificationRules"] == [{"id": "a"}]

    def test_does_not_mutate_existing(self):
        existing = {"roomId": "1"}
        merge_config(existing, {"roomId": "2"})
        assert existing == {"roomId": "1"}


class TestInMemoryConfigStore:
    def setup_method(self):
        self.settings = make_settings()

    @pytest.mark.asyncio
    async def test_get_missing(self):
        assert await InMemoryConfigStore(self.settings).get_config("nope") is None

    @pytest.mark.asyncio
    async def test_list_in_insertion_order(self):
        store = InMemoryConfigStore(self.settings, {"b": {"name": "B"}, "a": {"name": "A"}})
        tenants = await store.list_tenants()
        assert [t["id"] for t in tenants] == ["b", "a"]
        assert tenants[0]["name"] == "B"
        assert isinstance(tenants[0]["updated_at"], datetime)

    @pytest.mark.asyncio
    async def test_save_merges_and_notifies(self):
        store = InMemoryConfigStore(self.settings, {"a": {"roomId": "1", "chatworkToken": "t"}})
        seen = []
        store.add_change_listener(seen.append)

        config = await store.save_config("a", {"roomId": "2"})

        assert config.room_id == "2"
        assert config.chatwork_token == "t"
        assert seen == ["a"]

    @pytest.mark.asyncio
    async def test_last_write_wins(self):
        store = InMemoryConfigStore(self.settings)
        await store.save_config("a", {"roomId": "1"})
        await store.save_config("a", {"roomId": "3"})
        assert (await store.get_config("a")).room_id == "3"


def _fake_db(conn):
    @asynccontextmanager
    async def db_conn(autocommit=True):
        yield conn
    return db_conn


class TestAsyncPostgresConfigStore:
    def setup_method(self):
        self.settings = make_settings()
        self.conn = MagicMock()
        self.conn.fetchrow = AsyncMock()
        self.conn.fetch = AsyncMock()
        self.store = AsyncPostgresConfigStore(self.settings)

    def _patched(self):
        return patch("sheet2chat.infra.config_store.db_conn", _fake_db(self.conn))

    @pytest.mark.asyncio
    async def test_get_config_resolves_document(self):
        updated = datetime(2026, 1, 1, tzinfo=timezone.utc)
        self.conn.fetchrow.return_value = {
            "id": "a",
            "name": "Promo A",
            "config_json": '{"roomId": "5", "notificationRules": [{"id": "r1", "sheetName": "申込"}]}',
            "updated_at": updated,
        }
        with self._patched():
            config = await self.store.get_config("a")

        assert config.name == "Promo A"
        assert config.room_id == "5"
        assert config.rule_sheet_names == ["申込"]
        assert config.updated_at == updated

    @pytest.mark.asyncio
    async def test_get_missing(self):
        self.conn.fetchrow.return_value = None
        with self._patched():
            assert await self.store.get_config("a") is None

    @pytest.mark.asyncio
    async def test_read_failure_raises_store_error(self):
        self.conn.fetchrow.side_effect = OSError("connection refused")
        with self._patched():
            with pytest.raises(ConfigStoreError) as excinfo:
                await self.store.get_config("a")
        assert excinfo.value.status == 503

    @pytest.mark.asyncio
    async def test_list_tenants(self):
        self.conn.fetch.return_value = [{"id": "a", "name": None, "updated_at": None}]
        with self._patched():
            assert await self.store.list_tenants() == [{"id": "a", "name": "", "updated_at": None}]

    @pytest.mark.asyncio
    async def test_save_merges_with_stored_document(self):
        saved_at = datetime(2026, 2, 1, tzinfo=timezone.utc)
        self.conn.fetchrow.side_effect = [
            {"name": "Promo A", "config_json": {"roomId": "1", "chatworkToken": "t"}},
            {"updated_at": saved_at},
        ]
        seen = []
        self.store.add_change_listener(seen.append)

        with self._patched():
            config = await self.store.save_config("a", {"roomId": "2"})

        upsert_args = self.conn.fetchrow.call_args_list[1].args
        assert upsert_args[1:] == ("a", "Promo A", {"roomId": "2", "chatworkToken": "t"})
        assert config.room_id == "2"
        assert config.updated_at == saved_at
        assert seen == ["a"]

    @pytest.mark.asyncio
    async def test_failed_save_does_not_notify(self):
        self.conn.fetchrow.side_effect = OSError("down")
        seen = []
        self.store.add_change_listener(seen.append)
        with self._patched():
            with pytest.raises(ConfigStoreError):
                await self.store.save_config("a", {"roomId": "2"})
        assert seen == []
