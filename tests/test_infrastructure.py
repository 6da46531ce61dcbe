# tests/test_infrastructure.py
"""Tests for infrastructure components: settings, logging, migrations, pools, sessions"""
import json
import logging
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import make_settings
from sheet2chat.config import validate_or_warn, warn_on_risky_config
from sheet2chat.infra import http_client
from sheet2chat.infra.db_async import db_conn
from sheet2chat.infra.logging_config import ConsoleFormatter, JSONFormatter, LogContext
from sheet2chat.infra.migrations_async import SQL_DIR, apply_migrations, pending_files


class TestSettings:
    def test_production_requires_webhook_secret_and_database(self):
        with pytest.raises(RuntimeError, match="webhook_secret"):
            validate_or_warn(make_settings(app_env="prod", webhook_secret=None, database_url=None))

    def test_dev_only_warns(self, capsys):
        validate_or_warn(make_settings(app_env="dev", webhook_secret=None))
        assert "[WARN][config] webhook_secret is not set" in capsys.readouterr().out

    def test_default_salt_is_flagged(self):
        warnings = warn_on_risky_config(make_settings(viewer_url_salt="default-salt"))
        assert any("viewer_url_salt" in w for w in warnings)

    def test_flags(self):
        s = make_settings(app_env="prod", database_url="postgresql://x")
        assert s.is_production
        assert s.database_enabled
        assert s.admin_channel_configured


class TestLogging:
    def _record(self, **extra):
        record = logging.LogRecord("sheet2chat.test", logging.INFO, __file__, 10, "hello %s", ("row",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_includes_context(self):
        line = JSONFormatter().format(self._record(promotion_id="promo_a", row_index=5))
        payload = json.loads(line)
        assert payload["message"] == "hello row"
        assert payload["promotion_id"] == "promo_a"
        assert payload["row_index"] == 5
        assert "request_id" not in payload

    def test_console_formatter_tags(self):
        text = ConsoleFormatter().format(self._record(sheet_name="申込", request_id="r"))
        assert "[sheet=申込]" in text
        assert text.endswith("hello row")

    def test_log_context_merges_extra(self, caplog):
        log = LogContext(logging.getLogger("sheet2chat.test"), promotion_id="promo_a", row_index=None)
        with caplog.at_level(logging.INFO, logger="sheet2chat.test"):
            log.info("sent", extra={"room": "1"})

        record = caplog.records[-1]
        assert record.promotion_id == "promo_a"
        assert record.room == "1"
        assert not hasattr(record, "row_index")

    def test_log_context_per_call_extra_wins(self, caplog):
        log = LogContext(logging.getLogger("sheet2chat.test"), promotion_id="promo_a", sheet_name="申込")
        with caplog.at_level(logging.INFO, logger="sheet2chat.test"):
            log.info("resolved", extra={"promotion_id": "promo_b"})

        record = caplog.records[-1]
        assert record.promotion_id == "promo_b"
        assert record.sheet_name == "申込"


class TestMigrations:
    def test_bundled_sql_is_found(self):
        names = [p.name for p in pending_files(set())]
        assert "001_promotion_configs.sql" in names
        assert names == sorted(names)

    def test_applied_files_are_skipped(self):
        applied = {p.name for p in SQL_DIR.glob("*.sql")}
        assert pending_files(applied) == []

    @pytest.mark.asyncio
    async def test_apply_records_each_file(self):
        conn = MagicMock()
        conn.execute = AsyncMock()
        conn.fetch = AsyncMock(return_value=[])

        @asynccontextmanager
        async def fake_db_conn(autocommit=True):
            assert autocommit is False
            yield conn

        with patch("sheet2chat.infra.migrations_async.db_conn", fake_db_conn):
            done = await apply_migrations()

        assert "001_promotion_configs.sql" in done
        inserts = [c for c in conn.execute.call_args_list if c.args[0].startswith("INSERT INTO schema_migrations")]
        assert [c.args[1] for c in inserts] == done
        assert conn.execute.call_args_list[0].args[0] == "SELECT pg_advisory_xact_lock($1)"


class TestDatabasePool:
    @pytest.mark.asyncio
    async def test_db_conn_requires_pool(self):
        with pytest.raises(RuntimeError, match="not initialized"):
            async with db_conn():
                pass


class TestHttpSessions:
    @pytest.mark.asyncio
    async def test_close_all_sessions(self, monkeypatch):
        open_session = MagicMock(closed=False)
        open_session.close = AsyncMock()
        closed_session = MagicMock(closed=True)
        closed_session.close = AsyncMock()
        monkeypatch.setattr(http_client, "_sessions", {"chat": open_session, "sheets": closed_session})

        await http_client.close_all_sessions()

        open_session.close.assert_awaited_once()
        closed_session.close.assert_not_awaited()
        assert http_client._sessions == {}
