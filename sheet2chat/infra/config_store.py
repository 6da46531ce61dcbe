# sheet2chat/infra/config_store.py
"""
Promotion config store.

Configs are stored as camelCase JSON documents (the shape the admin UI
edits) and resolved into ``TenantConfig`` on every read; nothing is cached
across requests.  ``save_config`` merges shallowly (top-level keys of the
partial replace stored ones, last write wins) and sanitizes rules.

Change listeners are called after every successful save, which is how the
reverse sheet index learns it is stale.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sheet2chat.core.domain import TenantConfig
from sheet2chat.core.tenant_defaults import resolve_tenant_defaults, sanitize_rules
from sheet2chat.infra.db_async import db_conn
from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)

ChangeListener = Callable[[str], None]


class ConfigStoreError(Exception):
    """Config store could not be read or written."""

    def __init__(self, message: str, status: int = 503):
        self.status = status
        super().__init__(message)


def _parse_jsonb(raw: Any) -> dict:
    """Parse a jsonb column value (may be dict or str)."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        return json.loads(raw)
    return {}


def merge_config(existing: dict, partial: dict) -> dict:
    merged = dict(existing)
    merged.update(partial)
    if "notificationRules" in merged:
        merged["notificationRules"] = sanitize_rules(merged["notificationRules"])
    return merged


class _ListenerMixin:
    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    def add_change_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self, promotion_id: str) -> None:
        for listener in self._listeners:
            listener(promotion_id)


class AsyncPostgresConfigStore(_ListenerMixin):
    """Async Postgres store over the ``promotion_configs`` table."""

    def __init__(self, settings) -> None:
        super().__init__()
        self._settings = settings

    async def get_config(self, promotion_id: str) -> Optional[TenantConfig]:
        try:
            async with db_conn() as conn:
                row = await conn.fetchrow(
                    "SELECT id, name, config_json, updated_at FROM promotion_configs WHERE id = $1",
                    promotion_id,
                )
        except Exception as exc:
            logger.error(f"Config fetch failed for promotion={promotion_id}: {exc}")
            raise ConfigStoreError(f"Failed to load config '{promotion_id}': {exc}") from exc

        if not row:
            return None

        return resolve_tenant_defaults(
            row["id"],
            _parse_jsonb(row["config_json"]),
            self._settings,
            name=row["name"] or "",
            updated_at=row["updated_at"],
        )

    async def list_tenants(self) -> list[dict]:
        try:
            async with db_conn() as conn:
                rows = await conn.fetch(
                    "SELECT id, name, updated_at FROM promotion_configs ORDER BY id"
                )
        except Exception as exc:
            logger.error(f"Config list failed: {exc}")
            raise ConfigStoreError(f"Failed to list promotions: {exc}") from exc

        return [{"id": r["id"], "name": r["name"] or "", "updated_at": r["updated_at"]} for r in rows]

    async def save_config(self, promotion_id: str, partial: dict) -> TenantConfig:
        try:
            async with db_conn(autocommit=False) as conn:
                row = await conn.fetchrow(
                    "SELECT name, config_json FROM promotion_configs WHERE id = $1 FOR UPDATE",
                    promotion_id,
                )
                existing = _parse_jsonb(row["config_json"]) if row else {}
                merged = merge_config(existing, partial)
                name = str(partial.get("name") or (row["name"] if row else "") or "")

                saved = await conn.fetchrow(
                    """
                    INSERT INTO promotion_configs (id, name, config_json, updated_at)
                    VALUES ($1, $2, $3, now())
                    ON CONFLICT (id) DO UPDATE
                      SET name = EXCLUDED.name,
                          config_json = EXCLUDED.config_json,
                          updated_at = now()
                    RETURNING updated_at
                    """,
                    promotion_id,
                    name,
                    merged,
                )
        except Exception as exc:
            logger.error(f"Config save failed for promotion={promotion_id}: {exc}")
            raise ConfigStoreError(f"Failed to save config '{promotion_id}': {exc}") from exc

        logger.info(f"Config saved: promotion={promotion_id}")
        self._notify(promotion_id)
        return resolve_tenant_defaults(
            promotion_id, merged, self._settings, name=name, updated_at=saved["updated_at"]
        )


class InMemoryConfigStore(_ListenerMixin):
    """
    Dict-backed store used when no database is configured.

    Insertion order is the stable list order.
    """

    def __init__(self, settings, documents: dict[str, dict] | None = None) -> None:
        super().__init__()
        self._settings = settings
        self._docs: dict[str, dict] = {}
        self._updated: dict[str, datetime] = {}
        for promotion_id, doc in (documents or {}).items():
            self._docs[promotion_id] = merge_config({}, doc)
            self._updated[promotion_id] = datetime.now(timezone.utc)

    async def get_config(self, promotion_id: str) -> Optional[TenantConfig]:
        doc = self._docs.get(promotion_id)
        if doc is None:
            return None
        return resolve_tenant_defaults(
            promotion_id, doc, self._settings, updated_at=self._updated.get(promotion_id)
        )

    async def list_tenants(self) -> list[dict]:
        return [
            {"id": pid, "name": str(doc.get("name") or ""), "updated_at": self._updated.get(pid)}
            for pid, doc in self._docs.items()
        ]

    async def save_config(self, promotion_id: str, partial: dict) -> TenantConfig:
        self._docs[promotion_id] = merge_config(self._docs.get(promotion_id, {}), partial)
        self._updated[promotion_id] = datetime.now(timezone.utc)
        self._notify(promotion_id)
        return await self.get_config(promotion_id)
