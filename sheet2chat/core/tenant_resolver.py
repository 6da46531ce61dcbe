# sheet2chat/core/tenant_resolver.py
"""
Decide which promotion config governs an inbound event.

Order:
1. A config injected in the request body.
2. An explicit promotion id.
3. A sheet name, via the reverse index (verified against a fresh config),
   then via a full scan of every promotion.
4. The legacy promotion, or, when even that cannot be loaded, a config
   built from environment defaults alone.

Resolution itself never raises.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sheet2chat.core.domain import EventType, TenantConfig
from sheet2chat.core.ports import ConfigStore
from sheet2chat.core.tenant_defaults import resolve_tenant_defaults
from sheet2chat.infra.logging_config import get_logger
from sheet2chat.infra.metrics import DispatchMetrics
from sheet2chat.infra.sheet_index import KIND_BOOKING, KIND_RULE, IndexEntry, SheetIndex, sheet_matches

logger = get_logger(__name__)

KIND_INJECTED = "injected"
KIND_EXPLICIT = "explicit"
KIND_LEGACY = "legacy"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ResolvedTenant:
    config: TenantConfig
    kind: str  # injected | explicit | booking | rule | legacy

    @property
    def promotion_id(self) -> str:
        return self.config.promotion_id

    @property
    def implied_event_type(self) -> Optional[EventType]:
        """Event type implied by how a sheet-name match was made."""
        if self.kind == KIND_RULE:
            return EventType.UNIVERSAL
        if self.kind == KIND_BOOKING:
            return EventType.CONSULTATION
        return None


def _sort_key(entry: IndexEntry):
    # Newest update first; list order breaks ties
    updated = entry.updated_at or _EPOCH
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=timezone.utc)
    return (-updated.timestamp(), entry.order)


class TenantResolver:
    def __init__(self, store: ConfigStore, settings, index: SheetIndex | None = None) -> None:
        self._store = store
        self._settings = settings
        self._index = index

    async def resolve(
        self,
        promotion_id: Optional[str] = None,
        sheet_name: Optional[str] = None,
        event_sheet_name: Optional[str] = None,
        injected: Optional[dict] = None,
    ) -> ResolvedTenant:
        if injected:
            config = resolve_tenant_defaults(
                str(injected.get("promotionId") or promotion_id or self._settings.legacy_promotion_id),
                injected,
                self._settings,
            )
            return self._done(ResolvedTenant(config, KIND_INJECTED))

        if promotion_id:
            config = await self._fetch(promotion_id)
            if config is not None:
                return self._done(ResolvedTenant(config, KIND_EXPLICIT))
            logger.warning(f"Promotion '{promotion_id}' not found, using legacy config")
            return self._done(await self._legacy())

        target = sheet_name or event_sheet_name
        if target:
            match = await self._match_sheet(target)
            if match is not None:
                logger.info(
                    f"Resolved promotion {match.promotion_id} via sheet name ({match.kind})",
                    extra={"sheet_name": target, "promotion_id": match.promotion_id},
                )
                return self._done(match)

        logger.info("No promotion matched, using legacy config", extra={"sheet_name": target})
        return self._done(await self._legacy())

    # ------------------------------------------------------------------

    async def _fetch(self, promotion_id: str) -> Optional[TenantConfig]:
        try:
            return await self._store.get_config(promotion_id)
        except Exception as exc:
            logger.error(f"Config fetch failed for promotion={promotion_id}: {exc}")
            return None

    async def _match_sheet(self, sheet_name: str) -> Optional[ResolvedTenant]:
        if self._index is not None:
            try:
                entries = await self._index.lookup(sheet_name)
            except Exception as exc:
                logger.error(f"Sheet index lookup failed: {exc}")
                entries = []

            if entries:
                winner = min(entries, key=_sort_key)
                if len(entries) > 1:
                    self._log_collision(sheet_name, entries, winner)
                config = await self._fetch(winner.promotion_id)
                kind = sheet_matches(config, sheet_name) if config else None
                if kind is not None:
                    return ResolvedTenant(config, kind)
                logger.warning(f"Sheet index entry for '{sheet_name}' is outdated, rescanning")
                self._index.mark_stale()

        return await self._scan(sheet_name)

    async def _scan(self, sheet_name: str) -> Optional[ResolvedTenant]:
        try:
            tenants = await self._store.list_tenants()
        except Exception as exc:
            logger.error(f"Promotion scan failed: {exc}")
            return None

        candidates: list[tuple[IndexEntry, TenantConfig]] = []
        for order, tenant in enumerate(tenants):
            config = await self._fetch(tenant["id"])
            if config is None:
                continue
            kind = sheet_matches(config, sheet_name)
            if kind is not None:
                entry = IndexEntry(config.promotion_id, kind, tenant.get("updated_at"), order)
                candidates.append((entry, config))

        if not candidates:
            return None

        candidates.sort(key=lambda c: _sort_key(c[0]))
        winner, config = candidates[0]
        if len(candidates) > 1:
            self._log_collision(sheet_name, [c[0] for c in candidates], winner)
        return ResolvedTenant(config, winner.kind)

    def _log_collision(self, sheet_name: str, entries: list[IndexEntry], winner: IndexEntry) -> None:
        logger.warning(
            f"Sheet name '{sheet_name}' matches {len(entries)} promotions "
            f"({', '.join(e.promotion_id for e in entries)}); using most recently updated "
            f"'{winner.promotion_id}'"
        )
        DispatchMetrics.tenant_collision()

    async def _legacy(self) -> ResolvedTenant:
        legacy_id = self._settings.legacy_promotion_id
        config = await self._fetch(legacy_id)
        if config is None:
            config = resolve_tenant_defaults(legacy_id, {}, self._settings)
        return ResolvedTenant(config, KIND_LEGACY)

    @staticmethod
    def _done(resolved: ResolvedTenant) -> ResolvedTenant:
        DispatchMetrics.tenant_resolved(resolved.kind)
        return resolved
