# sheet2chat/infra/sheet_index.py
"""
Reverse index: sheet name -> promotions that react to it.

Built from every promotion config (booking-list sheet and every rule's
trigger sheet).  Marked stale on config save and rebuilt lazily on the next
lookup, or after ``ttl_seconds`` to pick up edits made outside this process.
Entries may lag the store; the resolver re-verifies every hit.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sheet2chat.core.domain import TenantConfig
from sheet2chat.core.ports import ConfigStore
from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)

KIND_BOOKING = "booking"
KIND_RULE = "rule"


@dataclass(frozen=True)
class IndexEntry:
    promotion_id: str
    kind: str  # "booking" | "rule"
    updated_at: Optional[datetime]
    order: int  # position in list_tenants(), for tie-breaking


def sheet_matches(config: TenantConfig, sheet_name: str) -> Optional[str]:
    """Kind of match between a config and a sheet name, or None."""
    if sheet_name in config.rule_sheet_names:
        return KIND_RULE
    if config.booking_list_sheet == sheet_name:
        return KIND_BOOKING
    return None


class SheetIndex:
    def __init__(self, store: ConfigStore, ttl_seconds: int = 300) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._entries: dict[str, list[IndexEntry]] = {}
        self._built_at: float | None = None

    @property
    def is_stale(self) -> bool:
        if self._built_at is None:
            return True
        return time.monotonic() - self._built_at > self._ttl

    def mark_stale(self, promotion_id: str | None = None) -> None:
        if promotion_id:
            logger.debug(f"Sheet index marked stale after save of promotion={promotion_id}")
        self._built_at = None

    async def rebuild(self) -> int:
        """Rebuild from the store; returns the number of indexed sheet names."""
        entries: dict[str, list[IndexEntry]] = {}
        tenants = await self._store.list_tenants()

        for order, tenant in enumerate(tenants):
            config = await self._store.get_config(tenant["id"])
            if config is None:
                continue
            for sheet in dict.fromkeys(config.rule_sheet_names):
                entries.setdefault(sheet, []).append(
                    IndexEntry(config.promotion_id, KIND_RULE, tenant.get("updated_at"), order)
                )
            if config.booking_list_sheet and config.booking_list_sheet not in config.rule_sheet_names:
                entries.setdefault(config.booking_list_sheet, []).append(
                    IndexEntry(config.promotion_id, KIND_BOOKING, tenant.get("updated_at"), order)
                )

        self._entries = entries
        self._built_at = time.monotonic()
        logger.info(f"Sheet index rebuilt: {len(entries)} sheet names across {len(tenants)} promotions")
        return len(entries)

    async def lookup(self, sheet_name: str) -> list[IndexEntry]:
        if self.is_stale:
            await self.rebuild()
        return list(self._entries.get(sheet_name, []))

    async def trigger_sheets(self) -> dict[str, list[str]]:
        """Sheet names that should fire webhooks, split by kind (for spreadsheet triggers)."""
        if self.is_stale:
            await self.rebuild()
        booking = [s for s, entries in self._entries.items() if any(e.kind == KIND_BOOKING for e in entries)]
        rules = [s for s, entries in self._entries.items() if any(e.kind == KIND_RULE for e in entries)]
        return {"bookingSheets": booking, "ruleSheets": rules}
