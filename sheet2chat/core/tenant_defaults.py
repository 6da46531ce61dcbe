# sheet2chat/core/tenant_defaults.py
"""
Centralized default resolution for promotion configs.

Precedence for every field: per-promotion value -> environment default
(legacy promotion only) -> hard-coded default from ``core.domain``.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sheet2chat.core.domain import (
    DEFAULT_BOOKING_LIST_SHEET,
    DEFAULT_STAFF_CHAT_SHEET,
    DEFAULT_STAFF_LIST_SHEET,
    NotificationRule,
    ReminderConfig,
    TenantConfig,
)
from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)


def sanitize_rules(raw_rules: Any) -> list[dict]:
    """
    Drop rules without an ``id`` and keep only the first rule per id.
    """
    if not isinstance(raw_rules, list):
        return []

    seen: set[str] = set()
    clean: list[dict] = []
    for rule in raw_rules:
        if not isinstance(rule, dict):
            continue
        rule_id = rule.get("id")
        if rule_id is None or not str(rule_id).strip():
            logger.warning("Discarding notification rule without id: sheet=%s", rule.get("sheetName"))
            continue
        rule_id = str(rule_id)
        if rule_id in seen:
            logger.warning("Discarding duplicate notification rule id=%s", rule_id)
            continue
        seen.add(rule_id)
        clean.append(rule)
    return clean


def _pick(raw: dict, key: str, env_value: Optional[str], default: Optional[str]) -> Optional[str]:
    value = raw.get(key)
    if value is not None and str(value).strip():
        return str(value).strip()
    if env_value:
        return env_value
    return default


def _reminder_config(raw: dict) -> ReminderConfig:
    block = raw.get("reminder")
    if not isinstance(block, dict):
        block = {}
    template = block.get("template") or raw.get("reminderTemplate")
    return ReminderConfig(
        enabled=bool(block.get("enabled", True)),
        template=str(template) if template else None,
        room_id=str(block["roomId"]) if block.get("roomId") else None,
    )


def resolve_tenant_defaults(
    promotion_id: str,
    raw: dict | None,
    settings,
    *,
    name: str = "",
    updated_at: datetime | None = None,
) -> TenantConfig:
    """
    Build a fully-resolved ``TenantConfig`` from a stored (camelCase) document.

    Only the legacy promotion inherits the environment layer; every other
    promotion goes straight from its own value to the hard-coded default.
    """
    raw = raw or {}
    is_legacy = promotion_id == settings.legacy_promotion_id

    def env(value: Optional[str]) -> Optional[str]:
        return value if is_legacy else None

    rules = tuple(NotificationRule.from_dict(r) for r in sanitize_rules(raw.get("notificationRules")))

    viewer = raw.get("assignmentViewer")

    return TenantConfig(
        promotion_id=promotion_id,
        name=name or str(raw.get("name") or ""),
        chatwork_token=_pick(raw, "chatworkToken", env(settings.chatwork_token), None),
        room_id=_pick(raw, "roomId", env(settings.chatwork_room_id), None),
        spreadsheet_id=_pick(raw, "spreadsheetId", env(settings.spreadsheet_id), None),
        booking_list_sheet=_pick(
            raw, "bookingListSheet", env(settings.booking_list_sheet), DEFAULT_BOOKING_LIST_SHEET
        ),
        staff_list_sheet=_pick(
            raw, "staffListSheet", env(settings.staff_list_sheet), DEFAULT_STAFF_LIST_SHEET
        ),
        staff_chat_sheet=_pick(
            raw, "staffChatSheet", env(settings.staff_chat_sheet), DEFAULT_STAFF_CHAT_SHEET
        ),
        consultation_template=_pick(raw, "consultationTemplate", None, None),
        reminder=_reminder_config(raw),
        assignment_viewer=viewer if isinstance(viewer, dict) else {},
        notification_rules=rules,
        admin_chatwork_token=_pick(raw, "adminChatworkToken", None, None),
        admin_room_id=_pick(raw, "adminChatworkRoomId", None, None),
        updated_at=updated_at,
        is_legacy=is_legacy,
    )
