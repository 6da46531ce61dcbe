# sheet2chat/core/error_reporter.py
"""
Out-of-band admin notification for failures.

Reporting is terminal: ``report`` never raises and a failure to deliver a
report is only logged, never reported again.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sheet2chat.core.domain import TenantConfig
from sheet2chat.core.errors import ErrorCategory
from sheet2chat.core.ports import ChatClient, ConfigStore
from sheet2chat.infra.logging_config import get_logger
from sheet2chat.infra.metrics import DispatchMetrics

logger = get_logger(__name__)

# Admin timestamps are always JST, independent of the local timezone setting
JST = timezone(timedelta(hours=9))

PAYLOAD_KEY_LIMIT = 5
PAYLOAD_TEXT_LIMIT = 100


def jst_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(JST).strftime("%Y-%m-%d %H:%M:%S") + " JST"


def summarize_payload(payload: Any) -> str:
    """First 5 keys of a mapping, or the first 100 characters of a string."""
    if not payload:
        return ""
    if isinstance(payload, str):
        return payload[:PAYLOAD_TEXT_LIMIT]
    if isinstance(payload, dict):
        keys = [str(k) for k in payload.keys()]
        suffix = "..." if len(keys) > PAYLOAD_KEY_LIMIT else ""
        return f"Keys: {', '.join(keys[:PAYLOAD_KEY_LIMIT])}{suffix}"
    return str(payload)[:PAYLOAD_TEXT_LIMIT]


def build_error_message(
    case_name: str,
    category: ErrorCategory | str,
    message: str,
    row_number: Any = None,
    payload_summary: str = "",
    now: Optional[datetime] = None,
) -> str:
    label = category.value if isinstance(category, ErrorCategory) else (category or ErrorCategory.UNKNOWN.value)

    lines = [
        "[info][title]⚠️ System Automation Error[/title]",
        f"【Timestamp】: {jst_timestamp(now)}",
        f"【Case】: {case_name or 'Unknown'}",
        f"【Error Type】: {label}",
        f"【Detail】: {message or 'No details available'}",
    ]
    if row_number:
        lines.append(f"【Source Row】: {row_number}")
    if payload_summary:
        lines.append(f"【Payload Reference】: {payload_summary}")

    return "\n".join(lines) + "\n[/info]"


class ErrorReporter:
    def __init__(self, chat: ChatClient, settings, store: Optional[ConfigStore] = None) -> None:
        self._chat = chat
        self._settings = settings
        self._store = store

    async def admin_credentials(self, config: Optional[TenantConfig] = None) -> Optional[tuple[str, str]]:
        """Promotion admin credentials, then the stored legacy promotion's, then environment."""
        if config is not None and config.admin_chatwork_token and config.admin_room_id:
            return config.admin_chatwork_token, config.admin_room_id

        legacy = await self._stored_legacy_config()
        if legacy is not None and legacy.admin_chatwork_token and legacy.admin_room_id:
            return legacy.admin_chatwork_token, legacy.admin_room_id

        if self._settings.admin_chatwork_token and self._settings.admin_room_id:
            return self._settings.admin_chatwork_token, self._settings.admin_room_id
        return None

    async def _stored_legacy_config(self) -> Optional[TenantConfig]:
        # The admin UI saves the shared admin channel on the legacy promotion
        if self._store is None:
            return None
        try:
            return await self._store.get_config(self._settings.legacy_promotion_id)
        except Exception as exc:
            logger.warning(f"Legacy config unavailable for admin credentials: {exc}")
            return None

    async def report(
        self,
        case_name: str,
        category: ErrorCategory,
        message: str,
        *,
        row_number: Any = None,
        payload: Any = None,
        config: Optional[TenantConfig] = None,
    ) -> bool:
        """
        Send a categorized error to the admin room.

        Returns:
            True when the admin message was delivered.
        """
        label = category.value if isinstance(category, ErrorCategory) else str(category)
        promotion_id = config.promotion_id if config is not None else None

        logger.error(
            f"[{label}] {case_name}: {message}",
            extra={"promotion_id": promotion_id, "row_index": row_number},
        )

        try:
            credentials = await self.admin_credentials(config)
            if credentials is None:
                logger.error(
                    "Admin notification credentials not configured, error not reported",
                    extra={"promotion_id": promotion_id},
                )
                DispatchMetrics.error_reported(label, delivered=False)
                return False

            token, room_id = credentials
            body = build_error_message(
                case_name, category, message, row_number, summarize_payload(payload)
            )
            await self._chat.send_message(token, room_id, body)

        except Exception as exc:
            logger.error(f"Failed to send error notification: {exc}", exc_info=True)
            DispatchMetrics.error_reported(label, delivered=False)
            return False

        DispatchMetrics.error_reported(label, delivered=True)
        return True
