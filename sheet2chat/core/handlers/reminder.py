# sheet2chat/core/handlers/reminder.py
"""
Day-before reminders.

Reads the promotion's booking list, picks rows whose date cell contains
tomorrow's date (``YYYY/M/D`` in the local timezone) and sends each row's
staff member a mention in the promotion room.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable, Optional

from sheet2chat.core import template
from sheet2chat.core.domain import TenantConfig
from sheet2chat.core.error_reporter import ErrorReporter
from sheet2chat.core.errors import ConfigurationMissingError, ErrorCategory, RosterUnavailableError
from sheet2chat.core.normalize import canonicalize_date_parts, to_halfwidth_digits
from sheet2chat.core.ports import ChatClient, SheetsClient
from sheet2chat.core.staff_matcher import StaffMatcher, find_column, lookup_chat_identity
from sheet2chat.infra.chatwork_client import format_mention
from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)

CASE_NAME = "Case 4: 前日リマインダー"

DEFAULT_REMINDER_TEMPLATE = "【明日のご予約リマインド】\n日時：{date} {time}\nお客様：{client}\nよろしくお願いいたします。"

DATE_HEADERS = ("日付", "Date")
STAFF_HEADERS = ("担当", "Staff")
CLIENT_HEADERS = ("名前", "Client")
TIME_HEADERS = ("時間", "Time")


def format_reminder_date(day: datetime) -> str:
    """2026/1/5 style, no zero padding."""
    return f"{day.year}/{day.month}/{day.day}"


def is_booking_on(date_cell: str, day_key: str) -> bool:
    """Whether a booking date cell falls on ``day_key`` (2026/1/3 never matches 2026/1/31)."""
    normalized = canonicalize_date_parts(to_halfwidth_digits(str(date_cell)))
    return re.search(rf"(?<!\d){re.escape(day_key)}(?!\d)", normalized) is not None


def _cell(row: list, idx: int) -> str:
    if idx < 0 or idx >= len(row) or row[idx] is None:
        return ""
    return str(row[idx]).strip()


class ReminderHandler:
    def __init__(
        self,
        chat: ChatClient,
        sheets: SheetsClient,
        reporter: ErrorReporter,
        tz: tzinfo,
        staff_matcher: Optional[StaffMatcher] = None,
        clock: Optional[Callable[[tzinfo], datetime]] = None,
    ) -> None:
        self._chat = chat
        self._sheets = sheets
        self._reporter = reporter
        self._tz = tz
        self._matcher = staff_matcher or StaffMatcher(sheets)
        self._clock = clock or datetime.now

    def tomorrow(self) -> str:
        return format_reminder_date(self._clock(self._tz) + timedelta(days=1))

    async def handle(self, config: TenantConfig) -> dict[str, Any]:
        if not config.reminder.enabled:
            logger.info("Reminders disabled", extra={"promotion_id": config.promotion_id})
            return {"sent": 0, "reminders": [], "failed": [], "skipped": "disabled"}

        room_id = config.reminder.room_id or config.room_id
        if not config.chatwork_token or not room_id or not config.spreadsheet_id:
            message = f"Reminder configuration incomplete for promotion '{config.promotion_id}'"
            await self._reporter.report(CASE_NAME, ErrorCategory.CONFIG_MISSING, message, config=config)
            raise ConfigurationMissingError(message)

        try:
            bookings = await self._sheets.read_range(
                config.spreadsheet_id, f"{config.booking_list_sheet}!A:Z"
            )
        except Exception as exc:
            await self._reporter.report(
                CASE_NAME,
                ErrorCategory.SHEET_NOT_FOUND,
                f"Failed to read booking list: {exc}",
                payload={"spreadsheetId": config.spreadsheet_id, "bookingListSheet": config.booking_list_sheet},
                config=config,
            )
            raise RosterUnavailableError(f"Failed to read booking list: {exc}") from exc

        try:
            mapping = await self._matcher.read_mapping(config)
        except RosterUnavailableError as exc:
            await self._reporter.report(
                CASE_NAME,
                ErrorCategory.SHEET_NOT_FOUND,
                str(exc),
                payload={"spreadsheetId": config.spreadsheet_id, "staffChatSheet": config.staff_chat_sheet},
                config=config,
            )
            raise

        if not bookings:
            return {"sent": 0, "reminders": [], "failed": []}

        headers = bookings[0]
        date_idx = find_column(headers, DATE_HEADERS)
        staff_idx = find_column(headers, STAFF_HEADERS)
        client_idx = find_column(headers, CLIENT_HEADERS)
        time_idx = find_column(headers, TIME_HEADERS)

        tomorrow = self.tomorrow()
        reminder_template = config.reminder.template or DEFAULT_REMINDER_TEMPLATE

        sent: list[dict] = []
        failed: list[dict] = []

        for offset, row in enumerate(bookings[1:], start=2):
            booking_date = _cell(row, date_idx)
            if not booking_date or not is_booking_on(booking_date, tomorrow):
                continue

            staff = _cell(row, staff_idx)
            if not staff:
                continue
            client = _cell(row, client_idx)

            chat_id = lookup_chat_identity(mapping, staff)
            if not chat_id:
                await self._reporter.report(
                    CASE_NAME,
                    ErrorCategory.CHAT_IDENTITY_MISSING,
                    f"Staff found for tomorrow's booking but Chatwork ID missing: \"{staff}\"",
                    row_number=offset,
                    payload={"staffName": staff, "clientName": client, "bookingDate": booking_date},
                    config=config,
                )
                failed.append({"staff": staff, "error": "Chatwork ID not found"})
                continue

            message = template.render(reminder_template, {
                "date": booking_date,
                "time": _cell(row, time_idx),
                "client": client,
            })

            try:
                await self._chat.send_message(
                    config.chatwork_token, room_id, format_mention(chat_id, staff, message)
                )
            except Exception as exc:
                logger.warning(
                    f"Reminder to {staff} failed: {exc}",
                    extra={"promotion_id": config.promotion_id, "row_index": offset},
                )
                failed.append({"staff": staff, "error": str(exc)})
                continue

            sent.append({"staff": staff, "client": client})

        logger.info(
            f"Reminders for {tomorrow}: sent={len(sent)}, failed={len(failed)}",
            extra={"promotion_id": config.promotion_id},
        )
        return {"sent": len(sent), "reminders": sent, "failed": failed}
