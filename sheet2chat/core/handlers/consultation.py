# sheet2chat/core/handlers/consultation.py
"""
Consultation booking handler.

Staff is either pre-matched by the spreadsheet trigger (``staff`` +
``staffChatworkId`` in the event) or matched here against the roster.
After matching, the surname and a viewer link are written back to the
booking row (or a new row is appended when the row is unknown), and the
promotion room is notified with a mention of the assigned staff member.

A roster that cannot be read does not abort the booking: the event goes on
unmatched and an "unassigned" notice is sent instead.
"""
from __future__ import annotations

from typing import Any, Optional

from sheet2chat.core import template
from sheet2chat.core.domain import UNMATCHED_STAFF_LABEL, InboundEvent, StaffMatchRecord, TenantConfig
from sheet2chat.core.error_reporter import ErrorReporter
from sheet2chat.core.errors import ConfigurationMissingError, ErrorCategory, RosterUnavailableError
from sheet2chat.core.normalize import split_surname
from sheet2chat.core.ports import ChatClient, SheetsClient
from sheet2chat.core.staff_matcher import StaffMatcher, lookup_chat_identity
from sheet2chat.core.viewer import viewer_digest
from sheet2chat.infra.chatwork_client import format_mention
from sheet2chat.infra.logging_config import LogContext, get_logger

logger = get_logger(__name__)

CASE_NAME = "Case 1: 個別相談予約"

DEFAULT_CONSULTATION_TEMPLATE = "【個別相談予約】\n日時：{dateTime}\nお客様：{clientName}\n担当：{staff}"
UNASSIGNED_NOTICE = "⚠️ 担当者が自動で割り当てられませんでした。手動で割り当ててください。"


def generate_viewer_url(base_url: str, salt: str, email: Optional[str], name: Optional[str]) -> Optional[str]:
    """``{base}/viewer/{sha256(salt:email-or-name)[:16]}``; None without an identity."""
    identity = email or name
    if not identity:
        return None
    digest = viewer_digest(salt, identity)
    return f"{base_url.rstrip('/')}/viewer/{digest}"


def build_booking_row(
    headers: list[str],
    event: InboundEvent,
    staff_column: int,
    staff_value: Optional[str],
    viewer_column: int,
    viewer_url: Optional[str],
) -> list[Any]:
    """Row laid out by the sheet's header row, with the write-back columns set."""
    width = max(len(headers), staff_column, viewer_column)
    row: list[Any] = [""] * width
    for idx, header in enumerate(headers):
        if header in event.all_fields:
            row[idx] = template.stringify(event.all_fields[header])
    if staff_value:
        row[staff_column - 1] = staff_value
    if viewer_url:
        row[viewer_column - 1] = viewer_url
    return row


class ConsultationHandler:
    def __init__(
        self,
        chat: ChatClient,
        sheets: SheetsClient,
        reporter: ErrorReporter,
        settings,
        staff_matcher: Optional[StaffMatcher] = None,
    ) -> None:
        self._chat = chat
        self._sheets = sheets
        self._reporter = reporter
        self._settings = settings
        self._matcher = staff_matcher or StaffMatcher(sheets)

    async def handle(self, event: InboundEvent, config: TenantConfig) -> dict[str, Any]:
        ctx = LogContext(
            logger,
            promotion_id=config.promotion_id,
            sheet_name=event.sheet_name,
            row_index=event.row_index,
        )

        if not config.chatwork_token or not config.room_id:
            message = f"Chatwork token or room not configured for promotion '{config.promotion_id}'"
            await self._report(ErrorCategory.CONFIG_MISSING, message, event, config)
            raise ConfigurationMissingError(message)

        pre_matched = bool(event.staff) and event.staff != UNMATCHED_STAFF_LABEL

        if pre_matched:
            record = StaffMatchRecord(matched_staff_name=event.staff, chat_identity=event.staff_chat_id)
            if not record.chat_identity:
                record = await self._lookup_identity(record, config, ctx)
        else:
            record = await self._match(event, config, ctx)

        viewer_url = event.viewer_url
        if not pre_matched:
            viewer_url = viewer_url or generate_viewer_url(
                self._settings.viewer_base_url,
                self._settings.viewer_url_salt,
                event.email,
                event.client_name,
            )
            await self._write_back(event, config, record, viewer_url, ctx)

        event.staff = record.matched_staff_name
        event.staff_chat_id = record.chat_identity
        event.viewer_url = viewer_url

        if not record.matched:
            detail = f'Staff matching failed for DateTime: "{event.date_time}"'
            if record.reason:
                detail += f" ({record.reason}, slot: {event.consultant_slot!r})"
            await self._report(ErrorCategory.STAFF_MATCH_FAILED, detail, event, config)
            notified = await self._send_unassigned(event, config, ctx)
            return {"matched": False, "notified": notified, "staff": None, "viewerUrl": viewer_url}

        staff = record.matched_staff_name
        message = self._render(event, config, staff)

        if not record.chat_identity:
            await self._report(
                ErrorCategory.CHAT_IDENTITY_MISSING,
                f'No Chatwork ID found for staff: "{staff}"',
                event,
                config,
                payload={"staff": staff},
            )
            body = message
        else:
            body = format_mention(record.chat_identity, staff, message)

        # A failed send propagates; the engine reports it with the event payload
        await self._chat.send_message(config.chatwork_token, config.room_id, body)

        ctx.info(f"Consultation notified: staff={staff}, mention={bool(record.chat_identity)}")
        return {"matched": True, "notified": True, "staff": staff, "viewerUrl": viewer_url}

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _match(self, event: InboundEvent, config: TenantConfig, ctx: LogContext) -> StaffMatchRecord:
        try:
            return await self._matcher.match_booking(config, event.date_time, event.consultant_slot)
        except RosterUnavailableError as exc:
            ctx.warning(f"Roster unavailable, continuing unmatched: {exc}")
            await self._report(ErrorCategory.SHEET_NOT_FOUND, str(exc), event, config)
            return StaffMatchRecord(reason="roster_unavailable")

    async def _lookup_identity(
        self,
        record: StaffMatchRecord,
        config: TenantConfig,
        ctx: LogContext,
    ) -> StaffMatchRecord:
        if not config.spreadsheet_id:
            return record
        try:
            mapping = await self._matcher.read_mapping(config)
        except RosterUnavailableError as exc:
            ctx.warning(str(exc))
            return record
        return StaffMatchRecord(
            matched_staff_name=record.matched_staff_name,
            chat_identity=lookup_chat_identity(mapping, record.matched_staff_name),
        )

    async def _write_back(
        self,
        event: InboundEvent,
        config: TenantConfig,
        record: StaffMatchRecord,
        viewer_url: Optional[str],
        ctx: LogContext,
    ) -> None:
        if not config.spreadsheet_id:
            return

        sheet_name = event.sheet_name or config.booking_list_sheet
        surname = split_surname(record.matched_staff_name) if record.matched else None
        staff_col = self._settings.staff_column
        viewer_col = self._settings.viewer_url_column

        try:
            if event.row_index:
                if surname:
                    await self._sheets.write_cell(
                        config.spreadsheet_id, sheet_name, event.row_index, staff_col, surname
                    )
                if viewer_url:
                    await self._sheets.write_cell(
                        config.spreadsheet_id, sheet_name, event.row_index, viewer_col, viewer_url
                    )
            else:
                header_rows = await self._sheets.read_range(config.spreadsheet_id, f"{sheet_name}!1:1")
                headers = [str(h) for h in header_rows[0]] if header_rows else []
                row = build_booking_row(headers, event, staff_col, surname, viewer_col, viewer_url)
                result = await self._sheets.append_row(config.spreadsheet_id, sheet_name, row)
                ctx.info(f"Booking row appended: {result.get('updatedRange')}")
        except Exception as exc:
            ctx.error(f"Booking write-back failed: {exc}")
            await self._report(
                ErrorCategory.SHEET_NOT_FOUND,
                f"Failed to write booking row to '{sheet_name}': {exc}",
                event,
                config,
            )

    async def _send_unassigned(self, event: InboundEvent, config: TenantConfig, ctx: LogContext) -> bool:
        message = f"{UNASSIGNED_NOTICE}\n{self._render(event, config, UNMATCHED_STAFF_LABEL)}"
        try:
            await self._chat.send_message(config.chatwork_token, config.room_id, message)
        except Exception as exc:
            ctx.warning(f"Unassigned notice failed: {exc}")
            await self._report(
                ErrorCategory.UNKNOWN,
                f"Failed to send unassigned notice: {exc}",
                event,
                config,
                payload={"roomId": config.room_id},
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _render(event: InboundEvent, config: TenantConfig, staff: str) -> str:
        data = event.template_data()
        data.update({
            "dateTime": event.date_time or "",
            "clientName": event.client_name or "",
            "staff": staff,
        })
        return template.render(config.consultation_template or DEFAULT_CONSULTATION_TEMPLATE, data)

    async def _report(
        self,
        category: ErrorCategory,
        message: str,
        event: InboundEvent,
        config: TenantConfig,
        payload: Any = None,
    ) -> bool:
        return await self._reporter.report(
            CASE_NAME,
            category,
            message,
            row_number=event.row_index,
            payload=payload if payload is not None else event.summary(),
            config=config,
        )
