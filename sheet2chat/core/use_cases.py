# sheet2chat/core/use_cases.py
"""
Application service layer.

Workflow per inbound event: normalize payload -> resolve promotion ->
route by event type -> handler result.  The HTTP layer only authenticates
and marshals; everything that decides anything happens here.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from sheet2chat.core.domain import DEFAULT_BOOKING_LIST_SHEET, EventType, InboundEvent
from sheet2chat.core.error_reporter import ErrorReporter
from sheet2chat.core.errors import DispatchError, ErrorCategory, InvalidPayloadError, classify_exception
from sheet2chat.core.events import (
    build_event,
    is_external_system_payload,
    normalize_booking_payload,
    normalize_external_payload,
)
from sheet2chat.core.handlers import ConsultationHandler, ReminderHandler, UniversalHandler
from sheet2chat.core.tenant_resolver import ResolvedTenant, TenantResolver
from sheet2chat.infra.logging_config import get_logger
from sheet2chat.infra.metrics import DispatchMetrics

logger = get_logger(__name__)

WEBHOOK_CASE = "Webhook Layer"
BOOKING_CASE = "Case 1: 個別相談予約"
REMINDER_CASE = "Case 4: 前日リマインダー"


def parse_event_type(raw: Any) -> Optional[EventType]:
    if raw is None or raw == "":
        return None
    try:
        return EventType(str(raw))
    except ValueError:
        return None


class NotificationEngine:
    def __init__(
        self,
        *,
        resolver: TenantResolver,
        reporter: ErrorReporter,
        universal: UniversalHandler,
        consultation: ConsultationHandler,
        reminder: ReminderHandler,
    ) -> None:
        self.resolver = resolver
        self.reporter = reporter
        self.universal = universal
        self.consultation = consultation
        self.reminder = reminder

    async def process(self, body: Mapping[str, Any], promotion_id: Optional[str] = None) -> dict:
        """
        Handle a generic webhook body ``{type, data, config?, promotionId?, sheetName?}``.

        Raises:
            InvalidPayloadError: type/data missing or type unknown (already reported)
        """
        body = dict(body or {})
        raw_type = body.get("type")
        data = body.get("data")
        event: Optional[InboundEvent] = None

        if is_external_system_payload(body):
            logger.info("Detected external scheduling system payload")
            raw_type = EventType.CONSULTATION.value
            event = normalize_external_payload(body)
        elif isinstance(data, Mapping):
            event = build_event(data)

        event_type = parse_event_type(raw_type)
        explicit_sheet = body.get("sheetName")
        target_sheet = explicit_sheet or (event.sheet_name if event else None)
        if not target_sheet and event_type == EventType.CONSULTATION:
            target_sheet = DEFAULT_BOOKING_LIST_SHEET

        injected = body.get("config") if isinstance(body.get("config"), Mapping) else None
        resolved = await self.resolver.resolve(
            promotion_id=body.get("promotionId") or promotion_id,
            sheet_name=target_sheet,
            injected=dict(injected) if injected else None,
        )

        if event_type is None and raw_type is None and event is not None:
            event_type = resolved.implied_event_type

        if event is None or event_type is None:
            if raw_type and event is not None:
                message = f"Unknown webhook type: {raw_type}"
            else:
                message = "Missing type or data"
            logger.error(f"Invalid payload: {message}")
            await self.reporter.report(
                WEBHOOK_CASE,
                ErrorCategory.WEBHOOK_PAYLOAD_INVALID,
                message,
                payload=body,
                config=resolved.config,
            )
            raise InvalidPayloadError(message)

        if event.sheet_name is None and explicit_sheet:
            event.sheet_name = str(explicit_sheet)

        result = await self._route(event_type, event, resolved)
        return {"success": True, "promotionId": resolved.promotion_id, "result": result}

    async def process_booking(self, raw: Mapping[str, Any]) -> dict:
        """Direct booking webhook: alias-mapped payload -> consultation."""
        if not raw:
            await self.reporter.report(
                BOOKING_CASE,
                ErrorCategory.WEBHOOK_PAYLOAD_INVALID,
                "Empty or missing request body",
                payload="Empty payload",
            )
            raise InvalidPayloadError("Missing request body")

        event = normalize_booking_payload(raw)
        resolved = await self.resolver.resolve(
            promotion_id=raw.get("promotionId"),
            sheet_name=event.sheet_name or DEFAULT_BOOKING_LIST_SHEET,
        )
        result = await self._route(EventType.CONSULTATION, event, resolved)
        return {
            "success": True,
            "promotionId": resolved.promotion_id,
            "result": result,
            "normalized": {
                "dateTime": event.date_time,
                "consultant": event.consultant_slot,
                "client": event.client_name,
            },
        }

    async def run_reminders(self, promotion_id: Optional[str] = None) -> dict:
        resolved = await self.resolver.resolve(promotion_id=promotion_id)
        result = await self._route(EventType.REMINDER, InboundEvent(), resolved)
        return {"success": True, "promotionId": resolved.promotion_id, **result}

    async def _route(self, event_type: EventType, event: InboundEvent, resolved: ResolvedTenant) -> dict:
        DispatchMetrics.event_received(event_type.value)
        config = resolved.config

        try:
            with DispatchMetrics.track_dispatch_time(event_type.value):
                if event_type == EventType.CONSULTATION:
                    return await self.consultation.handle(event, config)
                if event_type == EventType.UNIVERSAL:
                    return await self.universal.handle(event, config)
                return await self.reminder.handle(config)
        except Exception as exc:
            category = classify_exception(exc)
            logger.error(
                f"{event_type.value} handler failed: {exc}",
                exc_info=True,
                extra={"promotion_id": config.promotion_id, "sheet_name": event.sheet_name},
            )
            # DispatchErrors are raised by handlers after they reported them
            if not isinstance(exc, DispatchError):
                case = REMINDER_CASE if event_type == EventType.REMINDER else f"Webhook: {event_type.value}"
                await self.reporter.report(
                    case,
                    category,
                    str(exc),
                    row_number=event.row_index,
                    payload=event.summary(),
                    config=config,
                )
            raise
