# sheet2chat/core/events.py
"""
Inbound payload normalization.

Three sources arrive at the HTTP boundary:
- spreadsheet triggers posting ``{type, data}`` with camelCase ``data``
- a booking service posting flat snake/camel keys to the booking webhook
- an external scheduling system posting flat keys to the generic webhook
All of them end up as one ``InboundEvent``.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sheet2chat.core.domain import InboundEvent

# Header aliases used for best-effort convenience fields
CLIENT_NAME_KEYS = ("氏名", "お名前", "名前", "Name", "name")
EMAIL_KEYS = ("メールアドレス", "Email", "email", "mail")
DATE_TIME_KEYS = ("日時", "DateTime", "スケジュール")
CONSULTANT_SLOT_KEYS = ("資格", "認定コンサルタント")
STAFF_KEYS = ("担当者名", "担当者", "担当", "Staff")

# Booking service key -> internal column name
BOOKING_FIELD_MAP = {
    "booking_date": "日時",
    "bookingDate": "日時",
    "date_time": "日時",
    "dateTime": "日時",
    "appointment_date": "日時",

    "consultant": "資格",
    "certified_consultant": "資格",
    "certifiedConsultant": "資格",
    "certification": "資格",

    "client_name": "氏名",
    "clientName": "氏名",
    "name": "氏名",
    "customer_name": "氏名",
    "full_name": "氏名",

    "email": "メールアドレス",
    "client_email": "メールアドレス",
    "customerEmail": "メールアドレス",

    "phone": "電話番号",
    "phone_number": "電話番号",
    "tel": "電話番号",
}
ROW_INDEX_KEYS = ("row", "row_index", "rowNumber", "rowIndex")

# Keys that identify the external scheduling system's payload
EXTERNAL_SYSTEM_KEYS = ("event_schedule", "event_member_name", "schedule", "担当者名")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first(mapping: Mapping[str, Any], keys) -> Optional[str]:
    for key in keys:
        value = mapping.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _to_row_index(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        row = int(str(value).strip())
    except ValueError:
        return None
    return row if row > 0 else None


def build_event(data: Mapping[str, Any] | None) -> InboundEvent:
    """Construct an ``InboundEvent`` from an untyped ``data`` object."""
    data = dict(data or {})
    raw_fields = data.get("allFields")
    all_fields = dict(raw_fields) if isinstance(raw_fields, Mapping) else {}

    return InboundEvent(
        sheet_name=_first(data, ("sheetName",)),
        row_index=_to_row_index(data.get("rowIndex")),
        client_name=_first(data, ("clientName",)) or _first(all_fields, CLIENT_NAME_KEYS),
        email=_first(data, ("email",)) or _first(all_fields, EMAIL_KEYS),
        date_time=_first(data, ("dateTime",)) or _first(all_fields, DATE_TIME_KEYS),
        staff=_first(data, ("staff",)),
        staff_chat_id=_first(data, ("staffChatworkId", "staffChatId")),
        consultant_slot=(
            _first(data, ("certifiedConsultant", "consultantSlot"))
            or _first(all_fields, CONSULTANT_SLOT_KEYS)
        ),
        viewer_url=_first(data, ("viewerUrl",)),
        timestamp=_first(data, ("timestamp",)),
        all_fields=all_fields,
    )


def normalize_booking_payload(raw: Mapping[str, Any]) -> InboundEvent:
    """
    Map a booking service payload to internal column names.

    Unknown keys are kept verbatim in ``all_fields``.
    """
    all_fields: dict[str, Any] = {}
    row_index: Any = None

    for key, value in raw.items():
        if key in ROW_INDEX_KEYS:
            row_index = row_index if row_index not in (None, "") else value
            continue
        mapped = BOOKING_FIELD_MAP.get(key)
        if mapped is None:
            all_fields[key] = value
        elif mapped not in all_fields or all_fields[mapped] in (None, ""):
            all_fields[mapped] = value

    return InboundEvent(
        sheet_name=_first(raw, ("sheetName",)),
        row_index=_to_row_index(row_index),
        client_name=_first(all_fields, ("氏名",)),
        email=_first(all_fields, ("メールアドレス",)),
        date_time=_first(all_fields, ("日時",)),
        consultant_slot=_first(all_fields, CONSULTANT_SLOT_KEYS),
        timestamp=_now_iso(),
        all_fields=all_fields,
    )


def is_external_system_payload(body: Mapping[str, Any]) -> bool:
    if body.get("type") or body.get("data"):
        return False
    return any(body.get(key) for key in EXTERNAL_SYSTEM_KEYS)


def normalize_external_payload(body: Mapping[str, Any]) -> InboundEvent:
    """External scheduling system payload; staff arrives pre-assigned."""
    return InboundEvent(
        sheet_name=_first(body, ("sheetName",)),
        row_index=None,
        client_name=_first(body, ("name", "氏名", "お名前")),
        email=_first(body, ("mail", "email", "メールアドレス")),
        date_time=_first(body, ("event_schedule", "schedule", "スケジュール", "日時")),
        staff=_first(body, ("event_member_name", "担当者名", "member_name")),
        timestamp=_now_iso(),
        all_fields=dict(body),
    )
