# sheet2chat/core/staff_matcher.py
"""
Roster-based staff matching for consultation bookings.

The roster sheet has one row per bookable date/time and one column per
named consultant slot (e.g. "Certified Consultant 1").  A booking names its
slot by the column *label*; the matched staff member is the cell at
(row whose normalized date equals the booking date, slot column).
"""
from __future__ import annotations

from typing import Optional, Sequence

from sheet2chat.core.domain import StaffMatchRecord, TenantConfig
from sheet2chat.core.errors import RosterUnavailableError
from sheet2chat.core.normalize import normalize_date_key, split_surname
from sheet2chat.core.ports import SheetsClient
from sheet2chat.infra.logging_config import get_logger
from sheet2chat.infra.metrics import DispatchMetrics

logger = get_logger(__name__)

DATE_TIME_HEADERS = ("日時", "DateTime")
MAPPING_NAME_HEADERS = ("名前", "Name", "スタッフ名")
MAPPING_ID_HEADERS = ("ChatworkID", "Chatwork", "ID")

# A1 ranges read from the roster / mapping sheets
ROSTER_RANGE = "A:Z"
MAPPING_RANGE = "A:Z"


def find_column(headers: Sequence[object], candidates: Sequence[str]) -> int:
    """Index of the first header containing any candidate, or -1."""
    for idx, header in enumerate(headers):
        if header is None:
            continue
        text = str(header)
        if any(c in text for c in candidates):
            return idx
    return -1


def find_exact_column(headers: Sequence[object], label: str) -> int:
    target = label.strip()
    for idx, header in enumerate(headers):
        if header is not None and str(header).strip() == target:
            return idx
    return -1


REASON_MISSING_INPUT = "missing_date_or_slot"
REASON_EMPTY_ROSTER = "empty_roster"
REASON_NO_DATE_COLUMN = "date_column_not_found"
REASON_NO_SLOT_COLUMN = "slot_column_not_found"
REASON_NO_ROW = "no_matching_row"
REASON_EMPTY_SLOT = "slot_empty"


def match_with_reason(
    roster: Sequence[Sequence[object]],
    date_time_key: Optional[str],
    consultant_column_name: Optional[str],
) -> tuple[Optional[str], Optional[str]]:
    """``(staff_name, None)`` on a match, ``(None, reason)`` otherwise."""
    if not date_time_key or not consultant_column_name:
        return None, REASON_MISSING_INPUT
    if not roster:
        return None, REASON_EMPTY_ROSTER

    headers = roster[0]
    date_idx = find_column(headers, DATE_TIME_HEADERS)
    slot_idx = find_exact_column(headers, consultant_column_name)

    if date_idx == -1:
        logger.warning("Roster has no date/time column: headers=%s", list(headers))
        return None, REASON_NO_DATE_COLUMN
    if slot_idx == -1:
        # Renamed slot columns land here
        logger.warning(
            "Roster has no column labelled %r: headers=%s",
            consultant_column_name, list(headers),
        )
        return None, REASON_NO_SLOT_COLUMN

    target = normalize_date_key(date_time_key)

    for row in roster[1:]:
        if date_idx >= len(row):
            continue
        if normalize_date_key(row[date_idx]) != target:
            continue
        value = row[slot_idx] if slot_idx < len(row) else None
        text = "" if value is None else str(value).strip()
        return (text, None) if text else (None, REASON_EMPTY_SLOT)

    return None, REASON_NO_ROW


def match(
    roster: Sequence[Sequence[object]],
    date_time_key: Optional[str],
    consultant_column_name: Optional[str],
) -> Optional[str]:
    """
    Staff name for the booking, or None.

    First matching row wins; an empty slot cell counts as no match.
    """
    staff, _ = match_with_reason(roster, date_time_key, consultant_column_name)
    return staff


def lookup_chat_identity(mapping: Sequence[Sequence[object]], staff_name: Optional[str]) -> Optional[str]:
    """
    Chat account id for a staff member from the staff -> chat mapping sheet.

    Rows are matched by surname containment, so "山田" matches "山田 太郎".
    """
    if not mapping or not staff_name:
        return None

    surname = split_surname(staff_name)
    if not surname:
        return None

    headers = mapping[0]
    name_idx = find_column(headers, MAPPING_NAME_HEADERS)
    id_idx = find_column(headers, MAPPING_ID_HEADERS)
    if name_idx == -1 or id_idx == -1:
        # Headerless two-column sheet: name, id
        name_idx, id_idx = 0, 1
        rows = mapping
    else:
        rows = mapping[1:]

    for row in rows:
        if len(row) <= max(name_idx, id_idx):
            continue
        name = row[name_idx]
        if name is not None and surname in str(name):
            identity = str(row[id_idx]).strip()
            if identity:
                return identity
    return None


class StaffMatcher:
    """Reads the roster and mapping sheets for a promotion and matches staff."""

    def __init__(self, sheets: SheetsClient) -> None:
        self._sheets = sheets

    async def read_roster(self, config: TenantConfig) -> list[list[str]]:
        if not config.spreadsheet_id:
            raise RosterUnavailableError(
                f"No spreadsheet configured for promotion '{config.promotion_id}'"
            )
        try:
            return await self._sheets.read_range(
                config.spreadsheet_id, f"{config.staff_list_sheet}!{ROSTER_RANGE}"
            )
        except Exception as exc:
            raise RosterUnavailableError(
                f"Failed to read roster '{config.staff_list_sheet}': {exc}"
            ) from exc

    async def read_mapping(self, config: TenantConfig) -> list[list[str]]:
        if not config.spreadsheet_id:
            raise RosterUnavailableError(
                f"No spreadsheet configured for promotion '{config.promotion_id}'"
            )
        try:
            return await self._sheets.read_range(
                config.spreadsheet_id, f"{config.staff_chat_sheet}!{MAPPING_RANGE}"
            )
        except Exception as exc:
            raise RosterUnavailableError(
                f"Failed to read staff chat mapping '{config.staff_chat_sheet}': {exc}"
            ) from exc

    async def match_booking(
        self,
        config: TenantConfig,
        date_time: Optional[str],
        consultant_slot: Optional[str],
    ) -> StaffMatchRecord:
        """
        Match staff and resolve their chat identity.

        Raises ``RosterUnavailableError`` when the roster cannot be read; a
        mapping-sheet failure only leaves ``chat_identity`` empty.
        """
        roster = await self.read_roster(config)
        staff, reason = match_with_reason(roster, date_time, consultant_slot)
        DispatchMetrics.staff_match(staff is not None)

        if staff is None:
            logger.info(
                "No staff matched: date=%r slot=%r reason=%s", date_time, consultant_slot, reason,
                extra={"promotion_id": config.promotion_id},
            )
            return StaffMatchRecord(reason=reason)

        try:
            mapping = await self.read_mapping(config)
        except RosterUnavailableError as exc:
            logger.warning("%s", exc, extra={"promotion_id": config.promotion_id})
            return StaffMatchRecord(matched_staff_name=staff)

        return StaffMatchRecord(
            matched_staff_name=staff,
            chat_identity=lookup_chat_identity(mapping, staff),
        )
