# sheet2chat/core/viewer.py
"""
Assignment viewer lookup.

A participant opens ``{base}/viewer/{id}`` (the link written back to the
booking row) and the page asks for their submission status.  ``id`` is
either the participant's email or the salted digest produced by
``viewer_digest``; it is matched against the questionnaire sheet named in
the promotion's ``assignmentViewer`` block, and every assignment sheet is
then checked for a row carrying the participant's email (or name when the
sheet has no email column).

An assignment sheet that cannot be read is reported per entry and does not
fail the lookup.
"""
from __future__ import annotations

import hashlib
from typing import Any, Optional

from sheet2chat.core.domain import TenantConfig
from sheet2chat.core.ports import SheetsClient
from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_QUESTIONNAIRE_SHEET = "事前アンケート"
UNKNOWN_USER_NAME = "不明"
SUBMITTED_LABEL = "提出済み"
NOT_SUBMITTED_LABEL = "未提出"
SHEET_READ_ERROR = "シートが読み込めませんでした"

NAME_KEYWORDS = ("氏名", "名前", "お名前")


class ViewerLookupError(Exception):
    """Lookup failed in a way the viewer page shows to the participant."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(message)


def viewer_digest(salt: str, identity: str) -> str:
    return hashlib.sha256(f"{salt}:{identity}".encode("utf-8")).hexdigest()[:16]


def email_column(headers: list[Any]) -> Optional[int]:
    for idx, header in enumerate(headers):
        text = str(header or "")
        if "メール" in text or "email" in text.lower():
            return idx
    return None


def name_column(headers: list[Any]) -> Optional[int]:
    for idx, header in enumerate(headers):
        text = str(header or "")
        if any(keyword in text for keyword in NAME_KEYWORDS):
            return idx
    return None


def _cell(row: list[Any], idx: Optional[int]) -> str:
    # Sheets drops trailing empty cells, so rows can be shorter than the header
    if idx is None or idx >= len(row):
        return ""
    return str(row[idx] or "")


def find_participant(rows: list[list[Any]], viewer_id: str, salt: str) -> Optional[tuple[str, str]]:
    """(name, email) of the first data row matching ``viewer_id`` by email or digest."""
    headers = rows[0]
    email_idx = email_column(headers)
    name_idx = name_column(headers)
    if email_idx is None and name_idx is None:
        raise ViewerLookupError(500, "Identifiable columns not found in master sheet")

    for row in rows[1:]:
        email = _cell(row, email_idx)
        name = _cell(row, name_idx)
        if email and email == viewer_id:
            return name, email
        identity = email or name
        if identity and viewer_digest(salt, identity) == viewer_id:
            return name, email
    return None


class AssignmentViewer:
    def __init__(self, sheets: SheetsClient, settings) -> None:
        self._sheets = sheets
        self._settings = settings

    async def lookup(self, config: TenantConfig, viewer_id: str) -> dict:
        """
        Submission status for one participant.

        Returns:
            ``{userName, userEmail, assignments: [{name, submitted, lastUpdated | error}]}``

        Raises:
            ViewerLookupError: viewer not configured, empty questionnaire sheet,
                no identifying columns, or no matching participant.
        """
        viewer = config.assignment_viewer or {}
        questionnaire = viewer.get("questionnaire") or {}
        master_id = questionnaire.get("ssId")
        if not master_id:
            raise ViewerLookupError(404, "Viewer not configured")

        master_sheet = questionnaire.get("sheetName") or DEFAULT_QUESTIONNAIRE_SHEET
        rows = await self._sheets.read_range(master_id, f"{master_sheet}!A:Z")
        if not rows:
            raise ViewerLookupError(404, "Master sheet is empty")

        participant = find_participant(rows, viewer_id, self._settings.viewer_url_salt)
        if participant is None:
            raise ViewerLookupError(404, "User not found in master sheet")
        name, email = participant

        assignment_sheet_id = viewer.get("spreadsheetId") or master_id
        results = []
        for assignment in viewer.get("assignments") or []:
            sheet_name = str((assignment or {}).get("name") or "")
            if not sheet_name:
                continue
            results.append(await self._assignment_status(assignment_sheet_id, sheet_name, name, email))

        logger.info(
            f"Viewer lookup: {len(results)} assignments",
            extra={"promotion_id": config.promotion_id, "sheet_name": master_sheet},
        )
        return {
            "userName": name or UNKNOWN_USER_NAME,
            "userEmail": email,
            "assignments": results,
        }

    async def _assignment_status(self, sheet_id: str, sheet_name: str, name: str, email: str) -> dict:
        try:
            rows = await self._sheets.read_range(sheet_id, f"{sheet_name}!A:Z")
        except Exception as exc:
            logger.warning(f"Failed to read assignment sheet {sheet_name}: {exc}")
            return {"name": sheet_name, "submitted": False, "error": SHEET_READ_ERROR}

        headers = rows[0] if rows else []
        email_idx = email_column(headers)
        name_idx = name_column(headers)

        if email_idx is not None:
            column, target = email_idx, email
        else:
            column, target = name_idx, name

        submitted = bool(target) and any(_cell(row, column) == target for row in rows[1:])
        return {
            "name": sheet_name,
            "submitted": submitted,
            "lastUpdated": SUBMITTED_LABEL if submitted else NOT_SUBMITTED_LABEL,
        }
