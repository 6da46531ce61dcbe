# sheet2chat/core/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


# ============================================================================
# HARD-CODED DEFAULTS (last layer of tenant default resolution)
# ============================================================================

DEFAULT_BOOKING_LIST_SHEET = "個別相談予約一覧"
DEFAULT_STAFF_LIST_SHEET = "スタッフリスト"
DEFAULT_STAFF_CHAT_SHEET = "担当者チャット"

UNMATCHED_STAFF_LABEL = "未マッチング"


class EventType(str, Enum):
    CONSULTATION = "consultation"
    UNIVERSAL = "universal"
    REMINDER = "reminder"


class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"


class OutcomeKind(str, Enum):
    NOTIFICATION = "notification"
    TASK = "task"
    RULE = "rule"


class OutcomeStatus(str, Enum):
    SENT = "sent"
    CREATED = "created"
    FAILED = "failed"
    SKIPPED = "skipped"


# ============================================================================
# TENANT CONFIGURATION
# ============================================================================

def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class Filter:
    """Declarative condition gating task creation."""
    target_column: str = ""
    operator: str = FilterOperator.EQUALS.value
    target_value: str = ""

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["Filter"]:
        if not isinstance(raw, dict):
            return None
        return cls(
            target_column=str(raw.get("targetColumn") or ""),
            operator=str(raw.get("operator") or FilterOperator.EQUALS.value),
            target_value="" if raw.get("targetValue") is None else str(raw.get("targetValue")),
        )


@dataclass(frozen=True)
class Notification:
    """One chat message sent when a rule fires."""
    room_id: Optional[str]
    template: str = ""
    columns: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: dict) -> "Notification":
        columns = raw.get("columns") or []
        return cls(
            room_id=_str_or_none(raw.get("roomId")),
            template=str(raw.get("template") or ""),
            columns=tuple(str(c) for c in columns if c),
        )


@dataclass(frozen=True)
class TaskSpec:
    """Optional task created when a rule fires."""
    enabled: bool = False
    room_id: Optional[str] = None
    assignee_ids: tuple[str, ...] = ()
    body_template: str = ""
    filter: Optional[Filter] = None

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["TaskSpec"]:
        if not isinstance(raw, dict):
            return None
        assignees = raw.get("assigneeIds") or []
        if isinstance(assignees, (str, int)):
            assignees = [assignees]
        return cls(
            enabled=bool(raw.get("enabled")),
            room_id=_str_or_none(raw.get("roomId")),
            assignee_ids=tuple(str(a) for a in assignees if str(a).strip()),
            body_template=str(raw.get("bodyTemplate") or ""),
            filter=Filter.from_dict(raw.get("filter")),
        )


@dataclass(frozen=True)
class NotificationRule:
    """Binding from a trigger sheet name to notifications and an optional task."""
    id: str
    sheet_name: str
    notifications: tuple[Notification, ...] = ()
    task: Optional[TaskSpec] = None

    @classmethod
    def from_dict(cls, raw: dict) -> "NotificationRule":
        notifications = raw.get("notifications") or []
        return cls(
            id=str(raw["id"]),
            sheet_name=str(raw.get("sheetName") or ""),
            notifications=tuple(
                Notification.from_dict(n) for n in notifications if isinstance(n, dict)
            ),
            task=TaskSpec.from_dict(raw.get("task")),
        )


@dataclass(frozen=True)
class ReminderConfig:
    enabled: bool = True
    template: Optional[str] = None
    room_id: Optional[str] = None


@dataclass(frozen=True)
class TenantConfig:
    """
    Resolved configuration of one promotion.

    Built by ``core.tenant_defaults.resolve_tenant_defaults`` so every field
    already carries its final value; callers never re-apply defaults.
    """
    promotion_id: str
    name: str = ""
    chatwork_token: Optional[str] = None
    room_id: Optional[str] = None
    spreadsheet_id: Optional[str] = None
    booking_list_sheet: str = DEFAULT_BOOKING_LIST_SHEET
    staff_list_sheet: str = DEFAULT_STAFF_LIST_SHEET
    staff_chat_sheet: str = DEFAULT_STAFF_CHAT_SHEET
    consultation_template: Optional[str] = None
    reminder: ReminderConfig = field(default_factory=ReminderConfig)
    assignment_viewer: dict = field(default_factory=dict)
    notification_rules: tuple[NotificationRule, ...] = ()
    admin_chatwork_token: Optional[str] = None
    admin_room_id: Optional[str] = None
    updated_at: Optional[datetime] = None
    is_legacy: bool = False

    @property
    def rule_sheet_names(self) -> list[str]:
        return [r.sheet_name for r in self.notification_rules if r.sheet_name]


# ============================================================================
# INBOUND EVENT
# ============================================================================

@dataclass
class InboundEvent:
    """
    Normalized inbound row-event.

    ``all_fields`` keeps every original column/key; the other attributes are
    best-effort extractions from common header aliases.
    """
    sheet_name: Optional[str] = None
    row_index: Optional[int] = None
    client_name: Optional[str] = None
    email: Optional[str] = None
    date_time: Optional[str] = None
    staff: Optional[str] = None
    staff_chat_id: Optional[str] = None
    consultant_slot: Optional[str] = None
    viewer_url: Optional[str] = None
    timestamp: Optional[str] = None
    all_fields: dict[str, Any] = field(default_factory=dict)

    def template_data(self) -> dict[str, Any]:
        """Flat + nested view used by the template renderer."""
        data: dict[str, Any] = {
            "sheetName": self.sheet_name,
            "rowIndex": self.row_index,
            "clientName": self.client_name,
            "email": self.email,
            "dateTime": self.date_time,
            "staff": self.staff,
            "viewerUrl": self.viewer_url,
            "timestamp": self.timestamp,
        }
        data = {k: v for k, v in data.items() if v is not None}
        data.update(self.all_fields)
        data["allFields"] = self.all_fields
        return data

    def summary(self) -> dict[str, Any]:
        """Payload reference attached to error reports."""
        return {
            "sheetName": self.sheet_name,
            "rowIndex": self.row_index,
            "clientName": self.client_name,
            "dateTime": self.date_time,
            "allFields": self.all_fields,
        }


@dataclass(frozen=True)
class StaffMatchRecord:
    """Ephemeral result of roster matching."""
    matched_staff_name: Optional[str] = None
    chat_identity: Optional[str] = None
    reason: Optional[str] = None  # why nothing matched, for error reports

    @property
    def matched(self) -> bool:
        return self.matched_staff_name is not None


# ============================================================================
# DISPATCH OUTCOMES
# ============================================================================

@dataclass(frozen=True)
class FallbackOutcome:
    """Result of the best-effort warning message sent after a task failure."""
    sent: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class DispatchOutcome:
    """
    Result of one channel action for one rule.

    A failed task carries both levels independently: ``error`` is the primary
    failure and ``fallback`` the warning message attempt that followed it.
    """
    kind: OutcomeKind
    status: OutcomeStatus
    room_id: Optional[str] = None
    rule_id: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    message_id: Optional[str] = None
    task_ids: tuple[str, ...] = ()
    fallback: Optional[FallbackOutcome] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "roomId": self.room_id,
            "status": self.status.value,
        }
        if self.rule_id is not None:
            data["ruleId"] = self.rule_id
        if self.reason is not None:
            data["reason"] = self.reason
        if self.error is not None:
            data["error"] = self.error
        if self.message_id is not None:
            data["id"] = self.message_id
        if self.task_ids:
            data["taskIds"] = list(self.task_ids)
        if self.fallback is not None:
            data["fallback"] = {"sent": self.fallback.sent, "error": self.fallback.error}
        return data


@dataclass
class DispatchReport:
    """Per-channel outcomes aggregated across every matched rule."""
    outcomes: list[DispatchOutcome] = field(default_factory=list)

    def extend(self, outcomes: list[DispatchOutcome]) -> None:
        self.outcomes.extend(outcomes)

    def of_kind(self, kind: OutcomeKind) -> list[DispatchOutcome]:
        return [o for o in self.outcomes if o.kind == kind]

    def to_dict(self) -> dict[str, Any]:
        return {
            "notifications": [o.to_dict() for o in self.of_kind(OutcomeKind.NOTIFICATION)],
            "tasks": [o.to_dict() for o in self.of_kind(OutcomeKind.TASK)],
            "rules": [o.to_dict() for o in self.of_kind(OutcomeKind.RULE)],
        }
