# sheet2chat/core/dispatcher.py
"""
Per-rule dispatch: notifications in configured order, then the optional task.

Isolation:
- A failed notification is reported and recorded; siblings and the task
  step still run.
- A failed task is reported, recorded and followed by a best-effort warning
  message to the task room, whose own failure is recorded on the outcome.
- ``dispatch_rules`` catches anything escaping one rule so later rules run.

Sends are sequential; nothing is retried.
"""
from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Callable, Optional, Sequence

from sheet2chat.core import filters, template
from sheet2chat.core.domain import (
    DispatchOutcome,
    DispatchReport,
    FallbackOutcome,
    InboundEvent,
    Notification,
    NotificationRule,
    OutcomeKind,
    OutcomeStatus,
    TaskSpec,
    TenantConfig,
)
from sheet2chat.core.error_reporter import ErrorReporter
from sheet2chat.core.errors import (
    DispatchError,
    ErrorCategory,
    MemberFetchError,
    TaskAssigneeError,
    TaskCreationError,
    classify_exception,
)
from sheet2chat.core.ports import ChatClient
from sheet2chat.infra.logging_config import LogContext, get_logger
from sheet2chat.infra.metrics import DispatchMetrics

logger = get_logger(__name__)

CASE_NAME = "Universal Notification"

DEFAULT_TASK_BODY = "【タスク】{sheet}に行が追加されました"
DETAILS_TITLE = "詳細情報"


def build_details_block(columns: Sequence[str], fields: dict) -> str:
    """Bordered block listing whitelisted columns present in the row."""
    lines = ""
    for col in columns:
        if col in fields:
            lines += f"{col}：{template.stringify(fields[col])}\n"
    if not lines:
        return ""
    return f"[info][title]{DETAILS_TITLE}[/title]{lines}[/info]"


def build_notification_message(notification: Notification, event: InboundEvent) -> str:
    message = template.render(notification.template, event.template_data())

    if notification.columns and event.all_fields:
        details = build_details_block(notification.columns, event.all_fields)
        if details:
            if message:
                message += "\n"
            message += details

    return message


def finalize_assignees(assignee_ids: Sequence[str], members: Sequence[dict]) -> list[str]:
    """Configured ids (trimmed, in configured order) that are current room members."""
    valid = {str(m.get("account_id")).strip() for m in members if m.get("account_id") is not None}
    return [aid for aid in (str(a).strip() for a in assignee_ids) if aid and aid in valid]


def end_of_day(now: datetime) -> datetime:
    return now.replace(hour=23, minute=59, second=59, microsecond=0)


class Dispatcher:
    def __init__(
        self,
        chat: ChatClient,
        reporter: ErrorReporter,
        tz: tzinfo,
        clock: Optional[Callable[[tzinfo], datetime]] = None,
    ) -> None:
        self._chat = chat
        self._reporter = reporter
        self._tz = tz
        self._clock = clock or datetime.now

    async def dispatch_rules(
        self,
        rules: Sequence[NotificationRule],
        event: InboundEvent,
        config: TenantConfig,
    ) -> DispatchReport:
        """Dispatch every rule in order; one rule's failure never stops the next."""
        report = DispatchReport()

        for rule in rules:
            outcomes: list[DispatchOutcome] = []
            try:
                await self._dispatch_into(rule, event, config, outcomes)
            except Exception as exc:
                logger.error(
                    f"Rule {rule.id} failed: {exc}",
                    exc_info=True,
                    extra={"promotion_id": config.promotion_id, "sheet_name": rule.sheet_name},
                )
                await self._reporter.report(
                    f"{CASE_NAME}: {rule.sheet_name}",
                    classify_exception(exc),
                    f"Rule {rule.id} failed: {exc}",
                    row_number=event.row_index,
                    payload=event.summary(),
                    config=config,
                )
                outcomes.append(DispatchOutcome(
                    kind=OutcomeKind.RULE,
                    status=OutcomeStatus.FAILED,
                    rule_id=rule.id,
                    error=str(exc),
                ))
            report.extend(outcomes)

        return report

    async def dispatch(
        self,
        rule: NotificationRule,
        event: InboundEvent,
        config: TenantConfig,
    ) -> list[DispatchOutcome]:
        outcomes: list[DispatchOutcome] = []
        await self._dispatch_into(rule, event, config, outcomes)
        return outcomes

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _dispatch_into(
        self,
        rule: NotificationRule,
        event: InboundEvent,
        config: TenantConfig,
        outcomes: list[DispatchOutcome],
    ) -> None:
        ctx = LogContext(
            logger,
            promotion_id=config.promotion_id,
            sheet_name=rule.sheet_name,
            row_index=event.row_index,
        )

        for notification in rule.notifications:
            outcome = await self._send_notification(rule, notification, event, config, ctx)
            DispatchMetrics.notification(outcome.status.value)
            outcomes.append(outcome)

        task = rule.task
        if task is not None and task.enabled and task.room_id:
            outcome = await self._create_task(rule, task, event, config, ctx)
            DispatchMetrics.task(outcome.status.value)
            outcomes.append(outcome)

    async def _send_notification(
        self,
        rule: NotificationRule,
        notification: Notification,
        event: InboundEvent,
        config: TenantConfig,
        ctx: LogContext,
    ) -> DispatchOutcome:
        if not notification.room_id:
            return DispatchOutcome(
                kind=OutcomeKind.NOTIFICATION,
                status=OutcomeStatus.SKIPPED,
                rule_id=rule.id,
                reason="no_room",
            )

        try:
            message = build_notification_message(notification, event)
            if not message:
                ctx.debug(f"Empty message for room {notification.room_id}, skipping")
                return DispatchOutcome(
                    kind=OutcomeKind.NOTIFICATION,
                    status=OutcomeStatus.SKIPPED,
                    room_id=notification.room_id,
                    rule_id=rule.id,
                    reason="empty_message",
                )

            result = await self._chat.send_message(config.chatwork_token, notification.room_id, message)

        except Exception as exc:
            ctx.error(f"Notification to room {notification.room_id} failed: {exc}")
            await self._reporter.report(
                f"{CASE_NAME}: {rule.sheet_name}",
                classify_exception(exc),
                f"Failed to send to Room {notification.room_id}: {exc}",
                row_number=event.row_index,
                payload=event.summary(),
                config=config,
            )
            return DispatchOutcome(
                kind=OutcomeKind.NOTIFICATION,
                status=OutcomeStatus.FAILED,
                room_id=notification.room_id,
                rule_id=rule.id,
                error=str(exc),
            )

        message_id = (result or {}).get("message_id")
        return DispatchOutcome(
            kind=OutcomeKind.NOTIFICATION,
            status=OutcomeStatus.SENT,
            room_id=notification.room_id,
            rule_id=rule.id,
            message_id=str(message_id) if message_id is not None else None,
        )

    async def _create_task(
        self,
        rule: NotificationRule,
        task: TaskSpec,
        event: InboundEvent,
        config: TenantConfig,
        ctx: LogContext,
    ) -> DispatchOutcome:
        if not filters.evaluate(task.filter, event.all_fields):
            ctx.info(f"Skipping task for rule {rule.id}: filter mismatch")
            return DispatchOutcome(
                kind=OutcomeKind.TASK,
                status=OutcomeStatus.SKIPPED,
                room_id=task.room_id,
                rule_id=rule.id,
                reason="filter_mismatch",
            )

        try:
            task_ids = await self._create_validated_task(task, event, config)

        except Exception as exc:
            category = exc.category if isinstance(exc, DispatchError) else ErrorCategory.TASK_CREATION_FAILED
            ctx.error(f"Task creation failed for rule {rule.id}: {exc}")
            await self._reporter.report(
                f"{CASE_NAME} Task: {rule.sheet_name}",
                category,
                str(exc),
                row_number=event.row_index,
                payload=event.summary(),
                config=config,
            )
            fallback = await self._send_task_fallback(task, event, config, exc)
            return DispatchOutcome(
                kind=OutcomeKind.TASK,
                status=OutcomeStatus.FAILED,
                room_id=task.room_id,
                rule_id=rule.id,
                error=str(exc),
                fallback=fallback,
            )

        return DispatchOutcome(
            kind=OutcomeKind.TASK,
            status=OutcomeStatus.CREATED,
            room_id=task.room_id,
            rule_id=rule.id,
            task_ids=tuple(str(t) for t in task_ids),
        )

    async def _create_validated_task(
        self,
        task: TaskSpec,
        event: InboundEvent,
        config: TenantConfig,
    ) -> list:
        if not task.assignee_ids:
            raise TaskAssigneeError("No assignee IDs configured for task")

        try:
            members = await self._chat.get_room_members(config.chatwork_token, task.room_id)
        except Exception as exc:
            raise MemberFetchError(f"Failed to fetch members of room {task.room_id}: {exc}") from exc

        assignees = finalize_assignees(task.assignee_ids, members)
        if not assignees:
            raise TaskAssigneeError(
                f"No valid assignees found in room {task.room_id}. "
                f"Input: {','.join(a.strip() for a in task.assignee_ids)}"
            )

        if task.body_template:
            body = template.render(task.body_template, event.template_data())
        else:
            body = DEFAULT_TASK_BODY.format(sheet=event.sheet_name or "")

        due_at = end_of_day(self._clock(self._tz))

        try:
            result = await self._chat.create_task(
                config.chatwork_token, task.room_id, body, assignees, due_at, "date"
            )
        except Exception as exc:
            raise TaskCreationError(str(exc)) from exc

        return list((result or {}).get("task_ids") or [])

    async def _send_task_fallback(
        self,
        task: TaskSpec,
        event: InboundEvent,
        config: TenantConfig,
        error: Exception,
    ) -> FallbackOutcome:
        message = f"⚠️ Task Creation Failed: {error}\n\n対象シート: {event.sheet_name}"
        try:
            await self._chat.send_message(config.chatwork_token, task.room_id, message)
        except Exception as exc:
            logger.warning(f"Task fallback message to room {task.room_id} failed: {exc}")
            DispatchMetrics.fallback_sent(False)
            return FallbackOutcome(sent=False, error=str(exc))

        DispatchMetrics.fallback_sent(True)
        return FallbackOutcome(sent=True)
