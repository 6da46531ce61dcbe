# sheet2chat/core/errors.py
"""
Error taxonomy for the dispatch engine.

Errors are reported to the admin room, not thrown, at the top level.  The
exceptions below carry a category so the reporter can label them without
string sniffing; ``classify_exception`` covers everything else.
"""
from __future__ import annotations

import asyncio
from enum import Enum


class ErrorCategory(str, Enum):
    CONFIG_MISSING = "Configuration Missing"
    SHEET_NOT_FOUND = "Spreadsheet Not Found"
    STAFF_MATCH_FAILED = "Staff Matching Failed"
    CHAT_IDENTITY_MISSING = "Chatwork ID Missing"
    TASK_ASSIGNEE_INVALID = "Task Assignee Error"
    MEMBER_FETCH_FAILED = "Member Fetch Error"
    TASK_CREATION_FAILED = "Task Creation Error"
    WEBHOOK_PAYLOAD_INVALID = "Webhook Payload Error"
    API_TIMEOUT = "API Timeout"
    AUTH_FAILURE = "Authentication Failure"
    PERMISSION_DENIED = "Permission Denied"
    INVALID_DATE = "Invalid Date Format"
    SECURITY_ALERT = "Security Alert"
    UNKNOWN = "Unknown Error"


class DispatchError(Exception):
    """Base class for categorized engine errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ConfigurationMissingError(DispatchError):
    """No usable promotion config (or no chat credentials in it)."""

    category = ErrorCategory.CONFIG_MISSING


class RosterUnavailableError(DispatchError):
    """Roster or mapping sheet could not be read."""

    category = ErrorCategory.SHEET_NOT_FOUND


class TaskAssigneeError(DispatchError):
    """No configured assignee, or none of them is a room member."""

    category = ErrorCategory.TASK_ASSIGNEE_INVALID


class MemberFetchError(DispatchError):
    """Room member list could not be fetched."""

    category = ErrorCategory.MEMBER_FETCH_FAILED


class TaskCreationError(DispatchError):
    """The chat platform rejected the task."""

    category = ErrorCategory.TASK_CREATION_FAILED


class InvalidPayloadError(DispatchError):
    """Inbound webhook body is missing type/data or names an unknown type."""

    category = ErrorCategory.WEBHOOK_PAYLOAD_INVALID


def classify_exception(exc: BaseException) -> ErrorCategory:
    """Map an arbitrary exception to a report category."""
    if isinstance(exc, DispatchError):
        return exc.category

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCategory.API_TIMEOUT

    status = getattr(exc, "status", None)
    if status == 401:
        return ErrorCategory.AUTH_FAILURE
    if status == 403:
        return ErrorCategory.PERMISSION_DENIED
    if status == 404:
        return ErrorCategory.SHEET_NOT_FOUND

    message = str(exc).lower()
    if "timeout" in message or "timed out" in message:
        return ErrorCategory.API_TIMEOUT
    if "not found" in message:
        return ErrorCategory.SHEET_NOT_FOUND

    return ErrorCategory.UNKNOWN
