# sheet2chat/core/filters.py
from __future__ import annotations

from typing import Any, Mapping, Optional

from sheet2chat.core.domain import Filter, FilterOperator
from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)


def evaluate(filter_: Optional[Filter], fields: Mapping[str, Any] | None) -> bool:
    """
    Decide whether a filtered action should proceed for this row.

    No filter or an empty ``target_column`` always passes.  Unknown operators
    also pass, so a config written by a newer admin UI never blocks dispatch.
    """
    if filter_ is None or not filter_.target_column:
        return True

    fields = fields or {}
    raw = fields.get(filter_.target_column)
    actual = "" if raw is None else str(raw).strip()
    expected = (filter_.target_value or "").strip()

    if filter_.operator == FilterOperator.EQUALS.value:
        return actual == expected
    if filter_.operator == FilterOperator.NOT_EQUALS.value:
        return actual != expected

    logger.warning("Unknown filter operator %r, allowing action", filter_.operator)
    return True
