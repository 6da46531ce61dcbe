# sheet2chat/core/template.py
"""
Message template rendering.

``{key}`` is replaced by ``data[key]``. ``{allFields.X}`` reads column ``X``
of ``data["allFields"]`` with X taken whole, so ``{allFields.No.}`` works;
other dotted paths walk into nested dicts.  Missing keys render as an
empty string.
"""
from __future__ import annotations

import json
import re
from typing import Any, Mapping

# Spreadsheet scripting renders date-only cells with a midnight suffix and
# time-only cells on the spreadsheet epoch day.
DATE_ONLY_SUFFIX = " 00:00:00"
TIME_ONLY_PREFIX = "1899/12/30 "

_TOKEN_RE = re.compile(r"\{([^{}\n]+)\}")

_MISSING = object()

ALL_FIELDS_KEY = "allFields"


def format_value(value: Any) -> Any:
    """Shape spreadsheet date/time artifacts; other values pass through."""
    if not isinstance(value, str):
        return value

    if value.endswith(DATE_ONLY_SUFFIX):
        return value[: -len(DATE_ONLY_SUFFIX)]

    if value.startswith(TIME_ONLY_PREFIX):
        time_part = value[len(TIME_ONLY_PREFIX):].strip()
        pieces = time_part.split(":")
        if len(pieces) >= 2:
            return f"{pieces[0]}:{pieces[1]}"

    return value


def stringify(value: Any) -> str:
    """Render one substitution value."""
    value = format_value(value)
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _walk(data: Mapping[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _lookup(data: Mapping[str, Any], key: str) -> Any:
    if key in data:
        return data[key]

    # Column headers may contain dots ("No."), so take the column name whole first
    head, sep, column = key.partition(".")
    if sep and head == ALL_FIELDS_KEY:
        fields = data.get(ALL_FIELDS_KEY)
        if isinstance(fields, Mapping) and column in fields:
            return fields[column]

    if "." not in key:
        return _MISSING
    return _walk(data, key)


def render(template: str | None, data: Mapping[str, Any]) -> str:
    """Render ``template`` against ``data``. Pure; unknown tokens become ''."""
    if not template:
        return ""

    def substitute(match: re.Match) -> str:
        value = _lookup(data, match.group(1))
        if value is _MISSING:
            return ""
        return stringify(value)

    return _TOKEN_RE.sub(substitute, str(template))
