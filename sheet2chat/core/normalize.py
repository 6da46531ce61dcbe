# sheet2chat/core/normalize.py
"""
Value normalization for spreadsheet strings.

The same booking date reaches us formatted differently depending on where it
was typed (form, spreadsheet script, external booking system, Japanese IME).
Roster matching compares ``normalize_date_key`` of both sides, so every glyph
class handled here has its own unit tests.

Glyph classes:
- full-width digits           ０-９         -> 0-9
- parentheses / colon / slash （）：／       -> ( ) : /
- wave dash / tilde variants  〜 ～ ~ ∼ ⁓ 〰 -> -
- whitespace (half/full width, tabs, NBSP)  -> removed
- Japanese date units         2026年1月31日 -> 2026/1/31
- zero-padded date parts      2026/01/05    -> 2026/1/5
"""
from __future__ import annotations

import re

_FULLWIDTH_DIGITS = str.maketrans("０１２３４５６７８９", "0123456789")

_PUNCTUATION = str.maketrans({
    "（": "(",
    "）": ")",
    "：": ":",
    "／": "/",
})

# U+301C WAVE DASH, U+FF5E FULLWIDTH TILDE, U+007E TILDE, U+223C TILDE OPERATOR,
# U+2053 SWUNG DASH, U+3030 WAVY DASH, U+02DC SMALL TILDE
WAVE_DASHES = "〜～~∼⁓〰˜"
_WAVE_DASH_RE = re.compile(f"[{re.escape(WAVE_DASHES)}]+")

_WHITESPACE_RE = re.compile(r"\s+")

_JP_YEAR_MONTH_RE = re.compile(r"(\d)[年月]")
_JP_DAY_RE = re.compile(r"(\d)日")
_DATE_PARTS_RE = re.compile(r"(\d{4})[/-](\d{1,2})[/-](\d{1,2})")


def to_halfwidth_digits(value: str) -> str:
    return value.translate(_FULLWIDTH_DIGITS)


def normalize_punctuation(value: str) -> str:
    return value.translate(_PUNCTUATION)


def collapse_wave_dashes(value: str) -> str:
    """Every run of wave-dash / tilde glyphs becomes a single hyphen."""
    return _WAVE_DASH_RE.sub("-", value)


def strip_whitespace(value: str) -> str:
    """Remove all whitespace, including U+3000 IDEOGRAPHIC SPACE."""
    return _WHITESPACE_RE.sub("", value)


def canonicalize_date_parts(value: str) -> str:
    """``2026年01月05日`` / ``2026-01-05`` / ``2026/01/05`` -> ``2026/1/5``."""
    value = _JP_YEAR_MONTH_RE.sub(r"\1/", value)
    value = _JP_DAY_RE.sub(r"\1", value)
    return _DATE_PARTS_RE.sub(
        lambda m: f"{m.group(1)}/{int(m.group(2))}/{int(m.group(3))}",
        value,
    )


def normalize_date_key(value: object) -> str:
    """Canonical comparison key for a date/time cell."""
    if value is None:
        return ""
    text = str(value)
    text = to_halfwidth_digits(text)
    text = normalize_punctuation(text)
    text = collapse_wave_dashes(text)
    text = strip_whitespace(text)
    return canonicalize_date_parts(text)


def split_surname(full_name: object) -> str:
    """First token of a name split on half- or full-width spaces."""
    if full_name is None:
        return ""
    parts = str(full_name).strip().split()
    return parts[0] if parts else ""
