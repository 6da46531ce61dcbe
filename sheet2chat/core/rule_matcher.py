# sheet2chat/core/rule_matcher.py
from __future__ import annotations

from dataclasses import dataclass, field

from sheet2chat.core.domain import NotificationRule, TenantConfig
from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RuleMatch:
    """Rules that fired plus the sheet names they were compared against."""
    requested: str | None
    rules: tuple[NotificationRule, ...] = ()
    compared_sheet_names: tuple[str, ...] = field(default_factory=tuple)

    @property
    def matched(self) -> bool:
        return bool(self.rules)

    @property
    def diagnostic(self) -> str:
        available = ", ".join(self.compared_sheet_names)
        if self.matched:
            return f"Matched {len(self.rules)} rule(s) for '{self.requested}'"
        return f"No rules matched. Requested: '{self.requested}', Available: [{available}]"


def match_rules(config: TenantConfig, sheet_name: str | None) -> RuleMatch:
    """
    Every rule whose ``sheet_name`` equals the event's sheet name exactly,
    in configuration order.
    """
    candidates = [r for r in config.notification_rules if r.sheet_name]
    compared = tuple(r.sheet_name for r in candidates)
    matched = tuple(r for r in candidates if sheet_name is not None and r.sheet_name == sheet_name)

    result = RuleMatch(requested=sheet_name, rules=matched, compared_sheet_names=compared)

    if not result.matched:
        logger.info(
            result.diagnostic,
            extra={"promotion_id": config.promotion_id, "sheet_name": sheet_name},
        )

    return result
