# sheet2chat/core/handlers/universal.py
from __future__ import annotations

from typing import Any

from sheet2chat.core.dispatcher import Dispatcher
from sheet2chat.core.domain import InboundEvent, TenantConfig
from sheet2chat.core.error_reporter import ErrorReporter
from sheet2chat.core.errors import ConfigurationMissingError, ErrorCategory
from sheet2chat.core.rule_matcher import match_rules
from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)

CASE_NAME = "Universal Notification"


class UniversalHandler:
    """Rule-driven notifications for any sheet a promotion has rules for."""

    def __init__(self, dispatcher: Dispatcher, reporter: ErrorReporter) -> None:
        self._dispatcher = dispatcher
        self._reporter = reporter

    async def handle(self, event: InboundEvent, config: TenantConfig) -> dict[str, Any]:
        if not config.chatwork_token:
            message = f"Chatwork token not configured for promotion '{config.promotion_id}'"
            await self._reporter.report(
                CASE_NAME,
                ErrorCategory.CONFIG_MISSING,
                message,
                row_number=event.row_index,
                payload=event.summary(),
                config=config,
            )
            raise ConfigurationMissingError(message)

        match = match_rules(config, event.sheet_name)
        if not match.matched:
            return {
                "success": True,
                "matched": False,
                "message": match.diagnostic,
                "comparedSheetNames": list(match.compared_sheet_names),
            }

        report = await self._dispatcher.dispatch_rules(match.rules, event, config)
        logger.info(
            f"Dispatched {len(match.rules)} rule(s): {len(report.outcomes)} outcome(s)",
            extra={"promotion_id": config.promotion_id, "sheet_name": event.sheet_name},
        )
        return {"success": True, "matched": True, **report.to_dict()}
