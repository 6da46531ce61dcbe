# sheet2chat/infra/logging_config.py
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Record attributes set through LogContext / extra=... that formatters surface
CONTEXT_FIELDS = ("request_id", "promotion_id", "sheet_name", "row_index")

_SHORT_NAMES = {"promotion_id": "promo", "sheet_name": "sheet", "row_index": "row"}

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "aiohttp.access": logging.WARNING,
    "asyncpg": logging.WARNING,
}


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shipping in staging/prod"""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(_record_context(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output for local development"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, self.RESET)
        when = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%H:%M:%S")

        tags = " ".join(
            f"{_SHORT_NAMES[key]}={value}"
            for key, value in _record_context(record).items()
            if key in _SHORT_NAMES
        )
        suffix = f" [{tags}]" if tags else ""

        text = f"{color}{when} {record.levelname:<8}{self.RESET} {record.name}{suffix}: {record.getMessage()}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """
    Replace root handlers with a single stdout handler.

    Args:
        level: root log level name
        use_json: JSON lines instead of colored console output
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    root.info(f"Logging ready (level={level}, json={use_json})")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext(logging.LoggerAdapter):
    """
    Logger adapter that stamps promotion / sheet / row / request ids on
    every record it emits. Per-call ``extra`` is merged on top.
    """

    def __init__(
            self,
            logger: logging.Logger,
            promotion_id: str | None = None,
            sheet_name: str | None = None,
            row_index: int | str | None = None,
            request_id: str | None = None,
    ):
        fields = {
            "promotion_id": promotion_id,
            "sheet_name": sheet_name,
            "row_index": row_index,
            "request_id": request_id,
        }
        super().__init__(logger, {k: v for k, v in fields.items() if v is not None})

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs
