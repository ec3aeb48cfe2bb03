"""JSON-lines logging for deskbot, plus masking helpers for phones and CUITs."""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional

# Third-party loggers that are too chatty at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.levelno >= logging.ERROR:
            entry["source"] = f"{record.module}:{record.lineno}"

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route every logger to stdout as JSON lines. Safe to call more than once."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"deskbot.{name}")


def mask_phone(phone: Optional[str]) -> str:
    """Keep only the last four digits of a phone number."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 4:
        return "***"
    return f"***{digits[-4:]}"


def mask_cuit(cuit: Optional[str]) -> str:
    digits = re.sub(r"\D", "", cuit or "")
    if len(digits) != 11:
        return "***"
    return f"{digits[:2]}***{digits[-3:]}"
