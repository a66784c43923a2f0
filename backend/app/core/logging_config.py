"""
Process-wide logging for the API.

Call ``setup_logging`` once from ``main``; modules keep using
``logging.getLogger(__name__)``. Booking and payment code passes ids through
``extra=``, e.g.::

    logger.info("booking cancelled", extra={"booking_id": booking.id})

Those ids are appended as ``key=value`` pairs in text mode and become
top-level keys in JSON mode.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

CONTEXT_FIELDS = (
    "user_id",
    "booking_id",
    "space_id",
    "payment_id",
    "payment_intent_id",
    "event_id",
    "event_type",
)

TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "stripe", "urllib3", "uvicorn.access")


def context_of(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if getattr(record, key, None) is not None}


class ContextTextFormatter(logging.Formatter):
    """Plain lines for local runs, booking/payment ids appended at the end."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = context_of(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        # keep the traceback last
        head, sep, tail = line.partition("\n")
        return f"{head} | {pairs}{sep}{tail}"


class JSONLineFormatter(logging.Formatter):
    """One JSON object per record, for log shipping in production."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(context_of(record))
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLineFormatter() if json_format else ContextTextFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
