"""JSON log output for the advisory lock worker.

Each record becomes one JSON object.  Lock context (which lock, which
component, what happened to the attempt) is promoted to top-level fields so
log pipelines can group attempts per lock id without digging into ``extra``.
"""

import json
import logging
from typing import Any, Dict

from advisorylock.utils.time_utils import now_utc

#: Attributes every ``LogRecord`` carries; they are never copied to the payload.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}

LOCK_FIELDS = (
    "event_type",
    "lock_id",
    "lock_key",
    "outcome",
    "component",
    "method",
    "error_type",
)


class ContextJsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": now_utc().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra: Dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if key in LOCK_FIELDS:
                payload[key] = value
            else:
                extra[key] = value
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        # Anything json cannot encode (exceptions, connections) falls back to repr.
        return json.dumps(payload, ensure_ascii=False, default=repr)


def setup_logging(level: int = logging.INFO, debug_mode: bool = False) -> None:
    """Send root logging through :class:`ContextJsonFormatter`.

    Driver loggers stay at ``INFO`` or above even in debug mode; asyncpg and
    the SQLAlchemy engine log every statement at ``DEBUG``.
    """

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(ContextJsonFormatter())
        root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if debug_mode else level)

    for driver in ("asyncpg", "sqlalchemy.engine"):
        logging.getLogger(driver).setLevel(max(level, logging.INFO))
