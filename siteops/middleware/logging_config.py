"""
Logging setup, run first thing in ``create_app``.

Production writes one JSON object per line so the log shipper can index
the request, tenant and job fields passed through ``extra=``. Development
and tests get short coloured lines. ``LOG_LEVEL`` overrides the level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# ``extra=`` keys promoted to top-level JSON fields
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "tenant_id",
    "user_id",
    "job_name",
    "schedule_id",
    "order_id",
)

QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "urllib3")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key)) for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:04:31 WARNING  siteops.services.stock_order_service: ... [tenant 3]``"""

    LEVEL_COLOURS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{colour}{stamp} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"
        tenant_id = getattr(record, "tenant_id", None)
        if tenant_id is not None:
            line += f" [tenant {tenant_id}]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Replace the root handlers with one stderr handler for this app."""
    production = not (app.debug or app.testing)
    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())

    root = logging.getLogger()
    # create_app can run several times in one process (tests, CLI)
    root.handlers[:] = [handler]
    root.setLevel(level)
    app.logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not app.testing:
        app.logger.info("Logging at %s (%s)", level_name, "json" if production else "readable")
