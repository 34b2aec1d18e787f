"""
Structured logging for the stage engine.

Services attach lifecycle context through ``extra=``::

    logger.info("Round %s deleted", n, extra={"stage_id": sid, "round_number": n})

Both formatters lift that context out of the record:

- ``stage_id``, ``round_number``, ``approval_id`` form the *scope* of the
  event (which stage round or approval it concerns).
- ``content_kind`` and ``event_type`` describe *what* happened, e.g. a
  failed ``retag`` on ``documents`` during a round-deletion cascade.

Production emits one JSON object per line with ``scope`` and ``event``
sub-objects so aggregators can filter a whole cascade by stage and round.
Development prints a compact ``[stage=<id> r2 documents]`` tag after the message.
LOG_LEVEL overrides the level in every environment.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

SCOPE_KEYS = ("stage_id", "round_number", "approval_id")
EVENT_KEYS = ("content_kind", "event_type")


def _collect(record, keys):
    return {k: getattr(record, k) for k in keys if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, lifecycle context grouped under scope/event."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        scope = _collect(record, SCOPE_KEYS)
        if scope:
            entry["scope"] = scope
        event = _collect(record, EVENT_KEYS)
        if event:
            entry["event"] = event
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output for local development."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _tag(record) -> str:
        parts = []
        stage_id = getattr(record, "stage_id", None)
        if stage_id:
            parts.append(f"stage={stage_id}")
        round_number = getattr(record, "round_number", None)
        if round_number is not None:
            parts.append(f"r{round_number}")
        approval_id = getattr(record, "approval_id", None)
        if approval_id:
            parts.append(f"approval={approval_id}")
        kind = getattr(record, "content_kind", None)
        if kind:
            parts.append(kind)
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = (f"{color}{ts} {record.levelname:<8}{self.RESET} "
                f"{record.name}: {record.getMessage()}{self._tag(record)}")
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger.

    JSON in production, readable otherwise. Default level is INFO in
    production and DEBUG elsewhere; LOG_LEVEL wins when set.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    # repeated create_app calls must not stack handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured (level=%s, format=%s)",
                        level_name, "json" if production else "readable")
