"""Logging setup: readable console lines plus a JSON-lines run log."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pythonjsonlogger import jsonlogger

from dealhunt.config import settings

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
RUN_LOG_NAME = "ingest.jsonl"

# Client libraries that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "openai")


class RunLogFormatter(jsonlogger.JsonFormatter):
    """One JSON object per line; context passed via ``extra`` is kept as top-level keys."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["time"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["where"] = f"{record.filename}:{record.lineno}"


def setup_logging(log_dir: str | Path | None = None, level: Optional[str] = None) -> logging.Logger:
    """
    Route all logging to stdout and to ``<log_dir>/logs/ingest.jsonl``.

    Args:
        log_dir: Parent of the logs/ folder (defaults to settings.log_dir, then the cwd)
        level: Root level name (defaults to settings.log_level)

    Returns:
        The configured root logger
    """
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    logs_dir = Path(log_dir or settings.log_dir or Path.cwd()) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    run_log = logging.FileHandler(logs_dir / RUN_LOG_NAME, encoding="utf-8")
    run_log.setFormatter(RunLogFormatter("%(message)s"))
    root.addHandler(run_log)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


class ContextAdapter(logging.LoggerAdapter):
    """Prefixes console text with ``[key=value ...]`` and attaches the same keys as extra."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        if not self.extra:
            return msg, kwargs
        prefix = " ".join(f"{key}={value}" for key, value in self.extra.items())
        return f"[{prefix}] {msg}", kwargs


def get_logger(name: str, **context) -> ContextAdapter:
    """Logger bound to context fields, e.g. ``get_logger(__name__, source="amazon")``."""
    return ContextAdapter(logging.getLogger(name), context)
