"""
Logger utility for gitshift.

Two rotating logs under {$GITSHIFT_HOME or ~}/.config/gitshift/logs/:
- gitshift.log: human-readable, everything from DEBUG up
- gitshift.json: one JSON object per line from INFO up, for switch history

stderr only shows warnings and errors unless --debug is given.

Structured fields travel as ``extra=log_context(alias=..., step=...)`` and
land in the JSON line's "context" object. Fields named like secrets are
masked there, but messages are not inspected: never put tokens or key
material in a message.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from gitshift.constants import APP_NAME, LOGS_DIR_NAME, get_config_dir

_SECRET_MARKERS = ("token", "passphrase", "secret", "private_key")
MASK = "***"


def log_context(**fields: Any) -> Dict[str, Dict[str, Any]]:
    """``extra`` argument carrying fields into the JSON log."""
    context = {}
    for key, value in fields.items():
        if value is None:
            continue
        if any(marker in key.lower() for marker in _SECRET_MARKERS):
            value = MASK
        elif isinstance(value, (list, tuple)):
            value = [getattr(item, "value", item) for item in value]
        else:
            value = getattr(value, "value", value)
        context[key] = value
    return {"context": context}


class JsonFormatter(logging.Formatter):
    """One JSON object per record; log_context fields under "context"."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def _get_log_dir() -> Path:
    log_dir = get_config_dir() / LOGS_DIR_NAME
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_logger(name: str = APP_NAME, level: Optional[int] = None) -> logging.Logger:
    """
    Configure the "gitshift" logger once at startup.

    Module loggers created with logging.getLogger(__name__) propagate to it.
    When the log directory cannot be written the command still runs, with
    a warning on stderr.

    Args:
        name: Logger name
        level: Optional logging level (defaults to DEBUG)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        text_formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(text_formatter)
        logger.addHandler(console_handler)

        try:
            log_dir = _get_log_dir()

            main_handler = RotatingFileHandler(
                log_dir / f"{APP_NAME}.log", maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
            )
            main_handler.setLevel(logging.DEBUG)
            main_handler.setFormatter(text_formatter)
            logger.addHandler(main_handler)

            json_handler = RotatingFileHandler(
                log_dir / f"{APP_NAME}.json", maxBytes=5 * 1024 * 1024, backupCount=2, encoding="utf-8"
            )
            json_handler.setLevel(logging.INFO)
            json_handler.setFormatter(JsonFormatter())
            logger.addHandler(json_handler)
        except OSError as e:
            logger.warning(f"File logging disabled: {e.strerror or e}")

    if level is not None:
        logger.setLevel(level)
    elif not logger.level:
        logger.setLevel(logging.DEBUG)

    return logger


def set_console_level(logger: logging.Logger, level: int) -> None:
    """Change the stderr handler's threshold (used by --debug)."""
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, RotatingFileHandler):
            handler.setLevel(level)
