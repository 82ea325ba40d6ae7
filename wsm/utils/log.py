"""
Logging for wsm.

Every module logs through ``get_logger(__name__)``:
- Rich console output for humans
- an append-only JSON-lines audit file (``survey.log`` / ``sample.log`` in
  the working directory) while a live command is running

The level defaults to ``$WSM_LOG_LEVEL`` (INFO when unset).
"""

import json
import logging
import os
import sys
from pathlib import Path

from rich.logging import RichHandler

# live commands keep an audit trail of every tick and campaign transition
_AUDITED_COMMANDS = ("survey", "sample")


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record, with the traceback attached when present.
    """
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level":     record.levelname,
            "logger":    record.name,
            "message":   record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _audit_path() -> Path | None:
    command = sys.argv[1] if len(sys.argv) > 1 else None
    if command not in _AUDITED_COMMANDS:
        return None
    return Path.cwd() / f"{command}.log"


def get_logger(name: str, level: int | str | None = None) -> logging.Logger:
    """
    Return a logger wired with wsm's handlers.

    Handlers are attached only the first time a name is requested, so
    repeated calls are cheap and never duplicate output.

    Parameters
    ----------
    name
        Logger name (typically __name__).
    level
        Log level (int or string). Falls back to $WSM_LOG_LEVEL, then INFO.

    Returns
    -------
    logging.Logger
        Configured logger instance.
    """
    if level is None:
        level = os.getenv("WSM_LOG_LEVEL", "INFO").upper()

    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    rich_handler = RichHandler(rich_tracebacks=True, show_path=False)
    rich_handler.setLevel(level)
    logger.addHandler(rich_handler)

    audit = _audit_path()
    if audit is not None:
        json_handler = logging.FileHandler(audit, mode="a", encoding="utf-8")
        json_handler.setLevel(level)
        json_handler.setFormatter(JSONFormatter())
        logger.addHandler(json_handler)

    return logger
