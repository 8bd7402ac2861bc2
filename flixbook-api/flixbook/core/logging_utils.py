# flixbook/core/logging_utils.py
# One place to wire the "flixbook" logger for both the API and the CLI.

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOGGER_NAME = "flixbook"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="seconds"),
            "level": record.levelname,
            "msg": record.getMessage(),
            "name": record.name,
            "category": getattr(record, "category", None),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = "INFO", *, json_logs: bool = False,
                  logs_dir: Optional[Path] = None) -> logging.Logger:
    """
    Console handler always; rotating file handler only when logs_dir is given.
      - level:       threshold for both handlers
      - json_logs:   JSON lines in the file handler (console stays human-readable)
    Calling it again replaces the previous handlers.
    """
    logger = logging.getLogger(LOGGER_NAME)
    levelno = getattr(logging, str(level).upper(), logging.INFO)
    logger.setLevel(levelno)
    logger.propagate = False
    for h in list(logger.handlers):
        logger.removeHandler(h)

    ch = logging.StreamHandler()
    ch.setLevel(levelno)
    ch.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logger.addHandler(ch)

    if logs_dir:
        logs_dir = Path(logs_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = logs_dir / "flixbook.log"
        fh = logging.handlers.TimedRotatingFileHandler(
            log_path, when="midnight", backupCount=14, encoding="utf-8"
        )
        fh.setLevel(levelno)
        if json_logs:
            fh.setFormatter(JsonFormatter())
        else:
            fh.setFormatter(logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S"
            ))
        logger.addHandler(fh)
        logger.debug(f"Log file: {log_path}")

    return logger
