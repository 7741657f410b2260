# -*- coding: utf-8 -*-
from __future__ import annotations
import logging, logging.handlers
from pathlib import Path

LOG_FILE_NAME = "resi_hub.log"
WIRED_LOGGERS = ("", "uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")


def _has_file_handler(lg: logging.Logger) -> bool:
    return any(str(getattr(h, "baseFilename", "")).endswith(LOG_FILE_NAME) for h in lg.handlers)


def setup_logging(settings) -> Path:
    """Rotating file log at RESI_HUB_DATA_ROOT/logs/resi_hub.log; safe to call twice."""
    log_dir = Path(settings.RESI_HUB_DATA_ROOT).expanduser() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME
    level = getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO)

    loggers = [logging.getLogger(name) for name in WIRED_LOGGERS]
    for lg in loggers:
        lg.setLevel(level)
    # SQL echo stays quiet unless explicitly debugging
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if level == logging.DEBUG else logging.WARNING)

    missing = [lg for lg in loggers if not _has_file_handler(lg)]
    if not missing:
        return log_path

    handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s"))
    handler.setLevel(level)

    for lg in missing:
        lg.addHandler(handler)

    return log_path
