"""Logging setup shared by every module."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_NAME = "timeledger"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Shared logger for every module. Handlers are attached by get_logger() at startup,
# so importing a module never touches the filesystem.
log = logging.getLogger(LOG_NAME)
log.addHandler(logging.NullHandler())


def get_logger(
        level=logging.INFO,
        log_dir: Optional[Path] = None,
        max_bytes=5 * 1024 * 1024,
        backup_count=5,
        console=False
) -> logging.Logger:
    logger = logging.getLogger(LOG_NAME)
    logger.propagate = False
    logger.setLevel(level)

    fmt = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    # Rotating file under the data directory
    persistent_handler_name = f"{LOG_NAME}:persistent"
    if log_dir is not None and not any(h.get_name() == persistent_handler_name for h in logger.handlers):
        log_dir.mkdir(parents=True, exist_ok=True)
        persistent_handler = RotatingFileHandler(
            filename=log_dir / f"{LOG_NAME}.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        persistent_handler.setLevel(level)
        persistent_handler.setFormatter(fmt)
        persistent_handler.set_name(persistent_handler_name)
        logger.addHandler(persistent_handler)

    # Console handler, for the CLI's --verbose
    console_handler_name = f"{LOG_NAME}:console"
    if console and not any(h.get_name() == console_handler_name for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(fmt)
        console_handler.set_name(console_handler_name)
        logger.addHandler(console_handler)

    return logger
