from __future__ import annotations

import logging
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

DEFAULT_LOG_MAX_BYTES = 2_000_000
DEFAULT_LOG_BACKUPS = 3
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@dataclass(frozen=True)
class LogConfig:
    log_file: Optional[Path]
    level: int = logging.INFO
    stderr: bool = False
    max_bytes: int = DEFAULT_LOG_MAX_BYTES
    backup_count: int = DEFAULT_LOG_BACKUPS


def parse_level(value: Optional[str], default: int = logging.INFO) -> int:
    if not value:
        return default
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else default


def configure_logging(config: LogConfig) -> None:
    """Attach handlers to the package logger.

    Only the ``assistant_shells`` logger is touched so the host's own logging
    setup is left alone. Calling this again replaces the handlers.
    """
    pkg_logger = logging.getLogger("assistant_shells")
    for handler in pkg_logger.handlers[:]:
        pkg_logger.removeHandler(handler)
        handler.close()

    pkg_logger.setLevel(config.level)
    formatter = logging.Formatter(LOG_FORMAT)

    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        pkg_logger.addHandler(file_handler)

    if config.stderr:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        pkg_logger.addHandler(stream_handler)
