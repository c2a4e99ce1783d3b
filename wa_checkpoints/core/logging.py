"""Logging setup and the in-memory log tail served by /logs."""

import logging
from collections import deque
from datetime import datetime, timezone

from wa_checkpoints.core.clock import brazil_time
from wa_checkpoints.core.config import settings

ROOT_LOGGER = "wa_checkpoints"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class LogBuffer(logging.Handler):
    """Keeps the most recent log entries in memory, oldest evicted first."""

    def __init__(self, capacity: int = 1000):
        super().__init__()
        self.entries: deque[dict] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            moment = datetime.fromtimestamp(record.created, tz=timezone.utc)
            entry = {
                "timestamp": moment.isoformat(),
                "brazil_time": brazil_time(moment),
                "type": getattr(record, "event", record.levelname.lower()),
                "level": record.levelname,
                "message": record.getMessage(),
            }
        except Exception:
            self.handleError(record)
            return
        self.entries.append(entry)

    def tail(self, limit: int = 100) -> list[dict]:
        if limit <= 0:
            return []
        return list(self.entries)[-limit:]

    def clear(self) -> None:
        self.entries.clear()

    def __len__(self) -> int:
        return len(self.entries)


log_buffer = LogBuffer(settings.LOG_BUFFER_SIZE)


def setup_logging(log_level: str | None = None) -> logging.Logger:
    """
    Configure the application logger with console output and the log buffer.

    Args:
        log_level: Level name; defaults to settings.LOG_LEVEL

    Returns:
        The package root logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)
    logger.setLevel(level)

    # Prevent duplicate handlers on re-import
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(console_handler)
    logger.addHandler(log_buffer)
    return logger
