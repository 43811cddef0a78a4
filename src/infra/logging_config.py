"""
Logging setup for the CLI, the trigger runner and the API.

Records from every module under "src" go to the console and to one file
per calendar day:

    <log_dir>/roster_grants_<YYYYMMDD>_<HHMMSS>.log

HHMMSS is the process start time, so two invocations launched the same
day by the trigger runner never share a file.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "src"
LOG_FILE_PREFIX = "roster_grants"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# HTTP client loggers emit one INFO line per Sheets/Drive request
NOISY_LOGGERS = ("httpx", "httpcore")

_process_started: Optional[str] = None


def process_start_stamp() -> str:
    """HHMMSS of the first call in this process."""
    global _process_started
    if _process_started is None:
        _process_started = datetime.now().strftime("%H%M%S")
    return _process_started


def daily_log_path(log_dir: Path, day: str, started: str) -> Path:
    return log_dir / f"{LOG_FILE_PREFIX}_{day}_{started}.log"


def _today() -> str:
    return datetime.now().strftime("%Y%m%d")


class DailyRotatingFileHandler(logging.FileHandler):
    """FileHandler that switches to a new file when the date changes."""

    def __init__(self, log_dir: str = "logs", encoding: str = "utf-8"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._started = process_start_stamp()
        self._day = _today()
        super().__init__(daily_log_path(self.log_dir, self._day, self._started), mode="a", encoding=encoding)

    def emit(self, record: logging.LogRecord) -> None:
        day = _today()
        if day != self._day:
            self.close()
            self._day = day
            self.baseFilename = str(daily_log_path(self.log_dir, day, self._started).resolve())
            self.stream = self._open()
        super().emit(record)


def setup_logging(log_level: str = "INFO", log_dir: str = "logs") -> logging.Logger:
    """
    Configure the "src" logger (console + daily file) and return it.

    Safe to call more than once: previous handlers are closed and replaced.
    Unless the level is DEBUG, HTTP client request lines are limited to
    warnings.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = DailyRotatingFileHandler(log_dir=log_dir)
    for handler in (logging.StreamHandler(), file_handler):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)

    logger.info(f"Logging to {file_handler.baseFilename} at {logging.getLevelName(level)}")
    return logger
