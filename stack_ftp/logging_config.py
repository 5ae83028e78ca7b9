"""
Logging configuration for the STACK FTP bridge.

Logs to the console and, when a log file is given, to a rotating file.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"

# HTTP client loggers are chatty at INFO (one line per request)
_QUIET_LOGGERS = ("httpx", "httpcore")


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure logging for the bridge.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path for a rotating log file (10 MB x 5)

    Returns:
        The package logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)

    # pyftpdlib installs its own stderr handler unless its logger already has
    # one; give it ours so every line is formatted and emitted once
    ftp_logger = logging.getLogger("pyftpdlib")
    ftp_logger.handlers.clear()
    for handler in root_logger.handlers:
        ftp_logger.addHandler(handler)
    ftp_logger.setLevel(level)
    ftp_logger.propagate = False

    quiet_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    return logging.getLogger("stack_ftp")
