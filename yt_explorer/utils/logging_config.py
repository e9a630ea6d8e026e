import logging
import sys
from pathlib import Path

LOGGER_NAME = "yt_explorer"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(threadName)s]: %(message)s"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("urllib3", "werkzeug")


def setup_logging(log_file: str = None, level: str = "INFO") -> logging.Logger:
    """Configure the package logger for the console and an optional file.

    Safe to call more than once: later calls only change the level, so the
    CLI group callback and the web server can both call it.
    """
    pkg_logger = logging.getLogger(LOGGER_NAME)
    pkg_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if pkg_logger.handlers:
        return pkg_logger

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    pkg_logger.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        pkg_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return pkg_logger
