import logging
import os
import sys
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
STREAM_HANDLER_NAME = "room-relay-stdout"

_LEVEL_NAMES = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def resolve_level(level: Union[str, int, None]) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        return _LEVEL_NAMES.get(name, logging.INFO)
    return logging.INFO


def setup_logging(log_level: Union[str, int, None] = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger once with a stdout handler and an optional file handler.

    Calling it again only adjusts the level, so importing modules that call it
    does not stack duplicate handlers.
    """
    root = logging.getLogger()
    formatter = logging.Formatter(LOG_FORMAT)

    if not any(h.get_name() == STREAM_HANDLER_NAME for h in root.handlers):
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        stream_handler.set_name(STREAM_HANDLER_NAME)
        root.addHandler(stream_handler)
        logging.captureWarnings(True)

    if log_file and not any(
        isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_file) for h in root.handlers
    ):
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(resolve_level(log_level))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
