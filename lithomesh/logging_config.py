"""
Logging setup for the command line and the web app.

Library modules only create ``logging.getLogger(__name__)`` loggers; handlers
are attached here, once, to the ``lithomesh`` namespace logger.
"""
import logging
import sys
from typing import Optional, Union

LOGGER_NAME = "lithomesh"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

# Marks the handlers installed by setup_logging so a second call replaces only those
_OWNED = "_lithomesh_owned"


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level '{level}'")
    return resolved


def setup_logging(level: Union[int, str] = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Send ``lithomesh`` log records to stdout and, optionally, to ``log_file``.

    ``level`` is a logging constant or its name ("DEBUG", "info", ...). The
    log file is appended to, so consecutive CLI runs share one history.
    Returns the configured namespace logger.
    """
    level = _resolve_level(level)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    for handler in [h for h in logger.handlers if getattr(h, _OWNED, False)]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _OWNED, True)
        logger.addHandler(handler)

    logger.debug(f"Logging at {logging.getLevelName(level)}" + (f", also to {log_file}" if log_file else ""))
    return logger
