"""Logging setup shared by the detection loop, the web server and the CLI."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

ROOT_LOGGER_NAME = "access_vision"

# Libraries that log every request; at the detection cadence that drowns our own output.
NOISY_LIBRARIES = ("httpx", "httpcore", "werkzeug", "engineio.server", "socketio.server")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    log_level: str | int = logging.INFO,
    log_file: Path | str | None = None,
    log_to_console: bool = True,
    library_level: str | int = logging.WARNING,
) -> logging.Logger:
    """Configure the ``access_vision`` logger tree.

    Args:
        log_level: Level for our own loggers (name or number).
        log_file: Optional rotating log file (10MB x 5).
        log_to_console: Whether to log to stderr.
        library_level: Level applied to chatty HTTP/Socket.IO libraries.

    Returns:
        The root ``access_vision`` logger.
    """
    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)
    if isinstance(library_level, str):
        library_level = getattr(logging, library_level.upper(), logging.WARNING)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)
    logger.handlers.clear()
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = []
    if log_to_console:
        handlers.append(logging.StreamHandler())
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_path,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``access_vision.<name>``, or the root project logger."""
    if name:
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
    return logging.getLogger(ROOT_LOGGER_NAME)


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the detection session it belongs to."""

    def process(self, msg, kwargs):
        return f"[{self.extra['session_id']}] {msg}", kwargs


def get_session_logger(name: str, session_id: str) -> SessionLoggerAdapter:
    """Logger for one detection session (e.g. one Socket.IO client)."""
    return SessionLoggerAdapter(get_logger(name), {"session_id": session_id})


setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE") or None,
    library_level=os.getenv("LIBRARY_LOG_LEVEL", "WARNING"),
)
