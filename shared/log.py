#!/usr/bin/env python3
"""
relaychat Logging Configuration

Centralized logging setup shared by the session core and the terminal client.
Supports both development (coloured console) and production (plain console +
file) modes.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Connecting to relay...")
    logger.warning("Relay unreachable", extra={"username": "Bo", "state": "connecting"})
"""

from __future__ import annotations
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional


# ========================================
#           LOGGING FORMATTERS
# ========================================

class ColoredFormatter(logging.Formatter):
    """Coloured level names for interactive terminals"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class SessionFormatter(logging.Formatter):
    """Prefixes records with the session context passed through ``extra``"""

    def format(self, record: logging.LogRecord) -> str:
        context = []

        if hasattr(record, 'username'):
            context.append(f"user={record.username}")
        if hasattr(record, 'state'):
            context.append(f"state={record.state}")
        if hasattr(record, 'msg_type'):
            context.append(f"msg={record.msg_type}")

        if not context:
            return super().format(record)

        # Prefix the message itself so the level and time columns stay aligned
        prefix = f"[{' '.join(context)}] "
        if record.args:
            prefix = prefix.replace("%", "%%")
        original = record.msg
        record.msg = f"{prefix}{original}"
        try:
            return super().format(record)
        finally:
            record.msg = original


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    logger.setLevel(_get_log_level(level))

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    if _is_development():
        _add_console_handler(logger, colored=True)
    else:
        _add_console_handler(logger, colored=False)
        _add_file_handler(logger)

    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    if level:
        return getattr(logging, level.upper(), logging.INFO)

    env_level = os.getenv('RELAYCHAT_LOG_LEVEL')
    if env_level:
        return getattr(logging, env_level.upper(), logging.INFO)

    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules
    )


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    # stderr keeps log lines apart from the chat transcript on stdout
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter: logging.Formatter = ColoredFormatter(fmt=fmt, datefmt='%H:%M:%S')
    else:
        formatter = SessionFormatter(fmt=fmt, datefmt='%Y-%m-%d %H:%M:%S')

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger) -> None:
    log_dir = Path(os.getenv('RELAYCHAT_LOG_DIR', 'logs'))
    log_dir.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(log_dir / "relaychat.log", encoding="utf-8")
    handler.setFormatter(SessionFormatter(
        fmt='%(asctime)s | %(name)-24s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if the terminal supports ANSI colour output"""
    stream = sys.stderr
    if not (hasattr(stream, "isatty") and stream.isatty()):
        return False

    if os.getenv("TERM", "") == "dumb":
        return False

    if sys.platform == "win32":
        return (
            os.getenv("ANSICON") is not None
            or os.getenv("WT_SESSION") is not None
            or os.getenv("TERM_PROGRAM") == "vscode"
        )

    return True


# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.
    """
    _configure_logger(logging.getLogger(), level)


def log_frame(logger: logging.Logger, level: str, message: str,
              frame: Optional[dict] = None, **context: Any) -> None:
    """
    Log a wire frame with structured context.

    The ``password`` field of a join frame is never written to the log.

    Example:
        log_frame(logger, "debug", "Sending frame", frame={"type": "join", ...},
                  username="Al")
    """
    extra_context: dict = {}

    if frame:
        extra_context['msg_type'] = frame.get('type')
        if 'username' in frame and 'username' not in context:
            extra_context['username'] = frame.get('username')

    extra_context.update(context)

    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)
