"""Logging configuration for CompounDefi.

Sets up the root logger for the engine and provides a helper for appending
structured ``key=value`` context to log lines.
"""

import logging
import sys
from decimal import Decimal
from typing import Any

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are noisy at INFO
QUIET_LOGGERS = ("apscheduler", "apscheduler.scheduler", "apscheduler.executors.default")


def setup_logging(
    level: str = "INFO",
    log_format: str | None = None,
    quiet_scheduler: bool = True,
) -> None:
    """Configure logging for the engine.

    Logs go to stdout. APScheduler's own job chatter is raised to WARNING
    unless ``quiet_scheduler`` is False, since the auto-optimizer polls
    once per minute and would otherwise log every tick.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom format string. If None, uses DEFAULT_FORMAT.
        quiet_scheduler: Silence APScheduler INFO messages

    Example:
        >>> from compoundefi.utils.logging import setup_logging
        >>> setup_logging(level="DEBUG")
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format=log_format or DEFAULT_FORMAT,
        stream=sys.stdout,
        force=True,
    )

    if quiet_scheduler:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def _format_value(value: Any) -> str:
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: Any,
) -> None:
    """Log a message with structured context.

    Context is appended to the message in key=value format. Decimal amounts
    are rendered without exponent notation.

    Args:
        logger: Logger instance
        level: Log level (debug, info, warning, error, critical)
        message: Log message
        **context: Additional context fields

    Example:
        >>> logger = get_logger(__name__)
        >>> log_with_context(
        ...     logger, "info", "Operation submitted",
        ...     protocol="amnis", amount=Decimal("600.00"), index=1
        ... )
        # Logs: "Operation submitted | protocol=amnis amount=600 index=1"
    """
    log_func = getattr(logger, level.lower())

    if context:
        context_str = " ".join(f"{k}={_format_value(v)}" for k, v in context.items())
        log_func(f"{message} | {context_str}")
    else:
        log_func(message)
