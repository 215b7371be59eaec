"""Structured event logging for execution and scheduling.

Writes one JSON event per line to rotating log files, split by category,
so rebalance runs can be audited after the fact.
"""

import json
import logging
import logging.handlers
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class OptimizerEventType(Enum):
    """Types of events written to the structured event log."""

    # Operation events
    OPERATION_SUBMITTED = "operation_submitted"
    OPERATION_SUCCEEDED = "operation_succeeded"
    OPERATION_FAILED = "operation_failed"
    OPERATION_CANCELLED = "operation_cancelled"

    # Planning events
    PLAN_ITEM_SKIPPED = "plan_item_skipped"

    # Scheduler events
    REBALANCE_STARTED = "rebalance_started"
    REBALANCE_COMPLETED = "rebalance_completed"
    REBALANCE_SKIPPED = "rebalance_skipped"
    REBALANCE_FAILED = "rebalance_failed"
    OPTIMIZER_ENABLED = "optimizer_enabled"
    OPTIMIZER_DISABLED = "optimizer_disabled"
    SETTINGS_UPDATED = "settings_updated"


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class OptimizerEventLogger:
    """Rotating JSON event logger for the execution engine.

    Creates three files under ``log_dir``: ``operations.log`` for per-operation
    events, ``scheduler.log`` for auto-optimizer lifecycle events and
    ``errors.log`` for failures of either kind.

    Example:
        >>> events = OptimizerEventLogger(log_dir="logs")
        >>> events.log_operation_event(
        ...     OptimizerEventType.OPERATION_SUCCEEDED,
        ...     protocol="amnis",
        ...     operation_type="stake",
        ...     amount=Decimal("600.00"),
        ... )
    """

    def __init__(
        self,
        log_dir: str | Path = "logs",
        max_bytes: int = 5 * 1024 * 1024,
        backup_count: int = 10,
        enable_console: bool = False,
    ):
        """Initialize the event logger.

        Args:
            log_dir: Directory for log files
            max_bytes: Maximum size per log file (default 5 MB)
            backup_count: Number of rotated files to keep (default 10)
            enable_console: Echo events to the console as well
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self.enable_console = enable_console

        self.operation_logger = self._create_rotating_logger("operations")
        self.scheduler_logger = self._create_rotating_logger("scheduler")
        self.error_logger = self._create_rotating_logger("errors", level=logging.ERROR)

    def _create_rotating_logger(
        self,
        name: str,
        level: int = logging.INFO,
    ) -> logging.Logger:
        # Logger names are per directory so two instances never share handlers
        logger = logging.getLogger(f"compoundefi.events.{self.log_dir.resolve()}.{name}")
        logger.setLevel(level)
        logger.propagate = False

        for handler in list(logger.handlers):
            handler.close()
        logger.handlers = []

        file_handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / f"{name}.log",
            maxBytes=self.max_bytes,
            backupCount=self.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(file_handler)

        if self.enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(level)
            console_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            logger.addHandler(console_handler)

        return logger

    def _log_structured_event(
        self,
        logger: logging.Logger,
        event_type: OptimizerEventType,
        level: str = "info",
        **data: Any,
    ) -> None:
        event = {
            "event_type": event_type.value,
            "timestamp": datetime.now().isoformat(),
            **data,
        }
        getattr(logger, level)(json.dumps(event, default=_json_default))

    def log_operation_event(
        self,
        event_type: OptimizerEventType,
        protocol: str,
        operation_type: str,
        amount: Optional[Decimal] = None,
        **extra: Any,
    ) -> None:
        """Log an operation-level event.

        Failures are written to both the operations and the error log.

        Args:
            event_type: Type of operation event
            protocol: Protocol the operation targets
            operation_type: Operation type value (stake, lend, ...)
            amount: Operation amount in whole tokens (optional)
            **extra: Additional event data (index, error, tx hash, ...)
        """
        data = {"protocol": protocol, "operation_type": operation_type}
        if amount is not None:
            data["amount"] = amount
        data.update(extra)

        self._log_structured_event(self.operation_logger, event_type, **data)
        if event_type == OptimizerEventType.OPERATION_FAILED:
            self._log_structured_event(self.error_logger, event_type, level="error", **data)

    def log_scheduler_event(
        self,
        event_type: OptimizerEventType,
        message: str,
        **extra: Any,
    ) -> None:
        """Log an auto-optimizer lifecycle event.

        Args:
            event_type: Type of scheduler event
            message: Human readable description
            **extra: Additional event data
        """
        data = {"message": message}
        data.update(extra)

        self._log_structured_event(self.scheduler_logger, event_type, **data)
        if event_type == OptimizerEventType.REBALANCE_FAILED:
            self._log_structured_event(self.error_logger, event_type, level="error", **data)

    def close(self) -> None:
        """Close all file handlers."""
        for logger in (self.operation_logger, self.scheduler_logger, self.error_logger):
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
