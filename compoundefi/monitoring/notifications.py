"""User-visible notification sinks.

Notifications are fire-and-forget: the engine never depends on a sink
succeeding, so delivery errors are logged and dropped by ``safe_notify``.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from compoundefi.utils.logging import get_logger

logger = get_logger(__name__)

NOTIFICATION_LEVELS = ("info", "success", "warning", "error")

# Sink level -> logging method
_LOG_METHODS = {
    "info": "info",
    "success": "info",
    "warning": "warning",
    "error": "error",
}


class NotificationSink(ABC):
    """Abstract notification sink."""

    @abstractmethod
    def notify(self, level: str, message: str) -> None:
        """Deliver a user-visible message.

        Args:
            level: One of info, success, warning, error
            message: Message text
        """
        pass


class LoggingNotifier(NotificationSink):
    """Sink that writes notifications to the application log."""

    def __init__(self, logger_name: str = "compoundefi.notifications"):
        self._logger = get_logger(logger_name)

    def notify(self, level: str, message: str) -> None:
        method = _LOG_METHODS.get(level, "info")
        getattr(self._logger, method)("[%s] %s", level.upper(), message)


class RecordingNotifier(NotificationSink):
    """Sink that keeps notifications in memory, for tests."""

    def __init__(self):
        self.messages: List[Tuple[str, str]] = []

    def notify(self, level: str, message: str) -> None:
        self.messages.append((level, message))

    def clear(self) -> None:
        self.messages.clear()


def safe_notify(sink: Optional[NotificationSink], level: str, message: str) -> None:
    """Notify without letting sink failures reach the caller."""
    if sink is None:
        return
    if level not in NOTIFICATION_LEVELS:
        level = "info"
    try:
        sink.notify(level, message)
    except Exception as e:
        logger.warning("Notification sink failed (%s): %s", level, e, exc_info=True)
