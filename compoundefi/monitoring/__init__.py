"""Monitoring Layer - notifications, run history and optimization metrics."""

from compoundefi.monitoring.notifications import (
    LoggingNotifier,
    NotificationSink,
    RecordingNotifier,
    safe_notify,
)
from compoundefi.monitoring.optimization_tracker import (
    OptimizationMetrics,
    OptimizationTracker,
    RunRecord,
    RunStatus,
)

__all__ = [
    "NotificationSink",
    "LoggingNotifier",
    "RecordingNotifier",
    "safe_notify",
    "OptimizationTracker",
    "OptimizationMetrics",
    "RunRecord",
    "RunStatus",
]
