"""Persisted auto-optimizer state.

SchedulerState is loaded at startup, mutated by toggles, runs and settings
changes, and written back after every mutation. Serialization is a plain
JSON-compatible dict so any key-value store can hold it.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from compoundefi.monitoring.optimization_tracker import (
    DEFAULT_HISTORY_LIMIT,
    OptimizationMetrics,
    OptimizationTracker,
    RunRecord,
)
from compoundefi.utils.exceptions import ConfigurationError
from compoundefi.utils.logging import get_logger

logger = get_logger(__name__)

STATE_KEY = "autoOptimizerState"


@dataclass(frozen=True)
class SchedulerSettings:
    """User-adjustable auto-optimizer settings.

    Attributes:
        interval_hours: Hours between scheduled runs
        drift_threshold_percent: Drift that warrants rebalancing (advisory
            input for the portfolio collaborator)
        max_slippage_percent: Maximum slippage tolerated by the collaborator
        preserve_staked_positions: Ask the collaborator to keep staked positions
    """

    interval_hours: float = 24.0
    drift_threshold_percent: float = 5.0
    max_slippage_percent: float = 1.0
    preserve_staked_positions: bool = True

    def __post_init__(self):
        """Validate settings."""
        if self.interval_hours <= 0:
            raise ConfigurationError(f"interval_hours must be positive, got {self.interval_hours}")
        if self.drift_threshold_percent < 0:
            raise ConfigurationError(
                f"drift_threshold_percent must be non-negative, got {self.drift_threshold_percent}"
            )
        if self.max_slippage_percent < 0:
            raise ConfigurationError(
                f"max_slippage_percent must be non-negative, got {self.max_slippage_percent}"
            )

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.interval_hours)

    @property
    def retry_interval(self) -> timedelta:
        """Delay before retrying after a failed cycle: half the interval."""
        return self.interval / 2

    def updated(self, **changes: Any) -> "SchedulerSettings":
        return replace(self, **changes)

    @classmethod
    def from_config(cls, config: Any) -> "SchedulerSettings":
        """Build settings from the ``optimizer`` config section."""
        return cls(
            interval_hours=float(config.get("optimizer.interval_hours", 24)),
            drift_threshold_percent=float(config.get("optimizer.drift_threshold_percent", 5)),
            max_slippage_percent=float(config.get("optimizer.max_slippage_percent", 1)),
            preserve_staked_positions=bool(config.get("optimizer.preserve_staked_positions", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intervalHours": self.interval_hours,
            "driftThresholdPercent": self.drift_threshold_percent,
            "maxSlippagePercent": self.max_slippage_percent,
            "preserveStakedPositions": self.preserve_staked_positions,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], defaults: "SchedulerSettings" = None) -> "SchedulerSettings":
        defaults = defaults or cls()
        data = data or {}
        return cls(
            interval_hours=float(data.get("intervalHours", defaults.interval_hours)),
            drift_threshold_percent=float(
                data.get("driftThresholdPercent", defaults.drift_threshold_percent)
            ),
            max_slippage_percent=float(data.get("maxSlippagePercent", defaults.max_slippage_percent)),
            preserve_staked_positions=bool(
                data.get("preserveStakedPositions", defaults.preserve_staked_positions)
            ),
        )


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _load_history(entries: List[Dict[str, Any]]) -> List[RunRecord]:
    """Rebuild run records, dropping entries that cannot be read."""
    history = []
    for entry in entries:
        try:
            history.append(RunRecord.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Dropping unreadable history entry %r: %s", entry, e)
    return history


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class SchedulerState:
    """Everything the auto-optimizer persists.

    Attributes:
        enabled: Whether scheduled runs are active
        settings: Current settings
        last_run_at: When the last run finished
        next_run_at: When the next run is due
        history: Run records, newest first (bounded)
        metrics: Cumulative optimization metrics
    """

    enabled: bool = False
    settings: SchedulerSettings = field(default_factory=SchedulerSettings)
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    history: List[RunRecord] = field(default_factory=list)
    metrics: OptimizationMetrics = field(default_factory=OptimizationMetrics)

    def add_run(self, record: RunRecord, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        """Insert a run record newest-first, keeping at most ``limit`` records."""
        OptimizationTracker(self.history, self.metrics, limit).add_record(record)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "settings": self.settings.to_dict(),
            "lastRunAt": _format_time(self.last_run_at),
            "nextRunAt": _format_time(self.next_run_at),
            "history": [record.to_dict() for record in self.history],
            "metrics": self.metrics.to_dict(),
        }

    @classmethod
    def from_dict(
        cls,
        data: Optional[Dict[str, Any]],
        default_settings: Optional[SchedulerSettings] = None,
    ) -> "SchedulerState":
        """Rebuild state, tolerating missing keys from older saves."""
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", False)),
            settings=SchedulerSettings.from_dict(data.get("settings"), default_settings),
            last_run_at=_parse_time(data.get("lastRunAt")),
            next_run_at=_parse_time(data.get("nextRunAt")),
            history=_load_history(data.get("history") or []),
            metrics=OptimizationMetrics.from_dict(data.get("metrics")),
        )
