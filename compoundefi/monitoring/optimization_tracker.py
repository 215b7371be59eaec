"""Optimization history and cumulative metrics.

Tracks the outcome of each auto-optimizer rebalance run in a bounded history
(newest first) and maintains cumulative metrics across runs.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd

from compoundefi.execution.base import ExecutionResult

DEFAULT_HISTORY_LIMIT = 10


class RunStatus(Enum):
    """Outcome of one rebalance run."""

    SUCCESS = "success"  # Every operation succeeded
    PARTIAL = "partial"  # At least one operation failed
    FAILED = "failed"  # The cycle itself failed
    SKIPPED = "skipped"  # Drift below threshold, nothing executed


@dataclass
class RunRecord:
    """History entry for one rebalance run.

    Attributes:
        timestamp: When the run finished
        status: Run outcome
        operation_count: Operations that succeeded
        failed_count: Operations that failed
        max_drift: Largest drift reported before the run
        reason: Failure or skip reason (empty for completed runs)
    """

    timestamp: datetime
    status: RunStatus
    operation_count: int = 0
    failed_count: int = 0
    max_drift: float = 0.0
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "operations": self.operation_count,
            "failedOperations": self.failed_count,
            "driftPercentage": self.max_drift,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunRecord":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            status=RunStatus(data.get("status", "failed")),
            operation_count=int(data.get("operations", 0) or 0),
            failed_count=int(data.get("failedOperations", 0) or 0),
            max_drift=float(data.get("driftPercentage", 0) or 0),
            reason=data.get("reason", "") or "",
        )


@dataclass
class OptimizationMetrics:
    """Cumulative metrics across completed rebalance runs.

    Attributes:
        total_optimizations: Completed runs (success or partial)
        total_value_saved: Sum of value attributed to rebalancing
        total_apr_increase: Sum of per-run APR increases, in percentage points
        average_apr_increase: Running mean of per-run APR increase
        last_optimization_date: When the last completed run finished
    """

    total_optimizations: int = 0
    total_value_saved: float = 0.0
    total_apr_increase: float = 0.0
    average_apr_increase: float = 0.0
    last_optimization_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalOptimizations": self.total_optimizations,
            "totalValueSaved": self.total_value_saved,
            "totalAprIncrease": self.total_apr_increase,
            "averageAprIncrease": self.average_apr_increase,
            "lastOptimizationDate": (
                self.last_optimization_date.isoformat() if self.last_optimization_date else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "OptimizationMetrics":
        data = data or {}
        last = data.get("lastOptimizationDate")
        return cls(
            total_optimizations=int(data.get("totalOptimizations", 0) or 0),
            total_value_saved=float(data.get("totalValueSaved", 0) or 0),
            total_apr_increase=float(data.get("totalAprIncrease", 0) or 0),
            average_apr_increase=float(data.get("averageAprIncrease", 0) or 0),
            last_optimization_date=datetime.fromisoformat(last) if last else None,
        )


def realized_apr(result: ExecutionResult) -> Optional[float]:
    """Amount-weighted expected APR of the operations that succeeded."""
    total = sum((o.operation.amount for o in result.operations), Decimal("0"))
    if total <= 0:
        return None
    weighted = sum(
        o.operation.amount * Decimal(str(o.operation.expected_apr)) for o in result.operations
    )
    return float(weighted / total)


class OptimizationTracker:
    """Applies run outcomes to a bounded history and cumulative metrics.

    Example:
        >>> tracker = OptimizationTracker(history=[], metrics=OptimizationMetrics())
        >>> tracker.record_completed_run(result, now, max_drift=7.5, current_apr=4.0)
        >>> tracker.metrics.total_optimizations
        1
        >>> tracker.to_dataframe()[["status", "operations"]]
    """

    def __init__(
        self,
        history: Optional[List[RunRecord]] = None,
        metrics: Optional[OptimizationMetrics] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        """Initialize tracker.

        Args:
            history: Existing history, newest first (mutated in place)
            metrics: Existing metrics (mutated in place)
            history_limit: Maximum number of retained records
        """
        if history_limit <= 0:
            raise ValueError(f"history_limit must be positive, got {history_limit}")
        self.history = history if history is not None else []
        self.metrics = metrics if metrics is not None else OptimizationMetrics()
        self.history_limit = history_limit

    def add_record(self, record: RunRecord) -> RunRecord:
        """Insert a record at the front and evict the oldest beyond the limit."""
        self.history.insert(0, record)
        del self.history[self.history_limit:]
        return record

    def record_completed_run(
        self,
        result: ExecutionResult,
        timestamp: datetime,
        max_drift: float = 0.0,
        current_apr: float = 0.0,
        value_saved: float = 0.0,
    ) -> RunRecord:
        """Record a run whose operations were all attempted.

        Updates history and metrics. The run's APR increase is the realized
        APR of succeeded operations minus the portfolio's current APR; a run
        where nothing succeeded contributes no increase.

        Returns:
            The RunRecord that was added
        """
        record = self.add_record(
            RunRecord(
                timestamp=timestamp,
                status=RunStatus.SUCCESS if result.success else RunStatus.PARTIAL,
                operation_count=result.succeeded_count,
                failed_count=result.failed_count,
                max_drift=max_drift,
            )
        )

        apr = realized_apr(result)
        apr_increase = apr - current_apr if apr is not None else 0.0

        metrics = self.metrics
        metrics.total_optimizations += 1
        metrics.total_value_saved += value_saved
        metrics.total_apr_increase += apr_increase
        metrics.average_apr_increase = metrics.total_apr_increase / metrics.total_optimizations
        metrics.last_optimization_date = timestamp

        return record

    def record_failed_run(self, timestamp: datetime, reason: str, max_drift: float = 0.0) -> RunRecord:
        """Record a cycle that failed before or between operations."""
        return self.add_record(
            RunRecord(timestamp=timestamp, status=RunStatus.FAILED, max_drift=max_drift, reason=reason)
        )

    def record_skipped_run(self, timestamp: datetime, reason: str, max_drift: float = 0.0) -> RunRecord:
        """Record a cycle that decided not to rebalance."""
        return self.add_record(
            RunRecord(timestamp=timestamp, status=RunStatus.SKIPPED, max_drift=max_drift, reason=reason)
        )

    def to_dataframe(self) -> pd.DataFrame:
        """History as a DataFrame indexed by timestamp, newest first."""
        columns = ["status", "operations", "failed", "max_drift", "reason"]
        if not self.history:
            return pd.DataFrame(columns=columns, index=pd.DatetimeIndex([], name="timestamp"))

        rows = []
        for record in self.history:
            row = asdict(record)
            rows.append(
                {
                    "timestamp": record.timestamp,
                    "status": record.status.value,
                    "operations": row["operation_count"],
                    "failed": row["failed_count"],
                    "max_drift": row["max_drift"],
                    "reason": row["reason"],
                }
            )
        return pd.DataFrame(rows).set_index("timestamp")

    def success_rate(self) -> float:
        """Share of recorded runs (excluding skips) that fully succeeded."""
        attempted = [r for r in self.history if r.status != RunStatus.SKIPPED]
        if not attempted:
            return 0.0
        return sum(1 for r in attempted if r.status == RunStatus.SUCCESS) / len(attempted)
