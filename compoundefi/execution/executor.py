"""Operation Executor - runs operations one at a time against a signer.

Operations run strictly sequentially: each needs its own wallet approval,
and amounts were computed against a point-in-time balance. A failed
operation is recorded and the batch continues with the next one.

Progress is published on a ProgressChannel:
- 5% once setup is done (before the first submission)
- 5% + completed/total * 90% after each operation resolves
- 100% after the last operation resolves
"""

import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from compoundefi.execution.base import (
    DEFAULT_BASE_UNIT_SCALE,
    ExecutionResult,
    OperationOutcome,
    OperationStatus,
    ProgressUpdate,
    Signer,
    to_base_units,
)
from compoundefi.planning.base import Operation
from compoundefi.utils.logging import get_logger, log_with_context
from compoundefi.utils.logging_enhanced import OptimizerEventLogger, OptimizerEventType

logger = get_logger(__name__)

SETUP_PROGRESS = 0.05
OPERATIONS_PROGRESS_SPAN = 0.90

CANCELLED_ERROR = "cancelled before submission"

# submit_one(operation, args) -> result payload; raises on failure
SubmitOne = Callable[[Operation, List[Any]], Dict[str, Any]]
ProgressListener = Callable[[ProgressUpdate], None]


class ProgressChannel:
    """Ordered progress stream with a polled accessor.

    Listeners are called synchronously, in subscription order, on the thread
    running the executor. A failing listener is logged and does not affect
    the run or other listeners.
    """

    def __init__(self):
        self._listeners: List[ProgressListener] = []
        self._lock = threading.Lock()
        self.latest: Optional[ProgressUpdate] = None

    def subscribe(self, listener: ProgressListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ProgressListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, update: ProgressUpdate) -> None:
        # Never move backwards
        if self.latest is not None and update.progress < self.latest.progress:
            update = ProgressUpdate(
                index=update.index,
                total=update.total,
                completed=update.completed,
                progress=self.latest.progress,
                protocol=update.protocol,
                operation_type=update.operation_type,
                status_message=update.status_message,
            )
        self.latest = update

        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(update)
            except Exception as e:
                logger.warning("Progress listener failed: %s", e, exc_info=True)

    def reset(self) -> None:
        self.latest = None


def progress_fraction(completed: int, total: int) -> float:
    """Progress after ``completed`` of ``total`` operations resolved."""
    if total <= 0:
        return 1.0
    if completed >= total:
        return 1.0
    return SETUP_PROGRESS + (completed / total) * OPERATIONS_PROGRESS_SPAN


class OperationExecutor:
    """Sequential operation executor.

    Example:
        >>> executor = OperationExecutor(base_unit_scale=10**8)
        >>> result = executor.execute(plan.operations, executor.submit_with_signer(signer))
        >>> print(result.summary())
        3 succeeded, 0 failed
    """

    def __init__(
        self,
        base_unit_scale: int = DEFAULT_BASE_UNIT_SCALE,
        inter_operation_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
        event_logger: Optional[OptimizerEventLogger] = None,
    ):
        """Initialize executor.

        Args:
            base_unit_scale: Base units per whole token (10^8 for APT)
            inter_operation_delay: Seconds to wait between submissions
            sleep: Sleep function (injected in tests)
            clock: Time source for result timestamps
            event_logger: Optional structured event logger
        """
        if base_unit_scale <= 0:
            raise ValueError(f"base_unit_scale must be positive, got {base_unit_scale}")
        if inter_operation_delay < 0:
            raise ValueError(
                f"inter_operation_delay must be non-negative, got {inter_operation_delay}"
            )

        self.base_unit_scale = int(base_unit_scale)
        self.inter_operation_delay = inter_operation_delay
        self._sleep = sleep
        self._clock = clock
        self.event_logger = event_logger
        self.progress = ProgressChannel()

    @classmethod
    def from_config(cls, config: Any, **kwargs) -> "OperationExecutor":
        """Create an executor from the ``execution`` config section."""
        return cls(
            base_unit_scale=int(config.get("execution.base_unit_scale", DEFAULT_BASE_UNIT_SCALE)),
            inter_operation_delay=float(config.get("execution.inter_operation_delay_seconds", 1.0)),
            **kwargs,
        )

    def submit_with_signer(self, signer: Signer) -> SubmitOne:
        """Adapt a Signer to the ``submit_one`` calling contract."""

        def submit_one(operation: Operation, args: List[Any]) -> Dict[str, Any]:
            return signer.submit(operation.target_contract, operation.entry_point, args)

        return submit_one

    def build_args(self, operation: Operation) -> List[Any]:
        """Function arguments for an operation: the amount in base units."""
        return [str(to_base_units(operation.amount, self.base_unit_scale))]

    def execute(
        self,
        operations: Sequence[Operation],
        submit_one: SubmitOne,
        on_progress: Optional[ProgressListener] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        """Run operations sequentially.

        Args:
            operations: Operations to run, in order
            submit_one: Submission function; any exception marks the
                operation as failed
            on_progress: Optional listener for this run only
            cancel_event: When set, operations not yet submitted are
                recorded as failed without being broadcast

        Returns:
            ExecutionResult with successes and failures
        """
        total = len(operations)
        result = ExecutionResult(start_time=self._clock())

        self.progress.reset()
        if on_progress is not None:
            self.progress.subscribe(on_progress)

        try:
            logger.info("Executing %d operations", total)
            self._publish(-1, total, 0, None, f"Preparing {total} operations")

            for index, operation in enumerate(operations):
                if cancel_event is not None and cancel_event.is_set():
                    self._record_cancelled(result, operations[index:], index)
                    break

                outcome = self._run_one(index, total, operation, submit_one)
                if outcome.succeeded:
                    result.operations.append(outcome)
                else:
                    result.failed_operations.append(outcome)

                completed = index + 1
                status = "succeeded" if outcome.succeeded else "failed"
                self._publish(
                    index, total, completed, operation,
                    f"Operation {completed} of {total} {status}",
                )

                if completed < total and self.inter_operation_delay > 0:
                    self._sleep(self.inter_operation_delay)

            result.end_time = self._clock()
            self._publish(total - 1, total, total, None, result.summary())
        finally:
            if on_progress is not None:
                self.progress.unsubscribe(on_progress)

        logger.info(
            "Execution finished: %s in %.2fs", result.summary(), result.duration
        )
        return result

    def _run_one(
        self,
        index: int,
        total: int,
        operation: Operation,
        submit_one: SubmitOne,
    ) -> OperationOutcome:
        submitted_at = self._clock()
        args = self.build_args(operation)
        log_with_context(
            logger, "info", "Submitting operation",
            index=index + 1, total=total, protocol=operation.protocol,
            type=operation.operation_type.value, amount=operation.amount,
        )
        self._log_event(OptimizerEventType.OPERATION_SUBMITTED, operation, index=index)

        try:
            payload = submit_one(operation, args)
        except Exception as e:
            logger.error(
                "Operation %d/%d failed (%s %s): %s",
                index + 1, total, operation.protocol, operation.operation_type.value, e,
            )
            self._log_event(OptimizerEventType.OPERATION_FAILED, operation, index=index, error=str(e))
            return OperationOutcome(
                operation=operation,
                status=OperationStatus.FAILED,
                error=str(e) or e.__class__.__name__,
                index=index,
                submitted_at=submitted_at,
            )

        self._log_event(OptimizerEventType.OPERATION_SUCCEEDED, operation, index=index)
        return OperationOutcome(
            operation=operation,
            status=OperationStatus.SUCCESS,
            result=payload if isinstance(payload, dict) else {"value": payload},
            index=index,
            submitted_at=submitted_at,
        )

    def _record_cancelled(
        self,
        result: ExecutionResult,
        pending: Sequence[Operation],
        start_index: int,
    ) -> None:
        logger.warning("Execution cancelled, %d operations not submitted", len(pending))
        for offset, operation in enumerate(pending):
            result.failed_operations.append(
                OperationOutcome(
                    operation=operation,
                    status=OperationStatus.FAILED,
                    error=CANCELLED_ERROR,
                    index=start_index + offset,
                    submitted_at=self._clock(),
                )
            )
            self._log_event(
                OptimizerEventType.OPERATION_CANCELLED, operation, index=start_index + offset
            )

    def _publish(
        self,
        index: int,
        total: int,
        completed: int,
        operation: Optional[Operation],
        message: str,
    ) -> None:
        progress = SETUP_PROGRESS if index < 0 and total > 0 else progress_fraction(completed, total)
        self.progress.publish(
            ProgressUpdate(
                index=index,
                total=total,
                completed=completed,
                progress=progress,
                protocol=operation.protocol if operation else "",
                operation_type=operation.operation_type.value if operation else "",
                status_message=message,
            )
        )

    def _log_event(self, event_type: OptimizerEventType, operation: Operation, **extra: Any) -> None:
        if self.event_logger is None:
            return
        self.event_logger.log_operation_event(
            event_type,
            protocol=operation.protocol,
            operation_type=operation.operation_type.value,
            amount=operation.amount,
            **extra,
        )
