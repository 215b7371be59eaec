"""Execution State Machine - confirm, executing, complete/error lifecycle.

    confirm --confirm()--> executing --(automatic)--> complete | error
    error --try_again()--> confirm

``cancel()`` is only meaningful in ``confirm`` and does not change state.
While ``executing``, ``abort()`` stops operations that have not been
submitted yet; operations already broadcast cannot be undone.
"""

import threading
from enum import Enum
from typing import Callable, List, Optional, Sequence

from compoundefi.execution.base import ExecutionResult, ProgressUpdate, Signer
from compoundefi.execution.executor import OperationExecutor
from compoundefi.monitoring.notifications import NotificationSink, safe_notify
from compoundefi.planning.base import Operation
from compoundefi.utils.exceptions import InvalidStateTransitionError
from compoundefi.utils.logging import get_logger

logger = get_logger(__name__)


class ExecutionStep(Enum):
    """Session lifecycle steps."""

    CONFIRM = "confirm"
    EXECUTING = "executing"
    COMPLETE = "complete"
    ERROR = "error"


# Reasons surfaced in the error step
SETUP_FAILURE_PREFIX = "Execution failed before any operation ran"
OPERATIONS_FAILURE_PREFIX = "One or more operations failed"


class ExecutionSession:
    """One user-facing execution of a set of operations.

    Example:
        >>> session = ExecutionSession(plan.operations, signer, OperationExecutor())
        >>> session.confirm()
        >>> session.step
        <ExecutionStep.COMPLETE: 'complete'>
        >>> session.result.summary()
        '3 succeeded, 0 failed'
    """

    def __init__(
        self,
        operations: Sequence[Operation],
        signer: Optional[Signer],
        executor: OperationExecutor,
        notifier: Optional[NotificationSink] = None,
        on_complete: Optional[Callable[[ExecutionResult], None]] = None,
    ):
        """Initialize session in the confirm step.

        Args:
            operations: Operations shown to the user for confirmation
            signer: Connected signer, or None when no wallet is connected
            executor: Executor that runs the operations
            notifier: Optional user-visible notification sink
            on_complete: Called with the result whenever a run finishes
        """
        self.operations: List[Operation] = list(operations)
        self.signer = signer
        self.executor = executor
        self.notifier = notifier
        self.on_complete = on_complete

        self.step = ExecutionStep.CONFIRM
        self.progress = 0.0
        self.operation_index = -1
        self.status_message = ""
        self.result: Optional[ExecutionResult] = None
        self.error: Optional[str] = None
        self._cancel_event: Optional[threading.Event] = None
        self._lock = threading.Lock()

    @property
    def is_terminal(self) -> bool:
        return self.step in (ExecutionStep.COMPLETE, ExecutionStep.ERROR)

    def confirm(self) -> Optional[ExecutionResult]:
        """Start execution from the confirm step.

        Guard failures (no connected signer, no operations) move straight to
        the error step without submitting anything.

        Returns:
            The ExecutionResult, or None when setup failed

        Raises:
            InvalidStateTransitionError: If not in the confirm step
        """
        with self._lock:
            self._require(ExecutionStep.CONFIRM, "confirm")

            setup_error = self._setup_error()
            if setup_error:
                self._fail_setup(setup_error)
                return None

            self.step = ExecutionStep.EXECUTING
            self.progress = 0.0
            self.operation_index = -1
            self.status_message = f"Executing {len(self.operations)} operations"
            self._cancel_event = threading.Event()

        safe_notify(
            self.notifier, "info",
            f"Executing strategy with {len(self.operations)} operations. "
            "Please confirm each transaction.",
        )

        try:
            result = self.executor.execute(
                self.operations,
                self.executor.submit_with_signer(self.signer),
                on_progress=self._on_progress,
                cancel_event=self._cancel_event,
            )
        except Exception as e:
            # Executor itself broke (not a per-operation failure)
            logger.error("Execution aborted unexpectedly: %s", e, exc_info=True)
            with self._lock:
                self.step = ExecutionStep.ERROR
                self.progress = 1.0
                self.error = f"Execution failed: {e}"
                self.status_message = self.error
            safe_notify(self.notifier, "error", self.error)
            return None

        self._finish(result)
        return result

    def cancel(self) -> bool:
        """Cancel from the confirm step.

        Returns:
            True when the cancel was accepted; False in any other step
        """
        if self.step != ExecutionStep.CONFIRM:
            logger.warning("Cancel ignored in step %s", self.step.value)
            return False
        logger.info("Execution cancelled by user before confirmation")
        return True

    def abort(self) -> bool:
        """Skip operations not yet submitted while executing.

        Returns:
            True if a running execution was signalled
        """
        if self.step != ExecutionStep.EXECUTING or self._cancel_event is None:
            return False
        self._cancel_event.set()
        logger.warning("Abort requested; pending operations will not be submitted")
        return True

    def try_again(self) -> None:
        """Return from the error step to confirm, clearing the previous attempt.

        Raises:
            InvalidStateTransitionError: If not in the error step
        """
        with self._lock:
            self._require(ExecutionStep.ERROR, "try_again")
            self.step = ExecutionStep.CONFIRM
            self.progress = 0.0
            self.operation_index = -1
            self.status_message = ""
            self.result = None
            self.error = None
            self._cancel_event = None
            self.executor.progress.reset()

    def _setup_error(self) -> Optional[str]:
        if self.signer is None or not self.signer.is_connected:
            return "Please connect your wallet first"
        if not self.operations:
            return "No operations to execute"
        return None

    def _fail_setup(self, reason: str) -> None:
        self.step = ExecutionStep.ERROR
        self.error = f"{SETUP_FAILURE_PREFIX}: {reason}"
        self.status_message = self.error
        logger.warning(self.error)
        safe_notify(self.notifier, "error", reason)

    def _finish(self, result: ExecutionResult) -> None:
        with self._lock:
            self.result = result
            self.progress = 1.0
            if result.success:
                self.step = ExecutionStep.COMPLETE
                self.error = None
                self.status_message = f"Strategy executed: {result.summary()}"
                level = "success"
            else:
                self.step = ExecutionStep.ERROR
                self.error = f"{OPERATIONS_FAILURE_PREFIX}: {result.summary()}"
                self.status_message = self.error
                level = "warning" if result.partial else "error"

        safe_notify(self.notifier, level, self.status_message)
        if self.on_complete is not None:
            try:
                self.on_complete(result)
            except Exception as e:
                logger.error("on_complete callback failed: %s", e, exc_info=True)

    def _on_progress(self, update: ProgressUpdate) -> None:
        self.progress = update.progress
        self.operation_index = update.index
        self.status_message = update.status_message

    def _require(self, expected: ExecutionStep, action: str) -> None:
        if self.step != expected:
            raise InvalidStateTransitionError(
                f"Cannot {action} from step '{self.step.value}', expected '{expected.value}'"
            )
