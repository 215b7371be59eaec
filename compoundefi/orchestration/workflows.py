"""Rebalance Workflow - one Plan → Execute cycle.

Workflow Chain:
Recommendation → Allocation Planner → Operation list → Operation Executor → ExecutionResult

Used by the auto-optimizer for scheduled runs. Interactive runs go through
ExecutionSession instead, which adds the confirm step.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from compoundefi.execution.base import ExecutionResult, Signer
from compoundefi.execution.executor import OperationExecutor, ProgressListener
from compoundefi.planning.base import PlanResult, Recommendation, SkipReason
from compoundefi.planning.planner import AllocationPlanner
from compoundefi.utils.exceptions import NoOperationsError, SignerNotConnectedError
from compoundefi.utils.logging import get_logger
from compoundefi.utils.logging_enhanced import OptimizerEventLogger, OptimizerEventType

logger = get_logger(__name__)


@dataclass
class RebalanceOutcome:
    """Result of one rebalance cycle.

    Attributes:
        plan: Planner output (operations and skips)
        result: Executor output
        finished_at: When the cycle finished
    """

    plan: PlanResult
    result: ExecutionResult
    finished_at: datetime = field(default_factory=datetime.now)

    @property
    def skipped(self) -> List[SkipReason]:
        return self.plan.skipped

    @property
    def success(self) -> bool:
        return self.result.success


class RebalanceWorkflow:
    """Plans a recommendation and executes the resulting operations.

    Example:
        >>> workflow = RebalanceWorkflow(planner, executor, signer)
        >>> outcome = workflow.run(recommendation)
        >>> outcome.result.summary()
        '2 succeeded, 0 failed'
    """

    def __init__(
        self,
        planner: AllocationPlanner,
        executor: OperationExecutor,
        signer: Optional[Signer],
        event_logger: Optional[OptimizerEventLogger] = None,
    ):
        """Initialize rebalance workflow.

        Args:
            planner: Allocation planner
            executor: Operation executor
            signer: Signer used for submissions (None = not connected)
            event_logger: Optional structured event logger
        """
        self.planner = planner
        self.executor = executor
        self.signer = signer
        self.event_logger = event_logger

    def plan(self, recommendation: Recommendation) -> PlanResult:
        """Plan without executing (dry run)."""
        plan = self.planner.plan(recommendation)
        if self.event_logger is not None:
            for skip in plan.skipped:
                self.event_logger.log_scheduler_event(
                    OptimizerEventType.PLAN_ITEM_SKIPPED,
                    skip.reason,
                    protocol=skip.protocol,
                    code=skip.code,
                    index=skip.index,
                )
        return plan

    def run(
        self,
        recommendation: Recommendation,
        on_progress: Optional[ProgressListener] = None,
        cancel_event: Any = None,
    ) -> RebalanceOutcome:
        """Run one full cycle.

        Args:
            recommendation: Target recommendation
            on_progress: Optional progress listener
            cancel_event: Optional threading.Event to stop pending operations

        Returns:
            RebalanceOutcome

        Raises:
            SignerNotConnectedError: If no connected signer is available
            NoOperationsError: If planning left nothing to execute
        """
        logger.info("=" * 60)
        logger.info("REBALANCE WORKFLOW - %s", datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
        logger.info("=" * 60)

        # 1. Check signer
        logger.info("Step 1/3: Checking signer...")
        if self.signer is None or not self.signer.is_connected:
            raise SignerNotConnectedError("Wallet not connected")

        # 2. Plan operations
        logger.info("Step 2/3: Planning operations...")
        plan = self.plan(recommendation)
        for op in plan.operations:
            logger.info(
                "    %s %s %s (APR %.2f%%)",
                op.protocol, op.operation_type.value, op.amount, op.expected_apr,
            )
        if plan.is_empty:
            raise NoOperationsError(
                f"No valid operations for recommendation {recommendation.id or '<unnamed>'} "
                f"({len(plan.skipped)} items skipped)"
            )

        # 3. Execute
        logger.info("Step 3/3: Executing %d operations...", len(plan.operations))
        result = self.executor.execute(
            plan.operations,
            self.executor.submit_with_signer(self.signer),
            on_progress=on_progress,
            cancel_event=cancel_event,
        )

        logger.info("  Successful: %d, Failed: %d", result.succeeded_count, result.failed_count)
        if result.success:
            logger.info("✓ Rebalance workflow completed successfully")
        else:
            logger.warning("✗ Rebalance workflow completed with failures: %s", result.summary())

        return RebalanceOutcome(plan=plan, result=result)
