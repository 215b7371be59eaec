"""Execution contracts and result types.

This module defines:

- Signer: the external signer/submitter (wallet approval + broadcast + wait)
- OperationOutcome / ExecutionResult: what a run produces and retains
- ProgressUpdate: progress events published while a run is in flight

Key Principle: the executor only ever talks to the chain through
``Signer.submit`` (or an equivalent ``submit_one`` callable), so wallets,
simulators and test doubles are interchangeable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from compoundefi.planning.base import Operation

# 1 APT = 10^8 octas
DEFAULT_BASE_UNIT_SCALE = 100_000_000


class OperationStatus(Enum):
    """Per-operation outcome status."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class OperationOutcome:
    """Result of submitting one operation.

    Attributes:
        operation: The operation that was submitted
        status: SUCCESS or FAILED
        result: Signer result payload (success only)
        error: Error message (failure only)
        index: Position of the operation in the run
        submitted_at: When submission started
    """

    operation: Operation
    status: OperationStatus
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    index: int = 0
    submitted_at: datetime = field(default_factory=datetime.now)

    @property
    def succeeded(self) -> bool:
        return self.status == OperationStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data = self.operation.to_dict()
        data.update(
            {
                "status": self.status.value,
                "index": self.index,
                "submittedAt": self.submitted_at.isoformat(),
            }
        )
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ExecutionResult:
    """Aggregate result of one execution run.

    Attributes:
        operations: Outcomes of operations that succeeded
        failed_operations: Outcomes of operations that failed
        start_time: When the run started
        end_time: When the last operation resolved
    """

    operations: List[OperationOutcome] = field(default_factory=list)
    failed_operations: List[OperationOutcome] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None

    @property
    def success(self) -> bool:
        """True iff no operation failed."""
        return not self.failed_operations

    @property
    def partial(self) -> bool:
        """True when some operations succeeded and some failed."""
        return bool(self.operations) and bool(self.failed_operations)

    @property
    def succeeded_count(self) -> int:
        return len(self.operations)

    @property
    def failed_count(self) -> int:
        return len(self.failed_operations)

    @property
    def total_count(self) -> int:
        return self.succeeded_count + self.failed_count

    @property
    def duration(self) -> float:
        """Run duration in seconds (0 while still running)."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def summary(self) -> str:
        """Human readable outcome, e.g. "2 succeeded, 1 failed"."""
        return f"{self.succeeded_count} succeeded, {self.failed_count} failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "operations": [o.to_dict() for o in self.operations],
            "failedOperations": [o.to_dict() for o in self.failed_operations],
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
        }


@dataclass(frozen=True)
class ProgressUpdate:
    """Progress event published at every operation boundary.

    Attributes:
        index: Zero-based index of the operation the event refers to
            (-1 for the setup event before the first operation)
        total: Number of operations in the run
        completed: Operations resolved so far
        progress: Fraction between 0.0 and 1.0
        protocol: Protocol of the current operation (empty for setup)
        operation_type: Operation type value of the current operation
        status_message: Human readable status line
    """

    index: int
    total: int
    completed: int
    progress: float
    protocol: str = ""
    operation_type: str = ""
    status_message: str = ""

    @property
    def percent(self) -> float:
        return round(self.progress * 100, 2)


class Signer(ABC):
    """Abstract signer/submitter.

    Submitting may prompt a human for wallet approval and block until the
    prompt is resolved and the transaction is confirmed or rejected.

    Example:
        >>> class WalletSigner(Signer):
        ...     def submit(self, contract_address, entry_point, args):
        ...         tx = wallet.sign_and_submit(entry_point, args)
        ...         return {"hash": tx.hash}
    """

    @property
    def is_connected(self) -> bool:
        """Whether a wallet/account is available for signing."""
        return True

    @abstractmethod
    def submit(
        self,
        contract_address: str,
        entry_point: str,
        args: Sequence[Any],
    ) -> Dict[str, Any]:
        """Sign, broadcast and wait for one transaction.

        Args:
            contract_address: Target contract address
            entry_point: Fully qualified function identifier
            args: Function arguments (amounts already in base units)

        Returns:
            Transaction result payload (hash, version, ...)

        Raises:
            Exception: Any exception marks the operation as failed
        """
        pass


def to_base_units(amount: Decimal, scale: int = DEFAULT_BASE_UNIT_SCALE) -> int:
    """Convert a whole-token amount to the chain's smallest unit.

    Fractions of a base unit are truncated.

    Example:
        >>> to_base_units(Decimal("1.5"))
        150000000
    """
    return int((Decimal(amount) * scale).to_integral_value(rounding=ROUND_DOWN))
