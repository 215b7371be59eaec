"""Execution Layer - sequential operation execution and its lifecycle.

This module provides the operation executor, the signer contract it submits
through, and the confirm/executing/complete/error session state machine.
"""

from compoundefi.execution.base import (
    DEFAULT_BASE_UNIT_SCALE,
    ExecutionResult,
    OperationOutcome,
    OperationStatus,
    ProgressUpdate,
    Signer,
    to_base_units,
)
from compoundefi.execution.executor import (
    OperationExecutor,
    ProgressChannel,
    progress_fraction,
)
from compoundefi.execution.state_machine import ExecutionSession, ExecutionStep
from compoundefi.execution.simulated_signer import SimulatedSigner

__all__ = [
    # Abstract interface
    "Signer",
    "SimulatedSigner",
    # Executor
    "OperationExecutor",
    "ProgressChannel",
    "progress_fraction",
    "to_base_units",
    "DEFAULT_BASE_UNIT_SCALE",
    # State machine
    "ExecutionSession",
    "ExecutionStep",
    # Data classes
    "ExecutionResult",
    "OperationOutcome",
    "ProgressUpdate",
    # Enums
    "OperationStatus",
]
