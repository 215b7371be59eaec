"""Custom exceptions for CompounDefi.

This module defines the exception hierarchy for the application.
"""


class CompounDefiError(Exception):
    """Base exception for all CompounDefi errors.

    All custom exceptions in the application should inherit from this class.
    """

    pass


class ConfigurationError(CompounDefiError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Missing required configuration keys
        - Invalid configuration values
        - Configuration file not found
    """

    pass


class PlanningError(CompounDefiError):
    """Base exception for planning layer errors.

    Raised per allocation item inside the planner, which turns them into
    skip reasons. They never escape AllocationPlanner.plan.
    """

    pass


class UnknownProtocolError(PlanningError):
    """Raised when a protocol name has no contract address in the registry."""

    pass


class InvalidAmountError(PlanningError):
    """Raised when an allocation item has no usable positive amount.

    Examples:
        - Percentage of zero
        - Amount too large for the decimal context
        - Non-numeric amount string
        - Missing total investment with no explicit amount
    """

    pass


class ExecutionError(CompounDefiError):
    """Base exception for execution layer errors.

    Parent class for all execution-related exceptions.
    """

    pass


class ExecutionSetupError(ExecutionError):
    """Raised when a run cannot start at all.

    No operation is submitted when this is raised.
    """

    pass


class SignerNotConnectedError(ExecutionSetupError):
    """Raised when no connected signer is available for a run."""

    pass


class NoOperationsError(ExecutionSetupError):
    """Raised when planning left zero valid operations to execute."""

    pass


class OperationFailedError(ExecutionError):
    """Raised by a signer when a single operation fails.

    Examples:
        - User rejected the wallet approval prompt
        - Transaction reverted on chain
        - Confirmation wait timed out
    """

    pass


class InvalidStateTransitionError(ExecutionError):
    """Raised when an execution session action is not allowed in its current step."""

    pass


class SchedulerError(CompounDefiError):
    """Base exception for auto-optimizer scheduler errors."""

    pass


class SchedulerRunError(SchedulerError):
    """Raised when a whole rebalance cycle fails before or between operations."""

    pass


class PortfolioUnavailableError(SchedulerError):
    """Raised when the portfolio collaborator cannot report drift data."""

    pass


class StorageError(CompounDefiError):
    """Raised when the durable scheduler store fails.

    Examples:
        - State file cannot be written
        - SQLite database is locked or corrupt
        - Stored value is not valid JSON
    """

    pass
