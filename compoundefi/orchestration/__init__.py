"""Orchestration Layer - Coordinates planning, execution and persistence.

This module provides the rebalance workflow used for scheduled runs and the
auto-optimizer that schedules, records and persists those runs.
"""

from compoundefi.orchestration.scheduler import AutoOptimizer, format_time_remaining
from compoundefi.orchestration.state import STATE_KEY, SchedulerSettings, SchedulerState
from compoundefi.orchestration.store import (
    InMemoryStore,
    JsonFileStore,
    SchedulerStore,
    SQLiteStore,
    create_store,
)
from compoundefi.orchestration.workflows import RebalanceOutcome, RebalanceWorkflow

__all__ = [
    # Auto-optimizer
    "AutoOptimizer",
    "RebalanceWorkflow",
    "RebalanceOutcome",
    # State
    "SchedulerSettings",
    "SchedulerState",
    "STATE_KEY",
    # Stores
    "SchedulerStore",
    "InMemoryStore",
    "JsonFileStore",
    "SQLiteStore",
    "create_store",
    # Utilities
    "format_time_remaining",
]
