"""Planning Layer - turns recommendations into ordered on-chain operations."""

from compoundefi.planning.base import (
    AllocationItem,
    Operation,
    OperationType,
    PlanResult,
    Recommendation,
    SkipReason,
)
from compoundefi.planning.classifier import classify_operation_type
from compoundefi.planning.planner import AllocationPlanner
from compoundefi.planning.registry import ProtocolRegistry, StaticProtocolRegistry

__all__ = [
    # Planner
    "AllocationPlanner",
    "classify_operation_type",
    # Registry
    "ProtocolRegistry",
    "StaticProtocolRegistry",
    # Data classes
    "AllocationItem",
    "Operation",
    "PlanResult",
    "Recommendation",
    "SkipReason",
    # Enums
    "OperationType",
]
