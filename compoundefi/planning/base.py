"""Domain types for allocation planning.

This module defines the data flowing into and out of the Allocation Planner:

- Recommendation / AllocationItem: the AI-generated allocation plan (input)
- Operation: one concrete on-chain action derived from an allocation item
- SkipReason / PlanResult: planner output, including items that were dropped

Recommendations are read-only inputs. Operations live for one run only; the
executor's outcomes are what gets retained.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd


class OperationType(Enum):
    """On-chain operation kinds.

    Values are the wire names used by protocol function mappings.
    """

    STAKE = "stake"
    UNSTAKE = "unstake"
    LEND = "lend"
    WITHDRAW = "withdraw"
    ADD_LIQUIDITY = "addLiquidity"
    REMOVE_LIQUIDITY = "removeLiquidity"
    DEPOSIT = "deposit"


@dataclass(frozen=True)
class AllocationItem:
    """One protocol/percentage/yield entry inside a recommendation.

    Attributes:
        protocol: Protocol name as produced by the recommender (any case)
        product: Free-text product or type description ("Liquid staking", ...)
        percentage: Share of the total investment, 0-100
        amount: Explicit amount in whole tokens; overrides percentage when set
        expected_apr: Expected yield in percent
    """

    protocol: str
    product: str = ""
    percentage: Any = 0
    amount: Any = None
    expected_apr: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AllocationItem":
        """Build an item from a recommender payload.

        Accepts either ``product`` or ``type`` for the product text and
        either ``expectedApr`` or ``expected_apr``. Values are kept as given;
        the planner decides whether they are usable.
        """
        apr = data.get("expectedApr", data.get("expected_apr", 0))
        try:
            apr = float(apr or 0)
        except (TypeError, ValueError):
            apr = 0.0

        return cls(
            protocol=str(data.get("protocol", "")),
            product=str(data.get("product") or data.get("type") or ""),
            percentage=data.get("percentage", 0),
            amount=data.get("amount"),
            expected_apr=apr,
        )


@dataclass(frozen=True)
class Recommendation:
    """An AI-generated capital allocation plan.

    Attributes:
        id: Recommendation identifier
        risk_profile: Risk profile the plan was generated for
        total_apr: Blended expected APR of the plan
        summary: Human readable summary
        allocation: Ordered allocation items
        total_investment: Total amount to deploy, in whole tokens (optional)
        timestamp: When the recommendation was produced
    """

    id: str
    allocation: Tuple[AllocationItem, ...]
    risk_profile: str = "balanced"
    total_apr: float = 0.0
    summary: str = ""
    total_investment: Any = None
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recommendation":
        """Build a recommendation from a JSON-like payload."""
        items = tuple(AllocationItem.from_dict(item) for item in data.get("allocation") or [])

        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            # Accepts the "Z" suffix of JavaScript toISOString output
            timestamp = pd.Timestamp(timestamp).to_pydatetime()
        elif isinstance(timestamp, (int, float)):
            # Millisecond epoch, as produced by the browser client
            timestamp = datetime.fromtimestamp(timestamp / 1000)
        elif timestamp is None:
            timestamp = datetime.now()

        return cls(
            id=str(data.get("id", "")),
            allocation=items,
            risk_profile=data.get("riskProfile", data.get("risk_profile", "balanced")),
            total_apr=float(data.get("totalApr", data.get("total_apr", 0)) or 0),
            summary=data.get("summary", ""),
            total_investment=data.get("totalInvestment", data.get("total_investment")),
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class Operation:
    """One concrete on-chain action.

    Attributes:
        protocol: Protocol name
        operation_type: Kind of operation
        amount: Amount in whole tokens (always positive)
        target_contract: Contract address the operation is sent to
        entry_point: Fully qualified on-chain function identifier
        expected_apr: Expected APR carried over from the allocation item
    """

    protocol: str
    operation_type: OperationType
    amount: Decimal
    target_contract: str
    entry_point: str
    expected_apr: float = 0.0

    def __post_init__(self):
        """Validate operation fields."""
        if not isinstance(self.amount, Decimal):
            raise TypeError(f"amount must be a Decimal, got {type(self.amount).__name__}")
        if not self.amount.is_finite() or self.amount <= 0:
            raise ValueError(f"amount must be positive, got {self.amount}")
        if not self.target_contract:
            raise ValueError(f"target_contract is required for {self.protocol}")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for history records and display."""
        return {
            "protocol": self.protocol,
            "type": self.operation_type.value,
            "amount": str(self.amount),
            "contractAddress": self.target_contract,
            "functionName": self.entry_point,
            "expectedApr": self.expected_apr,
        }


@dataclass(frozen=True)
class SkipReason:
    """Why an allocation item did not become an operation.

    Attributes:
        index: Position of the item in the recommendation's allocation
        protocol: Protocol name of the skipped item
        code: Machine readable code ("unknown_protocol" or "invalid_amount")
        reason: Human readable explanation
    """

    UNKNOWN_PROTOCOL = "unknown_protocol"
    INVALID_AMOUNT = "invalid_amount"

    index: int
    protocol: str
    code: str
    reason: str


@dataclass
class PlanResult:
    """Planner output.

    Attributes:
        operations: Operations in allocation order
        skipped: Items that were dropped, with reasons
    """

    operations: List[Operation] = field(default_factory=list)
    skipped: List[SkipReason] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when nothing is left to execute."""
        return not self.operations

    @property
    def total_amount(self) -> Decimal:
        """Sum of all operation amounts."""
        return sum((op.amount for op in self.operations), Decimal("0"))

    def weighted_apr(self) -> Optional[float]:
        """Amount-weighted expected APR of the planned operations."""
        total = self.total_amount
        if total <= 0:
            return None
        weighted = sum(op.amount * Decimal(str(op.expected_apr)) for op in self.operations)
        return float(weighted / total)
