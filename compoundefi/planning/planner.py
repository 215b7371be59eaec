"""Allocation Planner - converts a recommendation into on-chain operations.

For each allocation item, in order:

1. Classify the operation type from the product text
2. Resolve the protocol's contract address (skip the item if unknown)
3. Compute the amount (explicit amount, else share of total investment)
4. Resolve the entry point

Items that cannot become operations are recorded as skips. Planning never
aborts because of one bad item, and it never reorders or merges items.
"""

from decimal import ROUND_HALF_UP, Decimal, DecimalException, InvalidOperation
from typing import Any, Optional

from compoundefi.planning.base import (
    AllocationItem,
    Operation,
    PlanResult,
    Recommendation,
    SkipReason,
)
from compoundefi.planning.classifier import classify_operation_type
from compoundefi.planning.registry import ProtocolRegistry, StaticProtocolRegistry
from compoundefi.utils.exceptions import InvalidAmountError, PlanningError, UnknownProtocolError
from compoundefi.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a number-like value into a finite Decimal.

    Returns None for None, booleans, non-numeric strings, NaN and infinity.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


class AllocationPlanner:
    """Pure planner from Recommendation to Operation list.

    Example:
        >>> planner = AllocationPlanner(StaticProtocolRegistry())
        >>> result = planner.plan(recommendation)
        >>> for op in result.operations:
        ...     print(op.protocol, op.operation_type.value, op.amount)
        amnis stake 600.00
        >>> [s.protocol for s in result.skipped]
        ['unknownproto']
    """

    def __init__(
        self,
        registry: ProtocolRegistry,
        amount_precision: int = 2,
        default_total_investment: Any = 0,
    ):
        """Initialize planner.

        Args:
            registry: Protocol registry used for addresses and entry points
            amount_precision: Decimal places for percentage-derived amounts
            default_total_investment: Used when a recommendation has no
                total investment (0 means such items are skipped)
        """
        self.registry = registry
        self.amount_precision = amount_precision
        self.default_total_investment = default_total_investment
        self._quantum = Decimal(1).scaleb(-amount_precision)

    @classmethod
    def from_config(cls, config: Any, registry: Optional[ProtocolRegistry] = None) -> "AllocationPlanner":
        """Create a planner from the ``planning`` config section.

        Args:
            config: Config instance
            registry: Registry to use (defaults to StaticProtocolRegistry.from_config)
        """
        return cls(
            registry or StaticProtocolRegistry.from_config(config),
            amount_precision=int(config.get("planning.amount_precision", 2)),
            default_total_investment=config.get("planning.default_total_investment", 0),
        )

    def plan(self, recommendation: Recommendation) -> PlanResult:
        """Build the ordered operation list for a recommendation.

        Args:
            recommendation: Recommendation to plan

        Returns:
            PlanResult with operations in allocation order and skip reasons
        """
        result = PlanResult()
        total = to_decimal(recommendation.total_investment)
        if total is None:
            total = to_decimal(self.default_total_investment)

        self._check_percentages(recommendation)

        for index, item in enumerate(recommendation.allocation):
            try:
                result.operations.append(self._plan_item(item, total))
            except PlanningError as e:
                code = (
                    SkipReason.UNKNOWN_PROTOCOL
                    if isinstance(e, UnknownProtocolError)
                    else SkipReason.INVALID_AMOUNT
                )
                result.skipped.append(
                    SkipReason(index=index, protocol=item.protocol, code=code, reason=str(e))
                )
                log_with_context(
                    logger, "warning", "Skipping allocation item",
                    index=index, protocol=item.protocol, reason=str(e),
                )

        logger.info(
            "Planned %d operations (%d skipped) for recommendation %s",
            len(result.operations),
            len(result.skipped),
            recommendation.id or "<unnamed>",
        )
        return result

    def _plan_item(self, item: AllocationItem, total: Optional[Decimal]) -> Operation:
        """Build the operation for one item.

        Raises:
            UnknownProtocolError: If the registry has no address for the protocol
            InvalidAmountError: If no positive amount can be computed
        """
        operation_type = classify_operation_type(item.product)

        address = self.registry.resolve(item.protocol)
        if not address:
            raise UnknownProtocolError(f"No contract address for protocol: {item.protocol}")

        amount = self.compute_amount(item, total)
        if amount is None or amount <= 0:
            shown = item.amount if item.amount is not None else item.percentage
            raise InvalidAmountError(f"Invalid amount for {item.protocol}: {shown}")

        return Operation(
            protocol=item.protocol,
            operation_type=operation_type,
            amount=amount,
            target_contract=address,
            entry_point=self.registry.entry_point(item.protocol, operation_type),
            expected_apr=item.expected_apr,
        )

    def compute_amount(self, item: AllocationItem, total: Optional[Decimal]) -> Optional[Decimal]:
        """Amount for one item, or None when it cannot be computed.

        An explicit, non-empty ``amount`` is used as given. Otherwise the
        amount is ``total * percentage / 100`` rounded half-up to
        ``amount_precision`` places.
        """
        if item.amount is not None and item.amount != "":
            return to_decimal(item.amount)

        percentage = to_decimal(item.percentage)
        if percentage is None or total is None:
            return None

        try:
            return (total * percentage / Decimal(100)).quantize(self._quantum, rounding=ROUND_HALF_UP)
        except DecimalException:
            # More digits than the decimal context holds
            return None

    def _check_percentages(self, recommendation: Recommendation) -> None:
        # Drifting sums are tolerated; only logged
        percentages = [to_decimal(item.percentage) for item in recommendation.allocation]
        total = sum((p for p in percentages if p is not None), Decimal("0"))
        if recommendation.allocation and abs(total - Decimal(100)) > Decimal("0.5"):
            logger.warning(
                "Allocation percentages for recommendation %s sum to %s, not 100",
                recommendation.id or "<unnamed>",
                total,
            )
