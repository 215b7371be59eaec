"""Portfolio collaborator contract and drift analysis.

The auto-optimizer does not read balances itself. A PortfolioProvider
reports, for each scheduled cycle, the target recommendation and how far the
current allocation has drifted from it.

``calculate_drift`` is a helper providers can use to build that report from
current and target allocation percentages.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from compoundefi.planning.base import Recommendation
from compoundefi.planning.classifier import classify_operation_type


@dataclass(frozen=True)
class DriftEntry:
    """Drift of one protocol position.

    Attributes:
        protocol: Protocol name
        current: Current share of the portfolio in percent
        target: Target share in percent
        drift: Absolute difference in percentage points
        action: "increase", "decrease" or "add"
        position_type: Position kind (stake, lend, ...) or "holding"
    """

    protocol: str
    current: float
    target: float
    drift: float
    action: str
    position_type: str = "holding"


@dataclass(frozen=True)
class DriftReport:
    """Drift between current and target allocation.

    Attributes:
        max_drift: Largest single-protocol drift in percentage points
        avg_drift: Mean drift across all compared protocols
        drifts: Per-protocol entries, largest drift first
    """

    max_drift: float = 0.0
    avg_drift: float = 0.0
    drifts: List[DriftEntry] = field(default_factory=list)

    def exceeds(self, threshold_percent: float) -> bool:
        """True when the largest drift is at or above the threshold."""
        return self.max_drift >= threshold_percent


@dataclass(frozen=True)
class PortfolioSnapshot:
    """What the portfolio collaborator reports for one rebalance cycle.

    Attributes:
        recommendation: Target allocation to rebalance toward
        drift: Current drift from that target
        current_apr: Blended APR of the current portfolio, in percent
        estimated_value_saved: Value the provider attributes to rebalancing
    """

    recommendation: Recommendation
    drift: DriftReport = field(default_factory=DriftReport)
    current_apr: float = 0.0
    estimated_value_saved: float = 0.0


class PortfolioProvider(ABC):
    """Abstract portfolio collaborator.

    Example:
        >>> class WalletPortfolio(PortfolioProvider):
        ...     def snapshot(self, settings):
        ...         rec = recommender.latest(settings.preserve_staked_positions)
        ...         return PortfolioSnapshot(rec, calculate_drift(balances(), rec.allocation))
    """

    @abstractmethod
    def snapshot(self, settings: Any) -> PortfolioSnapshot:
        """Report target recommendation and drift for one cycle.

        Args:
            settings: The scheduler's current SchedulerSettings; the drift
                threshold, slippage and preserve-staked flags are advisory
                inputs for the provider

        Returns:
            PortfolioSnapshot for this cycle

        Raises:
            PortfolioUnavailableError: If portfolio data cannot be obtained
        """
        pass


def _as_percent(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def calculate_drift(
    current: Iterable[Mapping[str, Any]],
    target: Iterable[Any],
) -> DriftReport:
    """Compare current and target allocation percentages.

    Protocols held but absent from the target drift by their full current
    share (action "decrease"); protocols in the target but not held drift by
    their full target share (action "add"). Protocol names match
    case-insensitively.

    Args:
        current: Current positions as mappings with ``protocol``,
            ``percentage`` and optional ``type``
        target: Target AllocationItems (or mappings with ``protocol``,
            ``percentage`` and optional ``product``)

    Returns:
        DriftReport with entries sorted by drift, largest first
    """
    targets: Dict[str, Dict[str, Any]] = {}
    for item in target:
        if isinstance(item, Mapping):
            protocol, percentage, product = item.get("protocol", ""), item.get("percentage"), item.get("product")
        else:
            protocol, percentage, product = item.protocol, item.percentage, item.product
        targets[str(protocol).lower()] = {
            "protocol": protocol,
            "percentage": _as_percent(percentage),
            "product": product,
        }

    drifts: List[DriftEntry] = []
    for position in current:
        protocol = str(position.get("protocol", ""))
        current_pct = _as_percent(position.get("percentage"))
        goal = targets.pop(protocol.lower(), None)
        target_pct = goal["percentage"] if goal else 0.0
        drifts.append(
            DriftEntry(
                protocol=protocol,
                current=current_pct,
                target=target_pct,
                drift=abs(current_pct - target_pct),
                action="decrease" if current_pct > target_pct else "increase",
                position_type=position.get("type") or "holding",
            )
        )

    for goal in targets.values():
        drifts.append(
            DriftEntry(
                protocol=goal["protocol"],
                current=0.0,
                target=goal["percentage"],
                drift=goal["percentage"],
                action="add",
                position_type=classify_operation_type(goal["product"]).value,
            )
        )

    if not drifts:
        return DriftReport()

    drifts.sort(key=lambda entry: entry.drift, reverse=True)
    return DriftReport(
        max_drift=drifts[0].drift,
        avg_drift=sum(entry.drift for entry in drifts) / len(drifts),
        drifts=drifts,
    )


class StaticPortfolioProvider(PortfolioProvider):
    """Provider returning a fixed recommendation and current allocation.

    Useful for dry runs from the CLI and for tests.
    """

    def __init__(
        self,
        recommendation: Recommendation,
        current_allocation: Optional[List[Mapping[str, Any]]] = None,
        current_apr: float = 0.0,
    ):
        self.recommendation = recommendation
        self.current_allocation = current_allocation or []
        self.current_apr = current_apr

    def snapshot(self, settings: Any) -> PortfolioSnapshot:
        return PortfolioSnapshot(
            recommendation=self.recommendation,
            drift=calculate_drift(self.current_allocation, self.recommendation.allocation),
            current_apr=self.current_apr,
        )
