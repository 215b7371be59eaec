"""Portfolio Layer - drift reporting consumed by the auto-optimizer."""

from compoundefi.portfolio.base import (
    DriftEntry,
    DriftReport,
    PortfolioProvider,
    PortfolioSnapshot,
    StaticPortfolioProvider,
    calculate_drift,
)

__all__ = [
    "PortfolioProvider",
    "StaticPortfolioProvider",
    "DriftEntry",
    "DriftReport",
    "PortfolioSnapshot",
    "calculate_drift",
]
