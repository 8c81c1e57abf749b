"""Selectors for the obligation kernel (read side)."""

from obligation_kernel.selectors.aggregation_reader import (
    AggregationReader,
    GenerationRow,
    KindTotals,
    LeaderboardRow,
    PersonBalanceSummary,
    RootBreakdownRow,
    RunSummary,
    SystemTotals,
)

__all__ = [
    "AggregationReader",
    "GenerationRow",
    "KindTotals",
    "LeaderboardRow",
    "PersonBalanceSummary",
    "RootBreakdownRow",
    "RunSummary",
    "SystemTotals",
]
