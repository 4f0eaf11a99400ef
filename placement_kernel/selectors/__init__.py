"""Selectors for the placement kernel (read side)."""

from placement_kernel.selectors.lifecycle_history_selector import (
    HistoryFilter,
    HistoryStatistics,
    HistorySummary,
    LifecycleHistorySelector,
)

__all__ = [
    "HistoryFilter",
    "HistoryStatistics",
    "HistorySummary",
    "LifecycleHistorySelector",
]
