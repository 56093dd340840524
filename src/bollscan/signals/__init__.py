"""Multi-timeframe breakout signal engine.

Provides the forward-only series window, the incremental Bollinger engine,
the cross-timeframe aligner and the SignalEvaluator that combines them into
signal scans, trade backtests and the live latest-bar check.
"""

from bollscan.signals.aligner import Alignment, TimeframeAligner
from bollscan.signals.bollinger import (
    RollingStatEngine,
    check_history_condition,
    compute_band,
    count_below,
)
from bollscan.signals.engine import SignalEvaluator
from bollscan.signals.models import (
    AccessMode,
    Band,
    ConditionSet,
    PositionState,
    ScanParameters,
    Signal,
    TickEvaluation,
    Trade,
    format_timestamp,
)
from bollscan.signals.open_interest import OpenInterestTracker, check_open_interest
from bollscan.signals.volume import check_volume_burst
from bollscan.signals.window import TimeSeriesWindow

__all__ = [
    "AccessMode",
    "Alignment",
    "Band",
    "ConditionSet",
    "OpenInterestTracker",
    "PositionState",
    "RollingStatEngine",
    "ScanParameters",
    "Signal",
    "SignalEvaluator",
    "TickEvaluation",
    "TimeSeriesWindow",
    "TimeframeAligner",
    "Trade",
    "check_history_condition",
    "check_open_interest",
    "check_volume_burst",
    "compute_band",
    "count_below",
    "format_timestamp",
]
