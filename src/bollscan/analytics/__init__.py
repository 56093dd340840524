"""Backtest analytics -- trade statistics and console summaries."""

from bollscan.analytics.metrics import (
    TradeStats,
    compute_trade_stats,
    format_trade_summary,
    win_rate_by_symbol,
)

__all__ = ["TradeStats", "compute_trade_stats", "format_trade_summary", "win_rate_by_symbol"]
