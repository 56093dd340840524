"""Backtest trade statistics.

All functions accept list[Trade]. Percentages are plain floats in percent
units (2.5 means +2.5%).
"""

from collections import defaultdict
from dataclasses import dataclass, field

from bollscan.signals.models import Trade


@dataclass(frozen=True)
class TradeStats:
    """Aggregate statistics over a set of completed trades."""

    total: int
    wins: int
    losses: int  # profit <= 0
    win_rate_pct: float
    avg_profit_pct: float
    cumulative_return_pct: float  # compounded, equal stake reinvested each trade
    best_trade_pct: float
    worst_trade_pct: float
    avg_hold_hours: float
    symbol_win_rates: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate_pct": round(self.win_rate_pct, 2),
            "avg_profit_pct": round(self.avg_profit_pct, 4),
            "cumulative_return_pct": round(self.cumulative_return_pct, 4),
            "best_trade_pct": round(self.best_trade_pct, 4),
            "worst_trade_pct": round(self.worst_trade_pct, 4),
            "avg_hold_hours": round(self.avg_hold_hours, 2),
            "symbol_win_rates": {s: round(r, 2) for s, r in self.symbol_win_rates.items()},
        }


def compounded_return_pct(trades: list[Trade]) -> float:
    """Compound the trade returns in order: prod(1 + p/100) - 1, in percent."""
    growth = 1.0
    for trade in trades:
        growth *= 1.0 + trade.profit_pct / 100.0
    return (growth - 1.0) * 100.0


def compute_trade_stats(trades: list[Trade]) -> TradeStats | None:
    """Compute summary statistics for completed trades.

    Args:
        trades: Completed trades, in the order they should be compounded.

    Returns:
        TradeStats, or None if there are no trades.
    """
    if not trades:
        return None

    total = len(trades)
    wins = sum(1 for t in trades if t.is_win)
    profits = [t.profit_pct for t in trades]

    return TradeStats(
        total=total,
        wins=wins,
        losses=total - wins,
        win_rate_pct=wins / total * 100.0,
        avg_profit_pct=sum(profits) / total,
        cumulative_return_pct=compounded_return_pct(trades),
        best_trade_pct=max(profits),
        worst_trade_pct=min(profits),
        avg_hold_hours=sum(t.hold_hours for t in trades) / total,
        symbol_win_rates=win_rate_by_symbol(trades),
    )


def win_rate_by_symbol(trades: list[Trade]) -> dict[str, float]:
    """Win rate in percent grouped by symbol, keys sorted. Empty dict if no trades."""
    grouped: dict[str, list[Trade]] = defaultdict(list)
    for trade in trades:
        grouped[trade.symbol].append(trade)

    return {
        symbol: sum(1 for t in group if t.is_win) / len(group) * 100.0
        for symbol, group in sorted(grouped.items())
    }


def format_trade_summary(stats: TradeStats | None) -> str:
    """Format backtest statistics for console output."""
    if stats is None:
        return "No completed trades."

    lines = [
        "=" * 40,
        "BACKTEST RESULTS",
        "=" * 40,
        f"Total trades:       {stats.total}",
        f"Wins / losses:      {stats.wins} / {stats.losses}",
        f"Win rate:           {stats.win_rate_pct:.2f}%",
        "-" * 40,
        f"Average profit:     {stats.avg_profit_pct:.2f}%",
        f"Cumulative return:  {stats.cumulative_return_pct:.2f}% (compounded)",
        "-" * 40,
        f"Best trade:         {stats.best_trade_pct:.2f}%",
        f"Worst trade:        {stats.worst_trade_pct:.2f}%",
        f"Average hold:       {stats.avg_hold_hours:.1f} hours",
    ]
    if len(stats.symbol_win_rates) > 1:
        lines.append("-" * 40)
        lines.append("Win rate by symbol:")
        lines.extend(f"  {symbol:<18}{rate:.2f}%" for symbol, rate in stats.symbol_win_rates.items())
    lines.append("=" * 40)
    return "\n".join(lines)
