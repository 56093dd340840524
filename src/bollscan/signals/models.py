"""Signal engine data models.

Bands, signals and trades are immutable: each tick produces fresh values and
nothing is updated after the tick's evaluation completes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

_MS_PER_HOUR = 3_600_000


def format_timestamp(timestamp_ms: int) -> str:
    """Render a millisecond epoch as a UTC "YYYY-MM-DD HH:MM:SS" string."""
    try:
        dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return "Invalid"
    return dt.strftime("%Y-%m-%d %H:%M:%S")


class AccessMode(str, Enum):
    """How a TimeSeriesWindow holds its records."""

    STREAMING = "streaming"  # bounded buffer, oldest records discarded
    BATCH = "batch"  # fully materialized series


class PositionState(str, Enum):
    """Backtest position machine states."""

    FLAT = "flat"
    ENTERING = "entering"  # signal fired, waiting for the entry bar
    HOLDING = "holding"  # searching for the exit bar


@dataclass(frozen=True)
class ScanParameters:
    """Immutable evaluator configuration.

    Built from ScannerSettings.to_parameters() in production; tests construct
    it directly to exercise other parameter sets.
    """

    boll_period: int = 400
    boll_std_dev: float = 2.0
    history_check_count: int = 50
    history_threshold: int = 25
    oi_multiplier: float = 0.91
    oi_lookback_ms: int = 3 * 24 * _MS_PER_HOUR
    volume_lookback: int = 6
    cooldown_ms: int = 2 * 24 * _MS_PER_HOUR
    access_mode: AccessMode = AccessMode.BATCH
    stream_window_size: int = 500
    metrics_window_size: int = 1200

    def __post_init__(self) -> None:
        if self.boll_period < 2:
            raise ValueError(f"boll_period must be >= 2, got {self.boll_period}")
        if self.history_check_count < 1:
            raise ValueError("history_check_count must be positive")
        if self.volume_lookback < 1:
            raise ValueError("volume_lookback must be positive")
        if self.cooldown_ms < 0:
            raise ValueError("cooldown_ms must not be negative")


@dataclass(frozen=True)
class Band:
    """Bollinger band triplet for one index of a series."""

    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class ConditionSet:
    """The seven breakout conditions evaluated for one primary tick."""

    price_above_primary_upper: bool  # cond1
    price_above_mid_middle: bool  # cond2
    price_above_coarse_middle: bool  # cond3
    primary_history_below_upper: bool  # cond4
    mid_history_below_middle: bool  # cond5
    open_interest_ok: bool  # cond6
    coarse_volume_burst: bool  # cond7

    @property
    def all_met(self) -> bool:
        return (
            self.price_above_primary_upper
            and self.price_above_mid_middle
            and self.price_above_coarse_middle
            and self.primary_history_below_upper
            and self.mid_history_below_middle
            and self.open_interest_ok
            and self.coarse_volume_burst
        )


@dataclass(frozen=True)
class TickEvaluation:
    """Everything computed for one evaluable primary tick."""

    index: int
    timestamp: int
    price: float
    primary_band: Band
    mid_band: Band
    coarse_band: Band
    current_oi: float
    min_oi_3d: float
    volume_ratio: float
    conditions: ConditionSet


@dataclass(frozen=True)
class Signal:
    """A fired breakout entry signal."""

    timestamp: int
    symbol: str
    price: float
    primary_band: Band
    mid_band: Band
    coarse_band: Band
    current_oi: float
    min_oi_3d: float
    volume_ratio: float

    @property
    def datetime(self) -> str:
        return format_timestamp(self.timestamp)

    @classmethod
    def from_evaluation(cls, symbol: str, evaluation: TickEvaluation) -> Signal:
        """Build the signal emitted for an evaluated tick."""
        return cls(
            timestamp=evaluation.timestamp,
            symbol=symbol,
            price=evaluation.price,
            primary_band=evaluation.primary_band,
            mid_band=evaluation.mid_band,
            coarse_band=evaluation.coarse_band,
            current_oi=evaluation.current_oi,
            min_oi_3d=evaluation.min_oi_3d,
            volume_ratio=evaluation.volume_ratio,
        )

    def to_dict(self) -> dict:
        """Flatten into the CSV / email row layout."""
        return {
            "timestamp": self.timestamp,
            "datetime": self.datetime,
            "symbol": self.symbol,
            "price": self.price,
            "primary_upper": self.primary_band.upper,
            "mid_middle": self.mid_band.middle,
            "coarse_middle": self.coarse_band.middle,
            "current_oi": self.current_oi,
            "min_oi_3d": self.min_oi_3d,
            "volume_ratio": self.volume_ratio,
        }


@dataclass(frozen=True)
class Trade:
    """A completed backtest round trip (long entry, band-crossing exit)."""

    symbol: str
    buy_time: int
    buy_price: float
    sell_time: int
    sell_price: float
    profit_pct: float
    hold_hours: float

    @classmethod
    def from_legs(
        cls,
        symbol: str,
        buy_time: int,
        buy_price: float,
        sell_time: int,
        sell_price: float,
    ) -> Trade:
        """Derive profit and holding time from the two legs of a trade.

        Args:
            symbol: Trading pair symbol.
            buy_time: Entry bar close time in milliseconds.
            buy_price: Entry bar close price.
            sell_time: Exit bar close time in milliseconds.
            sell_price: Exit bar close price.

        Returns:
            Trade with profit_pct and hold_hours filled in.
        """
        return cls(
            symbol=symbol,
            buy_time=buy_time,
            buy_price=buy_price,
            sell_time=sell_time,
            sell_price=sell_price,
            profit_pct=(sell_price - buy_price) / buy_price * 100.0,
            hold_hours=(sell_time - buy_time) / _MS_PER_HOUR,
        )

    @property
    def is_win(self) -> bool:
        return self.profit_pct > 0

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "buy_time": self.buy_time,
            "buy_datetime": format_timestamp(self.buy_time),
            "buy_price": self.buy_price,
            "sell_time": self.sell_time,
            "sell_datetime": format_timestamp(self.sell_time),
            "sell_price": self.sell_price,
            "profit_pct": self.profit_pct,
            "hold_hours": self.hold_hours,
        }
