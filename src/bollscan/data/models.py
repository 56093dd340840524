"""Data models for candle and open-interest records.

Prices and volumes are floats: the scanner compares them against float
Bollinger bands and never accumulates money.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Candle:
    """A single futures kline for one interval tick.

    Timestamps are milliseconds since epoch. A candle is aligned to other
    timeframes by its close time.
    """

    open_time: int
    close_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def timestamp_ms(self) -> int:
        """Alignment timestamp: the moment the candle closes."""
        return self.close_time

    def is_valid(self) -> bool:
        """True if the candle may be admitted into a series."""
        return 0 < self.open_time < self.close_time and self.close > 0


@dataclass(frozen=True)
class MetricSample:
    """An open-interest snapshot for one symbol."""

    timestamp_ms: int
    sum_open_interest: float


@dataclass
class MarketSnapshot:
    """Live series for one symbol, as fetched for a monitor cycle.

    The primary candles are closed bars only; mid and coarse series may end
    with the bar still in progress.
    """

    symbol: str
    primary: list[Candle]
    mid: list[Candle]
    coarse: list[Candle]
    metrics: list[MetricSample] = field(default_factory=list)
