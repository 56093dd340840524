"""Shared test fixtures for the breakout scanner.

The synthetic market used across the signal tests: 500 bars each of 15m,
30m and 4h candles, all ending at the same instant.

- 15m closes alternate 100.5 / 99.5, so the primary upper band sits near 101
- 30m closes are 101 every third bar and 99 otherwise
- 4h closes alternate 100.5 / 99.5; 4h bar 494 carries a 10x volume burst,
  which is the aligned coarse bar for primary bars 419..434

A single 15m close of 110 at bar 420 is then the only bar meeting all
seven conditions.
"""

import logging
from collections.abc import Callable

import pytest
import structlog

from bollscan.config import AppSettings, DataSettings, EmailSettings, ScannerSettings
from bollscan.data.models import Candle, MetricSample

MS_15M = 15 * 60 * 1000
MS_30M = 2 * MS_15M
MS_4H = 16 * MS_15M
MS_5M = 5 * 60 * 1000
T0 = 1_700_006_400_000  # 4h-aligned epoch ms
BARS = 500
END = T0 + BARS * MS_15M
SPIKE_BAR = 420
BURST_BAR = 494


def build_candles(
    closes: list[float],
    interval_ms: int,
    end_ms: int,
    volumes: list[float] | None = None,
) -> list[Candle]:
    """Candles with the given closes, the last one closing at ``end_ms - 1``."""
    n = len(closes)
    candles = []
    for j, close in enumerate(closes):
        open_time = end_ms - (n - j) * interval_ms
        candles.append(
            Candle(
                open_time=open_time,
                close_time=open_time + interval_ms - 1,
                open=close,
                high=close,
                low=close,
                close=close,
                volume=volumes[j] if volumes is not None else 1.0,
            )
        )
    return candles


def primary_close_time(index: int) -> int:
    return T0 + (index + 1) * MS_15M - 1


def _primary_closes(overrides: dict[int, float]) -> list[float]:
    closes = [100.5 if i % 2 == 0 else 99.5 for i in range(BARS)]
    for i, close in overrides.items():
        closes[i] = close
    return closes


def _market(overrides: dict[int, float]) -> dict[str, list[Candle]]:
    mid_closes = [101.0 if j % 3 == 0 else 99.0 for j in range(BARS)]
    coarse_closes = [100.5 if j % 2 == 0 else 99.5 for j in range(BARS)]
    coarse_volumes = [10.0 if j == BURST_BAR else 1.0 for j in range(BARS)]
    return {
        "primary": build_candles(_primary_closes(overrides), MS_15M, END),
        "mid": build_candles(mid_closes, MS_30M, END),
        "coarse": build_candles(coarse_closes, MS_4H, END, coarse_volumes),
    }


@pytest.fixture
def spike_market() -> dict[str, list[Candle]]:
    """Three timeframes with a one-bar breakout at bar 420."""
    return _market({SPIKE_BAR: 110.0})


@pytest.fixture
def trade_market() -> dict[str, list[Candle]]:
    """Breakout at bar 420 that holds above the band until bar 424.

    Entry is bar 421's close (110); bars 422-423 stay above the upper band
    and bar 424 closes back at 100, below it.
    """
    return _market({420: 110.0, 421: 110.0, 422: 111.0, 423: 112.0, 424: 100.0})


@pytest.fixture
def metrics_factory() -> Callable[..., list[MetricSample]]:
    """Build 5m open-interest samples from 3 days before T0 up to ``end_ms``.

    ``step`` is added to the open interest at every sample; 0 gives a flat
    series.
    """

    def factory(end_ms: int = END, base: float = 1000.0, step: float = 1.0) -> list[MetricSample]:
        start = T0 - 3 * 24 * 3_600_000
        count = (end_ms - start) // MS_5M + 1
        return [
            MetricSample(timestamp_ms=start + k * MS_5M, sum_open_interest=base + k * step)
            for k in range(count)
        ]

    return factory


@pytest.fixture
def mock_settings() -> AppSettings:
    """AppSettings with test defaults (email disabled, inline workers)."""
    return AppSettings(
        log_level="DEBUG",
        scanner=ScannerSettings(),
        data=DataSettings(max_workers=1),
        email=EmailSettings(enabled=False),
    )


@pytest.fixture
def bar_time() -> Callable[[int], int]:
    """Close time of primary bar ``index`` in the synthetic market."""
    return primary_close_time


@pytest.fixture
def restore_logging():
    """Undo setup_logging() after a test that configures logging."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter):
            root.removeHandler(handler)
    root.setLevel(level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
