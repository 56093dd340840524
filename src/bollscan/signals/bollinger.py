"""Bollinger band computation.

RollingStatEngine keeps running sums over the trailing ``period`` closes so
each new tick costs O(1) instead of O(period). compute_band() is the
from-scratch two-pass version, used for one-off bands and to cross-check the
incremental engine.

Bands use the population standard deviation (divide by ``period``).
"""

import math
from collections import deque
from collections.abc import Iterable, Sequence
from itertools import islice

from bollscan.exceptions import InsufficientDataError
from bollscan.signals.models import Band


def count_below(closes: Sequence[float], threshold: float, n: int) -> int:
    """Count how many of the most recent ``n`` closes are strictly below ``threshold``.

    Uses all closes when fewer than ``n`` are available.
    """
    return sum(1 for close in islice(reversed(closes), n) if close < threshold)


def check_history_condition(
    closes: Sequence[float],
    threshold: float,
    check_count: int,
    threshold_count: int,
) -> bool:
    """True if at least ``threshold_count`` of the last ``check_count`` closes are below ``threshold``."""
    return count_below(closes, threshold, check_count) >= threshold_count


def compute_band(closes: Sequence[float], period: int, std_dev_multiplier: float) -> Band:
    """Compute the band over the trailing ``period`` closes from scratch.

    Raises:
        InsufficientDataError: If fewer than ``period`` closes are given.
    """
    if len(closes) < period:
        raise InsufficientDataError(required=period, actual=len(closes))

    window = closes[len(closes) - period :]
    middle = sum(window) / period
    variance = sum((c - middle) ** 2 for c in window) / period
    std_dev = math.sqrt(variance)
    return Band(
        upper=middle + std_dev * std_dev_multiplier,
        middle=middle,
        lower=middle - std_dev * std_dev_multiplier,
    )


class RollingStatEngine:
    """Incremental Bollinger band calculator over a growing close series.

    Values are pushed one at a time in series order. The engine keeps the
    trailing ``max(period, history)`` closes so count_below() can look back
    further than the band period.

    Args:
        period: Number of closes in the band window.
        std_dev_multiplier: Band width in standard deviations (k).
        history: Closes to retain for count_below() queries.
    """

    def __init__(
        self,
        period: int,
        std_dev_multiplier: float = 2.0,
        history: int = 0,
    ) -> None:
        if period < 1:
            raise ValueError(f"period must be positive, got {period}")
        self._period = period
        self._k = std_dev_multiplier
        self._closes: deque[float] = deque(maxlen=max(period, history))
        self._sum = 0.0
        self._sum_sq = 0.0
        self._count = 0

    @property
    def period(self) -> int:
        return self._period

    @property
    def is_ready(self) -> bool:
        """True once a full ``period`` of closes has been pushed."""
        return self._count >= self._period

    @property
    def closes(self) -> deque[float]:
        """Retained trailing closes, oldest first (read-only use)."""
        return self._closes

    def __len__(self) -> int:
        """Total number of closes pushed so far."""
        return self._count

    def push(self, close: float) -> None:
        """Append the next close, sliding the band window forward by one."""
        if len(self._closes) >= self._period:
            leaving = self._closes[-self._period]
            self._sum -= leaving
            self._sum_sq -= leaving * leaving
        self._closes.append(close)
        self._sum += close
        self._sum_sq += close * close
        self._count += 1

    def extend(self, closes: Iterable[float]) -> None:
        for close in closes:
            self.push(close)

    def band(self) -> Band:
        """Band for the most recently pushed close.

        Raises:
            InsufficientDataError: If fewer than ``period`` closes were pushed.
        """
        if self._count < self._period:
            raise InsufficientDataError(required=self._period, actual=self._count)

        mean = self._sum / self._period
        # Cancellation can push the difference slightly below zero
        variance = max(0.0, self._sum_sq / self._period - mean * mean)
        std_dev = math.sqrt(variance)
        return Band(
            upper=mean + self._k * std_dev,
            middle=mean,
            lower=mean - self._k * std_dev,
        )

    def count_below(self, threshold: float, n: int) -> int:
        """Count retained closes among the latest ``n`` strictly below ``threshold``."""
        return count_below(self._closes, threshold, n)
