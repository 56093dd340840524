"""Open-interest condition: is positioning still building?

OpenInterestTracker keeps the trailing minimum over a time window with a
monotonic deque, so each sample is pushed and evicted at most once over a
whole scan.
"""

from collections import deque

from bollscan.data.models import MetricSample


def check_open_interest(current_oi: float, min_oi: float, multiplier: float) -> bool:
    """True if ``current_oi * multiplier`` is strictly above the trailing minimum."""
    return current_oi * multiplier > min_oi


class OpenInterestTracker:
    """Latest value and sliding-window minimum of open-interest samples.

    Samples must be pushed in timestamp order, and query times must not
    decrease between calls.

    Args:
        lookback_ms: Width of the minimum window ending at the query time.
    """

    def __init__(self, lookback_ms: int) -> None:
        self._lookback_ms = lookback_ms
        self._latest: MetricSample | None = None
        self._candidates: deque[MetricSample] = deque()

    def push(self, sample: MetricSample) -> None:
        self._latest = sample
        # Older samples that are not smaller can never be the minimum again
        while (
            self._candidates
            and self._candidates[-1].sum_open_interest >= sample.sum_open_interest
        ):
            self._candidates.pop()
        self._candidates.append(sample)

    def current(self) -> float:
        """Latest pushed open interest, 0.0 before any sample."""
        return self._latest.sum_open_interest if self._latest is not None else 0.0

    def minimum(self, at_ms: int) -> float:
        """Minimum open interest over [at_ms - lookback, at_ms], 0.0 if empty."""
        start = at_ms - self._lookback_ms
        while self._candidates and self._candidates[0].timestamp_ms < start:
            self._candidates.popleft()
        if not self._candidates:
            return 0.0
        return self._candidates[0].sum_open_interest
