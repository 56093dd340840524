"""Forward-only buffered access to one symbol/interval record series.

A TimeSeriesWindow pulls records from an ordered source (an iterator of
Candle or MetricSample, already sorted ascending by timestamp) and keeps
them in a buffer:

- streaming mode: the buffer is bounded and the oldest records are evicted,
  so a multi-year CSV history is never held in memory at once;
- batch mode: no bound, the whole series ends up materialized.

Both modes expose the same operations so the signal engine runs unchanged on
either. Every record gets an absolute sequence number (0 for the first record
ever pulled) which survives eviction; cursors into the series are expressed
in sequence numbers.
"""

from __future__ import annotations

from bisect import bisect_right
from collections import deque
from collections.abc import Iterable, Iterator
from typing import Generic, Protocol, TypeVar

from bollscan.exceptions import DataSourceError
from bollscan.signals.models import AccessMode


class TimestampedRecord(Protocol):
    @property
    def timestamp_ms(self) -> int: ...


R = TypeVar("R", bound=TimestampedRecord)


def _timestamp(record: TimestampedRecord) -> int:
    return record.timestamp_ms


class TimeSeriesWindow(Generic[R]):
    """Ordered, gap-tolerant buffer over a single record series.

    Args:
        source: Iterable of records sorted ascending by timestamp_ms. The
            window never re-sorts.
        window_size: Buffer bound for streaming mode. None = batch mode.
        name: Label used in error messages (e.g. "BTCUSDT/30m").
    """

    def __init__(
        self,
        source: Iterable[R],
        window_size: int | None = None,
        name: str = "",
    ) -> None:
        if window_size is not None and window_size < 1:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self._source: Iterator[R] = iter(source)
        self._bound = window_size
        self._name = name
        self._buffer: deque[R] | list[R] = deque() if window_size is not None else []
        self._first_seq = 0
        self._retain_seq: int | None = None
        self._exhausted = False
        self._initialized = False

    @classmethod
    def for_mode(
        cls,
        source: Iterable[R],
        mode: AccessMode,
        window_size: int,
        name: str = "",
    ) -> TimeSeriesWindow[R]:
        """Build a window for the given access mode."""
        bound = window_size if mode is AccessMode.STREAMING else None
        return cls(source, window_size=bound, name=name)

    # ──────────────────────────────────────────────
    # State
    # ──────────────────────────────────────────────

    @property
    def mode(self) -> AccessMode:
        return AccessMode.BATCH if self._bound is None else AccessMode.STREAMING

    @property
    def name(self) -> str:
        return self._name

    @property
    def exhausted(self) -> bool:
        """True once the source has reported it has no more records."""
        return self._exhausted

    @property
    def first_seq(self) -> int:
        """Sequence number of the oldest buffered record."""
        return self._first_seq

    @property
    def consumed(self) -> int:
        """Total number of records pulled from the source so far."""
        return self._first_seq + len(self._buffer)

    @property
    def newest(self) -> R | None:
        return self._buffer[-1] if self._buffer else None

    def __len__(self) -> int:
        return len(self._buffer)

    def record_at(self, seq: int) -> R | None:
        """Return the buffered record with sequence number ``seq``.

        None if it has not been pulled yet or was already evicted.
        """
        idx = seq - self._first_seq
        if 0 <= idx < len(self._buffer):
            return self._buffer[idx]
        return None

    # ──────────────────────────────────────────────
    # Advancement
    # ──────────────────────────────────────────────

    def fill_initial(self, window_size: int | None = None) -> int:
        """Pull records until the buffer holds ``window_size`` of them.

        Stops early when the source is exhausted. ``window_size`` defaults to
        the streaming bound; in batch mode with no size given the whole source
        is read. Only the first call has an effect.

        Returns:
            Number of buffered records.
        """
        if self._initialized:
            return len(self._buffer)
        self._initialized = True

        target = window_size if window_size is not None else self._bound
        while target is None or len(self._buffer) < target:
            if self._pull() is None:
                break
        return len(self._buffer)

    def advance(self) -> R | None:
        """Pull exactly one more record.

        Returns:
            The new record, or None when the source is exhausted. Exhaustion
            is the normal end of a scan, not an error.
        """
        return self._pull()

    def advance_until(self, target_ts: int) -> bool:
        """Advance until the newest buffered timestamp is >= ``target_ts``.

        Never moves backward and never re-reads consumed records.

        Returns:
            True if a record at or beyond ``target_ts`` is buffered, False if
            the source ran out first.
        """
        while True:
            newest = self.newest
            if newest is not None and newest.timestamp_ms >= target_ts:
                return True
            if self._pull() is None:
                return False

    def retain_from(self, seq: int) -> None:
        """Protect records with sequence number >= ``seq`` from eviction.

        A consumer whose cursor lags behind the newest record calls this so
        the streaming bound never drops records it has not passed yet. The
        retention point only moves forward.
        """
        if self._retain_seq is None or seq > self._retain_seq:
            self._retain_seq = seq
        self._evict()

    # ──────────────────────────────────────────────
    # Projection
    # ──────────────────────────────────────────────

    def window_at_or_before(self, ts: int, last: int | None = None) -> list[R]:
        """Buffered records with timestamp <= ``ts``, oldest first.

        Computed from the buffer at call time; the returned list is a fresh
        copy the caller may keep.

        Args:
            ts: Inclusive upper timestamp bound.
            last: Only return the trailing ``last`` matching records.
        """
        end = bisect_right(self._buffer, ts, key=_timestamp)
        start = 0 if last is None else max(0, end - last)
        return [self._buffer[i] for i in range(start, end)]

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    def _pull(self) -> R | None:
        if self._exhausted:
            return None
        try:
            record = next(self._source)
        except StopIteration:
            self._exhausted = True
            return None
        except OSError as e:
            raise DataSourceError(f"{self._name or 'series'}: read failed: {e}") from e

        self._buffer.append(record)
        self._evict()
        return record

    def _evict(self) -> None:
        if self._bound is None:
            return
        buffer = self._buffer
        while len(buffer) > self._bound:
            if self._retain_seq is not None and self._first_seq >= self._retain_seq:
                break
            buffer.popleft()  # type: ignore[union-attr]
            self._first_seq += 1
