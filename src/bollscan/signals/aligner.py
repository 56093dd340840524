"""Cross-timeframe alignment of secondary series to the primary clock.

For each primary tick at time ``t`` the aligner moves a cursor into every
secondary series while the *next* record's timestamp is <= ``t``. The cursor
therefore always rests on the latest secondary record that had fully closed
by ``t``. Cursors only move forward, so the total work over a scan is bounded
by the secondary series lengths.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from bollscan.signals.window import TimeSeriesWindow, TimestampedRecord


@dataclass
class Alignment:
    """Result of aligning one secondary series to a primary tick."""

    aligned: bool  # False: series exhausted before reaching the tick
    cursor: int  # sequence number of the latest record <= t, -1 if none
    passed: list[TimestampedRecord] = field(default_factory=list)  # records newly passed, in order


class TimeframeAligner:
    """Monotone cursors into named secondary windows.

    Args:
        windows: Secondary windows keyed by name (e.g. "mid", "coarse",
            "metrics").
        keep_behind: Records behind each cursor protected from streaming
            eviction, for callers that look back with window_at_or_before().
    """

    def __init__(
        self,
        windows: dict[str, TimeSeriesWindow],
        keep_behind: int = 0,
    ) -> None:
        self._windows = windows
        self._keep_behind = keep_behind
        self._cursors: dict[str, int] = {name: -1 for name in windows}
        self._last_ts: int | None = None
        for window in windows.values():
            window.retain_from(0)

    @property
    def names(self) -> list[str]:
        return list(self._windows)

    def cursor(self, name: str) -> int:
        """Current cursor of a series: sequence number, -1 before the first record."""
        return self._cursors[name]

    def window(self, name: str) -> TimeSeriesWindow:
        return self._windows[name]

    def align(self, timestamp_ms: int) -> dict[str, Alignment]:
        """Advance every cursor to the primary tick at ``timestamp_ms``.

        Raises:
            ValueError: If ``timestamp_ms`` is earlier than the previous tick.
        """
        if self._last_ts is not None and timestamp_ms < self._last_ts:
            raise ValueError(
                f"primary clock moved backward: {timestamp_ms} < {self._last_ts}"
            )
        self._last_ts = timestamp_ms
        return {name: self._align_one(name, timestamp_ms) for name in self._windows}

    def _align_one(self, name: str, timestamp_ms: int) -> Alignment:
        window = self._windows[name]
        reached = window.advance_until(timestamp_ms)

        cursor = self._cursors[name]
        passed: list[TimestampedRecord] = []
        while True:
            nxt = window.record_at(cursor + 1)
            if nxt is None or nxt.timestamp_ms > timestamp_ms:
                break
            cursor += 1
            passed.append(nxt)

        self._cursors[name] = cursor
        window.retain_from(max(0, cursor - self._keep_behind))
        return Alignment(aligned=reached, cursor=cursor, passed=passed)
