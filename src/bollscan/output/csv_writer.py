"""CSV output for signals and backtest trades."""

import csv
from collections.abc import Iterable
from pathlib import Path

from bollscan.logging import get_logger
from bollscan.signals.models import Signal, Trade

logger = get_logger(__name__)

SIGNAL_FIELDS = [
    "timestamp",
    "datetime",
    "symbol",
    "price",
    "primary_upper",
    "mid_middle",
    "coarse_middle",
    "current_oi",
    "min_oi_3d",
    "volume_ratio",
]

TRADE_FIELDS = [
    "symbol",
    "buy_time",
    "buy_datetime",
    "buy_price",
    "sell_time",
    "sell_datetime",
    "sell_price",
    "profit_pct",
    "hold_hours",
]


class CsvWriter:
    """Writes result rows to one CSV file, creating parent directories.

    Args:
        path: Output file path.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def write_signals(self, signals: Iterable[Signal]) -> int:
        """Overwrite the file with a header and one row per signal."""
        return self._write(SIGNAL_FIELDS, (s.to_dict() for s in signals), mode="w")

    def write_trades(self, trades: Iterable[Trade]) -> int:
        """Overwrite the file with a header and one row per trade."""
        return self._write(TRADE_FIELDS, (t.to_dict() for t in trades), mode="w")

    def append_signals(self, signals: Iterable[Signal]) -> int:
        """Append signals, writing the header only when the file is new or empty."""
        return self._write(SIGNAL_FIELDS, (s.to_dict() for s in signals), mode="a")

    def _write(self, fields: list[str], rows: Iterable[dict], mode: str) -> int:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        needs_header = mode == "w" or not self._path.exists() or self._path.stat().st_size == 0

        count = 0
        with self._path.open(mode, newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=fields)
            if needs_header:
                writer.writeheader()
            for row in rows:
                writer.writerow(row)
                count += 1

        logger.info("csv_written", path=str(self._path), rows=count, mode=mode)
        return count
