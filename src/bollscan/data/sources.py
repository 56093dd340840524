"""CSV record sources for historical klines and open-interest metrics.

Directory layout under the data path::

    klines/<SYMBOL>/<INTERVAL>/*.csv   Binance futures kline columns, header optional
    metrics/<SYMBOL>/*.csv             Binance metrics columns with header

Files are read lazily in sorted filename order (daily/monthly Binance dumps
sort chronologically by name), so a multi-year history is never loaded at
once unless the caller materializes it.
"""

import csv
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

from bollscan.data.models import Candle, MetricSample
from bollscan.exceptions import DataSourceError
from bollscan.logging import get_logger

logger = get_logger(__name__)

# Positional Binance kline columns
_OPEN_TIME, _OPEN, _HIGH, _LOW, _CLOSE, _VOLUME, _CLOSE_TIME = range(7)

METRICS_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def kline_dir(data_path: str | Path, symbol: str, interval: str) -> Path:
    return Path(data_path) / "klines" / symbol / interval


def metrics_dir(data_path: str | Path, symbol: str) -> Path:
    return Path(data_path) / "metrics" / symbol


def _csv_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.suffix == ".csv" and p.is_file())


def _parse_float(value: str) -> float:
    value = value.strip()
    return float(value) if value else 0.0


def _parse_int(value: str) -> int:
    value = value.strip()
    return int(float(value)) if value else 0


def _is_header(row: list[str]) -> bool:
    """A header row has a non-numeric first field (e.g. "open_time")."""
    if not row:
        return False
    try:
        float(row[0])
    except ValueError:
        return True
    return False


def parse_kline_row(row: list[str]) -> Candle:
    """Build a Candle from one positional Binance kline row.

    Empty numeric fields read as zero, which makes the candle invalid rather
    than the row malformed.

    Raises:
        ValueError: If the row is too short or a field is not numeric.
    """
    if len(row) <= _CLOSE_TIME:
        raise ValueError(f"expected at least {_CLOSE_TIME + 1} columns, got {len(row)}")
    return Candle(
        open_time=_parse_int(row[_OPEN_TIME]),
        close_time=_parse_int(row[_CLOSE_TIME]),
        open=_parse_float(row[_OPEN]),
        high=_parse_float(row[_HIGH]),
        low=_parse_float(row[_LOW]),
        close=_parse_float(row[_CLOSE]),
        volume=_parse_float(row[_VOLUME]),
    )


def parse_metrics_time(value: str) -> int:
    """Parse a metrics ``create_time`` (UTC) into epoch milliseconds."""
    dt = datetime.strptime(value.strip(), METRICS_TIME_FORMAT).replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def iter_klines(data_path: str | Path, symbol: str, interval: str) -> Iterator[Candle]:
    """Yield valid candles for one symbol/interval across all its CSV files.

    Invalid candles (non-positive times, open >= close time, non-positive
    close) are dropped silently.

    Raises:
        DataSourceError: If a row cannot be parsed or a file cannot be read.
    """
    directory = kline_dir(data_path, symbol, interval)
    dropped = 0
    for path in _csv_files(directory):
        try:
            with path.open(newline="") as f:
                reader = csv.reader(f)
                for line_no, row in enumerate(reader, start=1):
                    if not row or (line_no == 1 and _is_header(row)):
                        continue
                    try:
                        candle = parse_kline_row(row)
                    except ValueError as e:
                        raise DataSourceError(
                            f"{path}: malformed kline row {line_no}: {e}"
                        ) from e
                    if not candle.is_valid():
                        dropped += 1
                        continue
                    yield candle
        except OSError as e:
            raise DataSourceError(f"{path}: {e}") from e

    if dropped:
        logger.debug(
            "invalid_candles_dropped", symbol=symbol, interval=interval, count=dropped
        )


def iter_metrics(data_path: str | Path, symbol: str) -> Iterator[MetricSample]:
    """Yield open-interest samples for one symbol across all its metrics files.

    Raises:
        DataSourceError: If a file lacks the required columns, a row cannot
            be parsed, or a file cannot be read.
    """
    for path in _csv_files(metrics_dir(data_path, symbol)):
        try:
            with path.open(newline="") as f:
                reader = csv.DictReader(f)
                if reader.fieldnames is None:
                    continue
                missing = {"create_time", "sum_open_interest"} - set(reader.fieldnames)
                if missing:
                    raise DataSourceError(f"{path}: missing columns {sorted(missing)}")
                for row in reader:
                    try:
                        yield MetricSample(
                            timestamp_ms=parse_metrics_time(row["create_time"]),
                            sum_open_interest=_parse_float(row["sum_open_interest"]),
                        )
                    except (TypeError, ValueError) as e:
                        raise DataSourceError(
                            f"{path}: malformed metrics row {reader.line_num}: {e}"
                        ) from e
        except OSError as e:
            raise DataSourceError(f"{path}: {e}") from e


def has_metrics(data_path: str | Path, symbol: str) -> bool:
    """True if the symbol has at least one metrics CSV file."""
    return bool(_csv_files(metrics_dir(data_path, symbol)))


def discover_symbols(data_path: str | Path, intervals: tuple[str, ...]) -> list[str]:
    """List symbols whose kline data covers every interval in ``intervals``.

    Args:
        data_path: Root data directory.
        intervals: Interval directory names that must all hold CSV files.

    Returns:
        Sorted symbol names.
    """
    klines_root = Path(data_path) / "klines"
    if not klines_root.is_dir():
        logger.warning("kline_directory_missing", path=str(klines_root))
        return []

    symbols = sorted(
        entry.name
        for entry in klines_root.iterdir()
        if entry.is_dir()
        and all(_csv_files(kline_dir(data_path, entry.name, iv)) for iv in intervals)
    )
    with_metrics = sum(1 for s in symbols if has_metrics(data_path, s))
    logger.info(
        "symbols_discovered",
        symbols=len(symbols),
        with_metrics=with_metrics,
        intervals=list(intervals),
    )
    return symbols
