"""Tests for CSV kline and metrics sources."""

from pathlib import Path

import pytest

from bollscan.data.sources import (
    discover_symbols,
    has_metrics,
    iter_klines,
    iter_metrics,
    parse_kline_row,
    parse_metrics_time,
)
from bollscan.exceptions import DataSourceError

KLINE_HEADER = "open_time,open,high,low,close,volume,close_time,quote_volume,count,taker_buy_volume,taker_buy_quote_volume,ignore"
NEW_YEAR_MS = 1_704_067_200_000  # 2024-01-01 00:00:00 UTC
MS_15M = 900_000


def _kline_line(i: int, close: float = 100.0) -> str:
    open_time = NEW_YEAR_MS + i * MS_15M
    return f"{open_time},99.0,101.0,98.0,{close},12.5,{open_time + MS_15M - 1},1250.0,42,6.0,600.0,0"


def _write_klines(root: Path, symbol: str, interval: str, name: str, lines: list[str]) -> Path:
    directory = root / "klines" / symbol / interval
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("\n".join(lines) + "\n")
    return path


def _write_metrics(root: Path, symbol: str, name: str, lines: list[str]) -> Path:
    directory = root / "metrics" / symbol
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("\n".join(lines) + "\n")
    return path


class TestParseKlineRow:
    """Tests for parse_kline_row."""

    def test_positional_columns(self) -> None:
        candle = parse_kline_row(_kline_line(0, close=100.25).split(","))
        assert candle.open_time == NEW_YEAR_MS
        assert candle.close_time == NEW_YEAR_MS + MS_15M - 1
        assert candle.open == 99.0
        assert candle.high == 101.0
        assert candle.low == 98.0
        assert candle.close == 100.25
        assert candle.volume == 12.5

    def test_empty_fields_read_as_zero(self) -> None:
        candle = parse_kline_row(["1", "", "", "", "", "", "2"])
        assert candle.close == 0.0
        assert candle.volume == 0.0
        assert candle.is_valid() is False

    def test_short_row_rejected(self) -> None:
        with pytest.raises(ValueError, match="columns"):
            parse_kline_row(["1", "2", "3"])


class TestIterKlines:
    """Tests for iter_klines."""

    def test_reads_files_with_and_without_header(self, tmp_path: Path) -> None:
        _write_klines(tmp_path, "BTCUSDT", "15m", "BTCUSDT-15m-2024-01-01.csv", [KLINE_HEADER, _kline_line(0), _kline_line(1)])
        _write_klines(tmp_path, "BTCUSDT", "15m", "BTCUSDT-15m-2024-01-02.csv", [_kline_line(2), _kline_line(3)])

        candles = list(iter_klines(tmp_path, "BTCUSDT", "15m"))
        assert [c.open_time for c in candles] == [NEW_YEAR_MS + i * MS_15M for i in range(4)]

    def test_files_read_in_name_order(self, tmp_path: Path) -> None:
        _write_klines(tmp_path, "BTCUSDT", "15m", "b.csv", [_kline_line(1)])
        _write_klines(tmp_path, "BTCUSDT", "15m", "a.csv", [_kline_line(0)])
        _write_klines(tmp_path, "BTCUSDT", "15m", "notes.txt", ["ignored"])

        candles = list(iter_klines(tmp_path, "BTCUSDT", "15m"))
        assert [c.open_time for c in candles] == [NEW_YEAR_MS, NEW_YEAR_MS + MS_15M]

    def test_invalid_candles_dropped(self, tmp_path: Path) -> None:
        _write_klines(
            tmp_path,
            "BTCUSDT",
            "15m",
            "data.csv",
            [_kline_line(0), _kline_line(1, close=0.0), "0,1,1,1,1,1,5", _kline_line(2)],
        )
        candles = list(iter_klines(tmp_path, "BTCUSDT", "15m"))
        assert len(candles) == 2
        assert all(c.close > 0 for c in candles)

    def test_malformed_row_raises(self, tmp_path: Path) -> None:
        _write_klines(tmp_path, "BTCUSDT", "15m", "data.csv", [_kline_line(0), "1704067200000,abc,1,1,1,1,1704068099999"])

        with pytest.raises(DataSourceError, match="malformed kline row 2"):
            list(iter_klines(tmp_path, "BTCUSDT", "15m"))

    def test_missing_directory_yields_nothing(self, tmp_path: Path) -> None:
        assert list(iter_klines(tmp_path, "NOPEUSDT", "15m")) == []

    def test_reading_is_lazy(self, tmp_path: Path) -> None:
        _write_klines(tmp_path, "BTCUSDT", "15m", "data.csv", [_kline_line(0), "garbage,row"])

        klines = iter_klines(tmp_path, "BTCUSDT", "15m")
        assert next(klines).open_time == NEW_YEAR_MS
        with pytest.raises(DataSourceError):
            next(klines)


class TestIterMetrics:
    """Tests for iter_metrics and parse_metrics_time."""

    def test_parse_metrics_time_is_utc(self) -> None:
        assert parse_metrics_time("2024-01-01 00:00:00") == NEW_YEAR_MS
        assert parse_metrics_time(" 2024-01-01 00:05:00 ") == NEW_YEAR_MS + 300_000

    def test_reads_open_interest(self, tmp_path: Path) -> None:
        _write_metrics(
            tmp_path,
            "BTCUSDT",
            "BTCUSDT-metrics-2024-01-01.csv",
            [
                "create_time,symbol,sum_open_interest,sum_open_interest_value",
                "2024-01-01 00:00:00,BTCUSDT,81234.5,3.4e9",
                "2024-01-01 00:05:00,BTCUSDT,,3.4e9",
            ],
        )
        samples = list(iter_metrics(tmp_path, "BTCUSDT"))
        assert [s.timestamp_ms for s in samples] == [NEW_YEAR_MS, NEW_YEAR_MS + 300_000]
        assert samples[0].sum_open_interest == 81234.5
        assert samples[1].sum_open_interest == 0.0

    def test_missing_columns_raise(self, tmp_path: Path) -> None:
        _write_metrics(tmp_path, "BTCUSDT", "m.csv", ["time,symbol,oi", "2024-01-01 00:00:00,BTCUSDT,1"])

        with pytest.raises(DataSourceError, match="missing columns"):
            list(iter_metrics(tmp_path, "BTCUSDT"))

    def test_bad_timestamp_raises(self, tmp_path: Path) -> None:
        _write_metrics(
            tmp_path,
            "BTCUSDT",
            "m.csv",
            ["create_time,symbol,sum_open_interest", "yesterday,BTCUSDT,1.0"],
        )
        with pytest.raises(DataSourceError, match="malformed metrics row"):
            list(iter_metrics(tmp_path, "BTCUSDT"))

    def test_has_metrics(self, tmp_path: Path) -> None:
        assert has_metrics(tmp_path, "BTCUSDT") is False
        _write_metrics(tmp_path, "BTCUSDT", "m.csv", ["create_time,symbol,sum_open_interest"])
        assert has_metrics(tmp_path, "BTCUSDT") is True


class TestDiscoverSymbols:
    """Tests for discover_symbols."""

    def test_requires_every_interval(self, tmp_path: Path) -> None:
        for interval in ("15m", "30m", "4h"):
            _write_klines(tmp_path, "BTCUSDT", interval, "d.csv", [_kline_line(0)])
            _write_klines(tmp_path, "ETHUSDT", interval, "d.csv", [_kline_line(0)])
        _write_klines(tmp_path, "XRPUSDT", "15m", "d.csv", [_kline_line(0)])

        assert discover_symbols(tmp_path, ("15m", "30m", "4h")) == ["BTCUSDT", "ETHUSDT"]

    def test_missing_root(self, tmp_path: Path) -> None:
        assert discover_symbols(tmp_path / "absent", ("15m",)) == []
