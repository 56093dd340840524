"""Tests for the historical scan/backtest runner over CSV data on disk."""

from pathlib import Path

from bollscan.data.models import Candle
from bollscan.runner import ScanKind, run_historical, scan_symbol
from bollscan.signals.models import ScanParameters

INTERVALS = ("15m", "30m", "4h")


def _write_series(root: Path, symbol: str, interval: str, candles: list[Candle], header: bool = True) -> None:
    directory = root / "klines" / symbol / interval
    directory.mkdir(parents=True, exist_ok=True)
    lines = ["open_time,open,high,low,close,volume,close_time"] if header else []
    lines.extend(
        f"{c.open_time},{c.open},{c.high},{c.low},{c.close},{c.volume},{c.close_time}"
        for c in candles
    )
    (directory / f"{symbol}-{interval}.csv").write_text("\n".join(lines) + "\n")


def _write_market(root: Path, symbol: str, market: dict) -> None:
    for interval, key in zip(INTERVALS, ("primary", "mid", "coarse")):
        _write_series(root, symbol, interval, market[key])


class TestScanSymbol:
    """Tests for the per-symbol worker function."""

    def test_signals_from_csv(self, tmp_path: Path, spike_market, bar_time) -> None:
        _write_market(tmp_path, "AAAUSDT", spike_market)

        signals = scan_symbol(tmp_path, "AAAUSDT", ScanKind.SIGNALS, ScanParameters())
        assert [s.timestamp for s in signals] == [bar_time(420)]

    def test_trades_from_csv(self, tmp_path: Path, trade_market, bar_time) -> None:
        _write_market(tmp_path, "AAAUSDT", trade_market)

        trades = scan_symbol(tmp_path, "AAAUSDT", ScanKind.TRADES, ScanParameters())
        assert len(trades) == 1
        assert trades[0].buy_time == bar_time(421)


class TestRunHistorical:
    """Tests for run_historical."""

    def test_results_sorted_by_symbol(self, tmp_path: Path, spike_market) -> None:
        _write_market(tmp_path, "BBBUSDT", spike_market)
        _write_market(tmp_path, "AAAUSDT", spike_market)

        result = run_historical(tmp_path, ScanKind.SIGNALS, ScanParameters(), INTERVALS, max_workers=1)

        assert result.symbols_scanned == 2
        assert result.failures == {}
        assert [s.symbol for s in result.results] == ["AAAUSDT", "BBBUSDT"]

    def test_failing_symbol_isolated(self, tmp_path: Path, spike_market) -> None:
        _write_market(tmp_path, "AAAUSDT", spike_market)
        _write_market(tmp_path, "BADUSDT", spike_market)
        bad_file = tmp_path / "klines" / "BADUSDT" / "15m" / "BADUSDT-15m.csv"
        bad_file.write_text(bad_file.read_text() + "not,a,number,at,all,x,y\n")

        result = run_historical(tmp_path, ScanKind.SIGNALS, ScanParameters(), INTERVALS, max_workers=1)

        assert result.symbols_scanned == 1
        assert list(result.failures) == ["BADUSDT"]
        assert "malformed kline row" in result.failures["BADUSDT"]
        assert [s.symbol for s in result.results] == ["AAAUSDT"]

    def test_explicit_symbol_list(self, tmp_path: Path, spike_market) -> None:
        _write_market(tmp_path, "AAAUSDT", spike_market)
        _write_market(tmp_path, "BBBUSDT", spike_market)

        result = run_historical(
            tmp_path, ScanKind.SIGNALS, ScanParameters(), INTERVALS, symbols=["BBBUSDT"], max_workers=1
        )
        assert [s.symbol for s in result.results] == ["BBBUSDT"]

    def test_empty_data_directory(self, tmp_path: Path) -> None:
        result = run_historical(tmp_path, ScanKind.TRADES, ScanParameters(), INTERVALS)
        assert result.kind is ScanKind.TRADES
        assert result.results == []
        assert result.symbols_scanned == 0

    def test_worker_processes_match_inline(self, tmp_path: Path, trade_market) -> None:
        _write_market(tmp_path, "AAAUSDT", trade_market)
        _write_market(tmp_path, "BBBUSDT", trade_market)

        inline = run_historical(tmp_path, ScanKind.TRADES, ScanParameters(), INTERVALS, max_workers=1)
        pooled = run_historical(tmp_path, ScanKind.TRADES, ScanParameters(), INTERVALS, max_workers=2)

        assert pooled.results == inline.results
        assert pooled.symbols_scanned == 2
