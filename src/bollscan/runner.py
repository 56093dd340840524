"""Historical scan and backtest runner.

Discovers symbols in the CSV data directory and scans each one in its own
worker process. Symbols are independent: each task opens its own sources and
builds its own evaluator, and a failing symbol is logged and excluded without
affecting the others.
"""

import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from bollscan.data.sources import discover_symbols, has_metrics, iter_klines, iter_metrics
from bollscan.logging import get_logger, setup_logging, symbol_context
from bollscan.signals.engine import SignalEvaluator
from bollscan.signals.models import ScanParameters, Signal, Trade

logger = get_logger(__name__)


class ScanKind(str, Enum):
    """What a historical run produces."""

    SIGNALS = "signals"
    TRADES = "trades"


@dataclass
class HistoricalResult:
    """Outcome of a historical run across all symbols."""

    kind: ScanKind
    results: list = field(default_factory=list)  # list[Signal] or list[Trade]
    symbols_scanned: int = 0
    failures: dict[str, str] = field(default_factory=dict)  # symbol -> error
    elapsed_seconds: float = 0.0


def scan_symbol(
    data_path: str | Path,
    symbol: str,
    kind: ScanKind,
    parameters: ScanParameters,
    intervals: tuple[str, str, str] = ("15m", "30m", "4h"),
) -> list[Signal] | list[Trade]:
    """Scan one symbol's CSV history.

    Module-level so it can be pickled into a worker process.

    Args:
        data_path: Root data directory.
        symbol: Symbol directory name, e.g. "BTCUSDT".
        kind: Produce signals or backtest trades.
        parameters: Evaluator parameters.
        intervals: Primary, mid and coarse interval directory names.

    Returns:
        Signals or trades in ascending time order.

    Raises:
        DataSourceError: If the symbol's CSV files cannot be read.
    """
    primary_iv, mid_iv, coarse_iv = intervals
    evaluator = SignalEvaluator(parameters)
    with symbol_context(symbol):
        metrics = iter_metrics(data_path, symbol) if has_metrics(data_path, symbol) else None
        series = (
            iter_klines(data_path, symbol, primary_iv),
            iter_klines(data_path, symbol, mid_iv),
            iter_klines(data_path, symbol, coarse_iv),
        )
        if kind is ScanKind.TRADES:
            return evaluator.scan_trades(symbol, *series, metrics=metrics)
        return evaluator.scan_signals(symbol, *series, metrics=metrics)


def _sort_key(item: Signal | Trade) -> tuple[str, int]:
    if isinstance(item, Trade):
        return item.symbol, item.buy_time
    return item.symbol, item.timestamp


def run_historical(
    data_path: str | Path,
    kind: ScanKind,
    parameters: ScanParameters,
    intervals: tuple[str, str, str] = ("15m", "30m", "4h"),
    symbols: list[str] | None = None,
    max_workers: int | None = None,
    log_level: str = "INFO",
    log_format: str = "console",
) -> HistoricalResult:
    """Scan every symbol in the data directory.

    Args:
        data_path: Root data directory.
        kind: Produce signals or backtest trades.
        parameters: Evaluator parameters shared by all symbols.
        intervals: Primary, mid and coarse interval names.
        symbols: Restrict the run to these symbols; discovered when None.
        max_workers: Worker processes; 1 runs in-process, None uses one per CPU.
        log_level: Log level configured in each worker process.
        log_format: Log rendering configured in each worker process.

    Returns:
        HistoricalResult with results sorted by symbol, then time.
    """
    start_time = time.monotonic()
    if symbols is None:
        symbols = discover_symbols(data_path, intervals)
    result = HistoricalResult(kind=kind)

    logger.info(
        "historical_run_starting",
        kind=kind.value,
        symbols=len(symbols),
        access_mode=parameters.access_mode.value,
        max_workers=max_workers,
    )

    def collect(symbol: str, items: list) -> None:
        result.results.extend(items)
        result.symbols_scanned += 1
        logger.info(
            "symbol_scanned",
            symbol=symbol,
            found=len(items),
            progress=f"{result.symbols_scanned + len(result.failures)}/{len(symbols)}",
        )

    def fail(symbol: str, error: Exception) -> None:
        result.failures[symbol] = str(error)
        logger.error("symbol_scan_failed", symbol=symbol, error=str(error), exc_info=True)

    if max_workers == 1:
        for symbol in symbols:
            try:
                items = scan_symbol(data_path, symbol, kind, parameters, intervals)
            except Exception as e:
                fail(symbol, e)
                continue
            collect(symbol, items)
    elif symbols:
        with ProcessPoolExecutor(
            max_workers=max_workers,
            initializer=setup_logging,
            initargs=(log_level, log_format, True),
        ) as pool:
            futures = {
                pool.submit(scan_symbol, data_path, symbol, kind, parameters, intervals): symbol
                for symbol in symbols
            }
            for future in as_completed(futures):
                symbol = futures[future]
                try:
                    items = future.result()
                except Exception as e:
                    fail(symbol, e)
                    continue
                collect(symbol, items)

    result.results.sort(key=_sort_key)
    result.elapsed_seconds = time.monotonic() - start_time

    logger.info(
        "historical_run_complete",
        kind=kind.value,
        symbols_scanned=result.symbols_scanned,
        symbols_failed=len(result.failures),
        results=len(result.results),
        elapsed_seconds=round(result.elapsed_seconds, 2),
    )
    return result
