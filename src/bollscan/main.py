"""Command line entry point for the breakout scanner.

Subcommands:
    scan      Historical signal scan over the CSV data directory.
    backtest  Historical trade reconstruction with summary statistics.
    monitor   Live monitoring loop against Binance USD-M futures.
    download  Fetch historical kline and metrics archives into the data directory.

Settings load from the environment / .env (see bollscan.config); command
line flags override the most common ones. The monitor handles SIGINT and
SIGTERM for a graceful stop.
"""

import argparse
import asyncio
import signal
import sys
from datetime import date

from bollscan.analytics.metrics import compute_trade_stats, format_trade_summary
from bollscan.config import AppSettings
from bollscan.data.downloader import HistoricalDownloader, plan_downloads
from bollscan.data.fetcher import MarketDataClient
from bollscan.logging import get_logger, setup_logging
from bollscan.monitor import SignalMonitor
from bollscan.output.csv_writer import CsvWriter
from bollscan.output.notifier import EmailNotifier
from bollscan.runner import ScanKind, run_historical

logger = get_logger("bollscan.main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bollscan",
        description="Multi-timeframe Bollinger breakout scanner for crypto futures",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (e.g. DEBUG)")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--output", default=None, help="Output CSV path")
        p.add_argument(
            "--symbols",
            default=None,
            help="Comma separated symbols (e.g. BTCUSDT,ETHUSDT); default: all",
        )
        p.add_argument(
            "--mode",
            choices=["batch", "streaming"],
            default=None,
            help="Record access mode for the signal engine",
        )

    for name, help_text in (
        ("scan", "Scan historical CSV data for entry signals"),
        ("backtest", "Backtest signals with the band-crossing exit"),
    ):
        p = sub.add_parser(name, help=help_text)
        add_common(p)
        p.add_argument("--data", default=None, help="Data directory (klines/, metrics/)")
        p.add_argument("--workers", type=int, default=None, help="Worker processes (1 = inline)")

    p = sub.add_parser("monitor", help="Monitor live Binance futures data")
    add_common(p)
    p.add_argument("--once", action="store_true", help="Run a single cycle and exit")

    p = sub.add_parser("download", help="Download historical archives from data.binance.vision")
    p.add_argument("--data", default=None, help="Data directory to fill (klines/, metrics/)")
    p.add_argument(
        "--symbols",
        default=None,
        help="Comma separated symbols (e.g. BTCUSDT,ETHUSDT); default: top N by volume",
    )
    p.add_argument("--top", type=int, default=None, help="Number of symbols by 24h quote volume")
    p.add_argument("--concurrent", type=int, default=None, help="Parallel downloads")
    p.add_argument("--start-date", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
    p.add_argument("--end-date", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
    only = p.add_mutually_exclusive_group()
    only.add_argument("--kline-only", action="store_true", help="Skip metrics archives")
    only.add_argument("--oi-only", action="store_true", help="Skip kline archives")
    return parser


def apply_overrides(settings: AppSettings, args: argparse.Namespace) -> AppSettings:
    """Return a copy of ``settings`` with command line overrides applied."""
    data_update: dict = {}
    scanner_update: dict = {}
    exchange_update: dict = {}
    download_update: dict = {}
    update: dict = {}

    if args.log_level:
        update["log_level"] = args.log_level
    if getattr(args, "data", None):
        data_update["data_path"] = args.data
    if getattr(args, "workers", None) is not None:
        data_update["max_workers"] = args.workers
    if getattr(args, "mode", None):
        scanner_update["access_mode"] = args.mode
    if getattr(args, "output", None):
        field_name = {
            "scan": "signals_output",
            "backtest": "trades_output",
            "monitor": "live_signals_output",
        }[args.command]
        data_update[field_name] = args.output
    if args.command == "monitor" and args.symbols:
        exchange_update["symbols"] = parse_symbols(args.symbols)
    if args.command == "download":
        for arg, field_name in (
            ("top", "top_n"),
            ("concurrent", "concurrency"),
            ("start_date", "start_date"),
            ("end_date", "end_date"),
        ):
            if getattr(args, arg) is not None:
                download_update[field_name] = getattr(args, arg)

    if data_update:
        update["data"] = settings.data.model_copy(update=data_update)
    if scanner_update:
        update["scanner"] = settings.scanner.model_copy(update=scanner_update)
    if exchange_update:
        update["exchange"] = settings.exchange.model_copy(update=exchange_update)
    if download_update:
        update["download"] = settings.download.model_copy(update=download_update)
    return settings.model_copy(update=update) if update else settings


def parse_symbols(value: str | None) -> list[str] | None:
    if not value:
        return None
    symbols = [s.strip().upper() for s in value.split(",") if s.strip()]
    return symbols or None


def run_scan(settings: AppSettings, symbols: list[str] | None = None) -> int:
    """Historical signal scan: write signals CSV and print a short report."""
    result = run_historical(
        settings.data.data_path,
        ScanKind.SIGNALS,
        settings.scanner.to_parameters(),
        intervals=settings.scanner.intervals,
        symbols=symbols,
        max_workers=settings.data.max_workers,
        log_level=settings.log_level,
        log_format=settings.log_format,
    )
    CsvWriter(settings.data.signals_output).write_signals(result.results)

    print(f"\nSymbols scanned: {result.symbols_scanned}  failed: {len(result.failures)}")
    print(f"Signals found:   {len(result.results)}")
    print(f"Output:          {settings.data.signals_output}")
    return 1 if result.failures and not result.symbols_scanned else 0


def run_backtest(settings: AppSettings, symbols: list[str] | None = None) -> int:
    """Historical backtest: write trades CSV and print statistics."""
    result = run_historical(
        settings.data.data_path,
        ScanKind.TRADES,
        settings.scanner.to_parameters(),
        intervals=settings.scanner.intervals,
        symbols=symbols,
        max_workers=settings.data.max_workers,
        log_level=settings.log_level,
        log_format=settings.log_format,
    )
    CsvWriter(settings.data.trades_output).write_trades(result.results)

    print()
    print(format_trade_summary(compute_trade_stats(result.results)))
    print(f"Output: {settings.data.trades_output}")
    return 1 if result.failures and not result.symbols_scanned else 0


def _setup_signal_handlers(monitor: SignalMonitor) -> None:
    """SIGINT/SIGTERM stop the monitor after the current cycle.

    Must be called after the asyncio event loop is running.
    """
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(monitor.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


async def run_monitor(settings: AppSettings, once: bool = False) -> int:
    """Live monitor: connect, loop until stopped, always release the client."""
    client = MarketDataClient(settings.exchange, settings.scanner)
    notifier = EmailNotifier(settings.email, oi_multiplier=settings.scanner.oi_multiplier)
    writer = CsvWriter(settings.data.live_signals_output)
    monitor = SignalMonitor(settings, client, notifier, writer)

    try:
        await client.connect()
        if once:
            signals = await monitor.run_cycle()
            for s in signals:
                print(f"{s.symbol:<14} {s.datetime}  price={s.price:.6g}  vol_ratio={s.volume_ratio:.2f}")
        else:
            _setup_signal_handlers(monitor)
            await monitor.start()
    finally:
        await client.close()
    return 0


async def run_download(
    settings: AppSettings,
    symbols: list[str] | None = None,
    klines: bool = True,
    metrics: bool = True,
) -> int:
    """Fill the data directory from the public archive mirror.

    Without explicit symbols the top N USDT perpetuals by 24h quote volume
    are taken from the live exchange.
    """
    if symbols is None:
        client = MarketDataClient(settings.exchange, settings.scanner)
        try:
            await client.connect()
            universe = await client.select_universe(settings.download.top_n)
            symbols = [client.market_id(s) for s in universe]
        finally:
            await client.close()

    tasks = plan_downloads(
        settings.download,
        settings.data.data_path,
        symbols,
        settings.scanner.intervals,
        klines=klines,
        metrics=metrics,
    )
    async with HistoricalDownloader(settings.download) as downloader:
        stats = await downloader.download(tasks)

    print(f"\nSymbols:   {len(symbols)}")
    print(
        f"Archives:  {stats.success} downloaded, {stats.skipped} already present, "
        f"{stats.not_found} not published, {stats.failed} failed"
    )
    print(f"Data:      {settings.data.data_path}")
    return 1 if stats.failed and not (stats.success or stats.skipped) else 0


def main(argv: list[str] | None = None) -> int:
    """Synchronous entry point."""
    args = build_parser().parse_args(argv)
    settings = apply_overrides(AppSettings(), args)
    setup_logging(settings.log_level, settings.log_format)

    logger.info(
        "bollscan_starting",
        command=args.command,
        access_mode=settings.scanner.access_mode,
        intervals=list(settings.scanner.intervals),
    )

    if args.command == "scan":
        return run_scan(settings, parse_symbols(args.symbols))
    if args.command == "backtest":
        return run_backtest(settings, parse_symbols(args.symbols))
    if args.command == "download":
        return asyncio.run(
            run_download(
                settings,
                parse_symbols(args.symbols),
                klines=not args.oi_only,
                metrics=not args.kline_only,
            )
        )
    return asyncio.run(run_monitor(settings, once=args.once))


if __name__ == "__main__":
    sys.exit(main())
