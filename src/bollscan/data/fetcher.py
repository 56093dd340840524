"""Live Binance USD-M futures market data via ccxt async.

Fetches the three kline timeframes and the open-interest history that the
live monitor feeds into the signal evaluator. Network calls go through an
exponential backoff retry and a concurrency cap; ccxt's own rate limiter is
enabled on top.

Notes:
- ccxt OHLCV rows carry only the open time; the close time is derived as
  open + interval - 1 ms, matching Binance kline close times.
- The last primary kline returned by Binance is the bar still in progress.
  It is dropped so the evaluator only sees closed primary bars.
"""

import asyncio
import time
from collections.abc import Callable

import ccxt.async_support as ccxt_async

from bollscan.config import ExchangeSettings, ScannerSettings
from bollscan.data.models import Candle, MarketSnapshot, MetricSample
from bollscan.data.universe import is_usdt_perpetual, select_top_symbols
from bollscan.exceptions import MarketDataError
from bollscan.logging import get_logger

logger = get_logger(__name__)


def timeframe_to_ms(interval: str) -> int:
    """Length of a ccxt timeframe string ("15m", "4h", ...) in milliseconds."""
    return ccxt_async.Exchange.parse_timeframe(interval) * 1000


def ohlcv_to_candle(row: list, interval_ms: int) -> Candle:
    """Convert one ccxt OHLCV row [ts, open, high, low, close, volume].

    Raises:
        MarketDataError: If a timestamp or price field is missing or not numeric.
    """
    try:
        open_time = int(row[0])
        return Candle(
            open_time=open_time,
            close_time=open_time + interval_ms - 1,
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5] or 0.0),
        )
    except (IndexError, TypeError, ValueError) as e:
        raise MarketDataError(f"malformed OHLCV row {row!r}: {e}") from e


class MarketDataClient:
    """Binance USD-M futures data client for the live monitor.

    Usage:
        client = MarketDataClient(exchange_settings, scanner_settings)
        await client.connect()
        symbols = await client.select_universe()
        snapshot = await client.fetch_analysis_data(symbols[0])
        await client.close()
    """

    def __init__(self, settings: ExchangeSettings, scanner: ScannerSettings) -> None:
        self._settings = settings
        self._scanner = scanner
        self._exchange = ccxt_async.binanceusdm({"enableRateLimit": True})
        self._markets: dict = {}
        self._semaphore = asyncio.Semaphore(settings.max_concurrent_requests)

    @property
    def exchange(self) -> ccxt_async.binanceusdm:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        """Load markets. Must be called before fetching."""
        logger.info("connecting_to_binance")
        self._markets = await self._fetch_with_retry(self._exchange.load_markets)
        logger.info("binance_connected", market_count=len(self._markets))

    async def close(self) -> None:
        """Release ccxt async resources."""
        await self._exchange.close()
        logger.info("binance_connection_closed")

    # ──────────────────────────────────────────────
    # Universe
    # ──────────────────────────────────────────────

    def resolve_symbol(self, name: str) -> str:
        """Map a configured name ("BTCUSDT" or "BTC/USDT:USDT") to a unified perpetual symbol.

        Raises:
            MarketDataError: If no USDT perpetual matches.
        """
        market = self._markets.get(name)
        if market is not None and is_usdt_perpetual(market):
            return name
        for symbol, market in self._markets.items():
            if market.get("id") == name and is_usdt_perpetual(market):
                return symbol
        raise MarketDataError(f"No USDT perpetual market for {name}")

    def market_id(self, symbol: str) -> str:
        """Exchange id of a unified symbol (e.g. "BTCUSDT"), used in reports."""
        market = self._markets.get(symbol)
        return market["id"] if market else symbol

    async def select_universe(self, top_n: int | None = None) -> list[str]:
        """Symbols to monitor: the configured list, or the top N by 24h quote volume."""
        if self._settings.symbols:
            symbols = []
            for name in self._settings.symbols:
                try:
                    symbols.append(self.resolve_symbol(name))
                except MarketDataError as e:
                    logger.warning("configured_symbol_skipped", symbol=name, error=str(e))
            return symbols

        count = top_n if top_n is not None else self._settings.top_n
        tickers = await self._fetch_with_retry(self._exchange.fetch_tickers)
        symbols = select_top_symbols(self._markets, tickers, count)
        logger.info("universe_selected", count=len(symbols), top_n=count)
        return symbols

    # ──────────────────────────────────────────────
    # Series fetches
    # ──────────────────────────────────────────────

    async def fetch_candles(
        self,
        symbol: str,
        interval: str,
        limit: int | None = None,
        closed_only: bool = False,
    ) -> list[Candle]:
        """Fetch the most recent candles for one interval, oldest first.

        Args:
            symbol: Unified symbol.
            interval: ccxt timeframe, e.g. "15m".
            limit: Number of klines; defaults to the configured kline_limit.
            closed_only: Drop candles whose close time is still in the future.
        """
        interval_ms = timeframe_to_ms(interval)
        rows = await self._fetch_with_retry(
            self._exchange.fetch_ohlcv,
            symbol,
            timeframe=interval,
            limit=limit or self._settings.kline_limit,
        )
        candles = [ohlcv_to_candle(row, interval_ms) for row in rows]
        candles = [c for c in candles if c.is_valid()]
        if closed_only:
            now_ms = int(time.time() * 1000)
            candles = [c for c in candles if c.close_time <= now_ms]
        return candles

    async def fetch_open_interest_history(self, symbol: str) -> list[MetricSample]:
        """Fetch recent open-interest history plus the current snapshot, oldest first."""
        history = await self._fetch_with_retry(
            self._exchange.fetch_open_interest_history,
            symbol,
            timeframe=self._settings.oi_period,
            limit=self._settings.oi_limit,
        )
        samples = [
            MetricSample(
                timestamp_ms=int(entry["timestamp"]),
                sum_open_interest=float(entry.get("openInterestAmount") or 0.0),
            )
            for entry in history
            if entry.get("timestamp") is not None
        ]
        samples.sort(key=lambda s: s.timestamp_ms)

        current = await self._fetch_with_retry(self._exchange.fetch_open_interest, symbol)
        if current and current.get("openInterestAmount") is not None:
            ts = current.get("timestamp") or int(time.time() * 1000)
            if not samples or ts >= samples[-1].timestamp_ms:
                samples.append(
                    MetricSample(
                        timestamp_ms=int(ts),
                        sum_open_interest=float(current["openInterestAmount"]),
                    )
                )
        return samples

    async def fetch_analysis_data(self, symbol: str) -> MarketSnapshot:
        """Fetch all series needed to evaluate one symbol.

        Requests for one symbol run sequentially; at most
        ``max_concurrent_requests`` symbols are fetched at the same time.

        Raises:
            MarketDataError: If any fetch fails after retries.
        """
        primary_iv, mid_iv, coarse_iv = self._scanner.intervals
        async with self._semaphore:
            primary = await self.fetch_candles(symbol, primary_iv, closed_only=True)
            mid = await self.fetch_candles(symbol, mid_iv)
            coarse = await self.fetch_candles(symbol, coarse_iv)
            metrics = await self.fetch_open_interest_history(symbol)

        logger.debug(
            "analysis_data_fetched",
            symbol=symbol,
            primary=len(primary),
            mid=len(mid),
            coarse=len(coarse),
            metrics=len(metrics),
        )
        return MarketSnapshot(
            symbol=symbol, primary=primary, mid=mid, coarse=coarse, metrics=metrics
        )

    # ──────────────────────────────────────────────
    # Retry wrapper
    # ──────────────────────────────────────────────

    async def _fetch_with_retry(self, fetch_fn: Callable, *args, **kwargs):
        """Execute a ccxt call with exponential backoff retry.

        Delays are retry_base_delay * 2**attempt; rate limit errors wait three
        times longer. Unknown symbols are not retried.

        Raises:
            MarketDataError: On final failure.
        """
        max_retries = self._settings.max_retries
        base_delay = self._settings.retry_base_delay

        for attempt in range(max_retries):
            try:
                return await fetch_fn(*args, **kwargs)
            except ccxt_async.BadSymbol as e:
                raise MarketDataError(f"Unknown symbol: {e}") from e
            except ccxt_async.BaseError as e:
                if attempt == max_retries - 1:
                    logger.error(
                        "fetch_failed_permanently",
                        error=str(e),
                        attempts=max_retries,
                    )
                    raise MarketDataError(str(e)) from e

                delay = base_delay * (2**attempt)

                if isinstance(e, ccxt_async.RateLimitExceeded):
                    delay *= 3
                    logger.warning(
                        "rate_limit_exceeded",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                    )
                else:
                    logger.warning(
                        "fetch_retry",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )

                await asyncio.sleep(delay)

        raise MarketDataError("max_retries must be positive")
