"""Live breakout monitor -- periodic scan of the futures universe.

Each cycle:
  1. UNIVERSE: configured symbols or top N USDT perpetuals by volume
  2. FETCH: three kline timeframes plus OI history per symbol, concurrently
  3. EVALUATE: latest closed primary bar per symbol, with per-symbol cooldown
  4. REPORT: append fired signals to CSV and email them
  5. HEARTBEAT: after too many cycles without signals, email a liveness notice

Cooldown state (last signal time per symbol) lives in memory only and starts
empty after a restart.
"""

from __future__ import annotations

import asyncio

from bollscan.config import AppSettings
from bollscan.data.fetcher import MarketDataClient
from bollscan.exceptions import MarketDataError, NotificationError
from bollscan.logging import get_logger, symbol_context
from bollscan.output.csv_writer import CsvWriter
from bollscan.output.notifier import EmailNotifier
from bollscan.signals.engine import SignalEvaluator
from bollscan.signals.models import Signal

logger = get_logger(__name__)


class SignalMonitor:
    """Continuous signal monitoring loop.

    Args:
        settings: Application-wide settings.
        client: Connected live market data client.
        notifier: Email notifier for alerts and heartbeats.
        writer: CSV sink that fired signals are appended to.
        evaluator: Signal evaluator; built from settings when omitted.
    """

    def __init__(
        self,
        settings: AppSettings,
        client: MarketDataClient,
        notifier: EmailNotifier,
        writer: CsvWriter,
        evaluator: SignalEvaluator | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._notifier = notifier
        self._writer = writer
        self._evaluator = evaluator or SignalEvaluator(settings.scanner.to_parameters())
        self._last_signal_time: dict[str, int] = {}
        self._cycles_without_signals = 0
        self._cycle_count = 0
        self._running = False
        self._stop_event = asyncio.Event()

    @property
    def cycles_without_signals(self) -> int:
        return self._cycles_without_signals

    @property
    def last_signal_times(self) -> dict[str, int]:
        return dict(self._last_signal_time)

    async def start(self) -> None:
        """Run cycles until stop() is called."""
        logger.info(
            "monitor_starting",
            interval_minutes=self._settings.scheduler.interval_minutes,
            email_enabled=self._notifier.enabled,
        )
        self._running = True
        self._stop_event.clear()
        try:
            await self._run_loop()
        finally:
            logger.info("monitor_stopped", cycles=self._cycle_count)

    async def stop(self) -> None:
        """Signal the loop to stop after the current cycle."""
        logger.info("monitor_stopping_gracefully")
        self._running = False
        self._stop_event.set()

    async def _run_loop(self) -> None:
        interval = self._settings.scheduler.interval_minutes * 60
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("monitor_cycle_error", error=str(e), exc_info=True)

            if not self._running:
                break
            logger.info("monitor_sleeping", minutes=self._settings.scheduler.interval_minutes)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self) -> list[Signal]:
        """Run one scan-evaluate-report cycle.

        Returns:
            Signals fired in this cycle.
        """
        self._cycle_count += 1
        symbols = await self._client.select_universe()
        logger.info("monitor_cycle_starting", cycle=self._cycle_count, symbols=len(symbols))

        outcomes = await asyncio.gather(*(self._evaluate_symbol(s) for s in symbols))
        signals = sorted((s for s in outcomes if s is not None), key=lambda s: s.symbol)

        logger.info(
            "monitor_cycle_complete",
            cycle=self._cycle_count,
            evaluated=len(symbols),
            signals=len(signals),
        )

        if signals:
            await self._report(signals)
            self._cycles_without_signals = 0
        else:
            self._cycles_without_signals += 1
            logger.info(
                "no_signal_cycles",
                count=self._cycles_without_signals,
                heartbeat_threshold=self._settings.scheduler.heartbeat_threshold,
            )
            if self._cycles_without_signals >= self._settings.scheduler.heartbeat_threshold:
                await self._send_heartbeat()

        return signals

    async def _evaluate_symbol(self, symbol: str) -> Signal | None:
        """Fetch and evaluate one symbol.

        Any failure is logged and skips the symbol for this cycle so one bad
        market never aborts the others.
        """
        with symbol_context(symbol):
            return await self._fetch_and_evaluate(symbol)

    async def _fetch_and_evaluate(self, symbol: str) -> Signal | None:
        try:
            snapshot = await self._client.fetch_analysis_data(symbol)
            name = self._client.market_id(symbol)
            # Pure CPU work, run off the event loop
            signal = await asyncio.to_thread(
                self._evaluator.evaluate_latest,
                name,
                snapshot.primary,
                snapshot.mid,
                snapshot.coarse,
                snapshot.metrics,
                last_signal_time=self._last_signal_time.get(name),
            )
        except MarketDataError as e:
            logger.warning("symbol_fetch_failed", error=str(e))
            return None
        except Exception as e:
            logger.error("symbol_evaluation_failed", error=str(e), exc_info=True)
            return None

        if signal is not None:
            self._last_signal_time[name] = signal.timestamp
            logger.info(
                "signal_detected",
                symbol=name,
                datetime=signal.datetime,
                price=signal.price,
                primary_upper=round(signal.primary_band.upper, 6),
                volume_ratio=round(signal.volume_ratio, 2),
            )
        return signal

    async def _report(self, signals: list[Signal]) -> None:
        self._writer.append_signals(signals)
        try:
            await self._notifier.alert(signals)
        except NotificationError as e:
            # Signals are already in the CSV and the log
            logger.error("signal_email_failed", error=str(e), signals=len(signals))

    async def _send_heartbeat(self) -> None:
        try:
            await self._notifier.heartbeat(self._cycles_without_signals)
        except NotificationError as e:
            logger.error("heartbeat_email_failed", error=str(e))
            return
        self._cycles_without_signals = 0
