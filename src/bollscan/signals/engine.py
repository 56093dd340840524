"""Multi-timeframe breakout signal evaluator.

Walks the primary candle series one closed bar at a time. For every bar the
secondary series (mid and coarse candles, optional open-interest samples) are
aligned to the bar's close time, the per-timeframe rolling Bollinger engines
are updated incrementally, and the seven breakout conditions are evaluated:

1. close > primary upper band
2. close > mid middle band
3. close > coarse middle band
4. at least ``history_threshold`` of the last ``history_check_count`` primary
   closes below the primary upper band
5. the same count for mid closes against the mid middle band
6. current OI * multiplier > minimum OI over the lookback (true when the
   symbol has no OI samples at all)
7. coarse bar volume * 2 > sum of the previous ``volume_lookback`` volumes

The same machinery serves three callers: signal scans, trade backtests and
the live monitor's latest-bar check.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from bollscan.data.models import Candle, MetricSample
from bollscan.logging import get_logger
from bollscan.signals.aligner import TimeframeAligner
from bollscan.signals.bollinger import RollingStatEngine
from bollscan.signals.models import (
    Band,
    ConditionSet,
    PositionState,
    ScanParameters,
    Signal,
    TickEvaluation,
    Trade,
)
from bollscan.signals.open_interest import OpenInterestTracker, check_open_interest
from bollscan.signals.volume import check_volume_burst
from bollscan.signals.window import TimeSeriesWindow

logger = get_logger(__name__)


class _SymbolScan:
    """Per-symbol scan state: windows, cursors, engines and OI tracker.

    Owned by a single scan invocation and discarded afterwards.
    """

    def __init__(
        self,
        params: ScanParameters,
        symbol: str,
        primary: Iterable[Candle],
        mid: Iterable[Candle],
        coarse: Iterable[Candle],
        metrics: Iterable[MetricSample] | None,
    ) -> None:
        self._params = params
        mode = params.access_mode
        size = params.stream_window_size

        self._primary = TimeSeriesWindow.for_mode(primary, mode, size, name=f"{symbol}/primary")
        mid_window = TimeSeriesWindow.for_mode(mid, mode, size, name=f"{symbol}/mid")
        self._coarse = TimeSeriesWindow.for_mode(coarse, mode, size, name=f"{symbol}/coarse")
        mid_window.fill_initial()
        self._coarse.fill_initial()
        windows: dict[str, TimeSeriesWindow] = {"mid": mid_window, "coarse": self._coarse}

        self.has_metrics = False
        if metrics is not None:
            metrics_window = TimeSeriesWindow.for_mode(
                metrics, mode, params.metrics_window_size, name=f"{symbol}/metrics"
            )
            if metrics_window.fill_initial() > 0:
                self.has_metrics = True
                windows["metrics"] = metrics_window

        self._aligner = TimeframeAligner(windows, keep_behind=params.volume_lookback)

        history = params.history_check_count
        self._primary_stats = RollingStatEngine(params.boll_period, params.boll_std_dev, history)
        self._mid_stats = RollingStatEngine(params.boll_period, params.boll_std_dev, history)
        self._coarse_stats = RollingStatEngine(params.boll_period, params.boll_std_dev, history)
        self._oi = OpenInterestTracker(params.oi_lookback_ms)

        self._aligned = False
        self.ticks_seen = 0
        self.ticks_skipped = 0

    def ticks(self) -> Iterator[tuple[int, Candle]]:
        """Advance the primary series bar by bar, updating all per-series state.

        Yields:
            (index, candle) for each primary bar, index counting from 0.
        """
        index = -1
        while True:
            candle = self._primary.advance()
            if candle is None:
                return
            index += 1
            self.ticks_seen += 1
            self._primary_stats.push(candle.close)

            alignment = self._aligner.align(candle.timestamp_ms)
            for record in alignment["mid"].passed:
                self._mid_stats.push(record.close)
            for record in alignment["coarse"].passed:
                self._coarse_stats.push(record.close)
            if self.has_metrics:
                for sample in alignment["metrics"].passed:
                    self._oi.push(sample)

            self._aligned = all(a.aligned for a in alignment.values())
            yield index, candle

    def primary_band(self) -> Band | None:
        """Primary band at the current bar, None until the engine is ready."""
        if not self._primary_stats.is_ready:
            return None
        return self._primary_stats.band()

    def evaluate(self, index: int, candle: Candle) -> TickEvaluation | None:
        """Evaluate the seven conditions at the current bar.

        Returns None when the bar is not evaluable: a secondary series could
        not reach the bar's time, or a timeframe holds fewer than
        ``boll_period`` closes.
        """
        if not (
            self._aligned
            and self._primary_stats.is_ready
            and self._mid_stats.is_ready
            and self._coarse_stats.is_ready
        ):
            self.ticks_skipped += 1
            return None

        p = self._params
        timestamp = candle.timestamp_ms
        price = candle.close
        primary_band = self._primary_stats.band()
        mid_band = self._mid_stats.band()
        coarse_band = self._coarse_stats.band()

        if self.has_metrics:
            current_oi = self._oi.current()
            min_oi = self._oi.minimum(timestamp)
            oi_ok = check_open_interest(current_oi, min_oi, p.oi_multiplier)
        else:
            current_oi, min_oi, oi_ok = 0.0, 0.0, True

        coarse_bars = self._coarse.window_at_or_before(timestamp, last=p.volume_lookback + 1)
        volume_ok, volume_ratio = check_volume_burst(
            [bar.volume for bar in coarse_bars], p.volume_lookback
        )

        conditions = ConditionSet(
            price_above_primary_upper=price > primary_band.upper,
            price_above_mid_middle=price > mid_band.middle,
            price_above_coarse_middle=price > coarse_band.middle,
            primary_history_below_upper=self._primary_stats.count_below(
                primary_band.upper, p.history_check_count
            )
            >= p.history_threshold,
            mid_history_below_middle=self._mid_stats.count_below(
                mid_band.middle, p.history_check_count
            )
            >= p.history_threshold,
            open_interest_ok=oi_ok,
            coarse_volume_burst=volume_ok,
        )
        return TickEvaluation(
            index=index,
            timestamp=timestamp,
            price=price,
            primary_band=primary_band,
            mid_band=mid_band,
            coarse_band=coarse_band,
            current_oi=current_oi,
            min_oi_3d=min_oi,
            volume_ratio=volume_ratio,
            conditions=conditions,
        )


class SignalEvaluator:
    """Runs the breakout conditions over one symbol's series.

    Args:
        parameters: Immutable scan parameters; defaults when omitted.
    """

    def __init__(self, parameters: ScanParameters | None = None) -> None:
        self._params = parameters or ScanParameters()

    @property
    def parameters(self) -> ScanParameters:
        return self._params

    def cooldown_elapsed(self, timestamp: int, last_signal_time: int | None) -> bool:
        """True if a signal at ``timestamp`` is outside the cooldown window."""
        if last_signal_time is None:
            return True
        return timestamp - last_signal_time >= self._params.cooldown_ms

    def iter_evaluations(
        self,
        symbol: str,
        primary: Iterable[Candle],
        mid: Iterable[Candle],
        coarse: Iterable[Candle],
        metrics: Iterable[MetricSample] | None = None,
    ) -> Iterator[TickEvaluation]:
        """Yield the evaluation of every evaluable primary bar, in order.

        No cooldown is applied; this is the raw per-bar condition stream.
        """
        scan = _SymbolScan(self._params, symbol, primary, mid, coarse, metrics)
        for index, candle in scan.ticks():
            evaluation = scan.evaluate(index, candle)
            if evaluation is not None:
                yield evaluation

    def scan_signals(
        self,
        symbol: str,
        primary: Iterable[Candle],
        mid: Iterable[Candle],
        coarse: Iterable[Candle],
        metrics: Iterable[MetricSample] | None = None,
    ) -> list[Signal]:
        """Scan a full history for entry signals.

        Args:
            symbol: Trading pair symbol, copied into each signal.
            primary: Primary (finest) candles sorted by close time.
            mid: Mid timeframe candles sorted by close time.
            coarse: Coarse timeframe candles sorted by close time.
            metrics: Open-interest samples sorted by time, or None.

        Returns:
            Signals in ascending timestamp order, no two within the cooldown.
        """
        scan = _SymbolScan(self._params, symbol, primary, mid, coarse, metrics)
        signals: list[Signal] = []
        last_signal_time: int | None = None

        for index, candle in scan.ticks():
            if not self.cooldown_elapsed(candle.timestamp_ms, last_signal_time):
                continue
            evaluation = scan.evaluate(index, candle)
            if evaluation is None or not evaluation.conditions.all_met:
                continue

            signal = Signal.from_evaluation(symbol, evaluation)
            signals.append(signal)
            last_signal_time = signal.timestamp
            logger.debug(
                "signal_fired",
                symbol=symbol,
                datetime=signal.datetime,
                price=signal.price,
                volume_ratio=round(signal.volume_ratio, 4),
            )

        logger.info(
            "signal_scan_complete",
            symbol=symbol,
            bars=scan.ticks_seen,
            signals=len(signals),
            has_metrics=scan.has_metrics,
        )
        return signals

    def scan_trades(
        self,
        symbol: str,
        primary: Iterable[Candle],
        mid: Iterable[Candle],
        coarse: Iterable[Candle],
        metrics: Iterable[MetricSample] | None = None,
    ) -> list[Trade]:
        """Backtest long entries on signals with a band-crossing exit.

        On a signal at bar i the position is bought at the close of bar i+1.
        From bar i+2 on, the first bar closing below its own primary upper
        band is the exit. The cooldown restarts at the exit time. A position
        still open when the data ends is dropped without a trade.

        Returns:
            Completed trades in ascending buy time order.
        """
        scan = _SymbolScan(self._params, symbol, primary, mid, coarse, metrics)
        trades: list[Trade] = []
        state = PositionState.FLAT
        last_exit_time: int | None = None
        buy_time = 0
        buy_price = 0.0

        for index, candle in scan.ticks():
            if state is PositionState.ENTERING:
                buy_time, buy_price = candle.timestamp_ms, candle.close
                state = PositionState.HOLDING
                continue

            if state is PositionState.HOLDING:
                band = scan.primary_band()
                if band is not None and candle.close < band.upper:
                    trade = Trade.from_legs(
                        symbol, buy_time, buy_price, candle.timestamp_ms, candle.close
                    )
                    trades.append(trade)
                    last_exit_time = trade.sell_time
                    state = PositionState.FLAT
                    logger.debug(
                        "trade_closed",
                        symbol=symbol,
                        buy_price=buy_price,
                        sell_price=trade.sell_price,
                        profit_pct=round(trade.profit_pct, 4),
                    )
                continue

            if not self.cooldown_elapsed(candle.timestamp_ms, last_exit_time):
                continue
            evaluation = scan.evaluate(index, candle)
            if evaluation is not None and evaluation.conditions.all_met:
                state = PositionState.ENTERING

        if state is not PositionState.FLAT:
            logger.debug("open_position_dropped", symbol=symbol, state=state.value)

        logger.info(
            "trade_scan_complete",
            symbol=symbol,
            bars=scan.ticks_seen,
            trades=len(trades),
            has_metrics=scan.has_metrics,
        )
        return trades

    def evaluate_latest(
        self,
        symbol: str,
        primary: Iterable[Candle],
        mid: Iterable[Candle],
        coarse: Iterable[Candle],
        metrics: Iterable[MetricSample] | None = None,
        last_signal_time: int | None = None,
    ) -> Signal | None:
        """Check whether a signal fires on the final primary bar.

        Used by the live monitor: the primary series should contain closed
        bars only. ``last_signal_time`` is the symbol's previous signal time
        carried across monitor cycles.

        Returns:
            The signal for the last bar, or None.
        """
        scan = _SymbolScan(self._params, symbol, primary, mid, coarse, metrics)
        last: tuple[int, Candle] | None = None
        for tick in scan.ticks():
            last = tick

        if last is None:
            return None
        index, candle = last
        if not self.cooldown_elapsed(candle.timestamp_ms, last_signal_time):
            logger.debug("signal_in_cooldown", symbol=symbol, last_signal_time=last_signal_time)
            return None

        evaluation = scan.evaluate(index, candle)
        if evaluation is None:
            logger.debug("latest_bar_not_evaluable", symbol=symbol, bars=scan.ticks_seen)
            return None
        if not evaluation.conditions.all_met:
            return None
        return Signal.from_evaluation(symbol, evaluation)
