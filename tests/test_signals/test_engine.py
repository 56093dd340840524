"""Tests for SignalEvaluator over the synthetic three-timeframe market."""

import pytest

from bollscan.signals.engine import SignalEvaluator
from bollscan.signals.models import AccessMode, ScanParameters

SYMBOL = "TESTUSDT"


def _scan(evaluator: SignalEvaluator, market: dict, metrics=None):
    return evaluator.scan_signals(SYMBOL, market["primary"], market["mid"], market["coarse"], metrics)


def _trades(evaluator: SignalEvaluator, market: dict, metrics=None):
    return evaluator.scan_trades(SYMBOL, market["primary"], market["mid"], market["coarse"], metrics)


def _streaming() -> ScanParameters:
    return ScanParameters(
        access_mode=AccessMode.STREAMING,
        stream_window_size=60,
        metrics_window_size=60,
    )


class TestScanSignals:
    """Tests for scan_signals."""

    def test_single_breakout_fires_once(self, spike_market, bar_time) -> None:
        signals = _scan(SignalEvaluator(), spike_market)

        assert len(signals) == 1
        signal = signals[0]
        assert signal.symbol == SYMBOL
        assert signal.timestamp == bar_time(420)
        assert signal.price == 110.0
        assert signal.volume_ratio == pytest.approx(20.0 / 6.0)
        assert signal.current_oi == 0.0
        assert signal.min_oi_3d == 0.0

    def test_signal_bands_reflect_breakout(self, spike_market) -> None:
        signal = _scan(SignalEvaluator(), spike_market)[0]
        assert signal.price > signal.primary_band.upper
        assert signal.price > signal.mid_band.middle
        assert signal.price > signal.coarse_band.middle

    def test_cooldown_suppresses_following_bars(self, trade_market, bar_time) -> None:
        signals = _scan(SignalEvaluator(), trade_market)
        assert [s.timestamp for s in signals] == [bar_time(420)]

    def test_zero_cooldown_fires_every_breakout_bar(self, trade_market, bar_time) -> None:
        signals = _scan(SignalEvaluator(ScanParameters(cooldown_ms=0)), trade_market)
        assert [s.timestamp for s in signals] == [bar_time(i) for i in (420, 421, 422, 423)]

    def test_flat_market_has_no_signals(self, spike_market) -> None:
        market = dict(spike_market)
        market["primary"] = spike_market["primary"][:420]
        assert _scan(SignalEvaluator(), market) == []

    def test_too_little_history_has_no_evaluations(self, spike_market) -> None:
        evaluator = SignalEvaluator()
        evaluations = list(
            evaluator.iter_evaluations(
                SYMBOL, spike_market["primary"][:399], spike_market["mid"], spike_market["coarse"]
            )
        )
        assert evaluations == []


class TestIterEvaluations:
    """Tests for the raw per-bar evaluation stream."""

    def test_every_ready_bar_is_evaluated(self, spike_market) -> None:
        evaluations = list(
            SignalEvaluator().iter_evaluations(
                SYMBOL, spike_market["primary"], spike_market["mid"], spike_market["coarse"]
            )
        )
        assert evaluations[0].index == 399
        assert evaluations[-1].index == 499
        assert len(evaluations) == 101

    def test_only_breakout_bar_meets_all_conditions(self, spike_market) -> None:
        evaluations = SignalEvaluator().iter_evaluations(
            SYMBOL, spike_market["primary"], spike_market["mid"], spike_market["coarse"]
        )
        met = [e.index for e in evaluations if e.conditions.all_met]
        assert met == [420]

    def test_breakout_bar_conditions(self, spike_market) -> None:
        evaluations = SignalEvaluator().iter_evaluations(
            SYMBOL, spike_market["primary"], spike_market["mid"], spike_market["coarse"]
        )
        by_index = {e.index: e for e in evaluations}

        spike = by_index[420].conditions
        assert spike.price_above_primary_upper
        assert spike.primary_history_below_upper
        assert spike.mid_history_below_middle
        assert spike.open_interest_ok
        assert spike.coarse_volume_burst

        quiet = by_index[410].conditions
        assert not quiet.price_above_primary_upper
        assert not quiet.all_met


class TestOpenInterestCondition:
    """Tests for the OI condition with metrics supplied."""

    def test_rising_interest_keeps_signal(self, spike_market, metrics_factory, bar_time) -> None:
        signals = _scan(SignalEvaluator(), spike_market, metrics_factory(step=1.0))

        assert [s.timestamp for s in signals] == [bar_time(420)]
        assert signals[0].current_oi == pytest.approx(3126.0)
        assert signals[0].min_oi_3d == pytest.approx(2263.0)

    def test_flat_interest_blocks_signal(self, spike_market, metrics_factory) -> None:
        assert _scan(SignalEvaluator(), spike_market, metrics_factory(step=0.0)) == []

    def test_metrics_ending_early_stop_evaluation(self, spike_market, metrics_factory, bar_time) -> None:
        metrics = metrics_factory(end_ms=bar_time(300))
        assert _scan(SignalEvaluator(), spike_market, metrics) == []

    def test_empty_metrics_treated_as_absent(self, spike_market, bar_time) -> None:
        signals = _scan(SignalEvaluator(), spike_market, [])
        assert [s.timestamp for s in signals] == [bar_time(420)]


class TestScanTrades:
    """Tests for the backtest position machine."""

    def test_entry_next_bar_exit_below_upper(self, trade_market, bar_time) -> None:
        trades = _trades(SignalEvaluator(), trade_market)

        assert len(trades) == 1
        trade = trades[0]
        assert trade.buy_time == bar_time(421)
        assert trade.buy_price == 110.0
        assert trade.sell_time == bar_time(424)
        assert trade.sell_price == 100.0
        assert trade.profit_pct == pytest.approx(-100.0 / 11.0)
        assert trade.hold_hours == pytest.approx(0.75)
        assert trade.is_win is False

    def test_zero_cooldown_does_not_reenter_while_holding(self, trade_market) -> None:
        trades = _trades(SignalEvaluator(ScanParameters(cooldown_ms=0)), trade_market)
        assert len(trades) == 1

    def test_open_position_at_end_is_dropped(self, trade_market) -> None:
        market = dict(trade_market)
        market["primary"] = trade_market["primary"][:424]
        assert _trades(SignalEvaluator(), market) == []

    def test_signal_on_last_bar_has_no_trade(self, spike_market) -> None:
        market = dict(spike_market)
        market["primary"] = spike_market["primary"][:421]
        assert _trades(SignalEvaluator(), market) == []


class TestStreamingMode:
    """Streaming windows must give the same results as batch."""

    def test_signals_match_batch(self, trade_market, metrics_factory) -> None:
        params = ScanParameters(cooldown_ms=0)
        streaming = ScanParameters(
            cooldown_ms=0,
            access_mode=AccessMode.STREAMING,
            stream_window_size=60,
            metrics_window_size=60,
        )
        metrics = metrics_factory(step=1.0)

        batch = _scan(SignalEvaluator(params), trade_market, metrics)
        streamed = _scan(SignalEvaluator(streaming), trade_market, iter(metrics))
        assert streamed == batch
        assert len(batch) == 4

    def test_trades_match_batch(self, trade_market) -> None:
        batch = _trades(SignalEvaluator(), trade_market)
        streamed = _trades(SignalEvaluator(_streaming()), trade_market)
        assert streamed == batch

    def test_streaming_accepts_generators(self, spike_market, bar_time) -> None:
        signals = SignalEvaluator(_streaming()).scan_signals(
            SYMBOL,
            iter(spike_market["primary"]),
            iter(spike_market["mid"]),
            iter(spike_market["coarse"]),
        )
        assert [s.timestamp for s in signals] == [bar_time(420)]


class TestEvaluateLatest:
    """Tests for the live monitor's last-bar check."""

    def test_signal_on_latest_bar(self, spike_market, bar_time) -> None:
        signal = SignalEvaluator().evaluate_latest(
            SYMBOL, spike_market["primary"][:421], spike_market["mid"], spike_market["coarse"]
        )
        assert signal is not None
        assert signal.timestamp == bar_time(420)

    def test_latest_bar_without_breakout(self, spike_market) -> None:
        signal = SignalEvaluator().evaluate_latest(
            SYMBOL, spike_market["primary"][:422], spike_market["mid"], spike_market["coarse"]
        )
        assert signal is None

    def test_cooldown_from_previous_cycle(self, spike_market, bar_time) -> None:
        signal = SignalEvaluator().evaluate_latest(
            SYMBOL,
            spike_market["primary"][:421],
            spike_market["mid"],
            spike_market["coarse"],
            last_signal_time=bar_time(420) - 3_600_000,
        )
        assert signal is None

    def test_empty_primary(self, spike_market) -> None:
        signal = SignalEvaluator().evaluate_latest(SYMBOL, [], spike_market["mid"], spike_market["coarse"])
        assert signal is None


class TestCooldownElapsed:
    """Tests for cooldown_elapsed."""

    def test_no_previous_signal(self) -> None:
        assert SignalEvaluator().cooldown_elapsed(1_000, None) is True

    def test_boundary_is_inclusive(self) -> None:
        evaluator = SignalEvaluator(ScanParameters(cooldown_ms=1_000))
        assert evaluator.cooldown_elapsed(2_000, 1_000) is True
        assert evaluator.cooldown_elapsed(1_999, 1_000) is False

    def test_invalid_parameters_rejected(self) -> None:
        with pytest.raises(ValueError):
            ScanParameters(boll_period=1)
