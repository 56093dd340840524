"""Tests for coarse volume burst detection."""

import pytest

from bollscan.signals.volume import check_volume_burst


class TestCheckVolumeBurst:
    """Tests for check_volume_burst."""

    def test_burst_passes(self) -> None:
        passes, ratio = check_volume_burst([1.0] * 6 + [10.0])
        assert passes is True
        assert ratio == pytest.approx(20.0 / 6.0)

    def test_exactly_half_the_sum_fails(self) -> None:
        # 3 * 2 == 6: not strictly greater
        passes, ratio = check_volume_burst([1.0] * 6 + [3.0])
        assert passes is False
        assert ratio == pytest.approx(1.0)

    def test_only_trailing_bars_used(self) -> None:
        volumes = [1000.0] * 10 + [1.0] * 6 + [4.0]
        passes, _ = check_volume_burst(volumes)
        assert passes is True

    def test_too_few_bars(self) -> None:
        assert check_volume_burst([1.0] * 6) == (False, 0.0)

    def test_zero_prior_volume(self) -> None:
        passes, ratio = check_volume_burst([0.0] * 6 + [5.0])
        assert passes is True
        assert ratio == 0.0

    def test_custom_lookback(self) -> None:
        passes, ratio = check_volume_burst([2.0, 2.0, 3.0], lookback=2)
        assert passes is True
        assert ratio == pytest.approx(1.5)
