"""Coarse-timeframe volume burst detection.

The current bar qualifies when twice its volume exceeds the combined volume
of the ``lookback`` bars before it.
"""

from collections.abc import Sequence


def check_volume_burst(volumes: Sequence[float], lookback: int = 6) -> tuple[bool, float]:
    """Check the volume burst condition on the latest bar.

    Args:
        volumes: Bar volumes oldest first; the last element is the current bar.
            Only the trailing ``lookback + 1`` entries are used.
        lookback: Number of prior bars summed for comparison.

    Returns:
        (passes, volume_ratio) where volume_ratio = current * 2 / sum of the
        prior bars, or 0.0 when that sum is zero. (False, 0.0) when fewer than
        ``lookback + 1`` bars are available.
    """
    if len(volumes) < lookback + 1:
        return False, 0.0

    current = volumes[-1]
    prior_sum = sum(volumes[-(lookback + 1) : -1])
    ratio = current * 2.0 / prior_sum if prior_sum > 0 else 0.0
    return current * 2.0 > prior_sum, ratio
