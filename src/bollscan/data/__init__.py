"""Market data layer.

Provides the candle/open-interest record models, lazy CSV sources for
historical data, symbol discovery, the ccxt-based live data client, and the
bulk archive downloader that fills the historical data directory.
"""

from bollscan.data.downloader import HistoricalDownloader, plan_downloads
from bollscan.data.fetcher import MarketDataClient
from bollscan.data.models import Candle, MarketSnapshot, MetricSample
from bollscan.data.sources import discover_symbols, has_metrics, iter_klines, iter_metrics
from bollscan.data.universe import select_top_symbols

__all__ = [
    "Candle",
    "HistoricalDownloader",
    "MarketDataClient",
    "MarketSnapshot",
    "MetricSample",
    "discover_symbols",
    "has_metrics",
    "iter_klines",
    "iter_metrics",
    "plan_downloads",
    "select_top_symbols",
]
