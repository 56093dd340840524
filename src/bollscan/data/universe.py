"""Symbol universe selection for the live monitor.

Selects the top N USDT-margined linear perpetuals by 24-hour quote volume
from the exchange's market and ticker data.
"""


def is_usdt_perpetual(market: dict) -> bool:
    """True for an active USDT-settled linear perpetual swap market."""
    return bool(
        market.get("swap")
        and market.get("linear")
        and market.get("quote") == "USDT"
        and market.get("active", True)
    )


def select_top_symbols(markets: dict, tickers: dict, count: int = 200) -> list[str]:
    """Select the most traded USDT perpetuals.

    Args:
        markets: ccxt markets keyed by unified symbol.
        tickers: ccxt tickers keyed by unified symbol.
        count: Number of symbols to return.

    Returns:
        Unified symbols sorted by 24h quote volume descending, e.g.
        ["BTC/USDT:USDT", "ETH/USDT:USDT", ...]. Symbols without a ticker
        are ranked last.
    """
    candidates = [symbol for symbol, market in markets.items() if is_usdt_perpetual(market)]

    def quote_volume(symbol: str) -> float:
        ticker = tickers.get(symbol) or {}
        return float(ticker.get("quoteVolume") or 0.0)

    candidates.sort(key=quote_volume, reverse=True)
    return candidates[:count]
