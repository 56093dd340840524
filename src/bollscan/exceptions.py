"""Custom exceptions for the breakout scanner.

All scanner, data-source and notification exceptions live here
to avoid circular imports between modules.
"""


class ScannerError(Exception):
    """Base exception for all scanner errors."""


class InsufficientDataError(ScannerError):
    """Raised when a band is requested before the trailing window is full."""

    def __init__(self, required: int, actual: int) -> None:
        super().__init__(f"Insufficient data: required {required}, actual {actual}")
        self.required = required
        self.actual = actual


class DataSourceError(ScannerError):
    """Raised when a record source fails to read or parse its input.

    Aborts the scan of the affected symbol only.
    """


class MarketDataError(ScannerError):
    """Raised when live market data cannot be fetched after retries."""


class NotificationError(ScannerError):
    """Raised when an email notification cannot be delivered."""


class DownloadError(ScannerError):
    """Raised when a historical archive cannot be fetched after retries."""
