"""Configuration system using pydantic-settings with environment variable loading."""

from datetime import date
from typing import TYPE_CHECKING, Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from bollscan.signals.models import ScanParameters


class ScannerSettings(BaseSettings):
    """Breakout pattern parameters shared by scan, backtest and monitor.

    All fields configurable via SCANNER_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="SCANNER_")

    # Bollinger bands
    boll_period: int = 400
    boll_std_dev: float = 2.0

    # Mean-reversion history check
    history_check_count: int = 50
    history_threshold: int = 25

    # Open interest: current * multiplier must exceed the trailing minimum
    oi_multiplier: float = 0.91
    oi_lookback_hours: int = 72

    # Coarse timeframe volume burst
    volume_lookback: int = 6

    cooldown_hours: int = 48

    # Timeframes, finest first
    primary_interval: str = "15m"
    mid_interval: str = "30m"
    coarse_interval: str = "4h"

    # Record access strategy
    access_mode: Literal["batch", "streaming"] = "batch"
    stream_window_size: int = 500  # candles kept per series in streaming mode
    metrics_window_size: int = 1200  # 3 days of 5m samples plus slack

    @property
    def intervals(self) -> tuple[str, str, str]:
        """Primary, mid and coarse interval names."""
        return (self.primary_interval, self.mid_interval, self.coarse_interval)

    def to_parameters(self) -> "ScanParameters":
        """Freeze these settings into the immutable evaluator parameters."""
        from bollscan.signals.models import AccessMode, ScanParameters

        return ScanParameters(
            boll_period=self.boll_period,
            boll_std_dev=self.boll_std_dev,
            history_check_count=self.history_check_count,
            history_threshold=self.history_threshold,
            oi_multiplier=self.oi_multiplier,
            oi_lookback_ms=self.oi_lookback_hours * 3_600_000,
            volume_lookback=self.volume_lookback,
            cooldown_ms=self.cooldown_hours * 3_600_000,
            access_mode=AccessMode(self.access_mode),
            stream_window_size=self.stream_window_size,
            metrics_window_size=self.metrics_window_size,
        )


class DataSettings(BaseSettings):
    """Historical data location and result output paths."""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    data_path: str = "data"
    signals_output: str = "output/signals.csv"
    trades_output: str = "output/trades.csv"
    live_signals_output: str = "output/live_signals.csv"
    max_workers: int | None = None  # None = one worker per CPU


class ExchangeSettings(BaseSettings):
    """Binance USD-M futures market data settings for the live monitor."""

    model_config = SettingsConfigDict(env_prefix="BINANCE_")

    kline_limit: int = 1000  # must exceed boll_period + history_check_count
    oi_period: str = "15m"
    oi_limit: int = 288  # 3 days of 15m samples
    max_concurrent_requests: int = 5
    max_retries: int = 3
    retry_base_delay: float = 1.0
    top_n: int = 200  # universe size by 24h quote volume
    symbols: list[str] = []  # explicit universe; overrides top_n when set


class DownloadSettings(BaseSettings):
    """Bulk historical archive download from the public Binance data mirror."""

    model_config = SettingsConfigDict(env_prefix="DOWNLOAD_")

    base_url: str = "https://data.binance.vision/data/futures/um"
    top_n: int = 250  # symbols by 24h quote volume when none are given
    concurrency: int = 50
    start_date: date | None = None  # None = first day of the month history_years ago
    end_date: date | None = None  # None = today (UTC)
    history_years: int = 5
    metrics_lag_days: int = 2  # most recent daily metrics archives are often incomplete
    timeout_total: float = 30.0
    timeout_connect: float = 10.0
    max_retries: int = 3
    retry_base_delay: float = 1.0


class SchedulerSettings(BaseSettings):
    """Live monitor cycle timing."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    interval_minutes: int = 15
    heartbeat_threshold: int = 100  # cycles without signals before a heartbeat


class EmailSettings(BaseSettings):
    """SMTP notification settings."""

    model_config = SettingsConfigDict(env_prefix="EMAIL_")

    enabled: bool = False
    smtp_server: str = "smtp.163.com"
    smtp_port: int = 994
    username: str = ""
    password: SecretStr = SecretStr("")
    from_addr: str = ""
    to_addr: str = ""
    timeout_seconds: float = 30.0


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    scanner: ScannerSettings = ScannerSettings()
    data: DataSettings = DataSettings()
    exchange: ExchangeSettings = ExchangeSettings()
    scheduler: SchedulerSettings = SchedulerSettings()
    download: DownloadSettings = DownloadSettings()
    email: EmailSettings = EmailSettings()
