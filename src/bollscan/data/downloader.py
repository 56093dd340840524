"""Bulk download of historical Binance USD-M futures archives.

Monthly kline archives and daily metrics (open interest) archives are pulled
from the public data.binance.vision mirror, unzipped, and written into the
layout bollscan.data.sources reads:

    <data>/klines/<SYMBOL>/<INTERVAL>/<SYMBOL>-<INTERVAL>-YYYY-MM.csv
    <data>/metrics/<SYMBOL>/<SYMBOL>-metrics-YYYY-MM-DD.csv

Files already on disk are skipped, so an interrupted run resumes where it
stopped. The current month has no monthly archive yet and is left out of
the plan, as are the most recent days of metrics.
"""

import asyncio
import io
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from pathlib import Path

import aiohttp

from bollscan.config import DownloadSettings
from bollscan.data.sources import kline_dir, metrics_dir
from bollscan.exceptions import DownloadError
from bollscan.logging import get_logger

logger = get_logger(__name__)

RETRY_STATUSES = (429, 500, 502, 503, 504)
PROGRESS_EVERY = 500


class DownloadOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"  # already on disk
    NOT_FOUND = "not_found"  # no archive published for that period
    FAILED = "failed"


@dataclass(frozen=True)
class DownloadTask:
    """One archive to fetch and the CSV path it unpacks to."""

    url: str
    output_path: Path


@dataclass
class DownloadStats:
    success: int = 0
    skipped: int = 0
    not_found: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.success + self.skipped + self.not_found + self.failed

    def record(self, outcome: DownloadOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "skipped": self.skipped,
            "not_found": self.not_found,
            "failed": self.failed,
            "total": self.total,
        }


# ──────────────────────────────────────────────
# Planning
# ──────────────────────────────────────────────


def default_start(today: date, history_years: int = 5) -> date:
    """First day of the month ``history_years`` before ``today``."""
    return date(today.year - history_years, today.month, 1)


def generate_months(start: date, end: date, today: date) -> list[tuple[int, int]]:
    """(year, month) pairs from ``start``'s month through ``end``'s, minus today's month."""
    months = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        if (year, month) != (today.year, today.month):
            months.append((year, month))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return months


def generate_dates(start: date, end: date, today: date, lag_days: int = 2) -> list[date]:
    """Every day from ``start`` through ``end``, stopping ``lag_days`` before ``today``."""
    last = min(end, today - timedelta(days=lag_days))
    days = (last - start).days + 1
    return [start + timedelta(days=i) for i in range(max(days, 0))]


def kline_tasks(
    base_url: str,
    data_path: str | Path,
    symbol: str,
    interval: str,
    months: Iterable[tuple[int, int]],
) -> list[DownloadTask]:
    directory = kline_dir(data_path, symbol, interval)
    tasks = []
    for year, month in months:
        name = f"{symbol}-{interval}-{year}-{month:02d}"
        tasks.append(
            DownloadTask(
                url=f"{base_url}/monthly/klines/{symbol}/{interval}/{name}.zip",
                output_path=directory / f"{name}.csv",
            )
        )
    return tasks


def metrics_tasks(
    base_url: str,
    data_path: str | Path,
    symbol: str,
    dates: Iterable[date],
) -> list[DownloadTask]:
    directory = metrics_dir(data_path, symbol)
    tasks = []
    for day in dates:
        name = f"{symbol}-metrics-{day.isoformat()}"
        tasks.append(
            DownloadTask(
                url=f"{base_url}/daily/metrics/{symbol}/{name}.zip",
                output_path=directory / f"{name}.csv",
            )
        )
    return tasks


def plan_downloads(
    settings: DownloadSettings,
    data_path: str | Path,
    symbols: list[str],
    intervals: Iterable[str],
    klines: bool = True,
    metrics: bool = True,
    today: date | None = None,
) -> list[DownloadTask]:
    """Build the download task list for ``symbols``.

    Args:
        settings: Mirror URL, date range and history depth.
        data_path: Root data directory.
        symbols: Exchange symbol ids, e.g. ["BTCUSDT", "ETHUSDT"].
        intervals: Kline intervals to fetch.
        klines: Include monthly kline archives.
        metrics: Include daily metrics archives.
        today: Reference UTC date; defaults to the current one.

    Returns:
        Tasks grouped by symbol, klines before metrics.
    """
    today = today or datetime.now(timezone.utc).date()
    start = settings.start_date or default_start(today, settings.history_years)
    end = settings.end_date or today
    if start > end:
        raise ValueError(f"start date {start} is after end date {end}")

    months = generate_months(start, end, today) if klines else []
    dates = generate_dates(start, end, today, settings.metrics_lag_days) if metrics else []

    tasks: list[DownloadTask] = []
    for symbol in symbols:
        if klines:
            for interval in intervals:
                tasks.extend(kline_tasks(settings.base_url, data_path, symbol, interval, months))
        if metrics:
            tasks.extend(metrics_tasks(settings.base_url, data_path, symbol, dates))
    return tasks


# ──────────────────────────────────────────────
# Archive handling
# ──────────────────────────────────────────────


def extract_csv(payload: bytes, output_path: Path) -> None:
    """Write the first CSV member of a zip archive to ``output_path``.

    The file is written under a temporary name and renamed into place, so a
    partial write is never mistaken for a finished download.

    Raises:
        zipfile.BadZipFile: If ``payload`` is not a zip archive.
        ValueError: If the archive holds no CSV member.
    """
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        member = next((n for n in archive.namelist() if n.endswith(".csv")), None)
        if member is None:
            raise ValueError("archive has no CSV member")
        data = archive.read(member)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    partial = output_path.with_name(output_path.name + ".part")
    partial.write_bytes(data)
    partial.replace(output_path)


class HistoricalDownloader:
    """Concurrent archive downloader over one aiohttp session.

    Usage:
        async with HistoricalDownloader(settings.download) as downloader:
            stats = await downloader.download(tasks)

    Args:
        settings: Concurrency, timeouts and retry policy.
        session: Existing session to use; the downloader owns and closes a
            session it creates itself.
    """

    def __init__(
        self,
        settings: DownloadSettings,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._settings = settings
        self._session = session
        self._owns_session = session is None
        self._semaphore = asyncio.Semaphore(settings.concurrency)
        self._stats = DownloadStats()

    async def __aenter__(self) -> "HistoricalDownloader":
        if self._session is None:
            timeout = aiohttp.ClientTimeout(
                total=self._settings.timeout_total,
                connect=self._settings.timeout_connect,
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def stats(self) -> DownloadStats:
        return self._stats

    async def download(self, tasks: list[DownloadTask]) -> DownloadStats:
        """Fetch every task, at most ``concurrency`` at a time."""
        if self._session is None:
            raise RuntimeError("Session not initialized. Use 'async with HistoricalDownloader(...)'.")

        logger.info("download_starting", tasks=len(tasks), concurrency=self._settings.concurrency)
        await asyncio.gather(*(self._run_task(task) for task in tasks))
        logger.info("download_complete", **self._stats.to_dict())
        return self._stats

    async def _run_task(self, task: DownloadTask) -> None:
        outcome = await self.fetch_one(task)
        self._stats.record(outcome)
        if self._stats.total % PROGRESS_EVERY == 0:
            logger.info("download_progress", **self._stats.to_dict())

    async def fetch_one(self, task: DownloadTask) -> DownloadOutcome:
        """Download and unpack a single archive."""
        if task.output_path.exists():
            return DownloadOutcome.SKIPPED

        async with self._semaphore:
            try:
                payload = await self._get_archive(task.url)
            except DownloadError as e:
                logger.warning("archive_download_failed", url=task.url, error=str(e))
                return DownloadOutcome.FAILED

        if payload is None:
            logger.debug("archive_not_found", url=task.url)
            return DownloadOutcome.NOT_FOUND

        try:
            await asyncio.to_thread(extract_csv, payload, task.output_path)
        except (zipfile.BadZipFile, ValueError, OSError) as e:
            logger.warning("archive_extract_failed", url=task.url, error=str(e))
            return DownloadOutcome.FAILED
        return DownloadOutcome.SUCCESS

    async def _get_archive(self, url: str) -> bytes | None:
        """GET ``url`` with exponential backoff retry.

        Returns:
            Archive bytes, or None when the mirror answers 404.

        Raises:
            DownloadError: On any other failure after the final attempt.
        """
        max_retries = self._settings.max_retries
        error = "max_retries must be positive"

        for attempt in range(max_retries):
            try:
                async with self._session.get(url) as response:
                    if response.status == 404:
                        return None
                    if response.status == 200:
                        return await response.read()
                    error = f"HTTP {response.status}"
                    if response.status not in RETRY_STATUSES:
                        raise DownloadError(error)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                error = str(e) or type(e).__name__

            if attempt < max_retries - 1:
                delay = self._settings.retry_base_delay * (2**attempt)
                logger.debug("archive_retry", url=url, attempt=attempt + 1, delay=delay, error=error)
                await asyncio.sleep(delay)

        raise DownloadError(error)
