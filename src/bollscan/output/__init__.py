"""Result sinks -- CSV files and email notifications."""

from bollscan.output.csv_writer import CsvWriter
from bollscan.output.notifier import EmailNotifier

__all__ = ["CsvWriter", "EmailNotifier"]
