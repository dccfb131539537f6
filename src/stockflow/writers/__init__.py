"""Durable sinks for consumed trades."""

from stockflow.writers.daily_csv import CSV_HEADER, DailyCsvWriter

__all__ = ["CSV_HEADER", "DailyCsvWriter"]
