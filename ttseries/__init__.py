"""Time-series helpers for SQLite: time buckets, series identity, columnar segments and SQL planning."""

__version__ = "0.1.0"