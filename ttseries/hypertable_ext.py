"""The ``tts_hypertable`` table and scalar SQL functions on a ``sqlite3`` connection."""

from __future__ import annotations

import math
import re
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Optional

EXTENSION_NAME = "turso-timeseries-ext"
DEFAULT_CHUNK_INTERVAL_NS = 60_000_000_000

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_QUOTE_PAIRS = {"`": "`", '"': '"', "'": "'"}

_CREATE_HYPERTABLES = """CREATE TABLE _tts_hypertables (
    hypertable_id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    time_column TEXT NOT NULL DEFAULT 'ts_ns',
    chunk_interval_ns INTEGER NOT NULL,
    storage_layout TEXT NOT NULL DEFAULT 'columnar',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (table_name)
)"""

_CREATE_ROWS = """CREATE TABLE _tts_hypertable_rows (
    table_name TEXT NOT NULL,
    rowid INTEGER PRIMARY KEY AUTOINCREMENT,
    ts_ns INTEGER NOT NULL,
    value_real REAL,
    quality INTEGER NOT NULL DEFAULT 0
)"""


def _to_integer(value: Any) -> Optional[int]:
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return None


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _to_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _arg(args: Sequence[Any], index: int) -> Any:
    return args[index] if index < len(args) else None


def tts_extension_loaded() -> str:
    """Name reported by the extension once it is registered."""
    return EXTENSION_NAME


def tts_time_bucket_ns(ts_ns: Any, width_ns: Any) -> Optional[int]:
    """Floor ``ts_ns`` to a bucket of ``width_ns``; NULL for missing or bad arguments."""
    ts = _to_integer(ts_ns)
    width = _to_integer(width_ns)
    if ts is None or width is None or width <= 0:
        return None
    return ts - ts % width


def register_extension(conn: sqlite3.Connection) -> None:
    """Register the extension's scalar functions on ``conn``."""
    conn.create_function("tts_extension_loaded", 0, tts_extension_loaded, deterministic=True)
    conn.create_function("tts_time_bucket_ns", 2, tts_time_bucket_ns, deterministic=True)


def trim_sql_quotes(value: str) -> str:
    """Strip surrounding whitespace and one pair of matching SQL quotes."""
    trimmed = value.strip()
    if len(trimmed) >= 2 and _QUOTE_PAIRS.get(trimmed[0]) == trimmed[-1]:
        return trimmed[1:-1]
    return trimmed


def is_simple_identifier(identifier: str) -> bool:
    """True for an ASCII identifier: a letter or underscore, then letters, digits, underscores."""
    return _IDENTIFIER.fullmatch(identifier) is not None


@dataclass(frozen=True)
class HypertableRow:
    """One stored row of a hypertable."""

    rowid: int
    ts_ns: int
    value_real: Optional[float]
    quality: int


def _parse_row_args(args: Sequence[Any]) -> HypertableRow:
    ts_ns = _to_integer(_arg(args, 0))
    if ts_ns is None:
        raise ValueError("tts_hypertable requires ts_ns")
    raw_value = _arg(args, 1)
    value_real = None if raw_value is None else _to_float(raw_value)
    quality = _to_integer(_arg(args, 2)) or 0
    return HypertableRow(rowid=0, ts_ns=ts_ns, value_real=value_real, quality=quality)


def _object_exists(conn: sqlite3.Connection, object_type: str, name: str) -> bool:
    cursor = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = ? AND name = ?", (object_type, name)
    )
    return cursor.fetchone() is not None


class HypertableTable:
    """A hypertable whose rows live in the shared ``_tts_hypertable_rows`` table."""

    SCHEMA = "CREATE TABLE x (ts_ns INTEGER, value_real REAL, quality INTEGER)"

    def __init__(self, conn: sqlite3.Connection, table_name: str, chunk_interval_ns: int) -> None:
        self.conn = conn
        self.table_name = table_name
        self.chunk_interval_ns = chunk_interval_ns

    @classmethod
    def create(cls, conn: sqlite3.Connection, args: Sequence[Any]) -> HypertableTable:
        """Open a hypertable from ``(table_name[, chunk_interval_ns])`` arguments."""
        raw_name = _arg(args, 0)
        text = None if raw_name is None else _to_text(raw_name)
        if text is None:
            raise ValueError("tts_hypertable requires a table name")
        table_name = trim_sql_quotes(text)
        if not is_simple_identifier(table_name):
            raise ValueError(f"invalid hypertable name: {table_name!r}")
        interval = _to_integer(_arg(args, 1))
        if interval is None:
            interval = DEFAULT_CHUNK_INTERVAL_NS
        if interval <= 0:
            raise ValueError(f"chunk interval must be positive, got {interval}")
        return cls(conn, table_name, interval)

    def _ensure_storage(self) -> None:
        if not _object_exists(self.conn, "table", "_tts_hypertables"):
            self.conn.execute(_CREATE_HYPERTABLES)
        if not _object_exists(self.conn, "table", "_tts_hypertable_rows"):
            self.conn.execute(_CREATE_ROWS)
        self.conn.execute(
            "UPDATE _tts_hypertables "
            "SET time_column = 'ts_ns', chunk_interval_ns = ?, storage_layout = 'columnar' "
            "WHERE table_name = ?",
            (self.chunk_interval_ns, self.table_name),
        )
        self.conn.execute(
            "INSERT INTO _tts_hypertables "
            "(table_name, time_column, chunk_interval_ns, storage_layout) "
            "SELECT ?, 'ts_ns', ?, 'columnar' "
            "WHERE NOT EXISTS (SELECT 1 FROM _tts_hypertables WHERE table_name = ?)",
            (self.table_name, self.chunk_interval_ns, self.table_name),
        )

    def insert(self, args: Sequence[Any]) -> int:
        """Insert a row from ``(ts_ns, value_real, quality)`` and return its rowid."""
        self._ensure_storage()
        row = _parse_row_args(args)
        cursor = self.conn.execute(
            "INSERT INTO _tts_hypertable_rows (table_name, ts_ns, value_real, quality) "
            "VALUES (?, ?, ?, ?)",
            (self.table_name, row.ts_ns, row.value_real, row.quality),
        )
        return cursor.lastrowid or 0

    def update(self, rowid: int, args: Sequence[Any]) -> None:
        """Replace the columns of row ``rowid``."""
        self._ensure_storage()
        row = _parse_row_args(args)
        self.conn.execute(
            "UPDATE _tts_hypertable_rows SET ts_ns = ?, value_real = ?, quality = ? "
            "WHERE table_name = ? AND rowid = ?",
            (row.ts_ns, row.value_real, row.quality, self.table_name, rowid),
        )

    def delete(self, rowid: int) -> None:
        """Remove row ``rowid``."""
        self._ensure_storage()
        self.conn.execute(
            "DELETE FROM _tts_hypertable_rows WHERE table_name = ? AND rowid = ?",
            (self.table_name, rowid),
        )

    def scan(self) -> list[HypertableRow]:
        """Every row of this hypertable, ordered by timestamp then rowid."""
        self._ensure_storage()
        cursor = self.conn.execute(
            "SELECT rowid, ts_ns, value_real, quality FROM _tts_hypertable_rows "
            "WHERE table_name = ? ORDER BY ts_ns, rowid",
            (self.table_name,),
        )
        return [
            HypertableRow(
                rowid=_to_integer(rowid) or 0,
                ts_ns=_to_integer(ts_ns) or 0,
                value_real=None if value is None else _to_float(value),
                quality=_to_integer(quality) or 0,
            )
            for rowid, ts_ns, value, quality in cursor
        ]