"""Run planned SQL statements against a ``sqlite3`` connection."""

from __future__ import annotations

import sqlite3

from ttseries.planning import SqlBatch, SqlStatement


def execute_statement(conn: sqlite3.Connection, statement: SqlStatement) -> int:
    """Execute one planned statement and return the number of rows it changed."""
    cursor = conn.execute(statement.sql, tuple(statement.params))
    return max(cursor.rowcount, 0)


def execute_batch(conn: sqlite3.Connection, batch: SqlBatch) -> int:
    """Execute every statement of a batch in order; the caller owns the transaction."""
    return sum(execute_statement(conn, statement) for statement in batch.statements)