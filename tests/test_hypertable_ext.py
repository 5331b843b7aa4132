import sqlite3

import pytest

from ttseries.hypertable_ext import (
    HypertableRow,
    HypertableTable,
    is_simple_identifier,
    register_extension,
    trim_sql_quotes,
    tts_extension_loaded,
    tts_time_bucket_ns,
)


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    yield connection
    connection.close()


def test_extension_loaded_name():
    assert tts_extension_loaded() == "turso-timeseries-ext"


def test_time_bucket_ns_scalar():
    assert tts_time_bucket_ns(1500, 1000) == 1000
    assert tts_time_bucket_ns(1778544000000000000, 60000000000) == 1778544000000000000


@pytest.mark.parametrize("args", [(1500, 0), (1500, -5), (None, 1000), ("x", 1000), (1500, None)])
def test_time_bucket_ns_null_on_bad_args(args):
    assert tts_time_bucket_ns(*args) is None


def test_time_bucket_ns_negative_floors():
    bucket = tts_time_bucket_ns(-1, 1000)
    assert bucket <= -1
    assert bucket % 1000 == 0
    assert -1 - bucket < 1000


def test_register_extension_sql(conn):
    register_extension(conn)
    assert conn.execute("SELECT tts_extension_loaded()").fetchone()[0] == "turso-timeseries-ext"
    assert conn.execute("SELECT tts_time_bucket_ns(1500, 1000)").fetchone()[0] == 1000
    assert conn.execute("SELECT tts_time_bucket_ns(1500, 0)").fetchone()[0] is None


@pytest.mark.parametrize(
    "raw,expected",
    [('"samples"', "samples"), ("`samples`", "samples"), ("'samples'", "samples"),
     ("  samples  ", "samples"), ('"samples`', '"samples`'), ('"', '"')],
)
def test_trim_sql_quotes(raw, expected):
    assert trim_sql_quotes(raw) == expected


@pytest.mark.parametrize(
    "ident,ok",
    [("samples", True), ("_tts", True), ("a1_b", True), ("1abc", False),
     ("bad-name", False), ("", False), ("sé", False)],
)
def test_is_simple_identifier(ident, ok):
    assert is_simple_identifier(ident) is ok


def test_create_parses_args(conn):
    table = HypertableTable.create(conn, ["'samples'", 5_000])
    assert table.table_name == "samples"
    assert table.chunk_interval_ns == 5_000


def test_create_default_interval(conn):
    table = HypertableTable.create(conn, ["samples"])
    assert table.chunk_interval_ns == 60_000_000_000


@pytest.mark.parametrize("args", [[], ["bad-name"], ["samples", 0], ["samples", -1], [None]])
def test_create_rejects_bad_args(conn, args):
    with pytest.raises(ValueError):
        HypertableTable.create(conn, args)


def test_insert_and_scan_orders_by_time(conn):
    table = HypertableTable.create(conn, ["samples", 60000000000])
    second = table.insert([200, 2.5, 1])
    first = table.insert([100, None])
    rows = table.scan()
    assert [row.ts_ns for row in rows] == [100, 200]
    assert rows[0] == HypertableRow(rowid=first, ts_ns=100, value_real=None, quality=0)
    assert rows[1] == HypertableRow(rowid=second, ts_ns=200, value_real=2.5, quality=1)


def test_insert_requires_ts(conn):
    table = HypertableTable.create(conn, ["samples"])
    with pytest.raises(ValueError, match="requires ts_ns"):
        table.insert([])


def test_update_and_delete(conn):
    table = HypertableTable.create(conn, ["samples"])
    rowid = table.insert([100, 1.0, 0])
    other = table.insert([300, 3.0, 0])
    table.update(rowid, [400, 4.0, 2])
    assert [(r.rowid, r.ts_ns, r.value_real, r.quality) for r in table.scan()] == [
        (other, 300, 3.0, 0),
        (rowid, 400, 4.0, 2),
    ]
    table.delete(other)
    assert [r.rowid for r in table.scan()] == [rowid]


def test_tables_are_isolated(conn):
    a = HypertableTable.create(conn, ["a"])
    b = HypertableTable.create(conn, ["b"])
    a.insert([1, 1.0])
    b.insert([2, 2.0])
    b.insert([3, 3.0])
    assert [r.ts_ns for r in a.scan()] == [1]
    assert [r.ts_ns for r in b.scan()] == [2, 3]


def test_catalog_row_written_once(conn):
    table = HypertableTable.create(conn, ["samples", 60000000000])
    table.insert([1, 1.0])
    table.insert([2, 2.0])
    rows = conn.execute(
        "SELECT table_name, time_column, chunk_interval_ns, storage_layout FROM _tts_hypertables"
    ).fetchall()
    assert rows == [("samples", "ts_ns", 60000000000, "columnar")]


def test_catalog_interval_updated(conn):
    HypertableTable.create(conn, ["samples", 60000000000]).scan()
    HypertableTable.create(conn, ["samples", 5_000]).scan()
    intervals = conn.execute("SELECT chunk_interval_ns FROM _tts_hypertables").fetchall()
    assert intervals == [(5_000,)]