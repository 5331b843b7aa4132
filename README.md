# ttseries

Time-series helpers for SQLite. The package floors timestamps into fixed-width
buckets, gives series a canonical identity, packs real-valued samples into
columnar segments, and plans the parameterised SQL that writes, rolls up and
expires them in a small `_tts_*` catalog. It can also keep simple hypertables
and register two scalar SQL functions on a `sqlite3` connection. It depends on
nothing outside the standard library.

## Install

```
pip install ttseries
pip install "ttseries[test]"   # with pytest, for running the test suite
```

## Time buckets

```python
from ttseries.planning import time_bucket_ms, time_bucket_ns

time_bucket_ms(3_600_001, 3_600_000)   # 3_600_000
time_bucket_ms(-500, 1_000)            # -1_000 (floors towards minus infinity)
time_bucket_ns(1_500, 1_000)           # 1_000
```

A width of zero or less raises `InvalidIntervalError`. Every validation error
in `ttseries.planning` derives from `PlanningError`, which is a `ValueError`.

## Series and points

```python
from ttseries.planning import SeriesKey, MetricPoint

series = SeriesKey("temp", [("zone", "a"), ("device", "pump-1")])
series.metric_name   # "temp"
series.tags_json     # '{"device":"pump-1","zone":"a"}'

point = MetricPoint.real(series, 100, 23.5).with_quality(1)
event = MetricPoint.blob(series, 10, [1, 2, 3])
```

Tags may be given as pairs or as a mapping. They are sorted and escaped into a
compact JSON object, so keys built from the same tags in any order are equal.
A blank metric name raises `EmptyMetricNameError` and an empty tag key raises
`EmptyTagKeyError`. `MetricPoint.real` raises `NonFiniteValueError` for NaN or
an infinite value.

## Planning SQL

`ttseries.planning` and `ttseries.columnar` return `SqlStatement` (SQL text
with `?` placeholders and a tuple of binds) and `SqlBatch` (statements in
order). These functions never touch a database.

- `plan_write_batch(points)` upserts each series once, then writes one sample
  row per point, real values into `value_real` and bytes into `value_blob`.
- `plan_add_retention_policy(target_table, retention_interval_ns)` and
  `plan_create_rollup_policy(source_table, rollup_table, bucket_ns, aggregates)`
  write policy rows. `encode_rollup_aggregates` stores the `RollupAggregate`
  set as unique names, sorted and comma-joined (`"avg,count"`).
- Table names must be simple ASCII identifiers; anything else raises
  `InvalidIdentifierError`.

### Columnar segments

```python
from ttseries.planning import SeriesKey, MetricPoint
from ttseries.columnar import build_columnar_segments, plan_write_columnar_segments

series = SeriesKey("temp", {"device": "pump-1"})
points = [MetricPoint.real(series, s * 1_000_000_000, float(s)) for s in range(120)]
segments = build_columnar_segments("_tts_samples", 60_000_000_000, points)   # two segments
batch = plan_write_columnar_segments(segments)
```

`build_columnar_segments` groups points by series and chunk, sorts each group
by timestamp, and packs `ts_ns`, `value_real` and `quality` as little-endian
i64, f64 and i32 blobs, with min, max and sum. Blob-valued points raise
`ColumnarRequiresRealValueError`. The module also plans
`plan_create_hypertable`, `plan_delete_columnar_chunks_before`,
`plan_query_columnar_rollup` and `plan_refresh_columnar_rollup`.

## Running plans on sqlite3

```python
import sqlite3
from ttseries.sqlite_exec import execute_batch, execute_statement

with sqlite3.connect("metrics.db") as conn:
    changed = execute_batch(conn, batch)
```

`execute_statement` returns the rows one statement changed, and
`execute_batch` returns the sum over the batch. The caller owns the
transaction.

## Catalog

`ttseries.catalog` holds `SCHEMA_VERSION`, the catalog table names
(`CATALOG_TABLES`), the `VIEW_HYPERTABLE_OVERVIEW` SQL, and
`scan_create_table_names(sql)`, which lists the names in
`CREATE TABLE IF NOT EXISTS` lines of a script.

## Hypertables and scalar functions

```python
import sqlite3
from ttseries.hypertable_ext import HypertableTable, register_extension

conn = sqlite3.connect(":memory:")
register_extension(conn)
conn.execute("SELECT tts_time_bucket_ns(1500, 1000)").fetchone()   # (1000,)

samples = HypertableTable.create(conn, ["samples", 60_000_000_000])
rowid = samples.insert([1_778_544_000_000_000_000, 23.4, 7])
samples.scan()   # [HypertableRow(rowid=1, ts_ns=..., value_real=23.4, quality=7)]
```

`tts_extension_loaded()` returns `"turso-timeseries-ext"`.
`tts_time_bucket_ns` returns NULL when an argument is missing or the width is
not positive. A hypertable creates `_tts_hypertables` and
`_tts_hypertable_rows` when they are missing. The chunk interval defaults to
60 seconds.

## What the package does not do

- It does not ship the catalog migration scripts and does not create the
  catalog tables that the planned statements write to (`_tts_series`,
  `_tts_samples`, `_tts_chunks`, `_tts_segments`, and the rest). Those tables
  must exist before a plan is executed. Only `HypertableTable` creates its own
  two tables.
- It does not parse line protocol, parse duration strings such as `"5m"`,
  compute aggregates or moving averages in memory, or run maintenance jobs.
  Rollups are computed by the SQL that `ttseries.columnar` plans.
- It has no command-line program and no server.