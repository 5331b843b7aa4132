"""Columnar real-valued segments and the SQL that stores, rolls up and expires them."""

from __future__ import annotations

import functools
import operator
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass

from ttseries.planning import (
    ColumnarRequiresRealValueError,
    InvalidIntervalError,
    MetricPoint,
    SeriesKey,
    SqlBatch,
    SqlStatement,
    encode_f64_le_column,
    encode_i32_le_column,
    encode_i64_le_column,
    time_bucket_ns,
    validate_identifier,
)


@dataclass(frozen=True)
class ColumnarSegment:
    """One real-valued segment whose columns are packed into separate blobs."""

    table_name: str
    series: SeriesKey
    chunk_interval_ns: int
    chunk_start_ns: int
    chunk_end_ns: int
    segment_start_ns: int
    segment_end_ns: int
    row_count: int
    ts_ns_blob: bytes
    value_real_blob: bytes
    quality_blob: bytes
    min_value_real: float
    max_value_real: float
    sum_value_real: float


def _require_positive(name: str, value: int) -> None:
    if value <= 0:
        raise InvalidIntervalError(name, value)


def build_columnar_segments(
    table_name: str, chunk_interval_ns: int, points: Sequence[MetricPoint]
) -> list[ColumnarSegment]:
    """Build one segment per (series, chunk) group, ordered by series then chunk."""
    validate_identifier(table_name)
    _require_positive("chunk_interval_ns", chunk_interval_ns)

    grouped: defaultdict[tuple[SeriesKey, int], list[MetricPoint]] = defaultdict(list)
    for point in points:
        if isinstance(point.value, (bytes, bytearray)):
            raise ColumnarRequiresRealValueError()
        chunk_start = time_bucket_ns(point.ts_ns, chunk_interval_ns)
        grouped[(point.series, chunk_start)].append(point)

    segments = []
    for (series, chunk_start), group in sorted(grouped.items(), key=lambda item: item[0]):
        group.sort(key=lambda point: point.ts_ns)
        times = [point.ts_ns for point in group]
        values = [float(point.value) for point in group]
        qualities = [int(point.quality) for point in group]
        segments.append(
            ColumnarSegment(
                table_name=table_name,
                series=series,
                chunk_interval_ns=chunk_interval_ns,
                chunk_start_ns=chunk_start,
                chunk_end_ns=chunk_start + chunk_interval_ns,
                segment_start_ns=times[0],
                segment_end_ns=times[-1],
                row_count=len(times),
                ts_ns_blob=encode_i64_le_column(times),
                value_real_blob=encode_f64_le_column(values),
                quality_blob=encode_i32_le_column(qualities),
                min_value_real=min(values),
                max_value_real=max(values),
                sum_value_real=functools.reduce(operator.add, values, 0.0),
            )
        )
    return segments


_UPSERT_HYPERTABLE = (
    "INSERT INTO _tts_hypertables (table_name, time_column, chunk_interval_ns, storage_layout) "
    "VALUES (?, 'ts_ns', ?, 'columnar') ON CONFLICT(table_name) DO UPDATE SET "
    "chunk_interval_ns = excluded.chunk_interval_ns, storage_layout = 'columnar'"
)
_UPSERT_SERIES = "INSERT OR IGNORE INTO _tts_series (metric_name, tags_json) VALUES (?, ?)"
_UPSERT_CHUNK = (
    "INSERT OR IGNORE INTO _tts_chunks (hypertable_id, series_id, chunk_start_ns, chunk_end_ns) "
    "SELECT h.hypertable_id, s.series_id, ?, ? FROM _tts_hypertables h "
    "JOIN _tts_series s ON s.metric_name = ? AND s.tags_json = ? WHERE h.table_name = ?"
)
_UPSERT_SEGMENT = (
    "INSERT INTO _tts_segments (chunk_id, series_id, segment_start_ns, segment_end_ns, "
    "row_count, min_value_real, max_value_real, sum_value_real) "
    "SELECT c.chunk_id, s.series_id, ?, ?, ?, ?, ?, ? FROM _tts_chunks c "
    "JOIN _tts_hypertables h ON h.hypertable_id = c.hypertable_id "
    "JOIN _tts_series s ON s.series_id = c.series_id "
    "WHERE h.table_name = ? AND s.metric_name = ? AND s.tags_json = ? AND c.chunk_start_ns = ? "
    "ON CONFLICT(chunk_id, series_id, segment_start_ns, segment_end_ns) DO UPDATE SET "
    "row_count = excluded.row_count, min_value_real = excluded.min_value_real, "
    "max_value_real = excluded.max_value_real, sum_value_real = excluded.sum_value_real"
)
_UPSERT_COLUMN = (
    "INSERT OR REPLACE INTO _tts_segment_columns "
    "(segment_id, column_name, value_type, encoding, data_blob, null_count) "
    "SELECT seg.segment_id, ?, ?, ?, ?, 0 FROM _tts_segments seg "
    "JOIN _tts_chunks c ON c.chunk_id = seg.chunk_id "
    "JOIN _tts_hypertables h ON h.hypertable_id = c.hypertable_id "
    "JOIN _tts_series s ON s.series_id = seg.series_id "
    "WHERE h.table_name = ? AND s.metric_name = ? AND s.tags_json = ? AND c.chunk_start_ns = ? "
    "AND seg.segment_start_ns = ? AND seg.segment_end_ns = ?"
)


def plan_write_columnar_segments(segments: Sequence[ColumnarSegment]) -> SqlBatch:
    """Plan idempotent writes of hypertables, series, chunks, segments and column blobs."""
    statements: list[SqlStatement] = []
    hypertables: set[tuple[str, int]] = set()
    series_seen: set[SeriesKey] = set()
    chunks: set[tuple[str, SeriesKey, int]] = set()

    for segment in segments:
        hypertable_key = (segment.table_name, segment.chunk_interval_ns)
        if hypertable_key not in hypertables:
            hypertables.add(hypertable_key)
            statements.append(SqlStatement(_UPSERT_HYPERTABLE, hypertable_key))
        if segment.series not in series_seen:
            series_seen.add(segment.series)
            statements.append(
                SqlStatement(
                    _UPSERT_SERIES, (segment.series.metric_name, segment.series.tags_json)
                )
            )

    for segment in segments:
        metric = segment.series.metric_name
        tags = segment.series.tags_json
        chunk_key = (segment.table_name, segment.series, segment.chunk_start_ns)
        if chunk_key not in chunks:
            chunks.add(chunk_key)
            statements.append(
                SqlStatement(
                    _UPSERT_CHUNK,
                    (
                        segment.chunk_start_ns,
                        segment.chunk_end_ns,
                        metric,
                        tags,
                        segment.table_name,
                    ),
                )
            )

        statements.append(
            SqlStatement(
                _UPSERT_SEGMENT,
                (
                    segment.segment_start_ns,
                    segment.segment_end_ns,
                    segment.row_count,
                    segment.min_value_real,
                    segment.max_value_real,
                    segment.sum_value_real,
                    segment.table_name,
                    metric,
                    tags,
                    segment.chunk_start_ns,
                ),
            )
        )

        columns = (
            ("ts_ns", "integer", "i64-le", segment.ts_ns_blob),
            ("value_real", "real", "f64-le", segment.value_real_blob),
            ("quality", "integer", "i32-le", segment.quality_blob),
        )
        for column_name, value_type, encoding, data_blob in columns:
            statements.append(
                SqlStatement(
                    _UPSERT_COLUMN,
                    (
                        column_name,
                        value_type,
                        encoding,
                        bytes(data_blob),
                        segment.table_name,
                        metric,
                        tags,
                        segment.chunk_start_ns,
                        segment.segment_start_ns,
                        segment.segment_end_ns,
                    ),
                )
            )

    return SqlBatch(statements)


def plan_create_hypertable(table_name: str, chunk_interval_ns: int) -> SqlStatement:
    """Plan a columnar hypertable catalog upsert."""
    validate_identifier(table_name)
    _require_positive("chunk_interval_ns", chunk_interval_ns)
    return SqlStatement(_UPSERT_HYPERTABLE, (table_name, chunk_interval_ns))


def plan_delete_columnar_chunks_before(table_name: str, older_than_ns: int) -> SqlStatement:
    """Plan a retention delete of chunks ending at or before ``older_than_ns``.

    Segment rows and column blobs go with them through cascading foreign keys.
    """
    validate_identifier(table_name)
    return SqlStatement(
        "DELETE FROM _tts_chunks WHERE chunk_end_ns <= ? AND hypertable_id IN "
        "(SELECT hypertable_id FROM _tts_hypertables WHERE table_name = ?)",
        (older_than_ns, table_name),
    )


def plan_query_columnar_rollup(table_name: str, bucket_ns: int) -> SqlStatement:
    """Plan a query of segment stats downsampled into buckets of ``bucket_ns``."""
    validate_identifier(table_name)
    _require_positive("bucket_ns", bucket_ns)
    return SqlStatement(
        "SELECT s.metric_name, s.tags_json, "
        "(seg.segment_start_ns - (seg.segment_start_ns % ?)) AS bucket_ns, "
        "SUM(seg.row_count) AS sample_count, MIN(seg.min_value_real) AS min_value_real, "
        "MAX(seg.max_value_real) AS max_value_real, "
        "SUM(seg.sum_value_real) / SUM(seg.row_count) AS avg_value_real "
        "FROM _tts_segments seg JOIN _tts_chunks c ON c.chunk_id = seg.chunk_id "
        "JOIN _tts_hypertables h ON h.hypertable_id = c.hypertable_id "
        "JOIN _tts_series s ON s.series_id = seg.series_id WHERE h.table_name = ? "
        "GROUP BY s.metric_name, s.tags_json, bucket_ns "
        "ORDER BY s.metric_name, s.tags_json, bucket_ns",
        (bucket_ns, table_name),
    )


def plan_refresh_columnar_rollup(source_table: str, rollup_table: str, bucket_ns: int) -> SqlBatch:
    """Plan a full rebuild of a materialized rollup from segment stats.

    The caller owns the transaction around the delete and the re-insert.
    """
    validate_identifier(source_table)
    validate_identifier(rollup_table)
    _require_positive("bucket_ns", bucket_ns)
    return SqlBatch(
        [
            SqlStatement("DELETE FROM _tts_rollups WHERE rollup_table = ?", (rollup_table,)),
            SqlStatement(
                "INSERT INTO _tts_rollups (source_table, rollup_table, metric_name, tags_json, "
                "bucket_ns, sample_count, min_value_real, max_value_real, sum_value_real, "
                "avg_value_real) SELECT ?, ?, s.metric_name, "
                "COALESCE(s.tags_json, '{}') AS tags_json, "
                "(seg.segment_start_ns - (seg.segment_start_ns % ?)) AS bucket_ns, "
                "SUM(seg.row_count) AS sample_count, MIN(seg.min_value_real) AS min_value_real, "
                "MAX(seg.max_value_real) AS max_value_real, "
                "SUM(seg.sum_value_real) AS sum_value_real, "
                "SUM(seg.sum_value_real) / SUM(seg.row_count) AS avg_value_real "
                "FROM _tts_segments seg JOIN _tts_chunks c ON c.chunk_id = seg.chunk_id "
                "JOIN _tts_hypertables h ON h.hypertable_id = c.hypertable_id "
                "JOIN _tts_series s ON s.series_id = seg.series_id WHERE h.table_name = ? "
                "GROUP BY s.metric_name, tags_json, bucket_ns",
                (source_table, rollup_table, bucket_ns, source_table),
            ),
        ]
    )