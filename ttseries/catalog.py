"""Catalog table names, introspection view SQL and migration helpers."""

from __future__ import annotations

import re

SCHEMA_VERSION = 5

MIGRATION_0001_VERSION = 1
MIGRATION_0002_VERSION = 2
MIGRATION_0003_VERSION = 3
MIGRATION_0004_VERSION = 4
MIGRATION_0005_VERSION = 5

TABLE_SCHEMA_VERSION = "_tts_schema_version"
TABLE_HYPERTABLES = "_tts_hypertables"
TABLE_SERIES = "_tts_series"
TABLE_CHUNKS = "_tts_chunks"
TABLE_SEGMENTS = "_tts_segments"
TABLE_SEGMENT_COLUMNS = "_tts_segment_columns"
TABLE_INVALIDATIONS = "_tts_invalidations"
TABLE_ROLLUP_POLICIES = "_tts_rollup_policies"
TABLE_HYPERTABLE_STATS = "_tts_hypertable_stats"
TABLE_SERIES_STATS = "_tts_series_stats"
TABLE_MAINTENANCE_JOBS = "_tts_maintenance_jobs"
TABLE_TAG_INDEX = "_tts_tag_index"

CATALOG_TABLES = (
    TABLE_SCHEMA_VERSION,
    TABLE_HYPERTABLES,
    TABLE_SERIES,
    TABLE_CHUNKS,
    TABLE_SEGMENTS,
    TABLE_SEGMENT_COLUMNS,
    TABLE_INVALIDATIONS,
    TABLE_ROLLUP_POLICIES,
    TABLE_HYPERTABLE_STATS,
    TABLE_SERIES_STATS,
    TABLE_MAINTENANCE_JOBS,
    TABLE_TAG_INDEX,
)

VIEW_HYPERTABLE_OVERVIEW = (
    "CREATE VIEW IF NOT EXISTS tts_hypertable_overview AS "
    "SELECT h.hypertable_id, h.table_name, hs.row_count, hs.min_time_micros, "
    "hs.max_time_micros, hs.chunk_count, hs.series_count "
    "FROM _tts_hypertables h "
    "LEFT JOIN _tts_hypertable_stats hs ON hs.hypertable_id = h.hypertable_id"
)

_PREFIX = "CREATE TABLE IF NOT EXISTS "
_NAME_END = re.compile(r"[\s(]")


def _ascii_upper(text: str) -> str:
    return "".join(ch.upper() if ch.isascii() else ch for ch in text)


def scan_create_table_names(sql: str) -> list[str]:
    """Collect the names of ``CREATE TABLE IF NOT EXISTS`` statements, one per line."""
    names = []
    for line in sql.split("\n"):
        trimmed = line.removesuffix("\r").lstrip()
        idx = _ascii_upper(trimmed).find(_PREFIX)
        if idx < 0:
            continue
        rest = trimmed[idx + len(_PREFIX) :]
        name = _NAME_END.split(rest, maxsplit=1)[0].strip("`")
        if name:
            names.append(name)
    return names