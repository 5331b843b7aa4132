"""Series identity, sample values and SQL planning for the row-layout catalog."""

from __future__ import annotations

import json
import math
import re
import struct
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Union

# A bind value for planned SQL: None (NULL), int, float, str or bytes.
SqlValue = Union[None, int, float, str, bytes]

# A sample value: a finite float (``value_real``) or bytes (``value_blob``).
MetricValue = Union[float, bytes]


class PlanningError(ValueError):
    """Base class for validation and SQL planning errors."""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PlanningError):
            return NotImplemented
        return type(self) is type(other) and self.args == other.args

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class InvalidIntervalError(PlanningError):
    """A bucket, chunk or retention interval was not strictly positive."""

    def __init__(self, name: str, value: int) -> None:
        self.name = name
        self.value = value
        super().__init__(f"{name} must be positive, got {value}")


class EmptyMetricNameError(PlanningError):
    """A metric name was empty or blank."""

    def __init__(self) -> None:
        super().__init__("metric_name cannot be empty")


class EmptyTagKeyError(PlanningError):
    """A tag key was empty."""

    def __init__(self) -> None:
        super().__init__("tag keys cannot be empty")


class InvalidIdentifierError(PlanningError):
    """A SQL identifier was not a simple ASCII identifier."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"invalid SQL identifier: {json.dumps(identifier, ensure_ascii=False)}")


class EmptyAggregateListError(PlanningError):
    """A rollup policy was given no aggregates."""

    def __init__(self) -> None:
        super().__init__("aggregate list cannot be empty")


class NonFiniteValueError(PlanningError):
    """A real sample value was NaN or infinite."""

    def __init__(self, value: float) -> None:
        self.value = value
        shown = "NaN" if math.isnan(value) else str(value)
        super().__init__(f"sample value must be finite, got {shown}")


class ColumnarRequiresRealValueError(PlanningError):
    """Columnar segment planning was given a non-real sample."""

    def __init__(self) -> None:
        super().__init__("columnar segment planning requires real-valued samples")


def _bucket(ts: int, width: int, name: str) -> int:
    if width <= 0:
        raise InvalidIntervalError(name, width)
    return ts - ts % width


def time_bucket_ms(ts_ms: int, width_ms: int) -> int:
    """Floor a millisecond timestamp to a fixed-width bucket."""
    return _bucket(ts_ms, width_ms, "width_ms")


def time_bucket_ns(ts_ns: int, width_ns: int) -> int:
    """Floor a nanosecond timestamp to a fixed-width bucket."""
    return _bucket(ts_ns, width_ns, "width_ns")


_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def validate_identifier(identifier: str) -> None:
    """Raise unless ``identifier`` is a simple ASCII SQL identifier."""
    if not _IDENTIFIER.fullmatch(identifier):
        raise InvalidIdentifierError(identifier)


_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}


def _json_escape(value: str) -> str:
    out = []
    for ch in value:
        if ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        elif ch < " ":
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(ch)
    return "".join(out)


def canonical_tags_json(tags: Iterable[tuple[str, str]]) -> str:
    """Render tag pairs, in the order given, as a compact JSON object string."""
    body = ",".join(f'"{_json_escape(k)}":"{_json_escape(v)}"' for k, v in tags)
    return "{" + body + "}"


@dataclass(frozen=True, order=True, init=False)
class SeriesKey:
    """Deterministic series identity: metric name plus canonical sorted tags."""

    metric_name: str
    tags_json: str

    def __init__(
        self,
        metric_name: str,
        tags: Union[Mapping[str, str], Iterable[tuple[str, str]]] = (),
    ) -> None:
        if not metric_name.strip():
            raise EmptyMetricNameError()
        items = tags.items() if isinstance(tags, Mapping) else tags
        pairs = []
        for key, value in items:
            key = str(key)
            if not key:
                raise EmptyTagKeyError()
            pairs.append((key, str(value)))
        pairs.sort()
        object.__setattr__(self, "metric_name", metric_name)
        object.__setattr__(self, "tags_json", canonical_tags_json(pairs))


def real_value(value: float) -> float:
    """Validate a real sample value, returning it as a float."""
    number = float(value)
    if not math.isfinite(number):
        raise NonFiniteValueError(number)
    return number


@dataclass(frozen=True)
class MetricPoint:
    """A single sample for the row layout; ``ts_ns`` is in nanoseconds."""

    series: SeriesKey
    ts_ns: int
    value: MetricValue
    quality: int = 0

    @classmethod
    def real(cls, series: SeriesKey, ts_ns: int, value: float) -> MetricPoint:
        """A real-valued point with default quality."""
        return cls(series=series, ts_ns=ts_ns, value=real_value(value))

    @classmethod
    def blob(cls, series: SeriesKey, ts_ns: int, value: Iterable[int]) -> MetricPoint:
        """A blob-valued point with default quality."""
        return cls(series=series, ts_ns=ts_ns, value=bytes(value))

    def with_quality(self, quality: int) -> MetricPoint:
        """A copy of this point with a different quality code."""
        return replace(self, quality=quality)


@dataclass(frozen=True)
class SqlStatement:
    """One SQL statement with ``?`` placeholders and its positional binds."""

    sql: str
    params: tuple[SqlValue, ...] = ()


@dataclass
class SqlBatch:
    """Statements to execute in order inside one transaction."""

    statements: list[SqlStatement] = field(default_factory=list)

    def is_empty(self) -> bool:
        """True when there is no work to execute."""
        return not self.statements


def encode_i64_le_column(values: Sequence[int]) -> bytes:
    """Pack integers as little-endian i64 values."""
    return struct.pack(f"<{len(values)}q", *values)


def encode_i32_le_column(values: Sequence[int]) -> bytes:
    """Pack integers as little-endian i32 values."""
    return struct.pack(f"<{len(values)}i", *values)


def encode_f64_le_column(values: Sequence[float]) -> bytes:
    """Pack floats as little-endian IEEE-754 f64 values."""
    return struct.pack(f"<{len(values)}d", *values)


_UPSERT_SERIES = "INSERT OR IGNORE INTO _tts_series (metric_name, tags_json) VALUES (?, ?)"
_UPSERT_SAMPLE = (
    "INSERT OR REPLACE INTO _tts_samples (series_id, ts_ns, value_real, value_blob, quality) "
    "SELECT series_id, ?, ?, ?, ? FROM _tts_series WHERE metric_name = ? AND tags_json = ?"
)


def plan_write_batch(points: Sequence[MetricPoint]) -> SqlBatch:
    """Plan idempotent series upserts, then one sample upsert per point."""
    statements = []
    seen: set[SeriesKey] = set()
    for point in points:
        if point.series not in seen:
            seen.add(point.series)
            statements.append(
                SqlStatement(
                    _UPSERT_SERIES, (point.series.metric_name, point.series.tags_json)
                )
            )
    for point in points:
        if isinstance(point.value, (bytes, bytearray)):
            value_real, value_blob = None, bytes(point.value)
        else:
            value_real, value_blob = float(point.value), None
        statements.append(
            SqlStatement(
                _UPSERT_SAMPLE,
                (
                    point.ts_ns,
                    value_real,
                    value_blob,
                    int(point.quality),
                    point.series.metric_name,
                    point.series.tags_json,
                ),
            )
        )
    return SqlBatch(statements)


class RollupAggregate(Enum):
    """Aggregates supported by rollup policy metadata."""

    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    FIRST = "first"
    LAST = "last"

    def as_str(self) -> str:
        """Stable catalog spelling."""
        return self.value


def encode_rollup_aggregates(aggregates: Iterable[RollupAggregate]) -> str:
    """Catalog form of an aggregate set: unique names, sorted, comma-joined."""
    names = sorted({aggregate.as_str() for aggregate in aggregates})
    if not names:
        raise EmptyAggregateListError()
    return ",".join(names)


def plan_add_retention_policy(target_table: str, retention_interval_ns: int) -> SqlStatement:
    """Plan an upsert into the retention policy table."""
    validate_identifier(target_table)
    if retention_interval_ns <= 0:
        raise InvalidIntervalError("retention_interval_ns", retention_interval_ns)
    return SqlStatement(
        "INSERT INTO _tts_retention_policies (target_table, retention_interval_ns) VALUES (?, ?) "
        "ON CONFLICT(target_table) DO UPDATE SET "
        "retention_interval_ns = excluded.retention_interval_ns",
        (target_table, retention_interval_ns),
    )


def plan_create_rollup_policy(
    source_table: str,
    rollup_table: str,
    bucket_ns: int,
    aggregates: Iterable[RollupAggregate],
) -> SqlStatement:
    """Plan an insert into the rollup policy table."""
    validate_identifier(source_table)
    validate_identifier(rollup_table)
    if bucket_ns <= 0:
        raise InvalidIntervalError("bucket_ns", bucket_ns)
    return SqlStatement(
        "INSERT INTO _tts_rollup_policies (source_table, rollup_table, bucket_ns, aggregates) "
        "VALUES (?, ?, ?, ?)",
        (source_table, rollup_table, bucket_ns, encode_rollup_aggregates(aggregates)),
    )