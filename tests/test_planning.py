import math
import struct

import pytest

from ttseries.planning import (
    EmptyAggregateListError,
    EmptyMetricNameError,
    EmptyTagKeyError,
    InvalidIdentifierError,
    InvalidIntervalError,
    MetricPoint,
    NonFiniteValueError,
    RollupAggregate,
    SeriesKey,
    SqlBatch,
    SqlStatement,
    canonical_tags_json,
    encode_f64_le_column,
    encode_i32_le_column,
    encode_i64_le_column,
    encode_rollup_aggregates,
    plan_add_retention_policy,
    plan_create_rollup_policy,
    plan_write_batch,
    real_value,
    time_bucket_ms,
    time_bucket_ns,
    validate_identifier,
)


def test_bucket_aligns():
    assert time_bucket_ms(3_600_000, 3_600_000) == 3_600_000
    assert time_bucket_ms(3_600_001, 3_600_000) == 3_600_000
    assert time_bucket_ms(-500, 1_000) == -1_000
    assert time_bucket_ns(1_500, 1_000) == 1_000


def test_bucket_rejects_non_positive_width():
    with pytest.raises(InvalidIntervalError) as info:
        time_bucket_ms(1, 0)
    assert info.value == InvalidIntervalError("width_ms", 0)
    assert str(info.value) == "width_ms must be positive, got 0"


def test_bucket_ns_names_width():
    with pytest.raises(InvalidIntervalError) as info:
        time_bucket_ns(1, -5)
    assert info.value.name == "width_ns"
    assert info.value.value == -5


def test_series_key_canonicalizes_tags():
    a = SeriesKey("temp", [("zone", "a"), ("device", "pump-1")])
    b = SeriesKey("temp", [("device", "pump-1"), ("zone", "a")])
    assert a == b
    assert a.metric_name == "temp"
    assert a.tags_json == '{"device":"pump-1","zone":"a"}'


def test_series_key_accepts_mapping():
    key = SeriesKey("temp", {"zone": "a", "device": "pump-1"})
    assert key.tags_json == '{"device":"pump-1","zone":"a"}'


def test_series_key_escapes_tags():
    key = SeriesKey("temp", [('a"b', "line\none")])
    assert key.tags_json == '{"a\\"b":"line\\none"}'


def test_series_key_escapes_control_characters():
    key = SeriesKey("temp", [("k", "\b\f\x01")])
    assert key.tags_json == '{"k":"\\b\\f\\u0001"}'


def test_series_key_uses_empty_json_for_no_tags():
    assert SeriesKey("temp", []).tags_json == "{}"


def test_series_key_rejects_empty_names():
    with pytest.raises(EmptyMetricNameError):
        SeriesKey("  ", [])
    with pytest.raises(EmptyTagKeyError):
        SeriesKey("temp", [("", "x")])


def test_canonical_tags_json_keeps_given_order():
    assert canonical_tags_json([("z", "1"), ("a", "2")]) == '{"z":"1","a":"2"}'


def test_real_values_must_be_finite():
    with pytest.raises(NonFiniteValueError) as info:
        real_value(math.nan)
    assert math.isnan(info.value.value)
    with pytest.raises(NonFiniteValueError):
        MetricPoint.real(SeriesKey("temp", []), 0, math.inf)
    assert real_value(3) == 3.0


def test_with_quality_returns_updated_copy():
    point = MetricPoint.real(SeriesKey("temp", []), 5, 1.0)
    updated = point.with_quality(4)
    assert updated.quality == 4
    assert point.quality == 0
    assert updated.ts_ns == 5


def test_write_batch_deduplicates_series_then_writes_samples():
    series = SeriesKey("temp", [("device", "pump-1")])
    points = [
        MetricPoint.real(series, 100, 23.5),
        MetricPoint.real(series, 200, 24.0).with_quality(1),
    ]
    batch = plan_write_batch(points)
    assert len(batch.statements) == 3
    assert batch.statements[0].params == ("temp", '{"device":"pump-1"}')
    assert batch.statements[2].params == (
        200,
        24.0,
        None,
        1,
        "temp",
        '{"device":"pump-1"}',
    )


def test_write_batch_plans_blob_values():
    series = SeriesKey("event", [])
    batch = plan_write_batch([MetricPoint.blob(series, 10, [1, 2, 3])])
    assert batch.statements[1].params[1:3] == (None, b"\x01\x02\x03")


def test_empty_write_batch():
    batch = plan_write_batch([])
    assert batch.is_empty()
    assert not SqlBatch([SqlStatement("SELECT 1")]).is_empty()


def test_rollup_aggregates_are_canonicalized():
    encoded = encode_rollup_aggregates(
        [RollupAggregate.AVG, RollupAggregate.COUNT, RollupAggregate.AVG]
    )
    assert encoded == "avg,count"


def test_rollup_aggregates_reject_empty():
    with pytest.raises(EmptyAggregateListError):
        encode_rollup_aggregates([])


def test_policy_helpers_validate_inputs():
    statement = plan_add_retention_policy("samples", 1_000)
    assert statement.params == ("samples", 1_000)
    with pytest.raises(InvalidIdentifierError):
        plan_add_retention_policy("bad-name", 1_000)
    rollup = plan_create_rollup_policy(
        "samples",
        "samples_5m",
        300_000_000_000,
        [RollupAggregate.AVG, RollupAggregate.MIN],
    )
    assert rollup.params == ("samples", "samples_5m", 300_000_000_000, "avg,min")
    with pytest.raises(InvalidIntervalError):
        plan_create_rollup_policy("samples", "samples_5m", 0, [RollupAggregate.AVG])


def test_rollup_policy_aggregate_order():
    statement = plan_create_rollup_policy(
        "_tts_samples",
        "samples_1m",
        60_000_000_000,
        [RollupAggregate.AVG, RollupAggregate.MIN, RollupAggregate.MAX],
    )
    assert statement.params[3] == "avg,max,min"


def test_retention_rejects_non_positive_interval():
    with pytest.raises(InvalidIntervalError) as info:
        plan_add_retention_policy("samples", 0)
    assert info.value.name == "retention_interval_ns"


@pytest.mark.parametrize("name", ["", "1abc", "bad-name", "a b", "caf\u00e9"])
def test_validate_identifier_rejects(name):
    with pytest.raises(InvalidIdentifierError) as info:
        validate_identifier(name)
    assert info.value.identifier == name


@pytest.mark.parametrize("name", ["_tts_samples", "samples_1m", "A9"])
def test_validate_identifier_accepts(name):
    assert validate_identifier(name) is None


def test_le_column_encodings():
    assert encode_i64_le_column([1, -1]) == b"\x01" + b"\x00" * 7 + b"\xff" * 8
    assert encode_i32_le_column([2]) == b"\x02\x00\x00\x00"
    encoded = encode_f64_le_column([1.5, -2.0])
    assert len(encoded) == 16
    assert struct.unpack("<2d", encoded) == (1.5, -2.0)
    assert encode_i64_le_column([]) == b""