"""
Tests del normalizador de mensajes de nRF Cloud.
"""
import json
from datetime import datetime, timezone

import pytest

from telemetry_normalizer import (
    DataKind,
    InvalidEnvelopeError,
    data_kind,
    data_to_string,
    format_timestamp,
    normalize_message,
    parse_timestamp,
)

NOW = datetime(2025, 3, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)
NOW_ISO = "2025-03-01T12:00:00.250Z"

RECORD_FIELDS = {
    "teamId", "deviceId", "tenantId", "topic", "appId", "messageType", "timestamp",
    "receivedAt", "dataValue", "dataType", "rawMessage", "createdAt",
}


class TestScenarios:
    def test_scalar_data_message(self):
        record = normalize_message({"deviceId": "d1", "message": {"appId": "TEMP", "data": 23.5, "ts": 1705315800000}})

        assert record["deviceId"] == "d1"
        assert record["appId"] == "TEMP"
        assert record["dataValue"] == "23.5"
        assert record["dataType"] == "number"
        assert record["timestamp"] == "2024-01-15T10:50:00.000Z"

    def test_object_data_message(self):
        record = normalize_message({"deviceId": "d1", "message": {"data": {"x": 1}}}, now=NOW)

        assert record["dataValue"] == '{"x":1}'
        assert record["dataType"] == "object"

    def test_full_envelope_is_copied(self, envelope):
        record = normalize_message(envelope, now=NOW)

        assert record["teamId"] == "team-1"
        assert record["tenantId"] == "tenant-1"
        assert record["topic"] == "prod/team-1/m/d/d1/d2c"
        assert record["messageType"] == "DATA"
        assert record["receivedAt"] == "2024-01-15T10:30:01.000Z"
        assert record["createdAt"] == NOW_ISO
        assert json.loads(record["rawMessage"]) == envelope["message"]


class TestDefaults:
    def test_missing_fields_are_defaulted(self):
        record = normalize_message({"deviceId": "d1", "message": {}}, now=NOW)

        assert set(record) == RECORD_FIELDS
        assert record["tenantId"] is None
        assert record["topic"] is None
        assert record["appId"] == "UNKNOWN"
        assert record["messageType"] == "DATA"
        assert record["timestamp"] == NOW_ISO
        assert record["receivedAt"] == NOW_ISO
        assert record["dataValue"] == ""
        assert record["dataType"] == "undefined"

    def test_missing_message(self):
        record = normalize_message({}, now=NOW)

        assert set(record) == RECORD_FIELDS
        assert record["teamId"] is None
        assert record["deviceId"] is None
        assert record["rawMessage"] == "null"
        assert record["dataType"] == "undefined"

    def test_empty_values_count_as_absent(self):
        record = normalize_message(
            {"tenantId": "", "topic": "", "receivedAt": "", "message": {"appId": "", "messageType": "", "ts": 0}},
            now=NOW,
        )

        assert record["tenantId"] is None
        assert record["topic"] is None
        assert record["appId"] == "UNKNOWN"
        assert record["messageType"] == "DATA"
        assert record["timestamp"] == NOW_ISO
        assert record["receivedAt"] == NOW_ISO

    def test_time_is_used_when_ts_missing(self):
        record = normalize_message({"message": {"time": 1705315800000}}, now=NOW)
        assert record["timestamp"] == "2024-01-15T10:50:00.000Z"

    def test_ts_takes_precedence_over_time(self):
        record = normalize_message({"message": {"ts": 1705315800000, "time": 1}}, now=NOW)
        assert record["timestamp"] == "2024-01-15T10:50:00.000Z"

    def test_non_object_message_keeps_raw_value(self):
        record = normalize_message({"deviceId": "d1", "message": "hello"}, now=NOW)

        assert record["appId"] == "UNKNOWN"
        assert record["dataType"] == "undefined"
        assert record["rawMessage"] == '"hello"'


class TestDataKinds:
    @pytest.mark.parametrize("value,kind,text", [
        (None, DataKind.NULL, ""),
        (True, DataKind.BOOLEAN, "true"),
        (False, DataKind.BOOLEAN, "false"),
        (42, DataKind.NUMBER, "42"),
        (24.0, DataKind.NUMBER, "24"),
        (-3.75, DataKind.NUMBER, "-3.75"),
        (0.000001, DataKind.NUMBER, "0.000001"),
        (1e-7, DataKind.NUMBER, "1e-7"),
        (1.5e-10, DataKind.NUMBER, "1.5e-10"),
        (1e20, DataKind.NUMBER, "100000000000000000000"),
        (1e21, DataKind.NUMBER, "1e+21"),
        (10 ** 21, DataKind.NUMBER, "1e+21"),
        (-2.5e22, DataKind.NUMBER, "-2.5e+22"),
        ("on", DataKind.STRING, "on"),
        ([1, 2], DataKind.ARRAY, "[1,2]"),
        ({"lat": 4.7, "lng": -74.1}, DataKind.OBJECT, '{"lat":4.7,"lng":-74.1}'),
    ])
    def test_kind_and_text(self, value, kind, text):
        assert data_kind(value) is kind
        assert data_to_string(value, kind) == text

    def test_absent_value(self):
        assert data_kind() is DataKind.UNDEFINED

    def test_null_data_in_message(self):
        record = normalize_message({"message": {"data": None}}, now=NOW)
        assert record["dataType"] == "null"
        assert record["dataValue"] == ""

    def test_unicode_is_not_escaped(self):
        assert data_to_string({"unit": "°C"}, DataKind.OBJECT) == '{"unit":"°C"}'


class TestTimestamps:
    def test_format_timestamp(self):
        assert format_timestamp(datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)) == "2024-01-15T10:30:00.000Z"

    def test_iso_string_time(self):
        assert parse_timestamp("2024-01-15T10:30:00Z") == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_numeric_received_at_is_formatted(self):
        record = normalize_message({"receivedAt": 1705315800000, "message": {}}, now=NOW)
        assert record["receivedAt"] == "2024-01-15T10:50:00.000Z"

    @pytest.mark.parametrize("value,text", [
        ({"at": 1}, '{"at":1}'),
        ([2024, 1, 15], "[2024,1,15]"),
        (True, "true"),
        (1e20, "1e+20"),
    ])
    def test_received_at_that_is_not_a_date_is_kept_as_json(self, value, text):
        record = normalize_message({"receivedAt": value, "message": {"ts": 1705315800000}}, now=NOW)
        assert record["receivedAt"] == text
        assert record["timestamp"] == "2024-01-15T10:50:00.000Z"

    @pytest.mark.parametrize("value", ["not-a-date", True, 1e20, float("nan"), [1]])
    def test_invalid_time_value(self, value):
        with pytest.raises(InvalidEnvelopeError):
            normalize_message({"message": {"ts": value}}, now=NOW)


class TestIdempotence:
    def test_same_input_differs_only_in_created_at(self, envelope):
        first = normalize_message(envelope, now=NOW)
        second = normalize_message(envelope, now=datetime(2026, 1, 1, tzinfo=timezone.utc))

        assert first["createdAt"] != second["createdAt"]
        first.pop("createdAt")
        second.pop("createdAt")
        assert first == second

    def test_input_is_not_mutated(self, envelope):
        before = json.dumps(envelope, sort_keys=True)
        normalize_message(envelope, now=NOW)
        assert json.dumps(envelope, sort_keys=True) == before


@pytest.mark.parametrize("envelope", [None, 5, "text", [{"deviceId": "d1"}]])
def test_envelope_must_be_an_object(envelope):
    with pytest.raises(InvalidEnvelopeError):
        normalize_message(envelope)
