"""
Tests for snapshot decoding and payload encoding.
"""

import json

import pytest

from snapshot.parser import SnapshotDecodeError, SnapshotEntry, SnapshotParser, coerce_timestamp


@pytest.fixture
def parser():
    return SnapshotParser()


def _doc(obj) -> bytes:
    return json.dumps(obj).encode("utf-8")


class TestDecodeSnapshot:
    """Tests for decode_snapshot."""

    def test_decodes_entries(self, parser, sample_entries):
        """All entries are decoded with their fields."""
        entries = parser.decode_snapshot(_doc({"detections": sample_entries}))

        assert len(entries) == 3
        first = entries[0]
        assert isinstance(first, SnapshotEntry)
        assert first.timestamp_ms == 1718000000000
        assert first.date == "2024-06-10 08:13:20"
        assert first.objects_total == {"car": 3, "truck": 1}
        assert first.avg_speed_by_lane == {"lane_1": 42.5, "lane_2": 38.0}

    def test_absent_fields_are_none(self, parser):
        entries = parser.decode_snapshot(_doc({"detections": [{"timestamp_ms": 1}]}))
        assert entries[0].date is None
        assert entries[0].objects_total is None
        assert entries[0].objects_by_lane is None

    def test_unknown_fields_ignored(self, parser):
        entries = parser.decode_snapshot(
            _doc({"detections": [{"timestamp_ms": 1, "camera": "north"}], "exported_by": "x"})
        )
        assert entries == [SnapshotEntry(timestamp_ms=1)]

    def test_missing_list_is_empty(self, parser):
        """A snapshot without the detections member decodes to no entries."""
        assert parser.decode_snapshot(b"{}") == []

    def test_null_list_is_empty(self, parser):
        assert parser.decode_snapshot(b'{"detections": null}') == []

    def test_utf8_bom_tolerated(self, parser):
        data = b"\xef\xbb\xbf" + _doc({"detections": [{"timestamp_ms": 5}]})
        assert parser.decode_snapshot(data)[0].timestamp_ms == 5

    def test_invalid_json_raises(self, parser):
        with pytest.raises(SnapshotDecodeError):
            parser.decode_snapshot(b'{"detections": [')

    def test_invalid_utf8_raises(self, parser):
        with pytest.raises(SnapshotDecodeError):
            parser.decode_snapshot(b"\xff\xfe\x00")

    def test_top_level_array_raises(self, parser):
        with pytest.raises(SnapshotDecodeError):
            parser.decode_snapshot(b"[]")

    def test_non_list_detections_raises(self, parser):
        with pytest.raises(SnapshotDecodeError):
            parser.decode_snapshot(b'{"detections": {"timestamp_ms": 1}}')

    def test_non_object_entry_marked_not_raised(self, parser):
        """A bad list element is flagged on its entry; the rest still decode."""
        entries = parser.decode_snapshot(b'{"detections": [{"timestamp_ms": 1}, null, 2]}')

        assert len(entries) == 3
        assert entries[0].error is None
        assert "Entry 1 must be an object" in entries[1].error
        assert entries[2].error is not None

    def test_bad_timestamp_kept_raw(self, parser):
        """Timestamp problems are left to conversion instead of failing the file."""
        entries = parser.decode_snapshot(b'{"detections": [{"timestamp_ms": "n/a"}, {"timestamp_ms": true}]}')

        assert entries[0].timestamp_ms == "n/a"
        assert entries[1].timestamp_ms is True

    def test_decode_error_is_value_error(self):
        assert issubclass(SnapshotDecodeError, ValueError)


class TestCoerceTimestamp:
    """Tests for timestamp_ms coercion."""

    def test_none_stays_none(self):
        assert coerce_timestamp(None) is None

    def test_integer_accepted(self):
        assert coerce_timestamp(1718000000000) == 1718000000000

    def test_integral_float_accepted(self):
        value = coerce_timestamp(1718000000000.0)
        assert value == 1718000000000
        assert isinstance(value, int)

    def test_numeric_string_accepted(self):
        assert coerce_timestamp(" 42 ") == 42

    @pytest.mark.parametrize("value", [1.5, True, False, "soon", "n/a", [1], {"ms": 1}])
    def test_rejected_values(self, value):
        with pytest.raises(ValueError):
            coerce_timestamp(value)


class TestEncodeValue:
    """Tests for payload encoding."""

    def test_none_becomes_empty_object(self, parser):
        assert parser.encode_value(None) == "{}"

    def test_mapping_serialized(self, parser):
        assert json.loads(parser.encode_value({"car": 3})) == {"car": 3}

    def test_nested_mapping_serialized(self, parser):
        value = {"lane_1": {"car": 2}, "lane_2": {"truck": 1}}
        assert json.loads(parser.encode_value(value)) == value

    def test_empty_mapping(self, parser):
        assert parser.encode_value({}) == "{}"

    def test_non_mapping_becomes_empty_object(self, parser):
        assert parser.encode_value([1, 2]) == "{}"
        assert parser.encode_value("car") == "{}"
        assert parser.encode_value(3) == "{}"

    def test_nan_becomes_empty_object(self, parser):
        assert parser.encode_value({"lane_1": float("nan")}) == "{}"

    def test_unserializable_becomes_empty_object(self, parser):
        assert parser.encode_value({"when": object()}) == "{}"

    def test_non_ascii_preserved(self, parser):
        assert parser.encode_value({"vélo": 1}) == '{"vélo": 1}'


class TestDecodeValue:
    def test_round_trip_mapping(self, parser):
        assert parser.decode_value(parser.encode_value({"car": 3})) == {"car": 3}

    @pytest.mark.parametrize("text", [None, "", "   ", "not json", "[1, 2]", "null"])
    def test_bad_text_becomes_empty_dict(self, parser, text):
        assert parser.decode_value(text) == {}
