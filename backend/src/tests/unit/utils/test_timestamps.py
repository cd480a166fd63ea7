"""
Tests for RFC 3339 timestamp comparison used by the activity cursors.
"""

from datetime import datetime, timezone

from hypothesis import given
from hypothesis import strategies as st

from drivelink.utils.timestamps import is_after, latest, parse_timestamp


class TestParseTimestamp:
    def test_zulu_suffix(self):
        assert parse_timestamp("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)

    def test_nanoseconds_truncated(self):
        parsed = parse_timestamp("2024-03-01T10:00:00.123456789Z")
        assert parsed.microsecond == 123456

    def test_offset_preserved(self):
        parsed = parse_timestamp("2024-03-01T12:00:00+02:00")
        assert parsed == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)

    def test_absent_or_malformed(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
        assert parse_timestamp("yesterday") is None


class TestOrdering:
    def test_is_after(self):
        assert is_after("2024-03-01T10:00:01Z", "2024-03-01T10:00:00Z")
        assert not is_after("2024-03-01T10:00:00Z", "2024-03-01T10:00:00Z")
        assert not is_after("2024-03-01T09:00:00Z", "2024-03-01T10:00:00Z")

    def test_missing_current_is_replaced(self):
        assert is_after("2024-03-01T10:00:00Z", "")
        assert is_after("2024-03-01T10:00:00Z", None)
        assert not is_after(None, "2024-03-01T10:00:00Z")

    def test_compares_instants_not_strings(self):
        """Fractional seconds sort by value, not lexically."""
        assert is_after("2024-03-01T10:00:00.5Z", "2024-03-01T10:00:00.123Z")

    def test_latest(self):
        assert latest("2024-03-01T10:00:00Z", None, "2024-03-02T00:00:00Z", "bad") == "2024-03-02T00:00:00Z"
        assert latest() is None

    @given(st.lists(st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2100, 1, 1)), min_size=1))
    def test_latest_matches_max(self, values):
        rendered = [v.strftime("%Y-%m-%dT%H:%M:%S.%fZ") for v in values]
        assert parse_timestamp(latest(*rendered)) == max(v.replace(tzinfo=timezone.utc) for v in values)
