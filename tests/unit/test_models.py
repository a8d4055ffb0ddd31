"""
Unit tests for the domain model.

Tests cover:
- Tag normalization
- Timestamp formatting and parsing
- Copy independence of denormalized data
- Schedule states
"""

from datetime import datetime, timedelta, timezone

from fiscal_snapshots.models import (
    FiscalBookData,
    ScheduleFrequency,
    SnapshotSchedule,
    SnapshotStatistics,
    TransactionData,
    format_timestamp,
    normalize_tags,
    parse_timestamp,
)


class TestNormalizeTags:
    """Tests for normalize_tags."""

    def test_trims_lowercases_and_dedupes(self):
        assert normalize_tags([" Audit ", "audit", "", "Q1", "  "]) == ["audit", "q1"]

    def test_none_is_empty(self):
        assert normalize_tags(None) == []

    def test_keeps_first_seen_order(self):
        assert normalize_tags(["b", "A", "a", "c"]) == ["b", "a", "c"]


class TestTimestamps:
    """Tests for timestamp storage format."""

    def test_format_converts_to_utc(self):
        local = datetime(2024, 3, 15, 7, 30, tzinfo=timezone(timedelta(hours=-3)))
        assert format_timestamp(local) == "2024-03-15T10:30:00.000000+00:00"

    def test_naive_is_taken_as_utc(self):
        assert format_timestamp(datetime(2024, 3, 15)) == "2024-03-15T00:00:00.000000+00:00"

    def test_parse_round_trip(self):
        moment = datetime(2024, 3, 15, 10, 30, 1, 5, tzinfo=timezone.utc)
        assert parse_timestamp(format_timestamp(moment)) == moment

    def test_none_and_empty(self):
        assert format_timestamp(None) is None
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None


class TestCopies:
    """Denormalized copies never share state."""

    def test_transaction_copy_is_deep(self):
        original = TransactionData(transaction_value="10", items=[{"sku": "A", "qty": 1}])
        copied = original.copy()
        copied.items[0]["qty"] = 5
        copied.transaction_value = "20"

        assert original.items[0]["qty"] == 1
        assert original.transaction_value == "10"

    def test_book_data_from_dict_ignores_unknown_keys(self):
        data = FiscalBookData.from_dict({"book_name": "Q1", "legacy_field": 1, "fiscal_data": None})
        assert data.book_name == "Q1"
        assert data.fiscal_data == {}

    def test_transaction_from_dict_parses_date(self):
        data = TransactionData.from_dict(
            {"transaction_date": "2024-01-05T00:00:00.000000+00:00", "items": None}
        )
        assert data.transaction_date == datetime(2024, 1, 5, tzinfo=timezone.utc)
        assert data.items == []

    def test_statistics_from_dict(self):
        stats = SnapshotStatistics.from_dict({"transaction_count": "2", "total_income": 100})
        assert stats == SnapshotStatistics(2, 100.0, 0.0, 0.0)


class TestScheduleState:
    """Tests for SnapshotSchedule.state."""

    def test_states(self):
        assert SnapshotSchedule("b1").state == "disabled"
        assert (
            SnapshotSchedule("b1", enabled=True, frequency=ScheduleFrequency.WEEKLY).state
            == "enabled-weekly"
        )
        assert SnapshotSchedule("b1", enabled=True).state == "enabled-monthly"
        assert (
            SnapshotSchedule(
                "b1", enabled=True, frequency=ScheduleFrequency.BEFORE_STATUS_CHANGE
            ).state
            == "enabled-event"
        )
