from datetime import date, datetime, timezone

from marches_ted.services.deadlines import (
    SENTINEL_DATE,
    combine_deadline,
    expand_timestamp,
    fallback_published_at,
    parse_publication_date,
)

UTC = timezone.utc


def test_expand_timestamp_forms():
    assert expand_timestamp("2025-10-10+02:00") == "2025-10-10T00:00:00+02:00"
    assert expand_timestamp("2025-10-10Z") == "2025-10-10T00:00:00Z"
    assert expand_timestamp("14:30:00+02:00") == f"{SENTINEL_DATE}T14:30:00+02:00"
    assert expand_timestamp("2025-10-10T08:00:00Z") == "2025-10-10T08:00:00Z"
    assert expand_timestamp("  ") is None
    assert expand_timestamp(None) is None


def test_date_only_becomes_midnight_at_offset():
    assert combine_deadline("2025-10-10+02:00", None) == datetime(2025, 10, 9, 22, 0, tzinfo=UTC)


def test_time_only_lands_on_sentinel_date():
    result = combine_deadline(None, "14:30:00+02:00")
    assert result == datetime(1970, 1, 1, 12, 30, tzinfo=UTC)


def test_nothing_gives_none():
    assert combine_deadline(None, None) is None
    assert combine_deadline("", "  ") is None


def test_date_and_time_are_spliced():
    result = combine_deadline("2025-11-14+01:00", "12:00:00+01:00")
    assert result == datetime(2025, 11, 14, 11, 0, tzinfo=UTC)


def test_date_offset_wins_over_time_offset():
    result = combine_deadline("2025-11-14+01:00", "12:00:00+03:00")
    assert result == datetime(2025, 11, 14, 11, 0, tzinfo=UTC)


def test_time_offset_used_when_date_has_none():
    result = combine_deadline("2025-11-14", "12:00:00+02:00")
    assert result == datetime(2025, 11, 14, 10, 0, tzinfo=UTC)


def test_no_offset_anywhere_is_utc():
    assert combine_deadline("2025-11-14", "09:15:00") == datetime(2025, 11, 14, 9, 15, tzinfo=UTC)


def test_two_full_timestamps_are_ambiguous():
    assert combine_deadline("2025-11-14T10:00:00Z", "2025-11-14T12:00:00Z") is None
    assert combine_deadline("2025-11-14T10:00:00+01:00", "2025-11-15+01:00") is None
    assert combine_deadline("14:00:00+01:00", "12:00:00+01:00") is None


def test_invalid_values_never_raise():
    assert combine_deadline("not-a-date", None) is None
    assert combine_deadline("2025-13-45+01:00", "12:00:00+01:00") is None
    assert combine_deadline(None, "99:99:99Z") is None


def test_publication_date_and_fallback():
    assert parse_publication_date("2025-10-10+02:00") == datetime(2025, 10, 9, 22, 0, tzinfo=UTC)
    assert parse_publication_date("2025-10-10Z") == datetime(2025, 10, 10, tzinfo=UTC)
    assert parse_publication_date("garbage") is None
    assert fallback_published_at(date(2025, 10, 10)) == datetime(2025, 10, 10, tzinfo=UTC)
