from datetime import datetime, timezone

from utils import parse_feed_date

NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_rfc822_numeric_zone():
    parsed = parse_feed_date("Sat, 15 Nov 2025 16:00:00 +0000", now=NOW)
    assert parsed == datetime(2025, 11, 15, 16, 0, tzinfo=timezone.utc)


def test_rfc822_numeric_offset_is_normalized_to_utc():
    parsed = parse_feed_date("Sat, 15 Nov 2025 16:00:00 +0100", now=NOW)
    assert parsed == datetime(2025, 11, 15, 15, 0, tzinfo=timezone.utc)
    assert parsed.tzinfo == timezone.utc


def test_rfc822_named_zones():
    assert parse_feed_date("Sat, 15 Nov 2025 16:00:00 GMT", now=NOW) == datetime(
        2025, 11, 15, 16, 0, tzinfo=timezone.utc
    )
    assert parse_feed_date("Sat, 15 Nov 2025 16:00:00 EST", now=NOW) == datetime(
        2025, 11, 15, 21, 0, tzinfo=timezone.utc
    )
    assert parse_feed_date("Sat, 15 Nov 2025 16:00:00 PDT", now=NOW) == datetime(
        2025, 11, 15, 23, 0, tzinfo=timezone.utc
    )


def test_iso8601_with_z_and_offset():
    assert parse_feed_date("2025-11-15T16:00:00Z", now=NOW) == datetime(2025, 11, 15, 16, 0, tzinfo=timezone.utc)
    assert parse_feed_date("2025-11-15T18:00:00+02:00", now=NOW) == datetime(
        2025, 11, 15, 16, 0, tzinfo=timezone.utc
    )


def test_surrounding_whitespace_is_ignored():
    parsed = parse_feed_date("  Sat, 15 Nov 2025 16:00:00 +0000\n", now=NOW)
    assert parsed == datetime(2025, 11, 15, 16, 0, tzinfo=timezone.utc)


def test_unparsable_date_returns_now():
    assert parse_feed_date("sometime last week", now=NOW) == NOW
    assert parse_feed_date("Sat, 15 Nov 2025 16:00:00 XYZ", now=NOW) == NOW
    assert parse_feed_date("", now=NOW) == NOW
    assert parse_feed_date(None, now=NOW) == NOW


def test_unparsable_date_defaults_to_current_time():
    before = datetime.now(timezone.utc)
    parsed = parse_feed_date("not a date")
    after = datetime.now(timezone.utc)
    assert before <= parsed <= after
