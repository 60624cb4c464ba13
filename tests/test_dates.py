from datetime import date, datetime, timezone

import pandas as pd
import pytest
from clinrec.dates import EPOCH, is_epoch, newest_first, parse_flexible_date


def test_native_values_are_returned():
    moment = datetime(2025, 4, 21, 10, 30)
    assert parse_flexible_date(moment) == moment
    assert parse_flexible_date(pd.Timestamp("2025-04-21 10:30")) == moment
    assert parse_flexible_date(date(2025, 4, 21)) == datetime(2025, 4, 21)


def test_aware_datetime_becomes_naive():
    parsed = parse_flexible_date(datetime(2025, 4, 21, 10, 30, tzinfo=timezone.utc))
    assert parsed.tzinfo is None


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2025-04-02T20:00:00", datetime(2025, 4, 2, 20, 0)),
        ("2025-04-02", datetime(2025, 4, 2)),
        ("Jan 5, 2024", datetime(2024, 1, 5)),
    ],
)
def test_direct_parse(text, expected):
    assert parse_flexible_date(text) == expected


def test_us_locale_string():
    parsed = parse_flexible_date("4/21/2025, 10:30:45 AM")
    assert parsed.date() == date(2025, 4, 21)


def test_locale_fallback_reads_month_day_year():
    """Trailing words defeat the direct parse; the numeric tokens still work."""
    assert parse_flexible_date("4/21/2025 visit") == datetime(2025, 4, 21)


def test_parenthetical_is_extracted():
    parsed = parse_flexible_date("--- New Entry (Jan 5, 2024) ---")
    assert parsed == datetime(2024, 1, 5)


@pytest.mark.parametrize("bad", [None, "", "not a date", "12/45/2025 visit", object(), True])
def test_unparseable_input_falls_back_to_epoch(bad):
    parsed = parse_flexible_date(bad)
    assert parsed == EPOCH
    assert is_epoch(parsed)


def test_newest_first_puts_invalid_last_and_is_stable():
    items = [
        ("bad-1", EPOCH),
        ("old", datetime(2024, 1, 1)),
        ("bad-2", EPOCH),
        ("new", datetime(2025, 1, 1)),
        ("old-twin", datetime(2024, 1, 1)),
    ]
    ordered = [name for name, _ in newest_first(items, key=lambda item: item[1])]
    assert ordered == ["new", "old", "old-twin", "bad-1", "bad-2"]
