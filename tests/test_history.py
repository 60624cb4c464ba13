from datetime import datetime

import pytest
from clinrec.dates import EPOCH
from clinrec.history import (
    HistoryEntry,
    append_history_entry,
    format_locale_timestamp,
    segment_history,
)


@pytest.mark.parametrize("blob", [None, "", "   \n  "])
def test_empty_blob_gives_no_entries(blob):
    assert segment_history(blob) == []


def test_blob_without_markers_is_one_untimed_entry():
    entries = segment_history("just some text")
    assert entries == [HistoryEntry(text="just some text", timestamp="", date=EPOCH)]


def test_two_markers_are_ordered_newest_first():
    blob = "--- Entry (Jan 1, 2024) ---\nA\n--- New Entry (Jan 5, 2024) ---\nB"
    entries = segment_history(blob)
    assert [(e.text, e.timestamp) for e in entries] == [("B", "Jan 5, 2024"), ("A", "Jan 1, 2024")]
    assert entries[0].date == datetime(2024, 1, 5)


def test_markers_are_case_insensitive_with_flexible_spacing():
    blob = "---new   entry( Jan 2, 2024 )---\nlower\n---  ENTRY (Jan 1, 2024)---\nupper"
    assert [e.text for e in segment_history(blob)] == ["lower", "upper"]


def test_unparseable_timestamps_sort_last_in_discovery_order():
    blob = (
        "--- Entry (sometime) ---\nfirst bad\n"
        "--- Entry (Jan 1, 2024) ---\ndated\n"
        "--- Entry (later maybe) ---\nsecond bad"
    )
    entries = segment_history(blob)
    assert [e.text for e in entries] == ["dated", "first bad", "second bad"]
    assert entries[1].timestamp == "sometime"
    assert entries[1].date == EPOCH


def test_blank_entries_are_dropped():
    blob = "--- Entry (Jan 1, 2024) ---\n   \n--- New Entry (Jan 2, 2024) ---\nkept"
    assert [e.text for e in segment_history(blob)] == ["kept"]


def test_text_before_first_marker_is_kept_untimed():
    blob = "legacy note\n--- Entry (Jan 1, 2024) ---\nA"
    entries = segment_history(blob)
    assert [(e.text, e.timestamp) for e in entries] == [("A", "Jan 1, 2024"), ("legacy note", "")]


def test_locale_timestamp_format():
    assert format_locale_timestamp(datetime(2025, 4, 21, 10, 30, 45)) == "4/21/2025, 10:30:45 AM"
    assert format_locale_timestamp(datetime(2025, 4, 21, 0, 5, 0)) == "4/21/2025, 12:05:00 AM"
    assert format_locale_timestamp(datetime(2025, 4, 21, 15, 0, 9)) == "4/21/2025, 3:00:09 PM"


def test_append_to_empty_history_uses_entry_marker():
    blob = append_history_entry(None, "first", datetime(2025, 4, 21, 10, 30, 45))
    assert blob == "--- Entry (4/21/2025, 10:30:45 AM) ---\nfirst"


def test_append_prepends_new_entry():
    blob = append_history_entry("--- Entry (Jan 1, 2024) ---\nold", "new", "Jan 2, 2024")
    assert blob.startswith("--- New Entry (Jan 2, 2024) ---\nnew\n\n--- Entry (Jan 1, 2024)")
    assert [e.text for e in segment_history(blob)] == ["new", "old"]


def test_append_blank_text_leaves_history_unchanged():
    assert append_history_entry("existing", "   ") == "existing"
