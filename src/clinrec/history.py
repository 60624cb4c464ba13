"""
Free-text medical history notes.

The history field is one text blob. New notes are prepended under a
marker line carrying the time they were written:

    --- New Entry (4/21/2025, 10:30:45 AM) ---
    Started on metformin.

    --- Entry (3/02/2025, 9:05:12 AM) ---
    First visit.

`segment_history` turns a blob back into dated entries for display;
`append_history_entry` is the only writer of the marker format.
"""

from __future__ import annotations

import re
import typing
from dataclasses import dataclass
from datetime import datetime

from .dates import EPOCH, newest_first, parse_flexible_date

# "--- Entry (...) ---" or "--- New Entry (...) ---", any case, flexible spacing
_ENTRY_MARKER = re.compile(r"---\s*(?:New\s*)?Entry\s*\(([^)]+)\)\s*---", re.IGNORECASE)


@dataclass(frozen=True)
class HistoryEntry:
    """
    A single note from a history blob.

    Attributes:
        text: The note body, stripped.
        timestamp: The raw marker timestamp ("" for unmarked text).
        date: Parsed timestamp, or EPOCH when it could not be parsed.
    """

    text: str
    timestamp: str
    date: datetime


def segment_history(blob: typing.Optional[str]) -> list[HistoryEntry]:
    """
    Split a history blob into entries, newest first.

    - empty/None -> []
    - no markers -> one untimed entry holding the whole blob
    - each marker labels the text that follows it up to the next marker;
      text before the first marker becomes an untimed entry
    - entries with blank text are dropped; unparseable timestamps sort last
    """
    if not blob or not blob.strip():
        return []

    markers = list(_ENTRY_MARKER.finditer(blob))
    if not markers:
        return [HistoryEntry(text=blob, timestamp="", date=EPOCH)]

    entries: list[HistoryEntry] = []

    preamble = blob[: markers[0].start()].strip()
    if preamble:
        entries.append(HistoryEntry(text=preamble, timestamp="", date=EPOCH))

    for index, marker in enumerate(markers):
        end = markers[index + 1].start() if index + 1 < len(markers) else len(blob)
        text = blob[marker.end() : end].strip()
        if not text:
            continue
        timestamp = marker.group(1).strip()
        entries.append(
            HistoryEntry(text=text, timestamp=timestamp, date=parse_flexible_date(timestamp))
        )

    return newest_first(entries, key=lambda e: e.date)


def format_locale_timestamp(moment: datetime) -> str:
    """US locale form written by the mobile client: '4/21/2025, 10:30:45 AM'."""
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return (
        f"{moment.month}/{moment.day}/{moment.year}, "
        f"{hour}:{moment.minute:02d}:{moment.second:02d} {suffix}"
    )


def append_history_entry(
    blob: typing.Optional[str],
    text: str,
    timestamp: typing.Optional[typing.Union[str, datetime]] = None,
) -> typing.Optional[str]:
    """
    Prepend `text` to the history blob under a dated marker.

    Returns the blob unchanged when `text` is blank. The first entry of an
    empty history gets an "Entry" marker, later ones "New Entry".
    """
    if not text or not text.strip():
        return blob

    if timestamp is None:
        timestamp = datetime.now()
    if isinstance(timestamp, datetime):
        timestamp = format_locale_timestamp(timestamp)

    if blob and blob.strip():
        return f"--- New Entry ({timestamp}) ---\n{text}\n\n{blob}"
    return f"--- Entry ({timestamp}) ---\n{text}"
