"""
Flexible date normalization.

Dates reach the engine as ISO strings, locale strings written by the
mobile client ("4/21/2025, 10:30:45 AM"), native datetimes, epoch
milliseconds, or free text with the timestamp wrapped in parentheses
("--- Entry (4/21/2025, 10:30:45 AM) ---"). All of them are reduced to a
naive local `datetime`.

Nothing here raises: when every strategy fails the caller gets `EPOCH`,
which `is_epoch` recognizes so orderings can push it behind valid dates.
"""

from __future__ import annotations

import logging
import re
import typing
import warnings
from datetime import date, datetime

import pandas as pd

logger = logging.getLogger(__name__)

T = typing.TypeVar("T")

# Fallback instant for unparseable input
EPOCH = datetime(1970, 1, 1)

_PARENTHETICAL = re.compile(r"\(([^)]*)\)")
_LOCALE_SPLIT = re.compile(r"[/,:\s]+")


def is_epoch(value: datetime) -> bool:
    """True when `value` is the parse-failure fallback."""
    return value == EPOCH


def to_local_naive(value: datetime) -> datetime:
    """Drop tz info after converting an aware instant to local wall-clock time."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def parse_flexible_date(value: typing.Any) -> datetime:
    """
    Parse `value` into a naive local datetime, first success wins:

    1) datetime / pandas.Timestamp / date objects (and epoch milliseconds)
    2) direct parse of the string (ISO and other unambiguous forms)
    3) month/day/year from the first three numeric tokens of a US locale string
    4) EPOCH

    A string containing "(...)" is reduced to the parenthetical first.
    """
    if value is None:
        return EPOCH

    native = _from_native(value)
    if native is not None:
        return native

    if not isinstance(value, str):
        logger.debug("Unsupported date value %r, using epoch fallback", value)
        return EPOCH

    text = _extract_parenthetical(value).strip()
    if not text:
        return EPOCH

    parsed = _parse_direct(text)
    if parsed is not None:
        return parsed

    parsed = _parse_us_locale(text)
    if parsed is not None:
        return parsed

    logger.debug("Could not parse date %r, using epoch fallback", value)
    return EPOCH


def _from_native(value: typing.Any) -> typing.Optional[datetime]:
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if pd.isna(value):
            return None
        if isinstance(value, pd.Timestamp):
            value = value.to_pydatetime()
        return to_local_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        # epoch milliseconds, as stored by the mobile client
        try:
            return datetime.fromtimestamp(value / 1000.0)
        except (OverflowError, OSError, ValueError):
            return None
    return None


def _extract_parenthetical(text: str) -> str:
    m = _PARENTHETICAL.search(text)
    if m and m.group(1).strip():
        return m.group(1)
    return text


def _parse_direct(text: str) -> typing.Optional[datetime]:
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            stamp = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if stamp is None or pd.isna(stamp):
        return None
    return to_local_naive(stamp.to_pydatetime())


def _parse_us_locale(text: str) -> typing.Optional[datetime]:
    """
    "4/21/2025, 10:30:45 AM" -> 2025-04-21 (time of day is not recovered).
    """
    numbers = [int(token) for token in _LOCALE_SPLIT.split(text) if token.isdigit()]
    if len(numbers) < 3:
        return None
    month, day, year = numbers[:3]
    try:
        return datetime(year, month, day)
    except ValueError:
        return None


def newest_first(items: typing.Iterable[T], key: typing.Callable[[T], datetime]) -> list[T]:
    """
    Stable newest-first sort. Items whose key is the epoch fallback follow
    every valid-dated item and keep their input order.
    """
    items = list(items)
    valid = [item for item in items if not is_epoch(key(item))]
    invalid = [item for item in items if is_epoch(key(item))]
    return sorted(valid, key=key, reverse=True) + invalid
