"""
Wire-format decoder.

The remote patient store returns attribute values in a recursive tagged
union: every value is a one-key mapping whose key names its type.

    {"M": {"hb": {"S": "13.1"}, "visits": {"N": "4"}}}  ->  {"hb": "13.1", "visits": 4}

`decode` is safe to call on anything: values that carry no recognized tag
come back unchanged, so already-plain payloads (e.g. from the local cache)
can go through the same path.
"""

from __future__ import annotations

import math
import typing

# Tag keys in the order they are checked
WIRE_TAGS = ("S", "N", "BOOL", "NULL", "M", "L")


def has_wire_tag(value: typing.Any) -> bool:
    """True when `value` is a mapping carrying one of the WIRE_TAGS."""
    return isinstance(value, dict) and any(tag in value for tag in WIRE_TAGS)


def decode(value: typing.Any) -> typing.Any:
    """
    Convert a tagged wire value into plain Python values.

    - None and untagged values are returned as-is.
    - {"S": v} -> v, {"BOOL": v} -> v, {"NULL": True} -> None
    - {"N": v} -> int or float; unparseable numbers become float("nan")
    - {"M": {...}} -> dict, {"L": [...]} -> list, decoded recursively
    """
    if value is None or not has_wire_tag(value):
        return value

    if "S" in value:
        return value["S"]
    if "N" in value:
        return _parse_number(value["N"])
    if "BOOL" in value:
        return value["BOOL"]
    if "NULL" in value:
        return None
    if "M" in value:
        entries = value["M"]
        if not isinstance(entries, dict):
            return value
        return {key: decode(item) for key, item in entries.items()}
    # "L"
    items = value["L"]
    if not isinstance(items, (list, tuple)):
        return value
    return [decode(item) for item in items]


def _parse_number(raw: typing.Any) -> typing.Union[int, float]:
    """
    Parse the text of an N value.

    Integer literals stay ints ("42" -> 42); everything else goes through
    float(). A failed parse yields NaN instead of raising.
    """
    if isinstance(raw, bool):
        return math.nan
    if isinstance(raw, (int, float)):
        return raw
    text = str(raw).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return math.nan
