"""
Clinical parameter record model.

Defines the ClinicalParameterRecord dataclass plus the identity, equality
and ordering rules the merge pipeline relies on, and the "exactly one
current record" enforcer.
"""

from __future__ import annotations

import dataclasses
import math
import typing
from dataclasses import dataclass, field
from datetime import datetime

from .dates import newest_first, parse_flexible_date

# The fixed measurement set, in display order
MEASUREMENT_FIELDS = (
    "inr",
    "hb",
    "wbc",
    "platelet",
    "bilirubin",
    "sgot",
    "sgpt",
    "alt",
    "tpr_alb",
    "urea_creat",
    "sodium",
    "fasting_hba1c",
    "pp",
    "tsh",
    "ft4",
)

# Attribute name -> key used by the mobile client, the cache and the remote store
WIRE_NAMES = {name: name for name in MEASUREMENT_FIELDS}
WIRE_NAMES.update(
    {
        "tpr_alb": "tprAlb",
        "urea_creat": "ureaCreat",
        "fasting_hba1c": "fastingHBA1C",
    }
)
WIRE_NAMES["others"] = "others"

# Display labels, used by the CLI table
FIELD_LABELS = {
    "inr": "INR",
    "hb": "HB",
    "wbc": "WBC",
    "platelet": "Platelet",
    "bilirubin": "Bili",
    "sgot": "SGOT",
    "sgpt": "SGPT",
    "alt": "ALT",
    "tpr_alb": "TPR/Alb",
    "urea_creat": "Urea/Creat",
    "sodium": "Sodium",
    "fasting_hba1c": "Fast/HBA1C",
    "pp": "PP",
    "tsh": "TSH",
    "ft4": "FT4",
    "others": "Others",
}

_RESERVED_KEYS = set(WIRE_NAMES.values()) | set(WIRE_NAMES) | {"date", "isCurrent", "is_current"}


@dataclass(frozen=True)
class ClinicalParameterRecord:
    """
    One dated set of clinical measurements for a patient.

    Attributes:
        inr ... ft4: String-encoded measurement values, None when not recorded.
        others: Free-text "other findings" field.
        date: Canonical (naive, local) instant of the measurement set.
        is_current: True for the newest record of a reconciled collection.
        extras: Keys from the source payload that are not part of the model.
    """

    inr: typing.Optional[str] = None
    hb: typing.Optional[str] = None
    wbc: typing.Optional[str] = None
    platelet: typing.Optional[str] = None
    bilirubin: typing.Optional[str] = None
    sgot: typing.Optional[str] = None
    sgpt: typing.Optional[str] = None
    alt: typing.Optional[str] = None
    tpr_alb: typing.Optional[str] = None
    urea_creat: typing.Optional[str] = None
    sodium: typing.Optional[str] = None
    fasting_hba1c: typing.Optional[str] = None
    pp: typing.Optional[str] = None
    tsh: typing.Optional[str] = None
    ft4: typing.Optional[str] = None
    others: typing.Optional[str] = None
    date: datetime = field(default_factory=datetime.now)
    is_current: bool = False
    extras: dict = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if not isinstance(self.date, datetime):
            raise ValueError(f"date must be a datetime, got {type(self.date).__name__}")
        if not isinstance(self.is_current, bool):
            raise ValueError(
                f"is_current must be a boolean, got {type(self.is_current).__name__}"
            )
        for name in (*MEASUREMENT_FIELDS, "others"):
            val = getattr(self, name)
            if val is not None and not isinstance(val, str):
                raise ValueError(f"{name} must be a string or None, got {val!r}")

    # ------------------------
    # Conversion to/from dicts
    # ------------------------

    @classmethod
    def from_mapping(
        cls, mapping: typing.Mapping[str, typing.Any], *, default_date: typing.Optional[datetime] = None
    ) -> "ClinicalParameterRecord":
        """
        Build a record from a decoded payload (wire or attribute key names).

        A missing/empty date becomes `default_date`, or now when not given;
        any other date goes through parse_flexible_date.
        """
        values: dict[str, typing.Any] = {}
        for name, wire_name in WIRE_NAMES.items():
            raw = mapping.get(wire_name, mapping.get(name))
            values[name] = _coerce_value(raw)

        raw_date = mapping.get("date")
        if raw_date is None or (isinstance(raw_date, str) and not raw_date.strip()):
            values["date"] = default_date or datetime.now()
        else:
            values["date"] = parse_flexible_date(raw_date)

        values["is_current"] = _to_bool(mapping.get("isCurrent", mapping.get("is_current")))
        values["extras"] = {k: v for k, v in mapping.items() if k not in _RESERVED_KEYS}
        return cls(**values)

    def to_mapping(self) -> dict[str, typing.Any]:
        """Serialize with wire key names; the date is written as ISO 8601."""
        out: dict[str, typing.Any] = dict(self.extras)
        for name, wire_name in WIRE_NAMES.items():
            out[wire_name] = getattr(self, name)
        out["date"] = self.date.isoformat()
        out["isCurrent"] = self.is_current
        return out

    def measurement_values(self) -> tuple[str, ...]:
        """Measurement values with missing ones normalized to ''."""
        return tuple(getattr(self, name) or "" for name in MEASUREMENT_FIELDS)

    def with_values_from(self, other: "ClinicalParameterRecord") -> "ClinicalParameterRecord":
        """Copy of self carrying `other`'s values but keeping self's date."""
        return dataclasses.replace(
            other,
            date=self.date,
            is_current=self.is_current,
            extras={**self.extras, **other.extras},
        )


def _coerce_value(raw: typing.Any) -> typing.Optional[str]:
    """Measurement values are kept as text: 13 -> '13', 1.5 -> '1.5', NaN -> None."""
    if raw is None:
        return None
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, float):
        if math.isnan(raw):
            return None
        return str(int(raw)) if raw.is_integer() else str(raw)
    if isinstance(raw, int):
        return str(raw)
    return str(raw)


def _to_bool(value: typing.Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "t", "yes", "y"}


# -----------------------------
# Identity, equality, ordering
# -----------------------------


def is_same_day(a: datetime, b: datetime) -> bool:
    """Calendar-day equality; time of day is ignored."""
    return (a.year, a.month, a.day) == (b.year, b.month, b.day)


def identity_hash(record: ClinicalParameterRecord) -> str:
    """Cheap comparison key: raw measurement values joined by '_'."""
    return "_".join(record.measurement_values())


def are_values_identical(a: ClinicalParameterRecord, b: ClinicalParameterRecord) -> bool:
    """True when every measurement field matches (None and '' are equal)."""
    if identity_hash(a) != identity_hash(b):
        return False
    return a.measurement_values() == b.measurement_values()


def sort_newest_first(
    records: typing.Iterable[ClinicalParameterRecord],
) -> list[ClinicalParameterRecord]:
    """
    Stable sort by date, newest first. Records whose date is the epoch
    fallback always come after every valid-dated record, in input order.
    """
    return newest_first(records, key=lambda r: r.date)


def ensure_single_current(
    records: typing.Iterable[ClinicalParameterRecord],
) -> list[ClinicalParameterRecord]:
    """
    Return a new, newest-first list in which only the first record is
    flagged current. Any flags on the input are overwritten.
    """
    ordered = sort_newest_first(records)
    return [
        dataclasses.replace(record, is_current=(index == 0))
        for index, record in enumerate(ordered)
    ]
