"""
Merge pipeline for clinical parameter records.

Process (one reconciliation pass):
1) decode wire payloads and normalize every record date
2) seed the working set with the in-memory draft
3) fold in cached records for days not yet represented
4) apply the remote current record (overwrites a same-day draft)
5) fold in remote history (beats cached records of the same day)
6) drop configured placeholder records
7) flag exactly one record as current
8) write the result through to the local store (best effort)
"""

from __future__ import annotations

import dataclasses
import json
import logging
import typing
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto

from .config import LEGACY_PLACEHOLDER, EngineSettings, SentinelDate
from .dates import is_epoch, to_local_naive
from .record import ClinicalParameterRecord, ensure_single_current, is_same_day
from .store import CLINICAL_HISTORY, KeyValueStore, cache_key
from .telemetry import PipelineObserver, null_observer
from .wire import decode

logger = logging.getLogger(__name__)

RecordInput = typing.Union[ClinicalParameterRecord, typing.Mapping[str, typing.Any]]


class RecordSource(Enum):
    """Where a record in the working set came from, most authoritative first."""

    DRAFT = auto()
    REMOTE_CURRENT = auto()
    REMOTE_HISTORY = auto()
    CACHE = auto()


@dataclass
class _Slot:
    record: ClinicalParameterRecord
    source: RecordSource


@dataclass(frozen=True)
class MergePolicy:
    """
    Merge-time configuration.

    sentinels: predicates over a record date; matching records are never
    surfaced. Pass `sentinels=()` to disable the placeholder filter.
    """

    sentinels: tuple[typing.Callable[[datetime], bool], ...] = (SentinelDate(LEGACY_PLACEHOLDER),)

    def is_sentinel(self, when: datetime) -> bool:
        return any(predicate(when) for predicate in self.sentinels)

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "MergePolicy":
        return cls(sentinels=tuple(settings.sentinels))


def _same_day(a: datetime, b: datetime) -> bool:
    # unparseable dates never collapse into each other
    if is_epoch(a) or is_epoch(b):
        return False
    return is_same_day(a, b)


class RecordMerger:
    def __init__(
        self,
        policy: typing.Optional[MergePolicy] = None,
        observer: typing.Optional[PipelineObserver] = None,
        clock: typing.Callable[[], datetime] = datetime.now,
    ):
        self.policy = policy or MergePolicy()
        self._observer = observer or null_observer
        self._clock = clock

    def reconcile(
        self,
        current: typing.Optional[RecordInput],
        cached: typing.Iterable[RecordInput],
        remote_current: typing.Optional[typing.Any],
        remote_history: typing.Iterable[typing.Any],
        *,
        store: typing.Optional[KeyValueStore] = None,
        patient_id: typing.Optional[str] = None,
    ) -> list[ClinicalParameterRecord]:
        """
        Combine the draft, cached and remote records into one newest-first
        list with exactly one current record (or an empty list).

        When both `store` and `patient_id` are given the result is written
        to the "clinical_history_<patient_id>" key; write failures are
        reported to the observer and logged, never raised.
        """
        now = self._clock()

        # 1) decode + normalize
        draft = self._to_record(current, "current", now) if current is not None else None
        cached_records = self._to_records(cached or [], "cached", now)
        remote_record = (
            self._to_record(remote_current, "remote_current", now)
            if remote_current is not None
            else None
        )
        history_records = self._to_records(remote_history or [], "remote_history", now)
        self._emit(
            "decoded",
            has_current=draft is not None,
            cached=len(cached_records),
            has_remote_current=remote_record is not None,
            remote_history=len(history_records),
        )

        cached_records = self._drop_sentinels(cached_records, "cached")
        history_records = self._drop_sentinels(history_records, "remote_history")
        if remote_record is not None and self.policy.is_sentinel(remote_record.date):
            self._emit("sentinels-removed", source="remote_current", count=1)
            remote_record = None

        # 2) seed
        slots: list[_Slot] = []
        if draft is not None:
            slots.append(_Slot(draft, RecordSource.DRAFT))
        self._emit("seeded", count=len(slots))

        # 3) cached records for days not already represented
        added = 0
        for record in cached_records:
            if any(_same_day(slot.record.date, record.date) for slot in slots):
                continue
            slots.append(_Slot(record, RecordSource.CACHE))
            added += 1
        self._emit("cache-folded", added=added, dropped=len(cached_records) - added)

        # 4) remote current record
        if remote_record is not None:
            self._apply_remote_current(slots, remote_record)

        # 5) remote history
        self._fold_remote_history(slots, history_records)

        # 6) placeholder filter over everything, draft included
        kept = [slot.record for slot in slots if not self.policy.is_sentinel(slot.record.date)]
        if len(kept) != len(slots):
            self._emit("sentinels-removed", source="merged", count=len(slots) - len(kept))

        # 7) exactly one current record
        result = ensure_single_current(kept)
        self._emit(
            "current-assigned",
            count=len(result),
            current=result[0].date.isoformat() if result else None,
        )

        # 8) write-through
        if store is not None and patient_id:
            self._persist(store, patient_id, result)

        return result

    # -----------------------
    # Internal helper methods
    # -----------------------

    def _emit(self, checkpoint: str, **details: typing.Any) -> None:
        self._observer(checkpoint, details)

    def _to_record(
        self, value: typing.Any, source: str, now: datetime
    ) -> typing.Optional[ClinicalParameterRecord]:
        if isinstance(value, ClinicalParameterRecord):
            if value.date.tzinfo is None:
                return value
            return dataclasses.replace(value, date=to_local_naive(value.date))
        decoded = decode(value)
        if decoded is None:
            # {"NULL": true} means no record
            return None
        if not isinstance(decoded, Mapping):
            self._emit("record-skipped", source=source, value=value)
            return None
        try:
            return ClinicalParameterRecord.from_mapping(decoded, default_date=now)
        except ValueError as e:
            self._emit("record-skipped", source=source, value=value, error=str(e))
            return None

    def _to_records(
        self, values: typing.Iterable[typing.Any], source: str, now: datetime
    ) -> list[ClinicalParameterRecord]:
        decoded = decode(values)
        if not isinstance(decoded, (list, tuple)):
            decoded = list(decoded) if not isinstance(decoded, (dict, str)) else [decoded]
        records = []
        for value in decoded:
            record = self._to_record(value, source, now)
            if record is not None:
                records.append(record)
        return records

    def _drop_sentinels(
        self, records: list[ClinicalParameterRecord], source: str
    ) -> list[ClinicalParameterRecord]:
        kept = [r for r in records if not self.policy.is_sentinel(r.date)]
        if len(kept) != len(records):
            self._emit("sentinels-removed", source=source, count=len(records) - len(kept))
        return kept

    def _apply_remote_current(self, slots: list[_Slot], remote: ClinicalParameterRecord) -> None:
        if slots and slots[0].source is RecordSource.DRAFT and _same_day(slots[0].record.date, remote.date):
            # same-day remote data wins over the draft's values; the draft keeps its timestamp
            slots[0] = _Slot(slots[0].record.with_values_from(remote), RecordSource.REMOTE_CURRENT)
            self._emit("remote-current-applied", mode="overwrite-seed")
            return

        def superseded(slot: _Slot) -> bool:
            return slot.source is RecordSource.CACHE and _same_day(slot.record.date, remote.date)

        replaced = sum(1 for slot in slots if superseded(slot))
        slots[:] = [slot for slot in slots if not superseded(slot)]
        slots.append(_Slot(remote, RecordSource.REMOTE_CURRENT))
        self._emit("remote-current-applied", mode="append", replaced_cached=replaced)

    def _fold_remote_history(self, slots: list[_Slot], history: list[ClinicalParameterRecord]) -> None:
        added = replaced = dropped = 0
        for record in history:
            index = next(
                (i for i, slot in enumerate(slots) if _same_day(slot.record.date, record.date)),
                None,
            )
            if index is None:
                slots.append(_Slot(record, RecordSource.REMOTE_HISTORY))
                added += 1
                continue

            existing = slots[index]
            if existing.source is RecordSource.CACHE or (
                existing.source is RecordSource.REMOTE_HISTORY and record.date > existing.record.date
            ):
                slots[index] = _Slot(record, RecordSource.REMOTE_HISTORY)
                replaced += 1
            else:
                dropped += 1
        self._emit("remote-history-folded", added=added, replaced=replaced, dropped=dropped)

    def _persist(
        self, store: KeyValueStore, patient_id: str, records: list[ClinicalParameterRecord]
    ) -> None:
        key = cache_key(CLINICAL_HISTORY, patient_id)
        try:
            payload = json.dumps([r.to_mapping() for r in records], default=str)
            store.set(key, payload)
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to persist merged clinical records to %r: %s", key, e)
            self._emit("persist-failed", key=key, error=str(e))
            return
        self._emit("persisted", key=key, count=len(records))


def reconcile(
    current: typing.Optional[RecordInput],
    cached: typing.Iterable[RecordInput],
    remote_current: typing.Optional[typing.Any],
    remote_history: typing.Iterable[typing.Any],
    *,
    store: typing.Optional[KeyValueStore] = None,
    patient_id: typing.Optional[str] = None,
    policy: typing.Optional[MergePolicy] = None,
    observer: typing.Optional[PipelineObserver] = None,
) -> list[ClinicalParameterRecord]:
    """Module-level shortcut for RecordMerger(policy, observer).reconcile(...)."""
    merger = RecordMerger(policy=policy, observer=observer)
    return merger.reconcile(
        current, cached, remote_current, remote_history, store=store, patient_id=patient_id
    )
