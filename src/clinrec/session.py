"""
Per-patient orchestration shell.

PatientClinicalSession is the stateful side of the engine: it owns the
draft being edited, the medical-history text, the local store and the
remote fetcher, and keeps the last reconciled snapshot. Everything it
computes is delegated to the pure functions in merge/history.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import typing
from dataclasses import dataclass
from datetime import datetime

import requests

from .history import HistoryEntry, append_history_entry, segment_history
from .merge import MergePolicy, RecordMerger
from .record import WIRE_NAMES, ClinicalParameterRecord
from .remote import RemoteFetchError, RemotePayload
from .store import (
    CLINICAL_HISTORY,
    CLINICAL_PARAMS,
    HISTORY_DRAFT,
    LEGACY_HISTORY_DRAFT,
    KeyValueStore,
    cache_key,
    read_json_list,
)
from .telemetry import PipelineObserver
from .wire import decode

logger = logging.getLogger(__name__)

Fetcher = typing.Callable[[str], RemotePayload]

# wire name or attribute name -> attribute name
_FIELD_ALIASES = {**{wire: name for name, wire in WIRE_NAMES.items()}, **{name: name for name in WIRE_NAMES}}


class ReconcileInProgressError(RuntimeError):
    """Raised when a refresh is requested while one is running for the same patient."""


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable result of the last refresh.

    Attributes:
        records: Reconciled records, newest first.
        stale: True when remote data could not be fetched.
        error: Description of the fetch failure, if any.
    """

    records: tuple[ClinicalParameterRecord, ...] = ()
    stale: bool = False
    error: typing.Optional[str] = None

    @property
    def current(self) -> typing.Optional[ClinicalParameterRecord]:
        return next((r for r in self.records if r.is_current), None)


class PatientClinicalSession:
    # patients with a refresh running; shared by every session so two sessions
    # for one patient cannot reconcile at the same time
    _in_flight: set[str] = set()

    def __init__(
        self,
        patient_id: str,
        store: KeyValueStore,
        fetcher: typing.Optional[Fetcher] = None,
        policy: typing.Optional[MergePolicy] = None,
        observer: typing.Optional[PipelineObserver] = None,
        clock: typing.Callable[[], datetime] = datetime.now,
    ):
        if not patient_id or not isinstance(patient_id, str):
            raise ValueError(f"Invalid patient ID: {patient_id!r}")
        self.patient_id = patient_id
        self.store = store
        self.fetcher = fetcher
        self.medical_history: typing.Optional[str] = None
        self._clock = clock
        self._merger = RecordMerger(policy=policy, observer=observer, clock=clock)
        self._snapshot = Snapshot()
        self.draft = self.load_draft()

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    # ---------------
    # Reconciliation
    # ---------------

    def refresh(self) -> Snapshot:
        """
        Reconcile draft, cache and remote data and keep the result.

        A failing fetch leaves the remote inputs empty and marks the
        snapshot stale instead of raising.
        """
        if self.patient_id in self._in_flight:
            raise ReconcileInProgressError(f"Reconciliation already running for {self.patient_id!r}")
        self._in_flight.add(self.patient_id)
        try:
            cached = read_json_list(self.store, cache_key(CLINICAL_HISTORY, self.patient_id))
            payload, error = self._fetch_remote()

            records = self._merger.reconcile(
                self.draft,
                cached,
                payload.current if payload else None,
                payload.history if payload else [],
                store=self.store,
                patient_id=self.patient_id,
            )
            if payload is not None:
                text = decode(payload.medical_history)
                if isinstance(text, str):
                    self.medical_history = text

            self._snapshot = Snapshot(
                records=tuple(records),
                stale=payload is None,
                error=error,
            )
            return self._snapshot
        finally:
            self._in_flight.discard(self.patient_id)

    def _fetch_remote(self) -> tuple[typing.Optional[RemotePayload], typing.Optional[str]]:
        if self.fetcher is None:
            return None, "offline"
        try:
            return self.fetcher(self.patient_id), None
        except (RemoteFetchError, requests.RequestException) as e:
            logger.warning("Remote fetch failed for %s, using cached data: %s", self.patient_id, e)
            return None, str(e)

    # -------------------
    # Clinical parameters
    # -------------------

    def load_draft(self) -> typing.Optional[ClinicalParameterRecord]:
        """Restore the parameter draft saved under clinical_params_<id>, if any."""
        key = cache_key(CLINICAL_PARAMS, self.patient_id)
        try:
            raw = self.store.get(key)
        except OSError as e:
            logger.warning("Could not read draft %r: %s", key, e)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Discarding unparseable draft %r: %s", key, e)
            return None
        if not isinstance(data, dict):
            return None
        return ClinicalParameterRecord.from_mapping(data, default_date=self._clock())

    def update_parameter(self, field_name: str, value: typing.Optional[str]) -> ClinicalParameterRecord:
        """
        Set one field of the draft, stamp it with the current time and save it.
        Accepts attribute names ("tpr_alb") and wire names ("tprAlb").
        """
        try:
            attribute = _FIELD_ALIASES[field_name]
        except KeyError:
            raise ValueError(f"Unknown clinical parameter: {field_name!r}")
        base = self.draft or ClinicalParameterRecord(date=self._clock())
        self.draft = dataclasses.replace(base, **{attribute: value}, date=self._clock())
        self._write(cache_key(CLINICAL_PARAMS, self.patient_id), json.dumps(self.draft.to_mapping()))
        return self.draft

    def clear_draft(self) -> None:
        self.draft = None
        self._remove(cache_key(CLINICAL_PARAMS, self.patient_id))

    # ---------------
    # Medical history
    # ---------------

    def history_entries(self) -> list[HistoryEntry]:
        return segment_history(self.medical_history)

    def save_pending_history(self, text: str) -> None:
        """Keep unsaved history text so it survives the app being closed."""
        if not text or not text.strip():
            return
        self._write(cache_key(HISTORY_DRAFT, self.patient_id), text)
        self._write(cache_key(LEGACY_HISTORY_DRAFT, self.patient_id), text)

    def restore_pending_history(self) -> str:
        """Pending history text, falling back to the legacy key; '' if none."""
        for kind in (HISTORY_DRAFT, LEGACY_HISTORY_DRAFT):
            key = cache_key(kind, self.patient_id)
            try:
                text = self.store.get(key)
            except OSError as e:
                logger.warning("Could not read pending history %r: %s", key, e)
                continue
            if text and text.strip():
                return text
        return ""

    def transfer_pending_history(
        self, text: typing.Optional[str] = None, timestamp: typing.Optional[datetime] = None
    ) -> bool:
        """
        Move pending text (or `text`) into the medical history as a new entry
        and clear the pending keys. Returns False when there is nothing to move.
        """
        if text is None:
            text = self.restore_pending_history()
        if not text or not text.strip():
            return False
        self.medical_history = append_history_entry(
            self.medical_history, text, timestamp or self._clock()
        )
        self._remove(cache_key(HISTORY_DRAFT, self.patient_id))
        self._remove(cache_key(LEGACY_HISTORY_DRAFT, self.patient_id))
        return True

    # -------------
    # Store helpers
    # -------------

    def _write(self, key: str, value: str) -> None:
        try:
            self.store.set(key, value)
        except OSError as e:
            logger.error("Could not save %r to local store: %s", key, e)

    def _remove(self, key: str) -> None:
        try:
            self.store.remove(key)
        except OSError as e:
            logger.error("Could not remove %r from local store: %s", key, e)
