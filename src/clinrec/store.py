"""
Local key-value stores for cached patient data.

The engine only needs get/set/remove by string key; values are JSON text.
Keys follow "<entity-kind>_<patientId>".
"""

from __future__ import annotations

import hashlib
import json
import logging
import pathlib
import typing

logger = logging.getLogger(__name__)

CLINICAL_HISTORY = "clinical_history"
CLINICAL_PARAMS = "clinical_params"
HISTORY_DRAFT = "new_history_input"
LEGACY_HISTORY_DRAFT = "pending_history"


def cache_key(kind: str, patient_id: str) -> str:
    """cache_key('clinical_history', 'P1') -> 'clinical_history_P1'"""
    if not patient_id:
        raise ValueError("patient_id must be a non-empty string")
    return f"{kind}_{patient_id}"


@typing.runtime_checkable
class KeyValueStore(typing.Protocol):
    def get(self, key: str) -> typing.Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store, for tests and one-shot runs."""

    def __init__(self, initial: typing.Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> typing.Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class FileStore:
    """One UTF-8 text file per key under `root`."""

    def __init__(self, root: typing.Union[str, pathlib.Path]):
        self.root = pathlib.Path(root)

    def _path(self, key: str) -> pathlib.Path:
        # keys carry patient ids; keep file names safe and stable
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in key)
        return self.root / f"{safe}.{digest}.json"

    def get(self, key: str) -> typing.Optional[str]:
        path = self._path(key)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(value, encoding="utf-8")

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def read_json_list(store: KeyValueStore, key: str) -> list:
    """
    Read a JSON array stored under `key`. Missing keys, unreadable values
    and non-array JSON all give [] (logged, not raised).
    """
    try:
        raw = store.get(key)
    except OSError as e:
        logger.warning("Could not read %r from local store: %s", key, e)
        return []
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Discarding unparseable cache entry %r: %s", key, e)
        return []
    if not isinstance(parsed, list):
        logger.warning("Discarding cache entry %r: expected a JSON array", key)
        return []
    return parsed
