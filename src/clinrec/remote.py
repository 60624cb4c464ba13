"""
Remote patient-processor client.

High level
----------
The remote store is reached through one POST endpoint taking
{"action": "getPatient", "patientId": ...}. Its reply is JSON, sometimes
wrapped in a gateway envelope whose "body" is itself a JSON string:

    {"statusCode": 200, "body": "{\"success\": true, \"patient\": {...}, ...}"}

Clinical values inside come back in the tagged wire format; this module
does not decode them, it only unwraps the envelope into a RemotePayload
that reconcile() accepts directly.

Key behaviors
-------------
- Small retry/backoff on network, HTTP and JSON decode problems.
- Any failure, including {"success": false}, raises RemoteFetchError; the
  caller degrades to cache-only reconciliation.
"""

from __future__ import annotations

import json
import logging
import time
import typing
from dataclasses import dataclass, field

import requests

from .config import EngineSettings

logger = logging.getLogger(__name__)


class RemoteFetchError(RuntimeError):
    """Raised when patient data cannot be fetched from the remote store."""


@dataclass
class RemotePayload:
    """
    Raw (still wire-encoded) clinical data for one patient.

    Attributes:
        current: The patient's stored clinical parameters, or None.
        history: Earlier clinical parameter records.
        medical_history: The free-text history blob, or None.
    """

    current: typing.Any = None
    history: list = field(default_factory=list)
    medical_history: typing.Any = None


# ------------------------------------------------------------------------------
# Small utilities
# ------------------------------------------------------------------------------


def _sleep_backoff(i: int) -> None:
    """
    Sleep using a small exponential backoff.
    Sequence ~ 0.25s, 0.5s, 1s, 2s.
    """
    time.sleep(0.25 * (2**i))


def _post_json(url: str, payload: dict, *, timeout: float, attempts: int) -> typing.Any:
    """
    POST JSON with retry/backoff; raises RemoteFetchError if all attempts fail.
    """
    last_exc: Exception | None = None
    for i in range(attempts):
        try:
            resp = requests.post(
                url,
                json=payload,
                headers={"Accept": "application/json", "Cache-Control": "no-cache"},
                timeout=timeout,
            )
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, json.JSONDecodeError, ValueError) as e:
            last_exc = e
            logger.debug("POST %s failed (attempt %d/%d): %s", url, i + 1, attempts, e)
            if i + 1 < attempts:
                _sleep_backoff(i)
    assert last_exc is not None
    raise RemoteFetchError(f"Failed POST {url}: {last_exc}") from last_exc


def _unwrap_body(result: typing.Any) -> dict:
    """Return the response data, unwrapping a gateway "body" envelope."""
    if not isinstance(result, dict):
        raise RemoteFetchError(f"Unexpected response type {type(result).__name__}")
    body = result.get("body")
    if body is None:
        return result
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError as e:
            raise RemoteFetchError(f"Response body is not JSON: {e}") from e
    if not isinstance(body, dict):
        raise RemoteFetchError(f"Unexpected response body type {type(body).__name__}")
    return body


# ------------------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------------------


def parse_patient_response(result: typing.Any) -> RemotePayload:
    """
    Turn a decoded JSON response into a RemotePayload.

    Raises
    ------
    RemoteFetchError
        If the response is malformed or reports success=false.
    """
    data = _unwrap_body(result)
    if not data.get("success"):
        raise RemoteFetchError(f"Remote store reported failure: {data.get('message') or data.get('error') or 'unknown'}")

    patient = data.get("patient") or {}
    if not isinstance(patient, dict):
        patient = {}
    current = patient.get("clinicalParameters") or None

    history = data.get("clinicalHistory") or []
    if isinstance(history, dict) and "L" in history:
        history = history["L"]
    if not isinstance(history, list):
        logger.warning("Ignoring clinicalHistory of type %s", type(history).__name__)
        history = []

    return RemotePayload(
        current=current,
        history=history,
        medical_history=patient.get("medicalHistory"),
    )


def fetch_patient_clinical_data(
    patient_id: str, *, settings: typing.Optional[EngineSettings] = None
) -> RemotePayload:
    """
    Fetch the stored clinical parameters, clinical history and medical
    history text for `patient_id`.

    Raises
    ------
    RemoteFetchError
        If the store is unreachable, answers with an error, or returns an
        unusable payload.
    """
    if not patient_id or not isinstance(patient_id, str):
        raise RemoteFetchError("patient_id must be a non-empty string")
    settings = settings or EngineSettings.from_env()
    result = _post_json(
        settings.api_url,
        {"action": "getPatient", "patientId": patient_id.strip()},
        timeout=settings.http_timeout,
        attempts=settings.http_retries,
    )
    return parse_patient_response(result)
