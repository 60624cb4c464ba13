"""
Remote client tests; requests.post is patched so nothing touches the network.
"""

import json
from unittest.mock import Mock, patch

import pytest
import requests
from clinrec.config import EngineSettings
from clinrec.remote import (
    RemoteFetchError,
    fetch_patient_clinical_data,
    parse_patient_response,
)

SETTINGS = EngineSettings(api_url="http://example.test/patient", http_timeout=1.0, http_retries=3)

PATIENT_BODY = {
    "success": True,
    "patient": {
        "clinicalParameters": {"M": {"hb": {"S": "11"}}},
        "medicalHistory": {"S": "--- Entry (Jan 1, 2024) ---\nA"},
    },
    "clinicalHistory": [{"M": {"hb": {"S": "10"}}}],
}


def _response(data):
    return Mock(status_code=200, json=lambda: data)


def test_parse_plain_response():
    payload = parse_patient_response(PATIENT_BODY)
    assert payload.current == {"M": {"hb": {"S": "11"}}}
    assert payload.history == [{"M": {"hb": {"S": "10"}}}]
    assert payload.medical_history == {"S": "--- Entry (Jan 1, 2024) ---\nA"}


def test_parse_unwraps_string_body():
    payload = parse_patient_response({"statusCode": 200, "body": json.dumps(PATIENT_BODY)})
    assert payload.current == {"M": {"hb": {"S": "11"}}}


def test_parse_accepts_wire_list_history():
    body = dict(PATIENT_BODY, clinicalHistory={"L": [{"M": {}}]})
    assert parse_patient_response(body).history == [{"M": {}}]


def test_parse_missing_patient_sections():
    payload = parse_patient_response({"success": True})
    assert payload.current is None
    assert payload.history == []
    assert payload.medical_history is None


@pytest.mark.parametrize(
    "result",
    [
        {"success": False, "message": "Patient not found"},
        {"body": "{not json"},
        ["not", "a", "dict"],
    ],
)
def test_parse_rejects_failures(result):
    with pytest.raises(RemoteFetchError):
        parse_patient_response(result)


def test_fetch_posts_get_patient_action():
    with patch("clinrec.remote.requests.post", return_value=_response(PATIENT_BODY)) as post:
        payload = fetch_patient_clinical_data(" P1 ", settings=SETTINGS)
    assert payload.history == [{"M": {"hb": {"S": "10"}}}]
    args, kwargs = post.call_args
    assert args[0] == "http://example.test/patient"
    assert kwargs["json"] == {"action": "getPatient", "patientId": "P1"}
    assert kwargs["timeout"] == 1.0


def test_fetch_retries_then_succeeds():
    responses = [requests.ConnectionError("down"), _response(PATIENT_BODY)]
    with patch("clinrec.remote.requests.post", side_effect=responses) as post, patch(
        "clinrec.remote._sleep_backoff"
    ) as sleep:
        fetch_patient_clinical_data("P1", settings=SETTINGS)
    assert post.call_count == 2
    sleep.assert_called_once_with(0)


def test_fetch_gives_up_after_all_attempts():
    with patch("clinrec.remote.requests.post", side_effect=requests.Timeout("slow")) as post, patch(
        "clinrec.remote._sleep_backoff"
    ):
        with pytest.raises(RemoteFetchError, match="slow"):
            fetch_patient_clinical_data("P1", settings=SETTINGS)
    assert post.call_count == 3


def test_fetch_rejects_empty_patient_id():
    with pytest.raises(RemoteFetchError):
        fetch_patient_clinical_data("", settings=SETTINGS)
