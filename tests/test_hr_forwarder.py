"""
Tests for the HR forwarder: success range, fixed retry policy, auth headers.
"""

import threading
from dataclasses import replace
from unittest.mock import patch

import pytest
import requests

from zkbridge.services.hr_forwarder import HRForwarder

from conftest import make_response

BATCH = [{"employeeId": "1", "timestamp": "2024-01-15 09:00:00"}]


def test_success_on_first_attempt(forwarder, session):
    assert forwarder.forward(BATCH) is True

    session.post.assert_called_once()
    args, kwargs = session.post.call_args
    assert args[0] == "https://hr.example.com/api/attendance"
    assert kwargs["json"] == BATCH
    assert kwargs["timeout"] == 1.0
    assert kwargs["headers"]["Content-Type"] == "application/json"
    assert kwargs["headers"]["Authorization"] == "Bearer secret-key"


@pytest.mark.parametrize("status", [200, 201, 204, 299])
def test_any_2xx_is_success(forwarder, session, status):
    session.post.return_value = make_response(status)

    assert forwarder.forward(BATCH) is True
    assert session.post.call_count == 1


def test_retries_until_success(forwarder, session):
    session.post.side_effect = [
        requests.exceptions.ConnectionError("refused"),
        make_response(503, "busy"),
        make_response(200),
    ]

    assert forwarder.forward(BATCH) is True
    assert session.post.call_count == 3


def test_gives_up_after_max_attempts(forwarder, session):
    session.post.return_value = make_response(500, "boom")

    assert forwarder.forward(BATCH) is False
    assert session.post.call_count == 3


def test_timeout_counts_as_failure(forwarder, session):
    session.post.side_effect = requests.exceptions.Timeout("slow")

    assert forwarder.forward(BATCH) is False
    assert session.post.call_count == 3


def test_fixed_delay_between_attempts(hr_config, session):
    config = replace(hr_config, retry_delay_ms=250)
    forwarder = HRForwarder(config, session=session)
    session.post.return_value = make_response(502)

    with patch.object(forwarder._closed, "wait", return_value=False) as wait:
        assert forwarder.forward(BATCH) is False

    # no wait after the last attempt, same delay every time
    assert [c.args[0] for c in wait.call_args_list] == [0.25, 0.25]


def test_attempt_cap_below_one_still_tries_once(hr_config, session):
    forwarder = HRForwarder(replace(hr_config, retry_attempts=0), session=session)
    session.post.return_value = make_response(500)

    assert forwarder.forward(BATCH) is False
    assert session.post.call_count == 1


def test_close_cuts_off_retry_wait(hr_config, session):
    forwarder = HRForwarder(replace(hr_config, retry_delay_ms=60000), session=session)
    session.post.return_value = make_response(500)

    threading.Timer(0.1, forwarder.close).start()
    assert forwarder.forward(BATCH) is False
    assert session.post.call_count == 1

    forwarder.reopen()
    assert not forwarder.closed


def test_api_key_header_scheme(hr_config, session):
    config = replace(hr_config, auth_scheme="api_key", api_key_header="X-Api-Key")
    forwarder = HRForwarder(config, session=session)

    forwarder.forward(BATCH)

    headers = session.post.call_args.kwargs["headers"]
    assert headers["X-Api-Key"] == "secret-key"
    assert "Authorization" not in headers


def test_no_credential_header_without_key(hr_config, session):
    forwarder = HRForwarder(replace(hr_config, api_key=""), session=session)

    forwarder.forward(BATCH)

    assert "Authorization" not in session.post.call_args.kwargs["headers"]


def test_custom_path_and_single_record(forwarder, session):
    assert forwarder.forward(BATCH[0], path="/machine-checkin") is True

    args, kwargs = session.post.call_args
    assert args[0] == "https://hr.example.com/api/machine-checkin"
    assert kwargs["json"] == BATCH[0]


def test_redacts_credentials(forwarder):
    redacted = forwarder._redact({"Authorization": "Bearer x", "Content-Type": "application/json"})

    assert redacted == {"Authorization": "***", "Content-Type": "application/json"}
