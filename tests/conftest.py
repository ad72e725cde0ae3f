"""
Shared fixtures: fake device client, mocked HTTP session, record factory.
No test talks to a real device or HR server.
"""

import os
import tempfile
from datetime import datetime, timedelta
from unittest.mock import MagicMock

# Keep test logs out of the user's log directory
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "zkbridge-tests"))

import pytest
import requests

from zkbridge.config.config_manager import HRServerConfig
from zkbridge.exceptions import DevicePullError
from zkbridge.models import AttendanceRecord
from zkbridge.services.device_client import DeviceClient
from zkbridge.services.field_mapper import FieldMapper
from zkbridge.services.hr_forwarder import HRForwarder
from zkbridge.services.sync_state import SyncState

BASE_TIME = datetime(2024, 1, 15, 9, 0, 0)


def make_record(user_id="1", minutes=0, device="192.168.1.201", **kwargs) -> AttendanceRecord:
    return AttendanceRecord(
        device_user_id=user_id,
        record_time=kwargs.pop("record_time", BASE_TIME + timedelta(minutes=minutes)),
        attendance_type=kwargs.pop("attendance_type", 0),
        verification_method=kwargs.pop("verification_method", 1),
        device_identifier=device,
        **kwargs,
    )


def make_response(status_code=200, text="{}"):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.text = text
    return response


class FakeDeviceClient(DeviceClient):
    """In-memory device: returns whatever ``records`` currently holds"""

    def __init__(self, records=None, connect_ok=True, pull_error=None, ip="192.168.1.201"):
        self.records = list(records or [])
        self.connect_ok = connect_ok
        self.pull_error = pull_error
        self.ip = ip
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0

    @property
    def identifier(self):
        return self.ip

    def connect(self):
        self.connect_calls += 1
        self.connected = self.connect_ok
        return self.connect_ok

    def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False

    def is_connected(self):
        return self.connected

    def get_attendance_log(self):
        if self.pull_error:
            raise DevicePullError(self.pull_error)
        return list(self.records)


@pytest.fixture
def hr_config():
    return HRServerConfig(
        base_url="https://hr.example.com/api",
        api_key="secret-key",
        timeout_ms=1000,
        retry_attempts=3,
        retry_delay_ms=0,
        attendance_path="/attendance",
    )


@pytest.fixture
def session():
    """requests.Session mock answering 200 unless told otherwise"""
    mock_session = MagicMock(spec=requests.Session)
    mock_session.post.return_value = make_response(200)
    return mock_session


@pytest.fixture
def forwarder(hr_config, session):
    return HRForwarder(hr_config, session=session)


@pytest.fixture
def state():
    return SyncState()


@pytest.fixture
def mapper():
    return FieldMapper(
        {"employeeId": "deviceUserId", "timestamp": "recordTime", "deviceId": "deviceId"},
        device_id="192.168.1.201",
    )
