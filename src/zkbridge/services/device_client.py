"""
Device session capability used by the polling sync.

Any class implementing ``DeviceClient`` can feed the sync engine; the default
one talks to ZKTeco terminals through pyzk. Devices that push their logs are
handled by the push listener instead and need no client.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from zk import ZK
from zk.exception import ZKError

from zkbridge.config.config_manager import DeviceConfig
from zkbridge.exceptions import DevicePullError
from zkbridge.models import AttendanceRecord
from zkbridge.shared.logger import app_logger


class DeviceClient(ABC):
    """Session-based pull access to one device"""

    @property
    @abstractmethod
    def identifier(self) -> str:
        """Device address used as ``device_identifier`` on pulled records"""

    @property
    def serial_number(self) -> Optional[str]:
        return None

    @abstractmethod
    def connect(self) -> bool:
        """Open a session; False when the device cannot be reached"""

    @abstractmethod
    def disconnect(self) -> None:
        """Close the session; safe to call when not connected"""

    @abstractmethod
    def get_attendance_log(self) -> List[AttendanceRecord]:
        """Full current attendance log of the device (not a delta)"""

    @abstractmethod
    def is_connected(self) -> bool:
        pass


class ZKDeviceClient(DeviceClient):
    def __init__(self, config: DeviceConfig, zk_factory=ZK):
        self.config = config
        self._zk_factory = zk_factory
        self._conn = None

    @property
    def identifier(self) -> str:
        return self.config.ip

    @property
    def serial_number(self) -> Optional[str]:
        return self.config.serial_number

    def connect(self) -> bool:
        if self.is_connected():
            return True

        zk = self._zk_factory(
            self.config.ip,
            port=self.config.port,
            timeout=self.config.timeout_seconds,
            password=self.config.password,
            force_udp=self.config.force_udp,
        )
        try:
            app_logger.info(f"Connecting to device {self.config.ip}:{self.config.port}...")
            self._conn = zk.connect()
            app_logger.info(f"Connected to device {self.config.ip}")
            return True
        except (ZKError, OSError) as e:
            app_logger.error(
                f"Failed to connect to device {self.config.ip}: {type(e).__name__}: {e}"
            )
            self._conn = None
            return False

    def disconnect(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.disconnect()
            app_logger.info(f"Disconnected from device {self.config.ip}")
        except (ZKError, OSError) as e:
            app_logger.warning(f"Error during disconnection from {self.config.ip}: {e}")
        finally:
            self._conn = None

    def is_connected(self) -> bool:
        return bool(self._conn is not None and getattr(self._conn, "is_connect", False))

    def get_attendance_log(self) -> List[AttendanceRecord]:
        if not self.is_connected():
            raise DevicePullError(f"Not connected to device {self.config.ip}")

        try:
            attendances = self._conn.get_attendance()
        except (ZKError, OSError) as e:
            raise DevicePullError(f"Error fetching attendance records: {e}")

        if attendances is None:
            return []
        if not isinstance(attendances, (list, tuple)):
            raise DevicePullError(
                f"Attendance data received in an unexpected format: {type(attendances).__name__}"
            )

        records = []
        for attendance in attendances:
            user_id = getattr(attendance, "user_id", None)
            timestamp = getattr(attendance, "timestamp", None)
            if user_id in (None, "") or not isinstance(timestamp, datetime):
                app_logger.warning(f"Skipping malformed attendance entry: {attendance}")
                continue

            records.append(
                AttendanceRecord(
                    device_user_id=str(user_id),
                    record_time=timestamp,
                    attendance_type=getattr(attendance, "punch", None),
                    verification_method=getattr(attendance, "status", None),
                    device_identifier=self.config.ip,
                    serial_number=self.config.serial_number,
                )
            )

        app_logger.info(f"Found {len(records)} attendance records on {self.config.ip}")
        return records
