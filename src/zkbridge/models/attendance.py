from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional, Union
from datetime import datetime

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

# Watermark starting point: everything on the device is newer than this
EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class AttendanceRecord:
    """One punch event, as pulled from a device or decoded from a push"""
    device_user_id: str
    record_time: Optional[datetime]  # device-local clock, naive; None when a push line had no usable time
    attendance_type: Optional[Union[int, str]] = None  # punch/status code, device defined
    verification_method: Optional[Union[int, str]] = None  # 0=password, 1=fingerprint, 15=face...
    device_identifier: str = ''  # device IP (pull) or peer address (push)
    serial_number: Optional[str] = None
    raw_record_time: Optional[str] = None  # time text as pushed, kept when it could not be parsed

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and API responses"""
        data = asdict(self)
        if isinstance(data['record_time'], datetime):
            data['record_time'] = data['record_time'].strftime(TIMESTAMP_FORMAT)
        return data
