from datetime import datetime
from typing import Dict, Any, Iterable, List, Optional

from zkbridge.models import AttendanceRecord, TIMESTAMP_FORMAT

# Device-side field names usable as mapping values
DEVICE_FIELDS = {
    "deviceUserId": "device_user_id",
    "recordTime": "record_time",
    "attendanceType": "attendance_type",
    "verificationMethod": "verification_method",
    "serialNumber": "serial_number",
    "deviceIdentifier": "device_identifier",
}

# Synthetic field: replaced by the configured device id
DEVICE_ID_FIELD = "deviceId"


class FieldMapper:
    """Projects AttendanceRecords onto the HR payload shape (hr_field -> device_field)"""

    def __init__(self, mapping: Dict[str, str], device_id: Optional[str] = None):
        self.mapping = dict(mapping)
        self.device_id = device_id

    def map_record(self, record: AttendanceRecord) -> Dict[str, Any]:
        mapped = {}
        for hr_field, device_field in self.mapping.items():
            if device_field == DEVICE_ID_FIELD:
                value = self.device_id or record.device_identifier
            elif device_field == "recordTime" and record.record_time is None:
                # Unparsed push time goes out as the device sent it
                value = record.raw_record_time
            elif device_field in DEVICE_FIELDS:
                value = getattr(record, DEVICE_FIELDS[device_field])
            else:
                continue

            if value is None:
                continue
            if isinstance(value, datetime):
                value = value.strftime(TIMESTAMP_FORMAT)
            mapped[hr_field] = value
        return mapped

    def map_records(self, records: Iterable[AttendanceRecord]) -> List[Dict[str, Any]]:
        return [self.map_record(record) for record in records]
