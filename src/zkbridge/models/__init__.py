from zkbridge.models.attendance import AttendanceRecord, EPOCH, TIMESTAMP_FORMAT

__all__ = [
    "AttendanceRecord",
    "EPOCH",
    "TIMESTAMP_FORMAT",
]
