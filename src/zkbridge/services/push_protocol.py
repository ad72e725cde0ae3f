"""
Decoder for the ZKTeco ADMS push protocol.

Devices open a raw TCP connection and write an HTTP-like request:

    POST /iclock/cdata?SN=ABC123&table=ATTLOG&Stamp=9999 HTTP/1.1\\r\\n
    Host: 10.0.0.5\\r\\n
    Content-Length: 58\\r\\n
    \\r\\n
    1001\\t2025-01-09 15:30:00\\t0\\t1\\r\\n
    1002\\t2025-01-09 15:31:00\\t1\\t15\\r\\n

Grammar handled here:
    request line -> METHOD SP path[?query] SP version
    query        -> key=value pairs joined by '&'
    body         -> everything after the first blank line
    ATTLOG body  -> one record per line: uid TAB timestamp TAB status TAB verify

Everything in this module is transport free; the listener feeds it bytes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Union
from urllib.parse import parse_qsl

from zkbridge.exceptions import PushDecodeError
from zkbridge.models import AttendanceRecord, TIMESTAMP_FORMAT

ACK_RESPONSE = (
    "HTTP/1.1 200 OK\r\n"
    "Content-Type: text/plain\r\n"
    "Connection: close\r\n\r\n"
    "OK\r\n"
).encode("ascii")

ATTLOG_TABLE = "ATTLOG"
# Firmwares differ in the date separator
TIMESTAMP_FORMATS = (TIMESTAMP_FORMAT, "%Y/%m/%d %H:%M:%S")
HEARTBEAT_PATHS = ("/iclock/cdata", "/iclock/getrequest")


@dataclass
class PushRequest:
    """A decoded push request"""

    method: str
    path: str
    query: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)  # lower-cased names
    body: str = ""

    @property
    def serial_number(self) -> Optional[str]:
        return self.query.get("SN")

    @property
    def table(self) -> Optional[str]:
        return self.query.get("table")

    @property
    def is_attlog(self) -> bool:
        return self.table == ATTLOG_TABLE

    @property
    def content_length(self) -> Optional[int]:
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None


@dataclass
class AttLogLine:
    """
    One ATTLOG line exactly as the device sent it.

    Format: uid \\t timestamp \\t status \\t verify_method
    Example: 1001\\t2025-01-09 15:30:00\\t0\\t1
    """

    uid: str
    timestamp: Optional[str] = None
    status: Optional[str] = None
    verification: Optional[str] = None

    def to_record(self, serial_number: Optional[str], peer: str) -> AttendanceRecord:
        """
        Build an AttendanceRecord from this line.

        A missing or unparseable timestamp leaves ``record_time`` empty; the
        raw text is kept so it can still be forwarded.

        Raises:
            PushDecodeError: The line has no user id
        """
        if not self.uid:
            raise PushDecodeError(f"ATTLOG line without user id: {self}")

        return AttendanceRecord(
            device_user_id=self.uid,
            record_time=parse_timestamp(self.timestamp),
            attendance_type=self.status,
            verification_method=self.verification,
            device_identifier=peer,
            serial_number=serial_number,
            raw_record_time=self.timestamp,
        )


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a device timestamp; None when absent or in no known format"""
    if not value:
        return None
    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def _split_head_body(text: str):
    for delimiter in ("\r\n\r\n", "\n\n"):
        index = text.find(delimiter)
        if index != -1:
            return text[:index], text[index + len(delimiter):]
    return text, ""


def decode_request(raw: Union[bytes, str]) -> PushRequest:
    """
    Decode one push request.

    Raises:
        PushDecodeError: No request path could be extracted
    """
    if isinstance(raw, bytes):
        text = raw.decode("utf-8", errors="replace")
    else:
        text = raw

    text = text.strip()
    if not text:
        raise PushDecodeError("Empty push payload")

    head, body = _split_head_body(text)
    head_lines = head.splitlines()
    parts = head_lines[0].split()
    if len(parts) < 2:
        raise PushDecodeError(f"Could not parse request line: {head_lines[0][:200]!r}")

    method, target = parts[0], parts[1]
    path, _, query_string = target.partition("?")
    if not path.startswith("/"):
        raise PushDecodeError(f"Request line has no path: {head_lines[0][:200]!r}")

    query: Dict[str, str] = {}
    for key, value in parse_qsl(query_string, keep_blank_values=True):
        # First value wins on repeated keys
        query.setdefault(key, value)

    headers: Dict[str, str] = {}
    for line in head_lines[1:]:
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()

    return PushRequest(
        method=method.upper(),
        path=path,
        query=query,
        headers=headers,
        body=body.strip(),
    )


def headers_complete(raw: bytes) -> bool:
    """True once the blank line ending the header block has arrived"""
    return b"\r\n\r\n" in raw or b"\n\n" in raw


def body_bytes_missing(raw: bytes) -> int:
    """
    How many body bytes are still expected for a partially received request.

    Returns 0 when the header block is incomplete without a Content-Length to
    wait for, or when the declared length is already satisfied.
    """
    for delimiter in (b"\r\n\r\n", b"\n\n"):
        index = raw.find(delimiter)
        if index != -1:
            head = raw[:index].decode("latin-1")
            received = len(raw) - index - len(delimiter)
            break
    else:
        return 0

    for line in head.splitlines()[1:]:
        name, sep, value = line.partition(":")
        if sep and name.strip().lower() == "content-length":
            try:
                return max(0, int(value.strip()) - received)
            except ValueError:
                return 0
    return 0


def parse_attlog_body(body: str) -> List[AttLogLine]:
    """Split an ATTLOG body into lines of up to four tab-separated fields"""
    lines = []
    for line in body.splitlines():
        if not line.strip():
            continue
        fields = line.split("\t")[:4]
        fields += [None] * (4 - len(fields))
        uid, timestamp, status, verification = (
            value.strip() if value is not None else None for value in fields
        )
        lines.append(
            AttLogLine(
                uid=uid,
                timestamp=timestamp or None,
                status=status or None,
                verification=verification or None,
            )
        )
    return lines
