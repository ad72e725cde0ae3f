"""
Tests for the push protocol decoder: request line, query, body, ATTLOG lines.
"""

from datetime import datetime

import pytest

from zkbridge.exceptions import PushDecodeError
from zkbridge.services.push_protocol import (
    ACK_RESPONSE,
    AttLogLine,
    body_bytes_missing,
    decode_request,
    headers_complete,
    parse_attlog_body,
)

ATTLOG_BODY = "0601\t2024-01-15 09:30:00\t1\t1\r\n120\t2024-01-15 09:31:00\t0\t1\r\n"


def attlog_request(body=ATTLOG_BODY, query="SN=12345678&table=ATTLOG"):
    return (
        f"POST /iclock/cdata?{query} HTTP/1.1\r\n"
        f"Host: 10.0.0.5\r\n"
        f"Content-Length: {len(body)}\r\n"
        f"\r\n"
        f"{body}"
    ).encode("utf-8")


# ============================================================
# Request line and query
# ============================================================

def test_decode_attlog_request():
    request = decode_request(attlog_request())

    assert request.method == "POST"
    assert request.path == "/iclock/cdata"
    assert request.serial_number == "12345678"
    assert request.table == "ATTLOG"
    assert request.is_attlog
    assert request.headers["host"] == "10.0.0.5"
    assert request.content_length == len(ATTLOG_BODY)
    assert request.body.startswith("0601\t")


def test_decode_heartbeat_without_body():
    request = decode_request(b"GET /iclock/getrequest?SN=ABC123 HTTP/1.1\r\n\r\n")

    assert request.path == "/iclock/getrequest"
    assert request.serial_number == "ABC123"
    assert request.table is None
    assert request.body == ""
    assert not request.is_attlog


def test_decode_accepts_str_and_url_encoded_query():
    request = decode_request("GET /iclock/cdata?SN=AB%20C&options=all&SN=other HTTP/1.1")

    assert request.serial_number == "AB C"  # first value wins
    assert request.query["options"] == "all"


@pytest.mark.parametrize("raw", [b"", b"   \r\n", b"garbage", b"\r\n\r\n1\t2024-01-15 09:30:00"])
def test_decode_rejects_request_without_path(raw):
    with pytest.raises(PushDecodeError):
        decode_request(raw)


def test_decode_bare_newline_framing():
    request = decode_request("POST /iclock/cdata?table=ATTLOG&SN=1 HTTP/1.1\nHost: x\n\n7\t2024-01-15 09:30:00")

    assert request.is_attlog
    assert request.body == "7\t2024-01-15 09:30:00"


# ============================================================
# ATTLOG body
# ============================================================

def test_parse_attlog_body_two_lines():
    lines = parse_attlog_body(ATTLOG_BODY)

    assert lines == [
        AttLogLine(uid="0601", timestamp="2024-01-15 09:30:00", status="1", verification="1"),
        AttLogLine(uid="120", timestamp="2024-01-15 09:31:00", status="0", verification="1"),
    ]


def test_parse_attlog_body_skips_empty_lines_and_pads_missing_fields():
    lines = parse_attlog_body("\r\n5\t2024-01-15 10:00:00\r\n\r\n6\t2024-01-15 10:01:00\t2\r\n")

    assert len(lines) == 2
    assert lines[0].status is None
    assert lines[0].verification is None
    assert lines[1].status == "2"
    assert lines[1].verification is None


def test_parse_attlog_body_ignores_extra_fields():
    lines = parse_attlog_body("9\t2024-01-15 10:00:00\t0\t15\t0\t0\t0")

    assert lines == [AttLogLine("9", "2024-01-15 10:00:00", "0", "15")]


def test_attlog_line_to_record():
    record = AttLogLine("0601", "2024-01-15 09:30:00", "1", "1").to_record("12345678", "10.0.0.9")

    assert record.device_user_id == "0601"
    assert record.record_time == datetime(2024, 1, 15, 9, 30)
    assert record.attendance_type == "1"
    assert record.verification_method == "1"
    assert record.device_identifier == "10.0.0.9"
    assert record.serial_number == "12345678"
    assert record.to_dict()["record_time"] == "2024-01-15 09:30:00"


def test_attlog_line_slash_date_format():
    record = AttLogLine("0601", "2024/01/15 09:30:00", "1", "1").to_record("SN", "10.0.0.9")

    assert record.record_time == datetime(2024, 1, 15, 9, 30)


@pytest.mark.parametrize("timestamp", [None, "15/01/2024 09:30"])
def test_attlog_line_without_usable_time_is_kept(timestamp):
    record = AttLogLine("5", timestamp).to_record("SN", "10.0.0.9")

    assert record.device_user_id == "5"
    assert record.record_time is None
    assert record.raw_record_time == timestamp
    assert record.attendance_type is None
    assert record.to_dict()["record_time"] is None


def test_attlog_line_without_uid_is_rejected():
    with pytest.raises(PushDecodeError):
        AttLogLine("", "2024-01-15 09:30:00").to_record("SN", "10.0.0.9")


# ============================================================
# Framing helpers
# ============================================================

def test_body_bytes_missing():
    full = attlog_request()
    cut = len(full) - 10

    assert body_bytes_missing(full) == 0
    assert body_bytes_missing(full[:cut]) == 10
    assert body_bytes_missing(b"POST /iclock/cdata HTTP/1.1\r\nContent-Len") == 0


def test_headers_complete():
    assert headers_complete(attlog_request())
    assert headers_complete(b"GET /iclock/getrequest?SN=1 HTTP/1.1\n\n")
    assert not headers_complete(b"POST /iclock/cdata HTTP/1.1\r\nContent-Len")


def test_ack_response_is_fixed():
    assert ACK_RESPONSE == b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\nConnection: close\r\n\r\nOK\r\n"
