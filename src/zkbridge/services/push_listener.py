"""
Raw TCP listener for devices using the ADMS push protocol.

Every request gets the fixed OK acknowledgment, whatever it contains: the
device only needs to know the server is alive, and malformed input must never
make it back off. ATTLOG uploads are decoded and forwarded best effort; no
dedup state is involved on this path.
"""

import socket
import socketserver
import threading
from typing import List, Optional, Tuple

from zkbridge.exceptions import PushDecodeError
from zkbridge.models import AttendanceRecord
from zkbridge.services.field_mapper import FieldMapper
from zkbridge.services.hr_forwarder import HRForwarder
from zkbridge.services.push_protocol import (
    ACK_RESPONSE,
    HEARTBEAT_PATHS,
    body_bytes_missing,
    decode_request,
    headers_complete,
    parse_attlog_body,
)
from zkbridge.shared.logger import app_logger

RECV_SIZE = 65536
MAX_REQUEST_SIZE = 4 * 1024 * 1024


class _PushRequestHandler(socketserver.BaseRequestHandler):
    """One device connection: read, acknowledge, process"""

    def handle(self):
        listener: "PushListener" = self.server.listener
        peer = self.client_address[0]
        app_logger.info(f"[PUSH] Device connected: {peer}")

        raw = self._read_request(listener.recv_timeout)
        if not raw:
            app_logger.info(f"[PUSH] Device disconnected: {peer}")
            return

        try:
            self.request.sendall(ACK_RESPONSE)
        except OSError as e:
            app_logger.error(f"[PUSH] Could not acknowledge {peer}: {e}")

        try:
            listener.handle_payload(raw, peer)
        except Exception as e:
            app_logger.error(
                f"[PUSH] Error processing data from {peer}: {type(e).__name__}: {e}",
                exc_info=True,
            )

    def _read_request(self, timeout: float) -> bytes:
        """
        Read one request: the full header block, then Content-Length bytes of
        body. Whatever arrived before a timeout or socket error is returned.
        """
        data = b""
        try:
            self.request.settimeout(timeout)
            while len(data) < MAX_REQUEST_SIZE:
                chunk = self.request.recv(RECV_SIZE)
                if not chunk:
                    break
                data += chunk
                if headers_complete(data) and body_bytes_missing(data) == 0:
                    break
        except socket.timeout:
            app_logger.debug(
                f"[PUSH] Receive timeout from {self.client_address[0]}, "
                f"processing {len(data)} bytes"
            )
        except OSError as e:
            app_logger.warning(
                f"[PUSH] Socket error from {self.client_address[0]}: {e}, "
                f"processing {len(data)} bytes"
            )
        return data


class _PushTCPServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, server_address, listener: "PushListener"):
        self.listener = listener
        super().__init__(server_address, _PushRequestHandler)

    def handle_error(self, request, client_address):
        app_logger.error(
            f"[PUSH] Unhandled error on connection from {client_address}", exc_info=True
        )


class PushListener:
    """
    Accepts push connections and forwards decoded ATTLOG records.

    Args:
        forwarder: Delivery primitive shared with the sync engine
        mapper: Push field mapping (peer address stands in for ``deviceId``)
        forward_mode: 'record' posts each record on its own, 'batch' posts all
            lines of one upload as a single array
        path: HR endpoint path for pushed records
    """

    def __init__(
        self,
        forwarder: HRForwarder,
        mapper: FieldMapper,
        host: str = "0.0.0.0",
        port: int = 4370,
        forward_mode: str = "record",
        path: Optional[str] = None,
        recv_timeout: float = 2.0,
    ):
        self.forwarder = forwarder
        self.mapper = mapper
        self.host = host
        self.port = port
        self.forward_mode = forward_mode
        self.path = path
        self.recv_timeout = recv_timeout

        self._server: Optional[_PushTCPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        if self._server is None:
            return None
        return self._server.server_address[:2]

    def start(self):
        if self.is_running:
            app_logger.warning("Push listener is already running")
            return

        self._server = _PushTCPServer((self.host, self.port), self)
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="PushListener",
        )
        self._thread.start()
        host, port = self.address
        app_logger.info(f"[PUSH] ZKTeco listener running on {host}:{port}")

    def stop(self, wait_timeout: float = 5.0):
        """Close the accepting socket; handlers in flight finish on their own"""
        if self._server is None:
            return

        self._server.shutdown()
        self._server.server_close()
        if self._thread:
            self._thread.join(timeout=wait_timeout)
        self._server = None
        self._thread = None
        app_logger.info("[PUSH] Listener stopped")

    # ========================================================================
    # PROCESSING
    # ========================================================================

    def handle_payload(self, raw: bytes, peer: str) -> List[AttendanceRecord]:
        """
        Decode one push request and forward its attendance records.

        Returns:
            List of records handed to the forwarder (empty for heartbeats and
            anything that failed to decode)
        """
        try:
            request = decode_request(raw)
        except PushDecodeError as e:
            app_logger.warning(f"[PUSH] {e}. Acknowledged and ignored.")
            return []

        serial_number = request.serial_number
        app_logger.info(
            f"[PUSH] {request.method} {request.path} from SN={serial_number} ({peer})"
        )

        if request.is_attlog and request.body:
            records = self._decode_attlog(request.body, serial_number, peer)
            if records:
                self._forward(records, peer)
            return records

        if request.path.startswith(HEARTBEAT_PATHS):
            app_logger.debug(f"[PUSH] Heartbeat on {request.path}, nothing to forward")
        else:
            app_logger.info("[PUSH] Received non-ATTLOG or empty data from device.")
        return []

    def _decode_attlog(
        self, body: str, serial_number: Optional[str], peer: str
    ) -> List[AttendanceRecord]:
        records = []
        for line in parse_attlog_body(body):
            try:
                record = line.to_record(serial_number, peer)
            except PushDecodeError as e:
                app_logger.warning(f"[PUSH] Discarding ATTLOG line: {e}")
                continue
            if record.record_time is None:
                app_logger.warning(
                    f"[PUSH] UID {record.device_user_id} has no usable timestamp "
                    f"({line.timestamp!r}), forwarding as received"
                )
            app_logger.debug(f"[PUSH] Record: {record.to_dict()}")
            records.append(record)
        app_logger.info(f"[PUSH] Parsed {len(records)} ATTLOG records from SN={serial_number}")
        return records

    def _forward(self, records: List[AttendanceRecord], peer: str):
        mapped = self.mapper.map_records(records)

        if self.forward_mode == "batch":
            if not self.forwarder.forward(mapped, path=self.path):
                app_logger.error(
                    f"[PUSH] Failed to forward {len(mapped)} records from {peer}"
                )
            return

        for record, payload in zip(records, mapped):
            if not self.forwarder.forward(payload, path=self.path):
                app_logger.error(
                    f"[PUSH] Error forwarding UID {record.device_user_id} to API"
                )
