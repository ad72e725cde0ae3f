import json
import threading
from typing import Any, Dict, List, Optional, Union

import requests

from zkbridge.config.config_manager import HRServerConfig
from zkbridge.exceptions import DeliveryError
from zkbridge.shared.logger import app_logger

Payload = Union[List[Dict[str, Any]], Dict[str, Any]]

REDACTED_HEADERS = {"authorization", "x-api-key"}


class HRForwarder:
    """
    Delivers attendance payloads to the HR endpoint.

    One call to ``forward`` is one batch: POSTed as JSON, retried after a fixed
    delay on transport errors, timeouts and non-2xx answers, up to
    ``retry_attempts`` tries. The forwarder keeps no delivery state; callers
    decide what a failure means for their records.
    """

    def __init__(self, config: HRServerConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self._closed = threading.Event()

    @property
    def max_attempts(self) -> int:
        return max(1, self.config.retry_attempts)

    def close(self) -> None:
        """Stop retrying: pending retry waits return immediately"""
        self._closed.set()

    def reopen(self) -> None:
        self._closed.clear()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            if self.config.auth_scheme == "api_key":
                headers[self.config.api_key_header] = self.config.api_key
            else:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _redact(self, headers: Dict[str, str]) -> Dict[str, str]:
        hidden = REDACTED_HEADERS | {self.config.api_key_header.lower()}
        return {
            key: ("***" if key.lower() in hidden else value)
            for key, value in headers.items()
        }

    def _post(self, url: str, payload: Payload, headers: Dict[str, str]) -> requests.Response:
        """Single delivery attempt; raises DeliveryError on any failure"""
        try:
            response = self.session.post(
                url,
                json=payload,
                headers=headers,
                timeout=self.config.timeout_ms / 1000,
            )
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"{type(e).__name__}: {e}")

        if not 200 <= response.status_code < 300:
            body = (response.text or "").strip()
            if len(body) > 500:
                body = body[:500] + "...[truncated]"
            raise DeliveryError(
                f"HTTP {response.status_code}: {body}", status_code=response.status_code
            )

        return response

    def forward(self, payload: Payload, path: Optional[str] = None) -> bool:
        """
        Deliver one batch (or one record) to the HR endpoint.

        Args:
            payload: List of mapped records, or a single mapped record
            path: Endpoint path, defaults to the configured attendance path

        Returns:
            bool: True once an attempt got a 2xx answer, False after the
            attempt cap is reached or the forwarder is closed
        """
        url = self.config.base_url + (path or self.config.attendance_path)
        count = len(payload) if isinstance(payload, list) else 1
        retry_delay = self.config.retry_delay_ms / 1000

        try:
            preview = json.dumps(payload, default=str)
            if len(preview) > 2000:
                preview = preview[:2000] + "...[truncated]"
        except (TypeError, ValueError):
            preview = str(payload)

        for attempt in range(1, self.max_attempts + 1):
            headers = self._build_headers()
            app_logger.info(
                f"HR API Request -> POST {url} ({count} records, attempt "
                f"{attempt}/{self.max_attempts}), Headers: {self._redact(headers)}"
            )
            app_logger.debug(f"HR API Payload -> {preview}")

            try:
                response = self._post(url, payload, headers)
                app_logger.info(
                    f"HR API Response <- Status {response.status_code} for {count} records"
                )
                return True
            except DeliveryError as e:
                app_logger.error(f"Error sending data to HR server: {e}")

            if attempt >= self.max_attempts:
                app_logger.error(
                    f"Max retry attempts reached, {count} records not delivered"
                )
                break

            app_logger.info(f"Retrying in {self.config.retry_delay_ms}ms...")
            if self._closed.wait(retry_delay):
                app_logger.warning("Forwarder closed, abandoning retries")
                break

        return False
