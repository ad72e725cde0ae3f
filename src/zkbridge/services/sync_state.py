from datetime import datetime
from threading import Lock
from typing import Dict, Any, Iterable, Tuple

from zkbridge.models import AttendanceRecord, EPOCH, TIMESTAMP_FORMAT
from zkbridge.shared.logger import app_logger


class SyncState:
    """
    Watermark and dedup index for the polling sync.

    A record is new when it is newer than ``last_sync_time`` and its identity
    has not been confirmed delivered yet. Identities are added per delivered
    batch; the watermark only moves forward.

    Args:
        identity_includes_device: Key identities on the device identifier too,
            so devices sharing user-id numbering cannot shadow each other.
        prune_on_commit: Drop identities at or below the watermark when it
            advances. The watermark filter rejects those records anyway, so the
            index only holds what the watermark cannot cover.
    """

    def __init__(self, identity_includes_device: bool = False, prune_on_commit: bool = True):
        self.identity_includes_device = identity_includes_device
        self.prune_on_commit = prune_on_commit
        self._last_sync_time = EPOCH
        # identity -> record_time, kept for pruning
        self._processed: Dict[Tuple, datetime] = {}
        self._lock = Lock()

    @property
    def last_sync_time(self) -> datetime:
        with self._lock:
            return self._last_sync_time

    @property
    def processed_count(self) -> int:
        with self._lock:
            return len(self._processed)

    def identity(self, record: AttendanceRecord) -> Tuple:
        if self.identity_includes_device:
            return (record.device_identifier, record.device_user_id, record.record_time)
        return (record.device_user_id, record.record_time)

    def is_processed(self, record: AttendanceRecord) -> bool:
        with self._lock:
            return self.identity(record) in self._processed

    def is_new(self, record: AttendanceRecord) -> bool:
        """Newer than the watermark and not yet delivered"""
        with self._lock:
            return (
                record.record_time > self._last_sync_time
                and self.identity(record) not in self._processed
            )

    def mark_delivered(self, records: Iterable[AttendanceRecord]) -> None:
        with self._lock:
            for record in records:
                self._processed[self.identity(record)] = record.record_time

    def commit_watermark(self, sync_time: datetime) -> bool:
        """
        Move the watermark forward to ``sync_time``.

        Returns:
            bool: False when ``sync_time`` is earlier than the current
            watermark (the watermark never moves back)
        """
        with self._lock:
            if sync_time < self._last_sync_time:
                app_logger.warning(
                    f"[SYNC] Ignoring watermark {sync_time} earlier than current "
                    f"{self._last_sync_time}"
                )
                return False

            self._last_sync_time = sync_time

            if self.prune_on_commit:
                stale = [
                    key for key, record_time in self._processed.items()
                    if record_time <= sync_time
                ]
                for key in stale:
                    del self._processed[key]
                if stale:
                    app_logger.debug(
                        f"[SYNC] Pruned {len(stale)} identities covered by watermark"
                    )

            return True

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "last_sync_time": self._last_sync_time.strftime(TIMESTAMP_FORMAT),
                "processed_count": len(self._processed),
                "identity_includes_device": self.identity_includes_device,
            }
