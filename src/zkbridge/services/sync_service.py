from dataclasses import dataclass, asdict
from datetime import datetime
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional, Sequence, TypeVar

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES

from zkbridge.exceptions import DevicePullError
from zkbridge.models import AttendanceRecord, TIMESTAMP_FORMAT
from zkbridge.services.device_client import DeviceClient
from zkbridge.services.field_mapper import FieldMapper
from zkbridge.services.hr_forwarder import HRForwarder
from zkbridge.services.sync_state import SyncState
from zkbridge.shared.logger import app_logger

T = TypeVar("T")


def iter_batches(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most ``size`` items, order preserved"""
    if size < 1:
        raise ValueError(f"batch size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


@dataclass
class SyncResult:
    """Outcome of one sync cycle"""

    started_at: datetime
    finished_at: Optional[datetime] = None
    connected: bool = False
    pulled: int = 0
    new_records: int = 0
    batches_total: int = 0
    batches_succeeded: int = 0
    watermark_advanced: bool = False
    skipped: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return (
            self.connected
            and not self.skipped
            and self.error is None
            and self.batches_succeeded == self.batches_total
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("started_at", "finished_at"):
            if isinstance(data[key], datetime):
                data[key] = data[key].strftime(TIMESTAMP_FORMAT)
        data["success"] = self.success
        return data


class PollingSyncEngine:
    """
    Periodically pulls the device log and delivers new punches to the HR API.

    Each cycle filters the full device snapshot through ``SyncState``, sends
    the survivors in sequential batches and records every delivered batch
    right away. The watermark moves to the cycle start time only when every
    batch of the cycle went through; after a partial failure the dedup index
    keeps the delivered batches from being sent again.

    Cycles never overlap: the scheduler runs at most one instance and
    ``run_cycle`` itself refuses to start while another cycle holds the lock.
    """

    JOB_ID = "attendance_sync"

    def __init__(
        self,
        client: DeviceClient,
        forwarder: HRForwarder,
        mapper: FieldMapper,
        state: SyncState,
        batch_size: int = 50,
        interval_seconds: float = 60,
    ):
        if batch_size < 1:
            raise ValueError(f"batch size must be positive, got {batch_size}")
        self.client = client
        self.forwarder = forwarder
        self.mapper = mapper
        self.state = state
        self.batch_size = batch_size
        self.interval_seconds = interval_seconds

        self.scheduler = None
        self.is_running = False
        self.last_result: Optional[SyncResult] = None
        self._cycle_lock = Lock()

    # ========================================================================
    # SCHEDULING
    # ========================================================================

    def start(self):
        """Run a cycle now, then every ``interval_seconds``"""
        if self.scheduler and self.is_running:
            app_logger.warning("Sync engine is already running")
            return

        self.forwarder.reopen()
        self.scheduler = BackgroundScheduler()
        self.scheduler.add_listener(self._job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_overlap_listener, EVENT_JOB_MAX_INSTANCES)

        self.scheduler.add_job(
            func=self.run_cycle,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=self.JOB_ID,
            name="Attendance Sync",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping executions
            coalesce=True,
            misfire_grace_time=max(1, int(self.interval_seconds)),
            next_run_time=datetime.now(),
        )

        self.scheduler.start()
        self.is_running = True
        app_logger.info(
            f"[SYNC] Sync engine started, cycle every {self.interval_seconds} seconds"
        )

    def stop(self, wait_timeout: float = 30.0):
        """
        Stop scheduling, cut off retry waits and close the device session.

        An in-flight cycle gets ``wait_timeout`` seconds to reach its end
        before the session is closed underneath it.
        """
        if self.scheduler and self.is_running:
            try:
                self.scheduler.shutdown(wait=False)
            except Exception as e:
                app_logger.error(f"Error stopping sync scheduler: {e}")
            self.is_running = False

        self.forwarder.close()

        finished = self._cycle_lock.acquire(timeout=wait_timeout)
        try:
            if not finished:
                app_logger.warning(
                    f"[SYNC] Cycle still running after {wait_timeout}s, closing device session"
                )
            self.client.disconnect()
        finally:
            if finished:
                self._cycle_lock.release()

        app_logger.info("[SYNC] Sync engine stopped")

    def get_job_status(self) -> Dict[str, Any]:
        if not self.scheduler or not self.is_running:
            return {"running": False, "next_run_time": None}

        job = self.scheduler.get_job(self.JOB_ID)
        return {
            "running": self.is_running,
            "next_run_time": str(job.next_run_time) if job and job.next_run_time else None,
            "interval_seconds": self.interval_seconds,
        }

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    def _job_error_listener(self, event):
        app_logger.error(f"Job '{event.job_id}' crashed: {event.exception}")

    def _job_overlap_listener(self, event):
        app_logger.warning(
            f"[SYNC] Previous cycle still running, skipped run of '{event.job_id}'"
        )

    # ========================================================================
    # SYNC CYCLE
    # ========================================================================

    def run_cycle(self) -> SyncResult:
        """Run one sync cycle; never raises"""
        if not self._cycle_lock.acquire(blocking=False):
            app_logger.warning("[SYNC] A sync cycle is already in progress, skipping")
            now = datetime.now()
            return SyncResult(started_at=now, finished_at=now, skipped=True)

        try:
            return self._run_cycle()
        finally:
            self._cycle_lock.release()

    def _select_new(self, records: List[AttendanceRecord]) -> List[AttendanceRecord]:
        """Records passing the watermark and index, first occurrence per identity"""
        selected = []
        seen = set()
        for record in records:
            if not self.state.is_new(record):
                continue
            key = self.state.identity(record)
            if key in seen:
                continue
            seen.add(key)
            selected.append(record)
        return selected

    def _run_cycle(self) -> SyncResult:
        result = SyncResult(started_at=datetime.now())
        app_logger.info("[SYNC] Starting attendance data sync cycle...")

        try:
            if not self.client.connect():
                result.error = f"Could not connect to device {self.client.identifier}"
                app_logger.error(f"[SYNC] {result.error}. Skipping this sync cycle.")
                return result
            result.connected = True

            try:
                try:
                    records = self.client.get_attendance_log()
                except DevicePullError as e:
                    app_logger.error(f"[SYNC] Attendance pull failed: {e}")
                    result.error = str(e)
                    records = []

                result.pulled = len(records)
                app_logger.info(f"[SYNC] Retrieved {len(records)} total records from the device.")

                new_records = self._select_new(records)
                result.new_records = len(new_records)

                if not new_records:
                    app_logger.info("[SYNC] No new attendance records to sync.")
                    return result

                batches = list(iter_batches(new_records, self.batch_size))
                result.batches_total = len(batches)
                app_logger.info(
                    f"[SYNC] Found {len(new_records)} new records, sending {len(batches)} batch(es)"
                )

                for batch_index, batch in enumerate(batches, start=1):
                    payload = self.mapper.map_records(batch)
                    if self.forwarder.forward(payload):
                        self.state.mark_delivered(batch)
                        result.batches_succeeded += 1
                        app_logger.info(
                            f"[SYNC] Batch {batch_index}/{len(batches)}: synced {len(batch)} records"
                        )
                    else:
                        app_logger.error(
                            f"[SYNC] Batch {batch_index}/{len(batches)} failed, "
                            f"{len(batch)} records will be retried next cycle"
                        )
            finally:
                self.client.disconnect()

            if result.batches_succeeded == result.batches_total:
                result.watermark_advanced = self.state.commit_watermark(result.started_at)
            else:
                app_logger.warning(
                    f"[SYNC] {result.batches_total - result.batches_succeeded} batch(es) failed, "
                    f"watermark stays at {self.state.last_sync_time}"
                )

        except Exception as e:
            app_logger.error(
                f"[SYNC] An error occurred during the sync process: {type(e).__name__}: {e}",
                exc_info=True,
            )
            result.error = f"{type(e).__name__}: {e}"

        finally:
            result.finished_at = datetime.now()
            self.last_result = result
            app_logger.info("[SYNC] Sync cycle finished.")

        return result
