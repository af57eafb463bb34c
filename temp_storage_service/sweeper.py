import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

from exceptions import FileServiceError, RecordNotFound
from ingest import utcnow
from logging_config import get_logger
from metadata_store import MetadataStore
from schemas import SweepResult, SweeperStatus
from storage import FileStorage

logger = get_logger(__name__)


class LifecycleSweeper:
    """Reclaims expired files and reconciles the storage directory with metadata.

    A sweep runs three phases, each best-effort: a failure is recorded in the
    result's ``errors`` and the next phase still runs. Sweeps never overlap;
    a sweep requested while another is in progress waits for it.
    """

    def __init__(
        self,
        store: MetadataStore,
        storage: FileStorage,
        interval: timedelta,
        retention: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.storage = storage
        self.interval = interval
        self.retention = retention
        self.clock = clock
        self.last_result: Optional[SweepResult] = None
        self._sweep_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        async with self._sweep_lock:
            now = now or self.clock()
            result = SweepResult(started_at=self.clock())
            logger.info(f"Running cleanup at {now.isoformat()}")

            try:
                result.expired_deleted = await self.delete_expired(now, result)
            except Exception as e:
                self._record_failure(result, "expired files", e)

            try:
                result.orphaned_metadata_removed = await self.store.reconcile()
            except Exception as e:
                self._record_failure(result, "orphaned metadata", e)

            try:
                result.orphaned_files_removed = await self.delete_orphaned_files(result)
            except Exception as e:
                self._record_failure(result, "orphaned files", e)

            result.finished_at = self.clock()
            self.last_result = result

        summary = (
            f"expired={result.expired_deleted}, "
            f"orphaned_metadata={result.orphaned_metadata_removed}, "
            f"orphaned_files={result.orphaned_files_removed}"
        )
        if result.success:
            logger.info(f"Cleanup completed: {summary}")
        else:
            logger.error(f"Cleanup completed with {len(result.errors)} error(s): {summary}")
        return result

    async def delete_expired(self, now: datetime, result: SweepResult) -> int:
        """Delete expired files first, then their records.

        A crash between the two steps leaves a record without a file, which the
        next reconcile removes.
        """
        deleted = 0
        for record in self.store.expired(now):
            try:
                if await self.storage.remove(record.storage_path):
                    logger.info(f"Deleted expired file: {record.id}")
                await self.store.delete(record.id)
                deleted += 1
            except RecordNotFound:
                # deleted by a client while this sweep was running
                continue
            except FileServiceError as e:
                self._record_failure(result, f"expired file {record.id}", e)
        return deleted

    async def delete_orphaned_files(self, result: SweepResult) -> int:
        deleted = 0
        for name in await self.storage.list_names():
            # pending is checked before the store: an ingest commits its record
            # before it releases the id
            if self.storage.is_pending(name) or self.store.contains(name):
                continue
            try:
                if await self.storage.remove(self.storage.base_path / name):
                    logger.info(f"Deleted orphaned file: {name}")
                    deleted += 1
            except FileServiceError as e:
                self._record_failure(result, f"orphaned file {name}", e)
        return deleted

    def _record_failure(self, result: SweepResult, phase: str, error: Exception):
        logger.error(f"Cleanup of {phase} failed: {error}", exc_info=error)
        message = error.message if isinstance(error, FileServiceError) else str(error)
        result.errors.append(f"{phase}: {message}")

    async def _loop(self):
        while True:
            try:
                await self.run_sweep()
            except Exception:
                logger.exception("Unexpected error in cleanup loop")
            await asyncio.sleep(self.interval.total_seconds())

    def start(self):
        """Sweep once right away, then every ``interval``."""
        if self.is_running:
            logger.info("Cleanup service is already running")
            return
        logger.info(f"Starting automatic cleanup service, interval {self.interval}")
        self._task = asyncio.create_task(self._loop())

    async def stop(self):
        if not self.is_running:
            return
        logger.info("Stopping automatic cleanup service")
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def status(self) -> SweeperStatus:
        return SweeperStatus(
            is_running=self.is_running,
            cleanup_interval_seconds=self.interval.total_seconds(),
            file_retention_seconds=self.retention.total_seconds() if self.retention else 0.0,
            last_result=self.last_result,
        )
