# Hey future me - this worker is the CALLER of the sync engine. The engine itself holds no lock
# and never retries; both of those live here:
# - at most one scan at a time (second caller gets InvalidStateException, not a queue)
# - retryable SyncErrors (source/store hiccups) get up to settings.scan.max_attempts attempts
#   with exponential backoff, each attempt on a FRESH session
# - every scan gets one correlation id, shared by its retries, so the logs of one scan group up
"""Library scan worker: single-flight scans with retry."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING

from songshelf.application.services.cache_cleanup_service import CacheCleanupService
from songshelf.application.services.library_sync_service import LibrarySyncService
from songshelf.config import Settings
from songshelf.domain.dtos import CleanupReport, ScanReport
from songshelf.domain.exceptions import InvalidStateException, SyncError
from songshelf.domain.ports import IFileSystemProbe, ITrackSource
from songshelf.domain.value_objects import FilterPolicy, ScanScope
from songshelf.infrastructure.observability.logging import correlation_scope, log_operation

if TYPE_CHECKING:
    from songshelf.infrastructure.persistence.database import Database

logger = logging.getLogger(__name__)


class LibraryScanWorker:
    """Runs library scans one at a time and retries transient failures.

    This worker:
    1. Refuses to start a scan while another one is running
    2. Opens a fresh DB session per attempt and builds LibrarySyncService on it
    3. Retries SourceUnavailable/StoreUnavailable/StoreWrite errors with backoff
    4. Optionally runs the artwork cache cleanup after a successful scan
    """

    def __init__(
        self,
        db: "Database",
        settings: Settings,
        source: ITrackSource,
        probe: IFileSystemProbe | None = None,
        cache_cleanup: CacheCleanupService | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize worker.

        Args:
            db: Database instance for creating sessions
            settings: Application settings
            source: Where track records come from
            probe: Filesystem probe for the validity filter (None skips access checks)
            cache_cleanup: Artwork cache cleanup to run after scans
            sleep: Backoff sleep, swapped out in tests
        """
        self.db = db
        self.settings = settings
        self.source = source
        self.probe = probe
        self.cache_cleanup = cache_cleanup
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.last_report: ScanReport | None = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_scan(
        self,
        scope: ScanScope,
        policy: FilterPolicy | None = None,
        cancel_event: asyncio.Event | None = None,
        correlation_id: str | None = None,
    ) -> ScanReport:
        """Run one scan with retry.

        Raises:
            InvalidStateException: another scan is already running
            SyncError: the scan failed for good (non-retryable, or out of attempts)
        """
        if self._lock.locked():
            raise InvalidStateException("A library scan is already running")

        async with self._lock:
            with correlation_scope(correlation_id) as scan_id:
                policy = policy or self.settings.scan.filter_policy()
                async with log_operation(
                    logger, "library_scan", scan_id=scan_id, scope=scope.mode.value
                ):
                    report = await self._run_with_retry(scope, policy, cancel_event)
                self.last_report = report
                if self.cache_cleanup is not None:
                    await self.cache_cleanup.run()
                return report

    async def run_full_scan(self) -> ScanReport:
        return await self.run_scan(ScanScope.full())

    async def run_incremental_scan(self, since_ms: int | None = None) -> ScanReport:
        return await self.run_scan(ScanScope.incremental(since_ms))

    async def run_folder_scan(self, paths: Sequence[str]) -> ScanReport:
        return await self.run_scan(ScanScope.folders(paths))

    async def cleanup_cache(self, force: bool = False) -> CleanupReport:
        """Run the artwork cache cleanup (no-op when no cleanup service is configured)."""
        if self.cache_cleanup is None:
            return CleanupReport()
        return await self.cache_cleanup.run(force=force)

    async def _run_with_retry(
        self,
        scope: ScanScope,
        policy: FilterPolicy,
        cancel_event: asyncio.Event | None,
    ) -> ScanReport:
        max_attempts = self.settings.scan.max_attempts
        delay = self.settings.scan.retry_initial_delay

        for attempt in range(1, max_attempts + 1):
            try:
                async with self.db.session_scope() as session:
                    service = LibrarySyncService.for_session(
                        session, self.settings, self.source, self.probe
                    )
                    return await service.run_scan(scope, policy, cancel_event)
            except SyncError as e:
                if not e.retryable or attempt == max_attempts:
                    logger.error(
                        f"Library scan ({scope.mode.value}) failed after "
                        f"{attempt}/{max_attempts} attempt(s): {e.message}"
                    )
                    raise
                logger.warning(
                    f"Library scan attempt {attempt}/{max_attempts} failed: {e.message}. "
                    f"Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
                delay = min(delay * 2, self.settings.scan.retry_max_delay)

        raise RuntimeError("Unexpected state in scan retry loop")
