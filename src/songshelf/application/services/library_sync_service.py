"""Entry point of the library synchronization engine."""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from songshelf.application.services.reconciliation_planner import ReconciliationPlanner
from songshelf.application.services.store_writer import StoreWriter
from songshelf.application.services.validity_filter import ValidityFilter
from songshelf.config import Settings
from songshelf.domain.dtos import ScanReport
from songshelf.domain.entities import ScanState, now_ms
from songshelf.domain.ports import IFileSystemProbe, ITrackSource
from songshelf.domain.value_objects import FilterPolicy, ScanMode, ScanScope

logger = logging.getLogger(__name__)


class LibrarySyncService:
    """Plans and applies one scan, and reports the result.

    The service holds no lock: callers must not run two scans at once
    (LibraryScanWorker takes care of that).
    """

    def __init__(
        self,
        planner: ReconciliationPlanner,
        writer: StoreWriter,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.planner = planner
        self.writer = writer
        self.clock = clock
        self.state = ScanState.IDLE

    # Hey future me - this is the factory the worker uses. All four repositories share the one
    # session and the writer checkpoints with session.commit, so each StoreWriter step is its own
    # transaction. recompute_concurrency comes from settings and should stay 1 here.
    @classmethod
    def for_session(
        cls,
        session: AsyncSession,
        settings: Settings,
        source: ITrackSource,
        probe: IFileSystemProbe | None = None,
    ) -> "LibrarySyncService":
        from songshelf.infrastructure.persistence.repositories import (
            AlbumRepository,
            ArtistRepository,
            ScanBookkeepingRepository,
            SongRepository,
        )

        songs = SongRepository(session)
        albums = AlbumRepository(session)
        artists = ArtistRepository(session)
        bookkeeping = ScanBookkeepingRepository(session)
        planner = ReconciliationPlanner(
            source=source,
            songs=songs,
            albums=albums,
            artists=artists,
            bookkeeping=bookkeeping,
            validity_filter=ValidityFilter(probe),
            order_by_path=settings.scan.order_by_path,
        )
        writer = StoreWriter(
            songs=songs,
            albums=albums,
            artists=artists,
            bookkeeping=bookkeeping,
            recompute_concurrency=settings.scan.recompute_concurrency,
            prune_orphans=settings.scan.prune_orphans,
            checkpoint=session.commit,
        )
        return cls(planner, writer)

    async def run_scan(
        self,
        scope: ScanScope,
        policy: FilterPolicy,
        cancel_event: asyncio.Event | None = None,
    ) -> ScanReport:
        """Run one scan end to end.

        The scan start time (taken before the source is queried) is what ends up
        in bookkeeping, so files modified while the scan runs are picked up by
        the next incremental scan.

        Raises:
            SyncError: any unrecoverable failure; nothing is retried here
        """
        started_at_ms = self.clock()
        start = time.monotonic()
        self.state = ScanState.IDLE
        logger.info(f"Library scan started ({scope.mode.value})")

        try:
            plan = await self.planner.plan(
                scope,
                policy,
                started_at_ms=started_at_ms,
                cancel_event=cancel_event,
                on_state=self._set_state,
            )
            outcome = await self.writer.apply(plan)
        except Exception as e:
            self.state = ScanState.FAILED
            logger.warning(f"Library scan ({scope.mode.value}) failed: {e}")
            raise

        self.state = ScanState.APPLIED
        report = ScanReport.from_results(
            plan, outcome, elapsed_ms=int((time.monotonic() - start) * 1000)
        )
        logger.info(
            f"Library scan ({scope.mode.value}) complete: {report.summary()}\n"
            f"├─ found: {report.songs_found}, skipped: {report.songs_skipped}, "
            f"failed: {report.songs_failed}\n"
            f"├─ albums: +{report.albums_added} -{report.albums_removed}, "
            f"artists: +{report.artists_added} -{report.artists_removed}\n"
            f"└─ took {report.elapsed_ms}ms"
        )
        return report

    async def run_folder_scans(
        self,
        groups: Iterable[Sequence[str]],
        policy: FilterPolicy,
        cancel_event: asyncio.Event | None = None,
    ) -> ScanReport:
        """Run one folder-scoped scan per group of path prefixes and merge the reports."""
        merged = ScanReport(mode=ScanMode.FOLDER)
        for paths in groups:
            report = await self.run_scan(ScanScope.folders(paths), policy, cancel_event)
            merged = merged.merge(report)
        return merged

    def _set_state(self, state: ScanState) -> None:
        self.state = state
