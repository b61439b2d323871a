"""Build the reconciliation plan for one scan."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from songshelf.application.services.aggregator import aggregate
from songshelf.application.services.change_classifier import changed_fields, classify
from songshelf.application.services.validity_filter import ValidityFilter
from songshelf.domain.dtos import ReconciliationPlan, SongUpdate
from songshelf.domain.entities import (
    Classification,
    ScanState,
    StoredAlbum,
    StoredArtist,
    StoredSong,
    TrackRecord,
)
from songshelf.domain.exceptions import (
    DataIntegrityError,
    ScanCancelledError,
    SourceUnavailableError,
    StoreUnavailableError,
    SyncError,
)
from songshelf.domain.ports import (
    IAlbumRepository,
    IArtistRepository,
    IScanBookkeepingRepository,
    ISongRepository,
    ITrackSource,
)
from songshelf.domain.value_objects import AlbumKey, FilterPolicy, ScanMode, ScanScope

logger = logging.getLogger(__name__)

T = TypeVar("T")

StateListener = Callable[[ScanState], None]


class ReconciliationPlanner:
    """Runs the read-only half of a scan and returns a ReconciliationPlan.

    Stages: SELECTING_SCOPE → FILTERING → CLASSIFYING → AGGREGATING →
    DETECTING_REMOVALS → PLANNED. Any exception moves the planner to FAILED
    and propagates; the caller never sees a partial plan.
    """

    def __init__(
        self,
        source: ITrackSource,
        songs: ISongRepository,
        albums: IAlbumRepository,
        artists: IArtistRepository,
        bookkeeping: IScanBookkeepingRepository,
        validity_filter: ValidityFilter,
        order_by_path: bool = False,
    ) -> None:
        self.source = source
        self.songs = songs
        self.albums = albums
        self.artists = artists
        self.bookkeeping = bookkeeping
        self.validity_filter = validity_filter
        self.order_by_path = order_by_path
        self.state = ScanState.IDLE
        self._on_state: StateListener | None = None

    async def plan(
        self,
        scope: ScanScope,
        policy: FilterPolicy,
        started_at_ms: int,
        cancel_event: asyncio.Event | None = None,
        on_state: StateListener | None = None,
    ) -> ReconciliationPlan:
        """Compute the plan for ``scope``. Nothing is written to the store.

        Raises:
            SourceUnavailableError: the track source could not be enumerated
            StoreUnavailableError: the store could not be read
            DataIntegrityError: the store holds more than one song for a path
            ScanCancelledError: ``cancel_event`` was set between two stages
        """
        self._on_state = on_state
        start = time.monotonic()
        plan = ReconciliationPlan(scope=scope, started_at_ms=started_at_ms)
        try:
            self._enter(ScanState.SELECTING_SCOPE)
            records = await self._select_records(scope)
            plan.songs_found = len(records)

            self._check_cancelled(cancel_event, ScanState.FILTERING)
            self._enter(ScanState.FILTERING)
            valid, rejected = self.validity_filter.partition(records, policy)
            plan.songs_skipped = sum(rejected.values())
            plan.skip_reasons = {reason.value: count for reason, count in rejected.items()}

            self._check_cancelled(cancel_event, ScanState.CLASSIFYING)
            self._enter(ScanState.CLASSIFYING)
            changed = await self._classify(valid, plan)

            self._check_cancelled(cancel_event, ScanState.AGGREGATING)
            self._enter(ScanState.AGGREGATING)
            await self._aggregate(changed, plan)

            self._check_cancelled(cancel_event, ScanState.DETECTING_REMOVALS)
            self._enter(ScanState.DETECTING_REMOVALS)
            if scope.detects_removals:
                await self._detect_removals({record.path for record in valid}, plan)

            self._check_cancelled(cancel_event, ScanState.PLANNED)
        except Exception:
            self._enter(ScanState.FAILED)
            raise

        plan.planning_ms = int((time.monotonic() - start) * 1000)
        self._enter(ScanState.PLANNED)
        logger.info(
            f"Scan plan ({scope.mode.value}) ready in {plan.planning_ms}ms\n"
            f"├─ found: {plan.songs_found}, skipped: {plan.songs_skipped}\n"
            f"├─ insert: {len(plan.songs_to_insert)}, update: {len(plan.songs_to_update)}, "
            f"unchanged: {plan.songs_unchanged}, failed: {plan.songs_failed}\n"
            f"├─ new albums: {len(plan.albums_to_insert)}, "
            f"new artists: {len(plan.artists_to_insert)}\n"
            f"└─ remove: {len(plan.songs_to_remove)}"
        )
        return plan

    def _enter(self, state: ScanState) -> None:
        self.state = state
        logger.debug(f"Planner state -> {state.value}")
        if self._on_state is not None:
            self._on_state(state)

    @staticmethod
    def _check_cancelled(cancel_event: asyncio.Event | None, stage: ScanState) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ScanCancelledError(stage.value)

    async def _read_store(self, operation: Awaitable[T], what: str) -> T:
        try:
            return await operation
        except SyncError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to read {what}: {e}") from e

    # Hey future me, incremental scans with no override bound the query by the bookkeeping
    # timestamp. Never scanned before? since=0, i.e. everything - still no removals though,
    # because the scope is incremental.
    async def _select_records(self, scope: ScanScope) -> list[TrackRecord]:
        if scope.mode is ScanMode.INCREMENTAL and scope.since_ms is None:
            bookkeeping = await self._read_store(self.bookkeeping.get(), "scan bookkeeping")
            since_ms = bookkeeping.last_scan_ms or 0
        else:
            since_ms = scope.since_ms or 0

        try:
            if scope.mode is ScanMode.FULL:
                records = await self.source.list_all()
            elif scope.mode is ScanMode.INCREMENTAL:
                logger.debug(f"Incremental scan since {since_ms}")
                records = await self.source.list_modified_since(since_ms)
            else:
                records = await self.source.list_under_paths(list(scope.paths))
        except SyncError:
            raise
        except Exception as e:
            raise SourceUnavailableError(f"Track source failed: {e}") from e

        unique: dict[str, TrackRecord] = {}
        for record in records:
            unique.setdefault(record.path, record)
        if len(unique) != len(records):
            logger.warning(
                f"Track source returned {len(records) - len(unique)} duplicate path(s), "
                "keeping the first record of each"
            )
        return list(unique.values())

    async def _classify(
        self, records: list[TrackRecord], plan: ReconciliationPlan
    ) -> list[TrackRecord]:
        existing = await self._read_store(
            self.songs.get_by_paths([record.path for record in records]), "stored songs"
        )

        changed: list[TrackRecord] = []
        for record in records:
            rows = existing.get(record.path, [])
            if len(rows) > 1:
                raise DataIntegrityError(record.path, len(rows))
            stored = rows[0] if rows else None
            try:
                classification = classify(record, stored)
                if classification is Classification.NEW:
                    plan.songs_to_insert.append(StoredSong.from_record(record))
                elif classification is Classification.UPDATED:
                    assert stored is not None
                    plan.songs_to_update.append(
                        SongUpdate(
                            previous=stored,
                            updated=stored.apply_record(record),
                            changed_fields=changed_fields(record, stored),
                        )
                    )
                else:
                    plan.songs_unchanged += 1
                    continue
            except (ValueError, TypeError) as e:
                plan.songs_failed += 1
                logger.warning(f"Failed to classify {record.path}: {e}")
                continue
            changed.append(record)
        return changed

    async def _aggregate(self, changed: list[TrackRecord], plan: ReconciliationPlan) -> None:
        album_keys = {AlbumKey(record.album, record.artist) for record in changed}
        artist_names = {record.artist for record in changed}

        known_albums: dict[AlbumKey, StoredAlbum | None] = {}
        for key in album_keys:
            known_albums[key] = await self._read_store(
                self.albums.get_by_name_and_artist(key.name, key.artist), "albums"
            )
        known_artists: dict[str, StoredArtist | None] = {}
        for name in artist_names:
            known_artists[name] = await self._read_store(
                self.artists.get_by_name(name), "artists"
            )

        result = aggregate(
            changed,
            album_lookup=lambda name, artist: known_albums.get(AlbumKey(name, artist)),
            artist_lookup=known_artists.get,
            order_by_path=self.order_by_path,
        )
        plan.albums_to_insert = result.new_albums
        plan.artists_to_insert = result.new_artists

    async def _detect_removals(self, seen_paths: set[str], plan: ReconciliationPlan) -> None:
        stored_paths = await self._read_store(self.songs.list_paths(), "stored paths")
        missing = sorted(stored_paths - seen_paths)
        if not missing:
            return
        rows = await self._read_store(self.songs.get_by_paths(missing), "removed songs")
        plan.songs_to_remove = [song for path in missing for song in rows.get(path, [])]
