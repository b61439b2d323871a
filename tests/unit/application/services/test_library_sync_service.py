"""Tests for LibrarySyncService.run_scan over the in-memory store."""

import pytest

from songshelf.domain.entities import ScanState
from songshelf.domain.exceptions import SourceUnavailableError, StoreWriteError
from songshelf.domain.value_objects import ScanMode, ScanScope

# Hey future me - these are the end-to-end scan scenarios:
# 1. first full scan of A/B/C creates 3 songs, 2 albums, 2 artists
# 2. incremental scan picks up a retag and nothing else; re-reading everything changes nothing
# 3. full scan after a file vanished removes it and fixes album stats
# 4. short tracks never enter the library
# 5. re-running the same scan changes nothing

T1 = 1_700_000_000_000
T2 = T1 + 60_000


class TestRunScan:
    """Test complete scans."""

    @pytest.mark.asyncio
    async def test_first_full_scan(
        self, build_service, source, store, three_records, policy
    ) -> None:
        source.records = three_records
        service = build_service(clock=lambda: T1 + 1_000)

        report = await service.run_scan(ScanScope.full(), policy)

        assert report.mode is ScanMode.FULL
        assert report.songs_found == 3
        assert report.songs_added == 3
        assert report.albums_added == 2
        assert report.artists_added == 2
        assert report.songs_removed == 0
        assert store.album("Album1", "Artist1").song_count == 2
        assert store.artist("Artist1").song_count == 2
        assert store.bookkeeping.current.last_scan_ms == T1 + 1_000
        assert service.state is ScanState.APPLIED

    @pytest.mark.asyncio
    async def test_incremental_picks_up_retag(
        self, build_service, source, store, three_records, make_record, policy
    ) -> None:
        source.records = three_records
        await build_service(clock=lambda: T1 + 1_000).run_scan(ScanScope.full(), policy)

        source.records = [
            make_record("/music/a.mp3", "A2", "Artist1", "Album1", 200_000, T2, year=2001),
            *three_records[1:],
        ]
        report = await build_service(clock=lambda: T2 + 1_000).run_scan(
            ScanScope.incremental(), policy
        )

        assert source.since_queries == [T1 + 1_000]
        assert report.songs_found == 1
        assert report.songs_updated == 1
        assert report.songs_added == 0
        assert report.albums_added == 0
        assert store.song("/music/a.mp3").title == "A2"
        assert store.bookkeeping.current.last_scan_ms == T2 + 1_000
        assert store.bookkeeping.current.last_full_scan_ms == T1 + 1_000
        assert store.album("Album1", "Artist1").song_count == 2
        assert store.album("Album1", "Artist1").total_duration_ms == 380_000
        assert store.artist("Artist1").song_count == 2

    @pytest.mark.asyncio
    async def test_incremental_round_trip_reports_unchanged(
        self, build_service, source, store, three_records, policy
    ) -> None:
        """Re-reading every record right after a full scan finds nothing to do."""
        source.records = three_records
        await build_service(clock=lambda: T1).run_scan(ScanScope.full(), policy)
        started_at = store.bookkeeping.current.last_scan_ms

        report = await build_service(clock=lambda: T2).run_scan(
            ScanScope.incremental(since_ms=started_at - 1), policy
        )

        assert source.since_queries == [T1 - 1]
        assert report.songs_found == 3
        assert report.songs_unchanged == 3
        assert report.songs_added == 0
        assert report.songs_updated == 0
        assert not report.has_changes
        assert len(store.songs.rows) == 3

    @pytest.mark.asyncio
    async def test_full_scan_removes_vanished_song(
        self, build_service, source, store, three_records, policy
    ) -> None:
        source.records = three_records
        await build_service().run_scan(ScanScope.full(), policy)

        source.records = [three_records[0], three_records[2]]
        report = await build_service().run_scan(ScanScope.full(), policy)

        assert report.songs_removed == 1
        assert report.songs_unchanged == 2
        album1 = store.album("Album1", "Artist1")
        assert album1.song_count == 1
        assert album1.total_duration_ms == 200_000
        assert album1.last_year == 2001

    @pytest.mark.asyncio
    async def test_short_track_skipped(
        self, build_service, source, store, make_record, policy
    ) -> None:
        source.records = [make_record("/music/jingle.mp3", duration_ms=10_000)]

        report = await build_service().run_scan(ScanScope.full(), policy)

        assert report.songs_found == 1
        assert report.songs_skipped == 1
        assert report.songs_added == 0
        assert store.songs.rows == []
        assert store.albums.rows == {}

    @pytest.mark.asyncio
    async def test_rescan_is_idempotent(
        self, build_service, source, store, three_records, policy
    ) -> None:
        source.records = three_records
        await build_service().run_scan(ScanScope.full(), policy)

        report = await build_service().run_scan(ScanScope.full(), policy)

        assert not report.has_changes
        assert report.songs_unchanged == 3
        assert report.summary() == "No changes"
        assert len(store.songs.rows) == 3
        assert len(store.albums.rows) == 2

    @pytest.mark.asyncio
    async def test_user_state_survives_rescan(
        self, build_service, source, store, three_records, make_record, policy
    ) -> None:
        source.records = three_records
        await build_service().run_scan(ScanScope.full(), policy)
        await store.songs.set_favorite("/music/b.mp3", True)
        await store.songs.record_play("/music/b.mp3", T1)

        source.records = [
            three_records[0],
            make_record("/music/b.mp3", "B (Remaster)", "Artist1", "Album1", 181_000, T2),
            three_records[2],
        ]
        await build_service().run_scan(ScanScope.full(), policy)

        song = store.song("/music/b.mp3")
        assert song.title == "B (Remaster)"
        assert song.is_favorite is True
        assert song.play_count == 1

    @pytest.mark.asyncio
    async def test_empty_scan_still_advances_bookkeeping(
        self, build_service, store, policy
    ) -> None:
        report = await build_service(clock=lambda: 777).run_scan(ScanScope.full(), policy)

        assert report.songs_found == 0
        assert store.bookkeeping.current.last_scan_ms == 777


class TestRunScanFailures:
    """Test error propagation."""

    @pytest.mark.asyncio
    async def test_source_failure_writes_nothing(
        self, build_service, source, store, policy
    ) -> None:
        source.failures["list_all"] = OSError("unmounted")
        service = build_service()

        with pytest.raises(SourceUnavailableError):
            await service.run_scan(ScanScope.full(), policy)

        assert service.state is ScanState.FAILED
        assert store.bookkeeping.current.scans_completed == 0

    @pytest.mark.asyncio
    async def test_write_failure_leaves_bookkeeping_stale(
        self, build_service, source, store, three_records, policy
    ) -> None:
        source.records = three_records
        store.songs.failures["add_batch"] = RuntimeError("disk full")
        service = build_service()

        with pytest.raises(StoreWriteError):
            await service.run_scan(ScanScope.full(), policy)

        assert service.state is ScanState.FAILED
        assert store.bookkeeping.current.last_scan_ms is None

    @pytest.mark.asyncio
    async def test_retry_after_partial_write_converges(
        self, build_service, source, store, three_records, policy
    ) -> None:
        """A half-applied scan is finished by simply running it again."""
        source.records = three_records
        store.bookkeeping.failures["save"] = RuntimeError("readonly")
        with pytest.raises(StoreWriteError):
            await build_service().run_scan(ScanScope.full(), policy)

        del store.bookkeeping.failures["save"]
        report = await build_service().run_scan(ScanScope.full(), policy)

        assert report.songs_unchanged == 3
        assert report.albums_added == 0
        assert store.album("Album1", "Artist1").song_count == 2
        assert store.bookkeeping.current.scans_completed == 1


class TestRunFolderScans:
    """Test merged folder scans."""

    @pytest.mark.asyncio
    async def test_reports_merged(
        self, build_service, source, three_records, make_record, policy
    ) -> None:
        source.records = [*three_records, make_record("/other/x.mp3", artist="Artist9")]

        report = await build_service().run_folder_scans([["/music/"], ["/other/"]], policy)

        assert report.mode is ScanMode.FOLDER
        assert report.songs_found == 4
        assert report.songs_added == 4
        assert report.artists_added == 3
