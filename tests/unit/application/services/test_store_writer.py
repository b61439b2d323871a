"""Tests for StoreWriter."""

from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from songshelf.application.services.store_writer import (
    INSERT_ALBUMS,
    INSERT_ARTISTS,
    INSERT_SONGS,
    RECOMPUTE_STATS,
    REMOVE_SONGS,
    UPDATE_BOOKKEEPING,
    UPDATE_SONGS,
    StoreWriter,
)
from songshelf.domain.dtos import ReconciliationPlan, SongUpdate
from songshelf.domain.entities import StoredAlbum, StoredArtist, StoredSong
from songshelf.domain.exceptions import InvalidStateException, StoreWriteError
from songshelf.domain.value_objects import ScanMode, ScanScope

# Hey future me - these tests verify the writer contract:
# 1. steps run in a fixed order and each one checkpoints
# 2. a failing step raises StoreWriteError naming the step, later steps don't run
# 3. album/artist stats are recomputed from song rows, old side of moves included
# 4. bookkeeping moves only when everything else succeeded


@pytest.fixture
def writer(store) -> StoreWriter:
    return StoreWriter(
        songs=store.songs,
        albums=store.albums,
        artists=store.artists,
        bookkeeping=store.bookkeeping,
        recompute_concurrency=4,
    )


def _fresh_plan(records, scope: ScanScope | None = None) -> ReconciliationPlan:
    artists = {r.artist for r in records}
    albums = {(r.album, r.artist) for r in records}
    return ReconciliationPlan(
        scope=scope or ScanScope.full(),
        started_at_ms=1_000,
        songs_to_insert=[StoredSong.from_record(r) for r in records],
        albums_to_insert=[StoredAlbum(name=n, artist=a) for n, a in sorted(albums)],
        artists_to_insert=[StoredArtist(name=n) for n in sorted(artists)],
    )


class TestApply:
    """Test the happy path."""

    @pytest.mark.asyncio
    async def test_inserts_and_recomputes(self, writer, store, three_records) -> None:
        """Stats come from the inserted song rows."""
        outcome = await writer.apply(_fresh_plan(three_records))

        assert outcome.songs_added == 3
        assert outcome.albums_added == 2
        assert outcome.artists_added == 2
        assert outcome.albums_recomputed == 2
        assert outcome.artists_recomputed == 2

        album1 = store.album("Album1", "Artist1")
        assert album1.song_count == 2
        assert album1.total_duration_ms == 380_000
        assert album1.first_year == 2001
        assert album1.last_year == 2003
        assert store.artist("Artist2").song_count == 1

    @pytest.mark.asyncio
    async def test_step_order(self, writer, three_records) -> None:
        outcome = await writer.apply(_fresh_plan(three_records))
        assert outcome.steps_completed == [
            INSERT_ARTISTS,
            INSERT_ALBUMS,
            INSERT_SONGS,
            UPDATE_SONGS,
            REMOVE_SONGS,
            RECOMPUTE_STATS,
            UPDATE_BOOKKEEPING,
        ]

    @pytest.mark.asyncio
    async def test_bookkeeping_uses_scan_start(self, writer, store, three_records) -> None:
        """The recorded time is when the scan started, not when it finished."""
        await writer.apply(_fresh_plan(three_records))

        assert store.bookkeeping.current.last_scan_ms == 1_000
        assert store.bookkeeping.current.last_full_scan_ms == 1_000
        assert store.bookkeeping.current.last_scan_mode is ScanMode.FULL

    @pytest.mark.asyncio
    async def test_plan_applied_once(self, writer, three_records) -> None:
        plan = _fresh_plan(three_records)
        await writer.apply(plan)
        with pytest.raises(InvalidStateException):
            await writer.apply(plan)

    @pytest.mark.asyncio
    async def test_checkpoint_after_each_step(self, store, three_records) -> None:
        checkpoint = AsyncMock()
        writer = StoreWriter(
            store.songs, store.albums, store.artists, store.bookkeeping, checkpoint=checkpoint
        )
        await writer.apply(_fresh_plan(three_records))
        assert checkpoint.await_count == 7

    def test_invalid_concurrency(self, store) -> None:
        with pytest.raises(ValueError, match="recompute_concurrency"):
            StoreWriter(
                store.songs,
                store.albums,
                store.artists,
                store.bookkeeping,
                recompute_concurrency=0,
            )


class TestApplyUpdatesAndRemovals:
    """Test updates, moves between albums and removals."""

    @pytest.mark.asyncio
    async def test_move_recomputes_old_album(
        self, writer, store, three_records, make_record
    ) -> None:
        """A song retagged onto another album leaves the old album's count correct."""
        await writer.apply(_fresh_plan(three_records))
        previous = replace(store.song("/music/b.mp3"))
        moved = previous.apply_record(
            make_record("/music/b.mp3", "B", "Artist1", "Album3", 180_000, 5, year=2003)
        )
        plan = ReconciliationPlan(
            scope=ScanScope.incremental(0),
            started_at_ms=2_000,
            songs_to_update=[SongUpdate(previous=previous, updated=moved)],
            albums_to_insert=[StoredAlbum(name="Album3", artist="Artist1")],
        )

        await writer.apply(plan)

        assert store.album("Album1", "Artist1").song_count == 1
        assert store.album("Album3", "Artist1").song_count == 1
        assert store.artist("Artist1").album_count == 2

    @pytest.mark.asyncio
    async def test_update_keeps_user_state(
        self, writer, store, three_records, make_record
    ) -> None:
        await writer.apply(_fresh_plan(three_records))
        await store.songs.set_favorite("/music/a.mp3", True)
        await store.songs.record_play("/music/a.mp3", 42)
        previous = replace(store.song("/music/a.mp3"))
        plan = ReconciliationPlan(
            scope=ScanScope.full(),
            started_at_ms=2_000,
            songs_to_update=[
                SongUpdate(
                    previous=previous,
                    updated=previous.apply_record(make_record("/music/a.mp3", title="A2")),
                )
            ],
        )

        await writer.apply(plan)

        song = store.song("/music/a.mp3")
        assert song.title == "A2"
        assert song.is_favorite is True
        assert song.play_count == 1

    @pytest.mark.asyncio
    async def test_removal_recomputes_and_prunes(self, writer, store, three_records) -> None:
        """Removing the only song of Album2 deletes Album2 and Artist2."""
        await writer.apply(_fresh_plan(three_records))
        plan = ReconciliationPlan(
            scope=ScanScope.full(),
            started_at_ms=2_000,
            songs_to_remove=[store.song("/music/c.mp3")],
        )

        outcome = await writer.apply(plan)

        assert outcome.songs_removed == 1
        assert outcome.albums_removed == 1
        assert outcome.artists_removed == 1
        assert [a.name for a in await store.albums.list_all()] == ["Album1"]

    @pytest.mark.asyncio
    async def test_removal_without_pruning(self, store, three_records) -> None:
        """prune_orphans=False keeps empty albums with zeroed stats."""
        writer = StoreWriter(
            store.songs, store.albums, store.artists, store.bookkeeping, prune_orphans=False
        )
        await writer.apply(_fresh_plan(three_records))
        await writer.apply(
            ReconciliationPlan(
                scope=ScanScope.full(),
                started_at_ms=2_000,
                songs_to_remove=[store.song("/music/c.mp3")],
            )
        )

        assert store.album("Album2", "Artist2").song_count == 0
        assert store.artist("Artist2").total_duration_ms == 0

    @pytest.mark.asyncio
    async def test_removals_ignored_outside_full_scope(
        self, writer, store, three_records
    ) -> None:
        await writer.apply(_fresh_plan(three_records))
        outcome = await writer.apply(
            ReconciliationPlan(
                scope=ScanScope.incremental(0),
                started_at_ms=2_000,
                songs_to_remove=[store.song("/music/c.mp3")],
            )
        )

        assert outcome.songs_removed == 0
        assert REMOVE_SONGS not in outcome.steps_completed
        assert len(store.songs.rows) == 3


class TestApplyFailures:
    """Test partial failure behavior."""

    @pytest.mark.asyncio
    async def test_failing_step_named(self, writer, store, three_records) -> None:
        """Artists and albums stay written when song insertion fails."""
        store.songs.failures["add_batch"] = RuntimeError("disk full")

        with pytest.raises(StoreWriteError) as exc_info:
            await writer.apply(_fresh_plan(three_records))

        assert exc_info.value.step == INSERT_SONGS
        assert exc_info.value.retryable is True
        assert len(store.artists.rows) == 2
        assert len(store.albums.rows) == 2
        assert store.songs.rows == []
        assert store.bookkeeping.current.last_scan_ms is None

    @pytest.mark.asyncio
    async def test_recompute_failure_unwraps_group(self, writer, store, three_records) -> None:
        """A failure inside the recompute fan-out surfaces as the original message."""
        store.albums.failures["update_stats"] = RuntimeError("locked")

        with pytest.raises(StoreWriteError, match="locked") as exc_info:
            await writer.apply(_fresh_plan(three_records))

        assert exc_info.value.step == RECOMPUTE_STATS
        assert "save" not in store.bookkeeping.calls

    @pytest.mark.asyncio
    async def test_bookkeeping_failure(self, writer, store, three_records) -> None:
        store.bookkeeping.failures["save"] = RuntimeError("readonly")

        with pytest.raises(StoreWriteError) as exc_info:
            await writer.apply(_fresh_plan(three_records))

        assert exc_info.value.step == UPDATE_BOOKKEEPING
        assert len(store.songs.rows) == 3

    @pytest.mark.asyncio
    async def test_checkpoint_failure_is_step_failure(self, store, three_records) -> None:
        checkpoint = AsyncMock(side_effect=[None, RuntimeError("commit failed")])
        writer = StoreWriter(
            store.songs, store.albums, store.artists, store.bookkeeping, checkpoint=checkpoint
        )

        with pytest.raises(StoreWriteError) as exc_info:
            await writer.apply(_fresh_plan(three_records))

        assert exc_info.value.step == INSERT_ALBUMS
