"""Shared fixtures: in-memory implementations of the library ports."""

from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Any

import pytest

from songshelf.application.services.library_sync_service import LibrarySyncService
from songshelf.application.services.reconciliation_planner import ReconciliationPlanner
from songshelf.application.services.store_writer import StoreWriter
from songshelf.application.services.validity_filter import ValidityFilter
from songshelf.domain.entities import (
    SOURCE_FIELDS,
    ScanBookkeeping,
    StoredAlbum,
    StoredArtist,
    StoredSong,
    TrackRecord,
)
from songshelf.domain.exceptions import DataIntegrityError
from songshelf.domain.ports import (
    IAlbumRepository,
    IArtistRepository,
    IFileSystemProbe,
    IScanBookkeepingRepository,
    ISongRepository,
    ITrackSource,
)
from songshelf.domain.value_objects import AlbumKey, AlbumStats, ArtistStats, FilterPolicy

# Hey future me - these fakes behave like the SQL repositories (lookups return None, updates
# copy only source fields) but keep everything in dicts. `failures` lets a test make any
# method raise: store.songs.failures["add_batch"] = RuntimeError("disk full").


class _Failing:
    def __init__(self) -> None:
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []

    def _hit(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]


class FakeTrackSource(_Failing, ITrackSource):
    def __init__(self, records: Sequence[TrackRecord] = ()) -> None:
        super().__init__()
        self.records = list(records)
        self.since_queries: list[int] = []

    async def list_all(self) -> list[TrackRecord]:
        self._hit("list_all")
        return list(self.records)

    async def list_modified_since(self, since_ms: int) -> list[TrackRecord]:
        self._hit("list_modified_since")
        self.since_queries.append(since_ms)
        return [r for r in self.records if r.modified_ms > since_ms]

    async def list_under_paths(self, paths: Sequence[str]) -> list[TrackRecord]:
        self._hit("list_under_paths")
        return [r for r in self.records if any(r.path.startswith(p) for p in paths)]


class FakeProbe(IFileSystemProbe):
    def __init__(self) -> None:
        self.missing: set[str] = set()
        self.unreadable: set[str] = set()
        self.empty: set[str] = set()
        self.broken: set[str] = set()

    def exists(self, path: str) -> bool:
        if path in self.broken:
            raise OSError(5, "I/O error", path)
        return path not in self.missing

    def is_readable(self, path: str) -> bool:
        return path not in self.unreadable

    def size_of(self, path: str) -> int:
        return 0 if path in self.empty else 4096


class InMemorySongRepository(_Failing, ISongRepository):
    def __init__(self) -> None:
        super().__init__()
        self.rows: list[StoredSong] = []
        self._next_id = 1

    def _find(self, path: str) -> list[StoredSong]:
        return [song for song in self.rows if song.path == path]

    async def get_by_path(self, path: str) -> StoredSong | None:
        self._hit("get_by_path")
        rows = self._find(path)
        if len(rows) > 1:
            raise DataIntegrityError(path, len(rows))
        return replace(rows[0]) if rows else None

    async def get_by_paths(self, paths: Sequence[str]) -> dict[str, list[StoredSong]]:
        self._hit("get_by_paths")
        wanted = set(paths)
        found: dict[str, list[StoredSong]] = {}
        for song in self.rows:
            if song.path in wanted:
                found.setdefault(song.path, []).append(replace(song))
        return found

    async def add_batch(self, songs: Sequence[StoredSong]) -> None:
        self._hit("add_batch")
        for song in songs:
            self.rows.append(replace(song, id=self._next_id))
            self._next_id += 1

    async def update_batch(self, songs: Sequence[StoredSong]) -> None:
        self._hit("update_batch")
        for song in songs:
            for row in self._find(song.path):
                for name in SOURCE_FIELDS:
                    setattr(row, name, getattr(song, name))

    async def delete_by_paths(self, paths: Sequence[str]) -> int:
        self._hit("delete_by_paths")
        doomed = set(paths)
        before = len(self.rows)
        self.rows = [song for song in self.rows if song.path not in doomed]
        return before - len(self.rows)

    async def list_paths(self) -> set[str]:
        self._hit("list_paths")
        return {song.path for song in self.rows}

    async def list_all(self) -> list[StoredSong]:
        return sorted((replace(s) for s in self.rows), key=lambda s: s.path)

    async def album_stats(self, key: AlbumKey) -> AlbumStats:
        self._hit("album_stats")
        group = [s for s in self.rows if s.album == key.name and s.artist == key.artist]
        years = [s.year for s in group if s.year > 0]
        return AlbumStats(
            song_count=len(group),
            total_duration_ms=sum(s.duration_ms for s in group),
            first_year=min(years) if years else None,
            last_year=max(years) if years else None,
        )

    async def artist_stats(self, name: str) -> ArtistStats:
        self._hit("artist_stats")
        group = [s for s in self.rows if s.artist == name]
        return ArtistStats(
            song_count=len(group),
            album_count=len({s.album for s in group}),
            total_duration_ms=sum(s.duration_ms for s in group),
        )

    async def _mutate(self, path: str, fn: Callable[[StoredSong], None]) -> bool:
        rows = self._find(path)
        for row in rows:
            fn(row)
        return bool(rows)

    async def set_favorite(self, path: str, is_favorite: bool) -> bool:
        return await self._mutate(path, lambda s: setattr(s, "is_favorite", is_favorite))

    async def record_play(self, path: str, played_at_ms: int) -> bool:
        return await self._mutate(path, lambda s: s.record_play(played_at_ms))

    async def reset_play_count(self, path: str) -> bool:
        return await self._mutate(path, lambda s: s.reset_play_count())

    async def set_rating(self, path: str, rating: int) -> bool:
        return await self._mutate(path, lambda s: s.set_rating(rating))


class InMemoryAlbumRepository(_Failing, IAlbumRepository):
    def __init__(self, songs: InMemorySongRepository) -> None:
        super().__init__()
        self.songs = songs
        self.rows: dict[AlbumKey, StoredAlbum] = {}

    async def get_by_name_and_artist(self, name: str, artist: str) -> StoredAlbum | None:
        self._hit("get_by_name_and_artist")
        album = self.rows.get(AlbumKey(name, artist))
        return replace(album) if album else None

    async def add_batch(self, albums: Sequence[StoredAlbum]) -> None:
        self._hit("add_batch")
        for album in albums:
            self.rows[album.key] = replace(album, id=len(self.rows) + 1)

    async def update_stats(self, key: AlbumKey, stats: AlbumStats) -> None:
        self._hit("update_stats")
        album = self.rows.get(key)
        if album is None:
            return
        album.song_count = stats.song_count
        album.total_duration_ms = stats.total_duration_ms
        album.first_year = stats.first_year
        album.last_year = stats.last_year

    async def delete_empty(self) -> int:
        self._hit("delete_empty")
        used = {song.album_key for song in self.songs.rows}
        empty = [key for key in self.rows if key not in used]
        for key in empty:
            del self.rows[key]
        return len(empty)

    async def list_all(self) -> list[StoredAlbum]:
        return [replace(a) for a in self.rows.values()]


class InMemoryArtistRepository(_Failing, IArtistRepository):
    def __init__(self, songs: InMemorySongRepository) -> None:
        super().__init__()
        self.songs = songs
        self.rows: dict[str, StoredArtist] = {}

    async def get_by_name(self, name: str) -> StoredArtist | None:
        self._hit("get_by_name")
        artist = self.rows.get(name)
        return replace(artist) if artist else None

    async def add_batch(self, artists: Sequence[StoredArtist]) -> None:
        self._hit("add_batch")
        for artist in artists:
            self.rows[artist.name] = replace(artist, id=len(self.rows) + 1)

    async def update_stats(self, name: str, stats: ArtistStats) -> None:
        self._hit("update_stats")
        artist = self.rows.get(name)
        if artist is None:
            return
        artist.song_count = stats.song_count
        artist.album_count = stats.album_count
        artist.total_duration_ms = stats.total_duration_ms

    async def delete_empty(self) -> int:
        self._hit("delete_empty")
        used = {song.artist for song in self.songs.rows}
        empty = [name for name in self.rows if name not in used]
        for name in empty:
            del self.rows[name]
        return len(empty)

    async def list_all(self) -> list[StoredArtist]:
        return [replace(a) for a in self.rows.values()]


class InMemoryBookkeepingRepository(_Failing, IScanBookkeepingRepository):
    def __init__(self) -> None:
        super().__init__()
        self.current = ScanBookkeeping()

    async def get(self) -> ScanBookkeeping:
        self._hit("get")
        return replace(self.current)

    async def save(self, bookkeeping: ScanBookkeeping) -> None:
        self._hit("save")
        self.current = replace(bookkeeping)


class InMemoryLibraryStore:
    """The four repositories wired together like one database."""

    def __init__(self) -> None:
        self.songs = InMemorySongRepository()
        self.albums = InMemoryAlbumRepository(self.songs)
        self.artists = InMemoryArtistRepository(self.songs)
        self.bookkeeping = InMemoryBookkeepingRepository()

    def song(self, path: str) -> StoredSong:
        (row,) = self.songs._find(path)
        return row

    def album(self, name: str, artist: str) -> StoredAlbum:
        return self.albums.rows[AlbumKey(name, artist)]

    def artist(self, name: str) -> StoredArtist:
        return self.artists.rows[name]


T1 = 1_700_000_000_000
T2 = T1 + 60_000


def _make_record(
    path: str = "/music/a.mp3",
    title: str = "A",
    artist: str = "Artist1",
    album: str = "Album1",
    duration_ms: int = 200_000,
    modified_ms: int = T1,
    **overrides: Any,
) -> TrackRecord:
    return TrackRecord(
        path=path,
        title=title,
        artist=artist,
        album=album,
        duration_ms=duration_ms,
        modified_ms=modified_ms,
        size_bytes=overrides.pop("size_bytes", 4096),
        **overrides,
    )


@pytest.fixture
def make_record() -> Callable[..., TrackRecord]:
    """Factory for TrackRecords with sensible defaults."""
    return _make_record


@pytest.fixture
def three_records() -> list[TrackRecord]:
    """The A/B/C library used across scan scenarios."""
    return [
        _make_record("/music/a.mp3", "A", "Artist1", "Album1", 200_000, year=2001),
        _make_record("/music/b.mp3", "B", "Artist1", "Album1", 180_000, year=2003),
        _make_record("/music/c.mp3", "C", "Artist2", "Album2", 300_000, year=1999),
    ]


@pytest.fixture
def store() -> InMemoryLibraryStore:
    return InMemoryLibraryStore()


@pytest.fixture
def source() -> FakeTrackSource:
    return FakeTrackSource()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def policy() -> FilterPolicy:
    return FilterPolicy(ignore_short_tracks=True, min_duration_ms=30_000)


@pytest.fixture
def build_service(
    store: InMemoryLibraryStore, source: FakeTrackSource, probe: FakeProbe
) -> Callable[..., LibrarySyncService]:
    """Build a LibrarySyncService over the in-memory store."""

    def build(
        clock: Callable[[], int] = lambda: T2 + 1_000,
        recompute_concurrency: int = 4,
        prune_orphans: bool = True,
        order_by_path: bool = False,
    ) -> LibrarySyncService:
        planner = ReconciliationPlanner(
            source=source,
            songs=store.songs,
            albums=store.albums,
            artists=store.artists,
            bookkeeping=store.bookkeeping,
            validity_filter=ValidityFilter(probe),
            order_by_path=order_by_path,
        )
        writer = StoreWriter(
            songs=store.songs,
            albums=store.albums,
            artists=store.artists,
            bookkeeping=store.bookkeeping,
            recompute_concurrency=recompute_concurrency,
            prune_orphans=prune_orphans,
        )
        return LibrarySyncService(planner, writer, clock=clock)

    return build
