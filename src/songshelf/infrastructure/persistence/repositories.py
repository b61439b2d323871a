"""Repository implementations for the library store."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import TypeVar

import sqlalchemy as sa
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from songshelf.domain.entities import (
    SOURCE_FIELDS,
    ScanBookkeeping,
    StoredAlbum,
    StoredArtist,
    StoredSong,
)
from songshelf.domain.exceptions import DataIntegrityError, ValidationException
from songshelf.domain.ports import (
    IAlbumRepository,
    IArtistRepository,
    IScanBookkeepingRepository,
    ISongRepository,
)
from songshelf.domain.value_objects import AlbumKey, AlbumStats, ArtistStats, ScanMode

from .models import AlbumModel, ArtistModel, ScanBookkeepingModel, SongModel
from .retry import with_db_retry

T = TypeVar("T")

# SQLite caps bound parameters per statement; IN-lists are split below this size.
CHUNK_SIZE = 500


def _chunks(items: Sequence[T], size: int = CHUNK_SIZE) -> Iterator[Sequence[T]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


async def _artist_ids(session: AsyncSession, names: set[str]) -> dict[str, int]:
    ids: dict[str, int] = {}
    name_list = sorted(names)
    for chunk in _chunks(name_list):
        stmt = select(ArtistModel.name, ArtistModel.id).where(ArtistModel.name.in_(chunk))
        result = await session.execute(stmt)
        ids.update({name: artist_id for name, artist_id in result.all()})
    return ids


async def _album_ids(session: AsyncSession, keys: set[AlbumKey]) -> dict[AlbumKey, int]:
    ids: dict[AlbumKey, int] = {}
    artist_names = sorted({key.artist for key in keys})
    for chunk in _chunks(artist_names):
        stmt = select(AlbumModel.name, AlbumModel.artist, AlbumModel.id).where(
            AlbumModel.artist.in_(chunk)
        )
        result = await session.execute(stmt)
        for name, artist, album_id in result.all():
            key = AlbumKey(name, artist)
            if key in keys:
                ids[key] = album_id
    return ids


class SongRepository(ISongRepository):
    """SQLAlchemy implementation of the song repository."""

    # Hey future me, same rule as every repo here: the session is injected and we only STAGE
    # changes (plus a flush so errors surface inside the failing step). Committing belongs to
    # the owner of the session - StoreWriter's checkpoint during a scan.
    # Methods ending in flush() are NOT wrapped in with_db_retry: a failed flush leaves the
    # session needing a rollback, so re-running the body can only fail again. They lean on the
    # SQLite busy timeout and, past that, the scan worker's retry with a fresh session.
    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    @staticmethod
    def _model_to_entity(model: SongModel) -> StoredSong:
        return StoredSong(
            id=model.id,
            path=model.path,
            title=model.title,
            artist=model.artist,
            album=model.album,
            duration_ms=model.duration_ms,
            size_bytes=model.size_bytes,
            modified_ms=model.modified_ms,
            track_number=model.track_number,
            year=model.year,
            mime_type=model.mime_type,
            date_added_ms=model.date_added_ms,
            album_ref=model.album_ref,
            artist_ref=model.artist_ref,
            play_count=model.play_count,
            last_played_ms=model.last_played_ms,
            is_favorite=model.is_favorite,
            rating=model.rating,
        )

    async def get_by_path(self, path: str) -> StoredSong | None:
        stmt = select(SongModel).where(SongModel.path == path)
        result = await self.session.execute(stmt)
        models = result.scalars().all()
        if len(models) > 1:
            raise DataIntegrityError(path, len(models))
        return self._model_to_entity(models[0]) if models else None

    async def get_by_paths(self, paths: Sequence[str]) -> dict[str, list[StoredSong]]:
        found: dict[str, list[StoredSong]] = {}
        for chunk in _chunks(list(dict.fromkeys(paths))):
            stmt = select(SongModel).where(SongModel.path.in_(chunk))
            result = await self.session.execute(stmt)
            for model in result.scalars().all():
                found.setdefault(model.path, []).append(self._model_to_entity(model))
        return found

    # Yo, album_id/artist_id are resolved here from the names, which is why StoreWriter inserts
    # artists, then albums, then songs. A song whose album row doesn't exist yet just gets NULL.
    async def add_batch(self, songs: Sequence[StoredSong]) -> None:
        if not songs:
            return
        artist_ids = await _artist_ids(self.session, {song.artist for song in songs})
        album_ids = await _album_ids(self.session, {song.album_key for song in songs})
        models = [
            SongModel(
                path=song.path,
                artist_id=artist_ids.get(song.artist),
                album_id=album_ids.get(song.album_key),
                play_count=song.play_count,
                last_played_ms=song.last_played_ms,
                is_favorite=song.is_favorite,
                rating=song.rating,
                **{name: getattr(song, name) for name in SOURCE_FIELDS},
            )
            for song in songs
        ]
        self.session.add_all(models)
        await self.session.flush()

    # Listen up, ONLY SOURCE_FIELDS are copied onto the row. play_count/is_favorite/rating are
    # left alone even if the passed entity carries different values - user state never comes
    # from a scan.
    async def update_batch(self, songs: Sequence[StoredSong]) -> None:
        if not songs:
            return
        by_path = {song.path: song for song in songs}
        artist_ids = await _artist_ids(self.session, {song.artist for song in songs})
        album_ids = await _album_ids(self.session, {song.album_key for song in songs})
        for chunk in _chunks(list(by_path)):
            stmt = select(SongModel).where(SongModel.path.in_(chunk))
            result = await self.session.execute(stmt)
            for model in result.scalars().all():
                song = by_path[model.path]
                for name in SOURCE_FIELDS:
                    setattr(model, name, getattr(song, name))
                model.artist_id = artist_ids.get(song.artist)
                model.album_id = album_ids.get(song.album_key)
        await self.session.flush()

    @with_db_retry(max_attempts=3)
    async def delete_by_paths(self, paths: Sequence[str]) -> int:
        deleted = 0
        for chunk in _chunks(list(paths)):
            result = await self.session.execute(
                delete(SongModel).where(SongModel.path.in_(chunk))
            )
            deleted += result.rowcount or 0  # type: ignore[attr-defined]
        return deleted

    async def list_paths(self) -> set[str]:
        result = await self.session.execute(select(SongModel.path))
        return set(result.scalars().all())

    async def list_all(self) -> list[StoredSong]:
        result = await self.session.execute(select(SongModel).order_by(SongModel.path))
        return [self._model_to_entity(model) for model in result.scalars().all()]

    # Hey future me - year 0 means "no year tag", so it's mapped to NULL before MIN/MAX.
    # Otherwise one untagged song would drag every album's first_year down to 0.
    async def album_stats(self, key: AlbumKey) -> AlbumStats:
        known_year = sa.case((SongModel.year > 0, SongModel.year))
        stmt = select(
            func.count(SongModel.id),
            func.coalesce(func.sum(SongModel.duration_ms), 0),
            func.min(known_year),
            func.max(known_year),
        ).where(SongModel.album == key.name, SongModel.artist == key.artist)
        row = (await self.session.execute(stmt)).one()
        return AlbumStats(
            song_count=row[0],
            total_duration_ms=int(row[1]),
            first_year=row[2],
            last_year=row[3],
        )

    async def artist_stats(self, name: str) -> ArtistStats:
        stmt = select(
            func.count(SongModel.id),
            func.count(sa.distinct(SongModel.album)),
            func.coalesce(func.sum(SongModel.duration_ms), 0),
        ).where(SongModel.artist == name)
        row = (await self.session.execute(stmt)).one()
        return ArtistStats(
            song_count=row[0], album_count=row[1], total_duration_ms=int(row[2])
        )

    @with_db_retry(max_attempts=3)
    async def set_favorite(self, path: str, is_favorite: bool) -> bool:
        result = await self.session.execute(
            update(SongModel).where(SongModel.path == path).values(is_favorite=is_favorite)
        )
        return bool(result.rowcount)  # type: ignore[attr-defined]

    @with_db_retry(max_attempts=3)
    async def record_play(self, path: str, played_at_ms: int) -> bool:
        result = await self.session.execute(
            update(SongModel)
            .where(SongModel.path == path)
            .values(play_count=SongModel.play_count + 1, last_played_ms=played_at_ms)
        )
        return bool(result.rowcount)  # type: ignore[attr-defined]

    @with_db_retry(max_attempts=3)
    async def reset_play_count(self, path: str) -> bool:
        result = await self.session.execute(
            update(SongModel)
            .where(SongModel.path == path)
            .values(play_count=0, last_played_ms=None)
        )
        return bool(result.rowcount)  # type: ignore[attr-defined]

    @with_db_retry(max_attempts=3)
    async def set_rating(self, path: str, rating: int) -> bool:
        if not 0 <= rating <= 5:
            raise ValidationException(f"Invalid rating {rating}: must be between 0 and 5")
        result = await self.session.execute(
            update(SongModel).where(SongModel.path == path).values(rating=rating)
        )
        return bool(result.rowcount)  # type: ignore[attr-defined]


class AlbumRepository(IAlbumRepository):
    """SQLAlchemy implementation of the album repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    @staticmethod
    def _model_to_entity(model: AlbumModel) -> StoredAlbum:
        return StoredAlbum(
            id=model.id,
            name=model.name,
            artist=model.artist,
            year=model.year,
            song_count=model.song_count,
            total_duration_ms=model.total_duration_ms,
            first_year=model.first_year,
            last_year=model.last_year,
            album_ref=model.album_ref,
        )

    async def get_by_name_and_artist(self, name: str, artist: str) -> StoredAlbum | None:
        stmt = select(AlbumModel).where(AlbumModel.name == name, AlbumModel.artist == artist)
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return self._model_to_entity(model) if model else None

    async def add_batch(self, albums: Sequence[StoredAlbum]) -> None:
        if not albums:
            return
        artist_ids = await _artist_ids(self.session, {album.artist for album in albums})
        self.session.add_all(
            [
                AlbumModel(
                    name=album.name,
                    artist=album.artist,
                    artist_id=artist_ids.get(album.artist),
                    year=album.year,
                    song_count=album.song_count,
                    total_duration_ms=album.total_duration_ms,
                    first_year=album.first_year,
                    last_year=album.last_year,
                    album_ref=album.album_ref,
                )
                for album in albums
            ]
        )
        await self.session.flush()

    @with_db_retry(max_attempts=3)
    async def update_stats(self, key: AlbumKey, stats: AlbumStats) -> None:
        await self.session.execute(
            update(AlbumModel)
            .where(AlbumModel.name == key.name, AlbumModel.artist == key.artist)
            .values(
                song_count=stats.song_count,
                total_duration_ms=stats.total_duration_ms,
                first_year=stats.first_year,
                last_year=stats.last_year,
            )
        )

    # Orphan check goes against the song rows, not song_count, so stale stats can't keep an
    # empty album alive.
    @with_db_retry(max_attempts=3)
    async def delete_empty(self) -> int:
        has_songs = (
            select(SongModel.id)
            .where(SongModel.album == AlbumModel.name, SongModel.artist == AlbumModel.artist)
            .exists()
        )
        result = await self.session.execute(delete(AlbumModel).where(~has_songs))
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def list_all(self) -> list[StoredAlbum]:
        stmt = select(AlbumModel).order_by(AlbumModel.artist, AlbumModel.name)
        result = await self.session.execute(stmt)
        return [self._model_to_entity(model) for model in result.scalars().all()]


class ArtistRepository(IArtistRepository):
    """SQLAlchemy implementation of the artist repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    @staticmethod
    def _model_to_entity(model: ArtistModel) -> StoredArtist:
        return StoredArtist(
            id=model.id,
            name=model.name,
            song_count=model.song_count,
            album_count=model.album_count,
            total_duration_ms=model.total_duration_ms,
            artist_ref=model.artist_ref,
        )

    async def get_by_name(self, name: str) -> StoredArtist | None:
        stmt = select(ArtistModel).where(ArtistModel.name == name)
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return self._model_to_entity(model) if model else None

    async def add_batch(self, artists: Sequence[StoredArtist]) -> None:
        if not artists:
            return
        self.session.add_all(
            [
                ArtistModel(
                    name=artist.name,
                    artist_ref=artist.artist_ref,
                    song_count=artist.song_count,
                    album_count=artist.album_count,
                    total_duration_ms=artist.total_duration_ms,
                )
                for artist in artists
            ]
        )
        await self.session.flush()

    @with_db_retry(max_attempts=3)
    async def update_stats(self, name: str, stats: ArtistStats) -> None:
        await self.session.execute(
            update(ArtistModel)
            .where(ArtistModel.name == name)
            .values(
                song_count=stats.song_count,
                album_count=stats.album_count,
                total_duration_ms=stats.total_duration_ms,
            )
        )

    @with_db_retry(max_attempts=3)
    async def delete_empty(self) -> int:
        has_songs = select(SongModel.id).where(SongModel.artist == ArtistModel.name).exists()
        result = await self.session.execute(delete(ArtistModel).where(~has_songs))
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def list_all(self) -> list[StoredArtist]:
        result = await self.session.execute(select(ArtistModel).order_by(ArtistModel.name))
        return [self._model_to_entity(model) for model in result.scalars().all()]


class ScanBookkeepingRepository(IScanBookkeepingRepository):
    """SQLAlchemy implementation of the single-row scan bookkeeping store."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def get(self) -> ScanBookkeeping:
        model = await self.session.get(ScanBookkeepingModel, ScanBookkeepingModel.SINGLETON_ID)
        if model is None:
            return ScanBookkeeping()
        return ScanBookkeeping(
            last_scan_ms=model.last_scan_ms,
            last_full_scan_ms=model.last_full_scan_ms,
            last_scan_mode=ScanMode(model.last_scan_mode) if model.last_scan_mode else None,
            scans_completed=model.scans_completed,
        )

    async def save(self, bookkeeping: ScanBookkeeping) -> None:
        model = await self.session.get(ScanBookkeepingModel, ScanBookkeepingModel.SINGLETON_ID)
        if model is None:
            model = ScanBookkeepingModel(id=ScanBookkeepingModel.SINGLETON_ID)
            self.session.add(model)
        model.last_scan_ms = bookkeeping.last_scan_ms
        model.last_full_scan_ms = bookkeeping.last_full_scan_ms
        model.last_scan_mode = (
            bookkeeping.last_scan_mode.value if bookkeeping.last_scan_mode else None
        )
        model.scans_completed = bookkeeping.scans_completed
        await self.session.flush()
