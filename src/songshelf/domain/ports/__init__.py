"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from songshelf.domain.entities import (
    ScanBookkeeping,
    StoredAlbum,
    StoredArtist,
    StoredSong,
    TrackRecord,
)
from songshelf.domain.value_objects import AlbumKey, AlbumStats, ArtistStats


# Hey future me, ITrackSource is the external media index - the engine never discovers files
# itself, it only asks this port. Implementations raise SourceUnavailableError when they can't
# enumerate at all; a single unreadable file should be skipped inside the source, not raised.
class ITrackSource(ABC):
    """Enumerator of raw track records."""

    @abstractmethod
    async def list_all(self) -> list[TrackRecord]:
        """Return every track the source knows about."""
        pass

    @abstractmethod
    async def list_modified_since(self, since_ms: int) -> list[TrackRecord]:
        """Return tracks whose modification time is strictly after ``since_ms``."""
        pass

    @abstractmethod
    async def list_under_paths(self, paths: Sequence[str]) -> list[TrackRecord]:
        """Return tracks whose path starts with any of the given prefixes."""
        pass


class IFileSystemProbe(ABC):
    """Synchronous per-file accessibility checks used by ValidityFilter."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def is_readable(self, path: str) -> bool:
        pass

    @abstractmethod
    def size_of(self, path: str) -> int:
        pass


# Yo, lookups return None for "not found" - that's a normal answer during a scan, not an error.
# Exceptions from these methods mean I/O trouble and abort the scan. Writes only STAGE changes;
# whoever owns the session commits (StoreWriter's checkpoint in the SQL wiring).
class ISongRepository(ABC):
    """Repository interface for StoredSong entities."""

    @abstractmethod
    async def get_by_path(self, path: str) -> StoredSong | None:
        """Get the song stored at ``path``.

        Raises:
            DataIntegrityError: more than one row claims the path
        """
        pass

    @abstractmethod
    async def get_by_paths(self, paths: Sequence[str]) -> dict[str, list[StoredSong]]:
        """Bulk lookup. Every matching row is returned so callers can spot duplicates."""
        pass

    @abstractmethod
    async def add_batch(self, songs: Sequence[StoredSong]) -> None:
        pass

    @abstractmethod
    async def update_batch(self, songs: Sequence[StoredSong]) -> None:
        """Overwrite source-owned fields of existing songs, matched by path."""
        pass

    @abstractmethod
    async def delete_by_paths(self, paths: Sequence[str]) -> int:
        """Delete songs by path and return how many rows went away."""
        pass

    @abstractmethod
    async def list_paths(self) -> set[str]:
        """Every stored path, for removal detection."""
        pass

    @abstractmethod
    async def list_all(self) -> list[StoredSong]:
        pass

    @abstractmethod
    async def album_stats(self, key: AlbumKey) -> AlbumStats:
        """Recompute album statistics from the current song rows."""
        pass

    @abstractmethod
    async def artist_stats(self, name: str) -> ArtistStats:
        """Recompute artist statistics from the current song rows."""
        pass

    @abstractmethod
    async def set_favorite(self, path: str, is_favorite: bool) -> bool:
        """Flag a song as favorite. Returns False when no song has that path."""
        pass

    @abstractmethod
    async def record_play(self, path: str, played_at_ms: int) -> bool:
        pass

    @abstractmethod
    async def reset_play_count(self, path: str) -> bool:
        pass

    @abstractmethod
    async def set_rating(self, path: str, rating: int) -> bool:
        pass


class IAlbumRepository(ABC):
    """Repository interface for StoredAlbum entities."""

    @abstractmethod
    async def get_by_name_and_artist(self, name: str, artist: str) -> StoredAlbum | None:
        pass

    @abstractmethod
    async def add_batch(self, albums: Sequence[StoredAlbum]) -> None:
        pass

    @abstractmethod
    async def update_stats(self, key: AlbumKey, stats: AlbumStats) -> None:
        """Write recomputed statistics. Missing albums are ignored."""
        pass

    @abstractmethod
    async def delete_empty(self) -> int:
        """Delete albums with zero songs and return how many went away."""
        pass

    @abstractmethod
    async def list_all(self) -> list[StoredAlbum]:
        pass


class IArtistRepository(ABC):
    """Repository interface for StoredArtist entities."""

    @abstractmethod
    async def get_by_name(self, name: str) -> StoredArtist | None:
        pass

    @abstractmethod
    async def add_batch(self, artists: Sequence[StoredArtist]) -> None:
        pass

    @abstractmethod
    async def update_stats(self, name: str, stats: ArtistStats) -> None:
        """Write recomputed statistics. Missing artists are ignored."""
        pass

    @abstractmethod
    async def delete_empty(self) -> int:
        """Delete artists with zero songs and return how many went away."""
        pass

    @abstractmethod
    async def list_all(self) -> list[StoredArtist]:
        pass


class IScanBookkeepingRepository(ABC):
    """Storage for the single scan bookkeeping record."""

    @abstractmethod
    async def get(self) -> ScanBookkeeping:
        """Return the bookkeeping record (a blank one if none was saved yet)."""
        pass

    @abstractmethod
    async def save(self, bookkeeping: ScanBookkeeping) -> None:
        pass


__all__ = [
    "IAlbumRepository",
    "IArtistRepository",
    "IFileSystemProbe",
    "IScanBookkeepingRepository",
    "ISongRepository",
    "ITrackSource",
]
