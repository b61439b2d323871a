"""Domain entities."""

import time
from dataclasses import dataclass, replace
from enum import Enum

from songshelf.domain.value_objects import AlbumKey, ScanMode


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return time.time_ns() // 1_000_000


# Hey future me, these are the fields the SOURCE owns on a song row. An update re-scan copies
# exactly these from the incoming record and nothing else - play_count, is_favorite, rating
# and last_played_ms belong to the user and must survive every re-scan. If you add a new
# column that comes from tags, add it here too or updates will silently skip it.
SOURCE_FIELDS: tuple[str, ...] = (
    "title",
    "artist",
    "album",
    "duration_ms",
    "size_bytes",
    "modified_ms",
    "track_number",
    "year",
    "mime_type",
    "date_added_ms",
    "album_ref",
    "artist_ref",
)


class Classification(str, Enum):
    """Result of comparing an incoming record to the stored song at the same path."""

    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


# Yo, ScanState is the planner's state machine. The happy path walks the list top to bottom;
# any stage can jump to FAILED. APPLIED is set by LibrarySyncService after StoreWriter
# finishes, the planner itself stops at PLANNED.
class ScanState(str, Enum):
    """Lifecycle states of a single scan."""

    IDLE = "idle"
    SELECTING_SCOPE = "selecting_scope"
    FILTERING = "filtering"
    CLASSIFYING = "classifying"
    AGGREGATING = "aggregating"
    DETECTING_REMOVALS = "detecting_removals"
    PLANNED = "planned"
    APPLIED = "applied"
    FAILED = "failed"


# Listen up, TrackRecord is a SNAPSHOT of what the source reports at scan time - frozen on
# purpose, the pipeline passes it around freely. path is the identity; two records with the
# same path are the same song. year=0 and track_number=0 mean "unknown" (tag missing).
@dataclass(frozen=True)
class TrackRecord:
    """Raw track record as reported by the track source."""

    path: str
    title: str
    artist: str
    album: str
    duration_ms: int
    size_bytes: int = 0
    modified_ms: int = 0
    track_number: int = 0
    year: int = 0
    mime_type: str | None = None
    date_added_ms: int = 0
    album_ref: str | None = None
    artist_ref: str | None = None

    def __post_init__(self) -> None:
        """Validate record data."""
        if not self.path:
            raise ValueError("Track path cannot be empty")
        if self.duration_ms < 0:
            raise ValueError(f"Invalid duration_ms {self.duration_ms}: must be >= 0")

    @property
    def album_key(self) -> AlbumKey:
        return AlbumKey(self.album, self.artist)


@dataclass
class StoredSong:
    """Song row in the local library, including user-owned state."""

    path: str
    title: str
    artist: str
    album: str
    duration_ms: int
    size_bytes: int = 0
    modified_ms: int = 0
    track_number: int = 0
    year: int = 0
    mime_type: str | None = None
    date_added_ms: int = 0
    album_ref: str | None = None
    artist_ref: str | None = None
    id: int | None = None
    play_count: int = 0
    last_played_ms: int | None = None
    is_favorite: bool = False
    rating: int = 0

    def __post_init__(self) -> None:
        """Validate song data."""
        if not self.path:
            raise ValueError("Song path cannot be empty")
        if self.play_count < 0:
            raise ValueError(f"Invalid play_count {self.play_count}: must be >= 0")
        if not 0 <= self.rating <= 5:
            raise ValueError(f"Invalid rating {self.rating}: must be between 0 and 5")

    @classmethod
    def from_record(cls, record: TrackRecord) -> "StoredSong":
        """Create a fresh song (no user state yet) from a source record."""
        return cls(path=record.path, **{name: getattr(record, name) for name in SOURCE_FIELDS})

    def apply_record(self, record: TrackRecord) -> "StoredSong":
        """Return a copy carrying the record's source fields and this song's user state."""
        if record.path != self.path:
            raise ValueError(f"Record path {record.path!r} does not match song {self.path!r}")
        return replace(self, **{name: getattr(record, name) for name in SOURCE_FIELDS})

    @property
    def album_key(self) -> AlbumKey:
        return AlbumKey(self.album, self.artist)

    def record_play(self, played_at_ms: int) -> None:
        """Count one playback."""
        self.play_count += 1
        self.last_played_ms = played_at_ms

    def reset_play_count(self) -> None:
        """Explicit reset, the only way play_count ever goes down."""
        self.play_count = 0
        self.last_played_ms = None

    def set_rating(self, rating: int) -> None:
        if not 0 <= rating <= 5:
            raise ValueError(f"Invalid rating {rating}: must be between 0 and 5")
        self.rating = rating


# Hey future me - song_count/total_duration_ms/first_year/last_year are DERIVED. Nobody edits
# them by hand; StoreWriter recomputes them from the song rows after every scan. `year` is the
# representative year picked when the album was first created (first song in source order).
@dataclass
class StoredAlbum:
    """Album row, keyed by (name, artist)."""

    name: str
    artist: str
    year: int = 0
    song_count: int = 0
    total_duration_ms: int = 0
    first_year: int | None = None
    last_year: int | None = None
    album_ref: str | None = None
    id: int | None = None

    @property
    def key(self) -> AlbumKey:
        return AlbumKey(self.name, self.artist)


@dataclass
class StoredArtist:
    """Artist row, keyed by exact name."""

    name: str
    song_count: int = 0
    album_count: int = 0
    total_duration_ms: int = 0
    artist_ref: str | None = None
    id: int | None = None


@dataclass
class ScanBookkeeping:
    """Single bookkeeping record consulted by the next incremental scan."""

    last_scan_ms: int | None = None
    last_full_scan_ms: int | None = None
    last_scan_mode: ScanMode | None = None
    scans_completed: int = 0

    def mark_scanned(self, mode: ScanMode, started_at_ms: int) -> None:
        """Record a successful scan that started at ``started_at_ms``."""
        self.last_scan_ms = started_at_ms
        if mode is ScanMode.FULL:
            self.last_full_scan_ms = started_at_ms
        self.last_scan_mode = mode
        self.scans_completed += 1


@dataclass
class CachedFile:
    """One file in the artwork cache, as seen by the cleanup pass."""

    path: str
    size_bytes: int
    modified_ms: int


__all__ = [
    "SOURCE_FIELDS",
    "CachedFile",
    "Classification",
    "ScanBookkeeping",
    "ScanState",
    "StoredAlbum",
    "StoredArtist",
    "StoredSong",
    "TrackRecord",
    "now_ms",
]
