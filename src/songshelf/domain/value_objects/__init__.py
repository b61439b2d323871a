"""Value objects for the library sync domain."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from songshelf.domain.exceptions import ValidationException


class ScanMode(str, Enum):
    """Which slice of the track source a scan looks at."""

    FULL = "full"
    INCREMENTAL = "incremental"
    FOLDER = "folder"


# Hey future me, ScanScope is what the CALLER picks - the planner never infers it! Only FULL
# enumerates the whole source, so only FULL may detect removals (see detects_removals). An
# incremental scope with since_ms=None means "since the last recorded scan" - the planner
# reads that from bookkeeping. Use the factory classmethods instead of the constructor.
@dataclass(frozen=True)
class ScanScope:
    """Caller-supplied scope of a single scan."""

    mode: ScanMode
    since_ms: int | None = None
    paths: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate scope arguments."""
        if self.mode is ScanMode.FOLDER and not self.paths:
            raise ValidationException("Folder scan needs at least one path prefix")
        if self.mode is not ScanMode.FOLDER and self.paths:
            raise ValidationException(f"{self.mode.value} scan does not take paths")
        if self.mode is not ScanMode.INCREMENTAL and self.since_ms is not None:
            raise ValidationException(f"{self.mode.value} scan does not take since_ms")
        if self.since_ms is not None and self.since_ms < 0:
            raise ValidationException(f"Invalid since_ms {self.since_ms}")

    @classmethod
    def full(cls) -> "ScanScope":
        return cls(mode=ScanMode.FULL)

    @classmethod
    def incremental(cls, since_ms: int | None = None) -> "ScanScope":
        return cls(mode=ScanMode.INCREMENTAL, since_ms=since_ms)

    @classmethod
    def folders(cls, paths: Iterable[str]) -> "ScanScope":
        return cls(mode=ScanMode.FOLDER, paths=tuple(paths))

    @property
    def detects_removals(self) -> bool:
        """Only a complete enumeration can prove a file is gone."""
        return self.mode is ScanMode.FULL


# Yo, FilterPolicy drives ValidityFilter. min_duration_ms only applies when ignore_short_tracks
# is set (user setting "skip short tracks"). allowed_extensions is the format sanity check -
# lowercase, without the dot; empty means "accept any extension". check_file_access=False skips
# the filesystem probe entirely (handy for sources whose paths aren't local files).
@dataclass(frozen=True)
class FilterPolicy:
    """Eligibility rules for incoming track records."""

    ignore_short_tracks: bool = True
    min_duration_ms: int = 30_000
    allowed_extensions: frozenset[str] = field(default_factory=frozenset)
    check_file_access: bool = True

    def __post_init__(self) -> None:
        """Validate policy values."""
        if self.min_duration_ms < 0:
            raise ValidationException(
                f"Invalid min_duration_ms {self.min_duration_ms}: must be >= 0"
            )
        normalized = frozenset(ext.lower().lstrip(".") for ext in self.allowed_extensions)
        object.__setattr__(self, "allowed_extensions", normalized)


@dataclass(frozen=True)
class AlbumKey:
    """Identity of an album: exact album name plus exact artist name."""

    name: str
    artist: str

    def __str__(self) -> str:
        return f"{self.artist} - {self.name}"


@dataclass(frozen=True)
class AlbumStats:
    """Derived statistics of one album, computed from its song set."""

    song_count: int = 0
    total_duration_ms: int = 0
    first_year: int | None = None
    last_year: int | None = None


@dataclass(frozen=True)
class ArtistStats:
    """Derived statistics of one artist, computed from its song set."""

    song_count: int = 0
    album_count: int = 0
    total_duration_ms: int = 0


__all__ = [
    "AlbumKey",
    "AlbumStats",
    "ArtistStats",
    "FilterPolicy",
    "ScanMode",
    "ScanScope",
]
