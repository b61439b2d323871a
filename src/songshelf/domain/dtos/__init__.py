"""
Data transfer objects passed between the scan stages and back to callers.

Hey future me - nothing in here is persisted. ReconciliationPlan lives for exactly one scan
(planner builds it, StoreWriter consumes it once). ScanReport is the immutable result the
caller gets back; sub-scan reports are combined with merge() instead of sharing a mutable
counter object across helpers.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

from songshelf.domain.entities import StoredAlbum, StoredArtist, StoredSong
from songshelf.domain.exceptions import InvalidStateException
from songshelf.domain.value_objects import AlbumKey, ScanMode, ScanScope


@dataclass(frozen=True)
class SongUpdate:
    """A stored song and the version that replaces its source fields."""

    previous: StoredSong
    updated: StoredSong
    changed_fields: tuple[str, ...] = ()


@dataclass
class ReconciliationPlan:
    """Insert/update/remove set computed by one scan, applied once."""

    scope: ScanScope
    started_at_ms: int
    songs_to_insert: list[StoredSong] = field(default_factory=list)
    songs_to_update: list[SongUpdate] = field(default_factory=list)
    songs_to_remove: list[StoredSong] = field(default_factory=list)
    albums_to_insert: list[StoredAlbum] = field(default_factory=list)
    artists_to_insert: list[StoredArtist] = field(default_factory=list)
    songs_found: int = 0
    songs_skipped: int = 0
    songs_unchanged: int = 0
    songs_failed: int = 0
    skip_reasons: dict[str, int] = field(default_factory=dict)
    planning_ms: int = 0
    consumed: bool = False

    @property
    def paths_to_remove(self) -> list[str]:
        return [song.path for song in self.songs_to_remove]

    @property
    def is_empty(self) -> bool:
        return not (
            self.songs_to_insert
            or self.songs_to_update
            or self.songs_to_remove
            or self.albums_to_insert
            or self.artists_to_insert
        )

    def touched_albums(self) -> set[AlbumKey]:
        """Every album whose song set this plan changes, old and new side of updates."""
        keys = {album.key for album in self.albums_to_insert}
        keys.update(song.album_key for song in self.songs_to_insert)
        keys.update(song.album_key for song in self.songs_to_remove)
        for update in self.songs_to_update:
            keys.add(update.previous.album_key)
            keys.add(update.updated.album_key)
        return keys

    def touched_artists(self) -> set[str]:
        """Every artist whose song set this plan changes."""
        names = {artist.name for artist in self.artists_to_insert}
        names.update(song.artist for song in self.songs_to_insert)
        names.update(song.artist for song in self.songs_to_remove)
        for update in self.songs_to_update:
            names.add(update.previous.artist)
            names.add(update.updated.artist)
        return names

    def mark_consumed(self) -> None:
        """Flag the plan as applied. A plan may only be applied once."""
        if self.consumed:
            raise InvalidStateException(
                f"Reconciliation plan started at {self.started_at_ms} was already applied"
            )
        self.consumed = True


@dataclass
class WriteOutcome:
    """Counters produced by StoreWriter.apply."""

    artists_added: int = 0
    albums_added: int = 0
    songs_added: int = 0
    songs_updated: int = 0
    songs_removed: int = 0
    albums_recomputed: int = 0
    artists_recomputed: int = 0
    albums_removed: int = 0
    artists_removed: int = 0
    steps_completed: list[str] = field(default_factory=list)


# Yo, ScanReport is what the caller (worker/UI) sees: counts only, never per-file detail.
# songs_found counts everything the source returned for the scope, including records the
# validity filter skipped - so found == added + updated + unchanged + skipped + failed.
@dataclass(frozen=True)
class ScanReport:
    """Immutable summary of one scan (or of several merged sub-scans)."""

    mode: ScanMode | None = None
    songs_found: int = 0
    songs_skipped: int = 0
    songs_added: int = 0
    songs_updated: int = 0
    songs_unchanged: int = 0
    songs_removed: int = 0
    songs_failed: int = 0
    albums_added: int = 0
    albums_removed: int = 0
    albums_recomputed: int = 0
    artists_added: int = 0
    artists_removed: int = 0
    artists_recomputed: int = 0
    elapsed_ms: int = 0

    @classmethod
    def from_results(
        cls, plan: ReconciliationPlan, outcome: WriteOutcome, elapsed_ms: int
    ) -> "ScanReport":
        """Build the report for a plan that StoreWriter applied."""
        return cls(
            mode=plan.scope.mode,
            songs_found=plan.songs_found,
            songs_skipped=plan.songs_skipped,
            songs_added=outcome.songs_added,
            songs_updated=outcome.songs_updated,
            songs_unchanged=plan.songs_unchanged,
            songs_removed=outcome.songs_removed,
            songs_failed=plan.songs_failed,
            albums_added=outcome.albums_added,
            albums_removed=outcome.albums_removed,
            albums_recomputed=outcome.albums_recomputed,
            artists_added=outcome.artists_added,
            artists_removed=outcome.artists_removed,
            artists_recomputed=outcome.artists_recomputed,
            elapsed_ms=elapsed_ms,
        )

    @property
    def has_changes(self) -> bool:
        return bool(self.songs_added or self.songs_updated or self.songs_removed)

    def merge(self, other: "ScanReport") -> "ScanReport":
        """Combine two sub-scan reports. Counters add up; mode survives only if both agree."""
        return ScanReport(
            mode=self.mode if self.mode == other.mode else None,
            songs_found=self.songs_found + other.songs_found,
            songs_skipped=self.songs_skipped + other.songs_skipped,
            songs_added=self.songs_added + other.songs_added,
            songs_updated=self.songs_updated + other.songs_updated,
            songs_unchanged=self.songs_unchanged + other.songs_unchanged,
            songs_removed=self.songs_removed + other.songs_removed,
            songs_failed=self.songs_failed + other.songs_failed,
            albums_added=self.albums_added + other.albums_added,
            albums_removed=self.albums_removed + other.albums_removed,
            albums_recomputed=self.albums_recomputed + other.albums_recomputed,
            artists_added=self.artists_added + other.artists_added,
            artists_removed=self.artists_removed + other.artists_removed,
            artists_recomputed=self.artists_recomputed + other.artists_recomputed,
            elapsed_ms=self.elapsed_ms + other.elapsed_ms,
        )

    def summary(self) -> str:
        """Short human-readable result, e.g. ``"3 added, 1 updated"``."""
        parts = []
        if self.songs_added:
            parts.append(f"{self.songs_added} added")
        if self.songs_updated:
            parts.append(f"{self.songs_updated} updated")
        if self.songs_removed:
            parts.append(f"{self.songs_removed} removed")
        return ", ".join(parts) if parts else "No changes"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["mode"] = self.mode.value if self.mode else None
        data["summary"] = self.summary()
        return data


@dataclass(frozen=True)
class CleanupReport:
    """Result of one artwork cache cleanup pass."""

    files_deleted: int = 0
    bytes_freed: int = 0
    directories_removed: int = 0
    bytes_remaining: int = 0


__all__ = [
    "CleanupReport",
    "ReconciliationPlan",
    "ScanReport",
    "SongUpdate",
    "WriteOutcome",
]
