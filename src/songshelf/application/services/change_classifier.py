"""Classify an incoming record against the song stored at the same path."""

from songshelf.domain.entities import Classification, StoredSong, TrackRecord

# The fields that make a stored song stale. Size, track number and year are copied on update
# but don't trigger one by themselves.
COMPARED_FIELDS: tuple[str, ...] = (
    "modified_ms",
    "title",
    "artist",
    "album",
    "duration_ms",
)


def changed_fields(incoming: TrackRecord, existing: StoredSong) -> tuple[str, ...]:
    """Names of the compared fields whose values differ, in COMPARED_FIELDS order."""
    return tuple(
        name
        for name in COMPARED_FIELDS
        if getattr(incoming, name) != getattr(existing, name)
    )


def classify(incoming: TrackRecord, existing: StoredSong | None) -> Classification:
    """NEW if nothing is stored, UPDATED if any compared field differs, else UNCHANGED."""
    if existing is None:
        return Classification.NEW
    if changed_fields(incoming, existing):
        return Classification.UPDATED
    return Classification.UNCHANGED
