"""Track sources and filesystem probes for the local music library."""

from songshelf.infrastructure.sources.filesystem_probe import LocalFileSystemProbe
from songshelf.infrastructure.sources.filesystem_source import (
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    LocalFolderTrackSource,
    extract_tags,
)

__all__ = [
    "UNKNOWN_ALBUM",
    "UNKNOWN_ARTIST",
    "LocalFileSystemProbe",
    "LocalFolderTrackSource",
    "extract_tags",
]
