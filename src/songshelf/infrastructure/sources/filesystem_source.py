"""Track source that walks local music folders and reads tags with mutagen."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from mutagen import File as MutagenFile  # type: ignore[attr-defined]

from songshelf.config import SUPPORTED_AUDIO_EXTENSIONS, Settings
from songshelf.domain.entities import TrackRecord
from songshelf.domain.exceptions import SourceUnavailableError
from songshelf.domain.ports import ITrackSource

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"

# Hey future me, one table for all three tag flavours mutagen hands us: ID3 frame ids (mp3),
# Vorbis comment keys (flac/ogg/opus) and MP4 atoms (m4a). First hit wins per field, so put
# the preferred key first. The MusicBrainz ids end up as album_ref/artist_ref.
TAG_MAPPINGS: tuple[tuple[str, str], ...] = (
    # ID3
    ("TIT2", "title"),
    ("TPE1", "artist"),
    ("TALB", "album"),
    ("TRCK", "track_number"),
    ("TDRC", "year"),
    ("TYER", "year"),
    ("TXXX:MusicBrainz Album Id", "album_ref"),
    ("TXXX:MusicBrainz Artist Id", "artist_ref"),
    # Vorbis
    ("title", "title"),
    ("artist", "artist"),
    ("album", "album"),
    ("tracknumber", "track_number"),
    ("date", "year"),
    ("musicbrainz_albumid", "album_ref"),
    ("musicbrainz_artistid", "artist_ref"),
    # MP4
    ("©nam", "title"),
    ("©ART", "artist"),
    ("©alb", "album"),
    ("trkn", "track_number"),
    ("©day", "year"),
    ("----:com.apple.iTunes:MusicBrainz Album Id", "album_ref"),
    ("----:com.apple.iTunes:MusicBrainz Artist Id", "artist_ref"),
)


def _first_value(value: Any) -> Any:
    if isinstance(value, list):
        value = value[0] if value else None
    if hasattr(value, "text"):
        value = value.text[0] if isinstance(value.text, list) and value.text else value.text
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return value


def _parse_number(value: Any) -> int | None:
    # "3/12", (3, 12) and "2019-05-01" all start with the number we want
    if isinstance(value, tuple):
        value = value[0]
    text = str(value).strip()
    if "/" in text:
        text = text.split("/")[0]
    digits = text[:4] if len(text) > 4 and text[:4].isdigit() else text
    try:
        return int(digits)
    except (ValueError, TypeError):
        return None


def extract_tags(audio_tags: Any) -> dict[str, Any]:
    """Map mutagen tags to TrackRecord field names."""
    tags: dict[str, Any] = {}
    if not audio_tags:
        return tags

    for tag_key, field_name in TAG_MAPPINGS:
        if field_name in tags:
            continue
        try:
            if tag_key not in audio_tags:
                continue
            value = _first_value(audio_tags[tag_key])
        except (KeyError, ValueError):
            continue
        if value is None:
            continue

        if field_name in ("track_number", "year"):
            value = _parse_number(value)
        else:
            value = str(value).strip() or None

        if value is not None:
            tags[field_name] = value

    return tags


def _may_contain(directory: Path, prefixes: Sequence[str]) -> bool:
    """True if a file under ``directory`` could start with one of ``prefixes``."""
    text = str(directory)
    return any(text.startswith(p) or p.startswith(text) for p in prefixes)


class LocalFolderTrackSource(ITrackSource):
    """ITrackSource over one or more local music folders.

    Tags are read with mutagen in a thread pool so the event loop stays free.
    Files mutagen can't parse still produce a record (title from the file name,
    duration 0); the validity filter decides what to do with them.
    """

    def __init__(
        self,
        music_paths: Sequence[Path],
        extensions: Sequence[str] = SUPPORTED_AUDIO_EXTENSIONS,
        follow_symlinks: bool = False,
        max_workers: int | None = None,
    ) -> None:
        self.music_paths = [Path(p) for p in music_paths]
        self.extensions = {f".{ext.lower().lstrip('.')}" for ext in extensions}
        self.follow_symlinks = follow_symlinks
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or min(8, max(2, os.cpu_count() or 4))
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> LocalFolderTrackSource:
        return cls(
            music_paths=settings.library.music_paths,
            extensions=settings.library.extensions,
            follow_symlinks=settings.library.follow_symlinks,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    async def list_all(self) -> list[TrackRecord]:
        return await self._collect(self._checked_roots(), since_ms=None)

    async def list_modified_since(self, since_ms: int) -> list[TrackRecord]:
        return await self._collect(self._checked_roots(), since_ms=since_ms)

    # Yo, folder scans match by string prefix over the configured roots, same as the port says:
    # ".../music/Art" covers Artist1/ and Artwork/. A root that's missing only costs a warning
    # here since folder scans never remove anything.
    async def list_under_paths(self, paths: Sequence[str]) -> list[TrackRecord]:
        if not self.music_paths:
            raise SourceUnavailableError("No music paths configured")
        prefixes = [str(p) for p in paths]
        roots = [r for r in self.music_paths if r.is_dir() and _may_contain(r, prefixes)]
        missing = [str(r) for r in self.music_paths if not r.is_dir()]
        if missing:
            logger.warning(f"Folder scan: {len(missing)} music path(s) not available: {missing}")
        return await self._collect(roots, since_ms=None, prefixes=prefixes)

    # Hey future me - a FULL scan over a missing root would see zero files and delete the whole
    # library. Unmounted drive? Refuse to enumerate instead; the worker will retry.
    def _checked_roots(self) -> list[Path]:
        if not self.music_paths:
            raise SourceUnavailableError("No music paths configured")
        for root in self.music_paths:
            if not root.is_dir():
                raise SourceUnavailableError(f"Music path not available: {root}")
        return self.music_paths

    async def _collect(
        self,
        roots: list[Path],
        since_ms: int | None,
        prefixes: list[str] | None = None,
    ) -> list[TrackRecord]:
        loop = asyncio.get_running_loop()
        try:
            candidates = await loop.run_in_executor(
                self._executor, self._discover_audio_files, roots, since_ms, prefixes
            )
        except OSError as e:
            raise SourceUnavailableError(f"Failed to enumerate music folders: {e}") from e

        results = await asyncio.gather(
            *(
                loop.run_in_executor(self._executor, self._read_record, path, stat)
                for path, stat in candidates
            )
        )
        records = [record for record in results if record is not None]
        logger.debug(
            f"Enumerated {len(records)} track(s) under {len(roots)} root(s)"
            + (f" modified after {since_ms}" if since_ms is not None else "")
        )
        return records

    def _discover_audio_files(
        self, roots: list[Path], since_ms: int | None, prefixes: list[str] | None = None
    ) -> list[tuple[Path, os.stat_result]]:
        """Walk roots and return (path, stat) of audio files, sorted by path.

        With ``prefixes`` only files whose path string starts with one of them
        are kept, and directories that can't hold such a file are not entered.
        """
        found: dict[str, tuple[Path, os.stat_result]] = {}

        def on_error(error: OSError) -> None:
            if error.filename and Path(error.filename) in roots:
                raise error
            logger.warning(f"Skipping unreadable directory {error.filename}: {error.strerror}")

        for root in roots:
            walk = os.walk(root, onerror=on_error, followlinks=self.follow_symlinks)
            for dirpath, dirs, files in walk:
                if prefixes is not None:
                    dirs[:] = [d for d in dirs if _may_contain(Path(dirpath) / d, prefixes)]
                for filename in files:
                    path = Path(dirpath) / filename
                    if path.suffix.lower() not in self.extensions:
                        continue
                    if prefixes is not None and not str(path).startswith(tuple(prefixes)):
                        continue
                    try:
                        stat = path.stat()
                    except OSError as e:
                        logger.warning(f"Cannot stat {path}: {e}")
                        continue
                    if since_ms is not None and stat.st_mtime_ns // 1_000_000 <= since_ms:
                        continue
                    found.setdefault(str(path), (path, stat))

        return [found[key] for key in sorted(found)]

    def _read_record(self, path: Path, stat: os.stat_result) -> TrackRecord | None:
        duration_ms = 0
        mime_type: str | None = None
        tags: dict[str, Any] = {}

        try:
            audio = MutagenFile(path)
            if audio is not None:
                if getattr(audio.info, "length", None):
                    duration_ms = int(audio.info.length * 1000)
                mimes = getattr(audio, "mime", None)
                if mimes:
                    mime_type = mimes[0]
                tags = extract_tags(getattr(audio, "tags", None))
            else:
                logger.debug(f"MutagenFile returned None for {path}")
        except Exception as e:
            logger.warning(f"Error reading tags from {path}: {e}. Using file name fallback")

        try:
            return TrackRecord(
                path=str(path),
                title=tags.get("title") or path.stem,
                artist=tags.get("artist") or UNKNOWN_ARTIST,
                album=tags.get("album") or UNKNOWN_ALBUM,
                duration_ms=max(duration_ms, 0),
                size_bytes=stat.st_size,
                modified_ms=stat.st_mtime_ns // 1_000_000,
                track_number=tags.get("track_number") or 0,
                year=tags.get("year") or 0,
                mime_type=mime_type,
                date_added_ms=stat.st_ctime_ns // 1_000_000,
                album_ref=tags.get("album_ref"),
                artist_ref=tags.get("artist_ref"),
            )
        except ValueError as e:
            logger.warning(f"Skipping {path}: {e}")
            return None
