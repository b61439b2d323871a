"""Size- and age-bounded cleanup of the artwork cache directory."""

import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path

from songshelf.config import Settings
from songshelf.domain.dtos import CleanupReport
from songshelf.domain.entities import CachedFile, now_ms

logger = logging.getLogger(__name__)


class CacheCleanupService:
    """Deletes cached artwork oldest-first until the cache fits its limits.

    A file goes when the cleanup is forced, when the cache is still over
    ``max_size_bytes``, or when the file is older than ``max_age_ms``.
    Empty subdirectories are removed afterwards; the cache root itself stays.
    """

    def __init__(
        self,
        directory: Path,
        max_size_bytes: int,
        max_age_ms: int,
        auto_clear: bool = True,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.directory = Path(directory)
        self.max_size_bytes = max_size_bytes
        self.max_age_ms = max_age_ms
        self.auto_clear = auto_clear
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheCleanupService":
        return cls(
            directory=settings.cache.artwork_path,
            max_size_bytes=settings.cache.max_size_bytes,
            max_age_ms=settings.cache.max_age_ms,
            auto_clear=settings.cache.auto_clear,
        )

    async def run(self, force: bool = False) -> CleanupReport:
        """Clean the cache off the event loop. Skipped unless auto_clear is on or forced."""
        if not force and not self.auto_clear:
            logger.debug("Artwork cache auto-clear disabled, skipping cleanup")
            return CleanupReport()
        return await asyncio.to_thread(self.cleanup, force)

    def cleanup(self, force: bool = False) -> CleanupReport:
        if not self.directory.is_dir():
            logger.debug(f"Artwork cache {self.directory} does not exist, nothing to clean")
            return CleanupReport()

        files = sorted(self._list_files(), key=lambda f: (f.modified_ms, f.path))
        total_size = sum(f.size_bytes for f in files)
        now = self.clock()
        files_deleted = 0
        bytes_freed = 0

        for cached in files:
            expired = now - cached.modified_ms > self.max_age_ms
            if not (force or total_size > self.max_size_bytes or expired):
                continue
            try:
                os.remove(cached.path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not delete cached file {cached.path}: {e}")
                continue
            files_deleted += 1
            bytes_freed += cached.size_bytes
            total_size -= cached.size_bytes

        directories_removed = self._remove_empty_dirs()

        if files_deleted:
            logger.info(
                f"Artwork cache cleanup: {files_deleted} file(s) deleted, "
                f"{bytes_freed / (1024 * 1024):.1f}MB freed, "
                f"{directories_removed} empty dir(s) removed"
            )
        return CleanupReport(
            files_deleted=files_deleted,
            bytes_freed=bytes_freed,
            directories_removed=directories_removed,
            bytes_remaining=total_size,
        )

    def _list_files(self) -> list[CachedFile]:
        files: list[CachedFile] = []
        for root, _dirs, names in os.walk(self.directory):
            for name in names:
                path = os.path.join(root, name)
                try:
                    stat = os.stat(path)
                except OSError as e:
                    logger.debug(f"Cannot stat cached file {path}: {e}")
                    continue
                files.append(
                    CachedFile(
                        path=path,
                        size_bytes=stat.st_size,
                        modified_ms=stat.st_mtime_ns // 1_000_000,
                    )
                )
        return files

    def _remove_empty_dirs(self) -> int:
        removed = 0
        # Bottom-up so parents empty out after their children are gone
        for root, _dirs, _names in os.walk(self.directory, topdown=False):
            directory = Path(root)
            if directory == self.directory:
                continue
            try:
                if not any(directory.iterdir()):
                    directory.rmdir()
                    removed += 1
            except OSError as e:
                logger.debug(f"Could not remove directory {directory}: {e}")
        return removed
