"""Startup and shutdown of the library sync runtime."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.engine import make_url

from songshelf.application.services.cache_cleanup_service import CacheCleanupService
from songshelf.application.workers.library_scan_worker import LibraryScanWorker
from songshelf.config import Settings, get_settings
from songshelf.domain.exceptions import ConfigurationError
from songshelf.infrastructure.observability import configure_logging
from songshelf.infrastructure.persistence import Database
from songshelf.infrastructure.sources import LocalFileSystemProbe, LocalFolderTrackSource

logger = logging.getLogger(__name__)


# Hey future me, SQLite needs to create -journal/-wal files NEXT TO the .db file, so the parent
# directory must exist and be writable. Checking this up front gives a clear ConfigurationError
# instead of a cryptic "unable to open database file" from deep inside SQLAlchemy. In-memory
# URLs and non-SQLite URLs are skipped.
def validate_sqlite_path(settings: Settings) -> None:
    """Ensure the SQLite database directory exists and is writable."""
    url = make_url(settings.database.url)
    if not url.drivername.startswith("sqlite") or url.database in (None, "", ":memory:"):
        return

    db_path = Path(url.database)
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create SQLite database directory '{db_path.parent}': {exc}"
        ) from exc

    test_file = db_path.parent / f".{db_path.stem}_write_test"
    try:
        test_file.write_bytes(b"test")
        test_file.unlink()
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to write files in database directory '{db_path.parent}': {exc}"
        ) from exc


# Listen up, everything before `yield` is startup, everything after is shutdown, and the finally
# makes sure the thread pool and the engine are released even when a scan blew up. Use it like:
#
#   async with library_runtime() as worker:
#       report = await worker.run_full_scan()
@asynccontextmanager
async def library_runtime(
    settings: Settings | None = None,
) -> AsyncGenerator[LibraryScanWorker, None]:
    """Build a ready-to-use LibraryScanWorker and tear it down afterwards."""
    settings = settings or get_settings()

    configure_logging(
        log_level=settings.observability.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting %s", settings.app_name)

    validate_sqlite_path(settings)
    db = Database(settings)
    source = LocalFolderTrackSource.from_settings(settings)
    try:
        await db.create_tables()
        logger.info("Database initialized: %s", settings.database.url)
        yield LibraryScanWorker(
            db=db,
            settings=settings,
            source=source,
            probe=LocalFileSystemProbe(),
            cache_cleanup=CacheCleanupService.from_settings(settings),
        )
    finally:
        source.close()
        await db.close()
        logger.info("Stopped %s", settings.app_name)
