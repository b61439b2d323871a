"""Infrastructure persistence layer."""

from .database import Database
from .models import AlbumModel, ArtistModel, Base, ScanBookkeepingModel, SongModel
from .repositories import (
    AlbumRepository,
    ArtistRepository,
    ScanBookkeepingRepository,
    SongRepository,
)
from .retry import is_lock_error, with_db_retry

__all__ = [
    "AlbumModel",
    "AlbumRepository",
    "ArtistModel",
    "ArtistRepository",
    "Base",
    "Database",
    "ScanBookkeepingModel",
    "ScanBookkeepingRepository",
    "SongModel",
    "SongRepository",
    "is_lock_error",
    "with_db_retry",
]
