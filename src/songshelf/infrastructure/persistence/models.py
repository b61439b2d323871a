"""SQLAlchemy ORM models for SongShelf."""

from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Hey future me, ids are plain autoincrement integers here (synthetic numeric identity); the
# natural keys are name for artists, (name, artist) for albums and path for songs - all three
# carry unique constraints, repositories look rows up by those keys, never by id.
class ArtistModel(Base):
    """SQLAlchemy model for library artists."""

    __tablename__ = "library_artists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    artist_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    song_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    album_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_duration_ms: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )


class AlbumModel(Base):
    """SQLAlchemy model for library albums."""

    __tablename__ = "library_albums"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    artist: Mapped[str] = mapped_column(String(512), nullable=False)
    artist_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("library_artists.id", ondelete="SET NULL"), nullable=True
    )
    year: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    song_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_duration_ms: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    first_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    album_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("name", "artist", name="uq_library_albums_name_artist"),
        Index("ix_library_albums_artist", "artist"),
    )


# Listen up, the user columns (play_count, last_played_ms, is_favorite, rating) live on the song
# row itself, so removing a song in a full scan takes its favorite flag and history with it.
# Everything else mirrors the source record and gets overwritten by update re-scans.
class SongModel(Base):
    """SQLAlchemy model for library songs."""

    __tablename__ = "library_songs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    artist: Mapped[str] = mapped_column(String(512), nullable=False)
    album: Mapped[str] = mapped_column(String(512), nullable=False)
    artist_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("library_artists.id", ondelete="SET NULL"), nullable=True
    )
    album_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("library_albums.id", ondelete="SET NULL"), nullable=True
    )
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    modified_ms: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    track_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    year: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    date_added_ms: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    album_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    artist_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    play_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_played_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_favorite: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default="0", default=False
    )
    rating: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_library_songs_album_artist", "album", "artist"),
        Index("ix_library_songs_artist", "artist"),
        Index("ix_library_songs_modified_ms", "modified_ms"),
    )


class ScanBookkeepingModel(Base):
    """Single-row table holding the last scan timestamps."""

    __tablename__ = "scan_bookkeeping"

    SINGLETON_ID = 1

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_ID)
    last_scan_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_full_scan_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_scan_mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    scans_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )
