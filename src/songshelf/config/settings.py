"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from songshelf.domain.value_objects import FilterPolicy

# Same list the media index accepts; anything else is ignored by the folder source.
SUPPORTED_AUDIO_EXTENSIONS: tuple[str, ...] = (
    "mp3",
    "flac",
    "wav",
    "aac",
    "ogg",
    "m4a",
    "wma",
    "opus",
)


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///./songshelf.db"
    echo: bool = False
    pool_pre_ping: bool = True
    # Seconds SQLite waits on a held write lock before raising "database is locked".
    busy_timeout: float = Field(default=30.0, gt=0)


# Hey future me, music_paths are the roots LocalFolderTrackSource walks. A full scan over an
# EMPTY list would enumerate nothing and then delete the whole library - the source refuses
# that by raising SourceUnavailableError, see filesystem_source.py.
class LibrarySettings(BaseModel):
    """Where the music lives."""

    music_paths: list[Path] = Field(default_factory=lambda: [Path("./music")])
    follow_symlinks: bool = False
    extensions: tuple[str, ...] = SUPPORTED_AUDIO_EXTENSIONS

    @field_validator("extensions")
    @classmethod
    def _lowercase_extensions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(ext.lower().lstrip(".") for ext in value)


class ScanSettings(BaseModel):
    """Scan pipeline knobs."""

    ignore_short_tracks: bool = True
    min_duration_ms: int = Field(default=30_000, ge=0)
    allowed_extensions: tuple[str, ...] = SUPPORTED_AUDIO_EXTENSIONS
    check_file_access: bool = True
    max_attempts: int = Field(default=3, ge=1)
    retry_initial_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    # One AsyncSession can't run statements concurrently - keep this at 1 for SQL stores.
    recompute_concurrency: int = Field(default=1, ge=1)
    prune_orphans: bool = True
    order_by_path: bool = False

    def filter_policy(self) -> FilterPolicy:
        """Build the ValidityFilter policy from these settings."""
        return FilterPolicy(
            ignore_short_tracks=self.ignore_short_tracks,
            min_duration_ms=self.min_duration_ms,
            allowed_extensions=frozenset(self.allowed_extensions),
            check_file_access=self.check_file_access,
        )


class CacheSettings(BaseModel):
    """Artwork cache cleanup settings."""

    artwork_path: Path = Path("./cache/artwork")
    max_size_mb: int = Field(default=500, ge=0)
    max_age_days: int = Field(default=7, ge=0)
    auto_clear: bool = True

    @property
    def max_size_bytes(self) -> int:
        return self.max_size_mb * 1024 * 1024

    @property
    def max_age_ms(self) -> int:
        return self.max_age_days * 24 * 60 * 60 * 1000


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_level: str = "INFO"
    log_json_format: bool = False

    @field_validator("log_level")
    @classmethod
    def _uppercase_level(cls, value: str) -> str:
        return value.upper()


# Listen up, nested sections come from env vars like SONGSHELF_SCAN__MIN_DURATION_MS=45000 or
# SONGSHELF_DATABASE__URL=... (double underscore = nesting). Tests build Settings(...) directly
# instead of touching the environment, and get_settings() is cached for the app process.
class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_prefix="SONGSHELF_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "songshelf"
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    library: LibrarySettings = Field(default_factory=LibrarySettings)
    scan: ScanSettings = Field(default_factory=ScanSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
