"""Configuration module for SongShelf."""

from .settings import SUPPORTED_AUDIO_EXTENSIONS, Settings, get_settings

__all__ = ["SUPPORTED_AUDIO_EXTENSIONS", "Settings", "get_settings"]
