"""SongShelf - keeps a local music library in sync with the files on disk."""

__version__ = "0.1.0"
