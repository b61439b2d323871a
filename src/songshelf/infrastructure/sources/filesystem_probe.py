"""Filesystem probe backed by the local OS."""

import os

from songshelf.domain.ports import IFileSystemProbe


class LocalFileSystemProbe(IFileSystemProbe):
    """Existence/readability/size checks against the local filesystem.

    size_of raises OSError for missing files; ValidityFilter turns that into a
    rejection, so don't swallow it here.
    """

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)

    def is_readable(self, path: str) -> bool:
        return os.access(path, os.R_OK)

    def size_of(self, path: str) -> int:
        return os.path.getsize(path)
