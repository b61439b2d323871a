"""Worker system - library scans."""

from songshelf.application.workers.library_scan_worker import LibraryScanWorker

__all__ = ["LibraryScanWorker"]
