"""Application services - the library scan pipeline."""

from songshelf.application.services.aggregator import AggregationResult, aggregate
from songshelf.application.services.cache_cleanup_service import CacheCleanupService
from songshelf.application.services.change_classifier import (
    COMPARED_FIELDS,
    changed_fields,
    classify,
)
from songshelf.application.services.library_sync_service import LibrarySyncService
from songshelf.application.services.reconciliation_planner import ReconciliationPlanner
from songshelf.application.services.store_writer import StoreWriter
from songshelf.application.services.validity_filter import RejectionReason, ValidityFilter

__all__ = [
    "COMPARED_FIELDS",
    "AggregationResult",
    "CacheCleanupService",
    "LibrarySyncService",
    "ReconciliationPlanner",
    "RejectionReason",
    "StoreWriter",
    "ValidityFilter",
    "aggregate",
    "changed_fields",
    "classify",
]
