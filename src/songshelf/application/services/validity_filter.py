"""Eligibility checks for incoming track records."""

import logging
from collections import Counter
from collections.abc import Iterable
from enum import Enum
from pathlib import PurePath

from songshelf.domain.entities import TrackRecord
from songshelf.domain.ports import IFileSystemProbe
from songshelf.domain.value_objects import FilterPolicy

logger = logging.getLogger(__name__)


class RejectionReason(str, Enum):
    """Why a record was filtered out."""

    TOO_SHORT = "too_short"
    UNSUPPORTED_FORMAT = "unsupported_format"
    MISSING = "missing"
    UNREADABLE = "unreadable"
    EMPTY = "empty"


# Hey future me, rejections are a POLICY outcome, not a fault: nothing here raises, a rejected
# record just gets counted. Checks run cheapest first (duration, extension) so the filesystem
# probe only sees records that would otherwise be accepted.
class ValidityFilter:
    """Decides whether a raw track record is eligible for the library."""

    def __init__(self, probe: IFileSystemProbe | None = None) -> None:
        self.probe = probe

    def rejection_reason(
        self, record: TrackRecord, policy: FilterPolicy
    ) -> RejectionReason | None:
        """Return why ``record`` is rejected, or None if it is valid."""
        if policy.ignore_short_tracks and record.duration_ms < policy.min_duration_ms:
            return RejectionReason.TOO_SHORT

        if policy.allowed_extensions:
            extension = PurePath(record.path).suffix.lower().lstrip(".")
            if extension not in policy.allowed_extensions:
                return RejectionReason.UNSUPPORTED_FORMAT

        if policy.check_file_access and self.probe is not None:
            return self._probe(record.path)

        return None

    def is_valid(self, record: TrackRecord, policy: FilterPolicy) -> bool:
        return self.rejection_reason(record, policy) is None

    def partition(
        self, records: Iterable[TrackRecord], policy: FilterPolicy
    ) -> tuple[list[TrackRecord], Counter[RejectionReason]]:
        """Split records into the valid ones and a count of rejections per reason."""
        valid: list[TrackRecord] = []
        rejected: Counter[RejectionReason] = Counter()
        for record in records:
            reason = self.rejection_reason(record, policy)
            if reason is None:
                valid.append(record)
            else:
                rejected[reason] += 1
                logger.debug(f"Skipping {record.path}: {reason.value}")
        return valid, rejected

    def _probe(self, path: str) -> RejectionReason | None:
        assert self.probe is not None
        try:
            if not self.probe.exists(path):
                return RejectionReason.MISSING
            if not self.probe.is_readable(path):
                return RejectionReason.UNREADABLE
            if self.probe.size_of(path) <= 0:
                return RejectionReason.EMPTY
        except OSError as e:
            logger.debug(f"Probe failed for {path}: {e}")
            return RejectionReason.UNREADABLE
        return None
