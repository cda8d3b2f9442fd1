"""
Append-only ledger of review records.

The ledger is written by the review workflow after each grade application
and read for statistics and audit. The scheduler never reads it.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional
from uuid import UUID

from .models import (
    Grade,
    Item,
    ItemStats,
    ReviewRecord,
    ensure_utc,
    utc_now,
)

logger = logging.getLogger(__name__)


def compute_item_stats(records: Iterable[ReviewRecord]) -> ItemStats:
    """
    Summarize review records into an ItemStats.

    Good and Easy count as correct. The average grade is on a 0-3 scale
    (Again=0 .. Easy=3). Both ratios divide by at least one so an item with no
    reviews reports zeros.
    """
    records = list(records)
    total = len(records)
    correct = sum(1 for r in records if r.grade.is_correct)
    score_sum = sum(r.grade.score for r in records)
    return ItemStats(
        total_reviews=total,
        correct_reviews=correct,
        average_grade=score_sum / max(1, total),
        retention=correct / max(1, total),
    )


class ReviewLedger:
    """
    In-memory, append-only sequence of ReviewRecords.

    Records are kept in insertion order and never mutated or removed.
    """

    def __init__(self, records: Optional[Iterable[ReviewRecord]] = None):
        self._records: List[ReviewRecord] = []
        self._by_item: Dict[UUID, List[ReviewRecord]] = {}
        for record in records or ():
            self.append(record)

    def record(
        self,
        item: Item,
        grade: Grade,
        resulting_ease: float,
        resulting_interval: float,
        now: Optional[datetime] = None,
    ) -> ReviewRecord:
        """
        Build a ReviewRecord for a grade applied to ``item`` and append it.

        ``item`` is the snapshot that was graded; only its id and learning
        state are read.
        """
        record = ReviewRecord(
            item_id=item.id,
            timestamp=ensure_utc(now or utc_now()),
            grade=grade,
            ease_factor_after=resulting_ease,
            interval_days_after=resulting_interval,
            review_type=item.learning_state.review_type,
        )
        return self.append(record)

    def append(self, record: ReviewRecord) -> ReviewRecord:
        """Append an already-built record, e.g. one returned by apply_grade."""
        self._records.append(record)
        self._by_item.setdefault(record.item_id, []).append(record)
        logger.debug(
            f"Ledger: recorded {record.grade.name} for item {record.item_id}"
        )
        return record

    def records_for(self, item_id: UUID) -> List[ReviewRecord]:
        """Records of one item, in the order they were appended."""
        return list(self._by_item.get(item_id, ()))

    def stats_for(self, item_id: UUID) -> ItemStats:
        return compute_item_stats(self._by_item.get(item_id, ()))

    def __iter__(self) -> Iterator[ReviewRecord]:
        return iter(list(self._records))

    def __len__(self) -> int:
        return len(self._records)
