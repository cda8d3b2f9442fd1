"""
This module defines the ReviewSessionManager class, which manages a review
session over the due items of one deck. It fetches items from the database,
hands grades to the shared ReviewProcessor and tracks session progress.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Set
from uuid import UUID, uuid4

from .db.database import ItemDatabase
from .ledger import ReviewLedger
from .models import Item
from .review_processor import ReviewProcessor
from .scheduler import GradeLike, StepScheduler

logger = logging.getLogger(__name__)


class ReviewSessionManager:
    """
    Manages a review session for one deck.

    This class is responsible for:
    - Initializing a review session with the deck's due items.
    - Providing items one by one for review.
    - Submitting grades and removing reviewed items from the queue.
    """

    def __init__(
        self,
        db_manager: ItemDatabase,
        scheduler: StepScheduler,
        deck_name: str,
        ledger: Optional[ReviewLedger] = None,
    ):
        self.db = db_manager
        self.scheduler = scheduler
        self.deck_name = deck_name
        self.session_uuid = uuid4()
        self.review_queue: List[Item] = []
        self.current_session_item_ids: Set[UUID] = set()
        self.ledger = ledger if ledger is not None else ReviewLedger()

        self.review_processor = ReviewProcessor(
            db_manager, scheduler, ledger=self.ledger
        )

    def initialize_session(
        self,
        limit: int = 20,
        tags: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Fetch the deck's due items, earliest due first, into the session
        queue.

        Parameters:
            limit: Maximum number of items in the session.
            tags: Only items carrying any of these tags.
            now: Due cutoff; defaults to the current time.
        """
        logger.info(
            f"Initializing review session {self.session_uuid} for deck '{self.deck_name}'"  # noqa: E501
        )
        if tags:
            logger.info(f"Filtering items by tags: {tags}")

        self.review_queue = self.db.get_due_items(
            now=now, deck_name=self.deck_name, limit=limit, tags=tags
        )
        self.current_session_item_ids = {item.id for item in self.review_queue}
        logger.info(f"Initialized session with {len(self.review_queue)} items.")

    def get_next_item(self) -> Optional[Item]:
        """
        Returns:
            The next item to be reviewed, or None if the queue is empty.
        """
        if not self.review_queue:
            logger.info("Review queue is empty. Session may be complete.")
            return None
        return self.review_queue[0]

    def _get_item_from_queue(self, item_id: UUID) -> Optional[Item]:
        for item in self.review_queue:
            if item.id == item_id:
                return item
        return None

    def _remove_item_from_queue(self, item_id: UUID) -> None:
        self.review_queue = [
            item for item in self.review_queue if item.id != item_id
        ]

    def skip_item(self, item_id: UUID) -> None:
        """Drop an item from this session; it stays due in the database."""
        self._remove_item_from_queue(item_id)

    def submit_review(
        self,
        item_id: UUID,
        grade: GradeLike,
        reviewed_at: Optional[datetime] = None,
    ) -> Item:
        """
        Submit a grade for an item in the current session.

        Returns:
            The updated Item.

        Raises:
            ValueError: If the item is not part of the current review session
                or the grade is invalid.
        """
        item = self._get_item_from_queue(item_id)
        if not item:
            raise ValueError(
                f"Item {item_id} not found in the current review session."
            )

        try:
            updated_item = self.review_processor.process_review(
                item=item, grade=grade, reviewed_at=reviewed_at
            )
        except Exception as e:
            logger.error(f"Failed to submit review for item {item_id}: {e}")
            raise

        self._remove_item_from_queue(item_id)
        return updated_item

    def get_session_stats(self) -> Dict[str, float]:
        """
        Returns:
            dict with ``total_items`` and ``reviewed_items`` for the session,
            plus ``correct_reviews`` and ``retention`` over the grades
            submitted so far.
        """
        total_items = len(self.current_session_item_ids)
        reviewed_items = total_items - len(self.review_queue)
        session_records = [
            r for r in self.ledger if r.item_id in self.current_session_item_ids
        ]
        correct = sum(1 for r in session_records if r.grade.is_correct)
        return {
            "total_items": total_items,
            "reviewed_items": reviewed_items,
            "correct_reviews": correct,
            "retention": correct / max(1, len(session_records)),
        }

    def get_due_item_count(self, now: Optional[datetime] = None) -> int:
        return self.db.get_due_item_count(now=now, deck_name=self.deck_name)
