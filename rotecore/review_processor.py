"""
Shared review processing logic for rotecore.

ReviewSessionManager and the review-all workflow both submit grades through
ReviewProcessor, so every grade goes through the same steps:
1. Timestamp handling
2. Repair of legacy or corrupt item data
3. Grade application by the scheduler
4. Atomic persistence of the review record and the updated item
5. Ledger bookkeeping
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from .db.database import ItemDatabase
from .ledger import ReviewLedger
from .migration import normalize
from .models import Item, ensure_utc, utc_now
from .scheduler import GradeLike, StepScheduler

logger = logging.getLogger(__name__)


class ReviewProcessor:
    """
    Processes grade submissions with consistent logic across all review
    workflows.
    """

    def __init__(
        self,
        db_manager: ItemDatabase,
        scheduler: StepScheduler,
        ledger: Optional[ReviewLedger] = None,
    ):
        """
        Args:
            db_manager: Database manager instance for persistence
            scheduler: Scheduler computing the next state of an item
            ledger: Optional in-memory ledger that receives every stored record
        """
        self.db_manager = db_manager
        self.scheduler = scheduler
        self.ledger = ledger

    def process_review(
        self,
        item: Item,
        grade: GradeLike,
        reviewed_at: Optional[datetime] = None,
    ) -> Item:
        """
        Apply a grade to an item and persist the outcome.

        Args:
            item: The item being reviewed
            grade: The grade (1-4: Again, Hard, Good, Easy)
            reviewed_at: Review timestamp (defaults to current time)

        Returns:
            The updated Item as stored in the database

        Raises:
            ValueError: If the grade is invalid
            ReviewOperationError: If the database operation fails
        """
        now = ensure_utc(reviewed_at or utc_now())

        logger.debug(f"Processing review for item {item.id} with grade {grade}")

        try:
            repaired = normalize(item, now=now, config=self.scheduler.config)
            updated_item, record = self.scheduler.apply_grade(
                repaired, grade, now
            )

            stored_item, stored_record = (
                self.db_manager.add_review_and_update_item(
                    record=record, item=updated_item
                )
            )

            if self.ledger is not None:
                self.ledger.append(stored_record)

            logger.debug(
                f"Review processed successfully for item {item.id}. "
                f"Next due: {stored_item.due_at}, "
                f"State: {stored_item.learning_state.name}"
            )
            return stored_item

        except Exception:
            logger.exception(f"Failed to process review for item {item.id}")
            raise

    def process_review_by_id(
        self,
        item_id: UUID,
        grade: GradeLike,
        reviewed_at: Optional[datetime] = None,
    ) -> Item:
        """
        Fetch an item by id and process a grade for it.

        Raises:
            ValueError: If the item is not found or the grade is invalid
        """
        item = self.db_manager.get_item_by_id(item_id)
        if not item:
            raise ValueError(f"Item {item_id} not found in database")

        return self.process_review(
            item=item, grade=grade, reviewed_at=reviewed_at
        )
