from pathlib import Path
from typing import List, Optional

from rotecore.cli.review_ui import start_review_flow
from rotecore.db.database import ItemDatabase
from rotecore.exceptions import DeckNotFoundError
from rotecore.review_manager import ReviewSessionManager
from rotecore.scheduler import StepScheduler


def review_logic(
    deck_name: str,
    db_path: Path,
    limit: int = 20,
    tags: Optional[List[str]] = None,
):
    """
    Set up and start a review session for the specified deck.

    Parameters:
        deck_name (str): Name of the deck to review.
        db_path (Path): Path to the database file.
        limit (int): Maximum number of items in the session.
        tags (Optional[List[str]]): If provided, restricts the review to
            items matching any of these tags.

    Raises:
        DeckNotFoundError: If the database holds no item in ``deck_name``.
    """
    with ItemDatabase(db_path=db_path) as db_manager:
        db_manager.initialize_schema()

        if deck_name not in db_manager.get_deck_names():
            raise DeckNotFoundError(f"Deck '{deck_name}' not found.")

        manager = ReviewSessionManager(
            db_manager=db_manager,
            scheduler=StepScheduler(),
            deck_name=deck_name,
        )
        start_review_flow(manager, limit=limit, tags=tags)
