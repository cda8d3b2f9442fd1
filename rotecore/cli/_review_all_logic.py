"""
Logic for reviewing all due items across all decks.
"""

from collections import Counter
from pathlib import Path

from rich.console import Console

from rotecore.cli.review_ui import (
    _display_item,
    _get_user_grade,
    _print_review_result,
)
from rotecore.db.database import ItemDatabase
from rotecore.ledger import ReviewLedger
from rotecore.review_processor import ReviewProcessor
from rotecore.scheduler import StepScheduler

console = Console()


def review_all_logic(db_path: Path, limit: int = 50):
    """
    Run one review session over the items due in every deck, earliest due
    first, up to ``limit`` items.

    A failed submission is reported and the session moves on; the item stays
    due in the database.
    """
    with ItemDatabase(db_path=db_path) as db_manager:
        db_manager.initialize_schema()

        all_due_items = db_manager.get_due_items(limit=limit)
        if not all_due_items:
            console.print(
                "[bold yellow]No items are due for review across any deck.[/bold yellow]"  # noqa: E501
            )
            console.print("[bold cyan]Review session finished.[/bold cyan]")
            return

        deck_counts = Counter(item.deck_name for item in all_due_items)
        console.print(
            f"[bold green]Found {len(all_due_items)} due items across {len(deck_counts)} decks:[/bold green]"  # noqa: E501
        )
        for deck_name, count in sorted(deck_counts.items()):
            console.print(f"  • [cyan]{deck_name}[/cyan]: {count} items")
        console.print()

        ledger = ReviewLedger()
        processor = ReviewProcessor(db_manager, StepScheduler(), ledger=ledger)

        for position, item in enumerate(all_due_items, start=1):
            console.rule(
                f"[bold]Item {position} of {len(all_due_items)} • [cyan]{item.deck_name}[/cyan][/bold]"  # noqa: E501
            )

            _display_item(item)
            grade = _get_user_grade()

            try:
                updated_item = processor.process_review(item=item, grade=grade)
            except Exception as e:
                console.print(f"[bold red]Error reviewing item: {e}[/bold red]")
            else:
                _print_review_result(updated_item)

            console.print("")

        console.print(
            f"[bold green]Review session complete! Reviewed {len(ledger)} items.[/bold green]"  # noqa: E501
        )
