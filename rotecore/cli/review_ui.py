"""
Command-line interface for reviewing items.
"""

import logging
from datetime import datetime
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel

from rotecore.models import Grade, Item, utc_now
from rotecore.review_manager import ReviewSessionManager

logger = logging.getLogger(__name__)
console = Console()


def _get_user_grade() -> Grade:
    """
    Prompt until the user enters a grade between 1 and 4.
    """
    while True:
        try:
            grade_str = console.input(
                "[bold]Grade (1:Again, 2:Hard, 3:Good, 4:Easy): [/bold]"
            )
            grade = int(grade_str)
            if 1 <= grade <= 4:
                return Grade(grade)
            console.print(
                "[bold red]Invalid grade. Please enter a number between 1 and 4.[/bold red]"  # noqa: E501
            )
        except (ValueError, TypeError):
            console.print(
                "[bold red]Invalid input. Please enter a number.[/bold red]"
            )


def _display_item(item: Item) -> None:
    """
    Show an item's front, wait for the user to press Enter, then reveal the
    back.
    """
    console.print(Panel(item.front, title="Front", border_style="green"))
    console.input("[italic]Press Enter to see the back...[/italic]")
    console.print(Panel(item.back, title="Back", border_style="blue"))


def _describe_due(due_at: Optional[datetime], now: datetime) -> str:
    """Human-readable distance to the next due time."""
    if due_at is None:
        return "now"
    seconds = (due_at - now).total_seconds()
    if seconds < 3600:
        return f"{max(1, round(seconds / 60))} min"
    if seconds < 86400:
        return f"{round(seconds / 3600, 1)} h"
    return f"{round(seconds / 86400, 1)} days"


def _print_review_result(item: Item) -> None:
    due_str = item.due_at.strftime("%Y-%m-%d %H:%M") if item.due_at else "now"
    console.print(
        f"[green]Reviewed.[/green] [bold]{item.learning_state.name}[/bold], "
        f"next due in [bold]{_describe_due(item.due_at, utc_now())}[/bold] "
        f"({due_str} UTC)."
    )


def start_review_flow(
    manager: ReviewSessionManager,
    limit: int = 20,
    tags: Optional[List[str]] = None,
) -> None:
    """
    Manages the command-line review session flow.

    Args:
        manager: An instance of ReviewSessionManager.
        limit: Maximum number of items in the session.
        tags: Optional list of tags to filter items by.
    """
    console.print("[bold cyan]Starting review session...[/bold cyan]")
    manager.initialize_session(limit=limit, tags=tags)

    due_count = len(manager.review_queue)
    if due_count == 0:
        console.print("[bold yellow]No items are due for review.[/bold yellow]")
        console.print("[bold cyan]Review session finished.[/bold cyan]")
        return

    reviewed_count = 0
    while (item := manager.get_next_item()) is not None:
        reviewed_count += 1
        console.rule(f"[bold]Item {reviewed_count} of {due_count}[/bold]")

        _display_item(item)
        grade = _get_user_grade()

        try:
            updated_item = manager.submit_review(item_id=item.id, grade=grade)
        except Exception as e:
            logger.error(f"Failed to submit review for {item.id}: {e}")
            console.print(
                "[bold red]Error submitting review. Item will be reviewed again later.[/bold red]"  # noqa: E501
            )
            manager.skip_item(item.id)
            continue

        _print_review_result(updated_item)
        console.print("")

    stats = manager.get_session_stats()
    console.print(
        f"[bold cyan]Review session finished. Well done![/bold cyan] "
        f"{stats['reviewed_items']} reviewed, "
        f"{stats['correct_reviews']} recalled."
    )
    still_due = manager.get_due_item_count()
    if still_due:
        console.print(
            f"[yellow]{still_due} item(s) in this deck are still due.[/yellow]"
        )
