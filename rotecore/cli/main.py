"""
CLI entry point for rotecore.
"""

# Standard library imports
import logging
import os
from pathlib import Path
from typing import List, Optional
from uuid import UUID

# Third-party imports
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

# Local application imports
from rotecore import config as rotecore_config
from rotecore.db.database import ItemDatabase
from rotecore.exceptions import DatabaseError, DeckNotFoundError
from rotecore.ledger import compute_item_stats
from rotecore.migration import normalize
from rotecore.models import Item, utc_now
from rotecore.scheduler import reset_item
from rotecore.cli._review_logic import review_logic
from rotecore.cli._review_all_logic import review_all_logic


console = Console()

app = typer.Typer(
    name="rotecore",
    help="Rotecore: step-table spaced repetition scheduler.",
    add_completion=False,
    rich_markup_mode="markdown",
)


@app.callback()
def _configure_logging(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ...). "
        "Falls back to ROTECORE_LOG_LEVEL.",
    ),
):
    """Rotecore: step-table spaced repetition scheduler."""
    level = (log_level or rotecore_config.settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Helpers for resolving the --db path (ROTECORE_DB envvar, settings fallback)
# ---------------------------------------------------------------------------


def _resolve_db_path(db: Optional[Path]) -> Path:
    """Resolve db path from the CLI flag, ROTECORE_DB or the settings."""
    if db is not None:
        return db
    env_val = os.environ.get("ROTECORE_DB")
    if env_val:
        return Path(env_val)
    db_path = rotecore_config.settings.db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


# Common typer options reused across commands
_db_option = typer.Option(  # noqa: B008
    None,
    "--db",
    help="Path to the DuckDB database file. "
    "Falls back to ROTECORE_DB, then ROTECORE_DB_PATH.",
    envvar="ROTECORE_DB",
)


def _format_ts(ts) -> str:
    return ts.strftime("%Y-%m-%d %H:%M") if ts else "-"


# ---------------------------------------------------------------------------
# Add / due
# ---------------------------------------------------------------------------


@app.command()
def add(
    front: str = typer.Option(..., "--front", help="Prompt text."),
    back: str = typer.Option(..., "--back", help="Answer text."),
    deck: str = typer.Option("Default", "--deck", help="Deck name."),
    tags: Optional[List[str]] = typer.Option(  # noqa: B008
        None, "--tag", help="Kebab-case tag; repeat for several."
    ),
    db: Optional[Path] = _db_option,
):
    """Adds a new item, due immediately."""
    db_path = _resolve_db_path(db)
    try:
        item = Item(
            deck_name=deck, front=front, back=back, tags=frozenset(tags or ())
        )
    except ValidationError as e:
        console.print(f"[bold red]Invalid item:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    try:
        with ItemDatabase(db_path=db_path) as db_inst:
            db_inst.upsert_items_batch([item])
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {e}[/bold]")
        raise typer.Exit(code=1) from e

    console.print(
        f"[green]Added item[/green] [cyan]{item.id}[/cyan] to deck "
        f"[bold]{item.deck_name}[/bold]."
    )


@app.command()
def due(
    deck: Optional[str] = typer.Option(None, "--deck", help="Only this deck."),
    limit: Optional[int] = typer.Option(
        None, "--limit", "-l", help="Maximum number of items to list."
    ),
    db: Optional[Path] = _db_option,
):
    """Lists the items due now, earliest due first."""
    db_path = _resolve_db_path(db)
    try:
        with ItemDatabase(db_path=db_path) as db_inst:
            items = db_inst.get_due_items(deck_name=deck, limit=limit)
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {e}[/bold]")
        raise typer.Exit(code=1) from e

    if not items:
        console.print("[yellow]No items are due.[/yellow]")
        return

    table = Table(title=f"Due Items ({len(items)})")
    table.add_column("ID", style="dim")
    table.add_column("Deck", style="cyan")
    table.add_column("Front")
    table.add_column("State", style="magenta")
    table.add_column("Due (UTC)", style="yellow")
    for item in items:
        table.add_row(
            str(item.id),
            item.deck_name,
            item.front,
            item.learning_state.name,
            _format_ts(item.due_at),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Stats helpers & command
# ---------------------------------------------------------------------------


def _display_overall_stats(cons: Console, stats_data: dict):
    overall_table = Table(title="Overall Database Stats", show_header=False)
    overall_table.add_column("Metric", style="cyan")
    overall_table.add_column("Value", style="magenta")
    overall_table.add_row("Total Items", str(stats_data["total_items"]))
    overall_table.add_row("Total Reviews", str(stats_data["total_reviews"]))
    cons.print(overall_table)


def _display_deck_stats(cons: Console, stats_data: dict):
    """
    Render a table of per-deck statistics. Each deck record provides
    "deck_name", "item_count" and "due_count".
    """
    decks_table = Table(title="Decks")
    decks_table.add_column("Deck Name", style="cyan")
    decks_table.add_column("Item Count", style="magenta")
    decks_table.add_column("Due Count", style="yellow")

    for deck in stats_data["decks"]:
        decks_table.add_row(
            deck["deck_name"],
            str(deck["item_count"]),
            str(deck["due_count"]),
        )
    cons.print(decks_table)


def _display_state_stats(cons: Console, stats_data: dict):
    states_table = Table(title="Learning States")
    states_table.add_column("State", style="cyan")
    states_table.add_column("Count", style="magenta")
    for state, count in sorted(stats_data["states"].items()):
        states_table.add_row(state, str(count))
    cons.print(states_table)


@app.command()
def stats(
    db: Optional[Path] = _db_option,
):
    """Display statistics about the item database."""
    db_path = _resolve_db_path(db)
    try:
        with ItemDatabase(db_path=db_path) as db_inst:
            stats_data = db_inst.get_database_stats()
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {e}[/bold]")
        raise typer.Exit(code=1) from e

    _display_overall_stats(console, stats_data)
    if not stats_data["total_items"]:
        console.print("[yellow]No items found in the database.[/yellow]")
        return
    _display_deck_stats(console, stats_data)
    _display_state_stats(console, stats_data)


@app.command()
def history(
    item_id: UUID = typer.Argument(..., help="ID of the item."),  # noqa: B008
    db: Optional[Path] = _db_option,
):
    """Shows the review ledger of one item and its statistics."""
    db_path = _resolve_db_path(db)
    try:
        with ItemDatabase(db_path=db_path) as db_inst:
            item = db_inst.get_item_by_id(item_id)
            if item is None:
                console.print(f"[bold red]Item {item_id} not found.[/bold red]")
                raise typer.Exit(code=1)
            records = db_inst.get_reviews_for_item(item_id)
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {e}[/bold]")
        raise typer.Exit(code=1) from e

    console.print(
        f"[bold]{item.front}[/bold] ([cyan]{item.deck_name}[/cyan]): "
        f"{item.learning_state.name}, due {_format_ts(item.due_at)} UTC"
    )
    if not records:
        console.print("[yellow]No reviews recorded yet.[/yellow]")
        return

    table = Table(title="Review History")
    table.add_column("When (UTC)", style="cyan")
    table.add_column("Type")
    table.add_column("Grade", style="magenta")
    table.add_column("Ease After")
    table.add_column("Interval After (days)")
    for record in records:
        table.add_row(
            _format_ts(record.timestamp),
            record.review_type,
            record.grade.name,
            f"{record.ease_factor_after:.2f}",
            f"{record.interval_days_after:.2f}",
        )
    console.print(table)

    item_stats = compute_item_stats(records)
    console.print(
        f"Reviews: {item_stats.total_reviews}, "
        f"correct: {item_stats.correct_reviews}, "
        f"average grade: {item_stats.average_grade:.2f}, "
        f"retention: {item_stats.retention:.0%}"
    )


# ---------------------------------------------------------------------------
# Review commands
# ---------------------------------------------------------------------------


@app.command()
def review(
    deck_name: str = typer.Argument(  # noqa: B008
        ..., help="The name of the deck to review."
    ),
    db: Optional[Path] = _db_option,
    limit: int = typer.Option(
        20, "--limit", "-l", help="Maximum number of items to review."
    ),
    tags: Optional[List[str]] = typer.Option(  # noqa: B008
        None,
        "--tags",
        help="Only review items carrying one of these tags.",
    ),
):
    """Starts a review session for the specified deck."""
    db_path = _resolve_db_path(db)
    try:

        if tags:
            console.print(
                f"Starting review for deck: "
                f"[bold cyan]{deck_name}[/bold cyan] "
                f"with tags: [bold yellow]"
                f"{', '.join(tags)}[/bold yellow]"
            )
        else:
            console.print(
                f"Starting review for deck: "
                f"[bold cyan]{deck_name}[/bold cyan]"
            )
        review_logic(
            deck_name=deck_name, db_path=db_path, limit=limit, tags=tags
        )
    except DeckNotFoundError as e:
        console.print(f"[bold]Error: {e}[/bold]")
        raise typer.Exit(code=1) from e
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {e}[/bold]")
        raise typer.Exit(code=1) from e


@app.command()
def review_all(
    db: Optional[Path] = _db_option,
    limit: int = typer.Option(
        50,
        "--limit",
        "-l",
        help="Maximum number of items to review across all decks.",
    ),
):
    """Starts a review session for all due items across all decks."""
    db_path = _resolve_db_path(db)
    try:
        console.print(
            "[bold cyan]Starting review session "
            "for all due items...[/bold cyan]"
        )
        review_all_logic(db_path=db_path, limit=limit)
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {e}[/bold]")
        raise typer.Exit(code=1) from e


# ---------------------------------------------------------------------------
# Maintenance: migrate / reset
# ---------------------------------------------------------------------------


@app.command()
def migrate(
    db: Optional[Path] = _db_option,
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Report repairs without writing them."
    ),
):
    """
    Repairs legacy or corrupt items: fills missing due times, resets long
    lapses and clamps out-of-range values.
    """
    db_path = _resolve_db_path(db)
    try:
        with ItemDatabase(db_path=db_path) as db_inst:
            now = utc_now()
            items = db_inst.get_all_items()
            repaired = []
            for item in items:
                fixed = normalize(item, now=now)
                if fixed is not item:
                    repaired.append(fixed)

            if not repaired:
                console.print("[green]All items are consistent.[/green]")
                return
            if dry_run:
                console.print(
                    f"[yellow]{len(repaired)} of {len(items)} items need repair "
                    "(dry run, nothing written).[/yellow]"
                )
                return

            db_inst.upsert_items_batch(repaired)
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {e}[/bold]")
        raise typer.Exit(code=1) from e

    console.print(
        f"[bold green]Repaired {len(repaired)} of {len(items)} items.[/bold green]"  # noqa: E501
    )


@app.command()
def reset(
    item_id: UUID = typer.Argument(..., help="ID of the item."),  # noqa: B008
    db: Optional[Path] = _db_option,
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Bypass confirmation prompt."
    ),
):
    """Discards an item's learning progress; its review history is kept."""
    db_path = _resolve_db_path(db)
    if not yes:
        confirmed = typer.confirm(
            f"Reset the learning progress of item {item_id}?"
        )
        if not confirmed:
            console.print("Reset cancelled.")
            raise typer.Exit()

    try:
        with ItemDatabase(db_path=db_path) as db_inst:
            item = db_inst.get_item_by_id(item_id)
            if item is None:
                console.print(f"[bold red]Item {item_id} not found.[/bold red]")
                raise typer.Exit(code=1)
            db_inst.upsert_items_batch([reset_item(item)])
    except DatabaseError as e:
        console.print(f"[bold]A database error occurred: {e}[/bold]")
        raise typer.Exit(code=1) from e

    console.print(f"[green]Item {item_id} is New again and due now.[/green]")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """
    Run the CLI application, exiting with status 1 on an unexpected error.
    """
    try:
        app()
    except Exception as e:
        console.print(f"[bold red]UNEXPECTED ERROR: {e}[/bold red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
