"""
Marshalling between the pydantic models and DuckDB rows.
"""

from typing import Any, Dict, List, Sequence, Tuple

from pydantic import ValidationError

from ..exceptions import MarshallingError
from ..models import Item, LearningState, ReviewRecord


ITEM_COLUMNS: Tuple[str, ...] = (
    "id",
    "deck_name",
    "front",
    "back",
    "tags",
    "learning_state",
    "step_index",
    "ease_factor",
    "interval_days",
    "streak",
    "due_at",
    "last_reviewed_at",
    "review_count",
    "added_at",
    "modified_at",
)


def item_to_db_params(item: Item) -> Tuple:
    """Serialize an Item into a tuple ordered as ITEM_COLUMNS."""
    return (
        item.id,
        item.deck_name,
        item.front,
        item.back,
        sorted(item.tags) if item.tags else None,
        item.learning_state.name,
        item.step_index,
        item.ease_factor,
        item.interval_days,
        item.streak,
        item.due_at,
        item.last_reviewed_at,
        item.review_count,
        item.added_at,
        item.modified_at,
    )


def items_to_db_params_list(items: Sequence[Item]) -> List[Tuple]:
    return [item_to_db_params(item) for item in items]


def transform_db_row_for_item(row_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Prepare a raw items row for the Item model: tags become a frozenset and
    the state name becomes a LearningState.

    Raises:
        MarshallingError: If the stored state name is unknown.
    """
    data = row_dict.copy()

    tags_val = data.get("tags")
    data["tags"] = frozenset(tags_val) if tags_val is not None else frozenset()

    state_val = data.pop("learning_state", None)
    if state_val:
        try:
            data["learning_state"] = LearningState[state_val]
        except KeyError as e:
            raise MarshallingError(
                f"Unknown learning_state '{state_val}' in DB row.",
                original_exception=e,
            ) from e

    return data


def db_row_to_item(row_dict: Dict[str, Any]) -> Item:
    """
    Create an Item from a database row dictionary.

    Raises:
        MarshallingError: If the row cannot be validated into an Item.
    """
    data = transform_db_row_for_item(row_dict)
    try:
        return Item(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse item from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


def review_to_db_params_tuple(record: ReviewRecord) -> Tuple:
    """
    Returns:
        tuple: (item_id, ts, grade, ease_factor_after, interval_days_after,
                review_type)
    """
    return (
        record.item_id,
        record.timestamp,
        int(record.grade),
        record.ease_factor_after,
        record.interval_days_after,
        record.review_type,
    )


def db_row_to_review(row_dict: Dict[str, Any]) -> ReviewRecord:
    """Converts a reviews row into a ReviewRecord."""
    data = row_dict.copy()
    data["timestamp"] = data.pop("ts")
    try:
        return ReviewRecord(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse review from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e
