"""
DuckDB persistence for rotecore items and their review ledger.
"""

import duckdb
import json
import logging
import uuid
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union, cast

from . import db_utils
from ..exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    ItemOperationError,
    MarshallingError,
    ReviewOperationError,
)
from ..models import Item, ReviewRecord, ensure_utc, utc_now
from .connection import ConnectionHandler
from .schema_manager import SchemaManager

logger = logging.getLogger(__name__)

# The upsert writes every column: the caller's Item value is authoritative.
_UPSERT_ITEMS_SQL = (
    "INSERT INTO items ("
    + ", ".join(db_utils.ITEM_COLUMNS)
    + ") VALUES ("
    + ", ".join("$%d" % i for i in range(1, len(db_utils.ITEM_COLUMNS) + 1))
    + ") ON CONFLICT (id) DO UPDATE SET "
    + ", ".join(
        "%s = EXCLUDED.%s" % (col, col)
        for col in db_utils.ITEM_COLUMNS
        if col != "id"
    )
    + ";"
)


def _rows_to_dicts(cursor: duckdb.DuckDBPyConnection) -> List[Dict[str, Any]]:
    """Convert cursor results to list of dictionaries using column names."""
    rows = cursor.fetchall()
    if not rows:
        return []
    description = cursor.description
    if description is None:
        return []
    columns = [desc[0] for desc in description]
    return [dict(zip(columns, row, strict=True)) for row in rows]


class ItemDatabase:
    """
    Facade over the storage subsystem: the persistence collaborator of the
    scheduler.

    Coordinates the ConnectionHandler, the SchemaManager and the marshalling
    helpers. Intended for use as a context manager.
    """

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        """
        Args:
            db_path: Path to the database file, or ':memory:'.
            read_only: Open the database in read-only mode.
        """
        self._handler = ConnectionHandler(db_path=db_path, read_only=read_only)
        self._schema_manager = SchemaManager(self._handler)
        logger.info(
            f"ItemDatabase initialized for DB at: {self._handler.db_path_resolved}"  # noqa: E501
        )

    @property
    def db_path_resolved(self) -> Path:
        return self._handler.db_path_resolved

    @property
    def read_only(self) -> bool:
        return self._handler.read_only

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        return self._handler.get_connection()

    def close_connection(self) -> None:
        self._handler.close_connection()

    def __enter__(self) -> "ItemDatabase":
        """Open the connection and create the schema of a fresh database."""
        self.get_connection()
        if self._handler.is_new_db and not self._handler.read_only:
            self.initialize_schema()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close_connection()

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        self._schema_manager.initialize_schema(
            force_recreate_tables=force_recreate_tables
        )

    def _rollback(self, cursor, context: str) -> None:
        try:
            cursor.rollback()
            logger.info(f"Transaction rolled back due to {context}.")
        except duckdb.Error as rb_err:
            # Keep the original, more informative error.
            logger.error(f"Failed to rollback transaction: {rb_err}")

    def _fetch_items(
        self, sql: str, params: Sequence[Any], context: str
    ) -> List[Item]:
        conn = self.get_connection()
        try:
            cursor = conn.execute(sql, params)
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching {context}: {e}")
            raise ItemOperationError(
                f"Failed to fetch {context}: {e}", original_exception=e
            ) from e
        try:
            return [
                db_utils.db_row_to_item(cast(Dict[str, Any], row))
                for row in rows
            ]
        except MarshallingError as e:
            raise ItemOperationError(
                f"Failed to parse {context} from database.",
                original_exception=e,
            ) from e

    # --- Item Operations ---
    def upsert_items_batch(self, items: Sequence[Item]) -> int:
        """
        Insert or update a batch of items in one transaction.

        Returns:
            int: Number of items written; an empty sequence is a no-op.

        Raises:
            ItemOperationError: If the write fails.
        """
        if self.read_only:
            raise ItemOperationError("Cannot upsert items in read-only mode.")
        if not items:
            return 0

        params_list = db_utils.items_to_db_params_list(items)
        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                try:
                    cursor.executemany(_UPSERT_ITEMS_SQL, params_list)
                    cursor.commit()
                except duckdb.Error:
                    self._rollback(cursor, "error in batch item upsert")
                    raise
        except duckdb.Error as e:
            logger.error(f"Error during batch item upsert: {e}")
            raise ItemOperationError(
                f"Batch item upsert failed: {e}", original_exception=e
            ) from e
        logger.info(f"Successfully upserted {len(params_list)} items.")
        return len(params_list)

    def get_item_by_id(self, item_id: uuid.UUID) -> Optional[Item]:
        """Fetch one item, or None if no item has this id."""
        items = self._fetch_items(
            "SELECT * FROM items WHERE id = $1;",
            (item_id,),
            f"item {item_id}",
        )
        return items[0] if items else None

    def get_all_items(
        self, deck_name_filter: Optional[str] = None
    ) -> List[Item]:
        """
        All items ordered by deck then front, optionally restricted by a SQL
        LIKE pattern on the deck name.
        """
        params: List[Any] = []
        sql = "SELECT * FROM items"
        if deck_name_filter:
            sql += " WHERE deck_name LIKE $1"
            params.append(deck_name_filter)
        sql += " ORDER BY deck_name, front;"
        return self._fetch_items(sql, params, "all items")

    def get_deck_names(self) -> List[str]:
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT DISTINCT deck_name FROM items ORDER BY deck_name;"
            ).fetchall()
        except duckdb.Error as e:
            logger.error(f"Could not fetch deck names due to a database error: {e}")
            raise ItemOperationError(
                "Could not fetch deck names.", original_exception=e
            ) from e
        return [row[0] for row in rows]

    def _due_filter(
        self,
        now: datetime,
        deck_name: Optional[str],
        tags: Optional[List[str]],
    ) -> Tuple[str, List[Any]]:
        clause = "(due_at <= $1 OR due_at IS NULL)"
        params: List[Any] = [ensure_utc(now)]
        if deck_name is not None:
            params.append(deck_name)
            clause += f" AND deck_name = ${len(params)}"
        if tags:
            tag_conditions = []
            for tag in tags:
                params.append(tag)
                tag_conditions.append(f"list_contains(tags, ${len(params)})")
            clause += " AND (" + " OR ".join(tag_conditions) + ")"
        return clause, params

    def get_due_items(
        self,
        now: Optional[datetime] = None,
        deck_name: Optional[str] = None,
        limit: Optional[int] = None,
        tags: Optional[List[str]] = None,
    ) -> List[Item]:
        """
        Items with ``due_at <= now``, earliest due first.

        Items without a due time (legacy rows) count as due and come first;
        ties are broken by ``added_at``.

        Parameters:
            now: Cutoff; defaults to the current UTC time.
            deck_name: Restrict to one deck.
            limit: Maximum number of items; None for no limit, 0 for none.
            tags: Only items carrying any of these tags.
        """
        if limit == 0:
            return []
        clause, params = self._due_filter(now or utc_now(), deck_name, tags)
        sql = (
            f"SELECT * FROM items WHERE {clause} "
            "ORDER BY due_at ASC NULLS FIRST, added_at ASC"
        )
        if limit is not None and limit > 0:
            params.append(limit)
            sql += f" LIMIT ${len(params)}"
        return self._fetch_items(sql, params, "due items")

    def get_due_item_count(
        self,
        now: Optional[datetime] = None,
        deck_name: Optional[str] = None,
    ) -> int:
        clause, params = self._due_filter(now or utc_now(), deck_name, None)
        conn = self.get_connection()
        try:
            row = conn.execute(
                f"SELECT COUNT(*) FROM items WHERE {clause};", params
            ).fetchone()
        except duckdb.Error as e:
            logger.error(f"Error counting due items (deck: {deck_name}): {e}")
            raise ItemOperationError(
                f"Failed to count due items: {e}", original_exception=e
            ) from e
        return row[0] if row else 0

    def get_database_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Aggregate counts for items, reviews, decks and learning states.

        Returns:
            dict with keys ``total_items``, ``total_reviews``, ``decks`` (list
            of dicts with ``deck_name``, ``item_count``, ``due_count``) and
            ``states`` (Counter of state name to item count).
        """
        conn = self.get_connection()
        sql = """
        WITH DeckStats AS (
            SELECT
                deck_name,
                COUNT(*) AS item_count,
                COUNT(CASE WHEN due_at <= $1 OR due_at IS NULL THEN 1 END) AS due_count
            FROM items
            GROUP BY deck_name
        ), StateStats AS (
            SELECT learning_state, COUNT(*) AS count
            FROM items
            GROUP BY learning_state
        )
        SELECT
            (SELECT COUNT(*) FROM items) AS total_items,
            (SELECT COUNT(*) FROM reviews) AS total_reviews,
            (SELECT json_group_array(json_object('deck_name', deck_name, 'item_count', item_count, 'due_count', due_count)) FROM DeckStats) AS decks,
            (SELECT json_group_object(learning_state, count) FROM StateStats) AS states;
        """  # noqa: E501
        try:
            result = conn.execute(sql, [ensure_utc(now or utc_now())]).fetchone()
            if not result or result[0] is None:
                return {
                    "total_items": 0,
                    "total_reviews": 0,
                    "decks": [],
                    "states": Counter(),
                }
            total_items, total_reviews, decks_json, states_json = result
            decks = json.loads(decks_json) if decks_json else []
            return {
                "total_items": total_items or 0,
                "total_reviews": total_reviews or 0,
                "decks": sorted(decks, key=lambda d: d["deck_name"]),
                "states": (
                    Counter(json.loads(states_json)) if states_json else Counter()
                ),
            }
        except (duckdb.Error, json.JSONDecodeError) as e:
            logger.error(f"Could not retrieve database stats due to an error: {e}")
            raise ItemOperationError(
                "Could not retrieve database stats.", original_exception=e
            ) from e

    def delete_items_by_ids_batch(self, item_ids: Sequence[uuid.UUID]) -> int:
        """
        Delete items by id. Their review records stay in the ledger.

        Returns:
            The number of items deleted.
        """
        if self.read_only:
            raise ItemOperationError("Cannot delete items in read-only mode.")
        if not item_ids:
            return 0

        conn = self.get_connection()
        sql = "DELETE FROM items WHERE id IN (SELECT * FROM UNNEST($1));"
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                try:
                    before = cursor.execute(
                        "SELECT COUNT(*) FROM items;"
                    ).fetchone()
                    cursor.execute(sql, (list(item_ids),))
                    after = cursor.execute(
                        "SELECT COUNT(*) FROM items;"
                    ).fetchone()
                    cursor.commit()
                except duckdb.Error:
                    self._rollback(cursor, "delete error")
                    raise
        except duckdb.Error as e:
            logger.error(f"Failed to delete items: {e}")
            raise ItemOperationError(
                f"Batch item delete failed: {e}", original_exception=e
            ) from e
        deleted = (before[0] if before else 0) - (after[0] if after else 0)
        logger.info(f"Successfully deleted {deleted} items.")
        return deleted

    # --- Review Operations ---
    def _insert_review_and_get_id(self, cursor, record: ReviewRecord) -> int:
        sql = """
        INSERT INTO reviews (item_id, ts, grade, ease_factor_after, interval_days_after, review_type)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING review_id;
        """  # noqa: E501
        cursor.execute(sql, db_utils.review_to_db_params_tuple(record))
        result = cursor.fetchone()
        if not result:
            raise ReviewOperationError(
                "Failed to retrieve review_id after insertion."
            )
        return result[0]

    def _update_item_after_review(self, cursor, item: Item) -> None:
        sql = """
        UPDATE items
        SET learning_state = $1, step_index = $2, ease_factor = $3, interval_days = $4,
            streak = $5, due_at = $6, last_reviewed_at = $7, review_count = $8, modified_at = $9
        WHERE id = $10;
        """  # noqa: E501
        params = (
            item.learning_state.name,
            item.step_index,
            item.ease_factor,
            item.interval_days,
            item.streak,
            item.due_at,
            item.last_reviewed_at,
            item.review_count,
            item.modified_at,
            item.id,
        )
        cursor.execute(sql, params)

    def add_review_and_update_item(
        self, record: ReviewRecord, item: Item
    ) -> Tuple[Item, ReviewRecord]:
        """
        Persist a grade application atomically: append the review record and
        write the item's new scheduling fields in one transaction.

        Parameters:
            record: The record produced for the grade; must reference ``item``.
            item: The updated item returned by the scheduler.

        Returns:
            The item as stored and the record with its assigned review_id.

        Raises:
            DatabaseConnectionError: In read-only mode.
            ReviewOperationError: If the item does not exist, the ids do not
                match, or the transaction fails.
        """
        if self.read_only:
            raise DatabaseConnectionError("Cannot add review in read-only mode.")
        if record.item_id != item.id:
            raise ReviewOperationError(
                f"Review for item {record.item_id} cannot update item {item.id}."
            )

        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                try:
                    exists = cursor.execute(
                        "SELECT 1 FROM items WHERE id = $1;", (item.id,)
                    ).fetchone()
                    if not exists:
                        raise ReviewOperationError(
                            f"Cannot record review: item {item.id} does not exist."  # noqa: E501
                        )
                    review_id = self._insert_review_and_get_id(cursor, record)
                    self._update_item_after_review(cursor, item)
                    cursor.commit()
                except Exception:
                    self._rollback(cursor, "review/update error")
                    raise
        except Exception as e:
            logger.error(f"Error during review and item update transaction: {e}")
            if isinstance(e, DatabaseError):
                raise
            raise ReviewOperationError(
                f"Failed to add review and update item: {e}",
                original_exception=e,
            ) from e

        stored_item = self.get_item_by_id(item.id)
        if stored_item is None:
            raise ReviewOperationError(
                f"Failed to retrieve item '{item.id}' after a successful review update. "  # noqa: E501
                "This indicates a critical data consistency issue."
            )
        return stored_item, record.model_copy(update={"review_id": review_id})

    def _fetch_reviews(
        self, sql: str, params: Sequence[Any], context: str
    ) -> List[ReviewRecord]:
        conn = self.get_connection()
        try:
            cursor = conn.execute(sql, params)
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching {context}: {e}")
            raise ReviewOperationError(
                f"Failed to get {context}: {e}", original_exception=e
            ) from e
        try:
            return [
                db_utils.db_row_to_review(cast(Dict[str, Any], row))
                for row in rows
            ]
        except MarshallingError as e:
            raise ReviewOperationError(
                f"Failed to parse {context} from database.",
                original_exception=e,
            ) from e

    def get_reviews_for_item(
        self, item_id: uuid.UUID, order_by_ts_desc: bool = False
    ) -> List[ReviewRecord]:
        """Review records of one item, oldest first unless asked otherwise."""
        order_clause = (
            "ORDER BY ts DESC, review_id DESC"
            if order_by_ts_desc
            else "ORDER BY ts ASC, review_id ASC"
        )
        return self._fetch_reviews(
            f"SELECT * FROM reviews WHERE item_id = $1 {order_clause};",
            (item_id,),
            f"reviews for item {item_id}",
        )

    def get_all_reviews(
        self,
        start_ts: Optional[datetime] = None,
        end_ts: Optional[datetime] = None,
    ) -> List[ReviewRecord]:
        """All review records, optionally within an inclusive time range."""
        sql = "SELECT * FROM reviews"
        params: List[Any] = []
        conditions = []
        if start_ts:
            params.append(ensure_utc(start_ts))
            conditions.append(f"ts >= ${len(params)}")
        if end_ts:
            params.append(ensure_utc(end_ts))
            conditions.append(f"ts <= ${len(params)}")
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY ts ASC, review_id ASC;"
        return self._fetch_reviews(sql, params, "all reviews")
