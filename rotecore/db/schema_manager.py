import duckdb
import logging

from .connection import ConnectionHandler
from . import schema
from ..exceptions import DatabaseConnectionError, SchemaInitializationError
from .. import config as rotecore_config

logger = logging.getLogger(__name__)


class SchemaManager:
    """Creates, and on request recreates, the rotecore tables."""

    def __init__(self, handler: ConnectionHandler):
        self._handler = handler

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        """
        Initializes the database schema inside one transaction. Skipped in
        read-only mode unless the DB is in-memory. ``force_recreate_tables``
        drops the tables first, which deletes all existing data; it is
        refused for populated file databases outside testing mode.
        """
        if self._handle_read_only_initialization(force_recreate_tables):
            return

        conn = self._handler.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                try:
                    if force_recreate_tables:
                        self._recreate_tables(cursor)
                    cursor.execute(schema.DB_SCHEMA_SQL)
                    cursor.commit()
                except Exception:
                    self._rollback(cursor)
                    raise
            logger.info(
                f"Database schema at {self._handler.db_path_resolved} initialized successfully (or already exists)."  # noqa: E501
            )
        except duckdb.Error as e:
            logger.error(
                f"Error initializing database schema at {self._handler.db_path_resolved}: {e}"  # noqa: E501
            )
            raise SchemaInitializationError(
                f"Failed to initialize schema: {e}", original_exception=e
            ) from e

    def _rollback(self, cursor: duckdb.DuckDBPyConnection) -> None:
        try:
            cursor.rollback()
            logger.info(
                "Transaction rolled back due to schema initialization error."
            )
        except duckdb.Error as rb_err:
            logger.error(f"Failed to rollback transaction: {rb_err}")

    def _handle_read_only_initialization(
        self, force_recreate_tables: bool
    ) -> bool:
        """Returns True if initialization should be skipped."""
        if self._handler.read_only:
            if force_recreate_tables:
                raise DatabaseConnectionError(
                    "Cannot force_recreate_tables in read-only mode."
                )
            if not self._handler.is_memory:
                logger.warning(
                    "Attempting to initialize schema in read-only mode. Skipping."
                )
                return True
        return False

    def _perform_safety_check(self, cursor: duckdb.DuckDBPyConnection) -> None:
        """Refuses to drop tables that still hold items or reviews."""
        if self._handler.is_memory or rotecore_config.settings.testing_mode:
            return

        existing = {
            row[0]
            for row in cursor.execute(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_name IN ('items', 'reviews');"
            ).fetchall()
        }
        items = reviews = 0
        if "items" in existing:
            row = cursor.execute("SELECT COUNT(*) FROM items").fetchone()
            items = row[0] if row else 0
        if "reviews" in existing:
            row = cursor.execute("SELECT COUNT(*) FROM reviews").fetchone()
            reviews = row[0] if row else 0
        if items > 0 or reviews > 0:
            error_msg = (
                "CRITICAL: Attempted to drop tables with existing data! "
                f"Items: {items}, Reviews: {reviews}. "
                "Delete the items explicitly instead."
            )
            logger.error(error_msg)
            raise SchemaInitializationError(error_msg)

    def _recreate_tables(self, cursor: duckdb.DuckDBPyConnection) -> None:
        self._perform_safety_check(cursor)

        logger.warning(
            f"Forcing table recreation for {self._handler.db_path_resolved}. ALL EXISTING DATA WILL BE LOST."  # noqa: E501
        )
        cursor.execute("DROP TABLE IF EXISTS reviews CASCADE;")
        cursor.execute("DROP TABLE IF EXISTS items CASCADE;")
        cursor.execute("DROP SEQUENCE IF EXISTS review_seq;")
